import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import fastapi
import uvicorn

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from mr_reviewer.config import get_settings
from mr_reviewer.errors import ConfigurationError
from mr_reviewer.logger import get_logger
from mr_reviewer.queue import configure_review_handler, shutdown_queue
from mr_reviewer.services.review_processor import ReviewProcessor
from mr_reviewer.webhook import router as webhook_router

logger = get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Attach the review queue worker for the lifetime of the server."""

    try:
        configure_review_handler(ReviewProcessor(get_settings()))
    except ConfigurationError as exc:
        logger.error(f"Queue worker not configured: {exc}")
    try:
        yield
    finally:
        await shutdown_queue()
        configure_review_handler(None)


app = FastAPI(title="GitLab MR Reviewer", lifespan=lifespan)

app.include_router(webhook_router, tags=["webhook"])


@app.get("/", response_class=PlainTextResponse)
def root() -> str:
    return "pong"


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "The GitLab MR Reviewer is operational and ready to review merge requests.",
        "environment": {
            "python version": sys.version,
            "fastapi version": fastapi.__version__,
            "uvicorn version": uvicorn.__version__,
        },
    }

