"""FastAPI dependency factories."""

from __future__ import annotations

from functools import lru_cache

from fastapi import HTTPException

from mr_reviewer.config import Settings, get_settings
from mr_reviewer.errors import ConfigurationError
from mr_reviewer.logger import get_logger
from mr_reviewer.services.review_processor import ReviewProcessor

logger = get_logger()


def settings_dependency() -> Settings:
    """Resolve application settings, surfacing configuration errors via HTTPException."""

    try:
        return get_settings()
    except ConfigurationError as exc:
        logger.error(f"Failed to load settings: {exc}")
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@lru_cache(maxsize=1)
def _review_processor_factory() -> ReviewProcessor:
    return ReviewProcessor(get_settings())


def review_processor_dependency() -> ReviewProcessor:
    """Provide a cached review processor bound to the process settings."""

    settings_dependency()
    return _review_processor_factory()


def reset_review_processor_cache() -> None:
    """Clear the cached processor instance (primarily for tests)."""

    _review_processor_factory.cache_clear()
