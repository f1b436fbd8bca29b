from mr_reviewer.config import get_settings
from mr_reviewer.logger import get_logger

logger = get_logger()


def main() -> None:
    host = "0.0.0.0"
    port = get_settings().port
    display_url = f"http://localhost:{port}"

    logger.info(
        "Starting GitLab MR Reviewer on {display_url} (binding to {host}:{port})",
        display_url=display_url,
        host=host,
        port=port,
    )

    import uvicorn

    uvicorn.run(
        app="mr_reviewer.main:app",
        host=host,
        port=port,
        workers=1,
        log_level="info",
    )


if __name__ == "__main__":
    main()
