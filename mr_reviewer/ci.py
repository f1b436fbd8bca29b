"""Review the current merge request from a GitLab CI pipeline."""

from __future__ import annotations

import argparse
import asyncio
import os
from typing import Sequence

from mr_reviewer.config import get_settings
from mr_reviewer.errors import ConfigurationError, ReviewerError
from mr_reviewer.logger import get_logger, log_failure, log_success
from mr_reviewer.models.review import ReviewUnit
from mr_reviewer.services.review_processor import ReviewProcessor

logger = get_logger()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mr-reviewer-ci",
        description="Review a GitLab merge request against the coding standards.",
    )
    parser.add_argument(
        "--project-id",
        default=os.getenv("CI_PROJECT_ID"),
        help="GitLab project id (default: $CI_PROJECT_ID)",
    )
    parser.add_argument(
        "--merge-request-iid",
        default=os.getenv("CI_MERGE_REQUEST_IID"),
        help="Merge request iid within the project (default: $CI_MERGE_REQUEST_IID)",
    )
    parser.add_argument(
        "--gitlab-url",
        default=os.getenv("CI_SERVER_URL"),
        help="GitLab instance URL (default: $CI_SERVER_URL, then $GITLAB_URL)",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    if not args.project_id or not args.merge_request_iid:
        logger.info("Not a merge request pipeline; skipping code review")
        return 0

    try:
        unit = ReviewUnit(
            project_id=int(args.project_id),
            merge_request_iid=int(args.merge_request_iid),
        )
    except ValueError:
        log_failure(
            logger,
            f"Invalid merge request identifiers: project_id={args.project_id!r}, "
            f"merge_request_iid={args.merge_request_iid!r}",
        )
        return 1

    try:
        settings = get_settings()
        if args.gitlab_url:
            settings = settings.model_copy(update={"gitlab_url": args.gitlab_url})
        settings.require_review_credentials()
    except ConfigurationError as exc:
        log_failure(logger, f"Configuration error: {exc}")
        return 1

    logger.info(f"Starting code review for merge request {unit}")
    try:
        result = asyncio.run(ReviewProcessor(settings).review(unit))
    except ReviewerError as exc:
        log_failure(logger, f"Code review failed: {exc}", exc, unit=unit)
        return 1

    log_success(
        logger,
        f"Code review finished with {result.summary.total} finding(s), "
        f"{result.inline_posted} inline comment(s) posted",
        unit=unit,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
