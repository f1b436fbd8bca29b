"""Helpers to build the change set of a merge request."""

from __future__ import annotations

from mr_reviewer.diff_parser import build_change_set
from mr_reviewer.gitlab_client import GitLabAPIError, GitLabClient
from mr_reviewer.logger import get_logger, log_for_unit, log_timing
from mr_reviewer.models.review import ChangeSet, ReviewUnit

logger = get_logger()


async def fetch_change_set(client: GitLabClient, unit: ReviewUnit) -> ChangeSet:
    ctx_logger = log_for_unit(logger, unit)
    ctx_logger.info(f"Fetching merge request changes for {unit}")

    try:
        with log_timing(ctx_logger, "fetch_merge_request_changes"):
            entries = await client.get_merge_request_changes(
                project_id=unit.project_id,
                merge_request_iid=unit.merge_request_iid,
            )
    except GitLabAPIError as exc:
        if exc.status_code == 404:
            ctx_logger.error(f"Project or merge request not found (404): {exc}")
        elif exc.status_code in (401, 403):
            ctx_logger.error(f"Permission denied ({exc.status_code}): {exc}")
        elif exc.status_code == 429:
            ctx_logger.error(f"Rate limit exceeded (429): {exc}")
        else:
            ctx_logger.error(f"GitLab API error ({exc.status_code}): {exc}")
        raise

    ctx_logger.debug(f"Merge request changes fetched: {len(entries)} file(s)")
    change_set = build_change_set(entries)

    if not change_set:
        ctx_logger.warning(f"No files changed in merge request {unit}")

    ctx_logger.info(
        f"Change set built: files={len(change_set)}, "
        f"line_changes={sum(len(change.line_changes) for change in change_set)}"
    )
    return change_set
