"""Publish review results to a GitLab merge request."""

from __future__ import annotations

from typing import Any, Dict, Sequence

from mr_reviewer.gitlab_client import GitLabAPIError, GitLabClient
from mr_reviewer.logger import get_logger, log_for_unit, log_timing
from mr_reviewer.models.review import DiffReference, Finding, ReviewUnit
from mr_reviewer.services.aggregator import render_inline_body

logger = get_logger()


def build_position(finding: Finding, diff_ref: DiffReference) -> Dict[str, Any]:
    """Position object anchoring a discussion to ``finding.line`` in the new file."""

    return {
        "base_sha": diff_ref.base_sha,
        "start_sha": diff_ref.start_sha,
        "head_sha": diff_ref.head_sha,
        "old_path": finding.file,
        "new_path": finding.file,
        "position_type": "text",
        "new_line": finding.line,
    }


class CommentPublisher:
    def __init__(self, gitlab_client: GitLabClient) -> None:
        self._gitlab = gitlab_client

    async def publish_summary(self, unit: ReviewUnit, markdown_summary: str) -> None:
        """Post the summary note; failures propagate to the caller."""

        ctx_logger = log_for_unit(logger, unit)
        with log_timing(ctx_logger, "publish_summary"):
            await self._gitlab.create_note(
                project_id=unit.project_id,
                merge_request_iid=unit.merge_request_iid,
                body=markdown_summary,
            )
        ctx_logger.info("Summary note published")

    async def publish_inline(
        self,
        unit: ReviewUnit,
        findings: Sequence[Finding],
        diff_ref: DiffReference | None = None,
    ) -> int:
        """Post one anchored discussion per finding, in order.

        A failing comment is logged and skipped. Returns the number posted.
        """

        ctx_logger = log_for_unit(logger, unit)
        if not findings:
            ctx_logger.debug("No inline findings to publish")
            return 0

        if diff_ref is None:
            with log_timing(ctx_logger, "fetch_diff_reference"):
                diff_ref = await self._gitlab.get_diff_reference(
                    project_id=unit.project_id,
                    merge_request_iid=unit.merge_request_iid,
                )

        posted = 0
        for finding in findings:
            try:
                await self._gitlab.create_discussion(
                    project_id=unit.project_id,
                    merge_request_iid=unit.merge_request_iid,
                    body=render_inline_body(finding),
                    position=build_position(finding, diff_ref),
                )
                posted += 1
            except GitLabAPIError as exc:
                ctx_logger.error(
                    f"Failed to post inline comment on {finding.file}:{finding.line} "
                    f"(status={exc.status_code}): {exc}"
                )

        ctx_logger.info(f"Posted {posted}/{len(findings)} inline comment(s)")
        return posted
