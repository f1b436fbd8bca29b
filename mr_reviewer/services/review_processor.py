"""Run one merge-request review unit end to end."""

from __future__ import annotations

from typing import List, Sequence

from mr_reviewer.completion_client import CompletionAPIError, CompletionClient
from mr_reviewer.config import Settings
from mr_reviewer.errors import ReviewerError
from mr_reviewer.gitlab_client import GitLabAPIError, GitLabClient
from mr_reviewer.logger import get_logger, log_for_unit, log_timing, log_success, log_failure
from mr_reviewer.models.review import Finding, ReviewBatch, ReviewResult, ReviewUnit
from mr_reviewer.queue.models import REVIEWABLE_ACTIONS, MergeRequestEvent, ReviewJob
from mr_reviewer.services.aggregator import aggregate, render_summary, select_inline
from mr_reviewer.services.batcher import make_batches
from mr_reviewer.services.interpreter import interpret
from mr_reviewer.services.publisher import CommentPublisher
from mr_reviewer.services.review_context import fetch_change_set

logger = get_logger()


class ReviewProcessorError(ReviewerError):
    """Raised when review processing fails."""

    def __init__(self, message: str, step: str, original_error: Exception | None = None):
        super().__init__(message)
        self.step = step
        self.original_error = original_error


def review_skip_reason(event: MergeRequestEvent, target_branches: Sequence[str]) -> str | None:
    """Why ``event`` should not be reviewed, or None when it should."""

    attributes = event.object_attributes
    if attributes.action not in REVIEWABLE_ACTIONS:
        return f"Merge request action '{attributes.action}' not actionable."
    if attributes.target_branch not in target_branches:
        return (
            f"Target branch '{attributes.target_branch}' is not in the review list "
            f"({', '.join(target_branches)})."
        )
    return None


class ReviewProcessor:
    """Fetch, review and publish one merge request at a time.

    Clients passed in are reused and left open; otherwise a fresh pair is
    created for each review unit and closed when it finishes.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        gitlab_client: GitLabClient | None = None,
        completion_client: CompletionClient | None = None,
    ) -> None:
        self._settings = settings
        self._gitlab_client = gitlab_client
        self._completion_client = completion_client

    @property
    def settings(self) -> Settings:
        return self._settings

    async def __call__(self, job: ReviewJob) -> ReviewResult | None:
        return await self.handle_event(job.event)

    async def handle_event(self, event: MergeRequestEvent) -> ReviewResult | None:
        ctx_logger = log_for_unit(logger, event.unit)
        reason = review_skip_reason(event, self._settings.target_branches)
        if reason:
            ctx_logger.info(f"Skipping merge request event: {reason}")
            return None

        ctx_logger.info(
            f"Processing merge request {event.object_attributes.action} event: "
            f"'{event.object_attributes.title}' "
            f"({event.object_attributes.source_branch} -> {event.object_attributes.target_branch})"
        )
        return await self.review(event.unit)

    async def review(self, unit: ReviewUnit) -> ReviewResult:
        ctx_logger = log_for_unit(logger, unit)
        ctx_logger.info("=== PROCESSOR: Starting review processing ===")

        with log_timing(ctx_logger, "load_configuration"):
            credentials = self._settings.require_review_credentials()
            standards = self._settings.read_standards()

        gitlab_client = self._gitlab_client or GitLabClient(
            base_url=self._settings.normalized_gitlab_api_url,
            token=credentials.gitlab_token,
        )
        completion_client = self._completion_client or CompletionClient(
            credentials.ai_api_key,
            model=self._settings.ai_model,
            base_url=self._settings.normalized_ai_base_url,
            max_tokens=self._settings.ai_max_tokens,
        )
        try:
            try:
                change_set = await fetch_change_set(gitlab_client, unit)
            except GitLabAPIError as exc:
                log_failure(logger, f"Failed to fetch merge request changes: {exc}", exc, unit=unit)
                raise ReviewProcessorError("Failed to fetch merge request changes", "fetch_changes", exc) from exc

            batches = make_batches(
                change_set,
                standards,
                self._settings.batch_size,
                prefer_raw_diff=self._settings.prompt_raw_diff,
            )
            finding_batches = await self._review_batches(unit, completion_client, batches)
            summary = aggregate(finding_batches)
            ctx_logger.info(
                f"Review finished: {summary.total} finding(s) "
                f"(errors={summary.counts.errors}, warnings={summary.counts.warnings}, "
                f"infos={summary.counts.infos})"
            )

            publisher = CommentPublisher(gitlab_client)
            try:
                await publisher.publish_summary(unit, render_summary(summary))
                inline_posted = await publisher.publish_inline(
                    unit, select_inline(summary, self._settings.max_inline_comments)
                )
            except GitLabAPIError as exc:
                log_failure(logger, f"Failed to publish review results: {exc}", exc, unit=unit)
                raise ReviewProcessorError("Failed to publish review results", "publish_results", exc) from exc

            log_success(logger, f"Review processing completed for {unit}", unit=unit)
            return ReviewResult(unit=unit, summary=summary, inline_posted=inline_posted)
        finally:
            if self._completion_client is None:
                await completion_client.aclose()
            if self._gitlab_client is None:
                await gitlab_client.aclose()
            ctx_logger.debug("Clients closed")

    async def _review_batches(
        self,
        unit: ReviewUnit,
        completion_client: CompletionClient,
        batches: Sequence[ReviewBatch],
    ) -> List[List[Finding]]:
        """Send batches one at a time to bound concurrent token usage."""

        ctx_logger = log_for_unit(logger, unit)
        results: List[List[Finding]] = []
        for number, batch in enumerate(batches, start=1):
            ctx_logger.info(f"Reviewing batch {number}/{len(batches)}: {', '.join(batch.paths)}")
            try:
                with log_timing(ctx_logger, f"review_batch_{number}"):
                    raw_reply = await completion_client.complete(batch.request)
            except CompletionAPIError as exc:
                log_failure(logger, f"Completion request failed for batch {number}: {exc}", exc, unit=unit)
                raise ReviewProcessorError("Completion request failed", "review_batch", exc) from exc

            interpretation = interpret(raw_reply, batch.change_set)
            if interpretation.error is not None:
                ctx_logger.warning(
                    f"Batch {number} reply could not be interpreted ({interpretation.error}); "
                    f"raw reply:\n{interpretation.error.raw_text}"
                )
            ctx_logger.info(
                f"Batch {number} produced {len(interpretation.findings)} finding(s) "
                f"from a {interpretation.shape} reply"
            )
            results.append(list(interpretation.findings))
        return results
