"""GitLab webhook ingestion."""

from __future__ import annotations

import json
import time
import uuid
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import ValidationError

from mr_reviewer.dependencies import review_processor_dependency
from mr_reviewer.errors import ConfigurationError, ReviewerError
from mr_reviewer.logger import get_logger, log_for_unit, log_timing, log_success, log_failure
from mr_reviewer.queue import enqueue_review_job
from mr_reviewer.queue.models import MergeRequestEvent, ReviewJob
from mr_reviewer.services.review_processor import ReviewProcessor, review_skip_reason
from mr_reviewer.utils.security import verify_gitlab_token

router = APIRouter()

logger = get_logger()

DELIVERY_TTL_SECONDS = 60 * 60  # retain delivery IDs for one hour
_delivery_cache: Dict[str, float] = {}


class IgnoreEventError(RuntimeError):
    """Raised when a webhook event should be acknowledged but not processed."""


def _prune_delivery_cache(now: float) -> None:
    expiry_threshold = now - DELIVERY_TTL_SECONDS
    expired = [key for key, timestamp in _delivery_cache.items() if timestamp < expiry_threshold]
    for key in expired:
        _delivery_cache.pop(key, None)


def _reserve_delivery(delivery_id: str, now: float) -> bool:
    """Claim ``delivery_id``; False when it is already claimed or done."""

    _prune_delivery_cache(now)
    if delivery_id in _delivery_cache:
        return False
    _delivery_cache[delivery_id] = now
    return True


def _release_delivery(delivery_id: str) -> None:
    _delivery_cache.pop(delivery_id, None)


def reset_delivery_cache() -> None:
    """Forget every seen delivery (primarily for tests)."""

    _delivery_cache.clear()


def _build_merge_request_event(payload: Any) -> MergeRequestEvent:
    if not isinstance(payload, dict):
        raise ValueError("Webhook payload must be a JSON object.")

    object_kind = payload.get("object_kind")
    if object_kind != "merge_request":
        raise IgnoreEventError(f"Event '{object_kind}' is not handled.")

    try:
        return MergeRequestEvent.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(
            f"Merge request payload is invalid ({exc.error_count()} validation error(s))."
        ) from exc


def _summary_payload(result) -> Dict[str, Any]:
    counts = result.summary.counts
    return {
        "total": result.summary.total,
        "errors": counts.errors,
        "warnings": counts.warnings,
        "infos": counts.infos,
        "inline_comments": result.inline_posted,
    }


@router.post("/webhook/gitlab", summary="Receive GitLab merge request webhooks")
async def receive_webhook(
    request: Request,
    response: Response,
    processor: ReviewProcessor = Depends(review_processor_dependency),
) -> Dict[str, Any]:
    """Verify the webhook token, filter merge request events and run or enqueue the review."""

    start_time = time.time()
    settings = processor.settings
    delivery_id = request.headers.get("X-Gitlab-Event-UUID")
    logger.info("=== WEBHOOK RECEIVED ===")

    if not verify_gitlab_token(settings.webhook_secret, request.headers.get("X-Gitlab-Token")):
        log_failure(logger, "Webhook token verification failed", delivery_id=delivery_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized"
        )

    raw_body = await request.body()
    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        log_failure(logger, "Invalid JSON payload", exc, delivery_id=delivery_id)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON payload"
        ) from exc

    try:
        event = _build_merge_request_event(payload)
    except IgnoreEventError as exc:
        logger.info(f"Webhook ignored: {exc}")
        return {"status": "ignored", "reason": str(exc)}
    except ValueError as exc:
        log_failure(logger, f"Invalid payload structure: {exc}", exc, delivery_id=delivery_id)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc)
        ) from exc

    unit = event.unit
    ctx_logger = log_for_unit(logger, unit, delivery_id=delivery_id)
    ctx_logger.info(f"Merge request webhook received (action={event.object_attributes.action})")

    reason = review_skip_reason(event, settings.target_branches)
    if reason:
        ctx_logger.info(f"Webhook ignored: {reason}")
        return {"status": "ignored", "reason": reason}

    try:
        settings.require_review_credentials()
    except ConfigurationError as exc:
        log_failure(logger, "Configuration incomplete", exc, delivery_id=delivery_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Configuration error: {exc}"
        ) from exc

    if delivery_id and not _reserve_delivery(delivery_id, time.time()):
        ctx_logger.info("Duplicate delivery ignored")
        return {"status": "ignored", "reason": "duplicate"}

    if settings.async_reviews:
        job = ReviewJob(delivery_id=delivery_id or str(uuid.uuid4()), event=event)
        try:
            with log_timing(ctx_logger, "enqueue_review_job"):
                await enqueue_review_job(job)
        except Exception as exc:  # pragma: no cover
            if delivery_id:
                _release_delivery(delivery_id)
            log_failure(logger, f"Failed to enqueue review job: {exc}", exc, delivery_id=delivery_id)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to enqueue job"
            ) from exc
        response.status_code = status.HTTP_202_ACCEPTED
        log_success(logger, f"Review of {unit} enqueued", unit=unit, delivery_id=delivery_id)
        return {"status": "accepted"}

    try:
        with log_timing(ctx_logger, "review_merge_request"):
            result = await processor.review(unit)
    except ReviewerError as exc:
        if delivery_id:
            _release_delivery(delivery_id)
        log_failure(logger, f"Review of {unit} failed: {exc}", exc, unit=unit, delivery_id=delivery_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Review failed: {exc}"
        ) from exc
    except Exception:
        if delivery_id:
            _release_delivery(delivery_id)
        raise

    processing_time = time.time() - start_time
    log_success(logger, f"Webhook review of {unit} completed in {processing_time:.3f}s",
                unit=unit, delivery_id=delivery_id)
    return {
        "status": "reviewed",
        "project_id": unit.project_id,
        "merge_request_iid": unit.merge_request_iid,
        "summary": _summary_payload(result),
    }
