"""Data models for GitLab webhook payloads and review queue jobs."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Literal

from pydantic import BaseModel, ConfigDict, Field

from mr_reviewer.models.review import ReviewUnit

REVIEWABLE_ACTIONS = frozenset({"open", "update"})


class ProjectInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    name: str | None = None
    path_with_namespace: str | None = None
    web_url: str | None = None
    default_branch: str | None = None


class MergeRequestAttributes(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    iid: int
    title: str | None = None
    state: str | None = None
    action: str | None = None
    source_branch: str | None = None
    target_branch: str | None = None
    url: str | None = None


class MergeRequestEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    object_kind: Literal["merge_request"] = "merge_request"
    event_type: str | None = None
    user: Dict[str, Any] = Field(default_factory=dict)
    project: ProjectInfo
    object_attributes: MergeRequestAttributes

    @property
    def unit(self) -> ReviewUnit:
        return ReviewUnit(
            project_id=self.project.id,
            merge_request_iid=self.object_attributes.iid,
        )


class ReviewJob(BaseModel):
    delivery_id: str
    event: MergeRequestEvent
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
