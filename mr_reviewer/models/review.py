"""Shared data structures for review processing."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple


class ChangeKind(str, Enum):
    ADD = "add"
    DELETE = "delete"
    CONTEXT = "context"

    def __str__(self) -> str:
        return self.value


class Severity(str, Enum):
    """Severity of a review finding, ordered from most to least visible."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, token: str | None) -> "Severity":
        """Case-insensitive lookup; unknown tokens fall back to ERROR."""

        if token is None:
            return cls.ERROR
        try:
            return cls(str(token).strip().casefold())
        except ValueError:
            return cls.ERROR


@dataclass(frozen=True, slots=True)
class LineChange:
    kind: ChangeKind
    line_number: int
    content: str


@dataclass(frozen=True, slots=True)
class FileChange:
    old_path: str
    new_path: str
    is_new: bool = False
    is_deleted: bool = False
    is_renamed: bool = False
    raw_diff: str | None = None
    line_changes: Tuple[LineChange, ...] = ()

    @property
    def path(self) -> str:
        return self.new_path or self.old_path

    @property
    def added_lines(self) -> Tuple[LineChange, ...]:
        return tuple(change for change in self.line_changes if change.kind is ChangeKind.ADD)


ChangeSet = Tuple[FileChange, ...]


@dataclass(frozen=True, slots=True)
class Finding:
    file: str
    line: int
    message: str
    severity: Severity = Severity.ERROR
    rule: str | None = None
    suggestion: str | None = None

    @property
    def is_valid(self) -> bool:
        return bool(self.file) and self.line > 0


@dataclass(frozen=True, slots=True)
class SeverityCounts:
    errors: int = 0
    warnings: int = 0
    infos: int = 0

    @property
    def total(self) -> int:
        return self.errors + self.warnings + self.infos


@dataclass(frozen=True, slots=True)
class ReviewSummary:
    findings: Tuple[Finding, ...] = ()
    counts: SeverityCounts = field(default_factory=SeverityCounts)

    @property
    def total(self) -> int:
        return len(self.findings)


@dataclass(frozen=True, slots=True)
class DiffReference:
    base_sha: str
    start_sha: str
    head_sha: str


@dataclass(frozen=True, slots=True)
class ReviewUnit:
    project_id: int
    merge_request_iid: int

    def __str__(self) -> str:
        return f"{self.project_id}!{self.merge_request_iid}"


@dataclass(frozen=True, slots=True)
class CompletionRequest:
    system_prompt: str
    user_prompt: str


@dataclass(frozen=True, slots=True)
class ReviewBatch:
    change_set: ChangeSet
    request: CompletionRequest

    @property
    def paths(self) -> Tuple[str, ...]:
        return tuple(change.path for change in self.change_set)


@dataclass(frozen=True, slots=True)
class ReviewResult:
    unit: ReviewUnit
    summary: ReviewSummary
    inline_posted: int = 0
