"""Turn completion-service replies into typed review findings.

Replies arrive in one of several shapes: a "no issues" sentinel, a JSON
document with a ``comments`` array, or Markdown list items of the form::

    - src/a.ts:42 | warning | no-any | use a concrete type
    - src/a.ts:42 | no-any | use a concrete type      (legacy, no severity)
    - 42 | no-any | use a concrete type                (bare line number)

The shape is detected first and each shape has its own parser. A malformed
record is dropped on its own; a reply that matches no shape yields no
findings and an :class:`InterpretationError` the caller can log.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, List, Tuple

from mr_reviewer.errors import InterpretationError, ParseRecordError
from mr_reviewer.logger import get_logger
from mr_reviewer.models.review import ChangeSet, Finding, Severity

logger = get_logger()

NO_ISSUES_MARKERS: Tuple[str, ...] = (
    "未发现bug",
    "未发现问题",
    "no issues found",
    "no problems found",
)

LIST_MARKERS = ("-", "*")

_FENCED_JSON = re.compile(r"```(?:json)?[ \t]*\n(.*?)```", re.DOTALL | re.IGNORECASE)
_PATH_LINE = re.compile(r"^(?P<path>.*):(?P<line>\d+)(?:-\d+)?$")
_BARE_LINE = re.compile(r"^(?:L|line\s*)?(?P<line>\d+)$", re.IGNORECASE)


class ReplyShape(str, Enum):
    SENTINEL = "sentinel"
    STRUCTURED_JSON = "structured_json"
    LINE_FORMAT = "line_format"
    UNRECOGNIZED = "unrecognized"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class SentinelReply:
    shape: ClassVar[ReplyShape] = ReplyShape.SENTINEL


@dataclass(frozen=True, slots=True)
class JsonReply:
    document: Any
    shape: ClassVar[ReplyShape] = ReplyShape.STRUCTURED_JSON


@dataclass(frozen=True, slots=True)
class LineFormatReply:
    lines: Tuple[str, ...]
    shape: ClassVar[ReplyShape] = ReplyShape.LINE_FORMAT


@dataclass(frozen=True, slots=True)
class UnrecognizedReply:
    reason: str
    shape: ClassVar[ReplyShape] = ReplyShape.UNRECOGNIZED


Reply = SentinelReply | JsonReply | LineFormatReply | UnrecognizedReply


@dataclass(frozen=True, slots=True)
class Interpretation:
    shape: ReplyShape
    findings: Tuple[Finding, ...] = ()
    error: InterpretationError | None = None


class LineIndex:
    """Maps new-file line numbers to the files that changed at that line.

    Built once per change set so unattributed findings resolve without
    rescanning every file.
    """

    def __init__(self, change_set: ChangeSet) -> None:
        self._files_by_line: Dict[int, List[str]] = {}
        self._fallback = change_set[0].path if change_set else None
        for change in change_set:
            for line_change in change.line_changes:
                paths = self._files_by_line.setdefault(line_change.line_number, [])
                if not paths or paths[-1] != change.path:
                    paths.append(change.path)

    def candidates(self, line: int) -> Tuple[str, ...]:
        return tuple(self._files_by_line.get(line, ()))

    def resolve(self, line: int) -> str | None:
        """First file with a change at ``line``, else the first file of the change set."""

        paths = self._files_by_line.get(line)
        if paths:
            return paths[0]
        return self._fallback


def _is_candidate_line(line: str) -> bool:
    stripped = line.strip()
    return bool(stripped) and stripped.startswith(LIST_MARKERS) and "|" in stripped


def _is_severity_token(token: str) -> bool:
    return token.casefold() in {severity.value for severity in Severity}


def _has_comments(document: Any) -> bool:
    return isinstance(document, dict) and "comments" in document


def _contains_no_issues_marker(text: str) -> bool:
    folded = text.casefold()
    return any(marker in folded for marker in NO_ISSUES_MARKERS)


def _load_json_document(text: str) -> Tuple[bool, Any]:
    """Return ``(attempted, document)``; ``document`` is None when decoding failed."""

    match = _FENCED_JSON.search(text)
    body = match.group(1).strip() if match else text
    if not body.startswith(("{", "[")):
        return bool(match), None
    try:
        return True, json.loads(body)
    except json.JSONDecodeError as exc:
        logger.debug(f"Reply looked like JSON but failed to decode: {exc}")
        return True, None


def detect_reply(raw_text: str | None) -> Reply:
    """Classify a raw reply without parsing individual records."""

    text = (raw_text or "").strip()
    if not text:
        return SentinelReply()

    attempted_json, document = _load_json_document(text)
    lines = tuple(line for line in text.splitlines() if _is_candidate_line(line))
    if document is not None and (_has_comments(document) or not lines):
        return JsonReply(document)

    if not lines and _contains_no_issues_marker(text):
        return SentinelReply()
    if lines:
        return LineFormatReply(lines)
    if attempted_json:
        return UnrecognizedReply("reply contains JSON that could not be decoded")
    return UnrecognizedReply("reply has no JSON document and no list-formatted findings")


def detect_shape(raw_text: str | None) -> ReplyShape:
    return detect_reply(raw_text).shape


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_line(value: Any) -> int:
    if isinstance(value, bool):
        raise ParseRecordError(f"line must be an integer, got {value!r}")
    if isinstance(value, int):
        line = value
    elif isinstance(value, str) and value.strip().isdigit():
        line = int(value.strip())
    else:
        raise ParseRecordError(f"line must be an integer, got {value!r}")
    if line <= 0:
        raise ParseRecordError(f"line must be positive, got {line}")
    return line


def _finding_from_element(element: Any) -> Finding:
    if not isinstance(element, dict):
        raise ParseRecordError(f"comment entry is not an object: {element!r}")

    missing = [key for key in ("file", "line", "message", "severity") if element.get(key) is None]
    if missing:
        raise ParseRecordError(f"comment entry missing {', '.join(missing)}")

    file = _optional_text(element["file"])
    message = _optional_text(element["message"])
    if not file or not message:
        raise ParseRecordError("comment entry has an empty file or message")

    return Finding(
        file=file,
        line=_coerce_line(element["line"]),
        message=message,
        severity=Severity.parse(str(element["severity"])),
        rule=_optional_text(element.get("rule")),
        suggestion=_optional_text(element.get("suggestion")),
    )


class ResponseInterpreter:
    """Parses replies for the files of one change set."""

    def __init__(self, change_set: ChangeSet) -> None:
        self._change_set = change_set
        self._index = LineIndex(change_set)

    @property
    def index(self) -> LineIndex:
        return self._index

    def parse(self, raw_text: str | None) -> List[Finding]:
        return list(self.interpret(raw_text).findings)

    def interpret(self, raw_text: str | None) -> Interpretation:
        reply = detect_reply(raw_text)
        try:
            if isinstance(reply, SentinelReply):
                return Interpretation(shape=reply.shape)
            if isinstance(reply, JsonReply):
                findings = self._parse_json(reply.document, raw_text or "")
            elif isinstance(reply, LineFormatReply):
                findings = self._parse_lines(reply.lines)
            else:
                raise InterpretationError(
                    f"Unrecognized reply shape: {reply.reason}", raw_text or ""
                )
        except InterpretationError as exc:
            logger.warning(f"Could not interpret completion reply: {exc}")
            return Interpretation(shape=reply.shape, error=exc)

        valid = tuple(finding for finding in findings if finding.is_valid)
        logger.debug(f"Interpreted {reply.shape} reply into {len(valid)} finding(s)")
        return Interpretation(shape=reply.shape, findings=valid)

    def _parse_json(self, document: Any, raw_text: str) -> List[Finding]:
        comments = document.get("comments") if isinstance(document, dict) else None
        if not isinstance(comments, list):
            raise InterpretationError("JSON reply has no 'comments' array", raw_text)

        findings: List[Finding] = []
        for position, element in enumerate(comments):
            try:
                findings.append(_finding_from_element(element))
            except ParseRecordError as exc:
                logger.debug(f"Dropping JSON comment #{position}: {exc}")
        return findings

    def _parse_lines(self, lines: Tuple[str, ...]) -> List[Finding]:
        findings: List[Finding] = []
        for line in lines:
            try:
                findings.append(self._parse_line(line))
            except ParseRecordError as exc:
                logger.debug(f"Dropping reply line {line.strip()!r}: {exc}")
        return findings

    def _parse_line(self, line: str) -> Finding:
        body = line.strip()[1:]
        segments = [segment.strip() for segment in body.split("|")]
        while segments and not segments[-1]:
            segments.pop()

        if len(segments) >= 4 or (len(segments) == 3 and _is_severity_token(segments[1])):
            location, severity_token, rule = segments[0], segments[1], segments[2]
            suggestion = " | ".join(segments[3:])
            severity = Severity.parse(severity_token)
        elif len(segments) >= 2:
            location, rule = segments[0], segments[1]
            suggestion = segments[2] if len(segments) == 3 else None
            severity = Severity.ERROR
        else:
            raise ParseRecordError("expected at least two '|'-separated segments")

        if not rule:
            raise ParseRecordError("empty rule text")

        file, line_number = self._resolve_location(location)
        return Finding(
            file=file,
            line=line_number,
            message=rule,
            severity=severity,
            rule=rule,
            suggestion=suggestion or None,
        )

    def _resolve_location(self, location: str) -> Tuple[str, int]:
        location = location.strip().strip("`*").strip()

        match = _PATH_LINE.match(location)
        if match and match.group("path").strip("` "):
            return match.group("path").strip("` "), _coerce_line(match.group("line"))

        bare = _BARE_LINE.match(location) or (match and _BARE_LINE.match(match.group("line")))
        if not bare:
            raise ParseRecordError(f"unrecognized location {location!r}")

        line_number = _coerce_line(bare.group("line"))
        file = self._index.resolve(line_number)
        if not file:
            raise ParseRecordError(f"no file to attribute line {line_number} to")
        return file, line_number


def interpret(raw_text: str | None, change_set: ChangeSet) -> Interpretation:
    return ResponseInterpreter(change_set).interpret(raw_text)


def parse_reply(raw_text: str | None, change_set: ChangeSet) -> List[Finding]:
    """Findings for ``raw_text``; never raises on malformed replies."""

    return ResponseInterpreter(change_set).parse(raw_text)
