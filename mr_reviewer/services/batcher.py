"""Partition a change set into prompt-sized review batches."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import FrozenSet, Iterable, List

from mr_reviewer.logger import get_logger
from mr_reviewer.models.review import (
    ChangeSet,
    CompletionRequest,
    FileChange,
    ReviewBatch,
)

logger = get_logger()

DEFAULT_BATCH_SIZE = 5

REVIEWABLE_EXTENSIONS: FrozenSet[str] = frozenset(
    {".ts", ".tsx", ".js", ".jsx", ".vue", ".css", ".less", ".scss", ".sass"}
)

REPLY_FORMAT_INSTRUCTIONS = (
    "Report every violation as one Markdown list item using this exact format:\n"
    "- <file path>:<line number> | <error|warning|info> | <rule that is violated> | <suggested fix>\n"
    "\n"
    "Rules for the reply:\n"
    "- Only report real violations of the standards above; do not be overly strict.\n"
    "- Prioritise error-level problems; for warnings and info keep only the most important.\n"
    "- The file path must be the full path shown in the diff.\n"
    "- The line number must be the line number in the new version of the file.\n"
    "- If the code has no problems, reply with exactly: No issues found"
)


def is_reviewable(change: FileChange, extensions: FrozenSet[str] = REVIEWABLE_EXTENSIONS) -> bool:
    if change.is_deleted:
        return False
    return PurePosixPath(change.path).suffix.lower() in extensions


def build_system_prompt(standards: str) -> str:
    return (
        "You are a professional code reviewer. Review the code changes against the "
        "coding standards below, identify code that violates them, point out the exact "
        "file and line for each problem and give a concrete improvement.\n"
        "\n"
        "Coding standards:\n"
        f"{standards}\n"
        "\n"
        f"{REPLY_FORMAT_INSTRUCTIONS}"
    )


def _format_file_section(change: FileChange, *, prefer_raw_diff: bool) -> str:
    lines = [f"File: {change.path}"]
    if change.is_new:
        lines.append("(new file)")
    if change.is_renamed:
        lines.append(f"(renamed from: {change.old_path})")

    if prefer_raw_diff and change.raw_diff:
        lines.append("Diff:")
        lines.append("```diff")
        lines.append(change.raw_diff.rstrip("\n"))
    else:
        lines.append("Added or modified lines:")
        lines.append("```")
        lines.extend(f"{added.line_number}: {added.content}" for added in change.added_lines)
    lines.append("```")
    return "\n".join(lines)


def build_user_prompt(changes: Iterable[FileChange], *, prefer_raw_diff: bool = True) -> str:
    sections = "\n---\n".join(
        _format_file_section(change, prefer_raw_diff=prefer_raw_diff) for change in changes
    )
    return (
        "Review the following code changes and identify violations of the coding standards:\n"
        "\n"
        f"{sections}\n"
        "\n"
        "Reply strictly in the list format described above."
    )


def make_batches(
    change_set: ChangeSet,
    standards: str,
    batch_size: int = DEFAULT_BATCH_SIZE,
    *,
    extensions: FrozenSet[str] = REVIEWABLE_EXTENSIONS,
    prefer_raw_diff: bool = True,
) -> List[ReviewBatch]:
    """Filter reviewable files and group them, in order, into fixed-size batches.

    An empty result means there is nothing to send to the completion service.
    """

    if batch_size < 1:
        raise ValueError(f"batch_size must be at least 1, got {batch_size}")

    reviewable = tuple(change for change in change_set if is_reviewable(change, extensions))
    skipped = len(change_set) - len(reviewable)
    if skipped:
        logger.debug(f"Filtered out {skipped} deleted or non-code file(s)")
    if not reviewable:
        logger.info("No reviewable code files in change set")
        return []

    system_prompt = build_system_prompt(standards)
    batches: List[ReviewBatch] = []
    for start in range(0, len(reviewable), batch_size):
        window = reviewable[start : start + batch_size]
        batches.append(
            ReviewBatch(
                change_set=window,
                request=CompletionRequest(
                    system_prompt=system_prompt,
                    user_prompt=build_user_prompt(window, prefer_raw_diff=prefer_raw_diff),
                ),
            )
        )

    logger.info(f"Prepared {len(batches)} batch(es) for {len(reviewable)} file(s)")
    return batches
