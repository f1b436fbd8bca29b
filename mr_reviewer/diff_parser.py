"""Unified diff parsing for GitLab merge-request changes."""

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List

from mr_reviewer.logger import get_logger
from mr_reviewer.models.review import ChangeKind, ChangeSet, FileChange, LineChange

logger = get_logger()

_HUNK_NEW_START = re.compile(r"\+(\d+)")


def parse_line_changes(diff_text: str) -> List[LineChange]:
    """Turn one unified diff block into add/delete records with new-file line numbers.

    Deletions are recorded at the running counter without advancing it, so
    consecutive deleted lines share a number. Context lines advance the counter
    but are not recorded. A hunk header without a ``+<n>`` group is skipped
    along with its body.
    """

    changes: List[LineChange] = []
    line_number = 0
    in_hunk = False

    for line in diff_text.split("\n"):
        line = line.removesuffix("\r")
        if line.startswith("@@"):
            match = _HUNK_NEW_START.search(line)
            if match:
                line_number = int(match.group(1))
                in_hunk = True
            else:
                logger.debug(f"Skipping hunk without new-file start: {line!r}")
                in_hunk = False
            continue

        if not in_hunk:
            continue

        if line.startswith("+") and not line.startswith("+++"):
            changes.append(LineChange(ChangeKind.ADD, line_number, line[1:]))
            line_number += 1
        elif line.startswith("-") and not line.startswith("---"):
            changes.append(LineChange(ChangeKind.DELETE, line_number, line[1:]))
        elif line.startswith("\\"):
            continue
        else:
            line_number += 1

    return changes


def parse_file_change(meta: Dict[str, Any], diff_text: str | None = None) -> FileChange:
    """Build a FileChange from a GitLab change entry.

    ``diff_text`` defaults to the entry's ``diff`` field. Deleted files are
    never reviewed, so they always come back with no line changes.
    """

    if diff_text is None:
        diff_text = meta.get("diff") or ""

    old_path = meta.get("old_path") or meta.get("new_path") or ""
    new_path = meta.get("new_path") or old_path
    is_deleted = bool(meta.get("deleted_file"))

    line_changes = () if is_deleted else tuple(parse_line_changes(diff_text))

    return FileChange(
        old_path=old_path,
        new_path=new_path,
        is_new=bool(meta.get("new_file")),
        is_deleted=is_deleted,
        is_renamed=bool(meta.get("renamed_file")),
        raw_diff=diff_text or None,
        line_changes=line_changes,
    )


def build_change_set(entries: Iterable[Dict[str, Any]]) -> ChangeSet:
    """Parse every GitLab change entry, preserving host order."""

    files: List[FileChange] = []
    skipped_count = 0
    for entry in entries:
        if not (entry.get("new_path") or entry.get("old_path")):
            logger.warning(f"Skipping change entry missing old_path/new_path: {entry}")
            skipped_count += 1
            continue
        files.append(parse_file_change(entry))
    if skipped_count > 0:
        logger.warning(f"Skipped {skipped_count} change entr(y/ies) without a path")
    logger.debug(f"Parsed {len(files)} file change(s)")
    return tuple(files)
