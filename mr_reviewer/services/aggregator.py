"""Merge per-batch findings and render them for GitLab."""

from __future__ import annotations

from typing import Dict, Iterable, List, Sequence

from mr_reviewer.models.review import Finding, ReviewSummary, Severity, SeverityCounts

DEFAULT_INLINE_LIMIT = 10

SEVERITY_ORDER = (Severity.ERROR, Severity.WARNING, Severity.INFO)

_SEVERITY_LABELS: Dict[Severity, str] = {
    Severity.ERROR: "❌ Error",
    Severity.WARNING: "⚠️ Warning",
    Severity.INFO: "ℹ️ Info",
}

PASSED_MESSAGE = "✅ Code review passed, no coding-standard violations found."


def aggregate(finding_batches: Iterable[Sequence[Finding]]) -> ReviewSummary:
    """Concatenate batch results in order and count them by severity.

    Duplicates across batches are kept.
    """

    findings: List[Finding] = []
    for batch in finding_batches:
        findings.extend(batch)

    counts = SeverityCounts(
        errors=sum(1 for f in findings if f.severity is Severity.ERROR),
        warnings=sum(1 for f in findings if f.severity is Severity.WARNING),
        infos=sum(1 for f in findings if f.severity is Severity.INFO),
    )
    return ReviewSummary(findings=tuple(findings), counts=counts)


def select_inline(summary: ReviewSummary, limit: int = DEFAULT_INLINE_LIMIT) -> List[Finding]:
    """First ``limit`` error findings in discovery order."""

    if limit <= 0:
        return []
    selected: List[Finding] = []
    for finding in summary.findings:
        if finding.severity is not Severity.ERROR:
            continue
        selected.append(finding)
        if len(selected) >= limit:
            break
    return selected


def sorted_by_severity(findings: Iterable[Finding]) -> List[Finding]:
    rank = {severity: position for position, severity in enumerate(SEVERITY_ORDER)}
    return sorted(findings, key=lambda finding: rank[finding.severity])


def _escape_cell(value: str) -> str:
    return " ".join(value.split()).replace("|", "\\|")


def render_summary(summary: ReviewSummary) -> str:
    """Markdown note with severity counts and a findings table."""

    if not summary.findings:
        return PASSED_MESSAGE

    counts = summary.counts
    lines = [
        "## 🤖 AI Code Review Results",
        "",
        f"Found {summary.total} issue(s) in total:",
        f"- ❌ Errors: {counts.errors}",
        f"- ⚠️ Warnings: {counts.warnings}",
        f"- ℹ️ Info: {counts.infos}",
        "",
        "| File | Line | Type | Message | Suggestion |",
        "|------|------|------|---------|------------|",
    ]
    for finding in sorted_by_severity(summary.findings):
        lines.append(
            f"| {_escape_cell(finding.file)} | {finding.line} | {_SEVERITY_LABELS[finding.severity]} "
            f"| {_escape_cell(finding.message)} | {_escape_cell(finding.suggestion or 'None')} |"
        )
    return "\n".join(lines) + "\n"


def render_inline_body(finding: Finding) -> str:
    parts = [f"❌ **{finding.rule or 'Coding standard'}**"]
    if finding.message != finding.rule:
        parts.append(finding.message)
    if finding.suggestion:
        parts.append(f"💡 **Suggestion**: {finding.suggestion}")
    return "\n\n".join(parts)
