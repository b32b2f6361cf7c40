"""Morning report text for a finished batch.

Labels and section order are read back by pattern matching downstream, so
they are kept stable.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from datetime import datetime

from nightcrew.core.models import ExecutionResult, SafetyCommitResult

REPORT_TITLE = "# NightCrew Morning Report"
REVIEW_NOTE = "Changes are on nightmode/ branches. Review and merge at your convenience."
ERROR_PREVIEW_CHARS = 200
SHORT_HASH_CHARS = 8


def render_morning_report(
    results: Sequence[ExecutionResult],
    safety_commits: Sequence[SafetyCommitResult] | None = None,
    *,
    now: datetime,
) -> str:
    """Build the markdown report for one batch.

    Review hints name the branch each commit actually went to.
    """

    succeeded = [item for item in results if item.success]
    failed = [item for item in results if not item.success]
    skipped = [item for item in failed if _router_skipped(item)]
    total_cost = sum(item.execution.cost_usd_cents for item in results)
    total_tokens = sum(item.execution.total_tokens for item in results)
    total_duration_ms = sum(item.execution.duration_ms for item in results)

    lines = [
        REPORT_TITLE,
        f"Date: {format_report_date(now)}",
        "",
        "## Summary",
        f"- Tasks executed: {len(results)}",
        f"- Succeeded: {len(succeeded)}",
        f"- Failed: {len(failed)}",
        f"- Total cost: {format_usd(total_cost)}",
        f"- Total tokens: {total_tokens:,}",
        f"- Total duration: {math.floor(total_duration_ms / 60_000 + 0.5)} minutes",
        "",
    ]

    if succeeded:
        lines.append("## Completed Tasks")
        for item in succeeded:
            model_label = f" [{item.model_choice.model}]" if item.model_choice else ""
            lines.append(
                f"- [{item.task.project_name}]{model_label} {item.task.title} "
                f"({format_usd(item.execution.cost_usd_cents)})",
            )
            if item.execution.commit_hash:
                lines.append(
                    f"  Branch: {item.execution.branch} | "
                    f"Commit: {item.execution.commit_hash[:SHORT_HASH_CHARS]}",
                )
        lines.append("")

    if skipped:
        lines.append("## Skipped Tasks (low success rate)")
        for item in skipped:
            lines.append(f"- [{item.task.project_name}] {item.task.title}")
            lines.append(f"  {item.model_choice.reason if item.model_choice else ''}")
        lines.append("")

    attempted_failures = [item for item in failed if not _router_skipped(item)]
    if attempted_failures:
        lines.append("## Failed Tasks")
        for item in attempted_failures:
            lines.append(f"- [{item.task.project_name}] {item.task.title}")
            if item.error:
                lines.append(f"  Error: {item.error[:ERROR_PREVIEW_CHARS]}")
        lines.append("")

    saved = [item for item in safety_commits or () if not item.skipped]
    if saved:
        lines.append("## Pre-flight Safety Commits")
        for item in saved:
            short_hash = (item.commit_hash or "")[:SHORT_HASH_CHARS]
            lines.append(f"- {item.project_path} ({item.branch}) → {short_hash}")
        lines.append("")

    lines.append("## Review")
    lines.append(REVIEW_NOTE)
    targets = dict.fromkeys((item.task.project_path, item.execution.branch) for item in succeeded)
    for project, branch in targets:
        lines.append(f"Project: {project} | Branch: {branch}")
        lines.append(f"  git -C {project} log --oneline {branch}")

    return "\n".join(lines)


def format_usd(cents: int) -> str:
    return f"${cents / 100:.2f}"


def format_report_date(now: datetime) -> str:
    """Long English date, e.g. `Saturday, October 17, 2026`."""

    return f"{now:%A}, {now:%B} {now.day}, {now.year}"


def _router_skipped(result: ExecutionResult) -> bool:
    return result.model_choice is not None and result.model_choice.skipped
