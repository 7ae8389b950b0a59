"""Sync summary formatting functions.

Provides human-readable and machine-readable output for a sync pass:

- ``format_sync_summary`` -- multi-line post-sync report.
- ``summary_to_json`` -- structured dict for ``--json`` output.
"""

from __future__ import annotations

from typing import Any

from .models import SyncSummary

_ROWS = (
    ("Pulled", "pulled"),
    ("Pushed", "pushed"),
    ("Merged", "merged"),
    ("Deleted remotely", "deleted_remote"),
    ("Deleted locally", "deleted_local"),
)


def format_sync_summary(summary: SyncSummary, target: str = "") -> str:
    """Format a sync summary as human-readable text.

    Rows with a zero count are omitted.  Skipped files are reported on
    their own line since they still need attention.

    Args:
        summary: The summary returned by a sync pass.
        target: Optional ``owner/repo@branch`` label for the header.

    Returns:
        Multi-line formatted string.
    """
    header = "Sync report"
    if target:
        header += f" for {target}"
    lines = [header, summary.summary()]

    if not summary.is_empty:
        lines.append("")
        width = max(len(label) for label, _ in _ROWS)
        for label, attr in _ROWS:
            count = getattr(summary, attr)
            if count:
                lines.append(f"  {label:<{width}}  {count}")

    if summary.skipped:
        lines.append("")
        lines.append(f"Skipped: {summary.skipped} file(s), see log for details")

    return "\n".join(lines)


def summary_to_json(summary: SyncSummary) -> dict[str, Any]:
    """Convert a sync summary to a JSON-serialisable dict.

    Returns:
        Dict with one key per counter plus ``total`` and ``message``.
    """
    data: dict[str, Any] = summary.model_dump()
    data["total"] = summary.total
    data["message"] = summary.summary()
    return data
