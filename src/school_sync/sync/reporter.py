"""Report and listing formatting functions.

Provides human-readable and machine-readable output for the CLI:

- ``format_sync_report`` -- full post-reconciliation summary.
- ``format_users`` / ``format_progress`` -- cached record listings.
- ``format_status`` -- queue and pending-record counts.
- ``report_to_json`` / ``records_to_json`` -- structured dicts for ``--json``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .models import OperationKind

if TYPE_CHECKING:
    from pydantic import BaseModel

    from .models import ProgressEntry, SyncReport, User

_KIND_LABELS = {
    OperationKind.CREATE_USER: "user",
    OperationKind.CREATE_PROGRESS: "progress",
}

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_report(report: SyncReport) -> str:
    """Format a reconciliation report as human-readable text.

    Sections are only included when they contain at least one item.

    Args:
        report: The completed sync report.

    Returns:
        Multi-line formatted string.
    """
    if report.skipped:
        return "Sync skipped: offline or another sync is running"

    lines: list[str] = []
    lines.append("Sync report")
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    lines.append(
        f"Sent {len(report.resolved)} queued write(s), "
        f"discarded {report.discarded}, "
        f"{report.remaining} still queued"
    )
    lines.append("")

    if report.resolved:
        lines.append("Resolved:")
        for op in report.resolved:
            label = _KIND_LABELS.get(op.kind, op.kind.value)
            lines.append(
                f"  #{op.sequence} {label} {op.temp_id} -> {op.real_id}"
            )
        lines.append("")

    if report.halted:
        lines.append(f"Halted: {report.error or 'unknown error'}")
        lines.append("Remaining writes will be retried on the next sync.")
        lines.append("")

    if report.refreshed:
        lines.append("Caches refreshed from server.")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Listings
# ------------------------------------------------------------------


def _pending_marker(pending: bool) -> str:
    return " (pending)" if pending else ""


def format_users(users: list[User]) -> str:
    """One line per user: ``id  name``."""
    if not users:
        return "No users cached."
    width = max(len(str(u.id)) for u in users)
    return "\n".join(
        f"{u.id:>{width}}  {u.name}{_pending_marker(u.pending)}"
        for u in users
    )


def format_progress(entries: list[ProgressEntry]) -> str:
    """One line per entry: ``id  user  lesson  score  created_at``."""
    if not entries:
        return "No progress cached."
    lines = []
    for e in entries:
        who = e.user.name if e.user is not None else f"user {e.user_id}"
        lines.append(
            f"{e.id}  {who}  {e.lesson}  {e.score}  "
            f"{e.created_at or '-'}{_pending_marker(e.pending)}"
        )
    return "\n".join(lines)


def format_status(
    queued: int, pending_users: int, pending_progress: int, online: bool
) -> str:
    """Summarise what is still waiting for the server."""
    return "\n".join(
        [
            f"Mode:             {'online' if online else 'offline'}",
            f"Queued writes:    {queued}",
            f"Pending users:    {pending_users}",
            f"Pending progress: {pending_progress}",
        ]
    )


# ------------------------------------------------------------------
# JSON serialisation
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict[str, Any]:
    """Convert a ``SyncReport`` to a JSON-serialisable dict.

    Returns:
        Dict with ``summary`` counts plus the full report fields.
    """
    data = report.model_dump(mode="json")
    data["summary"] = {
        "sent": len(report.resolved),
        "discarded": report.discarded,
        "remaining": report.remaining,
        "halted": report.halted,
    }
    return data


def records_to_json(records: list[BaseModel]) -> list[dict[str, Any]]:
    """Dump cached records for ``--json`` output."""
    return [r.model_dump(mode="json") for r in records]
