"""
Campaign Gate - Export Preflight Gate

Decides which activity rows may leave the system for the external
project-management tool. All-or-nothing: one owner whose export identity
does not equal "{first} {last}" blocks the whole export call, and every
failing identity is reported together so they can be fixed in one pass.

Pure and synchronous over already-fetched data. Writing the rows to a
workbook is someone else's job and only happens on success.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..core.dates import format_day, utcnow
from ..core.models import Actor

logger = logging.getLogger(__name__)

APPROVED_STATUS = "approved"

EXPORT_COLUMNS = ("Task Title", "Assignee", "Start", "Due", "Channel")


@dataclass(frozen=True)
class ExportRow:
    """One task row for the external system."""
    title: str
    assignee_identity: str
    start: str
    due: str
    channel: str

    def to_sheet_row(self) -> Dict[str, str]:
        """Row keyed by the export column headers."""
        return dict(zip(
            EXPORT_COLUMNS,
            (self.title, self.assignee_identity, self.start, self.due, self.channel),
        ))


@dataclass
class ExportResult:
    """Outcome of a preflight run. ``rows`` is None on failure."""
    success: bool
    rows: Optional[List[ExportRow]] = None
    errors: Optional[List[str]] = None
    invalid_users: Optional[List[str]] = None
    sheets: Optional[Dict[str, List[ExportRow]]] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.rows is not None:
            result["rows"] = [row.to_sheet_row() for row in self.rows]
        if self.errors is not None:
            result["errors"] = list(self.errors)
        if self.invalid_users is not None:
            result["invalidUsers"] = list(self.invalid_users)
        if self.sheets is not None:
            result["sheets"] = {
                label: [row.to_sheet_row() for row in rows]
                for label, rows in self.sheets.items()
            }
        return result


def identity_problem(actor: Actor) -> Optional[str]:
    """Human-readable mismatch message, or None when the identity is valid."""
    if actor.has_valid_wrike_name:
        return None
    return (
        f"{actor.display_name} ({actor.email}): "
        f'expected "{actor.expected_wrike_name}", got "{actor.wrike_name}"'
    )


def validate_export_identities(actors: Iterable[Actor]) -> Tuple[List[Actor], List[Actor]]:
    """
    Partition actors by export identity validity.

    Returns:
        (valid, invalid)
    """
    valid: List[Actor] = []
    invalid: List[Actor] = []
    for actor in actors:
        (valid if actor.has_valid_wrike_name else invalid).append(actor)
    return valid, invalid


def _activity_title(activity: Mapping[str, Any]) -> str:
    packet = activity.get("contentPacket") or {}
    subject = packet.get("subjectLine")
    if subject:
        return subject
    return f"{activity.get('channel', '')} Activity"


def export_period(
    period_label: str,
    period_data: Mapping[str, Any],
    actors_by_id: Mapping[str, Actor],
    approved_status: str = APPROVED_STATUS,
) -> ExportResult:
    """
    Preflight a single period's activities.

    Args:
        period_label: Sheet name for the period (e.g. "Monday")
        period_data: {"date": ..., "activities": [...]}
        actors_by_id: Resolved owners keyed by user id
        approved_status: Activity status eligible for export

    Returns:
        ExportResult with rows only when every check passed
    """
    activities = period_data.get("activities") or []
    approved = [a for a in activities if a.get("status") == approved_status]

    if not approved:
        return ExportResult(success=False, errors=["No approved activities to export"])

    day = format_day(period_data.get("date")) or utcnow().date().isoformat()

    errors: List[str] = []
    invalid_users: List[str] = []
    rows: List[ExportRow] = []

    for activity in approved:
        owner_id = activity.get("ownerUid")
        owner = actors_by_id.get(owner_id) if owner_id else None

        if owner is None:
            errors.append(
                f"User not found for activity {activity.get('activityId')}: {owner_id}"
            )
            continue

        problem = identity_problem(owner)
        if problem is not None:
            invalid_users.append(problem)
            continue

        rows.append(ExportRow(
            title=_activity_title(activity),
            assignee_identity=owner.wrike_name,
            start=day,
            due=day,
            channel=activity.get("channel", ""),
        ))

    if invalid_users:
        logger.warning(
            f"Export of {period_label} blocked: {len(invalid_users)} invalid identities"
        )
        return ExportResult(
            success=False,
            errors=[f"Invalid wrikeName format for {len(invalid_users)} user(s)"],
            invalid_users=invalid_users,
        )

    if errors:
        return ExportResult(success=False, errors=errors)

    if not rows:
        return ExportResult(
            success=False,
            errors=["No valid activities to export after validation"],
        )

    logger.debug(f"Export of {period_label} passed preflight with {len(rows)} rows")
    return ExportResult(success=True, rows=rows)


def export_multi_period(
    periods: Mapping[str, Mapping[str, Any]],
    actors_by_id: Mapping[str, Actor],
    approved_status: str = APPROVED_STATUS,
) -> ExportResult:
    """
    Preflight several periods as one batch.

    Any identity failure in any period fails the whole batch, with the
    failing users deduplicated across periods. Every other per-period
    error, including a period with nothing approved, also fails it.

    Returns:
        ExportResult with one sheet per exported period and the flattened rows
    """
    all_errors: List[str] = []
    all_invalid: List[str] = []
    sheets: Dict[str, List[ExportRow]] = {}

    for label, period in periods.items():
        result = export_period(label, period, actors_by_id, approved_status)

        if not result.success:
            all_errors.extend(result.errors or [])
            all_invalid.extend(result.invalid_users or [])
            continue

        if result.rows:
            sheets[label] = result.rows

    if all_invalid:
        unique = list(dict.fromkeys(all_invalid))
        logger.warning(f"Batch export blocked: {len(unique)} invalid identities")
        return ExportResult(
            success=False,
            errors=[
                f"Invalid wrikeName format for {len(unique)} user(s) across all periods"
            ],
            invalid_users=unique,
        )

    if all_errors:
        return ExportResult(success=False, errors=all_errors)

    if not sheets:
        return ExportResult(
            success=False,
            errors=["No approved activities found for any period"],
        )

    rows = [row for period_rows in sheets.values() for row in period_rows]
    return ExportResult(success=True, rows=rows, sheets=sheets)


def preview_export(
    period_label: str,
    period_data: Mapping[str, Any],
    actors_by_id: Mapping[str, Actor],
) -> Dict[str, Any]:
    """
    Show what a period export would produce without blocking.

    Returns:
        {"preview": [sheet rows], "warnings": [...], "invalidUsers": [...]}
    """
    result = export_period(period_label, period_data, actors_by_id)
    return {
        "preview": [row.to_sheet_row() for row in result.rows or []],
        "warnings": list(result.errors or []),
        "invalidUsers": list(result.invalid_users or []),
    }


__all__ = [
    "EXPORT_COLUMNS",
    "ExportResult",
    "ExportRow",
    "export_multi_period",
    "export_period",
    "identity_problem",
    "preview_export",
    "validate_export_identities",
]
