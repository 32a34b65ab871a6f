# history_ledger.py — Field-level audit trail for issues
# Take a snapshot before mutating, apply the change, then record_changes()
# appends one IssueHistory row per field that actually moved.
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from models import Issue, IssueHistory, utcnow

TRACKED_FIELDS = (
    "title",
    "summary",
    "description",
    "issue_type",
    "status",
    "story_points",
    "priority",
    "assignee_id",
    "due_date",
    "estimated_time",
    "actual_time",
    "environment",
    "labels",
    "sprint_id",
    "is_blocked",
    "blocked_reason",
)


@dataclass(frozen=True)
class FieldChange:
    field: str
    old_value: Any
    new_value: Any


def _normalise(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    if isinstance(value, (list, tuple)):
        return [_normalise(v) for v in value]
    return value


def snapshot(issue: Issue) -> Dict[str, Any]:
    """Capture the tracked fields of an issue as JSON-safe values."""
    return {field: _normalise(getattr(issue, field)) for field in TRACKED_FIELDS}


def diff(before: Mapping[str, Any], after: Mapping[str, Any]) -> List[FieldChange]:
    changes = []
    for field in TRACKED_FIELDS:
        old_value = before.get(field)
        new_value = after.get(field)
        if old_value != new_value:
            changes.append(FieldChange(field, old_value, new_value))
    return changes


def record_changes(
    issue: Issue,
    before: Mapping[str, Any],
    changed_by: Optional[str] = None,
) -> List[IssueHistory]:
    """Append history rows for every tracked field that differs from `before`.

    All rows of one call share a timestamp. Without an explicit actor the
    change is attributed to the issue's reporter.
    """
    actor = changed_by or issue.reporter_id
    changed_at = utcnow()
    entries = []
    for change in diff(before, snapshot(issue)):
        entry = IssueHistory(
            field=change.field,
            old_value=change.old_value,
            new_value=change.new_value,
            changed_by=actor,
            changed_at=changed_at,
        )
        issue.history.append(entry)
        entries.append(entry)
    return entries
