# tests/test_history_ledger.py — Snapshot/diff audit trail tests
from datetime import datetime, timezone

from history_ledger import TRACKED_FIELDS, FieldChange, diff, record_changes, snapshot
from models import Issue, IssuePriority, IssueStatus, IssueType


def _issue(**overrides) -> Issue:
    fields = dict(
        id="issue-1",
        project_id="project-1",
        title="Login fails",
        summary="Login fails",
        issue_type=IssueType.BUG,
        status=IssueStatus.OPEN,
        priority=IssuePriority.MEDIUM,
        reporter_id="reporter-1",
        labels=["auth"],
        is_blocked=False,
        history=[],
    )
    fields.update(overrides)
    return Issue(**fields)


def test_snapshot_normalises_values():
    due = datetime(2025, 3, 1, 12, 0)
    issue = _issue(due_date=due)
    snap = snapshot(issue)
    assert set(snap) == set(TRACKED_FIELDS)
    assert snap["status"] == "open"
    assert snap["issue_type"] == "bug"
    assert snap["due_date"] == "2025-03-01T12:00:00+00:00"
    assert snap["labels"] == ["auth"]


def test_snapshot_copies_lists():
    issue = _issue()
    snap = snapshot(issue)
    issue.labels.append("ui")
    assert snap["labels"] == ["auth"]


def test_diff_reports_only_changed_fields():
    before = snapshot(_issue())
    after = dict(before, status="in_progress", story_points=5)
    changes = diff(before, after)
    assert changes == [
        FieldChange("status", "open", "in_progress"),
        FieldChange("story_points", None, 5),
    ]


def test_diff_treats_naive_and_utc_datetimes_as_equal():
    before = snapshot(_issue(due_date=datetime(2025, 3, 1)))
    after = snapshot(_issue(due_date=datetime(2025, 3, 1, tzinfo=timezone.utc)))
    assert diff(before, after) == []


def test_record_changes_appends_one_entry_per_changed_field():
    issue = _issue()
    before = snapshot(issue)
    issue.status = IssueStatus.IN_PROGRESS
    issue.labels = ["auth", "backend"]
    issue.title = "Login fails"  # unchanged

    entries = record_changes(issue, before, changed_by="editor-1")

    assert [e.field for e in entries] == ["status", "labels"]
    assert entries[0].old_value == "open"
    assert entries[0].new_value == "in_progress"
    assert entries[1].old_value == ["auth"]
    assert entries[1].new_value == ["auth", "backend"]
    assert all(e.changed_by == "editor-1" for e in entries)
    assert len({e.changed_at for e in entries}) == 1
    assert issue.history == entries


def test_record_changes_defaults_actor_to_reporter():
    issue = _issue()
    before = snapshot(issue)
    issue.priority = IssuePriority.HIGH
    entries = record_changes(issue, before)
    assert len(entries) == 1
    assert entries[0].changed_by == "reporter-1"


def test_record_changes_without_changes_writes_nothing():
    issue = _issue()
    before = snapshot(issue)
    assert record_changes(issue, before, changed_by="editor-1") == []
    assert issue.history == []
