# routers/issues.py — Issue tracking endpoints (issues, comments, subtasks, attachments)
from datetime import datetime
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

import issue_lifecycle
from auth import get_current_user, CurrentUser
from database import get_db_session
from models import (
    Issue, IssueAttachment, IssueComment, IssueHistory, IssuePriority, IssueStatus,
    IssueType, Subtask, SubtaskComment,
)
from responses import success_response
from schemas import CommentCreate, IssueCreate, IssueUpdate, SubtaskCreate, SubtaskStatusUpdate
from storage import AttachmentStore, get_attachment_store

router = APIRouter(prefix="/api/v1/issues", tags=["Issues"])


# ============================================================
# HELPERS
# ============================================================

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, datetime) else str(dt)


def _comment_to_dict(c) -> Dict[str, Any]:
    return {
        "id": c.id,
        "user_id": c.user_id,
        "content": c.content,
        "created_at": _ts(c.created_at),
        "updated_at": _ts(c.updated_at),
    }


def _attachment_to_dict(a: IssueAttachment) -> Dict[str, Any]:
    return {
        "id": a.id,
        "file_name": a.file_name,
        "file_path": a.file_path,
        "file_type": a.file_type,
        "file_size": a.file_size,
        "uploaded_by": a.uploaded_by,
        "uploaded_at": _ts(a.uploaded_at),
    }


def _subtask_to_dict(s: Subtask) -> Dict[str, Any]:
    return {
        "id": s.id,
        "title": s.title,
        "description": s.description,
        "status": s.status.value,
        "reporter_id": s.reporter_id,
        "assignee_id": s.assignee_id,
        "due_date": _ts(s.due_date),
        "comments": [_comment_to_dict(c) for c in s.comments],
        "created_at": _ts(s.created_at),
        "updated_at": _ts(s.updated_at),
    }


def _history_to_dict(h: IssueHistory) -> Dict[str, Any]:
    return {
        "id": h.id,
        "field": h.field,
        "old_value": h.old_value,
        "new_value": h.new_value,
        "changed_by": h.changed_by,
        "changed_at": _ts(h.changed_at),
    }


def issue_to_dict(issue: Issue, detail: bool = True) -> Dict[str, Any]:
    out = {
        "id": issue.id,
        "issue_key": issue.issue_key,
        "project_id": issue.project_id,
        "title": issue.title,
        "summary": issue.summary,
        "description": issue.description,
        "issue_type": issue.issue_type.value,
        "status": issue.status.value,
        "priority": issue.priority.value,
        "story_points": issue.story_points,
        "reporter_id": issue.reporter_id,
        "assignee_id": issue.assignee_id,
        "due_date": _ts(issue.due_date),
        "estimated_time": issue.estimated_time,
        "actual_time": issue.actual_time,
        "environment": issue.environment,
        "labels": issue.labels or [],
        "sprint_id": issue.sprint_id,
        "is_blocked": issue.is_blocked,
        "blocked_reason": issue.blocked_reason,
        "created_at": _ts(issue.created_at),
        "updated_at": _ts(issue.updated_at),
    }
    if detail:
        out["attachments"] = [_attachment_to_dict(a) for a in issue.attachments]
        out["comments"] = [_comment_to_dict(c) for c in issue.comments]
        out["subtasks"] = [_subtask_to_dict(s) for s in issue.subtasks]
        out["history"] = [_history_to_dict(h) for h in issue.history]
    else:
        out["attachment_count"] = len(issue.attachments)
        out["comment_count"] = len(issue.comments)
        out["subtask_count"] = len(issue.subtasks)
    return out


# ============================================================
# ISSUE ENDPOINTS
# ============================================================

@router.post("", status_code=201)
async def create_issue(
    project_id: Optional[str] = Form(None),
    title: Optional[str] = Form(None),
    summary: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    issue_type: Optional[str] = Form(None),
    priority: Optional[str] = Form(None),
    story_points: Optional[str] = Form(None),
    assignee_id: Optional[str] = Form(None),
    sprint_id: Optional[str] = Form(None),
    due_date: Optional[str] = Form(None),
    estimated_time: Optional[str] = Form(None),
    environment: Optional[str] = Form(None),
    labels: Optional[str] = Form(None),
    attachments: Optional[List[UploadFile]] = File(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    store: AttachmentStore = Depends(get_attachment_store),
):
    """Create an issue, optionally with up to five attachments"""
    form = {
        "project_id": project_id,
        "title": title,
        "summary": summary,
        "description": description,
        "issue_type": issue_type,
        "priority": priority,
        "story_points": story_points,
        "assignee_id": assignee_id,
        "sprint_id": sprint_id,
        "due_date": due_date,
        "estimated_time": estimated_time,
        "environment": environment,
        "labels": labels,
    }
    # Empty form parts count as not sent
    try:
        data = IssueCreate(**{k: v for k, v in form.items() if v is not None and v.strip()})
    except PydanticValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False))
    # Browsers submit an empty part when no file is picked
    uploads = [f for f in (attachments or []) if f.filename]
    issue = await issue_lifecycle.create_issue(db, user, data, uploads, store)
    return success_response(
        "Issue created",
        "Issue has been created successfully",
        data=issue_to_dict(issue),
        details={"issue_id": issue.id, "issue_key": issue.issue_key},
        status_code=201,
    )


@router.get("")
async def list_issues(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    project_id: Optional[str] = None,
    assignee_id: Optional[str] = None,
    reporter_id: Optional[str] = None,
    status: Optional[IssueStatus] = None,
    priority: Optional[IssuePriority] = None,
    issue_type: Optional[IssueType] = None,
    sprint_id: Optional[str] = Query(default=None, description="Sprint id, or 'backlog'"),
    is_blocked: Optional[bool] = None,
    search: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
):
    """List issues of the company with optional filters, newest first"""
    filters = {
        "project_id": project_id,
        "assignee_id": assignee_id,
        "reporter_id": reporter_id,
        "status": status,
        "priority": priority,
        "issue_type": issue_type,
        "sprint_id": sprint_id,
        "is_blocked": is_blocked,
        "search": search,
    }
    issues, total = await issue_lifecycle.list_issues(db, user, filters, page, limit)
    return success_response(
        "Issues retrieved",
        "Issues list retrieved successfully",
        data={
            "items": [issue_to_dict(i, detail=False) for i in issues],
            "total": total,
            "page": page,
            "limit": limit,
        },
        details={"total_issues": total, "current_page": page, "total_pages": -(-total // limit)},
    )


@router.get("/{issue_id}")
async def get_issue(
    issue_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Get an issue with its comments, subtasks, attachments and history"""
    issue = await issue_lifecycle.get_issue(db, user, issue_id)
    return success_response(
        "Issue retrieved",
        "Issue details retrieved successfully",
        data=issue_to_dict(issue),
        details={"issue_id": issue.id},
    )


@router.patch("/{issue_id}")
async def update_issue(
    issue_id: str,
    updates: IssueUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Update allow-listed fields; every changed field is written to history"""
    issue, entries = await issue_lifecycle.update_issue(db, user, issue_id, updates)
    return success_response(
        "Issue updated",
        "Issue has been updated successfully",
        data=issue_to_dict(issue),
        details={"issue_id": issue.id, "changed_fields": [e.field for e in entries]},
    )


@router.delete("/{issue_id}")
async def delete_issue(
    issue_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    store: AttachmentStore = Depends(get_attachment_store),
):
    """Delete an issue (reporter or admin only)"""
    issue = await issue_lifecycle.delete_issue(db, user, issue_id, store)
    return success_response(
        "Issue deleted",
        "Issue has been deleted successfully",
        details={"issue_id": issue.id},
    )


# ============================================================
# COMMENTS & SUBTASKS
# ============================================================

@router.post("/{issue_id}/comments", status_code=201)
async def add_comment(
    issue_id: str,
    data: CommentCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    comment: IssueComment = await issue_lifecycle.add_comment(db, user, issue_id, data.content)
    return success_response(
        "Comment added",
        "Comment has been added successfully",
        data=_comment_to_dict(comment),
        details={"issue_id": issue_id, "comment_id": comment.id},
        status_code=201,
    )


@router.post("/{issue_id}/subtasks", status_code=201)
async def add_subtask(
    issue_id: str,
    data: SubtaskCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    subtask = await issue_lifecycle.add_subtask(db, user, issue_id, data)
    return success_response(
        "Subtask added",
        "Subtask has been added successfully",
        data=_subtask_to_dict(subtask),
        details={"issue_id": issue_id, "subtask_id": subtask.id},
        status_code=201,
    )


@router.patch("/{issue_id}/subtasks/{subtask_id}")
async def update_subtask_status(
    issue_id: str,
    subtask_id: str,
    data: SubtaskStatusUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    subtask = await issue_lifecycle.update_subtask_status(db, user, issue_id, subtask_id, data.status)
    return success_response(
        "Subtask updated",
        "Subtask status has been updated",
        data=_subtask_to_dict(subtask),
        details={"issue_id": issue_id, "subtask_id": subtask.id},
    )


@router.post("/{issue_id}/subtasks/{subtask_id}/comments", status_code=201)
async def add_subtask_comment(
    issue_id: str,
    subtask_id: str,
    data: CommentCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    comment: SubtaskComment = await issue_lifecycle.add_subtask_comment(
        db, user, issue_id, subtask_id, data.content,
    )
    return success_response(
        "Comment added",
        "Subtask comment has been added successfully",
        data=_comment_to_dict(comment),
        details={"issue_id": issue_id, "subtask_id": subtask_id, "comment_id": comment.id},
        status_code=201,
    )


# ============================================================
# ATTACHMENTS
# ============================================================

@router.post("/{issue_id}/attachments", status_code=201)
async def upload_attachment(
    issue_id: str,
    attachment: Optional[UploadFile] = File(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    store: AttachmentStore = Depends(get_attachment_store),
):
    record = await issue_lifecycle.upload_attachment(db, user, issue_id, attachment, store)
    return success_response(
        "Attachment uploaded",
        "Attachment has been uploaded successfully",
        data=_attachment_to_dict(record),
        details={"issue_id": issue_id, "attachment_id": record.id},
        status_code=201,
    )


@router.delete("/{issue_id}/attachments/{attachment_id}")
async def delete_attachment(
    issue_id: str,
    attachment_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    store: AttachmentStore = Depends(get_attachment_store),
):
    """Delete an attachment (uploader or admin only)"""
    record = await issue_lifecycle.delete_attachment(db, user, issue_id, attachment_id, store)
    return success_response(
        "Attachment deleted",
        "Attachment has been deleted successfully",
        details={"issue_id": issue_id, "attachment_id": record.id, "file_name": record.file_name},
    )
