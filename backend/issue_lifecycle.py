# issue_lifecycle.py — Issue creation, updates and nested sub-resources
# Each operation validates the whole request first, then mutates and commits
# once. Field updates go through the history ledger; comments, subtasks and
# attachments do not.
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from fastapi import UploadFile
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser, is_admin
from errors import InvalidInputError, NotFoundError, PermissionDeniedError
from history_ledger import record_changes, snapshot
from models import (
    Issue, IssueAttachment, IssueComment, IssueHistory, IssueStatus,
    Project, Sprint, Subtask, SubtaskComment, SubtaskStatus,
)
from project_directory import get_company_user, get_project, require_access
from schemas import IssueCreate, IssueUpdate, SubtaskCreate
from storage import AttachmentStore, ISSUE_ATTACHMENT_POLICY, StoredFile
from validators import like_pattern

logger = logging.getLogger("issue-tracker.issues")

ATTACHMENT_NAMESPACE = "issues"
BACKLOG = "backlog"


# ============================================================
# LOOKUPS
# ============================================================

async def get_issue(db: AsyncSession, actor: CurrentUser, issue_id: str, refresh: bool = False) -> Issue:
    """Fetch an issue of the actor's company with all of its children."""
    stmt = (
        select(Issue)
        .join(Project, Project.id == Issue.project_id)
        .where(Issue.id == issue_id, Project.company_id == actor.company_id)
    )
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    issue = (await db.execute(stmt)).scalar_one_or_none()
    if not issue:
        raise NotFoundError(
            "The requested issue could not be found",
            error_type="Issue not found",
            details={"issue_id": issue_id},
        )
    return issue


async def _get_for_mutation(db: AsyncSession, actor: CurrentUser, issue_id: str) -> Issue:
    issue = await get_issue(db, actor, issue_id)
    project = await get_project(db, actor, issue.project_id)
    require_access(project, actor)
    return issue


def _get_subtask(issue: Issue, subtask_id: str) -> Subtask:
    for subtask in issue.subtasks:
        if subtask.id == subtask_id:
            return subtask
    raise NotFoundError(
        "The requested subtask could not be found",
        error_type="Subtask not found",
        details={"issue_id": issue.id, "subtask_id": subtask_id},
    )


async def _resolve_assignee(db: AsyncSession, actor: CurrentUser, assignee_id: Any) -> Optional[str]:
    if assignee_id in (None, ""):
        return None
    assignee = await get_company_user(db, actor.company_id, assignee_id)
    if not assignee:
        raise NotFoundError(
            "The assigned user is not valid or does not belong to your company",
            error_type="Invalid assignee",
            details={"assignee_id": assignee_id},
        )
    return assignee.id


async def _resolve_sprint(db: AsyncSession, project_id: str, sprint_id: Any) -> Optional[str]:
    """None or "" puts the issue in the backlog."""
    if sprint_id in (None, ""):
        return None
    stmt = select(Sprint.id).where(Sprint.id == sprint_id, Sprint.project_id == project_id)
    if not (await db.execute(stmt)).scalar_one_or_none():
        raise NotFoundError(
            "The sprint does not exist in this project",
            error_type="Sprint not found",
            details={"sprint_id": sprint_id},
        )
    return sprint_id


# ============================================================
# ISSUES
# ============================================================

async def list_issues(
    db: AsyncSession, actor: CurrentUser, filters: Dict[str, Any],
    page: int = 1, limit: int = 10,
) -> Tuple[List[Issue], int]:
    stmt = (
        select(Issue)
        .join(Project, Project.id == Issue.project_id)
        .where(Project.company_id == actor.company_id)
    )
    if filters.get("project_id"):
        stmt = stmt.where(Issue.project_id == filters["project_id"])
    if filters.get("assignee_id"):
        stmt = stmt.where(Issue.assignee_id == filters["assignee_id"])
    if filters.get("reporter_id"):
        stmt = stmt.where(Issue.reporter_id == filters["reporter_id"])
    if filters.get("status"):
        stmt = stmt.where(Issue.status == filters["status"])
    if filters.get("priority"):
        stmt = stmt.where(Issue.priority == filters["priority"])
    if filters.get("issue_type"):
        stmt = stmt.where(Issue.issue_type == filters["issue_type"])
    if filters.get("sprint_id") == BACKLOG:
        stmt = stmt.where(Issue.sprint_id.is_(None))
    elif filters.get("sprint_id"):
        stmt = stmt.where(Issue.sprint_id == filters["sprint_id"])
    if filters.get("is_blocked") is not None:
        stmt = stmt.where(Issue.is_blocked == filters["is_blocked"])
    if filters.get("search"):
        pattern = like_pattern(filters["search"])
        stmt = stmt.where(or_(
            Issue.title.ilike(pattern, escape="\\"),
            Issue.summary.ilike(pattern, escape="\\"),
            Issue.description.ilike(pattern, escape="\\"),
        ))

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
    stmt = stmt.order_by(Issue.created_at.desc()).offset((page - 1) * limit).limit(limit)
    issues = (await db.execute(stmt)).scalars().all()
    return list(issues), total


async def _store_uploads(
    uploads: Sequence[UploadFile], store: AttachmentStore,
) -> List[StoredFile]:
    """Store every upload or none of them."""
    stored: List[StoredFile] = []
    try:
        for upload in uploads:
            stored.append(await store.save(upload, ISSUE_ATTACHMENT_POLICY, ATTACHMENT_NAMESPACE))
    except Exception:
        for f in stored:
            await store.remove(f.file_path)
        raise
    return stored


async def create_issue(
    db: AsyncSession,
    actor: CurrentUser,
    data: IssueCreate,
    uploads: Optional[Sequence[UploadFile]] = None,
    store: Optional[AttachmentStore] = None,
) -> Issue:
    uploads = list(uploads or [])

    project = await get_project(db, actor, data.project_id)
    require_access(project, actor)

    fields = data.model_dump(exclude={"project_id", "assignee_id", "sprint_id"})
    fields["summary"] = data.summary or data.title
    fields["assignee_id"] = await _resolve_assignee(db, actor, data.assignee_id)
    fields["sprint_id"] = await _resolve_sprint(db, project.id, data.sprint_id)

    if uploads:
        if store is None:
            raise InvalidInputError("Attachments cannot be stored", error_type="File upload failed")
        store.check_count(len(uploads), ISSUE_ATTACHMENT_POLICY)
        for upload in uploads:
            store.check(upload, ISSUE_ATTACHMENT_POLICY, size=upload.size)
    stored = await _store_uploads(uploads, store) if uploads else []

    issue = Issue(
        project_id=project.id,
        status=IssueStatus.OPEN,
        reporter_id=actor.id,
        attachments=[
            IssueAttachment(
                file_name=f.file_name,
                file_path=f.file_path,
                file_type=f.file_type,
                file_size=f.file_size,
                uploaded_by=actor.id,
            )
            for f in stored
        ],
        **fields,
    )
    db.add(issue)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        for f in stored:
            await store.remove(f.file_path)
        raise

    issue = await get_issue(db, actor, issue.id, refresh=True)
    logger.info(f"Issue created: {issue.issue_key} ({issue.id}) project={project.key} attachments={len(stored)}")
    return issue


async def update_issue(
    db: AsyncSession, actor: CurrentUser, issue_id: str, updates: IssueUpdate,
) -> Tuple[Issue, List[IssueHistory]]:
    """Apply the fields the client sent and record one history row per changed field."""
    issue = await _get_for_mutation(db, actor, issue_id)

    changes: Dict[str, Any] = updates.changes()
    if "assignee_id" in changes:
        changes["assignee_id"] = await _resolve_assignee(db, actor, changes["assignee_id"])
    if "sprint_id" in changes:
        changes["sprint_id"] = await _resolve_sprint(db, issue.project_id, changes["sprint_id"])

    before = snapshot(issue)
    for field, value in changes.items():
        setattr(issue, field, value)
    entries = record_changes(issue, before, changed_by=actor.id)
    await db.commit()

    logger.info(f"Issue updated: {issue.id} changed={[e.field for e in entries]}")
    return await get_issue(db, actor, issue.id, refresh=True), entries


async def delete_issue(db: AsyncSession, actor: CurrentUser, issue_id: str, store: AttachmentStore) -> Issue:
    issue = await get_issue(db, actor, issue_id)
    if issue.reporter_id != actor.id and not is_admin(actor):
        logger.warning(f"Issue delete denied: user={actor.id} issue={issue.id}")
        raise PermissionDeniedError(
            "Only the reporter or an admin can delete this issue",
            error_type="Permission denied",
            details={"issue_id": issue.id},
        )

    for attachment in issue.attachments:
        await store.remove(attachment.file_path)
    await db.delete(issue)
    await db.commit()
    logger.info(f"Issue deleted: {issue.issue_key} ({issue.id}) by {actor.id}")
    return issue


# ============================================================
# COMMENTS & SUBTASKS
# ============================================================

async def add_comment(db: AsyncSession, actor: CurrentUser, issue_id: str, content: str) -> IssueComment:
    issue = await _get_for_mutation(db, actor, issue_id)

    comment = IssueComment(user_id=actor.id, content=content)
    issue.comments.append(comment)
    await db.commit()
    return comment


async def add_subtask(db: AsyncSession, actor: CurrentUser, issue_id: str, data: SubtaskCreate) -> Subtask:
    issue = await _get_for_mutation(db, actor, issue_id)
    assignee_id = await _resolve_assignee(db, actor, data.assignee_id)

    subtask = Subtask(
        title=data.title,
        description=data.description or None,
        status=SubtaskStatus.OPEN,
        reporter_id=actor.id,
        assignee_id=assignee_id,
        due_date=data.due_date,
        comments=[],
    )
    issue.subtasks.append(subtask)
    await db.commit()
    return subtask


async def update_subtask_status(
    db: AsyncSession, actor: CurrentUser, issue_id: str, subtask_id: str, status: SubtaskStatus,
) -> Subtask:
    issue = await _get_for_mutation(db, actor, issue_id)
    subtask = _get_subtask(issue, subtask_id)
    subtask.status = status
    await db.commit()
    return subtask


async def add_subtask_comment(
    db: AsyncSession, actor: CurrentUser, issue_id: str, subtask_id: str, content: str,
) -> SubtaskComment:
    issue = await _get_for_mutation(db, actor, issue_id)
    subtask = _get_subtask(issue, subtask_id)

    comment = SubtaskComment(user_id=actor.id, content=content)
    subtask.comments.append(comment)
    await db.commit()
    return comment


# ============================================================
# ATTACHMENTS
# ============================================================

async def upload_attachment(
    db: AsyncSession, actor: CurrentUser, issue_id: str,
    upload: Optional[UploadFile], store: AttachmentStore,
) -> IssueAttachment:
    if upload is None or not upload.filename:
        raise InvalidInputError("Please upload a file", error_type="Attachment required")
    issue = await _get_for_mutation(db, actor, issue_id)

    stored = await store.save(upload, ISSUE_ATTACHMENT_POLICY, ATTACHMENT_NAMESPACE)
    attachment = IssueAttachment(
        file_name=stored.file_name,
        file_path=stored.file_path,
        file_type=stored.file_type,
        file_size=stored.file_size,
        uploaded_by=actor.id,
    )
    issue.attachments.append(attachment)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        await store.remove(stored.file_path)
        raise
    return attachment


async def delete_attachment(
    db: AsyncSession, actor: CurrentUser, issue_id: str, attachment_id: str, store: AttachmentStore,
) -> IssueAttachment:
    issue = await get_issue(db, actor, issue_id)
    attachment = next((a for a in issue.attachments if a.id == attachment_id), None)
    if not attachment:
        raise NotFoundError(
            "The requested attachment could not be found",
            error_type="Attachment not found",
            details={"issue_id": issue.id, "attachment_id": attachment_id},
        )
    if attachment.uploaded_by != actor.id and not is_admin(actor):
        logger.warning(f"Attachment delete denied: user={actor.id} attachment={attachment.id}")
        raise PermissionDeniedError(
            "Only the uploader or an admin can delete this attachment",
            error_type="Permission denied",
            details={"attachment_id": attachment.id},
        )

    # Stored file goes before its metadata row
    await store.remove(attachment.file_path)
    issue.attachments.remove(attachment)
    await db.commit()
    return attachment
