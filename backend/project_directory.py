# project_directory.py — Project ownership, membership and cascades
# Every lookup is scoped to the actor's company; a project from another
# company is reported as missing rather than forbidden.
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from fastapi import UploadFile
from sqlalchemy import select, func, update, delete, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser, is_admin
from errors import ConflictError, InvalidInputError, NotFoundError, PermissionDeniedError
from models import Issue, IssueStatus, Project, ProjectStatus, Sprint, User
from schemas import ProjectCreate, ProjectUpdate
from storage import AttachmentStore, PROJECT_AVATAR_POLICY
from validators import like_pattern

logger = logging.getLogger("issue-tracker.projects")


# ============================================================
# LOOKUPS & ACCESS
# ============================================================

async def get_project(db: AsyncSession, actor: CurrentUser, project_id: str,
                      refresh: bool = False) -> Project:
    stmt = select(Project).where(Project.id == project_id, Project.company_id == actor.company_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    project = (await db.execute(stmt)).scalar_one_or_none()
    if not project:
        raise NotFoundError(
            "The requested project could not be found",
            error_type="Project not found",
            details={"project_id": project_id},
        )
    return project


def has_access(project: Project, actor: CurrentUser) -> bool:
    if is_admin(actor):
        return True
    return actor.id == project.project_lead or actor.id in project.member_ids


def require_access(project: Project, actor: CurrentUser) -> None:
    """Admins pass; everyone else must lead or belong to the project team."""
    if not has_access(project, actor):
        logger.warning(f"Project access denied: user={actor.id} project={project.id}")
        raise PermissionDeniedError(
            "You do not have permission to access this project",
            error_type="Access denied",
            details={"project_id": project.id},
        )


async def get_company_user(db: AsyncSession, company_id: str, user_id: Any) -> Optional[User]:
    if not isinstance(user_id, str) or not user_id:
        return None
    stmt = select(User).where(User.id == user_id, User.company_id == company_id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def _company_users(db: AsyncSession, company_id: str, user_ids: Iterable[str]) -> List[User]:
    """Resolve ids to users of the company; any unknown id is reported together."""
    ids = list(dict.fromkeys(user_ids))
    if not ids:
        return []
    stmt = select(User).where(User.id.in_(ids), User.company_id == company_id)
    found = {u.id: u for u in (await db.execute(stmt)).scalars().all()}
    invalid = [i for i in ids if i not in found]
    if invalid:
        raise InvalidInputError(
            "One or more team members are not valid for your company",
            error_type="Invalid team members",
            details={"invalid_members": invalid},
        )
    return [found[i] for i in ids]


def ensure_lead_in_team(project: Project, lead: User) -> None:
    if lead.id not in project.member_ids:
        project.team_members.append(lead)


async def _require_unique_key(db: AsyncSession, key: str, exclude_id: Optional[str] = None):
    stmt = select(Project.id).where(Project.key == key)
    if exclude_id:
        stmt = stmt.where(Project.id != exclude_id)
    if (await db.execute(stmt)).scalar_one_or_none():
        raise ConflictError(
            "A project with this key already exists",
            error_type="Duplicate project key",
            details={"provided_key": key},
        )


async def _commit_project(db: AsyncSession, key: str):
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(
            "A project with this key already exists",
            error_type="Duplicate project key",
            details={"provided_key": key},
        )


# ============================================================
# OPERATIONS
# ============================================================

async def list_projects(
    db: AsyncSession, actor: CurrentUser, status: Optional[ProjectStatus] = None,
    search: Optional[str] = None, page: int = 1, limit: int = 10,
) -> Tuple[List[Project], int]:
    stmt = select(Project).where(Project.company_id == actor.company_id)
    if status:
        stmt = stmt.where(Project.status == status)
    if search:
        pattern = like_pattern(search)
        stmt = stmt.where(or_(
            Project.name.ilike(pattern, escape="\\"),
            Project.key.ilike(pattern, escape="\\"),
            Project.description.ilike(pattern, escape="\\"),
        ))

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
    stmt = stmt.order_by(Project.created_at.desc()).offset((page - 1) * limit).limit(limit)
    projects = (await db.execute(stmt)).scalars().all()
    return list(projects), total


async def create_project(db: AsyncSession, actor: CurrentUser, data: ProjectCreate) -> Project:
    lead = await get_company_user(db, actor.company_id, data.project_lead)
    if not lead:
        raise InvalidInputError(
            "The selected project lead is not valid for your company",
            error_type="Invalid project lead",
            details={"provided_project_lead": data.project_lead},
        )
    members = await _company_users(db, actor.company_id, data.team_members)
    await _require_unique_key(db, data.key)

    project = Project(
        company_id=actor.company_id,
        name=data.name,
        key=data.key,
        description=data.description,
        project_lead=lead.id,
        created_by=actor.id,
        start_date=data.start_date,
        end_date=data.end_date,
        status=data.status,
        categories=data.categories,
        team_members=members,
    )
    ensure_lead_in_team(project, lead)
    db.add(project)
    await _commit_project(db, data.key)

    logger.info(f"Project created: {project.key} ({project.id}) by {actor.id}")
    return await get_project(db, actor, project.id, refresh=True)


async def update_project(db: AsyncSession, actor: CurrentUser, project_id: str,
                         updates: ProjectUpdate) -> Project:
    project = await get_project(db, actor, project_id)
    require_access(project, actor)

    # Only description can be cleared; other nulls leave the field as is
    sent = updates.changes()
    changes = {
        field: value for field, value in sent.items()
        if field not in ("team_members", "project_lead") and (value is not None or field == "description")
    }
    if "key" in changes:
        await _require_unique_key(db, changes["key"], exclude_id=project.id)

    members = None
    if sent.get("team_members") is not None:
        members = await _company_users(db, actor.company_id, sent["team_members"])

    lead_id = sent.get("project_lead") or project.project_lead
    lead = await get_company_user(db, actor.company_id, lead_id)
    if not lead:
        raise InvalidInputError(
            "The selected project lead is not valid for your company",
            error_type="Invalid project lead",
            details={"provided_project_lead": lead_id},
        )

    for field, value in changes.items():
        setattr(project, field, value)
    if members is not None:
        project.team_members = members
    project.project_lead = lead.id
    ensure_lead_in_team(project, lead)

    await _commit_project(db, project.key)
    logger.info(f"Project updated: {project.id} fields={sorted(sent)}")
    return await get_project(db, actor, project.id, refresh=True)


async def add_team_member(db: AsyncSession, actor: CurrentUser, project_id: str, user_id: Any) -> Project:
    project = await get_project(db, actor, project_id)
    require_access(project, actor)
    if not user_id:
        raise InvalidInputError("User ID is required to add a team member", error_type="Missing user ID")

    user = await get_company_user(db, actor.company_id, user_id)
    if not user:
        raise InvalidInputError(
            "The specified user does not exist in your company",
            error_type="Invalid user",
            details={"provided_user_id": user_id},
        )
    if user.id in project.member_ids:
        raise InvalidInputError(
            "This user is already a team member of the project",
            error_type="Duplicate team member",
            details={"user_id": user.id},
        )

    project.team_members.append(user)
    await db.commit()
    logger.info(f"Team member added: project={project.id} user={user.id}")
    return await get_project(db, actor, project.id, refresh=True)


async def remove_team_member(db: AsyncSession, actor: CurrentUser, project_id: str,
                             user_id: str) -> Tuple[Project, int]:
    """Drop a member and unassign their issues in this project. Returns (project, unassigned_count)."""
    project = await get_project(db, actor, project_id)
    require_access(project, actor)

    user = await get_company_user(db, actor.company_id, user_id)
    if not user:
        raise InvalidInputError(
            "The specified user does not exist in your company",
            error_type="Invalid user",
            details={"provided_user_id": user_id},
        )
    if project.project_lead == user.id:
        raise InvalidInputError(
            "You cannot remove the project lead from the team",
            error_type="Cannot remove project lead",
            details={"user_id": user.id},
        )
    if user.id not in project.member_ids:
        raise InvalidInputError(
            "The specified user is not a member of this project team",
            error_type="User not in team",
            details={"user_id": user.id},
        )

    project.team_members = [m for m in project.team_members if m.id != user.id]
    result = await db.execute(
        update(Issue)
        .where(Issue.project_id == project.id, Issue.assignee_id == user.id)
        .values(assignee_id=None)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    unassigned = result.rowcount or 0
    logger.info(f"Team member removed: project={project.id} user={user.id} unassigned_issues={unassigned}")
    return await get_project(db, actor, project.id, refresh=True), unassigned


async def cascade_delete_project(db: AsyncSession, project: Project, store: AttachmentStore) -> int:
    """Remove attachment files, then issues, sprints and the project itself. Caller commits."""
    issues = (await db.execute(select(Issue).where(Issue.project_id == project.id))).scalars().all()
    for issue in issues:
        for attachment in issue.attachments:
            await store.remove(attachment.file_path)
        await db.delete(issue)
    await db.flush()

    await db.execute(delete(Sprint).where(Sprint.project_id == project.id))
    await store.remove(project.avatar)
    await db.delete(project)
    return len(issues)


async def delete_project(db: AsyncSession, actor: CurrentUser, project_id: str,
                         store: AttachmentStore) -> Project:
    project = await get_project(db, actor, project_id)
    if not is_admin(actor) and project.created_by != actor.id:
        logger.warning(f"Project delete denied: user={actor.id} project={project.id}")
        raise PermissionDeniedError(
            "You are not authorized to delete this project",
            error_type="Delete permission denied",
            details={"project_id": project.id, "required_role": "admin or project creator"},
        )

    removed_issues = await cascade_delete_project(db, project, store)
    await db.commit()
    logger.info(f"Project deleted: {project.key} ({project.id}) issues_removed={removed_issues}")
    return project


async def project_stats(db: AsyncSession, actor: CurrentUser, project_id: str) -> Dict[str, Any]:
    project = await get_project(db, actor, project_id)
    require_access(project, actor)

    stmt = (
        select(Issue.status, func.count(Issue.id), func.coalesce(func.sum(Issue.story_points), 0))
        .where(Issue.project_id == project.id)
        .group_by(Issue.status)
    )
    by_status = {s.value: 0 for s in IssueStatus}
    total_points = completed_points = 0
    for status, count, points in (await db.execute(stmt)).all():
        key = status.value if isinstance(status, IssueStatus) else status
        by_status[key] = count
        total_points += points
        if key in (IssueStatus.RESOLVED.value, IssueStatus.CLOSED.value):
            completed_points += points

    return {
        "total_issues": sum(by_status.values()),
        "open_issues": by_status["open"],
        "in_progress_issues": by_status["in_progress"],
        "resolved_issues": by_status["resolved"],
        "closed_issues": by_status["closed"],
        "reopened_issues": by_status["reopened"],
        "total_story_points": total_points,
        "completed_story_points": completed_points,
        "completion_percentage": round(completed_points / total_points * 100, 1) if total_points else 0,
    }


async def upload_avatar(db: AsyncSession, actor: CurrentUser, project_id: str,
                        upload: UploadFile, store: AttachmentStore) -> Project:
    project = await get_project(db, actor, project_id)
    require_access(project, actor)

    stored = await store.save(upload, PROJECT_AVATAR_POLICY, namespace="projects")
    previous = project.avatar
    project.avatar = stored.file_path
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        await store.remove(stored.file_path)
        raise
    await store.remove(previous)
    return await get_project(db, actor, project.id, refresh=True)
