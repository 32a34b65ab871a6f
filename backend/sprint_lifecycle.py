# sprint_lifecycle.py — Sprint state machine: planned -> active -> completed
# Completing a sprint hands its unfinished issues to another sprint or the
# backlog in the same commit as the status change.
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser
from errors import NotFoundError, ValidationError
from models import Issue, IssueStatus, Project, Sprint, SprintStatus, utcnow
from project_directory import get_project, require_access
from schemas import SprintCreate

logger = logging.getLogger("issue-tracker.sprints")

ALREADY_ACTIVE = "A sprint is already active for this project. Complete it first."


async def get_sprint(db: AsyncSession, actor: CurrentUser, sprint_id: str, refresh: bool = False) -> Sprint:
    stmt = (
        select(Sprint)
        .join(Project, Project.id == Sprint.project_id)
        .where(Sprint.id == sprint_id, Project.company_id == actor.company_id)
    )
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    sprint = (await db.execute(stmt)).scalar_one_or_none()
    if not sprint:
        raise NotFoundError("Sprint not found", error_type="Not Found", details={"sprint_id": sprint_id})
    return sprint


async def _active_sprint(db: AsyncSession, project_id: str) -> Optional[Sprint]:
    stmt = select(Sprint).where(Sprint.project_id == project_id, Sprint.status == SprintStatus.ACTIVE)
    return (await db.execute(stmt)).scalars().first()


async def create_sprint(db: AsyncSession, actor: CurrentUser, data: SprintCreate) -> Sprint:
    project = await get_project(db, actor, data.project_id)
    require_access(project, actor)

    sprint = Sprint(
        project_id=project.id,
        name=data.name,
        goal=data.goal,
        start_date=data.start_date,
        end_date=data.end_date,
        status=SprintStatus.PLANNED,
        created_by=actor.id,
    )
    db.add(sprint)
    await db.commit()
    logger.info(f"Sprint created: {sprint.name!r} ({sprint.id}) project={project.key}")
    return sprint


async def list_project_sprints(db: AsyncSession, actor: CurrentUser, project_id: str) -> List[Sprint]:
    project = await get_project(db, actor, project_id)
    stmt = (
        select(Sprint)
        .where(Sprint.project_id == project.id)
        .order_by(Sprint.created_at.desc())
    )
    return list((await db.execute(stmt)).scalars().all())


async def start_sprint(
    db: AsyncSession, actor: CurrentUser, sprint_id: str,
    start_date: Optional[datetime] = None, end_date: Optional[datetime] = None,
) -> Sprint:
    sprint = await get_sprint(db, actor, sprint_id)
    project = await get_project(db, actor, sprint.project_id)
    require_access(project, actor)

    if sprint.status == SprintStatus.COMPLETED:
        raise ValidationError(
            "A completed sprint cannot be started again",
            details={"sprint_id": sprint.id},
        )
    active = await _active_sprint(db, sprint.project_id)
    if active:
        raise ValidationError(ALREADY_ACTIVE, details={"active_sprint_id": active.id})

    sprint.status = SprintStatus.ACTIVE
    sprint.start_date = start_date or utcnow()
    if end_date:
        sprint.end_date = end_date
    try:
        await db.commit()
    except IntegrityError:
        # Another request activated a sprint between the check and the commit
        await db.rollback()
        raise ValidationError(ALREADY_ACTIVE)

    logger.info(f"Sprint started: {sprint.id} project={sprint.project_id}")
    return sprint


async def complete_sprint(
    db: AsyncSession, actor: CurrentUser, sprint_id: str, move_to_sprint_id: Optional[str] = None,
) -> Tuple[Sprint, int]:
    """Complete a sprint and reassign its non-closed issues. Returns (sprint, moved_count)."""
    sprint = await get_sprint(db, actor, sprint_id)
    project = await get_project(db, actor, sprint.project_id)
    require_access(project, actor)

    if sprint.status == SprintStatus.COMPLETED:
        raise ValidationError("Sprint is already completed", details={"sprint_id": sprint.id})

    destination = None
    if move_to_sprint_id:
        destination = await get_sprint(db, actor, move_to_sprint_id)
        if destination.project_id != sprint.project_id:
            raise NotFoundError(
                "Destination sprint not found in this project",
                error_type="Not Found",
                details={"move_to_sprint_id": move_to_sprint_id},
            )
        if destination.id == sprint.id:
            raise ValidationError("Issues cannot be moved into the sprint being completed")
        if destination.status == SprintStatus.COMPLETED:
            raise ValidationError(
                "Issues cannot be moved into a completed sprint",
                details={"move_to_sprint_id": destination.id},
            )

    sprint.status = SprintStatus.COMPLETED
    sprint.completed_at = utcnow()
    result = await db.execute(
        update(Issue)
        .where(Issue.sprint_id == sprint.id, Issue.status != IssueStatus.CLOSED)
        .values(sprint_id=destination.id if destination else None)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    moved = result.rowcount or 0
    logger.info(
        f"Sprint completed: {sprint.id} moved_issues={moved} "
        f"to={destination.id if destination else 'backlog'}"
    )
    return sprint, moved
