# routers/sprints.py — Sprint lifecycle endpoints
from datetime import datetime
from typing import Optional, Dict, Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

import sprint_lifecycle
from auth import get_current_user, CurrentUser
from database import get_db_session
from models import Sprint
from responses import success_response
from schemas import SprintComplete, SprintCreate, SprintStart

router = APIRouter(prefix="/api/v1/sprints", tags=["Sprints"])


# ============================================================
# HELPERS
# ============================================================

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, datetime) else str(dt)


def sprint_to_dict(sprint: Sprint) -> Dict[str, Any]:
    return {
        "id": sprint.id,
        "project_id": sprint.project_id,
        "name": sprint.name,
        "goal": sprint.goal,
        "status": sprint.status.value,
        "start_date": _ts(sprint.start_date),
        "end_date": _ts(sprint.end_date),
        "completed_at": _ts(sprint.completed_at),
        "created_by": sprint.created_by,
        "created_at": _ts(sprint.created_at),
        "updated_at": _ts(sprint.updated_at),
    }


# ============================================================
# ENDPOINTS
# ============================================================

@router.post("", status_code=201)
async def create_sprint(
    data: SprintCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a planned sprint"""
    sprint = await sprint_lifecycle.create_sprint(db, user, data)
    return success_response(
        "Sprint created",
        "Sprint has been created successfully",
        data=sprint_to_dict(sprint),
        details={"sprint_id": sprint.id, "project_id": sprint.project_id},
        status_code=201,
    )


@router.get("/project/{project_id}")
async def list_project_sprints(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    sprints = await sprint_lifecycle.list_project_sprints(db, user, project_id)
    return success_response(
        "Sprints retrieved",
        "Project sprints retrieved successfully",
        data=[sprint_to_dict(s) for s in sprints],
        details={"project_id": project_id, "total_sprints": len(sprints)},
    )


@router.patch("/{sprint_id}/start")
async def start_sprint(
    sprint_id: str,
    data: Optional[SprintStart] = None,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Activate a sprint; only one sprint per project may be active"""
    data = data or SprintStart()
    sprint = await sprint_lifecycle.start_sprint(db, user, sprint_id, data.start_date, data.end_date)
    return success_response(
        "Sprint started",
        "Sprint is now active",
        data=sprint_to_dict(sprint),
        details={"sprint_id": sprint.id},
    )


@router.patch("/{sprint_id}/complete")
async def complete_sprint(
    sprint_id: str,
    data: Optional[SprintComplete] = None,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Complete a sprint; unfinished issues move to another sprint or the backlog"""
    data = data or SprintComplete()
    sprint, moved = await sprint_lifecycle.complete_sprint(db, user, sprint_id, data.move_to_sprint_id)
    return success_response(
        "Sprint completed",
        "Sprint has been completed",
        data=sprint_to_dict(sprint),
        details={
            "sprint_id": sprint.id,
            "moved_issues": moved,
            "moved_to": data.move_to_sprint_id or "backlog",
        },
    )
