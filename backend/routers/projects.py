# routers/projects.py — Project directory endpoints
from datetime import datetime
from typing import Optional, Dict, Any

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

import project_directory
from auth import get_current_user, CurrentUser
from database import get_db_session
from models import Project, ProjectStatus
from responses import success_response
from schemas import ProjectCreate, ProjectUpdate, TeamMemberAdd
from storage import AttachmentStore, get_attachment_store

router = APIRouter(prefix="/api/v1/projects", tags=["Projects"])


# ============================================================
# HELPERS
# ============================================================

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, datetime) else str(dt)


def project_to_dict(project: Project) -> Dict[str, Any]:
    return {
        "id": project.id,
        "company_id": project.company_id,
        "name": project.name,
        "key": project.key,
        "description": project.description,
        "project_lead": project.project_lead,
        "team_members": [
            {"id": u.id, "name": u.name, "avatar": u.avatar, "role": u.role.value}
            for u in project.team_members
        ],
        "created_by": project.created_by,
        "start_date": _ts(project.start_date),
        "end_date": _ts(project.end_date),
        "status": project.status.value,
        "categories": project.categories or [],
        "avatar": project.avatar,
        "settings": project.settings or {},
        "created_at": _ts(project.created_at),
        "updated_at": _ts(project.updated_at),
    }


def _project_details(project: Project, **extra) -> Dict[str, Any]:
    return {"project_id": project.id, "project_key": project.key, **extra}


# ============================================================
# ENDPOINTS
# ============================================================

@router.post("", status_code=201)
async def create_project(
    data: ProjectCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a project; the lead always joins the team"""
    project = await project_directory.create_project(db, user, data)
    return success_response(
        "Project created",
        "Project has been successfully created",
        data=project_to_dict(project),
        details=_project_details(project),
        status_code=201,
    )


@router.get("")
async def list_projects(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    status: Optional[ProjectStatus] = None,
    search: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
):
    """List the company's projects, newest first"""
    projects, total = await project_directory.list_projects(db, user, status, search, page, limit)
    return success_response(
        "Projects retrieved",
        "Projects list retrieved successfully",
        data={
            "items": [project_to_dict(p) for p in projects],
            "total": total,
            "page": page,
            "limit": limit,
        },
        details={"total_projects": total, "current_page": page, "total_pages": -(-total // limit)},
    )


@router.get("/{project_id}")
async def get_project(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    project = await project_directory.get_project(db, user, project_id)
    return success_response(
        "Project retrieved",
        "Project details retrieved successfully",
        data=project_to_dict(project),
        details=_project_details(project),
    )


@router.patch("/{project_id}")
async def update_project(
    project_id: str,
    updates: ProjectUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Update allow-listed project fields"""
    project = await project_directory.update_project(db, user, project_id, updates)
    return success_response(
        "Project updated",
        "Project has been successfully updated",
        data=project_to_dict(project),
        details=_project_details(project, updated_fields=sorted(updates.model_fields_set)),
    )


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    store: AttachmentStore = Depends(get_attachment_store),
):
    """Permanently delete a project with its issues and sprints"""
    project = await project_directory.delete_project(db, user, project_id, store)
    return success_response(
        "Project deleted",
        "Project has been successfully deleted",
        details=_project_details(project, note="This action is permanent and cannot be undone"),
    )


@router.get("/{project_id}/stats")
async def get_project_stats(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    stats = await project_directory.project_stats(db, user, project_id)
    return success_response(
        "Project stats retrieved",
        "Project statistics retrieved successfully",
        data=stats,
        details={"project_id": project_id},
    )


@router.post("/{project_id}/team", status_code=201)
async def add_team_member(
    project_id: str,
    data: TeamMemberAdd,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    project = await project_directory.add_team_member(db, user, project_id, data.user_id)
    return success_response(
        "Team member added",
        "Team member has been successfully added to the project",
        data=project_to_dict(project),
        details=_project_details(project, user_id=data.user_id),
        status_code=201,
    )


@router.delete("/{project_id}/team/{member_id}")
async def remove_team_member(
    project_id: str,
    member_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Remove a member; their issues in this project become unassigned"""
    project, unassigned = await project_directory.remove_team_member(db, user, project_id, member_id)
    return success_response(
        "Team member removed",
        "Team member has been successfully removed from the project",
        data=project_to_dict(project),
        details=_project_details(project, user_id=member_id, unassigned_issues=unassigned),
    )


@router.post("/{project_id}/avatar")
async def upload_project_avatar(
    project_id: str,
    avatar: UploadFile = File(...),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    store: AttachmentStore = Depends(get_attachment_store),
):
    project = await project_directory.upload_avatar(db, user, project_id, avatar, store)
    return success_response(
        "Avatar uploaded",
        "Project avatar has been updated",
        data=project_to_dict(project),
        details=_project_details(project),
    )
