# schemas.py — Request models for projects, issues and sprints
# Bodies are validated here before any engine runs; a failure becomes the
# 400 "Invalid input" envelope through the RequestValidationError handler.
# Update models forbid unknown keys and apply only the fields the client sent.
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from models import IssuePriority, IssueStatus, IssueType, ProjectStatus, SubtaskStatus
from validators import blank_as_none, ensure_utc, normalize_string_list


def _reject_nulls(model: BaseModel, fields: Iterable[str]):
    nulls = [f for f in fields if f in model.model_fields_set and getattr(model, f) is None]
    if nulls:
        raise ValueError(f"{', '.join(nulls)} cannot be null")
    return model


# ============================================================
# PROJECTS
# ============================================================

class ProjectCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    key: str = Field(..., min_length=1, max_length=10)
    project_lead: str = Field(..., min_length=1)
    description: Optional[str] = Field(None, max_length=500)
    team_members: List[str] = Field(default_factory=list)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: ProjectStatus = ProjectStatus.ACTIVE
    categories: List[str] = Field(default_factory=list)

    @field_validator("key")
    @classmethod
    def upper_key(cls, v: str) -> str:
        return v.upper()

    @field_validator("categories", mode="before")
    @classmethod
    def split_categories(cls, v):
        return normalize_string_list(v)

    @field_validator("start_date", "end_date")
    @classmethod
    def utc_dates(cls, v):
        return ensure_utc(v)


class ProjectUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    key: Optional[str] = Field(None, min_length=1, max_length=10)
    project_lead: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, max_length=500)
    team_members: Optional[List[str]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: Optional[ProjectStatus] = None
    categories: Optional[List[str]] = None

    @field_validator("key")
    @classmethod
    def upper_key(cls, v):
        return v.upper() if v else v

    @field_validator("categories", mode="before")
    @classmethod
    def split_categories(cls, v):
        return normalize_string_list(v)

    @field_validator("start_date", "end_date")
    @classmethod
    def utc_dates(cls, v):
        return ensure_utc(v)

    @model_validator(mode="after")
    def required_fields_not_null(self):
        return _reject_nulls(self, ("name", "key", "project_lead", "team_members", "status"))

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class TeamMemberAdd(BaseModel):
    user_id: Optional[str] = None


# ============================================================
# ISSUES
# ============================================================

class IssueCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    project_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=200)
    summary: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = None
    issue_type: IssueType = IssueType.TASK
    priority: IssuePriority = IssuePriority.MEDIUM
    story_points: Optional[int] = Field(None, ge=0, le=30)
    assignee_id: Optional[str] = None
    sprint_id: Optional[str] = None
    due_date: Optional[datetime] = None
    estimated_time: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    environment: Optional[str] = None
    labels: List[str] = Field(default_factory=list)

    @field_validator("labels", mode="before")
    @classmethod
    def split_labels(cls, v):
        return normalize_string_list(v)

    @field_validator("due_date")
    @classmethod
    def utc_due_date(cls, v):
        return ensure_utc(v)


class IssueUpdate(BaseModel):
    """Allow-listed issue fields; any other key rejects the whole update"""
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    summary: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = None
    issue_type: Optional[IssueType] = None
    status: Optional[IssueStatus] = None
    story_points: Optional[int] = Field(None, ge=0, le=30)
    priority: Optional[IssuePriority] = None
    assignee_id: Optional[str] = None
    due_date: Optional[datetime] = None
    estimated_time: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    actual_time: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    environment: Optional[str] = None
    labels: Optional[List[str]] = None
    sprint_id: Optional[str] = None
    is_blocked: Optional[bool] = None
    blocked_reason: Optional[str] = None

    @field_validator("labels", mode="before")
    @classmethod
    def split_labels(cls, v):
        return normalize_string_list(v)

    @field_validator("due_date", mode="before")
    @classmethod
    def blank_due_date(cls, v):
        return blank_as_none(v)

    @field_validator("due_date")
    @classmethod
    def utc_due_date(cls, v):
        return ensure_utc(v)

    @model_validator(mode="after")
    def required_fields_not_null(self):
        return _reject_nulls(self, ("title", "issue_type", "status", "priority", "is_blocked"))

    def changes(self) -> Dict[str, Any]:
        """Fields the client sent. A blank or null due date keeps the current one."""
        sent = self.model_dump(exclude_unset=True)
        if "due_date" in sent and sent["due_date"] is None:
            del sent["due_date"]
        return sent


class CommentCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    content: str = Field(..., min_length=1)


class SubtaskCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    assignee_id: Optional[str] = None
    due_date: Optional[datetime] = None

    @field_validator("due_date")
    @classmethod
    def utc_due_date(cls, v):
        return ensure_utc(v)


class SubtaskStatusUpdate(BaseModel):
    status: SubtaskStatus


# ============================================================
# SPRINTS
# ============================================================

class SprintCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    project_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    goal: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def utc_dates(cls, v):
        return ensure_utc(v)


class SprintStart(BaseModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def utc_dates(cls, v):
        return ensure_utc(v)


class SprintComplete(BaseModel):
    move_to_sprint_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("move_to_sprint_id", "moveToSprintId"),
    )
