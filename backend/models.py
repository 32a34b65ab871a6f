# models.py — Database models for the issue tracker
# - String UUID primary keys everywhere
# - Companies own users and projects (multi-tenant boundary)
# - Issues own their attachments, comments, subtasks and history rows
# - One active sprint per project, enforced by a partial unique index

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, BigInteger, Integer, Float,
    Enum as SQLEnum, ForeignKey, Text, Index, Table, text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


def _enum(enum_cls):
    """Store enum values ("in_progress") rather than member names."""
    return SQLEnum(enum_cls, values_callable=lambda members: [m.value for m in members])


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    DEVELOPER = "developer"
    TESTER = "tester"
    MANAGER = "manager"
    ADMIN = "admin"


class ProjectStatus(str, PyEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class IssueType(str, PyEnum):
    BUG = "bug"
    TASK = "task"
    STORY = "story"
    EPIC = "epic"


class IssueStatus(str, PyEnum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"
    REOPENED = "reopened"


class SubtaskStatus(str, PyEnum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class IssuePriority(str, PyEnum):
    LOWEST = "lowest"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    HIGHEST = "highest"
    CRITICAL = "critical"


class SprintStatus(str, PyEnum):
    PLANNED = "planned"
    ACTIVE = "active"
    COMPLETED = "completed"


# Declared per project; informational, transitions are not enforced
DEFAULT_WORKFLOW = {
    "open": ["in_progress", "closed"],
    "in_progress": ["resolved", "open"],
    "resolved": ["closed", "in_progress"],
    "closed": ["reopened"],
    "reopened": ["in_progress", "closed"],
}


def default_project_settings():
    return {
        "issue_types": [t.value for t in IssueType],
        "priorities": [p.value for p in IssuePriority],
        "workflow": {k: list(v) for k, v in DEFAULT_WORKFLOW.items()},
    }


# ============================================================
# COMPANIES & USERS
# ============================================================

class Company(Base):
    __tablename__ = "companies"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False, index=True)
    company_code = Column(String(8), unique=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    users = relationship("User", back_populates="company")


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    company_id = Column(String, ForeignKey("companies.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    role = Column(_enum(UserRole), default=UserRole.DEVELOPER, nullable=False, index=True)
    avatar = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    company = relationship("Company", back_populates="users")
    active_tokens = relationship(
        "UserToken", back_populates="user", cascade="all, delete-orphan",
    )


class UserToken(Base):
    """A session token issued at login; removed at logout or once expired."""
    __tablename__ = "user_tokens"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    jti = Column(String, unique=True, nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    user = relationship("User", back_populates="active_tokens")


# ============================================================
# PROJECTS
# ============================================================

project_members = Table(
    "project_members",
    Base.metadata,
    Column("project_id", String, ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class Project(Base):
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=new_uuid)
    company_id = Column(String, ForeignKey("companies.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    key = Column(String(10), unique=True, nullable=False, index=True)
    description = Column(String(500), nullable=True)
    project_lead = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    created_by = Column(String, ForeignKey("users.id"), nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(_enum(ProjectStatus), default=ProjectStatus.ACTIVE, nullable=False)
    categories = Column(JSON, default=list)
    avatar = Column(String, nullable=True)
    settings = Column(JSON, default=default_project_settings)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    team_members = relationship("User", secondary=project_members, lazy="selectin")

    __table_args__ = (
        Index("idx_project_company_status", "company_id", "status"),
    )

    @property
    def member_ids(self):
        return {u.id for u in self.team_members}


# ============================================================
# SPRINTS
# ============================================================

class Sprint(Base):
    __tablename__ = "sprints"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    goal = Column(Text, nullable=True)
    status = Column(_enum(SprintStatus), default=SprintStatus.PLANNED, nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_sprint_project_status", "project_id", "status"),
        Index(
            "uq_sprint_one_active_per_project",
            "project_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )


# ============================================================
# ISSUES
# ============================================================

class Issue(Base):
    __tablename__ = "issues"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)

    # Core fields
    title = Column(String(200), nullable=False)
    summary = Column(String(500), nullable=True)
    description = Column(Text, nullable=True)
    issue_type = Column(_enum(IssueType), default=IssueType.TASK, nullable=False)
    status = Column(_enum(IssueStatus), default=IssueStatus.OPEN, nullable=False)
    priority = Column(_enum(IssuePriority), default=IssuePriority.MEDIUM, nullable=False)
    story_points = Column(Integer, nullable=True)

    # Assignment
    reporter_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    assignee_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)

    # Planning
    due_date = Column(DateTime(timezone=True), nullable=True, index=True)
    estimated_time = Column(Float, nullable=True)  # hours
    actual_time = Column(Float, nullable=True)  # hours
    environment = Column(String, nullable=True)
    labels = Column(JSON, default=list)
    sprint_id = Column(String, ForeignKey("sprints.id", ondelete="SET NULL"), nullable=True, index=True)
    is_blocked = Column(Boolean, default=False, nullable=False)
    blocked_reason = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    project = relationship("Project", lazy="selectin", viewonly=True)

    # Relationships (loaded with the issue; they are part of the issue document)
    attachments = relationship(
        "IssueAttachment", back_populates="issue", lazy="selectin",
        cascade="all, delete-orphan", order_by="IssueAttachment.uploaded_at",
    )
    comments = relationship(
        "IssueComment", back_populates="issue", lazy="selectin",
        cascade="all, delete-orphan", order_by="IssueComment.created_at",
    )
    subtasks = relationship(
        "Subtask", back_populates="issue", lazy="selectin",
        cascade="all, delete-orphan", order_by="Subtask.created_at",
    )
    history = relationship(
        "IssueHistory", back_populates="issue", lazy="selectin",
        cascade="all, delete-orphan", order_by="IssueHistory.changed_at",
    )

    __table_args__ = (
        Index("idx_issue_project_status", "project_id", "status"),
        Index("idx_issue_assignee_status", "assignee_id", "status"),
        Index("idx_issue_reporter_status", "reporter_id", "status"),
        Index("idx_issue_sprint_status", "sprint_id", "status"),
    )

    @property
    def issue_key(self) -> str:
        """Project key plus the first four id characters, e.g. TRK-ab12"""
        # Reads the loaded project only; never triggers a lazy load
        project = self.__dict__.get("project")
        prefix = project.key if project is not None else "ISSUE"
        return f"{prefix}-{(self.id or '')[:4]}"


class IssueAttachment(Base):
    """Metadata for a stored file; the payload lives in the attachment store"""
    __tablename__ = "issue_attachments"

    id = Column(String, primary_key=True, default=new_uuid)
    issue_id = Column(String, ForeignKey("issues.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String, nullable=False)
    file_path = Column(String, nullable=False)
    file_type = Column(String, nullable=False)
    file_size = Column(BigInteger, nullable=False)
    uploaded_by = Column(String, ForeignKey("users.id"), nullable=False)
    uploaded_at = Column(DateTime(timezone=True), default=utcnow)

    issue = relationship("Issue", back_populates="attachments")


class IssueComment(Base):
    __tablename__ = "issue_comments"

    id = Column(String, primary_key=True, default=new_uuid)
    issue_id = Column(String, ForeignKey("issues.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    issue = relationship("Issue", back_populates="comments")


class Subtask(Base):
    __tablename__ = "subtasks"

    id = Column(String, primary_key=True, default=new_uuid)
    issue_id = Column(String, ForeignKey("issues.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(_enum(SubtaskStatus), default=SubtaskStatus.OPEN, nullable=False)
    reporter_id = Column(String, ForeignKey("users.id"), nullable=False)
    assignee_id = Column(String, ForeignKey("users.id"), nullable=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    issue = relationship("Issue", back_populates="subtasks")
    comments = relationship(
        "SubtaskComment", back_populates="subtask", lazy="selectin",
        cascade="all, delete-orphan", order_by="SubtaskComment.created_at",
    )


class SubtaskComment(Base):
    __tablename__ = "subtask_comments"

    id = Column(String, primary_key=True, default=new_uuid)
    subtask_id = Column(String, ForeignKey("subtasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    subtask = relationship("Subtask", back_populates="comments")


class IssueHistory(Base):
    """Append-only audit record of one field transition on an issue"""
    __tablename__ = "issue_history"

    id = Column(String, primary_key=True, default=new_uuid)
    issue_id = Column(String, ForeignKey("issues.id", ondelete="CASCADE"), nullable=False, index=True)
    field = Column(String, nullable=False)
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    changed_by = Column(String, ForeignKey("users.id"), nullable=False)
    changed_at = Column(DateTime(timezone=True), default=utcnow)

    issue = relationship("Issue", back_populates="history")

    __table_args__ = (
        Index("idx_history_issue_time", "issue_id", "changed_at"),
    )
