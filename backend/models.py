from sqlalchemy import (
    Column, Integer, String, Text, ForeignKey, DateTime, Boolean, JSON, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from database import Base


class ProjectStatus(str, enum.Enum):
    todo = "To Do"
    in_progress = "In Progress"
    completed = "Completed"
    archived = "Archived"


class TaskStatus(str, enum.Enum):
    todo = "To Do"
    in_progress = "In Progress"
    done = "Done"


# Boards share the task status vocabulary for both `status` and `type`
BoardStatus = TaskStatus


class TaskPriority(str, enum.Enum):
    low = "Low"
    medium = "Medium"
    high = "High"
    urgent = "Urgent"


class ProjectType(str, enum.Enum):
    personal = "personal"
    team = "team"


class UserRole(str, enum.Enum):
    admin = "admin"
    manager = "manager"
    member = "member"


class NotificationType(str, enum.Enum):
    task = "task"
    board = "board"
    project = "project"
    deadline = "deadline"
    project_team = "project-team"
    team = "team"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=UserRole.member.value)
    is_active = Column(Boolean, nullable=False, default=True)
    department = Column(String(255))
    position = Column(String(255))
    reporting_to_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    reporting_to = relationship("User", remote_side=[id])
    team_memberships = relationship("TeamMember", back_populates="user", cascade="all, delete-orphan")


class Team(Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text)
    type = Column(String(30), nullable=False, default="functional")
    department = Column(String(255))
    status = Column(String(20), nullable=False, default="active")
    parent_id = Column(Integer, ForeignKey("teams.id", ondelete="SET NULL"), index=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Parent/child hierarchy (must stay a tree, see services.teams.would_create_cycle)
    parent = relationship("Team", remote_side=[id], back_populates="children")
    children = relationship("Team", back_populates="parent")
    members = relationship("TeamMember", back_populates="team", cascade="all, delete-orphan")


class TeamMember(Base):
    __tablename__ = "team_members"
    __table_args__ = (UniqueConstraint("team_id", "user_id", name="uq_team_member"),)

    id = Column(Integer, primary_key=True, index=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # team_lead | member
    role = Column(String(20), nullable=False, default="member")
    joined_at = Column(DateTime(timezone=True), server_default=func.now())

    team = relationship("Team", back_populates="members")
    user = relationship("User", back_populates="team_memberships")


class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    deadline = Column(DateTime(timezone=True))
    color = Column(String(20), nullable=False, default="#6B4EFF")
    visibility = Column(String(20), nullable=False, default="private")
    type = Column(String(20), nullable=False, default=ProjectType.personal.value)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="SET NULL"), index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    # Legacy owner field, kept in step with created_by
    manager_id = Column(Integer, ForeignKey("users.id"))

    # Embedded member snapshot: [{"user_id", "role", "joined_at"}]
    members = Column(JSON, nullable=False, default=list)
    # Denormalised, ordered board references
    board_ids = Column(JSON, nullable=False, default=list)

    # Derived aggregates (services.aggregates.recalculate_project)
    total_tasks = Column(Integer, nullable=False, default=0)
    completed_tasks = Column(Integer, nullable=False, default=0)
    progress = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=ProjectStatus.todo.value)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    creator = relationship("User", foreign_keys=[created_by])
    team = relationship("Team")


class ProjectTeam(Base):
    """Normalised project membership record; takes precedence over Project.members."""

    __tablename__ = "project_teams"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_team_member"),)

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(20), nullable=False, default="member")
    added_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    joined_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", foreign_keys=[user_id])


class Board(Base):
    __tablename__ = "boards"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    member_ids = Column(JSON, nullable=False, default=list)
    # Denormalised task references; Task.board_id is authoritative
    task_ids = Column(JSON, nullable=False, default=list)
    status = Column(String(20), nullable=False, default=BoardStatus.todo.value)
    type = Column(String(20), nullable=False, default=BoardStatus.todo.value)
    position = Column(Integer, nullable=False, default=0, index=True)
    deadline = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    status = Column(String(20), nullable=False, default=TaskStatus.todo.value, index=True)
    priority = Column(String(20), nullable=False, default=TaskPriority.medium.value)
    deadline = Column(DateTime(timezone=True), index=True)
    color = Column(String(20), nullable=False, default="#6B4EFF")
    board_id = Column(Integer, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    last_modified_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    assigned_to = Column(JSON, nullable=False, default=list)
    assigned_team_id = Column(Integer, ForeignKey("teams.id", ondelete="SET NULL"))
    tags = Column(JSON, nullable=False, default=list)

    # Append-only sub-lists
    attachments = Column(JSON, nullable=False, default=list)
    comments = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(30), nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Notification(id={self.id}, user_id={self.user_id}, type='{self.type}')>"
