from pydantic import BaseModel, EmailStr, Field, ConfigDict, computed_field
from datetime import datetime
from typing import Any, Optional, List

from models import TaskStatus, TaskPriority, ProjectType, BoardStatus
from time_utils import is_overdue


# User schemas
class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    department: Optional[str] = None
    position: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str


class User(UserSummary):
    role: str
    is_active: bool
    department: Optional[str] = None
    position: Optional[str] = None
    reporting_to_id: Optional[int] = None
    created_at: Optional[datetime] = None


# Project schemas
class ProjectCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    deadline: Optional[datetime] = None
    color: Optional[str] = None
    visibility: Optional[str] = Field(None, pattern="^(public|private)$")
    type: ProjectType = ProjectType.personal
    team_id: Optional[int] = None


class ProjectUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    deadline: Optional[datetime] = None
    color: Optional[str] = None
    visibility: Optional[str] = Field(None, pattern="^(public|private)$")
    # Accepted only so that attempts to set it are rejected; status is derived
    status: Optional[str] = None


class Project(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: Optional[str] = None
    deadline: Optional[datetime] = None
    color: str
    visibility: str
    type: str
    team_id: Optional[int] = None
    created_by: int
    manager_id: Optional[int] = None
    board_ids: List[int] = []
    total_tasks: int
    completed_tasks: int
    progress: int
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProjectStats(BaseModel):
    project_id: int
    total_tasks: int
    completed_tasks: int
    progress: int
    status: str


# Project membership schemas
class ProjectMemberCreate(BaseModel):
    user_id: Optional[int] = None
    email: Optional[EmailStr] = None
    role: Optional[str] = None


class ProjectMemberUpdate(BaseModel):
    role: str


class ProjectMember(BaseModel):
    user_id: int
    role: str
    source: str
    joined_at: Optional[datetime] = None
    user: Optional[UserSummary] = None


# Board schemas
class BoardCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    deadline: Optional[datetime] = None
    assigned_to: Optional[List[int]] = None
    status: Optional[BoardStatus] = None
    type: Optional[BoardStatus] = None
    position: Optional[int] = None


class BoardUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    deadline: Optional[datetime] = None
    assigned_to: Optional[List[int]] = None


class BoardStatusUpdate(BaseModel):
    status: BoardStatus


class BoardReorder(BaseModel):
    # Validated by the core so malformed payloads surface as InvalidInput
    board_ids: Any = None


class Board(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    project_id: int
    member_ids: List[int] = []
    task_ids: List[int] = []
    status: str
    type: str
    position: int
    deadline: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Task schemas
class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.todo
    priority: TaskPriority = TaskPriority.medium
    deadline: Optional[datetime] = None
    color: Optional[str] = None
    assigned_to: Optional[List[int]] = None
    assigned_team_id: Optional[int] = None
    tags: Optional[List[str]] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    deadline: Optional[datetime] = None
    color: Optional[str] = None
    assigned_to: Optional[List[int]] = None
    assigned_team_id: Optional[int] = None
    tags: Optional[List[str]] = None
    board_id: Optional[int] = None


class CommentCreate(BaseModel):
    text: str = Field(..., min_length=1)


class AttachmentCreate(BaseModel):
    filename: str = Field(..., min_length=1, max_length=255)
    path: str = Field(..., min_length=1, max_length=512)


class Task(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: Optional[str] = None
    status: str
    priority: str
    deadline: Optional[datetime] = None
    color: str
    board_id: int
    created_by: Optional[int] = None
    last_modified_by: Optional[int] = None
    assigned_to: List[int] = []
    assigned_team_id: Optional[int] = None
    tags: List[str] = []
    attachments: List[dict] = []
    comments: List[dict] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @computed_field
    @property
    def overdue(self) -> bool:
        return is_overdue(self.deadline, self.status)


# Team schemas
class TeamCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    type: Optional[str] = Field(None, pattern="^(department|project|functional|cross-functional)$")
    department: Optional[str] = None
    parent_id: Optional[int] = None


class TeamUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    type: Optional[str] = Field(None, pattern="^(department|project|functional|cross-functional)$")
    department: Optional[str] = None
    status: Optional[str] = Field(None, pattern="^(active|inactive|archived)$")
    parent_id: Optional[int] = None


class TeamMemberCreate(BaseModel):
    user_id: int
    role: Optional[str] = None


class TeamMemberUpdate(BaseModel):
    role: str


class TeamMember(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    role: str
    joined_at: Optional[datetime] = None
    user: Optional[UserSummary] = None


class TeamRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class Team(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    type: str
    department: Optional[str] = None
    status: str
    parent_id: Optional[int] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None


class TeamDetail(Team):
    parent: Optional[TeamRef] = None
    children: List[TeamRef] = []
    members: List[TeamMember] = []


class TeamTaskCount(BaseModel):
    team_id: int
    project_count: int
    task_count: int


# Calendar schemas
class CalendarEvent(BaseModel):
    id: str
    type: str
    title: str
    start: datetime
    end: datetime
    color: str
    status: str
    project_id: int
    project_title: str
    all_day: bool = False


# Notification schemas
class Notification(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    type: str
    message: str
    is_read: bool
    created_at: Optional[datetime] = None


class NotificationUpdate(BaseModel):
    is_read: bool


class MessageResponse(BaseModel):
    message: str
