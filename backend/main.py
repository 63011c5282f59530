from fastapi import FastAPI, Depends, BackgroundTasks, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import List
from datetime import datetime
import logging
import os

from database import get_db, engine, Base, SessionLocal
import models
import schemas
from errors import TaskHubError
from auth.routes import router as auth_router
from auth.dependencies import get_current_user
from auth.permissions import AccessContext, get_access_context
from services import boards, notifications, projects, tasks, teams
from services.notifications import DatabaseNotificationDispatcher, NotificationDispatcher

# Configure logging
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

UPCOMING_TASK_DAYS = int(os.environ.get("UPCOMING_TASK_DAYS", "7"))

app = FastAPI(
    title="Task Hub API",
    description="Multi-tenant project, board and task management with role-based access",
    version="1.0.0"
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        origin.strip()
        for origin in os.environ.get("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
        if origin.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register authentication router
app.include_router(auth_router)


@app.on_event("startup")
def create_tables():
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ensured")


@app.exception_handler(TaskHubError)
async def task_hub_error_handler(request: Request, exc: TaskHubError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.detail}")
    else:
        logger.debug(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def get_dispatcher() -> NotificationDispatcher:
    """Notification channel; overridden in tests."""
    return DatabaseNotificationDispatcher(SessionLocal)


def schedule(background_tasks: BackgroundTasks, dispatcher: NotificationDispatcher, notices) -> None:
    # Runs after the response is sent, so only committed changes are announced
    if notices:
        background_tasks.add_task(dispatcher.dispatch, notices)


@app.get("/health")
def health_check():
    return {"status": "healthy"}


# ============== Users ==============

@app.get("/api/users", response_model=List[schemas.UserSummary])
def list_users(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Active users, for member and assignee pickers."""
    return (
        db.query(models.User)
        .filter(models.User.is_active.is_(True))
        .order_by(models.User.name.asc())
        .all()
    )


# ============== Projects ==============

@app.post("/api/projects", response_model=schemas.Project, status_code=status.HTTP_201_CREATED)
def create_project(
    project: schemas.ProjectCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return projects.create_project(db, current_user, project.model_dump(exclude_unset=True))


@app.get("/api/projects", response_model=List[schemas.Project])
def list_projects(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Projects the current user created or is a member of."""
    return projects.list_projects(db, current_user)


@app.get("/api/projects/{project_id}", response_model=schemas.Project)
def get_project(project_id: int, ctx: AccessContext = Depends(get_access_context)):
    return projects.get_project(ctx, project_id)


@app.put("/api/projects/{project_id}", response_model=schemas.Project)
def update_project(
    project_id: int,
    project_update: schemas.ProjectUpdate,
    ctx: AccessContext = Depends(get_access_context)
):
    return projects.update_project(ctx, project_id, project_update.model_dump(exclude_unset=True))


@app.delete("/api/projects/{project_id}")
def delete_project(project_id: int, ctx: AccessContext = Depends(get_access_context)):
    """Delete a project with its boards, tasks and membership records."""
    result = projects.delete_project(ctx, project_id)
    return {"message": "Project deleted", **result}


@app.get("/api/projects/{project_id}/stats", response_model=schemas.ProjectStats)
def get_project_stats(project_id: int, ctx: AccessContext = Depends(get_access_context)):
    aggregates = projects.get_project_stats(ctx, project_id)
    return {"project_id": project_id, **aggregates.as_dict()}


@app.get("/api/projects/{project_id}/members", response_model=List[schemas.ProjectMember])
def list_project_members(project_id: int, ctx: AccessContext = Depends(get_access_context)):
    return projects.list_members(ctx, project_id)


@app.post(
    "/api/projects/{project_id}/members",
    response_model=schemas.ProjectMember,
    status_code=status.HTTP_201_CREATED,
)
def add_project_member(
    project_id: int,
    member: schemas.ProjectMemberCreate,
    background_tasks: BackgroundTasks,
    ctx: AccessContext = Depends(get_access_context),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    """Add a member by user id or e-mail."""
    result, notices = projects.add_member(ctx, project_id, member.model_dump(exclude_unset=True))
    schedule(background_tasks, dispatcher, notices)
    return result


@app.put("/api/projects/{project_id}/members/{user_id}", response_model=schemas.ProjectMember)
def update_project_member(
    project_id: int,
    user_id: int,
    member_update: schemas.ProjectMemberUpdate,
    background_tasks: BackgroundTasks,
    ctx: AccessContext = Depends(get_access_context),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    result, notices = projects.update_member_role(ctx, project_id, user_id, member_update.role)
    schedule(background_tasks, dispatcher, notices)
    return result


@app.delete("/api/projects/{project_id}/members/{user_id}", response_model=schemas.MessageResponse)
def remove_project_member(
    project_id: int,
    user_id: int,
    background_tasks: BackgroundTasks,
    ctx: AccessContext = Depends(get_access_context),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    notices = projects.remove_member(ctx, project_id, user_id)
    schedule(background_tasks, dispatcher, notices)
    return {"message": "Member removed from project"}


# ============== Boards ==============

@app.get("/api/projects/{project_id}/boards", response_model=List[schemas.Board])
def list_boards(project_id: int, ctx: AccessContext = Depends(get_access_context)):
    return boards.list_boards(ctx, project_id)


@app.post(
    "/api/projects/{project_id}/boards",
    response_model=schemas.Board,
    status_code=status.HTTP_201_CREATED,
)
def create_board(
    project_id: int,
    board: schemas.BoardCreate,
    background_tasks: BackgroundTasks,
    ctx: AccessContext = Depends(get_access_context),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    result, notices = boards.create_board(ctx, project_id, board.model_dump(exclude_unset=True))
    schedule(background_tasks, dispatcher, notices)
    return result


@app.put("/api/projects/{project_id}/boards/reorder", response_model=List[schemas.Board])
def reorder_boards(
    project_id: int,
    reorder: schemas.BoardReorder,
    ctx: AccessContext = Depends(get_access_context)
):
    return boards.reorder_boards(ctx, project_id, reorder.board_ids)


@app.get("/api/boards/{board_id}", response_model=schemas.Board)
def get_board(board_id: int, ctx: AccessContext = Depends(get_access_context)):
    return boards.get_board(ctx, board_id)


@app.put("/api/boards/{board_id}", response_model=schemas.Board)
def update_board(
    board_id: int,
    board_update: schemas.BoardUpdate,
    background_tasks: BackgroundTasks,
    ctx: AccessContext = Depends(get_access_context),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    result, notices = boards.update_board(ctx, board_id, board_update.model_dump(exclude_unset=True))
    schedule(background_tasks, dispatcher, notices)
    return result


@app.patch("/api/boards/{board_id}/status", response_model=schemas.Board)
def update_board_status(
    board_id: int,
    status_update: schemas.BoardStatusUpdate,
    ctx: AccessContext = Depends(get_access_context)
):
    return boards.update_board_status(ctx, board_id, status_update.status)


@app.delete("/api/boards/{board_id}")
def delete_board(board_id: int, ctx: AccessContext = Depends(get_access_context)):
    result = boards.delete_board(ctx, board_id)
    return {"message": "Board deleted", **result}


# ============== Tasks ==============

@app.get("/api/tasks/upcoming", response_model=List[schemas.Task])
def list_upcoming_tasks(
    days: int = Query(UPCOMING_TASK_DAYS, ge=0, le=365),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Tasks assigned to the current user that are due soon."""
    return tasks.list_upcoming_tasks(db, current_user, days)


@app.get("/api/calendar/events", response_model=List[schemas.CalendarEvent])
def list_calendar_events(
    start: datetime = Query(...),
    end: datetime = Query(...),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Project and assigned-task deadlines within the date range."""
    return tasks.list_calendar_events(db, current_user, start, end)


@app.get("/api/projects/{project_id}/tasks", response_model=List[schemas.Task])
def list_project_tasks(project_id: int, ctx: AccessContext = Depends(get_access_context)):
    return tasks.list_project_tasks(ctx, project_id)


@app.get("/api/boards/{board_id}/tasks", response_model=List[schemas.Task])
def list_board_tasks(board_id: int, ctx: AccessContext = Depends(get_access_context)):
    return tasks.list_board_tasks(ctx, board_id)


@app.post("/api/boards/{board_id}/tasks", response_model=schemas.Task, status_code=status.HTTP_201_CREATED)
def create_task(
    board_id: int,
    task: schemas.TaskCreate,
    background_tasks: BackgroundTasks,
    ctx: AccessContext = Depends(get_access_context),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    result, notices = tasks.create_task(ctx, board_id, task.model_dump(exclude_unset=True))
    schedule(background_tasks, dispatcher, notices)
    return result


@app.get("/api/tasks/{task_id}", response_model=schemas.Task)
def get_task(task_id: int, ctx: AccessContext = Depends(get_access_context)):
    return tasks.get_task(ctx, task_id)


@app.put("/api/tasks/{task_id}", response_model=schemas.Task)
def update_task(
    task_id: int,
    task_update: schemas.TaskUpdate,
    background_tasks: BackgroundTasks,
    ctx: AccessContext = Depends(get_access_context),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    """Update a task; setting board_id moves it to another board."""
    result, notices = tasks.update_task(ctx, task_id, task_update.model_dump(exclude_unset=True))
    schedule(background_tasks, dispatcher, notices)
    return result


@app.delete("/api/tasks/{task_id}")
def delete_task(task_id: int, ctx: AccessContext = Depends(get_access_context)):
    result = tasks.delete_task(ctx, task_id)
    return {"message": "Task deleted", **result}


@app.post("/api/tasks/{task_id}/comments", response_model=schemas.Task, status_code=status.HTTP_201_CREATED)
def add_task_comment(
    task_id: int,
    comment: schemas.CommentCreate,
    ctx: AccessContext = Depends(get_access_context)
):
    return tasks.add_comment(ctx, task_id, comment.text)


@app.post("/api/tasks/{task_id}/attachments", response_model=schemas.Task, status_code=status.HTTP_201_CREATED)
def add_task_attachment(
    task_id: int,
    attachment: schemas.AttachmentCreate,
    ctx: AccessContext = Depends(get_access_context)
):
    return tasks.add_attachment(ctx, task_id, attachment.filename, attachment.path)


# ============== Teams ==============

@app.post("/api/teams", response_model=schemas.Team, status_code=status.HTTP_201_CREATED)
def create_team(
    team: schemas.TeamCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a new team with the creator as team lead."""
    return teams.create_team(db, current_user, team.model_dump(exclude_unset=True))


@app.get("/api/teams", response_model=List[schemas.Team])
def list_teams(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return teams.list_teams(db, current_user)


@app.get("/api/teams/{team_id}", response_model=schemas.TeamDetail)
def get_team(
    team_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return teams.get_team(db, current_user, team_id)


@app.get("/api/teams/{team_id}/hierarchy", response_model=List[schemas.Team])
def get_team_hierarchy(
    team_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Ancestors of the team, root first, ending with the team itself."""
    return teams.get_team_hierarchy(db, current_user, team_id)


@app.put("/api/teams/{team_id}", response_model=schemas.Team)
def update_team(
    team_id: int,
    team_update: schemas.TeamUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return teams.update_team(db, current_user, team_id, team_update.model_dump(exclude_unset=True))


@app.delete("/api/teams/{team_id}")
def delete_team(
    team_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Delete a team and its sub-teams; their projects become personal."""
    result = teams.delete_team(db, current_user, team_id)
    return {"message": "Team deleted", **result}


@app.get("/api/teams/{team_id}/task-count", response_model=schemas.TeamTaskCount)
def get_team_task_count(
    team_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return teams.team_task_count(db, current_user, team_id)


@app.get("/api/teams/{team_id}/members", response_model=List[schemas.TeamMember])
def list_team_members(
    team_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return teams.list_team_members(db, current_user, team_id)


@app.post(
    "/api/teams/{team_id}/members",
    response_model=schemas.TeamMember,
    status_code=status.HTTP_201_CREATED,
)
def add_team_member(
    team_id: int,
    member: schemas.TeamMemberCreate,
    background_tasks: BackgroundTasks,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    result, notices = teams.add_team_member(db, current_user, team_id, member.model_dump(exclude_unset=True))
    schedule(background_tasks, dispatcher, notices)
    return result


@app.put("/api/teams/{team_id}/members/{user_id}", response_model=schemas.TeamMember)
def update_team_member(
    team_id: int,
    user_id: int,
    member_update: schemas.TeamMemberUpdate,
    background_tasks: BackgroundTasks,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    result, notices = teams.update_team_member_role(db, current_user, team_id, user_id, member_update.role)
    schedule(background_tasks, dispatcher, notices)
    return result


@app.delete("/api/teams/{team_id}/members/{user_id}", response_model=schemas.MessageResponse)
def remove_team_member(
    team_id: int,
    user_id: int,
    background_tasks: BackgroundTasks,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    notices = teams.remove_team_member(db, current_user, team_id, user_id)
    schedule(background_tasks, dispatcher, notices)
    return {"message": "Team member removed"}


# ============== Notifications ==============

@app.get("/api/notifications", response_model=List[schemas.Notification])
def list_notifications(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return notifications.list_notifications(db, current_user)


@app.patch("/api/notifications/{notification_id}", response_model=schemas.Notification)
def mark_notification(
    notification_id: int,
    update: schemas.NotificationUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return notifications.mark_notification(db, current_user, notification_id, update.is_read)


@app.delete("/api/notifications/{notification_id}", response_model=schemas.MessageResponse)
def delete_notification(
    notification_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    notifications.delete_notification(db, current_user, notification_id)
    return {"message": "Notification deleted"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
        log_level=os.environ.get("LOG_LEVEL", "info").lower(),
    )
