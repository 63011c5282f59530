"""
Task operations.

Tasks belong to a board; the board's task_ids list and the owning project's
counters are kept in step with every create, move and delete.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

import models
from auth.membership import MembershipResolver
from auth.permissions import AccessContext
from auth.policy import Permission
from errors import InvalidInputError, NotFoundError
from services.aggregates import refresh_projects
from services.boards import get_board_or_404, validate_user_ids
from services.notifications import Notice, notices_for
from time_utils import as_utc, date_range_for_upcoming, utc_now

logger = logging.getLogger(__name__)

TASK_STATUSES = {status.value for status in models.TaskStatus}
TASK_PRIORITIES = {priority.value for priority in models.TaskPriority}
CALENDAR_EVENT_DURATION = timedelta(hours=1)


def _enum_value(value: Any, allowed: set[str], field: str) -> str:
    value = getattr(value, "value", value)
    if value not in allowed:
        raise InvalidInputError(f"Invalid task {field}: {value}")
    return value


def _check_team(db: Session, team_id: Optional[int]) -> Optional[int]:
    if team_id is not None and db.query(models.Team).filter(models.Team.id == team_id).first() is None:
        raise NotFoundError("Team not found")
    return team_id


def get_task_or_404(db: Session, task_id: int) -> models.Task:
    task = db.query(models.Task).filter(models.Task.id == task_id).first()
    if task is None:
        raise NotFoundError("Task not found")
    return task


def _assignment_message(title: str) -> str:
    return f"You have been assigned a new task: {title}"


def create_task(ctx: AccessContext, board_id: int, data: dict) -> tuple[models.Task, list[Notice]]:
    ctx.require(Permission.manage_tasks, board_id=board_id)
    db = ctx.db
    board = get_board_or_404(db, board_id)

    assignees = validate_user_ids(db, data.get("assigned_to"))
    task = models.Task(
        title=data["title"],
        description=data.get("description"),
        status=_enum_value(data.get("status") or models.TaskStatus.todo, TASK_STATUSES, "status"),
        priority=_enum_value(data.get("priority") or models.TaskPriority.medium, TASK_PRIORITIES, "priority"),
        deadline=data.get("deadline"),
        color=data.get("color") or "#6B4EFF",
        board_id=board_id,
        created_by=ctx.user_id,
        last_modified_by=ctx.user_id,
        assigned_to=assignees,
        assigned_team_id=_check_team(db, data.get("assigned_team_id")),
        tags=list(data.get("tags") or []),
        attachments=[],
        comments=[],
    )
    db.add(task)
    db.flush()
    board.task_ids = list(board.task_ids or []) + [task.id]
    db.commit()
    db.refresh(task)

    logger.info(f"Task created: {task.title} (ID: {task.id}) on board {board_id}")
    refresh_projects(db, [board.project_id])

    notices = notices_for(assignees, models.NotificationType.task.value, _assignment_message(task.title))
    return task, notices


def get_task(ctx: AccessContext, task_id: int) -> models.Task:
    ctx.require(Permission.view, task_id=task_id)
    return get_task_or_404(ctx.db, task_id)


def list_board_tasks(ctx: AccessContext, board_id: int) -> list[models.Task]:
    ctx.require(Permission.view, board_id=board_id)
    return (
        ctx.db.query(models.Task)
        .filter(models.Task.board_id == board_id)
        .order_by(models.Task.id.asc())
        .all()
    )


def list_project_tasks(ctx: AccessContext, project_id: int) -> list[models.Task]:
    ctx.require(Permission.view, project_id=project_id)
    board_ids = [
        row.id for row in ctx.db.query(models.Board.id).filter(models.Board.project_id == project_id).all()
    ]
    if not board_ids:
        return []
    return (
        ctx.db.query(models.Task)
        .filter(models.Task.board_id.in_(board_ids))
        .order_by(models.Task.id.asc())
        .all()
    )


def _move_task(ctx: AccessContext, task: models.Task, target_board_id: int) -> tuple[int, int]:
    """Move a task between boards; returns the (source, destination) project ids."""
    db = ctx.db
    ctx.require(Permission.manage_tasks, board_id=target_board_id)
    source = get_board_or_404(db, task.board_id)
    target = get_board_or_404(db, target_board_id)

    source.task_ids = [tid for tid in (source.task_ids or []) if tid != task.id]
    if task.id not in (target.task_ids or []):
        target.task_ids = list(target.task_ids or []) + [task.id]
    task.board_id = target.id

    logger.info(f"Task {task.id} moved from board {source.id} to board {target.id}")
    return source.project_id, target.project_id


def update_task(ctx: AccessContext, task_id: int, data: dict) -> tuple[models.Task, list[Notice]]:
    """
    Update a task's fields and optionally move it to another board.

    Only assignees added by this update are notified.
    """
    db = ctx.db
    task = get_task_or_404(db, task_id)
    ctx.require_task_edit(task)

    affected_projects = [get_board_or_404(db, task.board_id).project_id]
    target_board_id = data.get("board_id")
    if target_board_id is not None and target_board_id != task.board_id:
        affected_projects = list(_move_task(ctx, task, target_board_id))

    new_assignees: list[int] = []
    if data.get("assigned_to") is not None:
        assignees = validate_user_ids(db, data["assigned_to"])
        previous = set(task.assigned_to or [])
        new_assignees = [uid for uid in assignees if uid not in previous]
        task.assigned_to = assignees

    if data.get("title") is not None:
        task.title = data["title"]
    if data.get("status") is not None:
        task.status = _enum_value(data["status"], TASK_STATUSES, "status")
    if data.get("priority") is not None:
        task.priority = _enum_value(data["priority"], TASK_PRIORITIES, "priority")
    for field in ("description", "deadline"):
        if field in data:
            setattr(task, field, data[field])
    if data.get("color") is not None:
        task.color = data["color"]
    if "assigned_team_id" in data:
        task.assigned_team_id = _check_team(db, data["assigned_team_id"])
    if data.get("tags") is not None:
        task.tags = list(data["tags"])

    task.last_modified_by = ctx.user_id
    db.commit()
    db.refresh(task)

    logger.info(f"Task {task_id} updated by user {ctx.user_id}")
    refresh_projects(db, affected_projects)

    notices = notices_for(new_assignees, models.NotificationType.task.value, _assignment_message(task.title))
    return task, notices


def delete_task(ctx: AccessContext, task_id: int) -> dict:
    db = ctx.db
    task = get_task_or_404(db, task_id)
    ctx.require_task_edit(task)
    ctx.require(Permission.manage_tasks, task_id=task_id)

    board = get_board_or_404(db, task.board_id)
    board.task_ids = [tid for tid in (board.task_ids or []) if tid != task_id]
    db.delete(task)
    db.commit()

    logger.info(f"Task {task_id} deleted from board {board.id} by user {ctx.user_id}")
    refresh_projects(db, [board.project_id])
    return {"task_id": task_id, "board_id": board.id, "project_id": board.project_id}


def add_comment(ctx: AccessContext, task_id: int, text: str) -> models.Task:
    ctx.require(Permission.view, task_id=task_id)
    db = ctx.db
    task = get_task_or_404(db, task_id)

    comment = {
        "user_id": ctx.user_id,
        "text": text,
        "created_at": utc_now().isoformat(),
    }
    task.comments = list(task.comments or []) + [comment]
    db.commit()
    db.refresh(task)
    return task


def add_attachment(ctx: AccessContext, task_id: int, filename: str, path: str) -> models.Task:
    """Record attachment metadata; file storage happens elsewhere."""
    ctx.require(Permission.manage_tasks, task_id=task_id)
    db = ctx.db
    task = get_task_or_404(db, task_id)

    attachment = {
        "filename": filename,
        "path": path,
        "uploaded_by": ctx.user_id,
        "uploaded_at": utc_now().isoformat(),
    }
    task.attachments = list(task.attachments or []) + [attachment]
    db.commit()
    db.refresh(task)

    logger.info(f"Attachment '{filename}' added to task {task_id}")
    return task


def list_upcoming_tasks(db: Session, user: models.User, days: int) -> list[models.Task]:
    """Tasks assigned to the user, not Done, with a deadline within the next `days` days."""
    if days < 0:
        raise InvalidInputError("days must not be negative")
    now, until = date_range_for_upcoming(days)

    candidates = (
        db.query(models.Task)
        .filter(models.Task.deadline.isnot(None), models.Task.status != models.TaskStatus.done.value)
        .all()
    )
    # assigned_to is a JSON list, so membership is checked here rather than in SQL
    upcoming = [
        task for task in candidates
        if user.id in (task.assigned_to or []) and now <= as_utc(task.deadline) <= until
    ]
    return sorted(upcoming, key=lambda task: as_utc(task.deadline))


def _calendar_event(kind: str, item_id: int, title: str, start: datetime, color: str,
                    status: str, project: models.Project) -> dict:
    return {
        "id": f"{kind}_{item_id}",
        "type": kind,
        "title": title,
        "start": start,
        "end": start + CALENDAR_EVENT_DURATION,
        "color": color,
        "status": status,
        "project_id": project.id,
        "project_title": project.title,
        "all_day": False,
    }


def list_calendar_events(db: Session, user: models.User, start: datetime, end: datetime) -> list[dict]:
    """
    Deadlines between start and end, inclusive, as calendar events.

    Covers every project the user can see, plus the tasks in those projects
    assigned to the user directly or through one of the user's teams.
    """
    start, end = as_utc(start), as_utc(end)
    if start > end:
        raise InvalidInputError("start must not be after end")

    project_ids = MembershipResolver(db).list_accessible_project_ids(user.id)
    if not project_ids:
        return []
    projects = {
        project.id: project
        for project in db.query(models.Project).filter(models.Project.id.in_(project_ids)).all()
    }
    team_ids = {
        row.team_id
        for row in db.query(models.TeamMember.team_id).filter(models.TeamMember.user_id == user.id).all()
    }

    events = []
    for project in projects.values():
        deadline = as_utc(project.deadline)
        if deadline is not None and start <= deadline <= end:
            events.append(_calendar_event(
                "project", project.id, f"{project.title} (Project)", deadline,
                project.color, project.status, project,
            ))

    rows = (
        db.query(models.Task, models.Board.project_id)
        .join(models.Board, models.Board.id == models.Task.board_id)
        .filter(models.Board.project_id.in_(project_ids), models.Task.deadline.isnot(None))
        .all()
    )
    for task, project_id in rows:
        assigned = user.id in (task.assigned_to or []) or (
            task.assigned_team_id is not None and task.assigned_team_id in team_ids
        )
        deadline = as_utc(task.deadline)
        if not assigned or not start <= deadline <= end:
            continue
        project = projects[project_id]
        events.append(_calendar_event(
            "task", task.id, task.title, deadline, task.color or project.color, task.status, project,
        ))

    logger.debug(f"User {user.id} calendar {start.isoformat()}..{end.isoformat()}: {len(events)} events")
    return sorted(events, key=lambda event: (event["start"], event["id"]))
