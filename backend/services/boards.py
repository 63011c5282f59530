"""
Board operations within a project.
"""

import logging
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

import models
from auth.permissions import AccessContext
from auth.policy import Permission
from errors import InvalidInputError, NotFoundError
from services import cascade
from services.aggregates import refresh_projects
from services.notifications import Notice, notices_for

logger = logging.getLogger(__name__)

BOARD_STATUSES = {status.value for status in models.BoardStatus}


def _status_value(value: Any, field: str) -> Optional[str]:
    if value is None:
        return None
    value = getattr(value, "value", value)
    if value not in BOARD_STATUSES:
        raise InvalidInputError(f"Invalid board {field}: {value}")
    return value


def validate_user_ids(db: Session, user_ids: Any, field: str = "assigned_to") -> list[int]:
    """Require a list of ids of existing users; returns them de-duplicated in order."""
    if user_ids is None:
        return []
    if not isinstance(user_ids, (list, tuple)):
        raise InvalidInputError(f"{field} must be an array of user ids")
    if not all(isinstance(uid, int) and not isinstance(uid, bool) for uid in user_ids):
        raise InvalidInputError(f"{field} must contain integer user ids")
    unique_ids = list(dict.fromkeys(user_ids))
    if unique_ids:
        found = db.query(func.count(models.User.id)).filter(models.User.id.in_(unique_ids)).scalar()
        if found != len(unique_ids):
            raise NotFoundError("One or more users not found")
    return unique_ids


def get_board_or_404(db: Session, board_id: int) -> models.Board:
    board = db.query(models.Board).filter(models.Board.id == board_id).first()
    if board is None:
        raise NotFoundError("Board not found")
    return board


def create_board(ctx: AccessContext, project_id: int, data: dict) -> tuple[models.Board, list[Notice]]:
    ctx.require(Permission.manage_boards, project_id=project_id)
    project = ctx.resolver.get_project(project_id)
    db = ctx.db

    member_ids = validate_user_ids(db, data.get("assigned_to"))
    status = _status_value(data.get("status"), "status") or models.BoardStatus.todo.value
    board_type = _status_value(data.get("type"), "type") or status

    position = data.get("position")
    if position is None:
        highest = (
            db.query(func.max(models.Board.position))
            .filter(models.Board.project_id == project_id)
            .scalar()
        )
        position = 0 if highest is None else highest + 1

    board = models.Board(
        title=data["title"],
        project_id=project_id,
        deadline=data.get("deadline"),
        member_ids=member_ids,
        task_ids=[],
        status=status,
        type=board_type,
        position=position,
    )
    db.add(board)
    db.flush()
    project.board_ids = list(project.board_ids or []) + [board.id]
    db.commit()
    db.refresh(board)

    logger.info(f"Board created: {board.title} (ID: {board.id}) in project {project_id}")
    refresh_projects(db, [project_id])

    notices = notices_for(
        member_ids,
        models.NotificationType.board.value,
        f"You have been assigned to a new board: {board.title}",
        exclude=[ctx.user_id],
    )
    return board, notices


def get_board(ctx: AccessContext, board_id: int) -> models.Board:
    ctx.require(Permission.view, board_id=board_id)
    return get_board_or_404(ctx.db, board_id)


def list_boards(ctx: AccessContext, project_id: int) -> list[models.Board]:
    ctx.require(Permission.view, project_id=project_id)
    return (
        ctx.db.query(models.Board)
        .filter(models.Board.project_id == project_id)
        .order_by(models.Board.position.asc(), models.Board.id.asc())
        .all()
    )


def update_board(ctx: AccessContext, board_id: int, data: dict) -> tuple[models.Board, list[Notice]]:
    """Update title, deadline and members; only newly added members are notified."""
    ctx.require(Permission.manage_boards, board_id=board_id)
    db = ctx.db
    board = get_board_or_404(db, board_id)

    new_members: list[int] = []
    if "assigned_to" in data and data["assigned_to"] is not None:
        member_ids = validate_user_ids(db, data["assigned_to"])
        previous = set(board.member_ids or [])
        new_members = [uid for uid in member_ids if uid not in previous]
        board.member_ids = member_ids
    if data.get("title") is not None:
        board.title = data["title"]
    if "deadline" in data:
        board.deadline = data["deadline"]
    db.commit()
    db.refresh(board)

    logger.info(f"Board {board_id} updated by user {ctx.user_id}")
    refresh_projects(db, [board.project_id])

    notices = notices_for(
        new_members,
        models.NotificationType.board.value,
        f"You have been assigned to the board: {board.title}",
        exclude=[ctx.user_id],
    )
    return board, notices


def update_board_status(ctx: AccessContext, board_id: int, status: Any) -> models.Board:
    ctx.require(Permission.manage_boards, board_id=board_id)
    db = ctx.db
    board = get_board_or_404(db, board_id)

    board.status = _status_value(status, "status")
    db.commit()
    db.refresh(board)

    logger.info(f"Board {board_id} status set to '{board.status}'")
    refresh_projects(db, [board.project_id])
    return board


def reorder_boards(ctx: AccessContext, project_id: int, board_ids: Any) -> list[models.Board]:
    """Set each board's position to its index in board_ids."""
    ctx.require(Permission.manage_boards, project_id=project_id)
    db = ctx.db

    if not isinstance(board_ids, list):
        raise InvalidInputError("Invalid input: board_ids must be an array")
    if not all(isinstance(board_id, int) and not isinstance(board_id, bool) for board_id in board_ids):
        raise InvalidInputError("Invalid input: board_ids must contain integer ids")
    if len(set(board_ids)) != len(board_ids):
        raise InvalidInputError("Invalid input: board_ids contains duplicates")

    boards = (
        db.query(models.Board)
        .filter(models.Board.id.in_(board_ids), models.Board.project_id == project_id)
        .all()
    )
    if len(boards) != len(board_ids):
        logger.info(f"Board reorder mismatch for project {project_id}: found {len(boards)} of {len(board_ids)}")
        raise InvalidInputError("Some boards do not belong to the specified project or do not exist")

    by_id = {board.id: board for board in boards}
    for index, board_id in enumerate(board_ids):
        by_id[board_id].position = index
    db.commit()

    logger.info(f"Board positions updated for project {project_id}")
    return [by_id[board_id] for board_id in board_ids]


def delete_board(ctx: AccessContext, board_id: int) -> dict:
    ctx.require(Permission.manage_boards, board_id=board_id)
    return cascade.delete_board(ctx.db, board_id)
