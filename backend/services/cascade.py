"""
Cascade deletes for boards, projects and teams.

Each cascade runs inside one session transaction: dependents are removed,
parent references are detached and the entity itself is deleted before a
single commit. Any failure rolls the whole unit back and surfaces as
InternalError. Aggregate recalculation happens after the commit and is
best-effort.
"""

import logging
from collections import deque

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models
from errors import ConflictError, InternalError, NotFoundError
from services.aggregates import refresh_projects

logger = logging.getLogger(__name__)

# Deepest team hierarchy a cascade will walk before refusing
MAX_TEAM_DEPTH = 64


def _commit_or_rollback(db: Session, what: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Cascade delete of {what} rolled back: {e}")
        raise InternalError(f"Failed to delete {what}") from e


def _remove_board_rows(db: Session, board_ids: list[int]) -> int:
    """Delete tasks then boards for the given ids. Returns the number of tasks removed."""
    if not board_ids:
        return 0
    task_count = (
        db.query(models.Task)
        .filter(models.Task.board_id.in_(board_ids))
        .delete(synchronize_session=False)
    )
    db.query(models.Board).filter(models.Board.id.in_(board_ids)).delete(synchronize_session=False)
    return task_count


def delete_board(db: Session, board_id: int) -> dict:
    """
    Delete a board, its tasks and its reference in the owning project.

    Raises:
        NotFoundError: if the board does not exist
        InternalError: if the transaction fails (nothing is applied)
    """
    board = db.query(models.Board).filter(models.Board.id == board_id).first()
    if board is None:
        raise NotFoundError("Board not found")
    project_id = board.project_id

    try:
        deleted_tasks = (
            db.query(models.Task)
            .filter(models.Task.board_id == board_id)
            .delete(synchronize_session=False)
        )

        project = db.query(models.Project).filter(models.Project.id == project_id).first()
        if project is not None:
            project.board_ids = [bid for bid in (project.board_ids or []) if bid != board_id]

        db.delete(board)
        db.flush()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Cascade delete of board {board_id} rolled back: {e}")
        raise InternalError("Failed to delete board") from e
    _commit_or_rollback(db, f"board {board_id}")

    logger.info(f"Board {board_id} deleted with {deleted_tasks} tasks (project {project_id})")
    refresh_projects(db, [project_id])
    return {"board_id": board_id, "project_id": project_id, "deleted_tasks": deleted_tasks}


def delete_project(db: Session, project_id: int) -> dict:
    """
    Delete a project with all of its boards, tasks and membership records.

    Uses batched deletes that leave the same end state as deleting each
    board through delete_board.
    """
    project = db.query(models.Project).filter(models.Project.id == project_id).first()
    if project is None:
        raise NotFoundError("Project not found")

    try:
        board_ids = [
            row.id for row in db.query(models.Board.id).filter(models.Board.project_id == project_id).all()
        ]
        deleted_tasks = _remove_board_rows(db, board_ids)
        db.query(models.ProjectTeam).filter(models.ProjectTeam.project_id == project_id).delete(
            synchronize_session=False
        )
        db.delete(project)
        db.flush()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Cascade delete of project {project_id} rolled back: {e}")
        raise InternalError("Failed to delete project") from e
    _commit_or_rollback(db, f"project {project_id}")

    logger.info(
        f"Project {project_id} deleted with {len(board_ids)} boards and {deleted_tasks} tasks"
    )
    return {"project_id": project_id, "deleted_boards": len(board_ids), "deleted_tasks": deleted_tasks}


def collect_team_subtree(db: Session, team_id: int) -> list[int]:
    """
    Breadth-first walk of a team and its descendants.

    A malformed hierarchy that loops back on itself is broken at the first
    repeated team; a hierarchy deeper than MAX_TEAM_DEPTH is refused.
    """
    collected: list[int] = []
    visited: set[int] = set()
    queue = deque([(team_id, 0)])

    while queue:
        current_id, depth = queue.popleft()
        if current_id in visited:
            logger.warning(f"Team hierarchy cycle detected at team {current_id}; not revisiting")
            continue
        if depth > MAX_TEAM_DEPTH:
            raise ConflictError("Team hierarchy is too deep to delete safely")
        visited.add(current_id)
        collected.append(current_id)

        children = db.query(models.Team.id).filter(models.Team.parent_id == current_id).all()
        for child in children:
            queue.append((child.id, depth + 1))

    return collected


def delete_team(db: Session, team_id: int) -> dict:
    """
    Delete a team and, recursively, its child teams.

    Member links are removed, projects owned by a deleted team become
    personal projects and task team assignments are cleared.
    """
    team = db.query(models.Team).filter(models.Team.id == team_id).first()
    if team is None:
        raise NotFoundError("Team not found")

    team_ids = collect_team_subtree(db, team_id)

    try:
        db.query(models.TeamMember).filter(models.TeamMember.team_id.in_(team_ids)).delete(
            synchronize_session=False
        )
        detached_projects = (
            db.query(models.Project)
            .filter(models.Project.team_id.in_(team_ids))
            .update(
                {models.Project.team_id: None, models.Project.type: models.ProjectType.personal.value},
                synchronize_session=False,
            )
        )
        db.query(models.Task).filter(models.Task.assigned_team_id.in_(team_ids)).update(
            {models.Task.assigned_team_id: None}, synchronize_session=False
        )
        db.query(models.Team).filter(models.Team.id.in_(team_ids)).update(
            {models.Team.parent_id: None}, synchronize_session=False
        )
        db.query(models.Team).filter(models.Team.id.in_(team_ids)).delete(synchronize_session=False)
        db.flush()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Cascade delete of team {team_id} rolled back: {e}")
        raise InternalError("Failed to delete team") from e
    _commit_or_rollback(db, f"team {team_id}")
    db.expire_all()

    logger.info(
        f"Team {team_id} deleted with {len(team_ids) - 1} sub-teams; "
        f"{detached_projects} projects converted to personal"
    )
    return {"team_id": team_id, "deleted_teams": len(team_ids), "detached_projects": detached_projects}
