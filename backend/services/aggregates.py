"""
Aggregate recalculation for project task counters.

recalculate_project recomputes totals from live task rows every time, so it
is idempotent and converges under concurrent writers (last writer wins with
the same answer once all writes land). refresh_projects is the best-effort
wrapper used after mutations: failures are logged and never reach the
caller.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Iterable

from sqlalchemy.orm import Session

import models
from auth.policy import derive_project_status
from errors import NotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectAggregates:
    total_tasks: int
    completed_tasks: int
    progress: int
    status: str

    def as_dict(self) -> dict:
        return asdict(self)


def compute_progress(total_tasks: int, completed_tasks: int) -> int:
    """Rounded completion percentage; half rounds up (2/3 -> 67, 1/8 -> 13)."""
    if total_tasks <= 0:
        return 0
    return (completed_tasks * 200 + total_tasks) // (total_tasks * 2)


def recalculate_project(db: Session, project_id: int) -> ProjectAggregates:
    """
    Recompute and store a project's counters from its boards' tasks.

    Flushes but does not commit; the caller owns the transaction.

    Raises:
        NotFoundError: if the project does not exist
    """
    project = db.query(models.Project).filter(models.Project.id == project_id).first()
    if project is None:
        raise NotFoundError("Project not found")

    board_ids = [row.id for row in db.query(models.Board.id).filter(models.Board.project_id == project_id).all()]

    total_tasks = 0
    completed_tasks = 0
    if board_ids:
        statuses = db.query(models.Task.status).filter(models.Task.board_id.in_(board_ids)).all()
        total_tasks = len(statuses)
        completed_tasks = sum(1 for row in statuses if row.status == models.TaskStatus.done.value)

    progress = compute_progress(total_tasks, completed_tasks)
    aggregates = ProjectAggregates(
        total_tasks=total_tasks,
        completed_tasks=completed_tasks,
        progress=progress,
        status=derive_project_status(progress),
    )

    project.total_tasks = aggregates.total_tasks
    project.completed_tasks = aggregates.completed_tasks
    project.progress = aggregates.progress
    project.status = aggregates.status
    db.flush()

    logger.debug(
        f"Project {project_id} recalculated: {completed_tasks}/{total_tasks} done, "
        f"progress {progress}%, status '{aggregates.status}'"
    )
    return aggregates


def refresh_projects(db: Session, project_ids: Iterable[int]) -> dict[int, ProjectAggregates]:
    """
    Best-effort recalculation, once per distinct project.

    Runs after the triggering mutation has committed. Each project is
    committed separately; a failure is rolled back and logged, and the
    remaining projects are still refreshed.

    Returns:
        Mapping of project id to aggregates for the projects that succeeded
    """
    results: dict[int, ProjectAggregates] = {}
    for project_id in dict.fromkeys(pid for pid in project_ids if pid is not None):
        try:
            results[project_id] = recalculate_project(db, project_id)
            db.commit()
        except NotFoundError:
            logger.warning(f"Skipping aggregate refresh for missing project {project_id}")
            db.rollback()
        except Exception:
            logger.exception(f"Aggregate refresh failed for project {project_id}; counters left stale")
            db.rollback()
    return results
