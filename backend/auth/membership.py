"""
Membership resolution: the acting user's effective role on a project.

A project's role for a user comes from the first provider that knows about
the user, queried in a fixed order:

1. Creator (project.created_by / legacy manager_id) -> owner
2. Normalised ProjectTeam record -> standardized record role
3. Embedded Project.members entry -> standardized entry role

If none matches, the resolver returns the NO_ACCESS sentinel (viewer role,
source "none"), which the permission gate always denies.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.orm import Session

import models
from auth.policy import ProjectRole, standardize_role
from errors import InvalidInputError, NotFoundError

logger = logging.getLogger(__name__)


class MembershipSource(str, enum.Enum):
    creator = "creator"
    project_team = "project_team"
    embedded = "embedded"
    none = "none"


@dataclass(frozen=True)
class Membership:
    role: ProjectRole
    source: MembershipSource

    @property
    def is_member(self) -> bool:
        return self.source is not MembershipSource.none


NO_ACCESS = Membership(role=ProjectRole.viewer, source=MembershipSource.none)


class CreatorProvider:
    source = MembershipSource.creator

    def lookup(self, db: Session, project: models.Project, user_id: int) -> Optional[Membership]:
        if user_id in (project.created_by, project.manager_id):
            return Membership(ProjectRole.owner, self.source)
        return None


class ProjectTeamProvider:
    source = MembershipSource.project_team

    def lookup(self, db: Session, project: models.Project, user_id: int) -> Optional[Membership]:
        record = (
            db.query(models.ProjectTeam)
            .filter(
                models.ProjectTeam.project_id == project.id,
                models.ProjectTeam.user_id == user_id,
            )
            .first()
        )
        if record is None:
            return None
        return Membership(standardize_role(record.role), self.source)


class EmbeddedMemberProvider:
    source = MembershipSource.embedded

    def lookup(self, db: Session, project: models.Project, user_id: int) -> Optional[Membership]:
        entry = find_embedded_member(project, user_id)
        if entry is None:
            return None
        return Membership(standardize_role(entry.get("role")), self.source)


def find_embedded_member(project: models.Project, user_id: int) -> Optional[dict]:
    for entry in project.members or []:
        if isinstance(entry, dict) and entry.get("user_id") == user_id:
            return entry
    return None


DEFAULT_PROVIDERS = (CreatorProvider(), ProjectTeamProvider(), EmbeddedMemberProvider())


class MembershipResolver:
    """
    Resolve a user's role on a project, directly or via a board/task id.

    Example:
        >>> resolver = MembershipResolver(db)
        >>> project_id = resolver.resolve_project_id(task_id=12)
        >>> membership = resolver.resolve(user.id, project_id=project_id)
        >>> membership.role, membership.source
        (<ProjectRole.member: 'member'>, <MembershipSource.project_team: 'project_team'>)
    """

    def __init__(self, db: Session, providers: Iterable = DEFAULT_PROVIDERS):
        self.db = db
        self.providers = tuple(providers)

    def resolve_project_id(
        self,
        project_id: Optional[int] = None,
        board_id: Optional[int] = None,
        task_id: Optional[int] = None,
    ) -> int:
        """Walk task -> board -> project; exactly one identifier must be given."""
        given = [value for value in (project_id, board_id, task_id) if value is not None]
        if len(given) != 1:
            raise InvalidInputError("Exactly one of project, board or task identifier is required")

        if task_id is not None:
            task = self.db.query(models.Task).filter(models.Task.id == task_id).first()
            if task is None:
                logger.info(f"Task {task_id} not found while resolving project")
                raise NotFoundError("Task not found")
            board_id = task.board_id

        if board_id is not None:
            board = self.db.query(models.Board).filter(models.Board.id == board_id).first()
            if board is None:
                logger.info(f"Board {board_id} not found while resolving project")
                raise NotFoundError("Board not found")
            project_id = board.project_id

        return project_id

    def get_project(self, project_id: int) -> models.Project:
        project = self.db.query(models.Project).filter(models.Project.id == project_id).first()
        if project is None:
            logger.info(f"Project {project_id} not found")
            raise NotFoundError("Project not found")
        return project

    def resolve_for_project(self, user_id: int, project: models.Project) -> Membership:
        for provider in self.providers:
            membership = provider.lookup(self.db, project, user_id)
            if membership is not None:
                logger.debug(
                    f"User {user_id} resolved as '{membership.role.value}' on project {project.id} "
                    f"via {membership.source.value}"
                )
                return membership
        logger.debug(f"User {user_id} has no membership in project {project.id}")
        return NO_ACCESS

    def resolve(
        self,
        user_id: int,
        project_id: Optional[int] = None,
        board_id: Optional[int] = None,
        task_id: Optional[int] = None,
    ) -> Membership:
        resolved_id = self.resolve_project_id(project_id, board_id, task_id)
        return self.resolve_for_project(user_id, self.get_project(resolved_id))

    def list_accessible_project_ids(self, user_id: int) -> list[int]:
        """Projects the user can see through any membership source."""
        project_ids = set()

        created = (
            self.db.query(models.Project.id)
            .filter((models.Project.created_by == user_id) | (models.Project.manager_id == user_id))
            .all()
        )
        project_ids.update(row.id for row in created)

        records = (
            self.db.query(models.ProjectTeam.project_id)
            .filter(models.ProjectTeam.user_id == user_id)
            .all()
        )
        project_ids.update(row.project_id for row in records)

        # Embedded lists are JSON; scan them in Python so any backend works
        for project in self.db.query(models.Project).all():
            if project.id not in project_ids and find_embedded_member(project, user_id):
                project_ids.add(project.id)

        logger.debug(f"User {user_id} has access to {len(project_ids)} projects")
        return sorted(project_ids)
