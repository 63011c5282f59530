"""
Permission gate for project and team operations.

Every mutating operation resolves the acting user's role through an
AccessContext (one per request) and checks the required permission before
touching any data. Denials raise ForbiddenError; missing entities raise
NotFoundError.
"""

import logging
from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

import models
from auth.dependencies import get_current_user
from auth.membership import Membership, MembershipResolver
from auth.policy import (
    Permission,
    ProjectRole,
    TeamRole,
    can_modify_role,
    can_perform_action,
    standardize_role,
    standardize_team_role,
)
from database import get_db
from errors import ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)


def require_permission(membership: Membership, permission: Permission) -> None:
    """
    Raise ForbiddenError unless the membership grants the permission.

    The no-access sentinel is denied even for view, so a non-member is never
    mistaken for a genuine viewer.
    """
    if not membership.is_member:
        raise ForbiddenError("Access denied: not a project member")
    if not can_perform_action(membership.role, permission):
        raise ForbiddenError(f"Permission denied. Required permission: {permission.value}")


class AccessContext:
    """
    Per-request authorization state.

    Caches resolved project ids (for board/task lookups) and memberships so a
    request resolves each project at most once.

    Example:
        >>> ctx = AccessContext(db, current_user)
        >>> membership = ctx.require(Permission.manage_tasks, board_id=board.id)
    """

    def __init__(self, db: Session, user: models.User, resolver: Optional[MembershipResolver] = None):
        self.db = db
        self.user = user
        self.resolver = resolver or MembershipResolver(db)
        self._project_ids: dict[tuple[str, int], int] = {}
        self._memberships: dict[int, Membership] = {}

    @property
    def user_id(self) -> int:
        return self.user.id

    def project_id_for(
        self,
        project_id: Optional[int] = None,
        board_id: Optional[int] = None,
        task_id: Optional[int] = None,
    ) -> int:
        if project_id is not None and board_id is None and task_id is None:
            return project_id
        key = ("task", task_id) if task_id is not None else ("board", board_id)
        if key not in self._project_ids:
            self._project_ids[key] = self.resolver.resolve_project_id(
                project_id=project_id, board_id=board_id, task_id=task_id
            )
        return self._project_ids[key]

    def membership(
        self,
        project_id: Optional[int] = None,
        board_id: Optional[int] = None,
        task_id: Optional[int] = None,
    ) -> Membership:
        resolved_id = self.project_id_for(project_id, board_id, task_id)
        if resolved_id not in self._memberships:
            project = self.resolver.get_project(resolved_id)
            self._memberships[resolved_id] = self.resolver.resolve_for_project(self.user_id, project)
        return self._memberships[resolved_id]

    def require(
        self,
        permission: Permission,
        *,
        project_id: Optional[int] = None,
        board_id: Optional[int] = None,
        task_id: Optional[int] = None,
    ) -> Membership:
        membership = self.membership(project_id, board_id, task_id)
        try:
            require_permission(membership, permission)
        except ForbiddenError:
            logger.info(
                f"User {self.user_id} denied '{permission.value}' on project "
                f"{self.project_id_for(project_id, board_id, task_id)} "
                f"(role '{membership.role.value}', source '{membership.source.value}')"
            )
            raise
        return membership

    def require_task_edit(self, task: models.Task) -> Membership:
        """
        Allow edit on any task, or edit_own on tasks the user created or is assigned to.
        """
        membership = self.membership(task_id=task.id)
        if membership.is_member and can_perform_action(membership.role, Permission.edit):
            return membership
        owns_task = task.created_by == self.user_id or self.user_id in (task.assigned_to or [])
        if owns_task and membership.is_member and can_perform_action(membership.role, Permission.edit_own):
            return membership
        logger.info(f"User {self.user_id} may not edit task {task.id} (role '{membership.role.value}')")
        if not membership.is_member:
            raise ForbiddenError("Access denied: not a project member")
        raise ForbiddenError("Permission denied. You can only edit your own tasks")


def ensure_not_owner(project: models.Project, user_id: int, action: str) -> None:
    """The project creator can never be removed or re-roled, not even by themselves."""
    if user_id in (project.created_by, project.manager_id):
        logger.warning(f"Refused to {action} owner {user_id} of project {project.id}")
        raise ForbiddenError(f"Cannot {action} the project owner")


def ensure_can_assign(membership: Membership, target_role) -> ProjectRole:
    """Return the standardized target role if the acting role may assign it."""
    role = standardize_role(target_role)
    if not can_modify_role(membership.role, role):
        logger.info(f"Role '{membership.role.value}' may not assign or modify role '{role.value}'")
        raise ForbiddenError(f"You cannot assign or modify the '{role.value}' role")
    return role


def get_access_context(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AccessContext:
    """FastAPI dependency: one AccessContext per request."""
    return AccessContext(db, current_user)


# ============== Teams ==============


def get_team_or_404(db: Session, team_id: int) -> models.Team:
    team = db.query(models.Team).filter(models.Team.id == team_id).first()
    if team is None:
        logger.info(f"Team {team_id} not found")
        raise NotFoundError("Team not found")
    return team


def get_team_membership(db: Session, team_id: int, user_id: int) -> Optional[models.TeamMember]:
    return (
        db.query(models.TeamMember)
        .filter(models.TeamMember.team_id == team_id, models.TeamMember.user_id == user_id)
        .first()
    )


def check_team_permission(user: models.User, team_id: int, required_role: TeamRole, db: Session) -> bool:
    """
    Check if a user holds the required team role.

    Global admin users pass every team check.
    """
    if getattr(user, "role", None) == models.UserRole.admin.value:
        logger.debug(f"User {user.id} is global admin, granting team access")
        return True

    membership = get_team_membership(db, team_id, user.id)
    if membership is None:
        logger.info(f"User {user.id} has no membership in team {team_id}")
        return False

    if required_role is TeamRole.member:
        return True
    has_permission = standardize_team_role(membership.role) is TeamRole.team_lead
    if not has_permission:
        logger.info(f"User {user.id} is '{membership.role}' in team {team_id}, but team_lead is required")
    return has_permission


def require_team_permission(user: models.User, team_id: int, required_role: TeamRole, db: Session) -> models.Team:
    """Return the team or raise NotFoundError / ForbiddenError."""
    team = get_team_or_404(db, team_id)
    if not check_team_permission(user, team_id, required_role, db):
        raise ForbiddenError(f"Insufficient permissions. Required team role: {required_role.value}")
    return team
