"""
Tests for the permission gate: AccessContext, owner protection and team checks.
"""

import pytest
from sqlalchemy.orm import Session

import models
from auth.membership import Membership, MembershipResolver, MembershipSource, NO_ACCESS
from auth.permissions import (
    AccessContext,
    check_team_permission,
    ensure_can_assign,
    ensure_not_owner,
    require_permission,
    require_team_permission,
)
from auth.policy import Permission, ProjectRole, TeamRole
from errors import ForbiddenError, NotFoundError
from tests.conftest import make_task


class CountingResolver(MembershipResolver):
    def __init__(self, db):
        super().__init__(db)
        self.calls = 0

    def resolve_for_project(self, user_id, project):
        self.calls += 1
        return super().resolve_for_project(user_id, project)


def test_require_permission_denies_sentinel_even_for_view():
    with pytest.raises(ForbiddenError, match="not a project member"):
        require_permission(NO_ACCESS, Permission.view)


def test_require_permission_allows_genuine_viewer():
    require_permission(Membership(ProjectRole.viewer, MembershipSource.embedded), Permission.view)


def test_require_permission_denies_missing_permission():
    with pytest.raises(ForbiddenError, match="delete"):
        require_permission(Membership(ProjectRole.member, MembershipSource.project_team), Permission.delete)


def test_access_context_resolves_once_per_project(
    test_db: Session, project: models.Project, board: models.Board, member_user: models.User
):
    task = make_task(test_db, board)
    resolver = CountingResolver(test_db)
    ctx = AccessContext(test_db, member_user, resolver)

    ctx.require(Permission.view, project_id=project.id)
    ctx.require(Permission.manage_tasks, board_id=board.id)
    ctx.require(Permission.create, task_id=task.id)

    assert resolver.calls == 1


def test_access_context_denial(test_db: Session, project: models.Project, member_user: models.User):
    ctx = AccessContext(test_db, member_user)

    with pytest.raises(ForbiddenError):
        ctx.require(Permission.delete, project_id=project.id)


def test_access_context_missing_project(test_db: Session, member_user: models.User):
    with pytest.raises(NotFoundError):
        AccessContext(test_db, member_user).require(Permission.view, project_id=404)


def test_member_can_edit_own_task_only(
    test_db: Session, board: models.Board, member_user: models.User, owner: models.User
):
    own = make_task(test_db, board, "Mine", created_by=member_user.id)
    assigned = make_task(test_db, board, "Assigned", created_by=owner.id, assigned_to=[member_user.id])
    foreign = make_task(test_db, board, "Theirs", created_by=owner.id)
    ctx = AccessContext(test_db, member_user)

    ctx.require_task_edit(own)
    ctx.require_task_edit(assigned)
    with pytest.raises(ForbiddenError, match="your own tasks"):
        ctx.require_task_edit(foreign)


def test_admin_can_edit_any_task(test_db: Session, board: models.Board, admin_member: models.User, owner: models.User):
    task = make_task(test_db, board, created_by=owner.id)

    membership = AccessContext(test_db, admin_member).require_task_edit(task)

    assert membership.role is ProjectRole.admin


def test_viewer_cannot_edit_own_task(test_db: Session, board: models.Board, viewer_user: models.User):
    task = make_task(test_db, board, created_by=viewer_user.id)

    with pytest.raises(ForbiddenError):
        AccessContext(test_db, viewer_user).require_task_edit(task)


def test_ensure_not_owner(project: models.Project, owner: models.User, member_user: models.User):
    ensure_not_owner(project, member_user.id, "remove")
    with pytest.raises(ForbiddenError, match="Cannot remove the project owner"):
        ensure_not_owner(project, owner.id, "remove")


def test_ensure_can_assign():
    admin = Membership(ProjectRole.admin, MembershipSource.project_team)

    assert ensure_can_assign(admin, "Member") is ProjectRole.member
    with pytest.raises(ForbiddenError):
        ensure_can_assign(admin, "owner")


def test_team_permissions(
    test_db: Session, team: models.Team, owner: models.User, member_user: models.User,
    outsider: models.User, global_admin: models.User
):
    assert check_team_permission(owner, team.id, TeamRole.team_lead, test_db)
    assert check_team_permission(member_user, team.id, TeamRole.member, test_db)
    assert not check_team_permission(member_user, team.id, TeamRole.team_lead, test_db)
    assert not check_team_permission(outsider, team.id, TeamRole.member, test_db)
    assert check_team_permission(global_admin, team.id, TeamRole.team_lead, test_db)

    with pytest.raises(ForbiddenError):
        require_team_permission(member_user, team.id, TeamRole.team_lead, test_db)
    with pytest.raises(NotFoundError):
        require_team_permission(owner, 999, TeamRole.member, test_db)
