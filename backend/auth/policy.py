"""
Role policy: canonical project/team roles and their permission sets.

Pure functions with no database access. Every function here is total:
any input (including None or non-string values) yields a defined result.
"""

import enum
from typing import Any, FrozenSet, Tuple


class ProjectRole(str, enum.Enum):
    owner = "owner"
    admin = "admin"
    member = "member"
    viewer = "viewer"


class Permission(str, enum.Enum):
    create = "create"
    edit = "edit"
    edit_own = "edit_own"
    delete = "delete"
    assign_roles = "assign_roles"
    invite_members = "invite_members"
    view = "view"
    manage_tasks = "manage_tasks"
    manage_boards = "manage_boards"


class TeamRole(str, enum.Enum):
    team_lead = "team_lead"
    member = "member"


ROLE_PERMISSIONS: dict[ProjectRole, FrozenSet[Permission]] = {
    ProjectRole.owner: frozenset({
        Permission.create,
        Permission.edit,
        Permission.delete,
        Permission.assign_roles,
        Permission.invite_members,
        Permission.view,
        Permission.manage_tasks,
        Permission.manage_boards,
    }),
    ProjectRole.admin: frozenset({
        Permission.create,
        Permission.edit,
        Permission.invite_members,
        Permission.view,
        Permission.manage_tasks,
        Permission.manage_boards,
    }),
    ProjectRole.member: frozenset({
        Permission.create,
        Permission.edit_own,
        Permission.view,
        Permission.manage_tasks,
    }),
    ProjectRole.viewer: frozenset({Permission.view}),
}

# Roles each role may assign or modify: itself and everything below it
ROLE_HIERARCHY: dict[ProjectRole, Tuple[ProjectRole, ...]] = {
    ProjectRole.owner: (ProjectRole.owner, ProjectRole.admin, ProjectRole.member, ProjectRole.viewer),
    ProjectRole.admin: (ProjectRole.admin, ProjectRole.member, ProjectRole.viewer),
    ProjectRole.member: (ProjectRole.member, ProjectRole.viewer),
    ProjectRole.viewer: (ProjectRole.viewer,),
}

# Display names and roles from earlier schemas
LEGACY_ROLE_NAMES = {
    "Owner": ProjectRole.owner,
    "Admin": ProjectRole.admin,
    "Member": ProjectRole.member,
    "Viewer": ProjectRole.viewer,
    "manager": ProjectRole.admin,
    "editor": ProjectRole.member,
}

TEAM_ROLE_ALIASES = {
    "team_lead": TeamRole.team_lead,
    "team_leader": TeamRole.team_lead,
    "lead": TeamRole.team_lead,
    "member": TeamRole.member,
}


def standardize_role(role: Any) -> ProjectRole:
    """
    Map any role input onto a canonical ProjectRole.

    Empty, unrecognised and non-string inputs become viewer. Matching is
    case-insensitive after the legacy-name table is consulted.

    Example:
        >>> standardize_role("Admin")
        <ProjectRole.admin: 'admin'>
        >>> standardize_role("superuser")
        <ProjectRole.viewer: 'viewer'>
    """
    if isinstance(role, ProjectRole):
        return role
    if not isinstance(role, str):
        return ProjectRole.viewer
    name = role.strip()
    if not name:
        return ProjectRole.viewer
    if name in LEGACY_ROLE_NAMES:
        return LEGACY_ROLE_NAMES[name]
    lowered = name.lower()
    if lowered in LEGACY_ROLE_NAMES:
        return LEGACY_ROLE_NAMES[lowered]
    try:
        return ProjectRole(lowered)
    except ValueError:
        return ProjectRole.viewer


def permissions_of(role: Any) -> FrozenSet[Permission]:
    return ROLE_PERMISSIONS[standardize_role(role)]


def can_perform_action(role: Any, action: Any) -> bool:
    """True if the standardized role's permission set contains the action."""
    if isinstance(action, Permission):
        permission = action
    else:
        try:
            permission = Permission(action)
        except ValueError:
            return False
    return permission in permissions_of(role)


def role_hierarchy(role: Any) -> Tuple[ProjectRole, ...]:
    return ROLE_HIERARCHY[standardize_role(role)]


def can_modify_role(acting_role: Any, target_role: Any) -> bool:
    """True if acting_role may assign, change or remove target_role."""
    return standardize_role(target_role) in role_hierarchy(acting_role)


def standardize_team_role(role: Any) -> TeamRole:
    if isinstance(role, TeamRole):
        return role
    if not isinstance(role, str):
        return TeamRole.member
    return TEAM_ROLE_ALIASES.get(role.strip().lower(), TeamRole.member)


def derive_project_status(progress: int) -> str:
    """Project status as a pure function of progress (0..100)."""
    if progress >= 100:
        return "Completed"
    if progress > 0:
        return "In Progress"
    return "To Do"
