"""
Project operations and project membership management.

Membership lives in two places: the normalised ProjectTeam record and the
embedded Project.members snapshot. Writes keep both in step; reads merge
them with the normalised record taking precedence.
"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import models
from auth.membership import MembershipResolver, MembershipSource, find_embedded_member
from auth.permissions import AccessContext, ensure_can_assign, ensure_not_owner
from auth.policy import Permission, ProjectRole, can_modify_role, standardize_role
from errors import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from services import cascade
from services.aggregates import ProjectAggregates, recalculate_project
from services.notifications import Notice
from time_utils import utc_now

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("title", "description", "deadline", "color", "visibility")
# Columns that cannot be cleared; an explicit null leaves them unchanged
REQUIRED_FIELDS = frozenset({"title", "color", "visibility"})


def create_project(db: Session, user: models.User, data: dict) -> models.Project:
    """
    Create a project owned by the acting user.

    Team projects must name an existing team.
    """
    project_type = data.get("type") or models.ProjectType.personal.value
    project_type = getattr(project_type, "value", project_type)
    team_id = data.get("team_id")

    if project_type == models.ProjectType.team.value:
        if team_id is None:
            raise InvalidInputError("Team projects require a team_id")
        if db.query(models.Team).filter(models.Team.id == team_id).first() is None:
            raise NotFoundError("Team not found")
    elif project_type == models.ProjectType.personal.value:
        team_id = None
    else:
        raise InvalidInputError(f"Unknown project type: {project_type}")

    project = models.Project(
        title=data["title"],
        description=data.get("description"),
        deadline=data.get("deadline"),
        color=data.get("color") or "#6B4EFF",
        visibility=data.get("visibility") or "private",
        type=project_type,
        team_id=team_id,
        created_by=user.id,
        manager_id=user.id,
        members=[],
        board_ids=[],
    )
    db.add(project)
    db.commit()
    db.refresh(project)

    logger.info(f"Project created: {project.title} (ID: {project.id}) by user {user.id}")
    return project


def list_projects(db: Session, user: models.User) -> list[models.Project]:
    project_ids = MembershipResolver(db).list_accessible_project_ids(user.id)
    if not project_ids:
        return []
    return (
        db.query(models.Project)
        .filter(models.Project.id.in_(project_ids))
        .order_by(models.Project.created_at.desc(), models.Project.id.desc())
        .all()
    )


def get_project(ctx: AccessContext, project_id: int) -> models.Project:
    ctx.require(Permission.view, project_id=project_id)
    return ctx.resolver.get_project(project_id)


def update_project(ctx: AccessContext, project_id: int, data: dict) -> models.Project:
    ctx.require(Permission.edit, project_id=project_id)
    project = ctx.resolver.get_project(project_id)

    if "status" in data:
        raise InvalidInputError("Project status is derived from task progress and cannot be set")

    for field in UPDATABLE_FIELDS:
        if field not in data:
            continue
        if data[field] is None and field in REQUIRED_FIELDS:
            continue
        setattr(project, field, data[field])
    ctx.db.commit()
    ctx.db.refresh(project)

    logger.info(f"Project {project_id} updated by user {ctx.user_id}: {sorted(data)}")
    return project


def delete_project(ctx: AccessContext, project_id: int) -> dict:
    ctx.require(Permission.delete, project_id=project_id)
    return cascade.delete_project(ctx.db, project_id)


def get_project_stats(ctx: AccessContext, project_id: int) -> ProjectAggregates:
    """Recompute the counters on demand and return them."""
    ctx.require(Permission.view, project_id=project_id)
    aggregates = recalculate_project(ctx.db, project_id)
    ctx.db.commit()
    return aggregates


# ============== Members ==============


def _get_user(db: Session, user_id: Optional[int] = None, email: Optional[str] = None) -> models.User:
    query = db.query(models.User)
    if user_id is not None:
        user = query.filter(models.User.id == user_id).first()
    elif email:
        user = query.filter(models.User.email == email).first()
    else:
        raise InvalidInputError("Either user_id or email is required")
    if user is None:
        raise NotFoundError("User not found")
    return user


def _get_project_team_record(db: Session, project_id: int, user_id: int) -> Optional[models.ProjectTeam]:
    return (
        db.query(models.ProjectTeam)
        .filter(models.ProjectTeam.project_id == project_id, models.ProjectTeam.user_id == user_id)
        .first()
    )


def list_members(ctx: AccessContext, project_id: int) -> list[dict]:
    """
    Merged member list: owner first, then normalised records, then embedded
    entries that have no normalised record.
    """
    ctx.require(Permission.view, project_id=project_id)
    project = ctx.resolver.get_project(project_id)
    db = ctx.db

    members: dict[int, dict] = {
        project.created_by: {
            "user_id": project.created_by,
            "role": ProjectRole.owner.value,
            "source": MembershipSource.creator.value,
            "joined_at": project.created_at,
        }
    }

    records = db.query(models.ProjectTeam).filter(models.ProjectTeam.project_id == project_id).all()
    for record in records:
        members.setdefault(record.user_id, {
            "user_id": record.user_id,
            "role": standardize_role(record.role).value,
            "source": MembershipSource.project_team.value,
            "joined_at": record.joined_at,
        })

    for entry in project.members or []:
        if not isinstance(entry, dict):
            continue
        user_id = entry.get("user_id")
        if user_id is None:
            continue
        members.setdefault(user_id, {
            "user_id": user_id,
            "role": standardize_role(entry.get("role")).value,
            "source": MembershipSource.embedded.value,
            "joined_at": entry.get("joined_at"),
        })

    users = {
        u.id: u for u in db.query(models.User).filter(models.User.id.in_(list(members))).all()
    }
    for user_id, member in members.items():
        member["user"] = users.get(user_id)
    return list(members.values())


def add_member(ctx: AccessContext, project_id: int, data: dict) -> tuple[dict, list[Notice]]:
    """
    Add a user to the project with a role the acting user is allowed to grant.

    Returns:
        The new member entry and the notices to dispatch
    """
    membership = ctx.require(Permission.invite_members, project_id=project_id)
    role = ensure_can_assign(membership, data.get("role") or ProjectRole.member.value)
    project = ctx.resolver.get_project(project_id)
    db = ctx.db

    user = _get_user(db, data.get("user_id"), data.get("email"))
    if user.id in (project.created_by, project.manager_id):
        raise ConflictError("User is the project owner")
    if _get_project_team_record(db, project_id, user.id) or find_embedded_member(project, user.id):
        raise ConflictError("User already in project")

    joined_at = utc_now()
    db.add(models.ProjectTeam(
        project_id=project_id,
        user_id=user.id,
        role=role.value,
        added_by=ctx.user_id,
        joined_at=joined_at,
    ))
    project.members = list(project.members or []) + [
        {"user_id": user.id, "role": role.value, "joined_at": joined_at.isoformat()}
    ]
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("User already in project")

    logger.info(f"User {user.id} added to project {project_id} as {role.value} by user {ctx.user_id}")
    member = {
        "user_id": user.id,
        "role": role.value,
        "source": MembershipSource.project_team.value,
        "joined_at": joined_at,
        "user": user,
    }
    notice = Notice(
        user.id,
        models.NotificationType.project_team.value,
        f'You have been added to project "{project.title}" as {role.value}',
    )
    return member, [notice]


def _current_member_role(db: Session, project: models.Project, user_id: int) -> Optional[ProjectRole]:
    record = _get_project_team_record(db, project.id, user_id)
    if record is not None:
        return standardize_role(record.role)
    entry = find_embedded_member(project, user_id)
    if entry is not None:
        return standardize_role(entry.get("role"))
    return None


def update_member_role(
    ctx: AccessContext, project_id: int, user_id: int, new_role
) -> tuple[dict, list[Notice]]:
    membership = ctx.require(Permission.assign_roles, project_id=project_id)
    project = ctx.resolver.get_project(project_id)
    ensure_not_owner(project, user_id, "change the role of")
    db = ctx.db

    current_role = _current_member_role(db, project, user_id)
    if current_role is None:
        raise NotFoundError("Member not found in project team")
    ensure_can_assign(membership, current_role)
    role = ensure_can_assign(membership, new_role)

    record = _get_project_team_record(db, project_id, user_id)
    if record is not None:
        record.role = role.value
    if find_embedded_member(project, user_id) is not None:
        project.members = [
            {**entry, "role": role.value}
            if isinstance(entry, dict) and entry.get("user_id") == user_id
            else entry
            for entry in project.members
        ]
    db.commit()

    logger.info(f"User {user_id} role in project {project_id} changed {current_role.value} -> {role.value}")
    member = {
        "user_id": user_id,
        "role": role.value,
        "source": (MembershipSource.project_team if record is not None else MembershipSource.embedded).value,
        "joined_at": record.joined_at if record is not None else None,
        "user": db.query(models.User).filter(models.User.id == user_id).first(),
    }
    notice = Notice(
        user_id,
        models.NotificationType.project_team.value,
        f'Your role in project "{project.title}" has been updated to {role.value}',
    )
    return member, [notice]


def remove_member(ctx: AccessContext, project_id: int, user_id: int) -> list[Notice]:
    """
    Remove a member from both membership sources.

    The owner can never be removed, whoever asks; members cannot remove
    themselves through this operation.
    """
    project = ctx.resolver.get_project(project_id)
    ensure_not_owner(project, user_id, "remove")
    membership = ctx.require(Permission.invite_members, project_id=project_id)

    if user_id == ctx.user_id:
        raise InvalidInputError("Cannot remove yourself from the project")

    db = ctx.db
    current_role = _current_member_role(db, project, user_id)
    if current_role is None:
        raise NotFoundError("Member not found in project team")
    if not can_modify_role(membership.role, current_role):
        raise ForbiddenError("You do not have permission to remove this member")

    record = _get_project_team_record(db, project_id, user_id)
    if record is not None:
        db.delete(record)
    project.members = [
        entry for entry in (project.members or [])
        if not (isinstance(entry, dict) and entry.get("user_id") == user_id)
    ]
    db.commit()

    logger.info(f"User {user_id} removed from project {project_id} by user {ctx.user_id}")
    return [Notice(
        user_id,
        models.NotificationType.project_team.value,
        f'You have been removed from project "{project.title}"',
    )]
