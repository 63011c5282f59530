"""
Team management: hierarchy, membership and team-scoped task counts.

Teams are managed by their team_lead or by a global admin. A team always
keeps at most one lead; promoting a new lead demotes the previous one.
"""

import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

import models
from auth.permissions import get_team_membership, get_team_or_404, require_team_permission
from auth.policy import TeamRole, standardize_team_role
from errors import ConflictError, ForbiddenError, NotFoundError
from services import cascade
from services.notifications import Notice

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "description", "type", "department", "status")


def would_create_cycle(db: Session, team_id: int, new_parent_id: Optional[int]) -> bool:
    """
    True if making new_parent_id the parent of team_id closes a loop.

    Walks up from the proposed parent; a walk longer than MAX_TEAM_DEPTH is
    treated as a cycle.
    """
    if new_parent_id is None:
        return False
    current_id: Optional[int] = new_parent_id
    for _ in range(cascade.MAX_TEAM_DEPTH + 1):
        if current_id is None:
            return False
        if current_id == team_id:
            return True
        row = db.query(models.Team.parent_id).filter(models.Team.id == current_id).first()
        current_id = row.parent_id if row is not None else None
    logger.warning(f"Team ancestry walk from {new_parent_id} exceeded {cascade.MAX_TEAM_DEPTH} levels")
    return True


def create_team(db: Session, user: models.User, data: dict) -> models.Team:
    """Create a team with the creator as its team_lead."""
    parent_id = data.get("parent_id")
    if parent_id is not None:
        get_team_or_404(db, parent_id)

    team = models.Team(
        name=data["name"],
        description=data.get("description"),
        type=data.get("type") or "functional",
        department=data.get("department"),
        parent_id=parent_id,
        created_by=user.id,
    )
    db.add(team)
    db.flush()
    db.add(models.TeamMember(team_id=team.id, user_id=user.id, role=TeamRole.team_lead.value))
    db.commit()
    db.refresh(team)

    logger.info(f"Team created: {team.name} (ID: {team.id}) by user {user.id}")
    return team


def list_teams(db: Session, user: models.User) -> list[models.Team]:
    """Global admins see every team; everyone else sees the teams they belong to."""
    query = db.query(models.Team)
    if user.role != models.UserRole.admin.value:
        team_ids = [
            row.team_id
            for row in db.query(models.TeamMember.team_id).filter(models.TeamMember.user_id == user.id).all()
        ]
        if not team_ids:
            return []
        query = query.filter(models.Team.id.in_(team_ids))
    teams = query.order_by(models.Team.name.asc(), models.Team.id.asc()).all()
    logger.debug(f"User {user.id} retrieved {len(teams)} teams")
    return teams


def get_team(db: Session, user: models.User, team_id: int) -> models.Team:
    require_team_permission(user, team_id, TeamRole.member, db)
    return (
        db.query(models.Team)
        .options(
            joinedload(models.Team.parent),
            joinedload(models.Team.children),
            joinedload(models.Team.members).joinedload(models.TeamMember.user),
        )
        .filter(models.Team.id == team_id)
        .first()
    )


def get_team_hierarchy(db: Session, user: models.User, team_id: int) -> list[models.Team]:
    """
    Path from the root team down to team_id.

    The walk stops at a missing parent or a repeated team, and a path longer
    than MAX_TEAM_DEPTH is refused.
    """
    team = require_team_permission(user, team_id, TeamRole.member, db)
    path = [team]
    seen = {team.id}
    current = team
    while current.parent_id is not None:
        if current.parent_id in seen:
            logger.warning(f"Team {team_id} hierarchy loops back to team {current.parent_id}")
            break
        if len(path) > cascade.MAX_TEAM_DEPTH:
            logger.warning(f"Team {team_id} hierarchy exceeds {cascade.MAX_TEAM_DEPTH} levels")
            raise ConflictError(f"Team hierarchy is deeper than {cascade.MAX_TEAM_DEPTH} levels")
        parent = db.query(models.Team).filter(models.Team.id == current.parent_id).first()
        if parent is None:
            break
        path.append(parent)
        seen.add(parent.id)
        current = parent
    path.reverse()
    return path


def update_team(db: Session, user: models.User, team_id: int, data: dict) -> models.Team:
    team = require_team_permission(user, team_id, TeamRole.team_lead, db)

    if "parent_id" in data:
        parent_id = data["parent_id"]
        if parent_id == team_id:
            raise ConflictError("A team cannot be its own parent")
        if parent_id is not None:
            get_team_or_404(db, parent_id)
            if would_create_cycle(db, team_id, parent_id):
                logger.info(f"Rejected parent {parent_id} for team {team_id}: hierarchy cycle")
                raise ConflictError("Moving the team under this parent would create a cycle")
        team.parent_id = parent_id

    for field in UPDATABLE_FIELDS:
        if data.get(field) is not None:
            setattr(team, field, data[field])
    db.commit()
    db.refresh(team)

    logger.info(f"Team updated: {team.name} (ID: {team_id}) by user {user.id}")
    return team


def delete_team(db: Session, user: models.User, team_id: int) -> dict:
    require_team_permission(user, team_id, TeamRole.team_lead, db)
    return cascade.delete_team(db, team_id)


# ============== Members ==============


def _demote_other_leads(db: Session, team_id: int, keep_user_id: int) -> list[int]:
    """Demote every other team_lead to member; returns the demoted user ids."""
    leads = (
        db.query(models.TeamMember)
        .filter(
            models.TeamMember.team_id == team_id,
            models.TeamMember.role == TeamRole.team_lead.value,
            models.TeamMember.user_id != keep_user_id,
        )
        .all()
    )
    for lead in leads:
        lead.role = TeamRole.member.value
    return [lead.user_id for lead in leads]


def _demotion_notices(team: models.Team, user_ids: list[int]) -> list[Notice]:
    return [
        Notice(
            uid,
            models.NotificationType.team.value,
            f'Your role in team "{team.name}" has been updated to {TeamRole.member.value}',
        )
        for uid in user_ids
    ]


def list_team_members(db: Session, user: models.User, team_id: int) -> list[models.TeamMember]:
    require_team_permission(user, team_id, TeamRole.member, db)
    return (
        db.query(models.TeamMember)
        .filter(models.TeamMember.team_id == team_id)
        .options(joinedload(models.TeamMember.user))
        .order_by(models.TeamMember.id.asc())
        .all()
    )


def add_team_member(
    db: Session, user: models.User, team_id: int, data: dict
) -> tuple[models.TeamMember, list[Notice]]:
    team = require_team_permission(user, team_id, TeamRole.team_lead, db)

    new_user = db.query(models.User).filter(models.User.id == data["user_id"]).first()
    if new_user is None:
        raise NotFoundError("User not found")
    if get_team_membership(db, team_id, new_user.id) is not None:
        raise ConflictError("User is already a member of this team")

    role = standardize_team_role(data.get("role"))
    demoted = _demote_other_leads(db, team_id, new_user.id) if role is TeamRole.team_lead else []
    member = models.TeamMember(team_id=team_id, user_id=new_user.id, role=role.value)
    db.add(member)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("User is already a member of this team")
    db.refresh(member)

    logger.info(f"User {new_user.id} added to team {team_id} with role {role.value}")
    notices = [Notice(new_user.id, models.NotificationType.team.value, f'You have been added to team "{team.name}"')]
    notices.extend(_demotion_notices(team, demoted))
    return member, notices


def update_team_member_role(
    db: Session, user: models.User, team_id: int, user_id: int, new_role
) -> tuple[models.TeamMember, list[Notice]]:
    """
    Change a member's team role.

    Promoting someone to team_lead demotes the current lead; the current lead
    cannot be demoted directly since that would leave the team leaderless.
    """
    team = require_team_permission(user, team_id, TeamRole.team_lead, db)
    member = get_team_membership(db, team_id, user_id)
    if member is None:
        raise NotFoundError("Team member not found")

    role = standardize_team_role(new_role)
    current = standardize_team_role(member.role)
    if current is TeamRole.team_lead and role is not TeamRole.team_lead:
        logger.warning(f"User {user.id} attempted to demote the lead of team {team_id}")
        raise ForbiddenError("Cannot demote the team lead. Promote another member to team lead first.")

    demoted = _demote_other_leads(db, team_id, user_id) if role is TeamRole.team_lead else []
    changed = current is not role
    member.role = role.value
    db.commit()
    db.refresh(member)

    logger.info(f"Member {user_id} in team {team_id} updated to role {role.value}")
    notices = []
    if changed:
        notices.append(Notice(
            user_id,
            models.NotificationType.team.value,
            f'Your role in team "{team.name}" has been updated to {role.value}',
        ))
    notices.extend(_demotion_notices(team, demoted))
    return member, notices


def remove_team_member(db: Session, user: models.User, team_id: int, user_id: int) -> list[Notice]:
    team = require_team_permission(user, team_id, TeamRole.team_lead, db)
    member = get_team_membership(db, team_id, user_id)
    if member is None:
        raise NotFoundError("Team member not found")

    if standardize_team_role(member.role) is TeamRole.team_lead:
        lead_count = (
            db.query(func.count(models.TeamMember.id))
            .filter(models.TeamMember.team_id == team_id, models.TeamMember.role == TeamRole.team_lead.value)
            .scalar()
        )
        if lead_count <= 1:
            logger.warning(f"User {user.id} attempted to remove the sole lead of team {team_id}")
            raise ForbiddenError("Cannot remove the team lead. Promote another member to team lead first.")

    db.delete(member)
    db.commit()

    logger.info(f"Member {user_id} removed from team {team_id}")
    return [Notice(user_id, models.NotificationType.team.value, f'You have been removed from team "{team.name}"')]


def team_task_count(db: Session, user: models.User, team_id: int) -> dict:
    """Number of projects owned by the team and tasks across their boards."""
    require_team_permission(user, team_id, TeamRole.member, db)

    project_ids = [row.id for row in db.query(models.Project.id).filter(models.Project.team_id == team_id).all()]
    task_count = 0
    if project_ids:
        task_count = (
            db.query(func.count(models.Task.id))
            .join(models.Board, models.Board.id == models.Task.board_id)
            .filter(models.Board.project_id.in_(project_ids))
            .scalar()
        )
    return {"team_id": team_id, "project_count": len(project_ids), "task_count": task_count}
