"""
Test configuration and fixtures for task hub tests.

Provides:
- Test database with SQLite in-memory for speed
- FastAPI test client with database and notification overrides
- Authentication helpers (JWT token generation)
- Common fixtures for users, projects with members, boards and teams
"""

import os
import sys
import logging
from datetime import timedelta
from typing import Generator, Dict, List

import pytest

# Keep the app's own engine off the filesystem during tests
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, get_db
from main import app, get_dispatcher
import models
from auth.security import hash_password, create_access_token
from services.notifications import NotificationDispatcher

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

# SQLite in-memory database for fast testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"


class RecordingDispatcher(NotificationDispatcher):
    """Collects delivered notifications instead of storing them."""

    def __init__(self, fail_for: tuple = ()):
        self.sent: List[tuple] = []
        self.fail_for = set(fail_for)

    async def notify(self, user_id: int, type_: str, message: str) -> None:
        if user_id in self.fail_for:
            raise RuntimeError(f"delivery to {user_id} failed")
        self.sent.append((user_id, type_, message))


@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """
    Create a fresh in-memory SQLite database for each test.

    This ensures test isolation and fast execution.
    """
    engine = create_engine(
        SQLALCHEMY_TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        logger.debug("Test database cleaned up")


@pytest.fixture(scope="function")
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture(scope="function")
def client(test_db: Session, dispatcher: RecordingDispatcher) -> TestClient:
    """
    Create FastAPI test client with database and dispatcher overrides.
    """
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def make_user(db: Session, name: str, email: str, role: str = "member") -> models.User:
    user = models.User(
        name=name,
        email=email,
        password_hash=hash_password("password123"),
        role=role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def add_project_member(db: Session, project: models.Project, user: models.User, role: str) -> None:
    """Attach a user through the normalised ProjectTeam record."""
    db.add(models.ProjectTeam(project_id=project.id, user_id=user.id, role=role, added_by=project.created_by))
    db.commit()


def add_embedded_member(db: Session, project: models.Project, user: models.User, role: str) -> None:
    """Attach a user only through the embedded Project.members list."""
    project.members = list(project.members or []) + [{"user_id": user.id, "role": role}]
    db.commit()


def make_board(db: Session, project: models.Project, title: str = "Board", position: int = 0) -> models.Board:
    board = models.Board(title=title, project_id=project.id, position=position, member_ids=[], task_ids=[])
    db.add(board)
    db.flush()
    project.board_ids = list(project.board_ids or []) + [board.id]
    db.commit()
    db.refresh(board)
    return board


def make_task(db: Session, board: models.Board, title: str = "Task", status: str = "To Do", **fields) -> models.Task:
    task = models.Task(title=title, status=status, board_id=board.id, **fields)
    db.add(task)
    db.flush()
    board.task_ids = list(board.task_ids or []) + [task.id]
    db.commit()
    db.refresh(task)
    return task


def create_auth_token(user: models.User, expires_delta: timedelta = None) -> str:
    """
    Helper to create JWT access token for a user.

    Args:
        user: User to create token for
        expires_delta: Optional expiration time override

    Returns:
        JWT access token string
    """
    token_data = {
        "sub": str(user.id),
        "role": user.role,
        "email": user.email
    }
    return create_access_token(token_data, expires_delta)


def auth_headers_for(user: models.User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_auth_token(user)}"}


@pytest.fixture(scope="function")
def owner(test_db: Session) -> models.User:
    return make_user(test_db, "Owner", "owner@test.com")


@pytest.fixture(scope="function")
def admin_member(test_db: Session) -> models.User:
    return make_user(test_db, "Project Admin", "padmin@test.com")


@pytest.fixture(scope="function")
def member_user(test_db: Session) -> models.User:
    return make_user(test_db, "Member", "member@test.com")


@pytest.fixture(scope="function")
def viewer_user(test_db: Session) -> models.User:
    return make_user(test_db, "Viewer", "viewer@test.com")


@pytest.fixture(scope="function")
def outsider(test_db: Session) -> models.User:
    return make_user(test_db, "Outsider", "outsider@test.com")


@pytest.fixture(scope="function")
def global_admin(test_db: Session) -> models.User:
    return make_user(test_db, "Global Admin", "root@test.com", role="admin")


@pytest.fixture(scope="function")
def project(
    test_db: Session,
    owner: models.User,
    admin_member: models.User,
    member_user: models.User,
    viewer_user: models.User,
) -> models.Project:
    """
    Personal project owned by `owner` with an admin, a member and a viewer.
    """
    project = models.Project(
        title="Launch",
        description="Product launch",
        created_by=owner.id,
        manager_id=owner.id,
        members=[],
        board_ids=[],
    )
    test_db.add(project)
    test_db.commit()
    test_db.refresh(project)

    add_project_member(test_db, project, admin_member, "admin")
    add_project_member(test_db, project, member_user, "member")
    add_project_member(test_db, project, viewer_user, "viewer")
    logger.info(f"Created project with ID: {project.id}")
    return project


@pytest.fixture(scope="function")
def board(test_db: Session, project: models.Project) -> models.Board:
    return make_board(test_db, project, "Backlog")


@pytest.fixture(scope="function")
def team(test_db: Session, owner: models.User, member_user: models.User) -> models.Team:
    """
    Team led by `owner` with `member_user` as a plain member.
    """
    team = models.Team(name="Platform", description="Platform team", created_by=owner.id)
    test_db.add(team)
    test_db.commit()
    test_db.refresh(team)

    test_db.add(models.TeamMember(team_id=team.id, user_id=owner.id, role="team_lead"))
    test_db.add(models.TeamMember(team_id=team.id, user_id=member_user.id, role="member"))
    test_db.commit()
    return team
