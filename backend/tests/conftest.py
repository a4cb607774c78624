"""
Test configuration and fixtures for taskboard tests.

Provides:
- Test database with SQLite in-memory for speed
- FastAPI test client wired to that database and a fresh broadcaster
- Authentication helpers (JWT token generation)
- Common fixtures for users, projects and tasks
"""

import os
import sys
import logging
from datetime import timedelta
from typing import Generator, Dict

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

# Add backend directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Database, get_db
from main import app
import models
import schemas
from auth.permissions import MembershipAuthority
from auth.security import hash_password, create_access_token
from realtime.broadcaster import Broadcaster
from services.project_service import ProjectService
from services.task_service import TaskService

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

# SQLite in-memory database for fast testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

TEST_PASSWORD = "password123"


@pytest.fixture(scope="function")
def database() -> Generator[Database, None, None]:
    """
    Create a fresh in-memory SQLite database for each test.

    This ensures test isolation and fast execution.
    """
    logger.debug("Creating test database")
    db = Database(SQLALCHEMY_TEST_DATABASE_URL).open()
    try:
        yield db
    finally:
        db.close()
        logger.debug("Test database cleaned up")


@pytest.fixture(scope="function")
def test_db(database: Database) -> Generator[Session, None, None]:
    db = database.session()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def broadcaster() -> Broadcaster:
    return Broadcaster()


@pytest.fixture(scope="function")
def client(database: Database, test_db: Session, broadcaster: Broadcaster) -> TestClient:
    """
    Create FastAPI test client bound to the test database and broadcaster.
    """
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.state.database = database
    app.state.broadcaster = broadcaster
    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client
        # Release the shared session before app shutdown disposes the engine
        test_db.close()

    app.dependency_overrides.clear()
    app.state.database = None
    app.state.broadcaster = None


def make_user(db: Session, name: str, email: str, is_active: bool = True) -> models.User:
    user = models.User(
        name=name,
        email=email,
        password_hash=hash_password(TEST_PASSWORD),
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Created user {email} with ID: {user.id}")
    return user


@pytest.fixture(scope="function")
def owner_user(test_db: Session) -> models.User:
    """
    Create the user who owns the test project.
    """
    return make_user(test_db, "Owner User", "owner@test.com")


@pytest.fixture(scope="function")
def member_user(test_db: Session) -> models.User:
    """
    Create a user who joins the test project as a plain member.
    """
    return make_user(test_db, "Member User", "member@test.com")


@pytest.fixture(scope="function")
def outsider_user(test_db: Session) -> models.User:
    """
    Create a user with no membership in any test project.
    """
    return make_user(test_db, "Outsider User", "outsider@test.com")


def create_auth_token(user: models.User, expires_delta: timedelta = None) -> str:
    """
    Helper to create JWT access token for a user.

    Args:
        user: User to create token for
        expires_delta: Optional expiration time override

    Returns:
        JWT access token string
    """
    logger.debug(f"Creating auth token for user {user.id}")
    return create_access_token(user.id, expires_delta)


def auth_header(user: models.User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_auth_token(user)}"}


@pytest.fixture(scope="function")
def owner_headers(owner_user: models.User) -> Dict[str, str]:
    return auth_header(owner_user)


@pytest.fixture(scope="function")
def member_headers(member_user: models.User) -> Dict[str, str]:
    return auth_header(member_user)


@pytest.fixture(scope="function")
def outsider_headers(outsider_user: models.User) -> Dict[str, str]:
    return auth_header(outsider_user)


@pytest.fixture(scope="function")
def project(test_db: Session, owner_user: models.User, member_user: models.User) -> models.Project:
    """
    Create a project owned by owner_user with member_user as MEMBER.
    """
    logger.debug("Creating test project")
    service = ProjectService(test_db, MembershipAuthority(test_db))
    project = service.create_project(schemas.ProjectCreate(name="Test Project"), owner_user.id).value
    service.add_member(project.id, member_user.email, role=models.ProjectRole.MEMBER, user_id=owner_user.id)
    logger.info(f"Created test project with ID: {project.id}")
    return project


@pytest.fixture(scope="function")
def task(test_db: Session, project: models.Project, member_user: models.User) -> models.Task:
    """
    Create a task in the test project, created by member_user and unassigned.
    """
    service = TaskService(test_db, MembershipAuthority(test_db))
    return service.create_task(schemas.TaskCreate(title="Test Task"), project.id, member_user.id).value
