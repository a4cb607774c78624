"""
Tests for the project service.

Tests cover:
- Creation: owner membership, default and custom columns, tags, event
- Listing: membership scoping, search, status filter, pagination, task counts
- Lookup: absent and inaccessible projects look the same
- Update, delete and member management permissions
"""

import logging
import pytest
from sqlalchemy.orm import Session

import models
import schemas
from auth.permissions import MembershipAuthority
from errors import (
    AlreadyMember,
    CannotRemoveOwner,
    InsufficientPermissions,
    NotFound,
    NotFoundOrDenied,
    UserNotFound,
    ValidationFailed,
)
from realtime.events import EventKind
from services.project_service import ProjectService
from services.task_service import TaskService

logger = logging.getLogger(__name__)


def service_for(db: Session) -> ProjectService:
    return ProjectService(db, MembershipAuthority(db))


def owner_rows(db: Session, project_id: str):
    return db.query(models.ProjectMember).filter(
        models.ProjectMember.project_id == project_id,
        models.ProjectMember.role == models.ProjectRole.OWNER
    ).all()


# ============== Creation ==============


def test_create_project_makes_owner_and_default_columns(test_db: Session, owner_user: models.User):
    """Test that a new project gets its owner as OWNER member and the four default columns."""
    outcome = service_for(test_db).create_project(schemas.ProjectCreate(name="Sprint 1"), owner_user.id)
    project = outcome.value

    assert project.owner_id == owner_user.id
    assert project.status == models.ProjectStatus.ACTIVE
    assert project.priority == models.Priority.MEDIUM
    assert project.color == "#3B82F6"

    members = project.members
    assert len(members) == 1
    assert members[0].user_id == owner_user.id
    assert members[0].role == models.ProjectRole.OWNER

    columns = [(c.name, c.order, c.color) for c in project.columns]
    assert columns == [
        ("To Do", 0, "#EF4444"),
        ("In Progress", 1, "#F59E0B"),
        ("Review", 2, "#8B5CF6"),
        ("Done", 3, "#10B981"),
    ]
    logger.info("✓ Project created with owner and default columns")


def test_create_project_emits_global_event(test_db: Session, owner_user: models.User):
    outcome = service_for(test_db).create_project(schemas.ProjectCreate(name="Sprint 1"), owner_user.id)

    assert len(outcome.events) == 1
    event = outcome.events[0]
    assert event.kind == EventKind.project_created
    assert event.room is None
    assert event.actor_id == owner_user.id
    assert event.data["id"] == outcome.value.id
    assert event.data["name"] == "Sprint 1"


def test_create_project_with_custom_columns_and_tags(test_db: Session, owner_user: models.User):
    data = schemas.ProjectCreate(
        name="Custom",
        columns=[{"name": "Backlog", "order": 0}, {"name": "Shipped", "order": 1, "color": "#000000"}],
        tags=["backend", " backend ", "ui", ""],
        priority="high",
    )
    project = service_for(test_db).create_project(data, owner_user.id).value

    assert [c.name for c in project.columns] == ["Backlog", "Shipped"]
    assert sorted(t.name for t in project.tags) == ["backend", "ui"]
    assert project.priority == models.Priority.HIGH


def test_create_project_is_atomic(test_db: Session):
    """Test that nothing is left behind when the owner does not exist."""
    with pytest.raises(Exception):
        service_for(test_db).create_project(schemas.ProjectCreate(name="Orphan"), "missing-user")

    assert test_db.query(models.Project).count() == 0
    assert test_db.query(models.ProjectColumn).count() == 0
    assert test_db.query(models.ProjectMember).count() == 0


def fail_tag_cleaning(names):
    raise RuntimeError("tag store unavailable")


def test_create_project_rolls_back_after_partial_writes(
    test_db: Session,
    owner_user: models.User,
    monkeypatch: pytest.MonkeyPatch
):
    """Test that a failure after the project row is flushed leaves no project, membership or column."""
    monkeypatch.setattr("services.project_service.clean_tag_names", fail_tag_cleaning)

    with pytest.raises(RuntimeError):
        service_for(test_db).create_project(schemas.ProjectCreate(name="Half done", tags=["ui"]), owner_user.id)

    assert test_db.query(models.Project).count() == 0
    assert test_db.query(models.ProjectMember).count() == 0
    assert test_db.query(models.ProjectColumn).count() == 0
    assert test_db.query(models.ProjectTag).count() == 0
    logger.info("✓ Partially written project rolled back")


# ============== Listing ==============


def test_list_for_user_only_returns_accessible_projects(
    test_db: Session,
    project: models.Project,
    member_user: models.User,
    outsider_user: models.User
):
    service = service_for(test_db)

    member_page = service.list_for_user(member_user.id)
    assert [p.id for p in member_page["items"]] == [project.id]
    assert member_page["pagination"] == {"current": 1, "pages": 1, "total": 1}

    outsider_page = service.list_for_user(outsider_user.id)
    assert outsider_page["items"] == []
    assert outsider_page["pagination"]["total"] == 0


def test_list_search_does_not_widen_access(
    test_db: Session,
    project: models.Project,
    outsider_user: models.User
):
    """Test that a search term matching a foreign project still returns nothing."""
    service = service_for(test_db)
    service.create_project(schemas.ProjectCreate(name="Outsider Board"), outsider_user.id)

    page = service.list_for_user(outsider_user.id, search="test project")
    assert page["items"] == []

    page = service.list_for_user(outsider_user.id, search="BOARD")
    assert [p.name for p in page["items"]] == ["Outsider Board"]


def test_list_reports_task_counts(
    test_db: Session,
    project: models.Project,
    owner_user: models.User,
    member_user: models.User
):
    service = service_for(test_db)
    empty = service.create_project(schemas.ProjectCreate(name="Empty Board"), owner_user.id).value
    tasks = TaskService(test_db, MembershipAuthority(test_db))
    for title in ("One", "Two"):
        tasks.create_task(schemas.TaskCreate(title=title), project.id, member_user.id)

    page = service.list_for_user(owner_user.id)

    counts = {p.id: p.task_count for p in page["items"]}
    assert counts == {project.id: 2, empty.id: 0}


def test_list_status_filter_and_pagination(test_db: Session, owner_user: models.User):
    service = service_for(test_db)
    for index in range(3):
        service.create_project(schemas.ProjectCreate(name=f"Project {index}"), owner_user.id)
    archived = service.create_project(schemas.ProjectCreate(name="Old one"), owner_user.id).value
    service.update(archived.id, schemas.ProjectUpdate(status="archived"), owner_user.id)

    page = service.list_for_user(owner_user.id, status="ARCHIVED")
    assert [p.id for p in page["items"]] == [archived.id]

    page = service.list_for_user(owner_user.id, page=2, limit=3)
    assert len(page["items"]) == 1
    assert page["pagination"] == {"current": 2, "pages": 2, "total": 4}


def test_list_rejects_unknown_status(test_db: Session, owner_user: models.User):
    with pytest.raises(ValidationFailed):
        service_for(test_db).list_for_user(owner_user.id, status="sleeping")


# ============== Lookup ==============


def test_get_by_id_absent_and_inaccessible_are_indistinguishable(
    test_db: Session,
    project: models.Project,
    outsider_user: models.User
):
    """Test that a nonexistent id and a foreign project raise the same error."""
    service = service_for(test_db)

    with pytest.raises(NotFoundOrDenied) as missing:
        service.get_by_id("no-such-project", outsider_user.id)
    with pytest.raises(NotFoundOrDenied) as foreign:
        service.get_by_id(project.id, outsider_user.id)

    assert missing.value.to_dict() == foreign.value.to_dict()
    logger.info("✓ Absent and inaccessible projects are indistinguishable")


def test_get_by_id_for_member(test_db: Session, project: models.Project, member_user: models.User):
    found = service_for(test_db).get_by_id(project.id, member_user.id)
    assert found.id == project.id
    assert {m.user_id for m in found.members} == {project.owner_id, member_user.id}


# ============== Update ==============


def test_update_requires_editor(test_db: Session, project: models.Project, member_user: models.User):
    with pytest.raises(InsufficientPermissions):
        service_for(test_db).update(project.id, schemas.ProjectUpdate(name="Renamed"), member_user.id)


def test_update_replaces_columns_and_tags(
    test_db: Session,
    project: models.Project,
    owner_user: models.User
):
    """Test that columns and tags in a patch replace the old ones wholesale."""
    service = service_for(test_db)
    service.update(project.id, schemas.ProjectUpdate(tags=["a", "b"]), owner_user.id)

    patch = schemas.ProjectUpdate(
        name="Renamed",
        columns=[{"name": "Only", "order": 0, "color": "#123456"}],
        tags=["b", "c"],
    )
    outcome = service.update(project.id, patch, owner_user.id)
    updated = outcome.value

    assert updated.name == "Renamed"
    assert [c.name for c in updated.columns] == ["Only"]
    assert sorted(t.name for t in updated.tags) == ["b", "c"]
    assert test_db.query(models.ProjectColumn).filter(models.ProjectColumn.project_id == project.id).count() == 1

    assert outcome.events[0].kind == EventKind.project_updated
    assert outcome.events[0].room == f"project-{project.id}"


def test_update_ignores_null_for_required_fields(
    test_db: Session,
    project: models.Project,
    owner_user: models.User
):
    updated = service_for(test_db).update(
        project.id, schemas.ProjectUpdate(name=None, description="New description"), owner_user.id
    ).value

    assert updated.name == "Test Project"
    assert updated.description == "New description"


def test_update_rolls_back_column_replacement(
    test_db: Session,
    project: models.Project,
    owner_user: models.User,
    monkeypatch: pytest.MonkeyPatch
):
    """Test that columns already swapped out are restored when the tag step fails."""
    columns = test_db.query(models.ProjectColumn).filter(models.ProjectColumn.project_id == project.id)
    original = sorted(c.name for c in columns.all())
    monkeypatch.setattr("services.project_service.clean_tag_names", fail_tag_cleaning)

    patch = schemas.ProjectUpdate(name="Renamed", columns=[schemas.ColumnIn(name="Only")], tags=["ops"])
    with pytest.raises(RuntimeError):
        service_for(test_db).update(project.id, patch, owner_user.id)

    assert sorted(c.name for c in columns.all()) == original
    assert test_db.query(models.ProjectTag).filter(models.ProjectTag.project_id == project.id).count() == 0
    assert test_db.get(models.Project, project.id).name == "Test Project"


# ============== Delete ==============


def test_delete_only_by_owner(
    test_db: Session,
    project: models.Project,
    member_user: models.User,
    outsider_user: models.User
):
    service = service_for(test_db)

    with pytest.raises(InsufficientPermissions):
        service.delete(project.id, member_user.id)

    with pytest.raises(NotFoundOrDenied):
        service.delete(project.id, outsider_user.id)


def test_delete_cascades(
    test_db: Session,
    project: models.Project,
    task: models.Task,
    owner_user: models.User
):
    """Test that deleting a project removes its tasks, watchers, columns and memberships."""
    outcome = service_for(test_db).delete(project.id, owner_user.id)

    assert outcome.events[0].kind == EventKind.project_deleted
    assert outcome.events[0].room is None
    assert test_db.query(models.Project).count() == 0
    assert test_db.query(models.Task).count() == 0
    assert test_db.query(models.TaskWatcher).count() == 0
    assert test_db.query(models.ProjectColumn).count() == 0
    assert test_db.query(models.ProjectMember).count() == 0
    logger.info("✓ Project deletion cascaded")


# ============== Members ==============


def test_add_member(
    test_db: Session,
    project: models.Project,
    owner_user: models.User,
    outsider_user: models.User
):
    outcome = service_for(test_db).add_member(
        project.id, "OUTSIDER@test.com", role=models.ProjectRole.ADMIN, user_id=owner_user.id
    )

    roles = {m.user_id: m.role for m in outcome.value.members}
    assert roles[outsider_user.id] == models.ProjectRole.ADMIN
    assert outcome.events[0].kind == EventKind.member_added
    assert outcome.events[0].data["user"]["email"] == "outsider@test.com"
    assert len(owner_rows(test_db, project.id)) == 1


def test_add_member_errors(
    test_db: Session,
    project: models.Project,
    owner_user: models.User,
    member_user: models.User,
    outsider_user: models.User
):
    service = service_for(test_db)

    with pytest.raises(UserNotFound):
        service.add_member(project.id, "nobody@test.com", user_id=owner_user.id)

    with pytest.raises(AlreadyMember):
        service.add_member(project.id, member_user.email, user_id=owner_user.id)

    with pytest.raises(ValidationFailed):
        service.add_member(project.id, outsider_user.email, role=models.ProjectRole.OWNER, user_id=owner_user.id)

    with pytest.raises(InsufficientPermissions):
        service.add_member(project.id, outsider_user.email, user_id=member_user.id)


def test_remove_member(
    test_db: Session,
    project: models.Project,
    owner_user: models.User,
    member_user: models.User
):
    service = service_for(test_db)
    outcome = service.remove_member(project.id, member_user.id, owner_user.id)

    assert outcome.events[0].kind == EventKind.member_removed
    assert outcome.events[0].data == {"project_id": project.id, "user_id": member_user.id}
    assert not MembershipAuthority(test_db).is_member(project.id, member_user.id)

    with pytest.raises(NotFound):
        service.remove_member(project.id, member_user.id, owner_user.id)


def test_remove_owner_fails_for_every_caller(
    test_db: Session,
    project: models.Project,
    owner_user: models.User,
    member_user: models.User,
    outsider_user: models.User
):
    """Test that removing the owner is refused with CannotRemoveOwner whoever asks."""
    service = service_for(test_db)

    for caller in (owner_user, member_user, outsider_user):
        with pytest.raises(CannotRemoveOwner):
            service.remove_member(project.id, owner_user.id, caller.id)

    assert len(owner_rows(test_db, project.id)) == 1
    logger.info("✓ Owner can never be removed")


def test_member_cannot_remove_members(
    test_db: Session,
    project: models.Project,
    owner_user: models.User,
    member_user: models.User,
    outsider_user: models.User
):
    service = service_for(test_db)
    service.add_member(project.id, outsider_user.email, user_id=owner_user.id)

    with pytest.raises(InsufficientPermissions):
        service.remove_member(project.id, outsider_user.id, member_user.id)


def test_list_members(test_db: Session, project: models.Project, member_user: models.User, outsider_user: models.User):
    service = service_for(test_db)

    members = service.list_members(project.id, member_user.id)
    assert len(members) == 2

    with pytest.raises(NotFoundOrDenied):
        service.list_members(project.id, outsider_user.id)
