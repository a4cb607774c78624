"""
Task service: tasks, their comments, watchers and tag links.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

import schemas
from auth.permissions import MembershipAuthority
from database import transaction
from errors import InsufficientPermissions, InvalidAssignee, NotFound
from models import (
    COMPLETED_STATUSES,
    DEFAULT_TASK_STATUS,
    Comment,
    Priority,
    ProjectTag,
    Task,
    TaskTag,
    TaskWatcher,
)
from realtime.events import Event, EventKind, Outcome, to_payload
from services.query_utils import build_pagination, clamp_page, clean_tag_names, parse_enum
from time_utils import coerce_datetime, utc_now

logger = logging.getLogger(__name__)

NON_NULLABLE_FIELDS = frozenset({"title", "status", "priority", "position", "is_archived"})
DATE_FIELDS = frozenset({"due_date", "start_date"})

DEFAULT_TASK_PAGE_SIZE = 100
MAX_TASK_PAGE_SIZE = 500


def is_terminal(status: Optional[str]) -> bool:
    return status in COMPLETED_STATUSES


class TaskService:
    def __init__(self, db: Session, authority: MembershipAuthority):
        self.db = db
        self.authority = authority

    # ============== Helpers ==============

    def _next_position(self, project_id: str, status: str) -> int:
        """One past the highest position in the lane, or 0 for an empty lane."""
        highest = (
            self.db.query(func.max(Task.position))
            .filter(Task.project_id == project_id, Task.status == status)
            .scalar()
        )
        return 0 if highest is None else highest + 1

    def _check_assignee(self, project_id: str, assignee_id: Optional[str]) -> None:
        if assignee_id is not None and not self.authority.is_member(project_id, assignee_id):
            logger.info(f"User {assignee_id} cannot be assigned: not a member of project {project_id}")
            raise InvalidAssignee()

    def _add_watcher(self, task: Task, user_id: str) -> None:
        exists = (
            self.db.query(TaskWatcher)
            .filter(TaskWatcher.task_id == task.id, TaskWatcher.user_id == user_id)
            .first()
        )
        if exists is None:
            self.db.add(TaskWatcher(task_id=task.id, user_id=user_id))
            self.db.flush()

    def _resolve_tags(self, project_id: str, names: List[str]) -> List[ProjectTag]:
        """Find each tag by (name, project) or create it."""
        names = clean_tag_names(names)
        if not names:
            return []

        existing = {
            tag.name: tag
            for tag in self.db.query(ProjectTag)
            .filter(ProjectTag.project_id == project_id, ProjectTag.name.in_(names))
            .all()
        }
        tags = []
        for name in names:
            tag = existing.get(name)
            if tag is None:
                tag = ProjectTag(project_id=project_id, name=name)
                self.db.add(tag)
                logger.debug(f"Created tag '{name}' in project {project_id}")
            tags.append(tag)
        self.db.flush()
        return tags

    def _link_tags(self, task: Task, names: List[str]) -> None:
        for tag in self._resolve_tags(task.project_id, names):
            self.db.add(TaskTag(task_id=task.id, tag_id=tag.id))

    def _can_edit(self, task: Task, user_id: str) -> bool:
        return (
            task.creator_id == user_id
            or task.assignee_id == user_id
            or self.authority.is_editor(task.project_id, user_id)
        )

    def _get_comment(self, task_id: str, comment_id: str) -> Comment:
        comment = (
            self.db.query(Comment)
            .filter(Comment.id == comment_id, Comment.task_id == task_id)
            .first()
        )
        if comment is None:
            raise NotFound("Comment not found")
        return comment

    # ============== Queries ==============

    def get_by_id(self, task_id: str, user_id: str) -> Task:
        """
        Load a task for a member of its project.

        Raises:
            NotFound: no such task
            AccessDenied: the user is not a member of the task's project
        """
        task = self.db.query(Task).filter(Task.id == task_id).first()
        if task is None:
            logger.info(f"Task {task_id} not found")
            raise NotFound("Task not found")

        self.authority.assert_member(task.project_id, user_id)
        return task

    def list_for_project(
        self,
        project_id: str,
        user_id: str,
        status: Optional[str] = None,
        assignee_id: Optional[str] = None,
        priority: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = DEFAULT_TASK_PAGE_SIZE,
    ) -> Dict[str, Any]:
        """Non-archived tasks of a project, ordered by lane position then newest first."""
        self.authority.assert_member(project_id, user_id)
        page, limit = clamp_page(page, limit, MAX_TASK_PAGE_SIZE)
        logger.debug(
            f"User {user_id} listing tasks of project {project_id}: status={status}, "
            f"assignee={assignee_id}, priority={priority}, search={search}"
        )

        query = self.db.query(Task).filter(Task.project_id == project_id, Task.is_archived.is_(False))

        if status:
            query = query.filter(Task.status == status)
        if assignee_id:
            query = query.filter(Task.assignee_id == assignee_id)

        task_priority = parse_enum(Priority, priority, "priority")
        if task_priority is not None:
            query = query.filter(Task.priority == task_priority)

        if search and search.strip():
            pattern = f"%{search.strip().lower()}%"
            query = query.filter(
                or_(func.lower(Task.title).like(pattern), func.lower(Task.description).like(pattern))
            )

        total = query.count()
        items = (
            query.order_by(Task.position.asc(), Task.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        logger.info(f"User {user_id} retrieved {len(items)} of {total} tasks in project {project_id}")
        return {"items": items, "pagination": build_pagination(page, limit, total)}

    # ============== Task mutations ==============

    def create_task(self, data: schemas.TaskCreate, project_id: str, creator_id: str) -> Outcome[Task]:
        """
        Create a task at the end of its lane.

        The creator and the assignee (when different) become watchers. Tags
        are looked up by name within the project and created when missing.
        """
        self.authority.assert_member(project_id, creator_id)
        self._check_assignee(project_id, data.assignee_id)

        fields = data.model_dump(exclude={"tags"}, exclude_none=True)
        for key in DATE_FIELDS & fields.keys():
            fields[key] = coerce_datetime(fields[key])

        status = fields.setdefault("status", DEFAULT_TASK_STATUS)
        fields["position"] = self._next_position(project_id, status)
        if is_terminal(status):
            fields["completed_date"] = utc_now()

        task = Task(**fields, project_id=project_id, creator_id=creator_id)
        with transaction(self.db):
            self.db.add(task)
            self.db.flush()  # Get task ID without committing

            self._add_watcher(task, creator_id)
            if task.assignee_id and task.assignee_id != creator_id:
                self._add_watcher(task, task.assignee_id)
            self._link_tags(task, data.tags)

        logger.info(f"Task created: {task.title} (ID: {task.id}) in project {project_id} by user {creator_id}")
        event = Event(
            kind=EventKind.task_created,
            data=to_payload(schemas.Task, task),
            actor_id=creator_id,
            project_id=project_id,
        )
        return Outcome(task, [event])

    def update_task(self, task_id: str, patch: schemas.TaskUpdate, user_id: str) -> Outcome[Task]:
        """
        Apply a patch as the task's creator, its assignee, or a project editor.

        completed_date follows status: set when the new status is terminal,
        cleared when another status is given, untouched when status is absent.
        """
        task = self.get_by_id(task_id, user_id)
        if not self._can_edit(task, user_id):
            logger.info(f"User {user_id} may not edit task {task_id}")
            raise InsufficientPermissions("Insufficient permissions to edit this task")

        update_data = patch.model_dump(exclude_unset=True)
        tags = update_data.pop("tags", None)

        new_assignee = update_data.get("assignee_id")
        assignee_changed = "assignee_id" in update_data and new_assignee != task.assignee_id
        if assignee_changed:
            self._check_assignee(task.project_id, new_assignee)

        with transaction(self.db):
            for key, value in update_data.items():
                if value is None and key in NON_NULLABLE_FIELDS:
                    continue
                if key in DATE_FIELDS:
                    value = coerce_datetime(value)
                setattr(task, key, value)

            if update_data.get("status") is not None:
                task.completed_date = utc_now() if is_terminal(task.status) else None

            if assignee_changed and new_assignee is not None:
                self._add_watcher(task, new_assignee)

            if tags is not None:
                task.tag_links.clear()
                self.db.flush()
                self._link_tags(task, tags)

            task.updated_at = utc_now()

        logger.info(f"Task updated: {task.title} (ID: {task_id}) by user {user_id}")
        event = Event(
            kind=EventKind.task_updated,
            data=to_payload(schemas.Task, task),
            actor_id=user_id,
            project_id=task.project_id,
        )
        return Outcome(task, [event])

    def delete_task(self, task_id: str, user_id: str) -> Outcome[None]:
        task = self.get_by_id(task_id, user_id)
        if task.creator_id != user_id and not self.authority.is_editor(task.project_id, user_id):
            logger.info(f"User {user_id} may not delete task {task_id}")
            raise InsufficientPermissions("Insufficient permissions to delete this task")

        project_id = task.project_id
        title = task.title
        with transaction(self.db):
            self.db.delete(task)

        logger.info(f"Task deleted: {title} (ID: {task_id}) by user {user_id}")
        event = Event(
            kind=EventKind.task_deleted,
            data={"id": task_id, "project_id": project_id},
            actor_id=user_id,
            project_id=project_id,
        )
        return Outcome(None, [event])

    # ============== Comments ==============

    def add_comment(self, task_id: str, content: str, author_id: str) -> Outcome[Comment]:
        task = self.get_by_id(task_id, author_id)

        comment = Comment(task_id=task.id, author_id=author_id, content=content)
        with transaction(self.db):
            self.db.add(comment)
            self._add_watcher(task, author_id)

        logger.info(f"Comment {comment.id} added to task {task_id} by user {author_id}")
        event = Event(
            kind=EventKind.comment_added,
            data=to_payload(schemas.Comment, comment),
            actor_id=author_id,
            project_id=task.project_id,
        )
        return Outcome(comment, [event])

    def update_comment(self, task_id: str, comment_id: str, content: str, user_id: str) -> Outcome[Comment]:
        task = self.get_by_id(task_id, user_id)
        comment = self._get_comment(task.id, comment_id)

        if comment.author_id != user_id:
            logger.info(f"User {user_id} may not edit comment {comment_id}")
            raise InsufficientPermissions("Only the author can edit this comment")

        with transaction(self.db):
            comment.content = content
            comment.is_edited = True

        logger.info(f"Comment {comment_id} edited by user {user_id}")
        event = Event(
            kind=EventKind.comment_updated,
            data=to_payload(schemas.Comment, comment),
            actor_id=user_id,
            project_id=task.project_id,
        )
        return Outcome(comment, [event])

    def delete_comment(self, task_id: str, comment_id: str, user_id: str) -> Outcome[None]:
        task = self.get_by_id(task_id, user_id)
        comment = self._get_comment(task.id, comment_id)

        if comment.author_id != user_id and not self.authority.is_editor(task.project_id, user_id):
            logger.info(f"User {user_id} may not delete comment {comment_id}")
            raise InsufficientPermissions("Insufficient permissions to delete this comment")

        with transaction(self.db):
            self.db.delete(comment)

        logger.info(f"Comment {comment_id} deleted from task {task_id} by user {user_id}")
        event = Event(
            kind=EventKind.comment_deleted,
            data={"id": comment_id, "task_id": task_id},
            actor_id=user_id,
            project_id=task.project_id,
        )
        return Outcome(None, [event])
