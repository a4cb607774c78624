"""
Per-user dashboard aggregates.

Every query here is restricted to projects the user is a member of, so a
task stays hidden once its assignee has been removed from the project.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import case, func, or_
from sqlalchemy.orm import Session

from auth.permissions import MembershipAuthority
from models import COMPLETED_STATUSES, Priority, Task
from services.query_utils import build_pagination, clamp_page, parse_enum
from time_utils import date_range_for_upcoming, start_of_recent_window, utc_now

logger = logging.getLogger(__name__)

# Task status -> TaskStats field; terminal statuses all count as done
STATUS_BUCKETS = {
    "To Do": "todo",
    "In Progress": "in_progress",
    "Review": "review",
    **{status: "done" for status in COMPLETED_STATUSES},
}

PRIORITY_RANK = case(
    {Priority.LOW: 0, Priority.MEDIUM: 1, Priority.HIGH: 2, Priority.URGENT: 3},
    value=Task.priority,
)

TERMINAL_STATUSES = tuple(sorted(COMPLETED_STATUSES))

MAX_PAGE_SIZE = 100


class DashboardService:
    def __init__(self, db: Session, authority: MembershipAuthority):
        self.db = db
        self.authority = authority

    def _visible_tasks(self, user_id: str):
        project_ids = self.authority.project_ids_for(user_id)
        return self.db.query(Task).filter(Task.project_id.in_(project_ids), Task.is_archived.is_(False))

    def _assigned_tasks(self, user_id: str):
        return self._visible_tasks(user_id).filter(Task.assignee_id == user_id)

    def task_stats(self, user_id: str) -> Dict[str, int]:
        rows = (
            self._assigned_tasks(user_id)
            .with_entities(Task.status, func.count(Task.id))
            .group_by(Task.status)
            .all()
        )

        stats = {"total": 0, "todo": 0, "in_progress": 0, "review": 0, "done": 0, "overdue": 0}
        for status, count in rows:
            stats["total"] += count
            bucket = STATUS_BUCKETS.get(status)
            if bucket is not None:
                stats[bucket] += count

        stats["overdue"] = (
            self._assigned_tasks(user_id)
            .filter(Task.due_date.isnot(None), Task.due_date < utc_now(), Task.status.notin_(TERMINAL_STATUSES))
            .count()
        )
        logger.debug(f"Task stats for user {user_id}: {stats}")
        return stats

    def upcoming_tasks(self, user_id: str, days: int = 7, limit: int = 5) -> List[Task]:
        """Open tasks assigned to the user that fall due within the next ``days``."""
        start, end = date_range_for_upcoming(days)
        return (
            self._assigned_tasks(user_id)
            .filter(Task.due_date >= start, Task.due_date <= end, Task.status.notin_(TERMINAL_STATUSES))
            .order_by(Task.due_date.asc())
            .limit(limit)
            .all()
        )

    def recent_activity(self, user_id: str, days: int = 7, limit: int = 10) -> List[Task]:
        """Tasks the user created or is assigned to, touched within the last ``days``."""
        return (
            self._visible_tasks(user_id)
            .filter(
                or_(Task.creator_id == user_id, Task.assignee_id == user_id),
                Task.updated_at >= start_of_recent_window(days),
            )
            .order_by(Task.updated_at.desc())
            .limit(limit)
            .all()
        )

    def user_tasks(
        self,
        user_id: str,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        project_id: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Dict[str, Any]:
        page, limit = clamp_page(page, limit, MAX_PAGE_SIZE)
        query = self._assigned_tasks(user_id)

        if status:
            query = query.filter(Task.status == status)
        task_priority = parse_enum(Priority, priority, "priority")
        if task_priority is not None:
            query = query.filter(Task.priority == task_priority)
        if project_id:
            query = query.filter(Task.project_id == project_id)

        total = query.count()
        items = (
            query.order_by(
                Task.due_date.is_(None),
                Task.due_date.asc(),
                PRIORITY_RANK.desc(),
                Task.created_at.desc(),
            )
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        logger.info(f"User {user_id} retrieved {len(items)} of {total} assigned tasks")
        return {"items": items, "pagination": build_pagination(page, limit, total)}

    def dashboard(self, user_id: str) -> Dict[str, Any]:
        return {
            "task_stats": self.task_stats(user_id),
            "upcoming_tasks": self.upcoming_tasks(user_id),
            "recent_activity": self.recent_activity(user_id),
        }
