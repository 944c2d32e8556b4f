# task_registry.py — Task creation, queries and status transitions
"""
Every public operation takes the acting session first and evaluates the
authorization gate before touching the database. Results are plain dicts
shaped for the JSON API (assignee and execution fields denormalised).
"""
import os
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import SessionData, require_authenticated, require_role
from errors import AppError, Forbidden, InvalidAssignee, NotFound, PersistenceError, ValidationError
from models import Task, TaskExecution, TaskStatus, User, UserRole, utcnow
from storage import ObjectStore, parse_file_reference, resolve_object_key

logger = logging.getLogger("task-portal.tasks")

# "open": any authenticated user may read any task by id.
# "assignee": collaborators may only read tasks assigned to them.
READ_POLICIES = ("open", "assignee")


def resolve_read_policy(value: Optional[str]) -> str:
    """Normalise a read policy name. Unknown names fall back to the stricter "assignee"."""
    policy = (value or "open").strip().lower() or "open"
    if policy not in READ_POLICIES:
        logger.warning(
            f"Unknown TASK_READ_POLICY {value!r} (expected one of {', '.join(READ_POLICIES)}); "
            "using 'assignee'"
        )
        return "assignee"
    return policy


TASK_READ_POLICY = resolve_read_policy(os.getenv("TASK_READ_POLICY"))

MIN_TASK_TYPE_LENGTH = 3
MIN_DESCRIPTION_LENGTH = 10


# ============================================================
# HELPERS
# ============================================================

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, datetime) else str(dt)


def _value(enum_or_str) -> Optional[str]:
    if enum_or_str is None:
        return None
    return getattr(enum_or_str, "value", enum_or_str)


def task_to_dict(task: Task) -> Dict[str, Any]:
    return {
        "id": task.id,
        "user_id": task.user_id,
        "task_type": task.task_type,
        "description": task.description,
        "status": _value(task.status),
        "created_at": _ts(task.created_at),
        "updated_at": _ts(task.updated_at),
    }


def _joined_task_query():
    return (
        select(
            Task,
            User.name.label("user_name"),
            User.email.label("user_email"),
            TaskExecution,
        )
        .join(User, User.id == Task.user_id)
        .outerjoin(TaskExecution, TaskExecution.task_id == Task.id)
    )


def _joined_task_view(row, store: Optional[ObjectStore] = None) -> Dict[str, Any]:
    task, user_name, user_email, execution = row
    data = task_to_dict(task)
    data.update({
        "user_name": user_name,
        "user_email": user_email,
        "execution_id": execution.id if execution else None,
        "execution_description": execution.description if execution else None,
        "execution_file_name": execution.file_name if execution else None,
        "execution_file_path": execution.file_path if execution else None,
        "execution_status": _value(execution.status) if execution else None,
        "execution_submitted_at": _ts(execution.submitted_at) if execution else None,
    })
    if execution is not None and execution.file_path:
        data["execution_file_url"] = _presign(store, execution)
    return data


def _presign(store: Optional[ObjectStore], execution: TaskExecution) -> Optional[str]:
    if store is None:
        return None
    ref = parse_file_reference(execution.file_path)
    key = resolve_object_key(ref, store.bucket, execution.file_name)
    try:
        return store.presigned_url(key)
    except AppError:
        return None


async def commit_or_raise(db: AsyncSession, action: str) -> None:
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Database error while trying to {action}: {e}", exc_info=True)
        raise PersistenceError()


# ============================================================
# REGISTRY
# ============================================================

class TaskRegistry:

    @staticmethod
    async def create_task(
        actor: Optional[SessionData],
        assignee_id: int,
        task_type: str,
        description: str,
        db: AsyncSession,
    ) -> Dict[str, Any]:
        """Create a pending task for a collaborator (administrators only).

        The assignee is checked before the text fields, so a non-collaborator
        assignee is always reported as InvalidAssignee.
        """
        require_role(actor, UserRole.ADMINISTRATOR)

        assignee = await db.get(User, assignee_id)
        if assignee is None:
            raise InvalidAssignee("User not found", status_code=404)
        if _value(assignee.role) != UserRole.COLLABORATOR.value:
            raise InvalidAssignee("Tasks can only be assigned to collaborators")

        task_type = (task_type or "").strip()
        description = (description or "").strip()
        if not task_type or not description:
            raise ValidationError("User ID, task type, and description are required")
        if len(task_type) < MIN_TASK_TYPE_LENGTH:
            raise ValidationError(f"Task type must be at least {MIN_TASK_TYPE_LENGTH} characters")
        if len(description) < MIN_DESCRIPTION_LENGTH:
            raise ValidationError(f"Description must be at least {MIN_DESCRIPTION_LENGTH} characters")

        task = Task(
            user_id=assignee.id,
            task_type=task_type,
            description=description,
            status=TaskStatus.PENDING,
        )
        db.add(task)
        await commit_or_raise(db, "create task")
        await db.refresh(task)

        logger.info(f"Task {task.id} created by user {actor.user_id} for collaborator {assignee.id}")

        data = task_to_dict(task)
        data.update({"user_name": assignee.name, "user_email": assignee.email})
        return data

    @staticmethod
    async def list_tasks(
        actor: Optional[SessionData],
        db: AsyncSession,
        store: Optional[ObjectStore] = None,
    ) -> List[Dict[str, Any]]:
        """All tasks with assignee and execution details, newest first"""
        require_role(actor, UserRole.ADMINISTRATOR)

        stmt = _joined_task_query().order_by(Task.created_at.desc(), Task.id.desc())
        result = await db.execute(stmt)
        return [_joined_task_view(row, store) for row in result.all()]

    @staticmethod
    async def get_task(
        actor: Optional[SessionData],
        task_id: int,
        db: AsyncSession,
        store: Optional[ObjectStore] = None,
        policy: Optional[str] = None,
    ) -> Dict[str, Any]:
        actor = require_authenticated(actor)

        stmt = _joined_task_query().where(Task.id == task_id)
        result = await db.execute(stmt)
        row = result.first()
        if row is None:
            raise NotFound("Task not found")

        task = row[0]
        policy = resolve_read_policy(policy) if policy is not None else TASK_READ_POLICY
        if policy == "assignee":
            if actor.role == UserRole.COLLABORATOR.value and task.user_id != actor.user_id:
                raise Forbidden("You can only view tasks assigned to you")

        return _joined_task_view(row, store)

    @staticmethod
    async def list_collaborators(actor: Optional[SessionData], db: AsyncSession) -> List[Dict[str, Any]]:
        require_role(actor, UserRole.ADMINISTRATOR)

        stmt = select(User).where(User.role == UserRole.COLLABORATOR).order_by(User.name.asc())
        result = await db.execute(stmt)
        return [
            {"id": u.id, "name": u.name, "email": u.email, "role": _value(u.role)}
            for u in result.scalars().all()
        ]

    @staticmethod
    async def list_my_tasks(actor: Optional[SessionData], db: AsyncSession) -> List[Dict[str, Any]]:
        """Open (not completed) tasks assigned to the acting collaborator"""
        actor = require_role(actor, UserRole.COLLABORATOR)

        stmt = (
            select(Task)
            .where(Task.user_id == actor.user_id, Task.status != TaskStatus.COMPLETED)
            .order_by(Task.created_at.desc(), Task.id.desc())
        )
        result = await db.execute(stmt)
        return [task_to_dict(t) for t in result.scalars().all()]

    @staticmethod
    async def update_task_status(task_id: int, status: TaskStatus, db: AsyncSession) -> bool:
        """Set a task's status inside the caller's transaction (no commit)."""
        result = await db.execute(
            update(Task)
            .where(Task.id == task_id)
            .values(status=status, updated_at=utcnow())
        )
        return (result.rowcount or 0) > 0
