# execution_registry.py — Execution submissions, queries and file downloads
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import SessionData, require_authenticated, require_role
from errors import ConfigurationError, Conflict, Forbidden, NotFound, PersistenceError, ValidationError
from file_policy import build_object_key, client_basename, normalise_mime, validate_upload, GENERIC_MIME_TYPE
from models import ExecutionStatus, Task, TaskExecution, TaskStatus, User, UserRole
from storage import ObjectStore, parse_file_reference, resolve_object_key
from task_registry import TaskRegistry

logger = logging.getLogger("task-portal.executions")

MIN_DESCRIPTION_LENGTH = 10


def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, datetime) else str(dt)


def _value(enum_or_str) -> Optional[str]:
    return getattr(enum_or_str, "value", enum_or_str)


@dataclass
class UploadPayload:
    """A buffered upload as received from the client"""
    filename: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class DownloadedFile:
    body: bytes
    content_type: str
    file_name: str


def execution_to_dict(execution: TaskExecution) -> Dict[str, Any]:
    return {
        "id": execution.id,
        "task_id": execution.task_id,
        "collaborator_id": execution.collaborator_id,
        "description": execution.description,
        "file_path": execution.file_path,
        "file_name": execution.file_name,
        "status": _value(execution.status),
        "submitted_at": _ts(execution.submitted_at),
        "updated_at": _ts(execution.updated_at),
    }


async def _has_execution(db: AsyncSession, task_id: int, collaborator_id: int) -> bool:
    stmt = select(func.count(TaskExecution.id)).where(
        TaskExecution.task_id == task_id,
        TaskExecution.collaborator_id == collaborator_id,
    )
    return bool((await db.execute(stmt)).scalar())


def _ensure_owner(actor: SessionData, execution: TaskExecution, message: str) -> None:
    if actor.role == UserRole.COLLABORATOR.value and execution.collaborator_id != actor.user_id:
        raise Forbidden(message)


class ExecutionRegistry:

    @staticmethod
    async def submit_execution(
        actor: Optional[SessionData],
        task_id: Optional[int],
        description: str,
        upload: Optional[UploadPayload],
        db: AsyncSession,
        store: Optional[ObjectStore] = None,
    ) -> Dict[str, Any]:
        """Record a collaborator's execution of an assigned task.

        Checks run in order and stop at the first failure: task exists, task
        belongs to the actor, no earlier execution, file passes the policy.
        The file is uploaded before anything is written, and the execution row
        and the task's move to in_progress share one commit.
        """
        actor = require_role(actor, UserRole.COLLABORATOR)

        description = (description or "").strip()
        if not task_id or not description:
            raise ValidationError("Task ID and description are required")
        if len(description) < MIN_DESCRIPTION_LENGTH:
            raise ValidationError(f"Description must be at least {MIN_DESCRIPTION_LENGTH} characters")

        task = await db.get(Task, task_id)
        if task is None:
            raise NotFound("Task not found")
        if task.user_id != actor.user_id:
            raise Forbidden("You can only submit executions for tasks assigned to you")

        if await _has_execution(db, task.id, actor.user_id):
            raise Conflict("Task execution already submitted")

        file_path = None
        file_name = None
        if upload is not None:
            validate_upload(upload.filename, upload.size, upload.content_type)
            if store is None:
                raise ConfigurationError("File storage is not available")

            key = build_object_key(upload.filename)
            await store.ensure_bucket()
            await store.put_object(key, upload.content, normalise_mime(upload.content_type) or GENERIC_MIME_TYPE)
            file_path = key
            file_name = client_basename(upload.filename)

        execution = TaskExecution(
            task_id=task.id,
            collaborator_id=actor.user_id,
            description=description,
            file_path=file_path,
            file_name=file_name,
            status=ExecutionStatus.SUBMITTED,
        )
        db.add(execution)
        try:
            await TaskRegistry.update_task_status(task.id, TaskStatus.IN_PROGRESS, db)
            await db.commit()
        except IntegrityError:
            # Lost a race against a concurrent submission for the same pair
            await db.rollback()
            if file_path:
                logger.warning(f"Execution insert rejected; uploaded object {file_path} is orphaned")
            raise Conflict("Task execution already submitted")
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Database error while submitting execution for task {task_id}: {e}", exc_info=True)
            raise PersistenceError()

        await db.refresh(execution)
        logger.info(f"Execution {execution.id} submitted for task {task.id} by user {actor.user_id}")
        return execution_to_dict(execution)

    @staticmethod
    async def list_executions(actor: Optional[SessionData], db: AsyncSession) -> List[Dict[str, Any]]:
        """Collaborators see their own executions; administrators see all"""
        actor = require_authenticated(actor)

        if actor.role == UserRole.COLLABORATOR.value:
            stmt = (
                select(TaskExecution, Task.task_type, Task.description.label("task_description"))
                .join(Task, Task.id == TaskExecution.task_id)
                .where(TaskExecution.collaborator_id == actor.user_id)
                .order_by(TaskExecution.submitted_at.desc(), TaskExecution.id.desc())
            )
            result = await db.execute(stmt)
            out = []
            for execution, task_type, task_description in result.all():
                data = execution_to_dict(execution)
                data.update({"task_type": task_type, "task_description": task_description})
                out.append(data)
            return out

        stmt = (
            select(
                TaskExecution,
                Task.task_type,
                Task.description.label("task_description"),
                User.name.label("collaborator_name"),
            )
            .join(Task, Task.id == TaskExecution.task_id)
            .join(User, User.id == TaskExecution.collaborator_id)
            .order_by(TaskExecution.submitted_at.desc(), TaskExecution.id.desc())
        )
        result = await db.execute(stmt)
        out = []
        for execution, task_type, task_description, collaborator_name in result.all():
            data = execution_to_dict(execution)
            data.update({
                "task_type": task_type,
                "task_description": task_description,
                "collaborator_name": collaborator_name,
            })
            out.append(data)
        return out

    @staticmethod
    async def get_execution(actor: Optional[SessionData], execution_id: int, db: AsyncSession) -> Dict[str, Any]:
        actor = require_authenticated(actor)

        stmt = (
            select(
                TaskExecution,
                Task.task_type,
                Task.description.label("task_description"),
                User.name.label("collaborator_name"),
                User.email.label("collaborator_email"),
            )
            .join(Task, Task.id == TaskExecution.task_id)
            .join(User, User.id == TaskExecution.collaborator_id)
            .where(TaskExecution.id == execution_id)
        )
        row = (await db.execute(stmt)).first()
        if row is None:
            raise NotFound("Task execution not found")

        execution, task_type, task_description, collaborator_name, collaborator_email = row
        _ensure_owner(actor, execution, "You can only view your own task executions")

        data = execution_to_dict(execution)
        data.update({
            "task_type": task_type,
            "task_description": task_description,
            "collaborator_name": collaborator_name,
            "collaborator_email": collaborator_email,
        })
        return data

    @staticmethod
    async def download_file(
        actor: Optional[SessionData],
        execution_id: int,
        db: AsyncSession,
        store: Optional[ObjectStore],
    ) -> DownloadedFile:
        actor = require_authenticated(actor)

        execution = await db.get(TaskExecution, execution_id)
        if execution is None or not execution.file_path:
            raise NotFound("File not found")
        _ensure_owner(actor, execution, "You can only download your own files")

        if store is None:
            raise ConfigurationError("File storage is not available")

        key = resolve_object_key(parse_file_reference(execution.file_path), store.bucket, execution.file_name)
        logger.info(f"Downloading execution {execution.id} file from key {key}")
        obj = await store.get_object(key)

        return DownloadedFile(
            body=obj.body,
            content_type=obj.content_type,
            file_name=execution.file_name or key.rsplit("/", 1)[-1],
        )
