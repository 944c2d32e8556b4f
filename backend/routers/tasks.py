# routers/tasks.py — Task assignment endpoints
from typing import Optional

from fastapi import APIRouter, Depends, Form
from sqlalchemy.ext.asyncio import AsyncSession

from auth import SessionData, current_session, require_administrator, require_collaborator
from database import get_db_session
from errors import ValidationError
from storage import ObjectStore, get_optional_object_store
from task_registry import TaskRegistry

router = APIRouter(prefix="/tasks", tags=["Tasks"])


@router.get("/")
async def list_tasks(
    session: SessionData = Depends(require_administrator),
    db: AsyncSession = Depends(get_db_session),
    store: Optional[ObjectStore] = Depends(get_optional_object_store),
):
    """List every task with assignee and execution details (administrators)"""
    tasks = await TaskRegistry.list_tasks(session, db, store)
    return {"success": True, "data": tasks}


@router.post("/", status_code=201)
async def create_task(
    user_id: Optional[int] = Form(None),
    task_type: str = Form(""),
    description: str = Form(""),
    session: SessionData = Depends(require_administrator),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a task and assign it to a collaborator (administrators)"""
    if user_id is None:
        raise ValidationError("User ID, task type, and description are required")
    task = await TaskRegistry.create_task(session, user_id, task_type, description, db)
    return {"success": True, "message": "Task created successfully", "data": task}


@router.get("/show/{task_id}")
async def show_task(
    task_id: int,
    session: SessionData = Depends(current_session),
    db: AsyncSession = Depends(get_db_session),
    store: Optional[ObjectStore] = Depends(get_optional_object_store),
):
    task = await TaskRegistry.get_task(session, task_id, db, store)
    return {"success": True, "data": task}


@router.get("/collaborators")
async def list_collaborators(
    session: SessionData = Depends(require_administrator),
    db: AsyncSession = Depends(get_db_session),
):
    users = await TaskRegistry.list_collaborators(session, db)
    return {"success": True, "data": users}


@router.get("/my-tasks")
async def my_tasks(
    session: SessionData = Depends(require_collaborator),
    db: AsyncSession = Depends(get_db_session),
):
    """Open tasks assigned to the current collaborator"""
    tasks = await TaskRegistry.list_my_tasks(session, db)
    return {"success": True, "data": tasks}
