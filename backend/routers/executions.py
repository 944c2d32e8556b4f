# routers/executions.py — Execution submission, listing and file download
import unicodedata
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from auth import SessionData, current_session, require_collaborator
from database import get_db_session
from execution_registry import ExecutionRegistry, UploadPayload
from file_policy import MAX_FILE_SIZE
from storage import ObjectStore, get_optional_object_store

router = APIRouter(prefix="/executions", tags=["Task Executions"])


async def _buffer_upload(file: Optional[UploadFile]) -> Optional[UploadPayload]:
    # Browsers send an empty part when no file was chosen
    if file is None or not file.filename:
        return None
    # One byte past the ceiling is enough to know it is too large
    content = await file.read(MAX_FILE_SIZE + 1)
    await file.close()
    return UploadPayload(filename=file.filename, content=content, content_type=file.content_type)


def _content_disposition(file_name: str) -> str:
    """Attachment header with an ASCII filename plus an RFC 5987 filename* for non-ASCII names."""
    file_name = file_name.replace('"', "")
    # "relatório.pdf" -> "relatorio.pdf"
    ascii_name = (
        unicodedata.normalize("NFKD", file_name).encode("ascii", "ignore").decode("ascii")
        or "download"
    )
    if ascii_name == file_name:
        return f'attachment; filename="{file_name}"'
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(file_name, safe='')}"


@router.get("/")
async def list_executions(
    session: SessionData = Depends(current_session),
    db: AsyncSession = Depends(get_db_session),
):
    """Role-scoped execution list"""
    executions = await ExecutionRegistry.list_executions(session, db)
    return {"success": True, "data": executions}


@router.post("/submit", status_code=201)
async def submit_execution(
    task_id: Optional[int] = Form(None),
    description: str = Form(""),
    file: Optional[UploadFile] = File(None),
    session: SessionData = Depends(require_collaborator),
    db: AsyncSession = Depends(get_db_session),
    store: Optional[ObjectStore] = Depends(get_optional_object_store),
):
    """Submit the execution of an assigned task, optionally with a file"""
    upload = await _buffer_upload(file)
    execution = await ExecutionRegistry.submit_execution(session, task_id, description, upload, db, store)
    return {
        "success": True,
        "message": "Task execution submitted successfully",
        "data": execution,
    }


@router.get("/show/{execution_id}")
async def show_execution(
    execution_id: int,
    session: SessionData = Depends(current_session),
    db: AsyncSession = Depends(get_db_session),
):
    execution = await ExecutionRegistry.get_execution(session, execution_id, db)
    return {"success": True, "data": execution}


@router.get("/download/{execution_id}")
async def download_file(
    execution_id: int,
    session: SessionData = Depends(current_session),
    db: AsyncSession = Depends(get_db_session),
    store: Optional[ObjectStore] = Depends(get_optional_object_store),
):
    """Proxy the execution's file from object storage as an attachment"""
    downloaded = await ExecutionRegistry.download_file(session, execution_id, db, store)
    return Response(
        content=downloaded.body,
        media_type=downloaded.content_type,
        headers={
            "Content-Disposition": _content_disposition(downloaded.file_name),
            "Cache-Control": "must-revalidate",
            "Pragma": "public",
        },
    )
