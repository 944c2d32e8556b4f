# routers/auth.py — Session login, logout and status endpoints
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, SessionData, SessionStore,
    SESSION_COOKIE_NAME, SESSION_COOKIE_SECURE,
    current_session, get_session_store, get_session_token, optional_session,
)
from database import get_db_session
from errors import ValidationError
from models import UserRole

router = APIRouter(prefix="/auth", tags=["Authentication"])
logger = logging.getLogger("task-portal.auth")


def _user_payload(user) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role.value if isinstance(user.role, UserRole) else user.role,
    }


@router.post("/login")
async def login(
    email: str = Form(""),
    password: str = Form(""),
    store: SessionStore = Depends(get_session_store),
    db: AsyncSession = Depends(get_db_session),
):
    """Authenticate and open a server-side session"""
    if not email or not password:
        raise ValidationError("Email and password are required")

    user = await AuthService.authenticate(email.strip(), password, db)
    token = store.create(user)
    logger.info(f"User {user.id} logged in")

    response = JSONResponse({
        "success": True,
        "message": "Login successful",
        "user": _user_payload(user),
    })
    response.set_cookie(
        SESSION_COOKIE_NAME,
        token,
        max_age=int(store.ttl.total_seconds()),
        httponly=True,
        secure=SESSION_COOKIE_SECURE,
        samesite="lax",
    )
    return response


@router.post("/logout")
async def logout(
    token: Optional[str] = Depends(get_session_token),
    store: SessionStore = Depends(get_session_store),
):
    """Destroy the current session (idempotent)"""
    store.destroy(token)
    response = JSONResponse({"success": True, "message": "Logout successful"})
    response.delete_cookie(SESSION_COOKIE_NAME)
    return response


@router.get("/check")
async def check(session: Optional[SessionData] = Depends(optional_session)):
    """Report whether the caller holds an active session"""
    return {
        "authenticated": session is not None,
        "user": session.public_user() if session else None,
    }


@router.get("/profile")
async def profile(session: SessionData = Depends(current_session)):
    return {"success": True, "user": session.public_user()}
