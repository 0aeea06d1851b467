"""
Session gate for the DRE API.
Login checks the password against the bcrypt hash in admin_config and hands
out an opaque token; protected routes read it from the X-Session-Token header.
"""
import logging
import secrets
from datetime import datetime, timezone

import bcrypt
from fastapi import APIRouter, Header, HTTPException
from pydantic import BaseModel

from app.config import settings
from app.db.supabase import get_db

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])

# In-memory session tokens, valid for the lifetime of the process
_sessions: dict[str, datetime] = {}


def _get_password_hash() -> str | None:
    db = get_db()
    result = db.table("admin_config").select("password_hash").eq("id", 1).execute()
    if result.data:
        return result.data[0]["password_hash"]
    return None


def _verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


async def require_session(x_session_token: str | None = Header(None)):
    """Dependency: reject callers without a live session token."""
    if not x_session_token or x_session_token not in _sessions:
        raise HTTPException(status_code=401, detail="Unauthorized")
    created = _sessions[x_session_token]
    if (datetime.now(timezone.utc) - created).total_seconds() > settings.auth_session_hours * 3600:
        del _sessions[x_session_token]
        raise HTTPException(status_code=401, detail="Session expired")
    return True


class LoginRequest(BaseModel):
    password: str


@router.post("/login")
async def login(req: LoginRequest):
    """Authenticate with the shared password. Returns a session token."""
    hashed = _get_password_hash()
    if not hashed:
        # First login seeds the hash
        new_hash = bcrypt.hashpw(req.password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")
        get_db().table("admin_config").upsert({"id": 1, "password_hash": new_hash}).execute()
        logger.info("admin_config password hash initialised")
        hashed = new_hash

    if not _verify_password(req.password, hashed):
        logger.warning("Login rejected: invalid password")
        raise HTTPException(status_code=401, detail="Invalid password")

    token = secrets.token_urlsafe(32)
    _sessions[token] = datetime.now(timezone.utc)
    return {"token": token}


@router.post("/logout")
async def logout(x_session_token: str | None = Header(None)):
    if x_session_token:
        _sessions.pop(x_session_token, None)
    return {"status": "ok"}
