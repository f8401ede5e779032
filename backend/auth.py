# auth.py — Bearer-token identity for the TaskForge API
# Features:
# - JWT access tokens (HS256) carrying the acting user id in "sub"
# - FastAPI dependency resolving the current user
# - Board access predicate (owner or member)
# - WebSocket token verification

import os
import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import HTTPException, Depends, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from board_store import BoardStore
from database import get_db_session

logger = logging.getLogger("taskforge.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY:
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning(
        "⚠️  JWT_SECRET_KEY not set. Generated ephemeral key. "
        "Set JWT_SECRET_KEY in production!"
    )

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

security = HTTPBearer()


class CurrentUser(BaseModel):
    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None


class AuthService:
    """Token helpers"""

    @staticmethod
    def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        to_encode.update({
            "exp": now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)),
            "iat": now,
            "type": "access",
        })
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Token expired")
        except JWTError:
            raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
        if payload.get("type") != "access" or not payload.get("sub"):
            raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
        return payload


def verify_ws_token(token: str) -> Optional[Dict[str, Any]]:
    """Like AuthService.verify_token but returns None instead of raising"""
    try:
        return AuthService.verify_token(token)
    except HTTPException:
        return None


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    payload = AuthService.verify_token(credentials.credentials)
    return CurrentUser(
        id=payload["sub"],
        email=payload.get("email"),
        display_name=payload.get("name"),
    )


async def require_board_access(
    board_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> CurrentUser:
    """Dependency for routes with a ``board_id`` path parameter"""
    if not await BoardStore(db).has_access(board_id, user.id):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "No access to this board")
    return user
