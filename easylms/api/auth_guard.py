# easylms/api/auth_guard.py
from dataclasses import dataclass
from typing import Optional

from fastapi import Header
from jose import jwt, JWTError

from easylms.courses import config
from easylms.courses.errors import AuthenticationError

ADMIN_ROLE = "admin"


@dataclass
class SessionUser:
    user_id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def _decode_session_token(token: str) -> SessionUser:
    try:
        payload = jwt.decode(token, config.SESSION_SECRET, algorithms=[config.SESSION_ALGORITHM])
    except JWTError:
        raise AuthenticationError("Invalid or expired session")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid or expired session")
    return SessionUser(user_id=str(user_id), role=payload.get("role") or "user")


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None


def verify_session(authorization: str = Header(None)) -> SessionUser:
    token = _bearer_token(authorization)
    if not token:
        raise AuthenticationError("Authentication required")
    # Decodes and checks expiration/signature
    return _decode_session_token(token)


def optional_session(authorization: str = Header(None)) -> Optional[SessionUser]:
    """Anonymous callers get None; a malformed token is still rejected"""
    token = _bearer_token(authorization)
    if not token:
        return None
    return _decode_session_token(token)
