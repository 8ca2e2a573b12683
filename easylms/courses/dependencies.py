# easylms/courses/dependencies.py

from typing import Optional

from fastapi import Depends, Request
from motor.motor_asyncio import AsyncIOMotorDatabase

from easylms.api.auth_guard import SessionUser, optional_session, verify_session
from easylms.courses.errors import AuthenticationError, ForbiddenError
from easylms.courses.storage import ObjectStorage

# ==================== CLIENTS ====================

async def get_db(request: Request) -> AsyncIOMotorDatabase:
    """Database dependency"""
    return request.app.state.db

async def get_storage(request: Request) -> ObjectStorage:
    return request.app.state.storage

# ==================== SESSION ====================

async def get_current_user(user: SessionUser = Depends(verify_session)) -> SessionUser:
    return user

async def get_optional_user(user: Optional[SessionUser] = Depends(optional_session)) -> Optional[SessionUser]:
    return user

async def require_admin(user: SessionUser = Depends(verify_session)) -> SessionUser:
    if not user.is_admin:
        raise ForbiddenError("Admin access required")
    return user

def ensure_owner_or_admin(user: SessionUser, owner_id: str):
    """Non-admins may only act on their own records"""
    if not user.is_admin and user.user_id != owner_id:
        raise ForbiddenError("You can only access your own enrollments")

# ==================== ROUTE ACCESS TABLE ====================

ALL = {"GET", "POST", "PUT", "PATCH", "DELETE"}
WRITES = {"POST", "PUT", "PATCH", "DELETE"}

SESSION = "session"
ADMIN = "admin"

# (methods, path prefix, required role, exact path only). First match wins,
# so more specific prefixes come before the ones that contain them.
ROUTE_POLICIES = [
    (ALL, "/api/lesson/progress/admin", ADMIN, False),
    (ALL, "/api/lesson/progress", SESSION, False),
    (WRITES, "/api/product", ADMIN, False),
    (WRITES, "/api/chapter", ADMIN, False),
    (WRITES, "/api/lesson", ADMIN, False),
    (ALL, "/api/stats", ADMIN, False),
    ({"GET"}, "/api/enrollment", ADMIN, True),
    ({"GET"}, "/api/enrollment/stats", ADMIN, False),
    ({"GET"}, "/api/enrollment/course", ADMIN, False),
    ({"PUT"}, "/api/enrollment", ADMIN, False),
    (ALL, "/api/enrollment", SESSION, False),
]


def _matches(path: str, prefix: str, exact: bool) -> bool:
    path = path.rstrip("/") or "/"
    if exact:
        return path == prefix
    return path == prefix or path.startswith(prefix + "/")


def required_role(method: str, path: str) -> Optional[str]:
    for methods, prefix, role, exact in ROUTE_POLICIES:
        if method in methods and _matches(path, prefix, exact):
            return role
    return None


async def enforce_route_policy(request: Request):
    """Reject the request before the handler runs if the caller lacks the route's role"""
    role = required_role(request.method, request.url.path)
    if role is None:
        return

    user = optional_session(request.headers.get("authorization"))
    if user is None:
        raise AuthenticationError("Authentication required")
    if role == ADMIN and not user.is_admin:
        raise ForbiddenError("Admin access required")
