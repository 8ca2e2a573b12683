"""
ENROLLMENT ROUTER
File: easylms/courses/enrollment_router.py

Learners enroll themselves and manage their own enrollments; listing,
stats and edits are admin-only (see ROUTE_POLICIES).
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from easylms.api.auth_guard import SessionUser
from easylms.courses import enrollment_store
from easylms.courses.dependencies import ensure_owner_or_admin, get_current_user, get_db
from easylms.courses.errors import LMSError, unexpected
from easylms.courses.models import (
    EnrollmentCreate, EnrollmentProgressUpdate, EnrollmentStatus, EnrollmentUpdate
)

router = APIRouter(prefix="/api/enrollment", tags=["Enrollments"])


async def _owned_enrollment(db: AsyncIOMotorDatabase, enrollment_id: str, user: SessionUser) -> dict:
    enrollment = await enrollment_store.get_enrollment(db, enrollment_id)
    ensure_owner_or_admin(user, enrollment["user_id"])
    return enrollment


# ==================== ENROLL ====================

@router.post("/", status_code=201)
async def enroll(
    payload: EnrollmentCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: SessionUser = Depends(get_current_user)
):
    """Enroll the current user in a course"""
    try:
        enrollment = await enrollment_store.enroll(db, user.user_id, payload.course_id)
        return {"message": "Enrolled successfully", "data": enrollment}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to enroll", e)


# ==================== LISTS & STATS ====================

@router.get("/")
async def list_enrollments(
    user_id: Optional[str] = None,
    course_id: Optional[str] = None,
    status: Optional[EnrollmentStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    try:
        filters = {"user_id": user_id, "course_id": course_id, "status": status}
        return await enrollment_store.list_enrollments(db, filters, page, limit)
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to fetch enrollments", e)


@router.get("/stats")
async def enrollment_stats(db: AsyncIOMotorDatabase = Depends(get_db)):
    try:
        return {"data": await enrollment_store.stats(db)}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to fetch enrollment stats", e)


@router.get("/user/{user_id}")
async def user_enrollments(
    user_id: str,
    status: Optional[EnrollmentStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: SessionUser = Depends(get_current_user)
):
    try:
        ensure_owner_or_admin(user, user_id)
        return await enrollment_store.list_user_enrollments(db, user_id, status, page, limit)
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to fetch user enrollments", e)


@router.get("/course/{course_id}")
async def course_enrollments(
    course_id: str,
    status: Optional[EnrollmentStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    try:
        return await enrollment_store.list_course_enrollments(db, course_id, status, page, limit)
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to fetch course enrollments", e)


@router.get("/check/{course_id}")
async def check_enrollment(
    course_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: SessionUser = Depends(get_current_user)
):
    try:
        is_enrolled, enrollment = await enrollment_store.check_enrollment(db, user.user_id, course_id)
        return {"data": {"is_enrolled": is_enrolled, "enrollment": enrollment}}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to check enrollment", e)


# ==================== SINGLE ENROLLMENT ====================

@router.get("/{enrollment_id}")
async def get_enrollment(
    enrollment_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: SessionUser = Depends(get_current_user)
):
    try:
        return {"data": await _owned_enrollment(db, enrollment_id, user)}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to fetch enrollment", e)


@router.put("/{enrollment_id}")
async def update_enrollment(
    enrollment_id: str,
    updates: EnrollmentUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    try:
        updated = await enrollment_store.update_enrollment(db, enrollment_id, updates.model_dump(exclude_none=True))
        return {"message": "Enrollment updated successfully", "data": updated}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to update enrollment", e)


@router.patch("/{enrollment_id}/progress")
async def update_progress(
    enrollment_id: str,
    payload: EnrollmentProgressUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: SessionUser = Depends(get_current_user)
):
    try:
        await _owned_enrollment(db, enrollment_id, user)
        updated = await enrollment_store.update_progress(db, enrollment_id, payload.progress)
        return {"message": "Progress updated successfully", "data": updated}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to update progress", e)


@router.delete("/{enrollment_id}")
async def unenroll(
    enrollment_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: SessionUser = Depends(get_current_user)
):
    try:
        await _owned_enrollment(db, enrollment_id, user)
        removed = await enrollment_store.unenroll(db, enrollment_id)
        return {"message": "Unenrolled successfully", "data": removed}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to unenroll", e)
