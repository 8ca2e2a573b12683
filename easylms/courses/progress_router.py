from typing import Optional

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from easylms.api.auth_guard import SessionUser
from easylms.courses import progress_store
from easylms.courses.dependencies import get_current_user, get_db
from easylms.courses.errors import LMSError, unexpected
from easylms.courses.models import LessonProgressUpdate

router = APIRouter(prefix="/api/lesson/progress", tags=["Lesson Progress"])


# ==================== ADMIN ====================

@router.get("/admin/analytics")
async def lesson_analytics(
    course_id: Optional[str] = None,
    chapter_id: Optional[str] = None,
    lesson_id: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Completion rate per lesson across all learners"""
    try:
        return {"data": await progress_store.lesson_analytics(db, course_id, chapter_id, lesson_id)}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to fetch lesson analytics", e)


# ==================== ROLLUPS ====================

@router.get("/user/all")
async def my_progress(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: SessionUser = Depends(get_current_user)
):
    try:
        return {"data": await progress_store.user_overview(db, user.user_id, page, limit)}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to fetch progress", e)


@router.get("/chapter/{chapter_id}")
async def chapter_progress(
    chapter_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: SessionUser = Depends(get_current_user)
):
    try:
        return {"data": await progress_store.chapter_rollup(db, chapter_id, user.user_id)}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to fetch chapter progress", e)


@router.get("/course/{course_id}")
async def course_progress(
    course_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: SessionUser = Depends(get_current_user)
):
    try:
        return {"data": await progress_store.course_rollup(db, course_id, user.user_id)}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to fetch course progress", e)


# ==================== SINGLE LESSON ====================

@router.get("/{lesson_id}")
async def get_lesson_progress(
    lesson_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: SessionUser = Depends(get_current_user)
):
    try:
        return {"data": await progress_store.get_lesson_progress(db, user.user_id, lesson_id)}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to fetch lesson progress", e)


@router.post("/{lesson_id}")
async def mark_lesson(
    lesson_id: str,
    payload: Optional[LessonProgressUpdate] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: SessionUser = Depends(get_current_user)
):
    """Mark a lesson complete (default) or incomplete"""
    completed = payload.completed if payload else True
    try:
        row = await progress_store.set_completion(db, user.user_id, lesson_id, completed)
        return {"message": "Lesson progress updated", "data": row}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to update lesson progress", e)


@router.delete("/{lesson_id}")
async def reset_lesson(
    lesson_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: SessionUser = Depends(get_current_user)
):
    try:
        row = await progress_store.delete_progress(db, user.user_id, lesson_id)
        return {"message": "Lesson progress removed", "data": row}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to remove lesson progress", e)
