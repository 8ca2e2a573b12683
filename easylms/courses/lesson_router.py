from typing import Optional

from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from easylms.courses import content_store
from easylms.courses.dependencies import get_db, get_storage
from easylms.courses.errors import LMSError, unexpected
from easylms.courses.models import LessonCreate, LessonUpdate
from easylms.courses.storage import ObjectStorage

router = APIRouter(prefix="/api/lesson", tags=["Lessons"])


@router.post("/", status_code=201)
async def create_lesson(lesson: LessonCreate, db: AsyncIOMotorDatabase = Depends(get_db)):
    try:
        created = await content_store.create_lesson(db, lesson.chapter_id, lesson.model_dump())
        return {"message": "Lesson created successfully", "data": created}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to create lesson", e)


@router.get("/")
async def list_lessons(chapter_id: Optional[str] = None, db: AsyncIOMotorDatabase = Depends(get_db)):
    try:
        return {"data": await content_store.list_lessons(db, chapter_id)}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to fetch lessons", e)


@router.get("/{lesson_id}")
async def get_lesson(lesson_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    try:
        return {"data": await content_store.get_lesson(db, lesson_id)}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to fetch lesson", e)


@router.put("/{lesson_id}")
async def update_lesson(
    lesson_id: str,
    updates: LessonUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    try:
        updated = await content_store.update_lesson(db, lesson_id, updates.model_dump(exclude_none=True))
        return {"message": "Lesson updated successfully", "data": updated}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to update lesson", e)


@router.delete("/{lesson_id}")
async def delete_lesson(
    lesson_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage)
):
    """Delete lesson and close the gap in its chapter"""
    try:
        summary = await content_store.delete_lesson(db, storage, lesson_id)
        return {"message": "Lesson deleted successfully", "data": summary}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to delete lesson", e)
