from typing import Optional

from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from easylms.courses import content_store
from easylms.courses.dependencies import get_db, get_storage
from easylms.courses.errors import LMSError, unexpected
from easylms.courses.models import ChapterCreate, ChapterUpdate, ReorderPayload
from easylms.courses.storage import ObjectStorage

router = APIRouter(prefix="/api/chapter", tags=["Chapters"])


@router.post("/", status_code=201)
async def create_chapter(chapter: ChapterCreate, db: AsyncIOMotorDatabase = Depends(get_db)):
    """Append a chapter to a course"""
    try:
        created = await content_store.create_chapter(db, chapter.course_id, chapter.title)
        return {"message": "Chapter created successfully", "data": created}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to create chapter", e)


@router.get("/")
async def list_chapters(course_id: Optional[str] = None, db: AsyncIOMotorDatabase = Depends(get_db)):
    try:
        return {"data": await content_store.list_chapters(db, course_id)}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to fetch chapters", e)


@router.get("/{chapter_id}")
async def get_chapter(chapter_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    try:
        return {"data": await content_store.get_chapter(db, chapter_id)}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to fetch chapter", e)


@router.put("/{chapter_id}")
async def update_chapter(
    chapter_id: str,
    updates: ChapterUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    try:
        updated = await content_store.update_chapter(db, chapter_id, updates.model_dump(exclude_none=True))
        return {"message": "Chapter updated successfully", "data": updated}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to update chapter", e)


@router.delete("/{chapter_id}")
async def delete_chapter(
    chapter_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage)
):
    try:
        summary = await content_store.delete_chapter(db, storage, chapter_id)
        return {"message": "Chapter deleted successfully", "data": summary}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to delete chapter", e)


@router.put("/{chapter_id}/lessons/reorder")
async def reorder_lessons(
    chapter_id: str,
    payload: ReorderPayload,
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    try:
        lessons = await content_store.reorder_lessons(db, chapter_id, payload.order)
        return {"message": "Lessons reordered", "data": lessons}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to reorder lessons", e)
