from typing import Optional

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from easylms.api.auth_guard import SessionUser
from easylms.courses import content_store
from easylms.courses.dependencies import get_db, get_optional_user, get_storage, require_admin
from easylms.courses.errors import LMSError, unexpected
from easylms.courses.models import (
    CourseCreate, CourseLevel, CourseStatus, CourseUpdate, FileDeleteRequest,
    FileUploadRequest, ReorderPayload
)
from easylms.courses.storage import ObjectStorage

router = APIRouter(prefix="/api/product", tags=["Courses"])


# ==================== MEDIA ====================

@router.post("/s3/upload")
async def create_upload_url(
    payload: FileUploadRequest,
    storage: ObjectStorage = Depends(get_storage)
):
    """Presigned PUT for a course or lesson asset"""
    try:
        signed = await storage.presigned_upload(payload.file_name, payload.content_type, payload.size)
        return {"message": "Upload URL generated", "data": signed}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to generate upload URL", e)


@router.delete("/s3/delete")
async def delete_file(
    payload: FileDeleteRequest,
    storage: ObjectStorage = Depends(get_storage)
):
    try:
        await storage.delete(payload.key)
        return {"message": "File deleted successfully", "data": {"key": payload.key}}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to delete file", e)


# ==================== MAINTENANCE ====================

@router.post("/maintenance/sweep")
async def sweep_orphans(db: AsyncIOMotorDatabase = Depends(get_db)):
    """Clean up documents left behind by interrupted deletes"""
    try:
        summary = await content_store.sweep_orphans(db)
        return {"message": "Orphan sweep completed", "data": summary}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to sweep orphaned content", e)


# ==================== COURSE CRUD ====================

@router.post("/", status_code=201)
async def create_course(
    course: CourseCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: SessionUser = Depends(require_admin)
):
    try:
        created = await content_store.create_course(db, course.model_dump(), admin.user_id)
        return {"message": "Course created successfully", "data": created}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to create course", e)


@router.get("/")
async def list_courses(
    status: Optional[CourseStatus] = None,
    category: Optional[str] = None,
    level: Optional[CourseLevel] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    try:
        filters = {"status": status, "category": category, "level": level, "search": search}
        return await content_store.list_courses(db, filters, page, limit)
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to fetch courses", e)


@router.get("/slug/{slug}")
async def get_course_by_slug(
    slug: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    viewer: Optional[SessionUser] = Depends(get_optional_user)
):
    """Public course page; full content only for admins and enrolled users"""
    try:
        return {"data": await content_store.get_course_by_slug(db, slug, viewer)}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to fetch course", e)


@router.get("/{course_id}")
async def get_course(course_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    try:
        return {"data": await content_store.get_course_by_id(db, course_id)}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to fetch course", e)


@router.put("/{course_id}")
async def update_course(
    course_id: str,
    updates: CourseUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    try:
        updated = await content_store.update_course(db, course_id, updates.model_dump(exclude_none=True))
        return {"message": "Course updated successfully", "data": updated}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to update course", e)


@router.delete("/{course_id}")
async def delete_course(
    course_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage)
):
    """Delete course with all chapters, lessons, progress and media"""
    try:
        summary = await content_store.delete_course(db, storage, course_id)
        return {"message": "Course deleted successfully", "data": summary}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to delete course", e)


@router.put("/{course_id}/chapters/reorder")
async def reorder_chapters(
    course_id: str,
    payload: ReorderPayload,
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    try:
        chapters = await content_store.reorder_chapters(db, course_id, payload.order)
        return {"message": "Chapters reordered", "data": chapters}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to reorder chapters", e)
