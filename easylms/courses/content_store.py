"""
Course / Chapter / Lesson persistence.

Positions are 1-based and contiguous within their parent. A new child's id
is pushed into the parent's ref list with a single atomic update and the
child's position is the resulting list length, so the parent document
serializes concurrent creates. Cascades run child-first as independent
deletes; sweep_orphans() cleans up after an interrupted cascade.
"""

import logging
import re
import time
from typing import List

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError
from slugify import slugify

from easylms.courses.database import (
    normalize_page, pagination, parse_object_id, serialize_many, serialize_mongo, utcnow
)
from easylms.courses.errors import ConflictError, NotFoundError, ValidationError
from easylms.courses.models import ACCESS_STATUSES, CourseLevel, CourseStatus
from easylms.courses.storage import ObjectStorage

logger = logging.getLogger(__name__)

COURSE_REQUIRED_FIELDS = ["title", "file_key", "description", "small_description", "created_by"]
COURSE_SEARCH_FIELDS = ["title", "description", "small_description", "category", "level"]
LESSON_PREVIEW_PROJECTION = {"_id": 1, "title": 1, "position": 1, "chapter_id": 1}


# ==================== SLUGS ====================

def make_slug(text: str) -> str:
    slug = slugify(text or "")
    if not slug:
        raise ValidationError("Validation failed", ["Slug can only contain lowercase letters, numbers, and hyphens"])
    return slug


async def unique_slug(db: AsyncIOMotorDatabase, text: str, exclude_id: ObjectId = None) -> str:
    """Normalize and suffix with a millisecond timestamp if already taken"""
    slug = make_slug(text)
    query = {"slug": slug}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    if await db.courses.find_one(query, {"_id": 1}):
        slug = f"{slug}-{int(time.time() * 1000)}"
    return slug


def _validate_course_numbers(attrs: dict) -> List[str]:
    errors = []
    for field in ("price", "duration"):
        value = attrs.get(field)
        if value is None:
            continue
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            errors.append(f"{field.capitalize()} must be a number")
        elif value < 0:
            errors.append(f"{field.capitalize()} cannot be negative")
    return errors


def _enum_value(value):
    return value.value if hasattr(value, "value") else value


# ==================== COURSE CRUD ====================

async def create_course(db: AsyncIOMotorDatabase, attrs: dict, owner_id: str) -> dict:
    """Create a Draft (or explicit status) course with a unique slug"""
    data = {**attrs, "created_by": owner_id}

    missing = [f for f in COURSE_REQUIRED_FIELDS if not data.get(f)]
    if missing:
        raise ValidationError("Missing required fields", [f"{field} is required" for field in missing])

    errors = _validate_course_numbers(data)
    if data.get("price") is None:
        errors.append("Price is required")
    if data.get("duration") is None:
        errors.append("Duration is required")
    level = _enum_value(data.get("level") or CourseLevel.BEGINNER)
    if level not in [l.value for l in CourseLevel]:
        errors.append(f"Level must be one of: {[l.value for l in CourseLevel]}")
    status = _enum_value(data.get("status") or CourseStatus.DRAFT)
    if status not in [s.value for s in CourseStatus]:
        errors.append(f"Status must be one of: {[s.value for s in CourseStatus]}")
    if errors:
        raise ValidationError("Validation failed", errors)

    slug = await unique_slug(db, data.get("slug") or data["title"])
    now = utcnow()

    course = {
        "title": data["title"],
        "slug": slug,
        "file_key": data["file_key"],
        "price": float(data["price"]),
        "description": data["description"],
        "duration": float(data["duration"]),
        "level": level,
        "category": data.get("category"),
        "small_description": data["small_description"],
        "status": status,
        "created_by": owner_id,
        "chapters": [],
        "created_at": now,
        "updated_at": now,
    }

    try:
        result = await db.courses.insert_one(course)
    except DuplicateKeyError:
        raise ConflictError("Course with this slug already exists")

    course["_id"] = result.inserted_id
    logger.info("Created course %s (slug=%s)", result.inserted_id, slug)
    return serialize_mongo(course)


async def _get_course_doc(db: AsyncIOMotorDatabase, course_id) -> dict:
    course = await db.courses.find_one({"_id": parse_object_id(course_id, "course id")})
    if not course:
        raise NotFoundError("Course not found")
    return course


async def _nest_chapters(db: AsyncIOMotorDatabase, course: dict, lesson_projection: dict = None) -> dict:
    """Replace chapter refs with chapter documents carrying their lessons, both by position"""
    chapters = await db.chapters.find({"course_id": course["_id"]}).sort("position", 1).to_list(None)
    chapter_ids = [c["_id"] for c in chapters]

    lessons = await db.lessons.find(
        {"chapter_id": {"$in": chapter_ids}}, lesson_projection
    ).sort("position", 1).to_list(None)

    by_chapter = {cid: [] for cid in chapter_ids}
    for lesson in lessons:
        by_chapter.setdefault(lesson["chapter_id"], []).append(lesson)

    for chapter in chapters:
        chapter["lessons"] = by_chapter.get(chapter["_id"], [])

    course["chapters"] = chapters
    return course


async def get_course_by_id(db: AsyncIOMotorDatabase, course_id) -> dict:
    course = await _get_course_doc(db, course_id)
    return serialize_mongo(await _nest_chapters(db, course))


async def get_course_by_slug(db: AsyncIOMotorDatabase, slug: str, viewer=None) -> dict:
    """
    Admins and enrolled viewers get the full course; everyone else only sees
    Published courses with lesson titles and positions
    """
    course = await db.courses.find_one({"slug": slug})
    if not course:
        raise NotFoundError("Course not found")

    full_access = False
    if viewer is not None:
        if viewer.is_admin:
            full_access = True
        else:
            enrollment = await db.enrollments.find_one({
                "user_id": viewer.user_id,
                "course_id": course["_id"],
                "status": {"$in": ACCESS_STATUSES},
            }, {"_id": 1})
            full_access = enrollment is not None

    if full_access:
        return {**serialize_mongo(await _nest_chapters(db, course)), "is_enrolled": True}

    if course.get("status") != CourseStatus.PUBLISHED.value:
        raise NotFoundError("Course not found")

    course = await _nest_chapters(db, course, LESSON_PREVIEW_PROJECTION)
    return {**serialize_mongo(course), "is_enrolled": False}


async def list_courses(
    db: AsyncIOMotorDatabase,
    filters: dict,
    page: int = 1,
    limit: int = None
) -> dict:
    """List courses with filters, free-text search and pagination"""
    query = {}
    for field in ("status", "category", "level"):
        if filters.get(field):
            query[field] = _enum_value(filters[field])

    search = (filters.get("search") or "").strip()
    if search:
        pattern = re.escape(search)
        query["$or"] = [{field: {"$regex": pattern, "$options": "i"}} for field in COURSE_SEARCH_FIELDS]

    page, limit, skip = normalize_page(page, limit)
    cursor = db.courses.find(query).sort("created_at", -1).skip(skip).limit(limit)
    courses = await cursor.to_list(length=limit)
    total = await db.courses.count_documents(query)

    return {"data": serialize_many(courses), "pagination": pagination(page, limit, total)}


async def update_course(db: AsyncIOMotorDatabase, course_id, updates: dict) -> dict:
    """Partial update: keys with None values are left untouched"""
    oid = parse_object_id(course_id, "course id")
    updates = {k: _enum_value(v) for k, v in updates.items() if v is not None}
    for immutable in ("_id", "created_by", "chapters", "created_at"):
        updates.pop(immutable, None)

    errors = _validate_course_numbers(updates)
    if errors:
        raise ValidationError("Validation failed", errors)

    if not await db.courses.find_one({"_id": oid}, {"_id": 1}):
        raise NotFoundError("Course not found")

    if "slug" in updates:
        updates["slug"] = await unique_slug(db, updates["slug"], exclude_id=oid)

    updates["updated_at"] = utcnow()
    try:
        course = await db.courses.find_one_and_update(
            {"_id": oid},
            {"$set": updates},
            return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError:
        raise ConflictError("Course with this slug already exists")

    if not course:
        raise NotFoundError("Course not found")
    return serialize_mongo(course)


async def _delete_lessons(db: AsyncIOMotorDatabase, storage: ObjectStorage, lessons: List[dict]) -> int:
    """Delete lesson media (best-effort), progress rows and the lessons themselves"""
    if not lessons:
        return 0
    for lesson in lessons:
        await storage.delete_quietly(lesson.get("thumbnail_key"))
        await storage.delete_quietly(lesson.get("video_key"))

    lesson_ids = [l["_id"] for l in lessons]
    await db.lesson_progress.delete_many({"lesson_id": {"$in": lesson_ids}})
    result = await db.lessons.delete_many({"_id": {"$in": lesson_ids}})
    return result.deleted_count


async def delete_course(db: AsyncIOMotorDatabase, storage: ObjectStorage, course_id) -> dict:
    """Delete a course and everything under it, children first"""
    course = await _get_course_doc(db, course_id)

    chapters = await db.chapters.find({"course_id": course["_id"]}).to_list(None)
    lessons_deleted = 0
    for chapter in chapters:
        lessons = await db.lessons.find({"chapter_id": chapter["_id"]}).to_list(None)
        lessons_deleted += await _delete_lessons(db, storage, lessons)

    chapters_deleted = (await db.chapters.delete_many({"course_id": course["_id"]})).deleted_count

    await storage.delete_quietly(course.get("file_key"))
    await db.courses.delete_one({"_id": course["_id"]})

    logger.info(
        "Deleted course %s with %d chapters and %d lessons",
        course["_id"], chapters_deleted, lessons_deleted
    )
    return {"chapters_deleted": chapters_deleted, "lessons_deleted": lessons_deleted}


# ==================== CHAPTER CRUD ====================

async def create_chapter(db: AsyncIOMotorDatabase, course_id, title: str) -> dict:
    """Append a chapter at the end of the course"""
    if not title or not title.strip():
        raise ValidationError("Title is required")

    course_oid = parse_object_id(course_id, "course id")
    chapter_id = ObjectId()
    now = utcnow()

    course = await db.courses.find_one_and_update(
        {"_id": course_oid},
        {"$push": {"chapters": chapter_id}, "$set": {"updated_at": now}},
        projection={"chapters": 1},
        return_document=ReturnDocument.AFTER
    )
    if not course:
        raise NotFoundError("Course not found")

    chapter = {
        "_id": chapter_id,
        "title": title.strip(),
        "position": len(course["chapters"]),
        "course_id": course_oid,
        "lessons": [],
        "created_at": now,
        "updated_at": now,
    }
    await db.chapters.insert_one(chapter)
    return serialize_mongo(chapter)


async def _get_chapter_doc(db: AsyncIOMotorDatabase, chapter_id) -> dict:
    chapter = await db.chapters.find_one({"_id": parse_object_id(chapter_id, "chapter id")})
    if not chapter:
        raise NotFoundError("Chapter not found")
    return chapter


async def get_chapter(db: AsyncIOMotorDatabase, chapter_id) -> dict:
    chapter = await _get_chapter_doc(db, chapter_id)
    chapter["lessons"] = await db.lessons.find(
        {"chapter_id": chapter["_id"]}
    ).sort("position", 1).to_list(None)
    return serialize_mongo(chapter)


async def list_chapters(db: AsyncIOMotorDatabase, course_id=None) -> List[dict]:
    query = {}
    if course_id:
        query["course_id"] = parse_object_id(course_id, "course id")

    chapters = await db.chapters.find(query).sort([("course_id", 1), ("position", 1)]).to_list(None)
    chapter_ids = [c["_id"] for c in chapters]
    lessons = await db.lessons.find({"chapter_id": {"$in": chapter_ids}}).sort("position", 1).to_list(None)

    by_chapter = {}
    for lesson in lessons:
        by_chapter.setdefault(lesson["chapter_id"], []).append(lesson)
    for chapter in chapters:
        chapter["lessons"] = by_chapter.get(chapter["_id"], [])

    return serialize_many(chapters)


async def update_chapter(db: AsyncIOMotorDatabase, chapter_id, updates: dict) -> dict:
    oid = parse_object_id(chapter_id, "chapter id")
    updates = {k: v for k, v in updates.items() if v is not None and k == "title"}
    updates["updated_at"] = utcnow()

    chapter = await db.chapters.find_one_and_update(
        {"_id": oid},
        {"$set": updates},
        return_document=ReturnDocument.AFTER
    )
    if not chapter:
        raise NotFoundError("Chapter not found")
    return serialize_mongo(chapter)


async def _renumber(db: AsyncIOMotorDatabase, collection: str, parent_field: str,
                    parent_collection: str, ref_field: str, parent_id: ObjectId) -> int:
    """
    Rewrite child positions to 1..N in current order and mirror that order in
    the parent's ref list. Returns how many positions changed.
    """
    children = await db[collection].find(
        {parent_field: parent_id}, {"_id": 1, "position": 1}
    ).sort([("position", 1), ("_id", 1)]).to_list(None)

    changed = 0
    for index, child in enumerate(children):
        if child.get("position") != index + 1:
            await db[collection].update_one({"_id": child["_id"]}, {"$set": {"position": index + 1}})
            changed += 1

    await db[parent_collection].update_one(
        {"_id": parent_id},
        {"$set": {ref_field: [c["_id"] for c in children]}}
    )
    return changed


async def _renumber_chapters(db: AsyncIOMotorDatabase, course_id: ObjectId) -> int:
    return await _renumber(db, "chapters", "course_id", "courses", "chapters", course_id)


async def _renumber_lessons(db: AsyncIOMotorDatabase, chapter_id: ObjectId) -> int:
    return await _renumber(db, "lessons", "chapter_id", "chapters", "lessons", chapter_id)


async def delete_chapter(db: AsyncIOMotorDatabase, storage: ObjectStorage, chapter_id) -> dict:
    """Delete a chapter with its lessons and close the position gap"""
    chapter = await _get_chapter_doc(db, chapter_id)

    lessons = await db.lessons.find({"chapter_id": chapter["_id"]}).to_list(None)
    lessons_deleted = await _delete_lessons(db, storage, lessons)

    await db.courses.update_one(
        {"_id": chapter["course_id"]},
        {"$pull": {"chapters": chapter["_id"]}, "$set": {"updated_at": utcnow()}}
    )
    await db.chapters.delete_one({"_id": chapter["_id"]})
    await _renumber_chapters(db, chapter["course_id"])

    logger.info("Deleted chapter %s with %d lessons", chapter["_id"], lessons_deleted)
    return {"lessons_deleted": lessons_deleted}


async def reorder_chapters(db: AsyncIOMotorDatabase, course_id, order: List[str]) -> List[dict]:
    """Apply a complete new ordering of a course's chapters"""
    course = await _get_course_doc(db, course_id)
    ordered = [parse_object_id(cid, "chapter id") for cid in order]

    current = await db.chapters.find({"course_id": course["_id"]}, {"_id": 1}).to_list(None)
    if len(ordered) != len(current) or set(ordered) != {c["_id"] for c in current}:
        raise ValidationError("Order must list every chapter of the course exactly once")

    for index, cid in enumerate(ordered):
        await db.chapters.update_one({"_id": cid}, {"$set": {"position": index + 1}})
    await db.courses.update_one(
        {"_id": course["_id"]},
        {"$set": {"chapters": ordered, "updated_at": utcnow()}}
    )

    return await list_chapters(db, course["_id"])


# ==================== LESSON CRUD ====================

async def create_lesson(db: AsyncIOMotorDatabase, chapter_id, attrs: dict) -> dict:
    """Append a lesson at the end of the chapter"""
    title = (attrs.get("title") or "").strip()
    if not title:
        raise ValidationError("Title and chapter_id are required")

    chapter_oid = parse_object_id(chapter_id, "chapter id")
    lesson_id = ObjectId()
    now = utcnow()

    chapter = await db.chapters.find_one_and_update(
        {"_id": chapter_oid},
        {"$push": {"lessons": lesson_id}, "$set": {"updated_at": now}},
        projection={"lessons": 1},
        return_document=ReturnDocument.AFTER
    )
    if not chapter:
        raise NotFoundError("Chapter not found")

    lesson = {
        "_id": lesson_id,
        "title": title,
        "description": attrs.get("description"),
        "thumbnail_key": attrs.get("thumbnail_key"),
        "video_key": attrs.get("video_key"),
        "position": len(chapter["lessons"]),
        "chapter_id": chapter_oid,
        "created_at": now,
        "updated_at": now,
    }
    await db.lessons.insert_one(lesson)
    return serialize_mongo(lesson)


async def _get_lesson_doc(db: AsyncIOMotorDatabase, lesson_id) -> dict:
    lesson = await db.lessons.find_one({"_id": parse_object_id(lesson_id, "lesson id")})
    if not lesson:
        raise NotFoundError("Lesson not found")
    return lesson


async def get_lesson(db: AsyncIOMotorDatabase, lesson_id) -> dict:
    return serialize_mongo(await _get_lesson_doc(db, lesson_id))


async def list_lessons(db: AsyncIOMotorDatabase, chapter_id=None) -> List[dict]:
    query = {}
    if chapter_id:
        query["chapter_id"] = parse_object_id(chapter_id, "chapter id")
    lessons = await db.lessons.find(query).sort([("chapter_id", 1), ("position", 1)]).to_list(None)
    return serialize_many(lessons)


async def update_lesson(db: AsyncIOMotorDatabase, lesson_id, updates: dict) -> dict:
    oid = parse_object_id(lesson_id, "lesson id")
    allowed = ("title", "description", "thumbnail_key", "video_key")
    updates = {k: v for k, v in updates.items() if v is not None and k in allowed}
    updates["updated_at"] = utcnow()

    lesson = await db.lessons.find_one_and_update(
        {"_id": oid},
        {"$set": updates},
        return_document=ReturnDocument.AFTER
    )
    if not lesson:
        raise NotFoundError("Lesson not found")
    return serialize_mongo(lesson)


async def delete_lesson(db: AsyncIOMotorDatabase, storage: ObjectStorage, lesson_id) -> dict:
    """Delete a lesson and shift later siblings down by one"""
    lesson = await _get_lesson_doc(db, lesson_id)
    chapter_id = lesson["chapter_id"]
    deleted_position = lesson["position"]

    await storage.delete_quietly(lesson.get("thumbnail_key"))
    await storage.delete_quietly(lesson.get("video_key"))
    await db.lesson_progress.delete_many({"lesson_id": lesson["_id"]})

    await db.chapters.update_one(
        {"_id": chapter_id},
        {"$pull": {"lessons": lesson["_id"]}, "$set": {"updated_at": utcnow()}}
    )
    await db.lessons.delete_one({"_id": lesson["_id"]})

    result = await db.lessons.update_many(
        {"chapter_id": chapter_id, "position": {"$gt": deleted_position}},
        {"$inc": {"position": -1}}
    )
    return {"shifted": result.modified_count}


async def reorder_lessons(db: AsyncIOMotorDatabase, chapter_id, order: List[str]) -> List[dict]:
    """Apply a complete new ordering of a chapter's lessons"""
    chapter = await _get_chapter_doc(db, chapter_id)
    ordered = [parse_object_id(lid, "lesson id") for lid in order]

    current = await db.lessons.find({"chapter_id": chapter["_id"]}, {"_id": 1}).to_list(None)
    if len(ordered) != len(current) or set(ordered) != {l["_id"] for l in current}:
        raise ValidationError("Order must list every lesson of the chapter exactly once")

    for index, lid in enumerate(ordered):
        await db.lessons.update_one({"_id": lid}, {"$set": {"position": index + 1}})
    await db.chapters.update_one(
        {"_id": chapter["_id"]},
        {"$set": {"lessons": ordered, "updated_at": utcnow()}}
    )

    return await list_lessons(db, chapter["_id"])


# ==================== MAINTENANCE ====================

async def sweep_orphans(db: AsyncIOMotorDatabase) -> dict:
    """
    Remove documents left behind by an interrupted cascade and close the
    position gaps it left.
    Safe to run repeatedly.
    """
    course_ids = await db.courses.distinct("_id")
    chapters = await db.chapters.delete_many({"course_id": {"$nin": course_ids}})

    chapter_ids = await db.chapters.distinct("_id")
    lessons = await db.lessons.delete_many({"chapter_id": {"$nin": chapter_ids}})

    lesson_ids = await db.lessons.distinct("_id")
    progress = await db.lesson_progress.delete_many({"lesson_id": {"$nin": lesson_ids}})

    chapter_set, lesson_set = set(chapter_ids), set(lesson_ids)
    refs_dropped = 0
    for course in await db.courses.find({}, {"chapters": 1}).to_list(None):
        refs = course.get("chapters", [])
        kept = [c for c in refs if c in chapter_set]
        if len(kept) != len(refs):
            refs_dropped += len(refs) - len(kept)
            await db.courses.update_one({"_id": course["_id"]}, {"$set": {"chapters": kept}})
    for chapter in await db.chapters.find({}, {"lessons": 1}).to_list(None):
        refs = chapter.get("lessons", [])
        kept = [l for l in refs if l in lesson_set]
        if len(kept) != len(refs):
            refs_dropped += len(refs) - len(kept)
            await db.chapters.update_one({"_id": chapter["_id"]}, {"$set": {"lessons": kept}})

    # a cascade stopped before its renumber/shift step leaves position gaps
    positions_fixed = 0
    for course_id in course_ids:
        positions_fixed += await _renumber_chapters(db, course_id)
    for chapter_id in chapter_ids:
        positions_fixed += await _renumber_lessons(db, chapter_id)

    summary = {
        "chapters_deleted": chapters.deleted_count,
        "lessons_deleted": lessons.deleted_count,
        "progress_deleted": progress.deleted_count,
        "refs_dropped": refs_dropped,
        "positions_fixed": positions_fixed,
    }
    logger.info("Orphan sweep finished: %s", summary)
    return summary
