"""
Enrollment persistence: one row per (user, course), with price snapshot,
status lifecycle and coarse progress.
"""

import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from easylms.courses.database import (
    normalize_page, pagination, parse_object_id, serialize_many, serialize_mongo, utcnow
)
from easylms.courses.errors import ConflictError, NotFoundError, ValidationError
from easylms.courses.models import ACCESS_STATUSES, EnrollmentStatus

logger = logging.getLogger(__name__)

STATUS_VALUES = [s.value for s in EnrollmentStatus]
COURSE_SUMMARY_PROJECTION = {
    "_id": 1, "title": 1, "slug": 1, "file_key": 1, "price": 1,
    "level": 1, "category": 1, "duration": 1, "status": 1,
}


def _status_value(status) -> str:
    status = status.value if hasattr(status, "value") else status
    if status not in STATUS_VALUES:
        raise ValidationError(f"Status must be one of: {STATUS_VALUES}")
    return status


# ==================== ENROLL / UNENROLL ====================

async def enroll(db: AsyncIOMotorDatabase, user_id: str, course_id) -> dict:
    """Enroll a user at the course's current price"""
    course_oid = parse_object_id(course_id, "course id")

    course = await db.courses.find_one({"_id": course_oid}, {"price": 1})
    if not course:
        raise NotFoundError("Course not found")

    existing = await db.enrollments.find_one({"user_id": user_id, "course_id": course_oid}, {"_id": 1})
    if existing:
        raise ConflictError("User is already enrolled in this course")

    now = utcnow()
    enrollment = {
        "user_id": user_id,
        "course_id": course_oid,
        "amount": course.get("price", 0),
        "status": EnrollmentStatus.ACTIVE.value,
        "progress": 0,
        "completed_at": None,
        "created_at": now,
        "updated_at": now,
    }

    try:
        result = await db.enrollments.insert_one(enrollment)
    except DuplicateKeyError:
        raise ConflictError("User is already enrolled in this course")

    enrollment["_id"] = result.inserted_id

    # users are owned by the identity provider; never upsert
    await db.users.update_one(
        {"_id": user_id},
        {"$addToSet": {"enrollments": result.inserted_id}}
    )

    logger.info("User %s enrolled in course %s", user_id, course_oid)
    return serialize_mongo(enrollment)


async def unenroll(db: AsyncIOMotorDatabase, enrollment_id) -> dict:
    """Delete an enrollment. Lesson progress rows are kept."""
    oid = parse_object_id(enrollment_id, "enrollment id")
    enrollment = await db.enrollments.find_one({"_id": oid})
    if not enrollment:
        raise NotFoundError("Enrollment not found")

    await db.users.update_one(
        {"_id": enrollment["user_id"]},
        {"$pull": {"enrollments": oid}}
    )
    await db.enrollments.delete_one({"_id": oid})

    logger.info("Removed enrollment %s", oid)
    return serialize_mongo(enrollment)


async def check_enrollment(db: AsyncIOMotorDatabase, user_id: str, course_id) -> tuple[bool, Optional[dict]]:
    """(has_access, enrollment) where access means active or completed"""
    enrollment = await db.enrollments.find_one({
        "user_id": user_id,
        "course_id": parse_object_id(course_id, "course id"),
    })
    if not enrollment:
        return False, None
    return enrollment["status"] in ACCESS_STATUSES, serialize_mongo(enrollment)


# ==================== READ ====================

async def _get_enrollment_doc(db: AsyncIOMotorDatabase, enrollment_id) -> dict:
    enrollment = await db.enrollments.find_one({"_id": parse_object_id(enrollment_id, "enrollment id")})
    if not enrollment:
        raise NotFoundError("Enrollment not found")
    return enrollment


async def get_enrollment(db: AsyncIOMotorDatabase, enrollment_id) -> dict:
    enrollment = await _get_enrollment_doc(db, enrollment_id)
    enrollment["course"] = await db.courses.find_one(
        {"_id": enrollment["course_id"]}, COURSE_SUMMARY_PROJECTION
    )
    return serialize_mongo(enrollment)


async def _paged(db: AsyncIOMotorDatabase, query: dict, page, limit, with_course: bool = False) -> dict:
    page, limit, skip = normalize_page(page, limit)
    cursor = db.enrollments.find(query).sort("created_at", -1).skip(skip).limit(limit)
    enrollments = await cursor.to_list(length=limit)
    total = await db.enrollments.count_documents(query)

    if with_course and enrollments:
        course_ids = list({e["course_id"] for e in enrollments})
        courses = await db.courses.find(
            {"_id": {"$in": course_ids}}, COURSE_SUMMARY_PROJECTION
        ).to_list(None)
        by_id = {c["_id"]: c for c in courses}
        for enrollment in enrollments:
            enrollment["course"] = by_id.get(enrollment["course_id"])

    return {"data": serialize_many(enrollments), "pagination": pagination(page, limit, total)}


async def list_enrollments(db: AsyncIOMotorDatabase, filters: dict, page: int = 1, limit: int = None) -> dict:
    query = {}
    if filters.get("user_id"):
        query["user_id"] = filters["user_id"]
    if filters.get("course_id"):
        query["course_id"] = parse_object_id(filters["course_id"], "course id")
    if filters.get("status"):
        query["status"] = _status_value(filters["status"])
    return await _paged(db, query, page, limit)


async def list_user_enrollments(
    db: AsyncIOMotorDatabase,
    user_id: str,
    status: str = None,
    page: int = 1,
    limit: int = None
) -> dict:
    """A user's enrollments with a summary of each course"""
    query = {"user_id": user_id}
    if status:
        query["status"] = _status_value(status)
    return await _paged(db, query, page, limit, with_course=True)


async def list_course_enrollments(
    db: AsyncIOMotorDatabase,
    course_id,
    status: str = None,
    page: int = 1,
    limit: int = None
) -> dict:
    course_oid = parse_object_id(course_id, "course id")
    if not await db.courses.find_one({"_id": course_oid}, {"_id": 1}):
        raise NotFoundError("Course not found")

    query = {"course_id": course_oid}
    if status:
        query["status"] = _status_value(status)
    return await _paged(db, query, page, limit)


# ==================== UPDATE ====================

async def update_enrollment(db: AsyncIOMotorDatabase, enrollment_id, updates: dict) -> dict:
    """Partial update; user and course are immutable"""
    oid = parse_object_id(enrollment_id, "enrollment id")
    updates = {k: v for k, v in updates.items() if v is not None}
    for immutable in ("_id", "user_id", "course_id", "created_at"):
        updates.pop(immutable, None)

    if "status" in updates:
        updates["status"] = _status_value(updates["status"])
        if updates["status"] == EnrollmentStatus.COMPLETED.value:
            updates.setdefault("completed_at", utcnow())
    updates["updated_at"] = utcnow()

    enrollment = await db.enrollments.find_one_and_update(
        {"_id": oid},
        {"$set": updates},
        return_document=ReturnDocument.AFTER
    )
    if not enrollment:
        raise NotFoundError("Enrollment not found")
    return serialize_mongo(enrollment)


async def update_progress(db: AsyncIOMotorDatabase, enrollment_id, progress) -> dict:
    """Set coarse progress; reaching 100 completes the enrollment in the same write"""
    if isinstance(progress, bool) or not isinstance(progress, (int, float)) or not 0 <= progress <= 100:
        raise ValidationError("Progress must be a number between 0 and 100")

    now = utcnow()
    updates = {"progress": progress, "updated_at": now}
    if progress == 100:
        updates["status"] = EnrollmentStatus.COMPLETED.value
        updates["completed_at"] = now

    enrollment = await db.enrollments.find_one_and_update(
        {"_id": parse_object_id(enrollment_id, "enrollment id")},
        {"$set": updates},
        return_document=ReturnDocument.AFTER
    )
    if not enrollment:
        raise NotFoundError("Enrollment not found")
    return serialize_mongo(enrollment)


# ==================== STATS ====================

async def stats(db: AsyncIOMotorDatabase) -> dict:
    """Per-status breakdown plus revenue over paying statuses"""
    pipeline = [
        {
            "$group": {
                "_id": "$status",
                "count": {"$sum": 1},
                "total_amount": {"$sum": "$amount"},
                "avg_progress": {"$avg": "$progress"},
            }
        }
    ]
    rows = await db.enrollments.aggregate(pipeline).to_list(None)

    by_status = []
    total = 0
    revenue = 0
    for row in sorted(rows, key=lambda r: r["_id"] or ""):
        total += row["count"]
        if row["_id"] in ACCESS_STATUSES:
            revenue += row["total_amount"] or 0
        by_status.append({
            "status": row["_id"],
            "count": row["count"],
            "total_amount": round(row["total_amount"] or 0, 2),
            "avg_progress": round(row["avg_progress"] or 0, 2),
        })

    return {
        "by_status": by_status,
        "total_enrollments": total,
        "total_revenue": round(revenue, 2),
    }
