"""
Per-(user, lesson) completion tracking and the rollups built on it.
"""

import logging

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from easylms.courses.database import (
    normalize_page, pagination, parse_object_id, percentage, serialize_mongo, utcnow
)
from easylms.courses.errors import ForbiddenError, NotFoundError
from easylms.courses.models import ACCESS_STATUSES

logger = logging.getLogger(__name__)


# ==================== HELPERS ====================

async def _lesson_scope(db: AsyncIOMotorDatabase, lesson_id) -> tuple[dict, dict]:
    """Resolve lesson and its chapter, NotFound for either"""
    lesson = await db.lessons.find_one({"_id": parse_object_id(lesson_id, "lesson id")})
    if not lesson:
        raise NotFoundError("Lesson not found")

    chapter = await db.chapters.find_one({"_id": lesson["chapter_id"]}, {"course_id": 1})
    if not chapter:
        raise NotFoundError("Chapter not found")
    return lesson, chapter


async def _completed_lesson_ids(db: AsyncIOMotorDatabase, user_id: str, lesson_ids: list) -> set:
    rows = await db.lesson_progress.find(
        {"user_id": user_id, "lesson_id": {"$in": lesson_ids}, "completed": True},
        {"lesson_id": 1}
    ).to_list(None)
    return {row["lesson_id"] for row in rows}


def _rollup(lessons: list, completed_ids: set) -> dict:
    completed = sum(1 for lesson in lessons if lesson["_id"] in completed_ids)
    return {
        "completed_lessons": completed,
        "total_lessons": len(lessons),
        "completion_percentage": percentage(completed, len(lessons)),
    }


# ==================== TOGGLE ====================

async def set_completion(db: AsyncIOMotorDatabase, user_id: str, lesson_id, completed: bool = True) -> dict:
    """
    Mark a lesson complete (or not) for a user.
    Requires an active or completed enrollment in the lesson's course.
    """
    lesson, chapter = await _lesson_scope(db, lesson_id)

    enrollment = await db.enrollments.find_one({
        "user_id": user_id,
        "course_id": chapter["course_id"],
        "status": {"$in": ACCESS_STATUSES},
    }, {"_id": 1})
    if not enrollment:
        raise ForbiddenError("You must be enrolled in this course to track progress")

    now = utcnow()
    row = await db.lesson_progress.find_one_and_update(
        {"user_id": user_id, "lesson_id": lesson["_id"]},
        {
            "$set": {"completed": completed, "updated_at": now},
            "$setOnInsert": {"user_id": user_id, "lesson_id": lesson["_id"], "created_at": now},
        },
        upsert=True,
        return_document=ReturnDocument.AFTER
    )

    await db.users.update_one(
        {"_id": user_id},
        {"$addToSet": {"lesson_progress": row["_id"]}}
    )
    return serialize_mongo(row)


async def get_lesson_progress(db: AsyncIOMotorDatabase, user_id: str, lesson_id) -> dict:
    """Return the progress row, or a not-started default"""
    lesson_oid = parse_object_id(lesson_id, "lesson id")
    row = await db.lesson_progress.find_one({"user_id": user_id, "lesson_id": lesson_oid})
    if not row:
        return {"user_id": user_id, "lesson_id": str(lesson_oid), "completed": False}
    return serialize_mongo(row)


async def delete_progress(db: AsyncIOMotorDatabase, user_id: str, lesson_id) -> dict:
    lesson_oid = parse_object_id(lesson_id, "lesson id")
    row = await db.lesson_progress.find_one({"user_id": user_id, "lesson_id": lesson_oid})
    if not row:
        raise NotFoundError("Progress not found")

    await db.users.update_one({"_id": user_id}, {"$pull": {"lesson_progress": row["_id"]}})
    await db.lesson_progress.delete_one({"_id": row["_id"]})
    return serialize_mongo(row)


# ==================== ROLLUPS ====================

async def chapter_rollup(db: AsyncIOMotorDatabase, chapter_id, user_id: str) -> dict:
    chapter = await db.chapters.find_one({"_id": parse_object_id(chapter_id, "chapter id")})
    if not chapter:
        raise NotFoundError("Chapter not found")

    lessons = await db.lessons.find(
        {"chapter_id": chapter["_id"]}, {"_id": 1, "title": 1, "position": 1}
    ).sort("position", 1).to_list(None)
    completed_ids = await _completed_lesson_ids(db, user_id, [l["_id"] for l in lessons])

    return {
        "chapter_id": str(chapter["_id"]),
        "title": chapter.get("title"),
        **_rollup(lessons, completed_ids),
        "lessons": [
            {**serialize_mongo(l), "completed": l["_id"] in completed_ids}
            for l in lessons
        ],
    }


async def course_rollup(db: AsyncIOMotorDatabase, course_id, user_id: str) -> dict:
    """Course completion plus a per-chapter breakdown"""
    course = await db.courses.find_one({"_id": parse_object_id(course_id, "course id")}, {"title": 1})
    if not course:
        raise NotFoundError("Course not found")

    chapters = await db.chapters.find(
        {"course_id": course["_id"]}, {"_id": 1, "title": 1, "position": 1}
    ).sort("position", 1).to_list(None)
    lessons = await db.lessons.find(
        {"chapter_id": {"$in": [c["_id"] for c in chapters]}}, {"_id": 1, "chapter_id": 1}
    ).sort("position", 1).to_list(None)
    completed_ids = await _completed_lesson_ids(db, user_id, [l["_id"] for l in lessons])

    breakdown = []
    for chapter in chapters:
        in_chapter = [l for l in lessons if l["chapter_id"] == chapter["_id"]]
        breakdown.append({
            "chapter_id": str(chapter["_id"]),
            "title": chapter.get("title"),
            "position": chapter.get("position"),
            **_rollup(in_chapter, completed_ids),
        })

    return {
        "course_id": str(course["_id"]),
        "title": course.get("title"),
        **_rollup(lessons, completed_ids),
        "total_chapters": len(chapters),
        "chapters": breakdown,
    }


async def _course_lesson_ids(db: AsyncIOMotorDatabase, course_id) -> list:
    chapter_ids = await db.chapters.distinct("_id", {"course_id": course_id})
    return await db.lessons.distinct("_id", {"chapter_id": {"$in": chapter_ids}})


async def user_overview(db: AsyncIOMotorDatabase, user_id: str, page: int = 1, limit: int = None) -> dict:
    """Completion and last activity for each course the user can access"""
    page, limit, skip = normalize_page(page, limit)
    query = {"user_id": user_id, "status": {"$in": ACCESS_STATUSES}}

    enrollments = await db.enrollments.find(query).sort("created_at", -1).skip(skip).limit(limit).to_list(length=limit)
    total = await db.enrollments.count_documents(query)

    courses = []
    for enrollment in enrollments:
        course = await db.courses.find_one(
            {"_id": enrollment["course_id"]}, {"title": 1, "slug": 1, "file_key": 1}
        )
        lesson_ids = await _course_lesson_ids(db, enrollment["course_id"])
        rows = await db.lesson_progress.find(
            {"user_id": user_id, "lesson_id": {"$in": lesson_ids}},
            {"completed": 1, "updated_at": 1}
        ).to_list(None)

        completed = sum(1 for row in rows if row.get("completed"))
        last_activity = max((row["updated_at"] for row in rows), default=None)

        courses.append({
            "enrollment_id": str(enrollment["_id"]),
            "course": serialize_mongo(course) if course else None,
            "status": enrollment["status"],
            "completed_lessons": completed,
            "total_lessons": len(lesson_ids),
            "completion_percentage": percentage(completed, len(lesson_ids)),
            "last_activity": last_activity,
        })

    total_rows = await db.lesson_progress.count_documents({"user_id": user_id})
    total_completed = await db.lesson_progress.count_documents({"user_id": user_id, "completed": True})

    return {
        "courses": courses,
        "total_progress_records": total_rows,
        "total_completed_lessons": total_completed,
        "pagination": pagination(page, limit, total),
    }


# ==================== ADMIN ANALYTICS ====================

async def lesson_analytics(
    db: AsyncIOMotorDatabase,
    course_id=None,
    chapter_id=None,
    lesson_id=None
) -> list:
    """Completion rate per lesson across all users, best first"""
    pipeline = []
    if lesson_id:
        pipeline.append({"$match": {"lesson_id": parse_object_id(lesson_id, "lesson id")}})

    pipeline += [
        {"$lookup": {
            "from": "lessons",
            "localField": "lesson_id",
            "foreignField": "_id",
            "as": "lesson",
        }},
        {"$unwind": "$lesson"},
    ]
    if chapter_id:
        pipeline.append({"$match": {"lesson.chapter_id": parse_object_id(chapter_id, "chapter id")}})
    if course_id:
        pipeline += [
            {"$lookup": {
                "from": "chapters",
                "localField": "lesson.chapter_id",
                "foreignField": "_id",
                "as": "chapter",
            }},
            {"$unwind": "$chapter"},
            {"$match": {"chapter.course_id": parse_object_id(course_id, "course id")}},
        ]

    pipeline.append({
        "$group": {
            "_id": "$lesson_id",
            "lesson_title": {"$first": "$lesson.title"},
            "chapter_id": {"$first": "$lesson.chapter_id"},
            "completed_count": {"$sum": {"$cond": [{"$eq": ["$completed", True]}, 1, 0]}},
            "total_count": {"$sum": 1},
        }
    })

    rows = await db.lesson_progress.aggregate(pipeline).to_list(None)

    results = []
    for row in rows:
        total = row["total_count"]
        rate = round(100 * row["completed_count"] / total, 2) if total else 0
        results.append({
            "lesson_id": str(row["_id"]),
            "lesson_title": row.get("lesson_title"),
            "chapter_id": str(row["chapter_id"]) if row.get("chapter_id") else None,
            "completed_count": row["completed_count"],
            "total_count": total,
            "completion_rate": rate,
        })

    results.sort(key=lambda r: r["completion_rate"], reverse=True)
    return results
