"""
Admin dashboard statistics.
Everything is computed on demand from the live collections.
"""

import logging
from datetime import datetime
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from easylms.courses.database import utcnow
from easylms.courses.errors import ValidationError
from easylms.courses.models import ACCESS_STATUSES, CourseStatus, EnrollmentStatus

logger = logging.getLogger(__name__)


# ==================== WINDOWS ====================

def month_window(now: datetime) -> tuple[datetime, datetime]:
    """[start of month, start of next month)"""
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def _in_window(start: datetime, end: datetime) -> dict:
    return {"$gte": start, "$lt": end}


def _rate(part: float, whole: float) -> float:
    return round(100 * part / whole, 2) if whole else 0


# ==================== SECTIONS ====================

async def _count_customers(db: AsyncIOMotorDatabase, window: dict = None) -> int:
    """Distinct enrolled users, optionally only those whose first enrollment falls in window"""
    pipeline = [
        {"$group": {"_id": "$user_id", "first_enrollment": {"$min": "$created_at"}}}
    ]
    if window:
        pipeline.append({"$match": {"first_enrollment": window}})
    pipeline.append({"$count": "customers"})
    rows = await db.enrollments.aggregate(pipeline).to_list(None)
    return rows[0]["customers"] if rows else 0


async def _user_stats(db: AsyncIOMotorDatabase, start: datetime, end: datetime) -> dict:
    return {
        "total_signups": await db.users.count_documents({}),
        "total_customers": await _count_customers(db),
        "new_signups": await db.users.count_documents({"created_at": _in_window(start, end)}),
        "new_customers": await _count_customers(db, _in_window(start, end)),
    }


async def _course_stats(db: AsyncIOMotorDatabase, start: datetime, end: datetime) -> dict:
    by_status = {}
    for status in CourseStatus:
        by_status[status.value.lower()] = await db.courses.count_documents({"status": status.value})

    return {
        "total": await db.courses.count_documents({}),
        **by_status,
        "created_in_period": await db.courses.count_documents({"created_at": _in_window(start, end)}),
    }


async def _content_stats(db: AsyncIOMotorDatabase) -> dict:
    published_ids = await db.courses.distinct("_id", {"status": CourseStatus.PUBLISHED.value})
    published_chapter_ids = await db.chapters.distinct("_id", {"course_id": {"$in": published_ids}})

    total_chapters = await db.chapters.count_documents({})
    total_lessons = await db.lessons.count_documents({})
    published_lessons = await db.lessons.count_documents({"chapter_id": {"$in": published_chapter_ids}})

    return {
        "total_chapters": total_chapters,
        "total_lessons": total_lessons,
        "published_chapters": len(published_chapter_ids),
        "unpublished_chapters": total_chapters - len(published_chapter_ids),
        "published_lessons": published_lessons,
        "unpublished_lessons": total_lessons - published_lessons,
    }


async def _revenue(db: AsyncIOMotorDatabase, window: dict = None) -> float:
    match = {"status": {"$in": ACCESS_STATUSES}}
    if window:
        match["created_at"] = window
    rows = await db.enrollments.aggregate([
        {"$match": match},
        {"$group": {"_id": None, "total": {"$sum": "$amount"}}},
    ]).to_list(None)
    return round(rows[0]["total"], 2) if rows else 0


async def _enrollment_stats(db: AsyncIOMotorDatabase, start: datetime, end: datetime) -> dict:
    by_status = {}
    for status in EnrollmentStatus:
        by_status[status.value] = await db.enrollments.count_documents({"status": status.value})

    return {
        "total": await db.enrollments.count_documents({}),
        **by_status,
        "in_period": await db.enrollments.count_documents({"created_at": _in_window(start, end)}),
        "total_revenue": await _revenue(db),
        "revenue_in_period": await _revenue(db, _in_window(start, end)),
    }


async def _engagement_stats(db: AsyncIOMotorDatabase) -> dict:
    rows = await db.enrollments.aggregate([
        {"$match": {"status": {"$in": ACCESS_STATUSES}}},
        {"$group": {"_id": None, "avg_progress": {"$avg": "$progress"}}},
    ]).to_list(None)
    avg_progress = round(rows[0]["avg_progress"] or 0, 2) if rows else 0

    popular = await db.enrollments.aggregate([
        {"$group": {"_id": "$course_id", "enrollment_count": {"$sum": 1}}},
        {"$sort": {"enrollment_count": -1}},
        {"$limit": 1},
    ]).to_list(None)

    most_popular = None
    if popular:
        course = await db.courses.find_one({"_id": popular[0]["_id"]}, {"title": 1})
        if course:
            most_popular = {
                "course_id": str(course["_id"]),
                "title": course.get("title"),
                "enrollment_count": popular[0]["enrollment_count"],
            }

    active = await db.enrollments.count_documents({"status": EnrollmentStatus.ACTIVE.value})
    completed = await db.enrollments.count_documents({"status": EnrollmentStatus.COMPLETED.value})

    return {
        "average_progress": avg_progress,
        "most_popular_course": most_popular,
        "completion_rate": _rate(completed, active + completed),
    }


# ==================== PUBLIC API ====================

async def get_dashboard_stats(db: AsyncIOMotorDatabase, now: Optional[datetime] = None) -> dict:
    """Full dashboard for the calendar month containing `now`"""
    start, end = month_window(now or utcnow())

    return {
        "period": {"start": start, "end": end},
        "users": await _user_stats(db, start, end),
        "courses": await _course_stats(db, start, end),
        "content": await _content_stats(db),
        "enrollments": await _enrollment_stats(db, start, end),
        "engagement": await _engagement_stats(db),
    }


async def get_quick_stats(db: AsyncIOMotorDatabase) -> dict:
    return {
        "total_users": await db.users.count_documents({}),
        "total_customers": await _count_customers(db),
        "total_courses": await db.courses.count_documents({}),
        "total_revenue": await _revenue(db),
    }


async def get_stats_for_period(db: AsyncIOMotorDatabase, start: datetime, end: datetime) -> dict:
    """Users, courses and enrollments for an explicit [start, end) window"""
    if start is None or end is None:
        raise ValidationError("start_date and end_date are required")
    if start > end:
        raise ValidationError("start_date must be before end_date")

    logger.debug("Computing stats for %s - %s", start, end)
    return {
        "period": {"start": start, "end": end},
        "users": await _user_stats(db, start, end),
        "courses": await _course_stats(db, start, end),
        "enrollments": await _enrollment_stats(db, start, end),
    }
