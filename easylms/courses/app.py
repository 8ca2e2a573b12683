"""
EasyLMS Course System - router registration and index setup
"""

import logging

from fastapi import Depends, FastAPI
from motor.motor_asyncio import AsyncIOMotorDatabase

from easylms.courses.chapter_router import router as chapter_router
from easylms.courses.course_router import router as course_router
from easylms.courses.dependencies import enforce_route_policy
from easylms.courses.enrollment_router import router as enrollment_router
from easylms.courses.lesson_router import router as lesson_router
from easylms.courses.progress_router import router as progress_router
from easylms.courses.stats_router import router as stats_router

logger = logging.getLogger(__name__)

# ==================== DATABASE INDEXES ====================

async def create_course_indexes(db: AsyncIOMotorDatabase):
    """Create MongoDB indexes for lookups and uniqueness"""

    # Courses
    await db.courses.create_index("slug", unique=True)
    await db.courses.create_index([("category", 1), ("status", 1)])
    await db.courses.create_index("created_by")
    await db.courses.create_index("created_at")

    # Content
    await db.chapters.create_index([("course_id", 1), ("position", 1)])
    await db.lessons.create_index([("chapter_id", 1), ("position", 1)])

    # Enrollments
    await db.enrollments.create_index([("user_id", 1), ("course_id", 1)], unique=True)
    await db.enrollments.create_index("status")
    await db.enrollments.create_index("created_at")

    # Lesson progress
    await db.lesson_progress.create_index([("user_id", 1), ("lesson_id", 1)], unique=True)
    await db.lesson_progress.create_index("lesson_id")

    logger.info("Course system indexes created")

# ==================== ROUTER SETUP ====================

def setup_course_routes(app: FastAPI):
    """Register all course-related routers behind the route access table"""
    guarded = [Depends(enforce_route_policy)]

    app.include_router(course_router, dependencies=guarded)
    app.include_router(chapter_router, dependencies=guarded)
    # progress paths live under /api/lesson, so they must be matched first
    app.include_router(progress_router, dependencies=guarded)
    app.include_router(lesson_router, dependencies=guarded)
    app.include_router(enrollment_router, dependencies=guarded)
    app.include_router(stats_router, dependencies=guarded)

    logger.info("Course routes registered")

# ==================== STARTUP ====================

async def startup_course_system(db: AsyncIOMotorDatabase):
    """Initialize course system on app startup"""
    await create_course_indexes(db)
    logger.info("Course system initialized")
