import logging
import math
from datetime import datetime
from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from easylms.courses import config
from easylms.courses.errors import ValidationError

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Manages MongoDB connection lifecycle"""

    def __init__(self, mongo_url: str = None, db_name: str = None):
        self.mongo_url = mongo_url or config.MONGO_URL
        self.db_name = db_name or config.MONGO_DB_NAME
        self.client: Optional[AsyncIOMotorClient] = None
        self.db: Optional[AsyncIOMotorDatabase] = None

    def connect(self) -> AsyncIOMotorDatabase:
        """Initialize MongoDB connection"""
        if not self.mongo_url:
            raise RuntimeError("MONGO_URL environment variable required")

        self.client = AsyncIOMotorClient(self.mongo_url)
        self.db = self.client[self.db_name]
        logger.info("MongoDB connected (database=%s)", self.db_name)
        return self.db

    def disconnect(self):
        """Close MongoDB connection"""
        if self.client:
            self.client.close()
            logger.info("MongoDB disconnected")


# ==================== SERIALIZATION ====================

def serialize_mongo(value: Any) -> Any:
    """Convert ObjectIds (at any depth) to strings for JSON responses"""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: serialize_mongo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [serialize_mongo(v) for v in value]
    return value


def serialize_many(docs: list[dict]) -> list[dict]:
    return [serialize_mongo(doc) for doc in docs]


def parse_object_id(value: Any, label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label}")


def utcnow() -> datetime:
    # Mongo stores millisecond precision; truncate so round trips compare equal
    now = datetime.utcnow()
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


# ==================== PAGINATION ====================

def normalize_page(page: Optional[int], limit: Optional[int]) -> tuple[int, int, int]:
    """Clamp page/limit and return (page, limit, skip)"""
    page = page if page and page > 0 else 1
    limit = limit if limit and limit > 0 else config.DEFAULT_PAGE_LIMIT
    limit = min(limit, config.MAX_PAGE_LIMIT)
    return page, limit, (page - 1) * limit


def pagination(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if limit else 0,
        "has_next": page * limit < total,
        "has_prev": page > 1,
    }


def percentage(part: int, whole: int) -> int:
    """Whole-number percentage rounded half up; 0 for an empty whole"""
    if whole <= 0:
        return 0
    return math.floor(100 * part / whole + 0.5)
