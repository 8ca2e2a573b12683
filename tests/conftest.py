"""
Shared fixtures: in-memory MongoDB, a recording S3 client and session tokens.
"""

from datetime import datetime, timedelta

import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient
from jose import jwt
from mongomock_motor import AsyncMongoMockClient

from easylms.courses import config, content_store
from easylms.courses.app import create_course_indexes
from easylms.courses.storage import ObjectStorage
from easylms.main import create_app

ADMIN_ID = "admin-1"
LEARNER_ID = "learner-1"
OTHER_LEARNER_ID = "learner-2"


# ==================== Fake S3 client ====================

class RecordingS3Client:
    """Stands in for a boto3 S3 client; remembers signed and deleted keys"""

    def __init__(self):
        self.signed = []
        self.deleted = []
        self.failing_keys = set()

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        self.signed.append({"operation": operation, "params": Params, "expires_in": ExpiresIn})
        return f"https://storage.test/{Params['Bucket']}/{Params['Key']}?expires={ExpiresIn}"

    def delete_object(self, Bucket, Key):
        if Key in self.failing_keys:
            raise ClientError({"Error": {"Code": "InternalError", "Message": "boom"}}, "DeleteObject")
        self.deleted.append(Key)


@pytest.fixture
def s3():
    return RecordingS3Client()


@pytest.fixture
def storage(s3):
    return ObjectStorage(bucket="test-bucket", client=s3)


# ==================== Database ====================

@pytest.fixture
def mongo():
    """Fresh in-memory database (indexes created by app startup)"""
    return AsyncMongoMockClient()["easylms_test"]


@pytest.fixture
async def db(mongo):
    await create_course_indexes(mongo)
    return mongo


# ==================== Content factories ====================

def course_attrs(**overrides):
    attrs = {
        "title": "Intro to Python",
        "file_key": "thumb-course.png",
        "price": 49.99,
        "description": "A gentle introduction to Python programming.",
        "duration": 2.5,
        "level": "Beginner",
        "category": "Programming",
        "small_description": "Learn Python basics",
        "status": "Published",
    }
    attrs.update(overrides)
    return attrs


@pytest.fixture
def seed_course(db):
    """Create a course with `chapters` x `lessons` content"""
    async def _seed(chapters=2, lessons=2, **overrides):
        course = await content_store.create_course(db, course_attrs(**overrides), ADMIN_ID)
        created_chapters = []
        for c in range(chapters):
            chapter = await content_store.create_chapter(db, course["_id"], f"Chapter {c + 1}")
            chapter["lessons"] = []
            for l in range(lessons):
                lesson = await content_store.create_lesson(db, chapter["_id"], {
                    "title": f"Lesson {c + 1}.{l + 1}",
                    "thumbnail_key": f"thumb-{c + 1}-{l + 1}.png",
                    "video_key": f"video-{c + 1}-{l + 1}.mp4",
                })
                chapter["lessons"].append(lesson)
            created_chapters.append(chapter)
        course["chapters"] = created_chapters
        return course

    return _seed


@pytest.fixture
def seed_user(db):
    async def _seed(user_id, created_at=None):
        await db.users.insert_one({
            "_id": user_id,
            "created_at": created_at or datetime.utcnow(),
            "enrollments": [],
            "lesson_progress": [],
        })
        return user_id

    return _seed


# ==================== HTTP ====================

def make_token(user_id, role="user", expires_in=timedelta(hours=1)):
    payload = {"sub": user_id, "role": role, "exp": datetime.utcnow() + expires_in}
    return jwt.encode(payload, config.SESSION_SECRET, algorithm=config.SESSION_ALGORITHM)


def auth_header(user_id, role="user"):
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


@pytest.fixture
def admin_headers():
    return auth_header(ADMIN_ID, "admin")


@pytest.fixture
def learner_headers():
    return auth_header(LEARNER_ID)


@pytest.fixture
def other_learner_headers():
    return auth_header(OTHER_LEARNER_ID)


@pytest.fixture
def client(mongo, storage):
    app = create_app(db=mongo, storage=storage)
    with TestClient(app) as test_client:
        yield test_client
