from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
from enum import Enum

# ==================== ENUMS ====================

class CourseLevel(str, Enum):
    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"

class CourseStatus(str, Enum):
    DRAFT = "Draft"
    PUBLISHED = "Published"
    ARCHIVED = "Archived"

class EnrollmentStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

# Enrollments that grant access to course content
ACCESS_STATUSES = [EnrollmentStatus.ACTIVE.value, EnrollmentStatus.COMPLETED.value]

# ==================== COURSE MODELS ====================

class CourseCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    file_key: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    description: str = Field(..., min_length=10)
    duration: float = Field(..., ge=0)
    level: CourseLevel = CourseLevel.BEGINNER
    category: str = Field(..., min_length=1)
    small_description: str = Field(..., min_length=1, max_length=500)
    slug: Optional[str] = None
    status: CourseStatus = CourseStatus.DRAFT

    @field_validator("title", "file_key", "category", "small_description", "description")
    @classmethod
    def strip_text(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

class CourseUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    file_key: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    description: Optional[str] = Field(None, min_length=10)
    duration: Optional[float] = Field(None, ge=0)
    level: Optional[CourseLevel] = None
    category: Optional[str] = None
    small_description: Optional[str] = Field(None, max_length=500)
    slug: Optional[str] = None
    status: Optional[CourseStatus] = None

# ==================== CHAPTER / LESSON MODELS ====================

class ChapterCreate(BaseModel):
    course_id: str
    title: str = Field(..., min_length=1, max_length=200)

class ChapterUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)

class LessonCreate(BaseModel):
    chapter_id: str
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    thumbnail_key: Optional[str] = None
    video_key: Optional[str] = None

class LessonUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    thumbnail_key: Optional[str] = None
    video_key: Optional[str] = None

class ReorderPayload(BaseModel):
    order: List[str]

# ==================== ENROLLMENT MODELS ====================

class EnrollmentCreate(BaseModel):
    course_id: str

class EnrollmentUpdate(BaseModel):
    status: Optional[EnrollmentStatus] = None

class EnrollmentProgressUpdate(BaseModel):
    progress: float

# ==================== PROGRESS MODELS ====================

class LessonProgressUpdate(BaseModel):
    completed: bool = True

# ==================== STORAGE MODELS ====================

class FileUploadRequest(BaseModel):
    file_name: str = Field(..., min_length=1)
    content_type: str = Field(..., min_length=1)
    size: int = Field(..., ge=1)
    is_image: bool

class FileDeleteRequest(BaseModel):
    key: str = Field(..., min_length=1)
