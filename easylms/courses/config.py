"""
Course System Configuration
Database, session, object storage and paging settings
"""

import os

from dotenv import load_dotenv

load_dotenv()

# MongoDB
MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "easylms")

# Sessions issued by the identity provider (shared HS256 secret)
SESSION_SECRET = os.getenv("SESSION_SECRET", "change-me")
SESSION_ALGORITHM = os.getenv("SESSION_ALGORITHM", "HS256")

# S3-compatible object storage
S3_BUCKET = os.getenv("S3_BUCKET", "")
S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL")
S3_REGION = os.getenv("S3_REGION", "auto")
PRESIGNED_URL_EXPIRES_SECONDS = int(os.getenv("PRESIGNED_URL_EXPIRES_SECONDS", "360"))

# HTTP
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
DEBUG = os.getenv("DEBUG", "").lower() in ("true", "1", "yes")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Pagination
DEFAULT_PAGE_LIMIT = 10
MAX_PAGE_LIMIT = 100
