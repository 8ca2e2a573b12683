"""
S3-compatible object storage client.
Uploads go straight from the browser through presigned URLs; the backend
only signs upload requests and deletes keys.
"""

import asyncio
import logging
import uuid
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from slugify import slugify

from easylms.courses import config

logger = logging.getLogger(__name__)


class ObjectStorage:
    def __init__(self, bucket: str = None, client=None):
        self.bucket = bucket or config.S3_BUCKET
        self.client = client or boto3.client(
            "s3",
            endpoint_url=config.S3_ENDPOINT_URL,
            region_name=config.S3_REGION,
        )

    @staticmethod
    def build_key(file_name: str) -> str:
        return f"{uuid.uuid4()}-{slugify(file_name)}"

    async def presigned_upload(self, file_name: str, content_type: str, size: int) -> dict:
        """Sign a PUT for a fresh unique key"""
        key = self.build_key(file_name)
        url = await asyncio.to_thread(
            self.client.generate_presigned_url,
            "put_object",
            Params={
                "Bucket": self.bucket,
                "Key": key,
                "ContentType": content_type,
                "ContentLength": size,
            },
            ExpiresIn=config.PRESIGNED_URL_EXPIRES_SECONDS,
        )
        return {"presigned_url": url, "key": key}

    async def delete(self, key: str):
        await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)
        logger.info("Deleted object %s", key)

    async def delete_quietly(self, key: Optional[str]) -> bool:
        """Best-effort delete used by cascades; failures are logged, never raised"""
        if not key:
            return False
        try:
            await self.delete(key)
            return True
        except (BotoCoreError, ClientError) as e:
            logger.warning("Failed to delete object %s: %s", key, e)
            return False
