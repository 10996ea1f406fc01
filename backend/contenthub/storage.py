import asyncio
from typing import List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import settings
from .exceptions import StorageError
from .logger import logger


def _make_s3_client():
    return boto3.client(
        "s3",
        aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
        aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
        region_name=settings.AWS_REGION_NAME,
        endpoint_url=settings.AWS_ENDPOINT_URL,
    )


class ObjectStorage:
    """
    S3-compatible bucket with public read URLs.

    boto3 is blocking, so the async wrappers run each call in a worker thread.
    """

    def __init__(self, client=None, bucket: str = None, public_base_url: str = None):
        self._client = client
        self.bucket = bucket or settings.S3_BUCKET_NAME
        self.public_base_url = (public_base_url or settings.STORAGE_PUBLIC_BASE_URL).rstrip("/")

    @property
    def client(self):
        if self._client is None:
            self._client = _make_s3_client()
        return self._client

    def public_url(self, path: str) -> str:
        return f"{self.public_base_url}/{path.lstrip('/')}"

    def _put(self, path: str, data: bytes, content_type: str) -> str:
        try:
            self.client.put_object(Bucket=self.bucket, Key=path, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to upload {path} to storage: {e}")
            raise StorageError(f"Failed to upload {path}: {e}")
        logger.info(f"Uploaded object to storage: {path}", extra={"key": path, "size": len(data)})
        return self.public_url(path)

    def _list(self, prefix: str) -> List[str]:
        keys: List[str] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    keys.append(obj["Key"])
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to list storage prefix {prefix}: {e}")
            raise StorageError(f"Failed to list {prefix}: {e}")
        return keys

    def _remove(self, paths: List[str]) -> int:
        removed = 0
        # delete_objects accepts at most 1000 keys per request
        for start in range(0, len(paths), 1000):
            chunk = paths[start:start + 1000]
            try:
                self.client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": k} for k in chunk], "Quiet": True},
                )
            except (BotoCoreError, ClientError) as e:
                logger.error(f"Failed to delete {len(chunk)} storage objects: {e}")
                raise StorageError(f"Failed to delete objects: {e}")
            removed += len(chunk)
        return removed

    async def put(self, path: str, data: bytes, content_type: str = "image/png") -> str:
        return await asyncio.to_thread(self._put, path, data, content_type)

    async def list(self, prefix: str) -> List[str]:
        return await asyncio.to_thread(self._list, prefix)

    async def remove(self, paths: List[str]) -> int:
        if not paths:
            return 0
        return await asyncio.to_thread(self._remove, list(paths))

    async def remove_prefix(self, prefix: str) -> int:
        keys = await self.list(prefix)
        removed = await self.remove(keys)
        if removed:
            logger.info(f"Removed {removed} storage objects under {prefix}", extra={"prefix": prefix, "count": removed})
        return removed


_storage: Optional[ObjectStorage] = None


def get_storage() -> ObjectStorage:
    global _storage
    if _storage is None:
        _storage = ObjectStorage()
    return _storage
