"""
Cloudflare R2 storage for the durable media mirror and the side-map artifacts
"""
import mimetypes
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import aioboto3
from botocore.exceptions import ClientError

from ..config import settings
from ..exceptions import StorageError
from ..logging_config import setup_logging

logger = setup_logging(__name__)

MISSING_CODES = {"404", "NoSuchKey", "NotFound"}
CHUNK_SIZE = 64 * 1024


@dataclass
class StoredObject:
    """An object (or a byte slice of it) read from the mirror"""
    key: str
    size: int
    content_type: Optional[str] = None
    etag: Optional[str] = None
    offset: int = 0
    length: Optional[int] = None
    body: Optional[bytes] = None
    stream: Any = None

    async def iter_chunks(self, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
        if self.body is not None:
            for start in range(0, len(self.body), chunk_size):
                yield self.body[start:start + chunk_size]
            return
        if self.stream is None:
            return
        try:
            async for chunk in self.stream.iter_chunks(chunk_size):
                yield chunk
        finally:
            self.close()

    async def read(self) -> bytes:
        if self.body is None:
            chunks = [chunk async for chunk in self.iter_chunks()]
            self.body = b"".join(chunks)
        return self.body

    def close(self):
        if self.stream is not None:
            self.stream.close()
            self.stream = None


def _is_missing(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code", "") in MISSING_CODES


class R2Storage:
    """Cloudflare R2 storage manager"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or settings.get_r2_config()
        self.bucket = self.config["bucket_name"]
        self.session = None
        self.client = None
        self._client_cm = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def connect(self):
        """Connect to R2"""
        try:
            self.session = aioboto3.Session()
            self._client_cm = self.session.client(
                's3',
                endpoint_url=self.config["endpoint_url"],
                aws_access_key_id=self.config["access_key_id"],
                aws_secret_access_key=self.config["secret_access_key"],
                region_name=self.config.get("region") or 'auto',
            )
            self.client = await self._client_cm.__aenter__()

            logger.info("Connected to Cloudflare R2", extra={"key": self.bucket})

        except Exception as e:
            logger.error(f"Failed to connect to R2: {e}")
            raise StorageError(f"R2 connect failed: {e}") from e

    async def close(self):
        """Close R2 connection"""
        if self._client_cm is not None:
            await self._client_cm.__aexit__(None, None, None)
            self._client_cm = None
            self.client = None

    async def ping(self) -> bool:
        """Check the bucket is reachable"""
        try:
            await self.client.head_bucket(Bucket=self.bucket)
            return True
        except ClientError as e:
            raise StorageError(f"R2 bucket check failed: {e}") from e

    async def head_object(self, key: str) -> Optional[StoredObject]:
        """Object metadata, or None when the key is absent"""
        try:
            resp = await self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _is_missing(e):
                return None
            raise StorageError(f"R2 head failed for {key}: {e}") from e
        return StoredObject(
            key=key,
            size=int(resp["ContentLength"]),
            content_type=resp.get("ContentType"),
            etag=resp.get("ETag"),
        )

    async def object_exists(self, key: str) -> bool:
        """Check if object exists in R2"""
        return await self.head_object(key) is not None

    async def get_object(self, key: str, byte_range: Optional[Tuple[int, int]] = None) -> Optional[StoredObject]:
        """
        Open an object for streaming

        Args:
            key: Object key
            byte_range: Inclusive ``(start, end)`` slice to read

        Returns:
            StoredObject with an open stream, or None when the key is absent
        """
        params = {"Bucket": self.bucket, "Key": key}
        if byte_range is not None:
            params["Range"] = f"bytes={byte_range[0]}-{byte_range[1]}"
        try:
            resp = await self.client.get_object(**params)
        except ClientError as e:
            if _is_missing(e):
                return None
            raise StorageError(f"R2 get failed for {key}: {e}") from e

        length = int(resp["ContentLength"])
        size = length
        offset = 0
        content_range = resp.get("ContentRange")
        if content_range:
            # "bytes 0-99/1000"
            span, _, total = content_range.split(" ", 1)[-1].partition("/")
            offset = int(span.split("-", 1)[0])
            if total.isdigit():
                size = int(total)

        return StoredObject(
            key=key,
            size=size,
            content_type=resp.get("ContentType"),
            etag=resp.get("ETag"),
            offset=offset,
            length=length,
            stream=resp["Body"],
        )

    async def get_text(self, keys: List[str]) -> Optional[str]:
        """Text of the first present key, or None"""
        for key in keys:
            try:
                obj = await self.get_object(key)
            except StorageError as e:
                logger.warning(f"Skipping unreadable key: {e}", extra={"key": key})
                continue
            if obj is not None:
                return (await obj.read()).decode("utf-8")
        return None

    async def put_object(self, data: bytes, key: str, content_type: str = None) -> str:
        """Write an object once; an existing key is left untouched"""
        if not content_type:
            content_type = mimetypes.guess_type(key)[0] or 'application/octet-stream'

        if await self.object_exists(key):
            logger.debug(f"Object already mirrored: {key}", extra={"key": key})
            return key

        try:
            await self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                CacheControl='public, max-age=31536000',  # 1 year
            )
            logger.info(f"Mirrored object: {key}", extra={"key": key})
            return key

        except ClientError as e:
            logger.error(f"Failed to upload {key}: {e}", extra={"key": key})
            raise StorageError(f"R2 put failed for {key}: {e}") from e


# Global storage instance
_storage: Optional[R2Storage] = None


async def get_storage() -> Optional[R2Storage]:
    """Get or create the global storage instance (None when R2 is not configured)"""
    global _storage

    if _storage is None and settings.storage_enabled:
        _storage = R2Storage()
        await _storage.connect()

    return _storage


async def close_storage():
    """Close the global storage instance"""
    global _storage

    if _storage:
        await _storage.close()
        _storage = None
