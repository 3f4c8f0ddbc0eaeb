"""
S3 adapter for file bytes.

One ``ObjectStorage`` instance wraps one bucket.  Keys are chosen by the
caller (``file_service`` builds ``"{uuid4}-{filename}"``) so they are
globally unique without asking the store.
"""
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator
from urllib.parse import quote

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from blogcore.config import settings
from blogcore.exceptions import ObjectStorageError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


@dataclass
class StoredObject:
    key: str
    url: str


@asynccontextmanager
async def _translate_errors(action: str, key: str):
    try:
        yield
    except (ClientError, BotoCoreError) as exc:
        raise ObjectStorageError(f"Object storage {action} failed for key {key!r}: {exc}") from exc


class ObjectStorage:
    def __init__(self, bucket_name: str, session: aioboto3.Session | None = None) -> None:
        self.bucket_name = bucket_name
        self._session = session or aioboto3.Session()

    def _client(self):
        return self._session.client(
            "s3",
            region_name=settings.AWS_REGION,
            endpoint_url=settings.AWS_ENDPOINT_URL,
        )

    def object_url(self, key: str) -> str:
        if settings.AWS_ENDPOINT_URL:
            return f"{settings.AWS_ENDPOINT_URL.rstrip('/')}/{self.bucket_name}/{quote(key)}"
        return f"https://{self.bucket_name}.s3.{settings.AWS_REGION}.amazonaws.com/{quote(key)}"

    async def put(self, key: str, data: bytes, content_type: str | None = None) -> StoredObject:
        extra = {"ContentType": content_type} if content_type else {}
        async with _translate_errors("put", key):
            async with self._client() as s3:
                await s3.put_object(Bucket=self.bucket_name, Key=key, Body=data, **extra)
        logger.debug("Stored s3://%s/%s (%d bytes)", self.bucket_name, key, len(data))
        return StoredObject(key=key, url=self.object_url(key))

    async def delete(self, key: str) -> None:
        """Delete *key*.  S3 answers success for keys that do not exist."""
        async with _translate_errors("delete", key):
            async with self._client() as s3:
                await s3.delete_object(Bucket=self.bucket_name, Key=key)
        logger.debug("Deleted s3://%s/%s", self.bucket_name, key)

    async def open_read_stream(
        self, key: str, chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> AsyncIterator[bytes]:
        """
        Fetch *key* and return an async iterator over its bytes.

        The GET is issued before returning so a missing object fails here,
        not halfway through a streamed response.  The client stays open
        until the iterator is exhausted or closed.
        """
        stack = AsyncExitStack()
        try:
            async with _translate_errors("read", key):
                s3 = await stack.enter_async_context(self._client())
                response = await s3.get_object(Bucket=self.bucket_name, Key=key)
        except ObjectStorageError:
            await stack.aclose()
            raise
        return self._iter_body(stack, response["Body"], chunk_size)

    @staticmethod
    async def _iter_body(stack: AsyncExitStack, body, chunk_size: int) -> AsyncIterator[bytes]:
        async with stack:
            async for chunk in body.iter_chunks(chunk_size):
                yield chunk

    async def presign(self, key: str, expires_in: int | None = None) -> str:
        async with _translate_errors("presign", key):
            async with self._client() as s3:
                return await s3.generate_presigned_url(
                    "get_object",
                    Params={"Bucket": self.bucket_name, "Key": key},
                    ExpiresIn=expires_in or settings.PRESIGNED_URL_EXPIRES,
                )


public_storage = ObjectStorage(settings.AWS_PUBLIC_BUCKET_NAME)
private_storage = ObjectStorage(settings.AWS_PRIVATE_BUCKET_NAME)
