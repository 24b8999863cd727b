"""
Blob storage for clinical images.

``BlobStore`` is the async contract used by the imaging and archival
services. ``MinioBlobStore`` talks to MinIO (presigned GET URLs for secure
file access); ``InMemoryBlobStore`` backs tests and local development.

Each store exposes a distinct ``cold()`` namespace holding archived copies.
"""
import io
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Dict, Optional, Tuple

from asgiref.sync import sync_to_async
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from minio import Minio
from minio.error import S3Error

from apps.core.errors import NotFoundError
from apps.core.observability import get_sanitized_logger

logger = get_sanitized_logger(__name__)

MISSING_OBJECT_CODES = {'NoSuchKey', 'NoSuchObject', 'ResourceNotFound'}


class BlobStore(ABC):
    """Async blob store with a cold namespace for archived copies."""

    namespace = 'active'

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store ``data`` under ``key`` and return the key."""

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Return the blob bytes. Raises NotFoundError for a missing key."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Hard delete. Deleting a missing key is not an error."""

    @abstractmethod
    async def signed_url(self, key: str, ttl: timedelta) -> str:
        """Time-limited read URL for ``key``."""

    @abstractmethod
    def cold(self) -> 'BlobStore':
        """The cold-storage namespace paired with this store."""


class InMemoryBlobStore(BlobStore):
    """Process-local blob store. The cold namespace is a second instance."""

    def __init__(self, namespace: str = 'active', cold_store: Optional['InMemoryBlobStore'] = None):
        self.namespace = namespace
        self.objects: Dict[str, Tuple[bytes, str]] = {}
        self._cold = cold_store

    async def put(self, key, data, content_type):
        self.objects[key] = (bytes(data), content_type)
        return key

    async def get(self, key):
        try:
            return self.objects[key][0]
        except KeyError:
            raise NotFoundError('Blob', key)

    async def exists(self, key):
        return key in self.objects

    async def delete(self, key):
        self.objects.pop(key, None)

    async def signed_url(self, key, ttl):
        if key not in self.objects:
            raise NotFoundError('Blob', key)
        return f'memory://{self.namespace}/{key}?expires_in={int(ttl.total_seconds())}'

    def cold(self):
        if self._cold is None:
            self._cold = InMemoryBlobStore(namespace='cold')
        return self._cold

    def content_type(self, key: str) -> str:
        return self.objects[key][1]


def get_minio_client():
    """Get configured MinIO client instance."""
    return Minio(
        settings.MINIO_ENDPOINT,
        access_key=settings.MINIO_ACCESS_KEY,
        secret_key=settings.MINIO_SECRET_KEY,
        secure=settings.MINIO_USE_SSL
    )


class MinioBlobStore(BlobStore):
    """
    MinIO-backed blob store.

    The MinIO client is synchronous, so every call is pushed to a worker
    thread with ``sync_to_async(thread_sensitive=False)``. ``S3Error`` is
    propagated unwrapped except for missing objects.
    """

    def __init__(self, bucket_name: str, archive_bucket: Optional[str] = None,
                 client: Optional[Minio] = None, namespace: str = 'active'):
        self.bucket_name = bucket_name
        self.archive_bucket = archive_bucket
        self.namespace = namespace
        self.client = client or get_minio_client()
        self._bucket_ready = False

    def _ensure_bucket(self):
        if not self.client.bucket_exists(self.bucket_name):
            self.client.make_bucket(self.bucket_name)
            logger.info('Created bucket', extra={'bucket': self.bucket_name})
        self._bucket_ready = True

    async def put(self, key, data, content_type):
        if not self._bucket_ready:
            await sync_to_async(self._ensure_bucket, thread_sensitive=False)()
        await sync_to_async(self.client.put_object, thread_sensitive=False)(
            bucket_name=self.bucket_name,
            object_name=key,
            data=io.BytesIO(data),
            length=len(data),
            content_type=content_type,
        )
        return key

    def _read(self, key):
        response = self.client.get_object(bucket_name=self.bucket_name, object_name=key)
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()

    async def get(self, key):
        try:
            return await sync_to_async(self._read, thread_sensitive=False)(key)
        except S3Error as e:
            if e.code in MISSING_OBJECT_CODES:
                raise NotFoundError('Blob', key) from e
            raise

    async def exists(self, key):
        try:
            await sync_to_async(self.client.stat_object, thread_sensitive=False)(
                bucket_name=self.bucket_name, object_name=key
            )
        except S3Error as e:
            if e.code in MISSING_OBJECT_CODES:
                return False
            raise
        return True

    async def delete(self, key):
        await sync_to_async(self.client.remove_object, thread_sensitive=False)(
            bucket_name=self.bucket_name, object_name=key
        )

    async def signed_url(self, key, ttl):
        return await sync_to_async(self.client.presigned_get_object, thread_sensitive=False)(
            bucket_name=self.bucket_name,
            object_name=key,
            expires=ttl,
        )

    def cold(self):
        if not self.archive_bucket:
            raise ImproperlyConfigured('MINIO_ARCHIVE_BUCKET is not set')
        return MinioBlobStore(self.archive_bucket, client=self.client, namespace='cold')
