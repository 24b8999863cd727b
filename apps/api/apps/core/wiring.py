"""
Service construction from Django settings.

RECORD_STORE_BACKEND selects ``django`` or ``memory``; BLOB_STORE_BACKEND
selects ``minio`` or ``memory``. Memory backends are process-wide so every
caller in one process (tests, local dev, management commands) shares them.
"""
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from apps.storage.blobs import BlobStore, InMemoryBlobStore, MinioBlobStore
from apps.storage.records import InMemoryRecordStore, RecordStore

_memory_records: Optional[InMemoryRecordStore] = None
_memory_blobs: Optional[InMemoryBlobStore] = None


def build_record_store() -> RecordStore:
    global _memory_records
    backend = settings.RECORD_STORE_BACKEND
    if backend == 'memory':
        if _memory_records is None:
            _memory_records = InMemoryRecordStore()
        return _memory_records
    if backend == 'django':
        # Imported lazily: the ORM adapter needs the app registry
        from apps.storage.django_store import DjangoRecordStore
        return DjangoRecordStore()
    raise ImproperlyConfigured(f'Unknown RECORD_STORE_BACKEND: {backend}')


def build_blob_store() -> BlobStore:
    global _memory_blobs
    backend = settings.BLOB_STORE_BACKEND
    if backend == 'memory':
        if _memory_blobs is None:
            _memory_blobs = InMemoryBlobStore()
        return _memory_blobs
    if backend == 'minio':
        return MinioBlobStore(
            settings.MINIO_CLINICAL_BUCKET,
            archive_bucket=settings.MINIO_ARCHIVE_BUCKET,
        )
    raise ImproperlyConfigured(f'Unknown BLOB_STORE_BACKEND: {backend}')


def reset_memory_backends():
    """Drop the process-wide memory stores."""
    global _memory_records, _memory_blobs
    _memory_records = None
    _memory_blobs = None


@dataclass
class Services:
    procedures: 'ProcedureService'
    steps: 'ProcedureStepService'
    images: 'ImageService'
    archive: 'ArchiveService'
    archival_policy: 'ArchivalPolicy'


def build_services(store: Optional[RecordStore] = None, blobs: Optional[BlobStore] = None,
                   page_size: Optional[int] = None) -> Services:
    from apps.archival.policy import ArchivalPolicy
    from apps.archival.services import ArchiveService
    from apps.imaging.services import ImageService
    from apps.procedures.services import ProcedureService, ProcedureStepService

    store = store or build_record_store()
    blobs = blobs or build_blob_store()

    procedures = ProcedureService(store)
    images = ImageService(store, blobs)
    return Services(
        procedures=procedures,
        steps=ProcedureStepService(store, procedures),
        images=images,
        archive=ArchiveService(store, blobs, procedures, images),
        archival_policy=ArchivalPolicy(store, blobs, page_size=page_size),
    )
