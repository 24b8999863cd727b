"""
Global test fixtures for pytest.

Provides reusable fixtures for service testing:
- In-memory record and blob stores
- Wired services over those stores
- Generated test images (Pillow)
"""
import pytest

from apps.core.wiring import build_services, reset_memory_backends
from apps.storage.blobs import InMemoryBlobStore
from apps.storage.records import InMemoryRecordStore
from tests.factories import make_payload


# ============================================================================
# Stores and services
# ============================================================================

@pytest.fixture
def record_store():
    return InMemoryRecordStore()


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture
def services(record_store, blob_store):
    """All services sharing one pair of in-memory stores."""
    return build_services(store=record_store, blobs=blob_store)


@pytest.fixture
def memory_backends():
    """Process-wide memory backends used by tasks and management commands."""
    reset_memory_backends()
    yield
    reset_memory_backends()


# ============================================================================
# Images
# ============================================================================

@pytest.fixture
def png_payload():
    return make_payload()


@pytest.fixture
def jpeg_payload():
    return make_payload(1600, 1200, filename='xray.jpg', mime_type='image/jpeg', fmt='JPEG')
