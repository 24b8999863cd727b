"""
Tests for the record store contract (in-memory and Django ORM) and the blob stores.
"""
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from asgiref.sync import async_to_sync
from django.core.exceptions import ImproperlyConfigured
from django.utils import timezone

from apps.core.errors import ConcurrencyConflictError, NotFoundError, ValidationError
from apps.core.wiring import build_services
from apps.procedures.domain import ProcedureStatus
from apps.storage.blobs import InMemoryBlobStore, MinioBlobStore
from apps.storage.collections import IMAGES, PROCEDURES
from apps.storage.django_store import DjangoRecordStore
from apps.storage.records import (
    Collection,
    IndexDescriptor,
    InMemoryRecordStore,
    ScanCondition,
    decode_cursor,
    encode_cursor,
)
from tests.factories import DENTIST_ID, PATIENT_ID, create_in_progress, make_payload

BASE_TIME = timezone.now() - timedelta(days=10)


def procedure_record(n, patient_id=PATIENT_ID, **overrides):
    created = BASE_TIME + timedelta(hours=n)
    record = {
        'procedure_id': f'proc-{n:03d}',
        'patient_id': patient_id,
        'category': 'RCT',
        'status': 'DRAFT',
        'name': f'Procedure {n}',
        'description': None,
        'tooth_number': None,
        'tooth_quadrant': None,
        'assigned_by': DENTIST_ID,
        'assigned_date': created,
        'start_date': None,
        'end_date': None,
        'is_backfilled': False,
        'archived': False,
        'archive_location': None,
        'cancellation_reason': None,
        'created_at': created,
        'updated_at': created,
        'row_version': 1,
    }
    record.update(overrides)
    return record


@pytest.fixture(params=['memory', 'django'])
def store(request):
    """Each contract test runs against both record store implementations."""
    if request.param == 'django':
        request.getfixturevalue('db')
        return DjangoRecordStore()
    return InMemoryRecordStore()


def run(coro_fn, *args, **kwargs):
    return async_to_sync(coro_fn)(*args, **kwargs)


# ============================================================================
# Record store contract
# ============================================================================

class TestRecordStoreContract:

    def test_insert_and_get(self, store):
        run(store.insert, PROCEDURES, procedure_record(1))

        record = run(store.get, PROCEDURES, {'procedure_id': 'proc-001'})
        assert record['name'] == 'Procedure 1'
        assert record['created_at'] == BASE_TIME + timedelta(hours=1)
        assert run(store.get, PROCEDURES, {'procedure_id': 'missing'}) is None

    def test_duplicate_insert(self, store):
        run(store.insert, PROCEDURES, procedure_record(1))
        with pytest.raises(ConcurrencyConflictError):
            run(store.insert, PROCEDURES, procedure_record(1))

    def test_update_returns_record(self, store):
        run(store.insert, PROCEDURES, procedure_record(1))

        updated = run(store.update, PROCEDURES, {'procedure_id': 'proc-001'}, {'status': 'IN_PROGRESS'})
        assert updated['status'] == 'IN_PROGRESS'
        assert updated['name'] == 'Procedure 1'

    def test_update_missing(self, store):
        assert run(store.update, PROCEDURES, {'procedure_id': 'missing'}, {'status': 'CLOSED'}) is None

    def test_compare_and_swap(self, store):
        """A write guarded by a stale row version is rejected and changes nothing."""
        run(store.insert, PROCEDURES, procedure_record(1))
        key = {'procedure_id': 'proc-001'}

        run(store.update, PROCEDURES, key, {'row_version': 2, 'status': 'IN_PROGRESS'}, expected={'row_version': 1})
        with pytest.raises(ConcurrencyConflictError):
            run(store.update, PROCEDURES, key, {'row_version': 2, 'status': 'CLOSED'}, expected={'row_version': 1})

        assert run(store.get, PROCEDURES, key)['status'] == 'IN_PROGRESS'

    def test_query_pages_follow_cursor(self, store):
        for n in range(5):
            run(store.insert, PROCEDURES, procedure_record(n))
        run(store.insert, PROCEDURES, procedure_record(9, patient_id='patient-other'))

        seen, cursor = [], None
        while True:
            page = run(store.query, PROCEDURES, IndexDescriptor('patient_id', PATIENT_ID), limit=2, cursor=cursor)
            assert page.count <= 2
            seen.extend(r['procedure_id'] for r in page.items)
            cursor = page.cursor
            if cursor is None:
                break

        assert seen == [f'proc-{n:03d}' for n in range(5)]

    def test_query_descending(self, store):
        for n in range(3):
            run(store.insert, PROCEDURES, procedure_record(n))

        first = run(store.query, PROCEDURES, IndexDescriptor('patient_id', PATIENT_ID), descending=True, limit=2)
        second = run(
            store.query, PROCEDURES, IndexDescriptor('patient_id', PATIENT_ID),
            descending=True, limit=2, cursor=first.cursor,
        )
        assert [r['procedure_id'] for r in first.items] == ['proc-002', 'proc-001']
        assert [r['procedure_id'] for r in second.items] == ['proc-000']
        assert second.cursor is None

    def test_query_with_where(self, store):
        run(store.insert, PROCEDURES, procedure_record(1, status='CLOSED'))
        run(store.insert, PROCEDURES, procedure_record(2))

        page = run(
            store.query, PROCEDURES, IndexDescriptor('patient_id', PATIENT_ID),
            where=[ScanCondition('status', 'ne', 'CLOSED')],
        )
        assert [r['procedure_id'] for r in page.items] == ['proc-002']

    def test_scan_conditions(self, store):
        for n in range(4):
            run(store.insert, PROCEDURES, procedure_record(n, archived=(n == 0)))

        page = run(
            store.scan, PROCEDURES,
            [ScanCondition('archived', 'eq', False), ScanCondition('created_at', 'lt', BASE_TIME + timedelta(hours=3))],
        )
        assert [r['procedure_id'] for r in page.items] == ['proc-001', 'proc-002']

    def test_exact_page_has_no_cursor(self, store):
        for n in range(2):
            run(store.insert, PROCEDURES, procedure_record(n))

        page = run(store.scan, PROCEDURES, limit=2)
        assert page.count == 2
        assert page.cursor is None

    def test_cursor_from_other_ordering(self, store):
        for n in range(3):
            run(store.insert, PROCEDURES, procedure_record(n))
        page = run(store.scan, PROCEDURES, limit=1)

        with pytest.raises(ValidationError):
            run(store.scan, PROCEDURES, order_by='name', limit=1, cursor=page.cursor)


# ============================================================================
# Cursor codec
# ============================================================================

class TestCursor:

    def test_round_trip_with_datetimes(self):
        ordering = ('created_at', 'procedure_id')
        record = procedure_record(4)
        cursor = encode_cursor(ordering, record)

        assert decode_cursor(cursor, ordering) == (record['created_at'], 'proc-004')

    def test_malformed_cursor(self):
        with pytest.raises(ValidationError):
            decode_cursor('%%%not-base64%%%', ('created_at',))

    def test_ordering_always_ends_with_key(self):
        assert PROCEDURES.ordering() == ('created_at', 'procedure_id')
        assert IMAGES.ordering('version') == ('version', 'image_id')
        assert Collection('plain', key=('name',)).ordering() == ('name',)

    def test_unknown_operator(self):
        with pytest.raises(ValidationError):
            ScanCondition('status', 'like', 'CLOSED')


# ============================================================================
# Blob store
# ============================================================================

@pytest.mark.asyncio
class TestInMemoryBlobStore:

    async def test_put_get_delete(self):
        blobs = InMemoryBlobStore()
        await blobs.put('a/b.png', b'data', 'image/png')

        assert await blobs.get('a/b.png') == b'data'
        assert await blobs.exists('a/b.png')
        await blobs.delete('a/b.png')
        assert not await blobs.exists('a/b.png')
        with pytest.raises(NotFoundError):
            await blobs.get('a/b.png')

    async def test_signed_url(self):
        blobs = InMemoryBlobStore()
        await blobs.put('a/b.png', b'data', 'image/png')

        assert await blobs.signed_url('a/b.png', timedelta(minutes=5)) == 'memory://active/a/b.png?expires_in=300'
        with pytest.raises(NotFoundError):
            await blobs.signed_url('missing', timedelta(minutes=5))

    async def test_cold_namespace_is_separate(self):
        blobs = InMemoryBlobStore()
        await blobs.cold().put('archived/x.png', b'cold', 'image/png')

        assert not await blobs.exists('archived/x.png')
        assert blobs.cold() is blobs.cold()
        assert blobs.cold().namespace == 'cold'


# ============================================================================
# End to end over the ORM
# ============================================================================

@pytest.mark.django_db
def test_lifecycle_over_django_store():
    """Create, finish, upload and archive with procedures persisted through the ORM."""
    store = DjangoRecordStore()
    services = build_services(store=store, blobs=InMemoryBlobStore())

    async def scenario():
        procedure, steps = await create_in_progress(services, category='SCALING')
        images = await services.images.upload_images(
            procedure.procedure_id, steps[0].step_id, PATIENT_ID, DENTIST_ID, [make_payload()]
        )
        await services.images.replace_image(images[0].image_id, make_payload(320, 240), DENTIST_ID)
        for step in steps:
            await services.steps.complete_step(step.step_id)

        closed, _ = await services.procedures.get_procedure(procedure.procedure_id)
        await store.update(
            PROCEDURES, {'procedure_id': procedure.procedure_id},
            {'created_at': timezone.now() - timedelta(days=services.archival_policy.retention_days + 1)},
        )
        result = await services.archival_policy.run_sweep()
        archived = await services.archive.get_archived_procedure(procedure.procedure_id)
        return closed, result, archived

    closed, result, archived = async_to_sync(scenario)()

    assert closed.status == ProcedureStatus.CLOSED
    assert closed.row_version > 1
    assert result.archived == 1
    assert [i.version for i in archived['images']] == [2]
    assert archived['images'][0].storage_tier == 'cold'


@pytest.mark.asyncio
class TestMinioBlobStore:
    """MinIO store against a mocked client."""

    async def test_first_write_creates_bucket(self):
        client = MagicMock()
        client.bucket_exists.return_value = False
        blobs = MinioBlobStore('clinical', client=client)

        await blobs.put('a/b.png', b'data', 'image/png')
        await blobs.put('a/c.png', b'data', 'image/png')

        client.bucket_exists.assert_called_once_with('clinical')
        client.make_bucket.assert_called_once_with('clinical')
        assert client.put_object.call_count == 2

    async def test_existing_bucket_is_reused(self):
        client = MagicMock()
        client.bucket_exists.return_value = True

        await MinioBlobStore('clinical', client=client).put('a/b.png', b'data', 'image/png')

        client.make_bucket.assert_not_called()


class TestMinioColdNamespace:

    def test_cold_requires_archive_bucket(self):
        with pytest.raises(ImproperlyConfigured):
            MinioBlobStore('clinical', client=MagicMock()).cold()

    def test_cold_uses_archive_bucket(self):
        cold = MinioBlobStore('clinical', archive_bucket='archive', client=MagicMock()).cold()
        assert (cold.bucket_name, cold.namespace) == ('archive', 'cold')
