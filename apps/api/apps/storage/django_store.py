"""
RecordStore adapter over the Django ORM.

Index descriptors and scan conditions become field lookups; keyset cursors
become an OR-of-ANDs ``Q`` filter over the collection ordering. All ORM work
runs through ``sync_to_async`` so callers stay async.
"""
from functools import reduce
import operator

from asgiref.sync import sync_to_async
from django.db import IntegrityError, transaction
from django.db.models import Q

from apps.core.errors import ConcurrencyConflictError
from .records import Page, RecordStore, decode_cursor, encode_cursor
from .models import ArchivalCheckpoint, ImageRecord, ProcedureRecord, ProcedureStepRecord

MODEL_FOR_COLLECTION = {
    'procedures': ProcedureRecord,
    'procedure_steps': ProcedureStepRecord,
    'images': ImageRecord,
    'archival_checkpoints': ArchivalCheckpoint,
}

# Surrogate columns that are not part of the record
INTERNAL_FIELDS = {'id'}

LOOKUPS = {'lt': 'lt', 'lte': 'lte', 'gt': 'gt', 'gte': 'gte'}


def _model(collection):
    return MODEL_FOR_COLLECTION[collection.name]


def _to_record(instance):
    return {
        field.attname: getattr(instance, field.attname)
        for field in instance._meta.concrete_fields
        if field.attname not in INTERNAL_FIELDS
    }


def _key_filter(collection, key):
    return {attr: key[attr] for attr in collection.key}


def _apply_conditions(qs, conditions):
    for condition in conditions:
        if condition.operator == 'eq':
            qs = qs.filter(**{condition.attribute: condition.value})
        elif condition.operator == 'ne':
            qs = qs.exclude(**{condition.attribute: condition.value})
        else:
            qs = qs.filter(**{f'{condition.attribute}__{LOOKUPS[condition.operator]}': condition.value})
    return qs


def _keyset_filter(ordering, values, descending):
    """Rows strictly after ``values`` in ``ordering``."""
    direction = 'lt' if descending else 'gt'
    clauses = []
    for i, attr in enumerate(ordering):
        equal = {ordering[j]: values[j] for j in range(i)}
        equal[f'{attr}__{direction}'] = values[i]
        clauses.append(Q(**equal))
    return reduce(operator.or_, clauses)


class DjangoRecordStore(RecordStore):
    """Record store persisted in the ``apps.storage`` tables."""

    def _page(self, collection, qs, order_by, descending, limit, cursor):
        ordering = collection.ordering(order_by)
        if cursor:
            qs = qs.filter(_keyset_filter(ordering, decode_cursor(cursor, ordering), descending))
        prefix = '-' if descending else ''
        rows = [_to_record(obj) for obj in qs.order_by(*[prefix + attr for attr in ordering])[:limit + 1]]

        items = rows[:limit]
        next_cursor = encode_cursor(ordering, items[-1]) if len(rows) > limit and items else None
        return Page(items=items, cursor=next_cursor)

    def _get(self, collection, key):
        obj = _model(collection).objects.filter(**_key_filter(collection, key)).first()
        return _to_record(obj) if obj is not None else None

    async def get(self, collection, key):
        return await sync_to_async(self._get)(collection, key)

    def _query(self, collection, index, where, order_by, descending, limit, cursor):
        qs = _model(collection).objects.filter(**{index.attribute: index.value})
        qs = _apply_conditions(qs, where)
        return self._page(collection, qs, order_by, descending, limit, cursor)

    async def query(self, collection, index, *, where=(), order_by=None,
                    descending=False, limit=50, cursor=None):
        return await sync_to_async(self._query)(
            collection, index, where, order_by, descending, limit, cursor
        )

    def _insert(self, collection, record):
        try:
            with transaction.atomic():
                obj = _model(collection).objects.create(**record)
        except IntegrityError as e:
            raise ConcurrencyConflictError(
                f'{collection.name} record {collection.key_of(record)} already exists',
                {'collection': collection.name}
            ) from e
        return _to_record(obj)

    async def insert(self, collection, record):
        return await sync_to_async(self._insert)(collection, record)

    def _update(self, collection, key, changes, expected):
        model = _model(collection)
        key_filter = _key_filter(collection, key)
        qs = model.objects.filter(**key_filter)
        if expected:
            qs = qs.filter(**expected)

        if qs.update(**changes) == 0:
            if not model.objects.filter(**key_filter).exists():
                return None
            raise ConcurrencyConflictError(
                f'{collection.name} record {collection.key_of(key)} changed concurrently',
                {'collection': collection.name, 'attribute': ','.join(sorted(expected or {}))}
            )
        return self._get(collection, key)

    async def update(self, collection, key, changes, *, expected=None):
        return await sync_to_async(self._update)(collection, key, changes, expected)

    def _scan(self, collection, conditions, order_by, limit, cursor):
        qs = _apply_conditions(_model(collection).objects.all(), conditions)
        return self._page(collection, qs, order_by, False, limit, cursor)

    async def scan(self, collection, conditions=(), *, order_by=None, limit=100, cursor=None):
        return await sync_to_async(self._scan)(collection, conditions, order_by, limit, cursor)
