"""
Key-value record store contract.

The domain layer never builds storage keys. It talks to a ``RecordStore``
with:

- a ``Collection`` (name + key attributes + default ordering),
- plain ``dict`` records whose keys are attribute names,
- ``IndexDescriptor(attribute, value)`` for secondary-index range queries,
- ``ScanCondition`` filters for scans,
- opaque continuation cursors returned inside ``Page``.

Two implementations exist: ``InMemoryRecordStore`` (tests, local dev) and
``apps.storage.django_store.DjangoRecordStore`` (Django ORM).

No multi-record atomicity is offered. ``update`` accepts ``expected``
attribute values for a single-record compare-and-swap.
"""
import base64
import copy
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from apps.core.errors import ConcurrencyConflictError, ValidationError

Record = Dict[str, Any]

OPERATORS = ('eq', 'ne', 'lt', 'lte', 'gt', 'gte')


@dataclass(frozen=True)
class Collection:
    """Schema of one record collection."""

    name: str
    key: Tuple[str, ...]
    default_order: Tuple[str, ...] = ()

    def key_of(self, record: Record) -> Tuple[Any, ...]:
        return tuple(record[attr] for attr in self.key)

    def ordering(self, order_by: Optional[str] = None) -> Tuple[str, ...]:
        """Full ordering for keyset pagination, always ending in the key."""
        fields = [order_by] if order_by else list(self.default_order)
        for attr in self.key:
            if attr not in fields:
                fields.append(attr)
        return tuple(fields)


@dataclass(frozen=True)
class IndexDescriptor:
    """Secondary-index lookup: records whose ``attribute`` equals ``value``."""

    attribute: str
    value: Any


@dataclass(frozen=True)
class ScanCondition:
    """Filter predicate used by ``query(where=...)`` and ``scan``."""

    attribute: str
    operator: str
    value: Any

    def __post_init__(self):
        if self.operator not in OPERATORS:
            raise ValidationError(f'Unsupported scan operator: {self.operator}')

    def matches(self, record: Record) -> bool:
        current = record.get(self.attribute)
        if self.operator == 'eq':
            return current == self.value
        if self.operator == 'ne':
            return current != self.value
        if current is None:
            return False
        if self.operator == 'lt':
            return current < self.value
        if self.operator == 'lte':
            return current <= self.value
        if self.operator == 'gt':
            return current > self.value
        return current >= self.value


@dataclass
class Page:
    """One page of records plus the cursor for the next one (None when exhausted)."""

    items: List[Record] = field(default_factory=list)
    cursor: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.items)


# ---------------------------------------------------------------------------
# Cursor codec
# ---------------------------------------------------------------------------

def _encode_value(value):
    if isinstance(value, datetime):
        return {'$dt': value.isoformat()}
    if isinstance(value, date):
        return {'$d': value.isoformat()}
    return value


def _decode_value(value):
    if isinstance(value, dict):
        if '$dt' in value:
            return datetime.fromisoformat(value['$dt'])
        if '$d' in value:
            return date.fromisoformat(value['$d'])
    return value


def encode_cursor(ordering: Sequence[str], record: Record) -> str:
    """Encode the position of ``record`` in ``ordering`` as an opaque token."""
    payload = {'o': list(ordering), 'v': [_encode_value(record.get(attr)) for attr in ordering]}
    raw = json.dumps(payload, separators=(',', ':')).encode('utf-8')
    return base64.urlsafe_b64encode(raw).decode('ascii')


def decode_cursor(cursor: str, ordering: Sequence[str]) -> Tuple[Any, ...]:
    """Decode a cursor produced for the same ``ordering``."""
    try:
        payload = json.loads(base64.urlsafe_b64decode(cursor.encode('ascii')))
    except (ValueError, TypeError) as exc:
        raise ValidationError('Malformed pagination cursor') from exc
    if not isinstance(payload, dict) or payload.get('o') != list(ordering):
        raise ValidationError('Pagination cursor does not match this query')
    return tuple(_decode_value(v) for v in payload['v'])


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------

class RecordStore(ABC):
    """Async key-value record store consumed by the repositories."""

    @abstractmethod
    async def get(self, collection: Collection, key: Record) -> Optional[Record]:
        """Point lookup by the collection key attributes."""

    @abstractmethod
    async def query(
        self,
        collection: Collection,
        index: IndexDescriptor,
        *,
        where: Sequence[ScanCondition] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> Page:
        """Range query over a secondary attribute, one page at a time."""

    @abstractmethod
    async def insert(self, collection: Collection, record: Record) -> Record:
        """Insert a new record. Raises ConcurrencyConflictError on a duplicate key."""

    @abstractmethod
    async def update(
        self,
        collection: Collection,
        key: Record,
        changes: Record,
        *,
        expected: Optional[Record] = None,
    ) -> Optional[Record]:
        """
        Partial update. Returns the updated record, or None if the key is absent.

        When ``expected`` is given the write only happens if every listed
        attribute still holds that value; otherwise ConcurrencyConflictError.
        """

    @abstractmethod
    async def scan(
        self,
        collection: Collection,
        conditions: Sequence[ScanCondition] = (),
        *,
        order_by: Optional[str] = None,
        limit: int = 100,
        cursor: Optional[str] = None,
    ) -> Page:
        """Filtered scan over a whole collection, one page at a time."""


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------

def _sort_key(values):
    # None sorts first, consistent with ascending SQL NULLS FIRST
    return tuple((v is not None, v) for v in values)


class InMemoryRecordStore(RecordStore):
    """
    Process-local record store.

    Records are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self):
        self._data: Dict[str, Dict[Tuple[Any, ...], Record]] = {}

    def _table(self, collection: Collection) -> Dict[Tuple[Any, ...], Record]:
        return self._data.setdefault(collection.name, {})

    async def get(self, collection, key):
        record = self._table(collection).get(collection.key_of(key))
        return copy.deepcopy(record) if record is not None else None

    async def query(self, collection, index, *, where=(), order_by=None,
                    descending=False, limit=50, cursor=None):
        conditions = [ScanCondition(index.attribute, 'eq', index.value), *where]
        return self._page(collection, conditions, order_by, descending, limit, cursor)

    async def insert(self, collection, record):
        table = self._table(collection)
        key = collection.key_of(record)
        if key in table:
            raise ConcurrencyConflictError(
                f'{collection.name} record {key} already exists', {'collection': collection.name}
            )
        table[key] = copy.deepcopy(record)
        return copy.deepcopy(record)

    async def update(self, collection, key, changes, *, expected=None):
        table = self._table(collection)
        current = table.get(collection.key_of(key))
        if current is None:
            return None
        for attr, value in (expected or {}).items():
            if current.get(attr) != value:
                raise ConcurrencyConflictError(
                    f'{collection.name} record {collection.key_of(key)} changed concurrently',
                    {'collection': collection.name, 'attribute': attr},
                )
        current.update(copy.deepcopy(changes))
        return copy.deepcopy(current)

    async def scan(self, collection, conditions=(), *, order_by=None, limit=100, cursor=None):
        return self._page(collection, list(conditions), order_by, False, limit, cursor)

    def _page(self, collection, conditions, order_by, descending, limit, cursor):
        ordering = collection.ordering(order_by)
        rows = [r for r in self._table(collection).values() if all(c.matches(r) for c in conditions)]
        rows.sort(key=lambda r: _sort_key([r.get(a) for a in ordering]), reverse=descending)

        if cursor:
            position = _sort_key(decode_cursor(cursor, ordering))
            if descending:
                rows = [r for r in rows if _sort_key([r.get(a) for a in ordering]) < position]
            else:
                rows = [r for r in rows if _sort_key([r.get(a) for a in ordering]) > position]

        items = rows[:limit]
        next_cursor = None
        if len(rows) > limit and items:
            next_cursor = encode_cursor(ordering, items[-1])
        return Page(items=[copy.deepcopy(r) for r in items], cursor=next_cursor)
