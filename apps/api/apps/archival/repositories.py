"""
Archival sweep checkpoint persistence.
"""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional

from apps.storage.collections import ARCHIVAL_CHECKPOINTS
from apps.storage.records import RecordStore


@dataclass
class Checkpoint:
    name: str
    cursor: Optional[str] = None
    cutoff: Optional[datetime] = None
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    processed_count: int = 0
    archived_count: int = 0
    failed_count: int = 0

    @property
    def in_progress(self) -> bool:
        return self.started_at is not None and self.completed_at is None


class CheckpointRepository:

    def __init__(self, store: RecordStore):
        self.store = store

    async def get(self, name: str) -> Optional[Checkpoint]:
        record = await self.store.get(ARCHIVAL_CHECKPOINTS, {'name': name})
        return Checkpoint(**record) if record else None

    async def save(self, checkpoint: Checkpoint) -> Checkpoint:
        record = asdict(checkpoint)
        changes = {k: v for k, v in record.items() if k != 'name'}
        updated = await self.store.update(ARCHIVAL_CHECKPOINTS, {'name': checkpoint.name}, changes)
        if updated is None:
            await self.store.insert(ARCHIVAL_CHECKPOINTS, record)
        return checkpoint
