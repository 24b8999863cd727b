"""
Image version persistence over a RecordStore.
"""
from typing import List, Optional

from apps.core.errors import NotFoundError
from apps.storage.collections import IMAGES
from apps.storage.records import IndexDescriptor, RecordStore, ScanCondition
from .domain import Image
from .mappers import image_from_record, image_state, image_to_record

CURRENT = (ScanCondition('is_current', 'eq', True), ScanCondition('is_deleted', 'eq', False))
NOT_DELETED = (ScanCondition('is_deleted', 'eq', False),)


class ImageRepository:

    PAGE_SIZE = 100

    def __init__(self, store: RecordStore):
        self.store = store

    async def insert(self, image: Image) -> Image:
        await self.store.insert(IMAGES, image_to_record(image))
        return image

    async def get(self, image_id: str, version: int) -> Optional[Image]:
        record = await self.store.get(IMAGES, {'image_id': image_id, 'version': version})
        return image_from_record(record) if record else None

    async def save(self, image: Image) -> Image:
        updated = await self.store.update(
            IMAGES,
            {'image_id': image.image_id, 'version': image.version},
            image_state(image),
        )
        if updated is None:
            raise NotFoundError('Image', f'{image.image_id} v{image.version}')
        return image_from_record(updated)

    async def _collect(self, attribute, value, where=(), order_by=None) -> List[Image]:
        images, cursor = [], None
        while True:
            page = await self.store.query(
                IMAGES, IndexDescriptor(attribute, value),
                where=where, order_by=order_by, limit=self.PAGE_SIZE, cursor=cursor,
            )
            images.extend(image_from_record(r) for r in page.items)
            cursor = page.cursor
            if cursor is None:
                return images

    async def list_versions(self, image_id: str) -> List[Image]:
        """All versions, deleted included, oldest first."""
        return await self._collect('image_id', image_id, order_by='version')

    async def list_current_for_step(self, step_id: str) -> List[Image]:
        return await self._collect('step_id', step_id, where=CURRENT)

    async def list_current_for_procedure(self, procedure_id: str) -> List[Image]:
        return await self._collect('procedure_id', procedure_id, where=CURRENT)

    async def list_live_for_procedure(self, procedure_id: str) -> List[Image]:
        """Every non-deleted version of every image of the procedure."""
        return await self._collect('procedure_id', procedure_id, where=NOT_DELETED)
