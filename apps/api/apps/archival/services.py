"""
Read access to archived procedures and their cold-tier images.
"""
from typing import Optional

from apps.core.errors import NotFoundError
from apps.imaging.services import ImageService
from apps.procedures.services import ProcedureService
from apps.storage.blobs import BlobStore
from apps.storage.records import Page, RecordStore


class ArchiveService:

    def __init__(self, store: RecordStore, blobs: BlobStore,
                 procedure_service: Optional[ProcedureService] = None,
                 image_service: Optional[ImageService] = None):
        self.procedure_service = procedure_service or ProcedureService(store)
        self.image_service = image_service or ImageService(store, blobs)

    async def list_archived(self, limit: int = 50, cursor: Optional[str] = None) -> Page:
        return await self.procedure_service.procedures.list_archived(limit=limit, cursor=cursor)

    async def get_archived_procedure(self, procedure_id: str) -> dict:
        """
        Archived procedure with its steps and current images.

        Raises:
            NotFoundError: unknown or not archived
        """
        procedure, steps = await self.procedure_service.get_procedure(procedure_id)
        if not procedure.archived:
            raise NotFoundError('Archived procedure', procedure_id)
        images = await self.image_service.list_for_procedure(procedure_id)
        return {
            'procedure': procedure,
            'steps': steps,
            'images': images,
            'archive_location': procedure.archive_location,
        }

    async def download_archived_image(self, procedure_id: str, image_id: str,
                                      version: Optional[int] = None):
        procedure = await self.procedure_service.procedures.require(procedure_id)
        if not procedure.archived:
            raise NotFoundError('Archived procedure', procedure_id)
        image = await self.image_service.get_image(image_id, version)
        if image.procedure_id != procedure_id:
            raise NotFoundError('Image', image_id)
        return await self.image_service.download_image(image_id, version=image.version)
