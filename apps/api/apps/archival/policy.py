"""
Archival tiering policy.

Closed or cancelled procedures created more than ARCHIVAL_RETENTION_DAYS
ago and not yet archived are moved to cold storage, one page of
ARCHIVAL_PAGE_SIZE at a time. Per procedure:

1. copy every live image original to the cold namespace and confirm it;
2. only when all copies are confirmed, point each image row at its cold
   copy and delete the active blob (copy-then-delete);
3. mark the procedure archived with its cold location.

Any failure leaves the procedure non-archived, so the next run retries it.
Images already on the cold tier are skipped. The scan cursor is persisted
after every page so a crashed sweep resumes where it stopped.
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from django.conf import settings
from django.utils import timezone

from apps.core.errors import ArchivalError, ValidationError
from apps.core.observability import get_sanitized_logger, metrics
from apps.core.observability.events import log_archival_result
from apps.imaging import keys
from apps.imaging.domain import Image
from apps.imaging.repositories import ImageRepository
from apps.procedures.domain import Procedure
from apps.procedures.repositories import ProcedureRepository
from apps.storage.blobs import BlobStore
from apps.storage.records import RecordStore
from .repositories import Checkpoint, CheckpointRepository

logger = get_sanitized_logger(__name__)

SWEEP_NAME = 'archive_procedures'


@dataclass
class SweepResult:
    cutoff: datetime
    dry_run: bool = False
    resumed: bool = False
    pages: int = 0
    processed: int = 0
    archived: int = 0
    failed: int = 0
    failed_procedures: List[str] = field(default_factory=list)
    candidates: List[str] = field(default_factory=list)

    def to_dict(self):
        data = asdict(self)
        data['cutoff'] = self.cutoff.isoformat()
        return data


class ArchivalPolicy:

    def __init__(self, store: RecordStore, blobs: BlobStore,
                 retention_days: Optional[int] = None, page_size: Optional[int] = None,
                 cold_bucket: Optional[str] = None):
        self.procedures = ProcedureRepository(store)
        self.images = ImageRepository(store)
        self.checkpoints = CheckpointRepository(store)
        self.blobs = blobs
        self.retention_days = settings.ARCHIVAL_RETENTION_DAYS if retention_days is None else retention_days
        self.page_size = settings.ARCHIVAL_PAGE_SIZE if page_size is None else page_size
        if self.retention_days < 0:
            raise ValidationError('retention_days must be >= 0')
        if self.page_size < 1:
            raise ValidationError('page_size must be >= 1')
        self.cold_bucket = cold_bucket or settings.MINIO_ARCHIVE_BUCKET

    def cutoff(self, now: Optional[datetime] = None) -> datetime:
        return (now or timezone.now()) - timedelta(days=self.retention_days)

    @metrics.track_duration(metrics.archival_sweep_duration_seconds)
    async def run_sweep(self, now: Optional[datetime] = None, dry_run: bool = False) -> SweepResult:
        """
        Run one sweep, resuming an interrupted one if a checkpoint exists.

        A dry run lists candidates without writing anything.
        """
        now = now or timezone.now()
        checkpoint = await self.checkpoints.get(SWEEP_NAME)

        if checkpoint is not None and checkpoint.in_progress and not dry_run:
            result = SweepResult(cutoff=checkpoint.cutoff, resumed=True)
            logger.info(
                'Resuming archival sweep',
                extra={'cutoff': checkpoint.cutoff.isoformat(), 'processed_count': checkpoint.processed_count}
            )
        else:
            result = SweepResult(cutoff=self.cutoff(now), dry_run=dry_run)
            if not dry_run:
                checkpoint = Checkpoint(name=SWEEP_NAME, cutoff=result.cutoff, started_at=now, updated_at=now)
                await self.checkpoints.save(checkpoint)

        cursor = checkpoint.cursor if result.resumed else None
        while True:
            page = await self.procedures.scan_archivable(result.cutoff, self.page_size, cursor)
            result.pages += 1

            archived = failed = 0
            for procedure in page.items:
                result.processed += 1
                if dry_run:
                    result.candidates.append(procedure.procedure_id)
                    continue
                if await self.archive_procedure(procedure):
                    archived += 1
                else:
                    failed += 1
                    result.failed_procedures.append(procedure.procedure_id)
            result.archived += archived
            result.failed += failed

            cursor = page.cursor
            if not dry_run:
                checkpoint.cursor = cursor
                checkpoint.updated_at = timezone.now()
                checkpoint.processed_count += len(page.items)
                checkpoint.archived_count += archived
                checkpoint.failed_count += failed
                if cursor is None:
                    checkpoint.completed_at = checkpoint.updated_at
                await self.checkpoints.save(checkpoint)
            if cursor is None:
                break

        logger.info(
            'Archival sweep finished',
            extra={
                'dry_run': dry_run,
                'resumed': result.resumed,
                'processed_count': result.processed,
                'archived_count': result.archived,
                'failed_count': result.failed,
            }
        )
        return result

    async def archive_procedure(self, procedure: Procedure) -> bool:
        """
        Migrate every live image of ``procedure`` and mark it archived.

        Returns:
            True when archived, False when any step failed (logged and counted)
        """
        if procedure.archived:
            return True
        try:
            images = await self.images.list_live_for_procedure(procedure.procedure_id)
            pending = [image for image in images if not image.is_cold]
            skipped = len(images) - len(pending)
            if skipped:
                metrics.archival_images_migrated_total.labels(result='skipped').inc(skipped)

            copies = [(image, await self._copy_to_cold(image, procedure.created_at)) for image in pending]
            for image, cold_key in copies:
                await self._switch_to_cold(image, cold_key)

            procedure.archive(keys.cold_location(
                self.cold_bucket, procedure.patient_id, procedure.procedure_id, procedure.created_at
            ))
            await self.procedures.save(procedure)
        except Exception as e:
            metrics.archival_procedures_total.labels(result='failed').inc()
            logger.error(
                'Procedure archival failed',
                extra={'procedure_id': procedure.procedure_id, 'error_type': type(e).__name__},
                exc_info=True
            )
            log_archival_result(procedure.procedure_id, 'failure', error_type=type(e).__name__)
            return False

        metrics.archival_procedures_total.labels(result='archived').inc()
        log_archival_result(
            procedure.procedure_id, 'success',
            image_count=len(images), skipped_count=skipped,
        )
        return True

    async def _copy_to_cold(self, image: Image, moment: datetime) -> str:
        cold = self.blobs.cold()
        cold_key = keys.cold_original_key(image, moment)
        try:
            data = await self.blobs.get(image.original_key)
            await cold.put(cold_key, data, image.mime_type)
            if not await cold.exists(cold_key):
                raise ArchivalError(
                    f'Cold copy of image {image.image_id} v{image.version} was not confirmed',
                    {'image_id': image.image_id, 'version': image.version}
                )
        except Exception:
            metrics.archival_images_migrated_total.labels(result='failed').inc()
            logger.warning(
                'Image migration to cold storage failed',
                extra={'image_id': image.image_id, 'version': image.version, 'procedure_id': image.procedure_id}
            )
            raise
        return cold_key

    async def _switch_to_cold(self, image: Image, cold_key: str):
        active_key = image.original_key
        image.move_to_cold(cold_key)
        await self.images.save(image)
        await self.blobs.delete(active_key)
        metrics.archival_images_migrated_total.labels(result='migrated').inc()
