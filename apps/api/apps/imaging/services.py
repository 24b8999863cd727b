"""
Image versioning and rendition service.

Uploads store the original plus two bounded JPEG thumbnails per version.
Replacing an image never touches earlier versions: the current row is
flipped to ``is_current=False`` and a new row with a strictly greater
version becomes current. Annotations are per version and never carried
forward.
"""
import json
import time
import uuid
from datetime import timedelta
from typing import List, Optional, Sequence

from django.conf import settings
from django.utils import timezone

from apps.core.errors import IllegalStateError, NotFoundError, ValidationError
from apps.core.observability import get_sanitized_logger, metrics
from apps.core.observability.events import log_image_version
from apps.procedures.domain import ToothLocator
from apps.procedures.repositories import ProcedureRepository, ProcedureStepRepository
from apps.storage.blobs import BlobStore
from apps.storage.records import RecordStore
from . import keys
from .codec import ImageCodec
from .domain import Annotation, DownloadedImage, FilePayload, Image, ImageVariant
from .repositories import ImageRepository

logger = get_sanitized_logger(__name__)


class ImageService:

    def __init__(self, store: RecordStore, blobs: BlobStore, codec: Optional[ImageCodec] = None):
        self.images = ImageRepository(store)
        self.procedures = ProcedureRepository(store)
        self.steps = ProcedureStepRepository(store)
        self.blobs = blobs
        self.codec = codec or ImageCodec()

        self.max_upload_bytes = settings.IMAGE_MAX_UPLOAD_BYTES
        self.thumbnail_small = settings.IMAGE_THUMBNAIL_SMALL
        self.thumbnail_large = settings.IMAGE_THUMBNAIL_LARGE
        self.thumbnail_quality = settings.IMAGE_THUMBNAIL_QUALITY
        self.compression_quality = settings.IMAGE_COMPRESSION_QUALITY
        self.url_ttl = timedelta(seconds=settings.IMAGE_URL_TTL_SECONDS)

    # ------------------------------------------------------------------
    # Validation and storage helpers
    # ------------------------------------------------------------------

    async def _validate(self, payload: FilePayload, kind: str):
        """Return (width, height) or raise ValidationError."""
        try:
            if not isinstance(payload, FilePayload):
                raise ValidationError('File payload is malformed')
            if payload.size == 0:
                raise ValidationError(f'File {payload.filename} is empty')
            if payload.size > self.max_upload_bytes:
                raise ValidationError(
                    f'File {payload.filename} exceeds {self.max_upload_bytes // (1024 * 1024)}MB limit',
                    {'size_bytes': payload.size, 'max_bytes': self.max_upload_bytes}
                )
            if not (payload.mime_type or '').lower().startswith('image/'):
                raise ValidationError(f'File {payload.filename} is not an image')
            return await self.codec.dimensions(payload.data)
        except ValidationError:
            metrics.image_upload_total.labels(kind=kind, result='rejected').inc()
            raise

    async def _store_version(self, image_id, version, step_id, procedure_id, patient_id,
                             payload, dimensions, uploaded_by) -> Image:
        prefix = keys.version_prefix(patient_id, procedure_id, step_id, image_id, version)
        original_key = await self.blobs.put(
            keys.original_key(prefix, payload.mime_type), payload.data, payload.mime_type
        )

        started = time.monotonic()
        small = await self.codec.thumbnail(payload.data, self.thumbnail_small, self.thumbnail_quality)
        large = await self.codec.thumbnail(payload.data, self.thumbnail_large, self.thumbnail_quality)
        metrics.image_rendition_duration_seconds.observe(time.monotonic() - started)

        small_key = await self.blobs.put(
            keys.rendition_key(prefix, ImageVariant.THUMBNAIL_SMALL), small, 'image/jpeg'
        )
        large_key = await self.blobs.put(
            keys.rendition_key(prefix, ImageVariant.THUMBNAIL_LARGE), large, 'image/jpeg'
        )

        now = timezone.now()
        width, height = dimensions
        return Image(
            image_id=image_id,
            version=version,
            step_id=step_id,
            procedure_id=procedure_id,
            patient_id=patient_id,
            original_key=original_key,
            thumbnail_small_key=small_key,
            thumbnail_large_key=large_key,
            filename=payload.filename,
            size_bytes=payload.size,
            mime_type=payload.mime_type,
            width=width,
            height=height,
            uploaded_by=uploaded_by,
            uploaded_at=now,
            is_current=True,
            created_at=now,
            updated_at=now,
        )

    def _original_store(self, image: Image) -> BlobStore:
        return self.blobs.cold() if image.is_cold else self.blobs

    # ------------------------------------------------------------------
    # Upload / replace
    # ------------------------------------------------------------------

    async def upload_images(self, procedure_id: str, step_id: str, patient_id: str,
                            uploaded_by: str, files: Sequence[FilePayload]) -> List[Image]:
        """
        Upload one or more new images to a step.

        Every payload is validated before anything is stored, so a rejected
        file persists nothing.

        Args:
            procedure_id: Owning procedure
            step_id: Step the images document
            patient_id: Patient the procedure belongs to
            uploaded_by: Opaque actor identity
            files: FilePayload list

        Returns:
            The stored images, each at version 1 and current

        Raises:
            NotFoundError: procedure or step does not exist
            ValidationError: empty, oversized, non-image or undecodable file
        """
        procedure = await self.procedures.require(procedure_id)
        step = await self.steps.require(step_id)
        if step.procedure_id != procedure.procedure_id:
            raise NotFoundError('Procedure step', step_id)
        if procedure.patient_id != patient_id:
            raise ValidationError('Patient does not own this procedure')
        if not files:
            raise ValidationError('At least one file is required')

        dimensions = [await self._validate(payload, 'upload') for payload in files]

        images = []
        for payload, dims in zip(files, dimensions):
            image = await self._store_version(
                str(uuid.uuid4()), 1, step_id, procedure_id, patient_id, payload, dims, uploaded_by
            )
            await self.images.insert(image)

            metrics.image_upload_total.labels(kind='upload', result='success').inc()
            metrics.image_upload_bytes.observe(payload.size)
            log_image_version(image, 'uploaded', mime_type=image.mime_type, size_bytes=image.size_bytes)
            images.append(image)
        return images

    async def replace_image(self, image_id: str, file: FilePayload, uploaded_by: str) -> Image:
        """
        Store a new version of ``image_id`` and make it current.

        Blobs for version max+1 are written first; only then is the previous
        current row flipped and the new row inserted, so a failed blob write
        leaves the chain untouched. Earlier versions, their blobs and
        annotations are kept.

        Raises:
            NotFoundError: image does not exist
            ValidationError: invalid payload
            ConcurrencyConflictError: another replace wrote the same version
        """
        versions = await self.images.list_versions(image_id)
        if not versions:
            raise NotFoundError('Image', image_id)
        dims = await self._validate(file, 'replace')

        base = next((v for v in versions if v.is_current), versions[-1])
        next_version = max(v.version for v in versions) + 1

        image = await self._store_version(
            image_id, next_version, base.step_id, base.procedure_id, base.patient_id,
            file, dims, uploaded_by
        )

        for previous in versions:
            if previous.is_current:
                previous.is_current = False
                previous.updated_at = timezone.now()
                await self.images.save(previous)

        await self.images.insert(image)

        metrics.image_upload_total.labels(kind='replace', result='success').inc()
        metrics.image_upload_bytes.observe(file.size)
        log_image_version(image, 'replaced', previous_version=base.version)
        return image

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_image(self, image_id: str, version: Optional[int] = None,
                        include_deleted: bool = False) -> Image:
        """Current version by default."""
        if version is None:
            versions = await self.images.list_versions(image_id)
            image = next((v for v in versions if v.is_current and not v.is_deleted), None)
        else:
            image = await self.images.get(image_id, version)
        if image is None or (image.is_deleted and not include_deleted):
            raise NotFoundError('Image', image_id if version is None else f'{image_id} v{version}')
        return image

    async def list_versions(self, image_id: str) -> List[Image]:
        versions = await self.images.list_versions(image_id)
        if not versions:
            raise NotFoundError('Image', image_id)
        return versions

    async def list_for_step(self, step_id: str) -> List[Image]:
        return await self.images.list_current_for_step(step_id)

    async def list_for_procedure(self, procedure_id: str) -> List[Image]:
        return await self.images.list_current_for_procedure(procedure_id)

    # ------------------------------------------------------------------
    # Annotations
    # ------------------------------------------------------------------

    async def save_annotation(self, image_id: str, version: int, annotation) -> Image:
        """Store the overlay for this exact version only."""
        image = await self.get_image(image_id, version)
        if not isinstance(annotation, Annotation):
            annotation = Annotation.from_dict(annotation)

        key = await self.blobs.put(
            keys.annotation_key(image),
            json.dumps(annotation.to_dict()).encode('utf-8'),
            'application/json',
        )
        image.set_annotation(key)
        image = await self.images.save(image)
        log_image_version(image, 'annotated', shape_count=len(annotation.shapes), label_count=len(annotation.text))
        return image

    async def get_annotation(self, image_id: str, version: int) -> Optional[Annotation]:
        image = await self.get_image(image_id, version)
        if not image.has_annotation or not image.annotation_key:
            return None
        raw = await self.blobs.get(image.annotation_key)
        return Annotation.from_dict(json.loads(raw.decode('utf-8')))

    async def remove_annotation(self, image_id: str, version: int) -> Image:
        image = await self.get_image(image_id, version)
        if not image.has_annotation:
            return image
        key = image.annotation_key
        image.clear_annotation()
        image = await self.images.save(image)
        if key:
            await self.blobs.delete(key)
        log_image_version(image, 'annotation_removed')
        return image

    # ------------------------------------------------------------------
    # View / download
    # ------------------------------------------------------------------

    async def get_image_url(self, image_id: str, variant: str = ImageVariant.ORIGINAL,
                            version: Optional[int] = None, watermark: bool = False,
                            patient_name: Optional[str] = None, tooth=None) -> dict:
        """
        Short-lived read URL for a size variant.

        Missing renditions fall back to the original. With ``watermark`` the
        URL points at a derived copy burned with patient name, capture date
        and tooth (the procedure's own tooth unless one is passed); the copy
        is generated once per source key and reused.

        Returns:
            {'url', 'expires_at', 'variant', 'watermarked'}
        """
        image = await self.get_image(image_id, version)
        if variant not in ImageVariant.values:
            raise ValidationError(f'Unknown image variant: {variant}')
        source_key = image.key_for(variant)
        source_store = self._original_store(image) if source_key == image.original_key else self.blobs

        if watermark:
            if not patient_name or not patient_name.strip():
                raise ValidationError('patient_name is required for watermarked images')
            target_key = keys.watermark_key(source_key)
            if await self.blobs.exists(target_key):
                metrics.image_watermark_total.labels(result='reused').inc()
            else:
                if tooth is None:
                    tooth = (await self.procedures.require(image.procedure_id)).tooth
                text = self._watermark_text(patient_name, image, tooth)
                data = await self.codec.watermark(await source_store.get(source_key), text)
                await self.blobs.put(target_key, data, 'image/jpeg')
                metrics.image_watermark_total.labels(result='generated').inc()
            source_key, source_store = target_key, self.blobs

        url = await source_store.signed_url(source_key, self.url_ttl)
        return {
            'url': url,
            'expires_at': timezone.now() + self.url_ttl,
            'variant': str(variant),
            'watermarked': watermark,
        }

    def _watermark_text(self, patient_name, image, tooth):
        parts = [f'Patient: {patient_name.strip()}', f'Date: {image.uploaded_at.date().isoformat()}']
        if isinstance(tooth, ToothLocator):
            parts.append(f'Tooth: {tooth.label()}')
        elif tooth:
            parts.append(f'Tooth: {tooth}')
        return ' | '.join(parts)

    async def download_image(self, image_id: str, version: Optional[int] = None,
                             compressed: bool = False) -> DownloadedImage:
        """Original bytes, or a JPEG re-encode at reduced quality. Stored state is untouched."""
        image = await self.get_image(image_id, version)
        data = await self._original_store(image).get(image.original_key)
        if not compressed:
            return DownloadedImage(data=data, mime_type=image.mime_type, filename=image.filename)

        data = await self.codec.compress(data, self.compression_quality)
        stem = image.filename.rsplit('.', 1)[0] if '.' in image.filename else image.filename
        return DownloadedImage(data=data, mime_type='image/jpeg', filename=f'{stem}.jpg')

    # ------------------------------------------------------------------
    # Delete / restore
    # ------------------------------------------------------------------

    async def delete_image(self, image_id: str, version: int) -> Image:
        """
        Soft delete one version. Blobs stay in place.

        When the current version is deleted the highest remaining live
        version becomes current.
        """
        image = await self.get_image(image_id, version)
        was_current = image.is_current
        image.soft_delete()
        image = await self.images.save(image)

        if was_current:
            live = [v for v in await self.images.list_versions(image_id) if not v.is_deleted]
            if live:
                promoted = max(live, key=lambda v: v.version)
                promoted.is_current = True
                promoted.updated_at = timezone.now()
                await self.images.save(promoted)

        log_image_version(image, 'deleted', was_current=was_current)
        return image

    async def restore_image(self, image_id: str, version: int) -> Image:
        """Undo a soft delete; the version becomes current if it is the newest live one."""
        image = await self.get_image(image_id, version, include_deleted=True)
        if not image.is_deleted:
            raise IllegalStateError(f'Image {image_id} v{version} is not deleted')

        versions = await self.images.list_versions(image_id)
        current = next((v for v in versions if v.is_current and not v.is_deleted), None)

        image.restore()
        if current is None or current.version < image.version:
            if current is not None:
                current.is_current = False
                current.updated_at = timezone.now()
                await self.images.save(current)
            image.is_current = True
        image = await self.images.save(image)
        log_image_version(image, 'restored', is_current=image.is_current)
        return image
