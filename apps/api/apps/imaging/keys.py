"""
Blob key layout for clinical images.

Active store:
    images/{patient}/{procedure}/{step}/{image_id}/v{version}_{token}/original.{ext}
    .../thumbnail_small.jpg, .../thumbnail_large.jpg, .../annotation.json
    .../watermarked.jpg (from original), .../watermarked_thumbnail_small.jpg, ...

Cold store:
    archived/{patient}/{procedure}/{YYYY-MM}/images/{image_id}/v{version}/{filename}

The per-version token keeps two concurrent writers of the same version from
overwriting each other's blobs.
"""
import posixpath
import uuid

EXTENSION_FOR_MIME = {
    'image/jpeg': 'jpg',
    'image/jpg': 'jpg',
    'image/png': 'png',
    'image/heic': 'heic',
    'image/heif': 'heif',
    'image/webp': 'webp',
    'image/tiff': 'tiff',
    'image/bmp': 'bmp',
    'image/gif': 'gif',
}


def safe_filename(filename: str) -> str:
    """Keep alphanumerics and ``._-``."""
    cleaned = "".join(c for c in (filename or '') if c.isalnum() or c in "._-")
    return cleaned or 'image'


def extension_for(mime_type: str) -> str:
    mime_type = (mime_type or '').lower()
    if mime_type in EXTENSION_FOR_MIME:
        return EXTENSION_FOR_MIME[mime_type]
    subtype = mime_type.split('/')[-1]
    return "".join(c for c in subtype if c.isalnum()) or 'bin'


def version_prefix(patient_id, procedure_id, step_id, image_id, version) -> str:
    token = uuid.uuid4().hex[:12]
    return f"images/{patient_id}/{procedure_id}/{step_id}/{image_id}/v{version}_{token}"


def original_key(prefix: str, mime_type: str) -> str:
    return f"{prefix}/original.{extension_for(mime_type)}"


def rendition_key(prefix: str, variant: str) -> str:
    return f"{prefix}/{variant}.jpg"


def annotation_key(image) -> str:
    """Annotation blob sits beside the version's original."""
    return f"{_version_dir(image)}/annotation.json"


def watermark_key(source_key: str) -> str:
    """
    Derived key for a watermarked copy of ``source_key``.

    ``.../original.png`` becomes ``.../watermarked.jpg``; renditions become
    ``.../watermarked_{variant}.jpg``.
    """
    directory, name = posixpath.split(source_key)
    stem = name.rsplit('.', 1)[0]
    suffix = '' if stem == 'original' else f'_{stem}'
    return f"{directory}/watermarked{suffix}.jpg"


def _version_dir(image) -> str:
    if image.thumbnail_small_key:
        return posixpath.dirname(image.thumbnail_small_key)
    return posixpath.dirname(image.original_key)


def year_month(moment) -> str:
    return moment.strftime('%Y-%m')


def cold_prefix(patient_id, procedure_id, moment) -> str:
    return f"archived/{patient_id}/{procedure_id}/{year_month(moment)}/"


def cold_original_key(image, moment) -> str:
    prefix = cold_prefix(image.patient_id, image.procedure_id, moment)
    return f"{prefix}images/{image.image_id}/v{image.version}/{safe_filename(image.filename)}"


def cold_location(bucket: str, patient_id, procedure_id, moment) -> str:
    return f"cold://{bucket}/{cold_prefix(patient_id, procedure_id, moment)}"
