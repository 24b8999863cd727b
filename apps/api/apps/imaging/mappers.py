"""
Explicit encode/decode between Image entities and store records.
"""
from .domain import Image

IMAGE_FIELDS = (
    'image_id', 'version', 'step_id', 'procedure_id', 'patient_id', 'is_current',
    'original_key', 'thumbnail_small_key', 'thumbnail_large_key', 'annotation_key',
    'has_annotation', 'filename', 'size_bytes', 'mime_type', 'width', 'height',
    'uploaded_by', 'uploaded_at', 'is_deleted', 'deleted_at', 'storage_tier',
    'created_at', 'updated_at',
)

# Fields that may change after a version is written
IMAGE_STATE_FIELDS = (
    'is_current', 'original_key', 'annotation_key', 'has_annotation',
    'is_deleted', 'deleted_at', 'storage_tier', 'updated_at',
)


def image_to_record(image: Image) -> dict:
    record = {name: getattr(image, name) for name in IMAGE_FIELDS}
    record['storage_tier'] = str(image.storage_tier)
    return record


def image_from_record(record: dict) -> Image:
    return Image(**{name: record[name] for name in IMAGE_FIELDS if name in record})


def image_state(image: Image) -> dict:
    record = image_to_record(image)
    return {name: record[name] for name in IMAGE_STATE_FIELDS}
