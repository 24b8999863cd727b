"""
Image version entity, upload payloads and annotation overlays.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from django.db import models
from django.utils import timezone

from apps.core.errors import ValidationError


class StorageTier(models.TextChoices):
    ACTIVE = 'active', 'Active'
    COLD = 'cold', 'Cold'


class ImageVariant(models.TextChoices):
    ORIGINAL = 'original', 'Original'
    THUMBNAIL_SMALL = 'thumbnail_small', 'Thumbnail 200px'
    THUMBNAIL_LARGE = 'thumbnail_large', 'Thumbnail 800px'


class ShapeType(models.TextChoices):
    CIRCLE = 'circle', 'Circle'
    RECTANGLE = 'rectangle', 'Rectangle'
    ARROW = 'arrow', 'Arrow'
    LINE = 'line', 'Line'


@dataclass
class FilePayload:
    """One uploaded file. ``size`` is always the real byte length."""
    data: bytes
    filename: str
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class Image:
    """
    One version of a clinical image.

    ``image_id`` is stable across versions; ``version`` grows from 1.
    Exactly one non-deleted version per image_id is current.
    """
    image_id: str
    version: int
    step_id: str
    procedure_id: str
    patient_id: str
    original_key: str
    filename: str
    size_bytes: int
    mime_type: str
    width: int
    height: int
    uploaded_by: str
    uploaded_at: datetime
    is_current: bool = True
    thumbnail_small_key: Optional[str] = None
    thumbnail_large_key: Optional[str] = None
    annotation_key: Optional[str] = None
    has_annotation: bool = False
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    storage_tier: str = StorageTier.ACTIVE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def key_for(self, variant: str) -> str:
        """Blob key of a size variant, falling back to the original."""
        if variant == ImageVariant.THUMBNAIL_SMALL:
            return self.thumbnail_small_key or self.original_key
        if variant == ImageVariant.THUMBNAIL_LARGE:
            return self.thumbnail_large_key or self.original_key
        if variant == ImageVariant.ORIGINAL:
            return self.original_key
        raise ValidationError(f'Unknown image variant: {variant}')

    def set_annotation(self, key: str):
        self.annotation_key = key
        self.has_annotation = True
        self.updated_at = timezone.now()

    def clear_annotation(self):
        self.annotation_key = None
        self.has_annotation = False
        self.updated_at = timezone.now()

    def soft_delete(self):
        now = timezone.now()
        self.is_deleted = True
        self.deleted_at = now
        self.is_current = False
        self.updated_at = now

    def restore(self):
        self.is_deleted = False
        self.deleted_at = None
        self.updated_at = timezone.now()

    def move_to_cold(self, cold_key: str):
        self.original_key = cold_key
        self.storage_tier = StorageTier.COLD
        self.updated_at = timezone.now()

    @property
    def is_cold(self) -> bool:
        return self.storage_tier == StorageTier.COLD


@dataclass
class Shape:
    type: str
    x: float
    y: float
    color: str
    radius: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None

    def to_dict(self):
        data = {'type': self.type, 'x': self.x, 'y': self.y, 'color': self.color}
        for name in ('radius', 'width', 'height'):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        return data


@dataclass
class TextLabel:
    x: float
    y: float
    text: str
    font_size: float
    color: str

    def to_dict(self):
        return {'x': self.x, 'y': self.y, 'text': self.text, 'font_size': self.font_size, 'color': self.color}


def _number(data, name, required=True):
    value = data.get(name)
    if value is None:
        if required:
            raise ValidationError(f'Annotation field {name} is required')
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f'Annotation field {name} must be a number')
    return value


def _string(data, name):
    value = data.get(name)
    if not isinstance(value, str) or not value:
        raise ValidationError(f'Annotation field {name} must be a non-empty string')
    return value


@dataclass
class Annotation:
    """Vector shapes and text labels drawn over one image version."""
    shapes: List[Shape] = field(default_factory=list)
    text: List[TextLabel] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data) -> 'Annotation':
        if not isinstance(data, dict):
            raise ValidationError('Annotation must be an object')
        shapes_data = data.get('shapes') or []
        text_data = data.get('text') or []
        if not isinstance(shapes_data, list) or not isinstance(text_data, list):
            raise ValidationError('Annotation shapes and text must be lists')

        shapes = []
        for item in shapes_data:
            if not isinstance(item, dict):
                raise ValidationError('Annotation shape must be an object')
            shape_type = item.get('type')
            if shape_type not in ShapeType.values:
                raise ValidationError(f'Unknown annotation shape: {shape_type}')
            shapes.append(Shape(
                type=shape_type,
                x=_number(item, 'x'),
                y=_number(item, 'y'),
                color=_string(item, 'color'),
                radius=_number(item, 'radius', required=shape_type == ShapeType.CIRCLE),
                width=_number(item, 'width', required=False),
                height=_number(item, 'height', required=False),
            ))

        labels = []
        for item in text_data:
            if not isinstance(item, dict):
                raise ValidationError('Annotation text label must be an object')
            # Older clients send camelCase
            size_source = item if 'font_size' in item else {'font_size': item.get('fontSize')}
            labels.append(TextLabel(
                x=_number(item, 'x'),
                y=_number(item, 'y'),
                text=_string(item, 'text'),
                font_size=_number(size_source, 'font_size'),
                color=_string(item, 'color'),
            ))
        return cls(shapes=shapes, text=labels)

    def to_dict(self):
        return {
            'shapes': [shape.to_dict() for shape in self.shapes],
            'text': [label.to_dict() for label in self.text],
        }


@dataclass
class DownloadedImage:
    data: bytes
    mime_type: str
    filename: str
