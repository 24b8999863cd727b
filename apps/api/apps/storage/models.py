"""
Persistence models behind DjangoRecordStore.

One table per record collection. Column names equal record attribute names,
so the store maps rows to dicts without per-entity code. Domain entities
live in ``apps.procedures.domain`` and ``apps.imaging.domain``; these
models are never handed to services.

Timestamps are written explicitly by the services (queryset ``update()``
bypasses ``auto_now``).
"""
from django.db import models

from apps.imaging.domain import StorageTier
from apps.procedures.domain import ProcedureCategory, ProcedureStatus


class ProcedureRecord(models.Model):
    """
    Dental treatment episode.

    - procedure_id: PK (uuid string)
    - status: DRAFT | IN_PROGRESS | CLOSED | CANCELLED
    - tooth_number / tooth_quadrant: optional FDI locator
    - archived / archive_location: set by the archival sweep
    - row_version: bumped on every write, compare-and-swap for status changes
    """
    procedure_id = models.CharField(max_length=64, primary_key=True)
    patient_id = models.CharField(max_length=64, db_index=True)
    category = models.CharField(max_length=32, choices=ProcedureCategory.choices)
    status = models.CharField(
        max_length=16,
        choices=ProcedureStatus.choices,
        default=ProcedureStatus.DRAFT
    )
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, null=True)
    tooth_number = models.CharField(max_length=2, blank=True, null=True)
    tooth_quadrant = models.CharField(max_length=16, blank=True, null=True)
    assigned_by = models.CharField(max_length=64)
    assigned_date = models.DateTimeField()
    start_date = models.DateTimeField(blank=True, null=True)
    end_date = models.DateTimeField(blank=True, null=True)
    is_backfilled = models.BooleanField(default=False)
    archived = models.BooleanField(default=False)
    archive_location = models.CharField(max_length=512, blank=True, null=True)
    cancellation_reason = models.TextField(blank=True, null=True)
    created_at = models.DateTimeField()
    updated_at = models.DateTimeField()
    row_version = models.IntegerField(default=1)

    class Meta:
        db_table = 'procedure'
        indexes = [
            models.Index(fields=['patient_id', 'created_at'], name='idx_procedure_patient'),
            models.Index(fields=['status', 'created_at'], name='idx_procedure_status'),
            models.Index(fields=['archived', 'created_at'], name='idx_procedure_archived'),
        ]

    def __str__(self):
        return f"Procedure {self.procedure_id} ({self.category}/{self.status})"


class ProcedureStepRecord(models.Model):
    """One clinical checkpoint of a procedure, ordered by ``position``."""
    step_id = models.CharField(max_length=64, primary_key=True)
    procedure_id = models.CharField(max_length=64, db_index=True)
    step_type = models.CharField(max_length=64)
    display_name = models.CharField(max_length=255)
    position = models.IntegerField(default=0)
    mandatory = models.BooleanField(default=True)
    completed = models.BooleanField(default=False)
    skipped = models.BooleanField(default=False)
    skip_reason = models.TextField(blank=True, null=True)
    visit_date = models.DateField(blank=True, null=True)
    created_at = models.DateTimeField()
    updated_at = models.DateTimeField()

    class Meta:
        db_table = 'procedure_step'
        indexes = [
            models.Index(fields=['procedure_id', 'position'], name='idx_step_procedure'),
        ]

    def __str__(self):
        return f"Step {self.step_type} of {self.procedure_id}"


class ImageRecord(models.Model):
    """
    One version of a clinical image.

    (image_id, version) is unique; exactly one non-deleted row per image_id
    carries is_current=True.
    """
    image_id = models.CharField(max_length=64)
    version = models.IntegerField()
    step_id = models.CharField(max_length=64, db_index=True)
    procedure_id = models.CharField(max_length=64, db_index=True)
    patient_id = models.CharField(max_length=64)
    is_current = models.BooleanField(default=True)
    original_key = models.CharField(max_length=512)
    thumbnail_small_key = models.CharField(max_length=512, blank=True, null=True)
    thumbnail_large_key = models.CharField(max_length=512, blank=True, null=True)
    annotation_key = models.CharField(max_length=512, blank=True, null=True)
    has_annotation = models.BooleanField(default=False)
    filename = models.CharField(max_length=255)
    size_bytes = models.BigIntegerField()
    mime_type = models.CharField(max_length=100)
    width = models.IntegerField()
    height = models.IntegerField()
    uploaded_by = models.CharField(max_length=64)
    uploaded_at = models.DateTimeField()
    is_deleted = models.BooleanField(default=False)
    deleted_at = models.DateTimeField(blank=True, null=True)
    storage_tier = models.CharField(
        max_length=8,
        choices=StorageTier.choices,
        default=StorageTier.ACTIVE
    )
    created_at = models.DateTimeField()
    updated_at = models.DateTimeField()

    class Meta:
        db_table = 'image_version'
        constraints = [
            models.UniqueConstraint(fields=['image_id', 'version'], name='uniq_image_version'),
        ]
        indexes = [
            models.Index(fields=['image_id', 'version'], name='idx_image_versions'),
        ]

    def __str__(self):
        return f"Image {self.image_id} v{self.version}"


class ArchivalCheckpoint(models.Model):
    """Persisted cursor of the archival sweep, one row per sweep name."""
    name = models.CharField(max_length=64, primary_key=True)
    cursor = models.TextField(blank=True, null=True)
    cutoff = models.DateTimeField(blank=True, null=True)
    started_at = models.DateTimeField(blank=True, null=True)
    updated_at = models.DateTimeField(blank=True, null=True)
    completed_at = models.DateTimeField(blank=True, null=True)
    processed_count = models.IntegerField(default=0)
    archived_count = models.IntegerField(default=0)
    failed_count = models.IntegerField(default=0)

    class Meta:
        db_table = 'archival_checkpoint'

    def __str__(self):
        return f"Archival checkpoint {self.name}"
