"""
Procedure and step entities.

Plain dataclasses holding business state and the state machine rules.
Storage keys and record layout live in ``apps.procedures.mappers``.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from django.db import models
from django.utils import timezone

from apps.core.errors import IllegalStateError, ValidationError


class ProcedureCategory(models.TextChoices):
    """Treatment type selecting a step template."""
    RCT = 'RCT', 'Root Canal Treatment'
    SCALING = 'SCALING', 'Scaling'
    EXTRACTION = 'EXTRACTION', 'Extraction'


class ProcedureStatus(models.TextChoices):
    """
    DRAFT -> IN_PROGRESS -> CLOSED
    DRAFT / IN_PROGRESS -> CANCELLED
    """
    DRAFT = 'DRAFT', 'Draft'
    IN_PROGRESS = 'IN_PROGRESS', 'In Progress'
    CLOSED = 'CLOSED', 'Closed'
    CANCELLED = 'CANCELLED', 'Cancelled'


class Quadrant(models.TextChoices):
    UPPER_RIGHT = 'upper_right', 'Upper Right'
    UPPER_LEFT = 'upper_left', 'Upper Left'
    LOWER_LEFT = 'lower_left', 'Lower Left'
    LOWER_RIGHT = 'lower_right', 'Lower Right'


@dataclass(frozen=True)
class ToothLocator:
    """Tooth in FDI notation (``tooth`` "11".."48") plus its quadrant."""
    tooth: str
    quadrant: str

    def label(self) -> str:
        return f"{self.tooth} ({Quadrant(self.quadrant).label})"


@dataclass
class ProcedureStep:
    """
    One clinical checkpoint of a procedure.

    ``completed`` and ``skipped`` are mutually exclusive.
    """
    step_id: str
    procedure_id: str
    step_type: str
    display_name: str
    position: int = 0
    mandatory: bool = True
    completed: bool = False
    skipped: bool = False
    skip_reason: Optional[str] = None
    visit_date: Optional[date] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def complete(self):
        if self.skipped:
            raise IllegalStateError('Cannot complete a skipped step')
        self.completed = True
        self.updated_at = timezone.now()

    def skip(self, reason: str):
        if not reason or not reason.strip():
            raise ValidationError('Skip reason is required')
        if self.completed:
            raise IllegalStateError('Cannot skip a completed step')
        self.skipped = True
        self.skip_reason = reason.strip()
        self.updated_at = timezone.now()

    def unskip(self):
        self.skipped = False
        self.skip_reason = None
        self.updated_at = timezone.now()

    def update_visit_date(self, visit_date: date):
        self.visit_date = visit_date
        self.updated_at = timezone.now()

    def is_done(self) -> bool:
        return self.completed or self.skipped


@dataclass
class Procedure:
    """
    Dental treatment episode.

    ``end_date`` is only set when the procedure leaves the active states.
    Procedures are never physically deleted.
    """
    procedure_id: str
    patient_id: str
    category: str
    name: str
    assigned_by: str
    assigned_date: datetime
    status: str = ProcedureStatus.DRAFT
    description: Optional[str] = None
    tooth: Optional[ToothLocator] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_backfilled: bool = False
    archived: bool = False
    archive_location: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    row_version: int = 1
    steps: list = field(default_factory=list, repr=False)

    def confirm(self):
        if self.status != ProcedureStatus.DRAFT:
            raise IllegalStateError('Only draft procedures can be confirmed')
        now = timezone.now()
        self.status = ProcedureStatus.IN_PROGRESS
        if self.start_date is None:
            self.start_date = now
        self.updated_at = now

    def close(self):
        if self.status == ProcedureStatus.CANCELLED:
            raise IllegalStateError('Cannot close a cancelled procedure')
        now = timezone.now()
        self.status = ProcedureStatus.CLOSED
        if self.end_date is None:
            self.end_date = now
        self.updated_at = now

    def cancel(self, reason: Optional[str] = None):
        if self.status == ProcedureStatus.CLOSED:
            raise IllegalStateError('Cannot cancel a closed procedure')
        now = timezone.now()
        self.status = ProcedureStatus.CANCELLED
        if reason is not None:
            self.cancellation_reason = reason
        if self.end_date is None:
            self.end_date = now
        self.updated_at = now

    def archive(self, location: str):
        self.archived = True
        self.archive_location = location
        self.updated_at = timezone.now()

    def update_info(self, name=None, description=None, tooth=None):
        if not self.can_be_modified:
            raise IllegalStateError('Cannot modify a cancelled procedure')
        if name is not None:
            if not name.strip():
                raise ValidationError('Procedure name cannot be blank')
            self.name = name.strip()
        if description is not None:
            self.description = description
        if tooth is not None:
            self.tooth = tooth
        self.updated_at = timezone.now()

    @property
    def can_be_modified(self) -> bool:
        return self.status != ProcedureStatus.CANCELLED
