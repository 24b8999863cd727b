"""
Explicit encode/decode between procedure entities and store records.
"""
from .domain import Procedure, ProcedureStep, ToothLocator


def procedure_to_record(procedure: Procedure) -> dict:
    tooth = procedure.tooth
    return {
        'procedure_id': procedure.procedure_id,
        'patient_id': procedure.patient_id,
        'category': str(procedure.category),
        'status': str(procedure.status),
        'name': procedure.name,
        'description': procedure.description,
        'tooth_number': tooth.tooth if tooth else None,
        'tooth_quadrant': tooth.quadrant if tooth else None,
        'assigned_by': procedure.assigned_by,
        'assigned_date': procedure.assigned_date,
        'start_date': procedure.start_date,
        'end_date': procedure.end_date,
        'is_backfilled': procedure.is_backfilled,
        'archived': procedure.archived,
        'archive_location': procedure.archive_location,
        'cancellation_reason': procedure.cancellation_reason,
        'created_at': procedure.created_at,
        'updated_at': procedure.updated_at,
        'row_version': procedure.row_version,
    }


def procedure_from_record(record: dict) -> Procedure:
    tooth = None
    if record.get('tooth_number'):
        tooth = ToothLocator(tooth=record['tooth_number'], quadrant=record['tooth_quadrant'])
    return Procedure(
        procedure_id=record['procedure_id'],
        patient_id=record['patient_id'],
        category=record['category'],
        status=record['status'],
        name=record['name'],
        description=record.get('description'),
        tooth=tooth,
        assigned_by=record['assigned_by'],
        assigned_date=record['assigned_date'],
        start_date=record.get('start_date'),
        end_date=record.get('end_date'),
        is_backfilled=record.get('is_backfilled', False),
        archived=record.get('archived', False),
        archive_location=record.get('archive_location'),
        cancellation_reason=record.get('cancellation_reason'),
        created_at=record.get('created_at'),
        updated_at=record.get('updated_at'),
        row_version=record.get('row_version', 1),
    )


def step_to_record(step: ProcedureStep) -> dict:
    return {
        'step_id': step.step_id,
        'procedure_id': step.procedure_id,
        'step_type': step.step_type,
        'display_name': step.display_name,
        'position': step.position,
        'mandatory': step.mandatory,
        'completed': step.completed,
        'skipped': step.skipped,
        'skip_reason': step.skip_reason,
        'visit_date': step.visit_date,
        'created_at': step.created_at,
        'updated_at': step.updated_at,
    }


def step_from_record(record: dict) -> ProcedureStep:
    return ProcedureStep(
        step_id=record['step_id'],
        procedure_id=record['procedure_id'],
        step_type=record['step_type'],
        display_name=record['display_name'],
        position=record.get('position', 0),
        mandatory=record.get('mandatory', True),
        completed=record.get('completed', False),
        skipped=record.get('skipped', False),
        skip_reason=record.get('skip_reason'),
        visit_date=record.get('visit_date'),
        created_at=record.get('created_at'),
        updated_at=record.get('updated_at'),
    )


# Fields a step mutation may change
STEP_STATE_FIELDS = ('completed', 'skipped', 'skip_reason', 'visit_date', 'updated_at')

# Fields written on a procedure status/info change (row_version is handled by the repository)
PROCEDURE_STATE_FIELDS = (
    'status', 'name', 'description', 'tooth_number', 'tooth_quadrant', 'start_date',
    'end_date', 'archived', 'archive_location', 'cancellation_reason', 'updated_at',
)
