"""
Domain events logging helpers.

Provides structured event logging for business operations.
"""
from typing import Dict, Any, Optional
from .logging import get_sanitized_logger, sanitize_dict

logger = get_sanitized_logger(__name__)


def log_domain_event(
    event_name: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    entity_ids: Optional[Dict[str, str]] = None,
    result: str = 'success',
    **extra_fields
):
    """
    Log a domain event with structured data.

    Args:
        event_name: Name of the event (e.g., 'procedure_transition', 'image_replaced')
        entity_type: Type of entity (e.g., 'Procedure', 'Image')
        entity_id: ID of primary entity
        entity_ids: Dictionary of related entity IDs
        result: Result of operation (success, failure, etc.)
        **extra_fields: Additional fields to log (will be sanitized)

    Example:
        log_domain_event(
            'image_replaced',
            entity_type='Image',
            entity_id=image.image_id,
            entity_ids={'procedure_id': image.procedure_id},
            version=3,
        )
    """
    event_data: Dict[str, Any] = {
        'event': event_name,
        'result': result,
    }

    if entity_type:
        event_data['entity_type'] = entity_type

    if entity_id:
        event_data['entity_id'] = entity_id

    if entity_ids:
        event_data.update(entity_ids)

    event_data.update(sanitize_dict(extra_fields))

    if result in ['failure', 'error']:
        logger.error(f'Domain event: {event_name}', extra=event_data)
    elif result in ['warning', 'blocked', 'conflict']:
        logger.warning(f'Domain event: {event_name}', extra=event_data)
    else:
        logger.info(f'Domain event: {event_name}', extra=event_data)


def log_procedure_transition(procedure, from_status, to_status, trigger='manual', **extra):
    """Log procedure status transition event."""
    log_domain_event(
        'procedure_transition',
        entity_type='Procedure',
        entity_id=procedure.procedure_id,
        entity_ids={'patient_id': procedure.patient_id},
        from_status=str(from_status),
        to_status=str(to_status),
        trigger=trigger,
        **extra
    )


def log_step_mutation(step, action, **extra):
    """Log a step completion, skip, unskip or visit date change."""
    log_domain_event(
        'procedure_step_mutation',
        entity_type='ProcedureStep',
        entity_id=step.step_id,
        entity_ids={'procedure_id': step.procedure_id},
        action=action,
        step_type=str(step.step_type),
        **extra
    )


def log_image_version(image, action, **extra):
    """Log image upload, replacement, annotation or deletion."""
    log_domain_event(
        f'image_{action}',
        entity_type='Image',
        entity_id=image.image_id,
        entity_ids={'procedure_id': image.procedure_id, 'step_id': image.step_id},
        version=image.version,
        **extra
    )


def log_archival_result(procedure_id, result, **extra):
    """Log the outcome of archiving one procedure."""
    log_domain_event(
        'procedure_archival',
        entity_type='Procedure',
        entity_id=procedure_id,
        result=result,
        **extra
    )
