"""
Procedure and step lifecycle services.

Auto-close: after every step completion or skip the procedure closes when it
is IN_PROGRESS and every mandatory top-level step type is done (completed or
skipped). Steps may be finished in any order, so the check runs after each
mutation.

Concurrency: every step mutation bumps the procedure ``row_version``, and the
auto-close status write is a compare-and-swap on that version. A close
decided on a stale view of the steps loses the swap and is re-evaluated.
"""
import uuid
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple

from django.utils import timezone
from django.utils.dateparse import parse_date

from apps.core.errors import ConcurrencyConflictError, ValidationError
from apps.core.observability import get_sanitized_logger, metrics
from apps.core.observability.events import log_procedure_transition, log_step_mutation
from apps.storage.records import Page, RecordStore
from .definitions import definition_for, mandatory_top_level_steps, top_level_steps
from .domain import Procedure, ProcedureStatus, ProcedureStep
from .repositories import ProcedureRepository, ProcedureStepRepository
from .tooth import coerce_tooth

logger = get_sanitized_logger(__name__)

# Compare-and-swap attempts before a conflict is surfaced to the caller
MAX_CAS_ATTEMPTS = 5


def mandatory_done(category: str, steps: Iterable[ProcedureStep]) -> bool:
    """True when every mandatory top-level step type has a done step row."""
    done = {step.step_type for step in steps if step.is_done()}
    return set(mandatory_top_level_steps(category)) <= done


def _record_transition(procedure, from_status, trigger):
    metrics.procedure_transition_total.labels(
        from_status=str(from_status),
        to_status=str(procedure.status),
        trigger=trigger,
    ).inc()
    log_procedure_transition(procedure, from_status, procedure.status, trigger=trigger)


class ProcedureService:
    """Create, read and transition procedures."""

    def __init__(self, store: RecordStore):
        self.procedures = ProcedureRepository(store)
        self.steps = ProcedureStepRepository(store)

    async def create_procedure(
        self,
        patient_id: str,
        category: str,
        assigned_by: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        tooth=None,
        is_backfilled: bool = False,
    ) -> Tuple[Procedure, List[ProcedureStep]]:
        """
        Create a DRAFT procedure and one step row per top-level definition.

        Args:
            patient_id: Owning patient
            category: Registered procedure category (RCT, SCALING, EXTRACTION)
            assigned_by: Opaque actor identity
            name: Display name, defaults to the definition name
            description: Free text
            tooth: ToothLocator or {'tooth', 'quadrant'} mapping
            is_backfilled: Procedure entered after the fact

        Returns:
            (procedure, steps)

        Raises:
            UnknownCategoryError: category not registered
            ValidationError: blank identities or invalid tooth locator
        """
        definition = definition_for(category)
        if not patient_id or not str(patient_id).strip():
            raise ValidationError('patient_id is required')
        if not assigned_by or not str(assigned_by).strip():
            raise ValidationError('assigned_by is required')

        now = timezone.now()
        procedure = Procedure(
            procedure_id=str(uuid.uuid4()),
            patient_id=patient_id,
            category=definition.category,
            name=(name or '').strip() or definition.display_name,
            description=description,
            tooth=coerce_tooth(tooth) if tooth is not None else None,
            assigned_by=assigned_by,
            assigned_date=now,
            is_backfilled=is_backfilled,
            created_at=now,
            updated_at=now,
        )
        steps = [
            ProcedureStep(
                step_id=str(uuid.uuid4()),
                procedure_id=procedure.procedure_id,
                step_type=step_definition.step_type,
                display_name=step_definition.display_name,
                position=position,
                mandatory=step_definition.mandatory,
                created_at=now,
                updated_at=now,
            )
            for position, step_definition in enumerate(top_level_steps(category))
        ]

        await self.procedures.insert(procedure)
        for step in steps:
            await self.steps.insert(step)

        procedure.steps = steps
        logger.info(
            'Procedure created',
            extra={
                'procedure_id': procedure.procedure_id,
                'category': str(procedure.category),
                'step_count': len(steps),
                'is_backfilled': is_backfilled,
            }
        )
        return procedure, steps

    async def get_procedure(self, procedure_id: str) -> Tuple[Procedure, List[ProcedureStep]]:
        procedure = await self.procedures.require(procedure_id)
        steps = await self.steps.list_for_procedure(procedure_id)
        procedure.steps = steps
        return procedure, steps

    async def list_for_patient(self, patient_id: str, limit: int = 50, cursor: Optional[str] = None) -> Page:
        """Newest first."""
        return await self.procedures.list_for_patient(patient_id, limit=limit, cursor=cursor)

    async def list_by_status(self, status: str, limit: int = 50, cursor: Optional[str] = None) -> Page:
        if status not in ProcedureStatus.values:
            raise ValidationError(f'Unknown procedure status: {status}')
        return await self.procedures.list_by_status(status, limit=limit, cursor=cursor)

    async def confirm_procedure(self, procedure_id: str) -> Procedure:
        procedure = await self.procedures.require(procedure_id)
        from_status = procedure.status
        procedure.confirm()
        await self.procedures.save(procedure)
        _record_transition(procedure, from_status, 'manual')
        return procedure

    async def update_procedure(self, procedure_id: str, name=None, description=None, tooth=None) -> Procedure:
        """
        Update display information.

        Raises:
            IllegalStateError: procedure is cancelled
        """
        procedure = await self.procedures.require(procedure_id)
        procedure.update_info(
            name=name,
            description=description,
            tooth=coerce_tooth(tooth) if tooth is not None else None,
        )
        await self.procedures.save(procedure)
        logger.info('Procedure updated', extra={'procedure_id': procedure_id})
        return procedure

    async def close_procedure(self, procedure_id: str) -> Procedure:
        """
        Manual close.

        Raises:
            IllegalStateError: procedure is cancelled
            ValidationError: mandatory steps are not all completed or skipped
        """
        procedure, steps = await self.get_procedure(procedure_id)
        if procedure.status != ProcedureStatus.CANCELLED and not mandatory_done(procedure.category, steps):
            raise ValidationError('Not all mandatory steps are completed')

        from_status = procedure.status
        procedure.close()
        await self.procedures.save(procedure)
        if from_status != procedure.status:
            _record_transition(procedure, from_status, 'manual')
        return procedure

    async def cancel_procedure(self, procedure_id: str, reason: Optional[str] = None) -> Procedure:
        procedure = await self.procedures.require(procedure_id)
        from_status = procedure.status
        procedure.cancel(reason)
        await self.procedures.save(procedure)
        if from_status != procedure.status:
            _record_transition(procedure, from_status, 'manual')
        return procedure

    async def check_auto_close(self, procedure_id: str) -> bool:
        """
        Close the procedure if it is IN_PROGRESS and all mandatory steps are done.

        Returns:
            True when this call closed the procedure

        Raises:
            ConcurrencyConflictError: still losing the swap after MAX_CAS_ATTEMPTS
        """
        for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
            procedure, steps = await self.get_procedure(procedure_id)
            if procedure.status != ProcedureStatus.IN_PROGRESS:
                return False
            if not mandatory_done(procedure.category, steps):
                return False

            from_status = procedure.status
            procedure.close()
            try:
                await self.procedures.save(procedure)
            except ConcurrencyConflictError:
                metrics.procedure_auto_close_conflict_total.inc()
                logger.warning(
                    'Auto-close lost compare-and-swap, re-evaluating',
                    extra={'procedure_id': procedure_id, 'attempt': attempt}
                )
                continue

            _record_transition(procedure, from_status, 'auto')
            return True

        raise ConcurrencyConflictError(
            f'Procedure {procedure_id} kept changing during auto-close',
            {'procedure_id': procedure_id, 'attempts': MAX_CAS_ATTEMPTS}
        )

    async def step_progress(self, procedure_id: str) -> Dict[str, object]:
        """Mandatory step types, how many are done and which remain."""
        procedure, steps = await self.get_procedure(procedure_id)
        mandatory = mandatory_top_level_steps(procedure.category)
        done = {step.step_type for step in steps if step.is_done()}
        return {
            'procedure_id': procedure_id,
            'mandatory': len(mandatory),
            'done': len([t for t in mandatory if t in done]),
            'remaining': [t for t in mandatory if t not in done],
        }

    async def bump_version(self, procedure_id: str) -> Procedure:
        """Advance ``row_version`` so in-flight auto-close decisions retry."""
        for _ in range(MAX_CAS_ATTEMPTS):
            procedure = await self.procedures.require(procedure_id)
            try:
                return await self.procedures.save(procedure)
            except ConcurrencyConflictError:
                continue
        raise ConcurrencyConflictError(
            f'Procedure {procedure_id} kept changing',
            {'procedure_id': procedure_id, 'attempts': MAX_CAS_ATTEMPTS}
        )


class ProcedureStepService:
    """Step mutations. Completion and skip re-run the auto-close check."""

    def __init__(self, store: RecordStore, procedure_service: Optional[ProcedureService] = None):
        self.steps = ProcedureStepRepository(store)
        self.procedure_service = procedure_service or ProcedureService(store)

    async def list_steps(self, procedure_id: str) -> List[ProcedureStep]:
        await self.procedure_service.procedures.require(procedure_id)
        return await self.steps.list_for_procedure(procedure_id)

    async def _mutate(self, step_id, action, mutation, auto_close):
        step = await self.steps.require(step_id)
        mutation(step)
        step = await self.steps.save(step)
        await self.procedure_service.bump_version(step.procedure_id)

        metrics.procedure_step_mutation_total.labels(action=action).inc()
        log_step_mutation(step, action)

        if auto_close:
            await self.procedure_service.check_auto_close(step.procedure_id)
        return step

    async def complete_step(self, step_id: str) -> ProcedureStep:
        """
        Raises:
            NotFoundError: unknown step
            IllegalStateError: step is skipped
        """
        return await self._mutate(step_id, 'complete', lambda step: step.complete(), True)

    async def skip_step(self, step_id: str, reason: str) -> ProcedureStep:
        """
        Raises:
            NotFoundError: unknown step
            ValidationError: blank reason
            IllegalStateError: step is completed
        """
        return await self._mutate(step_id, 'skip', lambda step: step.skip(reason), True)

    async def unskip_step(self, step_id: str) -> ProcedureStep:
        return await self._mutate(step_id, 'unskip', lambda step: step.unskip(), False)

    async def update_visit_date(self, step_id: str, visit_date) -> ProcedureStep:
        if isinstance(visit_date, str):
            try:
                parsed = parse_date(visit_date)
            except ValueError:
                parsed = None
            if parsed is None:
                raise ValidationError(f'Invalid visit date: {visit_date}')
            visit_date = parsed
        if isinstance(visit_date, datetime):
            visit_date = visit_date.date()
        if not isinstance(visit_date, date):
            raise ValidationError('visit_date must be a date')
        return await self._mutate(step_id, 'visit_date', lambda step: step.update_visit_date(visit_date), False)

