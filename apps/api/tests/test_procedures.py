"""
Tests for procedure lifecycle, step mutations and auto-close.
"""
import itertools
import random
from datetime import date, datetime

import pytest

from apps.core.errors import (
    ConcurrencyConflictError,
    IllegalStateError,
    NotFoundError,
    UnknownCategoryError,
    ValidationError,
)
from apps.core.wiring import build_services
from apps.procedures.definitions import mandatory_top_level_steps
from apps.procedures.domain import ProcedureStatus, ToothLocator
from apps.storage.blobs import InMemoryBlobStore
from apps.storage.collections import PROCEDURES
from apps.storage.records import InMemoryRecordStore
from tests.factories import DENTIST_ID, PATIENT_ID, create_in_progress


async def finish_steps(services, steps, skip=()):
    """Complete every step, skipping the step types listed in ``skip``."""
    for step in steps:
        if step.step_type in skip:
            await services.steps.skip_step(step.step_id, 'Not clinically indicated')
        else:
            await services.steps.complete_step(step.step_id)


# ============================================================================
# Creation and reads
# ============================================================================

@pytest.mark.asyncio
class TestCreateProcedure:

    async def test_create_rct(self, services):
        """A new RCT procedure is DRAFT with one row per top-level step."""
        procedure, steps = await services.procedures.create_procedure(
            patient_id=PATIENT_ID,
            category='RCT',
            assigned_by=DENTIST_ID,
            tooth={'tooth': '36', 'quadrant': 'lower_left'},
        )

        assert procedure.status == ProcedureStatus.DRAFT
        assert procedure.name == 'Root Canal Treatment'
        assert procedure.tooth == ToothLocator('36', 'lower_left')
        assert procedure.start_date is None
        assert procedure.end_date is None
        assert len(steps) == 8
        assert [s.position for s in steps] == list(range(8))
        assert not any(s.completed or s.skipped for s in steps)

    async def test_steps_read_back_in_template_order(self, services):
        procedure, steps = await services.procedures.create_procedure(PATIENT_ID, 'EXTRACTION', DENTIST_ID)
        _, stored = await services.procedures.get_procedure(procedure.procedure_id)
        assert [s.step_type for s in stored] == [s.step_type for s in steps]

    async def test_custom_name(self, services):
        procedure, _ = await services.procedures.create_procedure(
            PATIENT_ID, 'SCALING', DENTIST_ID, name='  Full mouth scaling  '
        )
        assert procedure.name == 'Full mouth scaling'

    async def test_unknown_category(self, services):
        """Unknown categories persist nothing."""
        with pytest.raises(UnknownCategoryError):
            await services.procedures.create_procedure(PATIENT_ID, 'IMPLANT', DENTIST_ID)
        page = await services.procedures.list_for_patient(PATIENT_ID)
        assert page.items == []

    async def test_blank_patient(self, services):
        with pytest.raises(ValidationError):
            await services.procedures.create_procedure('  ', 'RCT', DENTIST_ID)

    async def test_invalid_tooth(self, services):
        with pytest.raises(ValidationError):
            await services.procedures.create_procedure(
                PATIENT_ID, 'RCT', DENTIST_ID, tooth={'tooth': '11', 'quadrant': 'lower_left'}
            )

    async def test_get_unknown_procedure(self, services):
        with pytest.raises(NotFoundError):
            await services.procedures.get_procedure('missing')

    async def test_list_for_patient_newest_first(self, services):
        """Pages are newest first and the cursor continues where the page ended."""
        created = []
        for category in ('RCT', 'SCALING', 'EXTRACTION'):
            procedure, _ = await services.procedures.create_procedure(PATIENT_ID, category, DENTIST_ID)
            created.append(procedure.procedure_id)
        await services.procedures.create_procedure('patient-other', 'RCT', DENTIST_ID)

        first = await services.procedures.list_for_patient(PATIENT_ID, limit=2)
        assert [p.procedure_id for p in first.items] == created[::-1][:2]
        assert first.cursor is not None

        second = await services.procedures.list_for_patient(PATIENT_ID, limit=2, cursor=first.cursor)
        assert [p.procedure_id for p in second.items] == [created[0]]
        assert second.cursor is None

    async def test_list_by_status(self, services):
        draft, _ = await services.procedures.create_procedure(PATIENT_ID, 'RCT', DENTIST_ID)
        active, _ = await create_in_progress(services)

        page = await services.procedures.list_by_status('IN_PROGRESS')
        assert [p.procedure_id for p in page.items] == [active.procedure_id]

        page = await services.procedures.list_by_status('DRAFT')
        assert [p.procedure_id for p in page.items] == [draft.procedure_id]

    async def test_list_by_unknown_status(self, services):
        with pytest.raises(ValidationError):
            await services.procedures.list_by_status('DONE')


# ============================================================================
# Manual transitions
# ============================================================================

@pytest.mark.asyncio
class TestProcedureTransitions:

    async def test_confirm_sets_start_date(self, services):
        procedure, _ = await create_in_progress(services)
        assert procedure.status == ProcedureStatus.IN_PROGRESS
        assert procedure.start_date is not None

    async def test_confirm_twice(self, services):
        procedure, _ = await create_in_progress(services)
        with pytest.raises(IllegalStateError):
            await services.procedures.confirm_procedure(procedure.procedure_id)

    async def test_close_requires_mandatory_steps(self, services):
        """Manual close fails while any mandatory step is open."""
        procedure, steps = await create_in_progress(services, category='SCALING')
        await services.steps.complete_step(steps[0].step_id)

        with pytest.raises(ValidationError):
            await services.procedures.close_procedure(procedure.procedure_id)

        stored, _ = await services.procedures.get_procedure(procedure.procedure_id)
        assert stored.status == ProcedureStatus.IN_PROGRESS
        assert stored.end_date is None

    async def test_cancel_then_close(self, services):
        procedure, _ = await create_in_progress(services)
        cancelled = await services.procedures.cancel_procedure(procedure.procedure_id, 'Patient moved')
        assert cancelled.status == ProcedureStatus.CANCELLED
        assert cancelled.end_date is not None

        with pytest.raises(IllegalStateError):
            await services.procedures.close_procedure(procedure.procedure_id)

    async def test_cancel_draft(self, services):
        procedure, _ = await services.procedures.create_procedure(PATIENT_ID, 'RCT', DENTIST_ID)
        cancelled = await services.procedures.cancel_procedure(procedure.procedure_id)
        assert cancelled.status == ProcedureStatus.CANCELLED

    async def test_cancel_closed(self, services):
        procedure, steps = await create_in_progress(services, category='SCALING')
        await finish_steps(services, steps)

        with pytest.raises(IllegalStateError):
            await services.procedures.cancel_procedure(procedure.procedure_id)

    async def test_update_cancelled(self, services):
        procedure, _ = await create_in_progress(services)
        await services.procedures.cancel_procedure(procedure.procedure_id)

        with pytest.raises(IllegalStateError):
            await services.procedures.update_procedure(procedure.procedure_id, name='Renamed')

    async def test_update_info(self, services):
        procedure, _ = await create_in_progress(services)
        updated = await services.procedures.update_procedure(
            procedure.procedure_id,
            description='Lower left molar',
            tooth=ToothLocator('36', 'lower_left'),
        )
        assert updated.description == 'Lower left molar'
        assert updated.tooth.tooth == '36'

    async def test_update_blank_name(self, services):
        procedure, _ = await create_in_progress(services)
        with pytest.raises(ValidationError):
            await services.procedures.update_procedure(procedure.procedure_id, name='  ')

    async def test_row_version_advances(self, services):
        """Every saved write advances the row version."""
        procedure, _ = await services.procedures.create_procedure(PATIENT_ID, 'RCT', DENTIST_ID)
        assert procedure.row_version == 1
        confirmed = await services.procedures.confirm_procedure(procedure.procedure_id)
        assert confirmed.row_version == 2


# ============================================================================
# Step mutations
# ============================================================================

@pytest.mark.asyncio
class TestStepMutations:

    async def test_complete_skipped_step(self, services):
        _, steps = await create_in_progress(services)
        await services.steps.skip_step(steps[2].step_id, 'No initial photo available')

        with pytest.raises(IllegalStateError):
            await services.steps.complete_step(steps[2].step_id)

    async def test_skip_completed_step(self, services):
        _, steps = await create_in_progress(services)
        await services.steps.complete_step(steps[2].step_id)

        with pytest.raises(IllegalStateError):
            await services.steps.skip_step(steps[2].step_id, 'Changed mind')

    @pytest.mark.parametrize('reason', ['', '   ', None])
    async def test_skip_requires_reason(self, services, reason):
        _, steps = await create_in_progress(services)
        with pytest.raises(ValidationError):
            await services.steps.skip_step(steps[0].step_id, reason)

    async def test_unskip_then_complete(self, services):
        _, steps = await create_in_progress(services)
        skipped = await services.steps.skip_step(steps[3].step_id, 'No follow up needed')
        assert skipped.skip_reason == 'No follow up needed'

        unskipped = await services.steps.unskip_step(steps[3].step_id)
        assert not unskipped.skipped
        assert unskipped.skip_reason is None

        completed = await services.steps.complete_step(steps[3].step_id)
        assert completed.completed

    async def test_unknown_step(self, services):
        with pytest.raises(NotFoundError):
            await services.steps.complete_step('missing')

    async def test_visit_date_from_string(self, services):
        _, steps = await create_in_progress(services)
        step = await services.steps.update_visit_date(steps[0].step_id, '2024-03-05')
        assert step.visit_date == date(2024, 3, 5)

    async def test_visit_date_from_datetime(self, services):
        _, steps = await create_in_progress(services)
        step = await services.steps.update_visit_date(steps[0].step_id, datetime(2024, 3, 5, 14, 30))
        assert step.visit_date == date(2024, 3, 5)

    @pytest.mark.parametrize('value', ['not-a-date', '2024-13-45', 20240305])
    async def test_invalid_visit_date(self, services, value):
        _, steps = await create_in_progress(services)
        with pytest.raises(ValidationError):
            await services.steps.update_visit_date(steps[0].step_id, value)

    async def test_step_progress(self, services):
        procedure, steps = await create_in_progress(services, category='SCALING')
        await services.steps.skip_step(steps[0].step_id, 'Photo taken elsewhere')

        progress = await services.procedures.step_progress(procedure.procedure_id)
        assert progress['mandatory'] == 2
        assert progress['done'] == 1
        assert progress['remaining'] == ['AFTER_SCALING']


# ============================================================================
# Auto-close
# ============================================================================

@pytest.mark.asyncio
class TestAutoClose:

    async def test_seven_of_eight_stays_open(self, services):
        """RCT with one mandatory step open stays IN_PROGRESS."""
        procedure, steps = await create_in_progress(services)
        await finish_steps(services, steps[:-1])

        stored, _ = await services.procedures.get_procedure(procedure.procedure_id)
        assert stored.status == ProcedureStatus.IN_PROGRESS
        assert stored.end_date is None

    async def test_last_step_closes(self, services):
        procedure, steps = await create_in_progress(services)
        await finish_steps(services, steps)

        stored, _ = await services.procedures.get_procedure(procedure.procedure_id)
        assert stored.status == ProcedureStatus.CLOSED
        assert stored.end_date is not None

    async def test_skipped_steps_count_as_done(self, services):
        procedure, steps = await create_in_progress(services)
        await finish_steps(services, steps, skip=mandatory_top_level_steps('RCT')[::2])

        stored, _ = await services.procedures.get_procedure(procedure.procedure_id)
        assert stored.status == ProcedureStatus.CLOSED

    @pytest.mark.parametrize('order', list(itertools.permutations(range(2))))
    async def test_scaling_any_order(self, services, order):
        procedure, steps = await create_in_progress(services, category='SCALING')
        await finish_steps(services, [steps[i] for i in order])

        stored, _ = await services.procedures.get_procedure(procedure.procedure_id)
        assert stored.status == ProcedureStatus.CLOSED

    @pytest.mark.parametrize('seed', range(5))
    async def test_rct_any_order(self, services, seed):
        """Completion order never changes the outcome."""
        procedure, steps = await create_in_progress(services)
        shuffled = list(steps)
        random.Random(seed).shuffle(shuffled)
        await finish_steps(services, shuffled, skip={'WORKING_LENGTH'})

        stored, _ = await services.procedures.get_procedure(procedure.procedure_id)
        assert stored.status == ProcedureStatus.CLOSED

    async def test_draft_does_not_auto_close(self, services):
        procedure, steps = await services.procedures.create_procedure(PATIENT_ID, 'SCALING', DENTIST_ID)
        await finish_steps(services, steps)

        stored, _ = await services.procedures.get_procedure(procedure.procedure_id)
        assert stored.status == ProcedureStatus.DRAFT

    async def test_close_after_auto_close_keeps_end_date(self, services):
        procedure, steps = await create_in_progress(services, category='SCALING')
        await finish_steps(services, steps)
        closed, _ = await services.procedures.get_procedure(procedure.procedure_id)

        again = await services.procedures.close_procedure(procedure.procedure_id)
        assert again.end_date == closed.end_date


class InterleavingRecordStore(InMemoryRecordStore):
    """Runs ``before_close`` just before the next procedure CLOSED write."""

    def __init__(self):
        super().__init__()
        self.before_close = None
        self.always_conflict = False

    async def update(self, collection, key, changes, *, expected=None):
        if collection is PROCEDURES and expected and changes.get('status') == ProcedureStatus.CLOSED:
            if self.always_conflict:
                raise ConcurrencyConflictError('procedure changed concurrently')
            hook, self.before_close = self.before_close, None
            if hook is not None:
                await hook()
        return await super().update(collection, key, changes, expected=expected)


@pytest.mark.asyncio
class TestAutoCloseConcurrency:

    @pytest.fixture
    def store(self):
        return InterleavingRecordStore()

    @pytest.fixture
    def racing_services(self, store):
        return build_services(store=store, blobs=InMemoryBlobStore())

    async def test_stale_close_is_reevaluated(self, racing_services, store):
        """A step unskipped while auto-close decides wins; the procedure stays open."""
        procedure, steps = await create_in_progress(racing_services, category='SCALING')
        await racing_services.steps.skip_step(steps[0].step_id, 'Photo taken elsewhere')

        async def unskip_concurrently():
            await racing_services.steps.unskip_step(steps[0].step_id)

        store.before_close = unskip_concurrently
        await racing_services.steps.complete_step(steps[1].step_id)

        stored, stored_steps = await racing_services.procedures.get_procedure(procedure.procedure_id)
        assert stored.status == ProcedureStatus.IN_PROGRESS
        assert not stored_steps[0].skipped

    async def test_close_retried_after_unrelated_write(self, racing_services, store):
        """A concurrent write that leaves all steps done still ends CLOSED."""
        procedure, steps = await create_in_progress(racing_services, category='SCALING')
        await racing_services.steps.complete_step(steps[0].step_id)

        async def rename_concurrently():
            await racing_services.procedures.update_procedure(procedure.procedure_id, description='Updated')

        store.before_close = rename_concurrently
        await racing_services.steps.complete_step(steps[1].step_id)

        stored, _ = await racing_services.procedures.get_procedure(procedure.procedure_id)
        assert stored.status == ProcedureStatus.CLOSED
        assert stored.description == 'Updated'

    async def test_conflict_surfaces_after_retries(self, racing_services, store):
        procedure, steps = await create_in_progress(racing_services, category='SCALING')
        await racing_services.steps.complete_step(steps[0].step_id)

        store.always_conflict = True
        with pytest.raises(ConcurrencyConflictError):
            await racing_services.steps.complete_step(steps[1].step_id)

        stored, _ = await racing_services.procedures.get_procedure(procedure.procedure_id)
        assert stored.status == ProcedureStatus.IN_PROGRESS
