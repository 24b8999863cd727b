"""
Procedure and step persistence over a RecordStore.
"""
from typing import List, Optional

from apps.core.errors import NotFoundError
from apps.storage.collections import PROCEDURES, PROCEDURE_STEPS
from apps.storage.records import IndexDescriptor, Page, RecordStore, ScanCondition
from .domain import Procedure, ProcedureStatus, ProcedureStep
from .mappers import (
    PROCEDURE_STATE_FIELDS,
    STEP_STATE_FIELDS,
    procedure_from_record,
    procedure_to_record,
    step_from_record,
    step_to_record,
)


class ProcedureRepository:

    def __init__(self, store: RecordStore):
        self.store = store

    async def insert(self, procedure: Procedure) -> Procedure:
        await self.store.insert(PROCEDURES, procedure_to_record(procedure))
        return procedure

    async def get(self, procedure_id: str) -> Optional[Procedure]:
        record = await self.store.get(PROCEDURES, {'procedure_id': procedure_id})
        return procedure_from_record(record) if record else None

    async def require(self, procedure_id: str) -> Procedure:
        procedure = await self.get(procedure_id)
        if procedure is None:
            raise NotFoundError('Procedure', procedure_id)
        return procedure

    async def save(self, procedure: Procedure) -> Procedure:
        """
        Write state fields guarded by ``row_version``.

        Raises:
            ConcurrencyConflictError: another writer saved first
            NotFoundError: the procedure no longer exists
        """
        record = procedure_to_record(procedure)
        changes = {name: record[name] for name in PROCEDURE_STATE_FIELDS}
        changes['row_version'] = procedure.row_version + 1
        updated = await self.store.update(
            PROCEDURES,
            {'procedure_id': procedure.procedure_id},
            changes,
            expected={'row_version': procedure.row_version},
        )
        if updated is None:
            raise NotFoundError('Procedure', procedure.procedure_id)
        procedure.row_version = updated['row_version']
        return procedure

    def _page(self, page: Page) -> Page:
        return Page(items=[procedure_from_record(r) for r in page.items], cursor=page.cursor)

    async def list_for_patient(self, patient_id: str, limit: int = 50, cursor: Optional[str] = None) -> Page:
        page = await self.store.query(
            PROCEDURES, IndexDescriptor('patient_id', patient_id),
            descending=True, limit=limit, cursor=cursor,
        )
        return self._page(page)

    async def list_by_status(self, status: str, limit: int = 50, cursor: Optional[str] = None) -> Page:
        page = await self.store.query(
            PROCEDURES, IndexDescriptor('status', str(status)),
            descending=True, limit=limit, cursor=cursor,
        )
        return self._page(page)

    async def list_archived(self, limit: int = 50, cursor: Optional[str] = None) -> Page:
        page = await self.store.query(
            PROCEDURES, IndexDescriptor('archived', True),
            descending=True, limit=limit, cursor=cursor,
        )
        return self._page(page)

    async def scan_archivable(self, cutoff, limit: int, cursor: Optional[str] = None) -> Page:
        """Closed or cancelled, non-archived procedures created before ``cutoff``, oldest first."""
        page = await self.store.scan(
            PROCEDURES,
            [
                ScanCondition('archived', 'eq', False),
                ScanCondition('status', 'ne', str(ProcedureStatus.DRAFT)),
                ScanCondition('status', 'ne', str(ProcedureStatus.IN_PROGRESS)),
                ScanCondition('created_at', 'lt', cutoff),
            ],
            limit=limit,
            cursor=cursor,
        )
        return self._page(page)


class ProcedureStepRepository:

    # Templates are small; steps are read in one page of this size
    PAGE_SIZE = 100

    def __init__(self, store: RecordStore):
        self.store = store

    async def insert(self, step: ProcedureStep) -> ProcedureStep:
        await self.store.insert(PROCEDURE_STEPS, step_to_record(step))
        return step

    async def require(self, step_id: str) -> ProcedureStep:
        record = await self.store.get(PROCEDURE_STEPS, {'step_id': step_id})
        if record is None:
            raise NotFoundError('Procedure step', step_id)
        return step_from_record(record)

    async def save(self, step: ProcedureStep) -> ProcedureStep:
        record = step_to_record(step)
        updated = await self.store.update(
            PROCEDURE_STEPS,
            {'step_id': step.step_id},
            {name: record[name] for name in STEP_STATE_FIELDS},
        )
        if updated is None:
            raise NotFoundError('Procedure step', step.step_id)
        return step_from_record(updated)

    async def list_for_procedure(self, procedure_id: str) -> List[ProcedureStep]:
        steps, cursor = [], None
        while True:
            page = await self.store.query(
                PROCEDURE_STEPS, IndexDescriptor('procedure_id', procedure_id),
                limit=self.PAGE_SIZE, cursor=cursor,
            )
            steps.extend(step_from_record(r) for r in page.items)
            cursor = page.cursor
            if cursor is None:
                return steps
