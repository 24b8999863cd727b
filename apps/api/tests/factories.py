"""
Shared builders for test data.
"""
import io

from PIL import Image as PILImage

from apps.imaging.domain import FilePayload

PATIENT_ID = 'patient-001'
DENTIST_ID = 'dentist-042'


def make_image_bytes(width=640, height=480, color=(200, 30, 30), fmt='PNG'):
    buf = io.BytesIO()
    PILImage.new('RGB', (width, height), color).save(buf, format=fmt)
    return buf.getvalue()


def make_payload(width=640, height=480, filename='tooth.png', mime_type='image/png', fmt='PNG'):
    return FilePayload(
        data=make_image_bytes(width, height, fmt=fmt),
        filename=filename,
        mime_type=mime_type,
    )


async def create_in_progress(services, category='RCT', patient_id=PATIENT_ID):
    """Create and confirm a procedure; returns (procedure, steps)."""
    procedure, steps = await services.procedures.create_procedure(
        patient_id=patient_id,
        category=category,
        assigned_by=DENTIST_ID,
    )
    procedure = await services.procedures.confirm_procedure(procedure.procedure_id)
    return procedure, steps
