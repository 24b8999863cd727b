"""
Record collections used by the repositories.

Attribute names match the columns of ``apps.storage.models``.
"""
from .records import Collection

PROCEDURES = Collection('procedures', key=('procedure_id',), default_order=('created_at',))

PROCEDURE_STEPS = Collection('procedure_steps', key=('step_id',), default_order=('position',))

IMAGES = Collection('images', key=('image_id', 'version'), default_order=('created_at',))

ARCHIVAL_CHECKPOINTS = Collection('archival_checkpoints', key=('name',))

ALL_COLLECTIONS = (PROCEDURES, PROCEDURE_STEPS, IMAGES, ARCHIVAL_CHECKPOINTS)
