"""
Procedure definition registry.

Hardcoded step templates per procedure category, loaded once at import time
and read-only afterwards. Nested entries (``parent_step_type`` set) are shown
in the UI under their parent but never instantiated as step rows and never
gate auto-close.
"""
from dataclasses import dataclass
from typing import Optional, Tuple

from apps.core.errors import UnknownCategoryError
from .domain import ProcedureCategory


@dataclass(frozen=True)
class StepDefinition:
    step_type: str
    display_name: str
    mandatory: bool = True
    parent_step_type: Optional[str] = None

    @property
    def is_top_level(self) -> bool:
        return self.parent_step_type is None


@dataclass(frozen=True)
class ProcedureDefinition:
    category: str
    display_name: str
    steps: Tuple[StepDefinition, ...]


def _nested(parent, display_name):
    return StepDefinition(parent, display_name, True, parent_step_type=parent)


RCT = ProcedureDefinition(
    category=ProcedureCategory.RCT,
    display_name='Root Canal Treatment',
    steps=(
        StepDefinition('PROCEDURE_NAME', 'Procedure Name & Information'),
        StepDefinition('TOOTH_NUMBER', 'Tooth Number'),
        StepDefinition('CLINICAL_PHOTO_INITIAL', 'Clinical Photo Initial - Part 1 (First Day)'),
        _nested('CLINICAL_PHOTO_INITIAL', 'Intra Oral PA - xray'),
        StepDefinition('CLINICAL_PHOTO_FOLLOWUP', 'Clinical Photo - Follow Up'),
        _nested('CLINICAL_PHOTO_FOLLOWUP', 'IOPA - x ray'),
        _nested('CLINICAL_PHOTO_FOLLOWUP', 'PUS drainage'),
        StepDefinition('WORKING_LENGTH', 'Working Length'),
        _nested('WORKING_LENGTH', 'IOPA - xray'),
        StepDefinition('MASTER_CONE', 'Master Cone'),
        _nested('MASTER_CONE', 'IOPA - xray'),
        StepDefinition('BEFORE_FILLING', 'Before Filling'),
        _nested('BEFORE_FILLING', 'IOPA - xray'),
        StepDefinition('AFTER_FILLING', 'After Filling'),
        _nested('AFTER_FILLING', 'IOPA - xray'),
    ),
)

SCALING = ProcedureDefinition(
    category=ProcedureCategory.SCALING,
    display_name='Scaling',
    steps=(
        StepDefinition('BEFORE_SCALING', 'Before Scaling'),
        StepDefinition('AFTER_SCALING', 'After Scaling'),
    ),
)

EXTRACTION = ProcedureDefinition(
    category=ProcedureCategory.EXTRACTION,
    display_name='Extraction',
    steps=(
        StepDefinition('TOOTH_NUMBER', 'Tooth Number'),
        StepDefinition('BEFORE_EXTRACTION', 'Before Clinical Photo'),
        _nested('BEFORE_EXTRACTION', 'IOPA - xray'),
        StepDefinition('FLAP_RAISED', 'FLAP raised photo'),
        StepDefinition('ALVEOPLASTY', 'Alveoplasty'),
        StepDefinition('BONE_AUGMENTATION', 'Bone Augmentation'),
        StepDefinition('AFTER_EXTRACTION', 'After extraction Photo'),
        _nested('AFTER_EXTRACTION', 'IOPA - xray'),
        StepDefinition('DRESSING', 'Dressing of the wound'),
    ),
)

PROCEDURE_DEFINITIONS = {
    definition.category: definition for definition in (RCT, SCALING, EXTRACTION)
}


def registered_categories() -> Tuple[str, ...]:
    return tuple(PROCEDURE_DEFINITIONS)


def definition_for(category) -> ProcedureDefinition:
    """Raises UnknownCategoryError for an unregistered category."""
    try:
        return PROCEDURE_DEFINITIONS[category]
    except (KeyError, TypeError):
        raise UnknownCategoryError(category)


def all_steps(category) -> Tuple[StepDefinition, ...]:
    """Full template including nested entries, for display."""
    return definition_for(category).steps


def top_level_steps(category) -> Tuple[StepDefinition, ...]:
    """Definitions instantiated as step rows when a procedure is created."""
    return tuple(step for step in all_steps(category) if step.is_top_level)


def mandatory_top_level_steps(category) -> Tuple[str, ...]:
    """Ordered, de-duplicated step types that gate auto-close."""
    seen = []
    for step in top_level_steps(category):
        if step.mandatory and step.step_type not in seen:
            seen.append(step.step_type)
    return tuple(seen)
