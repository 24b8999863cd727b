"""
FDI tooth notation validation.

Valid tooth numbers by quadrant:
    upper_right: 11-18
    upper_left:  21-28
    lower_left:  31-38
    lower_right: 41-48
"""
from apps.core.errors import ValidationError
from .domain import Quadrant, ToothLocator

VALID_FDI_NUMBERS = {
    Quadrant.UPPER_RIGHT: range(11, 19),
    Quadrant.UPPER_LEFT: range(21, 29),
    Quadrant.LOWER_LEFT: range(31, 39),
    Quadrant.LOWER_RIGHT: range(41, 49),
}


def validate_tooth(tooth: str, quadrant: str) -> ToothLocator:
    """Return a ToothLocator or raise ValidationError."""
    try:
        number = int(str(tooth).strip())
    except (TypeError, ValueError):
        raise ValidationError(f'Invalid tooth number: {tooth}')

    valid_numbers = VALID_FDI_NUMBERS.get(quadrant)
    if valid_numbers is None or number not in valid_numbers:
        raise ValidationError(
            f'Tooth number {number} is not valid for quadrant {quadrant}',
            {'tooth': str(tooth), 'quadrant': quadrant}
        )
    return ToothLocator(tooth=str(number), quadrant=str(quadrant))


def coerce_tooth(value) -> ToothLocator:
    """Accept a ToothLocator or a mapping with ``tooth`` and ``quadrant``."""
    if isinstance(value, ToothLocator):
        return validate_tooth(value.tooth, value.quadrant)
    if isinstance(value, dict):
        return validate_tooth(value.get('tooth'), value.get('quadrant'))
    raise ValidationError('Tooth locator must provide tooth and quadrant')
