"""
Tests for the procedure definition registry and FDI tooth validation.
"""
import pytest

from apps.core.errors import UnknownCategoryError, ValidationError
from apps.procedures.definitions import (
    PROCEDURE_DEFINITIONS,
    all_steps,
    definition_for,
    mandatory_top_level_steps,
    registered_categories,
    top_level_steps,
)
from apps.procedures.domain import ProcedureCategory, Quadrant, ToothLocator
from apps.procedures.tooth import coerce_tooth, validate_tooth


class TestProcedureDefinitions:
    """Step templates per category."""

    def test_registered_categories(self):
        """RCT, SCALING and EXTRACTION are registered."""
        assert set(registered_categories()) == {'RCT', 'SCALING', 'EXTRACTION'}

    def test_rct_top_level_steps(self):
        """RCT instantiates eight top-level steps in template order."""
        assert [s.step_type for s in top_level_steps(ProcedureCategory.RCT)] == [
            'PROCEDURE_NAME',
            'TOOTH_NUMBER',
            'CLINICAL_PHOTO_INITIAL',
            'CLINICAL_PHOTO_FOLLOWUP',
            'WORKING_LENGTH',
            'MASTER_CONE',
            'BEFORE_FILLING',
            'AFTER_FILLING',
        ]

    def test_nested_entries_are_display_only(self):
        """Nested entries appear in the full template but not among top-level steps."""
        full = all_steps('RCT')
        nested = [s for s in full if not s.is_top_level]
        assert nested
        assert all(s.parent_step_type for s in nested)
        assert len(top_level_steps('RCT')) == len(full) - len(nested)

    @pytest.mark.parametrize('category', list(PROCEDURE_DEFINITIONS))
    def test_mandatory_steps_subset_of_top_level(self, category):
        """Mandatory step types are always a subset of top-level step types."""
        top_level = {s.step_type for s in top_level_steps(category)}
        mandatory = mandatory_top_level_steps(category)
        assert set(mandatory) <= top_level
        assert len(mandatory) == len(set(mandatory))

    def test_scaling_template(self):
        """Scaling has two steps, both mandatory."""
        assert mandatory_top_level_steps('SCALING') == ('BEFORE_SCALING', 'AFTER_SCALING')
        assert definition_for('SCALING').display_name == 'Scaling'

    def test_unknown_category_raises(self):
        """Unregistered categories raise UnknownCategoryError, a ValidationError."""
        with pytest.raises(UnknownCategoryError) as exc_info:
            definition_for('IMPLANT')
        assert isinstance(exc_info.value, ValidationError)
        assert exc_info.value.to_dict()['code'] == 'UNKNOWN_CATEGORY'

    def test_unhashable_category_raises(self):
        """Garbage input is reported as an unknown category, not a TypeError."""
        with pytest.raises(UnknownCategoryError):
            top_level_steps(['RCT'])


class TestToothValidation:
    """FDI notation per quadrant."""

    def test_valid_tooth(self):
        locator = validate_tooth('11', Quadrant.UPPER_RIGHT)
        assert locator == ToothLocator(tooth='11', quadrant='upper_right')
        assert locator.label() == '11 (Upper Right)'

    def test_tooth_outside_quadrant(self):
        """Tooth 21 belongs to the upper left quadrant."""
        with pytest.raises(ValidationError):
            validate_tooth('21', Quadrant.UPPER_RIGHT)

    @pytest.mark.parametrize('tooth', ['19', '10', 'abc', '', None])
    def test_invalid_tooth_numbers(self, tooth):
        with pytest.raises(ValidationError):
            validate_tooth(tooth, Quadrant.UPPER_RIGHT)

    def test_unknown_quadrant(self):
        with pytest.raises(ValidationError):
            validate_tooth('11', 'middle')

    def test_coerce_mapping(self):
        locator = coerce_tooth({'tooth': '26', 'quadrant': 'upper_left'})
        assert locator.tooth == '26'

    def test_coerce_rejects_other_types(self):
        with pytest.raises(ValidationError):
            coerce_tooth('26')
