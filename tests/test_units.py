"""
Tests for quantity units.

These tests verify:
    - The predefined UCUM unit table
    - Selecting no unit, a predefined unit or a custom unit
    - Units survive encoding as questionnaire-unit extensions
"""

import pytest
from qtree.codec import decode, encode_state
from qtree.errors import InvalidPath
from qtree.extensions import UNIT_URL, UnitExtension
from qtree.ids import is_uri_valid
from qtree.model import Item, ItemType, TreeState
from qtree.mutations import insert_item
from qtree.units import (
    QUANTITY_UNIT_TYPE_CUSTOM,
    QUANTITY_UNIT_TYPE_NOT_SELECTED,
    QUANTITY_UNIT_TYPES,
    UCUM_SYSTEM,
    get_predefined_unit,
    get_quantity_unit_type,
    get_unit,
    set_quantity_unit_type,
    update_custom_unit,
)
from qtree.values import Coding


@pytest.fixture
def weight():
    state = insert_item(TreeState(), Item(link_id="weight", type=ItemType.QUANTITY, text="Weight"))
    return insert_item(state, Item(link_id="name", type=ItemType.STRING))


class TestUnitTable:

    def test_ucum_units(self):
        assert all(unit.system == UCUM_SYSTEM for unit in QUANTITY_UNIT_TYPES)
        assert get_predefined_unit("kg") == Coding(code="kg", display="kilogram", system=UCUM_SYSTEM)
        assert get_predefined_unit("Cel").display == "degree Celsius"
        assert get_predefined_unit("stone") is None

    def test_codes_are_unique(self):
        codes = [unit.code for unit in QUANTITY_UNIT_TYPES]
        assert len(codes) == len(set(codes))

    def test_sentinels_are_not_units(self):
        codes = {unit.code for unit in QUANTITY_UNIT_TYPES}
        assert QUANTITY_UNIT_TYPE_NOT_SELECTED.code not in codes
        assert QUANTITY_UNIT_TYPE_CUSTOM.code not in codes


class TestSelectUnit:

    def test_no_unit_by_default(self, weight):
        assert get_quantity_unit_type(weight.items["weight"]) == QUANTITY_UNIT_TYPE_NOT_SELECTED.code

    def test_predefined_unit(self, weight):
        state = set_quantity_unit_type(weight, "weight", "kg")
        item = state.items["weight"]
        assert item.extensions == (UnitExtension(get_predefined_unit("kg")),)
        assert get_quantity_unit_type(item) == "kg"

    def test_not_selected_removes_unit(self, weight):
        state = set_quantity_unit_type(weight, "weight", "kg")
        state = set_quantity_unit_type(state, "weight", QUANTITY_UNIT_TYPE_NOT_SELECTED.code)
        assert get_unit(state.items["weight"]) is None

    def test_custom_unit(self, weight):
        """A custom unit starts empty under a freshly allocated system."""
        state = set_quantity_unit_type(weight, "weight", QUANTITY_UNIT_TYPE_CUSTOM.code)
        unit = get_unit(state.items["weight"])
        assert (unit.code, unit.display) == ("", "")
        assert is_uri_valid(unit.system)
        assert get_quantity_unit_type(state.items["weight"]) == QUANTITY_UNIT_TYPE_CUSTOM.code

    def test_custom_unit_edit(self, weight):
        state = set_quantity_unit_type(weight, "weight", QUANTITY_UNIT_TYPE_CUSTOM.code)
        system = get_unit(state.items["weight"]).system
        state = update_custom_unit(state, "weight", code="st", display="stone")
        assert get_unit(state.items["weight"]) == Coding(code="st", display="stone", system=system)

    def test_predefined_code_under_other_system_is_custom(self, weight):
        state = set_quantity_unit_type(weight, "weight", QUANTITY_UNIT_TYPE_CUSTOM.code)
        state = update_custom_unit(state, "weight", code="kg", display="kilogram")
        assert get_quantity_unit_type(state.items["weight"]) == QUANTITY_UNIT_TYPE_CUSTOM.code

    def test_input_state_unchanged(self, weight):
        set_quantity_unit_type(weight, "weight", "kg")
        assert weight.items["weight"].extensions == ()

    def test_unknown_unit_type(self, weight):
        with pytest.raises(ValueError):
            set_quantity_unit_type(weight, "weight", "stone")

    def test_only_quantity_items(self, weight):
        with pytest.raises(ValueError):
            set_quantity_unit_type(weight, "name", "kg")
        with pytest.raises(InvalidPath):
            set_quantity_unit_type(weight, "ghost", "kg")

    def test_edit_without_unit(self, weight):
        with pytest.raises(ValueError):
            update_custom_unit(weight, "weight", code="st")


class TestUnitEncoding:

    def test_unit_extension_round_trip(self, weight):
        state = set_quantity_unit_type(weight, "weight", "kg")
        doc = encode_state(state)
        assert doc["item"][0]["extension"] == [{
            "url": UNIT_URL,
            "valueCoding": {"system": UCUM_SYSTEM, "code": "kg", "display": "kilogram"},
        }]
        assert decode(doc).items["weight"] == state.items["weight"]

    def test_custom_unit_round_trip(self, weight):
        state = set_quantity_unit_type(weight, "weight", QUANTITY_UNIT_TYPE_CUSTOM.code)
        assert decode(encode_state(state)).items["weight"] == state.items["weight"]
