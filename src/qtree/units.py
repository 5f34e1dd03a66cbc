"""
Units of quantity items.

A quantity item stores its unit as a questionnaire-unit extension holding a
Coding. Editors pick from a fixed table of UCUM units, choose a custom unit
(a coding under a freshly allocated system) or leave the unit unset.
"""

import logging
from dataclasses import replace
from typing import Optional, Tuple

from qtree.errors import InvalidPath
from qtree.extensions import UNIT_URL, UnitExtension, find_extension
from qtree.ids import create_uri_id
from qtree.model import Item, ItemType, TreeState
from qtree.mutations import remove_extension, set_extension
from qtree.values import Coding

logger = logging.getLogger(__name__)

UCUM_SYSTEM = "http://unitsofmeasure.org"

# Selector sentinels; neither is ever written into a document.
QUANTITY_UNIT_TYPE_NOT_SELECTED = Coding(code="", display="No unit", system="")
QUANTITY_UNIT_TYPE_CUSTOM = Coding(code="custom", display="Custom", system="")

_UCUM_UNITS = (
    ("cm", "centimeter"),
    ("m", "meter"),
    ("mm", "millimeter"),
    ("in", "inch"),
    ("ft", "foot"),
    ("kg", "kilogram"),
    ("g", "gram"),
    ("mg", "milligram"),
    ("lb", "pound"),
    ("oz", "ounce"),
    ("Cel", "degree Celsius"),
    ("[degF]", "degree Fahrenheit"),
    ("mm[Hg]", "millimeters of mercury"),
    ("/min", "per minute"),
    ("{beats}/min", "beats per minute"),
    ("mL", "milliliter"),
    ("L", "liter"),
    ("[fl_oz_us]", "fluid ounce (US)"),
    ("[cup_us]", "cup (US)"),
    ("s", "second"),
    ("min", "minute"),
    ("h", "hour"),
    ("d", "day"),
    ("wk", "week"),
    ("mo", "month"),
    ("a", "year"),
    ("{score}", "score"),
    ("1", "unity (dimensionless)"),
    ("%", "percent"),
    ("ug", "microgram"),
    ("mg/kg", "milligram per kilogram"),
    ("mg/d", "milligram per day"),
    ("kg/m2", "kilogram per square meter"),
    ("kcal", "kilocalorie"),
    ("cal", "calorie"),
)

QUANTITY_UNIT_TYPES: Tuple[Coding, ...] = tuple(
    Coding(code=code, display=display, system=UCUM_SYSTEM) for code, display in _UCUM_UNITS
)


def get_predefined_unit(code: str) -> Optional[Coding]:
    for unit in QUANTITY_UNIT_TYPES:
        if unit.code == code:
            return unit
    return None


def _same_unit(a: Coding, b: Coding) -> bool:
    return (a.code, a.display, a.system) == (b.code, b.display, b.system)


def get_unit(item: Item) -> Optional[Coding]:
    ext = find_extension(item.extensions, UNIT_URL)
    return ext.coding if isinstance(ext, UnitExtension) else None


def get_quantity_unit_type(item: Item) -> str:
    """
    Which selector entry matches the item's unit.

    Returns the NOT_SELECTED code when there is no unit, the unit code when
    the coding is exactly one of QUANTITY_UNIT_TYPES, and the CUSTOM code
    otherwise.
    """
    unit = get_unit(item)
    if unit is None:
        return QUANTITY_UNIT_TYPE_NOT_SELECTED.code
    predefined = get_predefined_unit(unit.code or "")
    if predefined is not None and _same_unit(predefined, unit):
        return predefined.code
    return QUANTITY_UNIT_TYPE_CUSTOM.code


def _require_quantity(state: TreeState, link_id: str) -> Item:
    item = state.get_item(link_id)
    if item is None:
        raise InvalidPath(f"No item with identifier {link_id!r}", link_id=link_id)
    if item.type != ItemType.QUANTITY:
        raise ValueError(f"Item {link_id!r} is a {item.type.value} item, not a quantity")
    return item


def set_quantity_unit_type(state: TreeState, link_id: str, unit_type: str) -> TreeState:
    """
    Apply a selector choice to a quantity item.

    NOT_SELECTED removes the unit, CUSTOM starts an empty custom unit under a
    fresh system, and a code from QUANTITY_UNIT_TYPES sets that unit.
    """
    _require_quantity(state, link_id)
    logger.debug("set_quantity_unit_type %s %s", link_id, unit_type)
    if unit_type == QUANTITY_UNIT_TYPE_NOT_SELECTED.code:
        return remove_extension(state, link_id, UNIT_URL)
    if unit_type == QUANTITY_UNIT_TYPE_CUSTOM.code:
        coding = Coding(code="", display="", system=create_uri_id())
        return set_extension(state, link_id, UnitExtension(coding))
    predefined = get_predefined_unit(unit_type)
    if predefined is None:
        raise ValueError(f"Unknown unit type: {unit_type!r}")
    return set_extension(state, link_id, UnitExtension(predefined))


def update_custom_unit(
    state: TreeState,
    link_id: str,
    code: Optional[str] = None,
    display: Optional[str] = None,
    system: Optional[str] = None,
) -> TreeState:
    """Edit one or more parts of a custom unit; arguments left as None are kept."""
    item = _require_quantity(state, link_id)
    unit = get_unit(item)
    if unit is None:
        raise ValueError(f"Item {link_id!r} has no unit to edit")
    changes = {k: v for k, v in (("code", code), ("display", display), ("system", system)) if v is not None}
    return set_extension(state, link_id, UnitExtension(replace(unit, **changes)))
