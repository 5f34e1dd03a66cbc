"""
Helpers for editing an item's option list.

All functions take a tuple of AnswerOption and return a new tuple; the
caller stores the result with update_item_field(state, id, "answer_options", ...).
"""

import re
from dataclasses import replace
from typing import Optional, Sequence, Tuple

from qtree.ids import create_uri_id
from qtree.model import AnswerOption

Options = Tuple[AnswerOption, ...]


def slugify_code(display: str) -> str:
    """Derive an option code from its display text: "Not sure!" -> "not-sure"."""
    cleaned = re.sub(r"[^\w\s-]", "", display)
    return re.sub(r"\s", "-", cleaned).lower()


def create_answer_option(system: Optional[str] = None) -> AnswerOption:
    return AnswerOption.create(system)


def add_empty_option(options: Sequence[AnswerOption], system_prefix: str = "urn:uuid:") -> Options:
    """Append a blank option, reusing the list's coding system or allocating one."""
    system = options[0].system if options else create_uri_id(system_prefix)
    return tuple(options) + (AnswerOption.create(system),)


def update_option_display(
    options: Sequence[AnswerOption],
    option_id: str,
    display: str,
    force_update_code: bool = False,
) -> Options:
    """Set the display of one option; optionally regenerate its code from the display."""
    result = []
    for option in options:
        if option.id == option_id:
            code = slugify_code(display) if force_update_code else option.code
            option = replace(option, display=display, code=code)
        result.append(option)
    return tuple(result)


def update_option_code(options: Sequence[AnswerOption], option_id: str, code: str) -> Options:
    return tuple(replace(o, code=code) if o.id == option_id else o for o in options)


def update_option_system(options: Sequence[AnswerOption], system: str) -> Options:
    return tuple(replace(o, system=system) for o in options)


def remove_option(options: Sequence[AnswerOption], option_id: str) -> Options:
    return tuple(o for o in options if o.id != option_id)


def reorder_options(options: Sequence[AnswerOption], to_index: int, from_index: int) -> Options:
    """Move the option at from_index so it ends up at to_index."""
    items = list(options)
    moved = items.pop(from_index)
    items.insert(to_index, moved)
    return tuple(items)
