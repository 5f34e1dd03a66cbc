"""
Tests for option list editing helpers.
"""

from qtree.answer_options import (
    add_empty_option,
    create_answer_option,
    remove_option,
    reorder_options,
    slugify_code,
    update_option_code,
    update_option_display,
    update_option_system,
)
from qtree.examples import build_example_questionnaire
from qtree.model import AnswerOption
from qtree.mutations import update_item_field


def options():
    return (
        AnswerOption(id="1", code="a", display="A", system="urn:s"),
        AnswerOption(id="2", code="b", display="B", system="urn:s"),
        AnswerOption(id="3", code="c", display="C", system="urn:s"),
    )


def test_slugify_code():
    assert slugify_code("Not sure!") == "not-sure"
    assert slugify_code("Yes") == "yes"


def test_create_answer_option():
    option = create_answer_option("urn:s")
    assert option.system == "urn:s"
    assert option.code == "" and option.display == ""


def test_add_empty_option_reuses_system():
    result = add_empty_option(options())
    assert len(result) == 4
    assert result[-1].system == "urn:s"
    assert result[-1].id not in {"1", "2", "3"}


def test_add_empty_option_to_empty_list():
    (option,) = add_empty_option((), system_prefix="urn:test:")
    assert option.system.startswith("urn:test:")


def test_update_display_keeps_code_unless_forced():
    result = update_option_display(options(), "2", "Maybe later")
    assert result[1].display == "Maybe later"
    assert result[1].code == "b"

    forced = update_option_display(options(), "2", "Maybe later", force_update_code=True)
    assert forced[1].code == "maybe-later"


def test_update_code_and_system():
    assert update_option_code(options(), "3", "z")[2].code == "z"
    assert {o.system for o in update_option_system(options(), "urn:new")} == {"urn:new"}


def test_remove_option():
    assert [o.id for o in remove_option(options(), "2")] == ["1", "3"]


def test_reorder_options():
    assert [o.id for o in reorder_options(options(), 2, 0)] == ["2", "3", "1"]
    assert [o.id for o in reorder_options(options(), 0, 2)] == ["3", "1", "2"]


def test_helpers_compose_with_mutations():
    """Option edits are stored through update_item_field."""
    state = build_example_questionnaire()
    current = state.items["contact"].answer_options
    state = update_item_field(state, "contact", "answer_options", remove_option(current, "contact-post"))
    assert [o.code for o in state.items["contact"].answer_options] == ["email", "phone"]
