"""
Demo: Edit the example consent questionnaire, validate it, and export it.
"""

from qtree.examples import build_example_questionnaire
from qtree.codec import encode_translation, to_json, to_yaml
from qtree.model import ItemType, create_item
from qtree.mutations import (
    add_language,
    delete_item,
    insert_item,
    update_item_field,
    update_item_translation,
)
from qtree.cache import ValidationCache
import json


def print_diagnostics(title, diagnostics):
    """Pretty-print a list of Diagnostics."""
    print()
    print("=" * 70)
    print(title)
    print("=" * 70)
    if not diagnostics:
        print("✨ NO DIAGNOSTICS - Questionnaire looks clean!")
        return
    for i, d in enumerate(diagnostics, 1):
        lang = f" [{d.language}]" if d.language else ""
        print(f"  {i}. {d.link_id or '(questionnaire)'}.{d.field}{lang}: {d.message}")


def print_tree(state):
    print()
    print("🌳 ORDER TREE")
    for path, node in state.iter_preorder():
        item = state.get_item(node.link_id)
        label = f"{item.type.value}: {item.text}" if item else "(missing)"
        print(f"  {'  ' * len(path)}{node.link_id}  [{label}]")


if __name__ == "__main__":
    cache = ValidationCache()

    state = build_example_questionnaire()
    print_tree(state)
    print_diagnostics("EXAMPLE QUESTIONNAIRE", cache.validate(state))

    # A display item cannot be required, and deleting "agree" leaves
    # the conditions that depend on it dangling
    notice = create_item(ItemType.DISPLAY, text="Thank you!", link_id="thanks")
    state = insert_item(state, notice)
    state = update_item_field(state, "thanks", "required", True)
    state = delete_item(state, "agree", ["consent"])
    print_tree(state)
    print_diagnostics("AFTER EDITS", cache.validate(state))

    # Partial Swedish translation: missing texts are reported per language
    state = add_language(state, "sv-SE")
    state = update_item_translation(state, "sv-SE", "intro", "text", "Det här formuläret frågar om samtycke.")
    print_diagnostics("WITH sv-SE TRANSLATION", cache.validate(state))

    print()
    print(json.dumps(encode_translation(state, "sv-SE")["item"][0], indent=2, ensure_ascii=False))

    with open("example_questionnaire.json", "w") as f:
        f.write(to_json(state))
    with open("example_questionnaire.yaml", "w") as f:
        f.write(to_yaml(state))
    print(f"✅ Questionnaire exported to example_questionnaire.json and example_questionnaire.yaml")
