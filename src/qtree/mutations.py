"""
Mutation Engine: every edit intent as a pure function over TreeState.

Each operation:
    - takes the current TreeState plus primitive arguments
    - returns a NEW TreeState; the input is never modified
    - is all-or-nothing: it validates everything it needs before building
      the result, so a raised exception leaves the caller's state as it was

Operations are permissive about policy (a display item may be marked
required, an enable-when may point at a deleted item). Policy violations are
the validator's business, reported as diagnostics.

ARCHITECTURAL RULE:
    No caching, no I/O, no global state in here.
    Callers own storage, scheduling and validation timing.
"""
from __future__ import annotations

import logging
from dataclasses import fields, replace
from typing import Any, Dict, Iterable, Optional, Sequence, Set, Union

from qtree.config import get_config
from qtree.errors import DuplicateIdentifier, InvalidPath
from qtree.extensions import CONSTRAINT_EXTENSIONS, Extension, drop_extension, put_extension
from qtree.ids import create_id, is_valid_link_id
from qtree.model import (
    METADATA_FIELDS,
    TRANSLATABLE_ITEM_PROPERTIES,
    TRANSLATABLE_METADATA_PROPERTIES,
    Item,
    ItemStore,
    ItemTranslation,
    ItemType,
    QuestionnaireMetadata,
    TranslationOverlay,
    TreeState,
)
from qtree.tree import (
    OrderNode,
    collect_ids,
    find_node,
    insert_node,
    remove_node,
    rename_nodes,
    resolve_path,
    sibling_index,
)
from qtree.value_sets import find_value_set, predefined_value_sets

logger = logging.getLogger(__name__)

_ITEM_FIELDS = {f.name for f in fields(Item)}

_TUPLE_FIELDS = {"enable_when", "extensions", "code", "initial", "answer_options"}

# FHIR property names accepted as aliases by update_item_field
FIELD_ALIASES: Dict[str, str] = {
    "linkId": "link_id",
    "readOnly": "read_only",
    "minOccurs": "min_occurs",
    "maxOccurs": "max_occurs",
    "minLength": "min_length",
    "maxLength": "max_length",
    "enableWhen": "enable_when",
    "enableBehavior": "enable_behavior",
    "extension": "extensions",
    "answerOption": "answer_options",
    "answerValueSet": "answer_value_set",
}


# ============================================================================
# Internal helpers
# ============================================================================

def _require_item(state: TreeState, link_id: str) -> Item:
    item = state.items.get(link_id)
    if item is None:
        raise InvalidPath(f"No item with identifier {link_id!r}", link_id=link_id)
    return item


def _allocate_id(taken: Set[str]) -> str:
    link_id = create_id()
    while link_id in taken:
        link_id = create_id()
    return link_id


def _without_translations(languages: Dict[str, TranslationOverlay], removed: Iterable[str]) -> Dict[str, TranslationOverlay]:
    removed = set(removed)
    result = {}
    for code, overlay in languages.items():
        if removed & set(overlay.items):
            overlay = replace(
                overlay,
                items={k: v for k, v in overlay.items.items() if k not in removed},
            )
        result[code] = overlay
    return result


def _retarget_conditions(item: Item, old_id: str, new_id: str) -> Item:
    if not any(ew.question == old_id for ew in item.enable_when):
        return item
    conditions = tuple(
        replace(ew, question=new_id) if ew.question == old_id else ew
        for ew in item.enable_when
    )
    return replace(item, enable_when=conditions)


def is_link_id_unique(state: TreeState, link_id: str) -> bool:
    """Uniqueness pre-check used before renaming or inserting with a chosen identifier."""
    return link_id not in state.all_link_ids()


# ============================================================================
# Structural operations
# ============================================================================

def insert_item(
    state: TreeState,
    item: Item,
    parent_path: Sequence[str] = (),
    index: Optional[int] = None,
) -> TreeState:
    """
    Add item to the store and place it at index under parent_path.

    An item without a link_id gets a freshly allocated one. An index past
    the end of the sibling list (or None) appends.

    Raises:
        InvalidPath: parent_path does not resolve
        DuplicateIdentifier: item.link_id is already used
    """
    parent_path = tuple(parent_path)
    resolve_path(state.order, parent_path)

    link_id = item.link_id
    if not link_id:
        link_id = _allocate_id(state.all_link_ids())
        item = replace(item, link_id=link_id)
    elif not is_link_id_unique(state, link_id):
        raise DuplicateIdentifier(link_id)

    items = state.items.copy()
    items.set(link_id, item)
    order = insert_node(state.order, parent_path, OrderNode(link_id=link_id), index)

    logger.debug("insert_item %s under %s at %s", link_id, list(parent_path), index)
    return replace(state, items=items, order=order)


def delete_item(state: TreeState, link_id: str, parent_path: Sequence[str] = ()) -> TreeState:
    """
    Remove the node link_id under parent_path together with its whole subtree,
    their store entries and their translation entries.

    Enable-when conditions elsewhere that target a removed item are left
    untouched; the validator reports them as dangling.
    """
    parent_path = tuple(parent_path)
    order, detached = remove_node(state.order, parent_path, link_id)
    removed = collect_ids([detached])

    items = state.items.copy()
    for removed_id in removed:
        items.remove(removed_id)

    logger.debug("delete_item %s (%d items removed)", link_id, len(removed))
    return replace(
        state,
        items=items,
        order=order,
        languages=_without_translations(state.languages, removed),
    )


def duplicate_item(state: TreeState, link_id: str, parent_path: Sequence[str] = ()) -> TreeState:
    """
    Deep-copy the subtree rooted at link_id and insert the copy right after it.

    Every copied node gets a fresh identifier and every copied option a fresh
    sub-identifier. Field content is otherwise identical, including
    enable-when targets, which keep pointing at their original items.
    Translations are copied onto the new identifiers.
    """
    parent_path = tuple(parent_path)
    node = find_node(state.order, parent_path, link_id)
    position = sibling_index(state.order, parent_path, link_id)

    taken = state.all_link_ids()
    id_map: Dict[str, str] = {}
    option_maps: Dict[str, Dict[str, str]] = {}

    def copy_node(original: OrderNode) -> OrderNode:
        new_id = _allocate_id(taken)
        taken.add(new_id)
        id_map[original.link_id] = new_id
        return OrderNode(
            link_id=new_id,
            children=tuple(copy_node(child) for child in original.children),
        )

    copy = copy_node(node)

    items = state.items.copy()
    for old_id, new_id in id_map.items():
        original = _require_item(state, old_id)
        option_map = {opt.id: create_id() for opt in original.answer_options}
        option_maps[old_id] = option_map
        options = tuple(replace(opt, id=option_map[opt.id]) for opt in original.answer_options)
        items.set(new_id, replace(original, link_id=new_id, answer_options=options))

    languages = {}
    for code, overlay in state.languages.items():
        copied = dict(overlay.items)
        for old_id, new_id in id_map.items():
            translation = overlay.items.get(old_id)
            if translation is None:
                continue
            option_map = option_maps[old_id]
            copied[new_id] = replace(
                translation,
                answer_options={
                    option_map.get(opt_id, opt_id): display
                    for opt_id, display in translation.answer_options.items()
                },
            )
        languages[code] = replace(overlay, items=copied)

    order = insert_node(state.order, parent_path, copy, position + 1)

    logger.debug("duplicate_item %s -> %s (%d items)", link_id, copy.link_id, len(id_map))
    return replace(state, items=items, order=order, languages=languages)


def move_item(
    state: TreeState,
    link_id: str,
    new_parent_path: Sequence[str],
    old_parent_path: Sequence[str],
    index: Optional[int] = None,
) -> TreeState:
    """
    Detach link_id (with its subtree) from old_parent_path and reinsert it at
    index under new_parent_path. Item content is untouched.

    Raises:
        InvalidPath: either path is stale, or new_parent_path lies inside
                     the subtree being moved
    """
    new_parent_path = tuple(new_parent_path)
    old_parent_path = tuple(old_parent_path)
    if link_id in new_parent_path:
        raise InvalidPath(
            f"Cannot move {link_id!r} into its own subtree",
            path=new_parent_path,
            link_id=link_id,
        )

    order, node = remove_node(state.order, old_parent_path, link_id)
    order = insert_node(order, new_parent_path, node, index)

    logger.debug("move_item %s: %s -> %s at %s", link_id, list(old_parent_path), list(new_parent_path), index)
    return replace(state, order=order)


def reorder_item(state: TreeState, link_id: str, parent_path: Sequence[str], index: int) -> TreeState:
    """Move link_id to index among its own siblings."""
    return move_item(state, link_id, parent_path, parent_path, index)


def rename_item(state: TreeState, old_id: str, new_id: str, parent_path: Sequence[str] = ()) -> TreeState:
    """
    Change an item identifier everywhere: Order Tree, ItemStore, every
    enable-when target across the document, and translation overlay keys.

    Raises:
        InvalidPath: old_id is not a child of parent_path
        DuplicateIdentifier: new_id is already used
        ValueError: new_id is not a usable identifier
    """
    parent_path = tuple(parent_path)
    find_node(state.order, parent_path, old_id)
    if new_id == old_id:
        return state
    if not is_valid_link_id(new_id):
        raise ValueError(f"Invalid identifier: {new_id!r}")
    if not is_link_id_unique(state, new_id):
        raise DuplicateIdentifier(new_id)

    items = ItemStore()
    for key, item in state.items.items():
        if key == old_id:
            key = new_id
            item = replace(item, link_id=new_id)
        items.set(key, _retarget_conditions(item, old_id, new_id))

    languages = {}
    for code, overlay in state.languages.items():
        if old_id in overlay.items:
            overlay = replace(
                overlay,
                items={(new_id if k == old_id else k): v for k, v in overlay.items.items()},
            )
        languages[code] = overlay

    logger.debug("rename_item %s -> %s", old_id, new_id)
    return replace(
        state,
        items=items,
        order=rename_nodes(state.order, old_id, new_id),
        languages=languages,
    )


# ============================================================================
# Content operations
# ============================================================================

def update_item_field(state: TreeState, link_id: str, field_name: str, value: Any) -> TreeState:
    """
    Replace one field of one item. No structural change.

    field_name is an Item attribute name or its FHIR spelling
    ("readOnly", "enableWhen", ...). Lists become tuples and type codes
    become ItemType.

    Raises:
        InvalidPath: no item link_id
        ValueError: unknown field, link_id (use rename_item), bad type code
    """
    item = _require_item(state, link_id)
    field_name = FIELD_ALIASES.get(field_name, field_name)
    if field_name == "link_id":
        raise ValueError("Identifiers are changed with rename_item")
    if field_name not in _ITEM_FIELDS:
        raise ValueError(f"Unknown item field: {field_name!r}")

    if field_name == "type" and not isinstance(value, ItemType):
        value = ItemType(value)
    elif field_name in _TUPLE_FIELDS:
        value = tuple(value or ())
    elif field_name == "passthrough":
        value = dict(value or {})

    items = state.items.copy()
    items.set(link_id, replace(item, **{field_name: value}))

    logger.debug("update_item_field %s.%s", link_id, field_name)
    return replace(state, items=items)


def set_or_remove_extension(state: TreeState, link_id: str, entry: Union[Extension, str]) -> TreeState:
    """
    Add/replace one metadata entry, or remove one by URL when given a string.

    Entries are a keyed set: setting an entry whose URL is already present
    replaces it in place. Constraint extensions (minOccurs, maxOccurs, regex,
    minLength) are written to the matching Item field instead.
    """
    item = _require_item(state, link_id)

    if isinstance(entry, str):
        if entry in CONSTRAINT_EXTENSIONS:
            field_name, _ = CONSTRAINT_EXTENSIONS[entry]
            item = replace(item, **{field_name: None})
        else:
            item = replace(item, extensions=drop_extension(item.extensions, entry))
    elif entry.url in CONSTRAINT_EXTENSIONS:
        field_name, prop = CONSTRAINT_EXTENSIONS[entry.url]
        payload = getattr(entry, "payload", {})
        item = replace(item, **{field_name: payload.get(prop)})
    else:
        item = replace(item, extensions=put_extension(item.extensions, entry))

    items = state.items.copy()
    items.set(link_id, item)

    logger.debug("set_or_remove_extension %s %s", link_id, entry if isinstance(entry, str) else entry.url)
    return replace(state, items=items)


def set_extension(state: TreeState, link_id: str, entry: Extension) -> TreeState:
    return set_or_remove_extension(state, link_id, entry)


def remove_extension(state: TreeState, link_id: str, url: str) -> TreeState:
    return set_or_remove_extension(state, link_id, url)


def update_metadata(state: TreeState, field_name: str, value: Any) -> TreeState:
    """Replace one questionnaire-level field (title, name, status, ...)."""
    if field_name not in METADATA_FIELDS:
        raise ValueError(f"Unknown metadata field: {field_name!r}")
    return replace(state, metadata=replace(state.metadata, **{field_name: value}))


def reset_state(metadata: Optional[QuestionnaireMetadata] = None) -> TreeState:
    """A fresh, empty editing session."""
    if metadata is None:
        metadata = QuestionnaireMetadata(language=get_config().default_language, status="draft")
    return TreeState(metadata=metadata)


# ============================================================================
# Contained value sets
# ============================================================================

def add_contained_value_set(state: TreeState, value_set: Dict[str, Any]) -> TreeState:
    """
    Append a ValueSet to the contained resources.

    A value set without an id gets a fresh one. Raises DuplicateIdentifier
    if a contained resource already uses the id.
    """
    if value_set.get("resourceType") != "ValueSet":
        raise ValueError("Only ValueSet resources can be contained")
    value_set = dict(value_set)
    taken = {res.get("id") for res in state.contained}
    if not value_set.get("id"):
        value_set["id"] = _allocate_id(taken)
    elif value_set["id"] in taken:
        raise DuplicateIdentifier(value_set["id"])
    logger.debug("add_contained_value_set %s", value_set["id"])
    return replace(state, contained=tuple(state.contained) + (value_set,))


def remove_contained_value_set(state: TreeState, value_set_id: str) -> TreeState:
    """
    Drop one contained ValueSet.

    Items still referencing it are left alone; the validator reports them
    as MISSING_VALUE_SET.
    """
    value_set_id = value_set_id.lstrip("#")
    if find_value_set(state.contained, value_set_id) is None:
        raise InvalidPath(f"No contained value set {value_set_id!r}", link_id=value_set_id)
    contained = tuple(
        res for res in state.contained
        if not (res.get("resourceType") == "ValueSet" and res.get("id") == value_set_id)
    )
    logger.debug("remove_contained_value_set %s", value_set_id)
    return replace(state, contained=contained)


def add_predefined_value_sets(state: TreeState) -> TreeState:
    """Contain every predefined value set that is not contained yet."""
    for value_set in predefined_value_sets():
        if find_value_set(state.contained, value_set["id"]) is None:
            state = add_contained_value_set(state, value_set)
    return state


# ============================================================================
# Translation overlays
# ============================================================================

def _require_language(state: TreeState, language: str) -> TranslationOverlay:
    overlay = state.languages.get(language)
    if overlay is None:
        raise ValueError(f"Language not added: {language!r}")
    return overlay


def _with_overlay(state: TreeState, language: str, overlay: TranslationOverlay) -> TreeState:
    languages = dict(state.languages)
    languages[language] = overlay
    return replace(state, languages=languages)


def add_language(state: TreeState, language: str) -> TreeState:
    """Start an empty translation overlay. Adding an existing language is a no-op."""
    if language in state.languages:
        return state
    logger.debug("add_language %s", language)
    return _with_overlay(state, language, TranslationOverlay())


def remove_language(state: TreeState, language: str) -> TreeState:
    languages = {k: v for k, v in state.languages.items() if k != language}
    return replace(state, languages=languages)


def update_item_translation(
    state: TreeState,
    language: str,
    link_id: str,
    property_name: str,
    value: str,
) -> TreeState:
    """Set one translated item property (text, prefix, sublabel, ...)."""
    overlay = _require_language(state, language)
    _require_item(state, link_id)
    if property_name not in TRANSLATABLE_ITEM_PROPERTIES:
        raise ValueError(f"Not a translatable item property: {property_name!r}")

    translation = overlay.items.get(link_id, ItemTranslation())
    items = dict(overlay.items)
    items[link_id] = replace(translation, **{property_name: value})
    return _with_overlay(state, language, replace(overlay, items=items))


def update_option_translation(
    state: TreeState,
    language: str,
    link_id: str,
    option_id: str,
    display: str,
) -> TreeState:
    overlay = _require_language(state, language)
    item = _require_item(state, link_id)
    if not any(opt.id == option_id for opt in item.answer_options):
        raise InvalidPath(f"Item {link_id!r} has no option {option_id!r}", link_id=link_id)

    translation = overlay.items.get(link_id, ItemTranslation())
    options = dict(translation.answer_options)
    options[option_id] = display
    items = dict(overlay.items)
    items[link_id] = replace(translation, answer_options=options)
    return _with_overlay(state, language, replace(overlay, items=items))


def update_metadata_translation(state: TreeState, language: str, property_name: str, value: str) -> TreeState:
    overlay = _require_language(state, language)
    if property_name not in TRANSLATABLE_METADATA_PROPERTIES:
        raise ValueError(f"Not a translatable metadata property: {property_name!r}")
    metadata = dict(overlay.metadata)
    metadata[property_name] = value
    return _with_overlay(state, language, replace(overlay, metadata=metadata))


__all__ = [
    "insert_item",
    "delete_item",
    "duplicate_item",
    "move_item",
    "reorder_item",
    "rename_item",
    "is_link_id_unique",
    "update_item_field",
    "set_or_remove_extension",
    "set_extension",
    "remove_extension",
    "update_metadata",
    "reset_state",
    "add_contained_value_set",
    "remove_contained_value_set",
    "add_predefined_value_sets",
    "add_language",
    "remove_language",
    "update_item_translation",
    "update_option_translation",
    "update_metadata_translation",
]
