"""
Codec between the normalized model and FHIR Questionnaire JSON.

encode() walks the Order Tree in pre-order and nests each node's children
under its "item" array, so sibling order in the output is exactly the
Order Tree's sibling order. decode() is the inverse walk.

Unknown properties (on items, on the questionnaire, inside unmodeled
extensions) are preserved verbatim in passthrough buckets and re-emitted.
This module intentionally keeps the JSON shape explicit: one pair of
*_to_dict / *_from_dict functions per object.
"""
from __future__ import annotations

import json
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import yaml

from qtree.errors import InvalidPath, MalformedDocument
from qtree.extensions import (
    CONSTRAINT_EXTENSIONS,
    ITEM_CONTROL_SYSTEM,
    EntryFormatExtension,
    Extension,
    HiddenExtension,
    ItemControlExtension,
    MaxSizeExtension,
    PassthroughExtension,
    RepeatsTextExtension,
    SublabelExtension,
    UnitExtension,
    ValidationTextExtension,
    find_extension,
    put_extension,
)
from qtree.ids import create_id
from qtree.model import (
    METADATA_FIELDS,
    TEXT_INPUT_TYPES,
    TRANSLATABLE_ITEM_PROPERTIES,
    TRANSLATABLE_METADATA_PROPERTIES,
    AnswerOption,
    Item,
    ItemStore,
    ItemTranslation,
    ItemType,
    QuestionnaireMetadata,
    TranslationOverlay,
    TreeState,
    item_translatable_values,
)
from qtree.tree import Forest, OrderNode
from qtree.values import AnswerKind, AnswerValue, Coding, EnableWhen, Operator, Quantity

logger = logging.getLogger(__name__)

RESOURCE_TYPE = "Questionnaire"

# JSON property -> Item attribute for plain scalar properties
_SCALAR_ITEM_FIELDS = (
    ("text", "text"),
    ("prefix", "prefix"),
    ("required", "required"),
    ("repeats", "repeats"),
    ("readOnly", "read_only"),
    ("maxLength", "max_length"),
    ("enableBehavior", "enable_behavior"),
    ("answerValueSet", "answer_value_set"),
)

_KNOWN_ITEM_KEYS = {
    "linkId", "type", "item", "extension", "code", "enableWhen",
    "initial", "answerOption",
} | {key for key, _ in _SCALAR_ITEM_FIELDS}

_KNOWN_DOCUMENT_KEYS = {"resourceType", "item", "extension", "contained"} | set(METADATA_FIELDS)


# ============================================================================
# Value objects
# ============================================================================

def _unread(d: Dict[str, Any], read: Set[str]) -> Dict[str, Any]:
    """Properties of d the decoder did not consume, kept for re-emission."""
    return {k: v for k, v in d.items() if k not in read}


def _with_passthrough(d: Dict[str, Any], passthrough: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in passthrough.items():
        d.setdefault(key, value)
    return d


_CODING_KEYS = ("id", "system", "code", "display")
_QUANTITY_KEYS = ("value", "unit", "system", "code")


def coding_to_dict(c: Coding) -> Dict[str, Any]:
    d = {key: getattr(c, key) for key in _CODING_KEYS if getattr(c, key) is not None}
    return _with_passthrough(d, c.passthrough)


def coding_from_dict(d: Any) -> Coding:
    if not isinstance(d, dict):
        raise MalformedDocument(f"Expected a Coding object, got {type(d).__name__}")
    return Coding(
        code=d.get("code"),
        system=d.get("system"),
        display=d.get("display"),
        id=d.get("id"),
        passthrough=_unread(d, set(_CODING_KEYS)),
    )


def quantity_to_dict(q: Quantity) -> Dict[str, Any]:
    d = {key: getattr(q, key) for key in _QUANTITY_KEYS if getattr(q, key) is not None}
    return _with_passthrough(d, q.passthrough)


def quantity_from_dict(d: Any) -> Quantity:
    if not isinstance(d, dict):
        raise MalformedDocument(f"Expected a Quantity object, got {type(d).__name__}")
    return Quantity(
        value=d.get("value"),
        unit=d.get("unit"),
        system=d.get("system"),
        code=d.get("code"),
        passthrough=_unread(d, set(_QUANTITY_KEYS)),
    )


def answer_to_dict(prefix: str, a: AnswerValue) -> Dict[str, Any]:
    """{prefix + kind: value}, e.g. answer_to_dict("value", ...) -> {"valueBoolean": True}."""
    if a.kind == AnswerKind.CODING:
        value = coding_to_dict(a.value)
    elif a.kind == AnswerKind.QUANTITY:
        value = quantity_to_dict(a.value)
    elif a.kind in (AnswerKind.REFERENCE, AnswerKind.ATTACHMENT):
        value = dict(a.value)
    else:
        value = a.value
    return {prefix + a.kind.value: value}


def answer_from_dict(prefix: str, d: Dict[str, Any]) -> Optional[AnswerValue]:
    """The first prefix[x] property of d as an AnswerValue, or None if there is none."""
    for kind in AnswerKind:
        key = prefix + kind.value
        if key not in d:
            continue
        raw = d[key]
        if kind == AnswerKind.CODING:
            return AnswerValue(kind, coding_from_dict(raw))
        if kind == AnswerKind.QUANTITY:
            return AnswerValue(kind, quantity_from_dict(raw))
        if kind in (AnswerKind.REFERENCE, AnswerKind.ATTACHMENT):
            if not isinstance(raw, dict):
                raise MalformedDocument(f"{key} must be an object")
            return AnswerValue(kind, dict(raw))
        return AnswerValue(kind, raw)
    return None


def enable_when_to_dict(ew: EnableWhen) -> Dict[str, Any]:
    d: Dict[str, Any] = {"question": ew.question, "operator": ew.operator.value}
    if ew.answer is not None:
        d.update(answer_to_dict("answer", ew.answer))
    return _with_passthrough(d, ew.passthrough)


def enable_when_from_dict(d: Any, link_id: str) -> EnableWhen:
    if not isinstance(d, dict) or not isinstance(d.get("question"), str):
        raise MalformedDocument(f"Item {link_id!r} has an enableWhen without a question", link_id=link_id)
    try:
        operator = Operator(d.get("operator"))
    except ValueError:
        raise MalformedDocument(f"Item {link_id!r} has unknown enableWhen operator {d.get('operator')!r}", link_id=link_id)
    answer = answer_from_dict("answer", d)
    read = {"question", "operator"}
    if answer is not None:
        read.add("answer" + answer.kind.value)
    return EnableWhen(question=d["question"], operator=operator, answer=answer, passthrough=_unread(d, read))


# ============================================================================
# Extensions
# ============================================================================

def extension_to_dict(ext: Extension) -> Dict[str, Any]:
    if isinstance(ext, PassthroughExtension):
        d = {"url": ext.uri}
        d.update(ext.payload)
        return d
    if isinstance(ext, ItemControlExtension):
        return {
            "url": ext.url,
            "valueCodeableConcept": {"coding": [{"system": ITEM_CONTROL_SYSTEM, "code": ext.code}]},
        }
    if isinstance(ext, SublabelExtension):
        return {"url": ext.url, "valueMarkdown": ext.markdown}
    if isinstance(ext, (ValidationTextExtension, EntryFormatExtension, RepeatsTextExtension)):
        return {"url": ext.url, "valueString": ext.text}
    if isinstance(ext, MaxSizeExtension):
        return {"url": ext.url, "valueDecimal": ext.megabytes}
    if isinstance(ext, HiddenExtension):
        return {"url": ext.url, "valueBoolean": ext.hidden}
    if isinstance(ext, UnitExtension):
        return {"url": ext.url, "valueCoding": coding_to_dict(ext.coding)}
    raise TypeError(f"Unsupported Extension type: {type(ext)}")


def _known_extension_from_dict(d: Dict[str, Any]) -> Optional[Extension]:
    url = d.get("url")
    try:
        if url == ItemControlExtension.URL:
            return ItemControlExtension(code=d["valueCodeableConcept"]["coding"][0]["code"])
        if url == SublabelExtension.URL:
            return SublabelExtension(markdown=d["valueMarkdown"])
        if url == ValidationTextExtension.URL:
            return ValidationTextExtension(text=d["valueString"])
        if url == EntryFormatExtension.URL:
            return EntryFormatExtension(text=d["valueString"])
        if url == RepeatsTextExtension.URL:
            return RepeatsTextExtension(text=d["valueString"])
        if url == MaxSizeExtension.URL:
            return MaxSizeExtension(megabytes=d["valueDecimal"])
        if url == HiddenExtension.URL:
            return HiddenExtension(hidden=d["valueBoolean"])
        if url == UnitExtension.URL:
            return UnitExtension(coding=coding_from_dict(d["valueCoding"]))
    except (KeyError, IndexError, TypeError, MalformedDocument):
        return None
    return None


def extension_from_dict(d: Any) -> Extension:
    """
    Parse one extension. A known kind is used only when re-encoding it
    reproduces d exactly; anything else is kept as a PassthroughExtension.
    """
    if not isinstance(d, dict) or not isinstance(d.get("url"), str):
        raise MalformedDocument("Extension without a url")
    known = _known_extension_from_dict(d)
    if known is not None and extension_to_dict(known) == d:
        return known
    return PassthroughExtension(uri=d["url"], payload={k: v for k, v in d.items() if k != "url"})


def _split_extensions(raw: Any, link_id: Optional[str]) -> Tuple[Dict[str, Any], Tuple[Extension, ...]]:
    """Separate constraint extensions (returned as Item field values) from the rest."""
    if raw is None:
        return {}, ()
    if not isinstance(raw, list):
        raise MalformedDocument("extension must be an array", link_id=link_id)
    constraints: Dict[str, Any] = {}
    extensions: Tuple[Extension, ...] = ()
    for entry in raw:
        ext = extension_from_dict(entry)
        if link_id is not None and ext.url in CONSTRAINT_EXTENSIONS:
            field_name, prop = CONSTRAINT_EXTENSIONS[ext.url]
            payload = getattr(ext, "payload", {})
            if set(payload) == {prop}:
                constraints[field_name] = payload[prop]
                continue
        extensions = put_extension(extensions, ext)
    return constraints, extensions


# ============================================================================
# Items
# ============================================================================

def option_to_dict(o: AnswerOption) -> Dict[str, Any]:
    if o.value is not None:
        d: Dict[str, Any] = {"id": o.id}
        d.update(answer_to_dict("value", o.value))
    else:
        coding: Dict[str, Any] = {"id": o.id}
        if o.system is not None:
            coding["system"] = o.system
        # empty strings are not valid FHIR values
        if o.code:
            coding["code"] = o.code
        if o.display:
            coding["display"] = o.display
        d = {"valueCoding": _with_passthrough(coding, o.coding_passthrough)}
    if o.initial_selected is not None:
        d["initialSelected"] = o.initial_selected
    return _with_passthrough(d, o.passthrough)


def option_from_dict(d: Any, link_id: str) -> AnswerOption:
    if not isinstance(d, dict):
        raise MalformedDocument(f"Item {link_id!r} has a malformed answerOption", link_id=link_id)
    initial_selected = d.get("initialSelected")
    coding = d.get("valueCoding")
    if coding is not None:
        if not isinstance(coding, dict):
            raise MalformedDocument(f"Item {link_id!r} has a malformed valueCoding", link_id=link_id)
        return AnswerOption(
            id=coding.get("id") or create_id(),
            code=coding.get("code") or "",
            display=coding.get("display") or "",
            system=coding.get("system"),
            initial_selected=initial_selected,
            passthrough=_unread(d, {"valueCoding", "initialSelected"}),
            coding_passthrough=_unread(coding, set(_CODING_KEYS)),
        )
    value = answer_from_dict("value", d)
    if value is None:
        raise MalformedDocument(f"Item {link_id!r} has an answerOption without a value", link_id=link_id)
    return AnswerOption(
        id=d.get("id") or create_id(),
        value=value,
        initial_selected=initial_selected,
        passthrough=_unread(d, {"id", "initialSelected", "value" + value.kind.value}),
    )


def item_to_dict(item: Item, children: List[Dict[str, Any]]) -> Dict[str, Any]:
    d: Dict[str, Any] = {"linkId": item.link_id, "type": item.type.value}
    if item.text:
        d["text"] = item.text
    if item.prefix is not None:
        d["prefix"] = item.prefix

    extensions = [extension_to_dict(e) for e in item.extensions]
    for url, (field_name, prop) in CONSTRAINT_EXTENSIONS.items():
        value = getattr(item, field_name)
        if value is not None:
            extensions.append({"url": url, prop: value})
    if extensions:
        d["extension"] = extensions

    if item.code:
        d["code"] = [coding_to_dict(c) for c in item.code]
    if item.enable_when:
        d["enableWhen"] = [enable_when_to_dict(ew) for ew in item.enable_when]
    for key, attr in _SCALAR_ITEM_FIELDS[2:]:
        value = getattr(item, attr)
        if value is not None:
            d[key] = value
    if item.answer_options:
        d["answerOption"] = [option_to_dict(o) for o in item.answer_options]
    if item.initial:
        d["initial"] = [answer_to_dict("value", a) for a in item.initial]
    if children:
        d["item"] = children
    return _with_passthrough(d, item.passthrough)


def item_from_dict(d: Dict[str, Any], link_id: str) -> Item:
    """Build an Item from one JSON item object (children are not read here)."""
    raw_type = d.get("type")
    try:
        item_type = ItemType(raw_type)
    except ValueError:
        raise MalformedDocument(f"Item {link_id!r} has unknown type {raw_type!r}", link_id=link_id)

    constraints, extensions = _split_extensions(d.get("extension"), link_id)

    def array(key: str) -> list:
        value = d.get(key) or []
        if not isinstance(value, list):
            raise MalformedDocument(f"Item {link_id!r}: {key} must be an array", link_id=link_id)
        return value

    options = tuple(option_from_dict(o, link_id) for o in array("answerOption"))
    option_ids = [o.id for o in options]
    if len(option_ids) != len(set(option_ids)):
        raise MalformedDocument(f"Item {link_id!r} reuses an answerOption id", link_id=link_id)

    initial = []
    for entry in array("initial"):
        value = answer_from_dict("value", entry) if isinstance(entry, dict) else None
        if value is None:
            raise MalformedDocument(f"Item {link_id!r} has an initial entry without a value", link_id=link_id)
        initial.append(value)

    scalars = {attr: d.get(key) for key, attr in _SCALAR_ITEM_FIELDS}
    scalars["text"] = scalars["text"] or ""

    return Item(
        link_id=link_id,
        type=item_type,
        enable_when=tuple(enable_when_from_dict(ew, link_id) for ew in array("enableWhen")),
        extensions=extensions,
        code=tuple(coding_from_dict(c) for c in array("code")),
        initial=tuple(initial),
        answer_options=options,
        passthrough={k: v for k, v in d.items() if k not in _KNOWN_ITEM_KEYS},
        **scalars,
        **constraints,
    )


# ============================================================================
# Documents
# ============================================================================

def metadata_to_dict(m: QuestionnaireMetadata) -> Dict[str, Any]:
    d: Dict[str, Any] = {"resourceType": RESOURCE_TYPE}
    for key in METADATA_FIELDS:
        value = getattr(m, key)
        if value is not None:
            d[key] = value
    if m.extensions:
        d["extension"] = [extension_to_dict(e) for e in m.extensions]
    return _with_passthrough(d, m.passthrough)


def metadata_from_dict(d: Dict[str, Any]) -> QuestionnaireMetadata:
    _, extensions = _split_extensions(d.get("extension"), None)
    return QuestionnaireMetadata(
        extensions=extensions,
        passthrough={k: v for k, v in d.items() if k not in _KNOWN_DOCUMENT_KEYS},
        **{key: d.get(key) for key in METADATA_FIELDS},
    )


def _encode_nodes(nodes: Forest, items: ItemStore) -> List[Dict[str, Any]]:
    encoded = []
    for node in nodes:
        item = items.get(node.link_id)
        if item is None:
            raise InvalidPath(f"Item {node.link_id!r} has no content to encode", link_id=node.link_id)
        encoded.append(item_to_dict(item, _encode_nodes(node.children, items)))
    return encoded


def encode(
    order: Forest,
    items: ItemStore,
    metadata: Optional[QuestionnaireMetadata] = None,
    contained: Sequence[Dict[str, Any]] = (),
) -> Dict[str, Any]:
    """
    Flatten the (Order Tree, ItemStore) pair into one nested Questionnaire.

    Raises:
        InvalidPath: a tree node has no ItemStore entry
    """
    d = metadata_to_dict(metadata or QuestionnaireMetadata())
    if contained:
        d["contained"] = [dict(res) for res in contained]
    d["item"] = _encode_nodes(order, items)
    return d


def encode_state(state: TreeState) -> Dict[str, Any]:
    return encode(state.order, state.items, state.metadata, state.contained)


def _declared_link_ids(raw_items: Any, found: Set[str]) -> None:
    if not isinstance(raw_items, list):
        return
    for raw in raw_items:
        if isinstance(raw, dict):
            if isinstance(raw.get("linkId"), str):
                found.add(raw["linkId"])
            _declared_link_ids(raw.get("item"), found)


def decode(document: Any) -> TreeState:
    """
    Build a TreeState from a Questionnaire document.

    Items without a linkId get a fresh identifier. Unknown properties are
    kept in passthrough buckets.

    Raises:
        MalformedDocument: not a Questionnaire object, malformed item arrays,
                           unknown item types, or a linkId used twice
    """
    if not isinstance(document, dict):
        raise MalformedDocument("A Questionnaire must be a JSON object")
    resource_type = document.get("resourceType", RESOURCE_TYPE)
    if resource_type != RESOURCE_TYPE:
        raise MalformedDocument(f"Expected resourceType {RESOURCE_TYPE!r}, got {resource_type!r}")

    contained = document.get("contained") or []
    if not isinstance(contained, list) or not all(isinstance(r, dict) for r in contained):
        raise MalformedDocument("contained must be an array of objects")

    declared: Set[str] = set()
    _declared_link_ids(document.get("item"), declared)
    items = ItemStore()
    allocated = 0

    def walk(raw_items: Any) -> Forest:
        nonlocal allocated
        if raw_items is None:
            return ()
        if not isinstance(raw_items, list):
            raise MalformedDocument("item must be an array")
        nodes = []
        for raw in raw_items:
            if not isinstance(raw, dict):
                raise MalformedDocument("Every item must be a JSON object")
            link_id = raw.get("linkId")
            if link_id is None or link_id == "":
                link_id = create_id()
                while link_id in declared:
                    link_id = create_id()
                declared.add(link_id)
                allocated += 1
                logger.debug("decode: allocated identifier %s", link_id)
            elif not isinstance(link_id, str):
                raise MalformedDocument(f"linkId must be a string, got {link_id!r}")
            if link_id in items:
                raise MalformedDocument(f"Duplicate linkId {link_id!r}", link_id=link_id)
            items.set(link_id, item_from_dict(raw, link_id))
            nodes.append(OrderNode(link_id=link_id, children=walk(raw.get("item"))))
        return tuple(nodes)

    order = walk(document.get("item"))
    logger.info("decoded questionnaire with %d items (%d identifiers allocated)", len(items), allocated)
    return TreeState(
        items=items,
        order=order,
        metadata=metadata_from_dict(document),
        contained=tuple(dict(r) for r in contained),
    )


# ============================================================================
# Translated documents
# ============================================================================

def _translate_item(item: Item, t: ItemTranslation) -> Item:
    changes: Dict[str, Any] = {}
    if t.text:
        changes["text"] = t.text
    if t.prefix:
        changes["prefix"] = t.prefix

    extensions = item.extensions
    for cls, prop, attr in (
        (SublabelExtension, "sublabel", "markdown"),
        (RepeatsTextExtension, "repeats_text", "text"),
        (ValidationTextExtension, "validation_text", "text"),
        (EntryFormatExtension, "entry_format", "text"),
    ):
        value = getattr(t, prop)
        if value and isinstance(find_extension(extensions, cls.URL), cls):
            extensions = put_extension(extensions, cls(value))
    changes["extensions"] = extensions

    if t.initial and item.type in TEXT_INPUT_TYPES and item.initial and item.initial[0].kind == AnswerKind.STRING:
        changes["initial"] = (AnswerValue(AnswerKind.STRING, t.initial),) + item.initial[1:]

    if t.answer_options:
        changes["answer_options"] = tuple(
            replace(o, display=t.answer_options[o.id]) if t.answer_options.get(o.id) else o
            for o in item.answer_options
        )
    return replace(item, **changes)


def encode_translation(state: TreeState, language: str) -> Dict[str, Any]:
    """The questionnaire as seen in `language`: overlay texts replace base texts."""
    overlay = state.languages.get(language)
    if overlay is None:
        raise ValueError(f"Language not added: {language!r}")

    items = ItemStore()
    for link_id, item in state.items.items():
        translation = overlay.items.get(link_id)
        items.set(link_id, _translate_item(item, translation) if translation else item)

    metadata_changes = {k: v for k, v in overlay.metadata.items() if v}
    metadata = replace(state.metadata, language=language, **metadata_changes)
    return encode(state.order, items, metadata, state.contained)


def decode_translation(state: TreeState, document: Any) -> TreeState:
    """
    Read a translated copy of the questionnaire into a translation overlay.

    The document's `language` names the overlay. It must use only identifiers
    already present in state.

    Raises:
        MalformedDocument: no language, or an identifier unknown to state
    """
    translated = decode(document)
    language = translated.metadata.language
    if not language:
        raise MalformedDocument("A translated questionnaire must declare its language")

    items: Dict[str, ItemTranslation] = {}
    for link_id, item in translated.items.items():
        if link_id not in state.items:
            raise MalformedDocument(f"Translation introduces unknown item {link_id!r}", link_id=link_id)
        values = item_translatable_values(item)
        options = {o.id: o.display for o in item.answer_options if o.value is None and o.display}
        items[link_id] = ItemTranslation(
            answer_options=options,
            **{prop: values[prop] for prop in TRANSLATABLE_ITEM_PROPERTIES},
        )

    metadata = {
        prop: getattr(translated.metadata, prop)
        for prop in TRANSLATABLE_METADATA_PROPERTIES
        if getattr(translated.metadata, prop)
    }
    languages = dict(state.languages)
    languages[language] = TranslationOverlay(items=items, metadata=metadata)
    return replace(state, languages=languages)


# ============================================================================
# Text transports
# ============================================================================

def to_json(state: TreeState, indent: Optional[int] = 2) -> str:
    return json.dumps(encode_state(state), indent=indent, ensure_ascii=False)


def from_json(text: str) -> TreeState:
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedDocument(f"Invalid JSON: {e}")
    return decode(document)


def to_yaml(state: TreeState) -> str:
    return yaml.safe_dump(encode_state(state), sort_keys=False, allow_unicode=True)


def from_yaml(text: str) -> TreeState:
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise MalformedDocument(f"Invalid YAML: {e}")
    return decode(document)
