"""
Core Questionnaire Model Objects

Defines the normalized in-memory representation of a FHIR Questionnaire:
    - Items (content records, keyed by identifier)
    - The ItemStore (flat identifier -> Item mapping)
    - Answer options, metadata, translation overlays
    - TreeState (the atomic Item Store + Order Tree pair)

The ordering structure (OrderNode, the Order Tree) lives in qtree.tree.

ARCHITECTURAL RULE:
    These objects:
        - Know nothing about FHIR JSON (that is the codec's job)
        - Are immutable, except ItemStore which is only ever
          mutated on a private copy inside the mutation engine
        - Represent content, not behaviour
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Tuple, Union

from qtree.config import get_config
from qtree.extensions import (
    Extension,
    ItemControlExtension,
    EntryFormatExtension,
    MaxSizeExtension,
    RepeatsTextExtension,
    SublabelExtension,
    ValidationTextExtension,
    find_extension,
)
from qtree.ids import create_id, create_uri_id
from qtree.tree import Forest, OrderNode, iter_preorder
from qtree.values import AnswerKind, AnswerValue, Coding, EnableWhen


class ItemType(Enum):
    """
    The closed enumeration of FHIR Questionnaire item types.

    Enum values are the type codes as written in JSON.
    """

    GROUP = "group"
    DISPLAY = "display"
    STRING = "string"
    TEXT = "text"
    INTEGER = "integer"
    DECIMAL = "decimal"
    QUANTITY = "quantity"
    BOOLEAN = "boolean"
    DATE = "date"
    DATE_TIME = "dateTime"
    TIME = "time"
    CHOICE = "choice"
    OPEN_CHOICE = "openChoice"
    ATTACHMENT = "attachment"


# ============================================================================
# Type capabilities
# ============================================================================

NON_ANSWERABLE_TYPES = frozenset({ItemType.GROUP, ItemType.DISPLAY})
CHOICE_TYPES = frozenset({ItemType.CHOICE, ItemType.OPEN_CHOICE})
TEXT_INPUT_TYPES = frozenset({ItemType.STRING, ItemType.TEXT})
VALIDATABLE_TYPES = frozenset({
    ItemType.ATTACHMENT,
    ItemType.INTEGER,
    ItemType.DECIMAL,
    ItemType.QUANTITY,
    ItemType.TEXT,
    ItemType.STRING,
    ItemType.DATE,
    ItemType.DATE_TIME,
})

_DISPLAY_TYPE_LABELS = {
    ItemType.GROUP: "Group",
    ItemType.DISPLAY: "Instruction",
    ItemType.STRING: "Text",
    ItemType.TEXT: "Text",
    ItemType.DATE: "Date",
    ItemType.DATE_TIME: "Date",
    ItemType.TIME: "Time",
    ItemType.ATTACHMENT: "Attachment",
    ItemType.BOOLEAN: "Boolean",
    ItemType.CHOICE: "Choice",
    ItemType.OPEN_CHOICE: "Choice",
    ItemType.INTEGER: "Number",
    ItemType.DECIMAL: "Number",
    ItemType.QUANTITY: "Number",
}


def _type_of(subject: Union["Item", ItemType]) -> ItemType:
    return subject if isinstance(subject, ItemType) else subject.type


def can_type_have_children(subject: Union["Item", ItemType]) -> bool:
    return _type_of(subject) == ItemType.GROUP


def can_type_be_required(subject: Union["Item", ItemType]) -> bool:
    """Only answerable types may carry the required flag."""
    return _type_of(subject) not in NON_ANSWERABLE_TYPES


def can_type_be_readonly(subject: Union["Item", ItemType]) -> bool:
    return _type_of(subject) not in NON_ANSWERABLE_TYPES


def can_type_have_initial_value(subject: Union["Item", ItemType]) -> bool:
    return _type_of(subject) not in NON_ANSWERABLE_TYPES


def can_type_be_repeatable(subject: Union["Item", ItemType]) -> bool:
    return _type_of(subject) != ItemType.DISPLAY


def can_type_have_sublabel(subject: Union["Item", ItemType]) -> bool:
    return _type_of(subject) not in (NON_ANSWERABLE_TYPES | {ItemType.BOOLEAN})


def can_type_have_placeholder_text(subject: Union["Item", ItemType]) -> bool:
    return _type_of(subject) in TEXT_INPUT_TYPES


def can_type_be_validated(subject: Union["Item", ItemType]) -> bool:
    """
    True if the type supports validation constraints (pattern, lengths, sizes).

    Inline items (item-control "inline") are never validated.
    """
    if isinstance(subject, Item):
        control = find_extension(subject.extensions, ItemControlExtension.URL)
        if isinstance(control, ItemControlExtension) and control.code == "inline":
            return False
    return _type_of(subject) in VALIDATABLE_TYPES


def get_item_display_type(subject: Union["Item", ItemType, str]) -> str:
    """Human-readable type label, or "" for unknown type codes."""
    if isinstance(subject, str):
        try:
            subject = ItemType(subject)
        except ValueError:
            return ""
    return _DISPLAY_TYPE_LABELS.get(_type_of(subject), "")


# ============================================================================
# Items
# ============================================================================

@dataclass(frozen=True)
class AnswerOption:
    """
    One selectable option of a choice item.

    Properties:
        id:
            Stable sub-identifier, unique within the owning item.
            Re-keyed independently of the item identifier on duplicate.
        code / display / system:
            The option's coding
        initial_selected:
            Whether the option is preselected
        value:
            Set only for non-coded options (valueString, valueInteger, ...);
            code/display are unused for those.
        passthrough:
            Unmodeled option properties (extension with ordinalValue, ...)
        coding_passthrough:
            Unmodeled properties of the option coding (version, userSelected, ...)
    """

    id: str
    code: str = ""
    display: str = ""
    system: Optional[str] = None
    initial_selected: Optional[bool] = None
    value: Optional[AnswerValue] = None
    passthrough: Dict[str, Any] = field(default_factory=dict)
    coding_passthrough: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, system: Optional[str] = None) -> "AnswerOption":
        """A blank coded option with a fresh sub-identifier."""
        return cls(id=create_id(), code="", display="", system=system)


@dataclass(frozen=True)
class Item:
    """
    The content record for one question, group or display node.

    Properties:
        link_id:
            Identifier, unique within the document and its translations
        type:
            ItemType tag
        text:
            Label shown to the respondent
        prefix:
            Optional label prefix such as "1.a"
        required / repeats / read_only:
            Constraint flags; None means "absent", kept distinct from False
            so documents round-trip exactly
        min_occurs / max_occurs / pattern / min_length / max_length:
            Answer constraints
        enable_when:
            Ordered conditions controlling visibility
        enable_behavior:
            "all" or "any" when more than one condition is present
        extensions:
            Metadata entries, at most one per URL
        code:
            Coded tags
        initial:
            Initial answer values
        answer_options:
            Selectable options (choice / openChoice)
        answer_value_set:
            Reference to a value set, "#id" for a contained one
        passthrough:
            Unknown JSON properties, preserved verbatim

    IMPORTANT:
        Nothing here enforces type rules. A display item CAN be marked
        required; the validator reports it. Mutations are permissive.
    """

    link_id: str
    type: ItemType
    text: str = ""
    prefix: Optional[str] = None
    required: Optional[bool] = None
    repeats: Optional[bool] = None
    read_only: Optional[bool] = None
    min_occurs: Optional[int] = None
    max_occurs: Optional[int] = None
    pattern: Optional[str] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    enable_when: Tuple[EnableWhen, ...] = ()
    enable_behavior: Optional[str] = None
    extensions: Tuple[Extension, ...] = ()
    code: Tuple[Coding, ...] = ()
    initial: Tuple[AnswerValue, ...] = ()
    answer_options: Tuple[AnswerOption, ...] = ()
    answer_value_set: Optional[str] = None
    passthrough: Dict[str, Any] = field(default_factory=dict)


class ItemStore(Mapping):
    """
    Flat mapping from identifier to Item.

    A pure key/value container: no validation happens here. Integrity is
    the mutation engine's and the validator's responsibility.
    """

    def __init__(self, items: Optional[Mapping] = None):
        self._items: Dict[str, Item] = dict(items or {})

    def get(self, link_id: str, default: Optional[Item] = None) -> Optional[Item]:
        return self._items.get(link_id, default)

    def set(self, link_id: str, item: Item) -> None:
        self._items[link_id] = item

    def remove(self, link_id: str) -> Optional[Item]:
        """Remove and return the entry, or None if it was absent."""
        return self._items.pop(link_id, None)

    def copy(self) -> "ItemStore":
        return ItemStore(self._items)

    def __getitem__(self, link_id: str) -> Item:
        return self._items[link_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ItemStore):
            return self._items == other._items
        if isinstance(other, Mapping):
            return self._items == dict(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"ItemStore({list(self._items)!r})"


# ============================================================================
# Document metadata and translations
# ============================================================================

@dataclass(frozen=True)
class QuestionnaireMetadata:
    """
    Questionnaire-level fields (everything except `item` and `contained`).

    Fields the engine does not model (contact, useContext, meta, ...) are
    kept verbatim in passthrough.
    """

    id: Optional[str] = None
    url: Optional[str] = None
    name: Optional[str] = None
    title: Optional[str] = None
    status: Optional[str] = None
    version: Optional[str] = None
    date: Optional[str] = None
    publisher: Optional[str] = None
    description: Optional[str] = None
    purpose: Optional[str] = None
    copyright: Optional[str] = None
    language: Optional[str] = None
    extensions: Tuple[Extension, ...] = ()
    passthrough: Dict[str, Any] = field(default_factory=dict)


METADATA_FIELDS = (
    "id", "url", "name", "title", "status", "version", "date",
    "publisher", "description", "purpose", "copyright", "language",
)

TRANSLATABLE_METADATA_PROPERTIES = ("title", "description", "publisher", "purpose", "copyright")

TRANSLATABLE_ITEM_PROPERTIES = (
    "text",
    "prefix",
    "sublabel",
    "repeats_text",
    "validation_text",
    "entry_format",
    "initial",
)


@dataclass(frozen=True)
class ItemTranslation:
    """Translated text fields for one item. Empty string means "not translated"."""

    text: str = ""
    prefix: str = ""
    sublabel: str = ""
    repeats_text: str = ""
    validation_text: str = ""
    entry_format: str = ""
    initial: str = ""
    answer_options: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TranslationOverlay:
    """
    Sparse per-language copy of translatable text.

    Never introduces identifiers: every key of `items` must exist in the
    base ItemStore (checked by the validator).
    """

    items: Dict[str, ItemTranslation] = field(default_factory=dict)
    metadata: Dict[str, str] = field(default_factory=dict)


def item_translatable_values(item: Item) -> Dict[str, str]:
    """
    Base-language values of every translatable item property, "" when empty.

    `initial` counts only for string/text items with a string initial value.
    """
    def ext_text(cls, attr):
        ext = find_extension(item.extensions, cls.URL)
        return getattr(ext, attr, "") if isinstance(ext, cls) else ""

    initial = ""
    if item.type in TEXT_INPUT_TYPES and item.initial and item.initial[0].kind == AnswerKind.STRING:
        initial = item.initial[0].value or ""

    return {
        "text": item.text or "",
        "prefix": item.prefix or "",
        "sublabel": ext_text(SublabelExtension, "markdown"),
        "repeats_text": ext_text(RepeatsTextExtension, "text"),
        "validation_text": ext_text(ValidationTextExtension, "text"),
        "entry_format": ext_text(EntryFormatExtension, "text"),
        "initial": initial,
    }


# ============================================================================
# The session state
# ============================================================================

@dataclass(frozen=True)
class TreeState:
    """
    Root container for one editing session.

    This is THE unit the mutation engine transforms: every operation takes
    a TreeState and returns a new one. The (items, order) pair always
    changes together.

    Properties:
        items: the ItemStore
        order: the Order Tree (top-level OrderNodes)
        metadata: questionnaire-level fields
        languages: translation overlays keyed by language code
        contained: contained resources (value sets), kept as JSON objects

    INVARIANTS (checked by the validator, not enforced here):
        - Every identifier in order has an entry in items
        - Identifiers are unique across the whole order
        - Only group items have children
        - Overlay keys exist in items
    """

    items: ItemStore = field(default_factory=ItemStore)
    order: Forest = ()
    metadata: QuestionnaireMetadata = field(default_factory=QuestionnaireMetadata)
    languages: Dict[str, TranslationOverlay] = field(default_factory=dict)
    contained: Tuple[Dict[str, Any], ...] = ()

    def get_item(self, link_id: str) -> Optional[Item]:
        return self.items.get(link_id)

    def iter_preorder(self) -> Iterator[Tuple[Tuple[str, ...], OrderNode]]:
        return iter_preorder(self.order)

    def all_link_ids(self) -> set:
        """Identifiers used anywhere: in the tree, in the store or as translation keys."""
        ids = set(self.items)
        ids.update(node.link_id for _, node in iter_preorder(self.order))
        for overlay in self.languages.values():
            ids.update(overlay.items)
        return ids


def create_item(item_type: ItemType, text: str = "", link_id: Optional[str] = None, config=None) -> Item:
    """
    Initial configuration for a new item of the given type.

    Groups are rendered as pages, attachments get the default size limit,
    and choice items start with two blank options sharing one fresh coding
    system.
    """
    config = config or get_config()
    link_id = link_id or create_id()

    if item_type == ItemType.GROUP:
        return Item(link_id=link_id, type=item_type, text=text, extensions=(ItemControlExtension("page"),))
    if item_type == ItemType.ATTACHMENT:
        return Item(
            link_id=link_id,
            type=item_type,
            text=text,
            extensions=(MaxSizeExtension(config.attachment_max_size),),
        )
    if item_type in CHOICE_TYPES:
        system = create_uri_id(config.option_system_prefix)
        return Item(
            link_id=link_id,
            type=item_type,
            text=text,
            extensions=(ItemControlExtension("radio-button"),),
            answer_options=(AnswerOption.create(system), AnswerOption.create(system)),
        )
    return Item(link_id=link_id, type=item_type, text=text)
