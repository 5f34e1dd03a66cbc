"""
Item metadata entries (FHIR extensions) as tagged variants.

Each known extension kind is its own frozen class with typed fields. Anything
else is kept verbatim in PassthroughExtension so that documents produced by
other tools survive a decode/encode round trip.

Entries are a keyed set: the URL is the key, and an item carries at most one
entry per URL.
"""

from abc import ABC
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict

from qtree.values import Coding

ITEM_CONTROL_URL = "http://hl7.org/fhir/StructureDefinition/questionnaire-itemControl"
ITEM_CONTROL_SYSTEM = "http://hl7.org/fhir/ValueSet/questionnaire-item-control"
SUBLABEL_URL = "http://helsenorge.no/fhir/StructureDefinition/sdf-sublabel"
VALIDATION_TEXT_URL = "http://hl7.org/fhir/StructureDefinition/validationtext"
ENTRY_FORMAT_URL = "http://hl7.org/fhir/StructureDefinition/entryFormat"
REPEATS_TEXT_URL = "http://helsenorge.no/fhir/StructureDefinition/sdf-repeatstext"
MAX_SIZE_URL = "http://hl7.org/fhir/StructureDefinition/maxSize"
HIDDEN_URL = "http://hl7.org/fhir/StructureDefinition/questionnaire-hidden"
UNIT_URL = "http://hl7.org/fhir/StructureDefinition/questionnaire-unit"

# Constraint extensions map onto Item fields rather than loose entries.
MIN_OCCURS_URL = "http://hl7.org/fhir/StructureDefinition/questionnaire-minOccurs"
MAX_OCCURS_URL = "http://hl7.org/fhir/StructureDefinition/questionnaire-maxOccurs"
REGEX_URL = "http://hl7.org/fhir/StructureDefinition/regex"
MIN_LENGTH_URL = "http://hl7.org/fhir/StructureDefinition/minLength"

# url -> (Item field name, FHIR value property)
CONSTRAINT_EXTENSIONS: Dict[str, tuple] = {
    MIN_OCCURS_URL: ("min_occurs", "valueInteger"),
    MAX_OCCURS_URL: ("max_occurs", "valueInteger"),
    REGEX_URL: ("pattern", "valueString"),
    MIN_LENGTH_URL: ("min_length", "valueInteger"),
}


class Extension(ABC):
    """
    Base class for all metadata entries.

    Subclasses declare URL as a class attribute; `url` is the key used for
    the one-entry-per-URL rule.
    """

    URL: ClassVar[str] = ""

    @property
    def url(self) -> str:
        return self.URL


@dataclass(frozen=True)
class ItemControlExtension(Extension):
    """Rendering hint such as "page", "drop-down", "check-box", "radio-button", "inline"."""

    URL: ClassVar[str] = ITEM_CONTROL_URL
    code: str


@dataclass(frozen=True)
class SublabelExtension(Extension):
    URL: ClassVar[str] = SUBLABEL_URL
    markdown: str


@dataclass(frozen=True)
class ValidationTextExtension(Extension):
    URL: ClassVar[str] = VALIDATION_TEXT_URL
    text: str


@dataclass(frozen=True)
class EntryFormatExtension(Extension):
    """Placeholder text shown inside an empty input."""

    URL: ClassVar[str] = ENTRY_FORMAT_URL
    text: str


@dataclass(frozen=True)
class RepeatsTextExtension(Extension):
    URL: ClassVar[str] = REPEATS_TEXT_URL
    text: str


@dataclass(frozen=True)
class MaxSizeExtension(Extension):
    """Attachment size limit in megabytes."""

    URL: ClassVar[str] = MAX_SIZE_URL
    megabytes: float


@dataclass(frozen=True)
class HiddenExtension(Extension):
    URL: ClassVar[str] = HIDDEN_URL
    hidden: bool


@dataclass(frozen=True)
class UnitExtension(Extension):
    """Unit of a quantity item, as a coding (UCUM or a custom system)."""

    URL: ClassVar[str] = UNIT_URL
    coding: Coding


@dataclass(frozen=True, eq=True)
class PassthroughExtension(Extension):
    """
    An extension kind the engine does not model.

    Properties:
        uri: the extension URL
        payload: every other property of the JSON object, verbatim
    """

    uri: str
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def url(self) -> str:
        return self.uri


KNOWN_EXTENSIONS = (
    ItemControlExtension,
    SublabelExtension,
    ValidationTextExtension,
    EntryFormatExtension,
    RepeatsTextExtension,
    MaxSizeExtension,
    HiddenExtension,
    UnitExtension,
)


def find_extension(extensions, url: str):
    """Return the entry keyed by url, or None."""
    for ext in extensions:
        if ext.url == url:
            return ext
    return None


def put_extension(extensions, entry: Extension) -> tuple:
    """Add entry, replacing an existing entry with the same URL in place."""
    result = []
    replaced = False
    for ext in extensions:
        if ext.url == entry.url:
            if not replaced:
                result.append(entry)
                replaced = True
            continue
        result.append(ext)
    if not replaced:
        result.append(entry)
    return tuple(result)


def drop_extension(extensions, url: str) -> tuple:
    return tuple(ext for ext in extensions if ext.url != url)
