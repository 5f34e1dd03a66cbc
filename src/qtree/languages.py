"""
Languages a questionnaire can be authored and translated in.
"""
from dataclasses import dataclass
from typing import List, Mapping, Optional

from qtree.model import (
    TRANSLATABLE_ITEM_PROPERTIES,
    TRANSLATABLE_METADATA_PROPERTIES,
    TranslationOverlay,
    TreeState,
)


@dataclass(frozen=True)
class Language:
    code: str
    display: str
    local_display: str


INITIAL_LANGUAGE = Language(code="en-US", display="English", local_display="English")

SUPPORTED_LANGUAGES = (
    INITIAL_LANGUAGE,
    Language(code="en-GB", display="English (UK)", local_display="English (UK)"),
    Language(code="es-ES", display="Spanish (Spain)", local_display="Español (España)"),
    Language(code="es-MX", display="Spanish (Mexico)", local_display="Español (México)"),
    Language(code="es-US", display="Spanish (US)", local_display="Español (Estados Unidos)"),
    Language(code="de-DE", display="German", local_display="Deutsch"),
    Language(code="sv-SE", display="Swedish", local_display="Svenska"),
    Language(code="custom", display="Custom", local_display="Custom"),
)


def get_language_from_code(code: str) -> Optional[Language]:
    """Case-insensitive lookup among SUPPORTED_LANGUAGES."""
    for language in SUPPORTED_LANGUAGES:
        if language.code.lower() == code.lower():
            return language
    return None


def is_supported_language(code: str) -> bool:
    return get_language_from_code(code) is not None


def get_languages_in_use(state: TreeState) -> List[Language]:
    """The base language plus every language with an overlay, in SUPPORTED_LANGUAGES order."""
    base = (state.metadata.language or "").lower()
    added = {code.lower() for code in state.languages}
    return [
        language for language in SUPPORTED_LANGUAGES
        if language.code.lower() == base or language.code.lower() in added
    ]


def get_item_property_translation(
    languages: Mapping[str, TranslationOverlay],
    language: str,
    link_id: str,
    property_name: str,
) -> str:
    """Translated value of one item property, or "" if not translated."""
    if property_name not in TRANSLATABLE_ITEM_PROPERTIES:
        raise ValueError(f"Not a translatable item property: {property_name!r}")
    overlay = languages.get(language)
    if overlay is None:
        return ""
    translation = overlay.items.get(link_id)
    if translation is None:
        return ""
    return getattr(translation, property_name) or ""


def is_unique_across_languages(state: TreeState, property_name: str, value: str, target_language: str) -> bool:
    """
    True if no other language version already uses value for a metadata property.

    Compares against the base metadata and every overlay except
    target_language. Always False for a questionnaire without translations.
    """
    if property_name not in TRANSLATABLE_METADATA_PROPERTIES:
        raise ValueError(f"Not a translatable metadata property: {property_name!r}")
    if not state.languages:
        return False
    used = []
    base_value = getattr(state.metadata, property_name)
    if base_value:
        used.append(base_value)
    for code, overlay in state.languages.items():
        if code != target_language:
            used.append(overlay.metadata.get(property_name))
    return value not in used
