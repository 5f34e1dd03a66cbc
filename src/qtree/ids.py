"""
Identifier generation.

Item identifiers (FHIR linkIds) and option sub-identifiers are random UUID4
strings, so collisions inside one editing session are negligible.
"""

import re
import uuid

_LINK_ID_RE = re.compile(r"^\S{1,255}$")


def create_id() -> str:
    return str(uuid.uuid4())


def create_uri_id(prefix: str = "urn:uuid:") -> str:
    """Return a URI-shaped identifier, used as the coding system of a new option list."""
    return f"{prefix}{uuid.uuid4()}"


def is_valid_link_id(value: str) -> bool:
    """True if value can be used as an item identifier (1-255 chars, no whitespace)."""
    return bool(value) and _LINK_ID_RE.match(value) is not None


def is_uri_valid(uri: str) -> bool:
    """Loose URI check used for coding systems: urn:, http:// or https:// prefix."""
    return uri.startswith(("urn:", "http://", "https://"))
