"""
Error taxonomy for the Questionnaire Tree Engine.

Three exception types cover every way an operation can fail:

    InvalidPath          a structural operation referenced a tree location
                         that does not exist (always a caller bug)
    DuplicateIdentifier  a rename or insert would reuse an identifier
                         (recoverable, the caller re-prompts)
    MalformedDocument    an imported document violates structural rules
                         (the import aborts, nothing is applied)

Validator findings are NOT exceptions. They are Diagnostic records
(see qtree.validator) describing a document that is still editable.
"""

from typing import Optional, Sequence


class QuestionnaireError(Exception):
    """Base class for every error raised by the engine."""
    pass


class InvalidPath(QuestionnaireError, LookupError):
    """Raised when a parent path or identifier does not resolve in the Order Tree."""

    def __init__(self, message: str, path: Sequence[str] = (), link_id: Optional[str] = None):
        super().__init__(message)
        self.path = tuple(path)
        self.link_id = link_id


class DuplicateIdentifier(QuestionnaireError):
    """Raised when an identifier is already in use elsewhere in the document."""

    def __init__(self, link_id: str):
        super().__init__(f"Identifier already in use: {link_id!r}")
        self.link_id = link_id


class MalformedDocument(QuestionnaireError, ValueError):
    """Raised when a document cannot be decoded into the normalized model."""

    def __init__(self, message: str, link_id: Optional[str] = None):
        super().__init__(message)
        self.link_id = link_id


__all__ = [
    "QuestionnaireError",
    "InvalidPath",
    "DuplicateIdentifier",
    "MalformedDocument",
]
