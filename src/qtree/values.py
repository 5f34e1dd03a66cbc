"""
Value objects shared by items and enable-when conditions.

FHIR spreads answer values over "choice" properties: an initial value is
written as valueBoolean / valueCoding / valueString ..., an enable-when
operand as answerBoolean / answerCoding / answerString ... The engine keeps a
single tagged representation, AnswerValue, and leaves the property naming to
the codec.

ARCHITECTURAL RULE:
    Everything here is immutable (frozen dataclasses, tuples).
    Items share these objects freely between successive TreeStates.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Coding:
    """
    A coded value (FHIR Coding).

    Properties:
        code: the symbol within the system
        system: URI identifying the code system (optional)
        display: human-readable text (optional)
        id: element id; answer options use it as their stable sub-identifier
        passthrough: unmodeled properties (version, userSelected, extension, ...)
    """

    code: Optional[str] = None
    system: Optional[str] = None
    display: Optional[str] = None
    id: Optional[str] = None
    passthrough: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Quantity:
    value: Optional[float] = None
    unit: Optional[str] = None
    system: Optional[str] = None
    code: Optional[str] = None
    passthrough: Dict[str, Any] = field(default_factory=dict)


class AnswerKind(Enum):
    """
    The type suffix of a FHIR value[x] / answer[x] property.

    The enum value is the suffix as written in JSON, so
    "value" + kind.value and "answer" + kind.value are the property names.
    """

    BOOLEAN = "Boolean"
    DECIMAL = "Decimal"
    INTEGER = "Integer"
    DATE = "Date"
    DATE_TIME = "DateTime"
    TIME = "Time"
    STRING = "String"
    URI = "Uri"
    CODING = "Coding"
    QUANTITY = "Quantity"
    REFERENCE = "Reference"
    ATTACHMENT = "Attachment"


@dataclass(frozen=True)
class AnswerValue:
    """
    A typed answer value.

    `value` holds a Coding for CODING, a Quantity for QUANTITY, a plain dict
    for REFERENCE/ATTACHMENT, and a scalar (bool, int, float, str) otherwise.
    """

    kind: AnswerKind
    value: Any


class Operator(Enum):
    """Enable-when comparison operators (FHIR QuestionnaireItemOperator)."""

    EXISTS = "exists"
    EQUAL = "="
    NOT_EQUAL = "!="
    GREATER_THAN = ">"
    LESS_THAN = "<"
    GREATER_OR_EQUAL = ">="
    LESS_OR_EQUAL = "<="


@dataclass(frozen=True)
class EnableWhen:
    """
    One condition making an item's visibility depend on another item's answer.

    Properties:
        question: identifier of the target item
        operator: comparison operator
        answer: comparison operand (None only while being edited)
        passthrough: unmodeled properties such as extension

    IMPORTANT:
        This object does NOT check that `question` exists.
        Dangling targets are reported by the validator, never repaired.
    """

    question: str
    operator: Operator
    answer: Optional[AnswerValue] = None
    passthrough: Dict[str, Any] = field(default_factory=dict)
