"""
Enable-when compatibility rules.

Which operators and operand shapes make sense depends on the type of the
item a condition targets:

    boolean, choice, openChoice   exists, =, !=
    attachment                    exists
    everything else answerable    exists, =, !=, >, <, >=, <=
    group, display                cannot be targeted at all

The `exists` operator always takes a boolean operand ("is answered").

This module is structure only. It does not evaluate conditions against
responses; that belongs to whatever renders the questionnaire.
"""

from typing import Dict, FrozenSet, Optional

from qtree.model import ItemType
from qtree.values import AnswerKind, AnswerValue, Operator

UNSUPPORTED_CONDITION_TYPES: FrozenSet[ItemType] = frozenset({ItemType.GROUP, ItemType.DISPLAY})

EQUALITY_OPERATORS: FrozenSet[Operator] = frozenset({
    Operator.EXISTS,
    Operator.EQUAL,
    Operator.NOT_EQUAL,
})

ALL_OPERATORS: FrozenSet[Operator] = frozenset(Operator)

_OPERATORS_BY_TYPE: Dict[ItemType, FrozenSet[Operator]] = {
    ItemType.BOOLEAN: EQUALITY_OPERATORS,
    ItemType.CHOICE: EQUALITY_OPERATORS,
    ItemType.OPEN_CHOICE: EQUALITY_OPERATORS,
    ItemType.ATTACHMENT: frozenset({Operator.EXISTS}),
}

_OPERAND_KINDS: Dict[ItemType, FrozenSet[AnswerKind]] = {
    ItemType.BOOLEAN: frozenset({AnswerKind.BOOLEAN}),
    ItemType.CHOICE: frozenset({AnswerKind.CODING}),
    ItemType.OPEN_CHOICE: frozenset({AnswerKind.CODING, AnswerKind.STRING}),
    ItemType.STRING: frozenset({AnswerKind.STRING}),
    ItemType.TEXT: frozenset({AnswerKind.STRING}),
    ItemType.INTEGER: frozenset({AnswerKind.INTEGER}),
    ItemType.DECIMAL: frozenset({AnswerKind.DECIMAL, AnswerKind.INTEGER}),
    ItemType.QUANTITY: frozenset({AnswerKind.QUANTITY, AnswerKind.DECIMAL, AnswerKind.INTEGER}),
    ItemType.DATE: frozenset({AnswerKind.DATE}),
    ItemType.DATE_TIME: frozenset({AnswerKind.DATE_TIME, AnswerKind.DATE}),
    ItemType.TIME: frozenset({AnswerKind.TIME}),
    ItemType.ATTACHMENT: frozenset(),
}


def can_be_condition_target(item_type: ItemType) -> bool:
    return item_type not in UNSUPPORTED_CONDITION_TYPES


def operators_for_type(item_type: ItemType) -> FrozenSet[Operator]:
    """Operators a condition targeting an item of this type may use."""
    if item_type in UNSUPPORTED_CONDITION_TYPES:
        return frozenset()
    return _OPERATORS_BY_TYPE.get(item_type, ALL_OPERATORS)


def operand_kinds_for(item_type: ItemType, operator: Operator) -> FrozenSet[AnswerKind]:
    if operator == Operator.EXISTS:
        return frozenset({AnswerKind.BOOLEAN})
    return _OPERAND_KINDS.get(item_type, frozenset())


def is_operand_compatible(item_type: ItemType, operator: Operator, answer: Optional[AnswerValue]) -> bool:
    """
    True if `answer` has a shape that can be compared with an answer to an
    item of `item_type` using `operator`.
    """
    if answer is None:
        return False
    return answer.kind in operand_kinds_for(item_type, operator)
