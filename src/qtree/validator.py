"""
Reference Validator: structural and referential diagnostics for a questionnaire.

This module walks the Order Tree and the ItemStore and reports defects:
    - Orphaned references between the tree and the store
    - Duplicate identifiers, misplaced children, duplicate option ids
    - "required" on items that cannot be answered
    - Dangling or incompatible enable-when conditions
    - Incomplete or stray translations

IMPORTANT: This is read-only. It does NOT modify the questionnaire and it
never raises for a defect: every finding is a Diagnostic record, and every
check runs so an editor can show all defects at once.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Set

from qtree.conditions import (
    can_be_condition_target,
    is_operand_compatible,
    operators_for_type,
)
from qtree.model import (
    CHOICE_TYPES,
    TRANSLATABLE_METADATA_PROPERTIES,
    TRANSLATABLE_ITEM_PROPERTIES,
    ItemStore,
    TranslationOverlay,
    TreeState,
    QuestionnaireMetadata,
    can_type_be_required,
    can_type_have_children,
    item_translatable_values,
)
from qtree.tree import Forest, iter_preorder
from qtree.values import AnswerKind

logger = logging.getLogger(__name__)


class DiagnosticKind(Enum):
    ORPHAN_REFERENCE = "orphan-reference"
    UNREFERENCED_ITEM = "unreferenced-item"
    DUPLICATE_IDENTIFIER = "duplicate-identifier"
    CHILDREN_NOT_ALLOWED = "children-not-allowed"
    DUPLICATE_OPTION_ID = "duplicate-option-id"
    REQUIRED_NOT_ALLOWED = "required-not-allowed"
    DANGLING_CONDITION = "dangling-condition"
    UNSUPPORTED_CONDITION_TYPE = "unsupported-condition-type"
    INVALID_CONDITION_OPERATOR = "invalid-condition-operator"
    INCOMPATIBLE_CONDITION_ANSWER = "incompatible-condition-answer"
    UNKNOWN_CONDITION_OPTION = "unknown-condition-option"
    MISSING_VALUE_SET = "missing-value-set"
    UNKNOWN_TRANSLATION_KEY = "unknown-translation-key"
    MISSING_TRANSLATION = "missing-translation"


@dataclass(frozen=True)
class Diagnostic:
    """
    One validator finding.

    Properties:
        link_id: offending item identifier (None for questionnaire metadata)
        field: offending field, e.g. "required", "enableWhen[0].question"
        message: human-readable description
        kind: machine-readable category
        language: language code for translation findings
    """

    link_id: Optional[str]
    field: str
    message: str
    kind: DiagnosticKind
    language: Optional[str] = None


# ============================================================================
# Individual checks
# ============================================================================

def _check_orphans(items: ItemStore, tree_ids: Sequence[str]) -> List[Diagnostic]:
    found = []
    placed = set(tree_ids)
    reported: Set[str] = set()
    for link_id in tree_ids:
        if link_id not in items and link_id not in reported:
            reported.add(link_id)
            found.append(Diagnostic(
                link_id=link_id,
                field="linkId",
                message=f"Item {link_id!r} is placed in the questionnaire but has no content",
                kind=DiagnosticKind.ORPHAN_REFERENCE,
            ))
    for link_id in items:
        if link_id not in placed:
            found.append(Diagnostic(
                link_id=link_id,
                field="linkId",
                message=f"Item {link_id!r} exists but is not placed in the questionnaire",
                kind=DiagnosticKind.UNREFERENCED_ITEM,
            ))
    return found


def _check_structure(order: Forest, items: ItemStore, tree_ids: Sequence[str]) -> List[Diagnostic]:
    found = []
    for link_id, count in Counter(tree_ids).items():
        if count > 1:
            found.append(Diagnostic(
                link_id=link_id,
                field="linkId",
                message=f"Identifier {link_id!r} is used {count} times",
                kind=DiagnosticKind.DUPLICATE_IDENTIFIER,
            ))

    for _, node in iter_preorder(order):
        item = items.get(node.link_id)
        if item is None:
            continue
        if node.children and not can_type_have_children(item):
            found.append(Diagnostic(
                link_id=node.link_id,
                field="item",
                message=f"Items of type {item.type.value!r} cannot contain other items",
                kind=DiagnosticKind.CHILDREN_NOT_ALLOWED,
            ))
        option_counts = Counter(opt.id for opt in item.answer_options)
        for option_id, count in option_counts.items():
            if count > 1:
                found.append(Diagnostic(
                    link_id=node.link_id,
                    field="answerOption",
                    message=f"Option identifier {option_id!r} is used {count} times",
                    kind=DiagnosticKind.DUPLICATE_OPTION_ID,
                ))
    return found


def _check_required(order: Forest, items: ItemStore) -> List[Diagnostic]:
    found = []
    for _, node in iter_preorder(order):
        item = items.get(node.link_id)
        if item is not None and item.required and not can_type_be_required(item):
            found.append(Diagnostic(
                link_id=item.link_id,
                field="required",
                message=f"A {item.type.value} item cannot be required",
                kind=DiagnosticKind.REQUIRED_NOT_ALLOWED,
            ))
    return found


def _check_conditions(order: Forest, items: ItemStore, contained_ids: Set[str]) -> List[Diagnostic]:
    found = []
    seen: Set[str] = set()
    placed = {node.link_id for _, node in iter_preorder(order)}

    for _, node in iter_preorder(order):
        item = items.get(node.link_id)
        if item is None:
            seen.add(node.link_id)
            continue

        for i, condition in enumerate(item.enable_when):
            field = f"enableWhen[{i}]"
            target = items.get(condition.question)

            if condition.question not in seen or target is None:
                if condition.question == item.link_id:
                    reason = "refers to the item itself"
                elif target is not None and condition.question not in placed:
                    reason = "is not placed in the questionnaire"
                elif target is not None:
                    reason = "refers to an item that comes later"
                else:
                    reason = "refers to an item that does not exist"
                found.append(Diagnostic(
                    link_id=item.link_id,
                    field=f"{field}.question",
                    message=f"Condition on {condition.question!r} {reason}",
                    kind=DiagnosticKind.DANGLING_CONDITION,
                ))
                continue

            if not can_be_condition_target(target.type):
                found.append(Diagnostic(
                    link_id=item.link_id,
                    field=f"{field}.question",
                    message=f"Conditions cannot depend on a {target.type.value} item ({target.link_id!r})",
                    kind=DiagnosticKind.UNSUPPORTED_CONDITION_TYPE,
                ))
                continue

            if condition.operator not in operators_for_type(target.type):
                found.append(Diagnostic(
                    link_id=item.link_id,
                    field=f"{field}.operator",
                    message=f"Operator {condition.operator.value!r} cannot be used with a {target.type.value} item",
                    kind=DiagnosticKind.INVALID_CONDITION_OPERATOR,
                ))
            elif not is_operand_compatible(target.type, condition.operator, condition.answer):
                found.append(Diagnostic(
                    link_id=item.link_id,
                    field=f"{field}.answer",
                    message=f"Answer does not match the type of {target.link_id!r} ({target.type.value})",
                    kind=DiagnosticKind.INCOMPATIBLE_CONDITION_ANSWER,
                ))
            elif (
                target.type in CHOICE_TYPES
                and target.answer_options
                and condition.answer.kind == AnswerKind.CODING
            ):
                codes = {opt.code for opt in target.answer_options if opt.value is None}
                if condition.answer.value.code not in codes:
                    found.append(Diagnostic(
                        link_id=item.link_id,
                        field=f"{field}.answer",
                        message=f"Code {condition.answer.value.code!r} is not an option of {target.link_id!r}",
                        kind=DiagnosticKind.UNKNOWN_CONDITION_OPTION,
                    ))

        if item.answer_value_set and item.answer_value_set.startswith("#"):
            if item.answer_value_set[1:] not in contained_ids:
                found.append(Diagnostic(
                    link_id=item.link_id,
                    field="answerValueSet",
                    message=f"Value set {item.answer_value_set!r} is not contained in the questionnaire",
                    kind=DiagnosticKind.MISSING_VALUE_SET,
                ))

        seen.add(node.link_id)
    return found


def _check_translations(
    order: Forest,
    items: ItemStore,
    languages: Mapping[str, TranslationOverlay],
    metadata: Optional[QuestionnaireMetadata],
) -> List[Diagnostic]:
    found = []
    for language in sorted(languages):
        overlay = languages[language]

        for link_id in overlay.items:
            if link_id not in items:
                found.append(Diagnostic(
                    link_id=link_id,
                    field="linkId",
                    message=f"Translation refers to unknown item {link_id!r}",
                    kind=DiagnosticKind.UNKNOWN_TRANSLATION_KEY,
                    language=language,
                ))

        if metadata is not None:
            for prop in TRANSLATABLE_METADATA_PROPERTIES:
                if getattr(metadata, prop) and not overlay.metadata.get(prop):
                    found.append(Diagnostic(
                        link_id=None,
                        field=prop,
                        message=f"Questionnaire {prop} is not translated",
                        kind=DiagnosticKind.MISSING_TRANSLATION,
                        language=language,
                    ))

        for _, node in iter_preorder(order):
            item = items.get(node.link_id)
            if item is None:
                continue
            translation = overlay.items.get(item.link_id)
            base = item_translatable_values(item)
            for prop in TRANSLATABLE_ITEM_PROPERTIES:
                if base[prop] and not (translation and getattr(translation, prop)):
                    found.append(Diagnostic(
                        link_id=item.link_id,
                        field=prop,
                        message=f"{prop} is not translated",
                        kind=DiagnosticKind.MISSING_TRANSLATION,
                        language=language,
                    ))
            for option in item.answer_options:
                if option.value is None and option.display and not (
                    translation and translation.answer_options.get(option.id)
                ):
                    found.append(Diagnostic(
                        link_id=item.link_id,
                        field=f"answerOption[{option.id}]",
                        message=f"Option {option.display!r} is not translated",
                        kind=DiagnosticKind.MISSING_TRANSLATION,
                        language=language,
                    ))
    return found


# ============================================================================
# Entry points
# ============================================================================

def validate(
    order: Forest,
    items: ItemStore,
    languages: Optional[Mapping[str, TranslationOverlay]] = None,
    contained: Sequence[Mapping] = (),
    metadata: Optional[QuestionnaireMetadata] = None,
) -> List[Diagnostic]:
    """
    Run every check and return all diagnostics, in check order:

        1. orphan references (tree vs store)
        2. duplicate identifiers, children on non-groups, duplicate option ids
        3. required on non-answerable types
        4. enable-when targets, operators and operands; contained value sets
        5. translation completeness and stray translation keys

    Returns an empty list for a clean questionnaire.
    """
    tree_ids = [node.link_id for _, node in iter_preorder(order)]
    contained_ids = {str(res.get("id")) for res in contained if res.get("id")}

    diagnostics: List[Diagnostic] = []
    diagnostics.extend(_check_orphans(items, tree_ids))
    diagnostics.extend(_check_structure(order, items, tree_ids))
    diagnostics.extend(_check_required(order, items))
    diagnostics.extend(_check_conditions(order, items, contained_ids))
    diagnostics.extend(_check_translations(order, items, languages or {}, metadata))

    logger.debug("validate: %d items, %d diagnostics", len(items), len(diagnostics))
    return diagnostics


def validate_state(state: TreeState) -> List[Diagnostic]:
    return validate(state.order, state.items, state.languages, state.contained, state.metadata)


def diagnostics_by_item(diagnostics: Sequence[Diagnostic]) -> Dict[Optional[str], List[Diagnostic]]:
    """Group diagnostics by identifier, for highlighting items in an editor."""
    grouped: Dict[Optional[str], List[Diagnostic]] = {}
    for diagnostic in diagnostics:
        grouped.setdefault(diagnostic.link_id, []).append(diagnostic)
    return grouped
