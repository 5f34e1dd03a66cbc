"""
Contained value sets.

A choice item can take its options from a ValueSet resource kept in the
questionnaire's `contained` list and referenced as answerValueSet "#<id>".
Contained resources stay plain JSON objects; this module builds and reads
the ValueSet shape the engine produces.

Three predefined Yes/No value sets are shipped so that new questionnaires
can reference them without defining their own.
"""

import copy
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from qtree.ids import create_id
from qtree.model import AnswerOption
from qtree.values import Coding

PREDEFINED_VALUE_SET_URI = "http://cardinalkit.org/fhir/ValueSet/Predefined"

ValueSet = Dict[str, Any]


def create_value_set(
    title: str,
    concepts: Iterable[Tuple[str, str]],
    system: str,
    value_set_id: Optional[str] = None,
    name: Optional[str] = None,
    publisher: Optional[str] = None,
    url: Optional[str] = None,
) -> ValueSet:
    """
    Build a draft ValueSet with one compose.include entry.

    Args:
        title: human-readable title
        concepts: (code, display) pairs, in option order
        system: code system of every concept
        value_set_id: resource id; a fresh one is allocated when omitted
    """
    value_set: ValueSet = {
        "resourceType": "ValueSet",
        "id": value_set_id or create_id(),
        "version": "1.0",
        "status": "draft",
        "title": title,
        "compose": {
            "include": [{
                "system": system,
                "concept": [{"code": code, "display": display} for code, display in concepts],
            }],
        },
    }
    if name is not None:
        value_set["name"] = name
    if publisher is not None:
        value_set["publisher"] = publisher
    if url is not None:
        value_set["url"] = url
    return value_set


def _predefined(value_set_id: str, title: str, publisher: str, concepts) -> ValueSet:
    return create_value_set(
        title=title,
        concepts=concepts,
        system=f"urn:oid:2.16.578.1.12.4.1.{value_set_id}",
        value_set_id=value_set_id,
        name=f"urn:oid:{value_set_id}",
        publisher=publisher,
        url=PREDEFINED_VALUE_SET_URI,
    )


PREDEFINED_VALUE_SETS: Tuple[ValueSet, ...] = (
    _predefined("1101", "Yes / No", "NHN", [("1", "Yes"), ("2", "No")]),
    _predefined("1102", "Yes / No / Do not know", "CardinalKit", [("1", "Yes"), ("2", "No"), ("3", "Do not know")]),
    _predefined("9523", "Yes / No / Unsure", "CardinalKit", [("1", "Yes"), ("2", "No"), ("3", "Unsure")]),
)


def predefined_value_sets() -> List[ValueSet]:
    """Fresh copies of the predefined value sets, safe to store in a TreeState."""
    return [copy.deepcopy(value_set) for value_set in PREDEFINED_VALUE_SETS]


def is_predefined_value_set(value_set: ValueSet) -> bool:
    return value_set.get("url") == PREDEFINED_VALUE_SET_URI


def value_set_reference(value_set: ValueSet) -> str:
    """answerValueSet value pointing at a contained value set."""
    return f"#{value_set['id']}"


def find_value_set(contained: Sequence[ValueSet], value_set_id: str) -> Optional[ValueSet]:
    """Return the contained ValueSet with the given id, accepting a "#id" reference too."""
    if value_set_id.startswith("#"):
        value_set_id = value_set_id[1:]
    for resource in contained:
        if resource.get("resourceType") == "ValueSet" and resource.get("id") == value_set_id:
            return resource
    return None


def value_set_concepts(value_set: ValueSet) -> List[Coding]:
    """Every concept of every compose.include entry, as Codings."""
    result = []
    for include in value_set.get("compose", {}).get("include", []):
        system = include.get("system")
        for concept in include.get("concept", []):
            result.append(Coding(code=concept.get("code"), display=concept.get("display"), system=system))
    return result


def value_set_options(value_set: ValueSet) -> Tuple[AnswerOption, ...]:
    """
    Copy a value set's concepts into a fresh option list.

    Each option gets a new sub-identifier; code, display and system come
    from the concept.
    """
    return tuple(
        AnswerOption(
            id=create_id(),
            code=coding.code or "",
            display=coding.display or "",
            system=coding.system,
        )
        for coding in value_set_concepts(value_set)
    )
