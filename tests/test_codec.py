"""
Tests for the FHIR Questionnaire codec.

These tests verify:
    - Encoding nests items in Order Tree order
    - Decoding rebuilds the (ItemStore, Order Tree) pair
    - Malformed documents are rejected as a whole
    - Unknown properties survive a round trip
    - JSON and YAML transports
"""

import json

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from qtree.codec import (
    decode,
    encode,
    encode_state,
    extension_from_dict,
    extension_to_dict,
    from_json,
    from_yaml,
    to_json,
    to_yaml,
)
from qtree.errors import InvalidPath, MalformedDocument
from qtree.examples import build_example_questionnaire
from qtree.extensions import (
    ITEM_CONTROL_URL,
    MIN_OCCURS_URL,
    REGEX_URL,
    ItemControlExtension,
    MaxSizeExtension,
    PassthroughExtension,
)
from qtree.model import AnswerOption, Item, ItemStore, ItemType, TreeState
from qtree.mutations import duplicate_item
from qtree.tree import OrderNode
from qtree.values import AnswerKind, AnswerValue, Coding, EnableWhen, Operator


def document(*items, **extra):
    doc = {"resourceType": "Questionnaire", "item": list(items)}
    doc.update(extra)
    return doc


class TestEncode:

    def test_nests_children_in_sibling_order(self):
        doc = encode_state(build_example_questionnaire())

        assert doc["resourceType"] == "Questionnaire"
        assert [i["linkId"] for i in doc["item"]] == ["intro", "consent"]
        assert [i["linkId"] for i in doc["item"][1]["item"]] == ["agree", "contact", "email", "reason"]

    def test_item_properties(self):
        doc = encode_state(build_example_questionnaire())
        agree, contact, email, _ = doc["item"][1]["item"]

        assert agree == {"linkId": "agree", "type": "boolean", "text": "Do you agree to take part?", "required": True}
        assert contact["enableWhen"] == [{"question": "agree", "operator": "=", "answerBoolean": True}]
        assert contact["answerOption"][0] == {
            "valueCoding": {
                "id": "contact-email",
                "system": "http://example.org/CodeSystem/contact-method",
                "code": "email",
                "display": "Email",
            }
        }
        assert {"url": REGEX_URL, "valueString": r"^\S+@\S+$"} in email["extension"]

    def test_metadata(self):
        doc = encode_state(build_example_questionnaire())
        assert doc["title"] == "Research Consent"
        assert doc["status"] == "draft"
        assert "url" not in doc

    def test_order_node_without_item(self):
        with pytest.raises(InvalidPath):
            encode((OrderNode("ghost"),), ItemStore())

    def test_empty_text_is_omitted(self):
        items = ItemStore({"g": Item(link_id="g", type=ItemType.GROUP)})
        doc = encode((OrderNode("g"),), items)
        assert doc["item"] == [{"linkId": "g", "type": "group"}]


class TestDecode:

    def test_rebuilds_store_and_tree(self):
        state = decode(document(
            {"linkId": "g", "type": "group", "text": "Group", "item": [
                {"linkId": "a", "type": "string"},
                {"linkId": "b", "type": "integer", "required": False},
            ]},
            {"linkId": "c", "type": "display", "text": "Bye"},
        ))

        assert state.order == (
            OrderNode("g", children=(OrderNode("a"), OrderNode("b"))),
            OrderNode("c"),
        )
        assert set(state.items) == {"g", "a", "b", "c"}
        assert state.items["b"].required is False
        assert state.items["a"].required is None

    def test_duplicate_link_id_is_malformed(self):
        """A document with two nodes sharing an identifier should fail."""
        doc = document(
            {"linkId": "dup", "type": "group", "item": [{"linkId": "dup", "type": "string"}]},
        )
        with pytest.raises(MalformedDocument) as exc_info:
            decode(doc)
        assert exc_info.value.link_id == "dup"

    def test_duplicate_option_id_is_malformed(self):
        doc = document({"linkId": "c", "type": "choice", "answerOption": [
            {"valueCoding": {"id": "x", "code": "a"}},
            {"valueCoding": {"id": "x", "code": "b"}},
        ]})
        with pytest.raises(MalformedDocument):
            decode(doc)

    @pytest.mark.parametrize("doc", [
        [],
        "Questionnaire",
        {"resourceType": "Patient"},
        {"resourceType": "Questionnaire", "item": {"linkId": "a"}},
        {"resourceType": "Questionnaire", "item": ["a"]},
        {"resourceType": "Questionnaire", "item": [{"linkId": "a"}]},
        {"resourceType": "Questionnaire", "item": [{"linkId": "a", "type": "slider"}]},
        {"resourceType": "Questionnaire", "item": [{"linkId": 7, "type": "string"}]},
        {"resourceType": "Questionnaire", "item": [
            {"linkId": "a", "type": "string", "enableWhen": [{"question": "b", "operator": "~"}]},
        ]},
    ])
    def test_malformed_documents(self, doc):
        with pytest.raises(MalformedDocument):
            decode(doc)

    def test_malformed_is_a_value_error(self):
        with pytest.raises(ValueError):
            decode({"resourceType": "Patient"})

    def test_missing_link_ids_are_allocated(self):
        state = decode(document(
            {"type": "string", "text": "First"},
            {"linkId": "", "type": "string", "text": "Second"},
        ))
        first, second = (node.link_id for node in state.order)
        assert first and second and first != second
        assert state.items[first].text == "First"
        assert state.items[second].link_id == second

    def test_missing_option_ids_are_allocated(self):
        state = decode(document({"linkId": "c", "type": "choice", "answerOption": [
            {"valueCoding": {"code": "a", "display": "A"}},
            {"valueString": "other"},
        ]}))
        coded, plain = state.items["c"].answer_options
        assert coded.id and plain.id and coded.id != plain.id
        assert plain.value == AnswerValue(AnswerKind.STRING, "other")

    def test_known_extensions_are_typed(self):
        state = decode(document({"linkId": "a", "type": "attachment", "extension": [
            {"url": ITEM_CONTROL_URL, "valueCodeableConcept": {"coding": [
                {"system": "http://hl7.org/fhir/ValueSet/questionnaire-item-control", "code": "inline"},
            ]}},
            {"url": "http://hl7.org/fhir/StructureDefinition/maxSize", "valueDecimal": 2},
            {"url": MIN_OCCURS_URL, "valueInteger": 1},
        ]}))
        item = state.items["a"]
        assert item.extensions == (ItemControlExtension("inline"), MaxSizeExtension(2))
        assert item.min_occurs == 1

    def test_contained_and_value_sets(self):
        state = decode(document(
            {"linkId": "c", "type": "choice", "answerValueSet": "#vs"},
            contained=[{"resourceType": "ValueSet", "id": "vs"}],
        ))
        assert state.contained == ({"resourceType": "ValueSet", "id": "vs"},)
        assert state.items["c"].answer_value_set == "#vs"

    def test_decode_does_not_allocate_languages(self):
        assert decode(document()).languages == {}


class TestUnknownProperties:

    def test_unknown_item_and_document_fields_round_trip(self):
        """Should keep fields the engine does not model and re-emit them."""
        doc = document(
            {
                "linkId": "a",
                "type": "string",
                "definition": "http://example.org/def#a",
                "_text": {"extension": [{"url": "http://example.org/x", "valueString": "y"}]},
            },
            meta={"profile": ["http://example.org/profile"]},
            useContext=[{"code": {"code": "focus"}}],
        )
        state = decode(doc)
        assert state.items["a"].passthrough["definition"] == "http://example.org/def#a"
        assert state.metadata.passthrough["meta"] == {"profile": ["http://example.org/profile"]}

        again = encode_state(state)
        assert again["item"][0]["definition"] == "http://example.org/def#a"
        assert again["item"][0]["_text"] == doc["item"][0]["_text"]
        assert again["useContext"] == doc["useContext"]

    def test_unknown_extensions_round_trip(self):
        raw = {"url": "http://example.org/ext", "valueReference": {"reference": "Binary/1"}}
        ext = extension_from_dict(raw)
        assert isinstance(ext, PassthroughExtension)
        assert extension_to_dict(ext) == raw

    def test_known_url_with_unexpected_shape_is_kept_verbatim(self):
        raw = {"url": ITEM_CONTROL_URL, "valueCodeableConcept": {"text": "custom"}}
        ext = extension_from_dict(raw)
        assert isinstance(ext, PassthroughExtension)
        assert extension_to_dict(ext) == raw

    def test_document_round_trip_is_stable(self):
        state = build_example_questionnaire()
        doc = encode_state(state)
        assert encode_state(decode(doc)) == doc


class TestNestedUnknownProperties:
    """Unmodeled keys below the item level survive a round trip."""

    def test_option_extension_and_coding_version(self):
        option = {
            "extension": [{"url": "http://hl7.org/fhir/StructureDefinition/ordinalValue", "valueDecimal": 3}],
            "valueCoding": {"id": "o1", "system": "s", "code": "c", "display": "C", "version": "2"},
        }
        state = decode(document({"linkId": "q", "type": "choice", "answerOption": [option]}))
        (decoded,) = state.items["q"].answer_options
        assert decoded.passthrough == {"extension": option["extension"]}
        assert decoded.coding_passthrough == {"version": "2"}

        again = encode_state(state)
        assert again["item"][0]["answerOption"] == [option]

    def test_non_coded_option_extras(self):
        option = {"id": "o1", "valueInteger": 5, "modifierExtension": []}
        state = decode(document({"linkId": "q", "type": "integer", "answerOption": [option]}))
        assert encode_state(state)["item"][0]["answerOption"] == [option]

    def test_item_code_user_selected(self):
        code = [{"system": "s", "code": "c", "userSelected": True}]
        state = decode(document({"linkId": "q", "type": "string", "code": code}))
        assert state.items["q"].code[0].passthrough == {"userSelected": True}
        assert encode_state(state)["item"][0]["code"] == code

    def test_enable_when_extension(self):
        condition = {
            "question": "a",
            "operator": "=",
            "answerBoolean": True,
            "extension": [{"url": "http://example.org/note", "valueString": "x"}],
        }
        doc = document(
            {"linkId": "a", "type": "boolean"},
            {"linkId": "b", "type": "string", "enableWhen": [condition]},
        )
        state = decode(doc)
        assert state.items["b"].enable_when[0].passthrough == {"extension": condition["extension"]}
        assert encode_state(state)["item"][1]["enableWhen"] == [condition]

    def test_quantity_comparator(self):
        initial = {"valueQuantity": {"value": 70, "unit": "kg", "comparator": "<"}}
        state = decode(document({"linkId": "w", "type": "quantity", "initial": [initial]}))
        assert encode_state(state)["item"][0]["initial"] == [initial]

    def test_duplicate_keeps_option_extras(self):
        option = {
            "extension": [{"url": "http://hl7.org/fhir/StructureDefinition/ordinalValue", "valueDecimal": 1}],
            "valueCoding": {"id": "o1", "code": "c", "display": "C", "userSelected": False},
        }
        state = decode(document({"linkId": "q", "type": "choice", "answerOption": [option]}))
        state = duplicate_item(state, "q")
        (copy_id,) = [i for i in state.items if i != "q"]
        (copied,) = state.items[copy_id].answer_options
        assert copied.passthrough == {"extension": option["extension"]}
        assert copied.coding_passthrough == {"userSelected": False}


class TestOptionCoding:

    def test_empty_code_and_display_are_omitted(self):
        """Should not write empty code or display into an option coding."""
        item = Item(link_id="q", type=ItemType.CHOICE, answer_options=(AnswerOption(id="o1"),))
        state = TreeState(items=ItemStore({"q": item}), order=(OrderNode("q"),))
        (option,) = encode_state(state)["item"][0]["answerOption"]
        assert option == {"valueCoding": {"id": "o1"}}

        (decoded,) = decode(encode_state(state)).items["q"].answer_options
        assert (decoded.code, decoded.display) == ("", "")


class TestRoundTrip:

    def test_example_round_trip(self):
        state = build_example_questionnaire()
        assert decode(encode_state(state)) == state

    def test_rich_item_round_trip(self):
        item = Item(
            link_id="q",
            type=ItemType.QUANTITY,
            text="Weight",
            prefix="2.",
            required=True,
            repeats=False,
            read_only=False,
            min_occurs=1,
            max_occurs=3,
            enable_behavior="any",
            code=(Coding(code="29463-7", system="http://loinc.org"),),
            initial=(AnswerValue(AnswerKind.QUANTITY, _quantity()),),
            passthrough={"definition": "x"},
        )
        state = TreeState(items=ItemStore({"q": item}), order=(OrderNode("q"),))
        assert decode(encode_state(state)) == state

    @settings(max_examples=50, deadline=None)
    @given(st.data())
    def test_decode_encode_is_identity(self, data):
        """decode(encode(T)) should reproduce identifiers, order and content."""
        state = data.draw(trees())
        assert decode(encode_state(state)) == state


def _quantity():
    from qtree.values import Quantity
    return Quantity(value=70.5, unit="kg", system="http://unitsofmeasure.org", code="kg")


_texts = st.text(alphabet="abcdefghij XYZ", max_size=12)
_flags = st.sampled_from([None, True, False])
_leaf_types = st.sampled_from([t for t in ItemType if t != ItemType.GROUP])


@st.composite
def _leaf(draw, link_id, earlier):
    item_type = draw(_leaf_types)
    options = ()
    if item_type in (ItemType.CHOICE, ItemType.OPEN_CHOICE):
        codes = draw(st.lists(st.sampled_from("abcdef"), unique=True, max_size=3))
        options = tuple(
            AnswerOption(id=f"{link_id}-{code}", code=code, display=code.upper(), system="urn:s")
            for code in codes
        )
    conditions = ()
    if earlier and draw(st.booleans()):
        conditions = (EnableWhen(
            draw(st.sampled_from(earlier)),
            Operator.EXISTS,
            AnswerValue(AnswerKind.BOOLEAN, draw(st.booleans())),
        ),)
    initial = ()
    if item_type == ItemType.INTEGER and draw(st.booleans()):
        initial = (AnswerValue(AnswerKind.INTEGER, draw(st.integers(-100, 100))),)
    return Item(
        link_id=link_id,
        type=item_type,
        text=draw(_texts),
        required=draw(_flags),
        repeats=draw(_flags),
        max_length=draw(st.one_of(st.none(), st.integers(1, 500))),
        pattern=draw(st.one_of(st.none(), st.just("^[a-z]+$"))),
        enable_when=conditions,
        answer_options=options,
        initial=initial,
    )


@st.composite
def trees(draw):
    """Random well-formed states: unique identifiers, children only under groups."""
    items = ItemStore()
    counter = [0]

    def build(depth):
        nodes = []
        for _ in range(draw(st.integers(min_value=1 if depth == 0 else 0, max_value=3))):
            counter[0] += 1
            link_id = f"n{counter[0]}"
            if depth < 2 and draw(st.booleans()):
                items.set(link_id, Item(
                    link_id=link_id,
                    type=ItemType.GROUP,
                    text=draw(_texts),
                    extensions=(ItemControlExtension("page"),),
                ))
                nodes.append(OrderNode(link_id, children=build(depth + 1)))
            else:
                items.set(link_id, draw(_leaf(link_id, sorted(items))))
                nodes.append(OrderNode(link_id))
        return tuple(nodes)

    order = build(0)
    return TreeState(items=items, order=order)


class TestTextTransports:

    def test_json_round_trip(self):
        state = build_example_questionnaire()
        text = to_json(state)
        assert json.loads(text)["resourceType"] == "Questionnaire"
        assert from_json(text) == state

    def test_yaml_round_trip(self):
        state = build_example_questionnaire()
        assert from_yaml(to_yaml(state)) == state

    def test_invalid_json(self):
        with pytest.raises(MalformedDocument):
            from_json("{not json")

    def test_invalid_yaml(self):
        with pytest.raises(MalformedDocument):
            from_yaml("item: [unclosed")
