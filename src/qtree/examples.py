"""
Example questionnaire for demos and tests.

Builds a small research consent form: an introduction, a consent group with
a boolean question, a choice question shown only on consent, and follow-up
questions chained on the previous answers.
"""
from qtree.extensions import ItemControlExtension, ValidationTextExtension
from qtree.model import (
    AnswerOption,
    Item,
    ItemStore,
    ItemType,
    QuestionnaireMetadata,
    TreeState,
)
from qtree.tree import OrderNode
from qtree.values import AnswerKind, AnswerValue, Coding, EnableWhen, Operator

CONTACT_SYSTEM = "http://example.org/CodeSystem/contact-method"


def build_example_questionnaire() -> TreeState:
    items = ItemStore()

    items.set("intro", Item(
        link_id="intro",
        type=ItemType.DISPLAY,
        text="This form asks whether you agree to take part in the study.",
    ))
    items.set("consent", Item(
        link_id="consent",
        type=ItemType.GROUP,
        text="Consent",
        extensions=(ItemControlExtension("page"),),
    ))
    items.set("agree", Item(
        link_id="agree",
        type=ItemType.BOOLEAN,
        text="Do you agree to take part?",
        required=True,
    ))

    # Shown only when the respondent agrees
    items.set("contact", Item(
        link_id="contact",
        type=ItemType.CHOICE,
        text="How may we contact you?",
        extensions=(ItemControlExtension("radio-button"),),
        enable_when=(EnableWhen("agree", Operator.EQUAL, AnswerValue(AnswerKind.BOOLEAN, True)),),
        answer_options=(
            AnswerOption(id="contact-email", code="email", display="Email", system=CONTACT_SYSTEM),
            AnswerOption(id="contact-phone", code="phone", display="Phone", system=CONTACT_SYSTEM),
            AnswerOption(id="contact-post", code="post", display="Post", system=CONTACT_SYSTEM),
        ),
    ))
    items.set("email", Item(
        link_id="email",
        type=ItemType.STRING,
        text="Email address",
        required=True,
        pattern=r"^\S+@\S+$",
        extensions=(ValidationTextExtension("Enter a valid email address"),),
        enable_when=(
            EnableWhen("contact", Operator.EQUAL, AnswerValue(AnswerKind.CODING, Coding(code="email", system=CONTACT_SYSTEM))),
        ),
    ))
    items.set("reason", Item(
        link_id="reason",
        type=ItemType.TEXT,
        text="Would you tell us why not?",
        enable_when=(EnableWhen("agree", Operator.EQUAL, AnswerValue(AnswerKind.BOOLEAN, False)),),
    ))

    order = (
        OrderNode("intro"),
        OrderNode("consent", children=(
            OrderNode("agree"),
            OrderNode("contact"),
            OrderNode("email"),
            OrderNode("reason"),
        )),
    )

    metadata = QuestionnaireMetadata(
        name="research-consent",
        title="Research Consent",
        status="draft",
        language="en-US",
        publisher="Example Research Unit",
    )
    return TreeState(items=items, order=order, metadata=metadata)
