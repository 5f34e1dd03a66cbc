"""
Questionnaire Tree Engine

An in-memory editing model for FHIR Questionnaire documents.

ARCHITECTURAL GUARANTEE:
------------------------
The engine keeps item CONTENT (the ItemStore) apart from item ORDER
(the Order Tree) and changes both together, atomically, through pure
mutation functions. It contains ZERO knowledge of:
    - Rendering or form filling
    - Response evaluation
    - Persistence, networking or undo history

Layers:
    qtree.model / qtree.tree      the normalized representation
    qtree.mutations               edit intents as pure functions
    qtree.validator               read-only diagnostics
    qtree.codec                   FHIR JSON in and out
    qtree.value_sets / units      contained value sets and quantity units
"""
import logging

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())
