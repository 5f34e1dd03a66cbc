"""
Tests for the injectable validation cache.
"""

import pytest
from qtree.cache import ValidationCache, content_hash, state_hash
from qtree.config import EngineConfig
from qtree.examples import build_example_questionnaire
from qtree.mutations import add_language, update_item_field, update_metadata
from qtree.validator import Diagnostic, DiagnosticKind, validate_state


def diag(link_id):
    return Diagnostic(link_id, "required", "x", DiagnosticKind.REQUIRED_NOT_ALLOWED)


class TestContentHash:

    def test_equal_content_equal_hash(self):
        """Two independently built states with equal content should hash alike."""
        assert state_hash(build_example_questionnaire()) == state_hash(build_example_questionnaire())

    def test_hash_changes_with_items(self):
        state = build_example_questionnaire()
        edited = update_item_field(state, "intro", "text", "Hello")
        assert state_hash(state) != state_hash(edited)

    def test_hash_changes_with_languages_and_metadata(self):
        state = build_example_questionnaire()
        assert state_hash(state) != state_hash(add_language(state, "sv-SE"))
        assert state_hash(state) != state_hash(update_metadata(state, "title", "Other"))

    def test_hash_depends_on_order(self):
        state = build_example_questionnaire()
        swapped = state.order[::-1]
        assert content_hash(state.order, state.items) != content_hash(swapped, state.items)


class TestValidationCache:

    def test_validate_caches_result(self):
        cache = ValidationCache(max_entries=4)
        state = update_item_field(build_example_questionnaire(), "intro", "required", True)

        first = cache.validate(state)
        assert len(cache) == 1
        assert state_hash(state) in cache
        assert cache.validate(state) == first == validate_state(state)
        assert len(cache) == 1

    def test_returned_lists_are_copies(self):
        cache = ValidationCache(max_entries=2)
        cache.put("k", [diag("a")])
        cache.get("k").clear()
        assert cache.get("k") == [diag("a")]

    def test_evicts_least_recently_inserted(self):
        """Should drop the oldest insertion even if it was just read."""
        cache = ValidationCache(max_entries=2)
        cache.put("one", [diag("1")])
        cache.put("two", [diag("2")])
        cache.get("one")
        cache.put("three", [diag("3")])

        assert "one" not in cache
        assert "two" in cache
        assert "three" in cache

    def test_clear(self):
        cache = ValidationCache(max_entries=2)
        cache.put("k", [])
        cache.clear()
        assert len(cache) == 0
        assert cache.get("k") is None

    def test_default_size_from_config(self, monkeypatch):
        monkeypatch.setattr("qtree.cache.get_config", lambda: EngineConfig(validation_cache_size=7))
        assert ValidationCache().max_entries == 7

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            ValidationCache(max_entries=0)
