"""
Injectable validation cache.

Validation cost grows with document size and edits can arrive once per
keystroke, so callers memoize validator results keyed by a content hash of
everything validation reads. The cache is an explicit object owned by the
caller; the engine's functions never consult it.

Eviction is least-recently-INSERTED: once the size cap is exceeded the oldest
entry goes, regardless of how recently it was read. Clearing the cache is
always safe; it only costs recomputation.
"""

import hashlib
import json
import logging
from collections import OrderedDict
from dataclasses import fields, is_dataclass
from enum import Enum
from typing import Any, List, Mapping, Optional, Sequence

from qtree.config import get_config
from qtree.model import ItemStore, QuestionnaireMetadata, TranslationOverlay, TreeState
from qtree.tree import Forest
from qtree.validator import Diagnostic, validate

logger = logging.getLogger(__name__)


def _canonical(obj: Any) -> Any:
    """Reduce model objects to plain JSON-able data with a stable shape."""
    if is_dataclass(obj) and not isinstance(obj, type):
        data = {f.name: _canonical(getattr(obj, f.name)) for f in fields(obj)}
        data["__kind__"] = type(obj).__name__
        return data
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, ItemStore):
        return {k: _canonical(v) for k, v in obj.items()}
    if isinstance(obj, Mapping):
        return {str(k): _canonical(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_canonical(v) for v in obj]
    return obj


def content_hash(
    order: Forest,
    items: ItemStore,
    languages: Optional[Mapping[str, TranslationOverlay]] = None,
    contained: Sequence[Mapping] = (),
    metadata: Optional[QuestionnaireMetadata] = None,
) -> str:
    """SHA-256 over a canonical JSON rendering of every validator input."""
    payload = {
        "order": _canonical(order),
        "items": _canonical(items),
        "languages": _canonical(languages or {}),
        "contained": _canonical(contained),
        "metadata": _canonical(metadata),
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def state_hash(state: TreeState) -> str:
    return content_hash(state.order, state.items, state.languages, state.contained, state.metadata)


class ValidationCache:
    """
    Bounded memo of validation results keyed by content hash.

    Usage:
        cache = ValidationCache()
        diagnostics = cache.validate(state)   # computed
        diagnostics = cache.validate(state)   # served from cache
    """

    def __init__(self, max_entries: Optional[int] = None):
        if max_entries is None:
            max_entries = get_config().validation_cache_size
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, List[Diagnostic]]" = OrderedDict()

    def get(self, key: str) -> Optional[List[Diagnostic]]:
        cached = self._entries.get(key)
        return list(cached) if cached is not None else None

    def put(self, key: str, diagnostics: Sequence[Diagnostic]) -> None:
        self._entries[key] = list(diagnostics)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("validation cache evicted %s", evicted[:12])

    def clear(self) -> None:
        self._entries.clear()

    def validate(self, state: TreeState) -> List[Diagnostic]:
        """Validate state, reusing a cached result for identical content."""
        key = state_hash(state)
        cached = self.get(key)
        if cached is not None:
            logger.debug("validation cache hit %s", key[:12])
            return cached
        diagnostics = validate(state.order, state.items, state.languages, state.contained, state.metadata)
        self.put(key, diagnostics)
        return list(diagnostics)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
