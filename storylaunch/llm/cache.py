"""Bounded response cache for deterministic language-model lookups.

Character extraction and effect detection are called again whenever a failed run is
resumed. Cached responses keep those repeats free within one process.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from hashlib import sha256
import json
from typing import Any


def _canonical(value: Any) -> Any:
    """Collapse whitespace and order mappings so equal inputs hash equally."""

    if isinstance(value, str):
        return " ".join(value.split())
    if isinstance(value, list | tuple):
        return [_canonical(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _canonical(value[key]) for key in sorted(value, key=str)}
    return value


@dataclass(slots=True)
class ResponseCache:
    """LRU cache keyed by provider, model, operation, and hashed input identity."""

    max_entries: int = 256
    entries: OrderedDict[str, str] = field(default_factory=OrderedDict)
    hits: int = 0
    misses: int = 0

    @staticmethod
    def make_key(*, provider: str, model: str, operation: str, input_identity: Any) -> str:
        """Return `response:<provider>:<model>:<operation>:<sha256>`."""

        encoded = json.dumps(
            _canonical(input_identity),
            sort_keys=True,
            ensure_ascii=True,
            separators=(",", ":"),
        ).encode("utf-8")
        return ":".join(
            (
                "response",
                provider.strip().lower(),
                model.strip(),
                operation.strip().lower(),
                sha256(encoded).hexdigest(),
            )
        )

    def get(self, cache_key: str) -> str | None:
        if cache_key not in self.entries:
            self.misses += 1
            return None
        self.hits += 1
        self.entries.move_to_end(cache_key)
        return self.entries[cache_key]

    def set(self, cache_key: str, value: str) -> None:
        self.entries[cache_key] = value
        self.entries.move_to_end(cache_key)
        while len(self.entries) > self.max_entries:
            self.entries.popitem(last=False)

    def hit_rate(self) -> float:
        """Return hits over lookups, or 0.0 before the first lookup."""

        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0
