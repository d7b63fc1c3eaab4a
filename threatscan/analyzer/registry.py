"""Pattern registry — the single source of truth for rule-based detection.

The registry is copy-on-write: the live mapping is never mutated in place.
Writers build a new dict under a lock and swap the reference, so readers
never take a lock and a scan in flight keeps the snapshot it started with.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from collections import Counter
from typing import Any, Iterator

from threatscan.analyzer.patterns import ThreatPattern, builtin_patterns
from threatscan.core.errors import DuplicatePatternError, PatternNotFoundError
from threatscan.core.types import Severity, ThreatCategory

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset(
    f.name for f in dataclasses.fields(ThreatPattern) if f.name != "id"
)


def _checked_changes(pattern_id: str, fields: dict[str, Any]) -> dict[str, Any]:
    if fields.get("id", pattern_id) != pattern_id:
        raise ValueError("pattern id cannot be changed")
    changes = {name: value for name, value in fields.items() if name != "id"}
    unknown = set(changes) - _UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"unknown pattern fields: {', '.join(sorted(unknown))}")
    return changes


class PatternRegistry:
    """Registry of threat patterns keyed by id, in registration order."""

    def __init__(self, patterns: list[ThreatPattern] | None = None) -> None:
        self._write_lock = threading.Lock()
        self._patterns: dict[str, ThreatPattern] = {}
        for pattern in patterns or []:
            self.register(pattern)

    @classmethod
    def with_builtin_patterns(cls) -> "PatternRegistry":
        return cls(builtin_patterns())

    # ── Mutations ────────────────────────────────────────────────────────

    def register(self, pattern: ThreatPattern) -> None:
        """Add a pattern.

        Raises:
            DuplicatePatternError: if a pattern with the same id exists.
        """
        with self._write_lock:
            if pattern.id in self._patterns:
                raise DuplicatePatternError(pattern.id)
            updated = dict(self._patterns)
            updated[pattern.id] = pattern
            self._patterns = updated
        logger.debug("Registered pattern %s", pattern.id, extra={"pattern_id": pattern.id})

    def update(self, pattern_id: str, **fields: Any) -> ThreatPattern:
        """Merge ``fields`` into an existing pattern and return the new version.

        Unspecified fields are preserved. ``version`` is bumped unless the
        caller sets it explicitly. The id is looked up before the fields are
        checked.

        Raises:
            PatternNotFoundError: if ``pattern_id`` is not registered.
            ValueError: on unknown fields, an id change, or invalid values.
        """
        with self._write_lock:
            current = self._patterns.get(pattern_id)
            if current is None:
                raise PatternNotFoundError(pattern_id)
            changes = _checked_changes(pattern_id, fields)
            changes.setdefault("version", current.version + 1)
            replacement = dataclasses.replace(current, **changes)
            updated = dict(self._patterns)
            updated[pattern_id] = replacement
            self._patterns = updated

        logger.info(
            "Updated pattern %s to v%d (%s)",
            pattern_id, replacement.version, ", ".join(sorted(changes)),
            extra={"pattern_id": pattern_id},
        )
        return replacement

    # ── Reads ────────────────────────────────────────────────────────────

    def snapshot(self) -> tuple[ThreatPattern, ...]:
        """Return a consistent, immutable view of all patterns."""
        return tuple(self._patterns.values())

    def get(self, pattern_id: str) -> ThreatPattern | None:
        return self._patterns.get(pattern_id)

    def list_all(self) -> list[ThreatPattern]:
        return list(self._patterns.values())

    def list_by_category(self, category: ThreatCategory | str) -> list[ThreatPattern]:
        category = ThreatCategory(category)
        return [p for p in self._patterns.values() if p.category == category]

    def list_by_severity(self, severity: Severity | str) -> list[ThreatPattern]:
        severity = Severity(severity)
        return [p for p in self._patterns.values() if p.severity == severity]

    def count_by_category(self) -> dict[str, int]:
        return dict(Counter(p.category.value for p in self._patterns.values()))

    def count_by_severity(self) -> dict[str, int]:
        return dict(Counter(p.severity.value for p in self._patterns.values()))

    def __len__(self) -> int:
        return len(self._patterns)

    def __contains__(self, pattern_id: object) -> bool:
        return pattern_id in self._patterns

    def __iter__(self) -> Iterator[ThreatPattern]:
        return iter(self.snapshot())
