"""Custom pattern files — load extra rule patterns from YAML.

Format::

    patterns:
      - id: CUSTOM001
        name: Proxy admin backdoor
        description: Upgradeable proxy exposes an unprotected admin setter
        severity: high
        confidence: 80
        category: code_vulnerability
        match:
          contains: "setAdmin"          # or: regex: "upgradeTo\\w*"
        indicators: [proxy_admin]
        mitigation: Verify the proxy admin is a timelocked multisig
        reference_id: CUSTOM-PROXY-001
        references: ["https://example.org/advisory"]

Only ``contains`` and ``regex`` conditions can be expressed in YAML;
predicates are code.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

import yaml

from threatscan.analyzer.conditions import Contains, MatchCondition, StructuredMatch
from threatscan.analyzer.patterns import ThreatPattern
from threatscan.core.errors import PatternDefinitionError

logger = logging.getLogger(__name__)

_REQUIRED_KEYS = ("id", "name", "description", "severity", "confidence", "category", "match")

_REGEX_FLAGS = {
    "ignorecase": re.IGNORECASE,
    "multiline": re.MULTILINE,
    "dotall": re.DOTALL,
}


def load_patterns_file(path: str | Path) -> list[ThreatPattern]:
    """Parse a YAML pattern file.

    Raises:
        PatternDefinitionError: if the file is missing, unreadable, or any
            entry is malformed. Nothing is returned for a partly valid file.
    """
    path = Path(path)
    if not path.is_file():
        raise PatternDefinitionError(f"Pattern file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise PatternDefinitionError(f"Invalid YAML in {path}: {exc}") from exc

    if data is None:
        return []
    if not isinstance(data, dict) or not isinstance(data.get("patterns", []), list):
        raise PatternDefinitionError(f"Invalid pattern file: expected a 'patterns' list at {path}")

    patterns = [parse_pattern(entry, source=str(path)) for entry in data.get("patterns", [])]
    logger.info("Loaded %d custom patterns from %s", len(patterns), path)
    return patterns


def parse_pattern(entry: Any, source: str = "<inline>") -> ThreatPattern:
    """Build one ``ThreatPattern`` from a mapping."""
    if not isinstance(entry, dict):
        raise PatternDefinitionError(f"Invalid pattern entry in {source}: expected mapping")

    missing = [key for key in _REQUIRED_KEYS if key not in entry]
    if missing:
        raise PatternDefinitionError(
            f"Pattern {entry.get('id', '?')} in {source} is missing: {', '.join(missing)}"
        )

    try:
        return ThreatPattern(
            id=str(entry["id"]),
            name=str(entry["name"]),
            description=str(entry["description"]),
            severity=entry["severity"],
            confidence=entry["confidence"],
            category=entry["category"],
            condition=_parse_condition(entry["match"]),
            indicators=tuple(entry.get("indicators") or ()),
            mitigation=str(entry.get("mitigation", "")),
            reference_id=entry.get("reference_id"),
            references=tuple(entry.get("references") or ()),
            version=int(entry.get("version", 1)),
        )
    except (ValueError, TypeError, re.error) as exc:
        raise PatternDefinitionError(f"Pattern {entry['id']} in {source} is invalid: {exc}") from exc


def _parse_condition(spec: Any) -> MatchCondition:
    if not isinstance(spec, dict) or len({"contains", "regex"} & set(spec)) != 1:
        raise ValueError("match must set exactly one of 'contains' or 'regex'")

    if "contains" in spec:
        return Contains(text=str(spec["contains"]))

    flags = 0
    for name in spec.get("flags", []):
        try:
            flags |= _REGEX_FLAGS[str(name).lower()]
        except KeyError:
            raise ValueError(f"unknown regex flag {name!r}") from None
    return StructuredMatch(rule=str(spec["regex"]), flags=flags)
