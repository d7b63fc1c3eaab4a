"""Rule patterns, detector adapters and the scan pipeline."""

from threatscan.analyzer.engine import ThreatEngine
from threatscan.analyzer.patterns import ThreatPattern, builtin_patterns
from threatscan.analyzer.registry import PatternRegistry

__all__ = ["PatternRegistry", "ThreatEngine", "ThreatPattern", "builtin_patterns"]
