"""Evaluator dispatch — run every registered pattern against one bundle."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from threatscan.analyzer.conditions import BundleView, evaluate_condition
from threatscan.analyzer.patterns import ThreatPattern
from threatscan.core.errors import PatternEvaluationError
from threatscan.core.types import ContractAnalysisBundle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatternMatch:
    """A pattern whose condition matched, with the evidence it produced."""

    pattern: ThreatPattern
    evidence: tuple[str, ...] = ()


@dataclass
class DispatchResult:
    matches: list[PatternMatch] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def evaluate_patterns(
    patterns: Iterable[ThreatPattern],
    bundle: ContractAnalysisBundle,
    view: BundleView | None = None,
    scan_id: str = "",
) -> DispatchResult:
    """Evaluate each pattern's condition once against ``bundle``.

    A condition that raises is logged as a ``PatternEvaluationError`` and
    the pattern is skipped; the remaining patterns still run.
    """
    view = view or BundleView(bundle)
    result = DispatchResult()

    for pattern in patterns:
        try:
            evidence = evaluate_condition(pattern.condition, bundle, view)
        except Exception as exc:
            error = PatternEvaluationError(pattern.id, exc)
            logger.warning(
                "%s; skipping", error,
                exc_info=exc,
                extra={"pattern_id": pattern.id, "scan_id": scan_id, "address": bundle.address},
            )
            result.skipped.append(pattern.id)
            continue

        if evidence is not None:
            result.matches.append(PatternMatch(pattern=pattern, evidence=tuple(evidence)))

    logger.debug(
        "Evaluated patterns: %d matched, %d skipped",
        len(result.matches), len(result.skipped),
        extra={"scan_id": scan_id, "address": bundle.address},
    )
    return result
