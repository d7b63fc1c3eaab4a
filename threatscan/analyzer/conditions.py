"""Match conditions for threat patterns.

A pattern's condition is one of three closed variants::

    Contains(text)             case-insensitive substring of the serialised bundle
    StructuredMatch(rule)      regex search over the serialised bundle
    Predicate(name, fn)        bundle-specific logic returning evidence lines or a bool

Each variant carries a ``ConditionKind`` tag and evaluation goes through a
kind → evaluator table that must cover every kind. Evaluators return
``None`` for "no match" or the list of evidence strings for a match.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, ClassVar, Iterable, Union

from threatscan.core.types import ContractAnalysisBundle


class ConditionKind(str, Enum):
    CONTAINS = "contains"
    STRUCTURED = "structured"
    PREDICATE = "predicate"


class BundleView:
    """Serialised JSON view of a bundle, built lazily once per scan."""

    def __init__(self, bundle: ContractAnalysisBundle) -> None:
        self._bundle = bundle
        self._text: str | None = None
        self._lowered: str | None = None

    @property
    def text(self) -> str:
        if self._text is None:
            self._text = self._bundle.model_dump_json(by_alias=True, exclude_none=True)
        return self._text

    @property
    def lowered(self) -> str:
        if self._lowered is None:
            self._lowered = self.text.lower()
        return self._lowered


@dataclass(frozen=True)
class Contains:
    """Match when ``text`` occurs anywhere in the serialised bundle."""

    KIND: ClassVar[ConditionKind] = ConditionKind.CONTAINS

    text: str

    def __post_init__(self) -> None:
        if not self.text:
            raise ValueError("Contains condition needs non-empty text")


@dataclass(frozen=True)
class StructuredMatch:
    """Match when the regex ``rule`` is found in the serialised bundle."""

    KIND: ClassVar[ConditionKind] = ConditionKind.STRUCTURED

    rule: str
    flags: int = 0
    compiled: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        # Compile eagerly so a bad regex fails at pattern definition time.
        object.__setattr__(self, "compiled", re.compile(self.rule, self.flags))


PredicateFn = Callable[[ContractAnalysisBundle], Union[bool, Iterable[str]]]


@dataclass(frozen=True)
class Predicate:
    """Named bundle check.

    ``fn`` yields evidence lines (none means no match) or returns a plain
    ``bool``; ``True`` matches with a generic evidence line.
    """

    KIND: ClassVar[ConditionKind] = ConditionKind.PREDICATE

    name: str
    fn: PredicateFn = field(compare=False)


MatchCondition = Union[Contains, StructuredMatch, Predicate]

CONDITION_TYPES: tuple[type, ...] = (Contains, StructuredMatch, Predicate)


def _eval_contains(condition: Contains, bundle: ContractAnalysisBundle, view: BundleView) -> list[str] | None:
    if condition.text.lower() in view.lowered:
        return [f"Bundle contains '{condition.text}'"]
    return None


def _eval_structured(
    condition: StructuredMatch, bundle: ContractAnalysisBundle, view: BundleView
) -> list[str] | None:
    match = condition.compiled.search(view.text)
    if match is None:
        return None
    return [f"Matched /{condition.rule}/: {match.group(0)[:80]!r}"]


def _eval_predicate(condition: Predicate, bundle: ContractAnalysisBundle, view: BundleView) -> list[str] | None:
    outcome = condition.fn(bundle)
    if isinstance(outcome, bool):
        return [f"Predicate '{condition.name}' matched"] if outcome else None
    evidence = [str(line) for line in outcome]
    return evidence or None


_EVALUATORS: dict[ConditionKind, Callable[..., list[str] | None]] = {
    ConditionKind.CONTAINS: _eval_contains,
    ConditionKind.STRUCTURED: _eval_structured,
    ConditionKind.PREDICATE: _eval_predicate,
}

if set(_EVALUATORS) != set(ConditionKind):
    raise RuntimeError("condition evaluator table does not cover every ConditionKind")


def evaluate_condition(
    condition: MatchCondition,
    bundle: ContractAnalysisBundle,
    view: BundleView | None = None,
) -> list[str] | None:
    """Evaluate one condition against a bundle.

    Returns:
        ``None`` if the condition does not match, otherwise the evidence lines.
    """
    evaluator = _EVALUATORS[condition.KIND]
    return evaluator(condition, bundle, view or BundleView(bundle))
