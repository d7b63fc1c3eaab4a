"""End-to-end tests for ThreatEngine."""

from __future__ import annotations

import asyncio
import logging

import pytest

from threatscan.analyzer.conditions import Contains, Predicate, StructuredMatch
from threatscan.analyzer.engine import ThreatEngine
from threatscan.analyzer.patterns import ThreatPattern
from threatscan.analyzer.registry import PatternRegistry
from threatscan.analyzer.synthesizer import SEVERITY_WEIGHTS
from threatscan.core.config import Settings
from threatscan.core.errors import DuplicatePatternError, InvalidBundleError
from threatscan.core.types import FindingSource, Severity, ThreatCategory
from threatscan.services.events import EventBus
from threatscan.tests.conftest import (
    BrokenScopeDetector,
    ExplodingDetector,
    FailingDetector,
    OutOfScopeDetector,
    SlowDetector,
    StaticDetector,
    make_bundle,
)


def _custom(pattern_id: str = "CUSTOM001", condition=None, **overrides) -> ThreatPattern:
    fields = dict(
        id=pattern_id,
        name="Proxy admin backdoor",
        description="Unprotected admin setter",
        severity=Severity.HIGH,
        confidence=80,
        category=ThreatCategory.CODE_VULNERABILITY,
        condition=condition or Contains("setAdmin"),
    )
    fields.update(overrides)
    return ThreatPattern(**fields)


class RegistryMutatingDetector(StaticDetector):
    """Edits the engine's patterns on its first run, mid-scan."""

    DETECTOR_ID = "mutating_test"

    def __init__(self) -> None:
        super().__init__(confidence=0.0)
        self.engine: ThreatEngine | None = None

    async def analyze(self, bundle):
        if self.calls == 0 and self.engine is not None:
            self.engine.update_pattern("HP003", severity="low")
            self.engine.add_custom_pattern(_custom("CUSTOM010", condition=Contains("blacklist")))
        return await super().analyze(bundle)


# ── Core scan behaviour ──────────────────────────────────────────────────


class TestScan:

    @pytest.mark.asyncio
    async def test_benign_bundle_has_no_findings(self, engine: ThreatEngine, benign_bundle):
        report = await engine.scan(benign_bundle)
        assert report.findings == []
        assert report.risk.score == 0
        assert report.escalated is False
        assert report.address == "0xabc"

    @pytest.mark.asyncio
    async def test_empty_bundle(self, engine: ThreatEngine, empty_bundle):
        assert await engine.analyze_contract(empty_bundle) == []

    @pytest.mark.asyncio
    async def test_risk_score_formula(self, engine: ThreatEngine, honeypot_bundle, rug_pull_bundle):
        for bundle in (honeypot_bundle, rug_pull_bundle):
            findings = await engine.analyze_contract(bundle)
            for finding in (f for f in findings if f.source == FindingSource.RULE):
                pattern = engine.get_pattern_by_id(finding.pattern_id)
                assert finding.risk_score == pattern.confidence * SEVERITY_WEIGHTS[pattern.severity]

    @pytest.mark.asyncio
    async def test_findings_sorted_by_risk(self, engine: ThreatEngine, honeypot_bundle):
        findings = await engine.analyze_contract(honeypot_bundle)
        scores = [f.risk_score for f in findings]
        assert scores == sorted(scores, reverse=True)
        assert [f.pattern_id for f in findings] == ["HP001", "HP003"]

    @pytest.mark.asyncio
    async def test_mapping_input(self, engine: ThreatEngine):
        findings = await engine.analyze_contract({
            "address": "0xabc",
            "network": "ethereum",
            "tokenMetrics": {"topHolders": [{"address": "0x1", "percentage": 25}]},
        })
        assert [f.pattern_id for f in findings] == ["RP003"]

    @pytest.mark.asyncio
    async def test_invalid_bundle_rejected_before_patterns_run(self, settings: Settings):
        calls: list[str] = []

        def spy(bundle):
            calls.append(bundle.address)
            return []

        registry = PatternRegistry([_custom(condition=Predicate("spy", spy))])
        engine = ThreatEngine(settings=settings, detectors=[], registry=registry)
        with pytest.raises(InvalidBundleError):
            await engine.scan({"network": "ethereum"})
        with pytest.raises(InvalidBundleError):
            await engine.scan(42)
        assert calls == []

    @pytest.mark.asyncio
    async def test_idempotent(self, engine: ThreatEngine, rug_pull_bundle):
        first = await engine.analyze_contract(rug_pull_bundle)
        second = await engine.analyze_contract(rug_pull_bundle)
        assert len(first) == len(second) > 0
        assert all(a.same_content_as(b) for a, b in zip(first, second))
        assert {f.finding_id for f in first}.isdisjoint(f.finding_id for f in second)


# ── Concrete cases ───────────────────────────────────────────────────────


class TestConcreteCases:

    @pytest.mark.asyncio
    async def test_buy_without_sell_plus_blacklist(self, engine: ThreatEngine, honeypot_bundle):
        findings = await engine.analyze_contract(honeypot_bundle)
        critical_honeypots = [
            f for f in findings
            if f.category == ThreatCategory.HONEYPOT and f.severity == Severity.CRITICAL
        ]
        assert len(critical_honeypots) == 1

    @pytest.mark.asyncio
    async def test_uncapped_mint(self, engine: ThreatEngine):
        bundle = make_bundle(
            abi=[{"name": "mint", "type": "function"}],
            sourceCode="contract T { function mint(address to) external onlyOwner {} }",
        )
        findings = await engine.analyze_contract(bundle)
        rule_rug_pulls = [
            f for f in findings
            if f.category == ThreatCategory.RUG_PULL and f.source == FindingSource.RULE
        ]
        assert len(rule_rug_pulls) == 1
        assert rule_rug_pulls[0].pattern_id == "RP001"
        assert rule_rug_pulls[0].severity in (Severity.HIGH, Severity.CRITICAL)

    @pytest.mark.asyncio
    async def test_uncapped_mint_alone_escalates(self, engine: ThreatEngine):
        # A lone critical finding scores 25 / 25 * 100, above the escalation threshold.
        bundle = make_bundle(
            abi=[{"name": "mint", "type": "function"}],
            sourceCode="contract T { function mint(address to) external onlyOwner {} }",
        )
        report = await engine.scan(bundle)
        assert report.risk.score == pytest.approx(100.0)
        assert report.escalated is True
        assert [f.pattern_id for f in report.findings] == ["META001", "RP001"]
        assert report.findings[0].source == FindingSource.META
        assert report.findings[0].category == ThreatCategory.RUG_PULL

    @pytest.mark.asyncio
    @pytest.mark.parametrize("percentage,expected", [(25, True), (10, False)])
    async def test_top_holder_concentration(self, engine: ThreatEngine, percentage, expected):
        bundle = make_bundle(tokenMetrics={"topHolders": [{"address": "0x1", "percentage": percentage}]})
        findings = await engine.analyze_contract(bundle)
        assert any(f.pattern_id == "RP003" for f in findings) is expected


# ── Meta-escalation ──────────────────────────────────────────────────────


class TestEscalation:

    @pytest.mark.asyncio
    async def test_four_criticals_escalate(self, engine: ThreatEngine, critical_bundle):
        report = await engine.scan(critical_bundle)
        criticals = [f for f in report.findings if f.source == FindingSource.RULE]
        assert len(criticals) >= 4
        assert all(f.severity == Severity.CRITICAL and f.confidence >= 90 for f in criticals)
        assert report.risk.score >= 90
        assert report.escalated is True

        meta = [f for f in report.findings if f.pattern_id == "META001"]
        assert len(meta) == 1
        # Risk 100 outranks every rule finding.
        assert report.findings[0].pattern_id == "META001"

    @pytest.mark.asyncio
    async def test_no_escalation_below_threshold(self, engine: ThreatEngine, honeypot_bundle):
        report = await engine.scan(honeypot_bundle)
        # (25 + 15) / (2 * 25) * 100
        assert report.risk.score == pytest.approx(80.0)
        assert report.escalated is False
        assert all(f.pattern_id != "META001" for f in report.findings)


# ── Pattern management ───────────────────────────────────────────────────


class TestPatternManagement:

    @pytest.mark.asyncio
    async def test_custom_pattern_is_used(self, engine: ThreatEngine):
        engine.add_custom_pattern(_custom())
        findings = await engine.analyze_contract(make_bundle(sourceCode="function setAdmin(address a) {}"))
        assert [f.pattern_id for f in findings] == ["CUSTOM001"]

    @pytest.mark.asyncio
    async def test_regex_custom_pattern(self, engine: ThreatEngine):
        engine.add_custom_pattern(_custom("CUSTOM002", condition=StructuredMatch(r"upgradeTo\w*")))
        findings = await engine.analyze_contract(make_bundle(sourceCode="upgradeToAndCall(x)"))
        assert findings[0].pattern_id == "CUSTOM002"

    @pytest.mark.asyncio
    async def test_boolean_predicate_pattern(self, engine: ThreatEngine, empty_bundle):
        engine.add_custom_pattern(_custom("CUSTOM003", condition=Predicate("always", lambda b: True)))
        report = await engine.scan(empty_bundle)
        assert [f.pattern_id for f in report.findings] == ["CUSTOM003"]
        assert report.findings[0].evidence[-1] == "Predicate 'always' matched"
        assert report.skipped_patterns == []

    def test_duplicate_custom_pattern(self, engine: ThreatEngine):
        with pytest.raises(DuplicatePatternError):
            engine.add_custom_pattern(_custom("HP001"))

    def test_update_nonexistent(self, engine: ThreatEngine):
        before = engine.list_all_patterns()
        assert engine.update_pattern("nonexistent", confidence=10) is False
        assert engine.list_all_patterns() == before

    def test_update_nonexistent_with_unknown_field(self, engine: ThreatEngine):
        assert engine.update_pattern("nonexistent", pattern="x") is False

    @pytest.mark.asyncio
    async def test_update_changes_next_scan(self, engine: ThreatEngine, honeypot_bundle):
        assert engine.update_pattern("HP003", severity="critical", confidence=90) is True
        findings = await engine.analyze_contract(honeypot_bundle)
        hp003 = next(f for f in findings if f.pattern_id == "HP003")
        assert hp003.severity == Severity.CRITICAL
        assert hp003.risk_score == 90.0
        assert engine.get_pattern_by_id("HP003").version == 2

    def test_listing(self, engine: ThreatEngine):
        assert len(engine.list_all_patterns()) == 14
        assert len(engine.list_patterns_by_category("honeypot")) == 3
        assert len(engine.list_patterns_by_severity(Severity.MEDIUM)) == 2

    def test_detection_stats(self, settings: Settings):
        engine = ThreatEngine(settings=settings, detectors=[StaticDetector()])
        stats = engine.get_detection_stats()
        assert stats.total_patterns == 14
        assert stats.patterns_by_category["rug_pull"] == 3
        assert stats.patterns_by_severity["critical"] == 5
        assert stats.loaded_detector_count == 1

    def test_default_detectors_loaded(self, settings: Settings):
        assert len(ThreatEngine(settings=settings).detectors) == 3
        disabled = settings.model_copy(update={"enable_detectors": False})
        assert ThreatEngine(settings=disabled).detectors == []

    def test_engines_are_isolated(self, settings: Settings):
        a = ThreatEngine(settings=settings, detectors=[])
        b = ThreatEngine(settings=settings, detectors=[])
        a.add_custom_pattern(_custom())
        assert b.get_pattern_by_id("CUSTOM001") is None


# ── Failure isolation ────────────────────────────────────────────────────


class TestFailureIsolation:

    @pytest.mark.asyncio
    async def test_pattern_error_skips_only_that_pattern(self, settings: Settings, honeypot_bundle, caplog):
        def broken(bundle):
            raise RuntimeError("predicate bug")

        registry = PatternRegistry.with_builtin_patterns()
        registry.register(_custom("BROKEN001", condition=Predicate("broken", broken)))
        engine = ThreatEngine(settings=settings, detectors=[], registry=registry)

        with caplog.at_level(logging.WARNING, logger="threatscan.analyzer.dispatch"):
            report = await engine.scan(honeypot_bundle)

        assert report.skipped_patterns == ["BROKEN001"]
        assert [f.pattern_id for f in report.findings] == ["HP001", "HP003"]
        assert any(getattr(r, "pattern_id", None) == "BROKEN001" for r in caplog.records)

    @pytest.mark.asyncio
    async def test_detector_above_threshold_contributes(self, settings: Settings, empty_bundle):
        detector = StaticDetector(confidence=0.9)
        engine = ThreatEngine(settings=settings, detectors=[detector])
        findings = await engine.analyze_contract(empty_bundle)
        assert [f.pattern_id for f in findings] == ["ML:static_test"]
        assert findings[0].risk_score == pytest.approx(90 * 0.6)
        assert detector.calls == 1

    @pytest.mark.asyncio
    async def test_detector_at_threshold_ignored(self, settings: Settings, empty_bundle):
        engine = ThreatEngine(settings=settings, detectors=[StaticDetector(confidence=0.7)])
        assert await engine.analyze_contract(empty_bundle) == []

    @pytest.mark.asyncio
    async def test_unavailable_detector(self, settings: Settings, honeypot_bundle):
        engine = ThreatEngine(settings=settings, detectors=[FailingDetector(), StaticDetector()])
        report = await engine.scan(honeypot_bundle)
        assert report.failed_detectors == ["failing_test"]
        assert [f.pattern_id for f in report.findings] == ["HP001", "HP003", "ML:static_test"]

    @pytest.mark.asyncio
    async def test_unexpected_detector_error(self, settings: Settings, empty_bundle):
        engine = ThreatEngine(settings=settings, detectors=[ExplodingDetector()])
        report = await engine.scan(empty_bundle)
        assert report.failed_detectors == ["exploding_test"]
        assert report.findings == []

    @pytest.mark.asyncio
    async def test_detector_timeout(self, settings: Settings, empty_bundle):
        fast = settings.model_copy(update={"detector_timeout_seconds": 0.05})
        engine = ThreatEngine(settings=fast, detectors=[SlowDetector(), StaticDetector()])
        report = await engine.scan(empty_bundle)
        assert report.failed_detectors == ["slow_test"]
        assert [f.pattern_id for f in report.findings] == ["ML:static_test"]
        assert report.duration_seconds < 5

    @pytest.mark.asyncio
    async def test_applies_to_error_marks_detector_failed(self, settings: Settings, honeypot_bundle):
        engine = ThreatEngine(settings=settings, detectors=[BrokenScopeDetector(), StaticDetector()])
        report = await engine.scan(honeypot_bundle)
        assert report.failed_detectors == ["broken_scope_test"]
        assert [f.pattern_id for f in report.findings] == ["HP001", "HP003", "ML:static_test"]

    @pytest.mark.asyncio
    async def test_inapplicable_detector_is_not_failed(self, settings: Settings, empty_bundle):
        detector = OutOfScopeDetector()
        engine = ThreatEngine(settings=settings, detectors=[detector])
        report = await engine.scan(empty_bundle)
        assert report.failed_detectors == []
        assert report.findings == []
        assert detector.calls == 0


# ── Events ───────────────────────────────────────────────────────────────


class TestEvents:

    @pytest.mark.asyncio
    async def test_one_event_per_finding(self, engine: ThreatEngine, event_bus: EventBus, critical_bundle):
        subscription = event_bus.subscribe()
        report = await engine.scan(critical_bundle)
        events = subscription.drain()

        assert len(events) == len(report.findings)
        assert {e.finding_id for e in events} == {f.finding_id for f in report.findings}
        assert all(e.event == "threat_detected" and e.address == "0xabc" for e in events)
        assert all(e.scan_id == report.scan_id for e in events)
        # Rule findings first, meta finding last.
        assert events[-1].pattern_id == "META001"

    @pytest.mark.asyncio
    async def test_no_events_without_findings(self, engine: ThreatEngine, event_bus: EventBus, benign_bundle):
        subscription = event_bus.subscribe()
        await engine.scan(benign_bundle)
        assert subscription.drain() == []

    @pytest.mark.asyncio
    async def test_full_queue_does_not_fail_scan(self, engine: ThreatEngine, event_bus: EventBus, critical_bundle):
        subscription = event_bus.subscribe(maxsize=1)
        report = await engine.scan(critical_bundle)
        assert len(report.findings) > 1
        assert subscription.qsize() == 1
        assert subscription.dropped == len(report.findings) - 1


# ── Concurrency ──────────────────────────────────────────────────────────


class TestConcurrentScans:

    @pytest.mark.asyncio
    async def test_parallel_scans_do_not_interfere(self, engine: ThreatEngine, event_bus: EventBus):
        subscription = event_bus.subscribe()
        honeypot = make_bundle(
            address="0xaaa",
            abi=[{"name": "buy", "type": "function"}, {"name": "blacklist", "type": "function"}],
        )
        concentrated = make_bundle(
            address="0xbbb",
            tokenMetrics={"topHolders": [{"address": "0x1", "percentage": 25}]},
        )

        first, second = await asyncio.gather(engine.scan(honeypot), engine.scan(concentrated))

        assert [f.pattern_id for f in first.findings] == ["HP001", "HP003"]
        assert [f.pattern_id for f in second.findings] == ["RP003"]
        assert all("0xaaa" in f.evidence[0] for f in first.findings)
        assert all("0xbbb" in f.evidence[0] for f in second.findings)
        assert first.scan_id != second.scan_id

        events = subscription.drain()
        by_scan = {first.scan_id: "0xaaa", second.scan_id: "0xbbb"}
        assert len(events) == 3
        assert all(by_scan[e.scan_id] == e.address for e in events)

    @pytest.mark.asyncio
    async def test_scan_keeps_its_registry_snapshot(self, settings: Settings, honeypot_bundle):
        mutator = RegistryMutatingDetector()
        engine = ThreatEngine(settings=settings, detectors=[mutator])
        mutator.engine = engine

        in_flight = await engine.scan(honeypot_bundle)
        assert mutator.calls == 1
        assert [f.pattern_id for f in in_flight.findings] == ["HP001", "HP003"]
        hp003 = next(f for f in in_flight.findings if f.pattern_id == "HP003")
        assert hp003.severity == Severity.HIGH

        # Changes made mid-scan apply from the next scan on.
        assert engine.get_pattern_by_id("HP003").severity == Severity.LOW
        following = await engine.scan(honeypot_bundle)
        ids = [f.pattern_id for f in following.findings]
        assert "CUSTOM010" in ids
        assert next(f for f in following.findings if f.pattern_id == "HP003").severity == Severity.LOW
