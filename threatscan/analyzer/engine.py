"""Threat engine — orchestrates rule patterns, detectors and risk scoring.

Per-scan pipeline:
  1. Validate the bundle (rejected before any pattern runs)
  2. Rule patterns against one registry snapshot, on a worker thread
  3. Detector adapters, concurrently, each under its own timeout
  4. Synthesize findings, publishing one event per finding
  5. Composite risk score and meta-escalation
  6. Rank by risk score
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Mapping
from typing import Any, Union

from threatscan.analyzer import scoring
from threatscan.analyzer.conditions import BundleView
from threatscan.analyzer.detectors import BaseDetector, DetectorSignal, default_detectors
from threatscan.analyzer.dispatch import evaluate_patterns
from threatscan.analyzer.pattern_loader import load_patterns_file
from threatscan.analyzer.patterns import ThreatPattern
from threatscan.analyzer.registry import PatternRegistry
from threatscan.analyzer.synthesizer import finding_from_match, finding_from_signal, rank_findings
from threatscan.core.config import Settings, get_settings
from threatscan.core.errors import DetectorUnavailableError, InvalidBundleError, PatternNotFoundError
from threatscan.core.logging import ScanLoggerAdapter, scan_logger
from threatscan.core.types import (
    ContractAnalysisBundle,
    DetectionStats,
    Severity,
    ThreatCategory,
    ThreatEvent,
    ThreatFinding,
    ThreatReport,
)
from threatscan.services.events import EventBus

logger = logging.getLogger(__name__)

BundleInput = Union[ContractAnalysisBundle, Mapping[str, Any]]


class ThreatEngine:
    """Detect threat patterns in a contract and score its composite risk.

    The engine holds no per-scan state; concurrent scans share only the
    pattern registry (copy-on-write) and the event bus.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        detectors: list[BaseDetector] | None = None,
        event_bus: EventBus | None = None,
        registry: PatternRegistry | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._registry = registry if registry is not None else PatternRegistry.with_builtin_patterns()
        self.event_bus = event_bus or EventBus(default_maxsize=self._settings.event_queue_size)

        if detectors is not None:
            self._detectors = list(detectors)
        elif self._settings.enable_detectors:
            self._detectors = default_detectors()
        else:
            self._detectors = []

        if self._settings.custom_patterns_path:
            for pattern in load_patterns_file(self._settings.custom_patterns_path):
                self._registry.register(pattern)

        logger.debug(
            "Threat engine ready: %d patterns, %d detectors",
            len(self._registry), len(self._detectors),
        )

    @property
    def registry(self) -> PatternRegistry:
        return self._registry

    @property
    def detectors(self) -> list[BaseDetector]:
        return list(self._detectors)

    # ── Scanning ─────────────────────────────────────────────────────────

    async def analyze_contract(self, bundle: BundleInput) -> list[ThreatFinding]:
        """Return the ranked findings for one contract."""
        report = await self.scan(bundle)
        return report.findings

    async def scan(self, bundle: BundleInput) -> ThreatReport:
        """Run a full scan and return findings plus diagnostics.

        Raises:
            InvalidBundleError: if the bundle fails validation.
        """
        start_time = time.monotonic()
        bundle = self._validate(bundle)
        scan_id = str(uuid.uuid4())
        log = scan_logger(logger, scan_id, bundle.address)
        log.info("Scanning %s on %s", bundle.address, bundle.network)

        patterns = self._registry.snapshot()
        dispatch, signals = await asyncio.gather(
            asyncio.to_thread(evaluate_patterns, patterns, bundle, BundleView(bundle), scan_id),
            self._run_detectors(bundle, log),
        )

        findings: list[ThreatFinding] = []
        for match in dispatch.matches:
            findings.append(self._emit(finding_from_match(match, bundle), bundle, scan_id))

        failed_detectors: list[str] = []
        for detector, signal in signals:
            if signal is None:
                failed_detectors.append(detector.DETECTOR_ID)
            elif detector.exceeds_threshold(signal):
                findings.append(self._emit(finding_from_signal(detector, signal, bundle), bundle, scan_id))

        profile = scoring.aggregate(findings)
        escalated = scoring.needs_escalation(profile)
        if escalated:
            meta = scoring.meta_escalation_finding(profile, bundle)
            findings.append(self._emit(meta, bundle, scan_id))
            log.warning(
                "Composite risk %.1f exceeds %.0f, escalating",
                profile.score, scoring.CRITICAL_RISK_THRESHOLD,
            )

        duration = time.monotonic() - start_time
        log.info(
            "Scan complete: %d findings, risk %.1f (%s)",
            len(findings), profile.score, profile.risk_level.value,
            extra={"duration_ms": round(duration * 1000, 1)},
        )

        return ThreatReport(
            scan_id=scan_id,
            address=bundle.address,
            network=bundle.network,
            findings=rank_findings(findings),
            risk=profile,
            escalated=escalated,
            skipped_patterns=dispatch.skipped,
            failed_detectors=failed_detectors,
            duration_seconds=duration,
        )

    def _validate(self, bundle: Any) -> ContractAnalysisBundle:
        if isinstance(bundle, ContractAnalysisBundle):
            return bundle
        if isinstance(bundle, (Mapping, str, bytes)):
            return ContractAnalysisBundle.parse(bundle)
        raise InvalidBundleError(f"Unsupported bundle type: {type(bundle).__name__}")

    def _emit(self, finding: ThreatFinding, bundle: ContractAnalysisBundle, scan_id: str) -> ThreatFinding:
        self.event_bus.publish(ThreatEvent.from_finding(finding, bundle.address, scan_id))
        return finding

    async def _run_detectors(
        self, bundle: ContractAnalysisBundle, log: ScanLoggerAdapter
    ) -> list[tuple[BaseDetector, DetectorSignal | None]]:
        """Run applicable detectors concurrently; ``None`` marks a failure.

        Detectors that do not apply to the bundle are left out entirely.
        """
        outcomes = await asyncio.gather(
            *(self._run_detector(detector, bundle, log) for detector in self._detectors)
        )
        return [
            (detector, signal)
            for detector, (applied, signal) in zip(self._detectors, outcomes)
            if applied
        ]

    async def _run_detector(
        self, detector: BaseDetector, bundle: ContractAnalysisBundle, log: ScanLoggerAdapter
    ) -> tuple[bool, DetectorSignal | None]:
        timeout = self._settings.detector_timeout_seconds
        extra = {"detector": detector.DETECTOR_ID}
        try:
            if not detector.applies_to(bundle):
                return False, None
            return True, await asyncio.wait_for(detector.analyze(bundle), timeout=timeout)
        except asyncio.TimeoutError:
            log.warning("Detector %s timed out after %.1fs", detector.DETECTOR_ID, timeout, extra=extra)
        except DetectorUnavailableError as exc:
            log.warning("%s", exc, extra=extra)
        except Exception as exc:
            log.warning("Detector %s failed: %s", detector.DETECTOR_ID, exc, exc_info=exc, extra=extra)
        return True, None

    # ── Pattern management ───────────────────────────────────────────────

    def get_pattern_by_id(self, pattern_id: str) -> ThreatPattern | None:
        return self._registry.get(pattern_id)

    def list_all_patterns(self) -> list[ThreatPattern]:
        return self._registry.list_all()

    def list_patterns_by_category(self, category: ThreatCategory | str) -> list[ThreatPattern]:
        return self._registry.list_by_category(category)

    def list_patterns_by_severity(self, severity: Severity | str) -> list[ThreatPattern]:
        return self._registry.list_by_severity(severity)

    def add_custom_pattern(self, pattern: ThreatPattern) -> None:
        """Register a pattern for all subsequent scans.

        Raises:
            DuplicatePatternError: if the id is already registered.
        """
        self._registry.register(pattern)
        logger.info("Added custom pattern %s", pattern.id, extra={"pattern_id": pattern.id})

    def update_pattern(self, pattern_id: str, **fields: Any) -> bool:
        """Merge ``fields`` into an existing pattern. False if it does not exist."""
        try:
            self._registry.update(pattern_id, **fields)
        except PatternNotFoundError:
            return False
        return True

    def get_detection_stats(self) -> DetectionStats:
        return DetectionStats(
            total_patterns=len(self._registry),
            patterns_by_category=self._registry.count_by_category(),
            patterns_by_severity=self._registry.count_by_severity(),
            loaded_detector_count=len(self._detectors),
        )
