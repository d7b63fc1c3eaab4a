"""Shared fixtures for the threatscan test suite."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from threatscan.analyzer.detectors.base import BaseDetector, DetectorSignal
from threatscan.analyzer.engine import ThreatEngine
from threatscan.analyzer.registry import PatternRegistry
from threatscan.core.config import Settings
from threatscan.core.errors import DetectorUnavailableError
from threatscan.core.types import ContractAnalysisBundle, Severity, ThreatCategory
from threatscan.services.events import EventBus


# ── Test detectors ───────────────────────────────────────────────────────────


class StaticDetector(BaseDetector):
    """Deterministic detector returning a fixed confidence."""

    DETECTOR_ID = "static_test"
    NAME = "Static Test Detector"
    DESCRIPTION = "Returns a fixed confidence for every bundle"
    CATEGORY = ThreatCategory.HONEYPOT
    SEVERITY = Severity.HIGH
    THRESHOLD = 0.7
    RISK_SCALE = 0.6
    INDICATORS = ("static_signal",)
    MITIGATION = "None required"

    def __init__(self, confidence: float = 0.9, detector_id: str | None = None) -> None:
        self.confidence = confidence
        self.calls = 0
        if detector_id:
            self.DETECTOR_ID = detector_id

    async def analyze(self, bundle: ContractAnalysisBundle) -> DetectorSignal:
        self.calls += 1
        return DetectorSignal(
            confidence=self.confidence,
            evidence=(f"static signal for {bundle.address}",),
        )


class FailingDetector(StaticDetector):
    DETECTOR_ID = "failing_test"

    async def analyze(self, bundle: ContractAnalysisBundle) -> DetectorSignal:
        raise DetectorUnavailableError(self.DETECTOR_ID, "model endpoint unreachable")


class ExplodingDetector(StaticDetector):
    DETECTOR_ID = "exploding_test"

    async def analyze(self, bundle: ContractAnalysisBundle) -> DetectorSignal:
        raise RuntimeError("boom")


class SlowDetector(StaticDetector):
    DETECTOR_ID = "slow_test"

    async def analyze(self, bundle: ContractAnalysisBundle) -> DetectorSignal:
        await asyncio.sleep(5)
        return await super().analyze(bundle)


class BrokenScopeDetector(StaticDetector):
    DETECTOR_ID = "broken_scope_test"

    def applies_to(self, bundle: ContractAnalysisBundle) -> bool:
        raise RuntimeError("slice lookup failed")


class OutOfScopeDetector(StaticDetector):
    DETECTOR_ID = "out_of_scope_test"

    def applies_to(self, bundle: ContractAnalysisBundle) -> bool:
        return False


# ── Settings / engine ────────────────────────────────────────────────────────


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(_env_file=None, detector_timeout_seconds=0.5)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def engine(settings: Settings, event_bus: EventBus) -> ThreatEngine:
    """Engine with built-in patterns and no detectors."""
    return ThreatEngine(settings=settings, detectors=[], event_bus=event_bus)


@pytest.fixture
def registry() -> PatternRegistry:
    return PatternRegistry.with_builtin_patterns()


# ── Bundles ──────────────────────────────────────────────────────────────────


def mock_async_client(status_code: int = 200) -> MagicMock:
    """Patchable stand-in for ``httpx.AsyncClient`` used as an async context manager.

    The client every context yields is exposed as ``factory.client``.
    """
    client = MagicMock()
    client.post = AsyncMock(return_value=MagicMock(status_code=status_code, text="ok"))
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=client)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    factory.client = client
    return factory


def make_bundle(**fields: Any) -> ContractAnalysisBundle:
    data: dict[str, Any] = {"address": "0xabc", "network": "ethereum"}
    data.update(fields)
    return ContractAnalysisBundle.parse(data)


@pytest.fixture
def empty_bundle() -> ContractAnalysisBundle:
    """No optional inputs at all."""
    return make_bundle()


@pytest.fixture
def benign_bundle() -> ContractAnalysisBundle:
    """A well-guarded token that should not trigger any built-in pattern."""
    return make_bundle(
        sourceCode=(
            "pragma solidity ^0.8.20;\n"
            "contract Token is ReentrancyGuard {\n"
            "  uint256 public constant MAX_SUPPLY = 1e24;\n"
            "  function transfer(address to, uint256 amount) external nonReentrant {}\n"
            "}\n"
        ),
        abi=[
            {"name": "transfer", "type": "function", "stateMutability": "nonpayable"},
            {"name": "balanceOf", "type": "function", "stateMutability": "view"},
        ],
        tokenMetrics={
            "topHolders": [{"address": "0x1", "percentage": 10}, {"address": "0x2", "percentage": 8}],
            "liquidity": {"lockedPercentage": 95, "hasTimelock": True, "ownerCanRemove": False},
        },
    )


@pytest.fixture
def honeypot_bundle() -> ContractAnalysisBundle:
    """Buy without sell, blacklist present."""
    return make_bundle(
        abi=[
            {"name": "buy", "type": "function", "stateMutability": "payable"},
            {"name": "blacklist", "type": "function", "stateMutability": "nonpayable"},
        ],
    )


@pytest.fixture
def rug_pull_bundle() -> ContractAnalysisBundle:
    """Unlimited mint plus unlocked, removable liquidity."""
    return make_bundle(
        sourceCode="contract T { function mint(address to, uint256 a) public onlyOwner {} }",
        abi=[{"name": "mint", "type": "function", "stateMutability": "nonpayable"}],
        tokenMetrics={
            "liquidity": {"lockedPercentage": 10, "hasTimelock": False, "ownerCanRemove": True},
        },
    )


@pytest.fixture
def critical_bundle() -> ContractAnalysisBundle:
    """Triggers at least four critical patterns and nothing lower."""
    return make_bundle(
        sourceCode=(
            "pragma solidity ^0.8.0;\n"
            "contract Evil {\n"
            "  uint256 public fee;\n"
            "  function setFee(uint256 f) external onlyOwner { fee = f; }\n"
            "  function mint(address to, uint256 a) external onlyOwner {}\n"
            "  function exec(address t, bytes memory d) external { t.delegatecall(d); }\n"
            "}\n"
        ),
        abi=[
            {"name": "buy", "type": "function", "stateMutability": "payable"},
            {"name": "setFee", "type": "function", "stateMutability": "nonpayable"},
            {"name": "mint", "type": "function", "stateMutability": "nonpayable"},
        ],
    )
