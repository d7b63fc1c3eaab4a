"""Shared enums and schemas used across the threat engine."""

from __future__ import annotations

import enum
import time
from collections.abc import Mapping
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from threatscan.core.errors import InvalidBundleError


# ── Enums ────────────────────────────────────────────────────────────────────


class Severity(str, enum.Enum):
    """Threat severity level."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ThreatCategory(str, enum.Enum):
    """High-level threat category used for grouping findings."""

    HONEYPOT = "honeypot"
    RUG_PULL = "rug_pull"
    PHISHING = "phishing"
    MINT_ABUSE = "mint_abuse"
    LIQUIDITY_MANIPULATION = "liquidity_manipulation"
    SOCIAL_ENGINEERING = "social_engineering"
    CODE_VULNERABILITY = "code_vulnerability"


class FindingSource(str, enum.Enum):
    """Where a finding came from."""

    RULE = "rule"
    DETECTOR = "detector"
    META = "meta"


class RiskLevel(str, enum.Enum):
    """Qualitative band of a composite risk score."""

    MINIMAL = "minimal"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Lower bound of each band, checked highest first.
RISK_LEVEL_THRESHOLDS: dict[RiskLevel, float] = {
    RiskLevel.CRITICAL: 90.0,
    RiskLevel.HIGH: 75.0,
    RiskLevel.MEDIUM: 50.0,
    RiskLevel.LOW: 25.0,
}

# Points each severity contributes to the composite score.
SEVERITY_POINTS: dict[Severity, int] = {
    Severity.CRITICAL: 25,
    Severity.HIGH: 15,
    Severity.MEDIUM: 8,
    Severity.LOW: 3,
}
MAX_SEVERITY_POINTS = SEVERITY_POINTS[Severity.CRITICAL]


# ── Bundle schemas ───────────────────────────────────────────────────────────


class _BundleModel(BaseModel):
    """Accepts snake_case or camelCase keys; frozen once built."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class AbiEntry(_BundleModel):
    """One ABI descriptor (function, event, constructor...)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="allow",
    )

    name: str | None = None
    type: str = "function"
    state_mutability: str | None = None
    inputs: list[dict[str, Any]] = Field(default_factory=list)
    outputs: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def lowered_name(self) -> str:
        return (self.name or "").lower()


class HolderShare(_BundleModel):
    address: str = ""
    percentage: float = 0.0


class LiquidityMetrics(_BundleModel):
    locked_percentage: float | None = None
    has_timelock: bool | None = None
    owner_can_remove: bool | None = None


class TokenMetrics(_BundleModel):
    top_holders: list[HolderShare] = Field(default_factory=list)
    liquidity: LiquidityMetrics | None = None


class TeamMetrics(_BundleModel):
    stock_photos_detected: int | None = None
    linkedin_profiles_valid: float | None = None
    consistency_score: float | None = None


class WebsiteMetrics(_BundleModel):
    similarity_to_legit_project: float | None = None
    content_copied_score: float | None = None
    branding_copied_score: float | None = None


class SocialMetrics(_BundleModel):
    team: TeamMetrics | None = None
    website: WebsiteMetrics | None = None
    bot_follower_percentage: float | None = None
    coordinated_posting_score: float | None = None
    organic_growth_score: float | None = None


class TransactionRecord(_BundleModel):
    """A single observed transaction against the contract."""

    hash: str = ""
    from_address: str = Field(
        default="",
        validation_alias=AliasChoices("from_address", "fromAddress", "from"),
    )
    to_address: str = Field(
        default="",
        validation_alias=AliasChoices("to_address", "toAddress", "to"),
    )
    value: float = 0.0
    method: str = ""
    success: bool = True


class ContractAnalysisBundle(_BundleModel):
    """Immutable per-scan description of one contract's observable properties."""

    address: str
    network: str
    bytecode: str | None = None
    source_code: str | None = None
    abi: list[AbiEntry] | None = None
    metadata: dict[str, Any] | None = None
    transactions: list[TransactionRecord] | None = None
    token_metrics: TokenMetrics | None = None
    social_metrics: SocialMetrics | None = None

    @field_validator("address", "network")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @classmethod
    def parse(cls, data: Mapping[str, Any] | str | bytes) -> "ContractAnalysisBundle":
        """Validate raw input, raising ``InvalidBundleError`` on any schema failure."""
        try:
            if isinstance(data, (str, bytes)):
                return cls.model_validate_json(data)
            return cls.model_validate(dict(data))
        except ValidationError as exc:
            problems = [
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in exc.errors()
            ]
            raise InvalidBundleError("Invalid contract analysis bundle", problems) from exc
        except TypeError as exc:
            raise InvalidBundleError(f"Invalid contract analysis bundle: {exc}") from exc


# ── Output schemas ───────────────────────────────────────────────────────────


class ThreatFinding(BaseModel):
    """One reported issue produced by a scan."""

    model_config = ConfigDict(frozen=True)

    finding_id: str
    pattern_id: str
    severity: Severity
    confidence: int = Field(ge=0, le=100)
    title: str
    description: str
    evidence: list[str] = Field(default_factory=list)
    indicators: list[str] = Field(default_factory=list)
    mitigation: str = ""
    category: ThreatCategory
    risk_score: float
    source: FindingSource = FindingSource.RULE
    metadata: dict[str, Any] = Field(default_factory=dict)

    def same_content_as(self, other: "ThreatFinding") -> bool:
        """Compare everything except the per-evaluation finding id."""
        return self.model_dump(exclude={"finding_id"}) == other.model_dump(exclude={"finding_id"})


class CompositeRiskProfile(BaseModel):
    """Aggregate risk for one scan."""

    critical_count: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0
    total_findings: int = 0
    score: float = 0.0

    @property
    def risk_level(self) -> RiskLevel:
        for level, lower in RISK_LEVEL_THRESHOLDS.items():
            if self.score >= lower:
                return level
        return RiskLevel.MINIMAL

    @staticmethod
    def calculate(findings: list[ThreatFinding]) -> "CompositeRiskProfile":
        """Calculate the normalised 0–100 composite score from findings."""
        counts = {severity: 0 for severity in Severity}
        for finding in findings:
            counts[finding.severity] += 1

        total = len(findings)
        if total == 0:
            score = 0.0
        else:
            points = sum(SEVERITY_POINTS[sev] * n for sev, n in counts.items())
            score = points / (total * MAX_SEVERITY_POINTS) * 100
            score = max(0.0, min(100.0, score))

        return CompositeRiskProfile(
            critical_count=counts[Severity.CRITICAL],
            high_count=counts[Severity.HIGH],
            medium_count=counts[Severity.MEDIUM],
            low_count=counts[Severity.LOW],
            total_findings=total,
            score=score,
        )


class ThreatReport(BaseModel):
    """Full result of one scan: ranked findings plus diagnostics."""

    scan_id: str
    address: str
    network: str
    findings: list[ThreatFinding] = Field(default_factory=list)
    risk: CompositeRiskProfile = Field(default_factory=CompositeRiskProfile)
    escalated: bool = False
    skipped_patterns: list[str] = Field(default_factory=list)
    failed_detectors: list[str] = Field(default_factory=list)
    duration_seconds: float = 0.0


class DetectionStats(BaseModel):
    """Snapshot of what the engine currently knows how to detect."""

    total_patterns: int
    patterns_by_category: dict[str, int] = Field(default_factory=dict)
    patterns_by_severity: dict[str, int] = Field(default_factory=dict)
    loaded_detector_count: int = 0


class ThreatEvent(BaseModel):
    """Notification published once per synthesised finding."""

    model_config = ConfigDict(frozen=True)

    event: str = "threat_detected"
    finding_id: str
    severity: Severity
    category: ThreatCategory
    address: str
    pattern_id: str = ""
    risk_score: float = 0.0
    scan_id: str = ""
    timestamp: float = Field(default_factory=time.time)

    @classmethod
    def from_finding(cls, finding: ThreatFinding, address: str, scan_id: str = "") -> "ThreatEvent":
        return cls(
            finding_id=finding.finding_id,
            severity=finding.severity,
            category=finding.category,
            address=address,
            pattern_id=finding.pattern_id,
            risk_score=finding.risk_score,
            scan_id=scan_id,
        )
