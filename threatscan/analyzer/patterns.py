"""Threat pattern definition and the built-in pattern catalog.

Built-in ids follow a category prefix convention:

    HP  honeypot            RP  rug pull
    CV  code vulnerability  SE  social engineering
    PH  phishing            LM  liquidity manipulation
    MA  mint abuse

``ML:`` and ``META`` are reserved for detector and meta-escalation findings
and cannot be used by rule patterns.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from threatscan.analyzer import heuristics
from threatscan.analyzer.conditions import CONDITION_TYPES, MatchCondition, Predicate, PredicateFn
from threatscan.core.types import Severity, ThreatCategory

DETECTOR_PATTERN_PREFIX = "ML:"
META_PATTERN_PREFIX = "META"
RESERVED_PREFIXES = (DETECTOR_PATTERN_PREFIX, META_PATTERN_PREFIX)


@dataclass(frozen=True)
class ThreatPattern:
    """A named, versioned heuristic rule.

    Attributes:
        id: Unique identifier within one registry.
        name: Short human-readable title, reused as the finding title.
        description: What the pattern indicates.
        severity: Severity assigned to matches.
        confidence: Base confidence (0–100) inherited by matches.
        category: Threat category.
        condition: ``Contains``, ``StructuredMatch`` or ``Predicate``.
        indicators: Ordered, de-duplicated indicator tags.
        mitigation: Advice shown with every finding.
        reference_id: Optional external reference (CVE-like id).
        references: Optional further reading.
        version: Bumped on every registry update.
    """

    id: str
    name: str
    description: str
    severity: Severity
    confidence: int
    category: ThreatCategory
    condition: MatchCondition = field(compare=False)
    indicators: tuple[str, ...] = ()
    mitigation: str = ""
    reference_id: str | None = None
    references: tuple[str, ...] = ()
    version: int = 1

    def __post_init__(self) -> None:
        if not self.id or not self.id.strip():
            raise ValueError("pattern id must not be blank")
        if self.id.startswith(RESERVED_PREFIXES):
            raise ValueError(f"pattern id {self.id!r} uses a reserved prefix")
        if isinstance(self.confidence, bool) or not isinstance(self.confidence, int):
            raise ValueError(f"confidence must be an integer, got {self.confidence!r}")
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"confidence must be within [0, 100], got {self.confidence}")
        if self.version < 1:
            raise ValueError("version must be >= 1")
        if not isinstance(self.condition, CONDITION_TYPES):
            raise ValueError(f"unsupported condition {self.condition!r}")

        # Enum coercion also rejects unknown severities and categories.
        object.__setattr__(self, "severity", Severity(self.severity))
        object.__setattr__(self, "category", ThreatCategory(self.category))
        object.__setattr__(self, "indicators", tuple(dict.fromkeys(self.indicators)))
        object.__setattr__(self, "references", tuple(self.references))


def _builtin(
    pattern_id: str,
    name: str,
    description: str,
    severity: Severity,
    confidence: int,
    category: ThreatCategory,
    check: PredicateFn,
    indicators: tuple[str, ...],
    mitigation: str,
    reference_id: str | None = None,
) -> ThreatPattern:
    return ThreatPattern(
        id=pattern_id,
        name=name,
        description=description,
        severity=severity,
        confidence=confidence,
        category=category,
        condition=Predicate(name=check.__name__, fn=check),
        indicators=indicators,
        mitigation=mitigation,
        reference_id=reference_id,
    )


def builtin_patterns() -> list[ThreatPattern]:
    """Return fresh instances of every built-in pattern, in registration order."""
    return [
        # ── Honeypot ─────────────────────────────────────────────────────
        _builtin(
            "HP001", "Asymmetric Trading Pattern",
            "Contract allows buys but restricts or prevents sells",
            Severity.CRITICAL, 95, ThreatCategory.HONEYPOT,
            heuristics.asymmetric_trading,
            ("buy_function_present", "sell_function_restricted", "transfer_limitations"),
            "Test sell functionality on a testnet fork before investing",
            reference_id="HONEYPOT-001",
        ),
        _builtin(
            "HP002", "Hidden Fee Manipulation",
            "Owner can change fees dynamically, up to blocking exits entirely",
            Severity.CRITICAL, 90, ThreatCategory.HONEYPOT,
            heuristics.hidden_fee_manipulation,
            ("dynamic_fee_modification", "owner_only_fee_control", "no_fee_limits"),
            "Verify fee modification functions and their upper bounds",
        ),
        _builtin(
            "HP003", "Blacklist Honeypot",
            "Contract can blacklist addresses and stop them from trading",
            Severity.HIGH, 88, ThreatCategory.HONEYPOT,
            heuristics.blacklist_functions,
            ("blacklist_function", "owner_controlled_blacklist", "no_blacklist_removal"),
            "Check blacklist functions and who governs them",
        ),
        # ── Rug pull ─────────────────────────────────────────────────────
        _builtin(
            "RP001", "Unlimited Mint Authority",
            "Owner can mint unlimited tokens and dilute holders",
            Severity.CRITICAL, 92, ThreatCategory.RUG_PULL,
            heuristics.unlimited_mint,
            ("mint_function_present", "no_mint_cap", "owner_mint_control"),
            "Verify mint functions are disabled, capped or properly governed",
        ),
        _builtin(
            "RP002", "Liquidity Drain Risk",
            "Liquidity can be removed without warning or time delay",
            Severity.CRITICAL, 85, ThreatCategory.RUG_PULL,
            heuristics.liquidity_drain_risk,
            ("unlocked_liquidity", "owner_liquidity_control", "no_timelock"),
            "Verify liquidity is locked for a sufficient duration",
        ),
        _builtin(
            "RP003", "Ownership Concentration",
            "A single entity or small group controls most of the supply",
            Severity.HIGH, 80, ThreatCategory.RUG_PULL,
            heuristics.ownership_concentration,
            ("high_owner_balance", "few_large_holders", "concentrated_supply"),
            "Monitor large holder activity and size positions accordingly",
        ),
        # ── Code vulnerabilities ─────────────────────────────────────────
        _builtin(
            "CV001", "Reentrancy Vulnerability",
            "External calls are made without a reentrancy guard",
            Severity.HIGH, 85, ThreatCategory.CODE_VULNERABILITY,
            heuristics.reentrancy,
            ("external_call_before_state_change", "no_reentrancy_guard", "state_modification_after_call"),
            "Add reentrancy guards and follow checks-effects-interactions",
            reference_id="SWC-107",
        ),
        _builtin(
            "CV002", "Integer Overflow/Underflow",
            "Arithmetic operations without overflow protection",
            Severity.MEDIUM, 75, ThreatCategory.CODE_VULNERABILITY,
            heuristics.integer_overflow,
            ("unchecked_arithmetic", "no_safemath", "potential_overflow"),
            "Use SafeMath or compile with Solidity 0.8+ checked arithmetic",
            reference_id="SWC-101",
        ),
        _builtin(
            "CV003", "Delegatecall to Untrusted Contract",
            "delegatecall target is not validated",
            Severity.CRITICAL, 95, ThreatCategory.CODE_VULNERABILITY,
            heuristics.unsafe_delegatecall,
            ("delegatecall_present", "user_controlled_target", "no_address_validation"),
            "Validate delegatecall targets and restrict them to trusted contracts",
            reference_id="SWC-112",
        ),
        # ── Social engineering ───────────────────────────────────────────
        _builtin(
            "SE001", "Fake Team Information",
            "Team profiles appear fabricated or stolen",
            Severity.HIGH, 70, ThreatCategory.SOCIAL_ENGINEERING,
            heuristics.fake_team,
            ("stock_photos_detected", "fake_linkedin_profiles", "inconsistent_information"),
            "Verify team credentials and look for a genuine social presence",
        ),
        _builtin(
            "SE002", "Coordinated Promotion Campaign",
            "Artificial hype driven by bots and coordinated accounts",
            Severity.MEDIUM, 65, ThreatCategory.SOCIAL_ENGINEERING,
            heuristics.coordinated_promotion,
            ("bot_followers", "coordinated_posts", "inorganic_growth"),
            "Look for organic community growth and genuine engagement",
        ),
        # ── Phishing ─────────────────────────────────────────────────────
        _builtin(
            "PH001", "Domain Impersonation",
            "Website or socials impersonate a legitimate project",
            Severity.HIGH, 88, ThreatCategory.PHISHING,
            heuristics.domain_impersonation,
            ("similar_domain", "copied_content", "fake_branding"),
            "Always verify official websites and social accounts",
        ),
        # ── Liquidity manipulation ───────────────────────────────────────
        _builtin(
            "LM001", "Flash Loan Manipulation",
            "Price is read from a single manipulable source",
            Severity.HIGH, 82, ThreatCategory.LIQUIDITY_MANIPULATION,
            heuristics.price_oracle_manipulation,
            ("single_dex_price_oracle", "no_price_validation", "large_price_impact_possible"),
            "Use time-weighted average prices and multiple oracle sources",
        ),
        # ── Mint abuse ───────────────────────────────────────────────────
        _builtin(
            "MA001", "Unguarded Mint Function",
            "Mint can be called without any access-control modifier",
            Severity.HIGH, 78, ThreatCategory.MINT_ABUSE,
            heuristics.unguarded_mint,
            ("mint_function_present", "no_access_control", "public_mint"),
            "Restrict minting to a governed role or remove it",
        ),
    ]
