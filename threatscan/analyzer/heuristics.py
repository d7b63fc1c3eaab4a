"""Built-in bundle heuristics backing the default threat patterns.

Each function takes a ``ContractAnalysisBundle`` and returns the evidence
lines that justify a match. An empty list means the heuristic did not fire.
Missing optional inputs never fire a heuristic, except for the supply-cap
check (no source means no visible cap) and the liquidity timelock flag
(reported liquidity without a timelock counts as unprotected).
"""

from __future__ import annotations

import re

from threatscan.core.types import AbiEntry, ContractAnalysisBundle

BUY_MARKERS = ("buy",)
SELL_MARKERS = ("sell",)
RESTRICTION_MARKERS = ("blacklist", "block", "restrict")
FEE_SETTER_MARKERS = ("setfee", "updatefee", "changefee")
BLACKLIST_MARKERS = ("blacklist", "addtoblock", "ban")
MINT_MARKERS = ("mint",)
SUPPLY_CAP_MARKERS = ("maxSupply", "MAX_SUPPLY", "totalSupplyCap")
EXTERNAL_CALL_MARKERS = (".call(", ".call{", ".transfer(", ".send(")
REENTRANCY_GUARD_MARKERS = ("nonReentrant", "ReentrancyGuard")
MINT_GUARD_MARKERS = ("onlyOwner", "onlyRole", "onlyMinter", "hasRole")
ORACLE_MARKERS = ("oracle", "getPrice")

_ARITHMETIC_RE = re.compile(r"[+\-*/]")
_PRAGMA_RE = re.compile(r"pragma\s+solidity\s*[\^>=~<\s]*(\d+)\.(\d+)")
_MULTI_ORACLE_RE = re.compile(r"chainlink|\bband\b", re.IGNORECASE)

# Holder concentration limits, in percent of supply.
TOP_HOLDER_LIMIT = 20.0
TOP_TEN_LIMIT = 70.0
TOP_N_HOLDERS = 10

MIN_LOCKED_LIQUIDITY = 50.0


def _abi_functions(bundle: ContractAnalysisBundle, markers: tuple[str, ...]) -> list[AbiEntry]:
    return [
        entry for entry in bundle.abi or []
        if entry.name and any(marker in entry.lowered_name for marker in markers)
    ]


def _names(entries: list[AbiEntry]) -> str:
    return ", ".join(entry.name or "" for entry in entries)


# ── Honeypot ─────────────────────────────────────────────────────────────────


def asymmetric_trading(bundle: ContractAnalysisBundle) -> list[str]:
    """Buy path exists while selling is missing or can be restricted."""
    if not bundle.abi:
        return []
    buys = _abi_functions(bundle, BUY_MARKERS)
    if not buys:
        return []
    sells = _abi_functions(bundle, SELL_MARKERS)
    restrictions = _abi_functions(bundle, RESTRICTION_MARKERS)
    if sells and not restrictions:
        return []

    evidence = [f"Buy-like functions exposed: {_names(buys)}"]
    if not sells:
        evidence.append("No sell-like function in ABI")
    if restrictions:
        evidence.append(f"Transfer restriction functions: {_names(restrictions)}")
    return evidence


def hidden_fee_manipulation(bundle: ContractAnalysisBundle) -> list[str]:
    setters = [
        entry for entry in _abi_functions(bundle, FEE_SETTER_MARKERS)
        if entry.state_mutability != "view"
    ]
    if not setters:
        return []
    source = bundle.source_code or ""
    if "onlyOwner" in source and "fee" in source:
        return [
            f"Mutable fee setters: {_names(setters)}",
            "Fee changes are restricted to the owner",
        ]
    return []


def blacklist_functions(bundle: ContractAnalysisBundle) -> list[str]:
    entries = _abi_functions(bundle, BLACKLIST_MARKERS)
    if entries:
        return [f"Address ban functions: {_names(entries)}"]
    return []


# ── Rug pull ─────────────────────────────────────────────────────────────────


def unlimited_mint(bundle: ContractAnalysisBundle) -> list[str]:
    mints = _abi_functions(bundle, MINT_MARKERS)
    if not mints:
        return []
    source = bundle.source_code or ""
    if any(marker in source for marker in SUPPLY_CAP_MARKERS):
        return []
    return [
        f"Mint functions exposed: {_names(mints)}",
        "No max-supply marker in source" if source else "No source available to confirm a supply cap",
    ]


def liquidity_drain_risk(bundle: ContractAnalysisBundle) -> list[str]:
    liquidity = bundle.token_metrics.liquidity if bundle.token_metrics else None
    if liquidity is None:
        return []

    evidence: list[str] = []
    if liquidity.locked_percentage is not None and liquidity.locked_percentage < MIN_LOCKED_LIQUIDITY:
        evidence.append(f"Only {liquidity.locked_percentage:g}% of liquidity is locked")
    if not liquidity.has_timelock:
        evidence.append("Liquidity has no timelock")
    if liquidity.owner_can_remove is True:
        evidence.append("Owner can remove liquidity")
    return evidence


def ownership_concentration(bundle: ContractAnalysisBundle) -> list[str]:
    if bundle.token_metrics is None or not bundle.token_metrics.top_holders:
        return []
    holders = bundle.token_metrics.top_holders
    top_holder = holders[0].percentage
    top_ten = sum(holder.percentage for holder in holders[:TOP_N_HOLDERS])

    evidence: list[str] = []
    if top_holder > TOP_HOLDER_LIMIT:
        evidence.append(f"Top holder owns {top_holder:g}% of supply")
    if top_ten > TOP_TEN_LIMIT:
        evidence.append(f"Top {TOP_N_HOLDERS} holders own {top_ten:g}% of supply")
    return evidence


# ── Code vulnerabilities ─────────────────────────────────────────────────────


def reentrancy(bundle: ContractAnalysisBundle) -> list[str]:
    source = bundle.source_code
    if not source:
        return []
    calls = [marker for marker in EXTERNAL_CALL_MARKERS if marker in source]
    if not calls or any(guard in source for guard in REENTRANCY_GUARD_MARKERS):
        return []
    return [
        f"External calls found: {', '.join(calls)}",
        "No reentrancy guard present",
    ]


def _has_checked_arithmetic(source: str) -> bool:
    if "SafeMath" in source:
        return True
    match = _PRAGMA_RE.search(source)
    if match is None:
        return False
    major, minor = int(match.group(1)), int(match.group(2))
    return major > 0 or minor >= 8


def integer_overflow(bundle: ContractAnalysisBundle) -> list[str]:
    source = bundle.source_code
    if not source or not _ARITHMETIC_RE.search(source):
        return []
    if _has_checked_arithmetic(source):
        return []
    return [
        "Arithmetic operators used",
        "No SafeMath and compiler predates checked arithmetic (0.8)",
    ]


def unsafe_delegatecall(bundle: ContractAnalysisBundle) -> list[str]:
    source = bundle.source_code
    if not source or "delegatecall" not in source:
        return []
    if "require(" in source and "address" in source:
        return []
    return ["delegatecall present", "No require() validation of the target address"]


def price_oracle_manipulation(bundle: ContractAnalysisBundle) -> list[str]:
    source = bundle.source_code
    if not source:
        return []
    oracle_refs = [marker for marker in ORACLE_MARKERS if marker in source]
    if not oracle_refs:
        return []
    if _MULTI_ORACLE_RE.search(source) or source.count("getPrice") >= 2:
        return []
    return [
        f"Price source referenced: {', '.join(oracle_refs)}",
        "No multi-source price validation (Chainlink/Band or multiple feeds)",
    ]


def unguarded_mint(bundle: ContractAnalysisBundle) -> list[str]:
    source = bundle.source_code
    if not source:
        return []
    mints = [
        entry for entry in _abi_functions(bundle, MINT_MARKERS)
        if entry.state_mutability not in ("view", "pure")
    ]
    if not mints or any(guard in source for guard in MINT_GUARD_MARKERS):
        return []
    return [
        f"State-changing mint functions: {_names(mints)}",
        "No access-control modifier guards minting",
    ]


# ── Social engineering / phishing ────────────────────────────────────────────


def fake_team(bundle: ContractAnalysisBundle) -> list[str]:
    team = bundle.social_metrics.team if bundle.social_metrics else None
    if team is None:
        return []

    evidence: list[str] = []
    if team.stock_photos_detected is not None and team.stock_photos_detected > 0:
        evidence.append(f"{team.stock_photos_detected} stock photos in team profiles")
    if team.linkedin_profiles_valid is not None and team.linkedin_profiles_valid < 50:
        evidence.append(f"Only {team.linkedin_profiles_valid:g}% of LinkedIn profiles check out")
    if team.consistency_score is not None and team.consistency_score < 60:
        evidence.append(f"Team profile consistency score {team.consistency_score:g}")
    return evidence


def coordinated_promotion(bundle: ContractAnalysisBundle) -> list[str]:
    social = bundle.social_metrics
    if social is None:
        return []

    evidence: list[str] = []
    if social.bot_follower_percentage is not None and social.bot_follower_percentage > 40:
        evidence.append(f"{social.bot_follower_percentage:g}% of followers look like bots")
    if social.coordinated_posting_score is not None and social.coordinated_posting_score > 70:
        evidence.append(f"Coordinated posting score {social.coordinated_posting_score:g}")
    if social.organic_growth_score is not None and social.organic_growth_score < 30:
        evidence.append(f"Organic growth score {social.organic_growth_score:g}")
    return evidence


def domain_impersonation(bundle: ContractAnalysisBundle) -> list[str]:
    website = bundle.social_metrics.website if bundle.social_metrics else None
    if website is None:
        return []

    evidence: list[str] = []
    if website.similarity_to_legit_project is not None and website.similarity_to_legit_project > 80:
        evidence.append(f"Website {website.similarity_to_legit_project:g}% similar to a known project")
    if website.content_copied_score is not None and website.content_copied_score > 70:
        evidence.append(f"Copied content score {website.content_copied_score:g}")
    if website.branding_copied_score is not None and website.branding_copied_score > 60:
        evidence.append(f"Copied branding score {website.branding_copied_score:g}")
    return evidence
