"""threatscan CLI — scan a contract analysis bundle from the command line.

Usage:
    threatscan scan <bundle.json>      Scan a bundle (JSON file, or - for stdin)
    threatscan patterns                List registered threat patterns
    threatscan stats                   Show detection statistics
    threatscan config                  Show current configuration

Examples:
    threatscan scan ./bundle.json
    threatscan scan ./bundle.json --severity high --format json
    threatscan patterns --category honeypot
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from threatscan import __version__
from threatscan.analyzer.engine import ThreatEngine
from threatscan.core.config import Settings, get_settings
from threatscan.core.errors import DuplicatePatternError, InvalidBundleError, PatternDefinitionError
from threatscan.core.logging import setup_logging
from threatscan.core.types import Severity, ThreatCategory, ThreatFinding, ThreatReport
from threatscan.services.notifications import NotificationService, WebhookRelay

EXIT_OK = 0
EXIT_THREATS = 1
EXIT_INVALID_INPUT = 2


# ── Coloured output helpers ──────────────────────────────────────────────────

_RESET = "\033[0m"
_BOLD = "\033[1m"
_RED = "\033[91m"
_YELLOW = "\033[93m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"

_SEV_COLOR = {
    "critical": _RED,
    "high": "\033[38;5;208m",  # orange
    "medium": _YELLOW,
    "low": _CYAN,
}


def _c(text: str, code: str) -> str:
    return f"{code}{text}{_RESET}"


# ── CLI argument parser ─────────────────────────────────────────────────────

_SEVERITIES = [s.value for s in Severity]
_CATEGORIES = [c.value for c in ThreatCategory]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="threatscan",
        description="threatscan — contract threat pattern detection and risk scoring",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument("--quiet", "-q", action="store_true", help="Minimal output")

    sub = parser.add_subparsers(dest="command")

    # ── scan ─────────────────────────────────────────────────────────────────
    scan_p = sub.add_parser("scan", help="Scan a contract analysis bundle")
    scan_p.add_argument("bundle", help="Path to a bundle JSON file, or - for stdin")
    scan_p.add_argument("--severity", choices=_SEVERITIES, help="Minimum severity to report")
    scan_p.add_argument(
        "--format",
        "-f",
        default="table",
        choices=["table", "json"],
        help="Output format (default: table)",
    )
    scan_p.add_argument("--max-findings", type=int, default=0, help="Limit findings shown (0=all)")
    scan_p.add_argument("--timeout", type=float, help="Per-detector timeout in seconds")
    scan_p.add_argument("--no-detectors", action="store_true", help="Run rule patterns only")
    scan_p.add_argument("--patterns", help="YAML file with additional rule patterns")

    # ── patterns ─────────────────────────────────────────────────────────────
    patterns_p = sub.add_parser("patterns", help="List registered threat patterns")
    patterns_p.add_argument("--category", choices=_CATEGORIES, help="Only this category")
    patterns_p.add_argument("--severity", choices=_SEVERITIES, help="Only this severity")

    # ── stats / config ───────────────────────────────────────────────────────
    sub.add_parser("stats", help="Show detection statistics")
    sub.add_parser("config", help="Show current configuration")

    return parser


# ── Scan command ─────────────────────────────────────────────────────────────

_SEV_ORDER = ["critical", "high", "medium", "low"]


def _sev_index(sev: str) -> int:
    try:
        return _SEV_ORDER.index(sev.lower())
    except ValueError:
        return 99


def _filter_findings(
    findings: list[ThreatFinding], min_severity: str | None, max_count: int
) -> list[ThreatFinding]:
    """Apply the severity floor and count limit; keeps the ranked order."""
    if min_severity:
        cutoff = _sev_index(min_severity)
        findings = [f for f in findings if _sev_index(f.severity.value) <= cutoff]
    if max_count > 0:
        findings = findings[:max_count]
    return list(findings)


def _print_table(findings: list[ThreatFinding], report: ThreatReport, quiet: bool = False) -> None:
    """Pretty-print findings as a coloured table."""
    if not quiet:
        risk = report.risk
        color = _GREEN if risk.score < 50 else _YELLOW if risk.score < 75 else _RED
        print(f"\n{_BOLD}Scan complete{_RESET} — {report.address} ({report.network})")
        print(
            f"  Risk: {_c(f'{risk.score:.1f}/100 {risk.risk_level.value.upper()}', color)}"
            f"  |  Findings: {len(report.findings)}"
            f"  |  Duration: {report.duration_seconds:.2f}s\n"
        )
        if report.failed_detectors:
            print(_c(f"  Detectors unavailable: {', '.join(report.failed_detectors)}", _YELLOW))
        if report.skipped_patterns:
            print(_c(f"  Patterns skipped: {', '.join(report.skipped_patterns)}", _YELLOW))

    if not findings:
        print(_c("  ✓ No findings at the requested severity level.", _GREEN))
        return

    by_sev: dict[str, int] = {}
    for f in findings:
        by_sev[f.severity.value] = by_sev.get(f.severity.value, 0) + 1

    summary_parts = []
    for sev in _SEV_ORDER:
        count = by_sev.get(sev, 0)
        if count > 0:
            summary_parts.append(f"{_SEV_COLOR.get(sev, '')}{count} {sev.upper()}{_RESET}")
    print(f"  {' · '.join(summary_parts)}\n")

    for i, f in enumerate(findings, 1):
        sev_col = _SEV_COLOR.get(f.severity.value, "")
        badge = _c(f" {f.severity.value.upper()} ", sev_col + _BOLD)
        title = _c(f.title, _BOLD)
        ref = _c(f"  {f.pattern_id}  risk {f.risk_score:.1f}", _DIM)
        print(f"  {_DIM}{i:>3}.{_RESET} {badge} {title}{ref}")

        if not quiet:
            for line in f.evidence[:5]:
                print(f"       {_DIM}- {line[:200]}{_RESET}")
            if f.mitigation:
                print(f"       {_DIM}Mitigation: {f.mitigation}{_RESET}")
        print()


def _read_bundle(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


def _webhook_relay(settings: Settings, engine: ThreatEngine) -> WebhookRelay | None:
    """Subscribe a relay to the engine's events when any webhook URL is set."""
    service = NotificationService.from_settings(settings)
    if not service.list_webhooks():
        return None
    return WebhookRelay(service, engine.event_bus.subscribe())


def _scan_settings(args: argparse.Namespace) -> Settings:
    overrides: dict[str, object] = {}
    if args.timeout:
        overrides["detector_timeout_seconds"] = args.timeout
    if args.no_detectors:
        overrides["enable_detectors"] = False
    if args.patterns:
        overrides["custom_patterns_path"] = args.patterns
    return get_settings().model_copy(update=overrides)


async def _run_scan(args: argparse.Namespace) -> int:
    """Execute a scan, forward findings to configured webhooks, print results."""
    try:
        raw = _read_bundle(args.bundle)
    except OSError as exc:
        print(_c(f"Error: cannot read bundle: {exc}", _RED), file=sys.stderr)
        return EXIT_INVALID_INPUT

    settings = _scan_settings(args)
    try:
        engine = ThreatEngine(settings=settings)
        relay = _webhook_relay(settings, engine)
        report = await engine.scan(raw)
    except (InvalidBundleError, PatternDefinitionError, DuplicatePatternError) as exc:
        print(_c(f"Error: {exc}", _RED), file=sys.stderr)
        return EXIT_INVALID_INPUT

    findings = _filter_findings(report.findings, args.severity, args.max_findings)

    if args.format == "json":
        payload = report.model_dump(mode="json")
        payload["findings"] = [f.model_dump(mode="json") for f in findings]
        payload["risk"]["risk_level"] = report.risk.risk_level.value
        print(json.dumps(payload, indent=2))
    else:
        _print_table(findings, report, quiet=args.quiet)

    if relay is not None:
        sent = await relay.relay_pending()
        if not args.quiet and args.format == "table":
            print(_c(f"  Webhook notifications sent: {sent}", _DIM))

    # Exit code: 1 if any critical/high findings
    has_critical = any(f.severity in (Severity.CRITICAL, Severity.HIGH) for f in findings)
    return EXIT_THREATS if has_critical else EXIT_OK


# ── Pattern / stats commands ─────────────────────────────────────────────────


def _load_engine(settings: Settings) -> ThreatEngine | None:
    """Build an engine, reporting a bad custom pattern file instead of raising."""
    try:
        return ThreatEngine(settings=settings)
    except (PatternDefinitionError, DuplicatePatternError) as exc:
        print(_c(f"Error: {exc}", _RED), file=sys.stderr)
        return None


def _run_patterns(args: argparse.Namespace) -> int:
    engine = _load_engine(get_settings().model_copy(update={"enable_detectors": False}))
    if engine is None:
        return EXIT_INVALID_INPUT
    patterns = engine.list_all_patterns()
    if args.category:
        patterns = [p for p in patterns if p.category.value == args.category]
    if args.severity:
        patterns = [p for p in patterns if p.severity.value == args.severity]

    for p in patterns:
        sev_col = _SEV_COLOR.get(p.severity.value, "")
        print(
            f"  {_c(f'{p.id:<10}', _BOLD)}{_c(f'{p.severity.value:<9}', sev_col)}"
            f"{p.category.value:<24}{p.confidence:>4}  {p.name}"
        )
    if not args.quiet:
        print(f"\n  {len(patterns)} patterns")
    return EXIT_OK


def _run_stats() -> int:
    engine = _load_engine(get_settings())
    if engine is None:
        return EXIT_INVALID_INPUT
    print(json.dumps(engine.get_detection_stats().model_dump(), indent=2))
    return EXIT_OK


# ── Config command ───────────────────────────────────────────────────────────


def _run_config() -> int:
    """Print current settings (redacted)."""
    s = get_settings()
    print(f"\n{_BOLD}threatscan configuration{_RESET}\n")
    for field_name in sorted(s.model_fields.keys()):
        val = getattr(s, field_name, "")
        # Webhook URLs embed their credentials
        if any(kw in field_name for kw in ("webhook_url", "secret", "token")):
            val = "****" if val else "(not set)"
        print(f"  {_DIM}{field_name}:{_RESET}  {val}")
    print()
    return EXIT_OK


# ── Entrypoint ───────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"threatscan {__version__}")
        return EXIT_OK

    settings = get_settings()
    setup_logging(settings.app_env, "WARNING" if args.quiet else settings.log_level)

    if not args.command:
        parser.print_help()
        return EXIT_OK

    if args.command == "config":
        return _run_config()

    if args.command == "stats":
        return _run_stats()

    if args.command == "patterns":
        return _run_patterns(args)

    if args.command == "scan":
        return asyncio.run(_run_scan(args))

    parser.print_help()
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
