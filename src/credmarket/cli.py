#!/usr/bin/env python3
"""
credmarket CLI — Offline command-line interface to the verification engine.

Works directly with the engine modules (no server required).

Commands:
    points     - Score a dataset's metrics
    verify     - Evaluate a verification program against credentials
    disclose   - Produce a partial credential
    programs   - List verification programs
    reputation - Composite trust score from cross-app reputation records
"""

import argparse
import json
import sys
from typing import Optional


def _output(data, args: argparse.Namespace, human_fn=None):
    """Output data as JSON or pretty-printed."""
    if getattr(args, 'json', False) or human_fn is None:
        print(json.dumps(data, indent=2, default=str))
    else:
        human_fn(data)


def _read_json(path: str):
    if path == '-':
        return json.load(sys.stdin)
    with open(path) as f:
        return json.load(f)


def _registry(args):
    from credmarket.policy import ProgramRegistry, default_registry
    if getattr(args, 'programs_file', None):
        return ProgramRegistry.load(args.programs_file)
    return default_registry()


# ─── Commands ──────────────────────────────────────────────────────

def cmd_points(args):
    """Score a dataset from its metrics JSON."""
    from credmarket.points import DataMetrics, compute_data_points, describe_dataset

    metrics = DataMetrics.from_dict(_read_json(args.file))
    result = {
        "dataPoints": compute_data_points(metrics),
        "dataset": describe_dataset(metrics),
        "dataQuality": metrics.data_quality,
    }

    def human(d):
        print(f"🏆 {d['dataPoints']} points")
        print(f"   Dataset: {d['dataset']} ({d['dataQuality']})")

    _output(result, args, human)
    return result


def cmd_verify(args):
    """Evaluate a program against a JSON list of credentials."""
    from credmarket.core import Credential
    from credmarket.policy import RuleEngine

    data = _read_json(args.file)
    if isinstance(data, dict):
        data = data.get("credentials", [])
    credentials = [Credential.from_dict(c) for c in data]

    report = RuleEngine(_registry(args)).evaluate(args.program, credentials)
    result = report.to_dict()

    def human(d):
        mark = "✅" if d['grantedAccess'] else "❌"
        print(f"{mark} {d['programName']}: {d['status']}")
        for r in d['results']:
            flag = "✓" if r['passed'] else ("✗" if r['required'] else "·")
            print(f"   {flag} {r['message']}")

    _output(result, args, human)
    return result


def cmd_disclose(args):
    """Reveal selected claims of a credential."""
    from credmarket.core import Credential
    from credmarket.disclosure import DisclosureTransformer

    credential = Credential.from_dict(_read_json(args.file))
    transformer = DisclosureTransformer(args.secret)

    if args.preset == "seller":
        partial = transformer.seller_preview(credential)
    elif args.preset == "dataset":
        partial = transformer.dataset_preview(credential)
    else:
        fields = [f.strip() for f in args.reveal.split(",") if f.strip()]
        partial = transformer.disclose(credential, fields)
    result = partial.to_dict()

    def human(d):
        print(f"🔒 {d['id']} ({d['type']})")
        for key, value in d['revealedClaims'].items():
            print(f"   {key}: {value}")
        if d['hiddenFields']:
            print(f"   hidden: {', '.join(d['hiddenFields'])}")
        print(f"   commitment: {d['commitmentProof']['commitment']}")

    _output(result, args, human)
    return result


def cmd_programs(args):
    """List verification programs."""
    result = _registry(args).to_dict()

    def human(d):
        for pid, program in d.items():
            print(f"📋 {pid} — {program['name']}")
            for rule in program['rules']:
                req = "required" if rule['required'] else "optional"
                params = {k: v for k, v in rule.items() if k not in ("type", "required")}
                extra = f" {params}" if params else ""
                print(f"   - {rule['type']} ({req}){extra}")

    _output(result, args, human)
    return result


def cmd_reputation(args):
    """Fold cross-app reputation records into a composite trust score."""
    from credmarket.reputation import ReputationRecord, summarize_reputation

    data = _read_json(args.file)
    if isinstance(data, dict):
        data = data.get("records", [])
    result = summarize_reputation(ReputationRecord.from_dict(r) for r in data).to_dict()

    def human(d):
        print(f"⭐ Composite trust score: {d['compositeTrustScore']}/100")
        print(f"   Avg rating:  {d['avgRating']}")
        print(f"   Total sales: {d['totalSales']}")
        print(f"   Verified on: {d['verifiedOn']}")

    _output(result, args, human)
    return result


# ─── Parser ────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="credmarket",
        description="credmarket — credential verification and reputation CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--json", action="store_true", help="Machine-readable JSON output")

    sub = parser.add_subparsers(dest="command", help="Available commands")

    # points
    p = sub.add_parser("points", help="Score a dataset's metrics")
    p.add_argument("file", help="Metrics JSON file (- for stdin)")

    # verify
    p = sub.add_parser("verify", help="Evaluate a verification program")
    p.add_argument("program", help="Program ID, e.g. premium-buyer")
    p.add_argument("file", help="Credentials JSON file (- for stdin)")
    p.add_argument("-p", "--programs-file", help="Programs JSON file (defaults to marketplace programs)")

    # disclose
    p = sub.add_parser("disclose", help="Produce a partial credential")
    p.add_argument("file", help="Credential JSON file (- for stdin)")
    group = p.add_mutually_exclusive_group(required=True)
    group.add_argument("-r", "--reveal", help="Comma-separated claims to reveal")
    group.add_argument("--preset", choices=["seller", "dataset"], help="Standard preview")
    p.add_argument("-s", "--secret", help="Salt secret (random if omitted)")

    # programs
    p = sub.add_parser("programs", help="List verification programs")
    p.add_argument("-p", "--programs-file", help="Programs JSON file")

    # reputation
    p = sub.add_parser("reputation", help="Composite trust score from reputation records")
    p.add_argument("file", help="Reputation records JSON file (- for stdin)")

    return parser


def main(argv: Optional[list[str]] = None) -> Optional[dict]:
    """CLI entry point. Returns result dict for testing."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "points": cmd_points,
        "verify": cmd_verify,
        "disclose": cmd_disclose,
        "programs": cmd_programs,
        "reputation": cmd_reputation,
    }

    try:
        return commands[args.command](args)
    except FileNotFoundError as e:
        print(f"❌ File not found: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
