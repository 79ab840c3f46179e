#!/usr/bin/env python3
"""
EchoKey Command Line Interface

Usage:
    echokey derive --tx <id> --timestamp <iso> [--secret <s>]
    echokey window --network <id>
    echokey validate --tx <id> --code <code> --issued-at <iso> [--window <s>] [--now <iso>]
    echokey keygen [--output <file>] [--key-id <kid>]

The secret defaults to the ECHOKEY_SECRET environment variable.
"""

import argparse
import json
import os
import sys


def _secret(args) -> str:
    secret = args.secret or os.getenv("ECHOKEY_SECRET", "")
    if not secret:
        print("error: no secret given (use --secret or ECHOKEY_SECRET)", file=sys.stderr)
        sys.exit(2)
    return secret


def cmd_derive(args):
    """Derive the signal code for a transaction and timestamp."""
    from echokey import derive_code

    print(derive_code(args.tx, args.timestamp, _secret(args)))
    return 0


def cmd_window(args):
    """Print the adaptive validity window of a network."""
    from echokey import TTLPolicy, get_network

    policy = TTLPolicy(floor_seconds=args.floor, multiplier=args.multiplier)
    profile = get_network(args.network)
    name = profile.name if profile else "unknown network"
    print(f"{args.network.upper()} ({name}): {policy.window_seconds(args.network)}s")
    return 0


def cmd_validate(args):
    """Validate a code offline."""
    from echokey import CodeDeriver, Validator, parse_timestamp, window_seconds

    validator = Validator(CodeDeriver(_secret(args)))
    window = args.window if args.window is not None else window_seconds(args.network)
    now = parse_timestamp(args.now) if args.now else None
    outcome = validator.evaluate(args.tx, args.code, args.issued_at, window, now)

    print(json.dumps(outcome.to_dict(), indent=2))
    if outcome.approved:
        print("\n✓ APPROVED", file=sys.stderr)
        return 0
    print(f"\n✗ DENIED: {outcome.reason}", file=sys.stderr)
    return 1


def cmd_keygen(args):
    """Generate an Ed25519 audit signing key."""
    from echokey.signing import AuditSigner

    signer = AuditSigner.generate(args.key_id)
    if args.output:
        signer.save(args.output)
        print(f"Signing key saved to: {args.output}", file=sys.stderr)
    print(json.dumps(signer.public_entry(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="echokey",
        description="EchoKey split-signal CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  echokey derive --tx TX123 --timestamp 2025-01-01T00:00:00.000Z --secret SECRET
  echokey window --network BTC
  echokey validate --tx TX123 --code BED41B2021A8DA6A --issued-at 2025-01-01T00:00:00.000Z
  echokey keygen -o secrets/audit_signing_key.json
        """
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    derive_parser = subparsers.add_parser("derive", help="Derive a signal code")
    derive_parser.add_argument("-t", "--tx", required=True, help="Transaction identifier")
    derive_parser.add_argument("-T", "--timestamp", required=True, help="ISO-8601 issuance timestamp")
    derive_parser.add_argument("-s", "--secret", help="Shared secret")

    window_parser = subparsers.add_parser("window", help="Show a network's validity window")
    window_parser.add_argument("-n", "--network", required=True, help="Network id (ETH, BTC, SOL, ...)")
    window_parser.add_argument("--floor", type=int, default=60, help="Window floor in seconds")
    window_parser.add_argument("--multiplier", type=float, default=4, help="Latency multiplier")

    validate_parser = subparsers.add_parser("validate", help="Validate a signal code")
    validate_parser.add_argument("-t", "--tx", required=True, help="Transaction identifier")
    validate_parser.add_argument("-c", "--code", required=True, help="Submitted code")
    validate_parser.add_argument("-i", "--issued-at", required=True, help="Issuance timestamp")
    validate_parser.add_argument("-w", "--window", type=int, help="Window in seconds")
    validate_parser.add_argument("-n", "--network", default="ETH", help="Network id for the default window")
    validate_parser.add_argument("--now", help="Evaluation time (ISO-8601), default: current time")
    validate_parser.add_argument("-s", "--secret", help="Shared secret")

    keygen_parser = subparsers.add_parser("keygen", help="Generate an audit signing key")
    keygen_parser.add_argument("-o", "--output", help="Output file for the private key")
    keygen_parser.add_argument("-k", "--key-id", default="echokey-audit-01", help="Key identifier")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    commands = {
        "derive": cmd_derive,
        "window": cmd_window,
        "validate": cmd_validate,
        "keygen": cmd_keygen,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 2
    return handler(args)


if __name__ == "__main__":
    sys.exit(main())
