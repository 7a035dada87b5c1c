"""
Dispute Engine Management CLI

Commands:
- sweep-overdue: Apply pending overdue stages (suspensions, bans) to open claims
- verify-log: Verify hashes, linkage and signatures of the event log
- export-events: Export the event log to JSON
- generate-signing-key: Generate an Ed25519 keypair for event signing
- init-db: Create the PostgreSQL schema
- health-check: Run store and configuration checks

Usage:
    dispute-engine <command> [options]

Examples:
    dispute-engine sweep-overdue
    dispute-engine verify-log
    dispute-engine export-events -o events.json
"""

import argparse
import json
import os
import sys
from datetime import datetime


def _engine():
    from dispute_engine.core import DisputeEngine
    return DisputeEngine.from_env()


def cmd_sweep_overdue(args):
    """Apply overdue stages to every open claim."""
    engine = _engine()

    now = None
    if args.at:
        now = datetime.fromisoformat(args.at)
        if now.tzinfo is None:
            print("[FAIL] --at must include a timezone offset")
            return 1

    report = engine.sweep_overdue(now)
    print(f"Evaluated {report.evaluated} compliances")
    print(f"  Advanced: {report.advanced}")
    print(f"  Suspended: {report.suspended}")
    print(f"  Banned: {report.banned}")
    if report.conflicts:
        print(f"  [WARN] {report.conflicts} claims busy, left for the next sweep")
    return 0


def cmd_verify_log(args):
    """Verify the integrity of the event log."""
    engine = _engine()
    head = engine.store.get_head()
    print(f"Event log: {head.next_sequence} events")

    if engine.verify_event_log():
        print("[OK] Event log verified OK")
        if head.last_event_hash:
            print(f"  Head: {head.last_event_hash[:16]}...")
        return 0
    else:
        print("[FAIL] Event log verification FAILED!")
        return 1


def cmd_export_events(args):
    """Export all events to a JSON file."""
    engine = _engine()
    events = engine.store.list_events()
    print(f"Found {len(events)} events")

    export_data = [event.model_dump(mode="json") for event in events]

    output_file = args.output or "dispute_events.json"
    with open(output_file, "w") as f:
        json.dump(export_data, f, indent=2)

    print(f"[OK] Exported {len(events)} events to {output_file}")
    return 0


def cmd_generate_signing_key(args):
    """Generate an Ed25519 keypair."""
    from dispute_engine.core import Signer

    private_key, public_key = Signer.generate_keypair()
    print("Set these in the environment (keep the private key secret):\n")
    print(f"DISPUTE_ENGINE_SIGNING_PRIVATE_KEY={private_key}")
    print(f"DISPUTE_ENGINE_SIGNING_PUBLIC_KEY={public_key}")
    return 0


def cmd_init_db(args):
    """Create the PostgreSQL schema."""
    from dispute_engine.db import DatabaseConfig, get_database_url
    from dispute_engine.db.postgres import PostgresDisputeStore

    if not get_database_url():
        print("[FAIL] DATABASE_URL or DATABASE_HOST must be set")
        return 1

    config = DatabaseConfig.from_env()
    store = PostgresDisputeStore.from_dsn(
        config.to_dsn(),
        lock_timeout_ms=config.lock_timeout_ms,
        statement_timeout_ms=config.statement_timeout_ms,
    )
    store.create_schema()
    print(f"[OK] Schema ready on {config.to_url(include_password=False)}")
    return 0


def cmd_health_check(args):
    """Run comprehensive health checks."""
    from dispute_engine.db import DatabaseConfig, StoreDriver, get_store_driver
    from dispute_engine.observability import check_health

    print("=== Dispute Engine Health Check ===\n")

    print("Store:")
    driver = get_store_driver()
    if driver == StoreDriver.MEMORY:
        print("  Type: In-Memory")
    else:
        config = DatabaseConfig.from_env()
        print(f"  Type: PostgreSQL ({driver.value})")
        print(f"  Host: {config.host}:{config.port}")

    engine = _engine()
    health = check_health(engine=engine, verify_chain=True)
    for name, check in health.checks.items():
        marker = "[OK]" if check.get("status") == "healthy" else "[FAIL]"
        print(f"  {name}: {marker} {check.get('error', '')}".rstrip())

    print("\nEnvironment:")
    if os.environ.get("DISPUTE_ENGINE_SIGNING_PRIVATE_KEY"):
        print("  Signing key: [OK] Set")
    else:
        print("  Signing key: [WARN] Using ephemeral (development)")

    print("\n=== Health Check Complete ===")
    return 0 if health.healthy else 1


def main():
    parser = argparse.ArgumentParser(
        description="Dispute Engine Management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    p_sweep = subparsers.add_parser(
        "sweep-overdue",
        help="Apply overdue stages to open claims"
    )
    p_sweep.add_argument("--at", help="Evaluate as of this ISO-8601 instant (default: now)")

    subparsers.add_parser(
        "verify-log",
        help="Verify event log integrity"
    )

    p_export = subparsers.add_parser(
        "export-events",
        help="Export all events to JSON"
    )
    p_export.add_argument("--output", "-o", help="Output file (default: dispute_events.json)")

    subparsers.add_parser(
        "generate-signing-key",
        help="Generate an Ed25519 signing keypair"
    )

    subparsers.add_parser(
        "init-db",
        help="Create the PostgreSQL schema"
    )

    subparsers.add_parser(
        "health-check",
        help="Run comprehensive health checks"
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    from dispute_engine.observability import setup_logging
    setup_logging()

    commands = {
        "sweep-overdue": cmd_sweep_overdue,
        "verify-log": cmd_verify_log,
        "export-events": cmd_export_events,
        "generate-signing-key": cmd_generate_signing_key,
        "init-db": cmd_init_db,
        "health-check": cmd_health_check,
    }

    return commands[args.command](args) or 0


if __name__ == "__main__":
    sys.exit(main())
