"""
Campaign Gate CLI

Command-line interface for offline governance checks.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from .audit import audit_hash, verify_audit_hash, verify_governance_records
from .core import Config
from .core.exceptions import CampaignGateError
from .core.models import Actor, Record, Resource
from .export import export_multi_period, export_period
from .permissions import PermissionResolver
from .store import SQLiteDocumentStore


def setup_logging(level: str = "INFO") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def load_config(config_path: Optional[str]) -> Config:
    """Load configuration from file or use defaults."""
    if config_path:
        return Config.from_file(config_path)
    return Config()


def load_json(path: str) -> Any:
    with open(path) as f:
        return json.load(f)


def load_actors(path: str) -> Dict[str, Actor]:
    """
    Load user profiles keyed by id.

    Accepts either {"<id>": {...profile...}} or [{"id": ..., ...profile...}].
    """
    data = load_json(path)
    if isinstance(data, list):
        return {doc["id"]: Actor.from_document(doc["id"], doc) for doc in data}
    return {user_id: Actor.from_document(user_id, doc) for user_id, doc in data.items()}


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="campaigngate",
        description="Campaign Gate - Campaign Governance & Access-Control Pipeline",
    )

    parser.add_argument(
        "-c", "--config",
        help="Path to configuration file",
        default=None,
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Preflight a single period
    preflight_parser = subparsers.add_parser(
        "preflight", help="Run the export preflight gate on one period"
    )
    preflight_parser.add_argument(
        "--period",
        required=True,
        help="Path to period JSON ({date, activities})",
    )
    preflight_parser.add_argument(
        "--users",
        required=True,
        help="Path to user profiles JSON",
    )
    preflight_parser.add_argument(
        "--label",
        default="Period",
        help="Sheet label for the period",
    )

    # Preflight several periods
    week_parser = subparsers.add_parser(
        "preflight-week", help="Run the export preflight gate on several periods"
    )
    week_parser.add_argument(
        "--week",
        required=True,
        help="Path to JSON mapping period label to period data",
    )
    week_parser.add_argument(
        "--users",
        required=True,
        help="Path to user profiles JSON",
    )

    # Permission check
    can_parser = subparsers.add_parser("can", help="Explain an access decision")
    can_parser.add_argument(
        "--actor",
        required=True,
        help="Path to actor profile JSON (must include id)",
    )
    can_parser.add_argument(
        "--verb",
        required=True,
        help="Action, e.g. update",
    )
    can_parser.add_argument(
        "--resource-type",
        dest="resource_type",
        required=True,
        help="Resource type, e.g. campaigns",
    )
    can_parser.add_argument(
        "--resource-id",
        dest="resource_id",
        default="*",
        help="Resource ID",
    )
    can_parser.add_argument(
        "--owner",
        help="Owner of the record being acted on",
    )
    can_parser.add_argument(
        "--team",
        help="Team of the record being acted on",
    )

    # Audit hash
    hash_parser = subparsers.add_parser(
        "audit-hash", help="Compute (and verify, if present) an audit entry hash"
    )
    hash_parser.add_argument(
        "--entry",
        required=True,
        help="Path to audit entry JSON",
    )

    # Audit verification
    verify_parser = subparsers.add_parser(
        "verify-audit", help="Verify every audit entry in a SQLite store"
    )
    verify_parser.add_argument(
        "--db",
        help="Path to SQLite database (default: store path from config)",
    )
    verify_parser.add_argument(
        "--collection",
        help="Governance collection name (default: from config)",
    )

    # Info command
    subparsers.add_parser("info", help="Show configuration summary")

    # Version command
    subparsers.add_parser("version", help="Show version")

    return parser


def cmd_preflight(args: argparse.Namespace, config: Config) -> int:
    """Run the preflight gate on one period."""
    period = load_json(args.period)
    actors = load_actors(args.users)

    result = export_period(
        args.label, period, actors, config.export.approved_activity_status
    )

    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1


def cmd_preflight_week(args: argparse.Namespace, config: Config) -> int:
    """Run the preflight gate on several periods as one batch."""
    periods = load_json(args.week)
    actors = load_actors(args.users)

    result = export_multi_period(
        periods, actors, config.export.approved_activity_status
    )

    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1


def cmd_can(args: argparse.Namespace, config: Config) -> int:
    """Explain an access decision."""
    logger = logging.getLogger(__name__)

    doc = load_json(args.actor)
    actor = Actor.from_document(doc["id"], doc)
    resolver = PermissionResolver(config=config.permissions)

    try:
        resource = Resource(type=args.resource_type, id=args.resource_id)
        record = None
        if args.owner or args.team:
            record = Record(
                type=args.resource_type,
                id=args.resource_id,
                owner_id=args.owner,
                team_id=args.team,
            )
        decision = resolver.explain(actor, args.verb, resource, record)
    except CampaignGateError as e:
        logger.error(f"Failed to evaluate access: {e}")
        print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
        return 1

    print(json.dumps({
        "actor": actor.id,
        "permission": decision.permission,
        "allowed": decision.allowed,
        "rule": decision.rule,
        "effectivePermissions": sorted(resolver.effective_for(actor)),
    }, indent=2))

    return 0 if decision.allowed else 1


def cmd_audit_hash(args: argparse.Namespace, config: Config) -> int:
    """Compute the hash of an audit entry and check any stored hash."""
    entry = load_json(args.entry)

    result: Dict[str, Any] = {"hash": audit_hash(entry)}
    stored = entry.get("hash")
    if stored:
        result["stored"] = stored
        result["verified"] = verify_audit_hash(entry, stored)

    print(json.dumps(result, indent=2))
    return 0 if result.get("verified", True) else 1


async def cmd_verify_audit(args: argparse.Namespace, config: Config) -> int:
    """Verify the audit entries in a SQLite store."""
    logger = logging.getLogger(__name__)

    db_path = Path(args.db or config.store.path)
    if not db_path.exists():
        print(f"Error: Database not found: {db_path}", file=sys.stderr)
        return 1

    store = SQLiteDocumentStore(db_path)
    try:
        report = await verify_governance_records(
            store, args.collection or config.audit.collection
        )
    except CampaignGateError as e:
        logger.error(f"Audit verification failed: {e}")
        print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
        return 1
    finally:
        await store.close()

    print(json.dumps(report.to_dict(), indent=2))
    return 0 if report.intact else 1


def cmd_info(args: argparse.Namespace, config: Config) -> int:
    """Show configuration summary."""
    from . import __version__

    info = {
        "name": "Campaign Gate",
        "version": __version__,
        "environment": config.environment.value,
        "store": config.store.backend,
        "audit": {
            "collection": config.audit.collection,
            "algorithm": config.audit.hash_algorithm,
        },
        "thresholds": {
            "title_max_length": config.validation.title_max_length,
            "budget_warn_threshold": config.validation.budget_warn_threshold,
            "timeline_days": [
                config.validation.timeline_min_days,
                config.validation.timeline_max_days,
            ],
        },
        "problems": config.validate(),
    }

    print(json.dumps(info, indent=2))
    return 0


def cmd_version(args: argparse.Namespace, config: Config) -> int:
    """Show version."""
    from . import __version__
    print(f"Campaign Gate v{__version__}")
    return 0


async def async_main(args: argparse.Namespace, config: Config) -> int:
    """Async main entry point."""
    if args.command == "preflight":
        return cmd_preflight(args, config)

    elif args.command == "preflight-week":
        return cmd_preflight_week(args, config)

    elif args.command == "can":
        return cmd_can(args, config)

    elif args.command == "audit-hash":
        return cmd_audit_hash(args, config)

    elif args.command == "verify-audit":
        return await cmd_verify_audit(args, config)

    elif args.command == "info":
        return cmd_info(args, config)

    elif args.command == "version":
        return cmd_version(args, config)

    else:
        print("No command specified. Use --help for usage.")
        return 1


def main(argv: Optional[list] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    # Setup logging
    log_level = "DEBUG" if args.verbose else args.log_level
    setup_logging(log_level)

    # Load config
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Failed to load config: {e}", file=sys.stderr)
        return 1

    return asyncio.run(async_main(args, config))


if __name__ == "__main__":
    sys.exit(main())
