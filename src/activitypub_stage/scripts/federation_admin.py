# src/activitypub_stage/scripts/federation_admin.py
"""Maintenance commands for federation operators.

Usage:
    python -m activitypub_stage.scripts.federation_admin purge-logs --days 7
    python -m activitypub_stage.scripts.federation_admin rotate-key user alice
    python -m activitypub_stage.scripts.federation_admin block spam.example --reason "spam"
    python -m activitypub_stage.scripts.federation_admin unblock spam.example
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from datetime import timedelta

from sqlalchemy.orm import Session

from activitypub_stage.core.errors import ActorNotFound
from activitypub_stage.core.logging import configure_logging
from activitypub_stage.db.session import SessionLocal
from activitypub_stage.db.time import utcnow
from activitypub_stage.models import ActorKind
from activitypub_stage.services import FederationServices, get_services
from activitypub_stage.services.blocklist import BLOCK_TYPES


def purge_logs(db: Session, services: FederationServices, args: argparse.Namespace) -> int:
    deleted = services.delivery.purge(db, args.days)
    db.commit()
    print(f"[federation_admin] purged {deleted} delivery log rows")
    return 0


def provision_instance(db: Session, services: FederationServices, args: argparse.Namespace) -> int:
    actor = services.directory.provision_instance(db)
    db.commit()
    print(f"[federation_admin] instance actor {actor.actor_uri} signs with {actor.key_id}")
    return 0


def rotate_key(db: Session, services: FederationServices, args: argparse.Namespace) -> int:
    kind = ActorKind(args.kind)
    try:
        actor = services.directory.resolve(db, kind, args.name)
    except ActorNotFound:
        print(f"[federation_admin] no active {kind.value} actor {args.name!r}", file=sys.stderr)
        return 1
    services.directory.rotate_key(db, actor)
    db.commit()
    print(f"[federation_admin] {actor.actor_uri} now signs with {actor.key_id}")
    return 0


def block(db: Session, services: FederationServices, args: argparse.Namespace) -> int:
    expires_at = utcnow() + timedelta(days=args.days) if args.days else None
    try:
        row = services.blocklist.block(
            db,
            args.domain,
            reason=args.reason,
            block_type=args.type,
            expires_at=expires_at,
        )
    except ValueError as exc:
        print(f"[federation_admin] ERROR: {exc}", file=sys.stderr)
        return 1
    db.commit()
    print(f"[federation_admin] blocked {row.domain} ({row.block_type})")
    return 0


def unblock(db: Session, services: FederationServices, args: argparse.Namespace) -> int:
    if not services.blocklist.unblock(db, args.domain):
        print(f"[federation_admin] {args.domain} is not blocked", file=sys.stderr)
        return 1
    db.commit()
    print(f"[federation_admin] unblocked {args.domain}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Federation maintenance commands")
    commands = parser.add_subparsers(dest="command", required=True)

    purge = commands.add_parser("purge-logs", help="Delete settled delivery log rows")
    purge.add_argument(
        "--days",
        type=int,
        default=None,
        help="Retention window in days (defaults to DELIVERY_LOG_RETENTION_DAYS)",
    )
    purge.set_defaults(handler=purge_logs)

    provision = commands.add_parser(
        "provision-instance", help="Create the instance actor and its keypair if missing"
    )
    provision.set_defaults(handler=provision_instance)

    rotate = commands.add_parser("rotate-key", help="Generate a new keypair for an actor")
    rotate.add_argument("kind", choices=[kind.value for kind in ActorKind])
    rotate.add_argument("name", nargs="?", default=None, help="Username or sub name")
    rotate.set_defaults(handler=rotate_key)

    block_cmd = commands.add_parser("block", help="Block a remote instance")
    block_cmd.add_argument("domain")
    block_cmd.add_argument("--reason", default=None)
    block_cmd.add_argument("--type", choices=BLOCK_TYPES, default=BLOCK_TYPES[0])
    block_cmd.add_argument("--days", type=int, default=None, help="Expire the block after N days")
    block_cmd.set_defaults(handler=block)

    unblock_cmd = commands.add_parser("unblock", help="Lift a block on a remote instance")
    unblock_cmd.add_argument("domain")
    unblock_cmd.set_defaults(handler=unblock)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)
    services = get_services()
    with SessionLocal() as db:
        return args.handler(db, services, args)


if __name__ == "__main__":
    sys.exit(main())
