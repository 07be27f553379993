"""CLI entry point: extract, worker, reconcile, scheduler, status."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timedelta, timezone
from typing import Optional

from scripts.extraction.config import FORGES, ExtractionConfig, load_config
from scripts.extraction.db import Database
from scripts.extraction.logging_config import configure_logging

logger = logging.getLogger("extraction.cli")


def _build_consumer(config: ExtractionConfig, db: Database):
    """Wire queue, bus and context factory into a ``Consumer``."""
    from scripts.extraction.consumer import Consumer
    from scripts.extraction.context import ContextFactory
    from scripts.extraction.events import EventBus
    from scripts.extraction.messages import MessageSender, QueueClient

    bus = EventBus(config.queue)
    contexts = ContextFactory(config, db, bus=bus)
    return Consumer(contexts, MessageSender(QueueClient(config.queue)))


def _run_reconcile(config: ExtractionConfig, db: Database) -> dict[str, int]:
    from scripts.extraction.reconcile import IdentityResolver
    from scripts.extraction.store import EntityStore

    return IdentityResolver(EntityStore(db, config.tenant_id)).resolve()


def _parse_when(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _extract_window(config: ExtractionConfig, since: Optional[str], until: Optional[str]):
    end = _parse_when(until) if until else datetime.now(timezone.utc)
    start = _parse_when(since) if since else end - timedelta(days=config.window_days)
    return start, end


def seed_repository(
    config: ExtractionConfig,
    db: Database,
    consumer,
    forge: str,
    user_id: str,
    external_repository_id: int,
    since: datetime,
    until: datetime,
    namespace_name: str = "",
    repository_name: str = "",
    local: bool = False,
) -> int:
    """Upsert a repository, open a crawl for it and fire ``repository.linked``.

    With ``local`` the seed handlers run in-process instead of being
    triggered through the event bus. Returns the crawl id.
    """
    from scripts.extraction import functions
    from scripts.extraction.events import REPOSITORY_LINKED, RepositoryLinked
    from scripts.extraction.messages import Metadata, now_ms

    metadata = Metadata(
        timestamp=now_ms(),
        caller="cli",
        source_control=forge,
        user_id=user_id,
        since=since,
        until=until,
        crawl_id=0,
        tenant_id=config.tenant_id,
    )
    ctx = consumer.contexts(metadata)
    repository, namespace = functions.get_repository(
        ctx, external_repository_id, namespace_name, repository_name
    )
    crawl_id = ctx.crawl.start(user_id, repository.id, since, until)
    metadata = metadata.model_copy(update={"crawl_id": crawl_id})
    properties = RepositoryLinked(repository_id=repository.id, namespace_id=namespace.id)

    if local:
        consumer.handle_event({
            "detail-type": REPOSITORY_LINKED.detail_type,
            "detail": {
                "properties": properties.model_dump(mode="json"),
                "metadata": metadata.model_dump(mode="json"),
            },
        })
    else:
        ctx.bus.publish(REPOSITORY_LINKED, properties, metadata)
    logger.info(
        "Seeded %s/%s (repository %s)",
        namespace.name,
        repository.name,
        repository.id,
        extra={"crawl_id": crawl_id, "tenant_id": config.tenant_id, "forge": forge},
    )
    return crawl_id


def cmd_extract(args: argparse.Namespace) -> None:
    """Seed extraction of one repository."""
    config = load_config()
    db = Database(config.database)
    try:
        since, until = _extract_window(config, args.since, args.until)
        crawl_id = seed_repository(
            config,
            db,
            _build_consumer(config, db),
            forge=args.forge,
            user_id=args.user_id,
            external_repository_id=args.repository_id,
            namespace_name=args.namespace or "",
            repository_name=args.repository or "",
            since=since,
            until=until,
            local=args.local,
        )
        print(f"crawl {crawl_id}")
    finally:
        db.close()


def run_worker(consumer, queue, wait_time: int, once: bool = False) -> int:
    """Long-poll the queue; delete a message only after its handler succeeds.

    Failed messages are left in the queue and become visible again, which is
    the redelivery path. Returns the number of messages handled.
    """
    handled = 0
    while True:
        for sqs_message in queue.receive(max_messages=1, wait_time=wait_time):
            try:
                consumer.handle_body(sqs_message["Body"])
            except Exception as exc:
                logger.error(
                    "Message %s left for redelivery: %s",
                    sqs_message.get("MessageId"),
                    exc,
                )
                continue
            queue.delete(sqs_message["ReceiptHandle"])
            handled += 1
        if once:
            return handled


def cmd_worker(args: argparse.Namespace) -> None:
    """Consume extraction messages from the queue."""
    from scripts.extraction.messages import QueueClient

    config = load_config()
    db = Database(config.database)
    try:
        consumer = _build_consumer(config, db)
        queue = QueueClient(config.queue)
        logger.info("Worker polling %s", config.queue.queue_url)
        run_worker(consumer, queue, config.queue.wait_time_seconds, once=args.once)
    except KeyboardInterrupt:
        logger.info("Worker stopped")
    finally:
        db.close()


def cmd_reconcile(args: argparse.Namespace) -> None:
    """Reconcile git identities onto members."""
    config = load_config()
    db = Database(config.database)
    try:
        results = _run_reconcile(config, db)
        logger.info("Reconciliation complete: %s", results)
    finally:
        db.close()


def cmd_scheduler(args: argparse.Namespace) -> None:
    """Start the APScheduler-based scheduling loop."""
    from scripts.extraction.events import EventBus
    from scripts.extraction.scheduler import start_scheduler

    config = load_config()
    db = Database(config.database)
    try:
        start_scheduler(config, db, EventBus(config.queue))
    finally:
        db.close()


def cmd_status(args: argparse.Namespace) -> None:
    """Show recent crawls."""
    config = load_config()
    db = Database(config.database)

    try:
        crawls = db.get_recent_crawls(tenant_id=config.tenant_id, limit=args.limit)
        if not crawls:
            print("No crawls found.")
            return

        fmt = "{:>8}  {:>10}  {:<20}  {:<20}  {:<20}  {:<20}  {:>9}  {:>6}"
        print(fmt.format(
            "CRAWL", "REPOSITORY", "USER", "STARTED", "SINCE", "UNTIL", "COMPLETED", "FAILED",
        ))
        print("-" * 126)
        for c in crawls:
            print(fmt.format(
                c["id"],
                c["repository_id"],
                str(c["user_id"])[:20],
                str(c["started_at"])[:19] if c["started_at"] else "",
                str(c["since"])[:19] if c["since"] else "",
                str(c["until"])[:19] if c["until"] else "",
                c.get("completed", 0),
                c.get("failed", 0),
            ))
    finally:
        db.close()


def main(argv: Optional[list[str]] = None) -> None:
    """Main CLI entry point."""
    configure_logging()

    parser = argparse.ArgumentParser(
        prog="forge-extract",
        description="Source-control extraction pipeline",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    extract_parser = subparsers.add_parser("extract", help="Seed extraction of a repository")
    extract_parser.add_argument("--forge", "-f", choices=FORGES, required=True)
    extract_parser.add_argument(
        "--repository-id", "-r", type=int, required=True,
        help="Provider-side repository (project) id",
    )
    extract_parser.add_argument("--namespace", help="Owner/group name (GitHub)")
    extract_parser.add_argument("--repository", help="Repository name (GitHub)")
    extract_parser.add_argument("--user-id", "-u", required=True, help="Acting user")
    extract_parser.add_argument("--since", help="ISO timestamp (default: window before --until)")
    extract_parser.add_argument("--until", help="ISO timestamp (default: now)")
    extract_parser.add_argument(
        "--local", action="store_true",
        help="Run seed handlers in-process instead of publishing the trigger",
    )
    extract_parser.set_defaults(func=cmd_extract)

    worker_parser = subparsers.add_parser("worker", help="Consume the extract queue")
    worker_parser.add_argument("--once", action="store_true", help="Poll once and exit")
    worker_parser.set_defaults(func=cmd_worker)

    reconcile_parser = subparsers.add_parser("reconcile", help="Reconcile git identities")
    reconcile_parser.set_defaults(func=cmd_reconcile)

    sched_parser = subparsers.add_parser("scheduler", help="Start scheduled jobs")
    sched_parser.set_defaults(func=cmd_scheduler)

    status_parser = subparsers.add_parser("status", help="Show recent crawls")
    status_parser.add_argument(
        "--limit", "-l",
        type=int,
        default=10,
        help="Number of crawls to show (default: 10)",
    )
    status_parser.set_defaults(func=cmd_status)

    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    sys.exit(main())
