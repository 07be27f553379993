"""APScheduler-based interval jobs: reconciliation and deployment status sweep."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone

from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.schedulers.blocking import BlockingScheduler

from scripts.extraction.config import ExtractionConfig
from scripts.extraction.crawl import CrawlTracker
from scripts.extraction.db import Database
from scripts.extraction.events import DEPLOYMENTS_NEED_STATUS, DeploymentsNeedStatus, EventBus
from scripts.extraction.messages import Metadata, now_ms
from scripts.extraction.store import EntityStore

logger = logging.getLogger("extraction.scheduler")

SWEEP_USER = "scheduler"


def _run_reconcile(config: ExtractionConfig, db: Database) -> None:
    from scripts.extraction.cli import _run_reconcile as reconcile
    try:
        results = reconcile(config, db)
        logger.info("Reconciliation complete: %s", results)
    except Exception as exc:
        logger.error("Reconciliation failed: %s", exc)


def sweep_unresolved_deployments(
    config: ExtractionConfig, db, bus: EventBus
) -> dict[int, int]:
    """Request status resolution for every deployment still without a status.

    Opens one crawl per repository. Returns repository id -> deployments sent.
    """
    store = EntityStore(db, config.tenant_id)
    crawl = CrawlTracker(db, config.tenant_id)
    until = datetime.now(timezone.utc)
    since = until - timedelta(days=config.window_days)

    by_repository: dict[int, list[int]] = defaultdict(list)
    for deployment in store.unresolved_deployments():
        by_repository[deployment.repository_id].append(deployment.id)

    sent: dict[int, int] = {}
    for repository_id, deployment_ids in sorted(by_repository.items()):
        repository = store.get("repository", repository_id)
        crawl_id = crawl.start(SWEEP_USER, repository.id, since, until)
        metadata = Metadata(
            timestamp=now_ms(),
            caller="deployment-sweep",
            source_control=repository.forge_type,
            user_id=SWEEP_USER,
            since=since,
            until=until,
            crawl_id=crawl_id,
            tenant_id=config.tenant_id,
        )
        bus.publish(
            DEPLOYMENTS_NEED_STATUS,
            DeploymentsNeedStatus(
                repository_id=repository.id,
                namespace_id=repository.namespace_id,
                deployment_ids=sorted(deployment_ids),
            ),
            metadata,
        )
        sent[repository_id] = len(deployment_ids)
    logger.info("Deployment sweep requested status for %s", sent)
    return sent


def _run_sweep(config: ExtractionConfig, db: Database, bus: EventBus) -> None:
    try:
        sweep_unresolved_deployments(config, db, bus)
    except Exception as exc:
        logger.error("Deployment sweep failed: %s", exc)


def _on_job_error(event) -> None:
    """Log job execution errors."""
    logger.error(
        "Job %s raised an exception: %s",
        event.job_id,
        event.exception,
    )


def start_scheduler(config: ExtractionConfig, db: Database, bus: EventBus) -> None:
    """Start the blocking scheduler with the reconcile and sweep jobs."""
    scheduler = BlockingScheduler()
    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    sched = config.scheduler

    scheduler.add_job(
        _run_reconcile,
        "interval",
        minutes=sched.reconcile_interval_min,
        args=[config, db],
        id="reconcile",
        max_instances=1,
        misfire_grace_time=sched.misfire_grace_time,
    )

    scheduler.add_job(
        _run_sweep,
        "interval",
        minutes=sched.deployment_sweep_interval_min,
        args=[config, db, bus],
        id="deployment_sweep",
        max_instances=1,
        misfire_grace_time=sched.misfire_grace_time,
    )

    logger.info("Starting scheduler with jobs: %s",
                [j.id for j in scheduler.get_jobs()])
    scheduler.start()
