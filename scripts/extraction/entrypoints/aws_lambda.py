"""AWS Lambda handlers for the extraction pipeline.

event_handler      EventBridge trigger events. Set EXTRACT_EVENT_ROUTE to bind
                   a function to one seed handler (e.g. "members").
queue_handler      SQS extract-queue records (batch size 1).
reconcile_handler  Scheduled git identity reconciliation.

Queue and event failures are re-raised so the platform redelivers them.
"""

from __future__ import annotations

import json
import logging
import os

from scripts.extraction.config import load_config
from scripts.extraction.db import Database
from scripts.extraction.logging_config import configure_logging

logger = logging.getLogger("extraction.lambda")


def event_handler(event: dict, context) -> dict:
    """Lambda entry point for bus triggers."""
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))
    from scripts.extraction.cli import _build_consumer

    route = os.environ.get("EXTRACT_EVENT_ROUTE") or None
    logger.info("Lambda invoked for %s (route=%s)", event.get("detail-type"), route)

    config = load_config()
    db = Database(config.database)
    try:
        trigger = _build_consumer(config, db).handle_event(event, route_name=route)
        return {
            "statusCode": 200,
            "body": json.dumps({"detailType": trigger.detail_type, "route": route}),
        }
    finally:
        db.close()


def queue_handler(event: dict, context) -> dict:
    """Lambda entry point for SQS records."""
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))
    from scripts.extraction.cli import _build_consumer

    config = load_config()
    db = Database(config.database)
    try:
        messages = _build_consumer(config, db).handle_queue_event(event)
        return {
            "statusCode": 200,
            "body": json.dumps({"handled": [m.kind for m in messages]}),
        }
    finally:
        db.close()


def reconcile_handler(event: dict, context) -> dict:
    """Lambda entry point for scheduled reconciliation."""
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))
    from scripts.extraction.cli import _run_reconcile

    config = load_config()
    db = Database(config.database)
    try:
        results = _run_reconcile(config, db)
        logger.info("Reconciliation complete: %s", results)
        return {"statusCode": 200, "body": json.dumps({"results": results})}
    except Exception as exc:
        logger.error("Reconciliation failed: %s", exc, exc_info=True)
        return {"statusCode": 500, "body": json.dumps({"error": str(exc)})}
    finally:
        db.close()
