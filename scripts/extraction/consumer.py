"""Consuming side of the pipeline: queue records and bus events.

Handler failures are logged and re-raised so the hosting runtime redelivers
the message. There is no retry loop here.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from scripts.extraction.context import ContextFactory
from scripts.extraction.errors import ExtractionError, ValidationError
from scripts.extraction.events import TriggerEvent, parse_event
from scripts.extraction.fanout import FanOut
from scripts.extraction.handlers import EVENT_ROUTES, QUEUE_ROUTES, EventRoute, QueueRoute
from scripts.extraction.logging_config import metadata_extra
from scripts.extraction.messages import Message, MessageSender
from scripts.extraction.outcomes import log_failures, settle_all

logger = logging.getLogger("extraction.consumer")


def resolve_path(obj: Any, path: str) -> Any:
    """Follow a dotted attribute path; missing steps yield None."""
    for part in path.split("."):
        if obj is None:
            return None
        obj = obj.get(part) if isinstance(obj, dict) else getattr(obj, part, None)
    return obj


class Consumer:
    def __init__(
        self,
        contexts: ContextFactory,
        sender: MessageSender,
        queue_routes: Optional[dict[str, QueueRoute]] = None,
        event_routes: Optional[dict[str, list[EventRoute]]] = None,
    ) -> None:
        self.contexts = contexts
        self.sender = sender
        self.queue_routes = QUEUE_ROUTES if queue_routes is None else queue_routes
        self.event_routes = EVENT_ROUTES if event_routes is None else event_routes

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def handle_queue_event(self, event: dict[str, Any]) -> list[Message]:
        """Handle an SQS batch (``{"Records": [...]}``), normally of one record."""
        records = event.get("Records") or []
        if len(records) > 1:
            logger.warning("Received %d records in one invocation, expected 1", len(records))
        return [self.handle_record(record) for record in records]

    def handle_record(self, record: dict[str, Any]) -> Message:
        body = record.get("body", record.get("Body"))
        return self.handle_body(body)

    def handle_body(self, body: Any) -> Message:
        if isinstance(body, str):
            try:
                body = json.loads(body)
            except json.JSONDecodeError as exc:
                logger.error("Message body is not JSON: %s", body)
                raise ValidationError("message body is not JSON", body) from exc
        if not isinstance(body, dict):
            raise ValidationError("message body must be an object", body)

        kind = body.get("kind")
        route = self.queue_routes.get(kind)
        if route is None:
            logger.error("No handler for message kind %r: %s", kind, body)
            raise ValidationError(f"Unknown message kind {kind!r}", body)

        try:
            message = route.message_type.parse(body)
        except ValidationError:
            logger.error("Invalid %s message: %s", kind, body, extra={"kind": kind})
            raise

        metadata = message.metadata
        log_extra = metadata_extra(metadata, kind=kind)
        ctx = self.contexts(metadata)
        try:
            with ctx.crawl.track(metadata.crawl_id, route.crawl_namespace):
                route.handler(ctx, message)
        except Exception as exc:
            logger.error("Failed to handle %s message: %s", kind, exc, exc_info=True, extra=log_extra)
            raise

        logger.info(
            "Handled %s message %s",
            kind,
            {path: resolve_path(message, path) for path in route.properties_to_log},
            extra=log_extra,
        )
        return message

    # ------------------------------------------------------------------
    # Bus
    # ------------------------------------------------------------------

    def handle_event(self, event: dict[str, Any], route_name: Optional[str] = None) -> TriggerEvent:
        """Run the seed handlers bound to an event's detail type.

        With ``route_name`` only that handler runs and its failure propagates
        unchanged. Otherwise every handler runs; failures are logged and
        reported together once all of them have finished.
        """
        try:
            trigger = parse_event(event)
        except ValidationError:
            logger.error("Invalid event: %s", event)
            raise
        routes = self.event_routes.get(trigger.detail_type, [])
        if route_name is not None:
            routes = [r for r in routes if r.name == route_name]
            if not routes:
                raise ValidationError(
                    f"No handler {route_name!r} for {trigger.detail_type}", event
                )

        ctx = self.contexts(trigger.metadata)
        fanout = FanOut(self.sender)

        def run(route: EventRoute) -> None:
            with ctx.crawl.track(trigger.metadata.crawl_id, route.crawl_namespace):
                route.handler(ctx, fanout, trigger)

        if len(routes) == 1:
            run(routes[0])
        else:
            outcomes = settle_all(routes, run)
            failed = log_failures(outcomes, f"{trigger.detail_type} handler")
            if failed:
                first = next(o.error for o in outcomes if not o.ok)
                raise ExtractionError(
                    f"{failed} of {len(routes)} {trigger.detail_type} handlers failed"
                ) from first

        logger.info(
            "Handled %s event with %d handlers",
            trigger.detail_type,
            len(routes),
            extra=metadata_extra(trigger.metadata),
        )
        return trigger
