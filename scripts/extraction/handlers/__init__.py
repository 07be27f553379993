"""Routing tables for queue messages and trigger events.

Queue routes are page workers and child-stage workers: they receive an
``ExtractContext`` and the parsed message. Event routes are seeds: they also
receive a ``FanOut`` to enqueue the follow-up work.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

from scripts.extraction.context import ExtractContext
from scripts.extraction.events import (
    DEPLOYMENTS_NEED_STATUS,
    MERGE_REQUESTS_EXTRACTED,
    REPOSITORY_LINKED,
    TriggerEvent,
)
from scripts.extraction.fanout import FanOut
from scripts.extraction.handlers import deployments, members, merge_request_children, merge_requests
from scripts.extraction.messages import Message, MessageKind, MessageType

PageHandler = Callable[[ExtractContext, Message], Any]
SeedHandler = Callable[[ExtractContext, FanOut, TriggerEvent], Any]


@dataclass(frozen=True)
class QueueRoute:
    message_type: MessageType
    handler: PageHandler
    crawl_namespace: Optional[str] = None
    # dotted paths into the message, logged once it is handled
    properties_to_log: tuple[str, ...] = ()


@dataclass(frozen=True)
class EventRoute:
    name: str
    handler: SeedHandler
    crawl_namespace: Optional[str] = None


_PAGE_PROPERTIES = ("content.repository_id", "content.pagination.page", "metadata.crawl_id")

QUEUE_ROUTES: dict[str, QueueRoute] = {
    route.message_type.kind: route
    for route in (
        QueueRoute(
            members.MEMBER_PAGE,
            members.extract_members_page,
            MessageKind.MEMBER.value,
            _PAGE_PROPERTIES,
        ),
        QueueRoute(
            members.NAMESPACE_MEMBER_PAGE,
            members.extract_namespace_members_page,
            MessageKind.NAMESPACE_MEMBER.value,
            _PAGE_PROPERTIES,
        ),
        QueueRoute(
            merge_requests.MERGE_REQUEST_PAGE,
            merge_requests.extract_merge_requests_page,
            MessageKind.MERGE_REQUEST.value,
            _PAGE_PROPERTIES,
        ),
        QueueRoute(
            merge_request_children.MERGE_REQUEST_COMMITS,
            merge_request_children.extract_commits,
            MessageKind.MERGE_REQUEST_COMMIT.value,
            ("content.merge_request_id", "metadata.crawl_id"),
        ),
        QueueRoute(
            merge_request_children.MERGE_REQUEST_DIFFS,
            merge_request_children.extract_diffs,
            MessageKind.MERGE_REQUEST_DIFF.value,
            ("content.merge_request_ids", "metadata.crawl_id"),
        ),
        QueueRoute(
            merge_request_children.MERGE_REQUEST_NOTES,
            merge_request_children.extract_notes,
            MessageKind.MERGE_REQUEST_NOTE.value,
            ("content.merge_request_ids", "metadata.crawl_id"),
        ),
        QueueRoute(
            merge_request_children.TIMELINE_EVENTS,
            merge_request_children.extract_timeline_events,
            MessageKind.TIMELINE_EVENT.value,
            ("content.merge_request_ids", "metadata.crawl_id"),
        ),
        QueueRoute(
            deployments.DEPLOYMENT_PAGE,
            deployments.extract_deployments_page,
            MessageKind.DEPLOYMENT.value,
            ("content.environment", *_PAGE_PROPERTIES),
        ),
        QueueRoute(
            deployments.DEPLOYMENT_STATUS,
            deployments.resolve_deployment_statuses,
            MessageKind.DEPLOYMENT_STATUS.value,
            ("content.deployment_ids", "metadata.crawl_id"),
        ),
    )
}

EVENT_ROUTES: dict[str, list[EventRoute]] = {
    REPOSITORY_LINKED.detail_type: [
        EventRoute("members", members.seed_members, MessageKind.MEMBER.value),
        EventRoute(
            "namespace-members",
            members.seed_namespace_members,
            MessageKind.NAMESPACE_MEMBER.value,
        ),
        EventRoute(
            "merge-requests",
            merge_requests.seed_merge_requests,
            MessageKind.MERGE_REQUEST.value,
        ),
        EventRoute("deployments", deployments.seed_deployments, MessageKind.DEPLOYMENT.value),
    ],
    MERGE_REQUESTS_EXTRACTED.detail_type: [
        EventRoute("merge-request-commits", merge_request_children.seed_commits),
        EventRoute("merge-request-diffs", merge_request_children.seed_diffs),
        EventRoute("merge-request-notes", merge_request_children.seed_notes),
        EventRoute("timeline-events", merge_request_children.seed_timeline_events),
    ],
    DEPLOYMENTS_NEED_STATUS.detail_type: [
        EventRoute("deployment-status", deployments.seed_deployment_statuses),
    ],
}
