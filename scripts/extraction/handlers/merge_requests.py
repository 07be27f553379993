"""Merge request extraction.

Both the seed and the page worker announce the merge requests they persisted
with a ``merge-requests.extracted`` event, which starts the child stages.
"""

from __future__ import annotations

import logging

from scripts.extraction import functions
from scripts.extraction.context import ExtractContext
from scripts.extraction.events import (
    MERGE_REQUESTS_EXTRACTED,
    MergeRequestsExtracted,
    RepositoryLinked,
    TriggerEvent,
)
from scripts.extraction.fanout import FanOut
from scripts.extraction.logging_config import metadata_extra
from scripts.extraction.messages import Message, MessageKind, MessageType, PageContent
from scripts.extraction.models import MergeRequest, Namespace, Repository

logger = logging.getLogger("extraction.handlers.merge_requests")

MERGE_REQUEST_PAGE = MessageType(MessageKind.MERGE_REQUEST, PageContent)


def _announce(
    ctx: ExtractContext,
    repository: Repository,
    namespace: Namespace,
    merge_requests: list[MergeRequest],
) -> None:
    logger.info(
        "Persisted %d merge requests of repository %s",
        len(merge_requests),
        repository.id,
        extra=metadata_extra(ctx.metadata, entity_type="merge_request", records=len(merge_requests)),
    )
    if not merge_requests:
        return
    ctx.bus.publish(
        MERGE_REQUESTS_EXTRACTED,
        MergeRequestsExtracted(
            repository_id=repository.id,
            namespace_id=namespace.id,
            merge_request_ids=[mr.id for mr in merge_requests],
        ),
        ctx.metadata.derive("extract-merge-requests"),
    )


def seed_merge_requests(
    ctx: ExtractContext, fanout: FanOut, event: TriggerEvent[RepositoryLinked]
) -> None:
    props = event.properties
    repository, namespace = functions.load_repository(ctx, props.repository_id, props.namespace_id)
    first = functions.get_merge_requests(ctx, repository, namespace, ctx.per_page)
    _announce(ctx, repository, namespace, first.records)
    fanout.pages(
        MERGE_REQUEST_PAGE,
        first.pagination,
        lambda pagination: PageContent(
            repository_id=repository.id,
            namespace_id=namespace.id,
            pagination=pagination,
        ),
        ctx.metadata.derive("extract-merge-requests"),
    )


def extract_merge_requests_page(ctx: ExtractContext, message: Message[PageContent]) -> None:
    content = message.content
    repository, namespace = functions.load_repository(
        ctx, content.repository_id, content.namespace_id
    )
    page = functions.get_merge_requests(
        ctx, repository, namespace, content.pagination.per_page, content.pagination.page
    )
    _announce(ctx, repository, namespace, page.records)
