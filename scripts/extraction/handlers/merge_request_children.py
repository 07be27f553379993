"""Commits, diffs, notes and timeline events of extracted merge requests.

Triggered by ``merge-requests.extracted``. Commits go out one merge request
per message; the other stages carry up to five ids and process each id
independently, logging the ones that fail.
"""

from __future__ import annotations

import logging
from typing import Callable

from scripts.extraction import functions
from scripts.extraction.context import ExtractContext
from scripts.extraction.events import MergeRequestsExtracted, TriggerEvent
from scripts.extraction.fanout import CHILD_CHUNK_SIZE, FanOut
from scripts.extraction.messages import (
    Message,
    MessageKind,
    MessageType,
    MergeRequestBatchContent,
    MergeRequestContent,
)
from scripts.extraction.outcomes import log_failures, settle_all

logger = logging.getLogger("extraction.handlers.merge_request_children")

MERGE_REQUEST_COMMITS = MessageType(MessageKind.MERGE_REQUEST_COMMIT, MergeRequestContent)
MERGE_REQUEST_DIFFS = MessageType(MessageKind.MERGE_REQUEST_DIFF, MergeRequestBatchContent)
MERGE_REQUEST_NOTES = MessageType(MessageKind.MERGE_REQUEST_NOTE, MergeRequestBatchContent)
TIMELINE_EVENTS = MessageType(MessageKind.TIMELINE_EVENT, MergeRequestBatchContent)


def seed_commits(
    ctx: ExtractContext, fanout: FanOut, event: TriggerEvent[MergeRequestsExtracted]
) -> None:
    props = event.properties
    metadata = ctx.metadata.derive("extract-merge-request-commits")
    ctx.crawl.info(
        metadata.crawl_id,
        MessageKind.MERGE_REQUEST_COMMIT.value,
        {"calls": len(props.merge_request_ids)},
    )
    fanout.ids(
        MERGE_REQUEST_COMMITS,
        props.merge_request_ids,
        1,
        lambda chunk: MergeRequestContent(
            repository_id=props.repository_id,
            namespace_id=props.namespace_id,
            merge_request_id=chunk[0],
        ),
        metadata,
    )


def _seed_batches(caller: str, message_type: MessageType):
    def seed(
        ctx: ExtractContext, fanout: FanOut, event: TriggerEvent[MergeRequestsExtracted]
    ) -> None:
        props = event.properties
        fanout.ids(
            message_type,
            props.merge_request_ids,
            CHILD_CHUNK_SIZE,
            lambda chunk: MergeRequestBatchContent(
                repository_id=props.repository_id,
                namespace_id=props.namespace_id,
                merge_request_ids=chunk,
            ),
            ctx.metadata.derive(caller),
        )

    seed.__name__ = f"seed_{message_type.kind.replace('-', '_')}"
    return seed


seed_diffs = _seed_batches("extract-merge-request-diffs", MERGE_REQUEST_DIFFS)
seed_notes = _seed_batches("extract-merge-request-notes", MERGE_REQUEST_NOTES)
seed_timeline_events = _seed_batches("extract-timeline-events", TIMELINE_EVENTS)


def extract_commits(ctx: ExtractContext, message: Message[MergeRequestContent]) -> None:
    content = message.content
    functions.get_merge_request_commits(
        ctx, content.repository_id, content.namespace_id, content.merge_request_id
    )


def _extract_each(
    ctx: ExtractContext,
    content: MergeRequestBatchContent,
    fn: Callable[[ExtractContext, int, int, int], object],
    what: str,
) -> int:
    outcomes = settle_all(
        content.merge_request_ids,
        lambda merge_request_id: fn(
            ctx, content.repository_id, content.namespace_id, merge_request_id
        ),
    )
    return log_failures(outcomes, f"extract {what} of merge-request:")


def extract_diffs(ctx: ExtractContext, message: Message[MergeRequestBatchContent]) -> None:
    _extract_each(ctx, message.content, functions.get_merge_request_diffs, "diff")


def extract_notes(ctx: ExtractContext, message: Message[MergeRequestBatchContent]) -> None:
    _extract_each(ctx, message.content, functions.get_merge_request_notes, "notes")


def extract_timeline_events(
    ctx: ExtractContext, message: Message[MergeRequestBatchContent]
) -> None:
    _extract_each(ctx, message.content, functions.get_timeline_events, "timeline events")
