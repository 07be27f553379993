"""Pagination fan-out.

A seed handler fetches page 1, then hands the resulting pagination to
``FanOut.pages`` which enqueues pages ``2..total_pages`` as one dispatch.
Page workers never receive a ``FanOut``: they only get an ``ExtractContext``,
so a page worker has no way to enqueue further pages.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Sequence

from scripts.extraction.logging_config import metadata_extra
from scripts.extraction.messages import BatchOutcome, MessageSender, MessageType, Metadata
from scripts.extraction.models import Pagination

logger = logging.getLogger("extraction.fanout")

# merge request / deployment ids per child-extraction message
CHILD_CHUNK_SIZE = 5


def follow_up_pages(pagination: Pagination) -> list[int]:
    """Page numbers still to fetch after page 1: ``2..total_pages``."""
    return list(range(2, pagination.total_pages + 1))


def chunked(items: Sequence[Any], size: int) -> list[list[Any]]:
    if size < 1:
        raise ValueError("chunk size must be positive")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class FanOut:
    """Turns one seeded page or a list of parent ids into queued work."""

    def __init__(self, sender: MessageSender) -> None:
        self.sender = sender

    def pages(
        self,
        message_type: MessageType,
        first_page: Pagination,
        content_for_page: Callable[[Pagination], Any],
        metadata: Metadata,
    ) -> list[BatchOutcome]:
        """Enqueue one page message per remaining page of ``first_page``."""
        remaining = follow_up_pages(first_page)
        if not remaining:
            logger.info(
                "No more pages left, no need to enqueue",
                extra=metadata_extra(metadata, kind=message_type.kind),
            )
            return []
        contents = [
            content_for_page(
                Pagination(
                    page=page,
                    per_page=first_page.per_page,
                    total_pages=first_page.total_pages,
                )
            )
            for page in remaining
        ]
        return self.dispatch(message_type, contents, metadata)

    def ids(
        self,
        message_type: MessageType,
        ids: Sequence[int],
        chunk_size: int,
        make_content: Callable[[list[int]], Any],
        metadata: Metadata,
    ) -> list[BatchOutcome]:
        """Enqueue child-extraction messages carrying ``chunk_size`` ids each."""
        if not ids:
            return []
        contents = [make_content(chunk) for chunk in chunked(ids, chunk_size)]
        return self.dispatch(message_type, contents, metadata)

    def dispatch(
        self, message_type: MessageType, contents: list[Any], metadata: Metadata
    ) -> list[BatchOutcome]:
        if not contents:
            return []
        logger.info(
            "Enqueueing %d %s messages",
            len(contents),
            message_type.kind,
            extra=metadata_extra(metadata, kind=message_type.kind),
        )
        return self.sender.send_all(message_type, contents, metadata)
