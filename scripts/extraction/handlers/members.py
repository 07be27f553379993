"""Repository and namespace member extraction."""

from __future__ import annotations

import logging

from scripts.extraction import functions
from scripts.extraction.context import ExtractContext
from scripts.extraction.events import RepositoryLinked, TriggerEvent
from scripts.extraction.fanout import FanOut
from scripts.extraction.logging_config import metadata_extra
from scripts.extraction.messages import Message, MessageKind, MessageType, PageContent
from scripts.extraction.models import Member, Page, Repository

logger = logging.getLogger("extraction.handlers.members")

MEMBER_PAGE = MessageType(MessageKind.MEMBER, PageContent)
NAMESPACE_MEMBER_PAGE = MessageType(MessageKind.NAMESPACE_MEMBER, PageContent)


def _log_page(ctx: ExtractContext, source: str, repository: Repository, page: Page[Member]) -> None:
    logger.info(
        "Persisted %d %s members of repository %s (page %d/%d)",
        len(page.records),
        source,
        repository.id,
        page.pagination.page,
        page.pagination.total_pages,
        extra=metadata_extra(
            ctx.metadata,
            entity_type="member",
            page=page.pagination.page,
            records=len(page.records),
        ),
    )


def seed_members(ctx: ExtractContext, fanout: FanOut, event: TriggerEvent[RepositoryLinked]) -> None:
    props = event.properties
    repository, namespace = functions.load_repository(ctx, props.repository_id, props.namespace_id)
    first = functions.get_members(ctx, repository, namespace, ctx.per_page)
    _log_page(ctx, "repository", repository, first)
    fanout.pages(
        MEMBER_PAGE,
        first.pagination,
        lambda pagination: PageContent(
            repository_id=repository.id,
            namespace_id=namespace.id,
            pagination=pagination,
        ),
        ctx.metadata.derive("extract-members"),
    )


def extract_members_page(ctx: ExtractContext, message: Message[PageContent]) -> None:
    content = message.content
    repository, namespace = functions.load_repository(
        ctx, content.repository_id, content.namespace_id
    )
    page = functions.get_members(
        ctx, repository, namespace, content.pagination.per_page, content.pagination.page
    )
    _log_page(ctx, "repository", repository, page)


def seed_namespace_members(
    ctx: ExtractContext, fanout: FanOut, event: TriggerEvent[RepositoryLinked]
) -> None:
    props = event.properties
    repository, namespace = functions.load_repository(ctx, props.repository_id, props.namespace_id)
    first = functions.get_namespace_members(ctx, repository, namespace, ctx.per_page)
    _log_page(ctx, "namespace", repository, first)
    fanout.pages(
        NAMESPACE_MEMBER_PAGE,
        first.pagination,
        lambda pagination: PageContent(
            repository_id=repository.id,
            namespace_id=namespace.id,
            pagination=pagination,
        ),
        ctx.metadata.derive("extract-namespace-members"),
    )


def extract_namespace_members_page(ctx: ExtractContext, message: Message[PageContent]) -> None:
    content = message.content
    repository, namespace = functions.load_repository(
        ctx, content.repository_id, content.namespace_id
    )
    page = functions.get_namespace_members(
        ctx, repository, namespace, content.pagination.per_page, content.pagination.page
    )
    _log_page(ctx, "namespace", repository, page)
