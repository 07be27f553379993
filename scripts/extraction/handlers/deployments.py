"""Deployment extraction and status resolution.

Deployments are fetched per configured environment. The seed fetches every
environment's first page concurrently and waits for all of them before one
combined fan-out. Deployments whose status the provider has not settled yet
are persisted with a NULL status and handed to the status-resolution stage.
"""

from __future__ import annotations

import logging

from scripts.extraction import functions
from scripts.extraction.context import ExtractContext
from scripts.extraction.events import (
    DEPLOYMENTS_NEED_STATUS,
    DeploymentsNeedStatus,
    RepositoryLinked,
    TriggerEvent,
)
from scripts.extraction.fanout import CHILD_CHUNK_SIZE, FanOut, follow_up_pages
from scripts.extraction.messages import (
    DeploymentBatchContent,
    DeploymentPageContent,
    Message,
    MessageKind,
    MessageType,
)
from scripts.extraction.models import Deployment, Namespace, Pagination, Repository
from scripts.extraction.outcomes import log_failures, settle_all

logger = logging.getLogger("extraction.handlers.deployments")

DEPLOYMENT_PAGE = MessageType(MessageKind.DEPLOYMENT, DeploymentPageContent)
DEPLOYMENT_STATUS = MessageType(MessageKind.DEPLOYMENT_STATUS, DeploymentBatchContent)

# first pages fetched in parallel per seed
MAX_ENVIRONMENT_WORKERS = 8


def request_status_resolution(
    ctx: ExtractContext,
    repository: Repository,
    namespace: Namespace,
    deployments: list[Deployment],
    caller: str,
) -> int:
    """Publish ``deployments.need-status`` for deployments without a status."""
    unresolved = [d.id for d in deployments if d.status is None]
    if not unresolved:
        return 0
    ctx.bus.publish(
        DEPLOYMENTS_NEED_STATUS,
        DeploymentsNeedStatus(
            repository_id=repository.id,
            namespace_id=namespace.id,
            deployment_ids=unresolved,
        ),
        ctx.metadata.derive(caller),
    )
    return len(unresolved)


def seed_deployments(
    ctx: ExtractContext, fanout: FanOut, event: TriggerEvent[RepositoryLinked]
) -> None:
    props = event.properties
    repository, namespace = functions.load_repository(ctx, props.repository_id, props.namespace_id)

    environments = [e.environment for e in ctx.store.deployment_environments(repository)]
    if not environments:
        logger.info(
            "No deployment environments defined for repository %s",
            repository.name,
            extra={"crawl_id": ctx.metadata.crawl_id, "tenant_id": ctx.metadata.tenant_id},
        )
        return

    outcomes = settle_all(
        environments,
        lambda environment: functions.get_deployments(
            ctx, repository, namespace, environment, ctx.per_page
        ),
        max_workers=min(len(environments), MAX_ENVIRONMENT_WORKERS),
    )
    if log_failures(outcomes, "extract first deployments page of environment"):
        raise next(o.error for o in outcomes if not o.ok)

    first_pages = [o.result for o in outcomes]
    request_status_resolution(
        ctx,
        repository,
        namespace,
        [d for page in first_pages for d in page.records],
        "extract-deployments",
    )

    contents = [
        DeploymentPageContent(
            repository_id=repository.id,
            namespace_id=namespace.id,
            environment=environment,
            pagination=Pagination(
                page=page_number,
                per_page=page.pagination.per_page,
                total_pages=page.pagination.total_pages,
            ),
        )
        for environment, page in zip(environments, first_pages)
        for page_number in follow_up_pages(page.pagination)
    ]
    if not contents:
        logger.info(
            "No more pages left, no need to enqueue",
            extra={"kind": DEPLOYMENT_PAGE.kind, "crawl_id": ctx.metadata.crawl_id},
        )
        return
    fanout.dispatch(DEPLOYMENT_PAGE, contents, ctx.metadata.derive("extract-deployments"))


def extract_deployments_page(
    ctx: ExtractContext, message: Message[DeploymentPageContent]
) -> None:
    content = message.content
    repository, namespace = functions.load_repository(
        ctx, content.repository_id, content.namespace_id
    )
    page = functions.get_deployments(
        ctx,
        repository,
        namespace,
        content.environment,
        content.pagination.per_page,
        content.pagination.page,
    )
    request_status_resolution(ctx, repository, namespace, page.records, "extract-deployments")


def seed_deployment_statuses(
    ctx: ExtractContext, fanout: FanOut, event: TriggerEvent[DeploymentsNeedStatus]
) -> None:
    props = event.properties
    fanout.ids(
        DEPLOYMENT_STATUS,
        props.deployment_ids,
        CHILD_CHUNK_SIZE,
        lambda chunk: DeploymentBatchContent(
            repository_id=props.repository_id,
            namespace_id=props.namespace_id,
            deployment_ids=chunk,
        ),
        ctx.metadata.derive("resolve-deployment-status"),
    )


def resolve_deployment_statuses(
    ctx: ExtractContext, message: Message[DeploymentBatchContent]
) -> None:
    content = message.content
    repository, namespace = functions.load_repository(
        ctx, content.repository_id, content.namespace_id
    )
    outcomes = settle_all(
        content.deployment_ids,
        lambda deployment_id: functions.get_deployment_status(
            ctx, repository, namespace, deployment_id
        ),
    )
    log_failures(outcomes, "resolve status of deployment:")
    resolved = sum(1 for o in outcomes if o.ok and o.result.status is not None)
    logger.info(
        "Resolved %d of %d deployment statuses",
        resolved,
        len(outcomes),
        extra={"crawl_id": ctx.metadata.crawl_id, "records": resolved},
    )
