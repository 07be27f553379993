"""Extract functions: one adapter fetch followed by idempotent upserts.

Every function takes the invocation's ``ExtractContext`` explicitly. Child
extractions resolve their parents from the store first and raise
``NotFoundError`` before anything is written if a parent is missing.
"""

from __future__ import annotations

import logging
from typing import Optional

from scripts.extraction.context import ExtractContext
from scripts.extraction.errors import NotFoundError
from scripts.extraction.models import (
    Deployment,
    GitIdentity,
    Member,
    MergeRequest,
    MergeRequestCommit,
    MergeRequestDiff,
    MergeRequestNote,
    Namespace,
    Page,
    Repository,
    RepositoryToMember,
    TimelineEvent,
)

logger = logging.getLogger("extraction.functions")


def get_repository(
    ctx: ExtractContext,
    external_repository_id: int,
    namespace_name: str = "",
    repository_name: str = "",
) -> tuple[Repository, Namespace]:
    """Upsert the namespace, then the repository pointing at it."""
    repository, namespace = ctx.source_control.fetch_repository(
        external_repository_id, namespace_name, repository_name
    )
    [namespace] = ctx.store.upsert("namespace", [namespace])
    repository.namespace_id = namespace.id
    [repository] = ctx.store.upsert("repository", [repository])
    return repository, namespace


def _link_members(ctx: ExtractContext, repository: Repository, members: list[Member]) -> None:
    ctx.store.upsert(
        "repository_to_member",
        [RepositoryToMember(repository_id=repository.id, member_id=m.id) for m in members],
    )


def get_members(
    ctx: ExtractContext,
    repository: Repository,
    namespace: Namespace,
    per_page: int,
    page: int = 1,
) -> Page[Member]:
    fetched = ctx.source_control.fetch_members(repository, namespace, per_page, page)
    members = ctx.store.upsert("member", fetched.records)
    _link_members(ctx, repository, members)
    return Page(records=members, pagination=fetched.pagination)


def get_namespace_members(
    ctx: ExtractContext,
    repository: Repository,
    namespace: Namespace,
    per_page: int,
    page: int = 1,
) -> Page[Member]:
    fetched = ctx.source_control.fetch_namespace_members(namespace, per_page, page)
    members = ctx.store.upsert("member", fetched.records)
    _link_members(ctx, repository, members)
    return Page(records=members, pagination=fetched.pagination)


def get_merge_requests(
    ctx: ExtractContext,
    repository: Repository,
    namespace: Namespace,
    per_page: int,
    page: int = 1,
) -> Page[MergeRequest]:
    fetched = ctx.source_control.fetch_merge_requests(
        repository,
        namespace,
        per_page,
        page,
        since=ctx.metadata.since,
        until=ctx.metadata.until,
    )
    merge_requests = ctx.store.upsert("merge_request", fetched.records)
    return Page(records=merge_requests, pagination=fetched.pagination)


def load_repository(
    ctx: ExtractContext, repository_id: int, namespace_id: int
) -> tuple[Repository, Namespace]:
    namespace = ctx.store.get("namespace", namespace_id)
    repository = ctx.store.get("repository", repository_id)
    return repository, namespace


def load_merge_request(
    ctx: ExtractContext, repository_id: int, namespace_id: int, merge_request_id: int
) -> tuple[Repository, Namespace, MergeRequest]:
    repository, namespace = load_repository(ctx, repository_id, namespace_id)
    merge_request = ctx.store.get("merge_request", merge_request_id)
    if merge_request.repository_id != repository.id:
        logger.warning(
            "Merge request %s belongs to repository %s, not %s",
            merge_request_id,
            merge_request.repository_id,
            repository.id,
        )
        raise NotFoundError("merge_request", merge_request_id)
    return repository, namespace, merge_request


def git_identities_from_commits(commits: list[MergeRequestCommit]) -> list[GitIdentity]:
    """Distinct (name, email) pairs of commit authors and committers."""
    seen: dict[tuple[str, str], GitIdentity] = {}
    for c in commits:
        for name, email in ((c.author_name, c.author_email), (c.committer_name, c.committer_email)):
            if not name or not email:
                continue
            seen.setdefault((email, name), GitIdentity(name=name, email=email))
    return list(seen.values())


def get_merge_request_commits(
    ctx: ExtractContext, repository_id: int, namespace_id: int, merge_request_id: int
) -> list[MergeRequestCommit]:
    repository, namespace, merge_request = load_merge_request(
        ctx, repository_id, namespace_id, merge_request_id
    )
    fetched = ctx.source_control.fetch_merge_request_commits(repository, namespace, merge_request)
    commits = ctx.store.upsert("merge_request_commit", fetched.records)
    ctx.store.upsert("git_identity", git_identities_from_commits(commits))
    return commits


def get_merge_request_diffs(
    ctx: ExtractContext, repository_id: int, namespace_id: int, merge_request_id: int
) -> list[MergeRequestDiff]:
    repository, namespace, merge_request = load_merge_request(
        ctx, repository_id, namespace_id, merge_request_id
    )
    fetched = ctx.source_control.fetch_merge_request_diffs(repository, namespace, merge_request)
    return ctx.store.upsert("merge_request_diff", fetched.records)


def get_merge_request_notes(
    ctx: ExtractContext, repository_id: int, namespace_id: int, merge_request_id: int
) -> list[MergeRequestNote]:
    """Upsert notes; human note authors are recorded as members (source: notes)."""
    repository, namespace, merge_request = load_merge_request(
        ctx, repository_id, namespace_id, merge_request_id
    )
    fetched = ctx.source_control.fetch_merge_request_notes(repository, namespace, merge_request)
    notes = ctx.store.upsert("merge_request_note", fetched.records)

    authors: dict[int, Member] = {}
    for note in notes:
        if note.system or note.author_external_id is None or not note.author_username:
            continue
        authors.setdefault(note.author_external_id, Member(
            external_id=note.author_external_id,
            forge_type=repository.forge_type,
            username=note.author_username,
            extracted_source="notes",
        ))
    if authors:
        members = ctx.store.upsert("member", authors.values())
        _link_members(ctx, repository, members)
    return notes


def get_timeline_events(
    ctx: ExtractContext, repository_id: int, namespace_id: int, merge_request_id: int
) -> list[TimelineEvent]:
    repository, namespace, merge_request = load_merge_request(
        ctx, repository_id, namespace_id, merge_request_id
    )
    fetched = ctx.source_control.fetch_timeline_events(repository, namespace, merge_request)
    return ctx.store.upsert("timeline_event", fetched.records)


def get_deployments(
    ctx: ExtractContext,
    repository: Repository,
    namespace: Namespace,
    environment: Optional[str],
    per_page: int,
    page: int = 1,
) -> Page[Deployment]:
    fetched = ctx.source_control.fetch_deployments(
        repository, namespace, environment, per_page, page
    )
    deployments = ctx.store.upsert("deployment", fetched.records)
    return Page(records=deployments, pagination=fetched.pagination)


def get_deployment_status(
    ctx: ExtractContext, repository: Repository, namespace: Namespace, deployment_id: int
) -> Deployment:
    """Re-fetch one deployment's status; rows still pending stay NULL."""
    deployment = ctx.store.get("deployment", deployment_id)
    resolved = ctx.source_control.fetch_deployment_status(repository, namespace, deployment)
    [persisted] = ctx.store.upsert("deployment", [resolved])
    return persisted
