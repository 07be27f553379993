"""Shared fixtures: in-memory database, fake adapter, fake queue and bus."""

from __future__ import annotations

import math
import threading
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Optional

import pytest

from scripts.extraction.consumer import Consumer
from scripts.extraction.context import ExtractContext
from scripts.extraction.crawl import CrawlTracker
from scripts.extraction.db import dedupe_rows
from scripts.extraction.messages import MessageSender, Metadata
from scripts.extraction.models import (
    Deployment,
    Member,
    MergeRequest,
    MergeRequestCommit,
    MergeRequestDiff,
    MergeRequestNote,
    Namespace,
    Page,
    Pagination,
    Repository,
    TimelineEvent,
)
from scripts.extraction.store import EntityStore

TENANT_ID = 1
SINCE = datetime(2024, 1, 1, tzinfo=timezone.utc)
UNTIL = datetime(2024, 7, 1, tzinfo=timezone.utc)


class FakeDatabase:
    """Dict-backed stand-in for ``scripts.extraction.db.Database``.

    Upserts follow the same rules as the generated SQL: one row per conflict
    key, update columns overwritten, coalesce columns overwritten only by
    non-None values, everything else written once.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.crawls: list[dict[str, Any]] = []
        self.crawl_events: list[dict[str, Any]] = []
        self._ids: dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()

    def upsert_returning(
        self,
        table: str,
        columns: list[str],
        rows,
        conflict_columns: list[str],
        update_columns: list[str],
        coalesce_columns=(),
    ) -> list[dict[str, Any]]:
        if not rows:
            return []
        persisted = []
        with self._lock:
            for row in dedupe_rows(columns, rows, conflict_columns):
                values = dict(zip(columns, row))
                key = tuple(values[c] for c in conflict_columns)
                existing = next(
                    (
                        r for r in self.tables[table]
                        if tuple(r[c] for c in conflict_columns) == key
                    ),
                    None,
                )
                if existing is None:
                    self._ids[table] += 1
                    existing = {"id": self._ids[table], **values}
                    self.tables[table].append(existing)
                else:
                    for c in update_columns:
                        existing[c] = values[c]
                    for c in coalesce_columns:
                        if values[c] is not None:
                            existing[c] = values[c]
                persisted.append(dict(existing))
        return persisted

    @staticmethod
    def _matches(row: dict[str, Any], where: dict[str, Any]) -> bool:
        for column, value in where.items():
            if value is None:
                if row.get(column) is not None:
                    return False
            elif isinstance(value, (list, tuple)):
                if row.get(column) not in value:
                    return False
            elif row.get(column) != value:
                return False
        return True

    def select(self, table, where=None, order_by="id", limit=None):
        with self._lock:
            rows = [dict(r) for r in self.tables[table] if self._matches(r, where or {})]
        rows.sort(key=lambda r: r[order_by])
        return rows[:limit] if limit is not None else rows

    def update(self, table, values, where) -> int:
        count = 0
        with self._lock:
            for row in self.tables[table]:
                if self._matches(row, where):
                    row.update(values)
                    count += 1
        return count

    def record_crawl_start(self, tenant_id, user_id, repository_id, since, until) -> int:
        with self._lock:
            crawl_id = len(self.crawls) + 1
            self.crawls.append({
                "id": crawl_id,
                "tenant_id": tenant_id,
                "user_id": user_id,
                "repository_id": repository_id,
                "since": since,
                "until": until,
            })
        return crawl_id

    def record_crawl_event(self, tenant_id, crawl_id, namespace, detail, data=None) -> None:
        with self._lock:
            self.crawl_events.append({
                "tenant_id": tenant_id,
                "crawl_id": crawl_id,
                "namespace": namespace,
                "detail": detail,
                "data": data or {},
            })

    def events(self, detail: Optional[str] = None) -> list[dict[str, Any]]:
        return [e for e in self.crawl_events if detail is None or e["detail"] == detail]

    def get_recent_crawls(self, tenant_id, limit=10):
        return [c for c in self.crawls if c["tenant_id"] == tenant_id][-limit:]


def _page(items: list, per_page: int, page: int) -> Page:
    total = math.ceil(len(items) / per_page)
    start = (page - 1) * per_page
    return Page(
        records=items[start : start + per_page],
        pagination=Pagination(page=page, per_page=per_page, total_pages=total),
    )


class FakeSourceControl:
    """Serves canned provider data with page-number pagination."""

    FORGE = "github"

    def __init__(self) -> None:
        self.repository = {"external_id": 1000, "name": "api", "default_branch": "main"}
        self.namespace = {"external_id": 1, "name": "acme"}
        self.members: list[dict] = []
        self.namespace_members: list[dict] = []
        self.merge_requests: list[dict] = []
        # keyed by merge request canon id
        self.commits: dict[int, list[dict]] = {}
        self.diffs: dict[int, list[dict]] = {}
        self.notes: dict[int, list[dict]] = {}
        self.timeline: dict[int, list[dict]] = {}
        # keyed by environment name
        self.deployments: dict[str, list[dict]] = {}
        # deployment external id -> resolved status
        self.statuses: dict[int, str] = {}
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple] = []

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if name in self.failures:
            raise self.failures[name]

    def fetch_repository(self, external_repository_id, namespace_name, repository_name):
        self._record("fetch_repository", external_repository_id)
        return (
            Repository(forge_type=self.FORGE, **self.repository),
            Namespace(forge_type=self.FORGE, **self.namespace),
        )

    def fetch_members(self, repository, namespace, per_page, page=1):
        self._record("fetch_members", page)
        members = [
            Member(forge_type=self.FORGE, extracted_source="repository", **m) for m in self.members
        ]
        return _page(members, per_page, page)

    def fetch_namespace_members(self, namespace, per_page, page=1):
        self._record("fetch_namespace_members", page)
        members = [
            Member(forge_type=self.FORGE, extracted_source="namespace", **m)
            for m in self.namespace_members
        ]
        return _page(members, per_page, page)

    def fetch_merge_requests(self, repository, namespace, per_page, page=1, since=None, until=None):
        self._record("fetch_merge_requests", page)
        mrs = [MergeRequest(repository_id=repository.id, **mr) for mr in self.merge_requests]
        return _page(mrs, per_page, page)

    def fetch_merge_request_commits(self, repository, namespace, merge_request):
        self._record("fetch_merge_request_commits", merge_request.canon_id)
        return _single([
            MergeRequestCommit(merge_request_id=merge_request.id, **c)
            for c in self.commits.get(merge_request.canon_id, [])
        ])

    def fetch_merge_request_diffs(self, repository, namespace, merge_request):
        self._record("fetch_merge_request_diffs", merge_request.canon_id)
        return _single([
            MergeRequestDiff(merge_request_id=merge_request.id, **d)
            for d in self.diffs.get(merge_request.canon_id, [])
        ])

    def fetch_merge_request_notes(self, repository, namespace, merge_request):
        self._record("fetch_merge_request_notes", merge_request.canon_id)
        return _single([
            MergeRequestNote(merge_request_id=merge_request.id, **n)
            for n in self.notes.get(merge_request.canon_id, [])
        ])

    def fetch_timeline_events(self, repository, namespace, merge_request):
        self._record("fetch_timeline_events", merge_request.canon_id)
        return _single([
            TimelineEvent(merge_request_id=merge_request.id, **t)
            for t in self.timeline.get(merge_request.canon_id, [])
        ])

    def fetch_deployments(self, repository, namespace, environment, per_page, page=1):
        self._record("fetch_deployments", environment, page)
        deployments = [
            Deployment(repository_id=repository.id, environment=environment, **d)
            for d in self.deployments.get(environment, [])
        ]
        return _page(deployments, per_page, page)

    def fetch_deployment_status(self, repository, namespace, deployment):
        self._record("fetch_deployment_status", deployment.external_id)
        deployment.status = self.statuses.get(deployment.external_id)
        return deployment


def _single(records: list) -> Page:
    return Page(
        records=records,
        pagination=Pagination(page=1, per_page=100, total_pages=1 if records else 0),
    )


class FakeQueue:
    """Records ``send_batch`` calls; chosen calls raise or report failures."""

    def __init__(self) -> None:
        self.batches: list[list[str]] = []
        self.raise_on: set[int] = set()
        self.reject_on: set[int] = set()
        self.inbox: list[dict] = []
        self.deleted: list[str] = []

    def send_batch(self, bodies: list[str]) -> list[dict]:
        index = len(self.batches)
        self.batches.append(list(bodies))
        if index in self.raise_on:
            raise ConnectionError("queue unavailable")
        if index in self.reject_on:
            return [{"Id": "0", "Code": "InternalError", "SenderFault": False}]
        return []

    @property
    def bodies(self) -> list[str]:
        return [b for batch in self.batches for b in batch]

    def receive(self, max_messages: int = 1, wait_time: int = 20) -> list[dict]:
        received, self.inbox = self.inbox[:max_messages], self.inbox[max_messages:]
        return received

    def delete(self, receipt_handle: str) -> None:
        self.deleted.append(receipt_handle)


class FakeBus:
    def __init__(self) -> None:
        self.published: list[tuple] = []

    def publish(self, event_type, properties, metadata) -> None:
        if not isinstance(properties, dict):
            properties = properties.model_dump(mode="json")
        validated = event_type.properties_model.model_validate(properties)
        self.published.append((event_type.detail_type, validated, metadata))

    def of(self, event_type) -> list:
        return [p for t, p, _ in self.published if t == event_type.detail_type]


def make_metadata(**overrides) -> Metadata:
    values = {
        "timestamp": 1_700_000_000_000,
        "caller": "test",
        "source_control": "github",
        "user_id": "user-1",
        "since": SINCE,
        "until": UNTIL,
        "crawl_id": 1,
        "tenant_id": TENANT_ID,
    }
    values.update(overrides)
    return Metadata(**values)


def make_event(event_type, properties, metadata: Metadata) -> dict:
    """EventBridge-shaped trigger event."""
    if not isinstance(properties, dict):
        properties = properties.model_dump(mode="json")
    return {
        "detail-type": event_type.detail_type,
        "detail": {"properties": properties, "metadata": metadata.model_dump(mode="json")},
    }


@pytest.fixture
def db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def store(db) -> EntityStore:
    return EntityStore(db, TENANT_ID)


@pytest.fixture
def source() -> FakeSourceControl:
    return FakeSourceControl()


@pytest.fixture
def queue() -> FakeQueue:
    return FakeQueue()


@pytest.fixture
def bus() -> FakeBus:
    return FakeBus()


@pytest.fixture
def sender(queue) -> MessageSender:
    return MessageSender(queue)


@pytest.fixture
def metadata() -> Metadata:
    return make_metadata()


@pytest.fixture
def contexts(db, source, bus):
    """Per-invocation context factory bound to the fakes."""

    def build(metadata: Metadata) -> ExtractContext:
        return ExtractContext(
            store=EntityStore(db, metadata.tenant_id),
            source_control=source,
            bus=bus,
            crawl=CrawlTracker(db, metadata.tenant_id),
            metadata=metadata,
            per_page=10,
        )

    return build


@pytest.fixture
def ctx(contexts, metadata) -> ExtractContext:
    return contexts(metadata)


@pytest.fixture
def consumer(contexts, sender) -> Consumer:
    return Consumer(contexts, sender)


@pytest.fixture
def linked(ctx):
    """Repository 1000 and its namespace, already persisted."""
    from scripts.extraction.functions import get_repository

    return get_repository(ctx, 1000)
