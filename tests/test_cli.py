"""Worker loop, local seeding, deployment sweep and Lambda wiring."""

import json
from datetime import datetime, timezone
from unittest import mock

import pytest

from conftest import SINCE, TENANT_ID, UNTIL
from scripts.extraction.cli import _extract_window, _parse_when, run_worker, seed_repository
from scripts.extraction.config import DatabaseConfig, ExtractionConfig, QueueConfig, load_config
from scripts.extraction.errors import NotFoundError
from scripts.extraction.events import DEPLOYMENTS_NEED_STATUS, REPOSITORY_LINKED
from scripts.extraction.models import Deployment
from scripts.extraction.scheduler import SWEEP_USER, sweep_unresolved_deployments


@pytest.fixture
def config() -> ExtractionConfig:
    return ExtractionConfig(
        tenant_id=TENANT_ID,
        database=DatabaseConfig(url="postgresql://localhost/test"),
        queue=QueueConfig(queue_url=""),
    )


class TestWorker:
    def test_only_handled_messages_are_deleted(self, queue):
        queue.inbox = [
            {"MessageId": "a", "Body": "{}", "ReceiptHandle": "r1"},
            {"MessageId": "b", "Body": "{}", "ReceiptHandle": "r2"},
        ]
        consumer = mock.Mock()
        consumer.handle_body.side_effect = [None, NotFoundError("merge_request", 7)]

        assert run_worker(consumer, queue, wait_time=0, once=True) == 1
        assert run_worker(consumer, queue, wait_time=0, once=True) == 0
        assert queue.deleted == ["r1"]

    def test_empty_poll(self, queue):
        consumer = mock.Mock()
        assert run_worker(consumer, queue, wait_time=0, once=True) == 0
        consumer.handle_body.assert_not_called()


class TestSeedRepository:
    def test_publishes_repository_linked(self, config, db, bus, consumer):
        crawl_id = seed_repository(
            config, db, consumer, "github", "user-1", 1000, since=SINCE, until=UNTIL
        )

        [crawl] = db.crawls
        assert crawl_id == crawl["id"]
        assert crawl["user_id"] == "user-1"
        assert crawl["since"] == SINCE
        [(detail_type, properties, metadata)] = bus.published
        assert detail_type == REPOSITORY_LINKED.detail_type
        assert properties.repository_id == crawl["repository_id"]
        assert metadata.crawl_id == crawl_id
        assert metadata.caller == "cli"

    def test_local_runs_seeds_in_process(self, config, db, source, queue, bus, consumer):
        source.members = [dict(external_id=i, username=f"user{i}") for i in range(15)]

        crawl_id = seed_repository(
            config, db, consumer, "github", "user-1", 1000, since=SINCE, until=UNTIL, local=True
        )

        assert not any(t == REPOSITORY_LINKED.detail_type for t, _, _ in bus.published)
        assert len(db.tables["members"]) == 10
        [body] = [json.loads(b) for b in queue.bodies]
        assert body["kind"] == "member"
        assert body["metadata"]["crawl_id"] == crawl_id


def test_parse_when_assumes_utc():
    assert _parse_when("2024-03-01T00:00:00") == datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert _parse_when("2024-03-01T00:00:00Z") == datetime(2024, 3, 1, tzinfo=timezone.utc)


def test_extract_window_defaults_to_window_days(config):
    since, until = _extract_window(config, None, "2024-07-17T00:00:00Z")
    assert (until - since).days == config.window_days


def test_sweep_requests_status_per_repository(config, db, store, bus, linked):
    repository, namespace = linked
    store.upsert("deployment", [
        Deployment(external_id=1, repository_id=repository.id, environment="prod", created_at=SINCE),
        Deployment(external_id=2, repository_id=repository.id, environment="prod", created_at=SINCE,
                   status="success"),
        Deployment(external_id=3, repository_id=repository.id, environment="prod", created_at=SINCE),
    ])

    sent = sweep_unresolved_deployments(config, db, bus)

    assert sent == {repository.id: 2}
    [(_, properties, metadata)] = bus.published
    assert properties.namespace_id == namespace.id
    assert len(properties.deployment_ids) == 2
    assert metadata.user_id == SWEEP_USER
    assert metadata.crawl_id == db.crawls[-1]["id"]
    assert bus.of(DEPLOYMENTS_NEED_STATUS) == [properties]


def test_sweep_with_nothing_unresolved(config, db, bus):
    assert sweep_unresolved_deployments(config, db, bus) == {}
    assert bus.published == []
    assert db.crawls == []


class TestLoadConfig:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("TENANT_ID", "3")
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db:5432/x")
        monkeypatch.setenv("GITHUB_TOKEN", "tok")
        monkeypatch.setenv("PER_PAGE", "50")
        monkeypatch.delenv("GITLAB_TOKEN", raising=False)

        config = load_config()

        assert config.tenant_id == 3
        assert config.database.url == "postgresql://u:p@db:5432/x"
        assert config.source_control.tokens == {"github": "tok"}
        assert config.per_page == 50

    def test_tenant_required(self, monkeypatch):
        monkeypatch.delenv("TENANT_ID", raising=False)
        with mock.patch("scripts.extraction.config.load_dotenv"):
            with pytest.raises(ValueError):
                load_config()


class TestLambda:
    @pytest.fixture
    def patched(self):
        base = "scripts.extraction.entrypoints.aws_lambda"
        with mock.patch(f"{base}.configure_logging"), \
                mock.patch(f"{base}.load_config"), \
                mock.patch(f"{base}.Database") as database, \
                mock.patch("scripts.extraction.cli._build_consumer") as build:
            yield database, build.return_value

    def test_queue_failure_is_reraised(self, patched):
        from scripts.extraction.entrypoints.aws_lambda import queue_handler

        database, consumer = patched
        consumer.handle_queue_event.side_effect = NotFoundError("merge_request", 7)
        with pytest.raises(NotFoundError):
            queue_handler({"Records": []}, None)
        database.return_value.close.assert_called_once()

    def test_event_route_from_environment(self, patched, monkeypatch):
        from scripts.extraction.entrypoints.aws_lambda import event_handler

        monkeypatch.setenv("EXTRACT_EVENT_ROUTE", "members")
        _, consumer = patched
        consumer.handle_event.return_value.detail_type = "repository.linked"

        response = event_handler({"detail-type": "repository.linked"}, None)

        consumer.handle_event.assert_called_once_with(
            {"detail-type": "repository.linked"}, route_name="members"
        )
        assert json.loads(response["body"]) == {"detailType": "repository.linked", "route": "members"}
