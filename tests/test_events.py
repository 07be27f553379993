"""Trigger event parsing and publishing."""

import json
from unittest import mock

import pytest

from conftest import make_event, make_metadata
from scripts.extraction.config import QueueConfig
from scripts.extraction.errors import ExtractionError, ValidationError
from scripts.extraction.events import (
    MERGE_REQUESTS_EXTRACTED,
    REPOSITORY_LINKED,
    EventBus,
    MergeRequestsExtracted,
    RepositoryLinked,
    parse_event,
)


class TestParseEvent:
    def test_dict_detail(self):
        event = make_event(REPOSITORY_LINKED, RepositoryLinked(repository_id=1, namespace_id=2), make_metadata())
        trigger = parse_event(event)
        assert trigger.detail_type == "repository.linked"
        assert trigger.properties == RepositoryLinked(repository_id=1, namespace_id=2)
        assert trigger.metadata == make_metadata()

    def test_string_detail(self):
        event = make_event(REPOSITORY_LINKED, {"repository_id": 1, "namespace_id": 2}, make_metadata())
        event["detail"] = json.dumps(event["detail"])
        assert parse_event(event).properties.namespace_id == 2

    def test_missing_property(self):
        event = make_event(REPOSITORY_LINKED, {"repository_id": 1, "namespace_id": 2}, make_metadata())
        del event["detail"]["properties"]["namespace_id"]
        with pytest.raises(ValidationError):
            parse_event(event)

    def test_merge_request_ids_required(self):
        event = make_event(
            MERGE_REQUESTS_EXTRACTED,
            {"repository_id": 1, "namespace_id": 2, "merge_request_ids": [3]},
            make_metadata(),
        )
        event["detail"]["properties"]["merge_request_ids"] = []
        with pytest.raises(ValidationError):
            parse_event(event)


class TestEventBus:
    def _bus(self, response=None):
        client = mock.Mock()
        client.put_events.return_value = response or {"FailedEntryCount": 0, "Entries": [{"EventId": "1"}]}
        return EventBus(QueueConfig(queue_url="", event_bus_name="extract"), client=client), client

    def test_publish(self):
        bus, client = self._bus()
        bus.publish(
            MERGE_REQUESTS_EXTRACTED,
            MergeRequestsExtracted(repository_id=1, namespace_id=2, merge_request_ids=[3, 4]),
            make_metadata(),
        )
        [entry] = client.put_events.call_args.kwargs["Entries"]
        assert entry["DetailType"] == "merge-requests.extracted"
        assert entry["EventBusName"] == "extract"
        detail = json.loads(entry["Detail"])
        assert detail["properties"]["merge_request_ids"] == [3, 4]
        assert detail["metadata"]["crawl_id"] == 1

    def test_published_event_parses_back(self):
        bus, client = self._bus()
        bus.publish(REPOSITORY_LINKED, {"repository_id": 1, "namespace_id": 2}, make_metadata())
        [entry] = client.put_events.call_args.kwargs["Entries"]
        trigger = parse_event({"detail-type": entry["DetailType"], "detail": entry["Detail"]})
        assert trigger.properties.repository_id == 1

    def test_invalid_properties_are_not_published(self):
        bus, client = self._bus()
        with pytest.raises(ValidationError):
            bus.publish(REPOSITORY_LINKED, {"repository_id": 1}, make_metadata())
        client.put_events.assert_not_called()

    def test_failed_entry_raises(self):
        bus, _ = self._bus({"FailedEntryCount": 1, "Entries": [{"ErrorCode": "InternalFailure"}]})
        with pytest.raises(ExtractionError):
            bus.publish(REPOSITORY_LINKED, {"repository_id": 1, "namespace_id": 2}, make_metadata())
