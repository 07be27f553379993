"""Trigger events exchanged over EventBridge.

Only the declared property shapes matter to the handlers; delivery mechanics
belong to the bus.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

import boto3
import pydantic
from pydantic import BaseModel, ConfigDict, Field

from scripts.extraction.config import QueueConfig
from scripts.extraction.errors import ExtractionError, ValidationError
from scripts.extraction.logging_config import metadata_extra
from scripts.extraction.messages import Metadata

logger = logging.getLogger("extraction.events")

EVENT_SOURCE = "forge.extraction"


class RepositoryLinked(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    repository_id: int
    namespace_id: int


class MergeRequestsExtracted(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    repository_id: int
    namespace_id: int
    merge_request_ids: list[int] = Field(min_length=1)


class DeploymentsNeedStatus(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    repository_id: int
    namespace_id: int
    deployment_ids: list[int] = Field(min_length=1)


P = TypeVar("P", bound=BaseModel)


@dataclass(frozen=True)
class EventType(Generic[P]):
    detail_type: str
    properties_model: type[P]


REPOSITORY_LINKED = EventType("repository.linked", RepositoryLinked)
MERGE_REQUESTS_EXTRACTED = EventType("merge-requests.extracted", MergeRequestsExtracted)
DEPLOYMENTS_NEED_STATUS = EventType("deployments.need-status", DeploymentsNeedStatus)

EVENT_TYPES: dict[str, EventType] = {
    t.detail_type: t
    for t in (REPOSITORY_LINKED, MERGE_REQUESTS_EXTRACTED, DEPLOYMENTS_NEED_STATUS)
}


@dataclass(frozen=True)
class TriggerEvent(Generic[P]):
    detail_type: str
    properties: P
    metadata: Metadata


def parse_event(event: dict[str, Any]) -> TriggerEvent:
    """Validate an EventBridge event (``detail-type`` + ``detail``)."""
    detail_type = event.get("detail-type")
    event_type = EVENT_TYPES.get(detail_type)
    if event_type is None:
        raise ValidationError(f"Unknown event type {detail_type!r}", event)
    detail = event.get("detail")
    if isinstance(detail, str):
        try:
            detail = json.loads(detail)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"{detail_type}: detail is not JSON", event) from exc
    if not isinstance(detail, dict):
        raise ValidationError(f"{detail_type}: detail must be an object", event)
    try:
        properties = event_type.properties_model.model_validate(detail.get("properties"))
        metadata = Metadata.model_validate(detail.get("metadata"))
    except pydantic.ValidationError as exc:
        raise ValidationError(f"{detail_type}: {exc}", event) from exc
    return TriggerEvent(detail_type=detail_type, properties=properties, metadata=metadata)


class EventBus:
    """Publishes trigger events with boto3 ``put_events``."""

    def __init__(self, config: QueueConfig, client=None) -> None:
        self.bus_name = config.event_bus_name
        if client is None:
            client_kwargs: dict[str, Any] = {"region_name": config.region}
            if config.endpoint_url:
                client_kwargs["endpoint_url"] = config.endpoint_url
            client = boto3.client("events", **client_kwargs)
        self._events = client

    def publish(
        self,
        event_type: EventType,
        properties: Union[BaseModel, dict[str, Any]],
        metadata: Metadata,
    ) -> None:
        if isinstance(properties, BaseModel):
            properties = properties.model_dump(mode="json")
        try:
            validated = event_type.properties_model.model_validate(properties)
        except pydantic.ValidationError as exc:
            raise ValidationError(f"{event_type.detail_type}: {exc}", properties) from exc

        detail = {
            "properties": validated.model_dump(mode="json"),
            "metadata": metadata.model_dump(mode="json"),
        }
        response = self._events.put_events(Entries=[{
            "Source": EVENT_SOURCE,
            "DetailType": event_type.detail_type,
            "Detail": json.dumps(detail),
            "EventBusName": self.bus_name,
        }])
        if response.get("FailedEntryCount"):
            raise ExtractionError(
                f"Failed to publish {event_type.detail_type}: {response.get('Entries')}"
            )
        logger.info(
            "Published %s",
            event_type.detail_type,
            extra=metadata_extra(metadata),
        )
