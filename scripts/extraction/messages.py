"""Typed queue messages and batched dispatch over SQS.

A message is ``{kind, content, metadata}``. Content and metadata are validated
with pydantic when a message is built for sending and again when it is parsed
on the consuming side; failures raise ``ValidationError`` and are never
dropped silently.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Literal, Optional, TypeVar, Union

import boto3
import pydantic
from pydantic import BaseModel, ConfigDict, Field

from scripts.extraction.config import QueueConfig
from scripts.extraction.errors import PartialBatchError, ValidationError
from scripts.extraction.models import Pagination

logger = logging.getLogger("extraction.messages")

# SQS SendMessageBatch accepts at most 10 entries.
BATCH_SIZE = 10
SCHEMA_VERSION = 1


class MessageKind(str, Enum):
    MEMBER = "member"
    NAMESPACE_MEMBER = "namespace-member"
    MERGE_REQUEST = "merge-request"
    MERGE_REQUEST_COMMIT = "merge-request-commit"
    MERGE_REQUEST_DIFF = "merge-request-diff"
    MERGE_REQUEST_NOTE = "merge-request-note"
    TIMELINE_EVENT = "timeline-event"
    DEPLOYMENT = "deployment"
    DEPLOYMENT_STATUS = "deployment-status"


def now_ms() -> int:
    return int(time.time() * 1000)


class Metadata(BaseModel):
    """Envelope metadata shared by queue messages and bus events."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    version: int = SCHEMA_VERSION
    timestamp: int
    caller: str
    source_control: Literal["github", "gitlab"]
    user_id: str
    since: datetime
    until: datetime
    crawl_id: int
    tenant_id: int

    def derive(self, caller: str) -> "Metadata":
        """Copy for a downstream dispatch, re-stamped with ``caller``."""
        return self.model_copy(update={"caller": caller, "timestamp": now_ms()})


class PageContent(BaseModel):
    """Locator of one already-numbered page of a repository resource."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    repository_id: int
    namespace_id: int
    pagination: Pagination


class DeploymentPageContent(PageContent):
    environment: Optional[str] = None


class MergeRequestContent(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    repository_id: int
    namespace_id: int
    merge_request_id: int


class MergeRequestBatchContent(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    repository_id: int
    namespace_id: int
    merge_request_ids: list[int] = Field(min_length=1)


class DeploymentBatchContent(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    repository_id: int
    namespace_id: int
    deployment_ids: list[int] = Field(min_length=1)


C = TypeVar("C", bound=BaseModel)


@dataclass(frozen=True)
class Message(Generic[C]):
    kind: str
    content: C
    metadata: Metadata

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "content": self.content.model_dump(mode="json"),
            "metadata": self.metadata.model_dump(mode="json"),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


class MessageType(Generic[C]):
    """Binds a message kind to its declared content schema."""

    def __init__(self, kind: MessageKind, content_model: type[C]) -> None:
        self.kind = kind.value
        self.content_model = content_model

    def build(
        self, content: Union[C, dict[str, Any]], metadata: Union[Metadata, dict[str, Any]]
    ) -> Message[C]:
        return self.parse({"kind": self.kind, "content": content, "metadata": metadata})

    def parse(self, payload: Union[str, dict[str, Any]]) -> Message[C]:
        """Validate a raw envelope; raises ``ValidationError``."""
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as exc:
                raise ValidationError(f"{self.kind}: body is not JSON", payload) from exc
        if not isinstance(payload, dict):
            raise ValidationError(f"{self.kind}: envelope must be an object", payload)
        if payload.get("kind") != self.kind:
            raise ValidationError(
                f"expected kind {self.kind}, got {payload.get('kind')!r}", payload
            )
        try:
            content = self.content_model.model_validate(_as_dict(payload.get("content")))
            metadata = Metadata.model_validate(_as_dict(payload.get("metadata")))
        except pydantic.ValidationError as exc:
            raise ValidationError(f"{self.kind}: {exc}", payload) from exc
        return Message(kind=self.kind, content=content, metadata=metadata)


def _as_dict(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


# ----------------------------------------------------------------------
# Transport
# ----------------------------------------------------------------------


class QueueClient:
    """Blocking boto3 SQS client bound to the extract queue."""

    def __init__(self, config: QueueConfig, client=None) -> None:
        self.queue_url = config.queue_url
        if client is None:
            client_kwargs: dict[str, Any] = {"region_name": config.region}
            if config.endpoint_url:
                client_kwargs["endpoint_url"] = config.endpoint_url
            client = boto3.client("sqs", **client_kwargs)
        self._sqs = client

    def send_batch(self, bodies: list[str]) -> list[dict[str, Any]]:
        """Send up to 10 bodies in one call. Returns the ``Failed`` entries."""
        entries = [{"Id": uuid.uuid4().hex, "MessageBody": body} for body in bodies]
        response = self._sqs.send_message_batch(QueueUrl=self.queue_url, Entries=entries)
        return response.get("Failed", [])

    def receive(self, max_messages: int = 1, wait_time: int = 20) -> list[dict[str, Any]]:
        response = self._sqs.receive_message(
            QueueUrl=self.queue_url,
            MaxNumberOfMessages=max_messages,
            WaitTimeSeconds=wait_time,
        )
        return response.get("Messages", [])

    def delete(self, receipt_handle: str) -> None:
        self._sqs.delete_message(QueueUrl=self.queue_url, ReceiptHandle=receipt_handle)


@dataclass(frozen=True)
class BatchOutcome:
    index: int
    size: int
    ok: bool
    error: Optional[str] = None


class MessageSender:
    """Validates and dispatches messages, ten per physical send."""

    def __init__(self, queue: QueueClient) -> None:
        self._queue = queue

    def send_all(
        self, message_type: MessageType, contents: list[Any], metadata: Metadata
    ) -> list[BatchOutcome]:
        """Send every content item; chunk failures are logged, never raised.

        All items are validated before the first send, so a schema error
        aborts the whole dispatch instead of leaving a partial one.
        """
        bodies = [message_type.build(c, metadata).to_json() for c in contents]
        chunks = [bodies[i : i + BATCH_SIZE] for i in range(0, len(bodies), BATCH_SIZE)]

        outcomes: list[BatchOutcome] = []
        for index, chunk in enumerate(chunks):
            try:
                failed = self._queue.send_batch(chunk)
            except Exception as exc:
                logger.error(
                    "batch failed: %s %s",
                    exc,
                    chunk,
                    extra={"kind": message_type.kind, "caller": metadata.caller},
                )
                outcomes.append(BatchOutcome(index, len(chunk), False, str(exc)))
                continue
            if failed:
                logger.error(
                    "batch partially rejected: %s",
                    failed,
                    extra={"kind": message_type.kind, "caller": metadata.caller},
                )
                outcomes.append(BatchOutcome(index, len(chunk), False, json.dumps(failed, default=str)))
                continue
            outcomes.append(BatchOutcome(index, len(chunk), True))

        failed_chunks = [o.index for o in outcomes if not o.ok]
        if failed_chunks:
            error = PartialBatchError(message_type.kind, failed_chunks, len(chunks))
            logger.error(str(error), extra={"kind": message_type.kind, "crawl_id": metadata.crawl_id})
        else:
            logger.info(
                "Dispatched %d %s messages in %d batches",
                len(bodies),
                message_type.kind,
                len(chunks),
                extra={"kind": message_type.kind, "crawl_id": metadata.crawl_id},
            )
        return outcomes
