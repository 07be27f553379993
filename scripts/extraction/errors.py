"""Error taxonomy for the extraction pipeline."""

from __future__ import annotations

from typing import Any, Optional


class ExtractionError(Exception):
    """Base class for every error raised by the pipeline."""


class ValidationError(ExtractionError):
    """Message content, metadata or trigger properties failed their schema.

    Fatal: never retried, logged together with the offending payload.
    """

    def __init__(self, message: str, payload: Any = None) -> None:
        super().__init__(message)
        self.payload = payload


class NotFoundError(ExtractionError):
    """A referenced parent entity does not exist in the store."""

    def __init__(self, entity_type: str, key: Any) -> None:
        super().__init__(f"Invalid {entity_type}: {key}")
        self.entity_type = entity_type
        self.key = key


class ProviderError(ExtractionError):
    """A source-control fetch failed (auth, transport, rate limit)."""

    def __init__(
        self,
        forge: str,
        message: str,
        status_code: Optional[int] = None,
        rate_limited: bool = False,
    ) -> None:
        super().__init__(f"{forge}: {message}")
        self.forge = forge
        self.status_code = status_code
        self.rate_limited = rate_limited


class PartialBatchError(ExtractionError):
    """One or more chunks of a batched dispatch were not accepted.

    Built and logged by the sender; it is returned to callers for inspection
    but never raised out of ``send_all``.
    """

    def __init__(self, kind: str, failed_chunks: list[int], total_chunks: int) -> None:
        super().__init__(
            f"{kind}: {len(failed_chunks)}/{total_chunks} batches failed"
        )
        self.kind = kind
        self.failed_chunks = failed_chunks
        self.total_chunks = total_chunks
