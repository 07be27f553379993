"""Per-invocation extraction context.

A fresh ``ExtractContext`` is built from each trigger's metadata and passed
down by parameter; nothing in it is shared between invocations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from scripts.extraction.config import ExtractionConfig
from scripts.extraction.crawl import CrawlTracker
from scripts.extraction.events import EventBus
from scripts.extraction.messages import Metadata
from scripts.extraction.secrets import resolve_access_token
from scripts.extraction.source_control import SourceControl, init_source_control
from scripts.extraction.store import EntityStore

AdapterFactory = Callable[[Metadata], SourceControl]


@dataclass(frozen=True)
class ExtractContext:
    store: EntityStore
    source_control: SourceControl
    bus: EventBus
    crawl: CrawlTracker
    metadata: Metadata
    per_page: int


class ContextFactory:
    """Builds an ``ExtractContext`` for one invocation."""

    def __init__(
        self,
        config: ExtractionConfig,
        db,
        bus: Optional[EventBus] = None,
        adapter_factory: Optional[AdapterFactory] = None,
    ) -> None:
        self.config = config
        self.db = db
        self.bus = bus or EventBus(config.queue)
        self._adapter_factory = adapter_factory or self._default_adapter

    def _default_adapter(self, metadata: Metadata) -> SourceControl:
        sc_config = self.config.source_control
        token = resolve_access_token(
            metadata.user_id,
            metadata.source_control,
            sc_config.tokens,
            sc_config.token_template,
        )
        return init_source_control(metadata.source_control, token, sc_config)

    def __call__(self, metadata: Metadata) -> ExtractContext:
        return ExtractContext(
            store=EntityStore(self.db, metadata.tenant_id),
            source_control=self._adapter_factory(metadata),
            bus=self.bus,
            crawl=CrawlTracker(self.db, metadata.tenant_id),
            metadata=metadata,
            per_page=self.config.per_page,
        )
