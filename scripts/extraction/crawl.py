"""Crawl instance and crawl event bookkeeping."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Generator, Optional

logger = logging.getLogger("extraction.crawl")


class CrawlTracker:
    """Records a crawl run and the outcome of each handler invocation in it."""

    def __init__(self, db, tenant_id: int) -> None:
        self.db = db
        self.tenant_id = tenant_id

    def start(
        self,
        user_id: str,
        repository_id: int,
        since: Optional[datetime],
        until: Optional[datetime],
    ) -> int:
        crawl_id = self.db.record_crawl_start(
            tenant_id=self.tenant_id,
            user_id=user_id,
            repository_id=repository_id,
            since=since,
            until=until,
        )
        logger.info(
            "Crawl started for repository %s",
            repository_id,
            extra={"crawl_id": crawl_id, "tenant_id": self.tenant_id},
        )
        return crawl_id

    def info(self, crawl_id: int, namespace: str, data: dict) -> None:
        self.db.record_crawl_event(self.tenant_id, crawl_id, namespace, "crawlInfo", data)

    @contextmanager
    def track(self, crawl_id: int, namespace: Optional[str]) -> Generator[None, None, None]:
        """Record crawlComplete / crawlFailed around a handler; re-raises failures."""
        if namespace is None:
            yield
            return

        started = time.monotonic()
        try:
            yield
        except Exception as exc:
            self.db.record_crawl_event(
                self.tenant_id,
                crawl_id,
                namespace,
                "crawlFailed",
                {"message": f"{type(exc).__name__}: {exc}"[:1000]},
            )
            logger.error(
                "Crawl step %s failed: %s",
                namespace,
                exc,
                extra={"crawl_id": crawl_id, "tenant_id": self.tenant_id},
            )
            raise
        self.db.record_crawl_event(self.tenant_id, crawl_id, namespace, "crawlComplete", {})
        logger.info(
            "Crawl step %s complete",
            namespace,
            extra={
                "crawl_id": crawl_id,
                "tenant_id": self.tenant_id,
                "duration_s": round(time.monotonic() - started, 3),
            },
        )
