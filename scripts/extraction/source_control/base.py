"""Abstract source-control adapter shared by the GitHub and GitLab variants.

Every fetch returns a ``Page`` whose ``Pagination`` is uniform regardless of
how the provider paginates natively. Failures surface as ``ProviderError``;
nothing here retries.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

import requests

from scripts.extraction.errors import ProviderError
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

logger = logging.getLogger("extraction.source_control")

# Child resources of a single merge request are walked to the end inside one
# fetch and reported as one logical page.
CHILD_PER_PAGE = 100

_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="(\w+)"')
_PAGE_RE = re.compile(r"[?&]page=(\d+)")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def parse_link_header(header: str) -> dict[str, str]:
    """Map rel -> url for an RFC 5988 Link header."""
    return {rel: url for url, rel in _LINK_RE.findall(header or "")}


def page_from_url(url: str) -> Optional[int]:
    match = _PAGE_RE.search(url)
    return int(match.group(1)) if match else None


def single_page(records: list) -> Page:
    return Page(
        records=records,
        pagination=Pagination(page=1, per_page=CHILD_PER_PAGE, total_pages=1 if records else 0),
    )


class SourceControl(ABC):
    """Each variant declares FORGE and implements the fetch contract."""

    FORGE: str = ""

    def __init__(
        self,
        token: str,
        base_url: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(self._auth_headers(token))

    @abstractmethod
    def _auth_headers(self, token: str) -> dict[str, str]:
        """Headers carrying the access token."""

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _get(self, path: str, params: Optional[dict] = None) -> requests.Response:
        url = path if path.startswith("http") else f"{self._base}{path}"
        try:
            resp = self._session.get(url, params=params, timeout=self._timeout)
        except requests.RequestException as exc:
            raise ProviderError(self.FORGE, f"GET {url} failed: {exc}") from exc

        if resp.status_code in (403, 429) and (
            "rate limit" in resp.text.lower()
            or resp.headers.get("RateLimit-Remaining", resp.headers.get("X-RateLimit-Remaining")) == "0"
        ):
            raise ProviderError(
                self.FORGE,
                f"rate limit exceeded for {url}",
                status_code=resp.status_code,
                rate_limited=True,
            )
        if not resp.ok:
            raise ProviderError(
                self.FORGE,
                f"GET {url} returned {resp.status_code}",
                status_code=resp.status_code,
            )
        return resp

    def _get_all(self, path: str, params: Optional[dict] = None) -> list[dict]:
        """Follow Link rel="next" until exhausted."""
        results: list[dict] = []
        params = dict(params or {})
        params.setdefault("per_page", CHILD_PER_PAGE)
        url: Optional[str] = path

        while url:
            resp = self._get(url, params=params)
            data = resp.json()
            if isinstance(data, list):
                results.extend(data)
            else:
                results.append(data)
            url = parse_link_header(resp.headers.get("Link", "")).get("next")
            params = {}
        return results

    def _pagination(
        self, resp: requests.Response, page: int, per_page: int, count: int
    ) -> Pagination:
        """Derive page/per_page/total_pages from Link headers.

        Variants with a native total override this; the Link fallback works
        for both providers.
        """
        links = parse_link_header(resp.headers.get("Link", ""))
        last = page_from_url(links["last"]) if "last" in links else None
        if last is not None:
            total = last
        elif count == 0 and page == 1:
            total = 0
        else:
            # no "last" link: this page is the final one
            total = page
        return Pagination(page=page, per_page=per_page, total_pages=total)

    # ------------------------------------------------------------------
    # Fetch contract
    # ------------------------------------------------------------------

    @abstractmethod
    def fetch_repository(
        self, external_repository_id: int, namespace_name: str, repository_name: str
    ) -> tuple[Repository, Namespace]:
        """Fetch one repository and the namespace owning it."""

    @abstractmethod
    def fetch_members(
        self, repository: Repository, namespace: Namespace, per_page: int, page: int = 1
    ) -> Page[Member]:
        ...

    @abstractmethod
    def fetch_namespace_members(
        self, namespace: Namespace, per_page: int, page: int = 1
    ) -> Page[Member]:
        ...

    @abstractmethod
    def fetch_merge_requests(
        self,
        repository: Repository,
        namespace: Namespace,
        per_page: int,
        page: int = 1,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> Page[MergeRequest]:
        ...

    @abstractmethod
    def fetch_merge_request_commits(
        self, repository: Repository, namespace: Namespace, merge_request: MergeRequest
    ) -> Page[MergeRequestCommit]:
        ...

    @abstractmethod
    def fetch_merge_request_notes(
        self, repository: Repository, namespace: Namespace, merge_request: MergeRequest
    ) -> Page[MergeRequestNote]:
        ...

    @abstractmethod
    def fetch_merge_request_diffs(
        self, repository: Repository, namespace: Namespace, merge_request: MergeRequest
    ) -> Page[MergeRequestDiff]:
        ...

    @abstractmethod
    def fetch_timeline_events(
        self, repository: Repository, namespace: Namespace, merge_request: MergeRequest
    ) -> Page[TimelineEvent]:
        ...

    @abstractmethod
    def fetch_deployments(
        self,
        repository: Repository,
        namespace: Namespace,
        environment: Optional[str],
        per_page: int,
        page: int = 1,
    ) -> Page[Deployment]:
        ...

    @abstractmethod
    def fetch_deployment_status(
        self, repository: Repository, namespace: Namespace, deployment: Deployment
    ) -> Deployment:
        """Return ``deployment`` with status resolved, or still None if pending."""

    @staticmethod
    def _in_window(
        value: Optional[datetime], since: Optional[datetime], until: Optional[datetime]
    ) -> bool:
        if value is None:
            return True
        if since is not None and value < since:
            return False
        if until is not None and value > until:
            return False
        return True

    @staticmethod
    def _json_subset(item: dict[str, Any], keys: tuple[str, ...]) -> dict[str, Any]:
        return {k: item[k] for k in keys if item.get(k) is not None}
