"""GitLab adapter: offset pagination with X-Total-Pages headers."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

import requests

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
from scripts.extraction.source_control.base import (
    SourceControl,
    parse_timestamp,
    single_page,
)


# GitLab deployment statuses that are still moving.
PENDING_DEPLOYMENT_STATUSES = {"created", "running", "blocked"}


class GitlabSourceControl(SourceControl):
    FORGE = "gitlab"

    def _auth_headers(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    def _pagination(
        self, resp: requests.Response, page: int, per_page: int, count: int
    ) -> Pagination:
        # X-Total-Pages is omitted for very large collections; fall back to Link.
        total = resp.headers.get("X-Total-Pages")
        if total is None or total == "":
            return super()._pagination(resp, page, per_page, count)
        return Pagination(
            page=int(resp.headers.get("X-Page") or page),
            per_page=int(resp.headers.get("X-Per-Page") or per_page),
            total_pages=int(total),
        )

    @staticmethod
    def _project(repository: Repository) -> str:
        return f"/projects/{repository.external_id}"

    def _member(self, user: dict, source: str) -> Member:
        return Member(
            external_id=user["id"],
            forge_type=self.FORGE,
            username=user["username"],
            name=user.get("name"),
            email=user.get("email") or user.get("public_email") or None,
            extracted_source=source,
        )

    def fetch_repository(
        self, external_repository_id: int, namespace_name: str, repository_name: str
    ) -> tuple[Repository, Namespace]:
        data = self._get(f"/projects/{external_repository_id}").json()
        ns = data["namespace"]
        namespace = Namespace(
            external_id=ns["id"],
            forge_type=self.FORGE,
            name=ns.get("full_path") or ns["name"],
        )
        repository = Repository(
            external_id=data["id"],
            forge_type=self.FORGE,
            name=data.get("path") or data["name"],
            default_branch=data.get("default_branch"),
        )
        return repository, namespace

    def fetch_members(
        self, repository: Repository, namespace: Namespace, per_page: int, page: int = 1
    ) -> Page[Member]:
        resp = self._get(
            f"{self._project(repository)}/members/all",
            params={"per_page": per_page, "page": page},
        )
        users = resp.json()
        return Page(
            records=[self._member(u, "repository") for u in users],
            pagination=self._pagination(resp, page, per_page, len(users)),
        )

    def fetch_namespace_members(
        self, namespace: Namespace, per_page: int, page: int = 1
    ) -> Page[Member]:
        resp = self._get(
            f"/groups/{namespace.external_id}/members/all",
            params={"per_page": per_page, "page": page},
        )
        users = resp.json()
        return Page(
            records=[self._member(u, "namespace") for u in users],
            pagination=self._pagination(resp, page, per_page, len(users)),
        )

    def fetch_merge_requests(
        self,
        repository: Repository,
        namespace: Namespace,
        per_page: int,
        page: int = 1,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> Page[MergeRequest]:
        params: dict = {
            "scope": "all",
            "order_by": "created_at",
            "sort": "desc",
            "per_page": per_page,
            "page": page,
        }
        if since is not None:
            params["updated_after"] = since.isoformat()
        if until is not None:
            params["updated_before"] = until.isoformat()
        resp = self._get(f"{self._project(repository)}/merge_requests", params=params)
        items = resp.json()
        records = [
            MergeRequest(
                external_id=mr["id"],
                canon_id=mr["iid"],
                repository_id=repository.id,
                title=mr["title"],
                web_url=mr["web_url"],
                created_at=parse_timestamp(mr["created_at"]),
                updated_at=parse_timestamp(mr.get("updated_at")),
                merged_at=parse_timestamp(mr.get("merged_at")),
                closed_at=parse_timestamp(mr.get("closed_at")),
                author_external_id=(mr.get("author") or {}).get("id"),
                state=mr.get("state"),
                target_branch=mr.get("target_branch"),
                source_branch=mr.get("source_branch"),
            )
            for mr in items
        ]
        return Page(records=records, pagination=self._pagination(resp, page, per_page, len(items)))

    def _merge_request_path(self, repository: Repository, merge_request: MergeRequest) -> str:
        return f"{self._project(repository)}/merge_requests/{merge_request.canon_id}"

    def fetch_merge_request_commits(
        self, repository: Repository, namespace: Namespace, merge_request: MergeRequest
    ) -> Page[MergeRequestCommit]:
        items = self._get_all(f"{self._merge_request_path(repository, merge_request)}/commits")
        records = [
            MergeRequestCommit(
                external_id=c["id"],
                merge_request_id=merge_request.id,
                created_at=parse_timestamp(c.get("created_at")),
                authored_date=parse_timestamp(c.get("authored_date")),
                committed_date=parse_timestamp(c.get("committed_date")),
                title=c.get("title"),
                message=c.get("message"),
                author_name=c.get("author_name"),
                author_email=c.get("author_email"),
                committer_name=c.get("committer_name"),
                committer_email=c.get("committer_email"),
            )
            for c in items
        ]
        return single_page(records)

    def fetch_merge_request_notes(
        self, repository: Repository, namespace: Namespace, merge_request: MergeRequest
    ) -> Page[MergeRequestNote]:
        items = self._get_all(f"{self._merge_request_path(repository, merge_request)}/notes")
        records = [
            MergeRequestNote(
                external_id=n["id"],
                merge_request_id=merge_request.id,
                created_at=parse_timestamp(n["created_at"]),
                updated_at=parse_timestamp(n.get("updated_at")),
                author_username=(n.get("author") or {}).get("username"),
                author_external_id=(n.get("author") or {}).get("id"),
                body=n.get("body"),
                system=bool(n.get("system")),
            )
            for n in items
        ]
        return single_page(records)

    def fetch_merge_request_diffs(
        self, repository: Repository, namespace: Namespace, merge_request: MergeRequest
    ) -> Page[MergeRequestDiff]:
        items = self._get_all(f"{self._merge_request_path(repository, merge_request)}/diffs")
        records = [
            MergeRequestDiff(
                external_id=d["new_path"],
                merge_request_id=merge_request.id,
                diff=d.get("diff") or "",
                new_path=d["new_path"],
                old_path=d.get("old_path") or d["new_path"],
                new_file=bool(d.get("new_file")),
                renamed_file=bool(d.get("renamed_file")),
                deleted_file=bool(d.get("deleted_file")),
            )
            for d in items
        ]
        return single_page(records)

    def fetch_timeline_events(
        self, repository: Repository, namespace: Namespace, merge_request: MergeRequest
    ) -> Page[TimelineEvent]:
        items = self._get_all(
            f"{self._merge_request_path(repository, merge_request)}/resource_state_events"
        )
        records = []
        for ev in items:
            user = ev.get("user") or {}
            records.append(TimelineEvent(
                external_id=str(ev["id"]),
                merge_request_id=merge_request.id,
                type=ev.get("state") or "state",
                timestamp=parse_timestamp(ev["created_at"]),
                actor_name=user.get("username"),
                actor_id=user.get("id"),
                data=self._json_subset(ev, ("state",)) or None,
            ))
        return single_page(records)

    def _deployment(self, d: dict, repository: Repository, environment: Optional[str]) -> Deployment:
        status = d.get("status")
        deployable = d.get("deployable") or {}
        resolved = None if status in PENDING_DEPLOYMENT_STATUSES else status
        return Deployment(
            external_id=d["id"],
            repository_id=repository.id,
            environment=(d.get("environment") or {}).get("name") or environment or "",
            created_at=parse_timestamp(d["created_at"]),
            ref=d.get("ref"),
            commit_sha=d.get("sha"),
            updated_at=parse_timestamp(d.get("updated_at")),
            status=resolved,
            deployed_at=parse_timestamp(deployable.get("finished_at")) if resolved == "success" else None,
        )

    def fetch_deployments(
        self,
        repository: Repository,
        namespace: Namespace,
        environment: Optional[str],
        per_page: int,
        page: int = 1,
    ) -> Page[Deployment]:
        params: dict = {"per_page": per_page, "page": page, "order_by": "created_at", "sort": "desc"}
        if environment:
            params["environment"] = environment
        resp = self._get(f"{self._project(repository)}/deployments", params=params)
        items = resp.json()
        return Page(
            records=[self._deployment(d, repository, environment) for d in items],
            pagination=self._pagination(resp, page, per_page, len(items)),
        )

    def fetch_deployment_status(
        self, repository: Repository, namespace: Namespace, deployment: Deployment
    ) -> Deployment:
        data = self._get(f"{self._project(repository)}/deployments/{deployment.external_id}").json()
        fresh = self._deployment(data, repository, deployment.environment)
        deployment.status = fresh.status
        deployment.updated_at = fresh.updated_at or deployment.updated_at
        deployment.deployed_at = fresh.deployed_at
        return deployment
