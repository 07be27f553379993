"""GitHub adapter: page numbers, totals derived from the Link header."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from scripts.extraction.models import (
    Deployment,
    Member,
    MergeRequest,
    MergeRequestCommit,
    MergeRequestDiff,
    MergeRequestNote,
    Namespace,
    Page,
    Repository,
    TimelineEvent,
)
from scripts.extraction.source_control.base import (
    SourceControl,
    parse_timestamp,
    single_page,
)

logger = logging.getLogger("extraction.source_control.github")

# Latest deployment status states that end the deployment lifecycle.
TERMINAL_DEPLOYMENT_STATES = {"success", "failure", "error", "inactive"}


class GitHubSourceControl(SourceControl):
    FORGE = "github"

    def _auth_headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"token {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    @staticmethod
    def _repo_path(repository: Repository, namespace: Namespace) -> str:
        return f"/repos/{namespace.name}/{repository.name}"

    def _member(self, user: dict, source: str) -> Member:
        return Member(
            external_id=user["id"],
            forge_type=self.FORGE,
            username=user["login"],
            name=user.get("name"),
            email=user.get("email"),
            extracted_source=source,
        )

    def fetch_repository(
        self, external_repository_id: int, namespace_name: str, repository_name: str
    ) -> tuple[Repository, Namespace]:
        if namespace_name and repository_name:
            data = self._get(f"/repos/{namespace_name}/{repository_name}").json()
        else:
            data = self._get(f"/repositories/{external_repository_id}").json()
        owner = data["owner"]
        namespace = Namespace(
            external_id=owner["id"], forge_type=self.FORGE, name=owner["login"]
        )
        repository = Repository(
            external_id=data["id"],
            forge_type=self.FORGE,
            name=data["name"],
            default_branch=data.get("default_branch"),
        )
        return repository, namespace

    def fetch_members(
        self, repository: Repository, namespace: Namespace, per_page: int, page: int = 1
    ) -> Page[Member]:
        resp = self._get(
            f"{self._repo_path(repository, namespace)}/collaborators",
            params={"affiliation": "all", "per_page": per_page, "page": page},
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
            f"/orgs/{namespace.name}/members",
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
        # The pulls endpoint has no date filter; the window is applied per page
        # so page numbering stays stable across workers.
        resp = self._get(
            f"{self._repo_path(repository, namespace)}/pulls",
            params={
                "state": "all",
                "sort": "created",
                "direction": "desc",
                "per_page": per_page,
                "page": page,
            },
        )
        pulls = resp.json()
        records = []
        for pr in pulls:
            updated_at = parse_timestamp(pr.get("updated_at"))
            if not self._in_window(updated_at, since, until):
                continue
            records.append(MergeRequest(
                external_id=pr["id"],
                canon_id=pr["number"],
                repository_id=repository.id,
                title=pr["title"],
                web_url=pr["html_url"],
                created_at=parse_timestamp(pr["created_at"]),
                updated_at=updated_at,
                merged_at=parse_timestamp(pr.get("merged_at")),
                closed_at=parse_timestamp(pr.get("closed_at")),
                author_external_id=(pr.get("user") or {}).get("id"),
                state=pr.get("state"),
                target_branch=(pr.get("base") or {}).get("ref"),
                source_branch=(pr.get("head") or {}).get("ref"),
            ))
        if len(records) < len(pulls):
            logger.debug(
                "Dropped %d of %d pulls outside the extraction window (page %d)",
                len(pulls) - len(records),
                len(pulls),
                page,
            )
        return Page(records=records, pagination=self._pagination(resp, page, per_page, len(pulls)))

    def fetch_merge_request_commits(
        self, repository: Repository, namespace: Namespace, merge_request: MergeRequest
    ) -> Page[MergeRequestCommit]:
        items = self._get_all(
            f"{self._repo_path(repository, namespace)}/pulls/{merge_request.canon_id}/commits"
        )
        records = []
        for c in items:
            commit = c.get("commit") or {}
            author = commit.get("author") or {}
            committer = commit.get("committer") or {}
            message = commit.get("message") or ""
            records.append(MergeRequestCommit(
                external_id=c["sha"],
                merge_request_id=merge_request.id,
                created_at=parse_timestamp(committer.get("date")),
                authored_date=parse_timestamp(author.get("date")),
                committed_date=parse_timestamp(committer.get("date")),
                title=message.split("\n", 1)[0],
                message=message,
                author_name=author.get("name"),
                author_email=author.get("email"),
                committer_name=committer.get("name"),
                committer_email=committer.get("email"),
            ))
        return single_page(records)

    def fetch_merge_request_notes(
        self, repository: Repository, namespace: Namespace, merge_request: MergeRequest
    ) -> Page[MergeRequestNote]:
        items = self._get_all(
            f"{self._repo_path(repository, namespace)}/issues/{merge_request.canon_id}/comments"
        )
        records = [
            MergeRequestNote(
                external_id=n["id"],
                merge_request_id=merge_request.id,
                created_at=parse_timestamp(n["created_at"]),
                updated_at=parse_timestamp(n.get("updated_at")),
                author_username=(n.get("user") or {}).get("login"),
                author_external_id=(n.get("user") or {}).get("id"),
                body=n.get("body"),
                system=False,
            )
            for n in items
        ]
        return single_page(records)

    def fetch_merge_request_diffs(
        self, repository: Repository, namespace: Namespace, merge_request: MergeRequest
    ) -> Page[MergeRequestDiff]:
        items = self._get_all(
            f"{self._repo_path(repository, namespace)}/pulls/{merge_request.canon_id}/files"
        )
        records = []
        for f in items:
            status = f.get("status")
            new_path = f["filename"]
            records.append(MergeRequestDiff(
                external_id=new_path,
                merge_request_id=merge_request.id,
                diff=f.get("patch") or "",
                new_path=new_path,
                old_path=f.get("previous_filename") or new_path,
                new_file=status == "added",
                renamed_file=status == "renamed",
                deleted_file=status == "removed",
            ))
        return single_page(records)

    def fetch_timeline_events(
        self, repository: Repository, namespace: Namespace, merge_request: MergeRequest
    ) -> Page[TimelineEvent]:
        items = self._get_all(
            f"{self._repo_path(repository, namespace)}/issues/{merge_request.canon_id}/timeline"
        )
        records = []
        for ev in items:
            kind = ev.get("event")
            if not kind:
                continue
            if kind == "committed":
                committer = ev.get("committer") or {}
                author = ev.get("author") or {}
                records.append(TimelineEvent(
                    external_id=ev["sha"],
                    merge_request_id=merge_request.id,
                    type=kind,
                    timestamp=parse_timestamp(author.get("date")),
                    actor_name=author.get("name"),
                    actor_email=author.get("email"),
                    data={
                        "committer_name": committer.get("name"),
                        "committer_email": committer.get("email"),
                        "committed_date": committer.get("date"),
                    },
                ))
                continue
            actor = ev.get("actor") or ev.get("user") or {}
            timestamp = ev.get("created_at") or ev.get("submitted_at")
            if timestamp is None:
                continue
            records.append(TimelineEvent(
                external_id=self._timeline_key(ev, kind, timestamp, actor),
                merge_request_id=merge_request.id,
                type=kind,
                timestamp=parse_timestamp(timestamp),
                actor_name=actor.get("login"),
                actor_id=actor.get("id"),
                data=self._json_subset(ev, ("state", "label", "requested_reviewer", "commit_id")) or None,
            ))
        return single_page(records)

    @staticmethod
    def _timeline_key(ev: dict, kind: str, timestamp: str, actor: dict) -> str:
        # cross-referenced and some other events carry neither id nor node_id
        event_id = ev.get("id") or ev.get("node_id")
        if event_id:
            return str(event_id)
        issue = (ev.get("source") or {}).get("issue") or {}
        return f"{kind}:{timestamp}:{actor.get('id')}:{issue.get('number')}"

    def fetch_deployments(
        self,
        repository: Repository,
        namespace: Namespace,
        environment: Optional[str],
        per_page: int,
        page: int = 1,
    ) -> Page[Deployment]:
        params: dict = {"per_page": per_page, "page": page}
        if environment:
            params["environment"] = environment
        resp = self._get(f"{self._repo_path(repository, namespace)}/deployments", params=params)
        items = resp.json()
        # Statuses live behind a separate endpoint; resolved in a later pass.
        records = [
            Deployment(
                external_id=d["id"],
                repository_id=repository.id,
                environment=d.get("environment") or environment or "",
                created_at=parse_timestamp(d["created_at"]),
                ref=d.get("ref"),
                commit_sha=d.get("sha"),
                updated_at=parse_timestamp(d.get("updated_at")),
                status=None,
            )
            for d in items
        ]
        return Page(records=records, pagination=self._pagination(resp, page, per_page, len(items)))

    def fetch_deployment_status(
        self, repository: Repository, namespace: Namespace, deployment: Deployment
    ) -> Deployment:
        statuses = self._get(
            f"{self._repo_path(repository, namespace)}/deployments/{deployment.external_id}/statuses",
            params={"per_page": 1},
        ).json()
        if not statuses:
            return deployment
        latest = statuses[0]
        state = latest.get("state")
        if state not in TERMINAL_DEPLOYMENT_STATES:
            return deployment
        deployment.status = state
        deployment.updated_at = parse_timestamp(latest.get("updated_at")) or deployment.updated_at
        if state == "success":
            deployment.deployed_at = parse_timestamp(latest.get("created_at"))
        return deployment
