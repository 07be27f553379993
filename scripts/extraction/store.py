"""Idempotent entity store: upsert by external identity, scoped per tenant.

Every entity type is described by a ``TableSpec``: the natural key used for
ON CONFLICT and the volatile columns an upsert may overwrite. Columns outside
``volatile`` and ``coalesce`` (external ids, provider creation timestamps,
extraction source) are written once on insert and never touched again.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, fields
from typing import Any, Iterable, Optional

from scripts.extraction.errors import NotFoundError
from scripts.extraction.models import (
    Deployment,
    DeploymentEnvironment,
    GitIdentity,
    Member,
    MergeRequest,
    MergeRequestCommit,
    MergeRequestDiff,
    MergeRequestNote,
    Namespace,
    Repository,
    RepositoryToMember,
    TimelineEvent,
)

logger = logging.getLogger("extraction.store")


@dataclass(frozen=True)
class TableSpec:
    table: str
    model: type
    conflict: tuple[str, ...]
    volatile: tuple[str, ...] = ()
    json_columns: tuple[str, ...] = ()
    coalesce: tuple[str, ...] = ()

    @property
    def columns(self) -> list[str]:
        return [f.name for f in fields(self.model) if f.name != "id"]


TABLES: dict[str, TableSpec] = {
    "namespace": TableSpec(
        "namespaces", Namespace, ("external_id", "forge_type"), ("name",)
    ),
    "repository": TableSpec(
        "repositories",
        Repository,
        ("external_id", "forge_type"),
        ("name", "namespace_id", "default_branch"),
    ),
    # notes and collaborator listings omit name/email; keep what a richer source wrote
    "member": TableSpec(
        "members",
        Member,
        ("external_id", "forge_type"),
        ("username",),
        coalesce=("name", "email"),
    ),
    "repository_to_member": TableSpec(
        "repositories_to_members", RepositoryToMember, ("repository_id", "member_id")
    ),
    "merge_request": TableSpec(
        "merge_requests",
        MergeRequest,
        ("repository_id", "external_id"),
        (
            "title", "web_url", "updated_at", "merged_at", "closed_at",
            "state", "target_branch", "source_branch",
        ),
    ),
    "merge_request_commit": TableSpec(
        "merge_request_commits", MergeRequestCommit, ("merge_request_id", "external_id")
    ),
    "merge_request_diff": TableSpec(
        "merge_request_diffs",
        MergeRequestDiff,
        ("merge_request_id", "external_id"),
        ("diff", "old_path", "new_file", "renamed_file", "deleted_file"),
    ),
    "merge_request_note": TableSpec(
        "merge_request_notes",
        MergeRequestNote,
        ("merge_request_id", "external_id"),
        ("updated_at", "body"),
    ),
    "timeline_event": TableSpec(
        "timeline_events",
        TimelineEvent,
        ("merge_request_id", "external_id"),
        json_columns=("data",),
    ),
    "deployment": TableSpec(
        "deployments",
        Deployment,
        ("repository_id", "external_id"),
        ("updated_at",),
        # a page re-read reports unsettled statuses as NULL; never clear a resolved one
        coalesce=("status", "deployed_at"),
    ),
    "deployment_environment": TableSpec(
        "deployment_environments",
        DeploymentEnvironment,
        ("repository_external_id", "forge_type", "environment"),
    ),
    # member_id belongs to reconciliation, never to extraction
    "git_identity": TableSpec("git_identities", GitIdentity, ("email", "name")),
}


class EntityStore:
    """Upserts and lookups for one tenant.

    ``db`` is a ``scripts.extraction.db.Database`` (or anything exposing the
    same ``upsert_returning`` / ``select`` / ``update`` methods).
    """

    def __init__(self, db, tenant_id: int) -> None:
        self.db = db
        self.tenant_id = tenant_id

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, entity_type: str, records: Iterable[Any]) -> list[Any]:
        """Insert-or-update ``records`` and return them with internal ids."""
        spec = TABLES[entity_type]
        records = list(records)
        if not records:
            return []

        columns = spec.columns
        rows = [
            (self.tenant_id, *(self._to_column(spec, c, getattr(r, c)) for c in columns))
            for r in records
        ]
        persisted = self.db.upsert_returning(
            spec.table,
            ["tenant_id", *columns],
            rows,
            ["tenant_id", *spec.conflict],
            list(spec.volatile),
            list(spec.coalesce),
        )
        logger.debug(
            "Upserted %d %s rows",
            len(persisted),
            spec.table,
            extra={"entity_type": entity_type, "records": len(persisted)},
        )
        return [self._from_row(spec, row) for row in persisted]

    def assign_git_identities(self, assignments: dict[int, list[int]]) -> int:
        """Point each git identity at the member reconciliation assigned it."""
        total = 0
        for member_id, identity_ids in assignments.items():
            total += self.db.update(
                "git_identities",
                {"member_id": member_id},
                {"tenant_id": self.tenant_id, "id": list(identity_ids)},
            )
        return total

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find(self, entity_type: str, **where: Any) -> list[Any]:
        spec = TABLES[entity_type]
        rows = self.db.select(spec.table, {"tenant_id": self.tenant_id, **where})
        return [self._from_row(spec, row) for row in rows]

    def get(self, entity_type: str, entity_id: int) -> Any:
        """Fetch by internal id or raise ``NotFoundError``."""
        found = self.find(entity_type, id=entity_id)
        if not found:
            raise NotFoundError(entity_type, entity_id)
        return found[0]

    def deployment_environments(self, repository: Repository) -> list[DeploymentEnvironment]:
        return self.find(
            "deployment_environment",
            repository_external_id=repository.external_id,
            forge_type=repository.forge_type,
        )

    def unresolved_deployments(self, repository_id: Optional[int] = None) -> list[Deployment]:
        where: dict[str, Any] = {"status": None}
        if repository_id is not None:
            where["repository_id"] = repository_id
        return self.find("deployment", **where)

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _to_column(spec: TableSpec, column: str, value: Any) -> Any:
        if column in spec.json_columns and value is not None:
            return json.dumps(value)
        return value

    @staticmethod
    def _from_row(spec: TableSpec, row: dict[str, Any]) -> Any:
        values = {}
        for f in fields(spec.model):
            value = row.get(f.name)
            if f.name in spec.json_columns and isinstance(value, str):
                value = json.loads(value)
            values[f.name] = value
        return spec.model(**values)
