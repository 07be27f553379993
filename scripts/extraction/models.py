"""Extracted entity records and pagination metadata.

Entities are plain dataclasses; ``id`` is the internal surrogate id and stays
``None`` until the record has been upserted. ``Pagination`` is a pydantic
model because it travels inside queue messages.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class Pagination(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int = Field(ge=1)
    per_page: int = Field(gt=0)
    total_pages: int = Field(ge=0)


@dataclass
class Page(Generic[T]):
    """One page of provider records plus uniform pagination metadata."""

    records: list[T]
    pagination: Pagination


@dataclass
class Namespace:
    external_id: int
    forge_type: str
    name: str
    id: Optional[int] = None


@dataclass
class Repository:
    external_id: int
    forge_type: str
    name: str
    namespace_id: Optional[int] = None
    default_branch: Optional[str] = None
    id: Optional[int] = None


@dataclass
class Member:
    external_id: int
    forge_type: str
    username: str
    name: Optional[str] = None
    email: Optional[str] = None
    # repository | namespace | notes
    extracted_source: Optional[str] = None
    id: Optional[int] = None


@dataclass
class RepositoryToMember:
    repository_id: int
    member_id: int
    id: Optional[int] = None


@dataclass
class MergeRequest:
    external_id: int
    # GitHub number / GitLab iid; unique only within the repository
    canon_id: int
    repository_id: int
    title: str
    web_url: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    merged_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    author_external_id: Optional[int] = None
    state: Optional[str] = None
    target_branch: Optional[str] = None
    source_branch: Optional[str] = None
    id: Optional[int] = None


@dataclass
class MergeRequestCommit:
    external_id: str  # commit sha
    merge_request_id: int
    created_at: Optional[datetime] = None
    authored_date: Optional[datetime] = None
    committed_date: Optional[datetime] = None
    title: Optional[str] = None
    message: Optional[str] = None
    author_name: Optional[str] = None
    author_email: Optional[str] = None
    committer_name: Optional[str] = None
    committer_email: Optional[str] = None
    id: Optional[int] = None


@dataclass
class MergeRequestDiff:
    external_id: str  # new path of the changed file
    merge_request_id: int
    diff: str
    new_path: str
    old_path: str
    new_file: bool = False
    renamed_file: bool = False
    deleted_file: bool = False
    id: Optional[int] = None


@dataclass
class MergeRequestNote:
    external_id: int
    merge_request_id: int
    created_at: datetime
    updated_at: Optional[datetime] = None
    author_username: Optional[str] = None
    author_external_id: Optional[int] = None
    body: Optional[str] = None
    system: bool = False
    id: Optional[int] = None


@dataclass
class TimelineEvent:
    external_id: str
    merge_request_id: int
    type: str
    timestamp: datetime
    actor_name: Optional[str] = None
    actor_email: Optional[str] = None
    actor_id: Optional[int] = None
    data: Optional[dict[str, Any]] = None
    id: Optional[int] = None


@dataclass
class Deployment:
    external_id: int
    repository_id: int
    environment: str
    created_at: datetime
    ref: Optional[str] = None
    commit_sha: Optional[str] = None
    updated_at: Optional[datetime] = None
    # None until resolved by the deployment status pass
    status: Optional[str] = None
    deployed_at: Optional[datetime] = None
    id: Optional[int] = None


@dataclass
class DeploymentEnvironment:
    repository_external_id: int
    forge_type: str
    environment: str
    id: Optional[int] = None


@dataclass
class GitIdentity:
    """Raw commit authorship; has no external identity of its own."""

    name: str
    email: str
    member_id: Optional[int] = None
    id: Optional[int] = None
