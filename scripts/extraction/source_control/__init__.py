"""Source-control adapters and per-invocation adapter selection."""

from __future__ import annotations

from scripts.extraction.config import SourceControlConfig
from scripts.extraction.source_control.base import SourceControl
from scripts.extraction.source_control.github import GitHubSourceControl
from scripts.extraction.source_control.gitlab import GitlabSourceControl

ADAPTERS: dict[str, type[SourceControl]] = {
    "github": GitHubSourceControl,
    "gitlab": GitlabSourceControl,
}


def init_source_control(forge: str, token: str, config: SourceControlConfig) -> SourceControl:
    """Build the adapter variant named by the trigger's ``forge`` field."""
    cls = ADAPTERS.get(forge)
    if cls is None:
        raise ValueError(f"Unsupported source control: {forge}")
    base_url = (
        config.github_api_base_url if forge == "github" else config.gitlab_api_base_url
    )
    return cls(token=token, base_url=base_url, timeout=config.timeout_seconds)


__all__ = [
    "ADAPTERS",
    "GitHubSourceControl",
    "GitlabSourceControl",
    "SourceControl",
    "init_source_control",
]
