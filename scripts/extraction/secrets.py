"""Secret references for the database URL and provider access tokens.

A value is either a literal or a reference:

  aws-secret://name            whole SecretString
  aws-secret://name#key        one key of a JSON SecretString
  gcp-secret://name            latest version in GCP_PROJECT_ID
  gcp-secret://projects/...    fully qualified version name

Fetched secrets are cached for the life of the process; workers resolve a
provider token for every message they handle.
"""

from __future__ import annotations

import functools
import json
import logging
import os

logger = logging.getLogger("extraction.secrets")

AWS_SCHEME = "aws-secret://"
GCP_SCHEME = "gcp-secret://"


class SecretResolutionError(RuntimeError):
    pass


def resolve_secret(value: str) -> str:
    """Return ``value`` itself, or the secret it references."""
    if value.startswith(AWS_SCHEME):
        return _aws_secret(value[len(AWS_SCHEME):])
    if value.startswith(GCP_SCHEME):
        return _gcp_secret(value[len(GCP_SCHEME):])
    return value


@functools.lru_cache(maxsize=256)
def _aws_secret(ref: str) -> str:
    import boto3

    secret_id, _, json_key = ref.partition("#")
    client = boto3.client(
        "secretsmanager", region_name=os.environ.get("AWS_REGION", "us-east-1")
    )
    payload = client.get_secret_value(SecretId=secret_id)["SecretString"]
    logger.info("Resolved secret %s from AWS Secrets Manager", secret_id)
    if not json_key:
        return payload
    try:
        return str(json.loads(payload)[json_key])
    except (ValueError, KeyError) as exc:
        raise SecretResolutionError(f"Secret {secret_id} has no key {json_key!r}") from exc


@functools.lru_cache(maxsize=256)
def _gcp_secret(ref: str) -> str:
    from google.cloud import secretmanager

    if ref.startswith("projects/"):
        name = ref
    else:
        project = os.environ.get("GCP_PROJECT_ID", "")
        if not project:
            raise SecretResolutionError(f"Set GCP_PROJECT_ID to resolve {ref}")
        name = f"projects/{project}/secrets/{ref}/versions/latest"

    client = secretmanager.SecretManagerServiceClient()
    response = client.access_secret_version(request={"name": name})
    logger.info("Resolved secret %s from GCP Secret Manager", name)
    return response.payload.data.decode("UTF-8")


def clear_cache() -> None:
    _aws_secret.cache_clear()
    _gcp_secret.cache_clear()


def resolve_database_url() -> str:
    """DATABASE_URL if set, otherwise a URL assembled from PG_* variables."""
    url = os.environ.get("DATABASE_URL", "")
    if url:
        return resolve_secret(url)

    password = resolve_secret(os.environ.get("PG_PASSWORD", "localdev-change-me"))
    return "postgresql://{user}:{password}@{host}:{port}/{database}".format(
        user=os.environ.get("PG_USER", "extract"),
        password=password,
        host=os.environ.get("PG_HOST", "localhost"),
        port=os.environ.get("PG_PORT", "5432"),
        database=os.environ.get("PG_DATABASE", "forge_extract"),
    )


def resolve_access_token(
    user_id: str,
    forge: str,
    static_tokens: dict[str, str],
    template: str = "",
) -> str:
    """Return the provider access token for ``user_id`` on ``forge``.

    A per-user template (e.g. ``aws-secret://forge-tokens/{user_id}#{forge}``)
    takes precedence over the static per-forge tokens from the environment.
    """
    if template:
        return resolve_secret(template.format(user_id=user_id, forge=forge))
    token = static_tokens.get(forge, "")
    if not token:
        raise SecretResolutionError(f"No access token configured for {forge}")
    return resolve_secret(token)
