"""Secret references for tokens and the database URL."""

import json
from unittest import mock

import pytest

from scripts.extraction import secrets
from scripts.extraction.secrets import (
    SecretResolutionError,
    resolve_access_token,
    resolve_database_url,
    resolve_secret,
)


@pytest.fixture(autouse=True)
def _fresh_cache():
    secrets.clear_cache()
    yield
    secrets.clear_cache()


@pytest.fixture
def secretsmanager():
    client = mock.Mock()
    with mock.patch("boto3.client", return_value=client) as factory:
        yield client, factory


def test_literal_is_returned_unchanged():
    assert resolve_secret("ghp_plain") == "ghp_plain"


def test_aws_json_key(secretsmanager):
    client, _ = secretsmanager
    client.get_secret_value.return_value = {"SecretString": json.dumps({"github": "tok"})}
    assert resolve_secret("aws-secret://forge-tokens/u1#github") == "tok"
    client.get_secret_value.assert_called_once_with(SecretId="forge-tokens/u1")


def test_aws_missing_key(secretsmanager):
    client, _ = secretsmanager
    client.get_secret_value.return_value = {"SecretString": json.dumps({"gitlab": "tok"})}
    with pytest.raises(SecretResolutionError):
        resolve_secret("aws-secret://forge-tokens/u1#github")


def test_secrets_are_fetched_once(secretsmanager):
    client, factory = secretsmanager
    client.get_secret_value.return_value = {"SecretString": "s3cret"}
    assert resolve_secret("aws-secret://db") == "s3cret"
    assert resolve_secret("aws-secret://db") == "s3cret"
    assert factory.call_count == 1


def test_per_user_template_wins(secretsmanager):
    client, _ = secretsmanager
    client.get_secret_value.return_value = {"SecretString": json.dumps({"gitlab": "user-tok"})}
    token = resolve_access_token(
        "u1", "gitlab", {"gitlab": "static"}, "aws-secret://forge-tokens/{user_id}#{forge}"
    )
    assert token == "user-tok"


def test_static_token_and_missing_token():
    assert resolve_access_token("u1", "github", {"github": "static"}) == "static"
    with pytest.raises(SecretResolutionError):
        resolve_access_token("u1", "gitlab", {"github": "static"})


def test_database_url_from_pg_variables(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("PG_HOST", "db")
    monkeypatch.setenv("PG_PASSWORD", "pw")
    monkeypatch.delenv("PG_USER", raising=False)
    monkeypatch.delenv("PG_PORT", raising=False)
    monkeypatch.delenv("PG_DATABASE", raising=False)
    assert resolve_database_url() == "postgresql://extract:pw@db:5432/forge_extract"
