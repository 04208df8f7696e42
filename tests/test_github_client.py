"""Tests for the GitHub source client with HTTP mocked at the session."""

import base64
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests

from policy_sync.errors import (
    RateLimitedError,
    SourceError,
    SourceNotFoundError,
    TransientSourceError,
)
from policy_sync.ingestion.github_client import GitHubSourceClient
from policy_sync.ingestion.source import SourceRepository
from policy_sync.models.config import SourceConfig
from policy_sync.models.document import DiffStatus

REPO_URL = "https://api.github.com/repos/acme/policies"
SHA = "a" * 40


def make_response(status: int = 200, payload=None, headers=None) -> MagicMock:
    response = MagicMock(spec=requests.Response)
    response.status_code = status
    response.ok = status < 400
    response.reason = "reason"
    response.headers = headers or {}
    response.json.return_value = payload if payload is not None else {}
    return response


@pytest.fixture
def session() -> MagicMock:
    session = MagicMock(spec=requests.Session)
    session.headers = {}
    return session


@pytest.fixture
def client(session) -> GitHubSourceClient:
    config = SourceConfig(owner="acme", repo="policies", token="secret", max_retries=2)
    return GitHubSourceClient(config, session=session)


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("policy_sync.utils.retry.time.sleep") as sleep:
        yield sleep


def test_satisfies_source_protocol(client):
    assert isinstance(client, SourceRepository)


def test_headers(session):
    GitHubSourceClient(SourceConfig(owner="acme", repo="policies", token="secret"), session)

    assert session.headers["Authorization"] == "Bearer secret"
    assert session.headers["Accept"] == "application/vnd.github.v3+json"
    assert session.headers["User-Agent"].startswith("policy-sync/")


def test_anonymous_client_sends_no_authorization(session):
    GitHubSourceClient(SourceConfig(owner="acme", repo="policies"), session)

    assert "Authorization" not in session.headers


def test_latest_revision(client, session):
    session.request.return_value = make_response(payload={"sha": SHA})

    assert client.latest_revision("main") == SHA
    session.request.assert_called_once_with("GET", f"{REPO_URL}/commits/main", timeout=5.0)


def test_diff_maps_statuses_and_skips_unknown(client, session):
    session.request.return_value = make_response(
        payload={
            "files": [
                {"filename": "a.md", "status": "added", "sha": "1" * 40},
                {"filename": "b.md", "status": "changed", "sha": "2" * 40},
                {"filename": "c.md", "status": "removed", "sha": "3" * 40},
                {
                    "filename": "new/d.md",
                    "status": "renamed",
                    "sha": "4" * 40,
                    "previous_filename": "old/d.md",
                },
                {"filename": "e.md", "status": "copied", "sha": "5" * 40},
                {"filename": "f.md", "status": "unchanged", "sha": "6" * 40},
            ]
        }
    )

    entries = client.diff("base", "head")

    session.request.assert_called_once_with(
        "GET", f"{REPO_URL}/compare/base...head", timeout=5.0
    )
    assert [(e.path, e.status) for e in entries] == [
        ("a.md", DiffStatus.ADDED),
        ("b.md", DiffStatus.MODIFIED),
        ("c.md", DiffStatus.REMOVED),
        ("new/d.md", DiffStatus.RENAMED),
        ("e.md", DiffStatus.ADDED),
    ]
    assert entries[3].previous_path == "old/d.md"


def test_tree_is_recursive(client, session):
    session.request.return_value = make_response(
        payload={
            "truncated": False,
            "tree": [
                {"path": "policies", "type": "tree", "sha": "1" * 40},
                {"path": "policies/a.md", "type": "blob", "sha": "2" * 40},
            ],
        }
    )

    entries = client.tree(SHA)

    session.request.assert_called_once_with(
        "GET", f"{REPO_URL}/git/trees/{SHA}?recursive=1", timeout=5.0
    )
    assert [(e.path, e.kind) for e in entries] == [("policies", "tree"), ("policies/a.md", "blob")]


def test_truncated_tree_is_an_error(client, session):
    session.request.return_value = make_response(
        payload={
            "truncated": True,
            "tree": [{"path": "policies/a.md", "type": "blob", "sha": "2" * 40}],
        }
    )

    with pytest.raises(SourceError) as excinfo:
        client.tree(SHA)

    assert excinfo.value.context["revision"] == SHA
    assert not isinstance(excinfo.value, TransientSourceError)


def test_content_decodes_wrapped_base64(client, session):
    text = "# Leave Policy\n\n" + "x" * 100
    encoded = base64.b64encode(text.encode("utf-8")).decode("ascii")
    wrapped = "\n".join(encoded[i : i + 60] for i in range(0, len(encoded), 60))
    session.request.return_value = make_response(
        payload={"content": wrapped, "encoding": "base64"}
    )

    assert client.content(SHA).decode("utf-8") == text


def test_content_rejects_invalid_base64(client, session):
    session.request.return_value = make_response(
        payload={"content": "!!!not base64!!!", "encoding": "base64"}
    )

    with pytest.raises(SourceError):
        client.content(SHA)


def test_not_found_is_not_retried(client, session):
    session.request.return_value = make_response(status=404)

    with pytest.raises(SourceNotFoundError):
        client.content(SHA)

    assert session.request.call_count == 1


@pytest.mark.parametrize(
    "status,headers",
    [
        (429, {}),
        (403, {"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1714532400"}),
    ],
)
def test_rate_limit(client, session, status, headers):
    session.request.return_value = make_response(status=status, headers=headers)

    with pytest.raises(RateLimitedError) as excinfo:
        client.latest_revision("main")

    assert session.request.call_count == 1
    if "X-RateLimit-Reset" in headers:
        assert excinfo.value.reset_at == datetime(2024, 5, 1, 3, 0, tzinfo=timezone.utc)


def test_forbidden_without_rate_limit_is_a_source_error(client, session):
    session.request.return_value = make_response(
        status=403, headers={"X-RateLimit-Remaining": "42"}
    )

    with pytest.raises(SourceError) as excinfo:
        client.latest_revision("main")

    assert not isinstance(excinfo.value, (RateLimitedError, TransientSourceError))


def test_server_errors_are_retried_then_succeed(client, session, no_sleep):
    session.request.side_effect = [
        make_response(status=502),
        make_response(status=503),
        make_response(payload={"sha": SHA}),
    ]

    assert client.latest_revision("main") == SHA
    assert session.request.call_count == 3
    assert [call.args[0] for call in no_sleep.call_args_list] == [1.0, 2.0]


def test_server_errors_exhaust_retries(client, session):
    session.request.return_value = make_response(status=500)

    with pytest.raises(TransientSourceError):
        client.latest_revision("main")

    assert session.request.call_count == 3


def test_timeouts_are_transient(client, session):
    session.request.side_effect = [requests.Timeout("slow"), make_response(payload={"sha": SHA})]

    assert client.latest_revision("main") == SHA


def test_other_request_errors_are_not_retried(client, session):
    session.request.side_effect = requests.exceptions.InvalidURL("bad url")

    with pytest.raises(SourceError):
        client.latest_revision("main")

    assert session.request.call_count == 1
