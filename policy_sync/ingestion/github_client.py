"""GitHub REST client implementing the SourceRepository interface."""

import base64
import binascii
from datetime import datetime, timezone
from typing import Any

import requests
import structlog
from requests.exceptions import ConnectionError, RequestException, Timeout

from policy_sync.errors import (
    RateLimitedError,
    SourceError,
    SourceNotFoundError,
    TransientSourceError,
)
from policy_sync.models.config import SourceConfig
from policy_sync.models.document import DiffEntry, DiffStatus, TreeEntry
from policy_sync.utils.retry import exponential_backoff_retry

log = structlog.stdlib.get_logger()

USER_AGENT = "policy-sync/2.0"

# GitHub compare statuses mapped onto diff statuses; others are skipped.
STATUS_MAP: dict[str, DiffStatus] = {
    "added": DiffStatus.ADDED,
    "modified": DiffStatus.MODIFIED,
    "changed": DiffStatus.MODIFIED,
    "copied": DiffStatus.ADDED,
    "removed": DiffStatus.REMOVED,
    "renamed": DiffStatus.RENAMED,
}


class GitHubSourceClient:
    """Reads commits, trees, diffs, and blobs from a GitHub repository."""

    def __init__(self, config: SourceConfig, session: requests.Session | None = None):
        """
        Initialize GitHub client.

        Args:
            config: Repository coordinates, credentials, timeout, and retry policy
            session: Optional requests session (a new one is created if None)
        """
        self._config = config
        self._base_url = str(config.base_url).rstrip("/")
        self._repo_url = f"{self._base_url}/repos/{config.owner}/{config.repo}"
        self._session = session or requests.Session()
        self._session.headers.update(self._build_headers())

        # Retry policy comes from config, so wrap per instance.
        self._get_json = exponential_backoff_retry(
            max_retries=config.max_retries,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
            exceptions=(TransientSourceError,),
        )(self._request_json)

        log.info(
            "github_client_initialized",
            owner=config.owner,
            repo=config.repo,
            authenticated=config.token is not None,
        )

    def _build_headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": USER_AGENT,
        }
        if self._config.token:
            headers["Authorization"] = f"Bearer {self._config.token}"
        return headers

    def latest_revision(self, ref: str) -> str:
        """
        Get the head commit SHA of a branch or other ref.

        Args:
            ref: Branch name, tag, or commit SHA

        Returns:
            Commit SHA
        """
        commit = self._get_json(f"{self._repo_url}/commits/{ref}")
        sha: str = commit["sha"]
        log.info("latest_revision_resolved", ref=ref, revision=sha)
        return sha

    def diff(self, from_revision: str, to_revision: str) -> list[DiffEntry]:
        """
        Compare two commits.

        Args:
            from_revision: Base commit SHA
            to_revision: Head commit SHA

        Returns:
            One DiffEntry per changed file with a recognized status
        """
        compare = self._get_json(f"{self._repo_url}/compare/{from_revision}...{to_revision}")
        entries: list[DiffEntry] = []

        for file in compare.get("files", []):
            status = STATUS_MAP.get(file.get("status", ""))
            if status is None:
                log.warning(
                    "unsupported_diff_status",
                    path=file.get("filename"),
                    status=file.get("status"),
                )
                continue

            entries.append(
                DiffEntry(
                    path=file["filename"],
                    status=status,
                    version_token=file["sha"],
                    previous_path=file.get("previous_filename"),
                )
            )

        log.info(
            "diff_fetched",
            from_revision=from_revision,
            to_revision=to_revision,
            changed_files=len(entries),
        )
        return entries

    def tree(self, revision: str, recursive: bool = True) -> list[TreeEntry]:
        """
        List the file tree of a commit.

        Args:
            revision: Commit or tree SHA
            recursive: Whether to include nested directories

        Returns:
            Tree entries (blobs, trees, and submodule commits)

        Raises:
            SourceError: If GitHub truncated the listing
        """
        url = f"{self._repo_url}/git/trees/{revision}"
        if recursive:
            url += "?recursive=1"
        tree = self._get_json(url)

        if tree.get("truncated"):
            entries = len(tree.get("tree", []))
            log.error("tree_truncated", revision=revision, entries=entries)
            raise SourceError(
                f"Tree listing for {revision} was truncated after {entries} entries",
                context={"revision": revision, "entries": entries},
            )

        return [
            TreeEntry(path=entry["path"], kind=entry["type"], version_token=entry["sha"])
            for entry in tree.get("tree", [])
        ]

    def content(self, version_token: str) -> bytes:
        """
        Fetch a blob's raw bytes.

        Args:
            version_token: Blob SHA

        Returns:
            Decoded blob content
        """
        blob = self._get_json(f"{self._repo_url}/git/blobs/{version_token}")
        raw = blob.get("content", "")

        if blob.get("encoding") == "base64":
            try:
                # GitHub wraps base64 content at 60 columns
                return base64.b64decode(raw.replace("\n", ""), validate=True)
            except (binascii.Error, ValueError) as e:
                raise SourceError(
                    f"Invalid base64 content for blob {version_token}",
                    context={"version_token": version_token},
                ) from e

        return raw.encode("utf-8")

    def _request_json(self, url: str) -> Any:
        """
        Perform a GET request and classify failures.

        Raises:
            SourceNotFoundError: On 404
            RateLimitedError: On 429, or 403 with an exhausted rate limit
            TransientSourceError: On timeouts, connection errors, and 5xx
            SourceError: On any other non-2xx response
        """
        try:
            response = self._session.request("GET", url, timeout=self._config.timeout_seconds)
        except (Timeout, ConnectionError) as e:
            raise TransientSourceError(f"Request to {url} failed: {e}", {"url": url}) from e
        except RequestException as e:
            raise SourceError(f"Request to {url} failed: {e}", {"url": url}) from e

        status = response.status_code
        if status == 404:
            raise SourceNotFoundError(f"GitHub resource not found: {url}", {"url": url})

        if status == 429 or (
            status == 403 and response.headers.get("X-RateLimit-Remaining") == "0"
        ):
            reset_at = _parse_reset(response.headers.get("X-RateLimit-Reset"))
            raise RateLimitedError(
                f"GitHub API rate limit exceeded. Reset at: {reset_at}",
                reset_at=reset_at,
                context={"url": url, "status": status},
            )

        if status >= 500:
            raise TransientSourceError(
                f"GitHub API error: {status} {response.reason}", {"url": url, "status": status}
            )

        if not response.ok:
            raise SourceError(
                f"GitHub API error: {status} {response.reason}", {"url": url, "status": status}
            )

        return response.json()


def _parse_reset(value: str | None) -> datetime | None:
    """Convert an X-RateLimit-Reset epoch header to a datetime."""
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except ValueError:
        return None
