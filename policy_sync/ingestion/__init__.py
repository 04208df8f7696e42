"""Source repository access"""

from policy_sync.ingestion.github_client import GitHubSourceClient
from policy_sync.ingestion.source import SourceRepository

__all__ = ["GitHubSourceClient", "SourceRepository"]
