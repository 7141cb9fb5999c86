"""
GitHub — REST API access for the source (github.com) and the destination.
"""

from .client import ClientConfig, GitHubAPIError, GitHubClient, has_any_scope

__all__ = ["ClientConfig", "GitHubAPIError", "GitHubClient", "has_any_scope"]
