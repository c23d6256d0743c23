"""
NuGet feed client for checking which package versions are already published.

Uses the v3 flat-container endpoint, which lists every version of a
package id as ``{"versions": [...]}``.
"""

from typing import List, Optional
from urllib.parse import quote

import httpx
from httpx import HTTPStatusError, RequestError

from .error_handling import ErrorCategory, FeedError, get_error_handler


class FeedClient:
    """
    Synchronous client for one package feed.

    Use as a context manager so the underlying httpx.Client is closed.
    """

    def __init__(
        self,
        flat_container_url: str,
        user_agent: str = "repotools/1.0.0",
        connect_timeout: float = 10.0,
        read_timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = flat_container_url.rstrip("/")
        self.timeout = httpx.Timeout(read_timeout, connect=connect_timeout)
        self._headers = {"User-Agent": user_agent, "Accept": "application/json"}
        self._transport = transport
        self.client: Optional[httpx.Client] = None

    def __enter__(self) -> "FeedClient":
        self.client = httpx.Client(
            timeout=self.timeout, headers=self._headers, transport=self._transport
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.client:
            self.client.close()
            self.client = None

    def get_published_versions(self, package_id: str) -> List[str]:
        """
        List the versions of ``package_id`` on the feed.

        Returns:
            List[str]: Versions as reported by the feed; empty if the id is unknown

        Raises:
            FeedError: On HTTP or transport failures
        """
        if self.client is None:
            raise FeedError("Feed client not initialized - use it as a context manager")

        url = f"{self.base_url}/{quote(package_id.lower())}/index.json"
        try:
            response = self.client.get(url)
            if response.status_code == 404:
                return []
            response.raise_for_status()
            data = response.json()
        except HTTPStatusError as e:
            self._report(package_id, f"HTTP {e.response.status_code}", e)
            raise FeedError(
                f"Feed returned HTTP {e.response.status_code} for {package_id}"
            ) from e
        except RequestError as e:
            self._report(package_id, f"Network error: {e}", e)
            raise FeedError(f"Could not reach feed for {package_id}: {e}") from e
        except ValueError as e:
            self._report(package_id, f"Invalid JSON: {e}", e)
            raise FeedError(f"Feed returned invalid JSON for {package_id}") from e

        return [str(v) for v in data.get("versions", [])]

    def is_published(self, package_id: str, version: str) -> bool:
        """Versions are compared case-insensitively, as NuGet does."""
        wanted = version.lower()
        return any(v.lower() == wanted for v in self.get_published_versions(package_id))

    def _report(self, package_id: str, message: str, exception: Exception) -> None:
        get_error_handler().error(
            ErrorCategory.NETWORK,
            message,
            "feed_client",
            "get_published_versions",
            exception=exception,
            details={"package_id": package_id, "feed": self.base_url},
        )
