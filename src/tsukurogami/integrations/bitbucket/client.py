"""Bitbucket Server build-status client."""

import dataclasses
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from ...errors import RemoteError, TransportError
from ..auth import basic_auth

logger = logging.getLogger(__name__)

BUILD_STATUS_ENDPOINT = "/rest/build-status/1.0/commits"

STATE_INPROGRESS = "INPROGRESS"
STATE_SUCCESSFUL = "SUCCESSFUL"
STATE_FAILED = "FAILED"


@dataclasses.dataclass
class BuildStatus:
    """A build result attached to a commit."""

    state: str
    key: str
    url: str
    name: str = ""
    description: str = ""

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"state": self.state, "key": self.key}
        if self.name:
            payload["name"] = self.name
        payload["url"] = self.url
        if self.description:
            payload["description"] = self.description
        return payload


class BitbucketClient:
    """Bitbucket Server API client for commit build statuses."""

    def __init__(
        self,
        base_url: str,
        credentials: str,
        verify: bool = False,
        client: Optional[httpx.Client] = None,
    ):
        """
        Initialize Bitbucket client.

        Args:
            base_url: Bitbucket Server base URL, including any context path
            credentials: "username:password" for HTTP Basic auth
            verify: Verify the server's TLS certificate
            client: Preconfigured httpx client; owned by the caller if given
        """
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.Client(
            base_url=self.base_url,
            auth=basic_auth(credentials),
            verify=verify,
            headers={"Content-Type": "application/json"},
            timeout=None,
        )

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def close(self):
        """Close the HTTP client if we own it."""
        if self._owns_client:
            self.client.close()

    def post_build_status(self, commit: str, status: BuildStatus) -> None:
        """
        Attach a build status to a commit.

        Args:
            commit: Full commit hash
            status: Build status to post

        Raises:
            TransportError: Bitbucket could not be reached
            RemoteError: Bitbucket rejected the status
        """
        try:
            response = self.client.post(
                f"{BUILD_STATUS_ENDPOINT}/{quote(commit, safe='')}",
                json=status.to_payload(),
            )
        except httpx.TransportError as exc:
            raise TransportError(f"post_build_status {commit}: {exc}") from exc
        if not response.is_success:
            raise RemoteError(
                f"post_build_status {commit}",
                response.status_code,
                response.text[:200],
            )
        logger.info("Posted %s for %s on commit %s", status.state, status.name, commit)
