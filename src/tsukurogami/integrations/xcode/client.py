"""Xcode Server bot API client."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from ...errors import ProtocolError, RemoteError, TransportError
from ...models import Bot
from ..auth import basic_auth

logger = logging.getLogger(__name__)

BOTS_ENDPOINT = "/api/bots"


class BotRegistryClient:
    """Client for the bot collection of an Xcode Server."""

    def __init__(
        self,
        base_url: str,
        credentials: str,
        verify: bool = False,
        client: Optional[httpx.Client] = None,
    ):
        """
        Initialize the registry client.

        Args:
            base_url: Xcode Server base URL, e.g. https://xcode.local:20343
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
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        """Close the HTTP client if we own it."""
        if self._owns_client:
            self.client.close()

    def _request(self, operation: str, method: str, endpoint: str, **kwargs) -> httpx.Response:
        try:
            return self.client.request(method, endpoint, **kwargs)
        except httpx.TransportError as exc:
            raise TransportError(f"{operation}: {exc}") from exc

    @staticmethod
    def _expect(operation: str, response: httpx.Response, status: int) -> None:
        if response.status_code != status:
            raise RemoteError(operation, response.status_code, response.text[:200])

    @staticmethod
    def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def list_bots(self) -> List[Bot]:
        """
        Fetch every bot on the server.

        Raises:
            TransportError: The server could not be reached
            RemoteError: The server answered with a non-200 status
            ProtocolError: The payload is malformed or lists no bots
        """
        response = self._request("list_bots", "GET", BOTS_ENDPOINT)
        self._expect("list_bots", response, 200)
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProtocolError(f"list_bots: invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise ProtocolError("list_bots: response is not a JSON object")
        results = payload.get("results") or []
        if not isinstance(results, list):
            raise ProtocolError("list_bots: results is not a list")
        if not payload.get("count") or not results:
            raise ProtocolError("list_bots: no bots found in registry response")
        try:
            return [Bot.from_dict(item) for item in results]
        except ProtocolError as exc:
            raise ProtocolError(f"list_bots: {exc}") from exc

    def duplicate_bot(self, template_id: str, bot: Bot) -> Dict[str, Any]:
        """Create a new bot from ``template_id`` with the given document."""
        response = self._request(
            "duplicate_bot",
            "POST",
            f"{BOTS_ENDPOINT}/{template_id}/duplicate",
            json=bot.to_dict(),
        )
        self._expect("duplicate_bot", response, 201)
        logger.info("Duplicated bot %s as %s", template_id, bot.name)
        return self._json_or_empty(response)

    def delete_bot(self, bot_id: str) -> Dict[str, Any]:
        response = self._request("delete_bot", "DELETE", f"{BOTS_ENDPOINT}/{bot_id}")
        self._expect("delete_bot", response, 204)
        logger.info("Deleted bot %s", bot_id)
        return {}

    def trigger_integration(self, bot_id: str, should_clean: bool = False) -> Dict[str, Any]:
        """Queue an integration; a clean run re-downloads all sources."""
        response = self._request(
            "trigger_integration",
            "POST",
            f"{BOTS_ENDPOINT}/{bot_id}/integrations",
            json={"shouldClean": should_clean},
        )
        self._expect("trigger_integration", response, 201)
        logger.info("Triggered integration for bot %s", bot_id)
        return self._json_or_empty(response)
