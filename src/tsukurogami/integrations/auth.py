"""Shared HTTP Basic auth for the downstream servers."""

import httpx


def basic_auth(credentials: str) -> httpx.BasicAuth:
    """
    Build Basic auth from a "username:password" pair.

    Only the first colon separates the two, so passwords may contain colons.
    """
    username, _, password = (credentials or "").partition(":")
    return httpx.BasicAuth(username, password)
