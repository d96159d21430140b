"""Bitbucket Server integration module."""

from .client import BitbucketClient, BuildStatus

__all__ = ["BitbucketClient", "BuildStatus"]
