"""Xcode Server integration module."""

from .client import BotRegistryClient

__all__ = ["BotRegistryClient"]
