"""Test harness configuration.

This repo uses a `src/` layout. In some developer environments an older
installed `tsukurogami` package can shadow the local sources.

Ensure tests always import the in-repo code.
"""

from __future__ import annotations

import copy
import sys
from pathlib import Path
from typing import Any, Optional

import pytest


def pytest_configure() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    src_dir = repo_root / "src"
    src_path = str(src_dir)
    if sys.path[:1] != [src_path] and src_path not in sys.path:
        sys.path.insert(0, src_path)


def make_bot(
    name: str,
    bot_id: str = "",
    env: Optional[dict[str, Any]] = None,
    triggers: Optional[list[dict[str, Any]]] = None,
    **extra_configuration: Any,
):
    """Build a bot the way the Xcode Server returns it."""
    from tsukurogami.models import Bot

    configuration: dict[str, Any] = {
        "builtFromClean": 0,
        "triggers": triggers or [],
        "buildEnvironmentVariables": env or {},
        "scheduleType": 2,
    }
    configuration.update(extra_configuration)
    payload: dict[str, Any] = {"name": name, "configuration": configuration}
    if bot_id:
        payload["_id"] = bot_id
    return Bot.from_dict(payload)


class FakeRegistry:
    """In-memory stand-in for the Xcode Server bot collection."""

    def __init__(self, bots=None):
        self.bots = list(bots or [])
        self.calls: list[tuple] = []
        self.failures: dict[tuple[str, Optional[str]], Exception] = {}
        self._next_id = 1

    def _maybe_fail(self, operation: str, key: Optional[str]) -> None:
        exc = self.failures.get((operation, key))
        if exc is not None:
            raise exc

    def calls_to(self, operation: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == operation]

    def list_bots(self):
        from tsukurogami.errors import ProtocolError

        self.calls.append(("list_bots",))
        self._maybe_fail("list_bots", None)
        if not self.bots:
            raise ProtocolError("list_bots: no bots found in registry response")
        return copy.deepcopy(self.bots)

    def duplicate_bot(self, template_id, bot):
        self.calls.append(("duplicate_bot", template_id, copy.deepcopy(bot)))
        self._maybe_fail("duplicate_bot", template_id)
        created = copy.deepcopy(bot)
        created.id = f"created-{self._next_id}"
        self._next_id += 1
        self.bots.append(created)
        return {"_id": created.id}

    def delete_bot(self, bot_id):
        self.calls.append(("delete_bot", bot_id))
        self._maybe_fail("delete_bot", bot_id)
        self.bots = [bot for bot in self.bots if bot.id != bot_id]
        return {}

    def trigger_integration(self, bot_id, should_clean=False):
        self.calls.append(("trigger_integration", bot_id, should_clean))
        self._maybe_fail("trigger_integration", bot_id)
        return {"number": 1}

    def close(self):
        pass


class FakeNotifier:
    def __init__(self):
        self.posted: list[tuple] = []
        self.error: Optional[Exception] = None

    def post_build_status(self, commit, status):
        if self.error is not None:
            raise self.error
        self.posted.append((commit, status))

    def close(self):
        pass


@pytest.fixture()
def bridge_config(tmp_path: Path):
    from tsukurogami.config import load_config

    return load_config(
        overrides={
            "xcode": {
                "url": "https://xcode.example.com:20343",
                "credentials": "xcs:secret",
            },
            "bitbucket": {
                "url": "https://bitbucket.example.com",
                "credentials": "bb:secret",
            },
            "server": {"callback_host": "10.0.0.5"},
        },
        env={},
    )


@pytest.fixture()
def template_bot():
    return make_bot(
        "widgets",
        bot_id="tmpl-1",
        env={"TSUKUROGAMI_REPO_TEMPLATE": "widgets", "SDK": "iphoneos"},
        triggers=[
            {
                "phase": 1,
                "type": 1,
                "name": "Install pods",
                "scriptBody": "pod install",
                "conditions": {"status": 2},
            }
        ],
    )
