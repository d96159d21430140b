import logging

import pytest
from conftest import FakeNotifier, FakeRegistry, make_bot
from fastapi.testclient import TestClient

from tsukurogami.errors import TransportError
from tsukurogami.logging_utils import setup_logging
from tsukurogami.server import create_app

CALLBACK = "http://10.0.0.5:4444"


@pytest.fixture()
def registry(template_bot):
    return FakeRegistry([template_bot])


@pytest.fixture()
def notifier():
    return FakeNotifier()


@pytest.fixture()
def bridge_logging(bridge_config):
    handle = setup_logging(bridge_config.log)
    yield handle
    handle.stop()


@pytest.fixture()
def client(bridge_config, registry, notifier, bridge_logging):
    app = create_app(
        bridge_config,
        registry=registry,
        notifier=notifier,
        bridge_logging=bridge_logging,
        callback_url=CALLBACK,
    )
    with TestClient(app) as test_client:
        yield test_client


def test_opened_creates_and_integrates(client, registry) -> None:
    resp = client.get(
        "/pullRequestUpdated",
        params={"repo": "widgets", "branch": "feature-x", "status": "opened"},
    )

    assert resp.status_code == 201
    duplicates = registry.calls_to("duplicate_bot")
    assert len(duplicates) == 1
    _, template_id, bot = duplicates[0]
    assert template_id == "tmpl-1"
    assert bot.name == "widgets.feature-x"
    env = bot.configuration.env_vars
    assert env["TSUKUROGAMI_REPO"] == "widgets"
    assert env["TSUKUROGAMI_BRANCH"] == "feature-x"
    assert "TSUKUROGAMI_REPO_TEMPLATE" not in env
    assert CALLBACK in bot.configuration.triggers[1].script_body
    assert len(registry.calls_to("trigger_integration")) == 1


def test_closed_without_instance_is_500(client, registry) -> None:
    resp = client.get(
        "/pullRequestUpdated",
        params={"repo": "widgets", "branch": "feature-x", "status": "closed"},
    )

    assert resp.status_code == 500
    assert "no bots found" in resp.text
    assert registry.calls_to("delete_bot") == []


def test_rescoped_integrates_existing_bot(client, registry) -> None:
    registry.bots.append(
        make_bot(
            "widgets.feature-x",
            "i1",
            env={"TSUKUROGAMI_REPO": "widgets", "TSUKUROGAMI_BRANCH": "feature-x"},
        )
    )

    resp = client.get(
        "/pullRequestUpdated",
        params={"repo": "widgets", "branch": "feature-x", "status": "RESCOPED_FROM"},
    )

    assert resp.status_code == 201
    assert registry.calls_to("trigger_integration") == [("trigger_integration", "i1", False)]
    assert registry.calls_to("duplicate_bot") == []


def test_unknown_status_is_accepted(client, registry) -> None:
    resp = client.get(
        "/pullRequestUpdated",
        params={"repo": "widgets", "branch": "feature-x", "status": "merged"},
    )

    assert resp.status_code == 201
    assert "unknown status: merged" in resp.text
    assert registry.calls == []


def test_missing_pull_request_params_are_400(client, registry) -> None:
    resp = client.get("/pullRequestUpdated", params={"repo": "widgets", "branch": ""})

    assert resp.status_code == 400
    assert '"branch"' in resp.text
    assert '"status"' in resp.text
    assert '"repo"' not in resp.text
    assert registry.calls == []



def test_repeated_params_use_the_first_value(client, registry) -> None:
    resp = client.get(
        "/pullRequestUpdated?repo=widgets&branch=feature-x&status=opened&status=closed"
    )

    assert resp.status_code == 201
    assert len(registry.calls_to("duplicate_bot")) == 1
    assert registry.calls_to("delete_bot") == []


def test_downstream_failure_is_500(client, registry) -> None:
    registry.failures[("list_bots", None)] = TransportError("list_bots: tls handshake failed")

    resp = client.get(
        "/pullRequestUpdated",
        params={"repo": "widgets", "branch": "feature-x", "status": "opened"},
    )

    assert resp.status_code == 500
    assert "create_bot widgets feature-x: list_bots: tls handshake failed" in resp.text


def test_integration_updated_relays_status(client, notifier, bridge_config) -> None:
    resp = client.get(
        "/integrationUpdated",
        params={
            "commit": "abc123",
            "status": "succeeded",
            "bot": "widgets.feature-x",
            "integration": "7",
        },
    )

    assert resp.status_code == 200
    assert len(notifier.posted) == 1
    commit, status = notifier.posted[0]
    assert commit == "abc123"
    assert status.to_payload() == {
        "state": "SUCCESSFUL",
        "key": "widgets.feature-x",
        "name": "widgets.feature-x:7",
        "url": bridge_config.build_url,
    }


def test_integration_updated_missing_status_is_500(client, notifier) -> None:
    resp = client.get(
        "/integrationUpdated",
        params={"commit": "abc123", "bot": "widgets.feature-x", "integration": "7"},
    )

    assert resp.status_code == 500
    assert '"status"' in resp.text
    assert notifier.posted == []


def test_integration_updated_relay_failure_is_500(client, notifier) -> None:
    notifier.error = TransportError("post_build_status abc123: connection reset")

    resp = client.get(
        "/integrationUpdated",
        params={"commit": "abc123", "status": "inprogress", "bot": "b", "integration": "1"},
    )

    assert resp.status_code == 500
    assert "connection reset" in resp.text


def test_logs_returns_recent_lines(client, bridge_logging) -> None:
    logging.getLogger("tsukurogami.test").info("hello from the test")
    client.get("/pullRequestUpdated", params={"repo": "widgets"})
    # Drain the queue so the buffer holds everything logged so far.
    bridge_logging.stop()

    resp = client.get("/logs")

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    lines = resp.text.splitlines()
    assert any("hello from the test" in line for line in lines)
    assert any("Bridging" in line for line in lines)
    assert "missing" in lines[-1]
