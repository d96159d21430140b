import pytest
from conftest import FakeNotifier

from tsukurogami.errors import RemoteError
from tsukurogami.relay import IntegrationRelay, build_state_for


@pytest.mark.parametrize(
    "result, state",
    [
        ("inprogress", "INPROGRESS"),
        ("succeeded", "SUCCESSFUL"),
        ("Warnings", "SUCCESSFUL"),
        ("build-errors", "FAILED"),
        ("trigger-error", "FAILED"),
        ("internal-build-error", "FAILED"),
        ("test-failures", "FAILED"),
        ("analyzer-warnings", "FAILED"),
        ("canceled", "FAILED"),
    ],
)
def test_known_results(result, state) -> None:
    assert build_state_for(result) == (state, "")


def test_unknown_result_is_failed_with_description() -> None:
    assert build_state_for("exploded") == ("FAILED", "xcode returned: exploded")


def test_relay_posts_status_for_commit() -> None:
    notifier = FakeNotifier()
    relay = IntegrationRelay(notifier, "https://xcode.example.com:20343")

    status = relay.relay("abc123", "succeeded", "widgets.feature-x", "7")

    assert notifier.posted == [("abc123", status)]
    assert status.to_payload() == {
        "state": "SUCCESSFUL",
        "key": "widgets.feature-x",
        "name": "widgets.feature-x:7",
        "url": "https://xcode.example.com:20343",
    }


def test_relay_propagates_notifier_errors() -> None:
    notifier = FakeNotifier()
    notifier.error = RemoteError("post_build_status abc123", 500)
    relay = IntegrationRelay(notifier, "https://ci")

    with pytest.raises(RemoteError):
        relay.relay("abc123", "succeeded", "widgets.feature-x", "7")
