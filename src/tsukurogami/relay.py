"""Relay Xcode Server integration results to Bitbucket commit statuses."""

import logging
from typing import Tuple

from .integrations.bitbucket import BitbucketClient, BuildStatus
from .integrations.bitbucket.client import (
    STATE_FAILED,
    STATE_INPROGRESS,
    STATE_SUCCESSFUL,
)

logger = logging.getLogger(__name__)

SUCCESS_RESULTS = {"succeeded", "warnings"}
FAILURE_RESULTS = {
    "trigger-error",
    "internal-build-error",
    "build-errors",
    "test-failures",
    "analyzer-warnings",
    "canceled",
}


def build_state_for(result: str) -> Tuple[str, str]:
    """
    Map an Xcode integration result to a Bitbucket state and description.

    Results we do not know are failures whose raw value is kept in the
    description.
    """
    normalized = result.strip().lower()
    if normalized == "inprogress":
        return STATE_INPROGRESS, ""
    if normalized in SUCCESS_RESULTS:
        return STATE_SUCCESSFUL, ""
    if normalized in FAILURE_RESULTS:
        return STATE_FAILED, ""
    return STATE_FAILED, f"xcode returned: {result}"


class IntegrationRelay:
    def __init__(self, notifier: BitbucketClient, build_url: str):
        self.notifier = notifier
        self.build_url = build_url

    def build_status(self, status: str, bot: str, integration: str) -> BuildStatus:
        state, description = build_state_for(status)
        return BuildStatus(
            state=state,
            key=bot,
            name=f"{bot}:{integration}",
            url=self.build_url,
            description=description,
        )

    def relay(self, commit: str, status: str, bot: str, integration: str) -> BuildStatus:
        build_status = self.build_status(status, bot, integration)
        logger.info(
            "Relaying %s for %s integration %s on %s",
            build_status.state,
            bot,
            integration,
            commit,
        )
        self.notifier.post_build_status(commit, build_status)
        return build_status
