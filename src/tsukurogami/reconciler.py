"""
Bot lifecycle for pull requests.

Each pull-request event is handled to completion against a fresh listing of
the Xcode Server's bots; nothing is cached between events.
"""

import copy
import dataclasses
import logging
import shlex
from enum import Enum
from typing import Callable, List, Optional, Type

from .errors import (
    BridgeError,
    CreateError,
    DeleteError,
    IntegrateError,
    NoInstanceError,
    NoTemplateError,
    ReconcileError,
    UnrecognizedEventError,
)
from .integrations.xcode import BotRegistryClient
from .matching import (
    BRANCH_VAR,
    REPO_TEMPLATE_VAR,
    REPO_VAR,
    find_instances,
    find_templates,
)
from .models import (
    PHASE_POST_BUILD,
    PHASE_PRE_BUILD,
    SCHEDULE_MANUAL,
    TRIGGER_TYPE_SCRIPT,
    Bot,
    Trigger,
    TriggerConditions,
)

logger = logging.getLogger(__name__)

SWITCH_BRANCH_TRIGGER = "Switch Branch"
UPDATE_STATUS_TRIGGER = "Update Status"

# Xcode Server expands ${XCS_*} inside the build environment.
SWITCH_BRANCH_SCRIPT = """#!/bin/sh
set -x
cd "${{XCS_PRIMARY_REPO_DIR}}"
git fetch
git checkout {branch}
git pull
git merge --no-ff --no-commit {trunk}
"""

STATUS_POKE_SCRIPT = """#!/bin/sh
set -x
cd "${{XCS_PRIMARY_REPO_DIR}}"
curl -g -sS -G "{callback_url}/integrationUpdated" \\
  --data-urlencode "commit=$(git rev-parse HEAD | tr -d '\\n')" \\
  --data-urlencode "bot=${{XCS_BOT_NAME}}" \\
  --data-urlencode "integration=${{XCS_INTEGRATION_NUMBER}}" \\
  --data-urlencode "status={status}"
"""

IN_PROGRESS = "inprogress"
INTEGRATION_RESULT = "${XCS_INTEGRATION_RESULT}"


class EventAction(str, Enum):
    CREATE = "create"
    DELETE = "delete"
    INTEGRATE = "integrate"
    IGNORE = "ignore"


_STATUS_ACTIONS = {
    "opened": EventAction.CREATE,
    "reopened": EventAction.CREATE,
    "closed": EventAction.DELETE,
    "declined": EventAction.DELETE,
    "rescoped_from": EventAction.INTEGRATE,
}


def action_for_status(status: str) -> EventAction:
    """Map a pull-request status to the lifecycle action it requires."""
    action = _STATUS_ACTIONS.get(status.strip().lower())
    if action is None:
        raise UnrecognizedEventError(status)
    return action


@dataclasses.dataclass
class EventOutcome:
    repo: str
    branch: str
    status: str
    action: EventAction
    bots: List[str] = dataclasses.field(default_factory=list)
    note: str = ""

    def summary(self) -> str:
        if self.action == EventAction.IGNORE:
            return f"ignored {self.repo} {self.branch}: {self.note}"
        names = ", ".join(self.bots) or "no bots"
        return f"{self.action.value} {self.repo} {self.branch}: {names}"


def switch_branch_script(branch: str, trunk_branch: str = "master") -> str:
    return SWITCH_BRANCH_SCRIPT.format(
        branch=shlex.quote(branch), trunk=shlex.quote(trunk_branch)
    )


def status_poke_script(callback_url: str, status: str) -> str:
    return STATUS_POKE_SCRIPT.format(callback_url=callback_url, status=status)


def build_hook_triggers(
    branch: str, callback_url: str, trunk_branch: str = "master"
) -> List[Trigger]:
    """The triggers placed ahead of a template's own: switch, pre poke, post poke."""
    switch = Trigger(
        phase=PHASE_PRE_BUILD,
        type=TRIGGER_TYPE_SCRIPT,
        name=SWITCH_BRANCH_TRIGGER,
        script_body=switch_branch_script(branch, trunk_branch),
    )
    pre_poke = Trigger(
        phase=PHASE_PRE_BUILD,
        type=TRIGGER_TYPE_SCRIPT,
        name=UPDATE_STATUS_TRIGGER,
        script_body=status_poke_script(callback_url, IN_PROGRESS),
    )
    post_poke = Trigger(
        phase=PHASE_POST_BUILD,
        type=TRIGGER_TYPE_SCRIPT,
        name=UPDATE_STATUS_TRIGGER,
        script_body=status_poke_script(callback_url, INTEGRATION_RESULT),
        conditions=TriggerConditions(
            on_analyzer_warnings=True,
            on_build_errors=True,
            on_failing_tests=True,
            on_success=True,
            on_warnings=True,
        ),
    )
    return [switch, pre_poke, post_poke]


def derive_instance_bot(
    template: Bot,
    repo: str,
    branch: str,
    callback_url: str,
    trunk_branch: str = "master",
) -> Bot:
    """
    Build the bot document for ``branch`` from a template.

    The template is left untouched; the result has no id so the server
    assigns a new one.
    """
    configuration = copy.deepcopy(template.configuration)
    configuration.triggers = (
        build_hook_triggers(branch, callback_url, trunk_branch)
        + configuration.triggers
    )
    configuration.env_vars.pop(REPO_TEMPLATE_VAR, None)
    configuration.env_vars[REPO_VAR] = repo
    configuration.env_vars[BRANCH_VAR] = branch
    configuration.schedule_type = SCHEDULE_MANUAL
    return Bot(name=f"{template.name}.{branch}", configuration=configuration, id="")


class Reconciler:
    """Creates, deletes and integrates pull-request bots on the Xcode Server."""

    def __init__(
        self,
        registry: BotRegistryClient,
        callback_url: str,
        trunk_branch: str = "master",
        template_name_pattern: Optional[str] = None,
    ):
        self.registry = registry
        self.callback_url = callback_url.rstrip("/")
        self.trunk_branch = trunk_branch
        self.template_name_pattern = template_name_pattern

    def _list_bots(
        self, operation: str, repo: str, branch: str, error: Type[ReconcileError]
    ) -> List[Bot]:
        try:
            return self.registry.list_bots()
        except BridgeError as exc:
            raise error(operation, repo, branch, str(exc), cause=exc) from exc

    @staticmethod
    def _warn_if_ambiguous(kind: str, repo: str, branch: str, bots: List[Bot]) -> None:
        if len(bots) > 1:
            logger.warning(
                "%d %s bots match %s %s: %s",
                len(bots),
                kind,
                repo,
                branch,
                ", ".join(bot.name for bot in bots),
            )

    def _instances(
        self, operation: str, repo: str, branch: str, error: Type[ReconcileError]
    ) -> List[Bot]:
        bots = find_instances(self._list_bots(operation, repo, branch, error), repo, branch)
        if not bots:
            raise NoInstanceError(operation, repo, branch, "no bots found")
        self._warn_if_ambiguous("instance", repo, branch, bots)
        return bots

    def create_bot(self, repo: str, branch: str) -> List[Bot]:
        """
        Duplicate every template of ``repo`` into a bot tracking ``branch``.

        Duplications are independent; a failure stops the loop but earlier
        bots stay created.
        """
        bots = self._list_bots("create_bot", repo, branch, CreateError)
        templates = find_templates(bots, repo, self.template_name_pattern)
        if not templates:
            raise NoTemplateError("create_bot", repo, branch, "no templates for repo")
        self._warn_if_ambiguous("template", repo, branch, templates)
        created = []
        for template in templates:
            bot = derive_instance_bot(
                template, repo, branch, self.callback_url, self.trunk_branch
            )
            try:
                self.registry.duplicate_bot(template.id, bot)
            except BridgeError as exc:
                raise CreateError(
                    "create_bot", repo, branch, f"{template.name}: {exc}", cause=exc
                ) from exc
            created.append(bot)
        return created

    def delete_bot(self, repo: str, branch: str) -> List[Bot]:
        bots = self._instances("delete_bot", repo, branch, DeleteError)
        for bot in bots:
            try:
                self.registry.delete_bot(bot.id)
            except BridgeError as exc:
                raise DeleteError(
                    "delete_bot", repo, branch, f"{bot.name}: {exc}", cause=exc
                ) from exc
        return bots

    def integrate_bot(self, repo: str, branch: str) -> List[Bot]:
        """
        Queue an integration on every bot for ``branch``.

        Runs are never clean: re-downloading sources takes far longer than
        the stale build products cost. Every bot is attempted; failures are
        reported together.
        """
        bots = self._instances("integrate_bot", repo, branch, IntegrateError)
        failures = []
        for bot in bots:
            try:
                self.registry.trigger_integration(bot.id, should_clean=False)
            except BridgeError as exc:
                logger.error("Integration of %s failed: %s", bot.name, exc)
                failures.append((bot, exc))
        if failures:
            detail = "; ".join(f"{bot.name}: {exc}" for bot, exc in failures)
            raise IntegrateError(
                "integrate_bot", repo, branch, detail, cause=failures[0][1]
            )
        return bots

    def handle_event(self, repo: str, branch: str, status: str) -> EventOutcome:
        """Apply a pull-request status change; unknown statuses are a no-op."""
        try:
            action = action_for_status(status)
        except UnrecognizedEventError as exc:
            logger.warning("Ignoring %s %s: %s", repo, branch, exc)
            return EventOutcome(repo, branch, status, EventAction.IGNORE, note=str(exc))

        steps: List[Callable[[str, str], List[Bot]]]
        if action == EventAction.CREATE:
            steps = [self.create_bot, self.integrate_bot]
        elif action == EventAction.DELETE:
            steps = [self.delete_bot]
        else:
            steps = [self.integrate_bot]

        outcome = EventOutcome(repo, branch, status, action)
        for step in steps:
            name = step.__name__
            logger.info("%s %s %s", name, repo, branch)
            bots = step(repo, branch)
            logger.info("%s %s %s succeeded", name, repo, branch)
            for bot in bots:
                if bot.name not in outcome.bots:
                    outcome.bots.append(bot.name)
        return outcome
