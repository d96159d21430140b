"""
Decide which bots belong to which repository and branch.

Bots are identified by reserved build environment variables rather than by
name. A template bot carries ``TSUKUROGAMI_REPO_TEMPLATE=<repo>``; a bot
created for a pull request carries ``TSUKUROGAMI_REPO`` and
``TSUKUROGAMI_BRANCH``. All comparisons ignore case.
"""

from typing import Iterable, List, Optional

from .models import Bot

REPO_TEMPLATE_VAR = "TSUKUROGAMI_REPO_TEMPLATE"
REPO_VAR = "TSUKUROGAMI_REPO"
BRANCH_VAR = "TSUKUROGAMI_BRANCH"


def _same(left: Optional[str], right: str) -> bool:
    return left is not None and left.casefold() == right.casefold()


def is_instance(bot: Bot) -> bool:
    config = bot.configuration
    return config.env_str(REPO_VAR) is not None and config.env_str(BRANCH_VAR) is not None


def is_template_for(bot: Bot, repo: str, name_pattern: Optional[str] = None) -> bool:
    """
    True when ``bot`` is the template for ``repo``.

    ``name_pattern`` (e.g. ``"{repo}-template"``) lets untagged bots qualify
    by name. Instance bots never qualify, whatever their name.
    """
    if is_instance(bot):
        return False
    if _same(bot.configuration.env_str(REPO_TEMPLATE_VAR), repo):
        return True
    if name_pattern:
        return _same(bot.name, name_pattern.replace("{repo}", repo))
    return False


def is_instance_of(bot: Bot, repo: str, branch: str) -> bool:
    config = bot.configuration
    return _same(config.env_str(REPO_VAR), repo) and _same(
        config.env_str(BRANCH_VAR), branch
    )


def find_templates(
    bots: Iterable[Bot], repo: str, name_pattern: Optional[str] = None
) -> List[Bot]:
    return [bot for bot in bots if is_template_for(bot, repo, name_pattern)]


def find_instances(bots: Iterable[Bot], repo: str, branch: str) -> List[Bot]:
    return [bot for bot in bots if is_instance_of(bot, repo, branch)]


def describe_role(bot: Bot) -> str:
    """Human-readable role of a bot, as shown by ``tsukurogami bots``."""
    config = bot.configuration
    if is_instance(bot):
        return f"instance {config.env_str(REPO_VAR)}@{config.env_str(BRANCH_VAR)}"
    template_repo = config.env_str(REPO_TEMPLATE_VAR)
    if template_repo is not None:
        return f"template {template_repo}"
    return "untracked"
