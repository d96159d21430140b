"""
HTTP endpoints called by Bitbucket (pull-request events), by the scripts
injected into Xcode bots (integration results) and by operators (logs).
"""

import logging
from typing import List, Sequence

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse
from starlette.datastructures import QueryParams

from .errors import BridgeError, ValidationError
from .logging_utils import safe_log
from .reconciler import EventAction

logger = logging.getLogger(__name__)

PULL_REQUEST_PARAMS = ("repo", "branch", "status")
INTEGRATION_PARAMS = ("commit", "status", "bot", "integration")


def require_params(params: QueryParams, names: Sequence[str]) -> List[str]:
    """
    Return the first value given for each of ``names``.

    Blank values count as missing.
    """
    values = [(params.getlist(name) or [""])[0].strip() for name in names]
    missing = [name for name, value in zip(names, values) if not value]
    if missing:
        raise ValidationError(missing)
    return values


def _text(body: str, status_code: int) -> PlainTextResponse:
    return PlainTextResponse(f"{body}\n", status_code=status_code)


def build_bridge_routes() -> APIRouter:
    router = APIRouter()

    @router.get("/pullRequestUpdated")
    def pull_request_updated(request: Request):
        try:
            repo, branch, status = require_params(
                request.query_params, PULL_REQUEST_PARAMS
            )
        except ValidationError as exc:
            safe_log(logger, logging.WARNING, "%s %s", request.url, exc)
            return _text(str(exc), 400)

        reconciler = request.app.state.reconciler
        try:
            outcome = reconciler.handle_event(repo, branch, status)
        except BridgeError as exc:
            safe_log(logger, logging.ERROR, "pull request event failed", exc=exc)
            return _text(str(exc), 500)
        # Accepted even when nothing was done.
        if outcome.action == EventAction.IGNORE:
            safe_log(logger, logging.INFO, outcome.summary())
        return _text(outcome.summary(), 201)

    @router.get("/integrationUpdated")
    def integration_updated(request: Request):
        try:
            commit, status, bot, integration = require_params(
                request.query_params, INTEGRATION_PARAMS
            )
        except ValidationError as exc:
            safe_log(logger, logging.WARNING, "%s %s", request.url, exc)
            return _text(str(exc), 500)

        relay = request.app.state.relay
        try:
            build_status = relay.relay(commit, status, bot, integration)
        except BridgeError as exc:
            safe_log(logger, logging.ERROR, "integration relay failed", exc=exc)
            return _text(str(exc), 500)
        return _text(f"{build_status.state} {build_status.name} {commit}", 200)

    @router.get("/logs")
    def logs(request: Request):
        return PlainTextResponse(request.app.state.log_buffer.render())

    return router
