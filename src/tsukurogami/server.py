import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .config import BridgeConfig
from .integrations.bitbucket import BitbucketClient
from .integrations.xcode import BotRegistryClient
from .logging_utils import BridgeLogging, safe_log, setup_logging
from .network import callback_base_url
from .reconciler import Reconciler
from .relay import IntegrationRelay
from .routes import build_bridge_routes

logger = logging.getLogger(__name__)


def create_app(
    config: BridgeConfig,
    *,
    registry: Optional[BotRegistryClient] = None,
    notifier: Optional[BitbucketClient] = None,
    bridge_logging: Optional[BridgeLogging] = None,
    callback_url: Optional[str] = None,
) -> FastAPI:
    """
    Build the bridge application.

    Clients passed in are owned by the caller; clients built here from the
    configuration are closed on shutdown.
    """
    owns_logging = bridge_logging is None
    if bridge_logging is None:
        bridge_logging = setup_logging(config.log)
    owned_clients = []
    if registry is None:
        registry = BotRegistryClient(
            config.xcode_url, config.xcode_credentials, verify=config.verify_tls
        )
        owned_clients.append(registry)
    if notifier is None:
        notifier = BitbucketClient(
            config.bitbucket_url,
            config.bitbucket_credentials,
            verify=config.verify_tls,
        )
        owned_clients.append(notifier)

    # Baked into every generated bot script; those run detached on the
    # Xcode Server and cannot ask us where we are.
    callback_url = callback_url or callback_base_url(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        safe_log(
            logger,
            logging.INFO,
            f"Bridging {config.xcode_url} to {config.bitbucket_url}; "
            f"bots call back on {callback_url}",
        )
        try:
            yield
        finally:
            for client in owned_clients:
                client.close()
            if owns_logging:
                bridge_logging.stop()

    app = FastAPI(redirect_slashes=False, lifespan=lifespan)
    app.state.config = config
    app.state.callback_url = callback_url
    app.state.log_buffer = bridge_logging.buffer
    app.state.reconciler = Reconciler(
        registry,
        callback_url,
        trunk_branch=config.trunk_branch,
        template_name_pattern=config.template_name_pattern,
    )
    app.state.relay = IntegrationRelay(notifier, config.build_url)
    app.include_router(build_bridge_routes())
    return app
