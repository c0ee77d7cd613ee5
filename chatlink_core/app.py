"""Application factory and command-line entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

from aiohttp import web

from .api import MANAGER_KEY, SERVICE_KEY, cors_middleware, error_middleware, setup_routes
from .capability import WsCapabilityClient
from .config import GatewayConfig, load_config
from .manager import ConnectionManager
from .operations import MessagingService
from .session_store import SessionStore

_LOGGER = logging.getLogger(__name__)

MAX_BODY_SIZE = 50 * 1024 * 1024

STORE_KEY = web.AppKey("session_store", SessionStore)


def build_manager(config: GatewayConfig, session_store: SessionStore) -> ConnectionManager:
    """Create a manager whose clients relay to the configured sidecar."""

    def client_factory() -> WsCapabilityClient:
        return WsCapabilityClient(
            config.capability_host,
            config.capability_port,
            client_id=config.client_id,
            path=config.capability_path,
            data_path=str(session_store.session_dir),
            request_timeout=config.request_timeout,
        )

    return ConnectionManager(
        client_factory,
        session_store,
        policy=config.retry_policy(),
        client_id=config.client_id,
    )


async def _on_startup(app: web.Application) -> None:
    await app[STORE_KEY].ensure()
    downloads_dir = app[SERVICE_KEY].downloads_dir
    await asyncio.to_thread(downloads_dir.mkdir, parents=True, exist_ok=True)
    _LOGGER.info("Directories ready")
    app[MANAGER_KEY].request_start()


async def _on_cleanup(app: web.Application) -> None:
    await app[MANAGER_KEY].close()


def create_app(
    config: GatewayConfig,
    *,
    manager: ConnectionManager | None = None,
    session_store: SessionStore | None = None,
    autostart: bool = True,
) -> web.Application:
    """Build the aiohttp application.

    Args:
        config: Gateway configuration
        manager: Pre-built connection manager (built from config if omitted)
        session_store: Session store (built from config if omitted)
        autostart: Prepare directories and start the first initialization
            when the application starts
    """
    store = session_store or SessionStore(config.data_dir, config.client_id)
    manager = manager or build_manager(config, store)

    app = web.Application(
        middlewares=[cors_middleware, error_middleware],
        client_max_size=MAX_BODY_SIZE,
    )
    app[MANAGER_KEY] = manager
    app[SERVICE_KEY] = MessagingService(manager, config.downloads_dir)
    app[STORE_KEY] = store

    setup_routes(app)

    if autostart:
        app.on_startup.append(_on_startup)
    app.on_cleanup.append(_on_cleanup)
    return app


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="chatlink-gateway",
        description="HTTP gateway for a chat-platform account",
    )
    parser.add_argument("--config", type=Path, default=None, help="YAML config file")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _LOGGER.info(
        "Starting gateway on %s:%d (sidecar ws://%s:%d%s)",
        config.host,
        config.port,
        config.capability_host,
        config.capability_port,
        config.capability_path,
    )
    web.run_app(create_app(config), host=config.host, port=config.port)


if __name__ == "__main__":
    main()
