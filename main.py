"""
Main entrypoint: auto-verify worker in background threads + FastAPI server in main thread.

Settings are loaded once from the environment (.env supported). The worker's
timer is started by the app lifespan when ENABLE_AUTO_VERIFY is on; the API runs
in the main thread. On SIGINT/SIGTERM the server shuts down, the worker stops
ticking and the HTTP clients are closed.

Env: DISCORD_TOKEN, DISCORD_GUILD_ID, CONTRACT_{n}_ADDRESS/_ROLE_ID/_RPC_URL, DB_PATH, API_HOST, API_PORT, etc.

Worker only (no API): python -m backend_chaingate.agent_worker.runtime
"""

import os
import sys

# Configure structured JSON logging before other imports that may log
from backend_chaingate.chaingate_logging import get_logger
from backend_chaingate.core.exceptions import ConfigError

logger = get_logger("main")


def main() -> None:
    """Load settings, build services, then run the FastAPI server in the main thread."""
    from backend_chaingate.config import load_settings
    from backend_chaingate.services import build_services

    try:
        settings = load_settings()
    except ConfigError as e:
        logger.error("main_config_error", message=str(e))
        sys.exit(1)

    logger.info(
        "main_settings_loaded",
        contracts=[c.display_name for c in settings.contracts],
        chain_name=settings.chain_name,
        auto_verify=settings.auto_verify_enabled,
    )
    services = build_services(settings)

    from backend_chaingate.api_server.server import create_app
    import uvicorn

    app = create_app(services)
    logger.info("main_server_starting", host=settings.api_host, port=settings.api_port)
    try:
        uvicorn.run(
            app,
            host=settings.api_host,
            port=settings.api_port,
            log_level=os.getenv("LOG_LEVEL", "info").lower(),
            # uvicorn logs go through the structlog root handler
            log_config=None,
        )
    finally:
        services.close()


if __name__ == "__main__":
    main()
