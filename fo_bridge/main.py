"""
Entry point for the bridge.

- stdio: MCP over stdin/stdout (nothing else may write to stdout)
- http: FastAPI app with the HTTP query API and MCP mounted at /mcp

`fo_bridge.server` reads FO_BRIDGE_CONFIG/HOST/PORT at import time, so it is
imported only after the `.env` file has been applied.
"""
from __future__ import annotations

import sys

import uvicorn
from dotenv import find_dotenv, load_dotenv

from .config import BackendSettings
from .env_utils import first_env
from .errors import ConfigError
from .logging_setup import setup_logger


def load_environment() -> bool:
    """Apply the `.env` nearest the working directory; existing variables win."""
    return load_dotenv(find_dotenv(usecwd=True))


def main() -> None:
    load_environment()
    from .server import CONFIG, mcp, server_cfg

    logger = setup_logger(CONFIG)
    transport = (first_env("FO_BRIDGE_TRANSPORT", default=str(server_cfg.get("transport", "stdio"))) or "").lower()

    try:
        # Fail fast before any transport starts
        BackendSettings.from_env(CONFIG)

        if transport == "stdio":
            logger.info("Starting MCP server on stdio transport")
            mcp.run(transport="stdio")
        elif transport == "http":
            from .http_app import create_app

            explicit_port = first_env("FO_BRIDGE_PORT", "PORT", "HTTP_PORT")
            port = int(explicit_port or server_cfg.get("port", 3000))
            # A platform-assigned port means we are deployed; listen on all interfaces
            default_host = "0.0.0.0" if explicit_port else str(server_cfg.get("host", "127.0.0.1"))
            host = first_env("FO_BRIDGE_HOST", "HOST", default=default_host)

            app = create_app()
            logger.info(f"Starting HTTP API on http://{host}:{port} (MCP endpoint /mcp, healthcheck /health)")
            uvicorn.run(
                app,
                host=host,
                port=port,
                log_level=str(server_cfg.get("log_level", "INFO")).lower(),
                server_header=False,
            )
        else:
            raise ConfigError(f"Unknown transport '{transport}'. Use stdio or http.")
    except ConfigError as exc:
        logger.error(str(exc))
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Server shutdown requested")
        sys.exit(0)
    except Exception as exc:
        logger.error(f"Failed to start bridge: {exc}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
