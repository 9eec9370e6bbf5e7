"""FastAPI server for the simulation relay.

Routes are organized into helper registration functions:
- WebSocket observer endpoint (``server.websocket_path``, default /ws)
- Read-only HTTP surface: /health, /data, /api/state, /api/runs,
  /api/nodes/{node_id}/history
"""

from __future__ import annotations

import argparse
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator

from dotenv import load_dotenv
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from .config import get_validated_config, load_config
from .config_schema import AppConfig
from .relay.session import Session

logger = logging.getLogger(__name__)


def _register_websocket_routes(app: FastAPI, session: Session, path: str) -> None:
    """Observer endpoint: JSON text frames in both directions."""

    @app.websocket(path)
    async def websocket_endpoint(websocket: WebSocket) -> None:
        await websocket.accept()
        client = await session.connect(websocket)
        try:
            while True:
                text = await websocket.receive_text()
                await session.handle_message(client.id, text)
        except WebSocketDisconnect:
            logger.debug("Client %s closed the connection", client.id)
        except RuntimeError as e:
            # Raised by receive_text once the server side has closed
            logger.debug("WebSocket for %s no longer usable: %s", client.id, e)
        finally:
            await session.disconnect(client.id)


def _register_read_routes(app: FastAPI, session: Session) -> None:
    """Polling endpoints; not part of the event protocol."""

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return session.health()

    @app.get("/data")
    async def data() -> dict[str, Any]:
        return session.data()

    @app.get("/api/state")
    async def get_state() -> dict[str, Any]:
        return session.state()

    @app.get("/api/runs")
    async def get_runs() -> dict[str, Any]:
        current = session.current_run
        return {
            "current": current.summary() if current and not current.sealed else None,
            "history": session.run_history,
        }

    @app.get("/api/nodes/{node_id}/history")
    async def get_node_history(node_id: int) -> dict[str, Any]:
        return session.node_history(node_id)


def create_app(config: AppConfig | None = None, session: Session | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Validated configuration (the loaded global config when omitted)
        session: Pre-built session, mainly for tests
    """
    config = config or (session.config if session else get_validated_config())
    session = session or Session(config)

    app = FastAPI(
        title="Simulation Relay",
        description="Real-time relay of simulation events to observers",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Lifespan context manager for startup/shutdown."""
        logger.info("Relay ready on %s", config.server.websocket_path)
        yield
        await session.shutdown()

    app.router.lifespan_context = lifespan
    app.state.session = session

    _register_websocket_routes(app, session, config.server.websocket_path)
    _register_read_routes(app, session)

    return app


def configure_logging(config: AppConfig) -> None:
    logging.basicConfig(level=config.logging.level, format=config.logging.format)


def run_server(
    config: AppConfig,
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Run the relay server."""
    import uvicorn

    app = create_app(config)
    uvicorn.run(
        app,
        host=host or config.server.host,
        port=port or config.server.port,
        log_level=config.logging.level.lower(),
    )


def main(argv: list[str] | None = None) -> None:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Simulation event relay server")
    parser.add_argument(
        "--config",
        default=os.environ.get("SIMRELAY_CONFIG"),
        help="Path to config YAML (default: $SIMRELAY_CONFIG or config/config.yaml)",
    )
    parser.add_argument("--host", default=None, help="Host to bind to")
    parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    parser.add_argument("--log-level", default=None, help="Override logging.level")
    args = parser.parse_args(argv)

    config = load_config(Path(args.config) if args.config else None)
    if args.log_level:
        config = config.model_copy(update={
            "logging": config.logging.model_copy(update={"level": args.log_level.upper()})
        })
    configure_logging(config)

    run_server(config, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
