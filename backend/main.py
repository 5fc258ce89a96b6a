"""
Gossip Chat: FastAPI application entry point.

Joins the gossip cluster, keeps the membership directory in sync and
serves the chat over a REST API and a WebSocket endpoint.
"""

import argparse
import asyncio
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from api.routes import init_routes, router
from api.view import ChatView, ViewLogHandler
from api.websocket import ConnectionManager
from config import API_HOST, API_PORT, ConfigurationError, LocalIdentity, load_identity
from membership.directory import Directory
from membership.reconcile import ReconciliationScheduler
from protocol.router import MessageRouter
from substrate.gossip import GossipNode

# --- Logging ---
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
logger = logging.getLogger(__name__)


def create_app(identity: LocalIdentity, listen_port: int, seeds: list[str] | None = None) -> FastAPI:
    """Build the services for one chat node and the app that serves them."""
    ws_manager = ConnectionManager()
    chat_view = ChatView(ws_manager)
    gossip_node = GossipNode(identity.address, listen_port, seeds=seeds)
    directory = Directory(identity, presenter=chat_view)
    message_router = MessageRouter(identity, directory, gossip_node.broadcast, chat_view)
    scheduler = ReconciliationScheduler(directory, gossip_node.broadcast)

    log_handler = ViewLogHandler(chat_view)
    log_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start/stop background services."""
        logger.info(f"Starting chat node {identity.display_name} at {identity.address}...")
        chat_view.bind(asyncio.get_running_loop())
        logging.getLogger().addHandler(log_handler)

        try:
            # Wire up substrate events
            gossip_node.add_status_listener(directory)
            gossip_node.add_broadcast_listener(message_router)

            await gossip_node.start()
            scheduler.start()

            logger.info(f"Chat node ready, gossip on {identity.address}")

            yield

        except Exception as e:
            logger.error(f"Startup failed: {e}", exc_info=True)
            raise
        finally:
            logger.info("Shutting down chat node...")
            await scheduler.stop()
            await gossip_node.stop()
            logging.getLogger().removeHandler(log_handler)
            chat_view.unbind()

    app = FastAPI(
        title="Gossip Chat",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Inject services into routes
    init_routes(directory, message_router, chat_view, gossip_node)
    app.include_router(router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await ws_manager.connect(websocket)
        try:
            await ws_manager.send(
                websocket, "roster", {"peers": [e.model_dump() for e in directory.roster()]}
            )
            while True:
                # Chat is sent over the REST API; keep the connection alive
                await websocket.receive_text()
        except WebSocketDisconnect:
            await ws_manager.disconnect(websocket)
        except Exception:
            await ws_manager.disconnect(websocket)

    return app


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Gossip chat node")
    parser.add_argument("--client", default="",
                        help="Address of an existing client, if empty do not attempt to connect")
    parser.add_argument("--listenport", type=int, default=0,
                        help="Port on which client listens for connections to other clients")
    parser.add_argument("--username", default="", help="Friendly name for this client")
    parser.add_argument("--api-host", default=API_HOST, help="Host the REST/WebSocket API binds to")
    parser.add_argument("--api-port", type=int, default=API_PORT, help="Port of the REST/WebSocket API")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    import uvicorn

    args = parse_args(argv)
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        identity = load_identity(args.username, args.listenport)
    except ConfigurationError as e:
        logger.error(str(e))
        return 1

    seeds = [args.client] if args.client else []
    app = create_app(identity, args.listenport, seeds=seeds)

    uvicorn.run(
        app,
        host=args.api_host,
        port=args.api_port,
        log_level="debug" if args.debug else "info",
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
