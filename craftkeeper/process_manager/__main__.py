"""Run the server manager as a persistent MCP daemon over HTTP.

Usage:
    python -m craftkeeper.process_manager [--port PORT] [--env FILE]

Servers started through the daemon keep running across client
sessions; on SIGINT/SIGTERM every running server is stopped first.
"""

import argparse
import asyncio
import logging
import signal
from pathlib import Path

import uvicorn

from craftkeeper.config import Config
from craftkeeper.process_manager.server import create_server
from craftkeeper.process_manager.supervisor import ProcessSupervisor

log = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [craftkeeper] %(levelname)s %(message)s"


async def serve(config: Config, port: int) -> None:
    supervisor = ProcessSupervisor.from_config(config)
    server = create_server(supervisor=supervisor, port=port)

    # Run uvicorn in the same event loop so the supervisor's async
    # tasks (stream readers, exit waiters) stay alive.
    app = server.streamable_http_app()
    uvi_config = uvicorn.Config(
        app, host="127.0.0.1", port=port, log_level="info",
    )
    uvi = uvicorn.Server(uvi_config)

    # Use _serve() instead of serve() to bypass uvicorn's
    # capture_signals() context manager, which would replace our
    # loop signal handlers.
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    serve_task = asyncio.create_task(uvi._serve())

    await shutdown.wait()
    log.info("Signal received — shutting down")

    uvi.should_exit = True
    await serve_task
    log.info("Stopping all running servers")
    await supervisor.stop_all()


def main() -> None:
    parser = argparse.ArgumentParser(description="craftkeeper MCP daemon")
    parser.add_argument(
        "--port", type=int, default=None,
        help="Port to listen on (default: MCP_PORT or 8902)",
    )
    parser.add_argument(
        "--env", type=Path, default=None,
        help="Path to a .env file with configuration",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    config = Config.from_env(args.env)
    port = args.port or config.mcp_port

    log.info("Starting craftkeeper on http://127.0.0.1:%d/mcp", port)
    asyncio.run(serve(config, port))


if __name__ == "__main__":
    main()
