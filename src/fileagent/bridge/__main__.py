"""CLI entry point for ``fileagent-bridge``.

Configure it as the command of a stdio MCP server in the client, e.g.::

    {"command": "fileagent-bridge", "env": {"MCP_API_KEY": "..."}}
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import threading

from fileagent.bridge.relay import BridgeConnectionError, StdioSseBridge

logger = logging.getLogger("fileagent.bridge")

DEFAULT_URL = "http://localhost:3000"
DEFAULT_LOG_PATH = "/tmp/fileagent_debug.log"


def _configure_logging() -> None:
    path = os.environ.get("FILEAGENT_BRIDGE_LOG", DEFAULT_LOG_PATH)
    try:
        handler: logging.Handler = logging.FileHandler(path, encoding="utf-8")
    except OSError:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("[%(asctime)s] %(message)s"))
    root = logging.getLogger("fileagent")
    root.addHandler(handler)
    root.setLevel(logging.DEBUG)


def _pump_stdin(
    loop: asyncio.AbstractEventLoop, bridge: StdioSseBridge,
) -> None:
    for line in sys.stdin:
        loop.call_soon_threadsafe(bridge.submit, line)
    loop.call_soon_threadsafe(bridge.end_input)


async def _run(url: str, api_key: str) -> None:
    bridge = StdioSseBridge(url, api_key=api_key)
    # Daemon thread: a blocked stdin read must not keep the process alive.
    threading.Thread(
        target=_pump_stdin,
        args=(asyncio.get_running_loop(), bridge),
        name="stdin-reader",
        daemon=True,
    ).start()
    await bridge.run()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="fileagent-bridge",
        description="Relay a stdio MCP client to a FileAgent gateway",
    )
    parser.add_argument(
        "--url",
        default=os.environ.get("FILEAGENT_URL", DEFAULT_URL),
        help=f"Gateway base URL (default: $FILEAGENT_URL or {DEFAULT_URL})",
    )
    args = parser.parse_args(argv)

    _configure_logging()
    logger.info("Bridge started (%s)", args.url)
    try:
        asyncio.run(_run(args.url, os.environ.get("MCP_API_KEY", "")))
    except BridgeConnectionError as e:
        logger.error("%s", e)
        print(f"[Bridge Error] {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
