"""Control plane: the host UI's handle on a running gateway.

The host (a desktop shell, a tray app, or the headless CLI) drives the
gateway through :class:`ControlPlane` and listens to the host events
published on the context's ``EventBus``.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Any, Callable

import uvicorn

from fileagent.gateway.channels import build_channels
from fileagent.gateway.context import GatewayContext, HostEvent
from fileagent.gateway.server import FileAgentGateway
from fileagent.gateway.transport import build_app

logger = logging.getLogger("fileagent.gateway.control")

# Config fields that change which channels exist.
_CHANNEL_FIELDS = frozenset({
    "notifications", "approval_webhook_url", "approvalWebhookUrl",
})


def _bind(host: str, port: int) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    sock.set_inheritable(True)
    return sock


# picker() -> chosen directory, or None when cancelled
DirectoryPicker = Callable[[], "str | None"]


class ControlPlane:
    """Start/stop the HTTP server, edit config, answer approvals.

    Args:
        gateway: The gateway to serve.  A default one over a fresh
            context is built when omitted.
        picker: Native folder chooser used by :meth:`pick_directory`.
    """

    def __init__(
        self,
        gateway: FileAgentGateway | None = None,
        picker: DirectoryPicker | None = None,
    ) -> None:
        self._gateway = gateway if gateway is not None else FileAgentGateway()
        self._picker = picker
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task | None = None
        self.port: int | None = None

    @property
    def gateway(self) -> FileAgentGateway:
        return self._gateway

    @property
    def context(self) -> GatewayContext:
        return self._gateway.context

    @property
    def running(self) -> bool:
        return self.context.running

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Bind the configured host/port and serve in the background.

        Calling ``start`` on a running gateway is a no-op.

        Raises:
            OSError: the port cannot be bound.
            RuntimeError: the HTTP server stopped before it was serving.
        """
        if self.running:
            return
        config = self.context.config
        sock = _bind(config.host, config.port)
        self.context.capture_logs()
        self._server = uvicorn.Server(uvicorn.Config(
            build_app(self._gateway),
            host=config.host,
            port=config.port,
            log_level="warning",
            timeout_graceful_shutdown=5,
        ))
        self._serve_task = asyncio.create_task(
            self._server.serve(sockets=[sock]),
        )
        while not self._server.started and not self._serve_task.done():
            await asyncio.sleep(0.01)
        if self._serve_task.done():
            task, self._serve_task, self._server = self._serve_task, None, None
            sock.close()
            self.context.release_logs()
            # Re-raises a startup failure; a clean early exit is reported too.
            await task
            raise RuntimeError("HTTP server exited during startup")
        self.context.running = True
        self.port = sock.getsockname()[1]
        logger.info(
            "Server started on http://%s:%d/sse", config.host, self.port,
        )
        if not config.allowed_path:
            logger.warning("No allowed directory set; tool calls will fail")
        self.context.publish_status()

    async def stop(self) -> None:
        """Close sessions, deny open tickets, stop listening."""
        if not self.running:
            return
        closed = self._gateway.registry.close_all()
        denied = self._gateway.coordinator.deny_all(source="shutdown")
        if self._server is not None:
            self._server.should_exit = True
        if self._serve_task is not None:
            try:
                await self._serve_task
            except Exception:
                logger.exception("HTTP server exited with an error")
        self._server = None
        self._serve_task = None
        self.port = None
        self.context.running = False
        logger.info(
            "Server stopped (%d sessions closed, %d approvals denied)",
            closed, denied,
        )
        self.context.publish_status()
        self.context.release_logs()

    async def wait(self) -> None:
        """Block until the HTTP server exits on its own."""
        if self._serve_task is not None:
            await self._serve_task

    # -- host commands -------------------------------------------------------

    def update_config(self, changes: dict[str, Any]) -> dict[str, Any]:
        """Apply a partial config update. Returns the new config.

        A new port or bind host only takes effect after a restart.

        Raises:
            GatewayConfigError: unknown field or invalid value.
        """
        config = self.context.update_config(changes)
        if _CHANNEL_FIELDS.intersection(changes):
            self._gateway.coordinator.set_channels(build_channels(self.context))
        return config.to_dict()

    def resolve_approval(self, ticket_id: str, approved: bool) -> bool:
        """The operator's explicit decision from the in-app prompt."""
        return self._gateway.coordinator.resolve(
            ticket_id, approved, source="host",
        )

    def dismiss_approval(self, ticket_id: str) -> bool:
        """The prompt was closed without a decision: implicit deny."""
        return self._gateway.coordinator.resolve(
            ticket_id, False, source="host-dismissed",
        )

    def pick_directory(self) -> str | None:
        """Ask the injected picker for a folder. ``None`` when cancelled."""
        if self._picker is None:
            logger.warning("No directory picker available")
            return None
        chosen = self._picker()
        return chosen or None

    def status(self) -> dict[str, Any]:
        return self.context.status()

    def subscribe(self) -> asyncio.Queue[HostEvent]:
        """Queue receiving every host event from now on."""
        return self.context.events.subscribe()

    def unsubscribe(self, queue: asyncio.Queue[HostEvent]) -> None:
        self.context.events.unsubscribe(queue)


# ---------------------------------------------------------------------------
# Headless entry point
# ---------------------------------------------------------------------------

async def _serve(control: ControlPlane) -> None:
    await control.start()
    try:
        await control.wait()
    finally:
        await control.stop()


def run_gateway(argv: list[str] | None = None) -> None:
    """Parse CLI options and run the gateway until interrupted.

    Without a config file the gateway asks for approval through desktop
    notifications, since there is no host UI to show in-app prompts.
    """
    import argparse
    import os
    import sys

    from fileagent.gateway.config import (
        GatewayConfig,
        apply_config_update,
        load_gateway_config,
    )
    from fileagent.gateway.context import GatewayContext
    from fileagent.gateway.errors import GatewayConfigError

    parser = argparse.ArgumentParser(
        prog="fileagent-gateway",
        description="Sandboxed file-access MCP gateway with human approval",
    )
    parser.add_argument("--config", help="Path to gateway YAML config file")
    parser.add_argument("--root", help="Folder the agent may access")
    parser.add_argument("--port", type=int, help="Port to listen on")
    parser.add_argument(
        "--no-approval",
        action="store_true",
        default=False,
        help="Run tool calls without asking for approval",
    )
    parser.add_argument(
        "--expose",
        action="store_true",
        default=False,
        help="Listen on all interfaces instead of 127.0.0.1",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    changes: dict[str, Any] = {}
    if args.root:
        changes["allowed_path"] = args.root
    if args.port:
        changes["port"] = args.port
    if args.no_approval:
        changes["approve_requests"] = False
    if args.expose:
        changes["isolation"] = False
    try:
        if args.config:
            config = load_gateway_config(args.config)
        else:
            config = GatewayConfig(
                api_key=os.environ.get("MCP_API_KEY", ""),
                notifications=("desktop",),
            )
        config = apply_config_update(config, changes)
    except GatewayConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    if config.approve_requests and config.notifications == ("host",):
        logger.warning(
            "Only in-app approval is configured and no host UI is attached; "
            "tool calls wait for approval_timeout (or forever when unset)",
        )
    if not config.isolation and not config.api_key:
        logger.warning("Listening on all interfaces without an API key")

    control = ControlPlane(FileAgentGateway(GatewayContext(config=config)))
    try:
        asyncio.run(_serve(control))
    except KeyboardInterrupt:
        pass
    except OSError as e:
        print(f"Cannot start server: {e}", file=sys.stderr)
        sys.exit(1)
