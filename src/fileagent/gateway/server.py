"""FileAgent gateway: MCP tool server over the sandboxed folder.

Uses the low-level ``mcp.server.lowlevel.Server`` so ``call_tool`` can
return a ``CallToolResult`` directly and every failure reaches the
client as a structured ``{"error", "detail"}`` payload rather than a
protocol error.

A call passes through, in order:

1. catalog lookup (``UNKNOWN_TOOL``)
2. argument validation against the tool's schema (``VALIDATION_ERROR``)
3. the approval gate, when ``approve_requests`` is on (``USER_DENIED``)
4. the sandbox guard, using the root read *after* approval
   (``CONFIGURATION_ERROR`` / ``SANDBOX_VIOLATION``)
5. the handler, in a worker thread (``IO_ERROR``)

A denied call never touches the filesystem.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import mcp.types as types
from mcp.server.lowlevel import Server

from fileagent.gateway.approval import ApprovalCoordinator
from fileagent.gateway.channels import build_channels
from fileagent.gateway.context import GatewayContext
from fileagent.gateway.errors import (
    GatewayError,
    ToolIOError,
    UnknownTool,
    UserDenied,
)
from fileagent.gateway.sandbox import resolve_in_root
from fileagent.gateway.sessions import SessionRegistry
from fileagent.gateway.tools import (
    ToolDefinition,
    get_tool,
    list_tools,
    validate_arguments,
)
from fileagent.version import __version__

logger = logging.getLogger("fileagent.gateway.server")

SERVER_NAME = "fileagent"


def _definition_to_tool(definition: ToolDefinition) -> types.Tool:
    return types.Tool(
        name=definition.name,
        description=definition.description,
        inputSchema=definition.input_schema,
        annotations=types.ToolAnnotations(
            readOnlyHint=definition.read_only,
            destructiveHint=not definition.read_only,
        ),
    )


def _error_result(payload: dict[str, str]) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=json.dumps(payload))],
        isError=True,
    )


class FileAgentGateway:
    """Exposes the tool catalog to MCP sessions and dispatches calls.

    One instance serves every session; each SSE connection runs its own
    ``Server.run`` loop over a private pair of streams (see
    :meth:`serve_session`).

    Args:
        context: Shared config, log buffer and host events.
        coordinator: Approval coordinator.  Built from the configured
            notification channels when omitted.
        registry: Live session registry used by the transport.
    """

    def __init__(
        self,
        context: GatewayContext | None = None,
        coordinator: ApprovalCoordinator | None = None,
        registry: SessionRegistry | None = None,
    ) -> None:
        self._context = context if context is not None else GatewayContext()
        if coordinator is None:
            coordinator = ApprovalCoordinator(build_channels(self._context))
        self._coordinator = coordinator
        self._registry = registry if registry is not None else SessionRegistry()
        self._server = Server(SERVER_NAME, version=__version__)
        self._setup_handlers()

    @property
    def context(self) -> GatewayContext:
        return self._context

    @property
    def coordinator(self) -> ApprovalCoordinator:
        return self._coordinator

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def server(self) -> Server:
        return self._server

    # -- handler registration ------------------------------------------------

    def _setup_handlers(self) -> None:
        gateway = self

        @self._server.list_tools()
        async def handle_list_tools() -> list[types.Tool]:
            return gateway.list_tools()

        # Arguments are validated by the dispatcher so that schema
        # failures come back as VALIDATION_ERROR payloads.
        @self._server.call_tool(validate_input=False)
        async def handle_call_tool(
            name: str, arguments: dict[str, Any] | None,
        ) -> types.CallToolResult:
            return await gateway.call_tool(name, arguments)

    # -- sessions ------------------------------------------------------------

    async def serve_session(self, read_stream, write_stream) -> None:
        """Run the MCP protocol loop for one client session.

        Returns when *read_stream* is closed by the transport.
        """
        await self._server.run(
            read_stream,
            write_stream,
            self._server.create_initialization_options(),
        )

    # -- tools ---------------------------------------------------------------

    def list_tools(self) -> list[types.Tool]:
        return [_definition_to_tool(d) for d in list_tools()]

    async def call_tool(
        self, name: str, arguments: dict[str, Any] | None,
    ) -> types.CallToolResult:
        """Dispatch one tool call. Never raises for tool-level failures."""
        arguments = arguments or {}
        try:
            text = await self._dispatch(name, arguments)
        except GatewayError as e:
            logger.error("Tool %s failed: %s: %s", name, e.code, e)
            return _error_result(e.to_payload())
        except Exception as e:
            logger.exception("Unexpected error in tool %s", name)
            return _error_result({
                "error": "INTERNAL_ERROR",
                "detail": f"{type(e).__name__}: {e}",
            })
        return types.CallToolResult(
            content=[types.TextContent(type="text", text=text)],
        )

    async def _dispatch(self, name: str, arguments: dict[str, Any]) -> str:
        definition = get_tool(name)
        if definition is None:
            raise UnknownTool(f"Unknown tool: {name}")
        validate_arguments(definition, arguments)
        logger.info("Tool call: %s", name)

        config = self._context.config
        if config.approve_requests:
            approved = await self._coordinator.request(
                name, arguments, timeout=config.approval_timeout,
            )
            if not approved:
                raise UserDenied(f"User denied {name}")

        # Re-read: the root may have changed while the ticket was open.
        root_value = self._context.config.allowed_path
        root = resolve_in_root(root_value)
        target = resolve_in_root(
            root_value, arguments.get(definition.path_argument) or "",
        )

        try:
            return await asyncio.to_thread(
                definition.handler, root, target, arguments,
            )
        except (OSError, UnicodeDecodeError) as e:
            raise ToolIOError(f"{name}: {e}") from e
