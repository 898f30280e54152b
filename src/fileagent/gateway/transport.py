"""HTTP/SSE transport for the gateway.

Endpoints::

    GET  /sse                     server-push stream for one MCP session
    POST /message?sessionId=<id>  one JSON-RPC message for that session
    GET  /health                  liveness probe

The first event on a new ``/sse`` stream is ``endpoint`` whose data is
the URL the client must POST to.  Every later event is ``message`` with
one JSON-RPC document.  Idle streams get a ``: ping`` comment so that
proxies keep them open.

All routes sit behind :class:`ApiKeyMiddleware`.  CORS is the outermost
layer so preflight requests never need a key.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

import anyio
import mcp.types as types
from mcp.shared.message import SessionMessage
from starlette.applications import Starlette
from starlette.datastructures import Headers, QueryParams
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from fileagent.gateway.errors import AuthorizationError, SessionNotFound

if TYPE_CHECKING:
    from fileagent.gateway.server import FileAgentGateway

logger = logging.getLogger("fileagent.gateway.transport")

KEEPALIVE_INTERVAL = 15.0
MESSAGE_PATH = "/message"


def format_sse(data: str, event: str | None = None) -> str:
    """Encode one server-sent event."""
    lines = []
    if event:
        lines.append(f"event: {event}")
    for line in data.splitlines() or [""]:
        lines.append(f"data: {line}")
    return "\n".join(lines) + "\n\n"


class SseConnection:
    """Streams of one live SSE session.

    ``inbound`` feeds client messages into the MCP server loop;
    ``outbound`` carries the server's messages to the event stream.
    """

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self.created_at = datetime.now(timezone.utc)
        self._inbound_writer, self.inbound_reader = (
            anyio.create_memory_object_stream[SessionMessage | Exception](0)
        )
        self.outbound_writer, self._outbound_reader = (
            anyio.create_memory_object_stream[SessionMessage](0)
        )

    async def deliver(self, message: SessionMessage) -> None:
        """Hand one client message to the session.

        Raises:
            SessionNotFound: the session has already been closed.
        """
        try:
            await self._inbound_writer.send(message)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError) as e:
            raise SessionNotFound(
                f"Session closed: {self.session_id}",
            ) from e

    def close(self) -> None:
        """End the session; the MCP loop exits and the stream follows."""
        self._inbound_writer.close()

    async def receive(self) -> SessionMessage:
        """Next outbound message. Raises ``anyio.EndOfStream`` when done."""
        return await self._outbound_reader.receive()


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

def check_api_key(expected: str, headers: Headers, query: QueryParams) -> None:
    """Accept ``Authorization: Bearer <key>`` or ``?key=<key>``.

    An empty *expected* key disables authentication.

    Raises:
        AuthorizationError: missing or wrong key.
    """
    if not expected:
        return
    supplied = ""
    auth = headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        supplied = auth[7:].strip()
    if not supplied:
        supplied = query.get("key", "")
    if not supplied or not hmac.compare_digest(
        supplied.encode("utf-8"), expected.encode("utf-8"),
    ):
        raise AuthorizationError("Invalid or missing API key")


class ApiKeyMiddleware:
    """ASGI middleware rejecting HTTP requests without the API key.

    ``key_provider`` is called per request, so a key changed at runtime
    applies to the next connection.
    """

    def __init__(self, app, key_provider: Callable[[], str]) -> None:
        self.app = app
        self._key_provider = key_provider

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            return await self.app(scope, receive, send)
        try:
            check_api_key(
                self._key_provider(),
                Headers(scope=scope),
                QueryParams(scope.get("query_string", b"")),
            )
        except AuthorizationError:
            logger.warning(
                "Rejected unauthenticated request to %s", scope.get("path"),
            )
            resp = JSONResponse({"error": "Unauthorized"}, status_code=401)
            return await resp(scope, receive, send)
        return await self.app(scope, receive, send)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

def build_app(gateway: FileAgentGateway) -> Starlette:
    """Build the ASGI application serving *gateway*."""
    registry = gateway.registry

    async def sse(request: Request) -> Response:
        session_id = str(uuid.uuid4())
        connection = SseConnection(session_id)

        async def run_session() -> None:
            try:
                await gateway.serve_session(
                    connection.inbound_reader, connection.outbound_writer,
                )
            except Exception:
                logger.exception("Session %s failed", session_id)
            finally:
                connection.outbound_writer.close()

        async def event_stream():
            # Every registered session is unregistered by the finally below.
            registry.register(session_id, connection)
            logger.info("Client connected (session %s)", session_id)
            task = asyncio.create_task(run_session())
            try:
                yield format_sse(
                    f"{MESSAGE_PATH}?sessionId={session_id}", event="endpoint",
                )
                while True:
                    message = None
                    with anyio.move_on_after(KEEPALIVE_INTERVAL):
                        try:
                            message = await connection.receive()
                        except anyio.EndOfStream:
                            break
                    if message is None:
                        yield ": ping\n\n"
                        continue
                    yield format_sse(
                        message.message.model_dump_json(
                            by_alias=True, exclude_none=True,
                        ),
                        event="message",
                    )
            finally:
                registry.unregister(session_id)
                connection.close()
                task.cancel()
                logger.info("Client disconnected (session %s)", session_id)

        return StreamingResponse(
            event_stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    async def message(request: Request) -> Response:
        session_id = request.query_params.get("sessionId")
        if not session_id:
            return JSONResponse(
                {"error": "Missing sessionId parameter"}, status_code=400,
            )
        try:
            connection = registry.lookup(session_id)
        except SessionNotFound as e:
            return JSONResponse(e.to_payload(), status_code=404)

        body = await request.body()
        try:
            parsed = types.JSONRPCMessage.model_validate_json(body)
        except ValueError as e:
            logger.warning("Unparsable message for %s: %s", session_id, e)
            return JSONResponse(
                {"error": "Invalid JSON-RPC message"}, status_code=400,
            )

        try:
            await connection.deliver(SessionMessage(parsed))
        except SessionNotFound as e:
            return JSONResponse(e.to_payload(), status_code=404)
        return Response("Accepted", status_code=202)

    async def health(request: Request) -> Response:
        return JSONResponse({"status": "ok", "sessions": len(registry)})

    app = Starlette(
        routes=[
            Route("/sse", endpoint=sse, methods=["GET"]),
            Route(MESSAGE_PATH, endpoint=message, methods=["POST"]),
            Route("/health", endpoint=health, methods=["GET"]),
        ],
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=["*"],
                allow_methods=["GET", "POST", "OPTIONS"],
                allow_headers=["Authorization", "Content-Type"],
            ),
            Middleware(
                ApiKeyMiddleware,
                key_provider=lambda: gateway.context.config.api_key,
            ),
        ],
    )
    return app
