"""Stdio <-> SSE relay for MCP clients that only speak stdio.

The bridge opens one event stream to the gateway, learns the session id
from the ``endpoint`` event, then forwards every stdin line as a POST to
``/message?sessionId=<id>``.  Lines read before the id is known are
queued and sent oldest first once it arrives.  ``data:`` lines carrying
a JSON document are copied to stdout, one document per line; anything
else on the stream (the endpoint URL, keep-alive comments) is dropped.

Stdout belongs to the MCP client, so the bridge never logs there.
"""

from __future__ import annotations

import asyncio
import logging
import re
import sys
from typing import IO

import httpx

from fileagent.utils.safe_json import is_json_document

logger = logging.getLogger("fileagent.bridge.relay")

SESSION_ID_PATTERN = re.compile(r"sessionId=([A-Za-z0-9-]+)")


class BridgeConnectionError(Exception):
    """The event stream could not be opened or was lost."""


class StdioSseBridge:
    """Relays one stdio MCP client to one gateway session.

    Args:
        base_url: Gateway root, e.g. ``http://localhost:3000``.
        api_key: Sent as a bearer token when non-empty.
        output: Where server messages are written (default stdout).
        transport: Optional httpx transport, for tests.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        output: IO[str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._output = output if output is not None else sys.stdout
        self._transport = transport
        self._session_id: str | None = None
        self._session_ready = asyncio.Event()
        self._outgoing: asyncio.Queue[str | None] = asyncio.Queue()

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def pending(self) -> int:
        """Lines waiting to be posted."""
        return self._outgoing.qsize()

    def _headers(self) -> dict[str, str]:
        if self._api_key:
            return {"Authorization": f"Bearer {self._api_key}"}
        return {}

    # -- client -> server ----------------------------------------------------

    def submit(self, line: str) -> None:
        """Queue one stdin line. Blank lines are ignored."""
        line = line.strip()
        if line:
            self._outgoing.put_nowait(line)

    def end_input(self) -> None:
        """stdin reached EOF: stop once the queue is drained."""
        self._outgoing.put_nowait(None)

    async def _send_loop(self, client: httpx.AsyncClient) -> None:
        await self._session_ready.wait()
        url = f"{self._base_url}/message"
        while True:
            line = await self._outgoing.get()
            if line is None:
                logger.info("Input closed")
                return
            await self._post(client, url, line)

    async def _post(self, client: httpx.AsyncClient, url: str, line: str) -> None:
        try:
            resp = await client.post(
                url,
                params={"sessionId": self._session_id},
                content=line.encode("utf-8"),
                headers={"Content-Type": "application/json", **self._headers()},
            )
        except httpx.HTTPError as e:
            logger.error("POST failed: %s", e)
            return
        if resp.status_code >= 400:
            logger.error("POST rejected (%d): %s", resp.status_code, resp.text)
        else:
            logger.debug("POST %d: %s", resp.status_code, line[:200])

    # -- server -> client ----------------------------------------------------

    def handle_event_line(self, line: str) -> None:
        """Process one raw line of the event stream."""
        if self._session_id is None:
            match = SESSION_ID_PATTERN.search(line)
            if match:
                self._session_id = match.group(1)
                logger.info("Connected with session id %s", self._session_id)
                self._session_ready.set()

        if not line.startswith("data:"):
            return
        data = line[5:]
        if data.startswith(" "):
            data = data[1:]
        if is_json_document(data):
            self._output.write(data + "\n")
            self._output.flush()

    async def _read_events(self, client: httpx.AsyncClient) -> None:
        url = f"{self._base_url}/sse"
        try:
            async with client.stream(
                "GET",
                url,
                headers={"Accept": "text/event-stream", **self._headers()},
            ) as resp:
                logger.info("SSE request status: %d", resp.status_code)
                if resp.status_code != 200:
                    raise BridgeConnectionError(
                        f"{url} returned HTTP {resp.status_code}"
                    )
                async for line in resp.aiter_lines():
                    self.handle_event_line(line)
        except httpx.HTTPError as e:
            raise BridgeConnectionError(f"Cannot reach {url}: {e}") from e
        raise BridgeConnectionError("Gateway closed the event stream")

    # -- lifecycle -----------------------------------------------------------

    async def run(self) -> None:
        """Relay until stdin closes.

        Raises:
            BridgeConnectionError: the stream failed to open or ended.
        """
        timeout = httpx.Timeout(30.0, read=None)
        async with httpx.AsyncClient(
            timeout=timeout, transport=self._transport,
        ) as client:
            reader = asyncio.create_task(self._read_events(client))
            sender = asyncio.create_task(self._send_loop(client))
            done, _ = await asyncio.wait(
                {reader, sender}, return_when=asyncio.FIRST_COMPLETED,
            )
            if reader in done:
                sender.cancel()
                await asyncio.gather(sender, return_exceptions=True)
                reader.result()
            else:
                reader.cancel()
                await asyncio.gather(reader, return_exceptions=True)
                sender.result()
