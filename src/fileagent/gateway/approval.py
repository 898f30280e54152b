"""Approval coordinator: per-call human consent gate.

Every tool call that requires approval gets an ``ApprovalTicket``.  The
ticket is fanned out to all configured channels at once (desktop
notification, in-app prompt, webhook).  Any channel may resolve it;
the first resolution wins and later attempts are ignored.  After
resolution every channel is told to close its UI for the ticket.

Tickets live only in memory and are discarded once resolved.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Iterable

if TYPE_CHECKING:
    from fileagent.gateway.channels import ApprovalChannel

logger = logging.getLogger("fileagent.gateway.approval")


class TicketState(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


@dataclass
class ApprovalTicket:
    """A tool call held pending an operator decision."""
    ticket_id: str
    tool_name: str
    arguments: dict[str, Any]
    created_at: str  # ISO 8601
    state: TicketState = TicketState.PENDING
    resolved_by: str = ""
    channels: list[ApprovalChannel] = field(
        default_factory=list, repr=False, compare=False,
    )
    _decision: asyncio.Future | None = field(
        default=None, repr=False, compare=False,
    )

    @property
    def pending(self) -> bool:
        return self.state is TicketState.PENDING

    def to_event(self) -> dict[str, Any]:
        """Payload of the host-UI ``request-approval`` event."""
        return {
            "id": self.ticket_id,
            "toolName": self.tool_name,
            "args": self.arguments,
        }


class ApprovalCoordinator:
    """Creates tickets, fans them out, and resolves each exactly once.

    All state transitions run on the event loop thread.  Channels that
    receive decisions on another thread must use
    :meth:`resolve_threadsafe`.
    """

    def __init__(
        self,
        channels: Iterable[ApprovalChannel] = (),
    ) -> None:
        self._channels: list[ApprovalChannel] = list(channels)
        self._pending: dict[str, ApprovalTicket] = {}
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def channels(self) -> list[ApprovalChannel]:
        return list(self._channels)

    def set_channels(self, channels: Iterable[ApprovalChannel]) -> None:
        """Replace the channel set. Open tickets keep their old channels."""
        self._channels = list(channels)

    def pending(self) -> list[ApprovalTicket]:
        return list(self._pending.values())

    def get(self, ticket_id: str) -> ApprovalTicket | None:
        return self._pending.get(ticket_id)

    def __len__(self) -> int:
        return len(self._pending)

    # -- request -------------------------------------------------------------

    async def request(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        timeout: float | None = None,
    ) -> bool:
        """Open a ticket and wait until some channel resolves it.

        Returns ``True`` when approved.  With a *timeout* (seconds) an
        unanswered ticket is denied when it expires; ``None`` waits
        indefinitely.  If the caller is
        cancelled the ticket is denied so channels can close their UI.
        """
        loop = asyncio.get_running_loop()
        self._loop = loop
        ticket = ApprovalTicket(
            ticket_id=f"apr_{uuid.uuid4().hex}",
            tool_name=tool_name,
            arguments=arguments,
            created_at=datetime.now(timezone.utc).isoformat(),
            _decision=loop.create_future(),
        )
        self._pending[ticket.ticket_id] = ticket
        channels = list(self._channels)
        logger.info(
            "Requesting approval for %s (%s)", tool_name, ticket.ticket_id,
        )

        if not channels:
            logger.warning(
                "No approval channels configured; %s waits for "
                "resolve_approval()", ticket.ticket_id,
            )
        try:
            await self._open_channels(ticket, channels)
            if timeout is None:
                return await asyncio.shield(ticket._decision)
            return await asyncio.wait_for(
                asyncio.shield(ticket._decision), timeout,
            )
        except asyncio.TimeoutError:
            self.resolve(ticket.ticket_id, False, source="timeout")
            return False
        except asyncio.CancelledError:
            self.resolve(ticket.ticket_id, False, source="cancelled")
            raise

    async def _open_channels(
        self, ticket: ApprovalTicket, channels: list[ApprovalChannel],
    ) -> None:
        ticket.channels = channels
        results = await asyncio.gather(
            *(ch.open(ticket, self.resolve) for ch in channels),
            return_exceptions=True,
        )
        for ch, result in zip(channels, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Approval channel '%s' failed to open %s: %s",
                    ch.name, ticket.ticket_id, result,
                )

    # -- resolution ----------------------------------------------------------

    def resolve(
        self, ticket_id: str, approved: bool, source: str = "",
    ) -> bool:
        """Resolve a pending ticket. First call wins.

        Returns ``True`` if this call resolved the ticket, ``False`` when
        the id is unknown or already resolved.
        """
        ticket = self._pending.pop(ticket_id, None)
        if ticket is None:
            logger.debug(
                "Ignoring resolution of %s from %s: not pending",
                ticket_id, source or "unknown",
            )
            return False

        ticket.state = TicketState.APPROVED if approved else TicketState.DENIED
        ticket.resolved_by = source
        if ticket._decision is not None and not ticket._decision.done():
            ticket._decision.set_result(approved)
        logger.info(
            "Request %s %s%s",
            ticket_id,
            "APPROVED" if approved else "DENIED",
            f" via {source}" if source else "",
        )

        for ch in ticket.channels:
            try:
                ch.close(ticket)
            except Exception:
                logger.exception(
                    "Approval channel '%s' failed to close %s",
                    ch.name, ticket_id,
                )
        return True

    def resolve_threadsafe(
        self, ticket_id: str, approved: bool, source: str = "",
    ) -> None:
        """Schedule :meth:`resolve` on the coordinator's event loop."""
        if self._loop is None:
            raise RuntimeError("Approval coordinator has no running loop")
        self._loop.call_soon_threadsafe(
            self.resolve, ticket_id, approved, source,
        )

    def deny_all(self, source: str = "shutdown") -> int:
        """Deny every pending ticket. Returns the number denied."""
        ids = list(self._pending)
        for ticket_id in ids:
            self.resolve(ticket_id, False, source=source)
        return len(ids)
