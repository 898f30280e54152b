"""Approval channels: the ways an operator is asked for consent.

Every channel implements :class:`ApprovalChannel`.  The coordinator
opens a ticket on all channels at once and hands each a ``resolve``
callable; whichever channel calls it first decides the ticket.  After
resolution the coordinator calls :meth:`ApprovalChannel.close` on every
channel so that redundant prompts are withdrawn.

- ``host``: in-app prompt in the dashboard (host UI events)
- ``desktop``: native notification with Approve / Deny actions
- ``webhook``: outbound JSON POST (notify-only, never resolves)
"""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable

import httpx

from fileagent.gateway.approval import ApprovalTicket
from fileagent.gateway.context import (
    EVENT_APPROVAL_CLOSED,
    EVENT_APPROVAL_REQUEST,
    EventBus,
    GatewayContext,
)

logger = logging.getLogger("fileagent.gateway.channels")

# resolve(ticket_id, approved, source) -> whether this call decided it
Resolver = Callable[[str, bool, str], bool]


class ApprovalChannel(ABC):
    """One way of presenting a pending ticket to the operator."""

    name = "channel"

    @abstractmethod
    async def open(self, ticket: ApprovalTicket, resolve: Resolver) -> None:
        """Present *ticket*. May call *resolve* now or later."""

    def close(self, ticket: ApprovalTicket) -> None:
        """Withdraw any UI still showing *ticket*. Default: nothing."""


# ---------------------------------------------------------------------------
# In-app prompt
# ---------------------------------------------------------------------------

class HostPromptChannel(ApprovalChannel):
    """Surfaces tickets through host-UI events.

    The host answers through ``ControlPlane.resolve_approval`` (explicit
    decision) or ``ControlPlane.dismiss_approval`` (implicit deny).
    """

    name = "host"

    def __init__(self, events: EventBus) -> None:
        self._events = events

    async def open(self, ticket: ApprovalTicket, resolve: Resolver) -> None:
        self._events.publish(EVENT_APPROVAL_REQUEST, ticket.to_event())

    def close(self, ticket: ApprovalTicket) -> None:
        self._events.publish(EVENT_APPROVAL_CLOSED, {"id": ticket.ticket_id})


# ---------------------------------------------------------------------------
# Desktop notification
# ---------------------------------------------------------------------------

class DesktopNotificationChannel(ApprovalChannel):
    """Native notification via ``notify-send`` (libnotify).

    ``notify-send --wait`` blocks until the notification goes away and
    prints the key of the chosen action.  Choosing "Approve" or "Deny"
    resolves the ticket; dismissing the notification without choosing
    is an implicit deny.  A failed notification (no notification daemon)
    resolves nothing, leaving the decision to the other channels.
    """

    name = "desktop"

    ACTION_APPROVE = "approve"
    ACTION_DENY = "deny"

    def __init__(
        self,
        command: str = "notify-send",
        title: str = "FileAgent - Approval Required",
    ) -> None:
        self._command = command
        self._title = title
        self._procs: dict[str, asyncio.subprocess.Process] = {}
        self._watchers: dict[str, asyncio.Task] = {}

    def available(self) -> bool:
        return shutil.which(self._command) is not None

    def _body(self, ticket: ApprovalTicket) -> str:
        args = json.dumps(ticket.arguments, indent=2)[:100]
        return f"Agent wants to execute: {ticket.tool_name}\n{args}"

    async def open(self, ticket: ApprovalTicket, resolve: Resolver) -> None:
        argv = [
            self._command,
            "--app-name=fileagent",
            "--urgency=critical",
            "--wait",
            f"--action={self.ACTION_APPROVE}=Approve",
            f"--action={self.ACTION_DENY}=Deny",
            self._title,
            self._body(ticket),
        ]
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.warning("Desktop notification failed: %s", e)
            return

        if not ticket.pending:
            # Resolved elsewhere while the notification was starting.
            await self._terminate(proc)
            return

        self._procs[ticket.ticket_id] = proc
        self._watchers[ticket.ticket_id] = asyncio.create_task(
            self._watch(ticket.ticket_id, proc, resolve),
        )

    async def _watch(
        self,
        ticket_id: str,
        proc: asyncio.subprocess.Process,
        resolve: Resolver,
    ) -> None:
        try:
            stdout, _ = await proc.communicate()
        finally:
            self._procs.pop(ticket_id, None)
            self._watchers.pop(ticket_id, None)

        action = stdout.decode("utf-8", errors="replace").strip()
        if action == self.ACTION_APPROVE:
            logger.info("Notification action: APPROVED (%s)", ticket_id)
            resolve(ticket_id, True, "desktop")
        elif action == self.ACTION_DENY:
            logger.info("Notification action: DENIED (%s)", ticket_id)
            resolve(ticket_id, False, "desktop")
        elif proc.returncode == 0:
            resolve(ticket_id, False, "desktop-dismissed")
        elif proc.returncode is not None and proc.returncode > 0:
            logger.warning(
                "Desktop notification for %s failed (exit %d)",
                ticket_id, proc.returncode,
            )

    @staticmethod
    async def _terminate(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            try:
                proc.terminate()
            except ProcessLookupError:
                pass
        await proc.wait()

    def close(self, ticket: ApprovalTicket) -> None:
        proc = self._procs.pop(ticket.ticket_id, None)
        if proc is not None and proc.returncode is None:
            try:
                proc.terminate()
            except ProcessLookupError:
                pass


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------

class WebhookChannel(ApprovalChannel):
    """POSTs approval lifecycle events to an operator-chosen URL.

    Useful with push services (ntfy, Slack incoming webhooks) so the
    operator learns about pending requests away from the desktop.  The
    webhook cannot approve anything: decisions still come from the host
    UI or the desktop notification.
    """

    name = "webhook"

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport
        self._tasks: set[asyncio.Task] = set()

    async def open(self, ticket: ApprovalTicket, resolve: Resolver) -> None:
        await self._post({
            "type": "approval_request",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **ticket.to_event(),
        })

    def close(self, ticket: ApprovalTicket) -> None:
        payload = {
            "type": "approval_closed",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "id": ticket.ticket_id,
            "state": ticket.state.value,
            "resolved_by": ticket.resolved_by,
        }
        task = asyncio.get_running_loop().create_task(self._post(payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for outstanding close notifications."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _post(self, payload: dict[str, Any]) -> bool:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=False,
                transport=self._transport,
            ) as client:
                resp = await client.post(self._url, json=payload)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Approval webhook to %s failed: %s", self._url, e)
            return False
        return True


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def build_channels(context: GatewayContext) -> list[ApprovalChannel]:
    """Instantiate the channels named in ``context.config.notifications``."""
    config = context.config
    channels: list[ApprovalChannel] = []
    for name in config.notifications:
        if name == "host":
            channels.append(HostPromptChannel(context.events))
        elif name == "desktop":
            desktop = DesktopNotificationChannel()
            if desktop.available():
                channels.append(desktop)
            else:
                logger.warning(
                    "Desktop notifications requested but 'notify-send' "
                    "is not installed; channel disabled",
                )
        elif name == "webhook":
            channels.append(WebhookChannel(config.approval_webhook_url))
    return channels
