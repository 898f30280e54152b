"""Shared gateway context: current config, log ring buffer, host events.

One ``GatewayContext`` is passed explicitly to the dispatcher, the
approval coordinator and the channels.  Tests build as many isolated
contexts as they need.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from fileagent.gateway.config import GatewayConfig, apply_config_update

logger = logging.getLogger("fileagent.gateway.context")

# Host-UI event kinds
EVENT_STATUS = "status-update"
EVENT_LOG = "log-update"
EVENT_APPROVAL_REQUEST = "request-approval"
EVENT_APPROVAL_CLOSED = "close-approval"


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    level: str
    message: str

    def format(self) -> str:
        return (
            f"[{self.timestamp.strftime('%H:%M:%S')}] "
            f"[{self.level}] {self.message}"
        )


@dataclass(frozen=True)
class HostEvent:
    """One outbound event for the host UI."""
    kind: str
    payload: Any = None


class EventBus:
    """Fan-out of host events to any number of subscriber queues.

    Publishing never blocks: each subscriber gets its own unbounded
    ``asyncio.Queue``.  A host UI that stops reading should unsubscribe.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[HostEvent]] = []

    def subscribe(self) -> asyncio.Queue[HostEvent]:
        queue: asyncio.Queue[HostEvent] = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[HostEvent]) -> None:
        try:
            self._subscribers.remove(queue)
        except ValueError:
            pass

    def publish(self, kind: str, payload: Any = None) -> None:
        event = HostEvent(kind=kind, payload=payload)
        for queue in list(self._subscribers):
            queue.put_nowait(event)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


class LogBuffer(logging.Handler):
    """Logging handler keeping the most recent records for the host UI.

    Each captured record is also published as a ``log-update`` event.
    """

    def __init__(
        self,
        events: EventBus | None = None,
        capacity: int = 100,
        level: int = logging.INFO,
    ) -> None:
        super().__init__(level=level)
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._events = events

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def resize(self, capacity: int) -> None:
        if capacity != self.capacity:
            self._entries = deque(self._entries, maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = LogEntry(
                timestamp=datetime.fromtimestamp(record.created),
                level=record.levelname,
                message=record.getMessage(),
            )
        except Exception:
            self.handleError(record)
            return
        self._entries.append(entry)
        if self._events is not None:
            self._events.publish(EVENT_LOG, entry.format())

    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def lines(self) -> list[str]:
        return [e.format() for e in self._entries]

    def clear(self) -> None:
        self._entries.clear()


@dataclass
class GatewayContext:
    """Mutable holder of the current config plus logs and host events.

    ``config`` is replaced wholesale by :meth:`update_config`; readers
    take a reference once and use the fields of that instance.
    """
    config: GatewayConfig = field(default_factory=GatewayConfig)
    events: EventBus = field(default_factory=EventBus)
    logs: LogBuffer | None = None
    running: bool = False

    def __post_init__(self) -> None:
        if self.logs is None:
            self.logs = LogBuffer(
                events=self.events, capacity=self.config.log_capacity,
            )

    def update_config(self, changes: dict[str, Any]) -> GatewayConfig:
        """Validate *changes*, swap in the new config, publish status.

        Raises:
            GatewayConfigError: on an unknown field or invalid value.
        """
        self.config = apply_config_update(self.config, changes)
        self.logs.resize(self.config.log_capacity)
        logger.info("Configuration updated")
        self.publish_status()
        return self.config

    def status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "config": self.config.to_dict(),
            "logs": self.logs.lines(),
        }

    def publish_status(self) -> None:
        self.events.publish(EVENT_STATUS, self.status())

    def capture_logs(self, logger_name: str = "fileagent") -> None:
        """Attach the ring buffer to the *logger_name* logger tree."""
        target = logging.getLogger(logger_name)
        if self.logs not in target.handlers:
            target.addHandler(self.logs)
        if target.level == logging.NOTSET or target.level > self.logs.level:
            target.setLevel(self.logs.level)

    def release_logs(self, logger_name: str = "fileagent") -> None:
        logging.getLogger(logger_name).removeHandler(self.logs)
