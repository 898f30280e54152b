"""Session registry: session id -> live streaming connection.

The registry does not know how a connection streams.  It stores opaque
:class:`SessionConnection` handles; the SSE transport provides the only
implementation today.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

from fileagent.gateway.errors import SessionNotFound

logger = logging.getLogger("fileagent.gateway.sessions")


@runtime_checkable
class SessionConnection(Protocol):
    """What the registry needs from a streaming connection."""

    async def deliver(self, message: Any) -> None:
        """Hand one inbound client message to the session."""

    def close(self) -> None:
        """Ask the connection to end its stream."""


@dataclass
class Session:
    session_id: str
    connection: SessionConnection
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc),
    )


class SessionRegistry:
    """Maps session ids to connections. At most one connection per id.

    Mutated only from the event loop (connect and disconnect handlers),
    so no locking is needed.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def register(self, session_id: str, connection: SessionConnection) -> Session:
        """Bind *session_id* to *connection*.

        Raises:
            ValueError: *session_id* is already bound to a live connection.
        """
        if session_id in self._sessions:
            raise ValueError(f"Session already registered: {session_id}")
        session = Session(session_id=session_id, connection=connection)
        self._sessions[session_id] = session
        logger.debug("Session registered: %s", session_id)
        return session

    def lookup(self, session_id: str) -> SessionConnection:
        """Return the connection bound to *session_id*.

        Raises:
            SessionNotFound: unknown or already removed id.
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"Session not found: {session_id}")
        return session.connection

    def unregister(self, session_id: str) -> bool:
        """Remove *session_id*. Safe to call from every closing path.

        Returns ``True`` if an entry was removed.
        """
        removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logger.debug("Session unregistered: %s", session_id)
        return removed

    def close_all(self) -> int:
        """Ask every live connection to close. Returns how many."""
        sessions = list(self._sessions.values())
        for session in sessions:
            session.connection.close()
        return len(sessions)

    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
