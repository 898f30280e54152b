"""Tests for the session registry."""

import pytest

from fileagent.gateway.errors import SessionNotFound
from fileagent.gateway.sessions import SessionConnection, SessionRegistry


class FakeConnection:
    def __init__(self):
        self.delivered = []
        self.closed = False

    async def deliver(self, message):
        self.delivered.append(message)

    def close(self):
        self.closed = True


class TestSessionRegistry:

    def test_register_and_lookup(self):
        registry = SessionRegistry()
        conn = FakeConnection()
        session = registry.register("s-1", conn)
        assert session.session_id == "s-1"
        assert registry.lookup("s-1") is conn
        assert "s-1" in registry
        assert len(registry) == 1

    def test_fake_satisfies_protocol(self):
        assert isinstance(FakeConnection(), SessionConnection)

    def test_duplicate_id_rejected(self):
        registry = SessionRegistry()
        registry.register("s-1", FakeConnection())
        with pytest.raises(ValueError, match="already registered"):
            registry.register("s-1", FakeConnection())

    def test_unknown_id(self):
        with pytest.raises(SessionNotFound) as exc_info:
            SessionRegistry().lookup("nope")
        assert exc_info.value.code == "SESSION_NOT_FOUND"

    def test_unregister_is_idempotent(self):
        registry = SessionRegistry()
        registry.register("s-1", FakeConnection())
        assert registry.unregister("s-1") is True
        assert registry.unregister("s-1") is False
        with pytest.raises(SessionNotFound):
            registry.lookup("s-1")

    def test_id_reusable_after_unregister(self):
        registry = SessionRegistry()
        registry.register("s-1", FakeConnection())
        registry.unregister("s-1")
        replacement = FakeConnection()
        registry.register("s-1", replacement)
        assert registry.lookup("s-1") is replacement

    def test_close_all(self):
        registry = SessionRegistry()
        conns = [FakeConnection() for _ in range(3)]
        for i, conn in enumerate(conns):
            registry.register(f"s-{i}", conn)
        assert registry.close_all() == 3
        assert all(c.closed for c in conns)
        assert [s.session_id for s in registry.sessions()] == ["s-0", "s-1", "s-2"]
