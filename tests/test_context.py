"""Tests for GatewayContext: log buffer, host events, config swaps."""

import asyncio
import logging

import pytest

from fileagent.gateway.config import GatewayConfig
from fileagent.gateway.context import (
    EVENT_LOG,
    EVENT_STATUS,
    EventBus,
    GatewayContext,
    LogBuffer,
)
from fileagent.gateway.errors import GatewayConfigError


def _drain(queue):
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


class TestEventBus:

    def test_fan_out(self):
        async def _test():
            bus = EventBus()
            a, b = bus.subscribe(), bus.subscribe()
            bus.publish("status-update", {"running": True})
            assert a.get_nowait().payload == {"running": True}
            assert b.get_nowait().kind == "status-update"

        asyncio.run(_test())

    def test_unsubscribe(self):
        async def _test():
            bus = EventBus()
            q = bus.subscribe()
            bus.unsubscribe(q)
            bus.unsubscribe(q)  # idempotent
            bus.publish("x")
            assert q.empty()
            assert bus.subscriber_count == 0

        asyncio.run(_test())


class TestLogBuffer:

    def _record(self, msg, level=logging.INFO):
        return logging.LogRecord(
            "fileagent.test", level, __file__, 1, msg, None, None,
        )

    def test_format(self):
        buf = LogBuffer(capacity=10)
        buf.emit(self._record("Server started"))
        line = buf.lines()[0]
        assert line.endswith("[INFO] Server started")
        assert line.startswith("[") and line[9] == "]"

    def test_capacity_keeps_most_recent(self):
        buf = LogBuffer(capacity=3)
        for i in range(5):
            buf.emit(self._record(f"line {i}"))
        assert [e.message for e in buf.entries()] == ["line 2", "line 3", "line 4"]

    def test_resize(self):
        buf = LogBuffer(capacity=5)
        for i in range(5):
            buf.emit(self._record(f"line {i}"))
        buf.resize(2)
        assert buf.capacity == 2
        assert [e.message for e in buf.entries()] == ["line 3", "line 4"]

    def test_publishes_log_events(self):
        async def _test():
            bus = EventBus()
            q = bus.subscribe()
            buf = LogBuffer(events=bus)
            buf.emit(self._record("Tool call: read_file", logging.WARNING))
            event = q.get_nowait()
            assert event.kind == EVENT_LOG
            assert event.payload.endswith("[WARNING] Tool call: read_file")

        asyncio.run(_test())


class TestGatewayContext:

    def test_status_shape(self):
        ctx = GatewayContext()
        status = ctx.status()
        assert status["running"] is False
        assert status["config"]["port"] == 3000
        assert status["logs"] == []

    def test_update_config_swaps_instance(self, tmp_path):
        async def _test():
            ctx = GatewayContext()
            q = ctx.events.subscribe()
            before = ctx.config
            ctx.update_config({"allowed_path": str(tmp_path)})
            assert ctx.config is not before
            assert before.allowed_path == ""
            assert ctx.config.allowed_path == str(tmp_path.resolve())
            kinds = [e.kind for e in _drain(q)]
            assert EVENT_STATUS in kinds

        asyncio.run(_test())

    def test_invalid_update_keeps_config(self):
        ctx = GatewayContext()
        before = ctx.config
        with pytest.raises(GatewayConfigError):
            ctx.update_config({"port": -1})
        assert ctx.config is before

    def test_update_resizes_log_buffer(self):
        ctx = GatewayContext()
        ctx.update_config({"log_capacity": 7})
        assert ctx.logs.capacity == 7

    def test_capture_logs(self):
        ctx = GatewayContext(config=GatewayConfig())
        ctx.capture_logs()
        try:
            logging.getLogger("fileagent.gateway.test").info("captured line")
            assert any("captured line" in line for line in ctx.logs.lines())
        finally:
            ctx.release_logs()
        assert ctx.logs not in logging.getLogger("fileagent").handlers
