"""Tests for lifecycle event fan-out and its sinks.

EventEmitter / ActivityLog (workflow_events.py), ExecutionHistory
(execution_history.py) and MQTTEventSink (core/mqtt/mqtt_event_sink.py).
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from workflow_engine.core.mqtt import mqtt_event_sink
from workflow_engine.core.mqtt.mqtt_event_sink import MQTTEventSink
from workflow_engine.core.workflows.execution_history import ExecutionHistory, ExecutionLog
from workflow_engine.core.workflows.run_manager import RunManager
from workflow_engine.core.workflows.workflow_events import (
    ActivityLog,
    EventEmitter,
    WorkflowEvent,
    WorkflowEventType,
)
from workflow_engine.core.workflows.workflow_runner import WorkflowRunner
from tests.conftest import DEVICE, CollectingSink, make_workflow


def _event(event_type, device_id=DEVICE, workflow_id="wf", **fields):
    return WorkflowEvent(event_type=event_type, device_id=device_id, workflow_id=workflow_id, **fields)


# ── EventEmitter ──────────────────────────────────────────────────────────────

class TestEventEmitter:

    def test_fans_out_to_every_sink(self):
        first, second = CollectingSink(), CollectingSink()
        emitter = EventEmitter([first])
        emitter.add_sink(second)
        emitter.emit(_event(WorkflowEventType.STEP_START))
        assert len(first.events) == len(second.events) == 1

    def test_failing_sink_is_isolated(self):
        broken = MagicMock()
        broken.handle.side_effect = RuntimeError("sink down")
        collector = CollectingSink()
        emitter = EventEmitter([broken, collector])
        emitter.emit(_event(WorkflowEventType.STEP_START))
        assert len(collector.events) == 1

    def test_remove_sink(self):
        sink = CollectingSink()
        emitter = EventEmitter([sink])
        emitter.remove_sink(sink)
        emitter.remove_sink(sink)
        emitter.emit(_event(WorkflowEventType.STEP_START))
        assert sink.events == []

    def test_timestamp_defaults_to_now(self):
        assert _event(WorkflowEventType.STEP_START).timestamp > 0
        assert _event(WorkflowEventType.STEP_START, timestamp=5).timestamp == 5

    @pytest.mark.asyncio
    async def test_async_sink_is_scheduled_not_awaited(self):
        delivered = asyncio.Event()

        class SlowSink:
            def handle(self, event):
                async def deliver():
                    await asyncio.sleep(0.01)
                    delivered.set()
                return deliver()

        emitter = EventEmitter([SlowSink()])
        emitter.emit(_event(WorkflowEventType.STEP_START))
        assert not delivered.is_set()
        await emitter.drain()
        assert delivered.is_set()

    @pytest.mark.asyncio
    async def test_async_sink_failure_is_swallowed(self):
        async def explode():
            raise RuntimeError("broker gone")

        sink = MagicMock()
        sink.handle.side_effect = lambda event: explode()
        emitter = EventEmitter([sink])
        emitter.emit(_event(WorkflowEventType.STEP_START))
        await emitter.drain()


# ── ActivityLog ───────────────────────────────────────────────────────────────

class TestActivityLog:

    def test_bounded(self):
        log = ActivityLog(max_entries=3)
        for i in range(5):
            log.handle(_event(WorkflowEventType.STEP_START, step_id=f"s{i}"))
        entries = log.get_activity_log(limit=10)
        assert [e["step_id"] for e in entries] == ["s2", "s3", "s4"]
        assert "logged_at" in entries[0]

    def test_filter_by_device_and_limit(self):
        log = ActivityLog()
        log.handle(_event(WorkflowEventType.STEP_START, device_id="a"))
        log.handle(_event(WorkflowEventType.STEP_START, device_id="b"))
        log.handle(_event(WorkflowEventType.STEP_END, device_id="a"))
        assert len(log.get_activity_log(device_id="a")) == 2
        assert log.get_activity_log(limit=1)[0]["device_id"] == "a"
        assert log.get_activity_log(limit=0) == []

    def test_clear(self):
        log = ActivityLog()
        log.handle(_event(WorkflowEventType.STEP_START))
        log.clear()
        assert log.get_activity_log() == []


# ── ExecutionHistory ──────────────────────────────────────────────────────────

@pytest.fixture
def history(tmp_path):
    return ExecutionHistory(storage_dir=str(tmp_path / "history"))


def _feed_run(history, status="completed", device_id=DEVICE, workflow_id="wf", duration=100):
    history.handle(_event(WorkflowEventType.WORKFLOW_START, device_id, workflow_id, timestamp=1_000))
    history.handle(
        _event(WorkflowEventType.STEP_START, device_id, workflow_id, step_id="a", step_type="tap", timestamp=1_010)
    )
    history.handle(
        _event(
            WorkflowEventType.STEP_END,
            device_id,
            workflow_id,
            step_id="a",
            step_type="tap",
            success=status == "completed",
            duration_ms=20,
            timestamp=1_030,
        )
    )
    event_type = (
        WorkflowEventType.WORKFLOW_COMPLETE if status == "completed" else WorkflowEventType.WORKFLOW_ERROR
    )
    history.handle(
        _event(
            event_type,
            device_id,
            workflow_id,
            status=status,
            error=None if status == "completed" else f"run {status}",
            duration_ms=duration,
            steps_executed=1,
            timestamp=1_100,
        )
    )


class TestExecutionHistory:

    def test_records_run(self, history):
        _feed_run(history)
        log = history.get_latest_execution("wf")
        assert isinstance(log, ExecutionLog)
        assert (log.status, log.success, log.executed_steps, log.duration_ms) == ("completed", True, 1, 100)
        assert len(log.steps) == 1
        assert log.steps[0].step_id == "a"
        assert log.steps[0].duration_ms == 20

    def test_ignores_events_without_active_run(self, history):
        history.handle(_event(WorkflowEventType.STEP_END, step_id="a"))
        assert history.get_history("wf") == []

    def test_nested_steps_keep_depth(self, history):
        history.handle(_event(WorkflowEventType.WORKFLOW_START, timestamp=1_000))
        history.handle(_event(WorkflowEventType.STEP_START, step_id="call", timestamp=1_001))
        history.handle(_event(WorkflowEventType.WORKFLOW_START, workflow_id="child", depth=1))
        history.handle(_event(WorkflowEventType.STEP_START, step_id="k", depth=1, timestamp=1_002))
        history.handle(_event(WorkflowEventType.STEP_END, step_id="k", depth=1, success=True, timestamp=1_003))
        history.handle(_event(WorkflowEventType.WORKFLOW_COMPLETE, workflow_id="child", depth=1))
        history.handle(_event(WorkflowEventType.STEP_END, step_id="call", success=True, timestamp=1_004))
        history.handle(_event(WorkflowEventType.WORKFLOW_COMPLETE, status="completed", timestamp=1_005))

        log = history.get_latest_execution("wf")
        assert [(s.step_id, s.depth) for s in log.steps] == [("k", 1), ("call", 0)]
        assert log.steps[1].started_at < log.steps[1].completed_at
        assert history.get_history("child") == []

    def test_persists_and_reloads(self, history, tmp_path):
        _feed_run(history)
        _feed_run(history, status="error")
        history_file = tmp_path / "history" / "wf.json"
        assert len(json.loads(history_file.read_text())) == 2

        reloaded = ExecutionHistory(storage_dir=str(tmp_path / "history"))
        logs = reloaded.get_history("wf")
        assert [log.status for log in logs] == ["completed", "error"]
        assert logs[1].error == "run error"

    def test_stats(self, history):
        _feed_run(history, duration=100)
        _feed_run(history, duration=300)
        _feed_run(history, status="error", duration=200)
        _feed_run(history, status="cancelled", duration=0)

        stats = history.get_stats("wf")
        assert stats["total_executions"] == 4
        assert stats["success_count"] == 2
        assert stats["failure_count"] == 1
        assert stats["cancelled_count"] == 1
        assert stats["success_rate"] == 50.0
        assert stats["avg_duration_ms"] == 150

    def test_empty_stats(self, history):
        assert history.get_stats("nothing")["total_executions"] == 0

    @pytest.mark.asyncio
    async def test_end_to_end_with_run_manager(self, history, executor, store):
        runner = WorkflowRunner(executor, store, EventEmitter([history]))
        run_manager = RunManager(runner)
        run_manager.start(DEVICE, make_workflow([{"id": "a", "type": "key_home"}]))
        await run_manager.wait(DEVICE)

        log = history.get_latest_execution("wf")
        assert log.status == "completed"
        assert [s.step_type for s in log.steps] == ["key_home"]


# ── MQTTEventSink ─────────────────────────────────────────────────────────────

linux_only = pytest.mark.skipif(mqtt_event_sink.IS_WINDOWS, reason="aiomqtt client path")


class TestMQTTTopics:

    def test_topic_uses_sanitized_device_id(self):
        sink = MQTTEventSink(topic_prefix="engine")
        event = _event(WorkflowEventType.STEP_END, device_id="192.168.1.5:5555")
        assert sink.get_topic(event) == "engine/192_168_1_5_5555/workflow/workflow_step_end"

    def test_handle_while_disconnected_is_noop(self):
        sink = MQTTEventSink()
        assert sink.handle(_event(WorkflowEventType.STEP_START)) is None
        assert sink.is_connected is False


@linux_only
@pytest.mark.asyncio
class TestMQTTPublishing:

    async def test_connect_and_disconnect(self, monkeypatch):
        client = MagicMock()
        client_cls = MagicMock(return_value=client)
        monkeypatch.setattr(mqtt_event_sink, "Client", client_cls)

        sink = MQTTEventSink(broker="broker", port=1884, username="u", password="p")
        assert await sink.connect() is True
        client_cls.assert_called_once_with(hostname="broker", port=1884, username="u", password="p")
        assert sink.is_connected

        await sink.disconnect()
        client.__aexit__.assert_awaited_once()
        assert not sink.is_connected

    async def test_connect_failure(self, monkeypatch):
        monkeypatch.setattr(mqtt_event_sink, "Client", MagicMock(side_effect=OSError("refused")))
        sink = MQTTEventSink()
        assert await sink.connect() is False
        assert not sink.is_connected

    async def test_publishes_json_payload(self):
        sink = MQTTEventSink(topic_prefix="engine")
        sink.client = MagicMock()
        sink.client.publish = AsyncMock()
        sink._connected = True

        event = _event(WorkflowEventType.WORKFLOW_COMPLETE, status="completed")
        assert await sink.handle(event) is True

        topic, payload = sink.client.publish.await_args.args
        assert topic == f"engine/{DEVICE}/workflow/workflow_complete"
        assert json.loads(payload)["status"] == "completed"
        assert sink.client.publish.await_args.kwargs == {"qos": 1}

    async def test_publish_failure_is_swallowed(self):
        sink = MQTTEventSink()
        sink.client = MagicMock()
        sink.client.publish = AsyncMock(side_effect=ConnectionError("lost"))
        sink._connected = True
        assert await sink.publish_event(_event(WorkflowEventType.STEP_START)) is False

    async def test_emitter_delivers_through_mqtt(self):
        sink = MQTTEventSink()
        sink.client = MagicMock()
        sink.client.publish = AsyncMock()
        sink._connected = True

        emitter = EventEmitter([sink])
        emitter.emit(_event(WorkflowEventType.STEP_START))
        await emitter.drain()
        sink.client.publish.assert_awaited_once()
