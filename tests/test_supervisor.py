"""
Tests for the sensor supervisor.

The sensor executable is replaced by MockSensorProcess; the ingestor and
event store are real.
"""

from __future__ import annotations

import asyncio
import logging

import pytest

from nidswatch.config import SensorConfig
from nidswatch.ingest.ingestor import AlertIngestor
from nidswatch.sensor.process import MockSensorProcess, create_sensor
from nidswatch.sensor.supervisor import ExitCause, SensorSupervisor, SupervisorState
from nidswatch.store.database import EventStore


GOOD_LINE = b'{"src_ip": "10.0.0.1", "dst_ip": "10.0.0.2", "severity": "high"}\n'


def _config(**overrides) -> SensorConfig:
    settings = {
        "executable": "/opt/nids/nids_sensor",
        "device": "1",
        "restart_delay": 0.01,
        "shutdown_grace": 1.0,
    }
    settings.update(overrides)
    return SensorConfig(**settings)


class TestHandleLine:
    """Tests for per-line decoding and ingestion."""

    def test_good_line(self, ingestor: AlertIngestor, store: EventStore) -> None:
        supervisor = SensorSupervisor(create_sensor(_config(), use_mock=True), ingestor)

        alert_id = supervisor.handle_line(GOOD_LINE.decode().strip())

        assert alert_id is not None
        assert store.count_alerts() == 1

    def test_bad_json_is_dropped(self, ingestor: AlertIngestor, store: EventStore, caplog) -> None:
        supervisor = SensorSupervisor(create_sensor(_config(), use_mock=True), ingestor)

        with caplog.at_level(logging.ERROR):
            assert supervisor.handle_line("not json at all") is None

        assert store.count_alerts() == 0
        assert supervisor.get_statistics()["decode_failures"] == 1
        assert "sensor_data_parse_error" in caplog.text

    def test_invalid_event_is_dropped(self, ingestor: AlertIngestor, store: EventStore) -> None:
        supervisor = SensorSupervisor(create_sensor(_config(), use_mock=True), ingestor)

        assert supervisor.handle_line('{"dst_ip": "10.0.0.2"}') is None

        assert store.count_alerts() == 0
        assert supervisor.get_statistics()["ingest_failures"] == 1


class TestSensorSupervisor:
    """Tests for the supervision loop."""

    @pytest.mark.asyncio
    async def test_bad_line_does_not_stop_stream(
        self, ingestor: AlertIngestor, store: EventStore
    ) -> None:
        process = MockSensorProcess(
            stdout=[b"garbage{\n", GOOD_LINE],
            hold=True,
        )
        supervisor = SensorSupervisor(lambda: process, ingestor, config=_config())

        supervisor.start()
        assert await supervisor.wait_until(
            lambda s: s.get_statistics()["alerts_ingested"] == 1
        )

        stats = supervisor.get_statistics()
        assert stats["decode_failures"] == 1
        assert supervisor.state is SupervisorState.RUNNING
        assert store.count_alerts() == 1
        assert store.count_notifications() == 1

        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_records_split_across_chunks(
        self, ingestor: AlertIngestor, store: EventStore
    ) -> None:
        process = MockSensorProcess(
            stdout=[b'{"src_ip": "10.0', b'.0.1", "dst_ip": "10.0.0.2"}\n{"src_ip"', b': "a", "dst_ip": "b"}\n'],
            hold=True,
        )
        supervisor = SensorSupervisor(lambda: process, ingestor, config=_config())

        supervisor.start()
        assert await supervisor.wait_until(
            lambda s: s.get_statistics()["alerts_ingested"] == 2
        )

        addresses = sorted(a.src_ip for a in store.recent_alerts())
        assert addresses == ["10.0.0.1", "a"]

        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_trailing_fragment_discarded(
        self, ingestor: AlertIngestor, store: EventStore
    ) -> None:
        process = MockSensorProcess(stdout=[GOOD_LINE, b'{"src_ip": "x", "dst_ip": "y"}'])
        supervisor = SensorSupervisor(
            lambda: process, ingestor, config=_config(auto_restart=False)
        )

        supervisor.start()
        assert await supervisor.wait_until(lambda s: s.last_exit is not None)

        assert store.count_alerts() == 1
        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_restarts_after_exit(self, ingestor: AlertIngestor, store: EventStore) -> None:
        launched: list[MockSensorProcess] = []

        def factory() -> MockSensorProcess:
            process = MockSensorProcess(stdout=[GOOD_LINE], returncode=1)
            launched.append(process)
            return process

        exits = []
        supervisor = SensorSupervisor(
            factory, ingestor, config=_config(max_restarts=3), on_exit=exits.append
        )

        supervisor.start()
        assert await supervisor.wait_until(
            lambda s: s.generation == 4 and s.state is SupervisorState.EXITED
        )
        await asyncio.sleep(0.05)

        assert len(launched) == 4
        assert supervisor.restart_count == 3
        assert [e.generation for e in exits] == [1, 2, 3, 4]
        assert all(e.cause is ExitCause.EXITED and e.returncode == 1 for e in exits)
        assert store.count_alerts() == 4
        assert supervisor.active_readers == 0

        await supervisor.stop()
        assert supervisor.state is SupervisorState.STOPPED

    @pytest.mark.asyncio
    async def test_no_restart_when_disabled(self, ingestor: AlertIngestor) -> None:
        launched = []

        def factory() -> MockSensorProcess:
            launched.append(MockSensorProcess())
            return launched[-1]

        supervisor = SensorSupervisor(factory, ingestor, config=_config(auto_restart=False))

        supervisor.start()
        assert await supervisor.wait_until(lambda s: s.state is SupervisorState.EXITED)
        await asyncio.sleep(0.05)

        assert len(launched) == 1
        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_spawn_error(self, ingestor: AlertIngestor) -> None:
        supervisor = SensorSupervisor(
            lambda: MockSensorProcess(fail_spawn=True),
            ingestor,
            config=_config(auto_restart=False),
        )

        supervisor.start()
        assert await supervisor.wait_until(lambda s: s.last_exit is not None)

        assert supervisor.last_exit.cause is ExitCause.SPAWN_ERROR
        assert supervisor.get_statistics()["spawn_failures"] == 1
        assert supervisor.active_readers == 0

        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_spawn_error_is_retried(self, ingestor: AlertIngestor) -> None:
        supervisor = SensorSupervisor(
            lambda: MockSensorProcess(fail_spawn=True),
            ingestor,
            config=_config(max_restarts=2),
        )

        supervisor.start()
        assert await supervisor.wait_until(
            lambda s: s.generation == 3 and s.state is SupervisorState.EXITED
        )

        assert supervisor.get_statistics()["spawn_failures"] == 3
        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_stream_error_ends_generation(
        self, ingestor: AlertIngestor, store: EventStore
    ) -> None:
        process = MockSensorProcess(
            stdout=[GOOD_LINE],
            stream_error=OSError("pipe broken"),
            hold=True,
        )
        supervisor = SensorSupervisor(
            lambda: process, ingestor, config=_config(auto_restart=False)
        )

        supervisor.start()
        assert await supervisor.wait_until(lambda s: s.last_exit is not None)

        assert supervisor.last_exit.cause is ExitCause.STREAM_ERROR
        assert "pipe broken" in supervisor.last_exit.error
        assert process.terminated
        assert store.count_alerts() == 1

        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_stderr_is_logged_not_ingested(
        self, ingestor: AlertIngestor, store: EventStore, caplog
    ) -> None:
        caplog.set_level(logging.INFO, logger="nidswatch.sensor.stderr")
        process = MockSensorProcess(
            stderr=[GOOD_LINE, b"warning: promiscuous mode\n"],
        )
        supervisor = SensorSupervisor(
            lambda: process, ingestor, config=_config(auto_restart=False)
        )

        supervisor.start()
        assert await supervisor.wait_until(lambda s: s.last_exit is not None)

        assert store.count_alerts() == 0
        assert "promiscuous mode" in caplog.text
        assert supervisor.active_readers == 0

        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_stop_terminates_running_process(self, ingestor: AlertIngestor) -> None:
        process = MockSensorProcess(hold=True)
        supervisor = SensorSupervisor(lambda: process, ingestor, config=_config())

        supervisor.start()
        assert await supervisor.wait_until(lambda s: s.state is SupervisorState.RUNNING)

        await asyncio.wait_for(supervisor.stop(), timeout=2.0)

        assert process.terminated
        assert supervisor.state is SupervisorState.STOPPED
        assert supervisor.last_exit.cause is ExitCause.SHUTDOWN
        assert supervisor.last_exit.returncode == -15
        assert supervisor.generation == 1
        assert supervisor.active_readers == 0

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_restart(self, ingestor: AlertIngestor) -> None:
        launched = []

        def factory() -> MockSensorProcess:
            launched.append(MockSensorProcess())
            return launched[-1]

        supervisor = SensorSupervisor(factory, ingestor, config=_config(restart_delay=60))

        supervisor.start()
        assert await supervisor.wait_until(lambda s: s.restart_count == 1)

        await asyncio.wait_for(supervisor.stop(), timeout=2.0)
        await asyncio.sleep(0.05)

        assert len(launched) == 1
        assert supervisor.state is SupervisorState.STOPPED

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, ingestor: AlertIngestor) -> None:
        launched = []

        def factory() -> MockSensorProcess:
            launched.append(MockSensorProcess(hold=True))
            return launched[-1]

        supervisor = SensorSupervisor(factory, ingestor, config=_config())

        supervisor.start()
        supervisor.start()
        assert await supervisor.wait_until(lambda s: s.state is SupervisorState.RUNNING)

        assert len(launched) == 1
        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_statistics(self, ingestor: AlertIngestor) -> None:
        supervisor = SensorSupervisor(
            lambda: MockSensorProcess(stdout=[GOOD_LINE]),
            ingestor,
            config=_config(auto_restart=False),
        )

        supervisor.start()
        assert await supervisor.wait_until(lambda s: s.last_exit is not None)

        stats = supervisor.get_statistics()
        assert stats["state"] == "exited"
        assert stats["generation"] == 1
        assert stats["lines_seen"] == 1
        assert stats["last_exit"]["cause"] == "exited"

        await supervisor.stop()


class TestSupervisorFailures:
    """Unexpected failures end one generation, never the supervisor."""

    @pytest.mark.asyncio
    async def test_unexpected_stream_error_restarts(
        self, ingestor: AlertIngestor, store: EventStore
    ) -> None:
        launched: list[MockSensorProcess] = []

        def factory() -> MockSensorProcess:
            if not launched:
                process = MockSensorProcess(
                    stdout=[GOOD_LINE], stream_error=RuntimeError("boom"), hold=True
                )
            else:
                process = MockSensorProcess(stdout=[GOOD_LINE], hold=True)
            launched.append(process)
            return process

        supervisor = SensorSupervisor(factory, ingestor, config=_config(max_restarts=1))

        supervisor.start()
        assert await supervisor.wait_until(
            lambda s: s.generation >= 2 and s.state is SupervisorState.RUNNING, timeout=2.0
        )

        first = launched[0]
        assert first.terminated
        assert supervisor.restart_count == 1
        assert supervisor.last_exit.cause is ExitCause.STREAM_ERROR
        assert supervisor.last_exit.error == "boom"

        await supervisor.stop()
        assert supervisor.state is SupervisorState.STOPPED
        assert store.count_alerts() == 2

    @pytest.mark.asyncio
    async def test_launch_failure_still_exits(self, ingestor: AlertIngestor) -> None:
        def factory() -> MockSensorProcess:
            raise RuntimeError("factory broken")

        exits = []
        supervisor = SensorSupervisor(
            factory, ingestor, config=_config(max_restarts=2), on_exit=exits.append
        )

        supervisor.start()
        assert await supervisor.wait_until(
            lambda s: s.generation == 3 and s.state is SupervisorState.EXITED
        )

        assert [e.cause for e in exits] == [ExitCause.STREAM_ERROR] * 3
        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_store_error_does_not_stop_stream(
        self, ingestor: AlertIngestor, store: EventStore
    ) -> None:
        process = MockSensorProcess(
            stdout=[
                b'{"src_ip": "a", "dst_ip": "b", "rule_id": 9999}\n',
                b'{"src_ip": "c", "dst_ip": "d"}\n',
            ],
            hold=True,
        )
        supervisor = SensorSupervisor(lambda: process, ingestor, config=_config())

        supervisor.start()
        assert await supervisor.wait_until(
            lambda s: s.get_statistics()["lines_seen"] == 2
        )

        stats = supervisor.get_statistics()
        assert stats["ingest_failures"] == 1
        assert stats["alerts_ingested"] == 1
        assert [a.src_ip for a in store.recent_alerts()] == ["c"]

        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_stop_after_supervisor_task_failure(
        self, ingestor: AlertIngestor, caplog
    ) -> None:
        supervisor = SensorSupervisor(
            lambda: MockSensorProcess(), ingestor, config=_config()
        )

        def broken_policy() -> bool:
            raise RuntimeError("policy broken")

        supervisor._should_restart = broken_policy

        supervisor.start()
        assert await supervisor.wait_until(lambda s: s.last_exit is not None)
        await asyncio.sleep(0.05)

        with caplog.at_level(logging.ERROR):
            await supervisor.stop()

        assert supervisor.state is SupervisorState.STOPPED
        assert "Sensor supervisor task failed" in caplog.text
