"""
Sensor Supervisor.

Launches the sensor process, pumps its stdout through the line framer into
the alert ingestor, logs its stderr, and relaunches it after a fixed delay
whenever it exits.

State machine::

    STOPPED -> LAUNCHING -> RUNNING -> EXITED -> (delay) -> LAUNCHING -> ...
                    \\________________________/
                       spawn error

Only stop() returns the supervisor to STOPPED.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from nidswatch.config import SensorConfig
from nidswatch.errors import DecodeError, NidsWatchError, ProcessError
from nidswatch.ingest.framer import LineFramer
from nidswatch.ingest.ingestor import AlertIngestor, decode_line
from nidswatch.sensor.process import SensorFactory, SensorProcess


logger = logging.getLogger(__name__)
stderr_logger = logging.getLogger("nidswatch.sensor.stderr")


class SupervisorState(Enum):
    """Sensor supervisor lifecycle states."""

    STOPPED = "stopped"
    LAUNCHING = "launching"
    RUNNING = "running"
    EXITED = "exited"


class ExitCause(Enum):
    """Why a sensor generation ended."""

    EXITED = "exited"
    SPAWN_ERROR = "spawn_error"
    STREAM_ERROR = "stream_error"
    SHUTDOWN = "shutdown"


@dataclass
class ExitInfo:
    """Outcome of one sensor generation."""

    generation: int
    cause: ExitCause
    returncode: int | None = None
    error: str | None = None
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "generation": self.generation,
            "cause": self.cause.value,
            "returncode": self.returncode,
            "error": self.error,
            "at": self.at.isoformat(),
        }


class SensorSupervisor:
    """
    Keeps the sensor process running and its output flowing into the store.

    All work happens in background tasks on the running event loop; start()
    returns immediately and stop() is bounded by the configured grace period.
    """

    def __init__(
        self,
        factory: SensorFactory,
        ingestor: AlertIngestor,
        config: SensorConfig | None = None,
        on_exit: Callable[[ExitInfo], None] | None = None,
    ) -> None:
        """
        Initialize supervisor.

        Args:
            factory: Produces a fresh SensorProcess for every launch
            ingestor: Receives every decoded sensor event
            config: Restart policy and shutdown grace period
            on_exit: Called with the ExitInfo of every finished generation
        """
        self.factory = factory
        self.ingestor = ingestor
        self.config = config or SensorConfig()
        self.on_exit = on_exit

        self.state = SupervisorState.STOPPED
        self.generation = 0
        self.restart_count = 0
        self.last_exit: ExitInfo | None = None

        self._process: SensorProcess | None = None
        self._run_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None
        self._restart_timer: asyncio.Task | None = None
        self._stopping = False
        self._changed = asyncio.Event()

        self._stats = {
            "lines_seen": 0,
            "alerts_ingested": 0,
            "decode_failures": 0,
            "ingest_failures": 0,
            "spawn_failures": 0,
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Begin supervising in a background task."""
        if self._run_task is not None and not self._run_task.done():
            return
        self._stopping = False
        self._run_task = asyncio.create_task(self._run(), name="sensor-supervisor")

    async def stop(self) -> None:
        """
        Stop supervising.

        Cancels a pending restart, terminates a live process (killing it
        after the grace period) and waits for the reader tasks to finish.
        """
        self._stopping = True
        grace = self.config.shutdown_grace

        if self._restart_timer is not None and not self._restart_timer.done():
            self._restart_timer.cancel()

        if self._process is not None and self._process.running:
            logger.info("sensor_stopping generation=%d", self.generation)
            await self._process.terminate(grace)

        if self._run_task is not None:
            try:
                await asyncio.wait_for(asyncio.shield(self._run_task), timeout=grace)
            except asyncio.TimeoutError:
                logger.warning("Sensor supervisor did not stop within %.1fs", grace)
                self._run_task.cancel()
                try:
                    await self._run_task
                except asyncio.CancelledError:
                    pass
            except Exception:
                logger.exception("Sensor supervisor task failed")
            self._run_task = None

        # Cancelled mid-launch: the process may have come up after the first check
        if self._process is not None and self._process.running:
            await self._process.terminate(grace)
        self._process = None

        await self._reap_stderr()
        self._set_state(SupervisorState.STOPPED)

    async def wait_until(
        self,
        predicate: Callable[[SensorSupervisor], bool],
        timeout: float = 5.0,
    ) -> bool:
        """
        Wait until a state predicate holds.

        Returns:
            True if the predicate held before the timeout
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate(self):
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            self._changed.clear()
            try:
                await asyncio.wait_for(self._changed.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                return predicate(self)
        return True

    @property
    def active_readers(self) -> int:
        """Number of live stream reader tasks (at most one per generation)."""
        return int(self._stderr_task is not None and not self._stderr_task.done())

    def _set_state(self, state: SupervisorState) -> None:
        if state != self.state:
            logger.debug("Sensor supervisor %s -> %s", self.state.value, state.value)
        self.state = state
        self._changed.set()

    # =========================================================================
    # Supervision loop
    # =========================================================================

    async def _run(self) -> None:
        while not self._stopping:
            try:
                exit_info = await self._launch_once()
            except Exception as e:
                logger.exception(
                    "sensor_supervisor_error generation=%d", self.generation
                )
                exit_info = await self._abandon_generation(e)
            self.last_exit = exit_info
            self._set_state(SupervisorState.EXITED)

            if self.on_exit is not None:
                try:
                    self.on_exit(exit_info)
                except Exception:
                    logger.exception("Sensor exit callback failed")

            if not self._should_restart():
                break

            self.restart_count += 1
            delay = self.config.restart_delay
            logger.info(
                "sensor_restart_scheduled delay=%.1fs restart=%d",
                delay, self.restart_count,
            )
            self._restart_timer = asyncio.create_task(asyncio.sleep(delay))
            self._changed.set()
            try:
                await self._restart_timer
            except asyncio.CancelledError:
                if not self._stopping:
                    raise
            finally:
                self._restart_timer = None

    def _should_restart(self) -> bool:
        if self._stopping or not self.config.auto_restart:
            return False
        limit = self.config.max_restarts
        return limit is None or self.restart_count < limit

    async def _launch_once(self) -> ExitInfo:
        self.generation += 1
        generation = self.generation
        self._set_state(SupervisorState.LAUNCHING)
        logger.info(
            "sensor_spawning path=%s device=%s generation=%d",
            self.config.executable, self.config.device, generation,
        )

        process = self.factory()
        self._process = process
        try:
            await process.start()
        except ProcessError as e:
            self._stats["spawn_failures"] += 1
            logger.error("sensor_spawn_error generation=%d error=%s", generation, e)
            self._process = None
            return ExitInfo(generation, ExitCause.SPAWN_ERROR, error=str(e))

        self._set_state(SupervisorState.RUNNING)
        self._stderr_task = asyncio.create_task(self._pump_stderr(process))

        cause = ExitCause.EXITED
        error: str | None = None
        try:
            await self._pump_stdout(process)
        except Exception as e:
            cause = ExitCause.STREAM_ERROR
            error = str(e)
            logger.error("sensor_stream_error generation=%d error=%s", generation, e)
            await process.terminate(self.config.shutdown_grace)

        returncode = await process.wait()
        await self._reap_stderr()
        self._process = None

        if self._stopping and cause == ExitCause.EXITED:
            cause = ExitCause.SHUTDOWN
        logger.warning(
            "sensor_exited generation=%d code=%s cause=%s",
            generation, returncode, cause.value,
        )
        return ExitInfo(generation, cause, returncode=returncode, error=error)

    async def _abandon_generation(self, error: Exception) -> ExitInfo:
        """Tear down whatever a failed launch left behind."""
        process = self._process
        self._process = None
        if process is not None and process.running:
            try:
                await process.terminate(self.config.shutdown_grace)
            except Exception:
                logger.exception("Failed to terminate sensor after supervisor error")
        await self._reap_stderr()
        return ExitInfo(self.generation, ExitCause.STREAM_ERROR, error=str(error))

    async def _reap_stderr(self) -> None:
        task = self._stderr_task
        if task is None:
            return
        if not task.done():
            try:
                await asyncio.wait_for(task, timeout=self.config.shutdown_grace)
            except asyncio.TimeoutError:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._stderr_task = None

    async def _pump_stdout(self, process: SensorProcess) -> None:
        framer = LineFramer()
        async for chunk in process.stdout_chunks():
            for line in framer.feed(chunk):
                self.handle_line(line)
        framer.end()

    async def _pump_stderr(self, process: SensorProcess) -> None:
        framer = LineFramer()
        try:
            async for chunk in process.stderr_chunks():
                for line in framer.feed(chunk):
                    stderr_logger.info("sensor_stderr output=%s", line)
        except Exception as e:
            logger.debug("Sensor stderr closed: %s", e)
        framer.end()

    # =========================================================================
    # Line handling
    # =========================================================================

    def handle_line(self, line: str) -> int | None:
        """
        Decode and ingest one framed sensor line.

        Never raises: malformed lines and rejected events are logged and
        dropped so the stream keeps flowing.

        Returns:
            New alert ID, or None if the line was dropped
        """
        try:
            return self._ingest_line(line)
        finally:
            self._changed.set()

    def _ingest_line(self, line: str) -> int | None:
        self._stats["lines_seen"] += 1
        logger.debug("sensor_data data=%s", line)

        try:
            event = decode_line(line)
        except DecodeError as e:
            self._stats["decode_failures"] += 1
            logger.error("sensor_data_parse_error data=%s error=%s", e.raw_line, e)
            return None

        try:
            alert_id = self.ingestor.ingest(event)
        except NidsWatchError as e:
            self._stats["ingest_failures"] += 1
            logger.error(
                "alert_ingest_error data=%s error=%s: %s",
                line, type(e).__name__, e,
            )
            return None
        except Exception:
            self._stats["ingest_failures"] += 1
            logger.exception("alert_ingest_error data=%s", line)
            return None

        self._stats["alerts_ingested"] += 1
        return alert_id

    def get_statistics(self) -> dict[str, Any]:
        """Get supervisor statistics."""
        return {
            **self._stats,
            "state": self.state.value,
            "generation": self.generation,
            "restarts": self.restart_count,
            "pid": self._process.pid if self._process else None,
            "last_exit": self.last_exit.to_dict() if self.last_exit else None,
        }
