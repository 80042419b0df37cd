"""
Sensor process capability.

Wraps the external packet-sniffing executable behind a small async
interface (start, stdout/stderr chunk streams, wait, terminate) so the
supervisor can be driven by a scripted fake in tests.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable

from nidswatch.config import SensorConfig
from nidswatch.errors import ProcessError


logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096


class SensorProcess(ABC):
    """One launch of the sensor executable."""

    @abstractmethod
    async def start(self) -> None:
        """
        Spawn the process.

        Raises:
            ProcessError: If the executable cannot be started
        """

    @abstractmethod
    def stdout_chunks(self) -> AsyncIterator[bytes]:
        """Yield raw stdout bytes until the pipe closes."""

    @abstractmethod
    def stderr_chunks(self) -> AsyncIterator[bytes]:
        """Yield raw stderr bytes until the pipe closes."""

    @abstractmethod
    async def wait(self) -> int | None:
        """Wait for exit and return the exit code."""

    @abstractmethod
    async def terminate(self, grace: float) -> None:
        """Ask the process to exit, killing it after `grace` seconds."""

    @property
    @abstractmethod
    def running(self) -> bool:
        """Whether the process has started and not yet exited."""

    @property
    def pid(self) -> int | None:
        return None


class SubprocessSensor(SensorProcess):
    """Real sensor launched with asyncio subprocess pipes."""

    def __init__(self, executable: str, device: str) -> None:
        self.executable = executable
        self.device = device
        self._proc: asyncio.subprocess.Process | None = None

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def start(self) -> None:
        try:
            self._proc = await asyncio.create_subprocess_exec(
                self.executable,
                self.device,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ProcessError(
                f"Failed to spawn {self.executable}: {e}",
                cause="spawn_error",
            ) from e

    async def _read(self, stream: asyncio.StreamReader | None) -> AsyncIterator[bytes]:
        if stream is None:
            return
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                return
            yield chunk

    def stdout_chunks(self) -> AsyncIterator[bytes]:
        return self._read(self._proc.stdout if self._proc else None)

    def stderr_chunks(self) -> AsyncIterator[bytes]:
        return self._read(self._proc.stderr if self._proc else None)

    async def wait(self) -> int | None:
        if self._proc is None:
            return None
        return await self._proc.wait()

    async def terminate(self, grace: float) -> None:
        if not self.running:
            return
        try:
            self._proc.terminate()
            try:
                await asyncio.wait_for(self._proc.wait(), timeout=grace)
            except asyncio.TimeoutError:
                logger.warning(
                    "Sensor pid %s ignored SIGTERM for %.1fs, killing", self.pid, grace
                )
                self._proc.kill()
                await self._proc.wait()
        except ProcessLookupError:
            pass


class MockSensorProcess(SensorProcess):
    """
    Scripted sensor for testing without an executable.

    Replays the given stdout/stderr chunks, then exits with `returncode`.
    With `hold=True` the process stays alive after its output until
    terminated.
    """

    def __init__(
        self,
        stdout: list[bytes] | None = None,
        stderr: list[bytes] | None = None,
        returncode: int = 0,
        fail_spawn: bool = False,
        hold: bool = False,
        stream_error: Exception | None = None,
    ) -> None:
        self._stdout = list(stdout or [])
        self._stderr = list(stderr or [])
        self._returncode = returncode
        self._fail_spawn = fail_spawn
        self._stream_error = stream_error
        self._released = asyncio.Event()
        if not hold:
            self._released.set()
        self.started = False
        self.terminated = False
        self.exited = False

    @property
    def running(self) -> bool:
        return self.started and not self.exited

    async def start(self) -> None:
        if self._fail_spawn:
            raise ProcessError("Mock sensor spawn failure", cause="spawn_error")
        self.started = True

    async def stdout_chunks(self) -> AsyncIterator[bytes]:
        for chunk in self._stdout:
            await asyncio.sleep(0)
            yield chunk
        if self._stream_error is not None:
            raise self._stream_error
        await self._released.wait()

    async def stderr_chunks(self) -> AsyncIterator[bytes]:
        for chunk in self._stderr:
            await asyncio.sleep(0)
            yield chunk

    async def wait(self) -> int | None:
        await self._released.wait()
        self.exited = True
        return self._returncode

    async def terminate(self, grace: float) -> None:
        self.terminated = True
        self._returncode = -15
        self._released.set()


SensorFactory = Callable[[], SensorProcess]


def create_sensor(config: SensorConfig, use_mock: bool = False) -> SensorFactory:
    """
    Create a factory producing one sensor process per launch.

    Args:
        config: Sensor settings
        use_mock: Produce idle mock processes instead of real ones

    Returns:
        Zero-argument callable returning a fresh SensorProcess
    """
    if use_mock:
        return lambda: MockSensorProcess(hold=True)
    return lambda: SubprocessSensor(config.executable, config.device)
