"""
Process Supervisor
==================

Owns the lifecycle of one ffmpeg child process.

This module provides the ProcessSupervisor class which:
    - Spawns the decoder with asyncio subprocess pipes
    - Pumps stdout chunks through a FrameReassembler in arrival order
    - Watches stderr and the exit status
    - Respawns after a clean (status 0) exit, after a fixed delay

State machine:
    IDLE -> STARTING -> RUNNING -> STOPPING -> IDLE

Failure handling:
    - Executable not found / spawn fault: raised from start()
    - stderr output (fatal policy): ``error`` event, process killed, ``stop``
    - Non-zero exit: ``exit`` + ``stop`` + ``error``, no respawn
    - Clean exit: ``exit`` + ``stop``, respawn after restart_delay

Design Rules:
    - At most one live process per supervisor
    - Background tasks never raise; faults travel through ``error``
    - stop() discards any partially accumulated frame
    - STOPPING lasts until the old process has exited, so no new spawn
      can overlap it
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional, Sequence

from rtsp_ffmpeg.errors import (
    DecoderExitError,
    DecoderStderrError,
    ExecutableNotFoundError,
    ProcessSpawnError,
    StreamError,
)
from rtsp_ffmpeg.stream.reassembler import FrameReassembler


logger = logging.getLogger(__name__)


EmitFn = Callable[..., None]


def _cancel_all(tasks: Sequence[asyncio.Task]) -> None:
    for task in tasks:
        if not task.done():
            task.cancel()


class SupervisorState(str, Enum):
    """Lifecycle states of the supervised decoder."""

    IDLE = "IDLE"
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"


class SupervisorMetrics:
    """Counters for supervisor observability."""

    __slots__ = (
        "spawn_count",
        "restart_count",
        "frames_emitted",
        "bytes_read",
        "last_returncode",
    )

    def __init__(self) -> None:
        self.spawn_count: int = 0
        self.restart_count: int = 0
        self.frames_emitted: int = 0
        self.bytes_read: int = 0
        self.last_returncode: Optional[int] = None

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "spawn_count": self.spawn_count,
            "restart_count": self.restart_count,
            "frames_emitted": self.frames_emitted,
            "bytes_read": self.bytes_read,
            "last_returncode": self.last_returncode,
        }


class ProcessSupervisor:
    """
    Keeps one decoder process alive and forwards its frames.

    Attributes:
        command: Full argv used for every spawn
        state: Current SupervisorState
        metrics: Operational counters

    Example:
        supervisor = ProcessSupervisor(
            command=["ffmpeg", "-i", url, "-f", "image2", "-update", "1", "-"],
            reassembler=FrameReassembler(),
            emit=controller.emit,
        )
        await supervisor.start()
        ...
        await supervisor.stop()
    """

    def __init__(
        self,
        command: Sequence[str],
        reassembler: FrameReassembler,
        emit: EmitFn,
        restart_delay: float = 1.0,
        fatal_stderr: bool = True,
        stop_timeout: float = 5.0,
        read_chunk_size: int = 65536,
        source: Optional[str] = None,
    ) -> None:
        """
        Initialize process supervisor.

        Args:
            command: Executable followed by its arguments
            reassembler: Frame reassembler fed from stdout
            emit: Event sink, called as emit(event, *payload)
            restart_delay: Seconds to wait before respawning after a clean exit
            fatal_stderr: Treat any stderr output as fatal
            stop_timeout: Seconds to wait after terminate before killing
            read_chunk_size: Maximum bytes per stdout read
            source: Input URI, attached to raised errors
        """
        if not command:
            raise ValueError("command must not be empty")

        self.command = list(command)
        self.restart_delay = restart_delay
        self.fatal_stderr = fatal_stderr
        self.stop_timeout = stop_timeout
        self.read_chunk_size = read_chunk_size
        self.source = source

        self._reassembler = reassembler
        self._emit = emit

        # State
        self._state: SupervisorState = SupervisorState.IDLE
        self._process: Optional[asyncio.subprocess.Process] = None
        self._watcher: Optional[asyncio.Task] = None
        self._restart_task: Optional[asyncio.Task] = None
        # Termination in flight; shared by overlapping stop() calls
        self._shutdown_task: Optional[asyncio.Task] = None
        # Identifies the spawn in flight; cleared by stop() to abort it
        self._spawn_token: Optional[object] = None

        self.metrics = SupervisorMetrics()

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def running(self) -> bool:
        """Whether a decoder process is currently live."""
        return self._process is not None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def restart_pending(self) -> bool:
        """Whether a delayed respawn is scheduled."""
        return self._restart_task is not None

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """
        Spawn the decoder unless one is already live.

        Emits ``start`` once the spawn has been issued. There is no
        readiness handshake.

        Raises:
            ExecutableNotFoundError: The executable is not on PATH
            ProcessSpawnError: Any other spawn fault
        """
        if self._state is not SupervisorState.IDLE:
            logger.debug(f"start() ignored, supervisor is {self._state.value}")
            return

        self._cancel_pending_restart()
        self._state = SupervisorState.STARTING
        token = object()
        self._spawn_token = token

        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            self._abandon_spawn(token)
            logger.error(f"Decoder executable not found: {self.command[0]}")
            raise ExecutableNotFoundError(self.command[0], source=self.source) from e
        except OSError as e:
            self._abandon_spawn(token)
            logger.error(f"Failed to spawn decoder: {e}")
            raise ProcessSpawnError(
                f"Failed to spawn {self.command[0]}: {e}",
                source=self.source,
            ) from e

        if self._spawn_token is not token:
            # stop() ran while the spawn was in flight
            logger.info(f"Decoder spawn aborted by stop (pid={process.pid})")
            await self._terminate(process)
            return

        self._spawn_token = None
        self._process = process
        self._state = SupervisorState.RUNNING
        self._reassembler.reset()
        self.metrics.spawn_count += 1
        self._watcher = asyncio.create_task(
            self._watch(process),
            name=f"decoder_watch_{process.pid}",
        )

        logger.info(f"Decoder started (pid={process.pid}): {self.source or self.command[0]}")
        self._emit("start")

    async def stop(self) -> None:
        """
        Terminate the decoder if live, then emit ``stop``.

        Always emits ``stop``, even when nothing was running. Any partial
        frame is discarded. The supervisor stays STOPPING until the process
        has exited; a stop() issued meanwhile waits for that same shutdown
        instead of finishing early.
        """
        self._cancel_pending_restart()
        self._spawn_token = None

        process, watcher = self._process, self._watcher
        self._process = None
        self._watcher = None

        if process is not None:
            self._state = SupervisorState.STOPPING
            logger.info(f"Stopping decoder (pid={process.pid})")
            self._shutdown_task = asyncio.create_task(
                self._shutdown(process, watcher),
                name=f"decoder_stop_{process.pid}",
            )

        shutdown = self._shutdown_task
        if shutdown is not None:
            # Shielded so a cancelled caller can't leave the process running
            await asyncio.shield(shutdown)
        else:
            logger.debug("stop() with no live decoder")
            self._state = SupervisorState.IDLE
            self._reassembler.reset()

        self._emit("stop")

    async def restart(self) -> None:
        """Stop then start, but only if a decoder is currently running."""
        if self._state is not SupervisorState.RUNNING:
            logger.debug(f"restart() ignored, supervisor is {self._state.value}")
            return

        await self.stop()
        await self.start()

    # -------------------------------------------------------------------------
    # Background tasks
    # -------------------------------------------------------------------------

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        """Pump both pipes, then react to how the process ended."""
        pumps = [
            asyncio.create_task(self._pump_stdout(process), name="decoder_stdout"),
            asyncio.create_task(self._pump_stderr(process), name="decoder_stderr"),
        ]

        try:
            done, _ = await asyncio.wait(pumps, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                error = task.exception()
                if error is not None:
                    raise error
            returncode = await process.wait()

        except DecoderStderrError as error:
            if self._process is not process:
                return
            _cancel_all(pumps)
            logger.error(f"Decoder wrote to stderr, stopping: {error.output}")
            self._emit("error", error)
            await self._terminate(process)
            self._release(process)
            return

        except Exception as e:
            # Read errors on the pipes
            if self._process is not process:
                return
            _cancel_all(pumps)
            logger.error(f"Decoder pipe error: {e}")
            self._emit("error", StreamError(f"Decoder pipe error: {e}", source=self.source))
            await self._terminate(process)
            self._release(process)
            return

        finally:
            _cancel_all(pumps)

        if self._process is not process:
            return

        self.metrics.last_returncode = returncode
        self._emit("exit", returncode)
        self._release(process)

        if returncode == 0:
            logger.info(
                f"Decoder exited cleanly (pid={process.pid}), "
                f"restarting in {self.restart_delay:.1f}s"
            )
            self._restart_task = asyncio.create_task(
                self._delayed_start(),
                name="decoder_restart",
            )
        else:
            logger.error(
                f"Decoder exited with status {returncode} (pid={process.pid}), "
                "not restarting"
            )
            self._emit("error", DecoderExitError(returncode, source=self.source))

    async def _pump_stdout(self, process: asyncio.subprocess.Process) -> None:
        while True:
            chunk = await process.stdout.read(self.read_chunk_size)
            if not chunk:
                return
            self.metrics.bytes_read += len(chunk)
            for frame in self._reassembler.feed(chunk):
                self.metrics.frames_emitted += 1
                self._emit("data", frame)

    async def _pump_stderr(self, process: asyncio.subprocess.Process) -> None:
        while True:
            chunk = await process.stderr.read(4096)
            if not chunk:
                return
            message = chunk.decode("utf-8", errors="replace").strip()
            if self.fatal_stderr:
                raise DecoderStderrError(message, source=self.source)
            logger.warning(f"Decoder stderr: {message}")

    async def _delayed_start(self) -> None:
        await asyncio.sleep(self.restart_delay)
        self._restart_task = None
        spawned = self.metrics.spawn_count

        try:
            await self.start()
        except StreamError as error:
            # Nobody awaits this task, so report through the event channel
            self._emit("error", error)
            return

        if self.metrics.spawn_count > spawned:
            self.metrics.restart_count += 1

    async def _shutdown(
        self,
        process: asyncio.subprocess.Process,
        watcher: Optional[asyncio.Task],
    ) -> None:
        """Cancel the watcher and terminate the process, then go IDLE."""
        try:
            if watcher is not None:
                watcher.cancel()
                try:
                    await watcher
                except asyncio.CancelledError:
                    pass
            await self._terminate(process)
        finally:
            self._shutdown_task = None
            self._state = SupervisorState.IDLE
            self._reassembler.reset()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _release(self, process: asyncio.subprocess.Process) -> None:
        """Drop the handle of a process that ended on its own, emit ``stop``."""
        if self._process is not process:
            return
        self._process = None
        self._watcher = None
        self._state = SupervisorState.IDLE
        self._reassembler.reset()
        self._emit("stop")

    def _abandon_spawn(self, token: object) -> None:
        if self._spawn_token is token:
            self._spawn_token = None
            self._state = SupervisorState.IDLE

    def _cancel_pending_restart(self) -> None:
        task = self._restart_task
        self._restart_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """Terminate, escalating to kill after stop_timeout."""
        if process.returncode is not None:
            return

        try:
            process.terminate()
        except ProcessLookupError:
            return

        try:
            await asyncio.wait_for(process.wait(), timeout=self.stop_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Decoder did not exit within {self.stop_timeout:.1f}s, killing "
                f"(pid={process.pid})"
            )
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()
