"""
Process Supervisor Tests
========================

Lifecycle, restart policy and failure signalling against a fake decoder
(the running Python interpreter).
"""

import asyncio

import pytest

from rtsp_ffmpeg.errors import (
    DecoderExitError,
    DecoderStderrError,
    ExecutableNotFoundError,
    StreamError,
)
from rtsp_ffmpeg.stream import FrameReassembler, ProcessSupervisor, SupervisorState


def make_supervisor(command, event_log, **kwargs) -> ProcessSupervisor:
    kwargs.setdefault("restart_delay", 0.05)
    kwargs.setdefault("stop_timeout", 2.0)
    kwargs.setdefault("reassembler", FrameReassembler())
    return ProcessSupervisor(
        command=command,
        emit=event_log,
        source="rtsp://test/stream",
        **kwargs,
    )


class FailingReassembler(FrameReassembler):
    """Reassembler whose feed blows up, like a broken stdout pipe."""

    def feed(self, chunk):
        raise OSError("read failed")


class TestLifecycle:
    """Tests for start/stop/restart state handling."""

    @pytest.mark.asyncio
    async def test_start_emits_frames_then_exit(
        self, sample_jpeg, event_log, wait_until, make_decoder_command
    ):
        supervisor = make_supervisor(
            make_decoder_command([sample_jpeg[:6], sample_jpeg[6:]], exit_code=1),
            event_log,
        )

        await supervisor.start()
        assert event_log.names()[0] == "start"

        await wait_until(lambda: event_log.count("stop") == 1)

        assert event_log.payloads("data") == [sample_jpeg]
        assert event_log.payloads("exit") == [1]
        assert supervisor.state is SupervisorState.IDLE
        assert not supervisor.running
        assert supervisor.metrics.last_returncode == 1

    @pytest.mark.asyncio
    async def test_start_is_noop_while_running(self, event_log, make_decoder_command):
        supervisor = make_supervisor(make_decoder_command(linger=30), event_log)

        await supervisor.start()
        pid = supervisor.pid
        await supervisor.start()

        assert event_log.count("start") == 1
        assert supervisor.pid == pid
        assert supervisor.metrics.spawn_count == 1

        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_stop_terminates_process(self, event_log, make_decoder_command):
        supervisor = make_supervisor(make_decoder_command(linger=30), event_log)
        await supervisor.start()
        process = supervisor._process

        await supervisor.stop()

        assert process.returncode is not None
        assert supervisor.state is SupervisorState.IDLE
        assert supervisor.pid is None
        assert event_log.names() == ["start", "stop"]

    @pytest.mark.asyncio
    async def test_stop_when_idle_emits_single_stop(self, event_log, make_decoder_command):
        supervisor = make_supervisor(make_decoder_command(), event_log)

        await supervisor.stop()

        assert event_log.names() == ["stop"]
        assert supervisor.state is SupervisorState.IDLE
        assert supervisor.metrics.spawn_count == 0

    @pytest.mark.asyncio
    async def test_restart_when_idle_is_noop(self, event_log, make_decoder_command):
        supervisor = make_supervisor(make_decoder_command(), event_log)

        await supervisor.restart()

        assert event_log.names() == []
        assert supervisor.metrics.spawn_count == 0

    @pytest.mark.asyncio
    async def test_restart_when_running(self, event_log, make_decoder_command):
        supervisor = make_supervisor(make_decoder_command(linger=30), event_log)
        await supervisor.start()
        first_pid = supervisor.pid

        await supervisor.restart()

        assert event_log.names() == ["start", "stop", "start"]
        assert supervisor.pid != first_pid
        assert supervisor.metrics.spawn_count == 2

        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_stop_discards_partial_frame(self, event_log, wait_until, make_decoder_command):
        supervisor = make_supervisor(
            make_decoder_command([b"\xff\xd8partial"], linger=30),
            event_log,
        )
        await supervisor.start()
        await wait_until(lambda: supervisor.metrics.bytes_read == 9)

        await supervisor.stop()

        assert supervisor._reassembler.pending_bytes == 0
        assert event_log.count("data") == 0

    @pytest.mark.asyncio
    async def test_stop_during_spawn_aborts_it(self, event_log, make_decoder_command):
        supervisor = make_supervisor(make_decoder_command(linger=30), event_log)

        spawn = asyncio.create_task(supervisor.start())
        await asyncio.sleep(0)
        assert supervisor.state is SupervisorState.STARTING

        await supervisor.stop()
        await spawn

        assert supervisor.state is SupervisorState.IDLE
        assert not supervisor.running
        assert event_log.names() == ["stop"]
        assert supervisor.metrics.spawn_count == 0

    @pytest.mark.asyncio
    async def test_overlapping_stops_leave_single_process(
        self, event_log, wait_until, make_decoder_command
    ):
        supervisor = make_supervisor(
            make_decoder_command([b"ready"], linger=30, term_delay=0.3),
            event_log,
        )
        await supervisor.start()
        first = supervisor._process
        # The child has installed its slow SIGTERM handler once it wrote
        await wait_until(lambda: supervisor.metrics.bytes_read == 5)

        first_stop = asyncio.create_task(supervisor.stop())
        await asyncio.sleep(0.05)
        assert supervisor.state is SupervisorState.STOPPING

        await supervisor.stop()
        assert first.returncode is not None
        assert supervisor.state is SupervisorState.IDLE

        await supervisor.start()
        second = supervisor._process
        await first_stop

        assert supervisor.state is SupervisorState.RUNNING
        assert supervisor._process is second
        assert second.returncode is None

        await supervisor.stop()

        assert second.returncode is not None
        assert not supervisor.running
        assert supervisor.state is SupervisorState.IDLE
        assert event_log.names() == ["start", "stop", "stop", "start", "stop"]

    @pytest.mark.asyncio
    async def test_start_while_stopping_is_noop(
        self, event_log, wait_until, make_decoder_command
    ):
        supervisor = make_supervisor(
            make_decoder_command([b"ready"], linger=30, term_delay=0.3),
            event_log,
        )
        await supervisor.start()
        await wait_until(lambda: supervisor.metrics.bytes_read == 5)

        stopping = asyncio.create_task(supervisor.stop())
        await asyncio.sleep(0.05)
        await supervisor.start()
        await stopping

        assert supervisor.metrics.spawn_count == 1
        assert not supervisor.running
        assert event_log.names() == ["start", "stop"]


class TestExitPolicy:
    """Tests for clean vs. failed decoder exits."""

    @pytest.mark.asyncio
    async def test_clean_exit_restarts_after_delay(
        self, sample_jpeg, event_log, wait_until, make_decoder_command
    ):
        supervisor = make_supervisor(
            make_decoder_command([sample_jpeg], exit_code=0),
            event_log,
        )

        await supervisor.start()
        await wait_until(lambda: event_log.count("start") >= 2)
        await supervisor.stop()

        names = event_log.names()
        first_stop = names.index("stop")
        assert "start" in names[first_stop:]
        assert names[first_stop - 1] == "exit"
        assert event_log.payloads("exit")[0] == 0
        assert supervisor.metrics.restart_count >= 1
        assert not supervisor.running

    @pytest.mark.asyncio
    async def test_nonzero_exit_does_not_restart(
        self, event_log, wait_until, make_decoder_command
    ):
        supervisor = make_supervisor(make_decoder_command(exit_code=1), event_log)

        await supervisor.start()
        await wait_until(lambda: event_log.count("stop") == 1)
        await asyncio.sleep(0.3)

        assert event_log.count("start") == 1
        assert not supervisor.restart_pending
        errors = event_log.payloads("error")
        assert len(errors) == 1
        assert isinstance(errors[0], DecoderExitError)
        assert errors[0].returncode == 1

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_restart(
        self, event_log, wait_until, make_decoder_command
    ):
        supervisor = make_supervisor(
            make_decoder_command(exit_code=0),
            event_log,
            restart_delay=0.5,
        )

        await supervisor.start()
        await wait_until(lambda: supervisor.restart_pending)
        await supervisor.stop()
        await asyncio.sleep(0.7)

        assert event_log.count("start") == 1
        assert supervisor.metrics.spawn_count == 1

    @pytest.mark.asyncio
    async def test_explicit_start_cancels_pending_restart(
        self, event_log, wait_until, make_decoder_command
    ):
        supervisor = make_supervisor(
            make_decoder_command(exit_code=0),
            event_log,
            restart_delay=0.5,
        )

        await supervisor.start()
        await wait_until(lambda: supervisor.restart_pending)
        supervisor.command = make_decoder_command(linger=30)
        await supervisor.start()

        assert not supervisor.restart_pending
        await asyncio.sleep(0.7)

        assert event_log.count("start") == 2
        assert supervisor.metrics.spawn_count == 2
        assert supervisor.metrics.restart_count == 0

        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_failed_respawn_emits_error(
        self, event_log, wait_until, make_decoder_command
    ):
        supervisor = make_supervisor(
            make_decoder_command(exit_code=0),
            event_log,
            restart_delay=0.3,
        )

        await supervisor.start()
        await wait_until(lambda: supervisor.restart_pending)
        supervisor.command = ["/nonexistent/bin/ffmpeg-missing"]
        await wait_until(lambda: event_log.count("error") == 1)

        errors = event_log.payloads("error")
        assert isinstance(errors[0], ExecutableNotFoundError)
        assert errors[0].source == "rtsp://test/stream"
        assert supervisor.state is SupervisorState.IDLE
        assert not supervisor.restart_pending
        assert supervisor.metrics.spawn_count == 1
        assert supervisor.metrics.restart_count == 0


class TestFailures:
    """Tests for spawn faults and stderr handling."""

    @pytest.mark.asyncio
    async def test_executable_not_found(self, event_log):
        supervisor = make_supervisor(["/nonexistent/bin/ffmpeg-missing", "-i", "x"], event_log)

        with pytest.raises(ExecutableNotFoundError) as excinfo:
            await supervisor.start()

        assert excinfo.value.cmd == "/nonexistent/bin/ffmpeg-missing"
        assert excinfo.value.source == "rtsp://test/stream"
        assert supervisor.state is SupervisorState.IDLE
        assert event_log.names() == []

    @pytest.mark.asyncio
    async def test_stderr_output_is_fatal(self, event_log, wait_until, make_decoder_command):
        supervisor = make_supervisor(
            make_decoder_command(stderr="Connection refused", linger=30),
            event_log,
        )

        await supervisor.start()
        await wait_until(lambda: event_log.count("stop") == 1)

        errors = event_log.payloads("error")
        assert len(errors) == 1
        assert isinstance(errors[0], DecoderStderrError)
        assert "Connection refused" in errors[0].output
        assert event_log.names()[-2:] == ["error", "stop"]
        assert not supervisor.running

    @pytest.mark.asyncio
    async def test_stderr_output_logged_when_not_fatal(
        self, event_log, wait_until, make_decoder_command, caplog
    ):
        supervisor = make_supervisor(
            make_decoder_command(stderr="frame dropped", linger=30),
            event_log,
            fatal_stderr=False,
        )

        with caplog.at_level("WARNING"):
            await supervisor.start()
            await wait_until(lambda: "frame dropped" in caplog.text)

        assert supervisor.running
        assert event_log.count("error") == 0

        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_pipe_error_stops_decoder(self, event_log, wait_until, make_decoder_command):
        supervisor = make_supervisor(
            make_decoder_command([b"\xff\xd8\x00"], linger=30),
            event_log,
            reassembler=FailingReassembler(),
        )
        await supervisor.start()
        process = supervisor._process

        await wait_until(lambda: event_log.count("stop") == 1)

        errors = event_log.payloads("error")
        assert len(errors) == 1
        assert type(errors[0]) is StreamError
        assert "Decoder pipe error" in str(errors[0])
        assert "read failed" in str(errors[0])
        assert event_log.names()[-2:] == ["error", "stop"]
        assert process.returncode is not None
        assert not supervisor.running
        assert not supervisor.restart_pending
