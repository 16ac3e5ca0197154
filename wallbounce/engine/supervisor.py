"""Supervised execution of one external reasoning-engine command.

The supervisor owns the subprocess for the duration of a single call:

- the prompt is written to stdin, which is then closed;
- stdout is read chunk by chunk; the first chunk longer than
  INITIAL_RESPONSE_MIN_BYTES permanently disarms the initial-response
  timer, and every chunk rearms the inactivity timer;
- either timer firing kills the process group and fails the call;
- on exit 0 the accumulated output is handed to StreamEventParser.

Timer callbacks and chunk handling run on the same event loop, so a
rearm can never interleave with a timer that is mid-fire. The outcome
is settled once through SupervisionGuard; the "process closed" that
follows a kill does not produce a second result.
"""
from __future__ import annotations

import asyncio
import logging
import os
import signal
import tempfile
import time

from .config import EngineConfig, ResultCallback, fire_event
from .errors import (
    InactivityTimeout,
    InitialResponseTimeout,
    InvocationTimeoutError,
    ProcessExitError,
    SpawnError,
)
from .lifecycle import SupervisionGuard, SupervisionState
from .models import InvocationRequest, InvocationResult, TimeoutPolicy
from .stream_parser import StreamEventParser

logger = logging.getLogger(__name__)

INITIAL_RESPONSE_MIN_BYTES = 10
INPUT_PATH_PLACEHOLDER = "{input_path}"
_READ_CHUNK_SIZE = 4096
_DRAIN_GRACE_SECONDS = 2.0
_EXIT_POLL_SECONDS = 0.05


class _Supervision:
    """Per-call state: one process, one timer pair, one guard."""

    def __init__(
        self,
        request: InvocationRequest,
        proc: asyncio.subprocess.Process,
    ) -> None:
        self.request = request
        self.proc = proc
        self.policy: TimeoutPolicy = request.timeouts
        self.guard = SupervisionGuard()
        self.loop = asyncio.get_running_loop()
        self.chunks: list[bytes] = []
        self.first_response = False
        self.reader: asyncio.Task | None = None
        self._initial_timer: asyncio.TimerHandle | None = None
        self._inactivity_timer: asyncio.TimerHandle | None = None

    @property
    def short_id(self) -> str:
        return self.request.request_id[:8]

    def arm_initial_timer(self) -> None:
        seconds = self.policy.time_to_first_byte
        if seconds is None:
            return
        self._initial_timer = self.loop.call_later(
            seconds, self._expire, InitialResponseTimeout(seconds),
        )

    def on_chunk(self, chunk: bytes) -> None:
        self.chunks.append(chunk)
        if not self.guard.running:
            return
        if not self.first_response and len(chunk) > INITIAL_RESPONSE_MIN_BYTES:
            self.first_response = True
            if self._initial_timer is not None:
                self._initial_timer.cancel()
                self._initial_timer = None
            logger.info("Invocation %s: initial response received", self.short_id)
        gap = self.policy.inactivity_gap
        if gap is not None:
            if self._inactivity_timer is not None:
                self._inactivity_timer.cancel()
            self._inactivity_timer = self.loop.call_later(
                gap, self._expire, InactivityTimeout(gap),
            )

    def _expire(self, error: InvocationTimeoutError) -> None:
        if not self.guard.settle(SupervisionState.TIMED_OUT, error):
            return
        logger.warning(
            "Invocation %s: %s, killing pid=%s",
            self.short_id, error, self.proc.pid,
        )
        self.cancel_timers()
        self.kill()
        if self.reader is not None:
            self.reader.cancel()

    def cancel_timers(self) -> None:
        for handle in (self._initial_timer, self._inactivity_timer):
            if handle is not None:
                handle.cancel()
        self._initial_timer = None
        self._inactivity_timer = None

    def kill(self) -> None:
        """SIGKILL the child's process group, descendants included."""
        try:
            if hasattr(os, "killpg"):
                os.killpg(self.proc.pid, signal.SIGKILL)
            elif self.proc.returncode is None:
                self.proc.kill()
        except (ProcessLookupError, PermissionError):
            pass

    async def wait_exit(self) -> int:
        # Process.wait() also waits for the pipes to close, and
        # descendants may still hold them after the child exits.
        while self.proc.returncode is None:
            await asyncio.sleep(_EXIT_POLL_SECONDS)
        return self.proc.returncode

    async def pump_stdout(self) -> None:
        assert self.proc.stdout is not None
        while True:
            chunk = await self.proc.stdout.read(_READ_CHUNK_SIZE)
            if not chunk:
                return
            self.on_chunk(chunk)

    def output_text(self) -> str:
        return b"".join(self.chunks).decode("utf-8", errors="replace")


class ProcessSupervisor:
    """Runs external commands under a two-phase timeout policy.

    One instance can serve many concurrent supervise() calls; all
    mutable state lives in the per-call _Supervision.
    """

    def __init__(
        self,
        parser: StreamEventParser | None = None,
        *,
        scratch_dir: str | None = None,
        stderr_preview_chars: int = 500,
        result_callback: ResultCallback | None = None,
    ) -> None:
        self._parser = parser or StreamEventParser()
        self._scratch_dir = scratch_dir
        self._stderr_preview_chars = stderr_preview_chars
        self._result_callback = result_callback

    @classmethod
    def from_config(cls, config: EngineConfig) -> ProcessSupervisor:
        return cls(
            scratch_dir=config.scratch_dir,
            stderr_preview_chars=config.stderr_preview_chars,
            result_callback=config.result_callback,
        )

    async def supervise(self, request: InvocationRequest) -> InvocationResult:
        """Run *request* to completion and return the parsed result.

        Raises SpawnError, InitialResponseTimeout, InactivityTimeout or
        ProcessExitError. Scratch files, timers and a still-running
        process are cleaned up on every path, including cancellation.
        """
        started = time.monotonic()
        scratch_path: str | None = None
        sup: _Supervision | None = None
        stderr_task: asyncio.Task | None = None
        writer: asyncio.Task | None = None
        exit_watch: asyncio.Task | None = None

        try:
            command = list(request.command)
            if not command:
                raise SpawnError("", "empty command")
            if request.stage_input:
                try:
                    scratch_path = self._stage_input(request.prompt)
                except OSError as exc:
                    raise SpawnError(command[0], f"cannot stage input: {exc}") from exc
                command = [
                    arg.replace(INPUT_PATH_PLACEHOLDER, scratch_path)
                    for arg in command
                ]

            try:
                # create_subprocess_exec passes args as array, no shell
                proc = await asyncio.create_subprocess_exec(
                    *command,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    env=self._build_env(request.env),
                    cwd=request.cwd,
                    start_new_session=True,
                )
            except OSError as exc:
                raise SpawnError(command[0], str(exc)) from exc

            sup = _Supervision(request, proc)
            logger.info(
                "Invocation %s: spawned %s (pid=%d, prompt=%d chars, timeouts=%s/%s)",
                sup.short_id, command[0], proc.pid, len(request.prompt),
                sup.policy.time_to_first_byte, sup.policy.inactivity_gap,
            )

            assert proc.stderr is not None
            stderr_task = asyncio.create_task(proc.stderr.read())
            sup.reader = asyncio.create_task(sup.pump_stdout())
            exit_watch = asyncio.create_task(sup.wait_exit())
            writer = asyncio.create_task(self._write_input(proc, request.prompt))
            sup.arm_initial_timer()

            # asyncio.wait does not raise when a timer cancels the reader.
            await asyncio.wait(
                {sup.reader, exit_watch}, return_when=asyncio.FIRST_COMPLETED,
            )
            returncode = await exit_watch
            sup.cancel_timers()
            # Descendants left behind by the child keep the pipes open.
            sup.kill()
            if not await self._settle_task(sup.reader):
                logger.warning(
                    "Invocation %s: stdout still open %.1fs after exit",
                    sup.short_id, _DRAIN_GRACE_SECONDS,
                )
            elif not sup.reader.cancelled():
                sup.reader.result()

            if not sup.guard.settle(SupervisionState.EXITED):
                assert sup.guard.cause is not None
                raise sup.guard.cause
            if writer.done():
                writer.result()

            stderr_bytes = b""
            if await self._settle_task(stderr_task):
                stderr_bytes = stderr_task.result()
            stderr_text = stderr_bytes.decode("utf-8", errors="replace")
            raw_output = sup.output_text()
            duration = time.monotonic() - started
            logger.info(
                "Invocation %s: exited rc=%d after %.2fs (%d bytes stdout)",
                sup.short_id, returncode, duration, len(raw_output),
            )

            if returncode != 0:
                preview = stderr_text.strip()[: self._stderr_preview_chars]
                raise ProcessExitError(returncode, preview)

            parsed = self._parser.parse(raw_output, request.prompt)
            result = InvocationResult(
                raw_output=raw_output,
                extracted_text=parsed.extracted_text,
                token_usage=parsed.token_usage,
                processing_duration=duration,
                exit_status=returncode,
                degradations=list(parsed.degradations),
                request_id=request.request_id,
            )
        finally:
            if sup is not None:
                sup.guard.settle(SupervisionState.FAILED)
                sup.cancel_timers()
                if sup.proc.returncode is None:
                    sup.kill()
                    try:
                        await asyncio.wait_for(sup.wait_exit(), _DRAIN_GRACE_SECONDS)
                    except asyncio.TimeoutError:
                        logger.warning(
                            "Invocation %s: pid=%s did not exit after SIGKILL",
                            sup.short_id, sup.proc.pid,
                        )
                for task in (sup.reader, exit_watch, writer, stderr_task):
                    if task is not None and not task.done():
                        task.cancel()
            if scratch_path is not None:
                self._remove_scratch(scratch_path)

        await fire_event(self._result_callback, {
            "event": "invocation_completed",
            "request_id": result.request_id,
            "exit_status": result.exit_status,
            "duration_seconds": result.processing_duration,
            "input_tokens": result.token_usage.input,
            "output_tokens": result.token_usage.output,
            "total_tokens": result.token_usage.total,
            "usage_exact": result.token_usage.exact,
            "text": result.extracted_text,
        })
        return result

    @staticmethod
    def _build_env(overrides: dict[str, str]) -> dict[str, str] | None:
        if not overrides:
            return None
        env = os.environ.copy()
        env.update(overrides)
        return env

    @staticmethod
    async def _settle_task(task: asyncio.Task) -> bool:
        """Give *task* a bounded drain; cancel it if still pending."""
        done, _ = await asyncio.wait({task}, timeout=_DRAIN_GRACE_SECONDS)
        if not done:
            task.cancel()
            return False
        return True

    @staticmethod
    async def _write_input(
        proc: asyncio.subprocess.Process, prompt: str,
    ) -> None:
        """Send the whole prompt and close stdin."""
        if proc.stdin is None:
            return
        try:
            if prompt:
                proc.stdin.write(prompt.encode("utf-8"))
                await proc.stdin.drain()
            proc.stdin.close()
        except (BrokenPipeError, ConnectionResetError):
            # The child exited without reading its input; its exit
            # status decides the outcome.
            logger.debug("stdin closed by child before prompt was written")

    def _stage_input(self, prompt: str) -> str:
        fd, path = tempfile.mkstemp(
            prefix="codex-prompt-", suffix=".txt", dir=self._scratch_dir,
        )
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(prompt)
        return path

    @staticmethod
    def _remove_scratch(path: str) -> None:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to remove scratch file %s: %s", path, exc)
