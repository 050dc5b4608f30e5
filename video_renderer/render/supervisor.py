"""Runs FFmpeg for one encode job and watches it until it finishes.

Each run moves through ``PENDING -> RUNNING -> SUCCEEDED | FAILED``. Progress
comes from ``-progress pipe:1`` on stdout, diagnostics from stderr. A run only
succeeds when FFmpeg exits 0 *and* the declared output file exists with a
non-zero size. Failed encodes are never retried here.
"""

import asyncio
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from video_renderer.render.composer import EncodeJob

logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")


class EncodeState(Enum):
    """Encoder run state."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_TRANSITIONS = {
    EncodeState.PENDING: {EncodeState.RUNNING, EncodeState.FAILED},
    EncodeState.RUNNING: {EncodeState.SUCCEEDED, EncodeState.FAILED},
    EncodeState.SUCCEEDED: set(),
    EncodeState.FAILED: set(),
}


@dataclass
class RenderResult:
    """Outcome of a render stage."""

    state: EncodeState
    output_path: Optional[Path] = None
    byte_size: int = 0
    stage: Optional[str] = None
    message: Optional[str] = None
    exit_code: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.state is EncodeState.SUCCEEDED

    @classmethod
    def succeeded(cls, output_path: Path, byte_size: int) -> "RenderResult":
        return cls(state=EncodeState.SUCCEEDED, output_path=output_path, byte_size=byte_size)

    @classmethod
    def failed(cls, message: str, *, stage: str = "encode", exit_code: Optional[int] = None) -> "RenderResult":
        return cls(state=EncodeState.FAILED, stage=stage, message=message, exit_code=exit_code)

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "output_path": str(self.output_path) if self.output_path else None,
            "byte_size": self.byte_size,
            "stage": self.stage,
            "message": self.message,
            "exit_code": self.exit_code,
        }


@dataclass
class EncodeRun:
    """Live state of one FFmpeg process."""

    job: EncodeJob
    state: EncodeState = EncodeState.PENDING
    pid: Optional[int] = None
    out_time_s: float = 0.0
    percent: float = 0.0
    source_duration_s: Optional[float] = None
    reported_end: bool = False
    stderr_tail: deque = field(default_factory=lambda: deque(maxlen=40))

    def transition(self, new_state: EncodeState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid encoder transition {self.state.value} -> {new_state.value}")
        self.state = new_state

    @property
    def expected_duration_s(self) -> Optional[float]:
        return self.job.duration_s or self.source_duration_s

    @property
    def diagnostic(self) -> str:
        return "\n".join(self.stderr_tail).strip()


ProgressCallback = Callable[[float, EncodeRun], None]


class EncoderSupervisor:
    """Launches and supervises FFmpeg subprocesses."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        *,
        timeout_s: float = 600.0,
        terminate_grace_s: float = 5.0,
        max_concurrent: int = 0,
    ) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.timeout_s = timeout_s
        self.terminate_grace_s = terminate_grace_s
        self._slots = asyncio.Semaphore(max_concurrent) if max_concurrent > 0 else None

    def build_command(self, job: EncodeJob) -> list[str]:
        """Serialize ``job`` into an FFmpeg argument list."""
        cmd = [self.ffmpeg_path, "-hide_banner", "-nostdin", "-y"]
        for encode_input in job.inputs:
            cmd += encode_input.to_args()
        cmd += ["-filter_complex", job.filter_graph]
        for stream in job.maps:
            cmd += ["-map", stream]
        for option, value in job.output_option_pairs:
            cmd += [option, value]
        cmd += ["-progress", "pipe:1", "-nostats", str(job.output_path)]
        return cmd

    async def run(self, job: EncodeJob, on_progress: Optional[ProgressCallback] = None) -> RenderResult:
        """Encode ``job`` and report the outcome.

        Raises:
            asyncio.CancelledError: After the FFmpeg process was terminated.
        """
        if self._slots is None:
            return await self._run(job, on_progress)
        async with self._slots:
            return await self._run(job, on_progress)

    async def _run(self, job: EncodeJob, on_progress: Optional[ProgressCallback]) -> RenderResult:
        run = EncodeRun(job=job)

        # A leftover file must never be mistaken for this run's output.
        job.output_path.unlink(missing_ok=True)
        job.output_path.parent.mkdir(parents=True, exist_ok=True)

        cmd = self.build_command(job)
        logger.info(f"[ENCODE] Starting ffmpeg for {job.kind} ({len(job.inputs)} input(s))")
        logger.debug(f"[ENCODE] Command: {cmd}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=1024 * 1024,
            )
        except OSError as e:
            run.transition(EncodeState.FAILED)
            logger.error(f"[ENCODE] Could not launch {self.ffmpeg_path}: {e}")
            return RenderResult.failed(f"Could not launch encoder: {e.strerror or e}")

        run.pid = proc.pid
        run.transition(EncodeState.RUNNING)

        try:
            await asyncio.wait_for(self._drive(proc, run, on_progress), self.timeout_s)
        except asyncio.TimeoutError:
            await self._terminate(proc)
            run.transition(EncodeState.FAILED)
            logger.error(f"[ENCODE] ffmpeg timed out after {self.timeout_s:g}s (pid={run.pid})")
            return RenderResult.failed(f"Encoder timed out after {self.timeout_s:g}s")
        except asyncio.CancelledError:
            await self._terminate(proc)
            run.transition(EncodeState.FAILED)
            logger.warning(f"[ENCODE] Render cancelled, ffmpeg terminated (pid={run.pid})")
            raise
        except BaseException:
            await self._terminate(proc)
            run.transition(EncodeState.FAILED)
            logger.exception(f"[ENCODE] Supervision failed, ffmpeg terminated (pid={run.pid})")
            raise

        return self._finish(run, proc.returncode)

    async def _drive(
        self,
        proc: asyncio.subprocess.Process,
        run: EncodeRun,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        await asyncio.gather(
            self._read_progress(proc.stdout, run, on_progress),
            self._read_stderr(proc.stderr, run),
        )
        await proc.wait()

    async def _read_progress(
        self,
        stream: asyncio.StreamReader,
        run: EncodeRun,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        last_reported = 0.0
        async for raw_line in stream:
            line = raw_line.decode("utf-8", errors="replace").strip()
            key, _, value = line.partition("=")
            # out_time_ms is also in microseconds.
            if key in ("out_time_us", "out_time_ms"):
                try:
                    run.out_time_s = int(value) / 1_000_000
                except ValueError:
                    continue
                duration = run.expected_duration_s
                if duration:
                    run.percent = min(100.0, run.out_time_s / duration * 100)
                    if run.percent >= last_reported + 10:
                        last_reported = run.percent
                        logger.info(f"[ENCODE] {run.percent:.0f}% (pid={run.pid})")
                        if on_progress:
                            on_progress(run.percent, run)
            elif key == "progress" and value == "end":
                run.reported_end = True
                run.percent = 100.0
                if on_progress:
                    on_progress(100.0, run)

    async def _read_stderr(self, stream: asyncio.StreamReader, run: EncodeRun) -> None:
        async for raw_line in stream:
            line = raw_line.decode("utf-8", errors="replace").rstrip()
            if not line:
                continue
            run.stderr_tail.append(line)
            if run.source_duration_s is None:
                match = _DURATION_RE.search(line)
                if match:
                    hours, minutes, seconds = match.groups()
                    run.source_duration_s = int(hours) * 3600 + int(minutes) * 60 + float(seconds)

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), self.terminate_grace_s)
        except asyncio.TimeoutError:
            logger.warning(f"[ENCODE] ffmpeg ignored SIGTERM, killing (pid={proc.pid})")
            try:
                proc.kill()
            except ProcessLookupError:
                return
            await proc.wait()

    def _finish(self, run: EncodeRun, exit_code: Optional[int]) -> RenderResult:
        output_path = run.job.output_path
        if exit_code != 0:
            diagnostic = run.diagnostic or f"ffmpeg exited with code {exit_code}"
            run.transition(EncodeState.FAILED)
            logger.error(f"[ENCODE] ffmpeg failed with exit code {exit_code}:\n{diagnostic}")
            return RenderResult.failed(diagnostic, exit_code=exit_code)

        try:
            byte_size = output_path.stat().st_size
        except FileNotFoundError:
            byte_size = 0
        if byte_size <= 0:
            run.transition(EncodeState.FAILED)
            logger.error(f"[ENCODE] ffmpeg exited 0 but {output_path.name} is missing or empty")
            return RenderResult.failed("Encoder produced no output", exit_code=exit_code)

        if not run.reported_end:
            logger.warning("[ENCODE] ffmpeg exited 0 without reporting progress=end")
        run.transition(EncodeState.SUCCEEDED)
        logger.info(f"[ENCODE] Finished {output_path.name}: {byte_size / 1024**2:.1f} MB")
        return RenderResult.succeeded(output_path, byte_size)
