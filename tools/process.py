"""Bounded subprocess execution shared by the shell and code tools."""

import asyncio
import logging
import os
import signal
from dataclasses import dataclass

from agent.exceptions import ExecutionFailureError, ExecutionTimeoutError

logger = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024


@dataclass
class ProcessResult:
    """Captured output of a finished process."""
    exit_code: int
    stdout: str
    stderr: str

    def as_dict(self) -> dict:
        return {"stdout": self.stdout, "stderr": self.stderr, "exit_code": self.exit_code}


class _OutputLimitExceeded(Exception):
    pass


class _OutputBuffer:
    """Collects stdout/stderr bytes up to a shared cap."""

    def __init__(self, limit: int):
        self.limit = limit
        self.total = 0
        self.parts: dict[str, list[bytes]] = {"stdout": [], "stderr": []}

    def add(self, stream_name: str, chunk: bytes) -> None:
        self.total += len(chunk)
        if self.total > self.limit:
            raise _OutputLimitExceeded()
        self.parts[stream_name].append(chunk)

    def text(self, stream_name: str) -> str:
        return b"".join(self.parts[stream_name]).decode("utf-8", errors="replace")


async def run_process(
    argv: list[str] | None = None,
    command: str | None = None,
    *,
    cwd: str | None = None,
    timeout: float = 10.0,
    max_output_bytes: int = 1024 * 1024,
    kill_grace: float = 1.0,
    env: dict[str, str] | None = None,
) -> ProcessResult:
    """
    Run argv (exec) or command (through the shell) in its own process group.

    Raises ExecutionTimeoutError past ``timeout`` seconds and
    ExecutionFailureError when combined output exceeds ``max_output_bytes``.
    In every case the process group is terminated and the child reaped
    before returning.
    """
    if (argv is None) == (command is None):
        raise ValueError("Pass exactly one of argv or command")

    spawn_kwargs = dict(
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
        env=env,
        start_new_session=True,
    )
    try:
        if command is not None:
            proc = await asyncio.create_subprocess_shell(command, **spawn_kwargs)
        else:
            proc = await asyncio.create_subprocess_exec(*argv, **spawn_kwargs)
    except OSError as e:
        raise ExecutionFailureError(f"Failed to start process: {e}") from e

    buffer = _OutputBuffer(max_output_bytes)
    readers = [
        asyncio.ensure_future(_drain(proc.stdout, "stdout", buffer)),
        asyncio.ensure_future(_drain(proc.stderr, "stderr", buffer)),
    ]

    try:
        await asyncio.wait_for(_collect(proc, readers), timeout=timeout)
    except asyncio.TimeoutError:
        raise ExecutionTimeoutError(f"Execution timed out after {timeout:g}s") from None
    except _OutputLimitExceeded:
        raise ExecutionFailureError(
            f"Output exceeded {max_output_bytes} bytes; process terminated"
        ) from None
    finally:
        for reader in readers:
            reader.cancel()
        if proc.returncode is None:
            await _terminate(proc, kill_grace)
        await asyncio.gather(*readers, return_exceptions=True)

    return ProcessResult(
        exit_code=proc.returncode,
        stdout=buffer.text("stdout"),
        stderr=buffer.text("stderr"),
    )


async def _collect(proc: asyncio.subprocess.Process, readers: list[asyncio.Future]) -> None:
    await asyncio.gather(*readers)
    await proc.wait()


async def _drain(stream: asyncio.StreamReader, name: str, buffer: _OutputBuffer) -> None:
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            return
        buffer.add(name, chunk)


async def _terminate(proc: asyncio.subprocess.Process, kill_grace: float) -> None:
    """SIGTERM the process group, SIGKILL it after kill_grace, then reap."""
    _signal_group(proc, signal.SIGTERM)
    try:
        await asyncio.wait_for(proc.wait(), timeout=kill_grace)
        return
    except asyncio.TimeoutError:
        logger.warning("Process %s ignored SIGTERM; killing", proc.pid)
    _signal_group(proc, signal.SIGKILL)
    await proc.wait()


def _signal_group(proc: asyncio.subprocess.Process, sig: int) -> None:
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        # group already gone
        pass
