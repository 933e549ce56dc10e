"""
Subprocess execution for the external tools.

Two modes:
- ``run`` buffers stdout/stderr and enforces a deadline.
- ``spawn_streaming`` hands back a ``StreamingProcess`` whose stdout is read
  incrementally by the caller and piped onward (transcoder, HTTP response).

In both modes the child is killed when the deadline passes or the awaiting
task is cancelled, so no tool keeps running after its caller is gone.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Set

from .errors import (
    ErrorKind, ProcessEmptyOutput, ProcessFailed, ProcessTimeout, classify_stderr
)

logger = logging.getLogger(__name__)

STDERR_TAIL_BYTES = 4000


def _tail(data: bytes, limit: int = STDERR_TAIL_BYTES) -> str:
    return data[-limit:].decode('utf-8', errors='replace').strip()


@dataclass
class ProcessResult:
    stdout: bytes
    stderr: bytes
    exit_code: int

    @property
    def text(self) -> str:
        return self.stdout.decode('utf-8', errors='replace')


class StreamingProcess:
    """
    Handle on a child whose stdout is consumed by the caller.

    stderr is drained in the background into a bounded tail so the child can
    never block on a full stderr pipe. ``kill`` is synchronous and may be
    called from ``finally`` blocks during cancellation; ``close`` also waits
    for the exit and runs the close callbacks exactly once.
    """

    def __init__(self, process: asyncio.subprocess.Process, name: str,
                 on_exit: Optional[Callable[["StreamingProcess"], None]] = None):
        self.process = process
        self.name = name
        self.pid = process.pid
        self.started_at = time.monotonic()
        self.killed = False
        self._stderr_chunks = deque()
        self._stderr_size = 0
        self._close_callbacks: List[Callable[[], None]] = []
        self._closed = False
        self._on_exit = on_exit
        self._stderr_task = asyncio.ensure_future(self._drain_stderr()) if process.stderr else None
        self._exit_task = asyncio.ensure_future(self._watch_exit())

    @property
    def stdout(self) -> asyncio.StreamReader:
        return self.process.stdout

    @property
    def stdin(self) -> Optional[asyncio.StreamWriter]:
        return self.process.stdin

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    @property
    def running(self) -> bool:
        return self.process.returncode is None

    async def _drain_stderr(self):
        try:
            while True:
                chunk = await self.process.stderr.read(4096)
                if not chunk:
                    break
                self._stderr_chunks.append(chunk)
                self._stderr_size += len(chunk)
                while self._stderr_size > STDERR_TAIL_BYTES and len(self._stderr_chunks) > 1:
                    self._stderr_size -= len(self._stderr_chunks.popleft())
        except (asyncio.CancelledError, ConnectionError):
            pass

    async def _watch_exit(self):
        try:
            await self.process.wait()
        finally:
            if self._on_exit:
                self._on_exit(self)
            self._run_close_callbacks()

    def stderr_tail(self) -> str:
        return _tail(b''.join(self._stderr_chunks))

    def add_close_callback(self, callback: Callable[[], None]):
        """Register cleanup (e.g. releasing a limiter ticket) run on close."""
        if self._closed:
            callback()
        else:
            self._close_callbacks.append(callback)

    def kill(self):
        """Send SIGKILL now if the child is still running. Never raises."""
        if self.process.returncode is None:
            try:
                self.process.kill()
                self.killed = True
                logger.info(f"🛑 Killed {self.name} process (pid {self.pid})")
            except ProcessLookupError:
                pass
        self._run_close_callbacks()

    def _run_close_callbacks(self):
        if self._closed:
            return
        self._closed = True
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"Close callback for {self.name} failed: {e}")

    async def wait(self) -> int:
        """Wait for exit and for stderr to be fully drained."""
        returncode = await self.process.wait()
        if self._stderr_task is not None and not self._stderr_task.done():
            await asyncio.wait({self._stderr_task}, timeout=5)
        return returncode

    async def failure(self) -> Optional[ProcessFailed]:
        """Wait for exit; the classified failure if it exited nonzero on its own."""
        returncode = await self.wait()
        if returncode == 0 or self.killed:
            return None
        stderr_tail = self.stderr_tail()
        return ProcessFailed(
            f"{self.name} exited with code {returncode}",
            exit_code=returncode,
            stderr_tail=stderr_tail,
            kind=classify_stderr(stderr_tail),
        )

    async def close(self) -> Optional[int]:
        self.kill()
        returncode = await self.process.wait()
        if self._stderr_task is not None and not self._stderr_task.done():
            # grandchildren may still hold the pipe open; don't wait on them
            await asyncio.wait({self._stderr_task}, timeout=1)
            self._stderr_task.cancel()
        self._run_close_callbacks()
        return returncode


class ProcessRunner:
    """Spawns external tools and tracks the ones still alive."""

    def __init__(self):
        self.active: Set[int] = set()
        self.spawned = 0

    @property
    def active_count(self) -> int:
        return len(self.active)

    async def _spawn(self, executable: str, args: Sequence[str], stdin, name: str,
                     stdout=asyncio.subprocess.PIPE):
        try:
            process = await asyncio.create_subprocess_exec(
                executable, *args,
                stdin=stdin,
                stdout=stdout,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            logger.error(f"❌ Could not start {name}: {e}")
            # a missing binary will not appear on retry
            raise ProcessFailed(
                f"Failed to start {name}", exit_code=None, stderr_tail=str(e), kind=ErrorKind.INTERNAL,
            )
        self.spawned += 1
        self.active.add(process.pid)
        logger.debug(f"Spawned {name} (pid {process.pid}): {' '.join(args[:6])}...")
        return process

    def _forget(self, pid: int):
        self.active.discard(pid)

    async def run(self, executable: str, args: Sequence[str], timeout: Optional[float] = None,
                  stdin_data: Optional[bytes] = None, name: Optional[str] = None,
                  expect_output: bool = True) -> ProcessResult:
        """
        Run a tool to completion and return its buffered output.

        Raises:
            ProcessTimeout: the deadline passed (the child is killed)
            ProcessFailed: nonzero exit, kind classified from stderr
            ProcessEmptyOutput: exit 0 with nothing on stdout while output was expected
        """
        name = name or executable
        stdin = asyncio.subprocess.PIPE if stdin_data is not None else asyncio.subprocess.DEVNULL
        process = await self._spawn(executable, args, stdin, name)
        start = time.monotonic()
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(stdin_data), timeout=timeout)
        except asyncio.TimeoutError:
            await self._kill_and_reap(process)
            elapsed = time.monotonic() - start
            logger.error(f"{name} TIMEOUT after {elapsed:.1f}s")
            raise ProcessTimeout(f"{name} timed out after {timeout:g}s")
        except asyncio.CancelledError:
            await self._kill_and_reap(process)
            raise
        finally:
            self._forget(process.pid)

        elapsed = time.monotonic() - start
        result = ProcessResult(stdout=stdout, stderr=stderr, exit_code=process.returncode)

        if result.exit_code != 0:
            stderr_tail = _tail(stderr)
            logger.error(f"{name} FAILED ({result.exit_code}) in {elapsed:.1f}s: {stderr_tail[-200:]}")
            raise ProcessFailed(
                f"{name} exited with code {result.exit_code}",
                exit_code=result.exit_code,
                stderr_tail=stderr_tail,
                kind=classify_stderr(stderr_tail),
            )

        if expect_output and not stdout.strip():
            raise ProcessEmptyOutput(f"{name} produced no output", details=_tail(stderr) or None)

        logger.info(f"{name} completed in {elapsed:.1f}s")
        return result

    async def spawn_streaming(self, executable: str, args: Sequence[str], stdin: bool = False,
                              name: Optional[str] = None, capture_stdout: bool = True) -> StreamingProcess:
        """
        Start a tool whose stdout the caller will pull from.

        ``stdin=True`` opens a writable pipe for feeding the tool;
        ``capture_stdout=False`` discards stdout for tools writing to a file.
        """
        name = name or executable
        stdin_mode = asyncio.subprocess.PIPE if stdin else asyncio.subprocess.DEVNULL
        stdout_mode = asyncio.subprocess.PIPE if capture_stdout else asyncio.subprocess.DEVNULL
        process = await self._spawn(executable, args, stdin_mode, name, stdout=stdout_mode)
        return StreamingProcess(process, name, on_exit=lambda handle: self._forget(handle.pid))

    @staticmethod
    async def _kill_and_reap(process: asyncio.subprocess.Process):
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        # shield so a second cancellation cannot leave a zombie behind
        await asyncio.shield(process.wait())
