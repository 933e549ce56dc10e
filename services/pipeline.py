"""
Two-stage process pipeline: extraction tool stdout -> transcoder stdin.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import config
from .errors import GatewayError, ProcessFailed, ProcessTimeout, classify_stderr
from .process_runner import ProcessRunner, StreamingProcess

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    consumer_exit: int
    producer_exit: Optional[int]
    bytes_piped: int
    early_close: bool


class TwoStagePipeline:
    """
    Owns a producer and a consumer process and the pump between them.

    The transcoder deliberately stops reading once it has the seconds it
    needs. The resulting broken pipe ends the pump and kills the producer;
    it is a normal teardown, not an error. The consumer's exit status is the
    outcome of the whole pipeline.
    """

    def __init__(self, producer: StreamingProcess, consumer: StreamingProcess,
                 chunk_size: Optional[int] = None):
        self.producer = producer
        self.consumer = consumer
        self.chunk_size = chunk_size or config.STREAM_CHUNK_SIZE
        self.bytes_piped = 0
        self.early_close = False
        self._pump_task = asyncio.ensure_future(self._pump())

    @classmethod
    async def start(cls, runner: ProcessRunner, producer_cmd: Sequence[str], consumer_cmd: Sequence[str],
                    chunk_size: Optional[int] = None, producer_name: str = "yt-dlp",
                    consumer_name: str = "ffmpeg", capture_output: bool = False) -> "TwoStagePipeline":
        producer = await runner.spawn_streaming(producer_cmd[0], producer_cmd[1:], name=producer_name)
        try:
            consumer = await runner.spawn_streaming(
                consumer_cmd[0], consumer_cmd[1:], stdin=True, name=consumer_name,
                capture_stdout=capture_output,
            )
        except BaseException:
            await producer.close()
            raise
        return cls(producer, consumer, chunk_size)

    @property
    def stdout(self) -> asyncio.StreamReader:
        """Transcoder output, only when started with ``capture_output``."""
        return self.consumer.stdout

    def add_close_callback(self, callback: Callable[[], None]):
        self.consumer.add_close_callback(callback)

    async def _pump(self):
        writer = self.consumer.stdin
        try:
            while True:
                chunk = await self.producer.stdout.read(self.chunk_size)
                if not chunk:
                    break
                writer.write(chunk)
                await writer.drain()
                self.bytes_piped += len(chunk)
        except (BrokenPipeError, ConnectionResetError):
            self.early_close = True
            logger.debug(f"{self.consumer.name} closed its input after {self.bytes_piped} bytes")
        finally:
            if self.early_close:
                self.producer.kill()
            try:
                writer.close()
            except (BrokenPipeError, ConnectionResetError):
                pass

    def kill(self):
        """Stop both stages immediately. Safe to call from ``finally`` blocks."""
        self.producer.kill()
        self.consumer.kill()
        if not self._pump_task.done():
            self._pump_task.cancel()

    async def _reap(self):
        self.producer.kill()
        if not self._pump_task.done():
            self._pump_task.cancel()
        await asyncio.gather(self._pump_task, return_exceptions=True)
        await self.producer.close()
        await self.consumer.close()

    async def close(self):
        self.kill()
        await self._reap()

    async def wait(self, timeout: Optional[float] = None) -> PipelineResult:
        """
        Wait for the consumer to finish, then tear the producer down.

        Raises:
            ProcessTimeout: the pipeline ran past ``timeout`` (both stages killed)
            ProcessFailed: the consumer exited nonzero; the kind is classified
                from the producer's diagnostics since upstream errors show up there
        """
        try:
            consumer_exit = await asyncio.wait_for(self.consumer.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            self.kill()
            await self._reap()
            raise ProcessTimeout(f"{self.producer.name} | {self.consumer.name} timed out after {timeout:g}s")
        except asyncio.CancelledError:
            self.kill()
            raise

        await self._reap()
        result = PipelineResult(
            consumer_exit=consumer_exit,
            producer_exit=self.producer.returncode,
            bytes_piped=self.bytes_piped,
            early_close=self.early_close,
        )

        if consumer_exit != 0:
            producer_stderr = self.producer.stderr_tail()
            consumer_stderr = self.consumer.stderr_tail()
            stderr_tail = "\n".join(part for part in (producer_stderr, consumer_stderr) if part)
            logger.error(f"❌ {self.consumer.name} failed ({consumer_exit}): {stderr_tail[-300:]}")
            raise ProcessFailed(
                f"{self.consumer.name} failed with code {consumer_exit}",
                exit_code=consumer_exit,
                stderr_tail=stderr_tail,
                kind=classify_stderr(producer_stderr),
            )
        return result

    async def failure(self) -> Optional[GatewayError]:
        try:
            await self.wait()
        except GatewayError as e:
            return e
        return None
