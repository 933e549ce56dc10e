"""
HTTP delivery of cached files (with byte ranges) and live process output.
"""

import asyncio
import logging
import os
import re
from typing import AsyncIterator, Optional, Protocol, Tuple

from fastapi import Request
from fastapi.responses import Response, StreamingResponse

import config
from .errors import (
    GatewayError, NotFoundOrExpired, ProcessEmptyOutput, ProcessTimeout, RangeNotSatisfiable, promote
)

logger = logging.getLogger(__name__)

_RANGE_SPEC = re.compile(r"^(\d*)-(\d*)$")


class LiveSource(Protocol):
    """A running process (or pipeline) whose stdout is sent to the client."""

    stdout: asyncio.StreamReader

    def kill(self) -> None: ...

    async def failure(self) -> Optional[GatewayError]: ...


def parse_byte_range(header: Optional[str], size: int) -> Optional[Tuple[int, int]]:
    """
    Parse a single ``Range: bytes=...`` header against a file of ``size`` bytes.

    Returns an inclusive ``(start, end)`` pair, or None when the whole file
    should be sent (no header, another unit, or several ranges).

    Raises:
        RangeNotSatisfiable: malformed spec, start past the end, or start > end
    """
    if not header:
        return None
    unit, _, spec = header.strip().partition("=")
    if unit.strip().lower() != "bytes":
        return None
    spec = spec.strip()
    if "," in spec:
        return None

    match = _RANGE_SPEC.match(spec)
    if match is None or spec == "-":
        raise RangeNotSatisfiable(f"Malformed range: {header}", file_size=size)
    start_s, end_s = match.groups()

    if not start_s:
        # suffix form: last N bytes
        length = int(end_s)
        if length == 0 or size == 0:
            raise RangeNotSatisfiable(f"Unsatisfiable range: {header}", file_size=size)
        return max(0, size - length), size - 1

    start = int(start_s)
    end = int(end_s) if end_s else size - 1
    if start > end or start >= size:
        raise RangeNotSatisfiable(f"Unsatisfiable range: {header}", file_size=size)
    return start, min(end, size - 1)


def content_disposition(filename: str, disposition: str = "attachment") -> str:
    return f'{disposition}; filename="{filename}"'


class StreamServer:

    def __init__(self, chunk_size: Optional[int] = None, first_byte_timeout: Optional[float] = None,
                 disconnect_poll: Optional[float] = None):
        self.chunk_size = chunk_size or config.STREAM_CHUNK_SIZE
        self.first_byte_timeout = first_byte_timeout or config.STREAM_FIRST_BYTE_TIMEOUT
        self.disconnect_poll = disconnect_poll or config.STREAM_DISCONNECT_POLL

    async def _read_file(self, path: str, start: int, end: int) -> AsyncIterator[bytes]:
        loop = asyncio.get_running_loop()
        handle = await loop.run_in_executor(None, open, path, "rb")
        try:
            await loop.run_in_executor(None, handle.seek, start)
            remaining = end - start + 1
            while remaining > 0:
                data = await loop.run_in_executor(None, handle.read, min(self.chunk_size, remaining))
                if not data:
                    break
                remaining -= len(data)
                yield data
        finally:
            handle.close()

    async def serve_file(self, path: str, range_header: Optional[str] = None, media_type: str = "video/mp4",
                   filename: Optional[str] = None, disposition: str = "inline") -> StreamingResponse:
        """
        Serve a file on disk, honouring a single byte range.

        Raises:
            NotFoundOrExpired: the file is gone
            RangeNotSatisfiable: the range header cannot be satisfied
        """
        try:
            size = await asyncio.get_running_loop().run_in_executor(None, os.path.getsize, path)
        except OSError:
            raise NotFoundOrExpired("File not found or expired")

        headers = {
            "Accept-Ranges": "bytes",
            "Cache-Control": "public, max-age=3600",
        }
        if filename:
            headers["Content-Disposition"] = content_disposition(filename, disposition)

        byte_range = parse_byte_range(range_header, size)
        if byte_range is None:
            headers["Content-Length"] = str(size)
            return StreamingResponse(
                self._read_file(path, 0, size - 1), status_code=200, media_type=media_type, headers=headers,
            )

        start, end = byte_range
        headers["Content-Range"] = f"bytes {start}-{end}/{size}"
        headers["Content-Length"] = str(end - start + 1)
        logger.debug(f"Range {start}-{end}/{size} of {path}")
        return StreamingResponse(
            self._read_file(path, start, end), status_code=206, media_type=media_type, headers=headers,
        )

    async def serve_live(self, request: Request, source: LiveSource, filename: str,
                         media_type: str = "video/mp4", disposition: str = "attachment") -> Response:
        """
        Pass a live process stream through to the client.

        The first chunk is read before the response starts so a tool that
        fails immediately still produces a proper error status. A client that
        leaves before that chunk, or a first chunk later than
        ``first_byte_timeout``, kills the process too.
        """
        try:
            first = await self._first_chunk(request, source)
        except BaseException:
            source.kill()
            raise
        if first is None:
            source.kill()
            logger.info(f"🔌 Client left before {filename} started")
            return Response(status_code=499)

        if not first:
            failure = await source.failure()
            source.kill()
            if failure is not None:
                raise promote(failure)
            raise ProcessEmptyOutput("Stream ended before any data was produced")

        async def body() -> AsyncIterator[bytes]:
            sent = len(first)
            try:
                yield first
                while True:
                    if await request.is_disconnected():
                        logger.info(f"🔌 Client disconnected after {sent} bytes of {filename}")
                        break
                    chunk = await source.stdout.read(self.chunk_size)
                    if not chunk:
                        break
                    sent += len(chunk)
                    yield chunk
            finally:
                source.kill()

        headers = {
            "Content-Disposition": content_disposition(filename, disposition),
            "Cache-Control": "no-cache",
        }
        return StreamingResponse(body(), media_type=media_type, headers=headers)

    async def _first_chunk(self, request: Request, source: LiveSource) -> Optional[bytes]:
        """First read of ``source``, or None once the client has disconnected."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.first_byte_timeout
        read = asyncio.ensure_future(source.stdout.read(self.chunk_size))
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise ProcessTimeout(f"No output within {self.first_byte_timeout:g}s")
                done, _ = await asyncio.wait({read}, timeout=min(self.disconnect_poll, remaining))
                if done:
                    return read.result()
                if await request.is_disconnected():
                    return None
        finally:
            if not read.done():
                read.cancel()
