"""
Tests for services/streaming.py
"""

import asyncio
import os
import tempfile
from unittest import IsolatedAsyncioTestCase, TestCase
from unittest.mock import AsyncMock, MagicMock

from services.errors import ProcessEmptyOutput, ProcessTimeout, RangeNotSatisfiable, UpstreamUnavailable
from services.limiter import ConcurrencyLimiter
from services.process_runner import ProcessRunner
from services.streaming import StreamServer, parse_byte_range
from tests.helpers import PYTHON


class ParseByteRangeTest(TestCase):
    """Tests for Range header parsing"""

    def test_no_header(self):
        """Test that a missing header means the whole file"""
        self.assertIsNone(parse_byte_range(None, 1000))
        self.assertIsNone(parse_byte_range("", 1000))

    def test_closed_range(self):
        """Test a start-end range"""
        self.assertEqual(parse_byte_range("bytes=100-199", 1000), (100, 199))

    def test_open_range(self):
        """Test a range without end"""
        self.assertEqual(parse_byte_range("bytes=900-", 1000), (900, 999))

    def test_suffix_range(self):
        """Test the last-N-bytes form"""
        self.assertEqual(parse_byte_range("bytes=-100", 1000), (900, 999))
        self.assertEqual(parse_byte_range("bytes=-5000", 1000), (0, 999))

    def test_end_is_clamped(self):
        """Test that an end past the file is clamped"""
        self.assertEqual(parse_byte_range("bytes=500-5000", 1000), (500, 999))

    def test_malformed_ranges(self):
        """Test that malformed specs are unsatisfiable"""
        for header in ["bytes=abc-def", "bytes=200-100", "bytes=1000-", "bytes=-", "bytes=5", "bytes=-0"]:
            with self.assertRaises(RangeNotSatisfiable, msg=header) as ctx:
                parse_byte_range(header, 1000)
            self.assertEqual(ctx.exception.file_size, 1000)

    def test_ignored_forms(self):
        """Test that other units and multiple ranges fall back to the full file"""
        self.assertIsNone(parse_byte_range("items=0-5", 1000))
        self.assertIsNone(parse_byte_range("bytes=0-5,10-15", 1000))


async def _collect(response) -> bytes:
    return b"".join([chunk async for chunk in response.body_iterator])


def _connected_request():
    request = MagicMock()
    request.is_disconnected = AsyncMock(return_value=False)
    return request


class ServeFileTest(IsolatedAsyncioTestCase):
    """Tests for cached file delivery"""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.temp_dir.name, "preview.mp4")
        self.content = bytes(range(256)) * 4
        with open(self.path, "wb") as f:
            f.write(self.content[:1000])
        self.server = StreamServer(chunk_size=64)

    def tearDown(self):
        self.temp_dir.cleanup()

    async def test_partial_content(self):
        """Test that bytes=100-199 of 1000 returns exactly those 100 bytes"""
        response = await self.server.serve_file(self.path, "bytes=100-199")
        self.assertEqual(response.status_code, 206)
        self.assertEqual(response.headers["content-range"], "bytes 100-199/1000")
        self.assertEqual(response.headers["content-length"], "100")
        self.assertEqual(response.headers["accept-ranges"], "bytes")
        self.assertEqual(await _collect(response), self.content[100:200])

    async def test_full_content(self):
        """Test a request without range"""
        response = await self.server.serve_file(self.path, None, filename="clip.mp4")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["content-length"], "1000")
        self.assertIn('filename="clip.mp4"', response.headers["content-disposition"])
        self.assertEqual(await _collect(response), self.content[:1000])

    async def test_unsatisfiable_range(self):
        """Test that a range past the end is rejected"""
        with self.assertRaises(RangeNotSatisfiable):
            await self.server.serve_file(self.path, "bytes=2000-")


class ServeLiveTest(IsolatedAsyncioTestCase):
    """Tests for live process delivery"""

    def setUp(self):
        self.runner = ProcessRunner()
        self.server = StreamServer(chunk_size=4096)

    async def test_disconnect_kills_process(self):
        """Test that the producing process dies as soon as the client leaves"""
        process = await self.runner.spawn_streaming(
            PYTHON, ["-c", "import sys\nwhile True:\n    sys.stdout.buffer.write(b'v' * 65536)"],
        )
        released = []
        process.add_close_callback(lambda: released.append(True))
        request = MagicMock()
        request.is_disconnected = AsyncMock(side_effect=[False, True])

        response = await self.server.serve_live(request, process, "Sample_Clip.mp4")
        self.assertEqual(response.media_type, "video/mp4")
        self.assertIn('attachment; filename="Sample_Clip.mp4"', response.headers["content-disposition"])

        chunks = [chunk async for chunk in response.body_iterator]

        self.assertEqual(len(chunks), 2)
        self.assertEqual(released, [True])
        await asyncio.wait_for(process.wait(), timeout=5)
        self.assertTrue(process.killed)
        self.assertFalse(process.running)

    async def test_generator_close_kills_process(self):
        """Test that abandoning the response body kills the process"""
        process = await self.runner.spawn_streaming(
            PYTHON, ["-c", "import sys\nwhile True:\n    sys.stdout.buffer.write(b'v' * 65536)"],
        )
        request = MagicMock()
        request.is_disconnected = AsyncMock(return_value=False)

        response = await self.server.serve_live(request, process, "clip.mp4")
        body = response.body_iterator
        await body.__anext__()
        await body.aclose()

        await asyncio.wait_for(process.wait(), timeout=5)
        self.assertTrue(process.killed)

    async def test_immediate_failure_is_classified(self):
        """Test that a tool failing before any output yields its error"""
        process = await self.runner.spawn_streaming(
            PYTHON, ["-c", "import sys; sys.stderr.write('ERROR: Private video'); sys.exit(1)"],
        )
        with self.assertRaises(UpstreamUnavailable):
            await self.server.serve_live(_connected_request(), process, "clip.mp4")

    async def test_no_output_is_empty(self):
        """Test that a clean exit without data is an empty-output error"""
        process = await self.runner.spawn_streaming(PYTHON, ["-c", "pass"])
        with self.assertRaises(ProcessEmptyOutput):
            await self.server.serve_live(_connected_request(), process, "clip.mp4")

    async def test_client_leaving_before_first_byte_kills_process(self):
        """Test that a stalled process is killed when the client leaves before any data"""
        server = StreamServer(chunk_size=4096, disconnect_poll=0.05)
        limiter = ConcurrencyLimiter("extraction", 1)
        ticket = await limiter.acquire()
        process = await self.runner.spawn_streaming(PYTHON, ["-c", "import time; time.sleep(3600)"])
        process.add_close_callback(lambda: limiter.release(ticket))
        request = MagicMock()
        request.is_disconnected = AsyncMock(return_value=True)

        response = await asyncio.wait_for(server.serve_live(request, process, "clip.mp4"), timeout=5)

        self.assertEqual(response.status_code, 499)
        await asyncio.wait_for(process.wait(), timeout=5)
        self.assertTrue(process.killed)
        self.assertEqual(limiter.in_use, 0)

    async def test_first_byte_deadline(self):
        """Test that a process with no output before the deadline is killed"""
        server = StreamServer(chunk_size=4096, first_byte_timeout=0.2, disconnect_poll=0.05)
        process = await self.runner.spawn_streaming(PYTHON, ["-c", "import time; time.sleep(3600)"])

        with self.assertRaises(ProcessTimeout) as ctx:
            await server.serve_live(_connected_request(), process, "clip.mp4")

        self.assertEqual(ctx.exception.status_code, 504)
        await asyncio.wait_for(process.wait(), timeout=5)
        self.assertTrue(process.killed)
