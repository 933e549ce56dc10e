"""
Tests for services/downloads.py
"""

import asyncio
import os
import tempfile
from unittest import IsolatedAsyncioTestCase
from unittest.mock import AsyncMock, MagicMock

from services.artifact_cache import ArtifactCache
from services.downloads import DownloadService
from services.errors import ProcessFailed
from services.limiter import ConcurrencyLimiter
from services.metadata_cache import MetadataCache
from services.process_runner import ProcessRunner
from tests.helpers import YOUTUBE_URL, make_registry, sample_record


class DownloadServiceTest(IsolatedAsyncioTestCase):
    """Tests for full-quality downloads"""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.runner = ProcessRunner()
        self.runner.run = AsyncMock()
        self.runner.spawn_streaming = AsyncMock()
        self.limiter = ConcurrencyLimiter("extraction", 2)
        self.artifacts = ArtifactCache("download", directory=self.temp_dir.name, ttl=60)
        self.record = sample_record()
        self.downloads = DownloadService(
            self.runner, self.limiter, MetadataCache(ttl=60), make_registry(self.temp_dir.name), self.artifacts,
            ytdlp_path="yt-dlp", ffmpeg_path="/usr/bin/ffmpeg", strategy="cache", timeout=60,
        )

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_format_selector(self):
        """Test format choice with and without audio"""
        self.assertEqual(self.downloads.format_selector(self.record, "22"), "22")
        self.assertEqual(
            self.downloads.format_selector(self.record, "137"),
            "137+bestaudio[ext=m4a]/bestaudio/best",
        )
        self.assertEqual(
            self.downloads.format_selector(self.record, None),
            "bv*[ext=mp4]+ba[ext=m4a]/b[ext=mp4]/bv*+ba/b",
        )

    def test_tool_args(self):
        """Test stdout streaming and file download invocations"""
        streamed = self.downloads.tool_args(self.record, "22", "-")
        self.assertEqual(streamed[:5], [YOUTUBE_URL, "-o", "-", "-f", "22"])
        self.assertNotIn("--merge-output-format", streamed)

        to_file = self.downloads.tool_args(self.record, "22", "/tmp/x.mp4")
        self.assertIn("--merge-output-format", to_file)
        self.assertEqual(to_file[to_file.index("--ffmpeg-location") + 1], "/usr/bin/ffmpeg")

    def test_unknown_strategy(self):
        """Test that a bad strategy is rejected at startup"""
        with self.assertRaises(ValueError):
            DownloadService(self.runner, self.limiter, MetadataCache(), make_registry(), strategy="torrent")

    async def test_stream_holds_slot_until_closed(self):
        """Test that a live download occupies an extraction slot"""
        process = MagicMock()
        callbacks = []
        process.add_close_callback.side_effect = callbacks.append
        self.runner.spawn_streaming.return_value = process

        result = await self.downloads.open_stream(self.record, "22")

        self.assertIs(result, process)
        self.assertEqual(self.limiter.in_use, 1)
        callbacks[0]()
        self.assertEqual(self.limiter.in_use, 0)

    async def test_stream_spawn_failure_releases_slot(self):
        """Test that a tool that cannot start does not leak its slot"""
        self.runner.spawn_streaming.side_effect = ProcessFailed("Failed to start yt-dlp", exit_code=None)
        with self.assertRaises(ProcessFailed):
            await self.downloads.open_stream(self.record)
        self.assertEqual(self.limiter.in_use, 0)

    async def test_cached_download_is_reused(self):
        """Test that concurrent downloads of one format run the tool once"""
        async def run(executable, args, **kwargs):
            await asyncio.sleep(0.05)
            with open(args[args.index("-o") + 1], "wb") as f:
                f.write(b"video" * 100)

        self.runner.run.side_effect = run
        results = await asyncio.gather(*[self.downloads.get_or_download(self.record, "22") for _ in range(3)])
        again = await self.downloads.get_or_download(self.record, "22")

        self.assertEqual(self.runner.run.call_count, 1)
        self.assertEqual({artifact.path for artifact in results}, {again.path})
        self.assertEqual(again.size_bytes, 500)
        self.assertEqual(self.limiter.in_use, 0)

    async def test_failed_download_leaves_no_file(self):
        """Test that a failing tool run discards its partial output"""
        async def run(executable, args, **kwargs):
            with open(args[args.index("-o") + 1], "wb") as f:
                f.write(b"partial")
            raise ProcessFailed("yt-dlp exited with code 1", exit_code=1)

        self.runner.run.side_effect = run
        with self.assertRaises(ProcessFailed):
            await self.downloads.get_or_download(self.record)
        self.assertEqual(os.listdir(self.temp_dir.name), [])
        self.assertEqual(len(self.artifacts), 0)
