"""
Tests for services/extractor.py
"""

import asyncio
import tempfile
from unittest import IsolatedAsyncioTestCase, TestCase
from unittest.mock import AsyncMock

from models.records import Platform
from services.errors import (
    ErrorKind, ProcessEmptyOutput, ProcessFailed, ProcessTimeout, UnsupportedPlatform, UpstreamUnavailable,
)
from services.extractor import (
    Extractor, build_video_record, parse_tool_output, select_representative_format, summarize_formats,
)
from services.limiter import ConcurrencyLimiter
from services.metadata_cache import MetadataCache
from services.process_runner import ProcessRunner
from tests.helpers import SAMPLE_INFO, YOUTUBE_URL, make_registry, tool_output


class FormatSelectionTest(TestCase):
    """Tests for picking the representative format"""

    def test_merged_selection_uses_video_resolution_and_summed_size(self):
        """Test a video+audio selection"""
        info = {
            "requested_formats": [
                {"width": 1920, "height": 1080, "vcodec": "avc1", "acodec": "none", "filesize": 1000},
                {"vcodec": "none", "acodec": "mp4a", "filesize": 200},
            ]
        }
        selected = select_representative_format(info)
        self.assertEqual(selected.resolution, "1920x1080")
        self.assertEqual(selected.size_bytes, 1200)

    def test_merged_size_unknown_when_component_unknown(self):
        """Test that one missing component size makes the total unknown"""
        info = {
            "requested_formats": [
                {"width": 1920, "height": 1080, "vcodec": "avc1", "acodec": "none", "filesize": 1000},
                {"vcodec": "none", "acodec": "mp4a"},
            ]
        }
        self.assertIsNone(select_representative_format(info).size_bytes)

    def test_best_combined_format(self):
        """Test that the tallest format with audio wins when the top level is video-only"""
        info = dict(SAMPLE_INFO, vcodec="avc1", acodec="none", width=None, height=None)
        selected = select_representative_format(info)
        self.assertEqual(selected.resolution, "1280x720")
        self.assertEqual(selected.size_bytes, 12345678)

    def test_resolution_from_format_note(self):
        """Test the fallbacks when width and height are missing"""
        self.assertEqual(select_representative_format({"height": 720}).resolution, "720p")
        self.assertEqual(select_representative_format({"format_note": "480p"}).resolution, "480p")
        self.assertEqual(select_representative_format({"format_note": "DASH video"}).resolution, "unknown")


class RecordTest(TestCase):
    """Tests for building a VideoRecord from tool output"""

    def test_full_record(self):
        """Test the mapping of a complete tool result"""
        record = build_video_record(SAMPLE_INFO, Platform.YOUTUBE, YOUTUBE_URL)
        self.assertEqual(record.video_id, "dQw4w9WgXcQ")
        self.assertEqual(record.title, "Sample Clip")
        self.assertEqual(record.author, "Sample Channel")
        self.assertEqual(record.duration_seconds, 212)
        self.assertEqual(record.resolution, "1280x720")
        self.assertEqual(record.container_format, "mp4")
        self.assertEqual(record.direct_media_url, "https://media.example/direct.mp4")

    def test_defaults_for_missing_fields(self):
        """Test the deterministic defaults"""
        record = build_video_record({"id": "abc"}, Platform.TIKTOK, "https://www.tiktok.com/@u/video/1")
        self.assertEqual(record.title, "Unknown Title")
        self.assertEqual(record.author, "Unknown Author")
        self.assertEqual(record.duration_seconds, 0)
        self.assertEqual(record.resolution, "unknown")
        self.assertIsNone(record.size_bytes)
        self.assertEqual(record.container_format, "mp4")

    def test_direct_url_not_serialized(self):
        """Test that the upstream media URL never reaches clients"""
        record = build_video_record(SAMPLE_INFO, Platform.YOUTUBE, YOUTUBE_URL)
        self.assertNotIn("direct_media_url", record.model_dump())
        self.assertNotIn("direct.mp4", record.model_dump_json())

    def test_missing_id(self):
        """Test that output without an ID counts as empty"""
        with self.assertRaises(ProcessEmptyOutput):
            build_video_record({"title": "x"}, Platform.YOUTUBE, YOUTUBE_URL)

    def test_parse_tool_output(self):
        """Test empty and unparsable output"""
        with self.assertRaises(ProcessEmptyOutput):
            parse_tool_output("")
        with self.assertRaises(ProcessEmptyOutput):
            parse_tool_output("WARNING: not json")
        self.assertEqual(parse_tool_output('\n{"id": "abc"}\n')["id"], "abc")

    def test_summarize_formats(self):
        """Test one option per quality, best first, audio preferred"""
        formats = summarize_formats(SAMPLE_INFO["formats"] + [
            {"format_id": "136", "ext": "mp4", "width": 1280, "height": 720,
             "vcodec": "avc1", "acodec": "none", "tbr": 3000},
            {"format_id": "140", "ext": "m4a", "vcodec": "none", "acodec": "mp4a"},
        ])
        self.assertEqual([f.format_id for f in formats], ["137", "22", "18"])
        self.assertEqual([f.label for f in formats], ["Full HD", "HD", "SD"])
        self.assertTrue(formats[1].has_audio)
        self.assertFalse(formats[0].has_audio)


class ExtractorTest(IsolatedAsyncioTestCase):
    """Tests for extraction with retries"""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.runner = ProcessRunner()
        self.runner.run = AsyncMock()
        self.cache = MetadataCache(ttl=60)
        self.extractor = Extractor(
            make_registry(self.temp_dir.name), self.runner, ConcurrencyLimiter("extraction", 2), self.cache,
            attempts=2, retry_delay=0,
        )

    def tearDown(self):
        self.temp_dir.cleanup()

    async def test_unsupported_url_spawns_nothing(self):
        """Test that classification failures never reach the tool"""
        with self.assertRaises(UnsupportedPlatform):
            await self.extractor.get_metadata("https://example.com/video")
        self.runner.run.assert_not_called()

    async def test_command_line(self):
        """Test the metadata-only invocation"""
        self.runner.run.return_value = tool_output()
        await self.extractor.get_metadata(YOUTUBE_URL)

        args = self.runner.run.call_args.args[1]
        self.assertEqual(args[0], YOUTUBE_URL)
        self.assertIn("--dump-json", args)
        self.assertIn("--skip-download", args)
        self.assertIn("youtube:player_client=android,web", args)

    async def test_retries_transient_failure(self):
        """Test that a timeout is retried once and then succeeds"""
        self.runner.run.side_effect = [ProcessTimeout("yt-dlp timed out"), tool_output()]
        record = await self.extractor.get_metadata(YOUTUBE_URL)
        self.assertEqual(record.video_id, "dQw4w9WgXcQ")
        self.assertEqual(self.runner.run.call_count, 2)

    async def test_gives_up_after_attempts(self):
        """Test that the last transient failure is raised"""
        self.runner.run.side_effect = ProcessTimeout("yt-dlp timed out")
        with self.assertRaises(ProcessTimeout):
            await self.extractor.get_metadata(YOUTUBE_URL)
        self.assertEqual(self.runner.run.call_count, 2)
        self.assertIsNone(self.cache.get(YOUTUBE_URL))

    async def test_private_video_not_retried(self):
        """Test that a permanent failure is raised after one attempt"""
        self.runner.run.side_effect = ProcessFailed(
            "yt-dlp exited with code 1", exit_code=1,
            stderr_tail="ERROR: [youtube] dQw4w9WgXcQ: Private video. Sign in if you've been granted access",
            kind=ErrorKind.UPSTREAM_UNAVAILABLE,
        )
        with self.assertRaises(UpstreamUnavailable) as ctx:
            await self.extractor.get_metadata(YOUTUBE_URL)
        self.assertEqual(ctx.exception.status_code, 404)
        self.assertEqual(self.runner.run.call_count, 1)

    async def test_concurrent_requests_share_extraction(self):
        """Test that simultaneous requests for one URL run the tool once"""
        async def slow_run(*args, **kwargs):
            await asyncio.sleep(0.05)
            return tool_output()

        self.runner.run.side_effect = slow_run
        results = await asyncio.gather(*[self.extractor.get_metadata(YOUTUBE_URL) for _ in range(10)])
        self.assertEqual(self.runner.run.call_count, 1)
        self.assertEqual({r.video_id for r in results}, {"dQw4w9WgXcQ"})

    async def test_missing_binary_not_retried(self):
        """Test that a tool that cannot be started is tried once"""
        runner = ProcessRunner()
        runner.run = AsyncMock(wraps=ProcessRunner().run)
        extractor = Extractor(
            make_registry(self.temp_dir.name), runner, ConcurrencyLimiter("extraction", 2), self.cache,
            ytdlp_path="/nonexistent/yt-dlp", attempts=3, retry_delay=0,
        )
        with self.assertRaises(ProcessFailed) as ctx:
            await extractor.get_metadata(YOUTUBE_URL)
        self.assertEqual(ctx.exception.kind, ErrorKind.INTERNAL)
        self.assertEqual(runner.run.call_count, 1)
