"""
Configuration module for the Video Gateway API.
Centralizes all environment variables and application constants.
"""

import os
import tempfile
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# =============================================================================
# Server Configuration
# =============================================================================

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))
RELOAD = os.getenv("RELOAD", "false").lower() == "true"

LOG_LEVEL = os.getenv("LOG_LEVEL", "info")
LOG_TO_FILE = os.getenv("LOG_TO_FILE", "false").lower() == "true"
LOG_FILE_NAME = os.getenv("LOG_FILE_NAME", "video_gateway.log")

# =============================================================================
# External Tools
# =============================================================================

# Extraction tool binary (yt-dlp). Resolved from PATH when unset.
YTDLP_PATH = os.getenv("YTDLP_PATH")

# Transcoder binary. Falls back to bundled imageio-ffmpeg, then system ffmpeg.
FFMPEG_PATH = os.getenv("FFMPEG_PATH")

# Directory holding optional <platform>-cookies.txt files (Netscape format)
COOKIES_DIR = os.getenv("COOKIES_DIR", os.getcwd())

# Optional proxy URL for extraction requests
PROXY_URL = os.getenv("PROXY_URL")

# =============================================================================
# Extraction Configuration
# =============================================================================

# Metadata extraction deadline in seconds
EXTRACT_TIMEOUT = float(os.getenv("EXTRACT_TIMEOUT", "120"))

# Total attempts for transient failures (timeouts, empty output)
EXTRACT_ATTEMPTS = int(os.getenv("EXTRACT_ATTEMPTS", "2"))

# Linear backoff unit in seconds (attempt N waits RETRY_DELAY * N)
RETRY_DELAY = float(os.getenv("RETRY_DELAY", "2.0"))

# =============================================================================
# Cache Configuration
# =============================================================================

# Metadata time-to-live in seconds (default: 30 minutes)
METADATA_CACHE_TTL = float(os.getenv("METADATA_CACHE_TTL", "1800"))

# Preview/download file time-to-live in seconds
ARTIFACT_CACHE_TTL = float(os.getenv("ARTIFACT_CACHE_TTL", "1800"))

# Aggregate size ceiling for artifact files
ARTIFACT_CACHE_MAX_MB = float(os.getenv("ARTIFACT_CACHE_MAX_MB", "2048"))

# Size eviction stops once usage drops below this fraction of the ceiling
ARTIFACT_CACHE_TARGET_RATIO = float(os.getenv("ARTIFACT_CACHE_TARGET_RATIO", "0.8"))

# Cleanup interval in seconds (default: 5 minutes)
CLEANUP_INTERVAL = float(os.getenv("CLEANUP_INTERVAL", "300"))

# Directory for generated previews and cached downloads
CACHE_DIR = os.getenv("CACHE_DIR", os.path.join(tempfile.gettempdir(), "video_gateway"))

# =============================================================================
# Concurrency Configuration
# =============================================================================

# Maximum concurrent extraction tool processes
MAX_CONCURRENT_EXTRACTIONS = int(os.getenv("MAX_CONCURRENT_EXTRACTIONS", "4"))

# Maximum concurrent transcoder pipelines
MAX_CONCURRENT_TRANSCODES = int(os.getenv("MAX_CONCURRENT_TRANSCODES", "2"))

# Seconds a request may wait for a free slot (0 = wait forever)
QUEUE_TIMEOUT = float(os.getenv("QUEUE_TIMEOUT", "60"))

# =============================================================================
# Preview Configuration
# =============================================================================

PREVIEW_DURATION = float(os.getenv("PREVIEW_DURATION", "5"))
PREVIEW_START = float(os.getenv("PREVIEW_START", "0"))
PREVIEW_WIDTH = int(os.getenv("PREVIEW_WIDTH", "480"))
PREVIEW_CRF = int(os.getenv("PREVIEW_CRF", "23"))
PREVIEW_PRESET = os.getenv("PREVIEW_PRESET", "veryfast")

# Deadline for a single preview generation in seconds
PREVIEW_TIMEOUT = float(os.getenv("PREVIEW_TIMEOUT", "90"))

# Start preview generation in the background after a successful extraction
PREVIEW_WARMUP = os.getenv("PREVIEW_WARMUP", "true").lower() == "true"

# Let the transcoder read the upstream media URL directly instead of piping
PREVIEW_FROM_DIRECT_URL = os.getenv("PREVIEW_FROM_DIRECT_URL", "false").lower() == "true"

# Source selector used when the extraction tool streams preview input
PREVIEW_FORMAT = os.getenv(
    "PREVIEW_FORMAT",
    "worst[ext=mp4][height<=480]/worst[height<=480]/worst",
)

# =============================================================================
# Download Configuration
# =============================================================================

# "stream" pipes the tool output straight to the client,
# "cache" stores the file first and serves it with byte ranges
DOWNLOAD_STRATEGY = os.getenv("DOWNLOAD_STRATEGY", "stream").lower()

# Deadline for a cached download in seconds
DOWNLOAD_TIMEOUT = float(os.getenv("DOWNLOAD_TIMEOUT", "1800"))

# Read size for piping and file serving
STREAM_CHUNK_SIZE = int(os.getenv("STREAM_CHUNK_SIZE", str(64 * 1024)))

# Longest wait for the first byte of a live stream before the process is killed
STREAM_FIRST_BYTE_TIMEOUT = float(os.getenv("STREAM_FIRST_BYTE_TIMEOUT", "120"))

# How often a live stream that has not started checks whether the client left
STREAM_DISCONNECT_POLL = float(os.getenv("STREAM_DISCONNECT_POLL", "1.0"))
