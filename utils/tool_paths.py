"""
Path resolution for the external tools the gateway drives.

FFmpeg is located with a hybrid approach:
1. An explicit FFMPEG_PATH from the environment
2. The bundled binary from the imageio-ffmpeg package
3. System FFmpeg from PATH

yt-dlp is located through YTDLP_PATH or PATH. Its version is read from the
installed yt_dlp package so no process has to be spawned for it.
"""

import os
import shutil
import subprocess
import logging
from typing import Dict, Optional
from functools import lru_cache

import config

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_ffmpeg_path() -> str:
    """
    Get the path to FFmpeg executable.

    Returns:
        str: Path to FFmpeg executable

    Raises:
        RuntimeError: If FFmpeg is not available from any source
    """
    if config.FFMPEG_PATH:
        if os.path.exists(config.FFMPEG_PATH) or shutil.which(config.FFMPEG_PATH):
            logger.info(f"✅ Using configured FFmpeg: {config.FFMPEG_PATH}")
            return config.FFMPEG_PATH
        logger.warning(f"FFMPEG_PATH={config.FFMPEG_PATH} not found, trying other sources...")

    # Try bundled FFmpeg from imageio-ffmpeg
    try:
        import imageio_ffmpeg
        ffmpeg_path = imageio_ffmpeg.get_ffmpeg_exe()

        result = subprocess.run(
            [ffmpeg_path, '-version'],
            capture_output=True,
            timeout=5
        )

        if result.returncode == 0:
            logger.info(f"✅ Using bundled FFmpeg from imageio-ffmpeg: {ffmpeg_path}")
            return ffmpeg_path
    except ImportError:
        logger.warning("imageio-ffmpeg not installed, trying system FFmpeg...")
    except Exception as e:
        logger.warning(f"Failed to use bundled FFmpeg: {e}, trying system FFmpeg...")

    system_ffmpeg = shutil.which('ffmpeg')
    if system_ffmpeg:
        logger.info(f"✅ Using system FFmpeg from PATH: {system_ffmpeg}")
        return system_ffmpeg

    raise RuntimeError(
        "FFmpeg is not available. Please install imageio-ffmpeg (pip install imageio-ffmpeg) "
        "or install FFmpeg manually from https://ffmpeg.org/download.html"
    )


@lru_cache(maxsize=1)
def get_ytdlp_path() -> str:
    """
    Get the path to the yt-dlp executable.

    Raises:
        RuntimeError: If yt-dlp cannot be found
    """
    candidate = config.YTDLP_PATH or 'yt-dlp'
    resolved = candidate if os.path.exists(candidate) else shutil.which(candidate)
    if not resolved:
        raise RuntimeError(
            f"yt-dlp is not available at '{candidate}'. Install it with: pip install yt-dlp"
        )
    return resolved


def get_ffmpeg_version() -> Optional[str]:
    """
    Get the version of the available FFmpeg.

    Returns:
        str: First line of ``ffmpeg -version``, or None if not available
    """
    try:
        result = subprocess.run(
            [get_ffmpeg_path(), '-version'],
            capture_output=True,
            text=True,
            timeout=5
        )
        if result.returncode == 0:
            return result.stdout.split('\n')[0]
        return None
    except Exception as e:
        logger.error(f"Failed to get FFmpeg version: {e}")
        return None


def get_ytdlp_version() -> Optional[str]:
    try:
        get_ytdlp_path()
        from yt_dlp.version import __version__
        return __version__
    except (RuntimeError, ImportError) as e:
        logger.error(f"yt-dlp unavailable: {e}")
        return None


def check_dependencies() -> Dict[str, Optional[str]]:
    """Version string per tool, None where the tool is missing."""
    return {
        'yt_dlp': get_ytdlp_version(),
        'ffmpeg': get_ffmpeg_version(),
    }
