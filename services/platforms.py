"""
Platform detection and per-platform invocation arguments.
"""

import os
import re
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Pattern, Tuple

import config
from models.records import Platform

logger = logging.getLogger(__name__)

DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@dataclass(frozen=True)
class PlatformSpec:
    platform: Platform
    detector: Pattern
    media_selector: str
    cookies_file: str
    extra_flags: Tuple[str, ...] = ()


@dataclass
class PlatformArguments:
    """Everything the extraction tool needs for one platform."""
    media_selector: str
    extra_flags: List[str] = field(default_factory=list)
    cookies_file: Optional[str] = None


DEFAULT_PLATFORMS: Tuple[PlatformSpec, ...] = (
    PlatformSpec(
        platform=Platform.YOUTUBE,
        detector=re.compile(r"(?:^|\.)(?:youtube\.com|youtu\.be|youtube-nocookie\.com)$", re.IGNORECASE),
        media_selector="bv*[ext=mp4]+ba[ext=m4a]/b[ext=mp4]/bv*+ba/b",
        cookies_file="youtube-cookies.txt",
        extra_flags=(
            "--no-playlist",
            "--no-cache-dir",
            "--extractor-args", "youtube:player_client=android,web",
        ),
    ),
    PlatformSpec(
        platform=Platform.INSTAGRAM,
        detector=re.compile(r"(?:^|\.)(?:instagram\.com|instagr\.am)$", re.IGNORECASE),
        media_selector="best[vcodec^=avc1]/best",
        cookies_file="instagram-cookies.txt",
        extra_flags=("--no-check-certificate", "--user-agent", DESKTOP_USER_AGENT),
    ),
    PlatformSpec(
        platform=Platform.TIKTOK,
        detector=re.compile(r"(?:^|\.)tiktok\.com$", re.IGNORECASE),
        media_selector="best[vcodec^=h264]/best",
        cookies_file="tiktok-cookies.txt",
    ),
    PlatformSpec(
        platform=Platform.FACEBOOK,
        detector=re.compile(r"(?:^|\.)(?:facebook\.com|fb\.watch|fb\.com)$", re.IGNORECASE),
        media_selector="best",
        cookies_file="facebook-cookies.txt",
        extra_flags=("--no-check-certificate",),
    ),
)


def _host_of(url: str) -> str:
    match = re.match(r"^[a-z][a-z0-9+.-]*://([^/?#]+)", url.strip(), re.IGNORECASE)
    if not match:
        return ""
    host = match.group(1).rsplit("@", 1)[-1]
    return host.split(":", 1)[0].lower().rstrip(".")


class PlatformRegistry:
    """Maps URLs to platforms. Stateless apart from the cookie file check."""

    def __init__(self, platforms=DEFAULT_PLATFORMS, cookies_dir: Optional[str] = None,
                 proxy_url: Optional[str] = None):
        self.platforms = tuple(platforms)
        self.cookies_dir = cookies_dir if cookies_dir is not None else config.COOKIES_DIR
        self.proxy_url = proxy_url if proxy_url is not None else config.PROXY_URL
        self._by_platform = {spec.platform: spec for spec in self.platforms}

    def classify(self, url: str) -> Optional[Platform]:
        """First platform whose detector matches the URL host, else None."""
        if not isinstance(url, str):
            return None
        host = _host_of(url)
        if not host:
            return None
        for spec in self.platforms:
            if spec.detector.search(host):
                return spec.platform
        return None

    def arguments_for(self, platform: Platform) -> PlatformArguments:
        spec = self._by_platform[Platform(platform)]
        flags = list(spec.extra_flags)
        if self.proxy_url:
            flags.extend(["--proxy", self.proxy_url])

        cookies_path = os.path.abspath(os.path.join(self.cookies_dir, spec.cookies_file))
        cookies_file = None
        if os.path.isfile(cookies_path):
            flags.extend(["--cookies", cookies_path])
            cookies_file = cookies_path
            logger.debug(f"Using cookies for {spec.platform.value}: {cookies_path}")

        return PlatformArguments(
            media_selector=spec.media_selector,
            extra_flags=flags,
            cookies_file=cookies_file,
        )
