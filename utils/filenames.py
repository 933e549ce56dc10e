"""Filename helpers for attachments and cache files."""

import re

_ATTACHMENT_UNSAFE = re.compile(r'[^A-Za-z0-9]')
_PATH_UNSAFE = re.compile(r'[^A-Za-z0-9_-]')


def attachment_filename(title: str, extension: str = "mp4", max_length: int = 50) -> str:
    """Title reduced to ASCII alphanumerics and underscores, plus extension."""
    stem = _ATTACHMENT_UNSAFE.sub('_', title or '')[:max_length]
    if not stem.strip('_'):
        stem = "video"
    extension = _ATTACHMENT_UNSAFE.sub('', extension or '') or "mp4"
    return f"{stem}.{extension}"


def cache_safe_id(value: str) -> str:
    """Identifier usable as part of a file name."""
    return _PATH_UNSAFE.sub('_', value)[:100] or "unknown"
