"""
Shared request helpers for the route modules.
"""

from typing import Optional

from fastapi import Request
from pydantic import ValidationError

from models.requests import ExtractRequest, MediaRequest
from services.errors import InvalidRequest
from services.gateway import Gateway


def get_gateway(request: Request) -> Gateway:
    return request.app.state.gateway


def _first_error(error: ValidationError) -> str:
    errors = error.errors()
    return errors[0]['msg'] if errors else str(error)


def extract_params(url: Optional[str]) -> ExtractRequest:
    if not url or not url.strip():
        raise InvalidRequest("Missing url parameter")
    try:
        return ExtractRequest(url=url)
    except ValidationError as e:
        raise InvalidRequest("Invalid URL", details=_first_error(e))


def media_params(vid: Optional[str], format: Optional[str] = None) -> MediaRequest:
    if not vid or not vid.strip():
        raise InvalidRequest("Missing vid parameter")
    try:
        return MediaRequest(vid=vid, format=format)
    except ValidationError as e:
        raise InvalidRequest("Invalid parameters", details=_first_error(e), video_id=vid)
