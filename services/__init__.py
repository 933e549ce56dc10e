"""Services package for extraction, caching and streaming."""

from .errors import ErrorKind, GatewayError
from .gateway import Gateway
from .platforms import PlatformRegistry
from .process_runner import ProcessRunner

__all__ = [
    'ErrorKind',
    'GatewayError',
    'Gateway',
    'PlatformRegistry',
    'ProcessRunner',
]
