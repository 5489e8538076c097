"""
Dispatch package: the bounded worker pool and the HTTP transport it drives.
"""

from .queue import DispatchQueue, DEFAULT_CONCURRENCY
from .transport import HttpxTransport, Transport

__all__ = [
    "DispatchQueue",
    "DEFAULT_CONCURRENCY",
    "HttpxTransport",
    "Transport",
]
