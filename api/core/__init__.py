"""Core utilities for the certificate renderer API.

Request-scoped log context is exported for easy importing:
    from core import bind_contextvars
"""

from core.logger import bind_contextvars, clear_contextvars

__all__ = [
    "bind_contextvars",
    "clear_contextvars",
]
