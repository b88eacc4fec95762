"""Middleware entry points."""

from ratewarden.middleware.dispatcher import limit

__all__ = ["limit"]
