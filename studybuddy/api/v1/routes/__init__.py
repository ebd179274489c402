"""API v1 routers."""

from . import feedback, monitoring

__all__ = ["feedback", "monitoring"]
