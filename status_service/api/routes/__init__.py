"""Route modules exposed by the API package."""

from . import events, metrics, status

__all__ = ["events", "metrics", "status"]
