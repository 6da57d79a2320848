"""Route modules exposed by the API package."""

from . import realtime, tickets

__all__ = ["realtime", "tickets"]
