"""Upstream API clients."""

from .whop import WhopClient, yesterday_window

__all__ = ["WhopClient", "yesterday_window"]
