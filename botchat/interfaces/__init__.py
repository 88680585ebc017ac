"""
User-facing interfaces for the BotChat client.

This package groups the Web UI (Streamlit frontend) under botchat.interfaces.web.
"""

from . import web  # noqa: F401

__all__ = ["web"]
