"""
Web (Streamlit) interface for the BotChat client.

Example:
    from botchat.interfaces.web import run_frontend
"""

from botchat.interfaces.web.frontend import run_frontend, cleanup

__all__ = ["run_frontend", "cleanup"]
