"""Streamlit entry point: ``streamlit run botchat/interfaces/web/streamlit_app.py``"""

import asyncio
import sys

from botchat.infra.logger import logger

# Set event loop policy for Unix systems; the background worker loops pick it up
if sys.platform != "win32":
    import uvloop
    asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())

from botchat.interfaces.web.frontend import run_frontend

app_logger = logger.getChild("StreamlitApp")

if __name__ == "__main__":
    app_logger.debug("Rendering BotChat page")
    run_frontend()
