import logging
import os
import sys

from dotenv import load_dotenv

load_dotenv()

# Add SUCCESS level
logging.SUCCESS = 25
logging.addLevelName(logging.SUCCESS, "SUCCESS")


class ColoredFormatter(logging.Formatter):
    """Console formatter that colors the level tag."""

    COLORS = {
        'INFO': '\033[94m',    # Blue
        'WARNING': '\033[93m', # Yellow
        'SUCCESS': '\033[92m', # Green
        'ERROR': '\033[91m',   # Red
        'DEBUG': '\033[95m',   # Magenta
        'CRITICAL': '\033[91m', # Red
        'RESET': '\033[0m'
    }

    LEVEL_TAGS = {
        'DEBUG': '[DEBUG]',
        'INFO': '[INFO]',
        'SUCCESS': '[SUCCESS]',
        'WARNING': '[WARNING]',
        'ERROR': '[ERROR]',
        'CRITICAL': '[ERROR]'
    }

    def format(self, record):
        levelname = self.LEVEL_TAGS.get(record.levelname, f'[{record.levelname}]')
        color = self.COLORS.get(record.levelname, '')

        log_message = f"{self.formatTime(record)} - {record.name} - {color}{levelname}{self.COLORS['RESET']} - {record.getMessage()}"

        if record.exc_info:
            log_message = f"{log_message}\n{self.formatException(record.exc_info)}"
        elif record.exc_text:
            log_message = f"{log_message}\n{record.exc_text}"

        return log_message


def get_logger(name: str = "BotChat") -> logging.Logger:
    """Configure and return a logger with custom formatting."""
    logger = logging.getLogger(name)
    logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

    # Streamlit re-imports modules on reruns; avoid stacking handlers
    logger.handlers.clear()

    # File handler (no colors in file)
    if log_file := os.getenv("LOG_FILE"):
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(ColoredFormatter())
    logger.addHandler(console_handler)

    return logger


def success(self, message, *args, **kwargs):
    """Log 'message % args' with severity 'SUCCESS'."""
    if self.isEnabledFor(logging.SUCCESS):
        self._log(logging.SUCCESS, message, args, **kwargs)


logging.Logger.success = success

logger = get_logger()
