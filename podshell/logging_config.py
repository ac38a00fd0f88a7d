"""
Custom logging configuration to keep websocket chatter out of the session
"""

import logging
import logging.config
from typing import Dict, Any


class WebSocketFrameFilter(logging.Filter):
    """Filter to suppress per-frame websocket logs."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Drop websocket trace/debug output below WARNING."""
        if record.name.startswith("websocket") and record.levelno < logging.WARNING:
            return False
        return True


def get_logging_config(level: str = "INFO") -> Dict[str, Any]:
    """
    Get logging configuration.

    Logs go to stderr: stdout carries the remote process output.
    """
    level = level.upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "websocket_frame_filter": {
                "()": WebSocketFrameFilter
            }
        },
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stderr",
                "filters": ["websocket_frame_filter"]
            }
        },
        "loggers": {
            "podshell": {
                "handlers": ["default"],
                "level": level,
                "propagate": False
            },
            "kubernetes": {
                "handlers": ["default"],
                "level": "DEBUG" if level == "DEBUG" else "WARNING",
                "propagate": False
            },
            "urllib3": {
                "handlers": ["default"],
                "level": "WARNING",
                "propagate": False
            }
        },
        "root": {
            "level": level,
            "handlers": ["default"]
        }
    }


def configure_logging(level: str = "INFO") -> None:
    """Apply the logging configuration."""
    logging.config.dictConfig(get_logging_config(level))
