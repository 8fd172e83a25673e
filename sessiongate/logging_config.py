"""
Logging configuration for the SessionGate service.

Loggers:
- uvicorn, uvicorn.error: server lifecycle
- uvicorn.access: request log, with /health and /healthz requests dropped
- sessiongate: supervisors, registry and credential store (level from LOG_LEVEL)
- sessiongate.qr: console QR codes, message only
"""

import logging
import logging.config
from typing import Any, Dict, Optional


class HealthCheckFilter(logging.Filter):
    """Drop access log lines for GET /health and /healthz."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter out health check requests from uvicorn access logs."""
        if record.name == "uvicorn.access":
            message = record.getMessage()
            if "/health" in message and "GET" in message:
                return False
        return True


def get_logging_config(level: Optional[str] = None) -> Dict[str, Any]:
    """
    Build the dictConfig mapping used by main.py and uvicorn.run().

    Args:
        level: Level for the application loggers (defaults to INFO)
    """
    app_level = (level or "INFO").upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "health_check_filter": {
                "()": HealthCheckFilter
            }
        },
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            },
            "access": {
                "format": "%(message)s"
            },
            "qr": {
                "format": "%(message)s"
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout"
            },
            "access": {
                "class": "logging.StreamHandler",
                "formatter": "access",
                "stream": "ext://sys.stdout",
                "filters": ["health_check_filter"]
            },
            "qr": {
                "class": "logging.StreamHandler",
                "formatter": "qr",
                "stream": "ext://sys.stdout"
            }
        },
        "loggers": {
            "uvicorn": {
                "handlers": ["default"],
                "level": "INFO",
                "propagate": False
            },
            "uvicorn.error": {
                "handlers": ["default"],
                "level": "INFO",
                "propagate": False
            },
            "uvicorn.access": {
                "handlers": ["access"],
                "level": "INFO",
                "propagate": False
            },
            "sessiongate": {
                "handlers": ["default"],
                "level": app_level,
                "propagate": False
            },
            # Console QR codes are printed bare so they stay scannable
            "sessiongate.qr": {
                "handlers": ["qr"],
                "level": "INFO",
                "propagate": False
            }
        },
        "root": {
            "level": "INFO",
            "handlers": ["default"]
        }
    }
