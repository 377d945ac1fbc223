"""
FORMCOACH Shared Utilities

Logging, response helpers and endpoint decorators.
"""

import asyncio
import logging
import sys
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Optional

from fastapi import HTTPException


# ============================================
# Logging Configuration
# ============================================

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logger(name: str = "formcoach", level: int = logging.INFO) -> logging.Logger:
    """
    Set up a configured logger with console output.

    Usage:
        logger = setup_logger(__name__)
        logger.info("Hello from FORMCOACH")
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    logger.addHandler(console_handler)

    return logger


def parse_log_level(level: str) -> int:
    """'debug' / 'INFO' / '20' -> logging level int (INFO if unknown)."""
    if level.isdigit():
        return int(level)
    return getattr(logging, level.upper(), logging.INFO)


# Default logger for imports
logger = setup_logger("formcoach")


# ============================================
# Response Helpers
# ============================================

def get_now_iso() -> str:
    """Get current UTC datetime as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def success_response(data: Any = None, message: str = "Success") -> dict:
    """Create a success response dict."""
    return {
        "success": True,
        "message": message,
        "data": data,
        "timestamp": get_now_iso()
    }


def error_response(error: str, error_code: Optional[str] = None, details: Optional[dict] = None) -> dict:
    """Create an error response dict."""
    return {
        "success": False,
        "error": error,
        "error_code": error_code,
        "details": details,
        "timestamp": get_now_iso()
    }


# ============================================
# Decorators
# ============================================

def handle_exceptions(func):
    """Decorator to catch exceptions and return proper HTTP errors."""
    @wraps(func)
    async def async_wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except HTTPException:
            raise
        except ValueError as e:
            raise HTTPException(status_code=400, detail=error_response(str(e), "invalid_request"))
        except Exception as e:
            logger.error(f"Unhandled error in {func.__name__}: {e}")
            raise HTTPException(status_code=500, detail=error_response("Internal server error"))

    @wraps(func)
    def sync_wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except HTTPException:
            raise
        except ValueError as e:
            raise HTTPException(status_code=400, detail=error_response(str(e), "invalid_request"))
        except Exception as e:
            logger.error(f"Unhandled error in {func.__name__}: {e}")
            raise HTTPException(status_code=500, detail=error_response("Internal server error"))

    if asyncio.iscoroutinefunction(func):
        return async_wrapper
    return sync_wrapper
