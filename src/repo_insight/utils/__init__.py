"""Utility functions and classes."""

from .logging import get_logger, setup_logging
from .tokens import SessionTokenManager

__all__ = ["SessionTokenManager", "get_logger", "setup_logging"]
