"""
Logging module for the workspace supervisor.
This module provides the root logger setup and the optional Loki log shipper.
"""

from .setup import setup_logging
from .handler import LokiHandler

__all__ = ["setup_logging", "LokiHandler"]
