"""
Logging module for the supervisor.
This module provides functionality to set up console logging and optional log shipping to Grafana Loki.
"""

from .setup import setup_logging

__all__ = ["setup_logging"]
