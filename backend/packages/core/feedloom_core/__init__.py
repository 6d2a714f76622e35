"""
Feedloom Core Package.

This package contains the ingestion services, error taxonomy,
settings, and shared schemas for the Feedloom application.
"""

__version__ = "0.1.0"

from .logging_config import init_logging, get_logger

__all__ = ["init_logging", "get_logger"]
