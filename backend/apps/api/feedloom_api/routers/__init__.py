"""
API routers package.

This package contains all FastAPI routers for the Feedloom API.
"""

from . import refresh

__all__ = ["refresh"]
