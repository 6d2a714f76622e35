"""
Feedloom Database Package.

SQLAlchemy models and async session management.
"""

from .models import Base

__all__ = ["Base"]
