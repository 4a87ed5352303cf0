"""
API Routers
Separate router modules for each domain.
"""

from app.routers import platform_manifest

__all__ = ["platform_manifest"]
