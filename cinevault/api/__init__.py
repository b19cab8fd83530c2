"""
API package for Cinevault
"""

from .app import create_app

__all__ = [
    "create_app",
]
