"""FastAPI application factory for Keygate.

Provides the main application instance and factory function
for creating configured FastAPI apps.
"""

from keygate.api.main import create_app, get_app

__all__ = [
    "create_app",
    "get_app",
]
