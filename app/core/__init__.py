# app/core/__init__.py
"""
Campus Chat Core Module
Application wiring: state, lifespan, startup phases, routes, health
"""

# Package metadata is read once in app/__init__.py from the installed distribution
from app import __version__, __description__, __author__

__all__ = [
    "__version__",
    "__description__",
    "__author__",
]
