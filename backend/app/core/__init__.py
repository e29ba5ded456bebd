"""
Core module for application configuration and utilities.

The adaptive engine lives in ``app.core.adaptive`` and is imported directly
from there; it is not re-exported here so importing settings stays cheap.
"""
from .config import settings

__all__ = ["settings"]
