"""
API Package
===========
HTTP routes for widgets, cron triggers and health checks.
"""

from voicegate.api.router import api_router

__all__ = ["api_router"]
