"""
Database Models
===============
SQLAlchemy ORM models for voicegate.
"""

from voicegate.models.base import Base
from voicegate.models.calls import CallLog, Widget

__all__ = [
    "Base",
    "Widget",
    "CallLog",
]
