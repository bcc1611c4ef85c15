"""
Widget Lookup
=============
Read-only access to widget configuration.
"""

from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from voicegate.models.calls import Widget

logger = structlog.get_logger()


class WidgetLookupError(Exception):
    """Raised when widget configuration cannot be loaded."""


def parse_widget_id(widget_id: UUID | str) -> UUID | None:
    if isinstance(widget_id, UUID):
        return widget_id
    try:
        return UUID(str(widget_id))
    except ValueError:
        return None


class WidgetRepository:
    """Loads widgets by ID."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, widget_id: UUID | str) -> Widget | None:
        parsed = parse_widget_id(widget_id)
        if parsed is None:
            return None
        try:
            return await self.session.get(Widget, parsed)
        except SQLAlchemyError as e:
            logger.error("Failed to load widget", widget_id=str(widget_id), error=str(e))
            raise WidgetLookupError("Widget lookup failed") from e
