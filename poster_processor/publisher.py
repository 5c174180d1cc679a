"""
Fans a reviewed event out to the Drive, Calendar and Photos sinks.
"""

import asyncio
import logging
from typing import Awaitable, Optional, Tuple

from .data_models import EventDetails, PublishResult, SinkResult
from .sinks import CalendarSink, DriveSink, PhotosSink


logger = logging.getLogger(__name__)


class EventPublisher:
    """
    Publishes one event to all three sinks.

    The Photos upload runs alongside the Drive upload; the calendar entry
    waits for Drive so it can link the stored poster. A failing sink never
    stops or rolls back the others.
    """

    def __init__(self, drive: DriveSink, calendar: CalendarSink, photos: PhotosSink):
        self.drive = drive
        self.calendar = calendar
        self.photos = photos

    async def publish(self, event: EventDetails, image_bytes: bytes, filename: str,
                      mime_type: str) -> PublishResult:
        """
        Upload the poster and create the calendar entry.

        Returns:
            PublishResult with one SinkResult per sink
        """
        logger.info(f"Publishing event: {event.title} ({event.calendar.value})")

        (drive_result, calendar_result), photos_result = await asyncio.gather(
            self._drive_then_calendar(event, image_bytes, filename, mime_type),
            self._guarded('Photos', self.photos.upload(image_bytes, filename, mime_type, event)),
        )

        result = PublishResult(drive=drive_result, calendar=calendar_result, photos=photos_result)
        for name, sink_result in (('Drive', drive_result), ('Calendar', calendar_result),
                                  ('Photos', photos_result)):
            logger.info(f"{name}: {'OK' if sink_result.success else 'FAILED'} - {sink_result.message}")
        return result

    async def _drive_then_calendar(self, event: EventDetails, image_bytes: bytes, filename: str,
                                   mime_type: str) -> Tuple[SinkResult, SinkResult]:
        drive_result = await self._guarded(
            'Drive', self.drive.upload(image_bytes, filename, mime_type, event.title))
        poster_url: Optional[str] = drive_result.url if drive_result.success else None
        calendar_result = await self._guarded(
            'Calendar', self.calendar.create_event(event, poster_url))
        return drive_result, calendar_result

    @staticmethod
    async def _guarded(name: str, operation: Awaitable[SinkResult]) -> SinkResult:
        try:
            return await operation
        except Exception as e:
            logger.exception(f"{name} sink raised unexpectedly")
            return SinkResult(success=False, message=f"{name} failed: {e}")
