"""
Downstream sinks for a reviewed event: Google Drive, Calendar and Photos.

Every public upload method returns a SinkResult instead of raising, so one
failing sink never hides the outcome of the others.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional
from urllib.parse import quote

import aiohttp
from dateutil import tz as dateutil_tz

from .data_models import CalendarType, DuplicateCheck, EventDetails, SinkResult, format_timestamp
from .google_session import GoogleAPIError, GoogleSession
from .normalizer import strip_template_tokens


logger = logging.getLogger(__name__)

DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"
DRIVE_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"
CALENDAR_URL = "https://www.googleapis.com/calendar/v3/calendars/{calendar_id}"
PHOTOS_UPLOAD_URL = "https://photoslibrary.googleapis.com/v1/uploads"
PHOTOS_BATCH_CREATE_URL = "https://photoslibrary.googleapis.com/v1/mediaItems:batchCreate"
PHOTOS_ALBUM_ADD_URL = "https://photoslibrary.googleapis.com/v1/albums/{album_id}:batchAddMediaItems"

# Prefix DriveSink.upload puts in front of every stored file name
UPLOAD_PREFIX = re.compile(r'^\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{3}Z_')


def upload_name(filename: str, moment: datetime) -> str:
    """Drive file name for an upload, e.g. 2024-12-15T09-00-00-000Z_poster.jpg."""
    stamp = format_timestamp(moment).replace(':', '-').replace('.', '-')
    return f"{stamp}_{filename}"


def original_name(stored_name: str) -> str:
    """Strip the upload timestamp prefix from a stored Drive file name."""
    return UPLOAD_PREFIX.sub('', stored_name, count=1)


def _drive_quote(value: str) -> str:
    return value.replace('\\', '\\\\').replace("'", "\\'")


class DriveSink:
    """Stores poster images in a shared Drive folder."""

    def __init__(self, google: GoogleSession, folder_id: str = "",
                 clock: Optional[Callable[[], datetime]] = None):
        self.google = google
        self.folder_id = folder_id
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def upload(self, image_bytes: bytes, filename: str, mime_type: str,
                     title: Optional[str] = None) -> SinkResult:
        """
        Upload a poster and make it publicly viewable.

        Args:
            image_bytes: Poster image contents
            filename: Original file name of the poster
            mime_type: MIME type of the image
            title: Event title, stored as the file description

        Returns:
            SinkResult with the Drive view link on success
        """
        metadata = {'name': upload_name(filename, self.clock())}
        if title:
            metadata['description'] = title
        if self.folder_id:
            metadata['parents'] = [self.folder_id]

        with aiohttp.MultipartWriter('related') as writer:
            writer.append_json(metadata)
            writer.append(image_bytes, {'Content-Type': mime_type})

        try:
            logger.info(f"Uploading to Drive: {metadata['name']}")
            result = await self.google.request(
                'POST', DRIVE_UPLOAD_URL,
                params={'uploadType': 'multipart', 'fields': 'id,webViewLink'},
                data=writer,
            )
            file_id = result['id']
        except (GoogleAPIError, KeyError, TypeError) as e:
            logger.error(f"Drive upload failed: {e}")
            return SinkResult(success=False, message=f"Failed to upload to Google Drive: {e}")

        await self._share(file_id)

        return SinkResult(
            success=True,
            message="File uploaded to Google Drive successfully",
            url=result.get('webViewLink') or f"https://drive.google.com/file/d/{file_id}/view",
        )

    async def _share(self, file_id: str) -> None:
        try:
            await self.google.request(
                'POST', f"{DRIVE_FILES_URL}/{file_id}/permissions",
                json={'role': 'reader', 'type': 'anyone'},
            )
            logger.info("File permissions set to public")
        except GoogleAPIError as e:
            logger.warning(f"Could not set public permissions: {e}")

    async def find_duplicates(self, filename: str) -> DuplicateCheck:
        """
        Look for a poster uploaded earlier under the same file name.

        A stored file matches when its name without the upload timestamp
        prefix equals ``filename`` exactly. Lookup errors are reported as
        "no duplicate" so an outage never blocks publishing.
        """
        if not filename:
            return DuplicateCheck(is_duplicate=False, message="No file name given")

        query = f"name contains '{_drive_quote(filename)}' and trashed = false"
        if self.folder_id:
            query += f" and '{_drive_quote(self.folder_id)}' in parents"

        try:
            result = await self.google.request(
                'GET', DRIVE_FILES_URL, params={'q': query, 'fields': 'files(id, name)'},
            )
        except GoogleAPIError as e:
            logger.error(f"Duplicate check error: {e}")
            return DuplicateCheck(is_duplicate=False,
                                  message="Could not check for duplicates, proceeding anyway")

        files = (result or {}).get('files', [])
        matches = [f['name'] for f in files if original_name(f.get('name', '')) == filename]

        if matches:
            logger.info(f"Duplicate poster found: {', '.join(matches)}")
            return DuplicateCheck(is_duplicate=True, message="Duplicate poster found", matches=matches)
        return DuplicateCheck(is_duplicate=False, message="No duplicates found")

    async def folder_name(self) -> str:
        """Name of the configured folder; raises GoogleAPIError when inaccessible."""
        result = await self.google.request(
            'GET', f"{DRIVE_FILES_URL}/{quote(self.folder_id, safe='')}", params={'fields': 'id,name'},
        )
        return result.get('name', self.folder_id)


class CalendarSink:
    """Creates events in one of the three club calendars."""

    def __init__(self, google: GoogleSession, calendar_ids: Dict[CalendarType, str],
                 event_timezone: str = "Europe/Amsterdam"):
        self.google = google
        self.calendar_ids = calendar_ids
        self.timezone_name = event_timezone
        self.timezone = dateutil_tz.gettz(event_timezone)
        if self.timezone is None:
            raise ValueError(f"Unknown timezone: {event_timezone}")

    def build_event_body(self, event: EventDetails, poster_url: Optional[str] = None) -> dict:
        """
        Translate an EventDetails into a Calendar API event resource.

        Events starting at local midnight become all-day events. Timed events
        spanning more than a day end at 23:59 on their last day.
        """
        start = event.start_date.astimezone(self.timezone)
        end = event.end_date.astimezone(self.timezone)
        is_all_day = start.hour == 0 and start.minute == 0
        is_multi_day = end - start > timedelta(days=1)

        description = strip_template_tokens(event.description)
        if poster_url:
            description += f'\n\n<a href="{poster_url}">Poster</a>'

        body = {
            'summary': event.title,
            'location': event.location,
            'description': description,
        }

        if is_all_day:
            last_day = end.date() if (end.hour or end.minute) else end.date() - timedelta(days=1)
            last_day = max(last_day, start.date())
            body['start'] = {'date': start.date().isoformat()}
            body['end'] = {'date': (last_day + timedelta(days=1)).isoformat()}
        else:
            if is_multi_day:
                end = end.replace(hour=23, minute=59, second=0, microsecond=0)
            body['start'] = {'dateTime': start.isoformat(), 'timeZone': self.timezone_name}
            body['end'] = {'dateTime': end.isoformat(), 'timeZone': self.timezone_name}

        return body

    async def create_event(self, event: EventDetails, poster_url: Optional[str] = None) -> SinkResult:
        """Insert the event into the calendar matching its category."""
        calendar_id = self.calendar_ids.get(event.calendar)
        if not calendar_id:
            return SinkResult(success=False,
                              message=f"Calendar ID not configured for {event.calendar.value}")

        body = self.build_event_body(event, poster_url)
        logger.debug(f"Creating calendar event: {body}")

        try:
            result = await self.google.request(
                'POST', CALENDAR_URL.format(calendar_id=quote(calendar_id, safe='')) + '/events',
                json=body,
            )
        except GoogleAPIError as e:
            logger.error(f"Calendar creation error: {e}")
            return SinkResult(success=False, message=f"Failed to create calendar event: {e}")

        logger.info(f"Calendar event created: {(result or {}).get('id')}")
        return SinkResult(
            success=True,
            message=f"Event created in {event.calendar.value} calendar",
            url=(result or {}).get('htmlLink') or None,
        )

    async def calendar_summary(self, calendar_type: CalendarType) -> str:
        """Title of a configured calendar; raises GoogleAPIError when inaccessible."""
        calendar_id = self.calendar_ids.get(calendar_type)
        if not calendar_id:
            raise GoogleAPIError(404, f"Calendar ID not set for {calendar_type.value}")
        result = await self.google.request('GET', CALENDAR_URL.format(calendar_id=quote(calendar_id, safe='')))
        return result.get('summary', calendar_id)


class PhotosSink:
    """Archives posters in Google Photos."""

    def __init__(self, google: GoogleSession, album_id: str = ""):
        self.google = google
        self.album_id = album_id

    async def upload(self, image_bytes: bytes, filename: str, mime_type: str,
                     event: EventDetails) -> SinkResult:
        """Upload the poster as a media item described with the event date."""
        try:
            upload_token = await self.google.request_text(
                'POST', PHOTOS_UPLOAD_URL,
                headers={
                    'Content-Type': 'application/octet-stream',
                    'X-Goog-Upload-Content-Type': mime_type,
                    'X-Goog-Upload-File-Name': filename,
                    'X-Goog-Upload-Protocol': 'raw',
                },
                data=image_bytes,
            )

            result = await self.google.request('POST', PHOTOS_BATCH_CREATE_URL, json={
                'newMediaItems': [{
                    'description': f"HDCN Event Poster - Event Date: {format_timestamp(event.start_date)}",
                    'simpleMediaItem': {'uploadToken': upload_token, 'fileName': filename},
                }],
            })
        except GoogleAPIError as e:
            logger.error(f"Google Photos upload error: {e}")
            return SinkResult(success=False, message=f"Failed to upload to Google Photos: {e}")

        items: List[dict] = (result or {}).get('newMediaItemResults') or [{}]
        status_message = items[0].get('status', {}).get('message', 'Unknown error')
        media_item = items[0].get('mediaItem')

        if status_message not in ('Success', 'OK') or not media_item:
            logger.error(f"Failed to create media item: {status_message}")
            return SinkResult(success=False,
                              message=f"Failed to upload to Google Photos: {status_message}")

        if self.album_id:
            await self._add_to_album(media_item['id'])

        return SinkResult(success=True, message="Photo uploaded to Google Photos successfully",
                          url=media_item.get('productUrl'))

    async def _add_to_album(self, media_item_id: str) -> None:
        try:
            await self.google.request(
                'POST', PHOTOS_ALBUM_ADD_URL.format(album_id=self.album_id),
                json={'mediaItemIds': [media_item_id]},
            )
            logger.info("Photo added to album")
        except GoogleAPIError as e:
            logger.warning(f"Album assignment failed (photo still uploaded): {e}")
