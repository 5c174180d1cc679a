"""
Tests for the Drive, Calendar and Photos sinks.
"""

from datetime import datetime, timezone

import pytest

from conftest import FIXED_NOW, FakeResponse

from poster_processor.data_models import CalendarType, EventDetails
from poster_processor.sinks import (
    CalendarSink, DriveSink, PhotosSink, original_name, upload_name,
)


CALENDAR_IDS = {
    CalendarType.NATIONAAL: "nat@group.calendar.google.com",
    CalendarType.INTERNATIONAAL: "int@group.calendar.google.com",
    CalendarType.BEURZEN: "beurs@group.calendar.google.com",
}


def make_event(start, end, **kwargs) -> EventDetails:
    return EventDetails(title=kwargs.pop('title', "Radio Velddag"), startDate=start, endDate=end, **kwargs)


class TestUploadNames:
    """Test stored file naming."""

    def test_upload_name(self):
        assert upload_name("poster.jpg", FIXED_NOW) == "2024-11-01T12-00-00-000Z_poster.jpg"

    def test_original_name(self):
        assert original_name("2024-11-01T12-00-00-000Z_poster.jpg") == "poster.jpg"

    def test_original_name_without_prefix(self):
        assert original_name("poster.jpg") == "poster.jpg"


class TestDriveSink:
    """Test Drive uploads and duplicate detection."""

    @pytest.fixture
    def drive(self, google, clock):
        return DriveSink(google, folder_id="folder-123", clock=clock)

    @pytest.mark.asyncio
    async def test_upload_success(self, drive, fake_session, sample_image_bytes):
        fake_session.responses = [
            FakeResponse(200, {'id': 'f1', 'webViewLink': 'https://drive.google.com/file/d/f1/view'}),
            FakeResponse(200, {'id': 'perm-1'}),
        ]

        result = await drive.upload(sample_image_bytes, "poster.jpg", "image/jpeg", "Radio Velddag")

        assert result.success
        assert result.url == 'https://drive.google.com/file/d/f1/view'

        method, url, kwargs = fake_session.calls[0]
        assert url.startswith("https://www.googleapis.com/upload/drive/v3/files")
        assert kwargs['params']['uploadType'] == 'multipart'

        method, url, kwargs = fake_session.calls[1]
        assert url.endswith("/files/f1/permissions")
        assert kwargs['json'] == {'role': 'reader', 'type': 'anyone'}

    @pytest.mark.asyncio
    async def test_upload_without_view_link(self, drive, fake_session, sample_image_bytes):
        fake_session.responses = [FakeResponse(200, {'id': 'f2'}), FakeResponse(200, {})]

        result = await drive.upload(sample_image_bytes, "poster.jpg", "image/jpeg")

        assert result.url == "https://drive.google.com/file/d/f2/view"

    @pytest.mark.asyncio
    async def test_share_failure_still_succeeds(self, drive, fake_session, sample_image_bytes):
        fake_session.responses = [
            FakeResponse(200, {'id': 'f1', 'webViewLink': 'https://drive.google.com/file/d/f1/view'}),
            FakeResponse(403, {'error': {'message': 'Sharing disabled by domain policy'}}),
        ]

        result = await drive.upload(sample_image_bytes, "poster.jpg", "image/jpeg")

        assert result.success

    @pytest.mark.asyncio
    async def test_upload_failure(self, drive, fake_session, sample_image_bytes):
        fake_session.responses = [FakeResponse(403, {'error': {'message': 'Insufficient permissions'}})]

        result = await drive.upload(sample_image_bytes, "poster.jpg", "image/jpeg")

        assert not result.success
        assert "Insufficient permissions" in result.message
        assert len(fake_session.calls) == 1

    @pytest.mark.asyncio
    async def test_duplicate_found(self, drive, fake_session):
        fake_session.responses = [FakeResponse(200, {'files': [
            {'id': 'a', 'name': '2024-10-01T08-00-00-000Z_poster.jpg'},
            {'id': 'b', 'name': '2024-10-02T08-00-00-000Z_old_poster.jpg'},
        ]})]

        check = await drive.find_duplicates("poster.jpg")

        assert check.is_duplicate
        assert check.matches == ['2024-10-01T08-00-00-000Z_poster.jpg']
        query = fake_session.calls[0][2]['params']['q']
        assert "name contains 'poster.jpg'" in query
        assert "trashed = false" in query
        assert "'folder-123' in parents" in query

    @pytest.mark.asyncio
    async def test_similar_name_is_not_duplicate(self, drive, fake_session):
        fake_session.responses = [FakeResponse(200, {'files': [
            {'id': 'b', 'name': '2024-10-02T08-00-00-000Z_old_poster.jpg'},
        ]})]

        check = await drive.find_duplicates("poster.jpg")

        assert not check.is_duplicate
        assert check.message == "No duplicates found"

    @pytest.mark.asyncio
    async def test_quotes_escaped_in_query(self, drive, fake_session):
        fake_session.responses = [FakeResponse(200, {'files': []})]

        await drive.find_duplicates("jan's poster.jpg")

        assert "name contains 'jan\\'s poster.jpg'" in fake_session.calls[0][2]['params']['q']

    @pytest.mark.asyncio
    async def test_lookup_error_is_not_duplicate(self, drive, fake_session):
        fake_session.responses = [FakeResponse(500, "backend error")]

        check = await drive.find_duplicates("poster.jpg")

        assert not check.is_duplicate
        assert check.message == "Could not check for duplicates, proceeding anyway"

    @pytest.mark.asyncio
    async def test_folder_name(self, drive, fake_session):
        fake_session.responses = [FakeResponse(200, {'id': 'folder-123', 'name': 'Posters'})]
        assert await drive.folder_name() == 'Posters'


class TestCalendarBody:
    """Test Calendar API event bodies."""

    @pytest.fixture
    def calendar(self, google):
        return CalendarSink(google, CALENDAR_IDS)

    def test_timed_event(self, calendar, sample_event):
        body = calendar.build_event_body(sample_event)

        assert body['summary'] == "Radio Velddag"
        assert body['location'] == "Scoutinggebouw, Zeist"
        assert body['start'] == {'dateTime': '2024-12-15T10:00:00+01:00', 'timeZone': 'Europe/Amsterdam'}
        assert body['end'] == {'dateTime': '2024-12-15T14:00:00+01:00', 'timeZone': 'Europe/Amsterdam'}

    def test_all_day_event(self, calendar):
        # Midnight in Amsterdam
        event = make_event("2024-12-14T23:00:00Z", "2024-12-15T03:00:00Z")
        body = calendar.build_event_body(event)

        assert body['start'] == {'date': '2024-12-15'}
        assert body['end'] == {'date': '2024-12-16'}

    def test_multi_day_all_day_event(self, calendar):
        event = make_event("2024-12-14T23:00:00Z", "2024-12-16T23:00:00Z")
        body = calendar.build_event_body(event)

        assert body['start'] == {'date': '2024-12-15'}
        assert body['end'] == {'date': '2024-12-17'}

    def test_multi_day_timed_event_ends_at_2359(self, calendar):
        event = make_event("2024-12-14T09:00:00Z", "2024-12-15T17:00:00Z")
        body = calendar.build_event_body(event)

        assert body['start']['dateTime'] == '2024-12-14T10:00:00+01:00'
        assert body['end']['dateTime'] == '2024-12-15T23:59:00+01:00'

    def test_poster_link_appended(self, calendar, sample_event):
        body = calendar.build_event_body(sample_event, "https://drive.google.com/file/d/f1/view")

        assert body['description'] == (
            'Jaarlijkse velddag van de afdeling\n\n'
            '<a href="https://drive.google.com/file/d/f1/view">Poster</a>'
        )

    def test_template_tokens_removed(self, calendar):
        event = make_event("2024-12-15T09:00:00Z", "2024-12-15T13:00:00Z",
                           description="Open vanaf {TIJD} tot 16:00")
        assert calendar.build_event_body(event)['description'] == "Open vanaf tot 16:00"

    def test_unknown_timezone(self, google):
        with pytest.raises(ValueError):
            CalendarSink(google, CALENDAR_IDS, event_timezone="Nowhere/Special")


class TestCalendarSink:
    """Test calendar event creation."""

    @pytest.mark.asyncio
    async def test_event_goes_to_matching_calendar(self, google, fake_session):
        fake_session.responses = [FakeResponse(200, {'id': 'evt1', 'htmlLink': 'https://calendar.google.com/e/evt1'})]
        calendar = CalendarSink(google, CALENDAR_IDS)
        event = make_event("2024-12-15T09:00:00Z", "2024-12-15T13:00:00Z", calendar="Beurzen en Diversen")

        result = await calendar.create_event(event)

        assert result.success
        assert result.url == 'https://calendar.google.com/e/evt1'
        assert "Beurzen en Diversen" in result.message
        url = fake_session.calls[0][1]
        assert url == ("https://www.googleapis.com/calendar/v3/calendars/"
                       "beurs%40group.calendar.google.com/events")

    @pytest.mark.asyncio
    async def test_missing_calendar_id(self, google, fake_session, sample_event):
        calendar = CalendarSink(google, {CalendarType.NATIONAAL: ""})

        result = await calendar.create_event(sample_event)

        assert not result.success
        assert "not configured" in result.message
        assert fake_session.calls == []

    @pytest.mark.asyncio
    async def test_api_failure(self, google, fake_session, sample_event):
        fake_session.responses = [FakeResponse(403, {'error': {'message': 'Forbidden'}})]
        calendar = CalendarSink(google, CALENDAR_IDS)

        result = await calendar.create_event(sample_event)

        assert not result.success
        assert "Forbidden" in result.message

    @pytest.mark.asyncio
    async def test_calendar_summary(self, google, fake_session):
        fake_session.responses = [FakeResponse(200, {'summary': 'HDCN Nationaal'})]
        calendar = CalendarSink(google, CALENDAR_IDS)

        assert await calendar.calendar_summary(CalendarType.NATIONAAL) == 'HDCN Nationaal'


class TestPhotosSink:
    """Test Google Photos uploads."""

    def created(self, message='Success'):
        return FakeResponse(200, {'newMediaItemResults': [{
            'status': {'message': message},
            'mediaItem': {'id': 'media-1', 'productUrl': 'https://photos.google.com/lr/photo/media-1'},
        }]})

    @pytest.mark.asyncio
    async def test_upload_success(self, google, fake_session, sample_event, sample_image_bytes):
        fake_session.responses = [FakeResponse(200, "upload-token"), self.created()]
        photos = PhotosSink(google)

        result = await photos.upload(sample_image_bytes, "poster.jpg", "image/jpeg", sample_event)

        assert result.success
        assert result.url == 'https://photos.google.com/lr/photo/media-1'

        headers = fake_session.calls[0][2]['headers']
        assert headers['X-Goog-Upload-Protocol'] == 'raw'
        assert headers['X-Goog-Upload-File-Name'] == 'poster.jpg'

        item = fake_session.calls[1][2]['json']['newMediaItems'][0]
        assert item['simpleMediaItem'] == {'uploadToken': 'upload-token', 'fileName': 'poster.jpg'}
        assert item['description'] == "HDCN Event Poster - Event Date: 2024-12-15T09:00:00.000Z"
        assert len(fake_session.calls) == 2

    @pytest.mark.asyncio
    async def test_added_to_album(self, google, fake_session, sample_event, sample_image_bytes):
        fake_session.responses = [FakeResponse(200, "upload-token"), self.created('OK'), FakeResponse(200, {})]
        photos = PhotosSink(google, album_id="album-9")

        result = await photos.upload(sample_image_bytes, "poster.jpg", "image/jpeg", sample_event)

        assert result.success
        method, url, kwargs = fake_session.calls[2]
        assert url.endswith("/albums/album-9:batchAddMediaItems")
        assert kwargs['json'] == {'mediaItemIds': ['media-1']}

    @pytest.mark.asyncio
    async def test_album_failure_still_succeeds(self, google, fake_session, sample_event, sample_image_bytes):
        fake_session.responses = [FakeResponse(200, "upload-token"), self.created(),
                                  FakeResponse(400, {'error': {'message': 'Invalid album'}})]
        photos = PhotosSink(google, album_id="album-9")

        result = await photos.upload(sample_image_bytes, "poster.jpg", "image/jpeg", sample_event)

        assert result.success

    @pytest.mark.asyncio
    async def test_media_item_rejected(self, google, fake_session, sample_event, sample_image_bytes):
        fake_session.responses = [FakeResponse(200, "upload-token"),
                                  FakeResponse(200, {'newMediaItemResults': [
                                      {'status': {'message': 'Upload token expired'}}]})]
        photos = PhotosSink(google)

        result = await photos.upload(sample_image_bytes, "poster.jpg", "image/jpeg", sample_event)

        assert not result.success
        assert "Upload token expired" in result.message

    @pytest.mark.asyncio
    async def test_upload_failure(self, google, fake_session, sample_event, sample_image_bytes):
        fake_session.responses = [FakeResponse(401, {'error': {'message': 'Request had insufficient scopes'}})]
        photos = PhotosSink(google)

        result = await photos.upload(sample_image_bytes, "poster.jpg", "image/jpeg", sample_event)

        assert not result.success
        assert "insufficient scopes" in result.message
