"""
Setup verification: checks configuration and access to every external service.
"""

import logging
from typing import List, Optional

from .config import Settings
from .data_models import CalendarType, VerificationResult, VerificationStatus
from .google_session import GoogleAPIError, GoogleSession
from .sinks import CalendarSink, DriveSink
from .vision_clients import ProviderError


logger = logging.getLogger(__name__)


def check_configuration(settings: Settings) -> VerificationResult:
    missing = settings.missing_settings()
    if not missing:
        return VerificationResult(
            service='Environment Variables',
            status=VerificationStatus.SUCCESS,
            message='All required environment variables are set',
        )
    return VerificationResult(
        service='Environment Variables',
        status=VerificationStatus.ERROR,
        message=f"Missing environment variables: {', '.join(missing)}",
        details='Check your .env.local file',
    )


async def check_google_credentials(google: GoogleSession) -> VerificationResult:
    try:
        await google.access_token()
    except GoogleAPIError as e:
        return VerificationResult(
            service='Google Credentials',
            status=VerificationStatus.ERROR,
            message='Failed to obtain a Google access token',
            details=str(e),
        )
    return VerificationResult(
        service='Google Credentials',
        status=VerificationStatus.SUCCESS,
        message='OAuth2 refresh token accepted',
    )


async def check_drive(drive: DriveSink) -> VerificationResult:
    if not drive.folder_id:
        return VerificationResult(service='Google Drive', status=VerificationStatus.ERROR,
                                  message='GOOGLE_DRIVE_FOLDER_ID not set')
    try:
        name = await drive.folder_name()
    except GoogleAPIError as e:
        if e.status == 404:
            message = 'Drive folder not found'
        elif e.status == 403:
            message = 'Permission denied to access Drive folder'
        else:
            message = 'Drive access error'
        return VerificationResult(service='Google Drive', status=VerificationStatus.ERROR,
                                  message=message, details=str(e))
    return VerificationResult(
        service='Google Drive',
        status=VerificationStatus.SUCCESS,
        message=f'Folder accessible: {name}',
        details=f'Folder ID: {drive.folder_id}',
    )


async def check_calendars(calendar: CalendarSink) -> List[VerificationResult]:
    results = []
    for calendar_type in CalendarType:
        service = f'Calendar ({calendar_type.value})'
        if not calendar.calendar_ids.get(calendar_type):
            results.append(VerificationResult(
                service=service,
                status=VerificationStatus.ERROR,
                message=f'Calendar ID not set for {calendar_type.value}',
                details='Check your .env.local file',
            ))
            continue

        try:
            summary = await calendar.calendar_summary(calendar_type)
        except GoogleAPIError as e:
            if e.status == 404:
                message = f'Calendar not found: {calendar_type.value}'
            elif e.status == 403:
                message = f'Permission denied for calendar: {calendar_type.value}'
            else:
                message = f'Error accessing calendar: {calendar_type.value}'
            results.append(VerificationResult(service=service, status=VerificationStatus.ERROR,
                                              message=message, details=str(e)))
            continue

        results.append(VerificationResult(service=service, status=VerificationStatus.SUCCESS,
                                          message=f'Calendar accessible: {summary}'))
    return results


async def check_provider(service: str, client) -> VerificationResult:
    try:
        await client.check_connection()
    except ProviderError as e:
        return VerificationResult(service=service, status=VerificationStatus.ERROR,
                                  message=f'Failed to connect to {service}', details=str(e))
    return VerificationResult(service=service, status=VerificationStatus.SUCCESS,
                              message=f'{service} connection successful',
                              details='API key valid and model accessible')


async def verify_setup(settings: Settings, google: GoogleSession, drive: DriveSink,
                       calendar: CalendarSink, openrouter,
                       anthropic_client=None) -> List[VerificationResult]:
    """
    Run every setup check.

    Checks are read-only: nothing is written to Drive or the calendars.
    A failing check is reported in its result and never stops the others.
    """
    results = [check_configuration(settings)]
    results.append(await check_google_credentials(google))
    results.append(await check_drive(drive))
    results.extend(await check_calendars(calendar))
    results.append(await check_provider('OpenRouter', openrouter))

    if anthropic_client is not None:
        results.append(await check_provider('Anthropic', anthropic_client))
    else:
        results.append(VerificationResult(service='Anthropic', status=VerificationStatus.WARNING,
                                          message='ANTHROPIC_API_KEY not set, direct Claude backend disabled'))

    failed = [r.service for r in results if r.status == VerificationStatus.ERROR]
    logger.info(f"Setup verification finished, {len(failed)} failing checks")
    return results
