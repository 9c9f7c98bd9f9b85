"""Calendar event creation with an attached video-conference link.

:class:`GoogleCalendarGateway` creates events through the Google Calendar API
using a service account, asking Google to attach a Meet conference. The
service is built lazily so the application starts without credentials; only
creating an event needs them.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from app_logging import get_logger

_logger = get_logger("classroom.calendar")

SCOPES = ['https://www.googleapis.com/auth/calendar']


class CalendarError(Exception):
    """The calendar service could not create the event."""


def _isoformat(value: Any) -> str:
    return value.isoformat() if isinstance(value, datetime) else str(value)


def meet_link(event: Mapping[str, Any]) -> Optional[str]:
    """The conference join link of a created event, if Google attached one."""

    if event.get('hangoutLink'):
        return event['hangoutLink']
    entry_points = (event.get('conferenceData') or {}).get('entryPoints') or []
    return entry_points[0].get('uri') if entry_points else None


def event_body(summary: str, start: Any, end: Any, description: Optional[str] = None,
               attendee_email: Optional[str] = None) -> Dict[str, Any]:
    return {
        'summary': summary,
        'description': description or '',
        'start': {'dateTime': _isoformat(start), 'timeZone': 'UTC'},
        'end': {'dateTime': _isoformat(end), 'timeZone': 'UTC'},
        'conferenceData': {
            'createRequest': {
                'requestId': f"meet-{uuid.uuid4().hex}",
                'conferenceSolutionKey': {'type': 'hangoutsMeet'},
            }
        },
        'attendees': [{'email': attendee_email}] if attendee_email else [],
    }


class GoogleCalendarGateway:
    def __init__(self, credentials_info: Optional[Mapping[str, Any]] = None,
                 credentials_file: Optional[str] = None, calendar_id: str = 'primary') -> None:
        self._credentials_info = credentials_info
        self._credentials_file = credentials_file
        self.calendar_id = calendar_id
        self._service = None

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "GoogleCalendarGateway":
        raw = config.get('GOOGLE_SERVICE_ACCOUNT_JSON')
        return cls(
            credentials_info=json.loads(raw) if raw else None,
            credentials_file=config.get('GOOGLE_SERVICE_ACCOUNT_FILE'),
            calendar_id=config.get('GOOGLE_CALENDAR_ID', 'primary'),
        )

    def _credentials(self):
        if self._credentials_info:
            return service_account.Credentials.from_service_account_info(self._credentials_info, scopes=SCOPES)
        if self._credentials_file:
            return service_account.Credentials.from_service_account_file(self._credentials_file, scopes=SCOPES)
        raise CalendarError('Calendar credentials are not configured')

    def _calendar(self):
        if self._service is None:
            self._service = build('calendar', 'v3', credentials=self._credentials(), cache_discovery=False)
        return self._service

    def create_event(self, summary: str, start: Any, end: Any, description: Optional[str] = None,
                     attendee_email: Optional[str] = None) -> Dict[str, Any]:
        """Create the event and return ``{id, summary, start, end, meetLink, htmlLink}``."""

        body = event_body(summary, start, end, description, attendee_email)
        try:
            created = self._calendar().events().insert(
                calendarId=self.calendar_id,
                conferenceDataVersion=1,
                body=body,
            ).execute()
        except (HttpError, GoogleAuthError, OSError, ValueError) as exc:
            _logger.error("calendar event creation failed", extra={"error": str(exc)})
            raise CalendarError(str(exc)) from exc
        _logger.info("calendar event created", extra={"event_id": created.get('id')})
        return {
            'id': created.get('id'),
            'summary': created.get('summary'),
            'start': created.get('start'),
            'end': created.get('end'),
            'meetLink': meet_link(created),
            'htmlLink': created.get('htmlLink'),
        }
