import pytest

from calendar_gateway import CalendarError, GoogleCalendarGateway, event_body, meet_link
from conftest import utc


def test_event_body_requests_a_meet_conference():
    body = event_body('Basic class', utc(2024, 6, 3, 15), utc(2024, 6, 3, 16), attendee_email='ana@example.com')
    assert body['start'] == {'dateTime': '2024-06-03T15:00:00+00:00', 'timeZone': 'UTC'}
    assert body['conferenceData']['createRequest']['conferenceSolutionKey'] == {'type': 'hangoutsMeet'}
    assert body['attendees'] == [{'email': 'ana@example.com'}]
    assert event_body('x', utc(2024, 6, 3), utc(2024, 6, 3, 1))['attendees'] == []


def test_meet_link_prefers_hangout_link():
    assert meet_link({'hangoutLink': 'https://meet.google.com/a'}) == 'https://meet.google.com/a'
    entry = {'conferenceData': {'entryPoints': [{'uri': 'https://meet.google.com/b'}]}}
    assert meet_link(entry) == 'https://meet.google.com/b'
    assert meet_link({}) is None


def test_missing_credentials_fail_at_event_creation():
    gateway = GoogleCalendarGateway.from_config({'GOOGLE_CALENDAR_ID': 'team@example.com'})
    assert gateway.calendar_id == 'team@example.com'
    with pytest.raises(CalendarError):
        gateway.create_event('x', utc(2024, 6, 3, 15), utc(2024, 6, 3, 16))
