import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from app import create_app
from calendar_gateway import CalendarError


class FakeCalendarGateway:
    """Stands in for Google Calendar; records every event it is asked for."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.events = []

    def create_event(self, summary, start, end, description=None, attendee_email=None):
        if self.fail:
            raise CalendarError('quota exceeded')
        self.events.append({'summary': summary, 'start': start, 'end': end,
                            'description': description, 'attendee_email': attendee_email})
        number = len(self.events)
        return {
            'id': f'evt-{number}',
            'summary': summary,
            'start': {'dateTime': start.isoformat(), 'timeZone': 'UTC'},
            'end': {'dateTime': end.isoformat(), 'timeZone': 'UTC'},
            'meetLink': f'https://meet.google.com/fake-{number}',
            'htmlLink': f'https://calendar.google.com/event?eid={number}',
        }


@pytest.fixture
def app(monkeypatch: pytest.MonkeyPatch) -> Generator:
    monkeypatch.setenv('REQUEST_LOG_SAMPLE_RATE', '1')
    application = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SECRET_KEY': 'test-secret',
        'CLASS_TABLE': None,
        'APP_TIMEZONE': 'UTC',
        'ENFORCE_WEEKLY_QUOTA': False,
    })
    application.extensions['calendar_gateway'] = FakeCalendarGateway()
    yield application


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def store(app):
    with app.app_context():
        yield app.extensions['store']


@pytest.fixture
def calendar(app):
    return app.extensions['calendar_gateway']


@pytest.fixture
def people(store):
    """A manager, two teachers and three students."""

    return {
        'manager': store.insert('teachers', {'email': 'boss@example.com', 'name': 'Boss', 'role': 'Manager'}),
        'ana': store.insert('teachers', {'email': 'ana@example.com', 'name': 'Ana', 'role': 'Teacher'}),
        'luis': store.insert('teachers', {'email': 'luis@example.com', 'name': None, 'role': 'Teacher'}),
        'sofia': store.insert('students', {'name': 'Sofia', 'email': 'sofia@example.com'}),
        'diego': store.insert('students', {'name': 'Diego', 'email': 'diego@example.com', 'weekly_classes': 2}),
        'lucia': store.insert('students', {'name': 'Lucia', 'email': 'lucia@example.com', 'weekly_classes': 0}),
    }


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def add_class(store, teacher, when, level=None, **extra):
    values = {'teacher_id': teacher['id'], 'date_time': when, 'level': level}
    values.update(extra)
    return store.insert('classes', values)


def login(client, email):
    response = client.post('/api/login', json={'email': email})
    assert response.status_code == 200, response.get_json()
    return response
