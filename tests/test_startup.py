from sqlalchemy import create_engine, inspect, text

from app import create_app
from conftest import FakeCalendarGateway, login
from models import db


def _boot(database_url):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': database_url,
        'SECRET_KEY': 'test-secret',
        'CLASS_TABLE': None,
        'APP_TIMEZONE': 'UTC',
        'ENFORCE_WEEKLY_QUOTA': False,
    })
    app.extensions['calendar_gateway'] = FakeCalendarGateway()
    return app


def _legacy_database(tmp_path):
    url = f"sqlite:///{tmp_path / 'legacy.db'}"
    engine = create_engine(url)
    with engine.begin() as conn:
        conn.execute(text(
            'CREATE TABLE sessions (id INTEGER PRIMARY KEY, public_id VARCHAR(64), date_time DATETIME, '
            'level VARCHAR(64), note TEXT, url VARCHAR(512), teacher_id INTEGER, created_at DATETIME, '
            'created_by VARCHAR(255))'))
        conn.execute(text(
            "INSERT INTO sessions (teacher_id, date_time, url) "
            "VALUES (1, '2024-06-03 15:00:00', 'https://meet.example.com/legacy')"))
    engine.dispose()
    return url


def test_legacy_class_table_survives_restarts(tmp_path):
    url = _legacy_database(tmp_path)

    first = _boot(url)
    second = _boot(url)

    assert first.config['CLASS_TABLE'] == 'sessions'
    assert second.config['CLASS_TABLE'] == 'sessions'
    with second.app_context():
        tables = inspect(db.engine).get_table_names()
        assert 'classes' not in tables
        assert {'teachers', 'students', 'attendance'} <= set(tables)
        second.extensions['store'].insert('teachers', {'email': 'ana@example.com', 'name': 'Ana'})

    client = second.test_client()
    login(client, 'ana@example.com')
    classes = client.get('/api/classes').get_json()
    assert [c['url'] for c in classes] == ['https://meet.example.com/legacy']


def test_fresh_database_gets_a_classes_table(tmp_path):
    app = _boot(f"sqlite:///{tmp_path / 'fresh.db'}")
    assert app.config['CLASS_TABLE'] == 'classes'
    with app.app_context():
        assert 'classes' in inspect(db.engine).get_table_names()
