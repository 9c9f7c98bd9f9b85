"""Flask application for the school administration service.

The application factory wires configuration, the database, logging
middleware and the JSON API. All endpoints live under ``/api``:

* ``POST /api/login`` / ``POST /api/logout`` / ``GET /api/me`` – email login
  for teachers; the teacher is kept in the signed session cookie.
* ``POST /api/create-calendar-event`` – create a calendar event with a
  video-conference link.
* ``POST /api/create-student`` – create or update a student by email.
* ``POST /api/kajabi-webhook`` – store a marketing-platform webhook payload
  and upsert the student it describes.
* ``/api/students`` – list, search, read, edit and delete students, and list
  the classes a student attended.
* ``/api/classes`` – list, create, read and edit the viewer's classes, and
  manage their attendance.
* ``GET /api/classes/<key>/redirect`` and ``POST /api/classes/<key>/access``
  – student entry points that lead to the class join URL.
* ``GET /api/weekly`` and ``GET /api/insights`` – dashboard view models.
"""

from __future__ import annotations

import os
import secrets
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from flask import Flask, current_app, g, jsonify, redirect, request
from flask.json.provider import DefaultJSONProvider
from flask_cors import CORS
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import BadRequest, Conflict, Forbidden, HTTPException, NotFound

from app_logging import configure_logging, get_logger
from calendar_gateway import CalendarError, GoogleCalendarGateway
from config import Config
from correlation_id_middleware import init_correlation_id
from dashboard import DashboardAssembler
from db_utils import retry_with_backoff
from models import ClassSession, db
from quota import is_blocked, weekly_quota
from request_logging_middleware import init_request_logging
from store import DataStore, StoreError, StoreErrorKind
from table_resolver import resolve_class_table
from viewer_session import Viewer, clear_viewer, load_viewer, require_viewer, save_viewer
from webhook_extractors import extract_contact
from weeks import WeekOutOfRange, parse_instant

_logger = get_logger("classroom.app")

_UNSET = object()
_UNSCHEDULED = datetime.max.replace(tzinfo=timezone.utc)
_CLASS_FIELDS = ('date_time', 'level', 'note', 'url')
_STORE_ERROR_STATUS = {
    StoreErrorKind.CONFLICT: 409,
    StoreErrorKind.INVALID: 400,
    StoreErrorKind.UNAVAILABLE: 503,
}


class ApiJSONProvider(DefaultJSONProvider):
    """Serialise timestamps as ISO-8601 (naive values are UTC)."""

    @staticmethod
    def _api_default(obj: Any) -> Any:
        if isinstance(obj, datetime):
            return parse_instant(obj).isoformat()
        if isinstance(obj, date):
            return obj.isoformat()
        return DefaultJSONProvider.default(obj)

    default = _api_default


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------

def _store() -> DataStore:
    return current_app.extensions['store']


def _class_table() -> str:
    return current_app.config['CLASS_TABLE']


def _assembler() -> DashboardAssembler:
    return DashboardAssembler(_store(), _class_table(), current_app.config['APP_TIMEZONE'])


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BadRequest('Missing JSON payload')
    return data


def _clean_email(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip().lower()


def _parse_weekly_classes(value: Any) -> Optional[int]:
    """``None``/``""`` mean unlimited; otherwise a non-negative integer."""

    if value is None or value == '':
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise BadRequest('Classes per week must be a non-negative number')
    if isinstance(value, bool) or number < 0 or (isinstance(value, float) and value != number):
        raise BadRequest('Classes per week must be a non-negative number')
    return number


def _parse_datetime(value: Any, field: str) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp and normalise it to UTC for storage."""

    try:
        moment = parse_instant(value)
    except (TypeError, ValueError):
        raise BadRequest(f'{field} must be an ISO-8601 timestamp')
    return moment.astimezone(timezone.utc) if moment else None


def _student_or_404(student_id: int) -> Dict[str, Any]:
    student = _store().select_one('students', eq={'id': student_id})
    if student is None:
        raise NotFound('Student not found')
    return student


def _visible_class_or_404(viewer: Viewer, class_id: int) -> Dict[str, Any]:
    cls = _store().select_one(_class_table(), eq={'id': class_id})
    if cls is None:
        raise NotFound('Class not found')
    if not viewer.is_manager and cls.get('teacher_id') != viewer.id:
        raise Forbidden('This class belongs to another teacher')
    return cls


def _find_class_by_key(key: str) -> Optional[Dict[str, Any]]:
    """Look a class up by its public id first, then by numeric id."""

    store = _store()
    cls = store.select_one(_class_table(), eq={'public_id': key})
    if cls is None and key.isdigit():
        cls = store.select_one(_class_table(), eq={'id': int(key)})
    return cls


def _upsert_student(email: str, name: Optional[str], weekly_classes: Any = _UNSET,
                    overwrite_name: bool = True) -> Tuple[Dict[str, Any], str]:
    """Create or update the student with ``email``; returns ``(row, action)``."""

    store = _store()
    existing = store.select_one('students', eq={'email': email})
    if existing is None:
        values = {'email': email, 'name': name,
                  'weekly_classes': None if weekly_classes is _UNSET else weekly_classes}
        try:
            return store.insert('students', values), 'created'
        except StoreError as exc:
            # Lost a race with a concurrent insert of the same email.
            if exc.kind is not StoreErrorKind.CONFLICT:
                raise
            existing = store.select_one('students', eq={'email': email})
            if existing is None:
                raise

    changes: Dict[str, Any] = {}
    if name and (overwrite_name or not existing.get('name')) and name != existing.get('name'):
        changes['name'] = name
    if weekly_classes is not _UNSET and weekly_classes != existing.get('weekly_classes'):
        changes['weekly_classes'] = weekly_classes
    if not changes:
        return existing, 'unchanged'
    return store.update('students', changes, eq={'id': existing['id']})[0], 'updated'


def _add_attendance(class_id: int, student: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
    """Record attendance; a duplicate returns the existing row instead of failing."""

    store = _store()
    try:
        return store.insert('attendance', {'class_id': class_id, 'student_id': student['id']}), True
    except StoreError as exc:
        if exc.kind is not StoreErrorKind.CONFLICT:
            raise
    existing = store.select_one('attendance', eq={'class_id': class_id, 'student_id': student['id']})
    if existing is None:
        raise Conflict('Could not record attendance')
    return existing, False


def _attendee(attendance: Dict[str, Any], student: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'id': student['id'],
        'email': student.get('email'),
        'name': student.get('name') or student.get('email'),
        'attendance_id': attendance['id'],
        'note': attendance.get('note') or '',
    }


def _create_meeting(cls: Dict[str, Any], viewer: Viewer) -> Optional[str]:
    start = cls.get('date_time')
    if start is None:
        return None
    end = start + timedelta(minutes=current_app.config['CLASS_DURATION_MINUTES'])
    event = current_app.extensions['calendar_gateway'].create_event(
        summary=f"{cls.get('level') or 'Live'} class",
        description=cls.get('note'),
        start=start,
        end=end,
        attendee_email=viewer.email,
    )
    return event.get('meetLink') or event.get('htmlLink')


# ---------------------------------------------------------------------------
# Start-up
# ---------------------------------------------------------------------------

def _prepare_database(app: Flask, store: DataStore) -> None:
    """Create missing tables and settle which table holds classes."""

    configured = app.config.get('CLASS_TABLE')

    def _setup() -> str:
        table = configured or resolve_class_table(store, app.config['CLASS_TABLE_CANDIDATES'])
        if table and table != ClassSession.__tablename__:
            # Classes live elsewhere; an empty ``classes`` table would win the next start-up probe.
            others = [t for t in db.metadata.sorted_tables if t is not ClassSession.__table__]
            db.metadata.create_all(db.engine, tables=others)
        else:
            db.create_all()
        store.forget()
        if configured and not store.exists(configured):
            _logger.warning("configured class table does not exist", extra={"table": configured})
        return table or ClassSession.__tablename__

    try:
        app.config['CLASS_TABLE'] = retry_with_backoff(_setup)
    except (SQLAlchemyError, StoreError) as exc:
        # Keep starting; requests will report the database as unavailable.
        _logger.warning("database unavailable during start-up", extra={"error": str(exc)})
        app.config['CLASS_TABLE'] = configured or ClassSession.__tablename__


def create_app(test_config: Optional[Dict[str, Any]] = None) -> Flask:
    """Application factory used by the server, the seed script and the tests."""

    configure_logging()
    app = Flask(__name__)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)
    app.json = ApiJSONProvider(app)

    db.init_app(app)
    CORS(app, resources={r"/api/*": {"origins": app.config['CORS_ORIGINS']}})
    init_correlation_id(app)
    init_request_logging(app)

    store = DataStore(db)
    app.extensions['store'] = store
    app.extensions.setdefault('calendar_gateway', GoogleCalendarGateway.from_config(app.config))
    with app.app_context():
        _prepare_database(app, store)

    @app.route('/health')
    def healthcheck():
        return jsonify({'status': 'ok'}), 200

    # -- session ------------------------------------------------------------

    @app.route('/api/login', methods=['POST'])
    def api_login():
        email = _clean_email(_json_body().get('email'))
        if not email:
            raise BadRequest('Missing required field: email is required')
        teacher = _store().select_one('teachers', eq={'email': email})
        if teacher is None:
            _logger.info("login for unknown email")
            raise NotFound('Email not found. Please check your email address.')
        save_viewer(Viewer.from_row(teacher))
        _logger.info("teacher logged in", extra={"teacher_id": teacher['id']})
        return jsonify({'success': True, 'teacher': teacher})

    @app.route('/api/logout', methods=['POST'])
    def api_logout():
        clear_viewer()
        return jsonify({'success': True})

    @app.route('/api/me', methods=['GET'])
    def api_me():
        return jsonify({'teacher': require_viewer().to_dict()})

    # -- serverless-style handlers ---------------------------------------

    @app.route('/api/create-calendar-event', methods=['POST'])
    def api_create_calendar_event():
        data = _json_body()
        summary = data.get('summary')
        if not summary or not data.get('startTime') or not data.get('endTime'):
            raise BadRequest('Missing required fields: summary, startTime, and endTime are required')
        start = _parse_datetime(data['startTime'], 'startTime')
        end = _parse_datetime(data['endTime'], 'endTime')
        if end <= start:
            raise BadRequest('endTime must be after startTime')
        event = current_app.extensions['calendar_gateway'].create_event(
            summary=summary,
            description=data.get('description'),
            start=start,
            end=end,
            attendee_email=_clean_email(data.get('teacherEmail') or data.get('attendeeEmail')),
        )
        return jsonify({'success': True, 'event': event})

    @app.route('/api/create-student', methods=['POST'])
    def api_create_student():
        data = _json_body()
        email = _clean_email(data.get('email'))
        name = (data.get('name') or '').strip()
        if not email or not name:
            raise BadRequest('Missing required fields: email and name are required')
        weekly = _parse_weekly_classes(data['weekly_classes']) if 'weekly_classes' in data else _UNSET
        student, action = _upsert_student(email, name, weekly)
        messages = {
            'created': 'Student created successfully',
            'updated': 'Student updated successfully',
            'unchanged': 'Student already exists',
        }
        _logger.info("student upserted", extra={"student_id": student['id'], "action": action})
        return jsonify({'message': messages[action], 'student': student}), 201 if action == 'created' else 200

    @app.route('/api/kajabi-webhook', methods=['POST'])
    def api_marketing_webhook():
        payload = request.get_json(silent=True)
        if payload is None:
            raise BadRequest('Missing JSON payload')
        stored = _store().insert('webhook_inbounds', {'payload': payload})
        student = None
        contact = extract_contact(payload)
        if contact is None:
            _logger.warning("webhook payload without a usable email", extra={"inbound_id": stored['id']})
        else:
            email, name = contact
            student, action = _upsert_student(email, name, overwrite_name=False)
            _logger.info("webhook student upserted", extra={"student_id": student['id'], "action": action})
        return jsonify({'message': 'Webhook received and stored', 'id': stored['id'], 'student': student})

    # -- students -----------------------------------------------------------

    @app.route('/api/students', methods=['GET'])
    def api_list_students():
        require_viewer()
        term = (request.args.get('q') or '').strip()
        students = _store().select(
            'students',
            ilike_any=(('name', 'email'), term) if term else None,
            order_by=('name', 'email'),
        )
        return jsonify(students)

    @app.route('/api/students/search', methods=['GET'])
    def api_search_students():
        require_viewer()
        term = (request.args.get('q') or '').strip()
        if len(term) < 2:
            return jsonify([])
        exclude = request.args.get('exclude_class_id', type=int)
        suggestions = _store().select('students', columns=('id', 'email', 'name'),
                                      ilike_any=(('email', 'name'), term), limit=10)
        if exclude is not None:
            present = {a['student_id'] for a in _store().select('attendance', columns=('student_id',),
                                                                eq={'class_id': exclude})}
            suggestions = [s for s in suggestions if s['id'] not in present]
        return jsonify(suggestions)

    @app.route('/api/students/<int:student_id>', methods=['GET'])
    def api_get_student(student_id: int):
        require_viewer()
        return jsonify(_student_or_404(student_id))

    @app.route('/api/students/<int:student_id>', methods=['PUT'])
    def api_update_student(student_id: int):
        require_viewer()
        _student_or_404(student_id)
        data = _json_body()
        email = _clean_email(data.get('email'))
        if not email:
            raise BadRequest('Email is required')
        values = {
            'name': (data.get('name') or '').strip() or None,
            'email': email,
        }
        if 'weekly_classes' in data:
            values['weekly_classes'] = _parse_weekly_classes(data['weekly_classes'])
        return jsonify(_store().update('students', values, eq={'id': student_id})[0])

    @app.route('/api/students/<int:student_id>', methods=['DELETE'])
    def api_delete_student(student_id: int):
        require_viewer()
        _student_or_404(student_id)
        store = _store()
        try:
            removed = store.delete('attendance', eq={'student_id': student_id})
        except StoreError as exc:
            # The student row still goes; orphaned attendance is harmless to the dashboards.
            _logger.error("attendance cleanup failed", extra={"student_id": student_id, "error": exc.message})
            removed = 0
        store.delete('students', eq={'id': student_id})
        _logger.info("student deleted", extra={"student_id": student_id, "attendance_removed": removed})
        return jsonify({'success': True, 'attendance_removed': removed})

    @app.route('/api/students/<int:student_id>/classes', methods=['GET'])
    def api_student_classes(student_id: int):
        require_viewer()
        _student_or_404(student_id)
        store = _store()
        attendance = store.select('attendance', eq={'student_id': student_id},
                                  order_by=(('created_at', True), ('id', True)))
        class_ids = sorted({a['class_id'] for a in attendance})
        classes = {c['id']: c for c in store.select(_class_table(), in_={'id': class_ids})}
        result = [
            {
                'attendance_id': a['id'],
                'class_id': a['class_id'],
                'date_time': classes[a['class_id']].get('date_time'),
                'level': classes[a['class_id']].get('level'),
                'note': a.get('note') or '',
                'created_at': a.get('created_at'),
            }
            for a in attendance if a['class_id'] in classes
        ]
        return jsonify(result)

    # -- classes ------------------------------------------------------------

    @app.route('/api/classes', methods=['GET'])
    def api_list_classes():
        viewer = require_viewer()
        classes = _assembler().visible_classes(viewer)
        # Scheduled classes first, chronologically; unscheduled ones after.
        classes.sort(key=lambda c: parse_instant(c.get('date_time')) or _UNSCHEDULED)
        return jsonify(classes)

    @app.route('/api/classes', methods=['POST'])
    def api_create_class():
        viewer = require_viewer()
        data = _json_body()
        teacher_id = data.get('teacher_id') if viewer.is_manager and data.get('teacher_id') else viewer.id
        values = {
            'public_id': data.get('public_id') or secrets.token_urlsafe(8),
            'date_time': _parse_datetime(data.get('date_time'), 'date_time'),
            'level': (data.get('level') or '').strip() or None,
            'note': data.get('note') or None,
            'url': (data.get('url') or '').strip() or None,
            'teacher_id': teacher_id,
            'created_by': viewer.email,
        }
        if values['url'] is None:
            values['url'] = _create_meeting(values, viewer)
        created = _store().insert(_class_table(), values)
        _logger.info("class created", extra={"class_id": created['id']})
        return jsonify(created), 201

    @app.route('/api/classes/<int:class_id>', methods=['GET'])
    def api_get_class(class_id: int):
        viewer = require_viewer()
        cls = _visible_class_or_404(viewer, class_id)
        teacher = None
        if cls.get('teacher_id') is not None:
            try:
                teacher = _store().select_one('teachers', columns=('id', 'name', 'email'),
                                              eq={'id': cls['teacher_id']})
            except StoreError as exc:
                _logger.warning("teacher lookup failed", extra={"error": exc.message})
        return jsonify({'class': cls, 'teacher': teacher})

    @app.route('/api/classes/<int:class_id>', methods=['PUT'])
    def api_update_class(class_id: int):
        viewer = require_viewer()
        _visible_class_or_404(viewer, class_id)
        data = _json_body()
        values: Dict[str, Any] = {}
        for field in _CLASS_FIELDS:
            if field in data:
                value = data[field]
                if field == 'date_time':
                    value = _parse_datetime(value, field)
                elif isinstance(value, str):
                    value = value.strip() or None
                values[field] = value
        if not values:
            raise BadRequest(f"Nothing to update; editable fields are {', '.join(_CLASS_FIELDS)}")
        return jsonify(_store().update(_class_table(), values, eq={'id': class_id})[0])

    # -- attendance -------------------------------------------------------

    @app.route('/api/classes/<int:class_id>/attendance', methods=['GET'])
    def api_class_attendance(class_id: int):
        viewer = require_viewer()
        _visible_class_or_404(viewer, class_id)
        store = _store()
        attendance = store.select('attendance', eq={'class_id': class_id}, order_by=('id',))
        students = {s['id']: s for s in store.select(
            'students', in_={'id': [a['student_id'] for a in attendance]})}
        return jsonify([_attendee(a, students[a['student_id']])
                        for a in attendance if a['student_id'] in students])

    @app.route('/api/classes/<int:class_id>/attendance', methods=['POST'])
    def api_add_attendance(class_id: int):
        viewer = require_viewer()
        _visible_class_or_404(viewer, class_id)
        data = _json_body()
        store = _store()
        if data.get('student_id') is not None:
            student = _student_or_404(data['student_id'])
        elif (data.get('search') or '').strip():
            student = store.select_one('students', ilike_any=(('name', 'email'), data['search'].strip()),
                                       order_by=('name',))
            if student is None:
                raise NotFound('Student not found. Please check the name or email address.')
        elif (data.get('name') or '').strip():
            name = data['name'].strip()
            email = _clean_email(data.get('email'))
            if store.select_one('students', eq={'name': name}) is not None:
                raise Conflict('A student with this name already exists.')
            if email and store.select_one('students', eq={'email': email}) is not None:
                raise Conflict('A student with this email already exists.')
            student = store.insert('students', {'name': name, 'email': email})
        else:
            raise BadRequest('Provide student_id, search, or name')

        attendance, created = _add_attendance(class_id, student)
        return jsonify(dict(_attendee(attendance, student), created=created)), 201 if created else 200

    @app.route('/api/attendance/<int:attendance_id>', methods=['PATCH'])
    def api_update_attendance(attendance_id: int):
        viewer = require_viewer()
        store = _store()
        row = store.select_one('attendance', eq={'id': attendance_id})
        if row is None:
            raise NotFound('Attendance record not found')
        _visible_class_or_404(viewer, row['class_id'])
        note = _json_body().get('note')
        if note is not None and not isinstance(note, str):
            raise BadRequest('note must be a string')
        return jsonify(store.update('attendance', {'note': note or None}, eq={'id': attendance_id})[0])

    @app.route('/api/attendance/<int:attendance_id>', methods=['DELETE'])
    def api_delete_attendance(attendance_id: int):
        viewer = require_viewer()
        store = _store()
        row = store.select_one('attendance', eq={'id': attendance_id})
        if row is None:
            raise NotFound('Attendance record not found')
        _visible_class_or_404(viewer, row['class_id'])
        store.delete('attendance', eq={'id': attendance_id})
        return jsonify({'success': True})

    # -- student entry points ---------------------------------------------

    @app.route('/api/classes/<key>/redirect', methods=['GET'])
    def api_class_redirect(key: str):
        cls = _find_class_by_key(key)
        if cls is None:
            raise NotFound('Class not found')
        if not cls.get('url'):
            raise NotFound('No URL found for this class')
        return redirect(cls['url'], code=302)

    @app.route('/api/classes/<key>/access', methods=['POST'])
    def api_class_access(key: str):
        email = _clean_email(_json_body().get('email'))
        if not email:
            raise BadRequest('Please enter your email address')
        cls = _find_class_by_key(key)
        if cls is None:
            raise NotFound('Class not found')
        if not cls.get('url'):
            raise NotFound('No URL found for this class')

        if not current_app.config['ENFORCE_WEEKLY_QUOTA']:
            return jsonify({'url': cls['url'], 'quota_enforced': False})

        store = _store()
        student = store.select_one('students', eq={'email': email})
        if student is None:
            raise NotFound('Student not found. Please check your email address.')
        attended_ids = sorted({a['class_id'] for a in store.select('attendance', columns=('class_id',),
                                                                   eq={'student_id': student['id']})})
        attended = store.select(_class_table(), in_={'id': attended_ids})
        report = weekly_quota(student, attended)
        if is_blocked(report):
            _logger.info("weekly quota reached", extra={"student_id": student['id']})
            response = jsonify({
                'error': (f"You have attended {report['attended_this_week']} classes this week. "
                          f"Your limit is {report['limit']} per week."),
                'status': 403,
                'quota': report,
                'request_id': getattr(g, 'request_id', None),
            })
            response.status_code = 403
            return response
        return jsonify({'url': cls['url'], 'quota_enforced': True, 'quota': report})

    # -- dashboards -------------------------------------------------------

    @app.route('/api/weekly', methods=['GET'])
    def api_weekly_view():
        viewer = require_viewer()
        offset = request.args.get('offset', default=0, type=int)
        try:
            view = _assembler().weekly_view(viewer, offset)
        except (WeekOutOfRange, OverflowError):
            raise BadRequest('offset out of range')
        return jsonify(view)

    @app.route('/api/insights', methods=['GET'])
    def api_insights():
        viewer = require_viewer()
        return jsonify(_assembler().insights(viewer))

    # -- errors -----------------------------------------------------------

    def _problem(status: int, title: str, detail: str, **extra: Any):
        body = {'error': detail, 'title': title, 'detail': detail, 'status': status,
                'request_id': getattr(g, 'request_id', None)}
        body.update(extra)
        response = jsonify(body)
        response.status_code = status
        return response

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return _problem(error.code or 500, error.name, error.description)

    @app.errorhandler(StoreError)
    def handle_store_error(error: StoreError):
        status = _STORE_ERROR_STATUS.get(error.kind, 500)
        _logger.error("store error", extra={"kind": error.kind.value, "table": error.table, "error": error.message})
        detail = 'Database temporarily unavailable' if status == 503 else error.message
        return _problem(status, error.kind.value.replace('_', ' ').title(), detail)

    @app.errorhandler(CalendarError)
    def handle_calendar_error(error: CalendarError):
        return _problem(502, 'Bad Gateway', 'Failed to create calendar event', details=str(error))

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(error: SQLAlchemyError):
        _logger.error("database operation failed", extra={"error": str(error)})
        return _problem(503, 'Service Unavailable', 'Database temporarily unavailable')

    return app


if __name__ == '__main__':
    # Gunicorn serves the app in production: ``gunicorn 'app:create_app()'``.
    port = int(os.environ.get('PORT', 8000))
    create_app().run(host='0.0.0.0', port=port, debug=True)
