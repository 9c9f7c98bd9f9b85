import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, ProgrammingError

from models import db
from store import StoreError, StoreErrorKind, translate_error
from table_resolver import TableNotFound, resolve, resolve_class_table


class FakeStore:
    """Tables are name -> rows; ``broken`` tables fail with a non-missing error."""

    def __init__(self, tables, broken=()):
        self.tables = tables
        self.broken = set(broken)
        self.reads = []

    def select(self, name, eq=None, limit=None):
        self.reads.append(name)
        if name in self.broken:
            raise StoreError(StoreErrorKind.UNAVAILABLE, 'connection reset', name)
        if name not in self.tables:
            raise StoreError(StoreErrorKind.RELATION_MISSING, 'missing', name)
        rows = [r for r in self.tables[name] if all(r.get(k) == v for k, v in (eq or {}).items())]
        return rows[:limit] if limit is not None else rows


def test_skips_missing_tables():
    store = FakeStore({'sessions': [{'id': 1}, {'id': 2}, {'id': 3}]})
    result = resolve(store, ['classes', 'sessions'])
    assert result.table == 'sessions'
    assert len(result.rows) == 3


def test_other_errors_stop_the_search():
    store = FakeStore({'sessions': [{'id': 1}]}, broken={'classes'})
    with pytest.raises(StoreError) as excinfo:
        resolve(store, ['classes', 'sessions'])
    assert excinfo.value.kind is StoreErrorKind.UNAVAILABLE
    assert store.reads == ['classes']


def test_empty_table_is_accepted_by_default():
    store = FakeStore({'classes': [], 'sessions': [{'id': 1}]})
    assert resolve(store, ['classes', 'sessions']) == ('classes', [])


def test_skip_empty_keeps_probing():
    store = FakeStore({'classes': [], 'sessions': [{'id': 1, 'teacher_id': 4}]})
    assert resolve(store, ['classes', 'sessions'], eq={'teacher_id': 4}, skip_empty=True).table == 'sessions'
    assert resolve(store, ['classes', 'sessions'], eq={'teacher_id': 5}, skip_empty=True).table == 'classes'


def test_nothing_found():
    with pytest.raises(TableNotFound):
        resolve(FakeStore({}), ['classes', 'lessons'])
    assert resolve_class_table(FakeStore({}), ['classes']) is None


def test_start_up_check_uses_the_same_rule():
    store = FakeStore({'classes': [], 'sessions': [{'id': 1}, {'id': 2}]})
    assert resolve_class_table(store, ['lessons', 'classes', 'sessions']) == 'classes'
    assert resolve(store, ['sessions'], limit=1).rows == [{'id': 1}]
    with pytest.raises(StoreError):
        resolve_class_table(FakeStore({'sessions': []}, broken={'classes'}), ['classes', 'sessions'])


def test_resolves_against_a_real_database(store):
    db.session.execute(text('CREATE TABLE legacy_sessions (id INTEGER PRIMARY KEY, teacher_id INTEGER)'))
    for teacher_id in (1, 1, 2):
        db.session.execute(text('INSERT INTO legacy_sessions (teacher_id) VALUES (:t)'), {'t': teacher_id})
    db.session.commit()

    result = resolve(store, ['old_classes', 'legacy_sessions'], eq={'teacher_id': 1})
    assert result.table == 'legacy_sessions'
    assert len(result.rows) == 2
    assert resolve_class_table(store, ['old_classes', 'legacy_sessions']) == 'legacy_sessions'


class UndefinedTable(Exception):
    pass


def test_translate_error_kinds():
    missing = ProgrammingError('SELECT', {}, UndefinedTable('relation "classes" does not exist'))
    assert translate_error(missing, 'classes').kind is StoreErrorKind.RELATION_MISSING
    sqlite_missing = OperationalError('SELECT', {}, Exception('no such table: classes'))
    assert translate_error(sqlite_missing).kind is StoreErrorKind.RELATION_MISSING
    locked = OperationalError('SELECT', {}, Exception('database is locked'))
    assert translate_error(locked).kind is StoreErrorKind.UNAVAILABLE
    syntax = ProgrammingError('SELECT', {}, Exception('syntax error at or near "FROM"'))
    assert translate_error(syntax).kind is StoreErrorKind.UNKNOWN
