import pytest

from conftest import add_class, utc
from dashboard import DashboardAssembler
from store import StoreError, StoreErrorKind
from viewer_session import Viewer

NOW = utc(2024, 6, 5, 12)  # Wednesday


@pytest.fixture
def school(store, people):
    ana, luis = people['ana'], people['luis']
    classes = {
        'mon': add_class(store, ana, utc(2024, 6, 3, 15), 'Basic'),
        'wed': add_class(store, ana, utc(2024, 6, 5, 15)),
        'prev': add_class(store, ana, utc(2024, 5, 29, 9), 'Advanced'),
        'unscheduled': add_class(store, ana, None),
        'luis': add_class(store, luis, utc(2024, 6, 6, 10), 'Basic'),
    }
    for cls, student in (('mon', 'sofia'), ('mon', 'diego'), ('wed', 'sofia'), ('luis', 'lucia')):
        store.insert('attendance', {'class_id': classes[cls]['id'], 'student_id': people[student]['id']})
    return classes


@pytest.fixture
def assembler(store):
    return DashboardAssembler(store, 'classes', 'UTC')


def test_weekly_view_for_a_teacher(assembler, people, school):
    view = assembler.weekly_view(Viewer.from_row(people['ana']), 0, now=NOW)

    assert view['week']['label'] == 'Jun 3 – Jun 9, 2024'
    assert view['week']['previous_offset'] == -1
    assert [c['id'] for c in view['days']['Mon']] == [school['mon']['id']]
    assert view['days']['Mon'][0]['attendance_count'] == 2
    assert view['days']['Wed'][0]['attendance_count'] == 1
    assert view['days']['Thu'] == []
    assert view['daily_totals'][0] == {'day': 'Mon', 'classes': 1, 'attendance': 2}
    assert [point['attendance'] for point in view['chart']] == [2, 1]
    assert view['chart'][1]['level'] == '—'
    assert view['total_attendance'] == 3
    assert view['teacher_names'] == {}


def test_weekly_view_for_a_manager_names_teachers(assembler, people, school):
    view = assembler.weekly_view(Viewer.from_row(people['manager']), 0, now=NOW)

    thursday = view['days']['Thu']
    assert [c['id'] for c in thursday] == [school['luis']['id']]
    assert thursday[0]['teacher_name'] == 'luis@example.com'
    assert view['days']['Mon'][0]['teacher_name'] == 'Ana'
    assert view['total_classes'] == 3


def test_previous_week(assembler, people, school):
    view = assembler.weekly_view(Viewer.from_row(people['ana']), -1, now=NOW)
    assert [c['id'] for c in view['days']['Wed']] == [school['prev']['id']]
    assert view['total_attendance'] == 0


def test_teacher_name_failure_leaves_names_blank(assembler, people, school, monkeypatch):
    original = assembler.store.select

    def flaky_select(table_name, **kwargs):
        if table_name == 'teachers':
            raise StoreError(StoreErrorKind.UNAVAILABLE, 'timeout', table_name)
        return original(table_name, **kwargs)

    monkeypatch.setattr(assembler.store, 'select', flaky_select)
    view = assembler.weekly_view(Viewer.from_row(people['manager']), 0, now=NOW)
    assert view['days']['Thu'][0]['teacher_name'] is None
    assert view['total_classes'] == 3


def test_insights_for_a_teacher(assembler, people, school):
    insights = assembler.insights(Viewer.from_row(people['ana']), now=NOW)

    assert insights['summary'] == {
        'total_classes': 4,
        'past_classes': 2,
        'future_classes': 1,
        'total_attendance': 3,
        'unique_students': 2,
        'avg_attendance_per_class': '1.0',
    }
    assert [c['id'] for c in insights['popular_classes']] == [
        school['mon']['id'], school['wed']['id'], school['prev']['id']]
    assert insights['top_students'][0]['name'] == 'Sofia'
    assert insights['top_students'][0]['count'] == 2
    assert insights['popular_levels'][0] == {'level': 'Unspecified', 'count': 2}
    assert {'hour': 15, 'count': 2, 'label': '3:00 PM'} in insights['popular_times']


def test_insights_without_past_classes(assembler, people):
    insights = assembler.insights(Viewer.from_row(people['luis']), now=NOW)
    assert insights['summary']['avg_attendance_per_class'] == '0'
    assert insights['summary']['total_classes'] == 0
