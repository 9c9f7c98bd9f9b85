from aggregation import aggregate


CLASSES = [
    {'id': 1, 'date_time': '2024-06-03T15:00:00Z', 'level': 'Basic'},
    {'id': 2, 'date_time': '2024-06-05T15:00:00Z', 'level': None},
]
ATTENDANCE = [
    {'class_id': 1, 'student_id': 'A'},
    {'class_id': 1, 'student_id': 'B'},
    {'class_id': 2, 'student_id': 'A'},
]


def test_worked_example():
    result = aggregate(CLASSES, ATTENDANCE)
    assert result['per_class'] == {1: 2, 2: 1}
    assert result['per_level'] == {'Basic': 1, 'Unspecified': 1}
    assert result['top_students'] == [{'student_id': 'A', 'count': 2}, {'student_id': 'B', 'count': 1}]
    assert result['per_day']['Mon'] == {'class_count': 1, 'attendance_count': 2}
    assert result['per_day']['Wed'] == {'class_count': 1, 'attendance_count': 1}
    assert result['per_day']['Sun'] == {'class_count': 0, 'attendance_count': 0}
    assert result['popular_times'] == [{'hour': 15, 'count': 2}]


def test_same_snapshot_same_answer():
    assert aggregate(CLASSES, ATTENDANCE) == aggregate(CLASSES, ATTENDANCE)


def test_attendance_for_other_classes_is_ignored():
    attendance = ATTENDANCE + [{'class_id': 99, 'student_id': 'C'}]
    result = aggregate(CLASSES, attendance)
    assert sum(result['per_class'].values()) == 3
    assert all(s['student_id'] != 'C' for s in result['top_students'])


def test_unattended_and_unscheduled_classes():
    classes = CLASSES + [{'id': 3, 'date_time': None, 'level': ''}]
    result = aggregate(classes, ATTENDANCE)
    assert result['per_class'][3] == 0
    assert result['per_level']['Unspecified'] == 2
    assert sum(d['class_count'] for d in result['per_day'].values()) == 2


def test_popular_times_order_and_limit():
    classes = [{'id': h, 'date_time': f'2024-06-03T{h:02d}:00:00Z'} for h in range(12)]
    classes += [{'id': 100, 'date_time': '2024-06-04T11:00:00Z'},
                {'id': 101, 'date_time': '2024-06-04T05:00:00Z'}]
    times = aggregate(classes, [])['popular_times']
    assert len(times) == 10
    assert times[:2] == [{'hour': 5, 'count': 2}, {'hour': 11, 'count': 2}]
    assert times[2] == {'hour': 0, 'count': 1}


def test_top_students_limit_and_tie_order():
    classes = [{'id': 1, 'date_time': '2024-06-03T10:00:00Z'}]
    attendance = [{'class_id': 1, 'student_id': n} for n in range(20)]
    attendance.append({'class_id': 1, 'student_id': 7})
    top = aggregate(classes, attendance)['top_students']
    assert len(top) == 15
    assert top[0] == {'student_id': 7, 'count': 2}
    assert [s['student_id'] for s in top[1:4]] == [0, 1, 2]


def test_weekday_uses_local_calendar_day():
    classes = [{'id': 1, 'date_time': '2024-06-10T02:00:00Z'}]  # Monday UTC
    result = aggregate(classes, [], tz='America/New_York')
    assert result['per_day']['Sun']['class_count'] == 1
    assert result['popular_times'] == [{'hour': 22, 'count': 1}]
