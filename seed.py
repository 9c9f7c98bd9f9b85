"""Seed a development database with teachers, students, classes and attendance.

Classes are spread over the previous, current and next week so both
dashboards have something to show. Existing data is dropped first.

Usage:
    python seed.py

"""

from datetime import datetime, time, timedelta, timezone

from app import create_app
from models import Attendance, ClassSession, Student, Teacher, db


TEACHERS = [
    ('manager@example.com', 'Marta Manager', 'Manager'),
    ('ana@example.com', 'Ana Teacher', 'Teacher'),
    ('luis@example.com', 'Luis Teacher', 'Teacher'),
]

# (name, email, weekly_classes): None is unlimited.
STUDENTS = [
    ('Sofia Ramos', 'sofia@example.com', None),
    ('Diego Torres', 'diego@example.com', 2),
    ('Lucia Vega', 'lucia@example.com', 3),
    ('Mateo Cruz', 'mateo@example.com', 0),
    ('Valentina Rios', 'valentina@example.com', None),
]

LEVELS = ['Basic', 'Intermediate', 'Advanced', None]
# (weekday, hour) slots used in every seeded week.
SLOTS = [(0, 9), (0, 18), (2, 15), (3, 18), (5, 10), (6, 11)]


def seed_data() -> None:
    db.drop_all()
    db.create_all()

    teachers = [Teacher(email=email, name=name, role=role) for email, name, role in TEACHERS]
    students = [Student(name=name, email=email, weekly_classes=quota) for name, email, quota in STUDENTS]
    db.session.add_all(teachers + students)
    db.session.commit()

    today = datetime.now(timezone.utc).date()
    monday = today - timedelta(days=today.weekday())
    teaching_staff = teachers[1:]
    classes = []
    for week in (-1, 0, 1):
        for index, (weekday, hour) in enumerate(SLOTS):
            day = monday + timedelta(weeks=week, days=weekday)
            classes.append(ClassSession(
                public_id=f"seed-{week + 1}-{index}",
                date_time=datetime.combine(day, time(hour), tzinfo=timezone.utc),
                level=LEVELS[index % len(LEVELS)],
                url=f"https://meet.example.com/seed-{week + 1}-{index}",
                teacher_id=teaching_staff[index % len(teaching_staff)].id,
                created_by=teaching_staff[index % len(teaching_staff)].email,
            ))
    db.session.add_all(classes)
    db.session.commit()

    # Attendance only for classes that already happened.
    now = datetime.now(timezone.utc)
    for offset, cls in enumerate(classes):
        if cls.date_time.replace(tzinfo=timezone.utc) >= now:
            continue
        for student in students[: 1 + offset % len(students)]:
            db.session.add(Attendance(class_id=cls.id, student_id=student.id))
    db.session.commit()

    print(f'Seeded {len(teachers)} teachers, {len(students)} students and {len(classes)} classes.')


def main() -> None:
    app = create_app()
    with app.app_context():
        seed_data()


if __name__ == '__main__':
    main()
