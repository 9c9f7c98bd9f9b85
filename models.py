"""Database schema for the school administration service.

The models below define the tables created at start-up. Request handlers do
not query through the ORM; they go through :class:`store.DataStore`, which
works on table names so the class table can be whichever one the deployment
actually has. The models are still the source of truth for a fresh database
and for :mod:`seed`.

* :class:`Teacher` – a staff account, identified by a unique email.
* :class:`Student` – a learner with an optional weekly class quota.
* :class:`ClassSession` – one scheduled class with its join URL.
* :class:`Attendance` – "this student attended this class". At most one row
  per ``(class_id, student_id)`` pair.
* :class:`WebhookInbound` – raw payloads received from the marketing
  platform webhook.
"""

from datetime import datetime, timezone
from flask_sqlalchemy import SQLAlchemy


db = SQLAlchemy()

MANAGER_ROLE = 'Manager'


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Teacher(db.Model):
    """A teacher account. The ``Manager`` role sees every teacher's classes."""

    __tablename__ = 'teachers'

    id: int = db.Column(db.Integer, primary_key=True)
    email: str = db.Column(db.String(255), unique=True, nullable=False)
    name: str = db.Column(db.String(120), nullable=True)
    role: str = db.Column(db.String(40), nullable=False, default='Teacher')

    def __repr__(self) -> str:
        return f"<Teacher {self.email} role={self.role}>"


class Student(db.Model):
    """A student.

    ``weekly_classes`` is the weekly quota: ``None`` means unlimited, zero or
    a positive integer is a cap.
    """

    __tablename__ = 'students'

    id: int = db.Column(db.Integer, primary_key=True)
    name: str = db.Column(db.String(120), nullable=True)
    email: str = db.Column(db.String(255), unique=True, nullable=True)
    weekly_classes: int = db.Column(db.Integer, nullable=True)
    created_at: datetime = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow,
                                    server_default=db.func.now())

    __table_args__ = (db.CheckConstraint('weekly_classes IS NULL OR weekly_classes >= 0',
                                         name='ck_students_weekly_classes'),)

    def __repr__(self) -> str:
        return f"<Student {self.name or self.email}>"


class ClassSession(db.Model):
    """A scheduled class. ``date_time`` anchors week bucketing and sorting."""

    __tablename__ = 'classes'

    id: int = db.Column(db.Integer, primary_key=True)
    public_id: str = db.Column(db.String(64), unique=True, nullable=True)
    date_time: datetime = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    level: str = db.Column(db.String(60), nullable=True)
    note: str = db.Column(db.Text, nullable=True)
    url: str = db.Column(db.String(500), nullable=True)
    teacher_id: int = db.Column(db.Integer, db.ForeignKey('teachers.id'), nullable=False, index=True)
    created_at: datetime = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow,
                                    server_default=db.func.now())
    created_by: str = db.Column(db.String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<ClassSession {self.id} at={self.date_time} teacher={self.teacher_id}>"


class Attendance(db.Model):
    """One student's presence at one class."""

    __tablename__ = 'attendance'

    id: int = db.Column(db.Integer, primary_key=True)
    class_id: int = db.Column(db.Integer, nullable=False, index=True)
    student_id: int = db.Column(db.Integer, db.ForeignKey('students.id'), nullable=False, index=True)
    note: str = db.Column(db.Text, nullable=True)
    created_at: datetime = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow,
                                    server_default=db.func.now())

    __table_args__ = (db.UniqueConstraint('class_id', 'student_id', name='uix_attendance_class_student'),)

    def __repr__(self) -> str:
        return f"<Attendance class={self.class_id} student={self.student_id}>"


class WebhookInbound(db.Model):
    """Raw webhook payload, kept for replay and debugging."""

    __tablename__ = 'webhook_inbounds'

    id: int = db.Column(db.Integer, primary_key=True)
    payload = db.Column(db.JSON, nullable=False)
    received_at: datetime = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow,
                                    server_default=db.func.now())
