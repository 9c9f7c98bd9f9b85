"""The logged-in teacher, carried in the signed session cookie.

Handlers call :func:`require_viewer` once and pass the resulting
:class:`Viewer` down to whatever needs it. This module is the only code that
reads or writes the session entry.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Mapping, Optional

from flask import session
from werkzeug.exceptions import Unauthorized

from app_logging import merge_request_context
from models import MANAGER_ROLE

_SESSION_KEY = 'teacher'


@dataclass(frozen=True)
class Viewer:
    id: int
    email: str
    name: Optional[str] = None
    role: Optional[str] = None

    @property
    def is_manager(self) -> bool:
        return self.role == MANAGER_ROLE

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Viewer":
        return cls(id=row['id'], email=row['email'], name=row.get('name'), role=row.get('role'))

    def to_dict(self) -> dict:
        return asdict(self)


def load_viewer() -> Optional[Viewer]:
    data = session.get(_SESSION_KEY)
    if not isinstance(data, dict):
        return None
    try:
        viewer = Viewer.from_row(data)
    except KeyError:
        session.pop(_SESSION_KEY, None)
        return None
    merge_request_context(teacher_id=viewer.id)
    return viewer


def save_viewer(viewer: Viewer) -> None:
    session[_SESSION_KEY] = viewer.to_dict()
    merge_request_context(teacher_id=viewer.id)


def clear_viewer() -> None:
    session.pop(_SESSION_KEY, None)


def require_viewer() -> Viewer:
    viewer = load_viewer()
    if viewer is None:
        raise Unauthorized('Please log in first')
    return viewer
