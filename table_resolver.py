"""Class table discovery.

Deployments have kept class sessions under several table names. The
resolver walks an ordered list of candidate names and settles on the first
one that exists. A "table does not exist" error moves on to the next
candidate; any other store error stops the search and propagates.

The application runs the resolver once at start-up (see
:func:`resolve_class_table`) and then uses the resulting name for every
request.
"""

from __future__ import annotations

from collections import namedtuple
from typing import Any, Mapping, Optional, Sequence

from app_logging import get_logger
from store import DataStore, StoreError, StoreErrorKind

_logger = get_logger("classroom.resolver")

Resolution = namedtuple('Resolution', 'table rows')


class TableNotFound(LookupError):
    """None of the candidate tables exists."""

    def __init__(self, candidates: Sequence[str]) -> None:
        super().__init__(f"none of the candidate tables exist: {', '.join(candidates)}")
        self.candidates = tuple(candidates)


def resolve(store: DataStore, candidates: Sequence[str], eq: Optional[Mapping[str, Any]] = None,
            skip_empty: bool = False, limit: Optional[int] = None) -> Resolution:
    """Read from the first existing candidate table.

    With ``skip_empty`` an existing table that returns no rows is passed over
    as well; if every existing table is empty the first of them is returned.
    ``limit`` caps the rows read from each candidate.
    """

    first_empty: Optional[Resolution] = None
    for name in candidates:
        try:
            rows = store.select(name, eq=eq, limit=limit)
        except StoreError as exc:
            if exc.kind is StoreErrorKind.RELATION_MISSING:
                _logger.debug("candidate table missing", extra={"table": name})
                continue
            raise
        if rows or not skip_empty:
            return Resolution(name, rows)
        if first_empty is None:
            first_empty = Resolution(name, rows)
    if first_empty is not None:
        return first_empty
    raise TableNotFound(candidates)


def resolve_class_table(store: DataStore, candidates: Sequence[str]) -> Optional[str]:
    """Start-up diagnostic: name of the first existing class table, or ``None``."""

    try:
        table = resolve(store, candidates, limit=1).table
    except TableNotFound:
        _logger.warning("no class table found", extra={"candidates": list(candidates)})
        return None
    _logger.info("class table resolved", extra={"table": table})
    return table


__all__ = ["Resolution", "TableNotFound", "resolve", "resolve_class_table"]
