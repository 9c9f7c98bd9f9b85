"""Row-level data store adapter.

Handlers talk to the database through :class:`DataStore`, which offers the
small vocabulary the application needs: select with equality, ``IN`` and
case-insensitive substring filters, insert, update and delete against a
table *name*. Tables are reflected on first use, so the adapter works with
whichever class table a deployment has.

All database failures leave this module as :class:`StoreError` with a
:class:`StoreErrorKind`. :func:`translate_error` is the only place that looks
at driver-specific error details.
"""

from __future__ import annotations

import enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from sqlalchemy import MetaData, Table, and_, delete, func, insert, or_, select, update
from sqlalchemy.exc import (
    IntegrityError,
    NoSuchTableError,
    OperationalError,
    ProgrammingError,
    SQLAlchemyError,
)

from app_logging import DBTimer, get_logger

_logger = get_logger("classroom.store")

Row = Dict[str, Any]
OrderSpec = Union[str, Tuple[str, bool]]

# Driver messages meaning "this table does not exist".
_MISSING_RELATION_MARKERS = (
    "no such table",
    "undefinedtable",
    "doesn't exist",
)


class StoreErrorKind(enum.Enum):
    RELATION_MISSING = "relation_missing"
    CONFLICT = "conflict"
    UNAVAILABLE = "unavailable"
    INVALID = "invalid"
    UNKNOWN = "unknown"


class StoreError(Exception):
    """A failed store operation, classified by :class:`StoreErrorKind`."""

    def __init__(self, kind: StoreErrorKind, message: str, table: Optional[str] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.table = table

    def __repr__(self) -> str:
        return f"StoreError({self.kind.name}, {self.message!r}, table={self.table!r})"


def _looks_like_missing_relation(exc: SQLAlchemyError) -> bool:
    orig = getattr(exc, "orig", None)
    text = f"{type(orig).__name__} {orig}".lower() if orig is not None else str(exc).lower()
    if any(marker in text for marker in _MISSING_RELATION_MARKERS):
        return True
    return "relation" in text and "does not exist" in text


def translate_error(exc: Exception, table: Optional[str] = None) -> StoreError:
    """Map a SQLAlchemy exception onto a :class:`StoreError`."""

    if isinstance(exc, StoreError):
        return exc
    if isinstance(exc, NoSuchTableError):
        return StoreError(StoreErrorKind.RELATION_MISSING, f"table {table!r} does not exist", table)
    if isinstance(exc, IntegrityError):
        return StoreError(StoreErrorKind.CONFLICT, str(exc.orig), table)
    if isinstance(exc, (OperationalError, ProgrammingError)):
        if _looks_like_missing_relation(exc):
            return StoreError(StoreErrorKind.RELATION_MISSING, f"table {table!r} does not exist", table)
        if isinstance(exc, OperationalError):
            return StoreError(StoreErrorKind.UNAVAILABLE, str(exc.orig), table)
    return StoreError(StoreErrorKind.UNKNOWN, str(exc), table)


class DataStore:
    """Table-name based CRUD over the Flask-SQLAlchemy engine.

    Must be used inside an application context. Rows are returned as plain
    dictionaries keyed by column name.
    """

    def __init__(self, db) -> None:
        self._db = db
        self._metadata = MetaData()
        self._tables: Dict[str, Table] = {}

    # -- table handling -------------------------------------------------

    def table(self, name: str) -> Table:
        cached = self._tables.get(name)
        if cached is not None:
            return cached
        try:
            reflected = Table(name, self._metadata, autoload_with=self._db.engine)
        except SQLAlchemyError as exc:
            # Drop the half-built table so a later retry reflects it afresh.
            if name in self._metadata.tables:
                self._metadata.remove(self._metadata.tables[name])
            raise translate_error(exc, name) from exc
        self._tables[name] = reflected
        return reflected

    def forget(self) -> None:
        """Drop reflected tables, e.g. after the schema was created."""

        self._metadata = MetaData()
        self._tables = {}

    def _column(self, table: Table, name: str):
        try:
            return table.c[name]
        except KeyError:
            raise StoreError(StoreErrorKind.INVALID, f"unknown column {name!r}", table.name) from None

    def _where(
        self,
        table: Table,
        eq: Optional[Mapping[str, Any]] = None,
        in_: Optional[Mapping[str, Iterable[Any]]] = None,
        ilike_any: Optional[Tuple[Sequence[str], str]] = None,
    ) -> list:
        clauses = []
        for name, value in (eq or {}).items():
            column = self._column(table, name)
            clauses.append(column.is_(None) if value is None else column == value)
        for name, values in (in_ or {}).items():
            clauses.append(self._column(table, name).in_(list(values)))
        if ilike_any:
            columns, term = ilike_any
            pattern = f"%{term.lower()}%"
            clauses.append(or_(*(func.lower(self._column(table, c)).like(pattern) for c in columns)))
        return clauses

    def _run(self, table_name: str, operation):
        try:
            with DBTimer():
                with self._db.engine.begin() as conn:
                    return operation(conn)
        except SQLAlchemyError as exc:
            error = translate_error(exc, table_name)
            if error.kind is not StoreErrorKind.RELATION_MISSING:
                _logger.warning("store operation failed",
                                extra={"table": table_name, "kind": error.kind.value, "error": error.message})
            raise error from exc

    # -- reads ------------------------------------------------------------

    def select(
        self,
        table_name: str,
        columns: Optional[Sequence[str]] = None,
        eq: Optional[Mapping[str, Any]] = None,
        in_: Optional[Mapping[str, Iterable[Any]]] = None,
        ilike_any: Optional[Tuple[Sequence[str], str]] = None,
        order_by: Optional[Sequence[OrderSpec]] = None,
        limit: Optional[int] = None,
    ) -> List[Row]:
        """Return matching rows.

        ``ilike_any`` is ``(columns, term)``: a row matches when any of the
        columns contains ``term`` case-insensitively. ``order_by`` entries are
        column names or ``(column, descending)`` pairs; NULLs sort last.
        """

        table = self.table(table_name)
        if in_ is not None and any(not list(v) for v in in_.values()):
            return []
        cols = [self._column(table, c) for c in columns] if columns else [table]
        stmt = select(*cols)
        clauses = self._where(table, eq, in_, ilike_any)
        if clauses:
            stmt = stmt.where(and_(*clauses))
        for spec in order_by or ():
            name, descending = (spec, False) if isinstance(spec, str) else spec
            column = self._column(table, name)
            stmt = stmt.order_by(column.is_(None), column.desc() if descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return self._run(table_name, lambda conn: [dict(r._mapping) for r in conn.execute(stmt)])

    def select_one(self, table_name: str, **kwargs: Any) -> Optional[Row]:
        """Return the first matching row or ``None``."""

        rows = self.select(table_name, limit=1, **kwargs)
        return rows[0] if rows else None

    def exists(self, table_name: str) -> bool:
        try:
            self.table(table_name)
        except StoreError as exc:
            if exc.kind is StoreErrorKind.RELATION_MISSING:
                return False
            raise
        return True

    # -- writes -----------------------------------------------------------

    def _primary_key(self, table: Table):
        pk = list(table.primary_key.columns)
        if len(pk) != 1:
            raise StoreError(StoreErrorKind.INVALID, "table needs a single-column primary key", table.name)
        return pk[0]

    def insert(self, table_name: str, values: Mapping[str, Any]) -> Row:
        table = self.table(table_name)
        pk = self._primary_key(table)
        for name in values:
            self._column(table, name)

        def _do(conn):
            result = conn.execute(insert(table).values(**values))
            new_id = result.inserted_primary_key[0]
            return dict(conn.execute(select(table).where(pk == new_id)).one()._mapping)

        return self._run(table_name, _do)

    def update(self, table_name: str, values: Mapping[str, Any], eq: Mapping[str, Any]) -> List[Row]:
        """Update rows matching ``eq`` and return them as they are afterwards."""

        if not eq:
            raise StoreError(StoreErrorKind.INVALID, "update requires a filter", table_name)
        table = self.table(table_name)
        pk = self._primary_key(table)
        for name in values:
            self._column(table, name)
        clauses = self._where(table, eq)

        def _do(conn):
            ids = [r[0] for r in conn.execute(select(pk).where(and_(*clauses)))]
            if not ids:
                return []
            conn.execute(update(table).where(pk.in_(ids)).values(**values))
            return [dict(r._mapping) for r in conn.execute(select(table).where(pk.in_(ids)))]

        return self._run(table_name, _do)

    def delete(self, table_name: str, eq: Mapping[str, Any]) -> int:
        """Delete rows matching ``eq`` and return how many went."""

        if not eq:
            raise StoreError(StoreErrorKind.INVALID, "delete requires a filter", table_name)
        table = self.table(table_name)
        clauses = self._where(table, eq)
        return self._run(table_name, lambda conn: conn.execute(delete(table).where(and_(*clauses))).rowcount)


__all__ = ["DataStore", "Row", "StoreError", "StoreErrorKind", "translate_error"]
