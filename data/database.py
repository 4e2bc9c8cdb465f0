"""
data/database.py -- Generic stored-procedure execution over SQLAlchemy.

Database is the only object in ICT4Events that talks to the SQL engine.
Repositories (auth/store.py, timeline/store.py) register their procedures in
Database.catalog and call one of five operations:

  execute_reader(query, params)             -> list[list[str]]  | None
  execute_reader_dict(query, params)        -> list[dict]       | None
  execute_non_query(query, params)          -> bool
  execute_non_query_returning(query, params)-> (bool, str)
  execute_scalar(query, params)             -> native value     | None

Failure contract:
  Database faults (anything raised as sqlalchemy.exc.SQLAlchemyError, which
  includes wrapped DBAPI errors and ProcedureError) never propagate. They are
  logged and turned into a sentinel: None for the readers and the scalar,
  False for the non-queries. An empty result is [] -- never None -- so
  callers can tell "no rows" from "query failed".

Connection lifecycle:
  Each call asks the connection factory for a fresh ConnectionHandle, opens it
  if it is not already open, runs the procedure and releases the handle in a
  finally block. A failed open is logged and the call goes on; the procedure
  then fails on the closed handle and the sentinel is returned. Release runs
  exactly once per call on every exit path, and a fault while releasing is
  logged and swallowed.

The connection factory (Engine -> ConnectionHandle) is injectable so tests
and other drivers can substitute their own handle.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from enum import Enum
from typing import Any, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import ResourceClosedError, SQLAlchemyError

from data.procedures import Direction, Parameter, ProcedureCatalog, ProcedureResult

logger = logging.getLogger("ict4events.data")

T = TypeVar("T")


class SuccessCriterion(str, Enum):
    """How a non-query call decides it succeeded.

    STATUS_PARAMETER: the procedure reports status through its first
        parameter; success means that value parses as an integer >= 0.
    ROWS_AFFECTED: success means the driver reported rows affected >= 0,
        whatever the parameters say.
    """

    STATUS_PARAMETER = "status_parameter"
    ROWS_AFFECTED = "rows_affected"


# ---------------------------------------------------------------------------
# Connection handle
# ---------------------------------------------------------------------------


class ConnectionHandle:
    """A per-call connection slot: created closed, opened on demand, released once."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self.connection: Connection | None = None

    @property
    def is_open(self) -> bool:
        return self.connection is not None and not self.connection.closed

    def open(self) -> None:
        self.connection = self._engine.connect()

    def close(self) -> None:
        if self.connection is not None:
            self.connection.close()
            self.connection = None


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign keys. SQLite PRAGMAs are per-connection."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class Database:
    """Stored-procedure gateway owning an Engine, a catalog and a connection factory.

    Usage:
        db = Database("sqlite:///ict4events.db")
        db.catalog.register(Procedure("COUNT_USERS", "SELECT COUNT(*) FROM users"))
        count = db.execute_scalar("COUNT_USERS")
        db.close()
    """

    def __init__(
        self,
        db_url: str,
        connection_factory: Callable[[Engine], ConnectionHandle] | None = None,
        catalog: ProcedureCatalog | None = None,
    ) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        self.catalog = catalog if catalog is not None else ProcedureCatalog()
        self._connection_factory = connection_factory or ConnectionHandle

    # ------------------------------------------------------------------
    # Query operations
    # ------------------------------------------------------------------

    def execute_reader(self, query: str, params: Sequence[Parameter] | None = None) -> list[list[str]] | None:
        """Run a row-returning procedure; every value is rendered as a string.

        NULL becomes "" for textual/temporal declared columns and "0" for
        everything else, so every slot of every row is populated.
        """

        def read(result: ProcedureResult, args: list[Parameter]) -> list[list[str]]:
            if not result.rows:
                return []
            return [
                [_render(value, textual) for value, textual in zip(row, result.textual)] for row in result.rows
            ]

        return self._execute(query, params, read, None)

    def execute_reader_dict(
        self, query: str, params: Sequence[Parameter] | None = None
    ) -> list[dict[str, str | None]] | None:
        """Run a row-returning procedure; each row is a column-name -> string mapping.

        NULL is returned as None, never rendered: unlike execute_reader there
        is no "" / "0" substitution, so a missing value stays distinguishable
        from an empty string or a zero. Non-NULL values are str()-converted.
        """

        def read(result: ProcedureResult, args: list[Parameter]) -> list[dict[str, str | None]]:
            return [
                {column: (None if value is None else str(value)) for column, value in zip(result.columns, row)}
                for row in result.rows
            ]

        return self._execute(query, params, read, None)

    def execute_non_query(
        self,
        query: str,
        params: Sequence[Parameter] | None = None,
        success: SuccessCriterion = SuccessCriterion.STATUS_PARAMETER,
    ) -> bool:
        """Run a procedure that returns no result set.

        By default the procedure must report its status through the first
        parameter (an integer >= 0 means success).
        """

        def check(result: ProcedureResult, args: list[Parameter]) -> bool:
            return _succeeded(query, success, result, args)

        return self._execute(query, params, check, False)

    def execute_non_query_returning(
        self,
        query: str,
        params: Sequence[Parameter] | None = None,
        success: SuccessCriterion = SuccessCriterion.ROWS_AFFECTED,
    ) -> tuple[bool, str]:
        """Run a procedure and hand back the value of its return-value parameter.

        Returns (succeeded, return_value). return_value is "" when no
        parameter was declared with Direction.RETURN_VALUE, when it came back
        NULL, or when the call failed. By default success is judged on rows
        affected only.
        """

        def check(result: ProcedureResult, args: list[Parameter]) -> tuple[bool, str]:
            returned = next((p for p in args if p.direction is Direction.RETURN_VALUE), None)
            value = "" if returned is None or returned.value is None else str(returned.value)
            return _succeeded(query, success, result, args), value

        return self._execute(query, params, check, (False, ""))

    def execute_scalar(self, query: str, params: Sequence[Parameter] | None = None) -> Any:
        """Return the first column of the first row as the driver's native value.

        None when there is no row, when the value is NULL, or when the call fails.
        """

        def first(result: ProcedureResult, args: list[Parameter]) -> Any:
            if not result.rows or not result.rows[0]:
                return None
            return result.rows[0][0]

        return self._execute(query, params, first, None)

    # ------------------------------------------------------------------
    # Managed execution
    # ------------------------------------------------------------------

    def _execute(
        self,
        query: str,
        params: Sequence[Parameter] | None,
        handler: Callable[[ProcedureResult, list[Parameter]], T],
        failure: T,
    ) -> T:
        args = list(params or [])
        handle = self._connection_factory(self.engine)
        try:
            if not handle.is_open:
                try:
                    handle.open()
                except SQLAlchemyError as exc:
                    logger.error("Could not open connection for %s: %s", query, exc)
            try:
                conn = _open_connection(handle)
                result = self.catalog.call(conn, query, args)
                value = handler(result, args)
                conn.commit()
                return value
            except SQLAlchemyError as exc:
                logger.error("Procedure %s failed: %s", query, exc)
                return failure
        finally:
            _release(handle)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _open_connection(handle: ConnectionHandle) -> Connection:
    if not handle.is_open or handle.connection is None:
        raise ResourceClosedError("Connection is not open")
    return handle.connection


def _release(handle: ConnectionHandle) -> None:
    try:
        handle.close()
    except Exception as exc:
        logger.error("Closing connection failed: %s", exc)


def _render(value: Any, textual: bool) -> str:
    if value is None:
        return "" if textual else "0"
    return str(value)


def _succeeded(query: str, criterion: SuccessCriterion, result: ProcedureResult, args: list[Parameter]) -> bool:
    if criterion is SuccessCriterion.ROWS_AFFECTED:
        return result.rowcount >= 0
    if not args:
        logger.warning("%s has no status parameter to inspect", query)
        return False
    try:
        status = int(str(args[0].value))
    except ValueError:
        logger.warning("%s reported a non-integer status %r", query, args[0].value)
        return False
    return status >= 0
