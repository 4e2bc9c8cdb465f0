"""
data/procedures.py -- Stored-procedure definitions and the catalog that runs them.

Every database access in ICT4Events goes through a named procedure with named
parameters. A Procedure couples:
  body     -- the SQL executed for the call, using :name bind parameters.
              On servers with native stored procedures this is simply the
              invocation ("CALL add_post(:p_user_id, :p_body)" or an
              anonymous "BEGIN ... END;" block).
  outputs  -- out / return-value parameters, each computed by a scalar query
              evaluated on the same connection right after the body (for
              SQLite: "SELECT changes()", "SELECT last_insert_rowid()").
  columns  -- declared SQLAlchemy types of the result columns. The row reader
              uses them to decide how a NULL is rendered.

Parameters are bound strictly by name. Passing a name the procedure does not
declare is a database fault, exactly like calling a server-side procedure with
an unknown argument.

Layer rule: no imports from api/, web/, auth/, timeline/, or core/.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sqlalchemy import Date, DateTime, String, Time, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

# ":name" binds as text() sees them; the colons of a "::type" cast and an
# escaped "\:" are not binds.
_BIND_RE = re.compile(r"(?<![:\w\\]):(\w+)")

# Declared types whose NULLs render as "" rather than "0".
_TEXTUAL_TYPES = (String, Date, DateTime, Time)


class ProcedureError(SQLAlchemyError):
    """Raised for calls the catalog cannot dispatch (unknown procedure or parameter)."""


class Direction(str, Enum):
    IN = "in"
    OUT = "out"
    IN_OUT = "inout"
    RETURN_VALUE = "return"


@dataclass
class Parameter:
    """A named procedure argument.

    Output-capable parameters (out, inout, return) have their value replaced
    after the call, so callers keep a reference and read it back.
    """

    name: str
    value: Any = None
    direction: Direction = Direction.IN

    @property
    def is_input(self) -> bool:
        return self.direction in (Direction.IN, Direction.IN_OUT)

    @property
    def is_output(self) -> bool:
        return self.direction is not Direction.IN


@dataclass
class Procedure:
    name: str
    body: str
    outputs: dict[str, str] = field(default_factory=dict)
    columns: dict[str, Any] = field(default_factory=dict)

    @property
    def parameter_names(self) -> frozenset[str]:
        return frozenset(_bind_names(self.body)) | frozenset(self.outputs)

    def is_textual(self, column: str) -> bool:
        """True if the declared type of column is textual or temporal.

        Undeclared columns are treated as non-textual.
        """
        sqltype = self.columns.get(column)
        if sqltype is None:
            return False
        if isinstance(sqltype, type):
            sqltype = sqltype()
        return isinstance(sqltype, _TEXTUAL_TYPES)


@dataclass
class ProcedureResult:
    """Raw outcome of one procedure call, before any string marshalling."""

    columns: list[str]
    textual: list[bool]
    rows: list[tuple]
    rowcount: int


def _bind_names(sql: str) -> list[str]:
    return _BIND_RE.findall(sql)


class ProcedureCatalog:
    """Registry of procedures by name (case-insensitive, like server-side names).

    Usage:
        catalog = ProcedureCatalog()
        catalog.register(Procedure("COUNT_USERS", "SELECT COUNT(*) FROM users"))
        result = catalog.call(conn, "COUNT_USERS", [])
    """

    def __init__(self) -> None:
        self._procedures: dict[str, Procedure] = {}

    def register(self, *procedures: Procedure) -> None:
        for procedure in procedures:
            self._procedures[procedure.name.upper()] = procedure

    def __len__(self) -> int:
        return len(self._procedures)

    def __contains__(self, name: str) -> bool:
        return name.upper() in self._procedures

    def get(self, name: str) -> Procedure:
        try:
            return self._procedures[name.upper()]
        except KeyError:
            raise ProcedureError(f"Unknown procedure {name!r}") from None

    def call(self, conn: Connection, name: str, params: list[Parameter]) -> ProcedureResult:
        """Execute a procedure on an open connection and fill its output parameters.

        Does not commit; the caller owns the transaction.
        """
        procedure = self.get(name)
        declared = procedure.parameter_names
        unknown = [p.name for p in params if p.name not in declared]
        if unknown:
            raise ProcedureError(f"{procedure.name} does not declare parameter(s): {', '.join(unknown)}")

        binds = {p.name: p.value for p in params if p.is_input}
        result = conn.execute(text(procedure.body), binds)
        if result.returns_rows:
            columns = list(result.keys())
            rows = [tuple(row) for row in result.fetchall()]
        else:
            columns, rows = [], []
        rowcount = result.rowcount

        by_name = {p.name: p for p in params}
        for out_name, query in procedure.outputs.items():
            wanted = {k: binds[k] for k in _bind_names(query) if k in binds}
            value = conn.execute(text(query), wanted).scalar()
            if out_name in by_name and by_name[out_name].is_output:
                by_name[out_name].value = value

        return ProcedureResult(
            columns=columns,
            textual=[procedure.is_textual(c) for c in columns],
            rows=rows,
            rowcount=rowcount,
        )
