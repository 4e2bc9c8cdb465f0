"""
tests/test_database.py -- Unit tests for data/database.py and data/procedures.py.

Covers:
  - Readers: [] for zero rows vs None for a fault (unknown procedure, unknown
    parameter, SQL error)
  - List-form NULL rendering: "" for textual/temporal columns, "0" otherwise
  - Dictionary form keeps NULL as None
  - Non-query success criteria: status parameter vs rows affected
  - Return-value extraction
  - Scalar returns the native value
  - Connection handle released exactly once on every exit path
"""

from __future__ import annotations

import logging

import pytest
from sqlalchemy import DateTime, Integer, String, text
from sqlalchemy.exc import OperationalError

from data.database import ConnectionHandle, Database, SuccessCriterion
from data.procedures import Direction, Parameter, Procedure, ProcedureCatalog

_PROCEDURES = (
    Procedure(
        "GET_EVENTS",
        "SELECT id, name, capacity, starts_at FROM events ORDER BY id",
        columns={"id": Integer, "name": String(100), "capacity": Integer, "starts_at": DateTime},
    ),
    Procedure(
        "GET_EVENT_BY_NAME",
        "SELECT id, name, capacity, starts_at FROM events WHERE name = :p_name",
        columns={"id": Integer, "name": String(100), "capacity": Integer, "starts_at": DateTime},
    ),
    Procedure(
        "ADD_EVENT",
        "INSERT INTO events (name, capacity, starts_at) VALUES (:p_name, :p_capacity, :p_starts_at)",
        outputs={"p_status": "SELECT changes()", "p_event_id": "SELECT last_insert_rowid()"},
    ),
    Procedure(
        "CANCEL_EVENT",
        "UPDATE events SET capacity = 0 WHERE name = :p_name",
        outputs={"p_status": "SELECT CASE WHEN changes() > 0 THEN 0 ELSE -1 END"},
    ),
    Procedure("COUNT_EVENTS", "SELECT COUNT(*) FROM events"),
    Procedure("BROKEN", "SELECT * FROM no_such_table"),
)


def _prepare(db: Database) -> Database:
    with db.engine.begin() as conn:
        conn.execute(
            text(
                "CREATE TABLE events ("
                " id INTEGER PRIMARY KEY AUTOINCREMENT,"
                " name TEXT UNIQUE,"
                " capacity INTEGER,"
                " starts_at DATETIME)"
            )
        )
    db.catalog.register(*_PROCEDURES)
    return db


@pytest.fixture
def events_db(db: Database) -> Database:
    return _prepare(db)


def _add(db: Database, name, capacity=100, starts_at="2026-05-01 10:00:00") -> bool:
    return db.execute_non_query(
        "ADD_EVENT",
        [
            Parameter("p_status", direction=Direction.OUT),
            Parameter("p_name", name),
            Parameter("p_capacity", capacity),
            Parameter("p_starts_at", starts_at),
        ],
    )


class CountingHandle(ConnectionHandle):
    """ConnectionHandle that records open/close calls and can refuse to open."""

    def __init__(self, engine, fail_open: bool = False, fail_close: bool = False) -> None:
        super().__init__(engine)
        self.fail_open = fail_open
        self.fail_close = fail_close
        self.opens = 0
        self.closes = 0

    def open(self) -> None:
        self.opens += 1
        if self.fail_open:
            raise OperationalError("connect", {}, Exception("connection refused"))
        super().open()

    def close(self) -> None:
        self.closes += 1
        super().close()
        if self.fail_close:
            raise RuntimeError("socket already gone")


def _counting_db(handles: list, **handle_kwargs) -> Database:
    def factory(engine):
        handle = CountingHandle(engine, **handle_kwargs)
        handles.append(handle)
        return handle

    return _prepare(Database("sqlite:///:memory:", connection_factory=factory))


# ---------------------------------------------------------------------------
# Readers
# ---------------------------------------------------------------------------


class TestExecuteReader:
    def test_zero_rows_is_empty_list_not_none(self, events_db: Database) -> None:
        rows = events_db.execute_reader("GET_EVENT_BY_NAME", [Parameter("p_name", "nobody")])
        assert rows == []
        assert rows is not None

    def test_values_are_strings_in_projection_order(self, events_db: Database) -> None:
        assert _add(events_db, "Festival", capacity=250)
        rows = events_db.execute_reader("GET_EVENTS")
        assert rows == [["1", "Festival", "250", "2026-05-01 10:00:00"]]

    def test_null_rendering_depends_on_declared_type(self, events_db: Database) -> None:
        assert _add(events_db, None, capacity=None, starts_at=None)
        rows = events_db.execute_reader("GET_EVENTS")
        # name (text) and starts_at (temporal) -> "", capacity (integer) -> "0"
        assert rows == [["1", "", "0", ""]]

    def test_unknown_procedure_returns_none(self, events_db: Database) -> None:
        assert events_db.execute_reader("GET_NOTHING") is None

    def test_unknown_parameter_returns_none(self, events_db: Database) -> None:
        assert events_db.execute_reader("GET_EVENT_BY_NAME", [Parameter("p_title", "x")]) is None

    def test_sql_fault_returns_none_and_logs(self, events_db: Database, caplog) -> None:
        with caplog.at_level(logging.ERROR, logger="ict4events.data"):
            assert events_db.execute_reader("BROKEN") is None
        assert "BROKEN" in caplog.text

    def test_procedure_names_are_case_insensitive(self, events_db: Database) -> None:
        assert events_db.execute_reader("get_events") == []


class TestExecuteReaderDict:
    def test_rows_keyed_by_column_name(self, events_db: Database) -> None:
        assert _add(events_db, "Festival", capacity=250)
        rows = events_db.execute_reader_dict("GET_EVENTS")
        assert rows == [{"id": "1", "name": "Festival", "capacity": "250", "starts_at": "2026-05-01 10:00:00"}]

    def test_null_is_kept_as_none(self, events_db: Database) -> None:
        assert _add(events_db, None, capacity=None, starts_at=None)
        row = events_db.execute_reader_dict("GET_EVENTS")[0]
        assert row["name"] is None
        assert row["capacity"] is None
        assert row["starts_at"] is None

    def test_null_differs_from_list_form(self, events_db: Database) -> None:
        assert _add(events_db, None, capacity=None, starts_at=None)
        assert events_db.execute_reader("GET_EVENTS")[0][1:] == ["", "0", ""]
        assert list(events_db.execute_reader_dict("GET_EVENTS")[0].values())[1:] == [None, None, None]

    def test_zero_rows_and_fault_are_distinct(self, events_db: Database) -> None:
        assert events_db.execute_reader_dict("GET_EVENTS") == []
        assert events_db.execute_reader_dict("BROKEN") is None


# ---------------------------------------------------------------------------
# Non-queries
# ---------------------------------------------------------------------------


class TestExecuteNonQuery:
    def test_status_parameter_is_filled_and_judged(self, events_db: Database) -> None:
        status = Parameter("p_status", direction=Direction.OUT)
        ok = events_db.execute_non_query(
            "ADD_EVENT",
            [status, Parameter("p_name", "Expo"), Parameter("p_capacity", 10), Parameter("p_starts_at", None)],
        )
        assert ok is True
        assert status.value == 1

    def test_binding_is_by_name_not_position(self, events_db: Database) -> None:
        status = Parameter("p_status", direction=Direction.OUT)
        ok = events_db.execute_non_query(
            "ADD_EVENT",
            [status, Parameter("p_starts_at", None), Parameter("p_capacity", 5), Parameter("p_name", "Expo")],
        )
        assert ok is True
        assert events_db.execute_reader("GET_EVENTS") == [["1", "Expo", "5", ""]]

    def test_negative_status_is_failure(self, events_db: Database) -> None:
        params = [Parameter("p_status", direction=Direction.OUT), Parameter("p_name", "missing")]
        assert events_db.execute_non_query("CANCEL_EVENT", params) is False
        assert params[0].value == -1

    def test_rows_affected_criterion_ignores_status(self, events_db: Database) -> None:
        """The two success rules disagree on the same call -- callers pick one explicitly."""
        params = [Parameter("p_status", direction=Direction.OUT), Parameter("p_name", "missing")]
        assert events_db.execute_non_query("CANCEL_EVENT", params, success=SuccessCriterion.ROWS_AFFECTED) is True

    def test_non_integer_status_is_failure(self, events_db: Database) -> None:
        # First parameter is the name, which does not parse as an integer.
        params = [Parameter("p_name", "Expo"), Parameter("p_capacity", 1), Parameter("p_starts_at", None)]
        assert events_db.execute_non_query("ADD_EVENT", params) is False

    def test_no_parameters_is_failure(self, events_db: Database) -> None:
        assert events_db.execute_non_query("COUNT_EVENTS") is False

    def test_constraint_violation_is_failure(self, events_db: Database) -> None:
        assert _add(events_db, "Expo") is True
        assert _add(events_db, "Expo") is False


class TestExecuteNonQueryReturning:
    def test_exposes_return_value(self, events_db: Database) -> None:
        assert _add(events_db, "First")
        new_id = Parameter("p_event_id", direction=Direction.RETURN_VALUE)
        ok, returned = events_db.execute_non_query_returning(
            "ADD_EVENT", [new_id, Parameter("p_name", "Second"), Parameter("p_capacity", 1), Parameter("p_starts_at", None)]
        )
        assert ok is True
        assert returned == "2"
        assert new_id.value == 2

    def test_without_return_parameter_value_is_empty(self, events_db: Database) -> None:
        ok, returned = events_db.execute_non_query_returning(
            "ADD_EVENT", [Parameter("p_name", "Solo"), Parameter("p_capacity", 1), Parameter("p_starts_at", None)]
        )
        assert (ok, returned) == (True, "")

    def test_success_is_rows_affected_by_default(self, events_db: Database) -> None:
        params = [Parameter("p_status", direction=Direction.RETURN_VALUE), Parameter("p_name", "missing")]
        ok, returned = events_db.execute_non_query_returning("CANCEL_EVENT", params)
        assert ok is True
        assert returned == "-1"

    def test_status_parameter_criterion_can_be_requested(self, events_db: Database) -> None:
        params = [Parameter("p_status", direction=Direction.RETURN_VALUE), Parameter("p_name", "missing")]
        ok, _ = events_db.execute_non_query_returning(
            "CANCEL_EVENT", params, success=SuccessCriterion.STATUS_PARAMETER
        )
        assert ok is False

    def test_fault_returns_false_and_empty_value(self, events_db: Database) -> None:
        assert events_db.execute_non_query_returning("BROKEN") == (False, "")


# ---------------------------------------------------------------------------
# Scalar
# ---------------------------------------------------------------------------


class TestExecuteScalar:
    def test_returns_native_value(self, events_db: Database) -> None:
        assert events_db.execute_scalar("COUNT_EVENTS") == 0
        _add(events_db, "A")
        _add(events_db, "B")
        count = events_db.execute_scalar("COUNT_EVENTS")
        assert count == 2
        assert isinstance(count, int)

    def test_no_row_is_none(self, events_db: Database) -> None:
        assert events_db.execute_scalar("GET_EVENT_BY_NAME", [Parameter("p_name", "x")]) is None

    def test_fault_is_none(self, events_db: Database) -> None:
        assert events_db.execute_scalar("BROKEN") is None


# ---------------------------------------------------------------------------
# Connection lifecycle
# ---------------------------------------------------------------------------


class TestConnectionLifecycle:
    def test_closed_once_on_success(self) -> None:
        handles: list[CountingHandle] = []
        db = _counting_db(handles)
        assert db.execute_reader("GET_EVENTS") == []
        assert [(h.opens, h.closes) for h in handles] == [(1, 1)]
        db.close()

    def test_fresh_handle_per_call(self) -> None:
        handles: list[CountingHandle] = []
        db = _counting_db(handles)
        db.execute_scalar("COUNT_EVENTS")
        db.execute_scalar("COUNT_EVENTS")
        assert len(handles) == 2
        assert all(h.closes == 1 for h in handles)
        db.close()

    def test_closed_once_on_execution_fault(self) -> None:
        handles: list[CountingHandle] = []
        db = _counting_db(handles)
        assert db.execute_reader("BROKEN") is None
        assert handles[0].closes == 1
        db.close()

    def test_open_failure_is_logged_and_call_fails(self, caplog) -> None:
        handles: list[CountingHandle] = []
        db = _counting_db(handles, fail_open=True)
        with caplog.at_level(logging.ERROR, logger="ict4events.data"):
            assert db.execute_reader("GET_EVENTS") is None
            assert db.execute_non_query("ADD_EVENT", [Parameter("p_status", direction=Direction.OUT)]) is False
        assert "Could not open connection" in caplog.text
        assert [(h.opens, h.closes) for h in handles] == [(1, 1), (1, 1)]
        db.close()

    def test_closed_once_on_unrelated_fault(self, monkeypatch) -> None:
        handles: list[CountingHandle] = []
        db = _counting_db(handles)

        def explode(conn, name, params):
            raise RuntimeError("not a database fault")

        monkeypatch.setattr(db.catalog, "call", explode)
        with pytest.raises(RuntimeError):
            db.execute_reader("GET_EVENTS")
        assert handles[0].closes == 1
        db.close()

    def test_release_fault_is_swallowed(self, caplog) -> None:
        handles: list[CountingHandle] = []
        db = _counting_db(handles, fail_close=True)
        with caplog.at_level(logging.ERROR, logger="ict4events.data"):
            assert db.execute_scalar("COUNT_EVENTS") == 0
        assert "Closing connection failed" in caplog.text
        assert handles[0].closes == 1
        db.close()

    def test_already_open_handle_is_not_reopened(self) -> None:
        handles: list[CountingHandle] = []

        def factory(engine):
            handle = CountingHandle(engine)
            handle.connection = engine.connect()
            handles.append(handle)
            return handle

        db = _prepare(Database("sqlite:///:memory:", connection_factory=factory))
        assert db.execute_scalar("COUNT_EVENTS") == 0
        assert (handles[0].opens, handles[0].closes) == (0, 1)
        db.close()


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class TestProcedureCatalog:
    def test_parameter_names_include_binds_and_outputs(self) -> None:
        proc = Procedure("P", "UPDATE t SET a = :p_a WHERE id = :p_id", outputs={"p_status": "SELECT 0"})
        assert proc.parameter_names == {"p_a", "p_id", "p_status"}

    def test_cast_syntax_is_not_a_bind(self) -> None:
        proc = Procedure("P", "SELECT :p_when::date")
        assert proc.parameter_names == {"p_when"}

    def test_register_and_lookup(self) -> None:
        catalog = ProcedureCatalog()
        catalog.register(Procedure("COUNT_EVENTS", "SELECT 1"))
        assert "count_events" in catalog
        assert len(catalog) == 1
