"""DuckDB persistence for policies, weather snapshots and transactions."""

from __future__ import annotations

import json
import os
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable, Collection, Iterable, Mapping, Sequence

import duckdb
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from insurance.model import Policy, PolicyStatus, Transaction, WeatherSnapshot, utcnow

DB_ENV_VAR = "WEATHER_INSURANCE_DB_PATH"
DEFAULT_DB_PATH = Path("data/weather_insurance.duckdb")

POLICIES_TABLE = "policies"
TRANSACTIONS_TABLE = "transactions"
WEATHER_SNAPSHOTS_TABLE = "weather_snapshots"

POLICY_COLUMNS = (
    "wallet_address",
    "location",
    "event_type",
    "threshold",
    "coverage",
    "premium",
    "duration",
    "start_date",
    "end_date",
    "status",
    "current_value",
    "tx_hash",
)
TRANSACTION_COLUMNS = (
    "wallet_address",
    "type",
    "amount",
    "tx_hash",
    "timestamp",
    "policy_id",
    "details",
)
SNAPSHOT_COLUMNS = (
    "location",
    "temperature",
    "rainfall_24h",
    "rainfall_30d",
    "days_without_rain",
    "humidity",
    "wind_speed",
    "forecast",
    "last_updated",
)


def _ensure_parent_dir(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def get_database_path(override: str | os.PathLike[str] | None = None) -> Path:
    """Resolve the DuckDB file path from an explicit override or environment variable."""

    if override is not None:
        return Path(override)
    env_value = os.getenv(DB_ENV_VAR)
    if env_value:
        return Path(env_value)
    return DEFAULT_DB_PATH


def connect(
    path: str | os.PathLike[str] | None = None,
    *,
    read_only: bool = False,
    ensure: bool = True,
) -> duckdb.DuckDBPyConnection:
    """Create a DuckDB connection, optionally ensuring schema availability."""

    db_path = get_database_path(path)
    if not read_only:
        _ensure_parent_dir(db_path)
    conn = duckdb.connect(str(db_path), read_only=read_only)
    if ensure and not read_only:
        ensure_schema(conn)
    return conn


def ensure_schema(conn: duckdb.DuckDBPyConnection) -> None:
    """Create the tables and id sequences if they do not already exist."""

    conn.execute(f"CREATE SEQUENCE IF NOT EXISTS {POLICIES_TABLE}_id_seq START 1")
    conn.execute(f"CREATE SEQUENCE IF NOT EXISTS {TRANSACTIONS_TABLE}_id_seq START 1")
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {POLICIES_TABLE} (
            id BIGINT PRIMARY KEY,
            wallet_address TEXT NOT NULL,
            location TEXT NOT NULL,
            event_type TEXT NOT NULL,
            threshold DOUBLE NOT NULL,
            coverage DOUBLE NOT NULL,
            premium DOUBLE NOT NULL,
            duration INTEGER NOT NULL,
            start_date TIMESTAMP NOT NULL,
            end_date TIMESTAMP NOT NULL,
            status TEXT NOT NULL,
            current_value DOUBLE NOT NULL,
            tx_hash TEXT
        )
        """
    )
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {TRANSACTIONS_TABLE} (
            id BIGINT PRIMARY KEY,
            wallet_address TEXT NOT NULL,
            type TEXT NOT NULL,
            amount DOUBLE NOT NULL,
            tx_hash TEXT,
            "timestamp" TIMESTAMP NOT NULL,
            policy_id BIGINT,
            details JSON
        )
        """
    )
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {WEATHER_SNAPSHOTS_TABLE} (
            location TEXT PRIMARY KEY,
            temperature DOUBLE,
            rainfall_24h DOUBLE,
            rainfall_30d DOUBLE,
            days_without_rain INTEGER,
            humidity DOUBLE,
            wind_speed DOUBLE,
            forecast TEXT,
            last_updated TIMESTAMP NOT NULL
        )
        """
    )


def _to_db_value(value: Any) -> Any:
    # Timestamps are stored as naive UTC so reads never depend on the session time zone.
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value.replace(tzinfo=None)
    if isinstance(value, PolicyStatus):
        return value.value
    if isinstance(value, dict):
        return json.dumps(value)
    return value


def _rows(cursor: duckdb.DuckDBPyConnection) -> list[dict[str, Any]]:
    columns = [column[0] for column in cursor.description or ()]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


def _policy_from_row(row: Mapping[str, Any]) -> Policy:
    return Policy.model_validate(dict(row))


def _transaction_from_row(row: Mapping[str, Any]) -> Transaction:
    data = dict(row)
    details = data.get("details")
    data["details"] = json.loads(details) if isinstance(details, str) else details
    return Transaction.model_validate(data)


def _snapshot_from_row(row: Mapping[str, Any]) -> WeatherSnapshot:
    data = {key: value for key, value in row.items() if value is not None}
    return WeatherSnapshot.model_validate(data)


def _column_list(columns: Sequence[str]) -> str:
    return ", ".join(f'"{column}"' for column in columns)


def _assignments(changes: Mapping[str, Any], allowed: Sequence[str]) -> tuple[str, list[Any]]:
    unknown = set(changes) - set(allowed)
    if unknown:
        raise ValueError(f"Unsupported column(s): {', '.join(sorted(unknown))}")
    columns = list(changes)
    clause = ", ".join(f'"{column}" = ?' for column in columns)
    return clause, [_to_db_value(changes[column]) for column in columns]


# Another process (API or job) holding the file briefly is retried, not fatal.
_LOCK_RETRY = retry(
    wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
    stop=stop_after_attempt(10),
    retry=retry_if_exception_type(duckdb.IOException),
    reraise=True,
)


class DuckDBStore:
    """Persistent implementation of the three store contracts.

    Each operation opens its own connection and closes it before returning,
    so the API and the batch jobs can share one database file. Statements
    from this process run under a single lock. Status transitions are one
    ``UPDATE ... WHERE status IN (...) RETURNING`` statement and therefore
    atomic.
    """

    def __init__(self, path: str | os.PathLike[str] | None = None) -> None:
        self._path = get_database_path(path)
        self._lock = threading.Lock()

    @classmethod
    def open(cls, path: str | os.PathLike[str] | None = None) -> "DuckDBStore":
        store = cls(path)
        store._run(ensure_schema)
        return store

    @property
    def path(self) -> Path:
        return self._path

    def close(self) -> None:
        pass

    @_LOCK_RETRY
    def _run(self, operation: Callable[[duckdb.DuckDBPyConnection], Any]) -> Any:
        with self._lock:
            conn = connect(self._path, ensure=False)
            try:
                return operation(conn)
            finally:
                conn.close()

    def _query(self, sql: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        return self._run(lambda conn: _rows(conn.execute(sql, list(params or []))))

    # Policies -----------------------------------------------------------
    def create_policy(self, values: Mapping[str, Any]) -> Policy:
        record = {column: values.get(column) for column in POLICY_COLUMNS}
        record["status"] = record["status"] or PolicyStatus.ACTIVE
        record["current_value"] = record["current_value"] or 0.0
        placeholders = ", ".join("?" for _ in POLICY_COLUMNS)
        rows = self._query(
            f"""
            INSERT INTO {POLICIES_TABLE} (id, {_column_list(POLICY_COLUMNS)})
            VALUES (nextval('{POLICIES_TABLE}_id_seq'), {placeholders})
            RETURNING *
            """,
            [_to_db_value(record[column]) for column in POLICY_COLUMNS],
        )
        return _policy_from_row(rows[0])

    def get_policy(self, policy_id: int) -> Policy | None:
        rows = self._query(f"SELECT * FROM {POLICIES_TABLE} WHERE id = ?", [policy_id])
        return _policy_from_row(rows[0]) if rows else None

    def list_policies(self, wallet_address: str) -> list[Policy]:
        rows = self._query(
            f"SELECT * FROM {POLICIES_TABLE} WHERE lower(wallet_address) = ? ORDER BY id",
            [wallet_address.strip().lower()],
        )
        return [_policy_from_row(row) for row in rows]

    def iter_policies(self, statuses: Iterable[PolicyStatus] | None = None) -> list[Policy]:
        sql = f"SELECT * FROM {POLICIES_TABLE}"
        params: list[Any] = []
        if statuses is not None:
            wanted = [PolicyStatus(status).value for status in statuses]
            if not wanted:
                return []
            sql += f" WHERE status IN ({', '.join('?' for _ in wanted)})"
            params.extend(wanted)
        rows = self._query(sql + " ORDER BY id", params)
        return [_policy_from_row(row) for row in rows]

    def update_policy(self, policy_id: int, changes: Mapping[str, Any]) -> Policy | None:
        if not changes:
            return self.get_policy(policy_id)
        clause, params = _assignments(changes, POLICY_COLUMNS)
        rows = self._query(
            f"UPDATE {POLICIES_TABLE} SET {clause} WHERE id = ? RETURNING *",
            [*params, policy_id],
        )
        return _policy_from_row(rows[0]) if rows else None

    def transition_policy(
        self,
        policy_id: int,
        *,
        expected: Collection[PolicyStatus],
        status: PolicyStatus,
        **changes: Any,
    ) -> Policy | None:
        wanted = [PolicyStatus(item).value for item in expected]
        if not wanted:
            return None
        clause, params = _assignments({**changes, "status": status}, POLICY_COLUMNS)
        rows = self._query(
            f"""
            UPDATE {POLICIES_TABLE} SET {clause}
            WHERE id = ? AND status IN ({', '.join('?' for _ in wanted)})
            RETURNING *
            """,
            [*params, policy_id, *wanted],
        )
        return _policy_from_row(rows[0]) if rows else None

    # Weather snapshots --------------------------------------------------
    def put_weather_snapshot(self, snapshot: WeatherSnapshot) -> WeatherSnapshot:
        data = snapshot.model_dump()
        self._query(
            f"""
            INSERT OR REPLACE INTO {WEATHER_SNAPSHOTS_TABLE} ({_column_list(SNAPSHOT_COLUMNS)})
            VALUES ({', '.join('?' for _ in SNAPSHOT_COLUMNS)})
            """,
            [_to_db_value(data[column]) for column in SNAPSHOT_COLUMNS],
        )
        return snapshot

    def get_weather_snapshot(self, location: str) -> WeatherSnapshot | None:
        rows = self._query(
            f"SELECT * FROM {WEATHER_SNAPSHOTS_TABLE} WHERE location = ?", [location]
        )
        return _snapshot_from_row(rows[0]) if rows else None

    def list_weather_snapshots(self) -> list[WeatherSnapshot]:
        rows = self._query(f"SELECT * FROM {WEATHER_SNAPSHOTS_TABLE} ORDER BY location")
        return [_snapshot_from_row(row) for row in rows]

    def update_weather_snapshot(
        self, location: str, changes: Mapping[str, Any]
    ) -> WeatherSnapshot | None:
        readings = {key: value for key, value in changes.items() if key != "location"}
        clause, params = _assignments(
            {**readings, "last_updated": utcnow()}, SNAPSHOT_COLUMNS
        )
        rows = self._query(
            f"UPDATE {WEATHER_SNAPSHOTS_TABLE} SET {clause} WHERE location = ? RETURNING *",
            [*params, location],
        )
        return _snapshot_from_row(rows[0]) if rows else None

    # Transactions -------------------------------------------------------
    def append_transaction(self, values: Mapping[str, Any]) -> Transaction:
        record = {column: values.get(column) for column in TRANSACTION_COLUMNS}
        placeholders = ", ".join("?" for _ in TRANSACTION_COLUMNS)
        rows = self._query(
            f"""
            INSERT INTO {TRANSACTIONS_TABLE} (id, {_column_list(TRANSACTION_COLUMNS)})
            VALUES (nextval('{TRANSACTIONS_TABLE}_id_seq'), {placeholders})
            RETURNING *
            """,
            [_to_db_value(record[column]) for column in TRANSACTION_COLUMNS],
        )
        return _transaction_from_row(rows[0])

    def get_transaction(self, transaction_id: int) -> Transaction | None:
        rows = self._query(
            f"SELECT * FROM {TRANSACTIONS_TABLE} WHERE id = ?", [transaction_id]
        )
        return _transaction_from_row(rows[0]) if rows else None

    def list_transactions(self, wallet_address: str) -> list[Transaction]:
        rows = self._query(
            f"""
            SELECT * FROM {TRANSACTIONS_TABLE}
            WHERE lower(wallet_address) = ?
            ORDER BY "timestamp" DESC, id DESC
            """,
            [wallet_address.strip().lower()],
        )
        return [_transaction_from_row(row) for row in rows]


__all__ = [
    "DB_ENV_VAR",
    "DEFAULT_DB_PATH",
    "DuckDBStore",
    "POLICIES_TABLE",
    "TRANSACTIONS_TABLE",
    "WEATHER_SNAPSHOTS_TABLE",
    "connect",
    "ensure_schema",
    "get_database_path",
]
