"""Generic SQL access on top of a low-level Postgres driver."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Protocol, Sequence


class NoDataFoundError(LookupError):
    """Raised when a query returns no rows."""

    def __init__(self, message: str = "No data found") -> None:
        super().__init__(message)


class PostgresOperations(Protocol):
    """Low-level operations of a Postgres driver; failures are raised."""

    def configure_db(self, address: str, username: str, password: str, db_name: str) -> None: ...

    def configure_pool(
        self, max_open_conns: int, max_idle_conns: int, conn_lifetime: timedelta
    ) -> None: ...

    def close_db(self) -> None: ...

    def configure_query(self, query: str, *args: Any) -> None: ...

    def close_rows(self) -> None: ...

    def get_columns(self) -> list[str]: ...

    def has_next_row(self) -> bool: ...

    def scan_row(self) -> Sequence[Any]: ...

    def check_rows(self) -> None: ...

    def exec(self, query: str, *args: Any) -> None: ...

    def get_rows_affected(self) -> int: ...


@dataclass
class SQLConfig:
    """Runs queries through a :class:`PostgresOperations` driver."""

    postgres: PostgresOperations

    def connect(
        self,
        address: str,
        username: str,
        password: str,
        db_name: str,
        max_open_conns: int,
        max_idle_conns: int,
        conn_lifetime: timedelta,
    ) -> None:
        """Open the database and set up its connection pool."""
        self.postgres.configure_db(address, username, password, db_name)
        self.postgres.configure_pool(max_open_conns, max_idle_conns, conn_lifetime)

    def close_db(self) -> None:
        """Close the database connection."""
        self.postgres.close_db()

    def get_values_from_db(self, query: str, *args: Any) -> list[dict[str, Any]]:
        """Run a SELECT and return one dict per row, keyed by column name."""
        self.postgres.configure_query(query, *args)
        try:
            columns = self.postgres.get_columns()
            results = []
            while self.postgres.has_next_row():
                results.append(dict(zip(columns, self.postgres.scan_row())))
            self.postgres.check_rows()
        finally:
            self.postgres.close_rows()
        if not results:
            raise NoDataFoundError()
        return results

    def write_in_db(self, query: str, *args: Any) -> int:
        """Run an INSERT or UPDATE and return the number of rows affected."""
        self.postgres.exec(query, *args)
        return self.postgres.get_rows_affected()