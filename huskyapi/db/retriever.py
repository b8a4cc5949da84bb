"""Fetch rows from Postgres and normalise them into JSON-compatible data."""

from __future__ import annotations

import base64
import json
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Protocol, Sequence

_UNQUOTED_CHAR = r'[^",\\{}\s(NULL)]'
_UNQUOTED_VALUE = f"({_UNQUOTED_CHAR})+"
_QUOTED_CHAR = r'[^"\\]|\\"|\\\\'
_QUOTED_VALUE = f'"({_QUOTED_CHAR})*"'
_ARRAY_VALUE = f"(?P<value>({_UNQUOTED_VALUE}|{_QUOTED_VALUE}))"
_ARRAY_EXP = re.compile(f"(({_ARRAY_VALUE})(,)?)")


def convert_string_to_slice(array: str) -> list[str]:
    """Split the text form of a Postgres array into its elements."""
    return [match.group(0).strip('"').strip(",") for match in _ARRAY_EXP.finditer(array)]


def pq_array(values: Sequence[str] | None) -> str | None:
    """Render strings as a Postgres array literal; ``None`` stays NULL."""
    if values is None:
        return None
    quoted = (
        '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"' for value in values
    )
    return "{" + ",".join(quoted) + "}"


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return int(value.total_seconds() * 1_000_000_000)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class _SQLGen(Protocol):
    def connect(
        self,
        address: str,
        username: str,
        password: str,
        db_name: str,
        max_open_conns: int,
        max_idle_conns: int,
        conn_lifetime: timedelta,
    ) -> None: ...

    def get_values_from_db(self, query: str, *args: Any) -> list[dict[str, Any]]: ...

    def write_in_db(self, query: str, *args: Any) -> int: ...


@dataclass
class SQLJSONRetrieve:
    """Reads and writes through a SQL backend, returning rows as JSON data."""

    psql: _SQLGen

    def connect(
        self,
        address: str,
        db_name: str,
        username: str,
        password: str,
        max_open_conns: int,
        max_idle_conns: int,
        conn_lifetime: timedelta,
    ) -> None:
        """Open a connection to the backend."""
        self.psql.connect(
            address, username, password, db_name, max_open_conns, max_idle_conns, conn_lifetime
        )

    def retrieve_from_db(
        self, query: str, array_columns: Iterable[str], *args: Any
    ) -> list[dict[str, Any]]:
        """Run a SELECT and return its rows with arrays and JSON columns decoded."""
        rows = self.psql.get_values_from_db(query, *args)
        for column in array_columns:
            if not column:
                continue
            for row in rows:
                raw = row.get(column)
                if isinstance(raw, (bytes, bytearray)):
                    row[column] = convert_string_to_slice(bytes(raw).decode())
        for row in rows:
            for key, raw in list(row.items()):
                if not isinstance(raw, (bytes, bytearray)):
                    continue
                try:
                    row[key] = json.loads(bytes(raw).decode())
                except (ValueError, UnicodeDecodeError):
                    continue
        return json.loads(json.dumps(rows, default=_json_default))

    def write_in_db(self, query: str, *args: Any) -> int:
        """Run an INSERT or UPDATE and return the rows affected."""
        return self.psql.write_in_db(query, *args)

    def pq_array(self, values: Sequence[str] | None) -> str | None:
        """Render strings as a Postgres array literal."""
        return pq_array(values)