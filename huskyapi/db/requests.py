"""Database requests of the API, run against Postgres."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Mapping, Protocol, Sequence

from huskyapi.db.queries import (
    configure_insert_query,
    configure_query,
    configure_update_query,
    configure_upsert_query,
)
from huskyapi.db.sql import NoDataFoundError

Record = dict[str, Any]

_EMPTY = str()

_SECURITY_TEST_FIELDS: dict[str, Any] = {
    "name": _EMPTY,
    "image": _EMPTY,
    "imageTag": _EMPTY,
    "cmd": _EMPTY,
    "language": _EMPTY,
    "type": _EMPTY,
    "default": False,
    "timeOutSeconds": 0,
}

_USER_FIELDS: dict[str, Any] = {
    "username": _EMPTY,
    "password": _EMPTY,
    "salt": _EMPTY,
    "iterations": 0,
    "keylen": 0,
    "hashfunction": _EMPTY,
}

_ACCESS_RECORD_FIELDS: dict[str, Any] = {
    "huskytoken": _EMPTY,
    "repositoryURL": _EMPTY,
    "isValid": False,
    "createdAt": None,
    "salt": _EMPTY,
    "uuid": _EMPTY,
}

_ANALYSIS_INSERT_FIELDS = ("RID", "repositoryURL", "repositoryBranch", "status", "startedAt")


class RequestError(Exception):
    """Raised when a database request is invalid or changes nothing."""


class _DataRetriever(Protocol):
    def connect(
        self,
        address: str,
        db_name: str,
        username: str,
        password: str,
        max_open_conns: int,
        max_idle_conns: int,
        conn_lifetime: timedelta,
    ) -> None: ...

    def retrieve_from_db(
        self, query: str, array_columns: Iterable[str], *args: Any
    ) -> list[Record]: ...

    def write_in_db(self, query: str, *args: Any) -> int: ...

    def pq_array(self, values: Sequence[str] | None) -> Any: ...


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _to_json(value: Any) -> bytes:
    try:
        return json.dumps(value, separators=(",", ":"), default=_json_default).encode()
    except (TypeError, ValueError) as exc:
        raise RequestError(str(exc)) from exc


def _pick(record: Mapping[str, Any], fields: Mapping[str, Any]) -> Record:
    return {key: record.get(key, default) for key, default in fields.items()}


def _is_empty(record: Mapping[str, Any], fields: Iterable[str]) -> bool:
    return not any(record.get(key) for key in fields)


@dataclass
class PostgresRequests:
    """Reads and writes API records in Postgres through a data retriever."""

    data_retriever: _DataRetriever

    def connect_db(
        self,
        address: str,
        db_name: str,
        username: str,
        password: str,
        timeout: timedelta,
        pool_limit: int,
        port: int,
        max_open_conns: int,
        max_idle_conns: int,
        conn_max_lifetime: timedelta,
    ) -> None:
        """Connect to Postgres; timeout, pool limit and port are not used here."""
        self.data_retriever.connect(
            address,
            db_name,
            username,
            password,
            max_open_conns,
            max_idle_conns,
            conn_max_lifetime,
        )

    def _find_all(
        self, base: str, params: Mapping[str, Any], array_columns: Sequence[str] = ()
    ) -> list[Record]:
        query, values = configure_query(base, params)
        return self.data_retriever.retrieve_from_db(query, list(array_columns), *values)

    def _find_one(
        self, base: str, params: Mapping[str, Any], array_columns: Sequence[str] = ()
    ) -> Record:
        rows = self._find_all(base, params, array_columns)
        if not rows:
            raise NoDataFoundError()
        return rows[0]

    def find_one_repository(self, params: Mapping[str, Any]) -> Record:
        """Return the first repository matching ``params``."""
        return self._find_one('SELECT * FROM "repository"', params)

    def find_one_security_test(self, params: Mapping[str, Any]) -> Record:
        """Return the first security test matching ``params``."""
        return self._find_one('SELECT * FROM "securityTest"', params)

    def find_one_analysis(self, params: Mapping[str, Any]) -> Record:
        """Return the first analysis matching ``params``."""
        return self._find_one('SELECT * FROM "analysis"', params, ["commitAuthors"])

    def find_one_user(self, params: Mapping[str, Any]) -> Record:
        """Return the first user matching ``params``."""
        return self._find_one('SELECT * FROM "user"', params)

    def find_one_access_token(self, params: Mapping[str, Any]) -> Record:
        """Return the first access token matching ``params``."""
        return self._find_one('SELECT * FROM "accessToken"', params)

    def find_all_repositories(self, params: Mapping[str, Any]) -> list[Record]:
        """Return every repository matching ``params``."""
        return self._find_all("SELECT * FROM repository", params)

    def find_all_security_tests(self, params: Mapping[str, Any]) -> list[Record]:
        """Return every security test matching ``params``."""
        return self._find_all('SELECT * FROM "securityTest"', params)

    def find_all_analyses(self, params: Mapping[str, Any]) -> list[Record]:
        """Return every analysis matching ``params``."""
        return self._find_all("SELECT * FROM analysis", params)

    def _insert(self, base: str, values: Mapping[str, Any]) -> None:
        query, args = configure_insert_query(base, values)
        if self.data_retriever.write_in_db(query, *args) == 0:
            raise RequestError("No data was inserted")

    def _update(self, base: str, params: Mapping[str, Any], values: Mapping[str, Any]) -> None:
        query, args = configure_update_query(base, params, values)
        if self.data_retriever.write_in_db(query, *args) == 0:
            raise RequestError("No data was updated")

    def insert_repository(self, repository: Mapping[str, Any]) -> None:
        """Insert a repository; it needs a URL and a creation time."""
        if not repository.get("repositoryURL") or not repository.get("createdAt"):
            raise RequestError("Empty repository data")
        self._insert(
            "INSERT into repository",
            {
                "repositoryURL": repository["repositoryURL"],
                "createdAt": repository["createdAt"],
            },
        )

    def insert_security_test(self, security_test: Mapping[str, Any]) -> None:
        """Insert a security test."""
        if _is_empty(security_test, _SECURITY_TEST_FIELDS):
            raise RequestError("Empty SecurityTest data")
        self._insert('INSERT into "securityTest"', _pick(security_test, _SECURITY_TEST_FIELDS))

    def insert_analysis(self, analysis: Mapping[str, Any]) -> None:
        """Insert a new analysis; it needs a repository URL."""
        if not analysis.get("repositoryURL"):
            raise RequestError("Empty Analysis data")
        values = {key: analysis.get(key) for key in _ANALYSIS_INSERT_FIELDS}
        self._insert("INSERT into analysis", self.configure_analysis_data(values))

    def insert_user(self, user: Mapping[str, Any]) -> None:
        """Insert a user."""
        if _is_empty(user, _USER_FIELDS):
            raise RequestError("Empty User data")
        self._insert('INSERT into "user"', _pick(user, _USER_FIELDS))

    def insert_access_token(self, access_token: Mapping[str, Any]) -> None:
        """Insert an access token."""
        if _is_empty(access_token, _ACCESS_RECORD_FIELDS):
            raise RequestError("Empty DBToken data")
        self._insert('INSERT into "accessToken"', _pick(access_token, _ACCESS_RECORD_FIELDS))

    @staticmethod
    def _check_update(params: Mapping[str, Any], update_is_empty: bool) -> None:
        if update_is_empty:
            raise RequestError("Empty fields to be updated")
        if not params:
            raise RequestError("Empty fields to search")

    def update_one_repository(
        self, params: Mapping[str, Any], update: Mapping[str, Any]
    ) -> None:
        """Update the repository matching ``params``."""
        self._check_update(params, not update)
        self._update("UPDATE repository", params, update)

    def upsert_one_security_test(
        self, params: Mapping[str, Any], security_test: Mapping[str, Any]
    ) -> int:
        """Insert a security test or update the one clashing on ``params``' keys."""
        self._check_update(params, _is_empty(security_test, _SECURITY_TEST_FIELDS))
        query, args = configure_upsert_query(
            'INSERT into "securityTest"', params, _pick(security_test, _SECURITY_TEST_FIELDS)
        )
        affected = self.data_retriever.write_in_db(query, *args)
        if affected == 0:
            raise RequestError("No data was updated")
        return affected

    def update_one_analysis(self, params: Mapping[str, Any], update: Mapping[str, Any]) -> None:
        """Update the analysis matching ``params``."""
        self._check_update(params, not update)
        self._update("UPDATE analysis", params, self.configure_analysis_data(update))

    def update_one_user(self, params: Mapping[str, Any], user: Mapping[str, Any]) -> None:
        """Replace the fields of the user matching ``params``."""
        self._check_update(params, _is_empty(user, _USER_FIELDS))
        self._update('UPDATE "user"', params, _pick(user, _USER_FIELDS))

    def update_one_analysis_container(
        self, params: Mapping[str, Any], update: Mapping[str, Any]
    ) -> None:
        """Update the containers and results of the analysis matching ``params``."""
        self._check_update(params, not update)
        self._update("UPDATE analysis", params, self.configure_analysis_data(update))

    def update_one_access_token(
        self, params: Mapping[str, Any], access_token: Mapping[str, Any]
    ) -> None:
        """Replace the fields of the access token matching ``params``."""
        self._check_update(params, _is_empty(access_token, _ACCESS_RECORD_FIELDS))
        self._update('UPDATE "accessToken"', params, _pick(access_token, _ACCESS_RECORD_FIELDS))

    def get_metric_by_type(
        self, metric_type: str, query_string_params: Mapping[str, Sequence[str]]
    ) -> Any:
        """Metrics are not available on Postgres; always raises, naming the request."""
        requested = ", ".join(sorted(query_string_params))
        detail = f"{metric_type}({requested})"
        raise RequestError(f"Function not supported yet in postgres: {detail}")

    def configure_analysis_data(self, analysis: Mapping[str, Any]) -> Record:
        """Return analysis values with arrays and nested records in Postgres form.

        Commit authors become a Postgres array; containers, results and codes
        become JSON bytes.
        """
        data = dict(analysis)
        authors = data.get("commitAuthors")
        if isinstance(authors, (list, tuple)):
            data["commitAuthors"] = self.data_retriever.pq_array(list(authors))
        for key in ("containers", "codes"):
            if isinstance(data.get(key), (list, tuple)):
                data[key] = _to_json(list(data[key]))
        if isinstance(data.get("huskyciresults"), Mapping):
            data["huskyciresults"] = _to_json(dict(data["huskyciresults"]))
        return data