"""Builders for the parameterised SQL statements sent to Postgres."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any


def _quoted(keys: Iterable[str]) -> str:
    return ", ".join(f'"{key}"' for key in keys)


def _assignments(keys: Iterable[str], start: int) -> list[str]:
    return [f'"{key}" = ${index}' for index, key in enumerate(keys, start)]


def configure_query(query: str, params: Mapping[str, Any]) -> tuple[str, list[Any]]:
    """Append a WHERE clause matching every key of ``params`` to a SELECT query."""
    values = list(params.values())
    if params:
        query = f"{query} WHERE " + " AND ".join(_assignments(params, 1))
    return query, values


def configure_insert_query(query: str, params: Mapping[str, Any]) -> tuple[str, list[Any]]:
    """Complete an INSERT statement with its column list and placeholders."""
    placeholders = ", ".join(f"${index}" for index in range(1, len(params) + 1))
    final = f"{query} ({_quoted(params)}) VALUES ({placeholders})"
    return final, list(params.values())


def configure_update_query(
    query: str,
    search_values: Mapping[str, Any],
    new_values: Mapping[str, Any],
) -> tuple[str, list[Any]]:
    """Complete an UPDATE statement with its SET and WHERE clauses.

    Search values take the first placeholders, new values the ones after them.
    """
    values = [*search_values.values(), *new_values.values()]
    if new_values:
        first_new = len(search_values) + 1
        query = f"{query} SET " + ", ".join(_assignments(new_values, first_new))
    if search_values:
        query = f"{query} WHERE " + " AND ".join(_assignments(search_values, 1))
    return query, values


def configure_upsert_query(
    query: str,
    search_values: Mapping[str, Any],
    new_values: Mapping[str, Any],
) -> tuple[str, list[Any]]:
    """Build an INSERT that updates the conflicting row on a key clash."""
    insert_query, values = configure_insert_query(query, new_values)
    if search_values:
        insert_query = f"{insert_query} ON CONFLICT ({_quoted(search_values)})"
    if new_values:
        updates = ", ".join(f'"{key}" = EXCLUDED."{key}"' for key in new_values)
        insert_query = f"{insert_query} DO UPDATE SET {updates}"
    return insert_query, values