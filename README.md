# huskyapi

The core of a security-analysis API server: authentication of API users
against PBKDF2 password hashes, configuration read from environment
variables and a `config.yml` file, building of parameterised Postgres
queries, and MongoDB aggregation pipelines for analysis statistics.

## Installation

```
pip install huskyapi
```

For running the test suite:

```
pip install "huskyapi[test]"
pytest
```

## Modules

| Module | What it holds |
| --- | --- |
| `huskyapi.auth` | `BasicAuthValidator`, `ClientPbkdf2`, `Pbkdf2Caller`, `UserCredentials`, `get_valid_hash_function`, `validate_user`, `AuthError` |
| `huskyapi.config` | `DefaultConfig`, `ExternalCalls`, `APIConfig`, `DBConfig`, `DockerHostsConfig`, `GraylogConfig`, `SecurityTestConfig`, `parse_duration`, `ConfigError` |
| `huskyapi.db.queries` | `configure_query`, `configure_insert_query`, `configure_update_query`, `configure_upsert_query` |
| `huskyapi.db.sql` | `SQLConfig`, `PostgresOperations`, `NoDataFoundError` |
| `huskyapi.db.retriever` | `SQLJSONRetrieve`, `convert_string_to_slice`, `pq_array` |
| `huskyapi.db.requests` | `PostgresRequests`, `RequestError` |
| `huskyapi.db.stats` | `get_metric_query` and the pipeline helpers, `StatsError` |

## Building SQL queries

Search parameters become a `WHERE` clause with numbered placeholders; the
values come back in the same order as the placeholders.

```python
from huskyapi.db.queries import configure_query, configure_insert_query

query, values = configure_query('SELECT * FROM "user"', {"username": "husky"})
# query  -> 'SELECT * FROM "user" WHERE "username" = $1'
# values -> ["husky"]

query, values = configure_insert_query(
    "INSERT into repository",
    {"repositoryURL": "https://git.example.com/app.git", "createdAt": created_at},
)
```

`configure_update_query` builds `SET ... WHERE ...`, and
`configure_upsert_query` adds an `ON CONFLICT (...) DO UPDATE SET` clause.

## Database access

`SQLConfig` drives any object that implements `PostgresOperations`
(connecting, querying, scanning rows, executing writes).
`SQLJSONRetrieve` turns the rows it returns into plain JSON-like values,
splitting Postgres array columns with `convert_string_to_slice`.
`PostgresRequests` offers the repository, security-test, analysis, user
and access-token operations on top of it and raises `RequestError` when
there is nothing to insert, nothing to search for, or no row was written.

## Authentication

`BasicAuthValidator.is_valid_user` looks up a user's stored hash, salt,
iteration count, key length and hash function, hashes the offered
password with PBKDF2 and compares. `validate_user` does the same given a
function that finds a user's credentials by name:

```python
from huskyapi.auth import validate_user

password = "password"
ok = validate_user("husky", password, find_user)
```

Supported hash functions are `sha224`, `sha256`, `sha384`, `sha512`,
`sha3_224`, `sha3_256`, `sha3_384` and `sha3_512`, matched case-insensitively.
Defaults for new credentials come from `HUSKYCI_API_DEFAULT_HASH_FUNCTION`
(`SHA512`), `HUSKYCI_API_DEFAULT_ITERATIONS` (100000) and
`HUSKYCI_API_DEFAULT_KEY_LENGTH` (512).

## Statistics

`get_metric_query` returns the aggregation pipeline for one of the metrics
`language`, `container`, `analysis`, `repository`, `author`, `severity`
and `historyanalysis`. A `time_range` parameter of `today`, `yesterday`,
`last7days` or `last30days` prepends a `finishedAt` filter; any other
metric or range raises `StatsError`.

```python
from datetime import datetime
from huskyapi.db.stats import get_metric_query

pipeline = get_metric_query("analysis", {"time_range": ["last7days"]}, datetime.now())
```

## Configuration

`DefaultConfig().get_api_config()` reads `config.yml` from the current
directory (security test definitions such as `gosec.image` or
`bandit.timeOutInSeconds`) and environment variables such as:

- `HUSKYCI_API_PORT` (default 8888), `HUSKYCI_API_ENABLE_HTTPS`,
  `HUSKYCI_API_ALLOW_ORIGIN_CORS` (default `http://127.0.0.1:8888`)
- `HUSKYCI_DATABASE_TYPE`, `HUSKYCI_DATABASE_DB_ADDR`,
  `HUSKYCI_DATABASE_DB_PORT` (default 27017), `HUSKYCI_DATABASE_DB_TIMEOUT`
  (default 60 seconds), `HUSKYCI_DATABASE_DB_POOL_LIMIT` (default 1000)
- `HUSKYCI_DOCKERAPI_ADDR`, `HUSKYCI_DOCKERAPI_PORT` (default 2376),
  `HUSKYCI_DOCKERAPI_TLS_VERIFY`
- `HUSKYCI_CACHE_DEFAULT_EXPIRATION` (default 5m) and
  `HUSKYCI_CACHE_CLEANUP_INTERVAL` (default 10m), parsed by `parse_duration`

The configuration is built once and shared; `build_api_config` builds a
fresh one.