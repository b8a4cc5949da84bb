"""API configuration read from environment variables and a config file."""

from __future__ import annotations

import json
import os
import re
import sys
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from fractions import Fraction
from pathlib import Path
from typing import Any, Mapping, Protocol

import yaml
from cachetools import Cache, TTLCache

API_VERSION = "0.14.0"
API_RELEASE_DATE = "2020-06-24"

DEFAULT_API_PORT = 8888
DEFAULT_ALLOW_ORIGIN = "http://127.0.0.1:8888"
DEFAULT_DB_PORT = 27017
DEFAULT_DB_TIMEOUT_SECONDS = 60
DEFAULT_DB_POOL_LIMIT = 1000
DEFAULT_MAX_OPEN_CONNS = 1
DEFAULT_MAX_IDLE_CONNS = 1
DEFAULT_DOCKER_API_PORT = 2376
DEFAULT_CACHE_EXPIRATION = timedelta(minutes=5)

SECURITY_TEST_NAMES = (
    "enry",
    "gitauthors",
    "gosec",
    "bandit",
    "brakeman",
    "npmaudit",
    "yarnaudit",
    "spotbugs",
    "gitleaks",
    "safety",
    "tfsec",
)

_CONFIG_EXTENSIONS = ("json", "yaml", "yml")
_DB_ENV_PREFIX = "HUSKYCI_DATABASE_DB_"
_DB_LOGIN_FIELDS = ("username", "password")
_DECIMAL_INT = re.compile(r"[+-]?[0-9]+")
_ZERO_DECIMAL = re.compile(r"([+-]?[0-9]+)\.0*")
_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})

_NANOSECONDS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_DURATION_PART = re.compile(r"([0-9]*)(?:\.([0-9]*))?(ns|us|µs|μs|ms|s|m|h)")


class ConfigError(ValueError):
    """Raised when a configuration value or file cannot be read."""


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``"1h30m"``, ``"300ms"`` or ``"-2.5s"``."""
    body = text
    sign = 1
    if body[:1] in ("+", "-"):
        sign = -1 if body[0] == "-" else 1
        body = body[1:]
    if body == "0":
        return timedelta(0)
    if not body:
        raise ConfigError(f"invalid duration {text!r}")
    total = Fraction(0)
    position = 0
    while position < len(body):
        match = _DURATION_PART.match(body, position)
        if match is None:
            raise ConfigError(f"invalid duration {text!r}")
        whole, fraction, unit = match.groups()
        if not whole and not fraction:
            raise ConfigError(f"invalid duration {text!r}")
        value = Fraction(int(whole or "0"))
        if fraction:
            value += Fraction(int(fraction), 10 ** len(fraction))
        total += value * _NANOSECONDS[unit]
        position = match.end()
    return timedelta(microseconds=float(sign * total / 1000))


def _to_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        text = repr(value)
        return text[:-2] if text.endswith(".0") else text
    return ""


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value in _TRUE_WORDS
    return False


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if not isinstance(value, str):
        return 0
    text = value
    zero_decimal = _ZERO_DECIMAL.fullmatch(text)
    if zero_decimal:
        text = zero_decimal.group(1)
    sign = ""
    if text[:1] in ("+", "-"):
        sign, text = text[0], text[1:]
    if not text or text.strip() != text or text[0] in "+-":
        return 0
    try:
        if text[:2].lower() in ("0x", "0b", "0o"):
            number = int(text, 0)
        elif len(text) > 1 and text.startswith("0"):
            number = int(text, 8)
        else:
            number = int(text, 10)
    except ValueError:
        return 0
    return -number if sign == "-" else number


@dataclass
class DBConfig:
    """Connection settings of the database."""

    address: str = ""
    database_name: str = ""
    username: str = ""
    password: str = ""
    port: int = DEFAULT_DB_PORT
    timeout: timedelta = timedelta(seconds=DEFAULT_DB_TIMEOUT_SECONDS)
    pool_limit: int = DEFAULT_DB_POOL_LIMIT
    max_open_conns: int = DEFAULT_MAX_OPEN_CONNS
    max_idle_conns: int = DEFAULT_MAX_IDLE_CONNS
    conn_max_lifetime: timedelta = timedelta(hours=1)


@dataclass
class DockerHostsConfig:
    """Where the Docker API that runs the security tests lives."""

    address: str = ""
    docker_api_port: int = DEFAULT_DOCKER_API_PORT
    path_certificate: str = ""
    host: str = ""
    tls_verify: int = 1


@dataclass
class GraylogConfig:
    """Log shipping settings."""

    address: str = ""
    protocol: str = ""
    app_name: str = ""
    tag: str = ""
    development_env: bool = True


@dataclass
class SecurityTestConfig:
    """How one security test container is run."""

    name: str = ""
    image: str = ""
    image_tag: str = ""
    cmd: str = ""
    type: str = ""
    language: str = ""
    default: bool = False
    timeout_in_seconds: int = 0


@dataclass
class APIConfig:
    """The complete configuration of the API."""

    port: int
    version: str
    release_date: str
    allow_origin_value: str
    use_tls: bool
    git_private_ssh_key: str
    graylog_config: GraylogConfig
    db_config: DBConfig
    docker_hosts_config: DockerHostsConfig
    security_tests: dict[str, SecurityTestConfig]
    database_type: str
    cache: Cache


@dataclass
class ExternalCalls:
    """Reads the environment and a configuration file."""

    settings: dict[str, Any] = field(default_factory=dict)

    def set_config_file(self, config_name: str, config_path: str) -> None:
        """Load ``config_name`` (json, yaml or yml) from the ``config_path`` directory."""
        directory = Path(config_path)
        for extension in _CONFIG_EXTENSIONS:
            candidate = directory / f"{config_name}.{extension}"
            if candidate.is_file():
                break
        else:
            raise ConfigError(f'Config File "{config_name}" Not Found in "[{config_path}]"')
        try:
            text = candidate.read_text(encoding="utf-8")
            data = json.loads(text) if extension == "json" else yaml.safe_load(text)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            raise ConfigError(f"Cannot read {candidate}: {exc}") from exc
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"{candidate} does not hold a mapping")
        self.settings = data

    def get_environment_variable(self, env_name: str) -> str:
        """Return an environment variable, or an empty string if it is unset."""
        return os.environ.get(env_name, "")

    def convert_str_to_int(self, text: str) -> int:
        """Parse a plain decimal integer; raise :class:`ConfigError` otherwise."""
        if not _DECIMAL_INT.fullmatch(text):
            raise ConfigError(f"invalid integer {text!r}")
        number = int(text)
        if not -(2**63) <= number < 2**63:
            raise ConfigError(f"integer {text!r} out of range")
        return number

    def get_time_duration_in_seconds(self, duration: int) -> timedelta:
        """Return ``duration`` seconds as a timedelta."""
        return timedelta(seconds=duration)

    def _lookup(self, key: str) -> Any:
        node: Any = self.settings
        for part in key.split("."):
            if not isinstance(node, Mapping):
                return None
            wanted = part.lower()
            node = next((value for name, value in node.items() if str(name).lower() == wanted), None)
        return node

    def get_string_from_config_file(self, key: str) -> str:
        """Return a dotted key of the config file as text, or ``""``."""
        return _to_string(self._lookup(key))

    def get_bool_from_config_file(self, key: str) -> bool:
        """Return a dotted key of the config file as a boolean, or False."""
        return _to_bool(self._lookup(key))

    def get_int_from_config_file(self, key: str) -> int:
        """Return a dotted key of the config file as an integer, or 0."""
        return _to_int(self._lookup(key))


class _Caller(Protocol):
    def set_config_file(self, config_name: str, config_path: str) -> None: ...

    def get_environment_variable(self, env_name: str) -> str: ...

    def convert_str_to_int(self, text: str) -> int: ...

    def get_time_duration_in_seconds(self, duration: int) -> timedelta: ...

    def get_string_from_config_file(self, key: str) -> str: ...

    def get_bool_from_config_file(self, key: str) -> bool: ...

    def get_int_from_config_file(self, key: str) -> int: ...


@dataclass
class DefaultConfig:
    """Builds the API configuration through a caller of external lookups."""

    caller: _Caller = field(default_factory=ExternalCalls)
    _config: APIConfig | None = field(default=None, init=False, repr=False, compare=False)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def _env(self, name: str) -> str:
        return self.caller.get_environment_variable(name)

    def _env_int(self, name: str) -> int | None:
        try:
            return self.caller.convert_str_to_int(self._env(name))
        except ConfigError:
            return None

    def get_api_config(self) -> APIConfig:
        """Read ``config`` from the working directory and return the configuration."""
        self.caller.set_config_file("config", ".")
        return self.build_api_config()

    def build_api_config(self) -> APIConfig:
        """Build the configuration on first use and return the same one afterwards."""
        with self._lock:
            if self._config is None:
                self._config = APIConfig(
                    port=self.get_api_port(),
                    version=self.get_api_version(),
                    release_date=self.get_api_release_date(),
                    allow_origin_value=self.get_allow_origin_value(),
                    use_tls=self.get_api_use_tls(),
                    git_private_ssh_key=self._env("HUSKYCI_API_GIT_PRIVATE_SSH_KEY"),
                    graylog_config=self._graylog_config(),
                    db_config=self._db_config(),
                    docker_hosts_config=self._docker_hosts_config(),
                    security_tests={
                        name: self.get_security_test_config(name) for name in SECURITY_TEST_NAMES
                    },
                    database_type=self._database_type(),
                    cache=self.get_cache(),
                )
            return self._config

    def get_api_port(self) -> int:
        """Port the API listens on; HUSKYCI_API_PORT or 8888."""
        port = self._env_int("HUSKYCI_API_PORT")
        return DEFAULT_API_PORT if port is None else port

    def get_api_version(self) -> str:
        """Current API version."""
        return API_VERSION

    def get_api_release_date(self) -> str:
        """Release date of the current API version."""
        return API_RELEASE_DATE

    def get_allow_origin_value(self) -> str:
        """CORS allowed origin; HUSKYCI_API_ALLOW_ORIGIN_CORS or the local API."""
        return self._env("HUSKYCI_API_ALLOW_ORIGIN_CORS") or DEFAULT_ALLOW_ORIGIN

    def get_api_use_tls(self) -> bool:
        """Whether the API serves HTTPS, from HUSKYCI_API_ENABLE_HTTPS."""
        option = self._env("HUSKYCI_API_ENABLE_HTTPS")
        return option.lower() == "true" or option == "1"

    def _graylog_config(self) -> GraylogConfig:
        return GraylogConfig(
            address=self._env("HUSKYCI_LOGGING_GRAYLOG_ADDR"),
            protocol=self._env("HUSKYCI_LOGGING_GRAYLOG_PROTO"),
            app_name=self._env("HUSKYCI_LOGGING_GRAYLOG_APP_NAME"),
            tag=self._env("HUSKYCI_LOGGING_GRAYLOG_TAG"),
            development_env=self.get_graylog_is_dev(),
        )

    def get_graylog_is_dev(self) -> bool:
        """Whether logs go to stdout only; false only if HUSKYCI_LOGGING_GRAYLOG_DEV says so."""
        option = self._env("HUSKYCI_LOGGING_GRAYLOG_DEV")
        return not (option.lower() == "false" or option == "0")

    def _db_config(self) -> DBConfig:
        login = {
            name: self._env(f"{_DB_ENV_PREFIX}{name.upper()}") for name in _DB_LOGIN_FIELDS
        }
        return DBConfig(
            address=self._env(f"{_DB_ENV_PREFIX}ADDR"),
            database_name=self._env(f"{_DB_ENV_PREFIX}NAME"),
            port=self.get_db_port(),
            timeout=self.get_db_timeout(),
            pool_limit=self.get_db_pool_limit(),
            max_open_conns=self.get_max_open_conns(),
            max_idle_conns=self.get_max_idle_conns(),
            conn_max_lifetime=self.get_conn_max_lifetime(),
            **login,
        )

    def get_max_open_conns(self) -> int:
        """Maximum open database connections, from HUSKYCI_DATABASE_DB_MAX_OPEN_CONNS."""
        value = self._env_int("HUSKYCI_DATABASE_DB_MAX_OPEN_CONNS")
        return DEFAULT_MAX_OPEN_CONNS if value is None else value

    def get_max_idle_conns(self) -> int:
        """Maximum idle database connections, from HUSKYCI_DATABASE_DB_MAX_IDLE_CONNS."""
        value = self._env_int("HUSKYCI_DATABASE_DB_MAX_IDLE_CONNS")
        return DEFAULT_MAX_IDLE_CONNS if value is None else value

    def get_conn_max_lifetime(self) -> timedelta:
        """Maximum connection lifetime in hours, from HUSKYCI_DATABASE_DB_CONN_MAXLIFETIME."""
        hours = self._env_int("HUSKYCI_DATABASE_DB_CONN_MAXLIFETIME")
        return timedelta(hours=1 if hours is None else hours)

    def get_db_port(self) -> int:
        """Database port, from HUSKYCI_DATABASE_DB_PORT."""
        port = self._env_int("HUSKYCI_DATABASE_DB_PORT")
        return DEFAULT_DB_PORT if port is None else port

    def get_db_timeout(self) -> timedelta:
        """Database connection timeout, from HUSKYCI_DATABASE_DB_TIMEOUT seconds."""
        seconds = self._env_int("HUSKYCI_DATABASE_DB_TIMEOUT")
        if seconds is None:
            seconds = DEFAULT_DB_TIMEOUT_SECONDS
        return self.caller.get_time_duration_in_seconds(seconds)

    def get_db_pool_limit(self) -> int:
        """Connection pool limit, from HUSKYCI_DATABASE_DB_POOL_LIMIT; must be positive."""
        limit = self._env_int("HUSKYCI_DATABASE_DB_POOL_LIMIT")
        if limit is None or limit <= 0:
            return DEFAULT_DB_POOL_LIMIT
        return limit

    def _docker_hosts_config(self) -> DockerHostsConfig:
        port = self.get_docker_api_port()
        address = self._env("HUSKYCI_DOCKERAPI_ADDR").split(" ")[0]
        return DockerHostsConfig(
            address=address,
            docker_api_port=port,
            path_certificate=self._env("HUSKYCI_DOCKERAPI_CERT_PATH"),
            host=f"{address}:{port}",
            tls_verify=self.get_docker_api_tls_verify(),
        )

    def get_docker_api_port(self) -> int:
        """Docker API port, from HUSKYCI_DOCKERAPI_PORT."""
        port = self._env_int("HUSKYCI_DOCKERAPI_PORT")
        return DEFAULT_DOCKER_API_PORT if port is None else port

    def get_docker_api_tls_verify(self) -> int:
        """1 if the Docker API uses TLS, 0 if HUSKYCI_DOCKERAPI_TLS_VERIFY turns it off."""
        option = self._env("HUSKYCI_DOCKERAPI_TLS_VERIFY")
        return 0 if option.lower() == "false" or option == "0" else 1

    def get_security_test_config(self, name: str) -> SecurityTestConfig:
        """Read the settings of security test ``name`` from the config file."""
        caller = self.caller
        return SecurityTestConfig(
            name=caller.get_string_from_config_file(f"{name}.name"),
            image=caller.get_string_from_config_file(f"{name}.image"),
            image_tag=caller.get_string_from_config_file(f"{name}.imageTag"),
            cmd=caller.get_string_from_config_file(f"{name}.cmd"),
            type=caller.get_string_from_config_file(f"{name}.type"),
            language=caller.get_string_from_config_file(f"{name}.language"),
            default=caller.get_bool_from_config_file(f"{name}.default"),
            timeout_in_seconds=caller.get_int_from_config_file(f"{name}.timeOutInSeconds"),
        )

    def _database_type(self) -> str:
        kind = self._env("HUSKYCI_DATABASE_TYPE")
        return "postgres" if kind.lower() == "postgres" else "mongo"

    def get_cache(self) -> Cache:
        """Return a cache whose entries expire after HUSKYCI_CACHE_DEFAULT_EXPIRATION.

        Expired entries are dropped lazily; a non-positive expiration keeps
        entries forever.
        """
        try:
            expiration = parse_duration(self._env("HUSKYCI_CACHE_DEFAULT_EXPIRATION"))
        except ConfigError:
            expiration = DEFAULT_CACHE_EXPIRATION
        seconds = expiration.total_seconds()
        if seconds <= 0:
            return Cache(maxsize=sys.maxsize)
        return TTLCache(maxsize=sys.maxsize, ttl=seconds)