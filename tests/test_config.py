import json
import os
from datetime import timedelta

import pytest
from cachetools import TTLCache

from huskyapi.config import (
    APIConfig,
    ConfigError,
    DefaultConfig,
    ExternalCalls,
    SECURITY_TEST_NAMES,
    parse_duration,
)

CONFIG_YAML = """\
enry:
  name: enry
  image: huskyci/enry
  imageTag: "v1"
  cmd: run enry
  type: Enry
  language: Generic
  default: true
  timeOutInSeconds: 60
"""


@pytest.fixture
def clean_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("HUSKYCI_"):
            monkeypatch.delenv(name)
    return monkeypatch


@pytest.fixture
def config(clean_env):
    return DefaultConfig(caller=ExternalCalls())


@pytest.mark.parametrize(
    "text, expected",
    [
        ("5m", timedelta(minutes=5)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("1.5h", timedelta(hours=1, minutes=30)),
        ("-2s", timedelta(seconds=-2)),
        ("0", timedelta(0)),
        ("300ms", timedelta(milliseconds=300)),
        ("1500us", timedelta(microseconds=1500)),
    ],
)
def test_parse_duration(text, expected):
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ["", "5", "abc", "1x", ".s", "+", "5m "])
def test_parse_duration_rejects_invalid(text):
    with pytest.raises(ConfigError):
        parse_duration(text)


@pytest.mark.parametrize("text, expected", [("42", 42), ("-7", -7), ("+3", 3)])
def test_convert_str_to_int(text, expected):
    assert ExternalCalls().convert_str_to_int(text) == expected


@pytest.mark.parametrize("text", ["", " 4", "4.0", "1_000", "abc"])
def test_convert_str_to_int_rejects(text):
    with pytest.raises(ConfigError):
        ExternalCalls().convert_str_to_int(text)


def test_time_duration_in_seconds():
    assert ExternalCalls().get_time_duration_in_seconds(60) == timedelta(seconds=60)


def test_missing_environment_variable_is_empty(clean_env):
    assert ExternalCalls().get_environment_variable("HUSKYCI_NOT_SET") == ""


def test_environment_variable_is_read(clean_env):
    clean_env.setenv("HUSKYCI_API_PORT", "9000")
    assert ExternalCalls().get_environment_variable("HUSKYCI_API_PORT") == "9000"


def test_yaml_config_file(tmp_path):
    (tmp_path / "config.yml").write_text(CONFIG_YAML)
    caller = ExternalCalls()
    caller.set_config_file("config", str(tmp_path))
    assert caller.get_string_from_config_file("enry.imageTag") == "v1"
    assert caller.get_string_from_config_file("ENRY.NAME") == "enry"
    assert caller.get_int_from_config_file("enry.timeOutInSeconds") == 60
    assert caller.get_bool_from_config_file("enry.default") is True


def test_missing_keys_give_zero_values(tmp_path):
    (tmp_path / "config.yml").write_text(CONFIG_YAML)
    caller = ExternalCalls()
    caller.set_config_file("config", str(tmp_path))
    assert caller.get_string_from_config_file("gosec.name") == ""
    assert caller.get_bool_from_config_file("gosec.default") is False
    assert caller.get_int_from_config_file("enry.name.deeper") == 0


def test_json_config_file(tmp_path):
    (tmp_path / "config.json").write_text(json.dumps({"bandit": {"image": "huskyci/bandit"}}))
    caller = ExternalCalls()
    caller.set_config_file("config", str(tmp_path))
    assert caller.get_string_from_config_file("bandit.image") == "huskyci/bandit"


def test_missing_config_file_raises(tmp_path):
    with pytest.raises(ConfigError):
        ExternalCalls().set_config_file("config", str(tmp_path))


def test_config_file_must_be_mapping(tmp_path):
    (tmp_path / "config.yml").write_text("- a\n- b\n")
    with pytest.raises(ConfigError):
        ExternalCalls().set_config_file("config", str(tmp_path))


def test_value_conversions():
    caller = ExternalCalls(
        settings={"a": {"n": "0x10", "b": "t", "f": 2.0, "flag": True, "dec": "12.00"}}
    )
    assert caller.get_int_from_config_file("a.n") == 16
    assert caller.get_bool_from_config_file("a.b") is True
    assert caller.get_string_from_config_file("a.f") == "2"
    assert caller.get_string_from_config_file("a.flag") == "true"
    assert caller.get_int_from_config_file("a.dec") == 12
    assert caller.get_int_from_config_file("a.b") == 0


def test_defaults(config):
    assert config.get_api_port() == 8888
    assert config.get_api_version() == "0.14.0"
    assert config.get_api_release_date() == "2020-06-24"
    assert config.get_allow_origin_value() == "http://127.0.0.1:8888"
    assert config.get_api_use_tls() is False
    assert config.get_graylog_is_dev() is True
    assert config.get_max_open_conns() == 1
    assert config.get_max_idle_conns() == 1
    assert config.get_conn_max_lifetime() == timedelta(hours=1)
    assert config.get_db_port() == 27017
    assert config.get_db_timeout() == timedelta(seconds=60)
    assert config.get_db_pool_limit() == 1000
    assert config.get_docker_api_port() == 2376
    assert config.get_docker_api_tls_verify() == 1


def test_api_port_from_env(config, clean_env):
    clean_env.setenv("HUSKYCI_API_PORT", "9000")
    assert config.get_api_port() == 9000
    clean_env.setenv("HUSKYCI_API_PORT", "abc")
    assert config.get_api_port() == 8888


@pytest.mark.parametrize("value, expected", [("TRUE", True), ("1", True), ("yes", False)])
def test_use_tls(config, clean_env, value, expected):
    clean_env.setenv("HUSKYCI_API_ENABLE_HTTPS", value)
    assert config.get_api_use_tls() is expected


@pytest.mark.parametrize("value, expected", [("False", False), ("0", False), ("no", True)])
def test_graylog_is_dev(config, clean_env, value, expected):
    clean_env.setenv("HUSKYCI_LOGGING_GRAYLOG_DEV", value)
    assert config.get_graylog_is_dev() is expected


@pytest.mark.parametrize("value, expected", [("0", 1000), ("-5", 1000), ("20", 20)])
def test_db_pool_limit(config, clean_env, value, expected):
    clean_env.setenv("HUSKYCI_DATABASE_DB_POOL_LIMIT", value)
    assert config.get_db_pool_limit() == expected


def test_db_durations_from_env(config, clean_env):
    clean_env.setenv("HUSKYCI_DATABASE_DB_CONN_MAXLIFETIME", "3")
    clean_env.setenv("HUSKYCI_DATABASE_DB_TIMEOUT", "30")
    assert config.get_conn_max_lifetime() == timedelta(hours=3)
    assert config.get_db_timeout() == timedelta(seconds=30)


def test_docker_tls_verify_off(config, clean_env):
    clean_env.setenv("HUSKYCI_DOCKERAPI_TLS_VERIFY", "false")
    assert config.get_docker_api_tls_verify() == 0


def test_security_test_config(tmp_path, config):
    config.caller.set_config_file("config", str(tmp_path)) if (
        (tmp_path / "config.yml").write_text(CONFIG_YAML)
    ) else None
    test = config.get_security_test_config("enry")
    assert test.name == "enry"
    assert test.image == "huskyci/enry"
    assert test.image_tag == "v1"
    assert test.cmd == "run enry"
    assert test.type == "Enry"
    assert test.language == "Generic"
    assert test.default is True
    assert test.timeout_in_seconds == 60


def test_cache_default_expiration(config):
    cache = config.get_cache()
    assert cache.ttl == timedelta(minutes=5).total_seconds()


def test_cache_expiration_from_env(config, clean_env):
    clean_env.setenv("HUSKYCI_CACHE_DEFAULT_EXPIRATION", "1m")
    cache = config.get_cache()
    cache["key"] = "value"
    assert cache.ttl == timedelta(minutes=1).total_seconds()
    assert cache["key"] == "value"


def test_cache_without_expiration(config, clean_env):
    clean_env.setenv("HUSKYCI_CACHE_DEFAULT_EXPIRATION", "0")
    cache = config.get_cache()
    cache["key"] = "value"
    assert not isinstance(cache, TTLCache)
    assert cache["key"] == "value"


def test_get_api_config(tmp_path, config, clean_env):
    (tmp_path / "config.yml").write_text(CONFIG_YAML)
    clean_env.chdir(tmp_path)
    clean_env.setenv("HUSKYCI_DOCKERAPI_ADDR", "dockerhost otherhost")
    clean_env.setenv("HUSKYCI_DATABASE_TYPE", "Postgres")
    clean_env.setenv("HUSKYCI_DATABASE_DB_NAME", "huskydb")
    result = config.get_api_config()
    assert isinstance(result, APIConfig)
    assert result.docker_hosts_config.address == "dockerhost"
    assert result.docker_hosts_config.host == "dockerhost:2376"
    assert result.db_config.database_name == "huskydb"
    assert result.database_type == "postgres"
    assert set(result.security_tests) == set(SECURITY_TEST_NAMES)
    assert result.security_tests["enry"].image_tag == "v1"
    assert result.security_tests["gosec"].name == ""


def test_api_config_is_built_once(tmp_path, config, clean_env):
    (tmp_path / "config.yml").write_text(CONFIG_YAML)
    clean_env.chdir(tmp_path)
    first = config.get_api_config()
    clean_env.setenv("HUSKYCI_API_PORT", "9000")
    second = config.get_api_config()
    assert second is first
    assert second.port == 8888
    assert second.database_type == "mongo"


def test_get_api_config_without_file(tmp_path, config, clean_env):
    clean_env.chdir(tmp_path)
    with pytest.raises(ConfigError):
        config.get_api_config()