from datetime import timedelta

import pytest

from huskyapi.db.sql import NoDataFoundError, SQLConfig


class FakeSql:
    def __init__(
        self,
        config_db_error=None,
        close_db_error=None,
        config_error=None,
        rows_affected_error=None,
        num_rows_affected=0,
        exec_error=None,
        columns=(),
        columns_error=None,
        scan_error=None,
        num_of_rows=0,
        rows_error=None,
    ):
        self.config_db_error = config_db_error
        self.close_db_error = close_db_error
        self.config_error = config_error
        self.rows_affected_error = rows_affected_error
        self.num_rows_affected = num_rows_affected
        self.exec_error = exec_error
        self.columns = list(columns)
        self.columns_error = columns_error
        self.scan_error = scan_error
        self.num_of_rows = num_of_rows
        self.actual_row = 0
        self.rows_error = rows_error
        self.pool = None
        self.rows_closed = False

    def configure_db(self, address, username, password, db_name):
        if self.config_db_error:
            raise self.config_db_error

    def configure_pool(self, max_open_conns, max_idle_conns, conn_lifetime):
        self.pool = (max_open_conns, max_idle_conns, conn_lifetime)

    def close_db(self):
        if self.close_db_error:
            raise self.close_db_error

    def configure_query(self, query, *args):
        if self.config_error:
            raise self.config_error

    def close_rows(self):
        self.rows_closed = True

    def get_columns(self):
        if self.columns_error:
            raise self.columns_error
        return self.columns

    def has_next_row(self):
        if self.actual_row == self.num_of_rows:
            return False
        self.actual_row += 1
        return True

    def scan_row(self):
        if self.scan_error:
            raise self.scan_error
        return ["teste"] * len(self.columns)

    def check_rows(self):
        if self.rows_error:
            raise self.rows_error

    def exec(self, query, *args):
        if self.exec_error:
            raise self.exec_error

    def get_rows_affected(self):
        if self.rows_affected_error:
            raise self.rows_affected_error
        return self.num_rows_affected


def test_connect_propagates_configure_error():
    error = RuntimeError("The configuration has failed")
    sql_config = SQLConfig(FakeSql(config_db_error=error))
    with pytest.raises(RuntimeError) as info:
        sql_config.connect("test", "test", "test", "test", 1, 1, timedelta(hours=1))
    assert info.value is error


def test_connect_configures_pool():
    fake = FakeSql()
    SQLConfig(fake).connect("test", "test", "test", "test", 1, 1, timedelta(hours=1))
    assert fake.pool == (1, 1, timedelta(hours=1))


def test_close_db_propagates_error():
    error = RuntimeError("Failed during closing DB")
    with pytest.raises(RuntimeError) as info:
        SQLConfig(FakeSql(close_db_error=error)).close_db()
    assert info.value is error


def test_close_db_success():
    assert SQLConfig(FakeSql()).close_db() is None


def test_get_values_configure_query_error():
    error = RuntimeError("Error during get values from DB")
    fake = FakeSql(config_error=error)
    with pytest.raises(RuntimeError) as info:
        SQLConfig(fake).get_values_from_db("blabla", "arg1", "arg2")
    assert info.value is error
    assert fake.rows_closed is False


def test_get_values_columns_error():
    error = RuntimeError("Failed trying to get columns")
    fake = FakeSql(columns_error=error)
    with pytest.raises(RuntimeError) as info:
        SQLConfig(fake).get_values_from_db("blabla", "somearg")
    assert info.value is error
    assert fake.rows_closed is True


def test_get_values_scan_error():
    error = RuntimeError("Failed during row scanning")
    fake = FakeSql(num_of_rows=3, scan_error=error)
    with pytest.raises(RuntimeError) as info:
        SQLConfig(fake).get_values_from_db("blabla", "somearg")
    assert info.value is error


def test_get_values_rows_error():
    error = RuntimeError("Error trying to proccess a row")
    fake = FakeSql(num_of_rows=3, rows_error=error)
    with pytest.raises(RuntimeError) as info:
        SQLConfig(fake).get_values_from_db("blabla", "somearg")
    assert info.value is error
    assert fake.actual_row == fake.num_of_rows


def test_get_values_empty_results():
    fake = FakeSql()
    with pytest.raises(NoDataFoundError) as info:
        SQLConfig(fake).get_values_from_db("blabla", "somearg")
    assert str(info.value) == "No data found"
    assert fake.actual_row == fake.num_of_rows


def test_get_values_returns_rows():
    fake = FakeSql(num_of_rows=3, columns=["column1", "column2"])
    rows = SQLConfig(fake).get_values_from_db("blabla", "somearg")
    assert fake.actual_row == fake.num_of_rows
    assert rows == [
        {"column1": "teste", "column2": "teste"},
        {"column1": "teste", "column2": "teste"},
        {"column1": "teste", "column2": "teste"},
    ]
    assert fake.rows_closed is True


def test_write_in_db_exec_error():
    error = RuntimeError("DB Failed")
    with pytest.raises(RuntimeError) as info:
        SQLConfig(FakeSql(exec_error=error)).write_in_db("bla", "myArgs")
    assert info.value is error


def test_write_in_db_returns_rows_affected():
    assert SQLConfig(FakeSql(num_rows_affected=1)).write_in_db("bla", "myArgs") == 1


def test_write_in_db_rows_affected_error():
    error = RuntimeError("Error trying to get rows")
    with pytest.raises(RuntimeError) as info:
        SQLConfig(FakeSql(rows_affected_error=error)).write_in_db("bla", "myArgs")
    assert info.value is error