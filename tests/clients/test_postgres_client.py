"""Tests for PostgresClient - pooled connections and explicit transactions."""

import pytest
from uuid import UUID, uuid4

from psycopg2.errors import LockNotAvailable

from clients.postgres_client import _convert_params


class TestConvertParams:
    """UUID parameters are passed to psycopg2 as strings."""

    def test_none_passthrough(self):
        assert _convert_params(None) is None

    def test_nested_uuids_converted(self):
        value = UUID("00000000-0000-0000-0000-000000000001")

        converted = _convert_params((value, [value], {"id": value}, 5))

        assert converted == (str(value), [str(value)], {"id": str(value)}, 5)


class TestPostgresClientInit:
    """Connection pool initialization."""

    def test_creates_pool_with_valid_url(self, db):
        """Valid URL creates working connection pool."""
        result = db.execute_scalar("SELECT 1")
        assert result == 1


class TestExecuteMethods:
    """Query execution methods."""

    def test_execute_returns_list_of_dicts(self, db):
        """execute() returns list of row dicts."""
        results = db.execute("SELECT 1 as num, 'hello' as word")
        assert results == [{"num": 1, "word": "hello"}]

    def test_execute_empty_returns_empty_list(self, db):
        """No matching rows returns [], not None."""
        results = db.execute("SELECT 1 WHERE false")
        assert results == []

    def test_execute_without_result_set(self, db):
        """Statements without RETURNING give []."""
        assert db.execute("INSERT INTO sites (id, name) VALUES (%s, %s)", (uuid4(), "Huye")) == []

    def test_execute_single_no_rows_returns_none(self, db):
        """execute_single() returns None for empty result."""
        result = db.execute_single("SELECT 1 WHERE false")
        assert result is None

    def test_execute_scalar_no_rows_returns_none(self, db):
        """execute_scalar() returns None for empty result."""
        result = db.execute_scalar("SELECT 1 WHERE false")
        assert result is None


class TestTransaction:
    """Unit-of-work semantics."""

    def test_commits_on_clean_exit(self, db):
        site_id = uuid4()

        with db.transaction() as tx:
            tx.execute("INSERT INTO sites (id, name) VALUES (%s, %s)", (site_id, "Huye"))

        assert db.execute_scalar("SELECT name FROM sites WHERE id = %s", (site_id,)) == "Huye"

    def test_rolls_back_on_error(self, db):
        site_id = uuid4()

        with pytest.raises(RuntimeError):
            with db.transaction() as tx:
                tx.execute("INSERT INTO sites (id, name) VALUES (%s, %s)", (site_id, "Huye"))
                raise RuntimeError("boom")

        assert db.execute_single("SELECT id FROM sites WHERE id = %s", (site_id,)) is None

    def test_sets_lock_timeout(self, db):
        with db.transaction(lock_timeout_ms=1500) as tx:
            assert tx.execute_scalar("SHOW lock_timeout") == "1500ms"

    def test_savepoint_keeps_transaction_usable(self, db):
        site_id = uuid4()

        with db.transaction() as tx:
            tx.execute("INSERT INTO sites (id, name) VALUES (%s, %s)", (site_id, "Huye"))
            with pytest.raises(Exception):
                with tx.savepoint("rename_site"):
                    tx.execute("SELECT 1 / 0")
            tx.execute("UPDATE sites SET name = %s WHERE id = %s", ("Huye Hub", site_id))

        assert db.execute_scalar("SELECT name FROM sites WHERE id = %s", (site_id,)) == "Huye Hub"

    def test_row_lock_wait_times_out(self, db):
        site_id = uuid4()
        db.execute("INSERT INTO sites (id, name) VALUES (%s, %s)", (site_id, "Huye"))

        with db.transaction() as holder:
            holder.execute("SELECT id FROM sites WHERE id = %s FOR UPDATE", (site_id,))

            with pytest.raises(LockNotAvailable):
                with db.transaction(lock_timeout_ms=100) as waiter:
                    waiter.execute("SELECT id FROM sites WHERE id = %s FOR UPDATE", (site_id,))
