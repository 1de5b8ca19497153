# tests/test_store.py
"""
Tests for ETracker.core.database.Store
(lifecycle, serialized access from several threads, health report).

Run:
    python -m unittest tests.test_store
"""
import threading
from unittest.mock import patch

from ETracker.core import database, schema
from ETracker.core.database import Health, Store
from ETracker.status import status
from tests.base import BaseTestCase


class LifecycleTests(BaseTestCase):

    def test_default_path_comes_from_settings(self):
        self.assertEqual(self.store.path, self.settings.db_path)
        self.assertEqual(self.store.path.parent, self.settings.db_dir)
        self.assertTrue(self.store.path.exists())

    def test_open_and_close(self):
        self.assertTrue(self.store.is_open)
        self.assertEqual(self.store.schema_version, schema.CURRENT_VERSION)
        self.store.close()
        self.assertFalse(self.store.is_open)
        self.store.close()
        self.store.open()
        self.assertIs(self.store.open(), self.store)
        self.assertTrue(self.store.is_open)

    def test_context_manager(self):
        path = self.tmp_dir / 'ctx.db'
        with Store(path, settings=self.settings) as store:
            self.assertTrue(store.is_open)
            store.transactions.insert_transaction(1, 'expense', 'Food', '', '2024-01-01')
        self.assertFalse(store.is_open)

        with Store(path, settings=self.settings) as store:
            self.assertEqual(len(store.transactions.list_transactions()), 1)

    def test_failed_transaction_is_rolled_back(self):
        with self.assertRaises(RuntimeError):
            with self.store.transaction() as conn:
                conn.execute(
                    'INSERT INTO transactions (amount, type, category, description, date, created_at) '
                    "VALUES (1, 'expense', 'Food', '', '2024-01-01', '')"
                )
                raise RuntimeError('abort')
        self.assertEqual(self.store.transactions.list_transactions(), [])

        with self.store.connection() as conn:
            self.assertFalse(conn.in_transaction)

    def test_integrity_errors_become_constraint_violations(self):
        with self.assertRaises(status.ConstraintViolationException):
            with self.store.transaction() as conn:
                conn.execute("INSERT INTO categories (name, type) VALUES ('x', 'bogus')")

    def test_concurrent_writers_are_serialized(self):
        errors = []

        def _writer(n: int) -> None:
            try:
                for i in range(25):
                    self.store.transactions.insert_transaction(i, 'expense', f'C{n}', '', '2024-01-01')
            except Exception as ex:
                errors.append(ex)

        threads = [threading.Thread(target=_writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        records = self.store.transactions.list_transactions()
        self.assertEqual(len(records), 100)
        self.assertEqual(len({r.id for r in records}), 100)


class HealthTests(BaseTestCase):

    def test_missing(self):
        store = Store(self.tmp_dir / 'none.db', settings=self.settings)
        report = store.health()
        self.assertEqual(report.health, Health.Missing)
        self.assertFalse(report.exists)

    def test_healthy(self):
        report = self.store.health()
        self.assertEqual(report.health, Health.Healthy)
        self.assertTrue(report.exists)
        self.assertTrue(report.writable)
        self.assertGreater(report.size, 0)

    def test_healthy_when_closed(self):
        self.store.close()
        self.assertEqual(self.store.health().health, Health.Healthy)

    def test_read_only(self):
        with patch.object(database.os, 'access', return_value=False):
            report = self.store.health()
        self.assertEqual(report.health, Health.ReadOnly)
        self.assertFalse(report.writable)

    def test_corrupt_file(self):
        path = self.tmp_dir / 'corrupt.db'
        path.write_bytes(b'not a database' * 100)
        report = Store(path, settings=self.settings).health()
        self.assertEqual(report.health, Health.Error)
        self.assertTrue(report.error)
