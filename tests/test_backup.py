# tests/test_backup.py
"""
Tests for ETracker.core.backup
(backup, listing, restore and restore-latest against an in-memory transport).

Run:
    python -m unittest tests.test_backup
"""
import datetime
from typing import Dict, List, Optional

from ETracker.core import drive
from ETracker.core.auth import AuthExpiredError
from ETracker.core.backup import BackupAPI, BackupWorker
from ETracker.core.drive import RemoteBackup
from ETracker.core.signals import signals
from ETracker.status import status
from tests.base import BaseTestCase, capture


class FakeTransport:
    """Keeps uploaded files in memory."""

    def __init__(self) -> None:
        self.files: Dict[str, bytes] = {}
        self.meta: Dict[str, RemoteBackup] = {}
        self.calls: List[str] = []

    def add(self, remote_id: str, name: str, modified_time: str, data: bytes) -> None:
        self.files[remote_id] = data
        self.meta[remote_id] = RemoteBackup(remote_id, name, modified_time, len(data))

    def upload(self, filename: str, data: bytes, creds) -> str:
        self.calls.append('upload')
        remote_id = f'id{len(self.files) + 1}'
        self.add(remote_id, filename, f'2024-01-0{len(self.files) + 1}T00:00:00.000Z', data)
        return remote_id

    def list(self, creds, name_prefix: str = drive.DEFAULT_PREFIX) -> List[RemoteBackup]:
        self.calls.append('list')
        items = [m for m in self.meta.values() if m.name.startswith(name_prefix)]
        return sorted(items, key=lambda m: m.modified_time, reverse=True)

    def download(self, remote_id: str, creds) -> bytes:
        self.calls.append('download')
        if remote_id not in self.files:
            raise status.ServiceUnavailableException('Download failed: file not found (HTTP 404).')
        return self.files[remote_id]


class FakeAuth:

    def __init__(self, creds: Optional[object] = 'token') -> None:
        self.creds = creds

    def get_valid_credentials(self):
        if self.creds is None:
            raise AuthExpiredError('No credentials found; interactive authentication required')
        return self.creds


class BackupTests(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.transport = FakeTransport()
        self.auth = FakeAuth()
        self.api = BackupAPI(self.store, transport=self.transport, auth=self.auth)

    def test_backup_uploads_store_snapshot(self):
        self.store.transactions.insert_transaction(5, 'expense', 'Food', '', '2024-01-01')
        with capture(signals.backupUploaded) as uploaded:
            remote_id = self.api.backup()

        self.assertEqual(uploaded, [(remote_id,)])
        self.assertEqual(self.transport.files[remote_id], self.store.path.read_bytes())
        name = self.transport.meta[remote_id].name
        self.assertRegex(name, r'^expense_backup_\d{4}-\d{2}-\d{2}\.db$')

    def test_backup_uses_configured_prefix(self):
        self.settings.set_section('backup', {'prefix': 'ledger_'})
        remote_id = self.api.backup()
        self.assertTrue(self.transport.meta[remote_id].name.startswith('ledger_'))

    def test_without_credentials_authentication_is_requested(self):
        self.auth.creds = None
        with capture(signals.authenticationRequested) as requested:
            self.assertIsNone(self.api.backup())
            self.assertIsNone(self.api.list_backups())
            self.assertIsNone(self.api.restore('id1'))
            self.assertIsNone(self.api.restore_latest())
        self.assertEqual(len(requested), 4)
        self.assertEqual(self.transport.calls, [])

    def test_list_backups(self):
        self.transport.add('a', 'expense_backup_2024-01-01.db', '2024-01-01T10:00:00.000Z', b'1')
        self.transport.add('b', 'expense_backup_2024-02-01.db', '2024-02-01T10:00:00.000Z', b'2')
        self.transport.add('c', 'other_2024-03-01.db', '2024-03-01T10:00:00.000Z', b'3')
        self.assertEqual([b.id for b in self.api.list_backups()], ['b', 'a'])

    def test_restore(self):
        self.store.transactions.insert_transaction(5, 'expense', 'Food', '', '2024-01-01')
        remote_id = self.api.backup()
        self.store.transactions.insert_transaction(6, 'expense', 'Food', '', '2024-01-02')

        with capture(signals.backupRestored) as restored:
            self.assertEqual(self.api.restore(remote_id), remote_id)

        self.assertEqual(restored, [(remote_id,)])
        records = self.store.transactions.list_transactions()
        self.assertEqual([r.amount for r in records], [5.0])

    def test_restore_of_bad_backup_keeps_store(self):
        self.store.transactions.insert_transaction(5, 'expense', 'Food', '', '2024-01-01')
        self.transport.add('bad', 'expense_backup_2024-01-01.db', '2024-01-01T00:00:00.000Z', b'junk' * 300)
        with self.assertRaises(status.RestoreVerificationFailedException):
            self.api.restore('bad', verify=True)
        self.assertEqual(len(self.store.transactions.list_transactions()), 1)

    def test_download_failure_leaves_store_open(self):
        with self.assertRaises(status.ServiceUnavailableException):
            self.api.restore('missing')
        self.assertTrue(self.store.is_open)

    def test_restore_latest_picks_newest(self):
        self.store.transactions.insert_transaction(1, 'expense', 'Food', '', '2024-01-01')
        old = self.store.export_snapshot()
        self.store.transactions.insert_transaction(2, 'expense', 'Food', '', '2024-01-02')
        new = self.store.export_snapshot()
        self.store.transactions.insert_transaction(3, 'expense', 'Food', '', '2024-01-03')

        self.transport.add('old', 'expense_backup_2024-01-01.db', '2024-01-01T09:00:00.000Z', old)
        self.transport.add('new', 'expense_backup_2024-01-02.db', '2024-01-02T09:00:00.000Z', new)

        latest = self.api.restore_latest()
        self.assertEqual(latest.id, 'new')
        self.assertEqual(len(self.store.transactions.list_transactions()), 2)

    def test_restore_latest_without_backups(self):
        self.assertIsNone(self.api.restore_latest())
        self.assertNotIn('download', self.transport.calls)


class BackupWorkerTests(BaseTestCase):

    def test_result_is_emitted(self):
        worker = BackupWorker(lambda a, b=0: a + b, 1, b=2)
        with capture(worker.resultReady) as results, capture(worker.errorOccurred) as errors:
            worker.run()
        self.assertEqual(results, [(3,)])
        self.assertEqual(errors, [])

    def test_error_is_emitted_once(self):
        calls = []

        def _fail():
            calls.append(1)
            raise status.ServiceUnavailableException('offline')

        worker = BackupWorker(_fail)
        with capture(worker.errorOccurred) as errors:
            worker.run()
        self.assertEqual(len(calls), 1)
        self.assertIsInstance(errors[0][0], status.ServiceUnavailableException)

    def test_auth_expired_requests_authentication(self):
        def _expired():
            raise AuthExpiredError('sign in')

        worker = BackupWorker(_expired)
        with capture(signals.authenticationRequested) as requested, capture(worker.errorOccurred) as errors:
            worker.run()
        self.assertEqual(len(requested), 1)
        self.assertIsInstance(errors[0][0], AuthExpiredError)

    def test_cancellable_worker_passes_cancel_check(self):
        received = {}

        def _operation(cancelled=None):
            received['before'] = cancelled()
            worker.request_cancel()
            received['after'] = cancelled()

        worker = BackupWorker(_operation, cancellable=True)
        worker.run()
        self.assertEqual(received, {'before': False, 'after': True})

    def test_cancelled_restore_through_worker(self):
        transport = FakeTransport()
        api = BackupAPI(self.store, transport=transport, auth=FakeAuth())
        self.store.transactions.insert_transaction(1, 'expense', 'Food', '', '2024-01-01')
        remote_id = api.backup()
        self.store.transactions.insert_transaction(2, 'expense', 'Food', '', '2024-01-02')

        worker = BackupWorker(api.restore, remote_id, cancellable=True)
        worker.request_cancel()
        with capture(worker.errorOccurred) as errors:
            worker.run()
        self.assertIsInstance(errors[0][0], status.RestoreCancelledException)
        self.assertEqual(len(self.store.transactions.list_transactions()), 2)


class BackupFilenameTests(BaseTestCase):

    def test_backup_filename(self):
        self.assertEqual(
            drive.backup_filename(day=datetime.date(2024, 3, 9)),
            'expense_backup_2024-03-09.db'
        )
        self.assertEqual(drive.backup_filename('x_', datetime.date(2024, 3, 9)), 'x_2024-03-09.db')
