"""Backup and restore of the local store through Google Drive.

:class:`BackupAPI` combines the store's snapshot export and import with the
Drive transport and the credential manager. Operations that find no usable
credentials emit ``signals.authenticationRequested`` and return ``None``; the
caller signs in and repeats the whole call.

:class:`BackupWorker` runs any of these operations off the GUI thread.
"""

import logging
import threading
from typing import Any, Callable, List, Optional

from PySide6 import QtCore

from . import drive
from .auth import auth_manager, AuthExpiredError, AuthManager
from .database import Store
from .signals import signals


class BackupAPI:
    """Back up the store to Google Drive and restore it from there.

    Args:
        store: The open store to export from and import into.
        transport: Drive transport. Defaults to :class:`drive.DriveTransport`.
        auth: Credential manager. Defaults to the application's manager.
    """

    def __init__(
            self,
            store: Store,
            transport: Optional[drive.DriveTransport] = None,
            auth: Optional[AuthManager] = None,
    ) -> None:
        self.store = store
        self.transport = transport or drive.DriveTransport()
        self.auth = auth or auth_manager

    @property
    def prefix(self) -> str:
        return self.store.settings.get_section('backup')['prefix']

    def _credentials(self) -> Optional[Any]:
        try:
            return self.auth.get_valid_credentials()
        except AuthExpiredError as ex:
            logging.info(f'Sign-in required: {ex}')
            signals.authenticationRequested.emit()
            return None

    def backup(self) -> Optional[str]:
        """Upload a snapshot of the store and return the new Drive file id.

        Returns:
            str: The Drive file id, or None if a sign-in is required first.

        Raises:
            status.SourceMissingException: If there is no store file yet.
            status.ServiceUnavailableException: If the upload failed.
        """
        creds = self._credentials()
        if creds is None:
            return None

        data = self.store.export_snapshot()
        filename = drive.backup_filename(self.prefix)
        remote_id = self.transport.upload(filename, data, creds)

        signals.backupUploaded.emit(remote_id)
        return remote_id

    def list_backups(self) -> Optional[List[drive.RemoteBackup]]:
        """Return the available backups, newest first, or None if a sign-in is required."""
        creds = self._credentials()
        if creds is None:
            return None
        return self.transport.list(creds, self.prefix)

    def restore(
            self,
            remote_id: str,
            verify: Optional[bool] = None,
            cancelled: Optional[Callable[[], bool]] = None,
    ) -> Optional[str]:
        """Download a backup and replace the store with it.

        Args:
            remote_id: Drive file id of the backup.
            verify: Verify the downloaded file before accepting it. Defaults to
                the ``store.verify_restore`` setting.
            cancelled: Polled until the store file is replaced.

        Returns:
            str: ``remote_id``, or None if a sign-in is required first.

        Raises:
            status.ServiceUnavailableException: If the download failed.
            status.RestoreCancelledException: If cancelled before the store changed.
            status.RestoreVerificationFailedException: If the backup was rejected.
        """
        creds = self._credentials()
        if creds is None:
            return None

        data = self.transport.download(remote_id, creds)
        self.store.import_snapshot(data, verify=verify, cancelled=cancelled)

        logging.info(f'Store restored from backup {remote_id}.')
        signals.backupRestored.emit(remote_id)
        return remote_id

    def restore_latest(
            self,
            verify: Optional[bool] = None,
            cancelled: Optional[Callable[[], bool]] = None,
    ) -> Optional[drive.RemoteBackup]:
        """Restore the most recently modified backup.

        Returns:
            drive.RemoteBackup: The restored backup, or None if there are no
            backups or a sign-in is required first.
        """
        backups = self.list_backups()
        if not backups:
            if backups is not None:
                logging.info('No backups found in Google Drive.')
            return None

        latest = backups[0]
        logging.debug(f'Latest backup is {latest.name} ({latest.modified_time}).')
        if self.restore(latest.id, verify=verify, cancelled=cancelled) is None:
            return None
        return latest


class BackupWorker(QtCore.QThread):
    """
    Worker thread running a blocking backup operation once.

    Args:
        func: The operation to run, usually a :class:`BackupAPI` method.
        cancellable: Pass the worker's cancel check to ``func`` as ``cancelled``.

    Signals:
        resultReady (object): Emitted with the function's result on success.
        errorOccurred (object): Emitted with the exception on failure.
    """
    resultReady = QtCore.Signal(object)
    errorOccurred = QtCore.Signal(object)

    def __init__(self, func: Callable[..., Any], *args: Any, cancellable: bool = False, **kwargs: Any) -> None:
        super().__init__()
        self.func = func
        self.args = args
        self.kwargs = kwargs

        self._cancel = threading.Event()
        if cancellable:
            self.kwargs['cancelled'] = self.is_cancelled

    def request_cancel(self) -> None:
        """Ask the operation to stop. Honoured only before the store file is replaced."""
        self._cancel.set()

    def is_cancelled(self) -> bool:
        return self._cancel.is_set()

    def run(self) -> None:
        try:
            result = self.func(*self.args, **self.kwargs)
        except AuthExpiredError as ex:
            signals.authenticationRequested.emit()
            self.errorOccurred.emit(ex)
            return
        except Exception as ex:
            logging.error(f'Backup operation failed: {ex}')
            self.errorOccurred.emit(ex)
            return
        self.resultReady.emit(result)
