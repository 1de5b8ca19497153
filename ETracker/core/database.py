"""
Local SQLite store for transactions and categories.

:class:`Store` owns the single connection to the store file. Opening the store
brings its schema up to date; every statement and every multi-statement unit
runs under one re-entrant lock, so callers on different threads queue instead
of interleaving.

Example:

    .. code-block:: python

        from ETracker.core.database import Store

        with Store() as store:
            store.transactions.insert_transaction(12.5, 'expense', 'Food', 'Lunch', '2024-05-01')
            data = store.export_snapshot()

"""
import contextlib
import dataclasses
import enum
import logging
import os
import pathlib
import sqlite3
import threading
from typing import Callable, Iterator, Optional, Union

from . import migrate
from . import records
from . import snapshot
from .signals import signals
from ..settings import lib
from ..status import status


class Health(enum.StrEnum):
    """Enum for store file health."""
    Missing = 'MISSING'
    Healthy = 'HEALTHY'
    ReadOnly = 'READONLY'
    Error = 'ERROR'


@dataclasses.dataclass(frozen=True)
class StoreHealth:
    """Summary of the store file's condition."""
    exists: bool
    writable: bool
    size: int
    health: Health
    error: str = ''


class Store:
    """Explicitly owned handle on the local store file.

    Args:
        path: Store file path. Defaults to the configured ``db_path``.
        settings: Settings used for the date locale and restore verification.
            Defaults to the application settings.
    """

    def __init__(
            self,
            path: Optional[Union[str, os.PathLike]] = None,
            settings: Optional[lib.SettingsAPI] = None,
    ) -> None:
        self.settings: lib.SettingsAPI = settings if settings is not None else lib.settings
        self.path: pathlib.Path = pathlib.Path(path) if path is not None else self.settings.db_path

        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None
        self.schema_version: Optional[int] = None

        self.transactions = records.TransactionsAPI(self)
        self.categories = records.CategoriesAPI(self)

    def __enter__(self) -> 'Store':
        return self.open()

    def __exit__(self, *args) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def locale(self) -> str:
        """Babel locale used to read non-ISO dates."""
        return self.settings['locale']

    def open(self) -> 'Store':
        """Open the store file and bring its schema up to date.

        Opening an open store does nothing.

        Raises:
            status.MigrationFailedException: If the schema cannot be brought current.
                The store stays closed.
        """
        with self._lock:
            if self._conn is not None:
                return self

            self.path.parent.mkdir(parents=True, exist_ok=True)
            logging.debug(f'Opening store {self.path}')
            conn = sqlite3.connect(str(self.path), timeout=2.0, isolation_level=None, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            try:
                self.schema_version = migrate.ensure_current_schema(conn)
            except BaseException:
                conn.close()
                raise
            self._conn = conn
            logging.info(f'Store opened at schema version {self.schema_version}: {self.path}')
        return self

    def close(self) -> None:
        """Close the connection. Waits for in-flight operations to finish."""
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
            logging.debug(f'Store closed: {self.path}')

    @contextlib.contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Yield the connection with the store lock held.

        Raises:
            status.StoreClosedException: If the store is not open.
        """
        with self._lock:
            if self._conn is None:
                raise status.StoreClosedException(f'{self.path} is not open.')
            yield self._conn

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield the connection inside ``BEGIN IMMEDIATE``.

        Commits when the block exits cleanly and rolls back otherwise. Integrity
        errors raised by the database are re-raised as constraint violations.

        Raises:
            status.StoreClosedException: If the store is not open.
            status.ConstraintViolationException: If a storage constraint rejected a write.
        """
        with self.connection() as conn:
            conn.execute('BEGIN IMMEDIATE')
            try:
                yield conn
            except sqlite3.IntegrityError as ex:
                conn.execute('ROLLBACK')
                raise status.ConstraintViolationException(str(ex)) from ex
            except BaseException:
                conn.execute('ROLLBACK')
                raise
            conn.execute('COMMIT')

    def export_snapshot(self) -> bytes:
        """Return the store file's bytes as of the last committed write.

        Raises:
            status.StoreClosedException: If the store is not open.
            status.SourceMissingException: If the store file does not exist.
        """
        with self.connection():
            return snapshot.export_snapshot(self.path)

    def import_snapshot(
            self,
            data: bytes,
            verify: Optional[bool] = None,
            cancelled: Optional[Callable[[], bool]] = None,
    ) -> None:
        """Replace the store with ``data`` and reopen it at the current schema.

        Args:
            data: Complete store file contents, usually from :meth:`export_snapshot`.
            verify: Check the new file before accepting it. Defaults to the
                ``store.verify_restore`` setting.
            cancelled: Polled until the file is replaced; returning True aborts.

        Raises:
            status.RestoreCancelledException: If cancelled before the file was replaced.
            status.RestoreVerificationFailedException: If the new file was rejected,
                either by verification or when reopening it. The previous file is put back.
        """
        if verify is None:
            verify = self.settings.get_section('store')['verify_restore']

        signals.storeAboutToBeReplaced.emit()
        with self._lock:
            was_open = self.is_open
            if cancelled is not None and cancelled():
                raise status.RestoreCancelledException

            self.close()
            try:
                safety = snapshot.restore_file(
                    self.path, data, verify=verify, cancelled=cancelled, keep_safety_copy=True
                )
            except BaseException:
                if was_open:
                    self.open()
                raise

            try:
                self.open()
            except Exception as ex:
                try:
                    snapshot.reject(self.path, safety, ex)
                finally:
                    if was_open:
                        self.open()
            snapshot.discard_file(safety)
        logging.info(f'Store replaced from snapshot ({len(data)} bytes).')
        signals.storeReplaced.emit()
        signals.transactionsChanged.emit()
        signals.categoriesChanged.emit()

    def health(self) -> StoreHealth:
        """Report whether the store file exists and can be read and written."""
        with self._lock:
            if not self.path.exists():
                return StoreHealth(exists=False, writable=False, size=0, health=Health.Missing)

            try:
                size = self.path.stat().st_size
                writable = os.access(self.path, os.W_OK)
                with self.connection() if self.is_open else self._probe_connection() as conn:
                    row = conn.execute('PRAGMA quick_check').fetchone()
                if not row or row[0] != 'ok':
                    return StoreHealth(
                        exists=True, writable=writable, size=size, health=Health.Error,
                        error=row[0] if row else 'Integrity check returned nothing.'
                    )
            except (OSError, sqlite3.Error) as ex:
                logging.error(f'Store health check failed: {ex}')
                return StoreHealth(exists=True, writable=False, size=0, health=Health.Error, error=str(ex))

            return StoreHealth(
                exists=True,
                writable=writable,
                size=size,
                health=Health.Healthy if writable else Health.ReadOnly,
            )

    @contextlib.contextmanager
    def _probe_connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(f'{self.path.resolve().as_uri()}?mode=ro', uri=True)
        try:
            yield conn
        finally:
            conn.close()
