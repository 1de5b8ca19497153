"""
Snapshot export and import of the whole store file.

Export duplicates the store file and hands back the duplicate's bytes, so slow
uploads never read the live file. Import replaces the store file with incoming
bytes while keeping a uniquely named safety copy of the previous file until the
new one is confirmed; at every step either the old or the new file sits at the
canonical path.

These functions work on paths and expect no open connection to the store file.
:class:`ETracker.core.database.Store` closes and reopens its connection around them.
"""
import logging
import os
import pathlib
import shutil
import sqlite3
import tempfile
import time
from typing import Callable, NoReturn, Optional, Union

from . import migrate
from ..status import status

PathLike = Union[str, os.PathLike]

SIDECAR_SUFFIXES = ('-journal', '-wal', '-shm')
INCOMING_SUFFIX = '.incoming'
PROBE_TABLE = 'restore_probe'


def export_snapshot(path: PathLike) -> bytes:
    """Return a byte-for-byte copy of the store file.

    Args:
        path: Path of the store file.

    Raises:
        status.SourceMissingException: If no store file exists yet.
    """
    path = pathlib.Path(path)
    if not path.exists():
        raise status.SourceMissingException(f'No local database at {path}.')

    with tempfile.TemporaryDirectory(prefix='etracker_export_') as tmp:
        copy_path = pathlib.Path(tmp) / path.name
        shutil.copyfile(path, copy_path)
        data = copy_path.read_bytes()

    logging.info(f'Exported snapshot of {path} ({len(data)} bytes).')
    return data


def safety_copy_path(path: PathLike) -> pathlib.Path:
    """Return a fresh, unused safety-copy path next to the store file."""
    path = pathlib.Path(path)
    stamp = int(time.time() * 1000)
    candidate = path.with_name(f'{path.stem}_backup_{stamp}{path.suffix}')
    n = 1
    while candidate.exists():
        candidate = path.with_name(f'{path.stem}_backup_{stamp}_{n}{path.suffix}')
        n += 1
    return candidate


def probe(conn: sqlite3.Connection) -> None:
    """Run a create/insert/update/read/drop round trip against ``conn``.

    Raises:
        sqlite3.Error: If the database cannot be written or read back.
    """
    conn.execute(
        f'CREATE TABLE IF NOT EXISTS {PROBE_TABLE} '
        f'(id INTEGER PRIMARY KEY AUTOINCREMENT, probe_text TEXT)'
    )
    text = f'probe_{time.time_ns()}'
    conn.execute(f'INSERT INTO {PROBE_TABLE} (probe_text) VALUES (?)', (text,))
    updated = f'{text}_updated'
    conn.execute(f'UPDATE {PROBE_TABLE} SET probe_text=? WHERE probe_text=?', (updated, text))
    row = conn.execute(f'SELECT probe_text FROM {PROBE_TABLE} WHERE probe_text=?', (updated,)).fetchone()
    if not row:
        raise sqlite3.DatabaseError('Probe row could not be read back after update.')
    conn.execute(f'DROP TABLE {PROBE_TABLE}')


def verify_store_file(path: PathLike) -> int:
    """Check that ``path`` is a usable store and bring its schema current.

    Returns:
        int: The schema version after migration.

    Raises:
        sqlite3.Error: If the file is not a healthy, writable database.
        status.MigrationFailedException: If the schema cannot be brought current.
    """
    conn = sqlite3.connect(str(path), isolation_level=None)
    try:
        row = conn.execute('PRAGMA quick_check').fetchone()
        if not row or row[0] != 'ok':
            raise sqlite3.DatabaseError(f'Integrity check reported: {row[0] if row else "nothing"}')

        conn.execute('BEGIN IMMEDIATE')
        try:
            probe(conn)
            conn.execute('COMMIT')
        except sqlite3.Error:
            conn.execute('ROLLBACK')
            raise

        return migrate.ensure_current_schema(conn)
    finally:
        conn.close()


def discard_file(path: Optional[pathlib.Path]) -> None:
    """Remove ``path`` if it exists. Used for safety copies once they are no longer needed."""
    if path is not None and path.exists():
        path.unlink()


def discard_sidecars(path: PathLike) -> None:
    """Remove journal files left next to the store file.

    They belong to the file being replaced and must not be replayed against a new one.
    """
    path = pathlib.Path(path)
    for suffix in SIDECAR_SUFFIXES:
        sidecar = path.with_name(path.name + suffix)
        if sidecar.exists():
            logging.debug(f'Removing stale sidecar {sidecar}')
            sidecar.unlink()


def _roll_back(path: pathlib.Path, safety: Optional[pathlib.Path]) -> None:
    """Put the safety copy back at the canonical path, or remove the rejected file."""
    discard_sidecars(path)
    if safety is None:
        logging.info(f'No previous database existed. Removing rejected file {path}.')
        discard_file(path)
        return

    staging = path.with_name(path.name + '.rollback')
    shutil.copyfile(safety, staging)
    os.replace(staging, path)
    logging.info(f'Restored previous database from safety copy {safety}.')
    discard_file(safety)


def reject(path: PathLike, safety: Optional[pathlib.Path], reason: BaseException) -> NoReturn:
    """Undo a replacement that turned out unusable and raise.

    Args:
        path: Canonical path of the store file.
        safety: Safety copy taken before the replacement, None if there was no file.
        reason: The error that rejected the new file.

    Raises:
        status.RestoreVerificationFailedException: Always. If the rollback itself
            failed, the safety copy is left in place and named in the message.
    """
    logging.error(f'Restored database was rejected: {reason}')
    try:
        _roll_back(pathlib.Path(path), safety)
    except OSError as ex:
        logging.critical(f'Could not roll back to the safety copy {safety}: {ex}')
        raise status.RestoreVerificationFailedException(
            f'{reason}. Rolling back also failed; the previous database is kept at {safety}.'
        ) from ex
    raise status.RestoreVerificationFailedException(str(reason)) from reason


def restore_file(
        path: PathLike,
        data: bytes,
        verify: bool = True,
        cancelled: Optional[Callable[[], bool]] = None,
        keep_safety_copy: bool = False,
) -> Optional[pathlib.Path]:
    """Replace the store file at ``path`` with ``data``.

    Args:
        path: Canonical path of the store file.
        data: Complete store file contents.
        verify: Open the new file, probe it and migrate it before accepting it.
            When False the caller must run the migration engine right after.
        cancelled: Polled before the file is replaced. Returning True aborts the
            import without changes. It is not consulted afterwards.
        keep_safety_copy: Leave the safety copy in place and return it. The caller
            then either passes it to :func:`reject` or removes it with :func:`discard_file`.

    Returns:
        pathlib.Path: The kept safety copy, or None if none was kept or needed.

    Raises:
        status.RestoreCancelledException: If cancelled before the replacement.
        status.RestoreVerificationFailedException: If the data is empty, or
            verification failed and the previous file has been put back.
        OSError: On filesystem errors; the previous file is kept or put back.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise TypeError(f'Snapshot data must be bytes, got {type(data).__name__}.')
    if not len(data):
        # SQLite would open an empty file as a new, empty database
        raise status.RestoreVerificationFailedException('The snapshot is empty.')

    path = pathlib.Path(path)

    if cancelled is not None and cancelled():
        raise status.RestoreCancelledException

    path.parent.mkdir(parents=True, exist_ok=True)

    safety: Optional[pathlib.Path] = None
    if path.exists():
        safety = safety_copy_path(path)
        shutil.copy2(path, safety)
        logging.debug(f'Copied current database aside to {safety}')

    if cancelled is not None and cancelled():
        discard_file(safety)
        raise status.RestoreCancelledException

    incoming = path.with_name(path.name + INCOMING_SUFFIX)
    try:
        incoming.write_bytes(bytes(data))
        discard_sidecars(path)
        os.replace(incoming, path)
    except OSError:
        # The canonical file was not replaced
        discard_file(incoming)
        discard_file(safety)
        raise
    logging.info(f'Wrote {len(data)} bytes to {path}.')

    if verify:
        try:
            version = verify_store_file(path)
        except Exception as ex:
            reject(path, safety, ex)
        logging.info(f'Restored database verified at schema version {version}.')

    if keep_safety_copy:
        return safety
    discard_file(safety)
    return None
