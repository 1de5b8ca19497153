"""
Migration engine for the local store.

:func:`ensure_current_schema` reads the explicit schema version recorded in the
store and applies every pending step from :mod:`ETracker.core.schema` in order,
inside a single transaction. A failing step rolls the whole unit back, so a
store is either left as it was or brought fully up to date.
"""
import logging
import sqlite3
from typing import Optional

from . import schema
from .schema import Table
from .signals import signals
from ..status import status


def stored_version(conn: sqlite3.Connection) -> int:
    """Return the schema version recorded in the store.

    Stores written before the version record existed report ``0``.

    Raises:
        status.MigrationFailedException: If the recorded version is not an integer.
    """
    if not schema.table_exists(conn, Table.Meta.value):
        return 0
    row = conn.execute(f'SELECT version FROM {Table.Meta.value} WHERE meta_id=1').fetchone()
    if not row or row[0] is None:
        return 0
    if isinstance(row[0], float) and not row[0].is_integer():
        raise status.MigrationFailedException(f'Unreadable schema version {row[0]!r}.', step='probe')
    try:
        return int(row[0])
    except (TypeError, ValueError) as ex:
        raise status.MigrationFailedException(f'Unreadable schema version {row[0]!r}.', step='probe') from ex


def _write_version(conn: sqlite3.Connection, version: int) -> None:
    conn.execute(
        f'CREATE TABLE IF NOT EXISTS {Table.Meta.value} ({schema.columns_sql(schema.META_SCHEMA)})'
    )
    conn.execute(
        f'INSERT OR REPLACE INTO {Table.Meta.value} (meta_id, version, migrated_at) VALUES (1, ?, ?)',
        (version, schema.now_str())
    )


def _rollback(conn: sqlite3.Connection) -> None:
    if not conn.in_transaction:
        return
    try:
        conn.execute('ROLLBACK')
    except sqlite3.Error as ex:
        logging.error(f'Rollback after failed migration also failed: {ex}')


def ensure_current_schema(conn: sqlite3.Connection) -> int:
    """Bring the store behind ``conn`` to :data:`schema.CURRENT_VERSION`.

    The connection must be in autocommit mode (``isolation_level=None``) with no
    open transaction; the engine manages its own ``BEGIN IMMEDIATE``/``COMMIT``.

    Args:
        conn: Connection to the store.

    Returns:
        int: The schema version after the call.

    Raises:
        status.MigrationFailedException: If the version cannot be read, the store
            is newer than this release, or any step fails. No partial structural
            change survives a failure.
    """
    try:
        current = stored_version(conn)
    except sqlite3.Error as ex:
        raise status.MigrationFailedException(f'Could not read schema version: {ex}', step='probe') from ex

    if current == schema.CURRENT_VERSION:
        logging.debug(f'Schema is current (version {current}).')
        return current

    if current > schema.CURRENT_VERSION:
        raise status.MigrationFailedException(
            f'Store schema version {current} is newer than supported version {schema.CURRENT_VERSION}.',
            step='probe'
        )

    steps = schema.pending_steps(current)
    logging.info(
        f'Migrating schema from version {current} to {schema.CURRENT_VERSION} '
        f'({", ".join(s.name for s in steps)}).'
    )

    step_name: Optional[str] = 'begin'
    try:
        conn.execute('BEGIN IMMEDIATE')
        for step in steps:
            step_name = step.name
            logging.debug(f'Applying migration step {step.version}: {step.name}')
            step.apply(conn)
        step_name = 'record_version'
        _write_version(conn, schema.CURRENT_VERSION)
        conn.execute('COMMIT')
    except Exception as ex:
        _rollback(conn)
        raise status.MigrationFailedException(str(ex), step=step_name) from ex

    logging.info(f'Schema migrated to version {schema.CURRENT_VERSION}.')
    signals.schemaMigrated.emit(current, schema.CURRENT_VERSION)
    return schema.CURRENT_VERSION
