"""
Schema registry for the local store.

Declares the canonical tables and columns the application expects, the default
category seed, and the ordered chain of migration steps that bring any earlier
store shape up to the current version. Every step checks before acting, so it is
safe to run against a store that is already at or past that step.

Nothing in this module runs on import; :mod:`ETracker.core.migrate` applies the
steps.
"""
import copy
import datetime
import enum
import logging
import sqlite3
from dataclasses import dataclass
from typing import Callable, Dict, List, Tuple


class Table(enum.StrEnum):
    """Enum for database tables."""
    Meta = 'schema_meta'
    Transactions = 'transactions'
    Categories = 'categories'


class Kind(enum.StrEnum):
    """Transaction and category kinds."""
    Income = 'income'
    Expense = 'expense'


# Temporary name used while a legacy transactions table is rebuilt
MIGRATING_TABLE = 'transactions_migrating'

META_SCHEMA: Dict[str, str] = {
    'meta_id': 'INTEGER PRIMARY KEY',
    'version': 'INTEGER NOT NULL',
    'migrated_at': 'TEXT NOT NULL',
}

TRANSACTIONS_SCHEMA: Dict[str, str] = {
    'id': 'INTEGER PRIMARY KEY AUTOINCREMENT',
    'amount': 'REAL NOT NULL',
    'type': 'TEXT NOT NULL',
    'category': 'TEXT NOT NULL',
    'description': "TEXT NOT NULL DEFAULT ''",
    'date': 'TEXT NOT NULL',
    'created_at': "TEXT NOT NULL DEFAULT ''",
}

CATEGORIES_SCHEMA: Dict[str, str] = {
    'id': 'INTEGER PRIMARY KEY AUTOINCREMENT',
    'name': 'TEXT NOT NULL',
    'type': f"TEXT NOT NULL CHECK(type IN ('{Kind.Income.value}','{Kind.Expense.value}'))",
}

INDEXES: Dict[str, Tuple[str, str]] = {
    'idx_transactions_date': (Table.Transactions.value, 'date'),
    'idx_transactions_type': (Table.Transactions.value, 'type'),
    'idx_transactions_category': (Table.Transactions.value, 'category'),
    'idx_categories_type': (Table.Categories.value, 'type'),
}

# Column names used by earlier releases, mapped to their canonical name
LEGACY_COLUMN_ALIASES: Dict[str, Tuple[str, ...]] = {
    'id': ('id',),
    'amount': ('amount',),
    'type': ('type', 'kind'),
    'category': ('category',),
    'description': ('description',),
    'date': ('date',),
    'created_at': ('created_at', 'createdAt'),
}

# Values used for canonical columns a legacy table does not have (or holds NULL in)
LEGACY_COLUMN_DEFAULTS: Dict[str, object] = {
    'amount': 0.0,
    'type': Kind.Expense.value,
    'category': '',
    'description': '',
    'date': '',
}

DEFAULT_CATEGORIES: Tuple[Tuple[str, Kind], ...] = (
    ('Salary', Kind.Income),
    ('Freelance', Kind.Income),
    ('Investments', Kind.Income),
    ('Gifts', Kind.Income),
    ('Other', Kind.Income),
    ('Food', Kind.Expense),
    ('Transport', Kind.Expense),
    ('Shopping', Kind.Expense),
    ('Bills', Kind.Expense),
    ('Entertainment', Kind.Expense),
    ('Health', Kind.Expense),
    ('Other', Kind.Expense),
)


def now_str() -> str:
    """Return current UTC date and time as an ISO 8601 string."""
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def quote(identifier: str) -> str:
    """Quote an SQL identifier."""
    return '"' + identifier.replace('"', '""') + '"'


def columns_sql(schema: Dict[str, str]) -> str:
    """Return the column definition list for a CREATE TABLE statement."""
    return ', '.join(f'{quote(name)} {typedef}' for name, typedef in schema.items())


def table_exists(conn: sqlite3.Connection, table_name: str) -> bool:
    """Check if a table exists using an existing connection."""
    cursor = conn.execute(
        """SELECT name FROM sqlite_master WHERE type='table' AND name=?""",
        (table_name,)
    )
    return cursor.fetchone() is not None


def table_columns(conn: sqlite3.Connection, table_name: str) -> List[str]:
    """Return the table's column names in declaration order (empty if absent)."""
    cursor = conn.execute(f'PRAGMA table_info({quote(table_name)})')
    return [row[1] for row in cursor.fetchall()]


def transactions_shape(columns: List[str]) -> str:
    """Classify a transactions column list.

    Returns:
        str: ``'current'`` when it matches the canonical columns, ``'outdated'`` when
        only the trailing ``created_at`` column is missing, ``'legacy'`` otherwise.
    """
    canonical = list(TRANSACTIONS_SCHEMA)
    if columns == canonical:
        return 'current'
    if columns == canonical[:-1]:
        return 'outdated'
    return 'legacy'


def _create_transactions(conn: sqlite3.Connection) -> None:
    conn.execute(
        f'CREATE TABLE IF NOT EXISTS {Table.Transactions.value} ({columns_sql(TRANSACTIONS_SCHEMA)})'
    )


def _rebuild_legacy_transactions(conn: sqlite3.Connection) -> None:
    columns = table_columns(conn, Table.Transactions.value)
    if transactions_shape(columns) != 'legacy':
        return

    logging.info(f'Legacy transactions table found with columns {columns}. Rebuilding.')
    present = set(columns)

    known = {alias for aliases in LEGACY_COLUMN_ALIASES.values() for alias in aliases}
    unmapped = sorted(present - known)
    if unmapped:
        logging.warning(f'Legacy transactions columns {unmapped} have no current counterpart and are dropped.')

    conn.execute(f'DROP TABLE IF EXISTS {MIGRATING_TABLE}')
    conn.execute(f'CREATE TABLE {MIGRATING_TABLE} ({columns_sql(TRANSACTIONS_SCHEMA)})')

    targets: List[str] = []
    expressions: List[str] = []
    params: List[object] = []
    for canonical in TRANSACTIONS_SCHEMA:
        source = next((c for c in LEGACY_COLUMN_ALIASES[canonical] if c in present), None)

        if canonical == 'id':
            if source:
                targets.append(canonical)
                expressions.append(quote(source))
            continue

        if canonical == 'created_at':
            default = now_str()
        else:
            default = LEGACY_COLUMN_DEFAULTS[canonical]

        targets.append(canonical)
        if source is None:
            expressions.append('?')
            params.append(default)
        elif canonical == 'amount':
            expressions.append(f'CAST(COALESCE({quote(source)}, ?) AS REAL)')
            params.append(default)
        elif canonical == 'created_at':
            expressions.append(f"COALESCE(NULLIF(CAST({quote(source)} AS TEXT), ''), ?)")
            params.append(default)
        else:
            expressions.append(f'COALESCE(CAST({quote(source)} AS TEXT), ?)')
            params.append(default)

    conn.execute(
        f'INSERT INTO {MIGRATING_TABLE} ({", ".join(quote(t) for t in targets)}) '
        f'SELECT {", ".join(expressions)} FROM {Table.Transactions.value}',
        params
    )
    copied = conn.execute(f'SELECT COUNT(*) FROM {MIGRATING_TABLE}').fetchone()[0]
    original = conn.execute(f'SELECT COUNT(*) FROM {Table.Transactions.value}').fetchone()[0]
    if copied != original:
        raise sqlite3.DataError(f'Copied {copied} of {original} legacy rows.')

    conn.execute(f'DROP TABLE {Table.Transactions.value}')
    conn.execute(f'ALTER TABLE {MIGRATING_TABLE} RENAME TO {Table.Transactions.value}')
    logging.info(f'Rebuilt transactions table, {copied} rows preserved.')


def _add_created_at(conn: sqlite3.Connection) -> None:
    columns = table_columns(conn, Table.Transactions.value)
    if 'created_at' not in columns:
        conn.execute(
            f'ALTER TABLE {Table.Transactions.value} '
            f'ADD COLUMN created_at {TRANSACTIONS_SCHEMA["created_at"]}'
        )
        logging.info('Added "created_at" column to transactions.')

    conn.execute(
        f"UPDATE {Table.Transactions.value} SET created_at=? WHERE created_at IS NULL OR created_at=''",
        (now_str(),)
    )


def _create_categories(conn: sqlite3.Connection) -> None:
    if table_exists(conn, Table.Categories.value):
        return

    conn.execute(f'CREATE TABLE {Table.Categories.value} ({columns_sql(CATEGORIES_SCHEMA)})')
    for name, kind in DEFAULT_CATEGORIES:
        conn.execute(
            f'INSERT INTO {Table.Categories.value} (name, type) '
            f'SELECT ?, ? WHERE NOT EXISTS '
            f'(SELECT 1 FROM {Table.Categories.value} WHERE name=? AND type=?)',
            (name, kind.value, name, kind.value)
        )
    logging.info(f'Created categories table with {len(DEFAULT_CATEGORIES)} default categories.')


def _create_indexes(conn: sqlite3.Connection) -> None:
    for index_name, (table, column) in INDEXES.items():
        conn.execute(f'CREATE INDEX IF NOT EXISTS {index_name} ON {table}({quote(column)})')


@dataclass(frozen=True)
class MigrationStep:
    """One named, idempotent migration step."""
    version: int
    name: str
    apply: Callable[[sqlite3.Connection], None]


MIGRATIONS: Tuple[MigrationStep, ...] = (
    MigrationStep(1, 'create_transactions', _create_transactions),
    MigrationStep(2, 'rebuild_legacy_transactions', _rebuild_legacy_transactions),
    MigrationStep(3, 'add_created_at', _add_created_at),
    MigrationStep(4, 'create_categories', _create_categories),
    MigrationStep(5, 'create_indexes', _create_indexes),
)

CURRENT_VERSION: int = MIGRATIONS[-1].version


def canonical_schema() -> Dict[str, Dict[str, str]]:
    """Return a copy of the canonical table declarations keyed by table name."""
    return {
        Table.Meta.value: copy.deepcopy(META_SCHEMA),
        Table.Transactions.value: copy.deepcopy(TRANSACTIONS_SCHEMA),
        Table.Categories.value: copy.deepcopy(CATEGORIES_SCHEMA),
    }


def pending_steps(version: int) -> Tuple[MigrationStep, ...]:
    """Return the steps newer than ``version``, in application order."""
    return tuple(step for step in MIGRATIONS if step.version > version)
