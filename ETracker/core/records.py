"""
Transaction and category records.

:class:`TransactionsAPI` and :class:`CategoriesAPI` are reached through an open
:class:`ETracker.core.database.Store` (``store.transactions`` and
``store.categories``). Every write runs in its own store transaction; change
signals are emitted only after the transaction committed.

Transactions reference categories by name only. Deleting a category leaves the
label on existing transactions untouched.
"""
import dataclasses
import decimal
import logging
import math
import numbers
import sqlite3
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from .schema import Kind, Table, now_str
from .signals import signals
from ..settings import locale
from ..status import status

if TYPE_CHECKING:
    from .database import Store

# Fields an update may change, mapped to their column
UPDATABLE_FIELDS: Dict[str, str] = {
    'amount': 'amount',
    'kind': 'type',
    'type': 'type',
    'category': 'category',
    'description': 'description',
    'date': 'date',
}


@dataclasses.dataclass(frozen=True)
class Transaction:
    """A single income or expense entry."""
    id: int
    amount: float
    kind: str
    category: str
    description: str
    date: str
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> 'Transaction':
        return cls(
            id=row['id'],
            amount=row['amount'],
            kind=row['type'],
            category=row['category'],
            description=row['description'] if row['description'] is not None else '',
            date=row['date'],
            created_at=row['created_at'],
        )


@dataclasses.dataclass(frozen=True)
class Category:
    """A named category of one kind."""
    id: int
    name: str
    kind: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> 'Category':
        return cls(id=row['id'], name=row['name'], kind=row['type'])


@dataclasses.dataclass(frozen=True)
class TransactionFilter:
    """Conjunction of optional transaction filters.

    Date bounds are inclusive and compared as ISO text.
    """
    kind: Optional[str] = None
    category: Optional[str] = None
    date_from: Optional[Any] = None
    date_to: Optional[Any] = None


def validate_amount(value: Any) -> float:
    """Return ``value`` as a finite float.

    Raises:
        status.ConstraintViolationException: If the value is not a finite real number.
    """
    if isinstance(value, bool) or not isinstance(value, (numbers.Real, decimal.Decimal)):
        raise status.ConstraintViolationException(
            f'Amount must be a number, got {type(value).__name__}.'
        )
    amount = float(value)
    if not math.isfinite(amount):
        raise status.ConstraintViolationException(f'Amount must be finite, got {value}.')
    return amount


def validate_kind(value: Any) -> str:
    """Return ``value`` as kind text.

    Kinds outside :class:`Kind` are stored as given and only logged.
    """
    if not isinstance(value, str):
        raise status.ConstraintViolationException(f'Kind must be text, got {type(value).__name__}.')
    kind = str(value)
    if kind not in {k.value for k in Kind}:
        logging.warning(f'Storing transaction with unrecognized kind "{kind}".')
    return kind


def validate_text(field: str, value: Any, allow_none: bool = False) -> str:
    if value is None and allow_none:
        return ''
    if not isinstance(value, str):
        raise status.ConstraintViolationException(f'"{field}" must be text, got {type(value).__name__}.')
    return value


def validate_date(value: Any, locale_name: str) -> str:
    """Return ``value`` normalized to ``YYYY-MM-DD``.

    Raises:
        status.ConstraintViolationException: If the value is not a recognizable date.
    """
    try:
        return locale.normalize_date(value, locale=locale_name)
    except ValueError as ex:
        raise status.ConstraintViolationException(f'Invalid date "{value}": {ex}') from ex


class TransactionsAPI:
    """Create, read, update and delete transactions."""

    def __init__(self, store: 'Store') -> None:
        self._store = store

    def _validate(self, field: str, value: Any) -> Any:
        if field == 'amount':
            return validate_amount(value)
        if field == 'type':
            return validate_kind(value)
        if field == 'category':
            return validate_text('category', value)
        if field == 'description':
            return validate_text('description', value, allow_none=True)
        if field == 'date':
            return validate_date(value, self._store.locale)
        raise KeyError(field)

    def insert_transaction(
            self,
            amount: Any,
            kind: str,
            category: str,
            description: Optional[str] = '',
            date: Any = None,
    ) -> int:
        """Insert a transaction and return its store-assigned id.

        Args:
            amount: Finite real number.
            kind: ``'income'`` or ``'expense'``. Other text is stored as given.
            category: Category label.
            description: Free text, may be empty.
            date: Date object or date text, normalized to ``YYYY-MM-DD``.

        Raises:
            status.ConstraintViolationException: If a value is rejected.
            status.StoreClosedException: If the store is not open.
        """
        values = (
            self._validate('amount', amount),
            self._validate('type', kind),
            self._validate('category', category),
            self._validate('description', description),
            self._validate('date', date),
            now_str(),
        )
        with self._store.transaction() as conn:
            cursor = conn.execute(
                f'INSERT INTO {Table.Transactions.value} '
                f'(amount, type, category, description, date, created_at) VALUES (?, ?, ?, ?, ?, ?)',
                values
            )
            new_id = cursor.lastrowid

        logging.debug(f'Inserted transaction {new_id}.')
        signals.transactionsChanged.emit()
        return new_id

    def update_transaction(self, transaction_id: int, fields: Dict[str, Any]) -> bool:
        """Update the allowed fields of a transaction.

        Keys outside amount, kind, category, description and date are dropped.
        ``created_at`` is refreshed on every effective update.

        Returns:
            bool: False if no allowed field was given and nothing was written.

        Raises:
            status.NotFoundException: If no transaction has the given id.
            status.ConstraintViolationException: If a value is rejected.
        """
        columns: Dict[str, Any] = {}
        for key, value in fields.items():
            column = UPDATABLE_FIELDS.get(key)
            if column is None:
                logging.debug(f'Ignoring non-updatable field "{key}".')
                continue
            columns[column] = self._validate(column, value)

        with self._store.transaction() as conn:
            exists = conn.execute(
                f'SELECT 1 FROM {Table.Transactions.value} WHERE id=?', (transaction_id,)
            ).fetchone()
            if not exists:
                raise status.NotFoundException(f'Transaction {transaction_id} does not exist.')
            if not columns:
                return False

            columns['created_at'] = now_str()
            assignments = ', '.join(f'{c}=?' for c in columns)
            conn.execute(
                f'UPDATE {Table.Transactions.value} SET {assignments} WHERE id=?',
                (*columns.values(), transaction_id)
            )

        logging.debug(f'Updated transaction {transaction_id}: {sorted(columns)}')
        signals.transactionsChanged.emit()
        return True

    def delete_transaction(self, transaction_id: int) -> None:
        """Delete a transaction.

        Raises:
            status.NotFoundException: If no transaction has the given id.
        """
        with self._store.transaction() as conn:
            cursor = conn.execute(f'DELETE FROM {Table.Transactions.value} WHERE id=?', (transaction_id,))
            if cursor.rowcount == 0:
                raise status.NotFoundException(f'Transaction {transaction_id} does not exist.')

        logging.debug(f'Deleted transaction {transaction_id}.')
        signals.transactionsChanged.emit()

    def get_transaction(self, transaction_id: int) -> Transaction:
        with self._store.connection() as conn:
            row = conn.execute(
                f'SELECT * FROM {Table.Transactions.value} WHERE id=?', (transaction_id,)
            ).fetchone()
        if row is None:
            raise status.NotFoundException(f'Transaction {transaction_id} does not exist.')
        return Transaction.from_row(row)

    def list_transactions(self, filter: Optional[TransactionFilter] = None) -> List[Transaction]:
        """Return transactions matching ``filter``, newest date first.

        Rows sharing a date are ordered by descending id. Dates stored by
        earlier releases in other formats sort as plain text.
        """
        clauses: List[str] = []
        params: List[Any] = []
        if filter is not None:
            if filter.kind is not None:
                clauses.append('type=?')
                params.append(str(filter.kind))
            if filter.category is not None:
                clauses.append('category=?')
                params.append(filter.category)
            if filter.date_from is not None:
                clauses.append('date>=?')
                params.append(validate_date(filter.date_from, self._store.locale))
            if filter.date_to is not None:
                clauses.append('date<=?')
                params.append(validate_date(filter.date_to, self._store.locale))

        where = f' WHERE {" AND ".join(clauses)}' if clauses else ''
        with self._store.connection() as conn:
            rows = conn.execute(
                f'SELECT * FROM {Table.Transactions.value}{where} ORDER BY date DESC, id DESC',
                params
            ).fetchall()
        return [Transaction.from_row(row) for row in rows]


class CategoriesAPI:
    """Create, read, update and delete categories."""

    def __init__(self, store: 'Store') -> None:
        self._store = store

    def list_categories(self, kind: Optional[str] = None) -> List[Category]:
        """Return categories ordered by name, optionally only those of ``kind``."""
        with self._store.connection() as conn:
            if kind is None:
                rows = conn.execute(
                    f'SELECT * FROM {Table.Categories.value} ORDER BY name, id'
                ).fetchall()
            else:
                rows = conn.execute(
                    f'SELECT * FROM {Table.Categories.value} WHERE type=? ORDER BY name, id',
                    (str(kind),)
                ).fetchall()
        return [Category.from_row(row) for row in rows]

    def get_category(self, category_id: int) -> Category:
        with self._store.connection() as conn:
            row = conn.execute(
                f'SELECT * FROM {Table.Categories.value} WHERE id=?', (category_id,)
            ).fetchone()
        if row is None:
            raise status.NotFoundException(f'Category {category_id} does not exist.')
        return Category.from_row(row)

    def add_category(self, name: str, kind: str) -> int:
        """Add a category and return its id.

        Raises:
            status.ConstraintViolationException: If ``kind`` is not income or expense.
        """
        name = validate_text('name', name)
        with self._store.transaction() as conn:
            cursor = conn.execute(
                f'INSERT INTO {Table.Categories.value} (name, type) VALUES (?, ?)',
                (name, str(kind))
            )
            new_id = cursor.lastrowid

        logging.debug(f'Added category {new_id}: {name} ({kind})')
        signals.categoriesChanged.emit()
        return new_id

    def update_category(self, category_id: int, name: Optional[str] = None, kind: Optional[str] = None) -> None:
        """Rename a category or change its kind.

        Transactions keep the label they were recorded with.

        Raises:
            status.NotFoundException: If no category has the given id.
            status.ConstraintViolationException: If ``kind`` is not income or expense.
        """
        columns: Dict[str, Any] = {}
        if name is not None:
            columns['name'] = validate_text('name', name)
        if kind is not None:
            columns['type'] = str(kind)

        with self._store.transaction() as conn:
            exists = conn.execute(
                f'SELECT 1 FROM {Table.Categories.value} WHERE id=?', (category_id,)
            ).fetchone()
            if not exists:
                raise status.NotFoundException(f'Category {category_id} does not exist.')
            if not columns:
                return
            assignments = ', '.join(f'{c}=?' for c in columns)
            conn.execute(
                f'UPDATE {Table.Categories.value} SET {assignments} WHERE id=?',
                (*columns.values(), category_id)
            )

        signals.categoriesChanged.emit()

    def delete_category(self, category_id: int) -> None:
        """Delete a category. Transactions using its name are left as they are.

        Raises:
            status.NotFoundException: If no category has the given id.
        """
        with self._store.transaction() as conn:
            cursor = conn.execute(f'DELETE FROM {Table.Categories.value} WHERE id=?', (category_id,))
            if cursor.rowcount == 0:
                raise status.NotFoundException(f'Category {category_id} does not exist.')

        logging.debug(f'Deleted category {category_id}.')
        signals.categoriesChanged.emit()
