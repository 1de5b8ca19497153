"""
Locale-aware date parsing using Babel.

Transaction dates are stored as ISO ``YYYY-MM-DD`` text so they sort and filter
lexically. Input is accepted as date objects, ISO strings, or short dates in the
configured locale (``05/01/2024`` is the 5th of January in ``en_GB``).
"""
import datetime
import logging
from typing import Union

from babel import Locale, UnknownLocaleError
from babel.dates import parse_date as babel_parse_date

DATE_FORMAT = '%Y-%m-%d'

DateLike = Union[str, datetime.date, datetime.datetime]


def is_valid_locale(locale: str) -> bool:
    """Return True if Babel knows the given locale identifier."""
    try:
        Locale.parse(locale)
        return True
    except (ValueError, TypeError, UnknownLocaleError):
        return False


def parse_date(text: str, locale: str) -> datetime.date:
    """Parse a short-format date string using the locale's field order.

    Raises:
        ValueError: If the string cannot be parsed as a date.
    """
    try:
        return babel_parse_date(text, locale=Locale.parse(locale), format='short')
    except (IndexError, TypeError, UnknownLocaleError) as ex:
        raise ValueError(f'Could not parse "{text}" as a date: {ex}') from ex


def normalize_date(value: DateLike, locale: str = 'en_GB') -> str:
    """Return ``value`` as an ISO ``YYYY-MM-DD`` string.

    Args:
        value: A date, datetime, or string.
        locale: Babel locale used for non-ISO strings.

    Raises:
        ValueError: If ``value`` is not a recognizable calendar date.
    """
    if isinstance(value, datetime.datetime):
        return value.date().strftime(DATE_FORMAT)
    if isinstance(value, datetime.date):
        return value.strftime(DATE_FORMAT)
    if not isinstance(value, str):
        raise ValueError(f'Expected a date or string, got {type(value).__name__}.')

    text = value.strip()
    if not text:
        raise ValueError('Date must not be empty.')

    try:
        return datetime.date.fromisoformat(text).strftime(DATE_FORMAT)
    except ValueError:
        pass

    try:
        return datetime.datetime.fromisoformat(text).date().strftime(DATE_FORMAT)
    except ValueError:
        pass

    dt = parse_date(text, locale)
    logging.debug(f'Parsed "{text}" as {dt} using locale "{locale}".')
    return dt.strftime(DATE_FORMAT)
