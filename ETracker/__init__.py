"""
ETracker: personal finance tracker with a local SQLite store and Google Drive backups.

This package provides:

- :mod:`ETracker.core` – The local store, its schema migrations, snapshot export and import, and Google Drive backups.
- :mod:`ETracker.settings` – Application paths, settings.json management and locale-aware date parsing.
- :mod:`ETracker.status` – Status codes and the exceptions raised across the package.
- :mod:`ETracker.log` – Application logging with an in-memory log tank.

Open the store with :class:`ETracker.core.database.Store`.
"""

import sys

# Fail on Python < 3.11
if not (sys.version_info.major == 3 and sys.version_info.minor >= 11):
    raise RuntimeError('ETracker requires Python 3.11 or higher.')

__version__ = '0.1.0'
__license__ = 'GPL-3.0'
__description__ = 'ETracker: personal finance tracker with a local SQLite store and Google Drive backups.'

from .log import log

log.setup_logging()
