"""Application-wide Qt signals for ETracker.

The store, the backup services and the logging handlers announce state changes
here; presentation code connects to them without the core importing any widgets.
"""
from PySide6 import QtCore


class Signals(QtCore.QObject):
    """Centralized Qt signals for store, backup and error events."""
    authenticationRequested = QtCore.Signal()

    schemaMigrated = QtCore.Signal(int, int)  # from version, to version

    transactionsChanged = QtCore.Signal()
    categoriesChanged = QtCore.Signal()

    storeAboutToBeReplaced = QtCore.Signal()
    storeReplaced = QtCore.Signal()

    backupUploaded = QtCore.Signal(str)  # remote id
    backupRestored = QtCore.Signal(str)  # remote id

    showLogs = QtCore.Signal()

    error = QtCore.Signal(str)


signals: Signals = Signals()
