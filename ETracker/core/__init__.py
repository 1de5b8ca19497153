"""
Core package for ETracker providing the local store and its backups.

This package includes:

- :mod:`ETracker.core.schema` – Canonical tables, default categories and the ordered migration steps.
- :mod:`ETracker.core.migrate` – Brings any earlier store up to the current schema version.
- :mod:`ETracker.core.database` – The store handle owning the single SQLite connection.
- :mod:`ETracker.core.records` – Transaction and category records.
- :mod:`ETracker.core.snapshot` – Export and import of the whole store file.
- :mod:`ETracker.core.auth` – Google OAuth2 authentication and credential management.
- :mod:`ETracker.core.drive` – Google Drive upload, listing and download of backups.
- :mod:`ETracker.core.backup` – Backup and restore through Google Drive, with worker threads.
- :mod:`ETracker.core.signals` – Application-wide Qt signals.
"""
