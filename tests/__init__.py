"""Test package for ETracker.

The application settings are created on import, so the data directory is
pointed at a throwaway location before any ETracker module is imported.
"""
import os
import tempfile

os.environ.setdefault('QT_QPA_PLATFORM', 'offscreen')
os.environ['ETRACKER_DATA_DIR'] = tempfile.mkdtemp(prefix='etracker_test_session_')
