"""
Logging subsystem for ETracker.

Modules:

- :mod:`ETracker.log.log` – Root logger setup, an in-memory log handler and the Qt message bridge.
"""
