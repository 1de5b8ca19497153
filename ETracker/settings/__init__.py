"""
Settings package: application paths, configuration and locale helpers.

This package provides:

- :mod:`ETracker.settings.lib` – Application paths, settings.json schema validation and the client secret.
- :mod:`ETracker.settings.locale` – Locale-aware date parsing used to normalize transaction dates.
"""
