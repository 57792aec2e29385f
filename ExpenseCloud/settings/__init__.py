"""
Settings package: configuration API and formatting helpers.

This package provides:

- :mod:`ExpenseCloud.settings.lib` – firebase.json management and schema validation.
- :mod:`ExpenseCloud.settings.locale` – Money formatting utilities.
"""
