"""
Core package for ExpenseCloud providing the access layer.

This package includes:

- :mod:`ExpenseCloud.core.auth` – Firebase Authentication REST client, sessions and credential persistence.
- :mod:`ExpenseCloud.core.service` – Cloud Firestore client construction and asynchronous helpers.
- :mod:`ExpenseCloud.core.expenses` – Expense records, validation, decoding and CRUD.
- :mod:`ExpenseCloud.core.http` – HTTP requests carrying the user's bearer token.
- :mod:`ExpenseCloud.core.access` – The :class:`~ExpenseCloud.core.access.AccessLayer` facade.
"""
