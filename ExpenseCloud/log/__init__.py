"""
Logging subsystem for the access layer.

Modules:

- :mod:`ExpenseCloud.log.log` – Root logger setup, Qt message bridge and the in-memory log tank.
"""
