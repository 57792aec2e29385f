"""
ExpenseCloud: authentication and expense data access for a Firebase-backed expense tracker.

This package provides:

- :mod:`ExpenseCloud.core` – Sign-up/sign-in/sign-out, auth-state observation, authenticated HTTP and expense CRUD.
- :mod:`ExpenseCloud.settings` – firebase.json configuration and money formatting.
- :mod:`ExpenseCloud.status` – Status codes and the exception taxonomy.
- :mod:`ExpenseCloud.log` – Logging setup and in-memory log tank.

Use :func:`ExpenseCloud.connect` to create an access layer from the saved configuration.
"""

import sys

# Fail on Python < 3.11
if not (sys.version_info.major == 3 and sys.version_info.minor >= 11):
    raise RuntimeError('ExpenseCloud requires Python 3.11 or higher.')

__version__ = '0.1.0'
__author__ = 'Gergely Wootsch'
__license__ = 'GPL-3.0'
__copyright__ = 'Copyright (C) 2025 Gergely Wootsch'
__description__ = 'ExpenseCloud: authentication and expense data access for a Firebase-backed expense tracker.'

from .log import log

log.setup_logging()


def connect(**kwargs):
    """Create an access layer from the saved firebase.json configuration.

    Keyword arguments are passed to :class:`ExpenseCloud.core.access.AccessLayer`.

    Returns:
        ExpenseCloud.core.access.AccessLayer
    """
    from .core.access import AccessLayer
    return AccessLayer(**kwargs)
