"""The access layer: one object exposing authentication, authenticated HTTP and expense CRUD.

Example:

    .. code-block:: python

        from ExpenseCloud.core.access import AccessLayer

        access = AccessLayer()
        await access.sign_in('me@example.com', 'secret')
        expense_id = await access.add_expense({'description': 'Coffee', 'date': '2024-01-01', 'cost': 4.5})
        expenses = await access.fetch_expenses()

"""
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

import requests

from . import http as http_
from .auth import IdentityService, Session, User
from .expenses import Expense, ExpenseStore
from .service import FirestoreService
from ..settings import lib
from ..status import status


class AccessLayer:
    """Narrow, validated surface over Firebase Authentication and Cloud Firestore.

    Every component can be injected, which lets tests run several simulated
    identities side by side without touching the network.

    Args:
        config: Firebase configuration. Defaults to ``lib.settings.get_firebase_config()``.
        identity: Identity service. Built from ``config`` if omitted.
        session: Auth session. Built from ``identity`` if omitted.
        client_provider: Coroutine function returning a Firestore client.
            Defaults to a client authenticated with the session's ID token.
        http: ``requests.Session`` used by :meth:`authed_fetch`.
        unauthorized_handler: Called with the sign-in route when
            :meth:`authed_fetch` gets HTTP 401. Defaults to emitting
            ``session.signInRequested``.
    """

    def __init__(
            self,
            config: Optional[Dict[str, Any]] = None,
            identity: Optional[IdentityService] = None,
            session: Optional[Session] = None,
            client_provider: Optional[Callable[[], Awaitable[Any]]] = None,
            http: Optional[requests.Session] = None,
            unauthorized_handler: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.config = config if config is not None else lib.settings.get_firebase_config()
        emulator = self.config.get('emulator') or {}

        self.identity = identity or IdentityService(
            self.config['api_key'], emulator_host=emulator.get('auth_host'))

        creds_path = lib.settings.creds_path if self.config.get('persist_session', True) else None
        self.session = session or Session(self.identity, creds_path=creds_path)

        self.firestore = FirestoreService(
            self.config['project_id'], emulator_host=emulator.get('firestore_host'))
        self.session.idTokenChanged.connect(self.firestore.clear_client)
        self.session.authStateChanged.connect(self.firestore.clear_client)

        self.expenses = ExpenseStore(
            client_provider or self._get_firestore_client,
            identity=lambda: self.session.uid,
        )

        self.http = http or requests.Session()
        self.unauthorized_handler = unauthorized_handler or self._request_sign_in

    async def _get_firestore_client(self) -> Any:
        token = await self.session.get_id_token()
        if not token:
            raise status.NotSignedInException
        return self.firestore.get_client(token)

    async def close(self) -> None:
        """Close the Firestore client and the HTTP session."""
        await self.firestore.close()
        self.http.close()

    def _request_sign_in(self, route: str) -> None:
        logging.debug(f'Requesting sign-in at "{route}".')
        self.session.signInRequested.emit(route)

    # Identity

    @property
    def current_user(self) -> Optional[User]:
        return self.session.current_user

    async def sign_up(self, email: str, password: str) -> User:
        return await self.session.sign_up(email, password)

    async def sign_in(self, email: str, password: str) -> User:
        return await self.session.sign_in(email, password)

    async def sign_out(self) -> None:
        await self.session.sign_out()

    def on_auth_changed(self, callback: Callable[[Optional[User]], None]) -> Callable[[], None]:
        return self.session.on_auth_changed(callback)

    async def get_id_token(self, force_refresh: bool = False) -> Optional[str]:
        return await self.session.get_id_token(force_refresh)

    async def restore(self) -> Optional[User]:
        return await self.session.restore()

    # HTTP

    async def authed_fetch(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """Send a request with the current user's bearer token. See :func:`http.authed_fetch`."""
        return await http_.authed_fetch(
            method,
            url,
            token_provider=self.session.get_id_token,
            http=self.http,
            unauthorized_handler=self.unauthorized_handler,
            signin_route=self.config.get('signin_route') or lib.DEFAULT_SIGNIN_ROUTE,
            **kwargs
        )

    # Expenses

    async def fetch_expenses(self, strict: bool = False) -> List[Expense]:
        return await self.expenses.fetch_expenses(strict=strict)

    async def get_expense(self, expense_id: str) -> Optional[Expense]:
        return await self.expenses.get_expense(expense_id)

    async def add_expense(self, expense: Union[Expense, Mapping[str, Any]]) -> str:
        return await self.expenses.add_expense(expense)

    async def update_expense(self, expense_id: str, fields: Mapping[str, Any]) -> None:
        await self.expenses.update_expense(expense_id, fields)

    async def delete_expense(self, expense_id: str) -> None:
        await self.expenses.delete_expense(expense_id)
