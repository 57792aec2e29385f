"""
Firebase Authentication and session management.

Provides the blocking REST client for the Identity Toolkit and Secure Token
endpoints, the :class:`Session` object that holds the signed-in user and
broadcasts auth-state changes, and helpers to persist the session to disk.
"""

import dataclasses
import datetime
import json
import logging
import pathlib
from typing import Any, Callable, Dict, Optional

import requests
from PySide6 import QtCore

from .service import start_asynchronous
from ..status import status

IDENTITY_TOOLKIT_URL = 'https://identitytoolkit.googleapis.com/v1'
SECURE_TOKEN_URL = 'https://securetoken.googleapis.com/v1'

# Tokens are refreshed this long before they actually expire
TOKEN_EXPIRY_SKEW = datetime.timedelta(minutes=5)

NETWORK_ERROR_CODE = 'auth/network-request-failed'
INTERNAL_ERROR_CODE = 'auth/internal-error'

ERROR_CODES: Dict[str, str] = {
    'EMAIL_EXISTS': 'auth/email-already-in-use',
    'OPERATION_NOT_ALLOWED': 'auth/operation-not-allowed',
    'TOO_MANY_ATTEMPTS_TRY_LATER': 'auth/too-many-requests',
    'EMAIL_NOT_FOUND': 'auth/user-not-found',
    'INVALID_PASSWORD': 'auth/wrong-password',
    'INVALID_LOGIN_CREDENTIALS': 'auth/invalid-credential',
    'USER_DISABLED': 'auth/user-disabled',
    'INVALID_EMAIL': 'auth/invalid-email',
    'MISSING_EMAIL': 'auth/missing-email',
    'MISSING_PASSWORD': 'auth/missing-password',
    'WEAK_PASSWORD': 'auth/weak-password',
    'TOKEN_EXPIRED': 'auth/user-token-expired',
    'USER_NOT_FOUND': 'auth/user-not-found',
    'INVALID_REFRESH_TOKEN': 'auth/invalid-refresh-token',
    'INVALID_GRANT_TYPE': 'auth/invalid-grant-type',
    'MISSING_REFRESH_TOKEN': 'auth/missing-refresh-token',
    'INVALID_ID_TOKEN': 'auth/invalid-user-token',
    'API_KEY_INVALID': 'auth/invalid-api-key',
    'PROJECT_NOT_FOUND': 'auth/project-not-found',
}

# A failed refresh with one of these codes ends the session
SESSION_ENDING_CODES = {
    'auth/user-token-expired',
    'auth/user-disabled',
    'auth/user-not-found',
    'auth/invalid-refresh-token',
}


def normalize_error_code(backend_message: Optional[str]) -> str:
    """
    Map an Identity Toolkit error message to an ``auth/...`` error code.

    The backend reports errors as ``"CODE"`` or ``"CODE : detail"``.

    Args:
        backend_message: The ``error.message`` field of the backend response.

    Returns:
        str: The normalized code, ``auth/internal-error`` when unknown.
    """
    if not backend_message:
        return INTERNAL_ERROR_CODE
    key = backend_message.split(':', 1)[0].strip()
    # API key errors come back as a sentence rather than a code
    if key.startswith('API key not valid'):
        key = 'API_KEY_INVALID'
    return ERROR_CODES.get(key, INTERNAL_ERROR_CODE)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclasses.dataclass
class User:
    """A signed-in Firebase user and its tokens."""
    uid: str
    email: Optional[str]
    id_token: str
    refresh_token: str
    expiry: datetime.datetime

    @property
    def expired(self) -> bool:
        return _utcnow() >= self.expiry - TOKEN_EXPIRY_SKEW

    def to_dict(self) -> Dict[str, Any]:
        return {
            'uid': self.uid,
            'email': self.email,
            'id_token': self.id_token,
            'refresh_token': self.refresh_token,
            'expiry': self.expiry.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'User':
        return cls(
            uid=data['uid'],
            email=data.get('email'),
            id_token=data['id_token'],
            refresh_token=data['refresh_token'],
            expiry=datetime.datetime.fromisoformat(data['expiry']),
        )


def _expiry_from(expires_in: Any) -> datetime.datetime:
    return _utcnow() + datetime.timedelta(seconds=int(expires_in or 3600))


class IdentityService:
    """Blocking client for the Firebase Auth REST API.

    Args:
        api_key: The Firebase web API key.
        emulator_host: Optional ``host:port`` of the Auth emulator.
        http: Optional ``requests.Session`` to send requests with.
    """

    def __init__(self, api_key: str, emulator_host: Optional[str] = None,
                 http: Optional[requests.Session] = None) -> None:
        self.api_key = api_key
        self.emulator_host = emulator_host
        self.http = http or requests.Session()

    def _url(self, base: str, path: str) -> str:
        if self.emulator_host:
            base = f'http://{self.emulator_host}/{base.removeprefix("https://")}'
        return f'{base}/{path}'

    def _post(self, url: str, default_message: str, **kwargs: Any) -> Dict[str, Any]:
        """
        POST to an auth endpoint and return the decoded JSON body.

        Raises:
            status.AuthException: With a normalized code if the request fails
                or the backend rejects it.
        """
        try:
            response = self.http.post(url, params={'key': self.api_key}, **kwargs)
        except requests.RequestException as ex:
            raise status.AuthException(str(ex) or default_message, code=NETWORK_ERROR_CODE) from ex

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if not response.ok:
            error = payload.get('error') if isinstance(payload, dict) else None
            backend_message = error.get('message') if isinstance(error, dict) else None
            code = normalize_error_code(backend_message)
            detail = backend_message.split(':', 1)[-1].strip() if backend_message else None
            logging.debug(f'Auth request failed: HTTP {response.status_code} {backend_message}')
            raise status.AuthException(detail or default_message, code=code)

        return payload

    def _user_from_response(self, data: Dict[str, Any], email: str) -> User:
        return User(
            uid=data['localId'],
            email=data.get('email', email),
            id_token=data['idToken'],
            refresh_token=data['refreshToken'],
            expiry=_expiry_from(data.get('expiresIn')),
        )

    def sign_up(self, email: str, password: str) -> User:
        """Create a new email/password account and return the signed-in user."""
        data = self._post(
            self._url(IDENTITY_TOOLKIT_URL, 'accounts:signUp'),
            'Failed to sign up. Please try again.',
            json={'email': email, 'password': password, 'returnSecureToken': True},
        )
        logging.debug(f'Account created for "{email}".')
        return self._user_from_response(data, email)

    def sign_in_with_password(self, email: str, password: str) -> User:
        """Authenticate an existing email/password account."""
        data = self._post(
            self._url(IDENTITY_TOOLKIT_URL, 'accounts:signInWithPassword'),
            'Failed to sign in. Please try again.',
            json={'email': email, 'password': password, 'returnSecureToken': True},
        )
        logging.debug(f'Signed in as "{email}".')
        return self._user_from_response(data, email)

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        """
        Exchange a refresh token for a new ID token.

        Returns:
            dict: ``user_id``, ``id_token``, ``refresh_token`` and ``expiry``.
        """
        data = self._post(
            self._url(SECURE_TOKEN_URL, 'token'),
            'Failed to refresh the session. Please sign in again.',
            data={'grant_type': 'refresh_token', 'refresh_token': refresh_token},
        )
        return {
            'user_id': data['user_id'],
            'id_token': data['id_token'],
            'refresh_token': data['refresh_token'],
            'expiry': _expiry_from(data.get('expires_in')),
        }


def save_creds(user: User, path: pathlib.Path) -> None:
    """
    Save the session to ``path``.

    Args:
        user (User): The signed-in user.
        path (pathlib.Path): Destination file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(user.to_dict(), f, indent=4)

    logging.debug(f'Credentials saved to {path}.')


def load_creds(path: pathlib.Path) -> Optional[User]:
    """
    Load a persisted session.

    Returns:
        User or None: None when no session was saved.

    Raises:
        status.CredsInvalidException: If the file is corrupt. The file is deleted.
    """
    if not path.exists():
        return None

    try:
        with open(path, 'r', encoding='utf-8') as f:
            return User.from_dict(json.load(f))
    except (ValueError, KeyError, TypeError) as ex:
        logging.debug(f'Deleting corrupt credentials file {path}...')
        path.unlink(missing_ok=True)
        raise status.CredsInvalidException(str(ex)) from ex


def delete_creds(path: pathlib.Path) -> None:
    """
    Delete stored credentials.
    """
    if path.exists():
        logging.debug(f'Deleting {path}...')
        path.unlink()
    else:
        logging.debug('No credentials file found. No action taken.')


class Session(QtCore.QObject):
    """
    Holds the signed-in user and broadcasts auth-state changes.

    Signals:
        authStateChanged (object): Emitted with the new ``User`` or ``None``
            when a user signs in, signs up, is restored or signs out.
        idTokenChanged (object): Emitted with the ``User`` after its ID token
            was refreshed.
        signInRequested (str): Emitted with the sign-in route when a request
            was rejected as unauthorized.

    Args:
        identity: The identity service to authenticate with.
        creds_path: Where to persist the session. ``None`` disables persistence.
    """
    authStateChanged = QtCore.Signal(object)
    idTokenChanged = QtCore.Signal(object)
    signInRequested = QtCore.Signal(str)

    def __init__(self, identity: IdentityService, creds_path: Optional[pathlib.Path] = None,
                 parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent)
        self.identity = identity
        self.creds_path = creds_path
        self._user: Optional[User] = None

    @property
    def current_user(self) -> Optional[User]:
        return self._user

    @property
    def uid(self) -> Optional[str]:
        return self._user.uid if self._user else None

    def _set_user(self, user: Optional[User]) -> None:
        self._user = user
        try:
            if self.creds_path is not None:
                if user:
                    save_creds(user, self.creds_path)
                else:
                    delete_creds(self.creds_path)
        finally:
            # Listeners follow the in-memory state even if persisting it failed
            self.authStateChanged.emit(user)

    async def sign_up(self, email: str, password: str) -> User:
        """
        Create an account and sign it in.

        Raises:
            status.AuthException: If the backend rejects the account.
        """
        user = await start_asynchronous(self.identity.sign_up, email, password)
        self._set_user(user)
        return user

    async def sign_in(self, email: str, password: str) -> User:
        """
        Sign in with email and password.

        Raises:
            status.AuthException: With the backend's error code on failure.
        """
        try:
            user = await start_asynchronous(self.identity.sign_in_with_password, email, password)
        except status.AuthException:
            raise
        except Exception as ex:
            raise status.AuthException(
                str(ex) or 'Failed to sign in. Please try again.',
                code=getattr(ex, 'code', None)
            ) from ex
        self._set_user(user)
        return user

    async def sign_out(self) -> None:
        """
        Sign out the current user. Does nothing if no one is signed in.

        Raises:
            status.AuthException: If the persisted session could not be removed.
        """
        if self._user is None:
            return

        try:
            self._set_user(None)
        except OSError as ex:
            raise status.AuthException(
                str(ex) or 'Failed to sign out. Please try again.',
                code=getattr(ex, 'code', None)
            ) from ex
        logging.debug('Successfully signed out.')

    def on_auth_changed(self, callback: Callable[[Optional[User]], None]) -> Callable[[], None]:
        """
        Register a listener for auth-state changes.

        The callback is called once right away with the current user, then on
        every change.

        Returns:
            A callable that unsubscribes the listener. Calling it more than
            once has no effect.
        """

        def slot(user: Optional[User]) -> None:
            callback(user)

        self.authStateChanged.connect(slot)
        connected = [True]

        def unsubscribe() -> None:
            if not connected[0]:
                return
            connected[0] = False
            self.authStateChanged.disconnect(slot)

        callback(self._user)
        return unsubscribe

    async def _refresh(self) -> User:
        user = self._user
        try:
            data = await start_asynchronous(self.identity.refresh, user.refresh_token)
        except status.AuthException as ex:
            if ex.code in SESSION_ENDING_CODES and self._user is user:
                logging.debug(f'Session ended by the backend ({ex.code}).')
                self._set_user(None)
            raise

        refreshed = dataclasses.replace(
            user,
            uid=data['user_id'],
            id_token=data['id_token'],
            refresh_token=data['refresh_token'],
            expiry=data['expiry'],
        )
        if self._user is not user:
            # Signed out or switched user while the refresh was in flight
            return refreshed

        self._user = refreshed
        if self.creds_path is not None:
            save_creds(refreshed, self.creds_path)
        self.idTokenChanged.emit(refreshed)
        return refreshed

    async def get_id_token(self, force_refresh: bool = False) -> Optional[str]:
        """
        Return the current user's ID token.

        Args:
            force_refresh: Refresh the token even if the cached one is still valid.

        Returns:
            str or None: None when no one is signed in.
        """
        if self._user is None:
            return None
        if force_refresh or self._user.expired:
            user = await self._refresh()
            return user.id_token
        return self._user.id_token

    async def restore(self) -> Optional[User]:
        """
        Restore a persisted session and refresh its token.

        Returns:
            User or None: None when no session was persisted.

        Raises:
            status.CredsInvalidException: If the persisted session is corrupt.
            status.AuthException: If the backend refuses the refresh token.
        """
        if self.creds_path is None:
            return None

        user = load_creds(self.creds_path)
        if user is None:
            logging.debug('No persisted session to restore.')
            return None

        try:
            data = await start_asynchronous(self.identity.refresh, user.refresh_token)
        except status.AuthException as ex:
            if ex.code in SESSION_ENDING_CODES:
                delete_creds(self.creds_path)
            raise

        user = dataclasses.replace(
            user,
            uid=data['user_id'],
            id_token=data['id_token'],
            refresh_token=data['refresh_token'],
            expiry=data['expiry'],
        )
        self._set_user(user)
        logging.debug(f'Restored session for "{user.email}".')
        return user
