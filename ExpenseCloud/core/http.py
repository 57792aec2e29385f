"""HTTP requests carrying the signed-in user's bearer token."""
import logging
from typing import Any, Awaitable, Callable, Optional

import requests
from requests.structures import CaseInsensitiveDict

from .service import start_asynchronous
from ..settings.lib import DEFAULT_SIGNIN_ROUTE
from ..status import status


async def authed_fetch(
        method: str,
        url: str,
        *,
        token_provider: Callable[[], Awaitable[Optional[str]]],
        http: Optional[requests.Session] = None,
        unauthorized_handler: Optional[Callable[[str], None]] = None,
        signin_route: str = DEFAULT_SIGNIN_ROUTE,
        **kwargs: Any
) -> requests.Response:
    """
    Send an HTTP request with an ``Authorization: Bearer`` header.

    The header is omitted when no one is signed in. Caller headers are kept,
    but the bearer token replaces any ``Authorization`` header they carry.

    Args:
        method: HTTP method, e.g. ``'GET'``.
        url: Request URL.
        token_provider: Coroutine function returning the current ID token or None.
        http: Session to send the request with. If omitted, a new session is
            opened and closed for this request.
        unauthorized_handler: Called once with ``signin_route`` on HTTP 401.
        signin_route: Route passed to ``unauthorized_handler``.
        **kwargs: Passed on to ``requests.Session.request``.

    Returns:
        The response, for any status other than 401.

    Raises:
        status.UnauthorizedException: If the server answers with HTTP 401.
    """
    headers = CaseInsensitiveDict(kwargs.pop('headers', None) or {})
    token = await token_provider()
    if token:
        headers['Authorization'] = f'Bearer {token}'

    if http is None:
        with requests.Session() as session:
            response = await start_asynchronous(session.request, method, url, headers=headers, **kwargs)
    else:
        response = await start_asynchronous(http.request, method, url, headers=headers, **kwargs)

    if response.status_code == 401:
        logging.debug(f'{method} {url} returned 401, requesting sign-in at "{signin_route}".')
        if unauthorized_handler is not None:
            unauthorized_handler(signin_route)
        raise status.UnauthorizedException(f'{method} {url}')

    return response
