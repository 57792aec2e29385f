"""Cloud Firestore client construction and asynchronous helpers.

The Firestore client is authenticated with the signed-in user's Firebase ID
token, so every read and write is evaluated against the project's security
rules for that user. One client is cached per token.
"""

import asyncio
import contextlib
import logging
import os
from typing import Any, Callable, Optional, Set

import google.oauth2.credentials
from google.cloud import firestore

EMULATOR_ENV = 'FIRESTORE_EMULATOR_HOST'


async def start_asynchronous(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """
    Run a blocking function in a worker thread and await its result.

    No retries are attempted: an exception raised by ``func`` propagates to
    the awaiting caller unchanged.

    Args:
        func: The blocking function to run.
        *args, **kwargs: Arguments passed to func.

    Returns:
        The result of the function.
    """
    return await asyncio.to_thread(func, *args, **kwargs)


def build_client(project_id: str, id_token: str) -> firestore.AsyncClient:
    """Build a Firestore AsyncClient that authenticates with a Firebase ID token."""
    creds = google.oauth2.credentials.Credentials(token=id_token)
    return firestore.AsyncClient(project=project_id, credentials=creds)


@contextlib.contextmanager
def _emulator_environ(host: Optional[str]):
    """Expose ``host`` as FIRESTORE_EMULATOR_HOST while a client is built.

    The client library reads the variable once, when the client is
    constructed, so the previous value is restored right after.
    """
    if not host:
        yield
        return

    previous = os.environ.get(EMULATOR_ENV)
    os.environ[EMULATOR_ENV] = host
    try:
        yield
    finally:
        if previous is None:
            os.environ.pop(EMULATOR_ENV, None)
        else:
            os.environ[EMULATOR_ENV] = previous


async def close_client(client: Any) -> None:
    """Close the gRPC channel of a Firestore AsyncClient.

    The channel is opened lazily on the first request, so a client that never
    talked to the backend has nothing to close.
    """
    transport = getattr(client, '_transport', None)
    if transport is None:
        return
    await transport.close()
    logging.debug('Closed Firestore client channel.')


class FirestoreService:
    """Builds (or returns cached) Firestore clients for a project.

    Args:
        project_id: The Firebase/GCP project id.
        emulator_host: Optional ``host:port`` of a local Firestore emulator.
        client_factory: Callable ``(project_id, id_token) -> client``.
    """

    def __init__(self, project_id: str, emulator_host: Optional[str] = None,
                 client_factory: Callable[[str, str], Any] = build_client) -> None:
        self.project_id = project_id
        self.emulator_host = emulator_host
        self._client_factory = client_factory
        self._cached_client: Any = None
        self._cached_token: Optional[str] = None
        self._closing: Set[asyncio.Task] = set()

    def get_client(self, id_token: str) -> Any:
        """
        Return the Firestore client for ``id_token``, building it if needed.

        Raises:
            ValueError: If ``id_token`` is empty.
        """
        if not id_token:
            raise ValueError('An ID token is required to build a Firestore client.')

        if self._cached_client is not None and self._cached_token == id_token:
            return self._cached_client

        self.clear_client()
        if self.emulator_host:
            logging.debug(f'Using Firestore emulator at {self.emulator_host}.')
        with _emulator_environ(self.emulator_host):
            self._cached_client = self._client_factory(self.project_id, id_token)
        self._cached_token = id_token
        logging.debug(f'Firestore client created for project "{self.project_id}".')
        return self._cached_client

    def clear_client(self, *args: Any) -> None:
        """
        Clears the cached Firestore client.

        The retired client is closed in the background when an event loop is
        running.
        """
        client = self._cached_client
        self._cached_client = None
        self._cached_token = None
        if client is None:
            return

        logging.debug('Clearing cached Firestore client.')
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logging.debug('No running event loop, the retired client is left to be garbage collected.')
            return

        task = loop.create_task(close_client(client))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def close(self) -> None:
        """Close the cached client and wait for retired clients to finish closing."""
        client = self._cached_client
        self._cached_client = None
        self._cached_token = None
        if client is not None:
            await close_client(client)
        if self._closing:
            await asyncio.gather(*self._closing)
