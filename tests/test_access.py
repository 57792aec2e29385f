"""End-to-end tests of the AccessLayer with in-memory identity and database doubles."""
import asyncio
import os
from unittest import mock
from unittest.mock import MagicMock

import requests

import ExpenseCloud
from ExpenseCloud.core.access import AccessLayer
from ExpenseCloud.core.auth import Session
from ExpenseCloud.core.service import FirestoreService
from ExpenseCloud.settings import lib
from ExpenseCloud.status.status import NotSignedInException, UnauthorizedException
from tests.base import (
    BaseAsyncTestCase,
    BaseTestCase,
    FakeFirestore,
    FakeIdentity,
    clean_environ,
    make_config,
    make_response,
)


class AccessTestCase(BaseAsyncTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.db = FakeFirestore()
        self.identity = FakeIdentity()
        self.identity.accounts['ana@example.com'] = ('secret', 'uid-ana')
        self.identity.accounts['bo@example.com'] = ('secret', 'uid-bo')
        self.http = MagicMock(spec=requests.Session)

    async def provide(self):
        return self.db

    def make_access(self, **kwargs) -> AccessLayer:
        kwargs.setdefault('client_provider', self.provide)
        return AccessLayer(config=make_config(), identity=self.identity, http=self.http, **kwargs)


class TestAccessLayer(AccessTestCase):

    async def test_crud_round_trip(self):
        access = self.make_access()
        await access.sign_in('ana@example.com', 'secret')

        expense_id = await access.add_expense(
            {'description': 'Coffee', 'date': '2024-01-01', 'cost': 4.5, 'deleted': False})
        self.assertEqual([e.id for e in await access.fetch_expenses()], [expense_id])

        await access.update_expense(expense_id, {'description': 'Espresso'})
        self.assertEqual((await access.get_expense(expense_id)).description, 'Espresso')

        await access.delete_expense(expense_id)
        self.assertEqual(await access.fetch_expenses(), [])
        self.assertTrue((await access.get_expense(expense_id)).deleted)

    async def test_signed_out_crud_fails_without_network(self):
        access = self.make_access()
        with self.assertRaises(NotSignedInException):
            await access.fetch_expenses()
        self.assertEqual(self.db.calls, [])

    async def test_sign_out_locks_expenses(self):
        access = self.make_access()
        await access.sign_in('ana@example.com', 'secret')
        await access.sign_out()
        with self.assertRaises(NotSignedInException):
            await access.add_expense({'description': 'Coffee', 'date': '2024-01-01', 'cost': 1})

    async def test_two_identities_do_not_see_each_other(self):
        ana = self.make_access(session=Session(self.identity))
        bo = self.make_access(session=Session(self.identity))
        await ana.sign_in('ana@example.com', 'secret')
        await bo.sign_in('bo@example.com', 'secret')

        await ana.add_expense({'description': 'Coffee', 'date': '2024-01-01', 'cost': 4.5})

        self.assertEqual(len(await ana.fetch_expenses()), 1)
        self.assertEqual(await bo.fetch_expenses(), [])

    async def test_auth_listener(self):
        access = self.make_access()
        events = []
        unsubscribe = access.on_auth_changed(events.append)
        user = await access.sign_in('ana@example.com', 'secret')
        unsubscribe()
        await access.sign_out()
        self.assertEqual(events, [None, user])

    async def test_get_id_token(self):
        access = self.make_access()
        self.assertIsNone(await access.get_id_token())
        user = await access.sign_in('ana@example.com', 'secret')
        self.assertEqual(await access.get_id_token(), user.id_token)
        self.assertNotEqual(await access.get_id_token(force_refresh=True), user.id_token)

    async def test_authed_fetch_unauthorized_emits_sign_in_request(self):
        access = self.make_access()
        routes = []
        access.session.signInRequested.connect(lambda route: routes.append(route))
        self.http.request.return_value = make_response(401)

        await access.sign_in('ana@example.com', 'secret')
        with self.assertRaises(UnauthorizedException):
            await access.authed_fetch('GET', 'https://api.example.com/me')

        self.assertEqual(routes, ['/signin'])
        _, kwargs = self.http.request.call_args
        self.assertTrue(kwargs['headers']['Authorization'].startswith('Bearer token-uid-ana'))

    async def test_authed_fetch_custom_handler(self):
        routes = []
        access = self.make_access(unauthorized_handler=routes.append)
        self.http.request.return_value = make_response(401)
        with self.assertRaises(UnauthorizedException):
            await access.authed_fetch('GET', 'https://api.example.com/me')
        self.assertEqual(routes, ['/signin'])

    async def test_restore_persisted_session(self):
        first = self.make_access()
        await first.sign_in('ana@example.com', 'secret')
        self.assertTrue(lib.settings.creds_path.exists())

        second = self.make_access()
        user = await second.restore()
        self.assertEqual(user.uid, 'uid-ana')
        self.assertEqual(second.current_user.uid, 'uid-ana')


class TestFirestoreClient(AccessTestCase):
    """The default client provider builds one client per ID token."""

    def setUp(self) -> None:
        super().setUp()
        self.built = []

    def factory(self, project_id, id_token):
        self.built.append((project_id, id_token))
        return self.db

    def make_access(self, **kwargs) -> AccessLayer:
        access = AccessLayer(config=make_config(), identity=self.identity, http=self.http, **kwargs)
        access.firestore = FirestoreService(access.config['project_id'], client_factory=self.factory)
        access.session.idTokenChanged.connect(access.firestore.clear_client)
        access.session.authStateChanged.connect(access.firestore.clear_client)
        return access

    async def test_signed_out_client_is_refused(self):
        access = self.make_access()
        with self.assertRaises(NotSignedInException):
            await access._get_firestore_client()
        self.assertEqual(self.built, [])

    async def test_client_is_cached_per_token(self):
        access = self.make_access()
        user = await access.sign_in('ana@example.com', 'secret')
        await access.fetch_expenses()
        await access.fetch_expenses()
        self.assertEqual(self.built, [('demo-expensecloud', user.id_token)])

        await access.get_id_token(force_refresh=True)
        await access.fetch_expenses()
        self.assertEqual(len(self.built), 2)
        self.assertEqual(self.built[-1][1], access.current_user.id_token)


class TestFirestoreService(BaseTestCase):

    def test_requires_token(self):
        service = FirestoreService('demo', client_factory=lambda p, t: object())
        with self.assertRaises(ValueError):
            service.get_client('')

    def test_clear_client(self):
        clients = []

        def factory(project_id, id_token):
            clients.append(object())
            return clients[-1]

        service = FirestoreService('demo', client_factory=factory)
        first = service.get_client('t')
        self.assertIs(service.get_client('t'), first)
        service.clear_client()
        self.assertIsNot(service.get_client('t'), first)

class FakeTransport:
    def __init__(self) -> None:
        self.closed = False

    async def close(self) -> None:
        self.closed = True


class FakeClient:
    def __init__(self, project_id, id_token) -> None:
        self.id_token = id_token
        self.emulator_host = os.environ.get('FIRESTORE_EMULATOR_HOST')
        self._transport = FakeTransport()


class TestFirestoreServiceLifecycle(BaseAsyncTestCase):

    async def test_retired_client_is_closed(self):
        service = FirestoreService('demo', client_factory=FakeClient)
        first = service.get_client('t1')
        second = service.get_client('t2')
        await asyncio.sleep(0)

        self.assertTrue(first._transport.closed)
        self.assertFalse(second._transport.closed)

        service.clear_client()
        await service.close()
        self.assertTrue(second._transport.closed)

    async def test_close_without_channel(self):
        service = FirestoreService('demo', client_factory=lambda p, t: object())
        service.get_client('t')
        await service.close()
        await service.close()

    async def test_emulator_host_is_scoped_to_construction(self):
        service = FirestoreService('demo', emulator_host='localhost:8080', client_factory=FakeClient)
        with mock.patch.dict(os.environ, clean_environ(), clear=True):
            client = service.get_client('t')
            self.assertNotIn('FIRESTORE_EMULATOR_HOST', os.environ)
        self.assertEqual(client.emulator_host, 'localhost:8080')

    async def test_emulator_host_restores_previous_value(self):
        service = FirestoreService('demo', emulator_host='localhost:8080', client_factory=FakeClient)
        with mock.patch.dict(os.environ, clean_environ(FIRESTORE_EMULATOR_HOST='other:1'), clear=True):
            service.get_client('t')
            self.assertEqual(os.environ['FIRESTORE_EMULATOR_HOST'], 'other:1')

    async def test_access_layer_close(self):
        http = MagicMock(spec=requests.Session)
        access = AccessLayer(config=make_config(), identity=FakeIdentity(), http=http)
        access.firestore = FirestoreService('demo', client_factory=FakeClient)
        client = access.firestore.get_client('t')

        await access.close()

        self.assertTrue(client._transport.closed)
        http.close.assert_called_once()



class TestConnect(BaseTestCase):

    def test_connect_reads_saved_config(self):
        lib.settings['api_key'] = 'saved-key'
        lib.settings['project_id'] = 'saved-project'
        lib.settings.set_section('emulator', {'auth_host': 'localhost:9099'})

        with mock.patch.dict(os.environ, clean_environ(), clear=True):
            access = ExpenseCloud.connect()

        self.assertIsInstance(access, AccessLayer)
        self.assertEqual(access.identity.api_key, 'saved-key')
        self.assertEqual(access.identity.emulator_host, 'localhost:9099')
        self.assertEqual(access.firestore.project_id, 'saved-project')
        self.assertEqual(access.session.creds_path, lib.settings.creds_path)

    def test_session_persistence_can_be_disabled(self):
        access = AccessLayer(config=make_config(persist_session=False), identity=FakeIdentity())
        self.assertIsNone(access.session.creds_path)
