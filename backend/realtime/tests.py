from types import SimpleNamespace
from unittest.mock import patch

from channels.testing import WebsocketCommunicator
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from django.test import SimpleTestCase, TestCase
from rest_framework_simplejwt.tokens import AccessToken

from services.ride_sync.memory import InMemoryDocumentStore
from services.ride_sync.store import ride_path
from services.ride_sync.tests.helpers import seed_ride, settle

from .consumers.base import UNAUTHORIZED_CLOSE_CODE
from .consumers.ride_plan_consumer import RidePlanConsumer
from .middleware import JWTOrCookieAuthMiddleware
from .store import group_for_path

User = get_user_model()


async def receive_until(communicator, msg_type, predicate=lambda message: True, limit=25):
	"""Read messages until one of ``msg_type`` matches, skipping the rest."""
	for _ in range(limit):
		message = await communicator.receive_json_from(timeout=2)
		if message['type'] == msg_type and predicate(message):
			return message
	raise AssertionError(f'no {msg_type} message received')


async def receive_all(communicator, wanted, limit=25):
	"""Read messages until each type in ``wanted`` has matched once, in any order."""
	seen = {}
	for _ in range(limit):
		message = await communicator.receive_json_from(timeout=2)
		matches = wanted.get(message['type'])
		if matches is not None and message['type'] not in seen and matches(message):
			seen[message['type']] = message
		if len(seen) == len(wanted):
			return seen
	raise AssertionError(f'missing messages: {sorted(set(wanted) - set(seen))}')


class RidePlanConsumerTests(SimpleTestCase):
	def setUp(self):
		self.store = InMemoryDocumentStore()
		patcher = patch('realtime.consumers.ride_plan_consumer.get_document_store', return_value=self.store)
		patcher.start()
		self.addCleanup(patcher.stop)

	async def _connect(self, user_id=7):
		communicator = WebsocketCommunicator(RidePlanConsumer.as_asgi(), '/ws/ride-plan/')
		communicator.scope['user'] = SimpleNamespace(id=user_id, email='rider@example.com', is_anonymous=False)
		connected, _ = await communicator.connect()
		self.assertTrue(connected)
		hello = await communicator.receive_json_from()
		self.assertEqual(hello['type'], 'connection_established')
		return communicator

	async def _open_ride(self, communicator, ride_id):
		await communicator.send_json_to({'type': 'open_ride', 'ride_id': ride_id})
		return await receive_until(communicator, 'ride_state', lambda m: m['state'] != 'loading')

	async def test_anonymous_connection_is_rejected(self):
		communicator = WebsocketCommunicator(RidePlanConsumer.as_asgi(), '/ws/ride-plan/')
		communicator.scope['user'] = AnonymousUser()
		connected, code = await communicator.connect()
		self.assertFalse(connected)
		self.assertEqual(code, UNAUTHORIZED_CLOSE_CODE)

	async def test_edit_and_commit(self):
		ride_id = await seed_ride(self.store, '7')
		communicator = await self._connect()

		state = await self._open_ride(communicator, ride_id)
		self.assertEqual(state['state'], 'viewing')
		self.assertEqual(state['ride']['title'], 'Manali Run')

		await communicator.send_json_to({'type': 'begin_edit'})
		await communicator.send_json_to({'type': 'update_draft', 'fields': {'title': 'Manali via Jalori'}})
		state = await receive_until(
			communicator, 'ride_state', lambda m: m['ride']['title'] == 'Manali via Jalori'
		)
		self.assertEqual(state['state'], 'editing')
		self.assertEqual(state['remote']['title'], 'Manali Run')

		await communicator.send_json_to({'type': 'commit_edit'})
		state = await receive_until(
			communicator, 'ride_state',
			lambda m: m['state'] == 'viewing' and m['remote']['title'] == 'Manali via Jalori',
		)
		self.assertFalse(state['editing'])

		stored = await self.store.get(ride_path(ride_id))
		self.assertEqual(stored.data['title'], 'Manali via Jalori')
		await communicator.disconnect()

	async def test_foreign_ride_reports_forbidden(self):
		ride_id = await seed_ride(self.store, '8')
		communicator = await self._connect(user_id=7)

		state = await self._open_ride(communicator, ride_id)
		self.assertEqual(state['state'], 'error')
		self.assertEqual(state['error']['kind'], 'forbidden')
		self.assertIsNone(state['ride'])
		await communicator.disconnect()

	async def test_errors_carry_kind(self):
		ride_id = await seed_ride(self.store, '7')
		communicator = await self._connect()

		await communicator.send_json_to({'type': 'begin_edit'})
		error = await receive_until(communicator, 'error')
		self.assertEqual(error['kind'], 'invalid_state')

		await self._open_ride(communicator, ride_id)
		await communicator.send_json_to({'type': 'append_update', 'text': '   '})
		error = await receive_until(communicator, 'error')
		self.assertEqual(error['kind'], 'validation_failed')
		self.assertEqual(error['message'], 'Update text is required.')
		self.assertEqual(error['request'], 'append_update')

		await communicator.send_json_to({'type': 'teleport'})
		error = await receive_until(communicator, 'error')
		self.assertEqual(error['message'], 'Unknown message type: teleport')

		await communicator.send_json_to({'ride_id': ride_id})
		error = await receive_until(communicator, 'error')
		self.assertEqual(error['message'], 'Message type is required')
		await communicator.disconnect()

	async def test_timeline_and_status(self):
		ride_id = await seed_ride(self.store, '7')
		communicator = await self._connect()
		await self._open_ride(communicator, ride_id)

		await communicator.send_json_to({'type': 'append_update', 'text': 'Left Delhi'})
		state = await receive_until(communicator, 'ride_state', lambda m: len(m['timeline']) == 1)
		self.assertEqual(state['timeline'][0]['text'], 'Left Delhi')

		await communicator.send_json_to({'type': 'set_status', 'status': 'ongoing'})
		state = await receive_until(communicator, 'ride_state', lambda m: m['ride']['status'] == 'ongoing')
		self.assertEqual(state['state'], 'viewing')
		await communicator.disconnect()

	async def test_export_calendar(self):
		ride_id = await seed_ride(self.store, '7')
		communicator = await self._connect()
		await self._open_ride(communicator, ride_id)

		await communicator.send_json_to({'type': 'export_calendar'})
		message = await receive_until(communicator, 'calendar')

		self.assertEqual(message['filename'], 'Manali_Run.ics')
		self.assertEqual(message['content_type'], 'text/calendar; charset=utf-8')
		self.assertIn('DTSTART:20260210T060000\r\n', message['ics'])
		self.assertTrue(message['google_calendar_link'].startswith('https://calendar.google.com/'))
		await communicator.disconnect()

	async def test_content_flow(self):
		ride_id = await seed_ride(self.store, '7')
		communicator = await self._connect()
		await self._open_ride(communicator, ride_id)

		await communicator.send_json_to({'type': 'begin_content', 'kind': 'photo'})
		await communicator.send_json_to({'type': 'commit_content', 'fields': {'title': 'Rohtang'}})
		error = await receive_until(communicator, 'error')
		self.assertEqual(error['message'], 'URL is required for Photo/Video.')

		await communicator.send_json_to({
			'type': 'commit_content',
			'fields': {'url': 'https://example.com/rohtang.jpg'},
		})
		seen = await receive_all(communicator, {
			'content_saved': lambda m: True,
			'content_state': lambda m: len(m['items']) == 1,
		})
		item_id = seen['content_saved']['item_id']
		self.assertEqual(seen['content_state']['items'][0]['id'], item_id)

		await communicator.send_json_to({'type': 'delete_content', 'item_id': item_id})
		seen = await receive_all(communicator, {
			'content_deleted': lambda m: True,
			'content_state': lambda m: m['items'] == [],
		})
		self.assertEqual(seen['content_deleted']['item_id'], item_id)
		await communicator.disconnect()

	async def test_close_ride(self):
		ride_id = await seed_ride(self.store, '7')
		communicator = await self._connect()
		await self._open_ride(communicator, ride_id)

		await communicator.send_json_to({'type': 'close_ride'})
		state = await receive_until(communicator, 'ride_state', lambda m: m['state'] == 'closed')
		self.assertEqual(state['ride_id'], ride_id)

		await communicator.send_json_to({'type': 'begin_edit'})
		error = await receive_until(communicator, 'error')
		self.assertEqual(error['kind'], 'invalid_state')
		await communicator.disconnect()


class StatePushTests(SimpleTestCase):
	def _consumer(self):
		consumer = RidePlanConsumer()
		consumer.user_id = 7
		consumer._pending_pushes = set()
		consumer._queued_pushes = set()
		return consumer

	async def test_failed_push_is_logged(self):
		consumer = self._consumer()

		async def push():
			raise RuntimeError('socket already closed')

		with self.assertLogs('realtime.consumers.ride_plan_consumer', level='ERROR') as logs:
			consumer._push_soon(push)
			await settle()

		self.assertIn('State push failed for user 7', logs.output[0])
		self.assertEqual(str(logs.records[0].exc_info[1]), 'socket already closed')
		self.assertEqual(consumer._pending_pushes, set())

	async def test_queued_push_runs_once(self):
		consumer = self._consumer()
		calls = []

		async def push():
			calls.append(1)

		consumer._push_soon(push)
		consumer._push_soon(push)
		await settle()
		self.assertEqual(calls, [1])


class GroupNameTests(SimpleTestCase):

	def test_group_for_path(self):
		self.assertEqual(group_for_path('rides/7'), 'ride_plan_7')
		self.assertEqual(group_for_path('rides/7/content'), 'ride_plan_7_content')
		self.assertEqual(group_for_path('rides/7/content/3'), 'ride_plan_7_content_3')


class JWTOrCookieAuthMiddlewareTests(TestCase):
	def setUp(self):
		self.user = User.objects.create_user(username='rider', password='pass1234')

	async def _resolve(self, query_string, scope=None):
		captured = {}

		async def app(scope, receive, send):
			captured['user'] = scope['user']

		middleware = JWTOrCookieAuthMiddleware(app)
		await middleware({'type': 'websocket', 'query_string': query_string, **(scope or {})}, None, None)
		return captured['user']

	async def test_valid_token(self):
		token = str(AccessToken.for_user(self.user))
		user = await self._resolve(f'token={token}'.encode())
		self.assertEqual(user.pk, self.user.pk)

	async def test_invalid_token_is_anonymous(self):
		user = await self._resolve(b'token=not-a-jwt')
		self.assertTrue(user.is_anonymous)

	async def test_session_user_is_kept(self):
		user = await self._resolve(b'', scope={'user': self.user})
		self.assertEqual(user, self.user)

	async def test_no_credentials(self):
		user = await self._resolve(b'')
		self.assertTrue(user.is_anonymous)
