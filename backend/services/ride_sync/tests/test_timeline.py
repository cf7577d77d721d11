from unittest.mock import AsyncMock, patch

from django.test import SimpleTestCase

from services.ride_sync.base import SessionState
from services.ride_sync.exceptions import InvalidStateError, ValidationFailedError, WriteFailedError
from services.ride_sync.memory import InMemoryDocumentStore
from services.ride_sync.store import SERVER_TIMESTAMP, StoreError, ride_path
from services.ride_sync.timeline import TimelineManager, build_timeline_entry, newest_first

from .helpers import seed_ride, settle


class TimelineEntryTests(SimpleTestCase):

	def test_entry_is_trimmed_and_stamped_by_the_store(self):
		entry = build_timeline_entry('  Crossed Rohtang  ')
		self.assertEqual(entry['text'], 'Crossed Rohtang')
		self.assertIs(entry['recorded_at'], SERVER_TIMESTAMP)

	def test_empty_text_is_rejected(self):
		with self.assertRaises(ValidationFailedError) as ctx:
			build_timeline_entry(' ')
		self.assertEqual(ctx.exception.message, 'Update text is required.')

	def test_newest_first(self):
		self.assertEqual(newest_first([{'text': 'a'}, {'text': 'b'}]), [{'text': 'b'}, {'text': 'a'}])
		self.assertEqual(newest_first(None), [])


class TimelineManagerTests(SimpleTestCase):

	async def _open(self, acting_user_id='u1'):
		self.store = InMemoryDocumentStore()
		self.ride_id = await seed_ride(self.store, 'u1')
		manager = TimelineManager(self.store, self.ride_id, acting_user_id=acting_user_id)
		await manager.open()
		await settle()
		return manager

	async def test_append_grows_the_timeline(self):
		manager = await self._open()
		await manager.append('Left Delhi at 5am')
		await manager.append('Breakfast at Murthal')
		await settle()

		self.assertEqual(
			[entry['text'] for entry in manager.entries],
			['Breakfast at Murthal', 'Left Delhi at 5am'],
		)
		stored = (await self.store.get(ride_path(self.ride_id))).data['timeline_updates']
		self.assertEqual(stored[0]['text'], 'Left Delhi at 5am')
		self.assertEqual(manager.state, SessionState.VIEWING)
		manager.close()

	async def test_empty_update_never_reaches_the_store(self):
		manager = await self._open()
		with patch.object(self.store, 'append', new_callable=AsyncMock) as append:
			with self.assertRaises(ValidationFailedError):
				await manager.append('')
		append.assert_not_called()
		manager.close()

	async def test_foreign_ride(self):
		manager = await self._open(acting_user_id='u2')
		self.assertEqual(manager.error_kind, 'forbidden')
		with self.assertRaises(InvalidStateError):
			await manager.append('Not mine')

	async def test_store_failure_restores_state(self):
		manager = await self._open()
		with patch.object(self.store, 'append', new=AsyncMock(side_effect=StoreError('offline'))):
			with self.assertRaises(WriteFailedError):
				await manager.append('Reached Manali')
		self.assertEqual(manager.state, SessionState.VIEWING)
		manager.close()
