from unittest.mock import AsyncMock, patch

from django.test import SimpleTestCase

from services.ride_sync.base import SessionState
from services.ride_sync.content import ContentManager, build_content_payload
from services.ride_sync.exceptions import (
	ForbiddenError,
	InvalidStateError,
	NotFoundError,
	ValidationFailedError,
)
from services.ride_sync.memory import InMemoryDocumentStore
from services.ride_sync.store import SERVER_TIMESTAMP, StoreError, content_path, ride_path

from .helpers import seed_ride, settle


class BuildContentPayloadTests(SimpleTestCase):

	def test_photo_requires_url(self):
		with self.assertRaises(ValidationFailedError) as ctx:
			build_content_payload({'kind': 'photo', 'title': 'Rohtang', 'url': '  '}, 'u1')
		self.assertEqual(ctx.exception.message, 'URL is required for Photo/Video.')

	def test_title_is_required(self):
		with self.assertRaises(ValidationFailedError):
			build_content_payload({'kind': 'blog', 'title': '', 'body': 'Day one'}, 'u1')

	def test_blog_keeps_body_and_drops_url(self):
		payload = build_content_payload(
			{'kind': 'blog', 'title': ' Day 1 ', 'body': 'Rode 300km\n', 'url': 'ignored'}, 'u1'
		)
		self.assertEqual(payload['title'], 'Day 1')
		self.assertEqual(payload['body'], 'Rode 300km\n')
		self.assertNotIn('url', payload)
		self.assertEqual(payload['owner_id'], 'u1')
		self.assertIs(payload['updated_at'], SERVER_TIMESTAMP)

	def test_unknown_kind_is_rejected(self):
		with self.assertRaises(ValidationFailedError):
			build_content_payload({'kind': 'audio', 'title': 'Podcast'}, 'u1')


class ContentManagerTests(SimpleTestCase):

	async def _open(self, acting_user_id='u1', owner_id='u1'):
		self.store = InMemoryDocumentStore()
		self.ride_id = await seed_ride(self.store, owner_id)
		manager = ContentManager(self.store, self.ride_id, acting_user_id=acting_user_id)
		await manager.open()
		await settle()
		return manager

	async def _add_item(self, title, owner_id='u1', kind='photo'):
		fields = {'owner_id': owner_id, 'kind': kind, 'title': title, 'created_at': SERVER_TIMESTAMP}
		if kind == 'blog':
			fields['body'] = 'Notes'
		else:
			fields['url'] = f'https://example.com/{title}.jpg'
		return await self.store.add(content_path(self.ride_id), fields)

	async def test_open_lists_items_newest_first(self):
		manager = await self._open()
		await self._add_item('first')
		await self._add_item('second')
		await settle()

		self.assertEqual(manager.state, SessionState.VIEWING)
		self.assertEqual([item['title'] for item in manager.items], ['second', 'first'])
		manager.close()

	async def test_missing_ride_is_not_found(self):
		store = InMemoryDocumentStore()
		manager = ContentManager(store, '404', acting_user_id='u1')
		await manager.open()
		self.assertEqual(manager.error_kind, 'not_found')

	async def test_store_read_failure_is_subscription_failed(self):
		store = InMemoryDocumentStore()
		manager = ContentManager(store, '7', acting_user_id='u1')
		with patch.object(store, 'get', AsyncMock(side_effect=StoreError('store offline'))):
			await manager.open()
		self.assertEqual(manager.state, SessionState.ERROR)
		self.assertEqual(manager.error_kind, 'subscription_failed')
		self.assertEqual(manager.error.message, 'store offline')

	async def test_foreign_ride_is_forbidden(self):
		manager = await self._open(acting_user_id='u2')
		self.assertEqual(manager.error_kind, 'forbidden')
		with self.assertRaises(InvalidStateError):
			manager.begin_create('photo')

	async def test_create_photo(self):
		manager = await self._open()
		manager.begin_create('photo')
		manager.update_draft(title='Atal Tunnel', url='https://example.com/atal.jpg', caption='North portal')

		item_id = await manager.commit()
		await settle()

		self.assertEqual(manager.state, SessionState.VIEWING)
		self.assertIsNone(manager.draft)
		item = manager.items[0]
		self.assertEqual(item['id'], item_id)
		self.assertEqual(item['url'], 'https://example.com/atal.jpg')
		self.assertEqual(item['caption'], 'North portal')
		self.assertEqual(item['owner_id'], 'u1')
		self.assertIsNotNone(item['created_at'])
		manager.close()

	async def test_photo_without_url_writes_nothing(self):
		manager = await self._open()
		manager.begin_create('video')
		manager.update_draft(title='Descent')

		with patch.object(self.store, 'add', new_callable=AsyncMock) as add:
			with self.assertRaises(ValidationFailedError):
				await manager.commit()
		add.assert_not_called()
		self.assertEqual(manager.state, SessionState.EDITING)
		manager.close()

	async def test_create_blog(self):
		manager = await self._open()
		manager.begin_create('blog')
		item_id = await manager.commit({'title': 'Day 1', 'body': 'Delhi to Chandigarh'})
		await settle()

		stored = await self.store.get(content_path(self.ride_id, item_id))
		self.assertEqual(stored.data['body'], 'Delhi to Chandigarh')
		self.assertEqual(stored.data['kind'], 'blog')
		manager.close()

	async def test_item_under_edit_is_pinned(self):
		manager = await self._open()
		edited_id = await self._add_item('edited')
		sibling_id = await self._add_item('sibling')
		await settle()

		manager.begin_edit(edited_id)
		await self.store.update(content_path(self.ride_id, edited_id), {'title': 'changed remotely'})
		await self.store.update(content_path(self.ride_id, sibling_id), {'title': 'sibling v2'})
		await settle()

		titles = {item['id']: item['title'] for item in manager.items}
		self.assertEqual(titles[edited_id], 'edited')
		self.assertEqual(titles[sibling_id], 'sibling v2')
		self.assertEqual(manager.draft['title'], 'edited')

		manager.cancel_edit()
		titles = {item['id']: item['title'] for item in manager.items}
		self.assertEqual(titles[edited_id], 'changed remotely')
		manager.close()

	async def test_edit_commit_updates_item(self):
		manager = await self._open()
		item_id = await self._add_item('before')
		await settle()

		manager.begin_edit(item_id)
		manager.update_draft(title='after')
		self.assertEqual(await manager.commit(), item_id)
		await settle()

		self.assertEqual(manager.items[0]['title'], 'after')
		self.assertEqual(len(manager.items), 1)
		manager.close()

	async def test_second_form_replaces_the_first(self):
		manager = await self._open()
		item_id = await self._add_item('existing')
		await settle()

		manager.begin_create('blog')
		manager.begin_edit(item_id)
		self.assertEqual(manager.editing_id, item_id)
		self.assertEqual(manager.draft['kind'], 'photo')
		manager.close()

	async def test_foreign_item_cannot_be_edited(self):
		manager = await self._open()
		item_id = await self._add_item('guest post', owner_id='u2', kind='blog')
		await settle()

		with self.assertRaises(ForbiddenError):
			manager.begin_edit(item_id)
		with self.assertRaises(ForbiddenError):
			await manager.delete(item_id)
		manager.close()

	async def test_unknown_item(self):
		manager = await self._open()
		with self.assertRaises(NotFoundError):
			manager.begin_edit('999')
		manager.close()

	async def test_rejected_edit_keeps_unsaved_draft(self):
		manager = await self._open()
		foreign_id = await self._add_item('guest post', owner_id='u2', kind='blog')
		await settle()

		manager.begin_create('blog')
		manager.update_draft(title='Day 1 notes', body='long unsaved text')
		with self.assertRaises(NotFoundError):
			manager.begin_edit('does-not-exist')
		with self.assertRaises(ForbiddenError):
			manager.begin_edit(foreign_id)

		self.assertEqual(manager.state, SessionState.EDITING)
		self.assertIsNone(manager.editing_id)
		self.assertEqual(manager.draft['title'], 'Day 1 notes')
		self.assertEqual(manager.draft['body'], 'long unsaved text')
		manager.close()

	async def test_delete_item(self):
		manager = await self._open()
		item_id = await self._add_item('to delete')
		await settle()

		manager.begin_edit(item_id)
		await manager.delete(item_id)
		await settle()

		self.assertEqual(manager.items, [])
		self.assertEqual(manager.state, SessionState.VIEWING)
		self.assertIsNone(manager.draft)
		manager.close()

	async def test_purge_is_explicit(self):
		manager = await self._open()
		await self._add_item('a')
		await self._add_item('b')
		await self.store.delete(ride_path(self.ride_id))
		await settle()

		# plan deletion leaves the content in place
		self.assertEqual(len(manager.items), 2)

		self.assertEqual(await manager.purge(), 2)
		await settle()
		self.assertEqual(manager.items, [])
		manager.close()
