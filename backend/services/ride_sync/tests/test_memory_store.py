from django.test import SimpleTestCase

from services.ride_sync.memory import InMemoryDocumentStore
from services.ride_sync.store import (
	SERVER_TIMESTAMP,
	CollectionSnapshot,
	StoreError,
	content_path,
	parse_path,
	ride_path,
)

from .helpers import settle


class PathTests(SimpleTestCase):

	def test_parse_path(self):
		self.assertEqual(parse_path('rides/7'), ('7', None, None))
		self.assertTrue(parse_path('rides/7/content').is_collection)
		self.assertEqual(parse_path('/rides/7/content/3/'), ('7', 'content', '3'))

	def test_unsupported_paths(self):
		for path in ('users/1', 'rides', 'rides/7/photos', 'rides/7/content/3/x'):
			with self.assertRaises(StoreError):
				parse_path(path)

	def test_builders(self):
		self.assertEqual(ride_path(7), 'rides/7')
		self.assertEqual(content_path(7), 'rides/7/content')
		self.assertEqual(content_path(7, 3), 'rides/7/content/3')


class InMemoryDocumentStoreTests(SimpleTestCase):

	async def test_versions_increase_with_every_write(self):
		store = InMemoryDocumentStore()
		ride_id = await store.add('rides', {'owner_id': 'u1', 'title': 'A', 'created_at': SERVER_TIMESTAMP})
		first = await store.get(ride_path(ride_id))
		await store.update(ride_path(ride_id), {'title': 'B'})
		second = await store.get(ride_path(ride_id))

		self.assertGreater(second.version, first.version)
		self.assertEqual(second.data['title'], 'B')

	async def test_update_of_missing_document_fails(self):
		store = InMemoryDocumentStore()
		with self.assertRaises(StoreError):
			await store.update(ride_path('missing'), {'title': 'x'})
		with self.assertRaises(StoreError):
			await store.append(ride_path('missing'), 'timeline_updates', [{'text': 'x'}])

	async def test_snapshots_arrive_after_the_call(self):
		store = InMemoryDocumentStore()
		ride_id = await store.add('rides', {'owner_id': 'u1', 'title': 'A'})
		received = []
		subscription = await store.subscribe(ride_path(ride_id), received.append, received.append)
		self.assertEqual(received, [])

		await settle()
		self.assertEqual(len(received), 1)

		await store.update(ride_path(ride_id), {'title': 'B'})
		subscription.cancel()
		subscription.cancel()
		await settle()
		self.assertEqual(len(received), 1)

	async def test_collection_subscription_sees_item_writes(self):
		store = InMemoryDocumentStore()
		ride_id = await store.add('rides', {'owner_id': 'u1', 'title': 'A'})
		received = []
		subscription = await store.subscribe(content_path(ride_id), received.append, received.append)
		await store.add(content_path(ride_id), {'owner_id': 'u1', 'kind': 'blog', 'title': 'Day 1'})
		await settle()

		self.assertIsInstance(received[-1], CollectionSnapshot)
		self.assertEqual([doc.data['title'] for doc in received[-1].documents], ['Day 1'])
		subscription.cancel()
