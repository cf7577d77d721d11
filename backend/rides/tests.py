from io import StringIO

from asgiref.sync import sync_to_async
from channels.layers import InMemoryChannelLayer
from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate

from realtime.store import ChannelLayerDocumentStore
from services.ride_sync import RidePlanController, SessionState
from services.ride_sync.store import SERVER_TIMESTAMP, StoreError, content_path, ride_path
from services.ride_sync.tests.helpers import wait_for

from .models import ContentItem, RidePlan
from .tasks import purge_orphaned_content_task
from .views import ride_plan_calendar, ride_plan_content, ride_plan_detail, ride_plans

User = get_user_model()


class DisconnectingLayer(InMemoryChannelLayer):
	"""Channel layer whose connection drops on the first receive."""

	async def receive(self, channel):
		raise ConnectionError('redis connection lost')


def make_plan(owner, **overrides):
	fields = {
		'title': 'Manali Run',
		'start_location': 'Delhi',
		'end_location': 'Manali',
		'stops': ['Chandigarh'],
		'scheduled_start': '2026-02-10T06:00',
		'scheduled_end': '2026-02-12T18:00',
		'notes': 'Carry rain gear',
	}
	fields.update(overrides)
	return RidePlan.objects.create(owner=owner, **fields)


def make_content(ride, owner, title='Rohtang', kind='photo'):
	now = timezone.now()
	return ContentItem.objects.create(
		ride_id=ride.id,
		owner=owner,
		kind=kind,
		title=title,
		url='https://example.com/rohtang.jpg' if kind != 'blog' else '',
		body='Day notes' if kind == 'blog' else '',
		created_at=now,
		updated_at=now,
	)


class RidePlanApiTests(TestCase):
	def setUp(self):
		self.factory = APIRequestFactory()
		self.rider = User.objects.create_user(username='rider', password='pass1234')
		self.other = User.objects.create_user(username='other', password='pass1234')
		self.ride = make_plan(self.rider)

	def test_create_ride_plan(self):
		request = self.factory.post('/api/rides/', {
			'title': '  Spiti Loop ',
			'start_location': 'Shimla',
			'end_location': 'Kaza',
			'stops': ['', 'Narkanda', '  '],
			'budget_tier': 'low',
		}, format='json')
		force_authenticate(request, user=self.rider)
		response = ride_plans(request)

		self.assertEqual(response.status_code, 201)
		self.assertEqual(response.data['title'], 'Spiti Loop')
		self.assertEqual(response.data['stops'], ['Narkanda'])
		self.assertEqual(response.data['budget_tier'], 'budget')
		self.assertEqual(response.data['status'], 'planned')
		self.assertEqual(response.data['owner_id'], str(self.rider.id))
		self.assertEqual(response.data['timeline_updates'], [])

	def test_create_requires_title(self):
		request = self.factory.post('/api/rides/', {
			'title': '',
			'start_location': 'Shimla',
			'end_location': 'Kaza',
		}, format='json')
		force_authenticate(request, user=self.rider)
		response = ride_plans(request)

		self.assertEqual(response.status_code, 400)
		self.assertEqual(response.data['error'], 'Title is required.')
		self.assertEqual(response.data['kind'], 'validation_failed')
		self.assertEqual(RidePlan.objects.count(), 1)

	def test_list_only_own_plans(self):
		make_plan(self.other, title='Not mine')
		newer = make_plan(self.rider, title='Leh Ladakh')

		request = self.factory.get('/api/rides/')
		force_authenticate(request, user=self.rider)
		response = ride_plans(request)

		self.assertEqual(response.status_code, 200)
		self.assertEqual([plan['id'] for plan in response.data], [newer.id, self.ride.id])

	def test_detail_of_foreign_plan_is_forbidden(self):
		request = self.factory.get('/api/rides/%d/' % self.ride.id)
		force_authenticate(request, user=self.other)
		response = ride_plan_detail(request, ride_id=self.ride.id)

		self.assertEqual(response.status_code, 403)
		self.assertEqual(response.data['kind'], 'forbidden')

	def test_delete_keeps_content_by_default(self):
		make_content(self.ride, self.rider)

		request = self.factory.delete('/api/rides/%d/' % self.ride.id)
		force_authenticate(request, user=self.rider)
		response = ride_plan_detail(request, ride_id=self.ride.id)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['purged_content'], 0)
		self.assertFalse(RidePlan.objects.filter(id=self.ride.id).exists())
		self.assertEqual(ContentItem.objects.orphaned().count(), 1)

	def test_delete_with_purge_content(self):
		make_content(self.ride, self.rider)
		make_content(self.ride, self.rider, title='Day 1', kind='blog')

		request = self.factory.delete('/api/rides/%d/?purge_content=1' % self.ride.id)
		force_authenticate(request, user=self.rider)
		response = ride_plan_detail(request, ride_id=self.ride.id)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['purged_content'], 2)
		self.assertEqual(ContentItem.objects.count(), 0)

	def test_delete_foreign_plan_is_forbidden(self):
		request = self.factory.delete('/api/rides/%d/' % self.ride.id)
		force_authenticate(request, user=self.other)
		response = ride_plan_detail(request, ride_id=self.ride.id)

		self.assertEqual(response.status_code, 403)
		self.assertTrue(RidePlan.objects.filter(id=self.ride.id).exists())

	def test_content_listing(self):
		make_content(self.ride, self.rider)

		request = self.factory.get('/api/rides/%d/content/' % self.ride.id)
		force_authenticate(request, user=self.rider)
		response = ride_plan_content(request, ride_id=self.ride.id)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data[0]['title'], 'Rohtang')

	def test_calendar_download(self):
		request = self.factory.get('/api/rides/%d/calendar.ics' % self.ride.id)
		force_authenticate(request, user=self.rider)
		response = ride_plan_calendar(request, ride_id=self.ride.id)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response['Content-Type'], 'text/calendar; charset=utf-8')
		self.assertEqual(response['Content-Disposition'], 'attachment; filename="Manali_Run.ics"')

		body = response.content.decode('utf-8')
		self.assertIn('DTSTART:20260210T060000\r\n', body)
		self.assertIn('DTEND:20260212T180000\r\n', body)
		self.assertIn('UID:ride-%d-' % self.ride.id, body)
		self.assertEqual(body.count('BEGIN:VEVENT'), 1)

	def test_calendar_for_missing_or_foreign_plan(self):
		request = self.factory.get('/api/rides/999/calendar.ics')
		force_authenticate(request, user=self.rider)
		self.assertEqual(ride_plan_calendar(request, ride_id=999).status_code, 404)

		request = self.factory.get('/api/rides/%d/calendar.ics' % self.ride.id)
		force_authenticate(request, user=self.other)
		self.assertEqual(ride_plan_calendar(request, ride_id=self.ride.id).status_code, 403)


class OrphanedContentCleanupTests(TestCase):
	def setUp(self):
		self.rider = User.objects.create_user(username='rider', password='pass1234')
		self.kept = make_plan(self.rider)
		gone = make_plan(self.rider, title='Cancelled trip')
		make_content(self.kept, self.rider)
		make_content(gone, self.rider, title='Old photo')
		make_content(gone, self.rider, title='Old post', kind='blog')
		gone.delete()

	def test_dry_run_changes_nothing(self):
		out = StringIO()
		call_command('purge_orphaned_content', dry_run=True, stdout=out)

		self.assertIn('DRY RUN: Would delete 2 orphaned content items', out.getvalue())
		self.assertEqual(ContentItem.objects.count(), 3)

	def test_command_deletes_orphans_only(self):
		out = StringIO()
		call_command('purge_orphaned_content', stdout=out)

		self.assertIn('Deleted 2 orphaned content items', out.getvalue())
		self.assertEqual(list(ContentItem.objects.values_list('ride_id', flat=True)), [self.kept.id])

	def test_task(self):
		self.assertEqual(purge_orphaned_content_task(), 2)
		self.assertEqual(ContentItem.objects.orphaned().count(), 0)


class ChannelLayerDocumentStoreTests(TestCase):
	def setUp(self):
		self.rider = User.objects.create_user(username='rider', password='pass1234')
		self.ride = make_plan(self.rider)
		self.path = ride_path(self.ride.id)

	def _store(self):
		return ChannelLayerDocumentStore(channel_layer=InMemoryChannelLayer())

	async def test_get_maps_row_to_document(self):
		snapshot = await self._store().get(self.path)

		self.assertTrue(snapshot.exists)
		self.assertEqual(snapshot.id, str(self.ride.id))
		self.assertEqual(snapshot.version, 1)
		self.assertEqual(snapshot.data['owner_id'], str(self.rider.id))
		self.assertEqual(snapshot.data['stops'], ['Chandigarh'])
		self.assertFalse((await self._store().get(ride_path(999))).exists)
		self.assertFalse((await self._store().get(ride_path('abc'))).exists)

	async def test_add_update_append_delete(self):
		store = self._store()
		ride_id = await store.add('rides', {
			'owner_id': str(self.rider.id),
			'title': 'Spiti Loop',
			'start_location': 'Shimla',
			'end_location': 'Kaza',
			'timeline_updates': [],
			'created_at': SERVER_TIMESTAMP,
		})
		path = ride_path(ride_id)

		await store.update(path, {'status': 'ongoing'})
		await store.append(path, 'timeline_updates', [{'text': 'Left Shimla', 'recorded_at': SERVER_TIMESTAMP}])
		snapshot = await store.get(path)

		self.assertEqual(snapshot.version, 3)
		self.assertEqual(snapshot.data['status'], 'ongoing')
		self.assertEqual(snapshot.data['timeline_updates'][0]['text'], 'Left Shimla')
		self.assertIsInstance(snapshot.data['timeline_updates'][0]['recorded_at'], str)

		await store.delete(path)
		self.assertFalse((await store.get(path)).exists)

	async def test_write_errors_raise_store_error(self):
		store = self._store()
		with self.assertRaises(StoreError):
			await store.update(ride_path(999), {'title': 'Nope'})
		with self.assertRaises(StoreError):
			await store.update(self.path, {'owner': 'someone else'})
		with self.assertRaises(StoreError):
			await store.append(self.path, 'stops', ['Kullu'])

	async def test_content_collection(self):
		store = self._store()
		first = await store.add(content_path(self.ride.id), {
			'owner_id': str(self.rider.id), 'kind': 'blog', 'title': 'Day 1', 'body': 'Delhi',
			'created_at': SERVER_TIMESTAMP, 'updated_at': SERVER_TIMESTAMP,
		})
		second = await store.add(content_path(self.ride.id), {
			'owner_id': str(self.rider.id), 'kind': 'photo', 'title': 'Atal', 'url': 'https://example.com/a.jpg',
			'created_at': SERVER_TIMESTAMP, 'updated_at': SERVER_TIMESTAMP,
		})
		await store.update(content_path(self.ride.id, first), {'title': 'Day one'})

		collection = await store.get(content_path(self.ride.id))
		self.assertEqual([doc.id for doc in collection.documents], [second, first])
		self.assertEqual(collection.documents[1].data['title'], 'Day one')
		self.assertEqual(collection.version, 3)

		await store.delete(content_path(self.ride.id, second))
		collection = await store.get(content_path(self.ride.id))
		self.assertEqual([doc.id for doc in collection.documents], [first])

	async def test_subscription_follows_writes(self):
		store = self._store()
		received = []
		errors = []
		subscription = await store.subscribe(self.path, received.append, errors.append)

		await wait_for(lambda: len(received) == 1, message='no initial snapshot')
		await store.update(self.path, {'title': 'Manali via Jalori'})
		await wait_for(lambda: len(received) == 2, message='no update snapshot')

		self.assertEqual(received[-1].data['title'], 'Manali via Jalori')
		self.assertGreater(received[-1].version, received[0].version)

		await store.delete(self.path)
		await wait_for(lambda: len(received) == 3, message='no delete snapshot')
		self.assertFalse(received[-1].exists)
		self.assertGreater(received[-1].version, received[1].version)

		subscription.cancel()
		self.assertEqual(errors, [])

	async def test_controller_round_trip(self):
		store = self._store()
		controller = RidePlanController(store, acting_user_id=self.rider.id)
		await controller.open(self.ride.id)
		await wait_for(lambda: controller.state == SessionState.VIEWING)

		controller.begin_edit()
		controller.update_draft(title='Manali Run 2026', status='started')
		await controller.commit_edit()
		await wait_for(lambda: controller.view['title'] == 'Manali Run 2026')

		await controller.append_timeline_update('Reached Chandigarh')
		await wait_for(lambda: len(controller.timeline) == 1)
		controller.close()

		await sync_to_async(self.ride.refresh_from_db)()
		self.assertEqual(self.ride.title, 'Manali Run 2026')
		self.assertEqual(self.ride.status, 'ongoing')
		self.assertEqual(self.ride.version, 3)

	async def test_feed_transport_failure_fails_controller(self):
		store = ChannelLayerDocumentStore(channel_layer=DisconnectingLayer())
		controller = RidePlanController(store, acting_user_id=self.rider.id)
		await controller.open(self.ride.id)

		await wait_for(lambda: controller.state == SessionState.ERROR, message='feed failure not surfaced')
		self.assertEqual(controller.error_kind, 'subscription_failed')
		self.assertEqual(controller.error.message, 'redis connection lost')
		controller.close()

	async def test_subscriber_callback_failure_reports_error(self):
		store = self._store()
		errors = []

		def explode(snapshot):
			raise ValueError('bad snapshot')

		subscription = await store.subscribe(self.path, explode, errors.append)
		await wait_for(lambda: len(errors) == 1, message='callback failure not reported')
		self.assertIsInstance(errors[0], StoreError)
		self.assertEqual(str(errors[0]), 'bad snapshot')
		subscription.cancel()
