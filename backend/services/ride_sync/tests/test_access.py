from django.test import SimpleTestCase

from services.ride_sync.access import is_owner, require_owner
from services.ride_sync.exceptions import ForbiddenError


class OwnershipTests(SimpleTestCase):

	def test_signed_out_user_owns_nothing(self):
		self.assertFalse(is_owner(None, 'u1'))
		self.assertFalse(is_owner(None, None))
		self.assertFalse(is_owner('', ''))

	def test_matching_ids(self):
		self.assertTrue(is_owner('u1', 'u1'))
		self.assertTrue(is_owner(7, '7'))
		self.assertTrue(is_owner(' u1 ', 'u1'))

	def test_other_user_or_missing_owner(self):
		self.assertFalse(is_owner('u1', 'u2'))
		self.assertFalse(is_owner('u1', None))

	def test_require_owner_raises_forbidden(self):
		require_owner('u1', 'u1')
		with self.assertRaises(ForbiddenError) as ctx:
			require_owner('u2', 'u1')
		self.assertEqual(ctx.exception.kind, 'forbidden')
		self.assertEqual(ctx.exception.message, 'Not allowed.')
