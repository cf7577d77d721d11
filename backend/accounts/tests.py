from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APIRequestFactory, force_authenticate
from rest_framework_simplejwt.tokens import AccessToken

from rides.models import RidePlan

from .views import LoginView, ProfileView, RefreshTokenView, RegisterView

User = get_user_model()


class AuthApiTests(TestCase):
	def setUp(self):
		self.factory = APIRequestFactory()

	def test_register_returns_tokens_for_new_rider(self):
		request = self.factory.post('/api/auth/register/', {
			'username': 'yash',
			'email': 'yash@example.com',
			'password': 'pass1234',
			'display_name': 'Yash',
		}, format='json')
		response = RegisterView.as_view()(request)

		self.assertEqual(response.status_code, 201)
		self.assertEqual(response.data['user']['display_name'], 'Yash')
		user = User.objects.get(username='yash')
		self.assertEqual(str(AccessToken(response.data['tokens']['access'])['user_id']), str(user.id))

	def test_register_rejects_duplicate_email(self):
		User.objects.create_user(username='first', email='same@example.com', password='pass1234')
		request = self.factory.post('/api/auth/register/', {
			'username': 'second',
			'email': 'same@example.com',
			'password': 'pass1234',
		}, format='json')
		response = RegisterView.as_view()(request)

		self.assertEqual(response.status_code, 400)
		self.assertIn('email', response.data)

	def test_login_and_refresh(self):
		User.objects.create_user(username='rider', password='pass1234')
		request = self.factory.post('/api/auth/login/', {'username': 'rider', 'password': 'pass1234'}, format='json')
		response = LoginView.as_view()(request)
		self.assertEqual(response.status_code, 200)

		request = self.factory.post('/api/auth/refresh/', {'refresh': response.data['tokens']['refresh']}, format='json')
		response = RefreshTokenView.as_view()(request)
		self.assertEqual(response.status_code, 200)
		self.assertIn('access', response.data)

	def test_login_with_wrong_password_fails(self):
		User.objects.create_user(username='rider', password='pass1234')
		request = self.factory.post('/api/auth/login/', {'username': 'rider', 'password': 'nope'}, format='json')
		response = LoginView.as_view()(request)
		self.assertEqual(response.status_code, 400)

	def test_refresh_with_garbage_token_is_unauthorized(self):
		request = self.factory.post('/api/auth/refresh/', {'refresh': 'not-a-token'}, format='json')
		response = RefreshTokenView.as_view()(request)
		self.assertEqual(response.status_code, 401)


class ProfileApiTests(TestCase):
	def setUp(self):
		self.factory = APIRequestFactory()
		self.rider = User.objects.create_user(username='rider', email='rider@example.com', password='pass1234')
		RidePlan.objects.create(owner=self.rider, title='Manali Run', start_location='Delhi', end_location='Manali')

	def test_profile_includes_ride_plan_count(self):
		request = self.factory.get('/api/auth/me/')
		force_authenticate(request, user=self.rider)
		response = ProfileView.as_view()(request)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['username'], 'rider')
		self.assertEqual(response.data['ride_plan_count'], 1)

	def test_patch_display_name_keeps_username(self):
		request = self.factory.patch('/api/auth/me/', {'display_name': 'Road King', 'username': 'hijack'}, format='json')
		force_authenticate(request, user=self.rider)
		response = ProfileView.as_view()(request)

		self.assertEqual(response.status_code, 200)
		self.rider.refresh_from_db()
		self.assertEqual(self.rider.display_name, 'Road King')
		self.assertEqual(self.rider.username, 'rider')

	def test_profile_requires_authentication(self):
		request = self.factory.get('/api/auth/me/')
		response = ProfileView.as_view()(request)
		self.assertEqual(response.status_code, 401)
