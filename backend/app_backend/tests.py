from unittest.mock import Mock, patch

from django.test import TestCase
from rest_framework.test import APIRequestFactory

from . import views


class HealthCheckTests(TestCase):
	def setUp(self):
		self.factory = APIRequestFactory()

	def test_all_probes_pass(self):
		checks = (('database', views._check_database), ('channels', views._check_channels))
		with patch.object(views, 'HEALTH_CHECKS', checks):
			response = views.health_check(self.factory.get('/health/'))

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['status'], 'healthy')
		self.assertEqual(response.data['services'], {'database': 'healthy', 'channels': 'healthy'})

	def test_failing_probe_reports_unhealthy(self):
		checks = (
			('database', views._check_database),
			('redis', Mock(side_effect=ConnectionError('Connection refused'))),
		)
		with patch.object(views, 'HEALTH_CHECKS', checks):
			response = views.health_check(self.factory.get('/health/'))

		self.assertEqual(response.status_code, 503)
		self.assertEqual(response.data['status'], 'unhealthy')
		self.assertEqual(response.data['services']['database'], 'healthy')
		self.assertEqual(response.data['services']['redis'], 'unhealthy: Connection refused')
