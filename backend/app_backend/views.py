import redis
from celery import current_app
from channels.layers import get_channel_layer
from django.conf import settings
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from rides.models import RidePlan
from rides.tasks import purge_orphaned_content_task
from services.ride_sync import get_document_store


def _check_database():
    RidePlan.objects.count()


def _check_redis():
    client = redis.Redis.from_url(settings.REDIS_URL, socket_timeout=3)
    client.ping()


def _check_channels():
    if get_channel_layer() is None:
        raise RuntimeError("no channel layer")


def _check_document_store():
    get_document_store()


def _check_celery():
    if purge_orphaned_content_task.name not in current_app.tasks:
        raise RuntimeError("task not registered")


HEALTH_CHECKS = (
    ("database", _check_database),
    ("redis", _check_redis),
    ("channels", _check_channels),
    ("document_store", _check_document_store),
    ("celery", _check_celery),
)


@api_view(["GET"])
@permission_classes([AllowAny])
def health_check(request):
    """Health check endpoint for monitoring system status"""
    health_status = {
        "status": "healthy",
        "timestamp": timezone.now().isoformat(),
        "services": {}
    }

    for name, probe in HEALTH_CHECKS:
        try:
            probe()
            health_status["services"][name] = "healthy"
        except Exception as e:
            health_status["services"][name] = f"unhealthy: {e}"
            health_status["status"] = "unhealthy"

    status_code = (
        status.HTTP_200_OK
        if health_status["status"] == "healthy"
        else status.HTTP_503_SERVICE_UNAVAILABLE
    )
    return Response(health_status, status=status_code)
