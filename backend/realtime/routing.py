"""WebSocket URL routing for the realtime app."""

from django.urls import re_path

from .consumers.ride_plan_consumer import RidePlanConsumer

websocket_urlpatterns = [
    # Ride plan viewing/editing endpoint
    # URL: ws://localhost:8000/ws/ride-plan/?token=<jwt>
    re_path(
        r"ws/ride-plan/$",
        RidePlanConsumer.as_asgi(),
        name="ride-plan-ws"
    ),
]
