"""Realtime consumers for WebSocket communication."""

from .base import BaseConsumer
from .ride_plan_consumer import RidePlanConsumer

__all__ = [
    "BaseConsumer",
    "RidePlanConsumer",
]
