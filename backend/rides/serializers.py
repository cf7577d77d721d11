from rest_framework import serializers

from .constants import BUDGET_VALUES, TRANSPORT_VALUES
from .models import ContentItem, RidePlan


class RidePlanSerializer(serializers.ModelSerializer):
    """Serializer for ride plans"""
    owner_id = serializers.CharField(read_only=True)

    class Meta:
        model = RidePlan
        fields = ['id', 'owner_id', 'title', 'start_location', 'end_location', 'stops',
                  'transport_mode', 'budget_tier', 'status', 'scheduled_start',
                  'scheduled_end', 'notes', 'media_intent', 'timeline_updates', 'created_at']
        read_only_fields = fields


class RidePlanCreateSerializer(serializers.Serializer):
    """
    Shape check for a new ride plan.

    Required fields and enumerations are enforced by the ride sync service,
    which also accepts the legacy budget/status spellings.
    """
    title = serializers.CharField(allow_blank=True, required=False, default='')
    start_location = serializers.CharField(allow_blank=True, required=False, default='')
    end_location = serializers.CharField(allow_blank=True, required=False, default='')
    stops = serializers.ListField(
        child=serializers.CharField(allow_blank=True), required=False, default=list
    )
    transport_mode = serializers.CharField(allow_blank=True, required=False, default='',
                                           help_text=f"One of {', '.join(TRANSPORT_VALUES)}")
    budget_tier = serializers.CharField(allow_blank=True, required=False, default='',
                                        help_text=f"One of {', '.join(BUDGET_VALUES)}")
    scheduled_start = serializers.CharField(allow_blank=True, required=False, default='')
    scheduled_end = serializers.CharField(allow_blank=True, required=False, default='')
    notes = serializers.CharField(allow_blank=True, required=False, default='')
    media_intent = serializers.CharField(allow_blank=True, required=False, default='')


class ContentItemSerializer(serializers.ModelSerializer):
    """Serializer for content attached to a ride plan"""
    owner_id = serializers.CharField(read_only=True)

    class Meta:
        model = ContentItem
        fields = ['id', 'ride_id', 'owner_id', 'kind', 'title', 'url', 'body',
                  'caption', 'created_at', 'updated_at']
        read_only_fields = fields
