from django.db import models
from django.conf import settings

from .constants import (
    BUDGET_CHOICES,
    CONTENT_KIND_CHOICES,
    DEFAULT_BUDGET,
    DEFAULT_TRANSPORT,
    INITIAL_STATUS,
    STATUS_CHOICES,
    TRANSPORT_CHOICES,
)


class RidePlan(models.Model):
    """A planned trip: route, schedule, status and progress notes."""

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='ride_plans'
    )

    title = models.CharField(max_length=200)

    # Route
    start_location = models.CharField(max_length=200)
    end_location = models.CharField(max_length=200)
    stops = models.JSONField(default=list, blank=True)

    transport_mode = models.CharField(max_length=10, choices=TRANSPORT_CHOICES, default=DEFAULT_TRANSPORT)
    budget_tier = models.CharField(max_length=10, choices=BUDGET_CHOICES, default=DEFAULT_BUDGET)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=INITIAL_STATUS)

    # Floating local wall-clock times, "YYYY-MM-DDTHH:MM"
    scheduled_start = models.CharField(max_length=19, blank=True, default='')
    scheduled_end = models.CharField(max_length=19, blank=True, default='')

    notes = models.TextField(blank=True, default='')
    media_intent = models.TextField(blank=True, default='')

    # Append-only list of {"text", "recorded_at"}, oldest first
    timeline_updates = models.JSONField(default=list, blank=True)

    # Store-assigned sequences, bumped on every write
    version = models.PositiveIntegerField(default=1)
    content_version = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'ride_plans'
        ordering = ['-created_at']

    def __str__(self):
        return f"Ride plan #{self.id} - {self.title} - {self.status}"


class ContentItemQuerySet(models.QuerySet):

    def orphaned(self):
        """Items whose ride plan no longer exists."""
        return self.exclude(ride_id__in=RidePlan.objects.values("id"))


class ContentItem(models.Model):
    """Photo/video link or blog entry attached to a ride plan."""

    # Plain reference: deleting a plan leaves its content to an explicit purge
    ride = models.ForeignKey(
        RidePlan,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        related_name='content_items'
    )

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='ride_content'
    )

    kind = models.CharField(max_length=10, choices=CONTENT_KIND_CHOICES)
    title = models.CharField(max_length=200)
    url = models.URLField(max_length=1000, blank=True, default='')
    body = models.TextField(blank=True, default='')
    caption = models.TextField(blank=True, default='')

    version = models.PositiveIntegerField(default=1)

    created_at = models.DateTimeField()
    updated_at = models.DateTimeField()

    objects = ContentItemQuerySet.as_manager()

    class Meta:
        db_table = 'ride_content_items'
        ordering = ['-created_at', '-id']

    def __str__(self):
        return f"{self.get_kind_display()} #{self.id} - Ride {self.ride_id}"
