"""Tells what to show in the Django admin interface for rides app"""

from django.contrib import admin
from .models import RidePlan, ContentItem

@admin.register(RidePlan)
class RidePlanAdmin(admin.ModelAdmin):
    """Ride Plan admin"""
    list_display = ['id', 'title', 'owner', 'status', 'transport_mode', 'scheduled_start', 'created_at']
    list_filter = ['status', 'transport_mode', 'budget_tier']
    search_fields = ['title', 'owner__username', 'start_location', 'end_location']
    readonly_fields = ['created_at', 'version', 'content_version']
    date_hierarchy = 'created_at'


@admin.register(ContentItem)
class ContentItemAdmin(admin.ModelAdmin):
    list_display = ("id", "ride_id", "owner", "kind", "title", "created_at")
    list_filter = ("kind",)
    search_fields = ("title", "owner__username")
