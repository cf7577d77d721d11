from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.db.models import Count

from accounts.models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Riders, with how many ride plans each one owns"""

    list_display = ["username", "email", "display_name", "ride_plan_count", "is_active"]
    list_filter = ["is_active", "is_staff", "date_joined"]
    search_fields = ["username", "email", "display_name"]
    ordering = ("username",)

    fieldsets = BaseUserAdmin.fieldsets + (
        ("Rider", {"fields": ("display_name",)}),
    )

    def get_queryset(self, request):
        return super().get_queryset(request).annotate(_ride_plan_count=Count("ride_plans"))

    @admin.display(description="Ride plans", ordering="_ride_plan_count")
    def ride_plan_count(self, obj):
        return obj._ride_plan_count
