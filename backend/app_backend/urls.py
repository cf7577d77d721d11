from django.contrib import admin
from django.urls import path, include

from .views import health_check

urlpatterns = [
    path('admin/', admin.site.urls),
    path("health/", health_check), # Health check endpoint
    
    # Authentication endpoints (at /api/auth/)
    path('api/auth/', include('accounts.urls')),  # register, login, refresh

    # Ride plan endpoints (at /api/rides/)
    path('api/rides/', include('rides.urls')),    # list/create, delete, content, calendar.ics
]
