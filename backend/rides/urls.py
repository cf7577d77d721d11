from django.urls import path
from . import views

app_name = 'rides'

urlpatterns = [
    # Ride plans owned by the current user
    path('', views.ride_plans, name='ride-plans'),
    path('<int:ride_id>/', views.ride_plan_detail, name='ride-plan-detail'),
    path('<int:ride_id>/content/', views.ride_plan_content, name='ride-plan-content'),

    # Calendar export
    path('<int:ride_id>/calendar.ics', views.ride_plan_calendar, name='ride-plan-calendar'),
]
