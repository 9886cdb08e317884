# rides/urls.py
from rest_framework.routers import DefaultRouter
from .views import RideViewSet, BookingViewSet

rides_router = DefaultRouter()
rides_router.register(r'', RideViewSet, basename='ride')

bookings_router = DefaultRouter()
bookings_router.register(r'', BookingViewSet, basename='booking')

rides_urlpatterns = rides_router.urls
bookings_urlpatterns = bookings_router.urls
