import itertools
from datetime import timedelta
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.test import APIClient

from rides.services import BookingLedger, RideService

User = get_user_model()

_usernames = itertools.count(1)


class FakeChannelLayer:
    """Records group_send calls instead of delivering them."""

    def __init__(self):
        self.sent = []

    async def group_send(self, group, message):
        self.sent.append((group, message))

    def events(self, event_type):
        return [(group, message) for group, message in self.sent if message['type'] == event_type]


@pytest.fixture
def make_user(db):
    def _make(username=None, **extra):
        n = next(_usernames)
        username = username or f'user{n}'
        return User.objects.create_user(
            username=username,
            email=f'{username}@example.com',
            password='Str0ng-pass-123',
            first_name=extra.pop('first_name', 'Test'),
            last_name=extra.pop('last_name', f'User{n}'),
            **extra,
        )
    return _make


@pytest.fixture
def driver(make_user):
    return make_user('driver')


@pytest.fixture
def passenger(make_user):
    return make_user('passenger')


@pytest.fixture
def other_passenger(make_user):
    return make_user('other_passenger')


@pytest.fixture
def ride_data():
    def _data(**overrides):
        data = {
            'origin_address': 'MG Road, Bengaluru',
            'origin_longitude': Decimal('77.594566'),
            'origin_latitude': Decimal('12.971599'),
            'origin_city': 'Bengaluru',
            'destination_address': 'Anna Salai, Chennai',
            'destination_longitude': Decimal('80.270718'),
            'destination_latitude': Decimal('13.082680'),
            'destination_city': 'Chennai',
            'departure_time': timezone.now() + timedelta(days=1),
            'available_seats': 3,
            'price_per_seat': Decimal('15.50'),
            'route_distance_km': Decimal('346.00'),
            'route_duration_min': 360,
            'vehicle_make': 'Toyota',
            'vehicle_model': 'Innova',
            'vehicle_color': 'White',
            'vehicle_plate_number': 'KA01AB1234',
        }
        data.update(overrides)
        return data
    return _data


@pytest.fixture
def make_ride(driver, ride_data):
    def _make(owner=None, **overrides):
        return RideService().create_ride(owner or driver, ride_data(**overrides))
    return _make


@pytest.fixture
def ride(make_ride):
    return make_ride()


@pytest.fixture
def channel_layer():
    return FakeChannelLayer()


@pytest.fixture
def ledger(channel_layer):
    ledger = BookingLedger()
    ledger.events.channel_layer = channel_layer
    ledger.chat_service.channel_layer = channel_layer
    return ledger


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def client_for():
    def _client(user):
        client = APIClient()
        client.force_authenticate(user=user)
        return client
    return _client
