# rides/consumers.py
import json
import logging
from channels.generic.websocket import AsyncWebsocketConsumer
from channels.db import database_sync_to_async
from django.db.models import Q
from .events import ride_group, user_group
from .models import Ride, ACTIVE_BOOKING_STATUSES

logger = logging.getLogger(__name__)


class TokenAuthMixin:
    """Authenticate a websocket with a JWT access token passed as ``?token=``."""

    async def extract_token_from_query(self):
        query_string = self.scope.get('query_string', b'').decode()
        if 'token=' in query_string:
            params = dict(param.split('=', 1) for param in query_string.split('&') if '=' in param)
            return params.get('token')
        return None

    @database_sync_to_async
    def authenticate_with_token(self, token):
        from rest_framework_simplejwt.tokens import AccessToken
        from rest_framework_simplejwt.exceptions import TokenError
        from django.contrib.auth import get_user_model
        User = get_user_model()
        try:
            access_token = AccessToken(token)
            user = User.objects.get(id=access_token['user_id'], is_active=True)
        except (TokenError, KeyError, User.DoesNotExist) as e:
            logger.warning(f"Websocket token authentication failed: {e}")
            return False
        self.scope['user'] = user
        return True

    async def authenticate(self):
        token = await self.extract_token_from_query()
        if token:
            return await self.authenticate_with_token(token)
        user = self.scope.get('user')
        return user is not None and user.is_authenticated


class RideConsumer(TokenAuthMixin, AsyncWebsocketConsumer):
    """Live ride events for the driver and passengers of a ride."""

    async def connect(self):
        self.ride_id = int(self.scope['url_route']['kwargs']['ride_id'])
        self.ride_group_name = ride_group(self.ride_id)

        if await self.authenticate() and await self.is_user_on_ride():
            await self.channel_layer.group_add(self.ride_group_name, self.channel_name)
            await self.accept()
            await self.send_current_ride_status()
        else:
            await self.close()

    async def disconnect(self, close_code):
        if hasattr(self, 'ride_group_name'):
            await self.channel_layer.group_discard(self.ride_group_name, self.channel_name)

    async def receive(self, text_data):
        try:
            data = json.loads(text_data)
        except json.JSONDecodeError:
            return
        if data.get('type') == 'ping':
            await self.send(text_data=json.dumps({'type': 'pong', 'message': 'Connected'}))

    # Events from the ride group

    async def participant_added(self, event):
        await self.send(text_data=json.dumps(event))

    async def participant_removed(self, event):
        await self.send(text_data=json.dumps(event))

    async def ride_status_changed(self, event):
        await self.send(text_data=json.dumps(event))

    async def booking_updated(self, event):
        await self.send(text_data=json.dumps(event))

    async def ride_cancelled(self, event):
        await self.send(text_data=json.dumps(event))

    @database_sync_to_async
    def is_user_on_ride(self):
        user = self.scope['user']
        if user.is_anonymous:
            return False
        on_ride = Q(driver=user) | Q(bookings__passenger=user, bookings__status__in=ACTIVE_BOOKING_STATUSES)
        return Ride.objects.filter(on_ride, pk=self.ride_id).exists()

    @database_sync_to_async
    def get_ride_status(self):
        try:
            ride = Ride.objects.prefetch_related('bookings').get(pk=self.ride_id)
        except Ride.DoesNotExist:
            return None
        return {
            'type': 'ride_status',
            'ride_id': ride.id,
            'status': ride.status,
            'available_seats': ride.available_seats,
            'booked_seats': ride.booked_seats(),
            'remaining_seats': ride.remaining_seats(),
            'is_full': ride.is_full(),
        }

    async def send_current_ride_status(self):
        status = await self.get_ride_status()
        if status:
            await self.send(text_data=json.dumps(status))


class UserConsumer(TokenAuthMixin, AsyncWebsocketConsumer):
    """Personal notifications: bookings, cancellations, new messages."""

    async def connect(self):
        self.user_id = self.scope['url_route']['kwargs']['user_id']
        self.user_group_name = user_group(self.user_id)

        # Verify it's the same user
        if await self.authenticate() and str(self.scope['user'].id) == self.user_id:
            await self.channel_layer.group_add(self.user_group_name, self.channel_name)
            await self.accept()
        else:
            await self.close()

    async def disconnect(self, close_code):
        if hasattr(self, 'user_group_name'):
            await self.channel_layer.group_discard(self.user_group_name, self.channel_name)

    async def user_notification(self, event):
        """Send personal notifications to user"""
        await self.send(text_data=json.dumps(event))

    async def message_notification(self, event):
        await self.send(text_data=json.dumps(event))
