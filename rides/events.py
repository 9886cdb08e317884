# rides/events.py
import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.utils import timezone

logger = logging.getLogger(__name__)


def ride_group(ride_id):
    return f'ride_{ride_id}'


def user_group(user_id):
    return f'user_{user_id}'


class RideEventPublisher:
    """Fan out ride events to channel-layer groups.

    Publishing is fire-and-forget: a failing channel layer is logged and
    never propagates into the operation that triggered the event.
    """

    def __init__(self):
        try:
            self.channel_layer = get_channel_layer()
        except Exception:
            logger.exception("Channel layer could not be initialised")
            self.channel_layer = None

    def _send(self, group, event):
        if self.channel_layer is None:
            return
        event.setdefault('timestamp', timezone.now().isoformat())
        try:
            async_to_sync(self.channel_layer.group_send)(group, event)
        except Exception:
            logger.exception(f"Failed to publish {event.get('type')} to {group}")

    def participant_added(self, ride, booking):
        self._send(ride_group(ride.id), {
            'type': 'participant_added',
            'ride_id': ride.id,
            'user_id': booking.passenger_id,
            'seats_booked': booking.seats_booked,
        })
        self._send(user_group(ride.driver_id), {
            'type': 'user_notification',
            'event': 'booking_created',
            'ride_id': ride.id,
            'passenger_id': booking.passenger_id,
            'seats_booked': booking.seats_booked,
        })

    def participant_removed(self, ride, passenger_id):
        self._send(ride_group(ride.id), {
            'type': 'participant_removed',
            'ride_id': ride.id,
            'user_id': passenger_id,
        })
        self._send(user_group(ride.driver_id), {
            'type': 'user_notification',
            'event': 'booking_cancelled',
            'ride_id': ride.id,
            'passenger_id': passenger_id,
        })

    def ride_status_changed(self, ride_id, old_status, new_status):
        self._send(ride_group(ride_id), {
            'type': 'ride_status_changed',
            'ride_id': ride_id,
            'old_status': old_status,
            'status': new_status,
        })

    def booking_updated(self, ride, booking):
        self._send(ride_group(ride.id), {
            'type': 'booking_updated',
            'ride_id': ride.id,
            'user_id': booking.passenger_id,
            'status': booking.status,
        })
        self._send(user_group(booking.passenger_id), {
            'type': 'user_notification',
            'event': 'booking_status_changed',
            'ride_id': ride.id,
            'status': booking.status,
        })

    def ride_cancelled(self, ride_id):
        self._send(ride_group(ride_id), {
            'type': 'ride_cancelled',
            'ride_id': ride_id,
        })

    def notify_user(self, user_id, event, **payload):
        self._send(user_group(user_id), {
            'type': 'user_notification',
            'event': event,
            **payload,
        })
