# rides/tasks.py
import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from .models import Ride
from .events import RideEventPublisher

logger = logging.getLogger(__name__)


def arrival_time(ride):
    """Estimated arrival, falling back to departure plus route duration."""
    if ride.estimated_arrival_time:
        return ride.estimated_arrival_time
    return ride.departure_time + timedelta(minutes=ride.route_duration_min)


@shared_task
def complete_departed_rides():
    """Complete active or full rides whose arrival (plus grace) has passed."""
    from .services import BookingLedger
    from .exceptions import RideNotFound, RideUpdateRejected, ConcurrentUpdateError

    grace = timedelta(minutes=settings.CARPOOLING_SETTINGS['RIDE_COMPLETION_GRACE_MINUTES'])
    now = timezone.now()
    ledger = BookingLedger()

    # Departure already passed is a cheap prefilter; arrival is checked per ride
    candidates = Ride.objects.filter(status__in=['active', 'full'], departure_time__lte=now)
    completed = []
    for ride in candidates:
        if arrival_time(ride) + grace > now:
            continue
        try:
            ledger.complete_ride(ride.id)
            completed.append(ride.id)
        except (RideNotFound, RideUpdateRejected, ConcurrentUpdateError) as e:
            logger.warning(f"Could not complete ride {ride.id}: {e.message}")

    logger.info(f"Completed {len(completed)} departed ride(s)")
    return completed


@shared_task
def notify_ride_cancelled(ride_id):
    """Tell every passenger of a cancelled ride, personally and in the ride chat."""
    from chat.services import ChatService

    try:
        ride = Ride.objects.get(id=ride_id)
    except Ride.DoesNotExist:
        logger.warning(f"Ride {ride_id} not found while notifying cancellation")
        return 0

    passenger_ids = list(
        ride.bookings.exclude(status='cancelled').values_list('passenger_id', flat=True).distinct()
    )
    publisher = RideEventPublisher()
    message = (f"Your ride from {ride.origin_city} to {ride.destination_city} on "
               f"{ride.departure_time:%Y-%m-%d %H:%M} was cancelled by the driver")
    for passenger_id in passenger_ids:
        publisher.notify_user(passenger_id, 'ride_cancelled', ride_id=ride.id, message=message)

    ChatService().add_system_message(ride.id, 'This ride has been cancelled by the driver')
    logger.info(f"Notified {len(passenger_ids)} passenger(s) that ride {ride_id} was cancelled")
    return len(passenger_ids)
