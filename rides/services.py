# rides/services.py
import logging

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from accounts.models import Profile, PassengerProfile
from chat.services import ChatService
from .events import RideEventPublisher
from .exceptions import (
    RideNotBookable, SelfBookingDenied, DuplicateBooking, InsufficientCapacity,
    RideDeparted, InvalidSeatCount, InvalidBookingStatus, RideNotFound,
    BookingNotFound, NotRideDriver, ConcurrentUpdateError, RideUpdateRejected,
)
from .models import Ride, Booking

logger = logging.getLogger(__name__)

DRIVER_SETTABLE_STATUSES = ('pending', 'confirmed', 'cancelled')


class Eligibility:
    """Outcome of evaluating a booking request against a ride snapshot."""

    def __init__(self, error=None, remaining_seats=None):
        self.error = error
        self.remaining_seats = remaining_seats

    @property
    def granted(self):
        return self.error is None

    def raise_for_failure(self):
        if self.error is not None:
            raise self.error

    def __bool__(self):
        return self.granted

    def __repr__(self):
        if self.granted:
            return f'<Eligibility granted remaining={self.remaining_seats}>'
        return f'<Eligibility denied {self.error.code}>'


def derive_status(ride, bookings):
    """Status a ride should hold given its bookings.

    Terminal statuses never change here; otherwise the ride is full exactly
    when no seats remain.
    """
    if ride.is_terminal:
        return ride.status
    return 'full' if ride.is_full(bookings) else 'active'


class BookingLedger:
    """Authoritative record of seats on rides.

    Every mutation reads a snapshot (ride + bookings), decides against it and
    commits with a compare-and-swap on ``Ride.version``. A failed swap means
    somebody else changed the ride in between; the whole decision is re-made
    against fresh state, up to ``BOOKING_MAX_ATTEMPTS`` times.
    """

    def __init__(self, clock=None, events=None, chat_service=None):
        config = settings.CARPOOLING_SETTINGS
        self.max_attempts = config['BOOKING_MAX_ATTEMPTS']
        self.clock = clock or timezone.now
        self.events = events or RideEventPublisher()
        self.chat_service = chat_service or ChatService()

    # Snapshot and commit primitives

    def _load_snapshot(self, ride_id):
        try:
            ride = Ride.objects.get(pk=ride_id)
        except Ride.DoesNotExist:
            raise RideNotFound()
        bookings = list(ride.bookings.all())
        return ride, bookings

    def _swap(self, ride, new_status):
        """Bump the version if nobody else has; returns False on conflict."""
        updated = Ride.objects.filter(pk=ride.pk, version=ride.version).update(
            version=F('version') + 1,
            status=new_status,
            updated_at=self.clock(),
        )
        return updated == 1

    def _conflict(self, operation, ride_id, attempt):
        logger.warning(f"Version conflict on ride {ride_id} during {operation} (attempt {attempt}/{self.max_attempts})")

    def _exhausted(self, operation, ride_id):
        logger.error(f"Giving up {operation} on ride {ride_id} after {self.max_attempts} conflicting attempts")
        return ConcurrentUpdateError()

    def _after_commit(self, description, func, *args):
        """Run a collaborator once the transaction commits; failures are only logged."""
        def run():
            try:
                func(*args)
            except Exception:
                logger.exception(f"Post-commit step '{description}' failed")
        transaction.on_commit(run)

    def _status_changed(self, ride_id, old_status, new_status):
        if old_status != new_status:
            logger.info(f"Ride {ride_id} status {old_status} -> {new_status}")
            self._after_commit('ride_status_changed', self.events.ride_status_changed,
                               ride_id, old_status, new_status)

    # Decisions

    def evaluate(self, ride, user, seats_requested, bookings=None, now=None):
        """Decide whether ``user`` may book ``seats_requested`` seats on ``ride``.

        Checks run in a fixed order and stop at the first failure.
        """
        if bookings is None:
            bookings = list(ride.bookings.all())
        now = now or self.clock()

        if ride.driver_id == user.id:
            return Eligibility(SelfBookingDenied())
        if any(b.passenger_id == user.id and b.is_active for b in bookings):
            return Eligibility(DuplicateBooking())

        remaining = ride.remaining_seats(bookings)
        if remaining < seats_requested:
            return Eligibility(InsufficientCapacity(remaining, seats_requested))
        if ride.departure_time <= now:
            return Eligibility(RideDeparted())
        # Upcoming but cancelled or completed
        if ride.is_terminal:
            return Eligibility(RideNotBookable())
        return Eligibility(remaining_seats=remaining)

    # Mutations

    def book(self, ride_id, passenger, seats, pickup=None, dropoff=None):
        """Reserve ``seats`` on a ride for ``passenger`` and return the Booking."""
        if seats < 1:
            raise InvalidSeatCount()

        for attempt in range(1, self.max_attempts + 1):
            ride, bookings = self._load_snapshot(ride_id)
            eligibility = self.evaluate(ride, passenger, seats, bookings)
            if not eligibility:
                logger.warning(f"Booking on ride {ride_id} by user {passenger.id} rejected: {eligibility.error.code}")
                eligibility.raise_for_failure()

            booking = self._new_booking(ride, passenger, seats, pickup, dropoff)
            new_status = derive_status(ride, bookings + [booking])

            try:
                with transaction.atomic():
                    swapped = self._swap(ride, new_status)
                    if swapped:
                        booking.save()
            except IntegrityError:
                # Lost a race with the same passenger booking twice
                logger.warning(f"Duplicate booking on ride {ride_id} by user {passenger.id} caught by constraint")
                raise DuplicateBooking()

            if not swapped:
                self._conflict('book', ride_id, attempt)
                continue

            logger.info(f"Booked {seats} seat(s) on ride {ride_id} for user {passenger.id}, "
                        f"total {booking.total_amount} {ride.currency}")
            self._after_commit('chat_add_participant', self.chat_service.add_participant,
                               ride.id, passenger.id)
            self._after_commit('increment_rides', Profile.increment_rides, passenger.id, 'passenger')
            self._after_commit('frequent_route', self._record_frequent_route, passenger,
                               ride.origin_city, ride.destination_city)
            self._after_commit('participant_added', self.events.participant_added, ride, booking)
            self._status_changed(ride.id, ride.status, new_status)
            return booking

        raise self._exhausted('book', ride_id)

    def _new_booking(self, ride, passenger, seats, pickup, dropoff):
        pickup = pickup or ride.origin_point
        dropoff = dropoff or ride.destination_point
        pickup_lng, pickup_lat = pickup['coordinates']
        dropoff_lng, dropoff_lat = dropoff['coordinates']
        return Booking(
            ride=ride,
            passenger=passenger,
            seats_booked=seats,
            status='confirmed',
            total_amount=ride.price_per_seat * seats,
            pickup_address=pickup['address'],
            pickup_longitude=pickup_lng,
            pickup_latitude=pickup_lat,
            dropoff_address=dropoff['address'],
            dropoff_longitude=dropoff_lng,
            dropoff_latitude=dropoff_lat,
        )

    @staticmethod
    def _record_frequent_route(passenger, origin_city, destination_city):
        PassengerProfile.default_for(passenger).add_frequent_route(origin_city, destination_city)

    def cancel_booking(self, ride_id, passenger):
        """Soft-cancel the passenger's pending or confirmed booking."""
        for attempt in range(1, self.max_attempts + 1):
            ride, bookings = self._load_snapshot(ride_id)
            booking = next(
                (b for b in bookings
                 if b.passenger_id == passenger.id and b.status in ('pending', 'confirmed')),
                None,
            )
            if booking is None:
                raise BookingNotFound()

            booking.status = 'cancelled'
            new_status = derive_status(ride, bookings)

            with transaction.atomic():
                swapped = self._swap(ride, new_status)
                if swapped:
                    booking.save(update_fields=['status', 'updated_at'])

            if not swapped:
                self._conflict('cancel_booking', ride_id, attempt)
                continue

            logger.info(f"Booking {booking.id} on ride {ride_id} cancelled by user {passenger.id}")
            self._after_commit('chat_remove_participant', self.chat_service.remove_participant,
                               ride.id, passenger.id)
            self._after_commit('participant_removed', self.events.participant_removed, ride, passenger.id)
            self._status_changed(ride.id, ride.status, new_status)
            return booking

        raise self._exhausted('cancel_booking', ride_id)

    def cancel_ride(self, ride_id, user):
        """Cancel a ride as its driver.

        A ride nobody holds a seat on is deleted outright; otherwise it turns
        cancelled and its bookings stay as history. Returns 'deleted' or
        'cancelled'.
        """
        from .tasks import notify_ride_cancelled

        for attempt in range(1, self.max_attempts + 1):
            ride, bookings = self._load_snapshot(ride_id)
            if ride.driver_id != user.id and not user.is_staff:
                raise NotRideDriver()
            if ride.status == 'completed':
                raise RideUpdateRejected('Completed rides cannot be cancelled')
            if ride.status == 'cancelled':
                return 'cancelled'

            if not any(b.is_active for b in bookings):
                # Lock the row first: the cascade deletes by pk, not by version
                with transaction.atomic():
                    locked = Ride.objects.select_for_update().filter(pk=ride.pk, version=ride.version).first()
                    if locked is not None:
                        locked.delete()
                if locked is None:
                    self._conflict('cancel_ride', ride_id, attempt)
                    continue
                logger.info(f"Ride {ride_id} deleted by user {user.id}, it had no bookings")
                return 'deleted'

            with transaction.atomic():
                swapped = self._swap(ride, 'cancelled')
            if not swapped:
                self._conflict('cancel_ride', ride_id, attempt)
                continue

            passenger_ids = [b.passenger_id for b in bookings if b.is_active]
            logger.info(f"Ride {ride_id} cancelled by user {user.id}, notifying {len(passenger_ids)} passenger(s)")
            self._status_changed(ride.id, ride.status, 'cancelled')
            self._after_commit('ride_cancelled', self.events.ride_cancelled, ride.id)
            self._after_commit('notify_ride_cancelled', notify_ride_cancelled.delay, ride.id)
            return 'cancelled'

        raise self._exhausted('cancel_ride', ride_id)

    def complete_ride(self, ride_id, user=None):
        """Mark a ride completed along with its confirmed bookings.

        When ``user`` is given it must be the driver.
        """
        for attempt in range(1, self.max_attempts + 1):
            ride, _ = self._load_snapshot(ride_id)
            if user is not None and ride.driver_id != user.id:
                raise NotRideDriver()
            if ride.status == 'completed':
                return ride
            if ride.status == 'cancelled':
                raise RideUpdateRejected('Cancelled rides cannot be completed')

            with transaction.atomic():
                swapped = self._swap(ride, 'completed')
                if swapped:
                    completed = Booking.objects.filter(ride_id=ride.pk, status='confirmed').update(
                        status='completed', updated_at=self.clock()
                    )
            if not swapped:
                self._conflict('complete_ride', ride_id, attempt)
                continue

            logger.info(f"Ride {ride_id} completed with {completed} booking(s)")
            self._status_changed(ride.id, ride.status, 'completed')
            ride.refresh_from_db()
            return ride

        raise self._exhausted('complete_ride', ride_id)

    def set_booking_status(self, ride_id, driver, passenger_id, new_status):
        """Driver-side booking status change, held to the same capacity rules as booking."""
        if new_status not in DRIVER_SETTABLE_STATUSES:
            raise InvalidBookingStatus(
                f"Status must be one of: {', '.join(DRIVER_SETTABLE_STATUSES)}"
            )

        for attempt in range(1, self.max_attempts + 1):
            ride, bookings = self._load_snapshot(ride_id)
            if ride.driver_id != driver.id:
                raise NotRideDriver()

            mine = [b for b in bookings if b.passenger_id == passenger_id]
            if not mine:
                raise BookingNotFound('Passenger has no booking on this ride')
            # The active booking if there is one, else the most recent cancelled one
            active = [b for b in mine if b.is_active]
            booking = active[0] if active else mine[-1]

            if booking.status == new_status:
                return booking
            if ride.is_terminal:
                raise RideNotBookable()
            if booking.status == 'completed':
                raise InvalidBookingStatus('Completed bookings cannot be changed')

            if new_status == 'confirmed':
                remaining = ride.remaining_seats(bookings)
                if remaining < booking.seats_booked:
                    logger.warning(f"Re-confirming booking {booking.id} on ride {ride_id} would overbook")
                    raise InsufficientCapacity(remaining, booking.seats_booked)

            old_booking_status = booking.status
            booking.status = new_status
            new_ride_status = derive_status(ride, bookings)

            try:
                with transaction.atomic():
                    swapped = self._swap(ride, new_ride_status)
                    if swapped:
                        booking.save(update_fields=['status', 'updated_at'])
            except IntegrityError:
                raise DuplicateBooking('Passenger already holds an active booking on this ride')

            if not swapped:
                self._conflict('set_booking_status', ride_id, attempt)
                continue

            logger.info(f"Booking {booking.id} on ride {ride_id} {old_booking_status} -> {new_status} by driver {driver.id}")
            if new_status == 'cancelled':
                self._after_commit('chat_remove_participant', self.chat_service.remove_participant,
                                   ride.id, passenger_id)
            elif old_booking_status == 'cancelled':
                self._after_commit('chat_add_participant', self.chat_service.add_participant,
                                   ride.id, passenger_id)
            self._after_commit('booking_updated', self.events.booking_updated, ride, booking)
            self._status_changed(ride.id, ride.status, new_ride_status)
            return booking

        raise self._exhausted('set_booking_status', ride_id)


class RideService:
    """Ride creation and editing; seats are left to the ledger."""

    EDITABLE_FIELDS = (
        'price_per_seat', 'notes', 'smoking_allowed', 'pets_allowed',
        'music_preference', 'conversation_level', 'max_detour_km',
        'estimated_arrival_time',
    )

    def __init__(self, chat_service=None):
        config = settings.CARPOOLING_SETTINGS
        self.defaults = {
            'currency': config['DEFAULT_CURRENCY'],
            'smoking_allowed': False,
            'pets_allowed': False,
            'music_preference': config['DEFAULT_MUSIC_PREFERENCE'],
            'conversation_level': config['DEFAULT_CONVERSATION_LEVEL'],
            'max_detour_km': config['DEFAULT_MAX_DETOUR_KM'],
        }
        self.chat_service = chat_service or ChatService()

    def create_ride(self, driver, data):
        """Create a ride, resolving unset options from configuration."""
        values = dict(self.defaults)
        values.update({k: v for k, v in data.items() if v is not None})

        with transaction.atomic():
            ride = Ride.objects.create(driver=driver, status='active', version=0, **values)
            self.chat_service.create_for_ride(ride)
            Profile.increment_rides(driver.id, 'driver')

        logger.info(f"Ride {ride.id} created by user {driver.id}: {ride}")
        return ride

    def update_ride(self, ride, user, data):
        if ride.driver_id != user.id:
            raise NotRideDriver()
        if ride.is_terminal:
            raise RideUpdateRejected()
        if 'available_seats' in data and data['available_seats'] != ride.available_seats:
            raise RideUpdateRejected('Seat count cannot be changed after the ride is created')

        changed = [field for field in self.EDITABLE_FIELDS if field in data]
        for field in changed:
            setattr(ride, field, data[field])
        if changed:
            ride.save(update_fields=changed + ['updated_at'])
            logger.info(f"Ride {ride.id} updated: {', '.join(changed)}")
        return ride
