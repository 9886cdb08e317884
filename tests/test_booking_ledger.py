from datetime import timedelta
from decimal import Decimal
from unittest import mock

import pytest
from django.utils import timezone

from accounts.models import Profile, PassengerProfile
from chat.models import ChatParticipant, Message
from rides.exceptions import (
    SelfBookingDenied, DuplicateBooking, InsufficientCapacity, RideDeparted, RideNotBookable,
    BookingNotFound, NotRideDriver, InvalidBookingStatus, ConcurrentUpdateError,
    InvalidSeatCount, RideUpdateRejected, RideNotFound,
)
from rides.models import Ride, Booking
from rides.services import BookingLedger, RideService, derive_status

pytestmark = pytest.mark.django_db


def reload(ride):
    return Ride.objects.get(pk=ride.pk)


class TestThreeSeatRide:
    def test_bookings_fill_and_reopen_the_ride(self, ledger, ride, passenger, other_passenger, make_user):
        third = make_user()

        first = ledger.book(ride.id, passenger, 2)
        assert first.total_amount == Decimal('31.00')
        assert first.status == 'confirmed'
        assert reload(ride).status == 'active'
        assert reload(ride).remaining_seats() == 1

        with pytest.raises(InsufficientCapacity):
            ledger.book(ride.id, other_passenger, 2)

        ledger.book(ride.id, other_passenger, 1)
        assert reload(ride).status == 'full'
        assert reload(ride).is_full()

        with pytest.raises(InsufficientCapacity):
            ledger.book(ride.id, third, 1)

        ledger.cancel_booking(ride.id, passenger)
        ride = reload(ride)
        assert ride.status == 'active'
        assert ride.remaining_seats() == 2
        assert ride.booked_seats() == 1

    def test_booked_seats_never_exceed_available(self, ledger, make_ride, make_user):
        ride = make_ride(available_seats=2)
        for _ in range(4):
            try:
                ledger.book(ride.id, make_user(), 1)
            except InsufficientCapacity:
                pass
        ride = reload(ride)
        assert ride.booked_seats() == 2
        assert ride.bookings.count() == 2


class TestEligibility:
    def test_driver_cannot_book_own_ride(self, ledger, ride, driver):
        with pytest.raises(SelfBookingDenied):
            ledger.book(ride.id, driver, 1)

    def test_one_active_booking_per_passenger(self, ledger, ride, passenger):
        ledger.book(ride.id, passenger, 1)
        with pytest.raises(DuplicateBooking):
            ledger.book(ride.id, passenger, 1)

    def test_passenger_can_rebook_after_cancelling(self, ledger, ride, passenger):
        ledger.book(ride.id, passenger, 1)
        ledger.cancel_booking(ride.id, passenger)
        rebooked = ledger.book(ride.id, passenger, 2)

        assert rebooked.seats_booked == 2
        assert ride.bookings.filter(passenger=passenger).count() == 2
        assert reload(ride).booked_seats() == 2

    def test_departed_ride_cannot_be_booked(self, ride, passenger):
        late = BookingLedger(clock=lambda: ride.departure_time + timedelta(minutes=1))
        with pytest.raises(RideDeparted):
            late.book(ride.id, passenger, 1)

    def test_departure_at_exactly_now_is_departed(self, ride, passenger):
        ledger = BookingLedger(clock=lambda: ride.departure_time)
        eligibility = ledger.evaluate(ride, passenger, 1)
        assert not eligibility.granted
        assert isinstance(eligibility.error, RideDeparted)

    def test_checks_run_in_order(self, ride, driver, passenger):
        late = BookingLedger(clock=lambda: ride.departure_time + timedelta(hours=1))
        # Driver on a departed ride asking too many seats: self-booking wins
        assert isinstance(late.evaluate(ride, driver, 10).error, SelfBookingDenied)
        # Capacity is checked before departure
        assert isinstance(late.evaluate(ride, passenger, 10).error, InsufficientCapacity)
        assert isinstance(late.evaluate(ride, passenger, 1).error, RideDeparted)

    def test_granted_eligibility_reports_remaining_seats(self, ledger, ride, passenger):
        eligibility = ledger.evaluate(ride, passenger, 2)
        assert eligibility.granted
        assert eligibility.remaining_seats == 3

    def test_terminal_ride_is_not_bookable(self, ledger, ride, passenger, other_passenger, driver):
        ledger.book(ride.id, passenger, 1)
        ledger.cancel_ride(ride.id, driver)
        with pytest.raises(RideNotBookable):
            ledger.book(ride.id, other_passenger, 1)
        # The passenger still holds a booking on the cancelled ride
        with pytest.raises(DuplicateBooking):
            ledger.book(ride.id, passenger, 1)

    def test_driver_on_own_cancelled_ride_is_self_booking(self, ledger, ride, driver, passenger):
        ledger.book(ride.id, passenger, 1)
        ledger.cancel_ride(ride.id, driver)
        assert isinstance(ledger.evaluate(reload(ride), driver, 1).error, SelfBookingDenied)

    def test_completed_departed_ride_reports_departure(self, ledger, ride, passenger, make_user):
        ledger.book(ride.id, passenger, 1)
        ledger.complete_ride(ride.id)
        late = BookingLedger(clock=lambda: ride.departure_time + timedelta(hours=8))

        eligibility = late.evaluate(reload(ride), make_user(), 1)
        assert isinstance(eligibility.error, RideDeparted)
        with pytest.raises(RideDeparted):
            late.book(ride.id, make_user(), 1)

    def test_zero_seats_rejected(self, ledger, ride, passenger):
        with pytest.raises(InvalidSeatCount):
            ledger.book(ride.id, passenger, 0)

    def test_unknown_ride(self, ledger, passenger):
        with pytest.raises(RideNotFound):
            ledger.book(999999, passenger, 1)

    def test_rejection_carries_code_and_message(self, ledger, make_ride, passenger):
        ride = make_ride(available_seats=1)
        with pytest.raises(InsufficientCapacity) as exc_info:
            ledger.book(ride.id, passenger, 2)
        assert exc_info.value.code == 'insufficient_capacity'
        assert '1 seat(s) available' in exc_info.value.message
        assert exc_info.value.status_code == 400


class TestAmountsAndDefaults:
    def test_total_amount_is_frozen_at_booking_time(self, ledger, ride, driver, passenger):
        booking = ledger.book(ride.id, passenger, 2)
        RideService().update_ride(reload(ride), driver, {'price_per_seat': Decimal('99.00')})

        booking.refresh_from_db()
        assert booking.total_amount == Decimal('31.00')
        assert reload(ride).total_earnings() == Decimal('31.00')

    def test_pickup_and_dropoff_default_to_ride_endpoints(self, ledger, ride, passenger):
        booking = ledger.book(ride.id, passenger, 1)
        booking.refresh_from_db()
        assert booking.pickup_address == ride.origin_address
        assert booking.dropoff_address == ride.destination_address
        assert booking.pickup_latitude == ride.origin_latitude

    def test_explicit_pickup_is_kept(self, ledger, ride, passenger):
        pickup = {'address': 'Silk Board', 'coordinates': [77.6227, 12.9177]}
        booking = ledger.book(ride.id, passenger, 1, pickup=pickup)
        booking.refresh_from_db()
        assert booking.pickup_address == 'Silk Board'
        assert booking.pickup_longitude == Decimal('77.622700')
        assert booking.dropoff_address == ride.destination_address


class TestConcurrency:
    def test_last_seat_race_is_lost_by_stale_writer(self, ledger, make_ride, passenger, other_passenger,
                                                    monkeypatch):
        ride = make_ride(available_seats=1)
        # Both passengers read the ride while the seat is still free
        stale = ledger._load_snapshot(ride.id)
        ledger.book(ride.id, passenger, 1)

        fresh_loader = ledger._load_snapshot
        snapshots = iter([stale])
        monkeypatch.setattr(ledger, '_load_snapshot', lambda ride_id: next(snapshots, None) or fresh_loader(ride_id))

        with pytest.raises(InsufficientCapacity):
            ledger.book(ride.id, other_passenger, 1)

        ride = reload(ride)
        assert ride.booked_seats() == 1
        assert ride.status == 'full'
        assert not Booking.objects.filter(passenger=other_passenger).exists()

    def test_conflict_retry_succeeds_when_seats_remain(self, ledger, ride, passenger, other_passenger,
                                                       monkeypatch):
        stale = ledger._load_snapshot(ride.id)
        ledger.book(ride.id, passenger, 1)

        fresh_loader = ledger._load_snapshot
        snapshots = iter([stale])
        monkeypatch.setattr(ledger, '_load_snapshot', lambda ride_id: next(snapshots, None) or fresh_loader(ride_id))

        booking = ledger.book(ride.id, other_passenger, 1)
        assert booking.pk is not None
        ride = reload(ride)
        assert ride.booked_seats() == 2
        assert ride.version == 2

    def test_gives_up_after_max_attempts(self, ledger, ride, passenger, other_passenger, monkeypatch):
        stale = ledger._load_snapshot(ride.id)
        ledger.book(ride.id, passenger, 1)
        monkeypatch.setattr(ledger, '_load_snapshot', lambda ride_id: stale)

        with pytest.raises(ConcurrentUpdateError) as exc_info:
            ledger.book(ride.id, other_passenger, 1)
        assert exc_info.value.status_code == 409
        assert reload(ride).booked_seats() == 1

    def test_stale_delete_is_retried_as_cancellation(self, ledger, ride, driver, passenger, monkeypatch):
        # The driver saw an empty ride, a passenger booked before the delete
        stale = ledger._load_snapshot(ride.id)
        ledger.book(ride.id, passenger, 1)

        fresh_loader = ledger._load_snapshot
        snapshots = iter([stale])
        monkeypatch.setattr(ledger, '_load_snapshot', lambda ride_id: next(snapshots, None) or fresh_loader(ride_id))

        assert ledger.cancel_ride(ride.id, driver) == 'cancelled'
        ride = reload(ride)
        assert ride.status == 'cancelled'
        assert ride.bookings.get().passenger_id == passenger.id

    def test_stale_delete_gives_up_without_deleting(self, ledger, ride, driver, passenger, monkeypatch):
        stale = ledger._load_snapshot(ride.id)
        ledger.book(ride.id, passenger, 1)
        monkeypatch.setattr(ledger, '_load_snapshot', lambda ride_id: stale)

        with pytest.raises(ConcurrentUpdateError):
            ledger.cancel_ride(ride.id, driver)
        assert Booking.objects.filter(ride_id=ride.id, passenger=passenger).exists()
        assert reload(ride).status == 'active'

    def test_every_mutation_bumps_version(self, ledger, ride, passenger, driver):
        assert reload(ride).version == 0
        ledger.book(ride.id, passenger, 1)
        assert reload(ride).version == 1
        ledger.set_booking_status(ride.id, driver, passenger.id, 'pending')
        assert reload(ride).version == 2
        ledger.cancel_booking(ride.id, passenger)
        assert reload(ride).version == 3


class TestCancelBooking:
    def test_requires_an_active_booking(self, ledger, ride, passenger):
        with pytest.raises(BookingNotFound):
            ledger.cancel_booking(ride.id, passenger)

    def test_cancelled_booking_is_kept_as_history(self, ledger, ride, passenger):
        booking = ledger.book(ride.id, passenger, 2)
        ledger.cancel_booking(ride.id, passenger)

        booking.refresh_from_db()
        assert booking.status == 'cancelled'
        assert reload(ride).booked_seats() == 0

        with pytest.raises(BookingNotFound):
            ledger.cancel_booking(ride.id, passenger)


class TestCancelRide:
    def test_ride_without_bookings_is_deleted(self, ledger, ride, driver):
        assert ledger.cancel_ride(ride.id, driver) == 'deleted'
        assert not Ride.objects.filter(pk=ride.pk).exists()

    def test_ride_with_only_cancelled_bookings_is_deleted(self, ledger, ride, driver, passenger):
        ledger.book(ride.id, passenger, 1)
        ledger.cancel_booking(ride.id, passenger)
        assert ledger.cancel_ride(ride.id, driver) == 'deleted'

    def test_ride_with_bookings_is_cancelled(self, ledger, ride, driver, passenger):
        ledger.book(ride.id, passenger, 1)
        assert ledger.cancel_ride(ride.id, driver) == 'cancelled'

        ride = reload(ride)
        assert ride.status == 'cancelled'
        assert ride.bookings.count() == 1

    def test_only_driver_can_cancel(self, ledger, ride, passenger):
        with pytest.raises(NotRideDriver):
            ledger.cancel_ride(ride.id, passenger)

    def test_staff_can_cancel(self, ledger, ride, make_user):
        admin = make_user(is_staff=True)
        assert ledger.cancel_ride(ride.id, admin) == 'deleted'

    def test_passengers_are_notified_after_commit(self, ledger, ride, driver, passenger, channel_layer,
                                                  django_capture_on_commit_callbacks):
        ledger.book(ride.id, passenger, 1)
        with mock.patch('rides.events.get_channel_layer', return_value=channel_layer), \
                mock.patch('chat.services.get_channel_layer', return_value=channel_layer):
            with django_capture_on_commit_callbacks(execute=True):
                ledger.cancel_ride(ride.id, driver)

        notifications = channel_layer.events('user_notification')
        assert (f'user_{passenger.id}', mock.ANY) in notifications
        assert any(m['event'] == 'ride_cancelled' for _, m in notifications)
        assert Message.objects.filter(chat__ride=ride, message_type='system').exists()


class TestTerminalStatuses:
    def test_cancelling_a_booking_keeps_terminal_status(self, ledger, make_ride, driver, passenger,
                                                        other_passenger):
        ride = make_ride(available_seats=2)
        ledger.book(ride.id, passenger, 1)
        ledger.book(ride.id, other_passenger, 1)
        assert reload(ride).status == 'full'

        ledger.cancel_ride(ride.id, driver)
        ledger.cancel_booking(ride.id, passenger)
        assert reload(ride).status == 'cancelled'

    def test_complete_ride_completes_confirmed_bookings(self, ledger, ride, driver, passenger,
                                                        other_passenger):
        ledger.book(ride.id, passenger, 1)
        ledger.book(ride.id, other_passenger, 1)
        ledger.set_booking_status(ride.id, driver, other_passenger.id, 'pending')

        completed = ledger.complete_ride(ride.id, user=driver)
        assert completed.status == 'completed'
        statuses = dict(completed.bookings.values_list('passenger_id', 'status'))
        assert statuses == {passenger.id: 'completed', other_passenger.id: 'pending'}
        # Completed bookings still hold their seats
        assert completed.booked_seats() == 1

    def test_completed_ride_stays_completed(self, ledger, ride, passenger, other_passenger):
        ledger.book(ride.id, passenger, 1)
        ledger.complete_ride(ride.id)

        with pytest.raises(RideNotBookable):
            ledger.book(ride.id, other_passenger, 1)
        with pytest.raises(BookingNotFound):
            ledger.cancel_booking(ride.id, passenger)
        with pytest.raises(RideUpdateRejected):
            ledger.cancel_ride(ride.id, ride.driver)
        assert reload(ride).status == 'completed'

    def test_cancelled_ride_cannot_be_completed(self, ledger, ride, driver, passenger):
        ledger.book(ride.id, passenger, 1)
        ledger.cancel_ride(ride.id, driver)
        with pytest.raises(RideUpdateRejected):
            ledger.complete_ride(ride.id)

    def test_only_driver_completes(self, ledger, ride, passenger):
        with pytest.raises(NotRideDriver):
            ledger.complete_ride(ride.id, user=passenger)

    def test_derive_status(self, ride):
        booking = Booking(ride=ride, passenger_id=1, seats_booked=3, status='confirmed',
                          total_amount=Decimal('0'))
        assert derive_status(ride, []) == 'active'
        assert derive_status(ride, [booking]) == 'full'
        booking.status = 'pending'
        assert derive_status(ride, [booking]) == 'active'
        ride.status = 'completed'
        assert derive_status(ride, []) == 'completed'


class TestSetBookingStatus:
    def test_reconfirming_cannot_overbook(self, ledger, make_ride, driver, passenger, other_passenger):
        ride = make_ride(available_seats=2)
        ledger.book(ride.id, passenger, 2)
        ledger.set_booking_status(ride.id, driver, passenger.id, 'cancelled')
        assert reload(ride).status == 'active'

        ledger.book(ride.id, other_passenger, 2)
        with pytest.raises(InsufficientCapacity):
            ledger.set_booking_status(ride.id, driver, passenger.id, 'confirmed')

        ride = reload(ride)
        assert ride.booked_seats() == 2
        assert ride.status == 'full'

    def test_pending_releases_and_confirm_retakes_seats(self, ledger, make_ride, driver, passenger):
        ride = make_ride(available_seats=1)
        ledger.book(ride.id, passenger, 1)
        assert reload(ride).status == 'full'

        ledger.set_booking_status(ride.id, driver, passenger.id, 'pending')
        assert reload(ride).status == 'active'

        booking = ledger.set_booking_status(ride.id, driver, passenger.id, 'confirmed')
        assert booking.status == 'confirmed'
        assert reload(ride).status == 'full'

    def test_reviving_cancelled_booking(self, ledger, ride, driver, passenger):
        ledger.book(ride.id, passenger, 1)
        ledger.cancel_booking(ride.id, passenger)

        booking = ledger.set_booking_status(ride.id, driver, passenger.id, 'confirmed')
        assert booking.status == 'confirmed'
        assert reload(ride).booked_seats() == 1

    def test_invalid_status(self, ledger, ride, driver, passenger):
        ledger.book(ride.id, passenger, 1)
        with pytest.raises(InvalidBookingStatus):
            ledger.set_booking_status(ride.id, driver, passenger.id, 'completed')

    def test_only_driver(self, ledger, ride, passenger, other_passenger):
        ledger.book(ride.id, passenger, 1)
        with pytest.raises(NotRideDriver):
            ledger.set_booking_status(ride.id, other_passenger, passenger.id, 'cancelled')

    def test_unknown_passenger(self, ledger, ride, driver, passenger):
        with pytest.raises(BookingNotFound):
            ledger.set_booking_status(ride.id, driver, passenger.id, 'confirmed')

    def test_same_status_is_a_no_op(self, ledger, ride, driver, passenger):
        ledger.book(ride.id, passenger, 1)
        ledger.set_booking_status(ride.id, driver, passenger.id, 'confirmed')
        assert reload(ride).version == 1


class TestSideEffects:
    def test_booking_side_effects_run_after_commit(self, ledger, ride, passenger,
                                                   django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            ledger.book(ride.id, passenger, 1)

        assert ChatParticipant.objects.get(chat__ride=ride, user=passenger).is_active
        assert Profile.objects.get(user=passenger).rides_as_passenger == 1
        route = PassengerProfile.objects.get(user=passenger).most_frequent_route()
        assert (route.origin_city, route.destination_city, route.count) == ('Bengaluru', 'Chennai', 1)

    def test_nothing_happens_before_commit(self, ledger, ride, passenger, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks() as callbacks:
            ledger.book(ride.id, passenger, 1)
        assert callbacks
        assert not ChatParticipant.objects.filter(chat__ride=ride, user=passenger).exists()

    def test_cancel_removes_chat_participant(self, ledger, ride, passenger, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            ledger.book(ride.id, passenger, 1)
            ledger.cancel_booking(ride.id, passenger)

        assert not ChatParticipant.objects.get(chat__ride=ride, user=passenger).is_active

    def test_events_are_published(self, ledger, make_ride, passenger, channel_layer,
                                  django_capture_on_commit_callbacks):
        ride = make_ride(available_seats=1)
        with django_capture_on_commit_callbacks(execute=True):
            ledger.book(ride.id, passenger, 1)

        assert channel_layer.events('participant_added')[0][0] == f'ride_{ride.id}'
        status_changes = channel_layer.events('ride_status_changed')
        assert status_changes[0][1]['old_status'] == 'active'
        assert status_changes[0][1]['status'] == 'full'

    def test_collaborator_failure_does_not_fail_booking(self, ride, passenger, django_capture_on_commit_callbacks):
        chat_service = mock.Mock()
        chat_service.add_participant.side_effect = RuntimeError('chat down')
        ledger = BookingLedger(chat_service=chat_service, events=mock.Mock())

        with django_capture_on_commit_callbacks(execute=True):
            booking = ledger.book(ride.id, passenger, 1)

        assert booking.pk is not None
        chat_service.add_participant.assert_called_once_with(ride.id, passenger.id)
        assert Profile.objects.get(user=passenger).rides_as_passenger == 1
