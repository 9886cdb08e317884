# rides/exceptions.py
from rest_framework import status

from carpooling.exceptions import DomainError, NotFoundError, ForbiddenError, ConflictError


class BookingRejected(DomainError):
    """A booking request failed an eligibility rule."""
    code = 'booking_rejected'
    default_message = 'Booking rejected'


class RideNotBookable(BookingRejected):
    code = 'ride_not_bookable'
    default_message = 'This ride is no longer available for booking'


class SelfBookingDenied(BookingRejected):
    code = 'self_booking_denied'
    default_message = 'You cannot book your own ride'


class DuplicateBooking(BookingRejected):
    code = 'duplicate_booking'
    default_message = 'You have already booked this ride'


class InsufficientCapacity(BookingRejected):
    code = 'insufficient_capacity'
    default_message = 'Not enough seats available'

    def __init__(self, remaining=None, requested=None, message=None):
        self.remaining = remaining
        self.requested = requested
        if message is None and remaining is not None:
            message = f'Only {max(remaining, 0)} seat(s) available, {requested} requested'
        super().__init__(message)


class RideDeparted(BookingRejected):
    code = 'ride_departed'
    default_message = 'Cannot book a ride that has already departed'


class InvalidBookingStatus(DomainError):
    code = 'invalid_booking_status'
    default_message = 'Invalid booking status'


class RideNotFound(NotFoundError):
    code = 'ride_not_found'
    default_message = 'Ride not found'


class BookingNotFound(NotFoundError):
    code = 'booking_not_found'
    default_message = 'No active booking found for this ride'


class NotRideDriver(ForbiddenError):
    code = 'not_ride_driver'
    default_message = 'Only the driver of this ride can do this'


class NotRideParticipant(ForbiddenError):
    code = 'not_ride_participant'
    default_message = 'You are not part of this ride'


class ConcurrentUpdateError(ConflictError):
    code = 'concurrent_update'
    default_message = 'The ride changed while booking, please retry'


class RideUpdateRejected(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'ride_update_rejected'
    default_message = 'This ride can no longer be edited'


class InvalidSeatCount(DomainError):
    code = 'invalid_seat_count'
    default_message = 'At least one seat must be booked'
