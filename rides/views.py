# rides/views.py
import logging
import math
from datetime import datetime, time, timedelta
from django.db.models import F, Q, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone
from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from .exceptions import BookingNotFound, RideNotFound
from .models import Ride, Booking, ACTIVE_BOOKING_STATUSES, CAPACITY_STATUSES
from .serializers import (
    RideSerializer, RideCreateSerializer, RideUpdateSerializer, BookRideSerializer,
    BookingSerializer, BookingStatusSerializer,
)
from .services import BookingLedger, RideService

logger = logging.getLogger(__name__)

KM_PER_DEGREE = 111.32


def _float_param(params, name):
    value = params.get(name)
    if value in (None, ''):
        return None
    try:
        return float(value)
    except ValueError:
        raise ValidationError({name: 'Must be a number'})


class RideViewSet(viewsets.GenericViewSet):
    """Offer, search, book and manage rides"""
    serializer_class = RideSerializer
    permission_classes = [IsAuthenticated]
    lookup_value_regex = r'\d+'

    def get_queryset(self):
        return (Ride.objects
                .select_related('driver__profile')
                .prefetch_related('bookings__passenger__profile'))

    def get_object(self):
        try:
            return self.get_queryset().get(pk=self.kwargs['pk'])
        except (Ride.DoesNotExist, ValueError):
            raise RideNotFound()

    def _ride_response(self, ride, message=None, status_code=status.HTTP_200_OK):
        ride = self.get_queryset().get(pk=ride.pk)
        body = {'success': True, 'data': RideSerializer(ride, context=self.get_serializer_context()).data}
        if message:
            body['message'] = message
        return Response(body, status=status_code)

    # Search

    def search_queryset(self, params):
        """Upcoming active rides by others, narrowed by the query parameters"""
        now = timezone.now()
        queryset = self.get_queryset().filter(status='active', departure_time__gte=now).exclude(
            driver=self.request.user
        )

        origin = params.get('origin')
        if origin:
            queryset = queryset.filter(origin_city__icontains=origin.strip())
        destination = params.get('destination')
        if destination:
            queryset = queryset.filter(destination_city__icontains=destination.strip())

        date = params.get('date')
        if date:
            try:
                day = datetime.strptime(date, '%Y-%m-%d').date()
            except ValueError:
                raise ValidationError({'date': 'Use YYYY-MM-DD'})
            tz = timezone.get_current_timezone()
            start = timezone.make_aware(datetime.combine(day, time.min), tz)
            queryset = queryset.filter(departure_time__gte=start, departure_time__lt=start + timedelta(days=1))

        seats = _float_param(params, 'seats')
        if seats:
            queryset = queryset.annotate(
                seats_taken=Coalesce(
                    Sum('bookings__seats_booked', filter=Q(bookings__status__in=CAPACITY_STATUSES)),
                    Value(0),
                )
            ).annotate(seats_left=F('available_seats') - F('seats_taken')).filter(seats_left__gte=int(seats))

        max_price = _float_param(params, 'max_price')
        if max_price is not None:
            queryset = queryset.filter(price_per_seat__lte=max_price)

        ordering = params.get('ordering', 'departure_time')
        if ordering.lstrip('-') not in ('departure_time', 'price_per_seat'):
            ordering = 'departure_time'
        queryset = queryset.order_by(ordering, 'id')

        near_lat = _float_param(params, 'near_lat')
        near_lng = _float_param(params, 'near_lng')
        if near_lat is not None and near_lng is not None:
            radius_km = _float_param(params, 'radius_km') or 10
            return self._within_radius(queryset, near_lat, near_lng, radius_km)
        return queryset

    def _within_radius(self, queryset, lat, lng, radius_km):
        """Bounding box in the database, exact haversine in Python"""
        lat_delta = radius_km / KM_PER_DEGREE
        lng_delta = radius_km / (KM_PER_DEGREE * max(math.cos(math.radians(lat)), 0.01))
        candidates = queryset.filter(
            origin_latitude__range=(lat - lat_delta, lat + lat_delta),
            origin_longitude__range=(lng - lng_delta, lng + lng_delta),
        )
        return [ride for ride in candidates if ride.distance_from_origin(lat, lng) <= radius_km * 1000]

    def list(self, request):
        queryset = self.search_queryset(request.query_params)
        page = self.paginate_queryset(queryset)
        serializer = self.get_serializer(page, many=True)
        return self.get_paginated_response(serializer.data)

    # CRUD

    def create(self, request):
        serializer = RideCreateSerializer(data=request.data, context=self.get_serializer_context())
        serializer.is_valid(raise_exception=True)
        ride = RideService().create_ride(request.user, serializer.to_ride_data())
        return self._ride_response(ride, 'Ride created successfully', status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        ride = self.get_object()
        return Response({'success': True, 'data': self.get_serializer(ride).data})

    def partial_update(self, request, pk=None):
        ride = self.get_object()
        serializer = RideUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        ride = RideService().update_ride(ride, request.user, serializer.validated_data)
        return self._ride_response(ride, 'Ride updated successfully')

    def destroy(self, request, pk=None):
        outcome = BookingLedger().cancel_ride(self.kwargs['pk'], request.user)
        message = 'Ride deleted successfully' if outcome == 'deleted' else 'Ride cancelled successfully'
        return Response({'success': True, 'message': message, 'data': {'outcome': outcome}})

    @action(detail=False, methods=['get'])
    def mine(self, request):
        """Rides the current user drives and/or is booked on"""
        ride_type = request.query_params.get('type', 'all')
        user = request.user
        as_driver = Q(driver=user)
        as_passenger = Q(bookings__passenger=user, bookings__status__in=ACTIVE_BOOKING_STATUSES)
        if ride_type == 'driver':
            condition = as_driver
        elif ride_type == 'passenger':
            condition = as_passenger
        else:
            condition = as_driver | as_passenger

        queryset = self.get_queryset().filter(condition).distinct().order_by('-departure_time')
        ride_status = request.query_params.get('status')
        if ride_status:
            queryset = queryset.filter(status=ride_status)

        page = self.paginate_queryset(queryset)
        serializer = self.get_serializer(page, many=True)
        return self.get_paginated_response(serializer.data)

    # Booking ledger

    @action(detail=True, methods=['post'])
    def book(self, request, pk=None):
        """Book seats on a ride"""
        serializer = BookRideSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        booking = BookingLedger().book(
            pk, request.user, data['seats'],
            pickup=data.get('pickup'), dropoff=data.get('dropoff'),
        )
        return self._ride_response(booking.ride, 'Ride booked successfully', status.HTTP_201_CREATED)

    @action(detail=True, methods=['delete'], url_path='cancel-booking')
    def cancel_booking(self, request, pk=None):
        BookingLedger().cancel_booking(pk, request.user)
        return Response({'success': True, 'message': 'Booking cancelled successfully'})

    @action(detail=True, methods=['post'])
    def complete(self, request, pk=None):
        """Mark a ride completed (driver only)"""
        ride = BookingLedger().complete_ride(pk, user=request.user)
        return self._ride_response(ride, 'Ride completed')


class BookingViewSet(viewsets.GenericViewSet):
    """The current user's bookings, and driver-side status changes"""
    serializer_class = BookingSerializer
    permission_classes = [IsAuthenticated]
    lookup_url_kwarg = 'ride_id'
    lookup_value_regex = r'\d+'

    def get_queryset(self):
        return (Booking.objects
                .filter(passenger=self.request.user)
                .select_related('ride', 'passenger__profile')
                .order_by('ride__departure_time', 'id'))

    def list(self, request):
        queryset = self.get_queryset()
        booking_status = request.query_params.get('status')
        if booking_status:
            queryset = queryset.filter(status=booking_status)
        page = self.paginate_queryset(queryset)
        return self.get_paginated_response(self.get_serializer(page, many=True).data)

    def retrieve(self, request, ride_id=None):
        """Booking on a ride, with the ride and the other passengers"""
        bookings = list(self.get_queryset().filter(ride_id=ride_id))
        if not bookings:
            raise BookingNotFound('Booking not found')
        active = [b for b in bookings if b.is_active]
        booking = active[0] if active else bookings[-1]

        ride = (Ride.objects.select_related('driver__profile')
                .prefetch_related('bookings__passenger__profile').get(pk=ride_id))
        return Response({
            'success': True,
            'data': {
                'booking': self.get_serializer(booking).data,
                'ride': RideSerializer(ride, context=self.get_serializer_context()).data,
            }
        })

    @action(detail=True, methods=['put'], url_path=r'(?P<passenger_id>\d+)/status')
    def set_status(self, request, ride_id=None, passenger_id=None):
        """Driver confirms, cancels or re-opens a passenger's booking"""
        serializer = BookingStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        new_status = serializer.validated_data['status']
        booking = BookingLedger().set_booking_status(ride_id, request.user, int(passenger_id), new_status)
        return Response({
            'success': True,
            'message': f'Booking {booking.status} successfully',
            'data': BookingSerializer(booking).data,
        })
