# rides/models.py
from decimal import Decimal
from django.db import models
from django.db.models import Q
from django.contrib.auth import get_user_model
from django.core.validators import MinValueValidator, MaxValueValidator
import math

User = get_user_model()

# Seats held by bookings in these states count against capacity
CAPACITY_STATUSES = ('confirmed', 'completed')
# A passenger may hold only one booking in these states per ride
ACTIVE_BOOKING_STATUSES = ('pending', 'confirmed', 'completed')


class Ride(models.Model):
    STATUS_CHOICES = [
        ('active', 'Active'),
        ('full', 'Full'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
    ]
    TERMINAL_STATUSES = ('completed', 'cancelled')

    MUSIC_CHOICES = [
        ('any', 'Any'),
        ('no_music', 'No music'),
        ('soft', 'Soft'),
        ('upbeat', 'Upbeat'),
    ]
    CONVERSATION_CHOICES = [
        ('quiet', 'Quiet'),
        ('some_chat', 'Some chat'),
        ('chatty', 'Chatty'),
    ]

    driver = models.ForeignKey(User, on_delete=models.CASCADE, related_name='rides_as_driver')

    origin_address = models.TextField()
    origin_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    origin_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    origin_city = models.CharField(max_length=100)

    destination_address = models.TextField()
    destination_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    destination_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    destination_city = models.CharField(max_length=100)

    departure_time = models.DateTimeField()
    estimated_arrival_time = models.DateTimeField(null=True, blank=True)

    # Fixed at creation
    available_seats = models.PositiveSmallIntegerField(validators=[MaxValueValidator(7)])
    price_per_seat = models.DecimalField(max_digits=8, decimal_places=2,
                                         validators=[MinValueValidator(Decimal('0'))])
    currency = models.CharField(max_length=3)

    route_distance_km = models.DecimalField(max_digits=8, decimal_places=2)
    route_duration_min = models.PositiveIntegerField()

    vehicle_make = models.CharField(max_length=50)
    vehicle_model = models.CharField(max_length=50)
    vehicle_color = models.CharField(max_length=30)
    vehicle_plate_number = models.CharField(max_length=20)

    smoking_allowed = models.BooleanField()
    pets_allowed = models.BooleanField()
    music_preference = models.CharField(max_length=20, choices=MUSIC_CHOICES)
    conversation_level = models.CharField(max_length=20, choices=CONVERSATION_CHOICES)
    max_detour_km = models.PositiveIntegerField()

    notes = models.CharField(max_length=500, blank=True)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='active')
    # Compare-and-swap token, bumped by every ledger mutation
    version = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['driver', 'status']),
            models.Index(fields=['departure_time', 'status']),
            models.Index(fields=['origin_city', 'destination_city']),
            models.Index(fields=['origin_latitude', 'origin_longitude']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(available_seats__lte=7), name='ride_available_seats_lte_7'
            ),
        ]

    def __str__(self):
        return f'{self.origin_city} -> {self.destination_city} at {self.departure_time:%Y-%m-%d %H:%M}'

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    @property
    def origin_point(self):
        return {
            'address': self.origin_address,
            'coordinates': [self.origin_longitude, self.origin_latitude],
        }

    @property
    def destination_point(self):
        return {
            'address': self.destination_address,
            'coordinates': [self.destination_longitude, self.destination_latitude],
        }

    # Derived capacity, computed from bookings and never stored.
    # Uses prefetched bookings when available.

    def booked_seats(self, bookings=None):
        bookings = self.bookings.all() if bookings is None else bookings
        return sum(b.seats_booked for b in bookings if b.status in CAPACITY_STATUSES)

    def remaining_seats(self, bookings=None):
        return self.available_seats - self.booked_seats(bookings)

    def is_full(self, bookings=None):
        return self.remaining_seats(bookings) <= 0

    def total_earnings(self, bookings=None):
        bookings = self.bookings.all() if bookings is None else bookings
        return sum((b.total_amount for b in bookings if b.status in CAPACITY_STATUSES), Decimal('0'))

    def is_participant(self, user):
        if self.driver_id == user.id:
            return True
        return self.bookings.filter(passenger=user).exists()

    def distance_from_origin(self, lat, lng):
        """Distance in meters from the ride origin to a point"""
        return self.haversine_distance(
            float(self.origin_latitude),
            float(self.origin_longitude),
            float(lat),
            float(lng),
        )

    @staticmethod
    def haversine_distance(lat1, lon1, lat2, lon2):
        """Calculate great-circle distance between two points"""
        R = 6371000  # Earth radius in meters

        lat1, lon1, lat2, lon2 = map(math.radians, [lat1, lon1, lat2, lon2])

        dlat = lat2 - lat1
        dlon = lon2 - lon1

        a = math.sin(dlat/2)**2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon/2)**2
        c = 2 * math.atan2(math.sqrt(a), math.sqrt(1-a))

        return R * c


class Booking(models.Model):
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('confirmed', 'Confirmed'),
        ('cancelled', 'Cancelled'),
        ('completed', 'Completed'),
    ]

    ride = models.ForeignKey(Ride, on_delete=models.CASCADE, related_name='bookings')
    passenger = models.ForeignKey(User, on_delete=models.CASCADE, related_name='bookings')
    seats_booked = models.PositiveSmallIntegerField(validators=[MinValueValidator(1)])
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='confirmed')
    # Frozen at booking time
    total_amount = models.DecimalField(max_digits=10, decimal_places=2)

    pickup_address = models.TextField(blank=True)
    pickup_longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    pickup_latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    dropoff_address = models.TextField(blank=True)
    dropoff_longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    dropoff_latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)

    booking_time = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['booking_time', 'id']
        indexes = [
            models.Index(fields=['passenger', 'status']),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['ride', 'passenger'],
                condition=~Q(status='cancelled'),
                name='one_active_booking_per_passenger',
            ),
            models.CheckConstraint(condition=Q(seats_booked__gte=1), name='booking_seats_gte_1'),
        ]

    def __str__(self):
        return f'{self.passenger} x{self.seats_booked} on ride {self.ride_id} ({self.status})'

    @property
    def is_active(self):
        return self.status in ACTIVE_BOOKING_STATUSES

    @property
    def pickup_point(self):
        return {'address': self.pickup_address,
                'coordinates': [self.pickup_longitude, self.pickup_latitude]}

    @property
    def dropoff_point(self):
        return {'address': self.dropoff_address,
                'coordinates': [self.dropoff_longitude, self.dropoff_latitude]}
