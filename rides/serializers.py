# rides/serializers.py
from django.conf import settings
from django.utils import timezone
from rest_framework import serializers
from accounts.serializers import PublicUserSerializer
from .models import Ride, Booking


class PointSerializer(serializers.Serializer):
    """An address with ``[longitude, latitude]`` coordinates"""
    address = serializers.CharField()
    coordinates = serializers.ListField(child=serializers.FloatField(), min_length=2, max_length=2)

    def validate_coordinates(self, value):
        lng, lat = value
        if not -180 <= lng <= 180:
            raise serializers.ValidationError("Longitude must be between -180 and 180")
        if not -90 <= lat <= 90:
            raise serializers.ValidationError("Latitude must be between -90 and 90")
        return value


class LocationSerializer(PointSerializer):
    city = serializers.CharField(max_length=100)


class VehicleInfoSerializer(serializers.Serializer):
    make = serializers.CharField(max_length=50)
    model = serializers.CharField(max_length=50)
    color = serializers.CharField(max_length=30)
    plate_number = serializers.CharField(max_length=20)


class RidePreferencesSerializer(serializers.Serializer):
    smoking_allowed = serializers.BooleanField(required=False)
    pets_allowed = serializers.BooleanField(required=False)
    music_preference = serializers.ChoiceField(choices=Ride.MUSIC_CHOICES, required=False)
    conversation_level = serializers.ChoiceField(choices=Ride.CONVERSATION_CHOICES, required=False)
    max_detour_km = serializers.IntegerField(min_value=0, required=False)


class RouteSerializer(serializers.Serializer):
    distance_km = serializers.DecimalField(max_digits=8, decimal_places=2, min_value=0)
    duration_min = serializers.IntegerField(min_value=1)


class RideCreateSerializer(serializers.Serializer):
    origin = LocationSerializer()
    destination = LocationSerializer()
    departure_time = serializers.DateTimeField()
    estimated_arrival_time = serializers.DateTimeField(required=False, allow_null=True)
    available_seats = serializers.IntegerField(min_value=1)
    price_per_seat = serializers.DecimalField(max_digits=8, decimal_places=2, min_value=0)
    currency = serializers.CharField(max_length=3, required=False)
    vehicle = VehicleInfoSerializer(required=False)
    preferences = RidePreferencesSerializer(required=False)
    route = RouteSerializer()
    notes = serializers.CharField(max_length=500, required=False, allow_blank=True)

    def validate_departure_time(self, value):
        if value <= timezone.now():
            raise serializers.ValidationError("Departure time must be in the future")
        return value

    def validate_available_seats(self, value):
        max_seats = settings.CARPOOLING_SETTINGS['MAX_SEATS_PER_RIDE']
        if value > max_seats:
            raise serializers.ValidationError(f"A ride can offer at most {max_seats} seats")
        return value

    def validate_currency(self, value):
        value = value.upper()
        if value not in settings.CARPOOLING_SETTINGS['SUPPORTED_CURRENCIES']:
            raise serializers.ValidationError(f"Unsupported currency {value}")
        return value

    def validate(self, attrs):
        arrival = attrs.get('estimated_arrival_time')
        if arrival and arrival <= attrs['departure_time']:
            raise serializers.ValidationError({'estimated_arrival_time': "Arrival must be after departure"})
        if 'vehicle' not in attrs:
            attrs['vehicle'] = self._default_vehicle()
        return attrs

    def _default_vehicle(self):
        """Fall back to the driver's default vehicle when none is given"""
        user = self.context['request'].user
        profile = getattr(user, 'driver_profile', None)
        vehicle = profile.default_vehicle() if profile else None
        if vehicle is None:
            raise serializers.ValidationError({'vehicle': "Vehicle details are required"})
        return {
            'make': vehicle.make,
            'model': vehicle.model,
            'color': vehicle.color,
            'plate_number': vehicle.plate_number,
        }

    def to_ride_data(self):
        """Flatten validated input into Ride fields"""
        data = self.validated_data
        ride_data = {}
        for prefix in ('origin', 'destination'):
            location = data[prefix]
            ride_data[f'{prefix}_address'] = location['address']
            ride_data[f'{prefix}_longitude'] = round(location['coordinates'][0], 6)
            ride_data[f'{prefix}_latitude'] = round(location['coordinates'][1], 6)
            ride_data[f'{prefix}_city'] = location['city'].strip()
        for key, value in data['vehicle'].items():
            ride_data[f'vehicle_{key}'] = value
        ride_data.update(data.get('preferences', {}))
        ride_data.update({
            'departure_time': data['departure_time'],
            'estimated_arrival_time': data.get('estimated_arrival_time'),
            'available_seats': data['available_seats'],
            'price_per_seat': data['price_per_seat'],
            'currency': data.get('currency'),
            'route_distance_km': data['route']['distance_km'],
            'route_duration_min': data['route']['duration_min'],
            'notes': data.get('notes', ''),
        })
        return ride_data


class RideUpdateSerializer(serializers.Serializer):
    price_per_seat = serializers.DecimalField(max_digits=8, decimal_places=2, min_value=0, required=False)
    notes = serializers.CharField(max_length=500, required=False, allow_blank=True)
    estimated_arrival_time = serializers.DateTimeField(required=False, allow_null=True)
    smoking_allowed = serializers.BooleanField(required=False)
    pets_allowed = serializers.BooleanField(required=False)
    music_preference = serializers.ChoiceField(choices=Ride.MUSIC_CHOICES, required=False)
    conversation_level = serializers.ChoiceField(choices=Ride.CONVERSATION_CHOICES, required=False)
    max_detour_km = serializers.IntegerField(min_value=0, required=False)
    # Accepted only so that a change can be rejected explicitly
    available_seats = serializers.IntegerField(required=False)


class RidePassengerSerializer(serializers.ModelSerializer):
    user = PublicUserSerializer(source='passenger', read_only=True)

    class Meta:
        model = Booking
        fields = ('user', 'seats_booked', 'status', 'booking_time')


class RideSerializer(serializers.ModelSerializer):
    driver = PublicUserSerializer(read_only=True)
    origin = serializers.SerializerMethodField()
    destination = serializers.SerializerMethodField()
    route = serializers.SerializerMethodField()
    vehicle = serializers.SerializerMethodField()
    preferences = serializers.SerializerMethodField()
    booked_seats = serializers.SerializerMethodField()
    remaining_seats = serializers.SerializerMethodField()
    is_full = serializers.SerializerMethodField()
    passengers = serializers.SerializerMethodField()
    user_role = serializers.SerializerMethodField()

    class Meta:
        model = Ride
        fields = ('id', 'driver', 'origin', 'destination', 'departure_time', 'estimated_arrival_time',
                  'available_seats', 'booked_seats', 'remaining_seats', 'is_full', 'price_per_seat',
                  'currency', 'route', 'vehicle', 'preferences', 'notes', 'status', 'passengers',
                  'user_role', 'created_at', 'updated_at')

    def _bookings(self, obj):
        # Uses the prefetch cache when the view provided one
        return list(obj.bookings.all())

    def _location(self, obj, prefix):
        return {
            'address': getattr(obj, f'{prefix}_address'),
            'coordinates': [float(getattr(obj, f'{prefix}_longitude')),
                            float(getattr(obj, f'{prefix}_latitude'))],
            'city': getattr(obj, f'{prefix}_city'),
        }

    def get_origin(self, obj):
        return self._location(obj, 'origin')

    def get_destination(self, obj):
        return self._location(obj, 'destination')

    def get_route(self, obj):
        return {'distance_km': obj.route_distance_km, 'duration_min': obj.route_duration_min}

    def get_vehicle(self, obj):
        return {
            'make': obj.vehicle_make,
            'model': obj.vehicle_model,
            'color': obj.vehicle_color,
            'plate_number': obj.vehicle_plate_number,
        }

    def get_preferences(self, obj):
        return {
            'smoking_allowed': obj.smoking_allowed,
            'pets_allowed': obj.pets_allowed,
            'music_preference': obj.music_preference,
            'conversation_level': obj.conversation_level,
            'max_detour_km': obj.max_detour_km,
        }

    def get_booked_seats(self, obj):
        return obj.booked_seats(self._bookings(obj))

    def get_remaining_seats(self, obj):
        return obj.remaining_seats(self._bookings(obj))

    def get_is_full(self, obj):
        return obj.is_full(self._bookings(obj))

    def get_passengers(self, obj):
        active = [b for b in self._bookings(obj) if b.is_active]
        return RidePassengerSerializer(active, many=True).data

    def get_user_role(self, obj):
        request = self.context.get('request')
        if not request or not request.user.is_authenticated:
            return None
        if obj.driver_id == request.user.id:
            return 'driver'
        if any(b.passenger_id == request.user.id for b in self._bookings(obj)):
            return 'passenger'
        return None


class BookRideSerializer(serializers.Serializer):
    seats = serializers.IntegerField(min_value=1, default=1)
    pickup = PointSerializer(required=False)
    dropoff = PointSerializer(required=False)


class BookingStatusSerializer(serializers.Serializer):
    status = serializers.CharField()


class BookingSerializer(serializers.ModelSerializer):
    passenger = PublicUserSerializer(read_only=True)
    ride_summary = serializers.SerializerMethodField()
    pickup = serializers.SerializerMethodField()
    dropoff = serializers.SerializerMethodField()

    class Meta:
        model = Booking
        fields = ('id', 'ride', 'ride_summary', 'passenger', 'seats_booked', 'status',
                  'total_amount', 'pickup', 'dropoff', 'booking_time', 'updated_at')
        read_only_fields = fields

    def _point(self, address, lng, lat):
        coordinates = [float(lng), float(lat)] if lng is not None and lat is not None else None
        return {'address': address, 'coordinates': coordinates}

    def get_pickup(self, obj):
        return self._point(obj.pickup_address, obj.pickup_longitude, obj.pickup_latitude)

    def get_dropoff(self, obj):
        return self._point(obj.dropoff_address, obj.dropoff_longitude, obj.dropoff_latitude)

    def get_ride_summary(self, obj):
        ride = obj.ride
        return {
            'origin_city': ride.origin_city,
            'destination_city': ride.destination_city,
            'departure_time': ride.departure_time,
            'status': ride.status,
            'driver_id': ride.driver_id,
            'currency': ride.currency,
        }
