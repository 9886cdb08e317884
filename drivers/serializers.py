# drivers/serializers.py
from django.utils import timezone
from rest_framework import serializers
from .models import DriverProfile, Vehicle


class VehicleSerializer(serializers.ModelSerializer):
    class Meta:
        model = Vehicle
        fields = ('id', 'make', 'model', 'year', 'color', 'plate_number', 'seats', 'is_default')
        read_only_fields = ('id',)

    def validate_plate_number(self, value):
        """Validate license plate format"""
        if len(value.strip()) < 4:
            raise serializers.ValidationError("License plate seems too short")
        return value.strip().upper()

    def validate_seats(self, value):
        """Validate vehicle capacity"""
        if value < 2 or value > 8:
            raise serializers.ValidationError("Vehicle capacity must be between 2 and 8")
        return value

    def validate_year(self, value):
        if value is not None and (value < 1990 or value > timezone.now().year + 1):
            raise serializers.ValidationError("Vehicle year is out of range")
        return value


class DriverProfileSerializer(serializers.ModelSerializer):
    user_name = serializers.CharField(source='user.get_full_name', read_only=True)
    vehicles = VehicleSerializer(many=True, read_only=True)

    class Meta:
        model = DriverProfile
        fields = ('id', 'user_name', 'license_number', 'license_expiry_date', 'license_state',
                  'license_verified', 'smoking_allowed', 'pets_allowed', 'music_preference',
                  'conversation_level', 'setup_date', 'vehicles')
        read_only_fields = ('license_verified', 'setup_date')


class DrivingLicenseSerializer(serializers.Serializer):
    number = serializers.CharField(max_length=50)
    expiry_date = serializers.DateField()
    state = serializers.CharField(max_length=50)

    def validate_expiry_date(self, value):
        if value <= timezone.now().date():
            raise serializers.ValidationError("Driving license has expired")
        return value


class DriverPreferencesSerializer(serializers.Serializer):
    smoking_allowed = serializers.BooleanField(required=False, default=False)
    pets_allowed = serializers.BooleanField(required=False, default=True)
    music_preference = serializers.ChoiceField(choices=DriverProfile.MUSIC_CHOICES, required=False, default='soft')
    conversation_level = serializers.ChoiceField(choices=DriverProfile.CONVERSATION_CHOICES,
                                                 required=False, default='some_chat')


class DriverSetupSerializer(serializers.Serializer):
    driving_license = DrivingLicenseSerializer()
    vehicle = VehicleSerializer()
    preferences = DriverPreferencesSerializer(required=False)

    def validate(self, attrs):
        user = self.context['request'].user
        if DriverProfile.objects.filter(user=user).exists():
            raise serializers.ValidationError("Driver profile is already setup")
        return attrs

    def create(self, validated_data):
        return DriverProfile.setup(
            user=self.context['request'].user,
            license_data=validated_data['driving_license'],
            vehicle_data=dict(validated_data['vehicle']),
            preferences=dict(validated_data.get('preferences') or {}),
        )
