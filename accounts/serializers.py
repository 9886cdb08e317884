# accounts/serializers.py
from rest_framework import serializers
from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password
from .models import Profile, PassengerProfile, FrequentRoute, phone_validator

User = get_user_model()


class UserRegistrationSerializer(serializers.ModelSerializer):
    password = serializers.CharField(write_only=True, validators=[validate_password])
    password_confirm = serializers.CharField(write_only=True)
    phone = serializers.CharField(write_only=True, validators=[phone_validator])
    city = serializers.CharField(write_only=True, max_length=100)

    class Meta:
        model = User
        fields = ('id', 'username', 'email', 'password', 'password_confirm',
                  'first_name', 'last_name', 'phone', 'city')
        extra_kwargs = {
            'email': {'required': True},
            'first_name': {'required': True},
            'last_name': {'required': True},
        }

    def validate_email(self, value):
        if User.objects.filter(email__iexact=value).exists():
            raise serializers.ValidationError("A user with this email already exists.")
        return value.lower()

    def validate_phone(self, value):
        if Profile.objects.filter(phone=value).exists():
            raise serializers.ValidationError("A user with this phone number already exists.")
        return value

    def validate(self, attrs):
        if attrs['password'] != attrs['password_confirm']:
            raise serializers.ValidationError({"password": "Password fields didn't match."})
        return attrs

    def create(self, validated_data):
        validated_data.pop('password_confirm')
        phone = validated_data.pop('phone')
        city = validated_data.pop('city')
        user = User.objects.create_user(**validated_data)
        profile = user.profile
        profile.phone = phone
        profile.city = city
        profile.save(update_fields=['phone', 'city', 'updated_at'])
        return user


class ProfileSerializer(serializers.ModelSerializer):
    age = serializers.IntegerField(read_only=True)

    class Meta:
        model = Profile
        fields = ('phone', 'city', 'date_of_birth', 'gender', 'profile_picture', 'age',
                  'rating_average', 'rating_count', 'rides_as_driver', 'rides_as_passenger')
        read_only_fields = ('rating_average', 'rating_count', 'rides_as_driver', 'rides_as_passenger')


class UserProfileSerializer(serializers.ModelSerializer):
    profile = ProfileSerializer()

    class Meta:
        model = User
        fields = ('id', 'username', 'email', 'first_name', 'last_name', 'date_joined', 'profile')
        read_only_fields = ('id', 'username', 'date_joined')

    def update(self, instance, validated_data):
        profile_data = validated_data.pop('profile', {})
        instance = super().update(instance, validated_data)
        if profile_data:
            profile = instance.profile
            for key, value in profile_data.items():
                setattr(profile, key, value)
            profile.save()
        return instance


class PublicUserSerializer(serializers.ModelSerializer):
    """What other users may see: no contact details."""
    name = serializers.CharField(source='get_full_name', read_only=True)
    city = serializers.CharField(source='profile.city', read_only=True)
    profile_picture = serializers.CharField(source='profile.profile_picture', read_only=True)
    rating_average = serializers.DecimalField(source='profile.rating_average', max_digits=2,
                                              decimal_places=1, read_only=True)
    rating_count = serializers.IntegerField(source='profile.rating_count', read_only=True)

    class Meta:
        model = User
        fields = ('id', 'username', 'name', 'city', 'profile_picture', 'rating_average', 'rating_count')


class FrequentRouteSerializer(serializers.ModelSerializer):
    class Meta:
        model = FrequentRoute
        fields = ('origin_city', 'destination_city', 'count')


class PassengerProfileSerializer(serializers.ModelSerializer):
    frequent_routes = FrequentRouteSerializer(many=True, read_only=True)

    class Meta:
        model = PassengerProfile
        exclude = ('id', 'user')
