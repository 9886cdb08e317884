# accounts/models.py
from django.db import models
from django.db.models import F
from django.contrib.auth import get_user_model
from django.core.validators import RegexValidator
from django.utils import timezone

User = get_user_model()

phone_validator = RegexValidator(r'^\+?[1-9]\d{1,14}$', 'Please enter a valid phone number')


class Profile(models.Model):
    GENDER_CHOICES = [
        ('male', 'Male'),
        ('female', 'Female'),
        ('other', 'Other'),
        ('prefer_not_to_say', 'Prefer not to say'),
    ]

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='profile')
    phone = models.CharField(max_length=16, blank=True, validators=[phone_validator])
    city = models.CharField(max_length=100, blank=True)
    date_of_birth = models.DateField(null=True, blank=True)
    gender = models.CharField(max_length=20, choices=GENDER_CHOICES, default='prefer_not_to_say')
    profile_picture = models.URLField(blank=True)

    rating_average = models.DecimalField(max_digits=2, decimal_places=1, default=0)
    rating_count = models.PositiveIntegerField(default=0)

    rides_as_driver = models.PositiveIntegerField(default=0)
    rides_as_passenger = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f'Profile of {self.user.username}'

    @property
    def age(self):
        if not self.date_of_birth:
            return None
        today = timezone.now().date()
        born = self.date_of_birth
        return today.year - born.year - ((today.month, today.day) < (born.month, born.day))

    @classmethod
    def increment_rides(cls, user_id, role):
        """Atomically bump the lifetime ride counter for ``role`` ('driver' or 'passenger')."""
        field = 'rides_as_driver' if role == 'driver' else 'rides_as_passenger'
        cls.objects.filter(user_id=user_id).update(**{field: F(field) + 1})


class PassengerProfile(models.Model):
    """Preferences used when the user books rides.

    Optional: a user has none until ``default_for`` creates one with the
    documented defaults.
    """

    SMOKING_CHOICES = [
        ('no_smoking', 'No smoking'),
        ('smoking_ok', 'Smoking OK'),
        ('no_preference', 'No preference'),
    ]
    PET_CHOICES = [
        ('no_pets', 'No pets'),
        ('pets_ok', 'Pets OK'),
        ('no_preference', 'No preference'),
    ]
    MUSIC_CHOICES = [
        ('no_music', 'No music'),
        ('soft_music', 'Soft music'),
        ('any_music', 'Any music'),
        ('no_preference', 'No preference'),
    ]
    CONVERSATION_CHOICES = [
        ('silent_ride', 'Silent ride'),
        ('some_chat', 'Some chat'),
        ('talkative', 'Talkative'),
        ('no_preference', 'No preference'),
    ]
    GENDER_PREFERENCE_CHOICES = [
        ('male_driver', 'Male driver'),
        ('female_driver', 'Female driver'),
        ('no_preference', 'No preference'),
    ]
    LUGGAGE_CHOICES = [
        ('small', 'Small'),
        ('medium', 'Medium'),
        ('large', 'Large'),
    ]

    PREFERENCE_FIELDS = (
        'smoking_tolerance', 'pet_tolerance', 'music_tolerance',
        'conversation_preference', 'gender_preference',
    )

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='passenger_profile')

    smoking_tolerance = models.CharField(max_length=20, choices=SMOKING_CHOICES, default='no_preference')
    pet_tolerance = models.CharField(max_length=20, choices=PET_CHOICES, default='no_preference')
    music_tolerance = models.CharField(max_length=20, choices=MUSIC_CHOICES, default='no_preference')
    conversation_preference = models.CharField(max_length=20, choices=CONVERSATION_CHOICES, default='no_preference')
    gender_preference = models.CharField(max_length=20, choices=GENDER_PREFERENCE_CHOICES, default='no_preference')

    emergency_contact_name = models.CharField(max_length=100, blank=True)
    emergency_contact_phone = models.CharField(max_length=16, blank=True, validators=[phone_validator])
    emergency_contact_relationship = models.CharField(max_length=50, blank=True)

    has_luggage = models.BooleanField(default=False)
    luggage_size = models.CharField(max_length=10, choices=LUGGAGE_CHOICES, default='small')
    wheelchair_accessible = models.BooleanField(default=False)
    child_seat = models.BooleanField(default=False)
    special_notes = models.CharField(max_length=200, blank=True)

    ride_reminders = models.BooleanField(default=True)
    driver_updates = models.BooleanField(default=True)
    price_alerts = models.BooleanField(default=False)
    new_ride_alerts = models.BooleanField(default=False)

    def __str__(self):
        return f'Passenger profile of {self.user.username}'

    @classmethod
    def default_for(cls, user):
        profile, _ = cls.objects.get_or_create(user=user)
        return profile

    def update_preferences(self, preferences):
        """Apply known preference keys, ignore the rest."""
        for key, value in preferences.items():
            if key in self.PREFERENCE_FIELDS:
                setattr(self, key, value)
        self.save()

    def add_frequent_route(self, origin_city, destination_city):
        route = self.frequent_routes.filter(
            origin_city__iexact=origin_city.strip(),
            destination_city__iexact=destination_city.strip(),
        ).first()
        if route:
            FrequentRoute.objects.filter(pk=route.pk).update(count=F('count') + 1)
        else:
            FrequentRoute.objects.create(
                profile=self,
                origin_city=origin_city.strip(),
                destination_city=destination_city.strip(),
            )

    def most_frequent_route(self):
        return self.frequent_routes.order_by('-count', 'id').first()


class FrequentRoute(models.Model):
    profile = models.ForeignKey(PassengerProfile, on_delete=models.CASCADE, related_name='frequent_routes')
    origin_city = models.CharField(max_length=100)
    destination_city = models.CharField(max_length=100)
    count = models.PositiveIntegerField(default=1)
