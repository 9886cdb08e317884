# drivers/models.py
from django.db import models
from django.contrib.auth import get_user_model
from django.core.validators import MinValueValidator, MaxValueValidator

User = get_user_model()


class DriverProfile(models.Model):
    """Driving licence and ride preferences; exists only once set up."""

    MUSIC_CHOICES = [
        ('no_music', 'No music'),
        ('soft', 'Soft'),
        ('loud', 'Loud'),
        ('any', 'Any'),
    ]
    CONVERSATION_CHOICES = [
        ('silent', 'Silent'),
        ('some_chat', 'Some chat'),
        ('talkative', 'Talkative'),
    ]

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='driver_profile')

    license_number = models.CharField(max_length=50)
    license_expiry_date = models.DateField()
    license_state = models.CharField(max_length=50)
    license_verified = models.BooleanField(default=False)

    smoking_allowed = models.BooleanField(default=False)
    pets_allowed = models.BooleanField(default=True)
    music_preference = models.CharField(max_length=20, choices=MUSIC_CHOICES, default='soft')
    conversation_level = models.CharField(max_length=20, choices=CONVERSATION_CHOICES, default='some_chat')

    setup_date = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f'Driver profile of {self.user.username}'

    @classmethod
    def setup(cls, user, license_data, vehicle_data, preferences=None):
        profile = cls.objects.create(
            user=user,
            license_number=license_data['number'],
            license_expiry_date=license_data['expiry_date'],
            license_state=license_data['state'],
            **(preferences or {}),
        )
        profile.add_vehicle(vehicle_data)
        return profile

    def add_vehicle(self, vehicle_data):
        # First vehicle is always the default
        is_default = vehicle_data.pop('is_default', False) or not self.vehicles.exists()
        if is_default:
            self.vehicles.update(is_default=False)
        return Vehicle.objects.create(driver=self, is_default=is_default, **vehicle_data)

    def default_vehicle(self):
        return self.vehicles.filter(is_default=True).first() or self.vehicles.order_by('id').first()


class Vehicle(models.Model):
    driver = models.ForeignKey(DriverProfile, on_delete=models.CASCADE, related_name='vehicles')
    make = models.CharField(max_length=50)
    model = models.CharField(max_length=50)
    year = models.PositiveIntegerField(null=True, blank=True)
    color = models.CharField(max_length=30)
    plate_number = models.CharField(max_length=20)
    seats = models.PositiveIntegerField(validators=[MinValueValidator(2), MaxValueValidator(8)])
    is_default = models.BooleanField(default=False)

    def save(self, *args, **kwargs):
        self.plate_number = self.plate_number.upper()
        super().save(*args, **kwargs)

    def __str__(self):
        return f'{self.make} {self.model} ({self.plate_number})'
