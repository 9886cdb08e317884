# reviews/models.py
from decimal import Decimal, ROUND_HALF_UP
from django.db import models
from django.contrib.auth import get_user_model
from django.core.validators import MinValueValidator, MaxValueValidator

User = get_user_model()

rating_validators = [MinValueValidator(1), MaxValueValidator(5)]

TAG_CHOICES = [
    'punctual', 'late', 'friendly', 'quiet', 'talkative', 'clean', 'messy',
    'safe_driver', 'reckless', 'polite', 'rude', 'helpful', 'cancelled_last_minute',
    'great_music', 'no_show', 'comfortable_car', 'uncomfortable_car', 'professional',
    'flexible', 'rigid', 'reliable', 'unreliable',
]


def round_rating(value):
    """One decimal place, halves rounded up"""
    return Decimal(str(value)).quantize(Decimal('0.1'), rounding=ROUND_HALF_UP)


class Review(models.Model):
    TYPE_CHOICES = [
        ('driver_to_passenger', 'Driver to passenger'),
        ('passenger_to_driver', 'Passenger to driver'),
    ]
    SUB_RATINGS = ('punctuality', 'communication', 'cleanliness', 'driving', 'friendliness')

    ride = models.ForeignKey('rides.Ride', on_delete=models.CASCADE, related_name='reviews')
    reviewer = models.ForeignKey(User, on_delete=models.CASCADE, related_name='reviews_given')
    reviewee = models.ForeignKey(User, on_delete=models.CASCADE, related_name='reviews_received')

    overall_rating = models.PositiveSmallIntegerField(validators=rating_validators)
    punctuality = models.PositiveSmallIntegerField(null=True, blank=True, validators=rating_validators)
    communication = models.PositiveSmallIntegerField(null=True, blank=True, validators=rating_validators)
    cleanliness = models.PositiveSmallIntegerField(null=True, blank=True, validators=rating_validators)
    driving = models.PositiveSmallIntegerField(null=True, blank=True, validators=rating_validators)
    friendliness = models.PositiveSmallIntegerField(null=True, blank=True, validators=rating_validators)

    comment = models.CharField(max_length=500, blank=True)
    tags = models.JSONField(default=list, blank=True)
    review_type = models.CharField(max_length=30, choices=TYPE_CHOICES)
    is_anonymous = models.BooleanField(default=False)
    is_hidden = models.BooleanField(default=False)
    moderator_notes = models.TextField(blank=True)

    helpful_voters = models.ManyToManyField(User, blank=True, related_name='helpful_reviews')

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at', '-id']
        constraints = [
            models.UniqueConstraint(fields=['ride', 'reviewer', 'reviewee'], name='one_review_per_pair'),
        ]
        indexes = [
            models.Index(fields=['reviewee', 'created_at']),
            models.Index(fields=['reviewer', 'created_at']),
        ]

    def __str__(self):
        return f'{self.reviewer} -> {self.reviewee}: {self.overall_rating}/5'

    def average_rating(self):
        """Overall rating averaged with whichever sub-ratings were given"""
        ratings = [self.overall_rating] + [
            getattr(self, key) for key in self.SUB_RATINGS if getattr(self, key)
        ]
        return round_rating(sum(ratings) / len(ratings))

    @property
    def helpful_count(self):
        return self.helpful_voters.count()
