# reviews/serializers.py
from django.contrib.auth import get_user_model
from rest_framework import serializers
from accounts.serializers import PublicUserSerializer
from rides.models import Ride
from .models import Review, TAG_CHOICES

User = get_user_model()


class ReviewSerializer(serializers.ModelSerializer):
    reviewer = serializers.SerializerMethodField()
    reviewee = PublicUserSerializer(read_only=True)
    helpful_count = serializers.IntegerField(read_only=True)
    average_rating = serializers.DecimalField(max_digits=2, decimal_places=1, read_only=True)
    ride_summary = serializers.SerializerMethodField()

    class Meta:
        model = Review
        fields = ('id', 'ride', 'ride_summary', 'reviewer', 'reviewee', 'review_type',
                  'overall_rating', 'punctuality', 'communication', 'cleanliness', 'driving',
                  'friendliness', 'average_rating', 'comment', 'tags', 'is_anonymous',
                  'helpful_count', 'created_at', 'updated_at')
        read_only_fields = fields

    def get_reviewer(self, obj):
        request = self.context.get('request')
        is_author = request is not None and request.user.is_authenticated and request.user.id == obj.reviewer_id
        if obj.is_anonymous and not is_author:
            return None
        return PublicUserSerializer(obj.reviewer).data

    def get_ride_summary(self, obj):
        ride = obj.ride
        return {
            'origin_city': ride.origin_city,
            'destination_city': ride.destination_city,
            'departure_time': ride.departure_time,
        }


class RatingsMixin(serializers.Serializer):
    overall_rating = serializers.IntegerField(min_value=1, max_value=5)
    punctuality = serializers.IntegerField(min_value=1, max_value=5, required=False, allow_null=True)
    communication = serializers.IntegerField(min_value=1, max_value=5, required=False, allow_null=True)
    cleanliness = serializers.IntegerField(min_value=1, max_value=5, required=False, allow_null=True)
    driving = serializers.IntegerField(min_value=1, max_value=5, required=False, allow_null=True)
    friendliness = serializers.IntegerField(min_value=1, max_value=5, required=False, allow_null=True)
    comment = serializers.CharField(max_length=500, required=False, allow_blank=True)
    tags = serializers.ListField(child=serializers.ChoiceField(choices=TAG_CHOICES), required=False)
    is_anonymous = serializers.BooleanField(required=False)

    def validate_tags(self, value):
        # Keep order, drop repeats
        return list(dict.fromkeys(value))


class ReviewCreateSerializer(RatingsMixin):
    ride = serializers.PrimaryKeyRelatedField(queryset=Ride.objects.all())
    reviewee = serializers.PrimaryKeyRelatedField(queryset=User.objects.all())


class ReviewUpdateSerializer(RatingsMixin):
    overall_rating = serializers.IntegerField(min_value=1, max_value=5, required=False)
