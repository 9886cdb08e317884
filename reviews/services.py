# reviews/services.py
import logging
from datetime import timedelta

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Avg, Count
from django.utils import timezone

from accounts.models import Profile
from rides.models import CAPACITY_STATUSES
from .exceptions import (
    ReviewNotAllowed, NotRideParticipant, AlreadyReviewed, NotReviewAuthor,
    ReviewEditWindowClosed,
)
from .models import Review, round_rating

logger = logging.getLogger(__name__)


def update_user_rating(user_id):
    """Recompute a user's rating from their visible reviews"""
    stats = Review.objects.filter(reviewee_id=user_id, is_hidden=False).aggregate(
        average=Avg('overall_rating'), total=Count('id')
    )
    average = round_rating(stats['average']) if stats['total'] else round_rating(0)
    Profile.objects.filter(user_id=user_id).update(rating_average=average, rating_count=stats['total'])
    logger.info(f"User {user_id} rating is now {average} over {stats['total']} review(s)")
    return average, stats['total']


class ReviewService:
    EDITABLE_FIELDS = ('overall_rating', 'comment', 'tags', 'is_anonymous') + Review.SUB_RATINGS

    def __init__(self):
        self.edit_window = timedelta(hours=settings.CARPOOLING_SETTINGS['REVIEW_EDIT_WINDOW_HOURS'])

    @staticmethod
    def _passenger_ids(ride):
        return set(
            ride.bookings.filter(status__in=CAPACITY_STATUSES).values_list('passenger_id', flat=True)
        )

    def create_review(self, reviewer, ride, reviewee, data):
        if ride.status != 'completed':
            raise ReviewNotAllowed('Can only review completed rides')

        passengers = self._passenger_ids(ride)
        reviewer_is_driver = ride.driver_id == reviewer.id
        if not reviewer_is_driver and reviewer.id not in passengers:
            raise NotRideParticipant()
        if reviewee.id == reviewer.id:
            raise ReviewNotAllowed('You cannot review yourself')

        # Drivers review their passengers and passengers review the driver
        if reviewer_is_driver:
            if reviewee.id not in passengers:
                raise ReviewNotAllowed('This user was not a passenger on the ride')
            review_type = 'driver_to_passenger'
        else:
            if reviewee.id != ride.driver_id:
                raise ReviewNotAllowed('Passengers can only review the driver')
            review_type = 'passenger_to_driver'

        if Review.objects.filter(ride=ride, reviewer=reviewer, reviewee=reviewee).exists():
            raise AlreadyReviewed()

        try:
            with transaction.atomic():
                review = Review.objects.create(
                    ride=ride, reviewer=reviewer, reviewee=reviewee, review_type=review_type, **data
                )
        except IntegrityError:
            raise AlreadyReviewed()

        logger.info(f"Review {review.id} by user {reviewer.id} for user {reviewee.id} on ride {ride.id}")
        update_user_rating(reviewee.id)
        return review

    def update_review(self, review, user, data):
        if review.reviewer_id != user.id:
            raise NotReviewAuthor()
        if timezone.now() - review.created_at > self.edit_window:
            raise ReviewEditWindowClosed(
                f'Review can only be edited within {int(self.edit_window.total_seconds() // 3600)} hours of creation'
            )
        changed = [field for field in self.EDITABLE_FIELDS if field in data]
        for field in changed:
            setattr(review, field, data[field])
        review.save()
        if 'overall_rating' in changed:
            update_user_rating(review.reviewee_id)
        return review

    def delete_review(self, review, user):
        if review.reviewer_id != user.id and not user.is_staff:
            raise NotReviewAuthor()
        reviewee_id = review.reviewee_id
        review.delete()
        logger.info(f"Review by user {user.id} for user {reviewee_id} deleted")
        update_user_rating(reviewee_id)

    def set_helpful(self, review, user, helpful=True):
        if helpful:
            review.helpful_voters.add(user)
        else:
            review.helpful_voters.remove(user)
        return review.helpful_count

    def user_stats(self, user_id):
        """Per-type averages and the distribution of overall ratings"""
        visible = Review.objects.filter(reviewee_id=user_id, is_hidden=False)
        by_type = visible.values('review_type').annotate(average=Avg('overall_rating'), count=Count('id'))
        stats = [
            {'review_type': row['review_type'], 'average': round_rating(row['average']), 'count': row['count']}
            for row in by_type.order_by('review_type')
        ]
        distribution = {str(star): 0 for star in range(1, 6)}
        for row in visible.order_by().values('overall_rating').annotate(count=Count('id')):
            distribution[str(row['overall_rating'])] = row['count']
        return {'by_type': stats, 'distribution': distribution}
