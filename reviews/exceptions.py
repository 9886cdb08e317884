# reviews/exceptions.py
from carpooling.exceptions import DomainError, NotFoundError, ForbiddenError


class ReviewNotFound(NotFoundError):
    code = 'review_not_found'
    default_message = 'Review not found'


class ReviewNotAllowed(DomainError):
    code = 'review_not_allowed'
    default_message = 'This review is not allowed'


class NotRideParticipant(ForbiddenError):
    code = 'not_ride_participant'
    default_message = 'You can only review rides you participated in'


class AlreadyReviewed(DomainError):
    code = 'already_reviewed'
    default_message = 'You have already reviewed this user for this ride'


class NotReviewAuthor(ForbiddenError):
    code = 'not_review_author'
    default_message = 'Not authorized to change this review'


class ReviewEditWindowClosed(DomainError):
    code = 'review_edit_window_closed'
    default_message = 'Review can no longer be edited'
