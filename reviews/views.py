# reviews/views.py
import logging
from django.contrib.auth import get_user_model
from django.shortcuts import get_object_or_404
from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated, AllowAny
from rest_framework.response import Response
from .exceptions import ReviewNotFound
from .models import Review
from .serializers import ReviewSerializer, ReviewCreateSerializer, ReviewUpdateSerializer
from .services import ReviewService

logger = logging.getLogger(__name__)

User = get_user_model()


class ReviewViewSet(viewsets.GenericViewSet):
    serializer_class = ReviewSerializer
    permission_classes = [IsAuthenticated]

    def get_permissions(self):
        if self.action == 'for_user':
            return [AllowAny()]
        return super().get_permissions()

    def get_queryset(self):
        return Review.objects.select_related('ride', 'reviewer__profile', 'reviewee__profile')

    def get_object(self):
        try:
            return self.get_queryset().get(pk=self.kwargs['pk'])
        except (Review.DoesNotExist, ValueError):
            raise ReviewNotFound()

    def create(self, request):
        serializer = ReviewCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        ride = data.pop('ride')
        reviewee = data.pop('reviewee')
        review = ReviewService().create_review(request.user, ride, reviewee, data)
        return Response({'success': True, 'data': self.get_serializer(review).data},
                        status=status.HTTP_201_CREATED)

    def update(self, request, pk=None):
        review = self.get_object()
        serializer = ReviewUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        review = ReviewService().update_review(review, request.user, serializer.validated_data)
        return Response({'success': True, 'data': self.get_serializer(review).data})

    def partial_update(self, request, pk=None):
        return self.update(request, pk)

    def destroy(self, request, pk=None):
        ReviewService().delete_review(self.get_object(), request.user)
        return Response({'success': True, 'message': 'Review deleted successfully'})

    @action(detail=False, methods=['get'], url_path=r'user/(?P<user_id>\d+)')
    def for_user(self, request, user_id=None):
        """Visible reviews about a user, with rating statistics"""
        user = get_object_or_404(User, pk=user_id)
        queryset = self.get_queryset().filter(reviewee=user, is_hidden=False)
        review_type = request.query_params.get('review_type')
        if review_type:
            queryset = queryset.filter(review_type=review_type)

        page = self.paginate_queryset(queryset)
        response = self.get_paginated_response(self.get_serializer(page, many=True).data)
        stats = ReviewService().user_stats(user.id)
        response.data['stats'] = stats['by_type']
        response.data['rating_distribution'] = stats['distribution']
        return response

    @action(detail=False, methods=['get'], url_path=r'ride/(?P<ride_id>\d+)')
    def for_ride(self, request, ride_id=None):
        queryset = self.get_queryset().filter(ride_id=ride_id, is_hidden=False)
        return Response({'success': True, 'data': self.get_serializer(queryset, many=True).data})

    @action(detail=True, methods=['post', 'delete'])
    def helpful(self, request, pk=None):
        """Add (POST) or withdraw (DELETE) a helpful vote"""
        review = self.get_object()
        adding = request.method == 'POST'
        count = ReviewService().set_helpful(review, request.user, helpful=adding)
        return Response({
            'success': True,
            'message': 'Helpful vote added' if adding else 'Helpful vote removed',
            'data': {'helpful_count': count},
        })
