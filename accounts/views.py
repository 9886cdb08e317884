# accounts/views.py
import logging
from rest_framework import generics, status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView
from django.contrib.auth import get_user_model
from .models import PassengerProfile
from .serializers import (
    UserRegistrationSerializer, UserProfileSerializer,
    PublicUserSerializer, PassengerProfileSerializer,
)

logger = logging.getLogger(__name__)

User = get_user_model()


class UserRegistrationView(generics.CreateAPIView):
    queryset = User.objects.all()
    serializer_class = UserRegistrationSerializer
    permission_classes = [AllowAny]

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = serializer.save()
        logger.info(f"Registered user {user.id} ({user.username})")
        return Response(
            {'success': True, 'data': UserProfileSerializer(user).data},
            status=status.HTTP_201_CREATED,
        )


class UserProfileView(generics.RetrieveUpdateAPIView):
    """The authenticated user's own account and profile"""
    serializer_class = UserProfileSerializer
    permission_classes = [IsAuthenticated]

    def get_object(self):
        return User.objects.select_related('profile').get(pk=self.request.user.pk)


class PublicUserView(generics.RetrieveAPIView):
    queryset = User.objects.filter(is_active=True).select_related('profile')
    serializer_class = PublicUserSerializer
    permission_classes = [AllowAny]


class PassengerPreferencesView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        profile = PassengerProfile.default_for(request.user)
        return Response({'success': True, 'data': PassengerProfileSerializer(profile).data})

    def put(self, request):
        profile = PassengerProfile.default_for(request.user)
        serializer = PassengerProfileSerializer(profile, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response({'success': True, 'data': serializer.data})
