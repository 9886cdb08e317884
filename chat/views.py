# chat/views.py
import logging
from django.shortcuts import get_object_or_404
from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rides.models import Ride
from .models import Chat
from .serializers import ChatSerializer, MessageSerializer, SendMessageSerializer
from .services import ChatService

logger = logging.getLogger(__name__)


class ChatViewSet(viewsets.GenericViewSet):
    serializer_class = ChatSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        return (Chat.objects
                .filter(participants__user=self.request.user, participants__is_active=True)
                .select_related('ride')
                .distinct())

    def list(self, request):
        """My chats, most recently active first"""
        queryset = self.get_queryset().order_by('-updated_at')
        page = self.paginate_queryset(queryset)
        serializer = self.get_serializer(page, many=True)
        return self.get_paginated_response(serializer.data)

    @action(detail=False, methods=['get'], url_path=r'ride/(?P<ride_id>\d+)')
    def for_ride(self, request, ride_id=None):
        """The chat of a ride, for its driver and passengers"""
        ride = get_object_or_404(Ride, pk=ride_id)
        chat = ChatService().get_for_ride(ride, request.user)
        return Response({'success': True, 'data': self.get_serializer(chat).data})

    @action(detail=True, methods=['get', 'post'])
    def messages(self, request, pk=None):
        service = ChatService()
        chat = service.get_chat(pk, request.user)

        if request.method == 'POST':
            serializer = SendMessageSerializer(data=request.data, context={'chat': chat})
            serializer.is_valid(raise_exception=True)
            message = service.add_message(chat, request.user, **serializer.validated_data)
            return Response({'success': True, 'data': MessageSerializer(message).data},
                            status=status.HTTP_201_CREATED)

        # Newest first
        queryset = chat.messages.select_related('sender__profile')
        page = self.paginate_queryset(queryset)
        return self.get_paginated_response(MessageSerializer(page, many=True).data)

    @action(detail=True, methods=['post'])
    def read(self, request, pk=None):
        """Mark the chat as read for the current user"""
        service = ChatService()
        chat = service.get_chat(pk, request.user)
        service.mark_as_read(chat, request.user)
        return Response({'success': True, 'message': 'Messages marked as read'})
