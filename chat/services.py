# chat/services.py
import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from .exceptions import ChatNotFound, NotChatParticipant, InvalidMessage
from .models import Chat, ChatParticipant, Message

logger = logging.getLogger(__name__)


def chat_group(chat_id):
    return f'chat_{chat_id}'


class ChatService:
    def __init__(self):
        config = settings.CARPOOLING_SETTINGS
        self.preview_length = config['MESSAGE_PREVIEW_LENGTH']
        self.max_length = config['MAX_MESSAGE_LENGTH']
        try:
            self.channel_layer = get_channel_layer()
        except Exception:
            logger.exception("Channel layer could not be initialised")
            self.channel_layer = None

    def create_for_ride(self, ride):
        """Open the ride's chat with the driver as first participant."""
        chat, created = Chat.objects.get_or_create(ride=ride)
        if created:
            ChatParticipant.objects.create(chat=chat, user_id=ride.driver_id)
            logger.info(f"Chat {chat.id} created for ride {ride.id}")
        return chat

    def get_for_ride(self, ride, user):
        """Return the ride's chat if ``user`` drives or has booked the ride."""
        if not ride.is_participant(user):
            raise NotChatParticipant('Only the driver and passengers can access this chat')
        chat = Chat.objects.filter(ride=ride).first()
        if chat is None:
            # Rides created before chats existed get one lazily
            chat = self.create_for_ride(ride)
        return chat

    def get_chat(self, chat_id, user):
        try:
            chat = Chat.objects.select_related('ride').get(pk=chat_id)
        except Chat.DoesNotExist:
            raise ChatNotFound()
        if not chat.is_participant(user):
            raise NotChatParticipant()
        return chat

    def add_participant(self, ride_id, user_id):
        """Join (or rejoin) the chat of a ride."""
        chat = Chat.objects.filter(ride_id=ride_id).first()
        if chat is None:
            logger.warning(f"No chat for ride {ride_id}, cannot add user {user_id}")
            return None
        participant, created = ChatParticipant.objects.get_or_create(chat=chat, user_id=user_id)
        if not created and not participant.is_active:
            participant.is_active = True
            participant.joined_at = timezone.now()
            participant.save(update_fields=['is_active', 'joined_at'])
        logger.info(f"User {user_id} joined chat {chat.id}")
        return participant

    def remove_participant(self, ride_id, user_id):
        updated = ChatParticipant.objects.filter(
            chat__ride_id=ride_id, user_id=user_id, is_active=True
        ).update(is_active=False)
        if updated:
            logger.info(f"User {user_id} left the chat of ride {ride_id}")
        return bool(updated)

    def add_message(self, chat, sender, content, message_type='text', metadata=None, reply_to=None):
        """Store a message, bump unread counters and relay it to connected clients."""
        content = (content or '').strip()
        if not content:
            raise InvalidMessage('Message content is required')
        if len(content) > self.max_length:
            raise InvalidMessage(f'Message cannot exceed {self.max_length} characters')
        if sender is not None and not chat.is_participant(sender):
            raise NotChatParticipant()

        now = timezone.now()
        with transaction.atomic():
            message = Message.objects.create(
                chat=chat,
                sender=sender,
                content=content,
                message_type=message_type,
                metadata=metadata or {},
                reply_to=reply_to,
            )
            recipients = chat.participants.filter(is_active=True)
            if sender is not None:
                recipients = recipients.exclude(user=sender)
            recipient_ids = list(recipients.values_list('user_id', flat=True))
            recipients.update(unread_count=F('unread_count') + 1)

            Chat.objects.filter(pk=chat.pk).update(
                last_message_content=content,
                last_message_sender=sender,
                last_message_type=message_type,
                last_message_at=now,
                updated_at=now,
            )

        logger.info(f"Message {message.id} ({message_type}) added to chat {chat.id}")
        transaction.on_commit(lambda: self._broadcast(chat, message, recipient_ids))
        return message

    def add_system_message(self, ride_id, content, system_type='ride_cancelled'):
        chat = Chat.objects.filter(ride_id=ride_id).first()
        if chat is None:
            logger.warning(f"No chat for ride {ride_id}, system message dropped")
            return None
        return self.add_message(chat, None, content, message_type='system',
                                metadata={'system_message_type': system_type})

    def mark_as_read(self, chat, user):
        updated = ChatParticipant.objects.filter(chat=chat, user=user).update(
            unread_count=0, last_read_at=timezone.now()
        )
        if not updated:
            raise NotChatParticipant()

    def unread_count(self, chat, user):
        participant = ChatParticipant.objects.filter(chat=chat, user=user).first()
        return participant.unread_count if participant else 0

    def _broadcast(self, chat, message, recipient_ids):
        from .serializers import MessageSerializer

        if self.channel_layer is None:
            return
        payload = dict(MessageSerializer(message).data)
        preview = message.content[:self.preview_length]
        try:
            async_to_sync(self.channel_layer.group_send)(chat_group(chat.id), {
                'type': 'new_message',
                'chat_id': chat.id,
                'message': payload,
            })
            for user_id in recipient_ids:
                async_to_sync(self.channel_layer.group_send)(f'user_{user_id}', {
                    'type': 'message_notification',
                    'chat_id': chat.id,
                    'ride_id': chat.ride_id,
                    'sender_id': message.sender_id,
                    'preview': preview,
                })
        except Exception:
            logger.exception(f"Failed to relay message {message.id} for chat {chat.id}")
