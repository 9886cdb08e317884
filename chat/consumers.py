# chat/consumers.py
import json
import logging
from channels.generic.websocket import AsyncWebsocketConsumer
from channels.db import database_sync_to_async
from carpooling.exceptions import DomainError
from rides.consumers import TokenAuthMixin
from .models import Chat
from .services import ChatService, chat_group

logger = logging.getLogger(__name__)


class ChatConsumer(TokenAuthMixin, AsyncWebsocketConsumer):
    """Relay chat messages and typing indicators between ride participants."""

    async def connect(self):
        self.chat_id = int(self.scope['url_route']['kwargs']['chat_id'])
        self.chat_group_name = chat_group(self.chat_id)

        if await self.authenticate() and await self.is_participant():
            await self.channel_layer.group_add(self.chat_group_name, self.channel_name)
            await self.accept()
            await self.mark_read()
        else:
            await self.close()

    async def disconnect(self, close_code):
        if hasattr(self, 'chat_group_name'):
            await self.channel_layer.group_discard(self.chat_group_name, self.channel_name)

    async def receive(self, text_data):
        try:
            data = json.loads(text_data)
        except json.JSONDecodeError:
            await self.send_error('Invalid JSON')
            return

        message_type = data.get('type')
        if message_type == 'send_message':
            try:
                await self.save_message(data.get('content'), data.get('message_type', 'text'),
                                        data.get('metadata') or {})
            except DomainError as e:
                await self.send_error(e.message)
        elif message_type == 'typing':
            user = self.scope['user']
            await self.channel_layer.group_send(self.chat_group_name, {
                'type': 'user_typing',
                'user_id': user.id,
                'username': user.username,
                'is_typing': bool(data.get('is_typing', True)),
            })
        elif message_type == 'mark_read':
            await self.mark_read()
        elif message_type == 'ping':
            await self.send(text_data=json.dumps({'type': 'pong'}))

    # Events from the chat group

    async def new_message(self, event):
        await self.send(text_data=json.dumps(event))

    async def user_typing(self, event):
        # Don't echo typing back to the typist
        if event['user_id'] != self.scope['user'].id:
            await self.send(text_data=json.dumps(event))

    async def send_error(self, message):
        await self.send(text_data=json.dumps({'type': 'error', 'message': message}))

    @database_sync_to_async
    def is_participant(self):
        user = self.scope['user']
        if user.is_anonymous:
            return False
        return Chat.objects.filter(
            pk=self.chat_id, participants__user=user, participants__is_active=True
        ).exists()

    @database_sync_to_async
    def save_message(self, content, message_type, metadata):
        if message_type not in ('text', 'image', 'location'):
            message_type = 'text'
        chat = Chat.objects.get(pk=self.chat_id)
        # Broadcast happens in the service once the message is stored
        return ChatService().add_message(chat, self.scope['user'], content,
                                         message_type=message_type, metadata=metadata)

    @database_sync_to_async
    def mark_read(self):
        chat = Chat.objects.get(pk=self.chat_id)
        ChatService().mark_as_read(chat, self.scope['user'])
