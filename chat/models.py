# chat/models.py
from django.db import models
from django.contrib.auth import get_user_model

User = get_user_model()


class Chat(models.Model):
    """One conversation per ride between its driver and passengers."""

    ride = models.OneToOneField('rides.Ride', on_delete=models.CASCADE, related_name='chat')
    is_active = models.BooleanField(default=True)

    last_message_content = models.TextField(blank=True)
    last_message_sender = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True,
                                            related_name='+')
    last_message_type = models.CharField(max_length=20, blank=True)
    last_message_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-updated_at']

    def __str__(self):
        return f'Chat for ride {self.ride_id}'

    def active_participants(self):
        return self.participants.filter(is_active=True)

    def is_participant(self, user):
        return self.participants.filter(user=user, is_active=True).exists()


class ChatParticipant(models.Model):
    chat = models.ForeignKey(Chat, on_delete=models.CASCADE, related_name='participants')
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='chat_memberships')
    joined_at = models.DateTimeField(auto_now_add=True)
    last_read_at = models.DateTimeField(null=True, blank=True)
    unread_count = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)

    class Meta:
        unique_together = ['chat', 'user']

    def __str__(self):
        return f'{self.user} in chat {self.chat_id}'


class Message(models.Model):
    TYPE_CHOICES = [
        ('text', 'Text'),
        ('image', 'Image'),
        ('location', 'Location'),
        ('system', 'System'),
    ]

    chat = models.ForeignKey(Chat, on_delete=models.CASCADE, related_name='messages')
    # Null for system messages
    sender = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True,
                               related_name='chat_messages')
    content = models.TextField(max_length=1000)
    message_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default='text')
    metadata = models.JSONField(default=dict, blank=True)
    reply_to = models.ForeignKey('self', on_delete=models.SET_NULL, null=True, blank=True,
                                 related_name='replies')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['chat', 'created_at']),
        ]

    def __str__(self):
        return f'{self.message_type} message in chat {self.chat_id}'
