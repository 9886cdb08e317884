# chat/serializers.py
from rest_framework import serializers
from accounts.serializers import PublicUserSerializer
from .models import Chat, ChatParticipant, Message


class MessageSerializer(serializers.ModelSerializer):
    sender = PublicUserSerializer(read_only=True)

    class Meta:
        model = Message
        fields = ('id', 'chat', 'sender', 'content', 'message_type', 'metadata', 'reply_to', 'created_at')
        read_only_fields = fields


class SendMessageSerializer(serializers.Serializer):
    content = serializers.CharField(max_length=1000, trim_whitespace=True)
    message_type = serializers.ChoiceField(
        choices=[c for c in Message.TYPE_CHOICES if c[0] != 'system'], default='text'
    )
    metadata = serializers.DictField(required=False, default=dict)
    reply_to = serializers.PrimaryKeyRelatedField(queryset=Message.objects.all(), required=False,
                                                  allow_null=True)

    def validate(self, attrs):
        reply_to = attrs.get('reply_to')
        chat = self.context.get('chat')
        if reply_to is not None and chat is not None and reply_to.chat_id != chat.id:
            raise serializers.ValidationError({'reply_to': 'Message belongs to another chat'})
        return attrs


class ChatParticipantSerializer(serializers.ModelSerializer):
    user = PublicUserSerializer(read_only=True)

    class Meta:
        model = ChatParticipant
        fields = ('user', 'joined_at', 'last_read_at', 'is_active')


class ChatSerializer(serializers.ModelSerializer):
    participants = serializers.SerializerMethodField()
    unread_count = serializers.SerializerMethodField()
    ride_summary = serializers.SerializerMethodField()

    class Meta:
        model = Chat
        fields = ('id', 'ride', 'ride_summary', 'is_active', 'participants', 'unread_count',
                  'last_message_content', 'last_message_sender', 'last_message_type',
                  'last_message_at', 'created_at', 'updated_at')

    def get_participants(self, obj):
        active = obj.participants.filter(is_active=True).select_related('user__profile')
        return ChatParticipantSerializer(active, many=True).data

    def get_unread_count(self, obj):
        request = self.context.get('request')
        if not request:
            return 0
        participant = obj.participants.filter(user=request.user).first()
        return participant.unread_count if participant else 0

    def get_ride_summary(self, obj):
        ride = obj.ride
        return {
            'origin_city': ride.origin_city,
            'destination_city': ride.destination_city,
            'departure_time': ride.departure_time,
            'status': ride.status,
        }
