# chat/admin.py
from django.contrib import admin
from .models import Chat, ChatParticipant, Message


class ChatParticipantInline(admin.TabularInline):
    model = ChatParticipant
    extra = 0
    readonly_fields = ('joined_at', 'last_read_at', 'unread_count')


@admin.register(Chat)
class ChatAdmin(admin.ModelAdmin):
    list_display = ('id', 'ride', 'is_active', 'last_message_at', 'created_at')
    list_filter = ('is_active',)
    inlines = [ChatParticipantInline]


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    list_display = ('id', 'chat', 'sender', 'message_type', 'created_at')
    list_filter = ('message_type',)
    search_fields = ('content',)
