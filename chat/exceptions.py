# chat/exceptions.py
from carpooling.exceptions import DomainError, NotFoundError, ForbiddenError


class ChatNotFound(NotFoundError):
    code = 'chat_not_found'
    default_message = 'Chat not found'


class NotChatParticipant(ForbiddenError):
    code = 'not_chat_participant'
    default_message = 'You are not a participant of this chat'


class InvalidMessage(DomainError):
    code = 'invalid_message'
    default_message = 'Message content is invalid'
