import pytest

from chat.exceptions import InvalidMessage, NotChatParticipant
from chat.models import Chat, ChatParticipant, Message
from chat.services import ChatService

pytestmark = pytest.mark.django_db

CHAT_URL = '/api/chat/'


@pytest.fixture
def chat_service(channel_layer):
    service = ChatService()
    service.channel_layer = channel_layer
    return service


@pytest.fixture
def booked_ride(ride, passenger, ledger, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True):
        ledger.book(ride.id, passenger, 1)
    return ride


class TestParticipants:
    def test_chat_opens_with_the_driver(self, ride, driver):
        chat = Chat.objects.get(ride=ride)
        assert list(chat.active_participants().values_list('user_id', flat=True)) == [driver.id]

    def test_booking_joins_and_cancelling_leaves(self, booked_ride, passenger, ledger,
                                                  django_capture_on_commit_callbacks):
        chat = booked_ride.chat
        assert chat.is_participant(passenger)

        with django_capture_on_commit_callbacks(execute=True):
            ledger.cancel_booking(booked_ride.id, passenger)
        assert not chat.is_participant(passenger)
        # Membership is kept, only deactivated
        assert ChatParticipant.objects.filter(chat=chat, user=passenger).exists()

    def test_rejoining_reactivates(self, ride, passenger, chat_service):
        chat_service.add_participant(ride.id, passenger.id)
        chat_service.remove_participant(ride.id, passenger.id)
        chat_service.add_participant(ride.id, passenger.id)

        assert ChatParticipant.objects.filter(chat__ride=ride, user=passenger).count() == 1
        assert ride.chat.is_participant(passenger)

    def test_missing_chat_is_tolerated(self, ride, passenger, chat_service):
        Chat.objects.filter(ride=ride).delete()
        assert chat_service.add_participant(ride.id, passenger.id) is None
        assert chat_service.add_system_message(ride.id, 'hello') is None

    def test_outsider_cannot_open_ride_chat(self, ride, passenger, chat_service):
        with pytest.raises(NotChatParticipant):
            chat_service.get_for_ride(ride, passenger)

    def test_chat_is_created_lazily(self, ride, driver, chat_service):
        Chat.objects.filter(ride=ride).delete()
        chat = chat_service.get_for_ride(ride, driver)
        assert chat.is_participant(driver)


class TestMessages:
    def test_unread_counts_and_last_message(self, booked_ride, driver, passenger, chat_service):
        chat = booked_ride.chat
        chat_service.add_message(chat, driver, '  Meet at gate 2  ')

        chat.refresh_from_db()
        assert chat.last_message_content == 'Meet at gate 2'
        assert chat.last_message_sender_id == driver.id
        assert chat_service.unread_count(chat, passenger) == 1
        assert chat_service.unread_count(chat, driver) == 0

        chat_service.mark_as_read(chat, passenger)
        assert chat_service.unread_count(chat, passenger) == 0

    def test_system_messages_count_for_everyone(self, booked_ride, driver, passenger, chat_service):
        message = chat_service.add_system_message(booked_ride.id, 'Ride cancelled')

        assert message.sender is None
        assert message.metadata == {'system_message_type': 'ride_cancelled'}
        chat = booked_ride.chat
        assert chat_service.unread_count(chat, driver) == 1
        assert chat_service.unread_count(chat, passenger) == 1

    @pytest.mark.parametrize('content', ['', '   ', 'x' * 1001])
    def test_invalid_content(self, ride, driver, chat_service, content):
        with pytest.raises(InvalidMessage):
            chat_service.add_message(ride.chat, driver, content)
        assert not Message.objects.exists()

    def test_outsider_cannot_post(self, ride, passenger, chat_service):
        with pytest.raises(NotChatParticipant):
            chat_service.add_message(ride.chat, passenger, 'hi')

    def test_broadcast_after_commit(self, booked_ride, driver, passenger, chat_service, channel_layer,
                                    django_capture_on_commit_callbacks):
        chat = booked_ride.chat
        with django_capture_on_commit_callbacks(execute=True):
            message = chat_service.add_message(chat, driver, 'On my way, running ten minutes late')

        [(group, event)] = channel_layer.events('new_message')
        assert group == f'chat_{chat.id}'
        assert event['message']['id'] == message.id

        [(group, event)] = channel_layer.events('message_notification')
        assert group == f'user_{passenger.id}'
        assert event['preview'] == 'On my way, running ten minutes late'[:50]
        assert event['ride_id'] == booked_ride.id


class TestChatApi:
    def test_for_ride(self, client_for, booked_ride, passenger, other_passenger):
        url = f'{CHAT_URL}ride/{booked_ride.id}/'

        response = client_for(passenger).get(url)
        assert response.status_code == 200
        assert response.data['data']['ride'] == booked_ride.id
        assert len(response.data['data']['participants']) == 2

        response = client_for(other_passenger).get(url)
        assert response.status_code == 403
        assert response.data['code'] == 'not_chat_participant'

    def test_send_list_and_read(self, client_for, booked_ride, driver, passenger):
        chat = booked_ride.chat
        url = f'{CHAT_URL}{chat.id}/messages/'

        response = client_for(driver).post(url, {'content': 'Hello'}, format='json')
        assert response.status_code == 201
        first_id = response.data['data']['id']
        client_for(passenger).post(url, {'content': 'Hi!', 'reply_to': first_id}, format='json')

        response = client_for(passenger).get(url)
        assert [m['content'] for m in response.data['results']] == ['Hi!', 'Hello']
        assert response.data['results'][0]['reply_to'] == first_id

        response = client_for(passenger).get(CHAT_URL)
        assert response.data['results'][0]['unread_count'] == 1

        response = client_for(passenger).post(f'{CHAT_URL}{chat.id}/read/')
        assert response.status_code == 200
        assert ChatService().unread_count(chat, passenger) == 0

    def test_system_type_cannot_be_posted(self, client_for, booked_ride, driver):
        url = f'{CHAT_URL}{booked_ride.chat.id}/messages/'
        response = client_for(driver).post(url, {'content': 'fake', 'message_type': 'system'}, format='json')
        assert response.status_code == 400
        assert 'message_type' in response.data['errors']

    def test_outsider_and_unknown_chat(self, client_for, ride, other_passenger):
        response = client_for(other_passenger).get(f'{CHAT_URL}{ride.chat.id}/messages/')
        assert response.status_code == 403

        response = client_for(other_passenger).get(f'{CHAT_URL}999999/messages/')
        assert response.status_code == 404
        assert response.data['code'] == 'chat_not_found'
