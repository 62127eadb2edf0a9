# schoolchat/tests/unit/test_push_provider.py
from unittest.mock import MagicMock, patch

import pytest
from firebase_admin import exceptions, messaging

from schoolchat.infrastructure.push_provider import (
    DisabledPushProvider,
    FirebasePushProvider,
    PushNotification,
    create_push_provider,
)


@pytest.fixture
def provider(logger):
    provider = FirebasePushProvider("unused.json", logger, android_channel_id="school")
    # skip credential loading; the SDK calls are patched in every test
    provider.app = object()
    return provider


@pytest.fixture
def notification():
    return PushNotification(
        title="Tom Teacher",
        body="See you tomorrow",
        data={"thread_id": 5, "type": "chat_message"},
        priority="high",
    )


async def test_send_to_device(provider, notification):
    with patch(
        "schoolchat.infrastructure.push_provider.messaging.send",
        return_value="projects/demo/messages/1",
    ) as mock_send:
        result = await provider.send_to_device("device-token-1", notification)

    assert result.success
    assert result.message_id == "projects/demo/messages/1"
    message = mock_send.call_args.args[0]
    assert message.token == "device-token-1"
    assert message.data == {"thread_id": "5", "type": "chat_message"}
    assert message.android.notification.channel_id == "school"
    assert message.android.notification.color == "#FF8C00"
    assert mock_send.call_args.kwargs["app"] is provider.app


async def test_unregistered_token_is_flagged(provider, notification):
    with patch(
        "schoolchat.infrastructure.push_provider.messaging.send",
        side_effect=messaging.UnregisteredError("Requested entity was not found."),
    ):
        result = await provider.send_to_device("device-token-1", notification)

    assert not result.success
    assert result.unregistered


async def test_transient_failure_is_not_unregistered(provider, notification):
    with patch(
        "schoolchat.infrastructure.push_provider.messaging.send",
        side_effect=exceptions.UnavailableError("try again later"),
    ):
        result = await provider.send_to_topic("school_announcements", notification)

    assert not result.success
    assert not result.unregistered
    assert result.error == "try again later"


async def test_send_to_topic_targets_topic(provider, notification):
    with patch(
        "schoolchat.infrastructure.push_provider.messaging.send",
        return_value="projects/demo/messages/2",
    ) as mock_send:
        await provider.send_to_topic("class_7", notification)

    assert mock_send.call_args.args[0].topic == "class_7"


async def test_subscribe_to_topic(provider):
    response = MagicMock(failure_count=0, errors=[])
    with patch(
        "schoolchat.infrastructure.push_provider.messaging.subscribe_to_topic",
        return_value=response,
    ) as mock_subscribe:
        result = await provider.subscribe_to_topic("device-token-1", "student_3")

    assert result.success
    args = mock_subscribe.call_args.args
    assert args[0] == ["device-token-1"]
    assert args[1] == "student_3"


async def test_subscribe_rejected_by_provider(provider):
    response = MagicMock(failure_count=1, errors=[MagicMock(reason="INVALID_ARGUMENT")])
    with patch(
        "schoolchat.infrastructure.push_provider.messaging.subscribe_to_topic",
        return_value=response,
    ):
        result = await provider.subscribe_to_topic("bad-token", "student_3")

    assert not result.success
    assert result.error == "INVALID_ARGUMENT"


async def test_unsubscribe_from_topic(provider):
    response = MagicMock(failure_count=0, errors=[])
    with patch(
        "schoolchat.infrastructure.push_provider.messaging.unsubscribe_from_topic",
        return_value=response,
    ) as mock_unsubscribe:
        result = await provider.unsubscribe_from_topic("device-token-1", "class_7")

    assert result.success
    assert mock_unsubscribe.call_args.args[:2] == (["device-token-1"], "class_7")


async def test_missing_credentials_disable_push(app_config, logger):
    app_config.FIREBASE_CREDENTIALS_FILE = None
    provider = create_push_provider(app_config, logger)

    assert isinstance(provider, DisabledPushProvider)
    result = await provider.send_to_device("device-token-1", PushNotification("t", "b"))
    assert not result.success
    assert result.error == "push_disabled"


def test_credentials_select_firebase(app_config, logger):
    app_config.FIREBASE_CREDENTIALS_FILE = "/etc/schoolchat/firebase.json"
    provider = create_push_provider(app_config, logger)

    assert isinstance(provider, FirebasePushProvider)
    assert provider.android_channel_id == app_config.PUSH_ANDROID_CHANNEL_ID
