# schoolchat/infrastructure/push_provider.py
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import firebase_admin
from firebase_admin import credentials, exceptions, messaging

PRIORITY_COLORS = {
    "urgent": "#FF0000",
    "high": "#FF8C00",
    "normal": "#0080FF",
    "low": "#808080",
}


@dataclass
class PushNotification:
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)
    priority: str = "normal"


@dataclass
class PushResult:
    success: bool
    message_id: str | None = None
    error: str | None = None
    # the provider no longer knows this token; it should stop receiving pushes
    unregistered: bool = False


class PushProvider(ABC):
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def send_to_device(
        self, token: str, notification: PushNotification
    ) -> PushResult:
        pass

    @abstractmethod
    async def send_to_topic(
        self, topic: str, notification: PushNotification
    ) -> PushResult:
        pass

    @abstractmethod
    async def subscribe_to_topic(self, token: str, topic: str) -> PushResult:
        pass

    @abstractmethod
    async def unsubscribe_from_topic(self, token: str, topic: str) -> PushResult:
        pass


class DisabledPushProvider(PushProvider):
    """Used when no push credentials are configured. Every send reports failure."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    async def _disabled(self, target: str) -> PushResult:
        self.logger.debug(f"Push disabled, dropping notification for {target}")
        return PushResult(success=False, error="push_disabled")

    async def send_to_device(self, token, notification):
        return await self._disabled(f"device {token[:12]}")

    async def send_to_topic(self, topic, notification):
        return await self._disabled(f"topic {topic}")

    async def subscribe_to_topic(self, token, topic):
        return await self._disabled(f"topic {topic}")

    async def unsubscribe_from_topic(self, token, topic):
        return await self._disabled(f"topic {topic}")


class FirebasePushProvider(PushProvider):
    """Firebase Cloud Messaging through the blocking firebase-admin SDK.

    SDK calls run in a worker thread so they never block the event loop.
    """

    APP_NAME = "schoolchat"

    def __init__(
        self,
        credentials_file: str,
        logger: logging.Logger,
        android_channel_id: str = "school_notifications",
    ):
        self.credentials_file = credentials_file
        self.logger = logger
        self.android_channel_id = android_channel_id
        self.app: firebase_admin.App | None = None

    async def connect(self) -> None:
        if self.app is not None:
            return
        try:
            self.app = firebase_admin.get_app(self.APP_NAME)
        except ValueError:
            cred = credentials.Certificate(self.credentials_file)
            self.app = firebase_admin.initialize_app(cred, name=self.APP_NAME)
        self.logger.info("Firebase messaging initialized")

    def _build_message(self, notification: PushNotification, **target) -> messaging.Message:
        return messaging.Message(
            notification=messaging.Notification(
                title=notification.title, body=notification.body
            ),
            data={key: str(value) for key, value in notification.data.items()},
            android=messaging.AndroidConfig(
                priority="high",
                notification=messaging.AndroidNotification(
                    icon="ic_notification",
                    color=PRIORITY_COLORS.get(
                        notification.priority, PRIORITY_COLORS["normal"]
                    ),
                    sound="default",
                    channel_id=self.android_channel_id,
                ),
            ),
            apns=messaging.APNSConfig(
                payload=messaging.APNSPayload(
                    aps=messaging.Aps(
                        alert=messaging.ApsAlert(
                            title=notification.title, body=notification.body
                        ),
                        sound="default",
                        badge=1,
                        content_available=True,
                    )
                )
            ),
            **target,
        )

    async def _send(self, message: messaging.Message, target: str) -> PushResult:
        await self.connect()
        try:
            message_id = await asyncio.to_thread(messaging.send, message, app=self.app)
        except (messaging.UnregisteredError, messaging.SenderIdMismatchError) as e:
            self.logger.info(f"Push target {target} is no longer registered")
            return PushResult(success=False, error=str(e), unregistered=True)
        except exceptions.FirebaseError as e:
            self.logger.warning(f"Push to {target} failed: {e!s}")
            return PushResult(success=False, error=str(e))
        self.logger.info(f"Push sent to {target}: {message_id}")
        return PushResult(success=True, message_id=message_id)

    async def send_to_device(
        self, token: str, notification: PushNotification
    ) -> PushResult:
        message = self._build_message(notification, token=token)
        return await self._send(message, f"device {token[:12]}")

    async def send_to_topic(
        self, topic: str, notification: PushNotification
    ) -> PushResult:
        message = self._build_message(notification, topic=topic)
        return await self._send(message, f"topic {topic}")

    async def _manage_topic(self, call, token: str, topic: str) -> PushResult:
        await self.connect()
        try:
            response = await asyncio.to_thread(call, [token], topic, app=self.app)
        except exceptions.FirebaseError as e:
            self.logger.warning(f"Topic request for {topic} failed: {e!s}")
            return PushResult(success=False, error=str(e))
        if response.failure_count:
            reason = response.errors[0].reason if response.errors else "unknown_error"
            self.logger.warning(f"Topic request for {topic} rejected: {reason}")
            return PushResult(success=False, error=reason)
        return PushResult(success=True)

    async def subscribe_to_topic(self, token: str, topic: str) -> PushResult:
        return await self._manage_topic(messaging.subscribe_to_topic, token, topic)

    async def unsubscribe_from_topic(self, token: str, topic: str) -> PushResult:
        return await self._manage_topic(messaging.unsubscribe_from_topic, token, topic)


def create_push_provider(config, logger: logging.Logger) -> PushProvider:
    if not config.FIREBASE_CREDENTIALS_FILE:
        logger.warning("FIREBASE_CREDENTIALS_FILE not set, push delivery disabled")
        return DisabledPushProvider(logger)
    return FirebasePushProvider(
        config.FIREBASE_CREDENTIALS_FILE, logger, config.PUSH_ANDROID_CHANNEL_ID
    )
