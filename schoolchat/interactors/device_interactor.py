# schoolchat/interactors/device_interactor.py
import logging

from schoolchat.domain.exceptions import Forbidden, NotFoundError
from schoolchat.gateways.interfaces import IDeviceTokenGateway
from schoolchat.infrastructure import schemas
from schoolchat.infrastructure.push_provider import PushProvider
from schoolchat.infrastructure.uow import UnitOfWork, UoWModel
from schoolchat.interactors.notification_interactor import (
    TOPIC_CATEGORIES,
    topic_category,
)


class DeviceInteractor:
    """Device tokens and the push topics each device is subscribed to.

    Only subscriptions the provider confirmed are recorded.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        device_gateway: IDeviceTokenGateway,
        push_provider: PushProvider,
        logger: logging.Logger,
    ):
        self.uow = uow
        self.device_gateway = device_gateway
        self.push_provider = push_provider
        self.logger = logger

    async def _owned_device(self, token: str, user: schemas.User) -> UoWModel:
        device = await self.device_gateway.get_by_token(token)
        if device is None or device.user_id != user.id or not device.is_active:
            raise NotFoundError("Device token not found")
        return device

    async def _drop_topics(self, token: str, topics: list[str]) -> None:
        for topic in topics:
            result = await self.push_provider.unsubscribe_from_topic(token, topic)
            if not result.success:
                self.logger.warning(f"Could not unsubscribe device from {topic}: {result.error}")

    async def register_device(
        self, data: schemas.DeviceRegister, user: schemas.User
    ) -> schemas.DeviceRegistration:
        stale_topics = []
        previous = await self.device_gateway.get_by_token(data.token)
        if previous is not None and previous.user_id != user.id:
            # the previous account's topics must not follow the device
            stale_topics = await self.device_gateway.clear_topics(previous.id)

        device = await self.device_gateway.register(user.id, data.token, data.platform)
        await self.uow.commit()
        self.logger.info(f"Registered {data.platform} device for user {user.id}")
        await self._drop_topics(data.token, stale_topics)

        subscriptions = []
        for topic in dict.fromkeys(data.topics):
            result = await self.push_provider.subscribe_to_topic(data.token, topic)
            if result.success:
                await self.device_gateway.add_topic(device.id, topic)
            subscriptions.append(
                schemas.TopicSubscription(
                    topic=topic, success=result.success, error=result.error
                )
            )
        await self.uow.commit()

        registered = schemas.DeviceToken.model_validate(device)
        registered.topics = (await self.device_gateway.get_topics([device.id]))[device.id]
        return schemas.DeviceRegistration(device=registered, subscriptions=subscriptions)

    async def unregister_device(self, token: str, user: schemas.User) -> None:
        removed = await self.device_gateway.unregister(user.id, token)
        if not removed:
            raise NotFoundError("Device token not found")
        device = await self.device_gateway.get_by_token(token)
        topics = await self.device_gateway.clear_topics(device.id)
        await self.uow.commit()
        self.logger.info(f"Unregistered device for user {user.id}")
        await self._drop_topics(token, topics)

    async def list_devices(self, user: schemas.User) -> list[schemas.DeviceToken]:
        devices = await self.device_gateway.get_user_tokens(user.id)
        topics = await self.device_gateway.get_topics([device.id for device in devices])
        results = []
        for device in devices:
            result = schemas.DeviceToken.model_validate(device)
            result.topics = topics[device.id]
            results.append(result)
        return results

    async def subscribe_topic(
        self, data: schemas.TopicChange, user: schemas.User
    ) -> schemas.TopicSubscription:
        device = await self._owned_device(data.token, user)
        result = await self.push_provider.subscribe_to_topic(data.token, data.topic)
        if result.success:
            await self.device_gateway.add_topic(device.id, data.topic)
            await self.uow.commit()
            self.logger.info(f"Device of user {user.id} subscribed to {data.topic}")
        else:
            self.logger.warning(
                f"Subscribing device of user {user.id} to {data.topic} failed: {result.error}"
            )
        return schemas.TopicSubscription(
            topic=data.topic, success=result.success, error=result.error
        )

    async def unsubscribe_topic(
        self, data: schemas.TopicChange, user: schemas.User
    ) -> schemas.TopicSubscription:
        device = await self._owned_device(data.token, user)
        result = await self.push_provider.unsubscribe_from_topic(data.token, data.topic)
        if result.success:
            await self.device_gateway.remove_topic(device.id, data.topic)
            await self.uow.commit()
        else:
            self.logger.warning(
                f"Unsubscribing device of user {user.id} from {data.topic} failed: {result.error}"
            )
        return schemas.TopicSubscription(
            topic=data.topic, success=result.success, error=result.error
        )

    async def available_topics(self, user: schemas.User) -> schemas.AvailableTopics:
        if user.role != "parent":
            raise Forbidden("Only parents can view available topics")

        devices = await self.device_gateway.get_active_tokens(user.id)
        by_device = await self.device_gateway.get_topics([device.id for device in devices])
        all_topics = sorted({topic for topics in by_device.values() for topic in topics})
        categorized: dict[str, list[str]] = {category: [] for category in TOPIC_CATEGORIES}
        for topic in all_topics:
            categorized.setdefault(topic_category(topic), []).append(topic)
        return schemas.AvailableTopics(
            all_topics=all_topics,
            categorized_topics=categorized,
            total_topics=len(all_topics),
            topic_categories=TOPIC_CATEGORIES,
        )
