# schoolchat/gateways/device_token_gateway.py

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from schoolchat.domain.entities import utcnow
from schoolchat.gateways.interfaces import IDeviceTokenGateway
from schoolchat.infrastructure import models
from schoolchat.infrastructure.data_mappers import DeviceTokenMapper
from schoolchat.infrastructure.uow import UnitOfWork, UoWModel


class DeviceTokenGateway(IDeviceTokenGateway):
    def __init__(self, session: AsyncSession, uow: UnitOfWork):
        self.session = session
        self.uow = uow
        uow.mappers[models.DeviceToken] = DeviceTokenMapper(session)

    async def get_active_tokens(self, user_id: int) -> list[UoWModel]:
        stmt = (
            select(models.DeviceToken)
            .filter(
                models.DeviceToken.user_id == user_id,
                models.DeviceToken.is_active.is_(True),
            )
            .order_by(models.DeviceToken.id)
        )
        result = await self.session.execute(stmt)
        return [UoWModel(token, self.uow) for token in result.scalars().all()]

    async def register(self, user_id: int, token: str, platform: str) -> UoWModel:
        """Make ``token`` the user's single active device for ``platform``."""
        await self.session.execute(
            update(models.DeviceToken)
            .where(
                models.DeviceToken.user_id == user_id,
                models.DeviceToken.platform == platform,
                models.DeviceToken.token != token,
            )
            .values(is_active=False)
        )

        stmt = select(models.DeviceToken).filter(models.DeviceToken.token == token)
        result = await self.session.execute(stmt)
        existing = result.scalar_one_or_none()
        now = utcnow()
        if existing is not None:
            # a token moves with the device when another account signs in on it
            device = UoWModel(existing, self.uow)
            device.user_id = user_id
            device.platform = platform
            device.is_active = True
            device.last_used_at = now
        else:
            device = self.uow.register_new(
                models.DeviceToken(
                    user_id=user_id,
                    token=token,
                    platform=platform,
                    is_active=True,
                    last_used_at=now,
                    created_at=now,
                )
            )
        await self.uow.flush()
        return device

    async def unregister(self, user_id: int, token: str) -> bool:
        stmt = (
            update(models.DeviceToken)
            .where(
                models.DeviceToken.user_id == user_id,
                models.DeviceToken.token == token,
                models.DeviceToken.is_active.is_(True),
            )
            .values(is_active=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def deactivate(self, token: str) -> None:
        await self.session.execute(
            update(models.DeviceToken)
            .where(models.DeviceToken.token == token)
            .values(is_active=False)
        )

    async def mark_used(self, token: str) -> None:
        await self.session.execute(
            update(models.DeviceToken)
            .where(models.DeviceToken.token == token)
            .values(last_used_at=utcnow())
        )

    async def get_by_token(self, token: str) -> UoWModel | None:
        stmt = select(models.DeviceToken).filter(models.DeviceToken.token == token)
        result = await self.session.execute(stmt)
        device = result.scalar_one_or_none()
        return UoWModel(device, self.uow) if device else None

    async def get_user_tokens(self, user_id: int) -> list[UoWModel]:
        stmt = (
            select(models.DeviceToken)
            .filter(models.DeviceToken.user_id == user_id)
            .order_by(models.DeviceToken.created_at.desc(), models.DeviceToken.id.desc())
        )
        result = await self.session.execute(stmt)
        return [UoWModel(device, self.uow) for device in result.scalars().all()]

    async def add_topic(self, device_id: int, topic: str) -> None:
        dialect = self.session.get_bind().dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        await self.session.execute(
            insert(models.DeviceTopic)
            .values(device_token_id=device_id, topic=topic, created_at=utcnow())
            .on_conflict_do_nothing(index_elements=["device_token_id", "topic"])
        )

    async def remove_topic(self, device_id: int, topic: str) -> bool:
        result = await self.session.execute(
            delete(models.DeviceTopic).where(
                models.DeviceTopic.device_token_id == device_id,
                models.DeviceTopic.topic == topic,
            )
        )
        return result.rowcount > 0

    async def get_topics(self, device_ids: list[int]) -> dict[int, list[str]]:
        topics: dict[int, list[str]] = {device_id: [] for device_id in device_ids}
        if not device_ids:
            return topics
        stmt = (
            select(models.DeviceTopic.device_token_id, models.DeviceTopic.topic)
            .filter(models.DeviceTopic.device_token_id.in_(device_ids))
            .order_by(models.DeviceTopic.id)
        )
        for device_id, topic in await self.session.execute(stmt):
            topics[device_id].append(topic)
        return topics

    async def clear_topics(self, device_id: int) -> list[str]:
        topics = (await self.get_topics([device_id]))[device_id]
        await self.session.execute(
            delete(models.DeviceTopic).where(models.DeviceTopic.device_token_id == device_id)
        )
        return topics
