# schoolchat/gateways/user_gateway.py

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolchat.gateways.interfaces import IUserGateway
from schoolchat.infrastructure import models
from schoolchat.infrastructure.data_mappers import UserMapper
from schoolchat.infrastructure.uow import UnitOfWork, UoWModel


class UserGateway(IUserGateway):
    def __init__(self, session: AsyncSession, uow: UnitOfWork):
        self.session = session
        self.uow = uow
        uow.mappers[models.User] = UserMapper(session)

    async def get_user(self, user_id: int) -> UoWModel | None:
        stmt = select(models.User).filter(models.User.id == user_id)
        result = await self.session.execute(stmt)
        user = result.scalar_one_or_none()
        return UoWModel(user, self.uow) if user else None

    async def get_users(self, user_ids: list[int]) -> list[UoWModel]:
        if not user_ids:
            return []
        stmt = select(models.User).filter(
            models.User.id.in_(user_ids), models.User.is_active.is_(True)
        )
        result = await self.session.execute(stmt)
        return [UoWModel(user, self.uow) for user in result.scalars().all()]

    async def get_roles(self, user_ids: list[int]) -> dict[int, str]:
        if not user_ids:
            return {}
        stmt = select(models.User.id, models.User.role).filter(
            models.User.id.in_(user_ids)
        )
        result = await self.session.execute(stmt)
        return {row.id: row.role for row in result}
