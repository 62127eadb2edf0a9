# schoolchat/infrastructure/data_mappers.py

from typing import Protocol, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from schoolchat.infrastructure import models

ModelT_contra = TypeVar("ModelT_contra", contravariant=True)


class DataMapper(Protocol[ModelT_contra]):
    async def insert(self, model: ModelT_contra):
        raise NotImplementedError

    async def delete(self, model: ModelT_contra):
        raise NotImplementedError

    async def update(self, model: ModelT_contra):
        raise NotImplementedError


class SessionMapper:
    """Writes a model straight through the session it was loaded with."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def insert(self, model):
        self.session.add(model)
        await self.session.flush()

    async def delete(self, model):
        await self.session.delete(model)
        await self.session.flush()

    async def update(self, model):
        await self.session.merge(model)
        await self.session.flush()


class UserMapper(SessionMapper, DataMapper[models.User]):
    pass


class ThreadMapper(SessionMapper, DataMapper[models.Thread]):
    pass


class ParticipantMapper(SessionMapper, DataMapper[models.Participant]):
    pass


class MessageMapper(SessionMapper, DataMapper[models.Message]):
    pass


class ReadReceiptMapper(SessionMapper, DataMapper[models.ReadReceipt]):
    pass


class DeviceTokenMapper(SessionMapper, DataMapper[models.DeviceToken]):
    pass
