# schoolchat/infrastructure/uow.py

from typing import Any, Dict, Optional, Type

from sqlalchemy.ext.asyncio import AsyncSession


class UoWModel:
    def __init__(self, model: Any, uow: "UnitOfWork"):
        self.__dict__["_model"] = model
        self.__dict__["_uow"] = uow

    def __getattr__(self, key):
        return getattr(self._model, key)

    def __setattr__(self, key, value):
        setattr(self._model, key, value)
        # new models are inserted as a whole on commit, so only existing rows
        # need to be tracked as dirty
        if id(self._model) not in self._uow.new:
            self._uow.register_dirty(self._model)


class UnitOfWork:
    """Collects new, dirty and deleted models and writes them through mappers.

    When bound to a session, ``commit`` also commits the database transaction,
    which makes every interactor operation its own unit of atomicity.
    """

    def __init__(self, session: Optional[AsyncSession] = None) -> None:
        self.session = session
        self.dirty: Dict[int, Any] = {}
        self.new: Dict[int, Any] = {}
        self.deleted: Dict[int, Any] = {}
        self.mappers: Dict[Type, Any] = {}

    def register_dirty(self, model: Any) -> None:
        if isinstance(model, UoWModel):
            model = model._model
        model_id = id(model)
        if model_id not in self.new:
            self.dirty[model_id] = model

    def register_deleted(self, model: Any) -> None:
        if isinstance(model, UoWModel):
            model = model._model
        model_id = id(model)
        if model_id in self.new:
            self.new.pop(model_id)
            return
        elif model_id in self.dirty:
            self.dirty.pop(model_id)

        self.deleted[model_id] = model

    def register_new(self, model: Any) -> UoWModel:
        if isinstance(model, UoWModel):
            model = model._model
        model_id = id(model)
        self.new[model_id] = model
        return UoWModel(model, self)

    async def flush(self) -> None:
        for model in self.new.values():
            await self.mappers[type(model)].insert(model)
        for model in self.dirty.values():
            await self.mappers[type(model)].update(model)
        for model in self.deleted.values():
            await self.mappers[type(model)].delete(model)

        self.new.clear()
        self.dirty.clear()
        self.deleted.clear()

    async def commit(self) -> None:
        try:
            await self.flush()
            if self.session is not None:
                await self.session.commit()
        except Exception:
            await self.rollback()
            raise

    async def rollback(self) -> None:
        self.new.clear()
        self.dirty.clear()
        self.deleted.clear()
        if self.session is not None:
            await self.session.rollback()
