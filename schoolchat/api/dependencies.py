# schoolchat/api/dependencies.py
import logging
from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from schoolchat.config import AppConfig
from schoolchat.domain.policy import ModerationPolicy
from schoolchat.gateways.device_token_gateway import DeviceTokenGateway
from schoolchat.gateways.message_gateway import MessageGateway
from schoolchat.gateways.thread_gateway import ThreadGateway
from schoolchat.gateways.user_gateway import UserGateway
from schoolchat.infrastructure import schemas
from schoolchat.infrastructure.connection_registry import ConnectionRegistry
from schoolchat.infrastructure.event_dispatcher import EventDispatcher
from schoolchat.infrastructure.push_provider import PushProvider
from schoolchat.infrastructure.security import SecurityService
from schoolchat.infrastructure.uow import UnitOfWork
from schoolchat.interactors.device_interactor import DeviceInteractor
from schoolchat.interactors.message_interactor import MessageInteractor
from schoolchat.interactors.notification_interactor import NotificationInteractor
from schoolchat.interactors.thread_interactor import ThreadInteractor

bearer_scheme = HTTPBearer(auto_error=False)


def get_config(request: Request) -> AppConfig:
    return request.app.state.config


def get_security_service(request: Request) -> SecurityService:
    return request.app.state.security_service


def get_event_dispatcher(request: Request) -> EventDispatcher:
    return request.app.state.event_dispatcher


def get_logger(request: Request) -> logging.Logger:
    return request.app.state.logger


def get_policy(request: Request) -> ModerationPolicy:
    return request.app.state.policy


def get_push_provider(request: Request) -> PushProvider:
    return request.app.state.push_provider


def get_connection_registry(request: Request) -> ConnectionRegistry:
    return request.app.state.connection_registry


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    async with request.app.state.database.session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def get_uow(session: AsyncSession = Depends(get_session)) -> UnitOfWork:
    return UnitOfWork(session)


async def get_user_gateway(
    session: AsyncSession = Depends(get_session), uow: UnitOfWork = Depends(get_uow)
):
    return UserGateway(session, uow)


async def get_thread_gateway(
    session: AsyncSession = Depends(get_session), uow: UnitOfWork = Depends(get_uow)
):
    return ThreadGateway(session, uow)


async def get_message_gateway(
    session: AsyncSession = Depends(get_session), uow: UnitOfWork = Depends(get_uow)
):
    return MessageGateway(session, uow)


async def get_device_token_gateway(
    session: AsyncSession = Depends(get_session), uow: UnitOfWork = Depends(get_uow)
):
    return DeviceTokenGateway(session, uow)


async def get_thread_interactor(
    uow: UnitOfWork = Depends(get_uow),
    thread_gateway: ThreadGateway = Depends(get_thread_gateway),
    user_gateway: UserGateway = Depends(get_user_gateway),
    message_gateway: MessageGateway = Depends(get_message_gateway),
    policy: ModerationPolicy = Depends(get_policy),
    event_dispatcher: EventDispatcher = Depends(get_event_dispatcher),
    logger: logging.Logger = Depends(get_logger),
):
    return ThreadInteractor(
        uow,
        thread_gateway,
        user_gateway,
        message_gateway,
        policy,
        event_dispatcher,
        logger,
    )


async def get_message_interactor(
    uow: UnitOfWork = Depends(get_uow),
    message_gateway: MessageGateway = Depends(get_message_gateway),
    thread_gateway: ThreadGateway = Depends(get_thread_gateway),
    user_gateway: UserGateway = Depends(get_user_gateway),
    policy: ModerationPolicy = Depends(get_policy),
    event_dispatcher: EventDispatcher = Depends(get_event_dispatcher),
    logger: logging.Logger = Depends(get_logger),
):
    return MessageInteractor(
        uow,
        message_gateway,
        thread_gateway,
        user_gateway,
        policy,
        event_dispatcher,
        logger,
    )


async def get_notification_interactor(
    user_gateway: UserGateway = Depends(get_user_gateway),
    push_provider: PushProvider = Depends(get_push_provider),
    policy: ModerationPolicy = Depends(get_policy),
    event_dispatcher: EventDispatcher = Depends(get_event_dispatcher),
    logger: logging.Logger = Depends(get_logger),
):
    return NotificationInteractor(
        user_gateway, push_provider, policy, event_dispatcher, logger
    )


async def get_device_interactor(
    uow: UnitOfWork = Depends(get_uow),
    device_gateway: DeviceTokenGateway = Depends(get_device_token_gateway),
    push_provider: PushProvider = Depends(get_push_provider),
    logger: logging.Logger = Depends(get_logger),
):
    return DeviceInteractor(uow, device_gateway, push_provider, logger)


async def authenticate(
    token: str | None,
    security_service: SecurityService,
    user_gateway: UserGateway,
) -> schemas.User | None:
    """Resolve a bearer token to its active user, or None."""
    if not token:
        return None
    user_id = security_service.decode_access_token(token)
    if user_id is None:
        return None
    user_model = await user_gateway.get_user(user_id)
    if user_model is None or not user_model.is_active:
        return None
    return schemas.User.model_validate(user_model._model)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    security_service: SecurityService = Depends(get_security_service),
    user_gateway: UserGateway = Depends(get_user_gateway),
) -> schemas.User:
    token = credentials.credentials if credentials else None
    user = await authenticate(token, security_service, user_gateway)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
