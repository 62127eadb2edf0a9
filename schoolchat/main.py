# schoolchat/main.py
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from schoolchat.api import chat, devices, notifications
from schoolchat.config import AppConfig
from schoolchat.domain.exceptions import ChatError
from schoolchat.domain.policy import ModerationPolicy
from schoolchat.infrastructure.connection_registry import InMemoryConnectionRegistry
from schoolchat.infrastructure.database import Database
from schoolchat.infrastructure.event_dispatcher import EventDispatcher
from schoolchat.infrastructure.event_handlers import EventHandlers
from schoolchat.infrastructure.fanout import DeliveryFanout
from schoolchat.infrastructure.push_provider import PushProvider, create_push_provider
from schoolchat.infrastructure.redis_client import RedisClient
from schoolchat.infrastructure.schemas import ErrorEnvelope
from schoolchat.infrastructure.security import SecurityService


def error_response(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorEnvelope(error=error, message=message).model_dump(),
    )


class Application:
    def __init__(
        self,
        config: AppConfig,
        database: Database | None = None,
        push_provider: PushProvider | None = None,
    ):
        self.config = config
        self.logger = self.setup_logger()
        self.database = database or Database.from_url(config.DATABASE_URL, self.logger)
        self.redis_client = RedisClient(
            config.REDIS_HOST, config.REDIS_PORT, self.logger
        )
        self.push_provider = push_provider or create_push_provider(config, self.logger)
        self.security_service = SecurityService(config)
        self.policy = ModerationPolicy.from_config(config)
        self.connection_registry = InMemoryConnectionRegistry(self.logger)
        self.event_dispatcher = EventDispatcher(
            self.logger, timeout=config.DELIVERY_TIMEOUT_SECONDS
        )

        # Register event handlers
        self.fanout = DeliveryFanout(
            self.connection_registry, self.push_provider, self.database, self.logger
        )
        self.fanout.register(self.event_dispatcher)
        self.event_handlers = EventHandlers(self.redis_client)
        self.event_handlers.register(self.event_dispatcher)

    @asynccontextmanager
    async def lifespan(self, app: FastAPI):
        await self.database.create_schema()
        await self.redis_client.connect()
        await self.push_provider.connect()
        yield
        await self.event_dispatcher.drain()
        await self.database.dispose()
        await self.redis_client.disconnect()

    def setup_logger(self):
        logger = logging.getLogger("SchoolChat")
        logger.setLevel(self.config.LOG_LEVEL.upper())

        if not logger.handlers:
            c_handler = logging.StreamHandler(sys.stdout)
            formatter = logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            )
            c_handler.setFormatter(formatter)
            logger.addHandler(c_handler)

        return logger

    def register_exception_handlers(self, app: FastAPI) -> None:
        logger = self.logger

        @app.exception_handler(ChatError)
        async def chat_error_handler(request: Request, exc: ChatError):
            return error_response(exc.status_code, exc.kind, exc.message)

        @app.exception_handler(HTTPException)
        async def http_exception_handler(request: Request, exc: HTTPException):
            error = "not_authenticated" if exc.status_code == 401 else "http_error"
            response = error_response(exc.status_code, error, str(exc.detail))
            if exc.headers:
                response.headers.update(exc.headers)
            return response

        @app.exception_handler(RequestValidationError)
        async def validation_exception_handler(
            request: Request, exc: RequestValidationError
        ):
            details = "; ".join(
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                for error in exc.errors()
            )
            return error_response(422, "validation_error", details)

        @app.exception_handler(Exception)
        async def global_exception_handler(request: Request, exc: Exception):
            logger.exception(f"Unhandled error on {request.method} {request.url.path}")
            return error_response(
                500, "internal_error", "An unexpected error occurred"
            )

    def create_app(self) -> FastAPI:
        app = FastAPI(
            title=self.config.PROJECT_NAME,
            version=self.config.PROJECT_VERSION,
            description=self.config.PROJECT_DESCRIPTION,
            openapi_url=f"{self.config.API_V1_STR}/openapi.json",
            lifespan=self.lifespan,
        )

        app.state.config = self.config
        app.state.security_service = self.security_service
        app.state.event_dispatcher = self.event_dispatcher
        app.state.database = self.database
        app.state.logger = self.logger
        app.state.policy = self.policy
        app.state.push_provider = self.push_provider
        app.state.connection_registry = self.connection_registry
        app.state.fanout = self.fanout

        app.include_router(
            chat.router, prefix=f"{self.config.API_V1_STR}/chat", tags=["chat"]
        )
        app.include_router(
            devices.router,
            prefix=f"{self.config.API_V1_STR}/devices",
            tags=["devices"],
        )
        app.include_router(
            notifications.router,
            prefix=f"{self.config.API_V1_STR}/notifications",
            tags=["notifications"],
        )
        self.register_exception_handlers(app)

        @app.get("/")
        async def root():
            database_ok = await self.database.ping()
            return {
                "status": "success",
                "data": {
                    "service": self.config.PROJECT_NAME,
                    "database": "ok" if database_ok else "unavailable",
                },
            }

        return app


def create() -> FastAPI:
    config = AppConfig()
    application = Application(config)
    app = application.create_app()
    application.logger.info("Application created and configured")

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("schoolchat.main:create", factory=True, host="127.0.0.1", port=8000)
