from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from app.core import config, exception_handlers
from app.core.config import SessionBackend, Settings
from app.core.event_bus import EventBus
from app.core.redis import RedisManager
from app.core.websocket_manager import WebSocketManager
from app.domains import ai, collaboration, execution
from app.domains.ai.service import AIService, GenerativeClient
from app.domains.collaboration.colors import ColorAssigner
from app.domains.collaboration.entities import Language, Permission
from app.domains.collaboration.repository import (
    InMemorySessionRepository,
    RedisSessionRepository,
    SessionRepository,
)
from app.domains.collaboration.service import SessionLifecycleManager
from app.domains.execution.service import CodeExecutor
from app.shared.utils.logger import get_logger
from app.tasks.cleanup import SessionReaper

logger = get_logger(__name__)


def build_repository(settings: Settings) -> SessionRepository:
    if settings.SESSION_BACKEND == SessionBackend.REDIS:
        return RedisSessionRepository(RedisManager.get_client(settings.REDIS_URL))
    return InMemorySessionRepository()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or config.settings

    bus = EventBus()
    connections = WebSocketManager(
        ping_interval=settings.WS_PING_INTERVAL,
        pong_timeout=settings.WS_PONG_TIMEOUT,
        max_message_size=settings.WS_MAX_MESSAGE_SIZE,
        max_queue_size=settings.WS_MAX_QUEUE_SIZE,
    )
    collaboration.register_event_handlers(bus, connections)

    session_manager = SessionLifecycleManager(
        repository=build_repository(settings),
        bus=bus,
        colors=ColorAssigner(settings.PARTICIPANT_COLORS, settings.COLOR_ASSIGNMENT_POLICY),
        default_permission=Permission(settings.DEFAULT_JOIN_PERMISSION),
        idle_timeout=timedelta(seconds=settings.SESSION_IDLE_TIMEOUT_SECONDS),
        skip_active_on_reap=settings.REAP_SKIP_ACTIVE_SESSIONS,
        max_message_length=settings.CHAT_MAX_MESSAGE_LENGTH,
        event_history_limit=settings.SESSION_EVENT_HISTORY_LIMIT,
    )
    code_executor = CodeExecutor(
        interpreters={
            Language.PYTHON: settings.PYTHON_INTERPRETER,
            Language.JAVASCRIPT: settings.NODE_INTERPRETER,
        },
        timeout=settings.EXECUTION_TIMEOUT_SECONDS,
        max_concurrent=settings.MAX_CONCURRENT_EXECUTIONS,
    )
    ai_service = AIService(
        GenerativeClient(
            api_key=settings.GEMINI_API_KEY,
            model=settings.GEMINI_MODEL,
            base_url=settings.GEMINI_BASE_URL,
            timeout=settings.AI_REQUEST_TIMEOUT_SECONDS,
        )
    )
    reaper = SessionReaper(session_manager, interval=settings.SESSION_REAP_INTERVAL_SECONDS)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await connections.start()
        await reaper.start()
        logger.info(f"Collaboration backend started ({settings.ENVIRONMENT.value}, {settings.SESSION_BACKEND.value} store)")
        yield
        await reaper.stop()
        await connections.close_all()
        await connections.stop()
        if settings.SESSION_BACKEND == SessionBackend.REDIS:
            await RedisManager.close()

    app = FastAPI(title="Collaborative Coding Backend", version=settings.VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.event_bus = bus
    app.state.connections = connections
    app.state.session_manager = session_manager
    app.state.code_executor = code_executor
    app.state.ai_service = ai_service
    app.state.reaper = reaper

    exception_handlers.setup_exception_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(collaboration.router, prefix="/api/collaboration", tags=["Collaboration"])
    app.include_router(collaboration.ws_router, prefix="/api/collaboration", tags=["Collaboration WS"])
    app.include_router(execution.router, prefix="/api", tags=["Execution"])
    app.include_router(ai.router, prefix="/api/ai", tags=["AI"])

    @app.get("/health")
    async def health():
        services = {
            "session_store": await session_manager.repository.ping(),
            "session_reaper": reaper.running,
        }
        status = "healthy" if all(services.values()) else "degraded"
        return {
            "status": status,
            "services": services,
            "version": settings.VERSION,
            "connections": connections.get_connection_stats(),
        }

    return app


app = create_app()
