import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agent_runtime.config import settings
from agent_runtime.errors import AlreadyExistsError, NotFoundError, ProviderError
from agent_runtime.providers.openai_provider import OpenAIProvider
from agent_runtime.routers import threads
from agent_runtime.sessions import SessionManager
from agent_runtime.threads.manager import ThreadManager
from agent_runtime.threads.sqlite_store import SqliteThreadStore
from agent_runtime.tools.approval import ApprovalPolicy
from agent_runtime.tools.builtin import build_tool_registry
from agent_runtime.tools.executor import ToolExecutor

logger = logging.getLogger(__name__)


async def build_sessions() -> SessionManager:
    """Wire the runtime from ``settings``: sqlite store, tools, provider."""
    store = SqliteThreadStore(settings.DATABASE_URL)
    await store.init()
    settings.WORKSPACE_DIR.mkdir(parents=True, exist_ok=True)

    provider = None
    if settings.OPENROUTER_API_KEY:
        provider = OpenAIProvider.from_settings(settings)
    else:
        logger.warning("OPENROUTER_API_KEY is not set; agents cannot be started")

    executor = ToolExecutor(build_tool_registry(), ApprovalPolicy.from_settings(settings))
    return SessionManager.from_settings(ThreadManager(store), executor, provider, settings)


def create_app(sessions: SessionManager | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logging.basicConfig(
            level=settings.LOG_LEVEL,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        if app.state.sessions is None:
            app.state.sessions = await build_sessions()
        yield
        # Shutdown
        await app.state.sessions.close()

    app = FastAPI(title="agent-runtime", version="0.1.0", lifespan=lifespan)
    app.state.sessions = sessions

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(AlreadyExistsError)
    async def already_exists(request: Request, exc: AlreadyExistsError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(ProviderError)
    async def provider_unavailable(request: Request, exc: ProviderError):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    app.include_router(threads.router)

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "service": "agent-runtime"}

    return app


app = create_app()
