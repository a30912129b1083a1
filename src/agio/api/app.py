"""
FastAPI application factory.

Exposes the AgentManager over HTTP:
- POST /agents                 create a conversation
- GET /agents                  list stored conversations
- GET /agents/{id}             conversation with messages
- DELETE /agents/{id}          delete a conversation
- POST /agents/{id}/messages   run one user message through the agent
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..agent import AgentConfig, AgentManager, TokenBudget
from ..config import Settings, get_settings
from ..errors import AgioError, ConversationBusy, ConversationNotFound, RequestError
from ..llm import create_llm
from ..persistence import create_store

logger = structlog.get_logger()


class MessageRequest(BaseModel):
    """User message for an agent."""
    message: str = Field(min_length=1)


def fallback_encoding_for(settings: Settings) -> str | None:
    """Encoding for models tiktoken cannot resolve.

    Anthropic and OpenRouter serve models tiktoken has no entry for, so
    they count with cl100k_base unless settings name another encoding.
    """
    if settings.fallback_encoding:
        return settings.fallback_encoding
    if settings.default_provider == "openai":
        return None
    return "cl100k_base"


async def build_manager(settings: Settings) -> AgentManager:
    """Create the store and an AgentManager from settings."""
    store = await create_store(settings)
    llm_config = settings.get_llm_config()
    return AgentManager(
        llm_factory=lambda: create_llm(llm_config),
        store=store,
        config=AgentConfig.from_settings(settings),
        max_cached_agents=settings.max_cached_agents,
        token_budget=TokenBudget(fallback_encoding=fallback_encoding_for(settings)),
    )


def get_manager(request: Request) -> AgentManager:
    return request.app.state.manager


def create_app(settings: Settings | None = None, manager: AgentManager | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        owns_manager = app.state.manager is None
        if owns_manager:
            app.state.manager = await build_manager(settings)
            logger.info("Agent manager initialized", storage_backend=settings.storage_backend)

        yield

        if owns_manager:
            await app.state.manager.store.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="agio",
        description="Conversation orchestration for tool-using LLM agents",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.manager = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ------------------------------------------------------------------ #
    # Error mapping
    # ------------------------------------------------------------------ #
    @app.exception_handler(ConversationNotFound)
    async def not_found_handler(request: Request, exc: ConversationNotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ConversationBusy)
    async def busy_handler(request: Request, exc: ConversationBusy):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(RequestError)
    async def upstream_handler(request: Request, exc: RequestError):
        logger.error("Upstream request failed", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    @app.exception_handler(AgioError)
    async def agio_error_handler(request: Request, exc: AgioError):
        logger.error("Request failed", path=request.url.path, error_type=type(exc).__name__, error=str(exc))
        return JSONResponse(status_code=500, content={"detail": str(exc), "type": type(exc).__name__})

    # ------------------------------------------------------------------ #
    # Health
    # ------------------------------------------------------------------ #
    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": __version__,
            "storage_backend": settings.storage_backend,
            "llm_configured": bool(
                settings.openai_api_key
                or settings.anthropic_api_key
                or settings.openrouter_api_key
            ),
        }

    # ------------------------------------------------------------------ #
    # Agents
    # ------------------------------------------------------------------ #
    @app.post("/agents", status_code=201)
    async def create_agent(manager: AgentManager = Depends(get_manager)):
        conversation_id = await manager.create_agent()
        return {"id": conversation_id}

    @app.get("/agents")
    async def list_agents(
        limit: int = Query(10, ge=0, le=100),
        offset: int = Query(0, ge=0),
        manager: AgentManager = Depends(get_manager),
    ):
        conversations = await manager.list_conversations(limit=limit, offset=offset)
        return {
            "conversations": [c.to_dict() for c in conversations],
            "count": len(conversations),
        }

    @app.get("/agents/{conversation_id}")
    async def get_agent(conversation_id: str, manager: AgentManager = Depends(get_manager)):
        agent = await manager.get_agent(conversation_id)
        return agent.state.to_dict()

    @app.delete("/agents/{conversation_id}")
    async def delete_agent(conversation_id: str, manager: AgentManager = Depends(get_manager)):
        await manager.delete_agent(conversation_id)
        return {"status": "deleted", "id": conversation_id}

    @app.post("/agents/{conversation_id}/messages")
    async def send_message(
        conversation_id: str,
        request: MessageRequest,
        manager: AgentManager = Depends(get_manager),
    ):
        response = await manager.run_message(conversation_id, request.message)
        return {"id": conversation_id, "response": response}

    return app
