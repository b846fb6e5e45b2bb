"""FastAPI application exposing the completion engine over HTTP."""

from contextlib import asynccontextmanager
from typing import Any, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
import structlog

from .. import __version__
from ..core.completion_engine import CompletionFallbackEngine, InvalidRequest
from ..core.scenarios import ScenarioRegistry, create_default_registry
from ..metrics.collector import MetricsCollector
from ..state.session_store import SessionStore


logger = structlog.get_logger()

CHAT_FAILURE = "Failed to get chat response"


class ChatRequest(BaseModel):
    """Body of ``POST /chat``. Content checks happen in the engine."""

    scenarioId: Optional[str] = None
    message: Any = None
    sessionId: Optional[str] = None


def _failure(details: str) -> JSONResponse:
    return JSONResponse(status_code=500, content={"error": CHAT_FAILURE, "details": details})


def create_app(
    engine: CompletionFallbackEngine,
    scenarios: ScenarioRegistry,
    metrics: Optional[MetricsCollector] = None,
    cors_origins: Optional[List[str]] = None,
) -> FastAPI:
    """Create the HTTP application around an engine.

    Args:
        engine: Completion engine answering ``/chat``
        scenarios: Registry listed by ``/scenarios``
        metrics: Collector summarized by ``/metrics``
        cors_origins: Allowed origins, all by default
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Completion server starting", providers=[p.name for p in engine.providers])
        yield
        await engine.aclose()
        logger.info("Completion server stopped")

    app = FastAPI(title="Voice Agent", version=__version__, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.warning("Invalid chat request", errors=str(exc.errors()), path=request.url.path)
        return _failure("Invalid request body")

    @app.post("/chat")
    async def chat(body: ChatRequest):
        session_id = body.sessionId or None
        with structlog.contextvars.bound_contextvars(
            session_id=session_id, scenario_id=body.scenarioId
        ):
            logger.info("Chat request")
            try:
                reply = await engine.complete(body.scenarioId, session_id, body.message)
            except InvalidRequest as e:
                logger.warning("Rejected chat request", error=str(e))
                return _failure(str(e))
            except Exception as e:
                logger.exception("Chat error", error=str(e))
                return _failure(str(e))
        return reply.to_dict()

    @app.get("/scenarios")
    async def list_scenarios():
        return scenarios.list()

    @app.get("/metrics")
    async def get_metrics():
        if metrics is None:
            return {"enabled": False}
        return metrics.get_summary()

    return app


def build_app(settings=None) -> FastAPI:
    """Assemble the server from settings and the registered providers.

    Used by ``uvicorn --factory voice_agent.server.app:build_app``.
    """
    from ..config.settings import settings as default_settings
    from ..providers import registry

    settings = settings or default_settings
    scenarios = create_default_registry()
    metrics = MetricsCollector()
    providers = registry.build_completion_chain(
        settings.providers.completion_order, settings.get_provider_config
    )
    if not providers:
        logger.warning("No completion providers configured, replies will be simulated")

    engine = CompletionFallbackEngine(scenarios, SessionStore(), providers, metrics)
    return create_app(engine, scenarios, metrics, settings.server.cors_origins)
