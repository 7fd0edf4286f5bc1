"""
Paralegal Router API

Routes legal questions to a response strategy and streams the answer over SSE.
"""
import time
import uuid
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from paralegal_api.models.chat import QueryType
from paralegal_api.routers import chat, health
from paralegal_api.services.auth import IdentityService
from paralegal_api.services.classifier import QueryClassifier
from paralegal_api.services.config import Settings
from paralegal_api.services.context import ContextAssembler
from paralegal_api.services.conversations import ConversationService
from paralegal_api.services.handlers import (
    ComplexQueryHandler,
    ResearchQueryHandler,
    SimpleQueryHandler,
)
from paralegal_api.services.llm import LLMService
from paralegal_api.services.orchestrator import ChatOrchestrator
from paralegal_api.services.research import ResearchService
from paralegal_api.services.store import SupabaseStore
from paralegal_api.services.verification import CitationVerifier
from paralegal_api.utils.errors import register_exception_handlers
from paralegal_api.utils.logging import setup_logging
from paralegal_api.utils.metrics import active_connections, request_counter, request_duration

settings = Settings()
logger = setup_logging(settings.LOG_LEVEL, settings.LOG_FILE, settings.LOG_JSON)


def build_orchestrator(settings: Settings, http_client: httpx.AsyncClient) -> ChatOrchestrator:
    """Wire the routing pipeline around one shared HTTP client"""
    store = SupabaseStore(settings, http_client)
    llm_service = LLMService(settings, http_client, logger=logger.bind(component="llm"))
    research_service = ResearchService(settings, http_client, logger=logger.bind(component="research"))
    handler_logger = logger.bind(component="handler")

    return ChatOrchestrator(
        classifier=QueryClassifier(llm_service, settings, logger=logger.bind(component="classifier")),
        assembler=ContextAssembler(store, settings, logger=logger.bind(component="context")),
        conversations=ConversationService(store, logger=logger.bind(component="conversations")),
        handlers={
            QueryType.SIMPLE: SimpleQueryHandler(llm_service, settings, handler_logger),
            QueryType.COMPLEX: ComplexQueryHandler(llm_service, settings, handler_logger),
            QueryType.RESEARCH_NEEDED: ResearchQueryHandler(llm_service, research_service, settings, handler_logger),
        },
        verifier=CitationVerifier(research_service, settings, logger=logger.bind(component="verifier")),
        settings=settings,
        logger=logger.bind(component="orchestrator"),
    )


def setup_tracing(app: FastAPI, settings: Settings) -> None:
    """Export FastAPI spans over OTLP"""
    from opentelemetry import trace
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    provider = TracerProvider(resource=Resource.create({"service.name": settings.OTEL_SERVICE_NAME}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.OTEL_ENDPOINT, insecure=True)))
    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app)
    logger.info("Tracing enabled", endpoint=settings.OTEL_ENDPOINT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    logger.info("Starting Paralegal Router API", version=settings.API_VERSION, environment=settings.ENVIRONMENT)

    async with httpx.AsyncClient(
        timeout=settings.REQUEST_TIMEOUT,
        limits=httpx.Limits(max_connections=settings.CONNECTION_POOL_SIZE)
    ) as http_client:
        app.state.http_client = http_client
        app.state.identity_service = IdentityService(settings, http_client)
        app.state.chat_orchestrator = build_orchestrator(settings, http_client)
        logger.info("Services ready")

        yield

        logger.info("Shutting down Paralegal Router API")


def create_app(settings: Settings) -> FastAPI:
    show_docs = settings.ENVIRONMENT == "development"
    app = FastAPI(
        title="Paralegal Router API",
        description="Query routing and streaming answers for the AI paralegal assistant",
        version=settings.API_VERSION,
        lifespan=lifespan,
        docs_url="/docs" if show_docs else None,
        redoc_url="/redoc" if show_docs else None,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Conversation-Id"],
    )

    @app.middleware("http")
    async def track_requests(request: Request, call_next):
        """Per-request id, timing and Prometheus counters"""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(request_id=request_id)
        active_connections.inc()
        started = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            # The chat route sets its own id on streamed responses
            response.headers.setdefault("X-Request-ID", request_id)
            return response
        except Exception as e:
            logger.error("Request failed", method=request.method, path=request.url.path, error=str(e))
            raise
        finally:
            elapsed = time.perf_counter() - started
            request_counter.labels(method=request.method, endpoint=request.url.path, status=status).inc()
            request_duration.labels(method=request.method, endpoint=request.url.path).observe(elapsed)
            logger.info("Request completed", method=request.method, path=request.url.path, status_code=status, duration=elapsed)
            active_connections.dec()
            structlog.contextvars.unbind_contextvars("request_id")

    app.include_router(chat.router, prefix="/api/v1")
    app.include_router(health.router)

    @app.get("/")
    async def root():
        return {
            "name": app.title,
            "version": settings.API_VERSION,
            "environment": settings.ENVIRONMENT,
            "docs": app.docs_url,
            "health": "/health",
            "metrics": "/metrics",
        }

    register_exception_handlers(app, logger)

    if settings.OTEL_ENABLED:
        setup_tracing(app, settings)

    return app


app = create_app(settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "paralegal_api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
        log_config=None,  # structlog owns the root handlers
        access_log=False,
    )
