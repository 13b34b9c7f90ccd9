from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from docchat.api.middleware import RequestLoggingMiddleware
from docchat.api.routes import chat, documents, ingest
from docchat.chat.service import ChatService
from docchat.config import settings
from docchat.errors import DocChatError
from docchat.ingestion.pipeline import IngestionPipeline
from docchat.ingestion.service import IngestService
from docchat.llm.client import OllamaClient
from docchat.log import configure_logging
from docchat.storage.document_store import DocumentStore
from docchat.storage.job_store import InMemoryJobStore, JobStore, RedisJobStore

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create the stores and services on startup and stop background jobs on shutdown."""
    configure_logging()
    logger.info("starting_up", app=settings.app_name, version=settings.app_version)

    # ── Startup ──────────────────────────────────────────
    jobs: JobStore
    if settings.job_store == "redis":
        jobs = await RedisJobStore.connect(settings.redis_url, settings.job_ttl_seconds)
    else:
        jobs = InMemoryJobStore()

    store = DocumentStore(settings.upload_dir)
    pipeline = IngestionPipeline(store)
    llm = OllamaClient()

    app.state.document_store = store
    app.state.pipeline = pipeline
    app.state.ingest_service = IngestService(pipeline, jobs)
    app.state.chat_service = ChatService(store, llm)
    app.state.llm = llm

    logger.info("startup_complete", job_store=settings.job_store)
    yield

    # ── Shutdown ─────────────────────────────────────────
    logger.info("shutting_down")
    await app.state.ingest_service.aclose()
    await jobs.aclose()
    logger.info("shutdown_complete")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Upload PDF and DOCX documents and ask questions about them.",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── Middleware ────────────────────────────────────────────
# Order matters: outermost middleware runs first on request, last on response.

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Exception Handlers ───────────────────────────────────

@app.exception_handler(DocChatError)
async def docchat_exception_handler(request: Request, exc: DocChatError) -> JSONResponse:
    logger.info("request_failed", path=request.url.path, kind=exc.kind, reason=exc.reason)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": type(exc).__name__,
            "detail": exc.reason,
            "code": exc.kind,
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_exception", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred.",
            "code": "INTERNAL_ERROR",
        },
    )


# ── Health Check ─────────────────────────────────────────

@app.get("/health", tags=["Health"])
async def health_check(request: Request) -> dict:
    llm: OllamaClient | None = getattr(request.app.state, "llm", None)
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
        "llm_available": await llm.is_healthy() if llm is not None else False,
    }


# ── Routers ──────────────────────────────────────────────

app.include_router(documents.router, prefix="/api/documents", tags=["Documents"])
app.include_router(ingest.router,    prefix="/api/ingest",    tags=["Ingest"])
app.include_router(chat.router,      prefix="/api/chat",      tags=["Chat"])


def run() -> None:
    """Serve the API with uvicorn (``docchat-server`` console script)."""
    import uvicorn

    uvicorn.run("docchat.main:app", host=settings.host, port=settings.port)
