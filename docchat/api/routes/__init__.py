"""
docchat/api/routes/__init__.py

Shared FastAPI dependencies used across all route modules.

Services are created in the app lifespan and kept on ``app.state``; the
getters below hand them to routes and can be swapped out in tests through
``app.dependency_overrides``.
"""
from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from docchat.chat.service import ChatService
from docchat.config import settings
from docchat.ingestion.pipeline import IngestionPipeline
from docchat.ingestion.service import IngestService
from docchat.storage.document_store import DocumentStore

_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def require_api_key(api_key: str | None = Security(_api_key_header)) -> str:
    """FastAPI dependency that enforces X-API-Key header authentication.

    Raises HTTP 401 when the key is missing or incorrect.
    """
    if api_key != settings.api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key.",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    return api_key


def get_document_store(request: Request) -> DocumentStore:
    return request.app.state.document_store


def get_pipeline(request: Request) -> IngestionPipeline:
    return request.app.state.pipeline


def get_ingest_service(request: Request) -> IngestService:
    return request.app.state.ingest_service


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service
