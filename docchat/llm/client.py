from typing import Any

import httpx
import structlog

from docchat.config import settings

logger = structlog.get_logger(__name__)


class OllamaClient:
    """Async client for the parts of the Ollama REST API DocChat uses: chat and model listing."""

    def __init__(
        self,
        base_url: str = settings.ollama_base_url,
        timeout: float = settings.ollama_request_timeout,
        model: str = settings.ollama_chat_model,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = httpx.Timeout(timeout, connect=10.0)
        self._transport = transport
        self.model = model

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        )

    # ── Document Q&A ─────────────────────────────────────
    async def chat(
        self,
        messages: list[dict[str, str]],
        temperature: float = 0.2,
        max_tokens: int = 1024,
    ) -> str:
        """Run one non-streaming chat completion with the configured model.

        Raises:
            httpx.HTTPError: Ollama is unreachable or answered with an error status.
            ValueError:      The reply carried no assistant text.
        """
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }
        async with self._client() as client:
            response = await client.post("/api/chat", json=payload)
            response.raise_for_status()
            data = response.json()

        content = (data.get("message") or {}).get("content") or ""
        if not content.strip():
            raise ValueError(f"Ollama returned an empty reply from model '{self.model}'.")
        logger.debug(
            "ollama_chat",
            model=self.model,
            turns=len(messages),
            eval_count=data.get("eval_count"),
        )
        return content

    # ── Health Check ─────────────────────────────────────
    async def is_healthy(self) -> bool:
        """True when Ollama answers and the configured chat model is pulled."""
        try:
            async with self._client() as client:
                response = await client.get("/api/tags")
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError):
            return False

        names = {entry.get("name") for entry in data.get("models", [])}
        available = self.model in names or f"{self.model}:latest" in names
        if not available:
            logger.warning("ollama_model_missing", model=self.model, installed=sorted(n for n in names if n))
        return available
