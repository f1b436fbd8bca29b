"""Client wrapper for OpenAI-compatible chat-completion services."""

from __future__ import annotations

import time
from typing import Any, Dict

import httpx

from mr_reviewer.errors import TransportError
from mr_reviewer.logger import get_logger, log_with_context
from mr_reviewer.models.review import CompletionRequest

logger = get_logger()

DEFAULT_MAX_TOKENS = 8192


class CompletionAPIError(TransportError):
    """Raised when the completion service responds with an error."""


class CompletionClient:
    def __init__(
        self,
        api_key: str,
        *,
        model: str,
        base_url: str = "https://api.openai.com/v1",
        max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._model = model
        self._max_tokens = max_tokens
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )
        self._owns_client = client is None

    @property
    def model(self) -> str:
        return self._model

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def complete(self, request: CompletionRequest) -> str:
        """Send one review request with deterministic sampling and return the reply text."""

        ctx_logger = log_with_context(logger, model=self._model)
        body = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "temperature": 0,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_prompt},
            ],
        }
        ctx_logger.debug(
            f"Completion request: system_prompt_length={len(request.system_prompt)}, "
            f"user_prompt_length={len(request.user_prompt)}"
        )

        start_time = time.time()
        try:
            response = await self._client.post("/chat/completions", json=body)
        except httpx.HTTPError as exc:
            raise CompletionAPIError(f"Completion request failed: {exc}") from exc
        _raise_for_status("create chat completion", response)

        try:
            data = response.json()
        except ValueError as exc:
            raise CompletionAPIError(
                "Completion service returned invalid JSON.",
                response.status_code,
                response.text,
            ) from exc

        content = _extract_content(data)
        usage = (data.get("usage") or {}) if isinstance(data, dict) else {}
        ctx_logger.info(
            f"Completion received in {time.time() - start_time:.3f}s "
            f"(chars={len(content)}, prompt_tokens={usage.get('prompt_tokens')}, "
            f"completion_tokens={usage.get('completion_tokens')})"
        )
        return content


def _raise_for_status(action: str, response: httpx.Response) -> None:
    if response.status_code < 400:
        return
    detail: Any | None
    try:
        detail = response.json()
    except ValueError:
        detail = response.text
    raise CompletionAPIError(
        f"Failed to {action}: status={response.status_code}, detail={detail}",
        response.status_code,
        detail,
    )


def _extract_content(data: Any) -> str:
    if not isinstance(data, dict):
        return ""
    choices = data.get("choices") or []
    if not choices:
        return ""
    message: Dict[str, Any] = choices[0].get("message") or {}
    content = message.get("content")
    return content if isinstance(content, str) else ""
