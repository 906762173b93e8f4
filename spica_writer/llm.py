"""LLM client: HTTP connection to a chat or text-completion backend.

Prompt submission injects an LLM callable matching the protocol:

    async def __call__(self, stage: str, system_prompt: str, user_prompt: str) -> str: ...

`stage` names the request kind ("scene_timeline", "event_description").
Implementations may use it for logging or routing.

HttpLLM supports two wire formats, selected by provider_format:

    "openai"     POST /v1/chat/completions  {"model", "messages": [system, user]}
                 Response: {"choices": [{"message": {"content": "..."}}]}
    "koboldcpp"  POST /api/v1/generate      {"prompt": system + user}
                 Response: {"results": [{"text": "..."}]}

Tests use a stub callable instead.
"""

from __future__ import annotations

import logging
from typing import Literal, Protocol

import httpx

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol: every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(self, stage: str, system_prompt: str, user_prompt: str) -> str: ...


# ---------------------------------------------------------------------------
# HttpLLM: connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["openai", "koboldcpp"]


class HttpLLM:
    """Async HTTP client for chat and text-completion backends.

    Args:
        provider_url:    Base URL of the backend, e.g. "https://api.openai.com".
        api_key:         Bearer token, or empty string if not required.
        provider_format: Wire format to use. Defaults to "openai".
        model:           Model identifier, sent by the openai format.
        timeout:         HTTP timeout in seconds. Defaults to 120.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "openai",
        model: str = "",
        timeout: float = 120.0,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, system_prompt: str, user_prompt: str) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        if self._format == "openai":
            url = f"{self._base_url}/v1/chat/completions"
            body: dict = {
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
            }
            if self._model:
                body["model"] = self._model
            return url, body

        # koboldcpp has no system role
        url = f"{self._base_url}/api/v1/generate"
        return url, {"prompt": f"{system_prompt}\n\n{user_prompt}"}

    def _parse_response(self, data: dict) -> str:
        """Extract the completion text from the response body."""
        if self._format == "openai":
            choices = data.get("choices")
            if not choices or "content" not in (choices[0].get("message") or {}):
                raise LLMError(
                    "Unexpected response format from OpenAI-compatible backend",
                    code="BAD_FORMAT",
                )
            return choices[0]["message"]["content"]

        results = data.get("results")
        if not results or "text" not in results[0]:
            raise LLMError("Unexpected response format from KoboldCpp backend", code="BAD_FORMAT")
        return results[0]["text"]

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        """Best-effort message from an error body ({"error": {"message": ...}})."""
        try:
            error = response.json().get("error")
        except ValueError:
            return ""
        if isinstance(error, dict) and error.get("message"):
            return f": {error['message']}"
        return ""

    async def __call__(self, stage: str, system_prompt: str, user_prompt: str) -> str:
        url, body = self._build_request(system_prompt, user_prompt)
        logger.debug(
            "llm call stage=%s url=%s system_len=%d prompt_len=%d",
            stage, url, len(system_prompt), len(user_prompt),
        )

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(
                f"Cannot connect to LLM backend at {self._base_url}", code="CONNECT_ERROR"
            ) from e
        except httpx.HTTPStatusError as e:
            raise LLMError(
                f"LLM backend returned HTTP {e.response.status_code}{self._error_detail(e.response)}",
                code="HTTP_ERROR",
            ) from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {self._timeout}s", code="TIMEOUT") from e

        text = self._parse_response(resp.json())
        logger.debug("llm response stage=%s len=%d", stage, len(text))
        return text


# ---------------------------------------------------------------------------
# LLMError: raised by HttpLLM for all connection and protocol failures
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
