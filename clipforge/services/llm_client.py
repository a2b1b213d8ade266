"""
LLM completion clients used by highlight scoring.

OpenRouterLlmClient talks to the OpenRouter chat-completions API. NullLlmClient
stands in when no API key is configured and reports itself as unavailable.
"""

import logging
from typing import Optional

import httpx

from clipforge.config import get_settings

logger = logging.getLogger(__name__)

# Responses starting with this marker are placeholders, not model output
UNAVAILABLE_MARKER = "[LLM"


class LlmUnavailableError(Exception):
    """Exception raised when the LLM capability cannot serve a request."""
    pass


class LlmClient:
    """Base LLM completion capability."""

    @property
    def is_ready(self) -> bool:
        return False

    async def try_initialize(self) -> bool:
        return self.is_ready

    async def complete(self, prompt: str) -> str:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class NullLlmClient(LlmClient):
    """LLM client used when no model is configured."""

    async def complete(self, prompt: str) -> str:
        raise LlmUnavailableError("LLM not configured")


class OpenRouterLlmClient(LlmClient):
    """
    Chat-completions client for OpenRouter.

    A single prompt is sent as one user message and the first choice's text
    content is returned.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = get_settings()
        self.api_key = api_key if api_key is not None else self.settings.openrouter_api_key
        self.model = model or self.settings.llm_model
        self.base_url = base_url or self.settings.openrouter_base_url
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def is_ready(self) -> bool:
        return bool(self.api_key)

    async def try_initialize(self) -> bool:
        if not self.is_ready:
            logger.warning("OpenRouter API key not configured, highlight scoring disabled")
            return False
        await self._get_client()
        return True

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(300.0, connect=30.0),
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "X-Title": "Clipforge Highlight Scoring",
                },
                transport=self._transport,
            )
        return self._http_client

    async def complete(self, prompt: str) -> str:
        """
        Send a prompt and return the model's text.

        Raises:
            LlmUnavailableError: If no key is configured, the request fails,
                or the response carries no usable content
        """
        if not self.is_ready:
            raise LlmUnavailableError("OpenRouter API key not configured")

        client = await self._get_client()
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.settings.llm_temperature,
            "max_tokens": self.settings.llm_max_tokens,
        }

        try:
            response = await client.post("/chat/completions", json=payload)
        except httpx.HTTPError as e:
            raise LlmUnavailableError(f"OpenRouter request failed: {e}") from e

        if response.status_code != 200:
            error_text = response.text[:500]
            raise LlmUnavailableError(
                f"OpenRouter API error ({response.status_code}): {error_text}"
            )

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LlmUnavailableError(f"Unexpected OpenRouter response: {e}") from e

        return content or ""

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


def is_unavailable_response(text: Optional[str]) -> bool:
    """True for blank responses and placeholder text emitted instead of model output."""
    if text is None or not text.strip():
        return True
    return text.lstrip().upper().startswith(UNAVAILABLE_MARKER)


def create_llm_client() -> LlmClient:
    """Build the configured LLM client."""
    settings = get_settings()
    if settings.openrouter_api_key:
        return OpenRouterLlmClient()
    return NullLlmClient()
