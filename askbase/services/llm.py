"""
LLM Service

Local language model integration via the Ollama API.
Generates grounded answers from assembled context and raw follow-up
suggestions for the ASKBASE pipeline.

Design:
    - Async HTTP calls via httpx (non-blocking).
    - Upstream failures (unreachable, timeout, throttling, access,
      validation) become explanatory answer text, never exceptions.
    - Context is cut to MAX_CONTEXT_CHARS before it is sent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Final

import httpx

from askbase.core.config import settings

logger = logging.getLogger(__name__)

ANSWER_PROMPT: Final[str] = """You are a helpful AI assistant that answers questions based on the provided context.
Please provide a clear, accurate, and helpful answer based on the information given.
If the context doesn't contain enough information to answer the question, please say so.

Context:
{context}

Question: {question}

Answer:"""

EMPTY_ANSWER_MESSAGE: Final[str] = (
    "I'm sorry, I wasn't able to generate a response. Please try rephrasing your question."
)
BUSY_MESSAGE: Final[str] = "The service is currently busy. Please wait a moment and try again."
ACCESS_DENIED_MESSAGE: Final[str] = (
    "Access denied. Please check the model server configuration and permissions."
)
UNAVAILABLE_MESSAGE: Final[str] = (
    "The AI service is currently unavailable. Please make sure Ollama is running "
    "(`ollama serve`) and try again."
)
EMPTY_SUGGESTIONS: Final[str] = "[]"
MALFORMED_RESPONSE_MESSAGE: Final[str] = (
    "The AI service returned an unreadable response. Please try again."
)


class MalformedResponseError(ValueError):
    """Ollama answered 2xx with a body that is not a JSON object."""


@dataclass
class LLMResponse:
    """
    Response from the LLM service.

    Attributes:
        content: Generated answer, or an explanatory message.
        is_fallback: True if the model did not produce the answer.
    """

    content: str
    is_fallback: bool


class LLMService:
    """
    Async LLM client backed by Ollama.

    Usage::

        service = LLMService()
        response = await service.generate_answer(
            question="What is the return window?",
            context=assembled_context,
        )
        if response.is_fallback:
            print("Model unavailable:", response.content)

    Args:
        base_url: Ollama API base URL (default from config).
        model: Model name to use (default from config).
        timeout: Request timeout in seconds (default from config).
        max_context_chars: Context is cut to this length (default from config).
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        max_context_chars: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or settings.OLLAMA_BASE_URL).rstrip("/")
        self._model = model or settings.OLLAMA_MODEL
        self._timeout = timeout or settings.OLLAMA_TIMEOUT
        self._max_context_chars = max_context_chars or settings.MAX_CONTEXT_CHARS
        self._transport = transport

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate_answer(self, question: str, context: str) -> LLMResponse:
        """
        Answer ``question`` from ``context``.

        Returns:
            LLMResponse; on any upstream failure ``is_fallback`` is True
            and ``content`` explains what went wrong.
        """
        if len(context) > self._max_context_chars:
            context = context[: self._max_context_chars] + "..."
        prompt = ANSWER_PROMPT.format(context=context, question=question)

        try:
            content = (await self._call_ollama(prompt)).strip()
        except (httpx.ConnectError, httpx.TimeoutException) as e:
            logger.warning("Ollama unreachable (%s): %s", type(e).__name__, e)
            return LLMResponse(content=UNAVAILABLE_MESSAGE, is_fallback=True)
        except httpx.HTTPStatusError as e:
            logger.error(
                "Ollama API error %d: %s", e.response.status_code, e.response.text
            )
            return LLMResponse(content=self._status_message(e.response), is_fallback=True)
        except httpx.HTTPError as e:
            logger.error("Ollama request failed: %s", e)
            return LLMResponse(
                content=f"An error occurred while processing your question: {e}",
                is_fallback=True,
            )
        except MalformedResponseError as e:
            logger.error("Unreadable Ollama response: %s", e)
            return LLMResponse(content=MALFORMED_RESPONSE_MESSAGE, is_fallback=True)

        if not content:
            return LLMResponse(content=EMPTY_ANSWER_MESSAGE, is_fallback=True)
        return LLMResponse(content=content, is_fallback=False)

    async def generate_suggestions(self, prompt: str) -> str:
        """Raw model text for a suggestion prompt, ``"[]"`` on any failure."""
        try:
            content = await self._call_ollama(prompt)
        except (httpx.HTTPError, MalformedResponseError) as e:
            logger.warning("Suggestion generation failed: %s", e)
            return EMPTY_SUGGESTIONS
        return content.strip() or EMPTY_SUGGESTIONS

    async def health_check(self) -> bool:
        """
        Check if Ollama is reachable.

        Returns:
            True if Ollama API responds, False otherwise.
        """
        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get(f"{self._base_url}/api/tags")
                return response.status_code == 200
        except httpx.HTTPError:
            return False

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or self._timeout,
            transport=self._transport,
        )

    async def _call_ollama(self, prompt: str) -> str:
        """
        Make the actual API call to Ollama.

        Raises:
            httpx.ConnectError: If Ollama server is unreachable.
            httpx.TimeoutException: If request times out.
            httpx.HTTPStatusError: If API returns error status.
            MalformedResponseError: If the body is not a JSON object.
        """
        payload: dict[str, Any] = {
            "model": self._model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": 0.1, "num_predict": 1500},
        }

        async with self._client() as client:
            response = await client.post(f"{self._base_url}/api/generate", json=payload)
            response.raise_for_status()
            try:
                data = response.json()
            except ValueError as e:
                raise MalformedResponseError(f"Response body is not JSON: {e}") from e

        if not isinstance(data, dict):
            raise MalformedResponseError(
                f"Expected a JSON object, got {type(data).__name__}"
            )
        content = str(data.get("response") or "")
        logger.info(
            "Ollama response generated (model=%s, length=%d)",
            self._model,
            len(content),
        )
        return content

    @staticmethod
    def _status_message(response: httpx.Response) -> str:
        status = response.status_code
        if status == 429:
            return BUSY_MESSAGE
        if status in (401, 403):
            return ACCESS_DENIED_MESSAGE
        if status in (400, 422):
            detail = response.text.strip() or response.reason_phrase
            return f"Invalid request: {detail}"
        return f"An error occurred while processing your question: HTTP {status}"
