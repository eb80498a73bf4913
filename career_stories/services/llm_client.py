"""
Language Model Client

Thin wrapper around the OpenAI chat completions API used by narrative
generation and derivations.

Features:
- Lazy client creation (no network or key lookup until first call)
- Per-call timeout
- Retry with exponential backoff on transient failures
- JSON mode with markdown code-fence tolerance

Every failure surfaces as ServiceUnavailableError so callers can decide
whether to fall through to another tier or fail the request.
"""

import json
import logging
import time
from typing import Any, Dict, List, Optional

from openai import (
    OpenAI,
    APIConnectionError,
    APITimeoutError,
    InternalServerError,
    RateLimitError,
)

from career_stories.config import LLM_MAX_RETRIES, LLM_TIMEOUT_SECONDS, OPENAI_MODEL, llm_enabled
from career_stories.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (RateLimitError, APITimeoutError, InternalServerError, APIConnectionError)

Messages = List[Dict[str, str]]


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` (or bare ```) block if present."""
    if "```json" in text:
        return text.split("```json")[1].split("```")[0].strip()
    if "```" in text:
        return text.split("```")[1].split("```")[0].strip()
    return text.strip()


class LLMClient:
    """Chat completion calls with retry, timeout and JSON parsing."""

    def __init__(
        self,
        model: str = OPENAI_MODEL,
        timeout: float = LLM_TIMEOUT_SECONDS,
        max_retries: int = LLM_MAX_RETRIES,
        client: Optional[OpenAI] = None,
    ):
        """
        Args:
            model: OpenAI model name
            timeout: Timeout for each call in seconds
            max_retries: Attempts before giving up on transient errors
            client: Pre-built OpenAI client (tests inject a mock here)
        """
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self._client = client

    @property
    def client(self) -> OpenAI:
        """Lazy-initialize OpenAI client."""
        if self._client is None:
            self._client = OpenAI()
        return self._client

    @property
    def is_available(self) -> bool:
        return self._client is not None or llm_enabled()

    def complete(
        self,
        messages: Messages,
        temperature: float = 0.7,
        max_tokens: int = 1500,
    ) -> str:
        """
        Return the trimmed text of a chat completion.

        Raises:
            ServiceUnavailableError: call failed or the reply was blank
        """
        text = self._call_with_retry(messages, temperature, max_tokens, json_mode=False).strip()
        if not text:
            raise ServiceUnavailableError("Language model returned blank text")
        return text

    def generate_json(
        self,
        messages: Messages,
        temperature: float = 0.3,
        max_tokens: int = 2000,
    ) -> Dict[str, Any]:
        """
        Return the parsed JSON object of a chat completion.

        Raises:
            ServiceUnavailableError: call failed or output was not a JSON object
        """
        text = self._call_with_retry(messages, temperature, max_tokens, json_mode=True)
        try:
            data = json.loads(strip_code_fences(text))
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse LLM response as JSON: {e}")
            raise ServiceUnavailableError(f"Invalid JSON response: {e}")
        if not isinstance(data, dict):
            raise ServiceUnavailableError("LLM response was not a JSON object")
        return data

    def _call_with_retry(
        self,
        messages: Messages,
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> str:
        base_delay = 1.0  # seconds

        for attempt in range(self.max_retries):
            try:
                return self._call(messages, temperature, max_tokens, json_mode)
            except TRANSIENT_ERRORS as e:
                if attempt == self.max_retries - 1:
                    logger.warning(f"LLM call failed after {self.max_retries} attempts: {e}")
                    raise ServiceUnavailableError(
                        f"Language model unavailable: {type(e).__name__}"
                    ) from e
                delay = base_delay * (2 ** attempt)  # 1s, 2s, 4s
                logger.info(
                    f"Transient error on attempt {attempt + 1}, "
                    f"retrying in {delay}s: {type(e).__name__}"
                )
                time.sleep(delay)
            except ServiceUnavailableError:
                raise
            except Exception as e:
                # Non-transient errors - don't retry
                logger.warning(f"Non-transient LLM error: {e}")
                raise ServiceUnavailableError(f"Language model error: {e}") from e

        raise ServiceUnavailableError("Language model unavailable")

    def _call(
        self,
        messages: Messages,
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> str:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "timeout": self.timeout,
            "messages": messages,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = self.client.chat.completions.create(**kwargs)

        content = response.choices[0].message.content
        if content is None:
            raise ServiceUnavailableError("OpenAI returned empty content")
        return content
