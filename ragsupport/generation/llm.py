"""Client for an OpenAI-compatible chat completions endpoint."""

from __future__ import annotations

from enum import Enum

import httpx
from pydantic import Field

from ragsupport.common.errors import ErrorKind, ExternalServiceError, external_error
from ragsupport.common.logging import LoggerMixin
from ragsupport.common.models import BaseModel


class MessageRole(str, Enum):
    """Message roles in a completion request."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class LLMConfig(BaseModel):
    """Generative model configuration."""

    model: str = Field(default="gpt-4o-mini")
    max_tokens: int = Field(default=2048, gt=0, description="Maximum response tokens")
    temperature: float = Field(default=0.2, ge=0, le=2)
    timeout_seconds: float = Field(default=30.0, gt=0)
    json_mode: bool = Field(default=False, description="Request a JSON object response")


class LLMClient(LoggerMixin):
    """Chat completion client.

    Generation is not idempotent, so calls are never retried here. Failures
    are raised as classified ``ExternalServiceError`` and callers decide.
    """

    def __init__(
        self,
        llm_endpoint: str | None = None,
        api_key: str | None = None,
        config: LLMConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            llm_endpoint: LLM API base URL
            api_key: API key, if the endpoint requires one
            config: Model configuration
            client: Pre-built HTTP client
        """
        self.llm_endpoint = (llm_endpoint or "https://api.openai.com/v1").rstrip("/")
        self.api_key = api_key
        self.config = config or LLMConfig()

        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout_seconds),
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def complete(self, system: str, prompt: str) -> str:
        """Run a single-turn completion.

        Args:
            system: System message
            prompt: User message

        Returns:
            Completion text

        Raises:
            ExternalServiceError: If the call fails or returns no content
        """
        client = await self._get_client()

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        messages = []
        if system:
            messages.append({"role": MessageRole.SYSTEM.value, "content": system})
        messages.append({"role": MessageRole.USER.value, "content": prompt})

        payload = {
            "model": self.config.model,
            "messages": messages,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }
        if self.config.json_mode:
            payload["response_format"] = {"type": "json_object"}

        try:
            response = await client.post(
                f"{self.llm_endpoint}/chat/completions",
                headers=headers,
                json=payload,
                timeout=self.config.timeout_seconds,
            )
            response.raise_for_status()

            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except Exception as e:
            error = external_error("llm", e)
            self.logger.warning("llm_call_failed", error=str(error), retryable=error.retryable)
            raise error from e

        if not content or not content.strip():
            raise ExternalServiceError("llm", "empty completion", kind=ErrorKind.PERMANENT)

        self.logger.debug("llm_call_completed", response_length=len(content))
        return content
