"""
LLM service for generating responses with the Anthropic Messages API
"""
import json
from typing import AsyncGenerator, Dict, List, Optional
import httpx
import structlog

from paralegal_api.models.chat import ProviderDelta
from paralegal_api.services.config import Settings


class LLMProviderError(Exception):
    """Model provider unavailable or returned an error"""


class LLMService:
    """Service for LLM generation with Anthropic models"""

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        logger: Optional[structlog.stdlib.BoundLogger] = None
    ):
        self.settings = settings
        self.http_client = http_client or httpx.AsyncClient(timeout=60.0)
        self.logger = logger or structlog.get_logger(__name__)

    def _headers(self) -> Dict[str, str]:
        if not self.settings.ANTHROPIC_API_KEY:
            raise LLMProviderError("ANTHROPIC_API_KEY is not configured")
        return {
            "x-api-key": self.settings.ANTHROPIC_API_KEY,
            "anthropic-version": self.settings.ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    def _build_payload(
        self,
        model: str,
        system: str,
        messages: List[Dict[str, str]],
        max_tokens: int,
        temperature: float,
        thinking_budget: Optional[int] = None,
        stream: bool = False
    ) -> Dict:
        payload = {
            "model": model,
            "system": system,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": stream,
        }
        if thinking_budget:
            payload["thinking"] = {"type": "enabled", "budget_tokens": thinking_budget}
        return payload

    async def generate_stream(
        self,
        model: str,
        system: str,
        messages: List[Dict[str, str]],
        max_tokens: int,
        temperature: float,
        thinking_budget: Optional[int] = None
    ) -> AsyncGenerator[ProviderDelta, None]:
        """
        Stream a completion as provider-neutral deltas.

        Raises LLMProviderError when the stream cannot be opened or the
        provider reports an error mid-stream. Closing the generator closes
        the underlying HTTP stream.
        """
        payload = self._build_payload(
            model, system, messages, max_tokens, temperature, thinking_budget, stream=True
        )
        headers = self._headers()

        async with self.http_client.stream(
            "POST",
            f"{self.settings.ANTHROPIC_BASE_URL}/v1/messages",
            json=payload,
            headers=headers,
            timeout=self.settings.STREAM_TIMEOUT
        ) as response:
            if response.status_code >= 400:
                body = (await response.aread()).decode("utf-8", errors="replace")
                self.logger.error(
                    "LLM stream request failed",
                    status=response.status_code,
                    model=model,
                    body=body[:500]
                )
                raise LLMProviderError(f"Model provider returned {response.status_code}: {body[:200]}")

            async for line in response.aiter_lines():
                if not line.startswith("data: "):
                    continue
                try:
                    event = json.loads(line[6:])
                except json.JSONDecodeError:
                    continue

                delta = self._to_delta(event)
                if delta is not None:
                    yield delta
                    if delta.kind == "stop":
                        return

    def _to_delta(self, event: Dict) -> Optional[ProviderDelta]:
        """Map one provider SSE event to a ProviderDelta"""
        event_type = event.get("type")

        if event_type == "content_block_delta":
            delta = event.get("delta", {})
            if delta.get("type") == "thinking_delta":
                return ProviderDelta(kind="thinking", payload=delta.get("thinking", ""))
            if delta.get("type") == "text_delta":
                return ProviderDelta(kind="text", payload=delta.get("text", ""))
            return None
        if event_type == "message_start":
            return ProviderDelta(kind="start", payload=event.get("message", {}).get("model", ""))
        if event_type == "message_stop":
            return ProviderDelta(kind="stop")
        if event_type == "error":
            error = event.get("error", {})
            raise LLMProviderError(error.get("message", "Unknown provider error"))

        # ping, content_block_start/stop, message_delta
        return None

    async def generate(
        self,
        model: str,
        system: str,
        messages: List[Dict[str, str]],
        max_tokens: int,
        temperature: float
    ) -> str:
        """
        Generate complete response from LLM (non-streaming)
        """
        payload = self._build_payload(model, system, messages, max_tokens, temperature)

        try:
            response = await self.http_client.post(
                f"{self.settings.ANTHROPIC_BASE_URL}/v1/messages",
                json=payload,
                headers=self._headers(),
                timeout=self.settings.REQUEST_TIMEOUT
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise LLMProviderError(f"Model request failed: {e}") from e

        result = response.json()
        return "".join(
            block.get("text", "")
            for block in result.get("content", [])
            if block.get("type") == "text"
        ).strip()
