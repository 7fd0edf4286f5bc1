"""
Web research service backed by the Perplexity chat-completions API
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import structlog

from paralegal_api.models.chat import SourceInfo
from paralegal_api.services.config import Settings

RESEARCH_SYSTEM_PROMPT = (
    "You are a specialized legal research assistant. Focus on finding accurate, up-to-date "
    "legal information from authoritative sources. When researching legal topics, prioritize "
    "current statutes, recent case law, and official legal resources. Cite your sources "
    "properly with full citations."
)


class ResearchError(Exception):
    """Research provider unavailable or returned an error"""


def first_message(data: Any) -> Dict[str, Any]:
    """Message of the first completion choice, empty for any other reply shape"""
    choices = data.get("choices") if isinstance(data, dict) else None
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return {}
    message = choices[0].get("message")
    return message if isinstance(message, dict) else {}


class ResearchService:
    """Client for legal web research restricted to authoritative domains"""

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        logger: Optional[structlog.stdlib.BoundLogger] = None
    ):
        self.settings = settings
        self.http_client = http_client or httpx.AsyncClient(timeout=60.0)
        self.logger = logger or structlog.get_logger(__name__)

    def base_payload(self, messages: List[Dict[str, str]], temperature: float, max_tokens: int) -> Dict[str, Any]:
        """Request body shared by research and verification calls"""
        return {
            "model": self.settings.RESEARCH_MODEL,
            "messages": messages,
            "search_domain_filter": list(self.settings.LEGAL_RESEARCH_DOMAINS),
            "web_search_options": {"search_context_size": "high"},
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

    async def chat(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Send one chat-completion request.

        Raises:
            ResearchError: token missing, transport failure or non-2xx status
        """
        if not self.settings.PERPLEXITY_API_TOKEN:
            raise ResearchError("PERPLEXITY_API_TOKEN is not configured")

        try:
            response = await self.http_client.post(
                f"{self.settings.PERPLEXITY_URL}/chat/completions",
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.settings.PERPLEXITY_API_TOKEN}",
                    "Content-Type": "application/json",
                },
                timeout=self.settings.REQUEST_TIMEOUT
            )
        except httpx.HTTPError as e:
            raise ResearchError(f"Research request failed: {e}") from e

        if response.status_code >= 400:
            raise ResearchError(f"Research API error {response.status_code}: {response.text[:200]}")
        return response.json()

    async def search(self, query: str) -> List[SourceInfo]:
        """
        Research a legal question.

        Returns:
            The synthesized answer as the first source, followed by the
            sources the provider cited
        """
        payload = self.base_payload(
            messages=[
                {"role": "system", "content": RESEARCH_SYSTEM_PROMPT},
                {"role": "user", "content": f"Research this legal question thoroughly: {query}"},
            ],
            temperature=0.2,
            max_tokens=2000,
        )
        data = await self.chat(payload)

        message = first_message(data)
        content = message.get("content")
        if not content or not isinstance(content, str):
            self.logger.warning("Research response had no content")
            return []

        sources = [
            SourceInfo(
                title="Perplexity Legal Research",
                url="https://www.perplexity.ai/",
                date=datetime.now(timezone.utc).isoformat(),
                snippet=content,
            )
        ]

        # Current API returns search_results; older responses nest citations in message.context
        cited = data.get("search_results") or (message.get("context") or {}).get("citations") or []
        for item in cited:
            if not isinstance(item, dict) or not item.get("title") or not item.get("url"):
                continue
            sources.append(
                SourceInfo(
                    title=item["title"],
                    url=item["url"],
                    date=item.get("date") or item.get("publishedDate") or "Unknown",
                    snippet=item.get("snippet"),
                )
            )

        self.logger.info("Research completed", sources=len(sources))
        return sources
