"""
Supabase-backed storage for conversations, messages and documents.

Talks to PostgREST and Storage over HTTP with the service role key.
"""
from typing import Any, Dict, List, Optional

import httpx

from paralegal_api.models.chat import Conversation, Document, Message
from paralegal_api.services.config import Settings


class StoreError(Exception):
    """Persistence backend unavailable or rejected a request"""


class SupabaseStore:
    """PostgREST/Storage client for the tables the router needs"""

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.http_client = http_client or httpx.AsyncClient(timeout=30.0)
        self.rest_url = settings.get_supabase_rest_url()

    def _headers(self, **extra: str) -> Dict[str, str]:
        key = self.settings.SUPABASE_SERVICE_ROLE_KEY or ""
        headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }
        headers.update(extra)
        return headers

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self.http_client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise StoreError(f"{method} {url} failed: {e}") from e
        if response.status_code >= 400:
            raise StoreError(f"{method} {url} returned {response.status_code}: {response.text[:200]}")
        return response

    async def _select(self, table: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        response = await self._request(
            "GET", f"{self.rest_url}/{table}", params=params, headers=self._headers()
        )
        return response.json()

    async def _insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._request(
            "POST",
            f"{self.rest_url}/{table}",
            json=row,
            headers=self._headers(Prefer="return=representation"),
        )
        rows = response.json()
        if not rows:
            raise StoreError(f"Insert into {table} returned no row")
        return rows[0]

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        rows = await self._select("conversations", {"id": f"eq.{conversation_id}", "select": "*"})
        return Conversation(**rows[0]) if rows else None

    async def create_conversation(self, title: str, case_id: str, owner_id: str) -> Conversation:
        row = await self._insert(
            "conversations", {"title": title, "case_id": case_id, "owner_id": owner_id}
        )
        return Conversation(**row)

    async def insert_message(self, message: Message) -> Message:
        row = await self._insert("messages", message.model_dump(mode="json", exclude_none=True))
        return Message(**row)

    async def get_latest_message(self, conversation_id: str, role: str) -> Optional[Message]:
        rows = await self._select(
            "messages",
            {
                "conversation_id": f"eq.{conversation_id}",
                "role": f"eq.{role}",
                "order": "created_at.desc",
                "limit": "1",
                "select": "*",
            },
        )
        return Message(**rows[0]) if rows else None

    async def get_document_by_id(self, document_id: str) -> Optional[Document]:
        rows = await self._select(
            "documents",
            {
                "id": f"eq.{document_id}",
                "select": "id,filename,case_id,extracted_text,content_type,storage_path",
            },
        )
        return Document(**rows[0]) if rows else None

    async def download_blob(self, path: str) -> bytes:
        response = await self._request(
            "GET",
            f"{self.settings.get_supabase_storage_url()}/{path.lstrip('/')}",
            headers=self._headers(),
        )
        return response.content
