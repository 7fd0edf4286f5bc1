"""Pytest fixtures for paralegal router tests."""

import os
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["ANTHROPIC_API_KEY"] = "test-anthropic-key"
os.environ["PERPLEXITY_API_TOKEN"] = "test-perplexity-token"
os.environ["SUPABASE_URL"] = "http://mock-supabase:54321"
os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-service-role"
os.environ["LOG_JSON"] = "false"
os.environ["OTEL_ENABLED"] = "false"

from paralegal_api.models.chat import Conversation, Document, Message, ProviderDelta
from paralegal_api.services.auth import AuthenticatedUser, AuthenticationError
from paralegal_api.services.config import Settings
from paralegal_api.services.store import StoreError


class FakeStore:
    """In-memory stand-in for SupabaseStore."""

    def __init__(self):
        self.conversations: Dict[str, Conversation] = {}
        self.messages: List[Message] = []
        self.documents: Dict[str, Document] = {}
        self.blobs: Dict[str, bytes] = {}
        self.failing_documents = set()
        self.fail_inserts = False
        self.fail_reads = False

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        if self.fail_reads:
            raise StoreError("store unavailable")
        return self.conversations.get(conversation_id)

    async def create_conversation(self, title: str, case_id: str, owner_id: str) -> Conversation:
        if self.fail_reads:
            raise StoreError("store unavailable")
        conversation = Conversation(id=str(uuid.uuid4()), title=title, case_id=case_id, owner_id=owner_id)
        self.conversations[conversation.id] = conversation
        return conversation

    async def insert_message(self, message: Message) -> Message:
        if self.fail_inserts:
            raise StoreError("insert rejected")
        stored = message.model_copy(update={"created_at": datetime.now(timezone.utc)})
        self.messages.append(stored)
        return stored

    async def get_latest_message(self, conversation_id: str, role: str) -> Optional[Message]:
        matching = [m for m in self.messages if m.conversation_id == conversation_id and m.role == role]
        return matching[-1] if matching else None

    async def get_document_by_id(self, document_id: str) -> Optional[Document]:
        if document_id in self.failing_documents:
            raise StoreError(f"document {document_id} unavailable")
        return self.documents.get(document_id)

    async def download_blob(self, path: str) -> bytes:
        if path not in self.blobs:
            raise StoreError(f"blob {path} not found")
        return self.blobs[path]

    def messages_with_role(self, role: str) -> List[Message]:
        return [m for m in self.messages if m.role == role]


class FakeLLMService:
    """Scripted model: canned classifier reply and a fixed delta stream."""

    def __init__(self, deltas=None, reply='{"queryType": "complex"}'):
        self.deltas = deltas if deltas is not None else [
            ProviderDelta(kind="start", payload="test-model"),
            ProviderDelta(kind="text", payload="Hello"),
            ProviderDelta(kind="text", payload=" world"),
            ProviderDelta(kind="stop"),
        ]
        self.reply = reply
        self.generate_calls = []
        self.stream_calls = []
        self.streams_closed = 0

    async def generate(self, **kwargs) -> str:
        self.generate_calls.append(kwargs)
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply

    async def generate_stream(self, **kwargs):
        self.stream_calls.append(kwargs)
        try:
            for delta in self.deltas:
                if isinstance(delta, Exception):
                    raise delta
                yield delta
        finally:
            self.streams_closed += 1


class FakeIdentityService:
    """Accepts exactly one bearer token."""

    VALID_TOKEN = "valid-token"

    def __init__(self, user_id: str = "user-1"):
        self.user = AuthenticatedUser(id=user_id, email="paralegal@example.com")

    async def authenticate(self, authorization: Optional[str]) -> AuthenticatedUser:
        if authorization != f"Bearer {self.VALID_TOKEN}":
            raise AuthenticationError("Invalid or expired token")
        return self.user


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """sse-starlette keeps a module-level exit event bound to the first loop."""
    from sse_starlette.sse import AppStatus

    if hasattr(AppStatus, "should_exit_event"):
        AppStatus.should_exit_event = None
    yield


@pytest.fixture
def settings():
    """Settings isolated from any local .env file."""
    return Settings(
        _env_file=None,
        ANTHROPIC_API_KEY="test-anthropic-key",
        PERPLEXITY_API_TOKEN="test-perplexity-token",
        SUPABASE_URL="http://mock-supabase:54321",
        SUPABASE_SERVICE_ROLE_KEY="test-service-role",
    )


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def user():
    return AuthenticatedUser(id="user-1", email="paralegal@example.com")


@pytest.fixture
def make_llm():
    """Factory for scripted model services."""
    return FakeLLMService


@pytest.fixture
def sample_documents():
    """Two case documents and one from another case."""
    return [
        Document(id="doc-1", filename="lease.pdf", case_id="case-1", extracted_text="The tenant shall pay rent monthly."),
        Document(id="doc-2", filename="notice.txt", case_id="case-1", content_type="text/plain", storage_path="case-1/notice.txt"),
        Document(id="doc-3", filename="other.pdf", case_id="case-2", extracted_text="Unrelated matter."),
    ]


@pytest.fixture
def sample_answer():
    """Model answer containing citations from several families."""
    return (
        "Brown v. Board of Education, 347 U.S. 483 (1954) held segregation unconstitutional. "
        "Unauthorized access is governed by 18 U.S.C. § 1030 as amended."
    )


@pytest.fixture
def test_client(store, make_llm):
    """Create test client for FastAPI app with in-memory services."""
    from paralegal_api.main import app, build_orchestrator

    with TestClient(app) as client:
        orchestrator = build_orchestrator(app.state.settings, app.state.http_client)
        llm = make_llm(reply='{"queryType": "simple"}')
        orchestrator.classifier.llm_service = llm
        for handler in orchestrator.handlers.values():
            handler.llm_service = llm
        orchestrator.assembler.store = store
        orchestrator.conversations.store = store

        app.state.identity_service = FakeIdentityService()
        app.state.chat_orchestrator = orchestrator
        client.llm = llm
        yield client
