"""
Data models for chat functionality
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model accepting and emitting camelCase keys"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QueryType(str, Enum):
    """Processing strategy chosen for a query"""
    SIMPLE = "simple"
    COMPLEX = "complex"
    RESEARCH_NEEDED = "research_needed"


class ChatMessage(BaseModel):
    """A prior conversation turn sent by the client"""
    role: Literal["system", "user", "assistant"]
    content: str = ""
    id: Optional[str] = None


class PreloadedContext(CamelModel):
    """Snippet the user highlighted from an earlier analysis"""
    analysis_item: str = ""
    analysis_type: str = ""
    document_text: str = ""  # full text of the parent document


class ChatRequest(CamelModel):
    """Chat request model"""
    messages: List[ChatMessage] = Field(default_factory=list)
    case_id: Optional[str] = None
    conversation_id: Optional[str] = None
    document_context_ids: List[str] = Field(default_factory=list)
    active_document_id: Optional[str] = None
    preloaded_context: Optional[PreloadedContext] = None
    query: Optional[str] = None
    stream_thoughts: bool = False

    def resolve_query(self) -> str:
        """Direct query override, else the trailing user message"""
        if self.query:
            return self.query
        if self.messages and self.messages[-1].role == "user":
            return self.messages[-1].content
        return ""

    def prior_messages(self) -> List[ChatMessage]:
        """
        History handed to the model: system turns and empty turns dropped,
        and the trailing user turn removed when it repeats the query.
        """
        history = list(self.messages)
        if history and history[-1].role == "user" and history[-1].content == self.resolve_query():
            history = history[:-1]
        return [m for m in history if m.role != "system" and m.content]

    @property
    def focused_snippet(self) -> Optional[str]:
        if self.preloaded_context and self.preloaded_context.analysis_item:
            return self.preloaded_context.analysis_item
        return None


class SourceInfo(BaseModel):
    """Source discovered during web research"""
    title: str
    url: str
    date: Optional[str] = None
    snippet: Optional[str] = None


class ProviderDelta(BaseModel):
    """Vendor-neutral element of a model stream"""
    kind: Literal["thinking", "text", "start", "stop"]
    payload: str = ""


class StreamEvent(CamelModel):
    """SSE stream event"""
    type: Literal["metadata", "thought", "answer", "error", "complete"]
    response_type: Optional[str] = None  # "simple", "complex", "research"
    model: Optional[str] = None
    sources: Optional[List[Dict[str, Any]]] = None
    content: Optional[str] = None
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Conversation(BaseModel):
    """Persisted conversation owned by one user within one case"""
    id: str
    title: Optional[str] = None
    case_id: Optional[str] = None
    owner_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Message(BaseModel):
    """Persisted conversation message"""
    id: str
    conversation_id: str
    owner_id: str
    role: Literal["system", "user", "assistant", "error"]
    content: str
    model: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class Document(BaseModel):
    """Document row as seen by the context assembler"""
    id: str
    filename: str = "Untitled"
    case_id: Optional[str] = None
    extracted_text: Optional[str] = None
    content_type: Optional[str] = None
    storage_path: Optional[str] = None
