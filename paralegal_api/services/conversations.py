"""
Conversation and message persistence for the chat router
"""
import uuid
from typing import Any, Dict, List, Optional, Protocol, Tuple

import structlog

from paralegal_api.models.chat import Conversation, Message, PreloadedContext

TITLE_PREFIX_CHARS = 50
SNIPPET_METADATA_CHARS = 200


class ConversationAccessDenied(Exception):
    """Conversation belongs to another user"""


class ConversationStore(Protocol):
    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]: ...

    async def create_conversation(self, title: str, case_id: str, owner_id: str) -> Conversation: ...

    async def insert_message(self, message: Message) -> Message: ...

    async def get_latest_message(self, conversation_id: str, role: str) -> Optional[Message]: ...


def conversation_title(query: str) -> str:
    return f"Chat: {query[:TITLE_PREFIX_CHARS]}..."


class ConversationService:
    """Create-or-fetch conversations and append messages"""

    def __init__(self, store: ConversationStore, logger: Optional[structlog.stdlib.BoundLogger] = None):
        self.store = store
        self.logger = logger or structlog.get_logger(__name__)

    async def resolve(
        self,
        conversation_id: Optional[str],
        case_id: Optional[str],
        owner_id: str,
        query: str
    ) -> Tuple[Optional[Conversation], bool]:
        """
        Find the conversation a request belongs to, creating one when needed.

        An unknown conversation id is dropped and treated as absent. A new
        conversation is only created when a case id is present.

        Returns:
            (conversation or None, whether it was created by this call)

        Raises:
            ConversationAccessDenied: the conversation has another owner
            StoreError: the store could not be read or written
        """
        if conversation_id:
            conversation = await self.store.get_conversation(conversation_id)
            if conversation is None:
                self.logger.warning("Conversation not found, ignoring id", conversation_id=conversation_id)
            elif conversation.owner_id != owner_id:
                self.logger.error(
                    "Conversation owned by another user",
                    conversation_id=conversation_id,
                    owner_id=owner_id
                )
                raise ConversationAccessDenied("Access denied to conversation")
            else:
                return conversation, False

        if not case_id:
            return None, False

        conversation = await self.store.create_conversation(
            title=conversation_title(query), case_id=case_id, owner_id=owner_id
        )
        self.logger.info("Created conversation", conversation_id=conversation.id, case_id=case_id)
        return conversation, True

    async def _insert(self, message: Message) -> Optional[Message]:
        try:
            return await self.store.insert_message(message)
        except Exception as e:
            self.logger.error(
                "Failed to save message",
                conversation_id=message.conversation_id,
                role=message.role,
                error=str(e)
            )
            return None

    async def save_user_message(
        self,
        conversation_id: str,
        owner_id: str,
        content: str,
        document_context_ids: Optional[List[str]] = None,
        active_document_id: Optional[str] = None,
        preloaded_context: Optional[PreloadedContext] = None
    ) -> Optional[Message]:
        metadata: Dict[str, Any] = {}
        if document_context_ids:
            metadata["document_context"] = ",".join(document_context_ids)
        if active_document_id:
            metadata["active_document_id"] = active_document_id
        if preloaded_context:
            metadata["preloaded_analysis_type"] = preloaded_context.analysis_type
            metadata["preloaded_analysis_item_snippet"] = preloaded_context.analysis_item[:SNIPPET_METADATA_CHARS]

        return await self._insert(
            Message(
                id=str(uuid.uuid4()),
                conversation_id=conversation_id,
                owner_id=owner_id,
                role="user",
                content=content,
                metadata=metadata,
            )
        )

    async def save_assistant_message(
        self,
        conversation_id: str,
        owner_id: str,
        content: str,
        model: str,
        response_type: str
    ) -> Optional[Message]:
        return await self._insert(
            Message(
                id=str(uuid.uuid4()),
                conversation_id=conversation_id,
                owner_id=owner_id,
                role="assistant",
                content=content,
                model=model,
                metadata={"response_type": response_type},
            )
        )

    async def save_verification_message(self, conversation_id: str, owner_id: str, content: str) -> Optional[Message]:
        return await self._insert(
            Message(
                id=str(uuid.uuid4()),
                conversation_id=conversation_id,
                owner_id=owner_id,
                role="system",
                content=content,
                metadata={"type": "citation_verification"},
            )
        )

    async def latest_assistant_message(self, conversation_id: str) -> Optional[Message]:
        return await self.store.get_latest_message(conversation_id, "assistant")
