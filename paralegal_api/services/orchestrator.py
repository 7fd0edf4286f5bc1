"""
Chat orchestration: everything between an authenticated request and the
event stream returned to the client.

The citation verification job does not sleep and re-read. It waits on a
completion signal that the stream resolves once the assistant message has
been persisted (or resolves empty when there is nothing to verify).
"""
import asyncio
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Optional

import structlog

from paralegal_api.models.chat import ChatRequest, Conversation, QueryType, StreamEvent
from paralegal_api.services.auth import AuthenticatedUser
from paralegal_api.services.citations import extract_citations
from paralegal_api.services.classifier import QueryClassifier, match_forced_research
from paralegal_api.services.config import Settings
from paralegal_api.services.context import ContextAssembler
from paralegal_api.services.conversations import ConversationService
from paralegal_api.services.handlers import ResponseHandler
from paralegal_api.services.verification import CitationVerifier, format_verification_results
from paralegal_api.utils.metrics import track_classification


class InvalidChatRequest(Exception):
    """No query could be derived from the request"""


@dataclass
class PreparedChat:
    """A routed request whose answer stream has not started yet"""
    user: AuthenticatedUser
    query: str
    query_type: QueryType
    handler: ResponseHandler
    request: ChatRequest
    document_context: str
    conversation: Optional[Conversation] = None
    conversation_created: bool = False
    # Resolved with the assistant message id once persisted, or None
    persisted: asyncio.Future = field(default_factory=lambda: asyncio.get_running_loop().create_future())

    @property
    def conversation_id(self) -> Optional[str]:
        return self.conversation.id if self.conversation else None

    @property
    def needs_verification(self) -> bool:
        return self.conversation is not None and self.query_type != QueryType.SIMPLE


class ChatOrchestrator:
    """Routes chat requests to response handlers and manages their side effects"""

    def __init__(
        self,
        classifier: QueryClassifier,
        assembler: ContextAssembler,
        conversations: ConversationService,
        handlers: Dict[QueryType, ResponseHandler],
        verifier: CitationVerifier,
        settings: Settings,
        logger: Optional[structlog.stdlib.BoundLogger] = None
    ):
        self.classifier = classifier
        self.assembler = assembler
        self.conversations = conversations
        self.handlers = handlers
        self.verifier = verifier
        self.settings = settings
        self.logger = logger or structlog.get_logger(__name__)

    async def route(self, query: str) -> QueryType:
        """Forced research phrases win over the classifier"""
        phrase = match_forced_research(query)
        if phrase:
            self.logger.info("Explicit search request detected, forcing research", phrase=phrase)
            track_classification(QueryType.RESEARCH_NEEDED.value, "forced")
            return QueryType.RESEARCH_NEEDED
        return await self.classifier.classify(query)

    async def prepare(self, request: ChatRequest, user: AuthenticatedUser) -> PreparedChat:
        """
        Run every step that must finish before streaming starts.

        Raises:
            InvalidChatRequest: no query in the request
            ConversationAccessDenied: conversation owned by another user
            StoreError: conversation could not be fetched or created
        """
        query = request.resolve_query()
        if not query:
            raise InvalidChatRequest("No query provided")

        self.logger.info(
            "Chat request",
            user_id=user.id,
            messages=len(request.messages),
            case_id=request.case_id,
            conversation_id=request.conversation_id,
            documents=len(request.document_context_ids)
        )

        conversation, created = await self.conversations.resolve(
            request.conversation_id, request.case_id, user.id, query
        )
        if conversation:
            await self.conversations.save_user_message(
                conversation_id=conversation.id,
                owner_id=user.id,
                content=query,
                document_context_ids=request.document_context_ids,
                active_document_id=request.active_document_id,
                preloaded_context=request.preloaded_context,
            )

        document_context = await self.assembler.assemble(
            request.case_id, request.document_context_ids, request.preloaded_context
        )

        query_type = await self.route(query)
        handler = self.handlers.get(query_type, self.handlers[QueryType.COMPLEX])
        self.logger.info("Routing query", query_type=query_type.value, handler=handler.response_type)

        return PreparedChat(
            user=user,
            query=query,
            query_type=query_type,
            handler=handler,
            request=request,
            document_context=document_context,
            conversation=conversation,
            conversation_created=created,
        )

    async def stream(self, prepared: PreparedChat) -> AsyncIterator[StreamEvent]:
        """
        Relay handler events, then persist the answer and publish the
        completion signal.
        """
        answer_parts = []
        model = None
        completed = False
        events = prepared.handler.handle(
            query=prepared.query,
            prior_messages=prepared.request.prior_messages(),
            document_context=prepared.document_context,
            stream_thoughts=prepared.request.stream_thoughts,
            focused_snippet=prepared.request.focused_snippet,
        )
        try:
            async with aclosing(events):
                async for event in events:
                    if event.type == "metadata":
                        model = event.model
                    elif event.type == "answer":
                        answer_parts.append(event.content or "")
                    elif event.type == "complete":
                        completed = True
                    yield event

            message_id = None
            answer = "".join(answer_parts)
            if completed and answer and prepared.conversation:
                message = await self.conversations.save_assistant_message(
                    conversation_id=prepared.conversation.id,
                    owner_id=prepared.user.id,
                    content=answer,
                    model=model or "",
                    response_type=prepared.handler.response_type,
                )
                message_id = message.id if message else None
            if not prepared.persisted.done():
                prepared.persisted.set_result(message_id)
        finally:
            if not prepared.persisted.done():
                prepared.persisted.set_result(None)

    async def verify_citations(self, prepared: PreparedChat) -> None:
        """
        Background job: verify citations in the persisted answer and append
        the summary as a system message. Failures are logged only.
        """
        if not prepared.needs_verification:
            return

        conversation_id = prepared.conversation_id
        try:
            message_id = await asyncio.wait_for(
                asyncio.shield(prepared.persisted),
                timeout=self.settings.VERIFICATION_WAIT_TIMEOUT
            )
            if message_id is None:
                self.logger.info("No persisted answer to verify", conversation_id=conversation_id)
                return

            message = await self.conversations.latest_assistant_message(conversation_id)
            if not message or not message.content:
                return

            citations = extract_citations(message.content)
            if not citations:
                self.logger.info("No citations found to verify in response", conversation_id=conversation_id)
                return

            results = await self.verifier.verify_all(citations)
            summary = format_verification_results(results)
            if summary:
                await self.conversations.save_verification_message(
                    conversation_id=conversation_id,
                    owner_id=prepared.user.id,
                    content=summary,
                )
                self.logger.info(
                    "Citation verification stored",
                    conversation_id=conversation_id,
                    verified=len(results)
                )
        except Exception as e:
            self.logger.error("Error in citation verification", conversation_id=conversation_id, error=str(e))
