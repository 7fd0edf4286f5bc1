"""Tests for request orchestration and background citation verification."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from paralegal_api.models.chat import ChatMessage, ChatRequest, Conversation, ProviderDelta, QueryType
from paralegal_api.models.citation import VerificationResult
from paralegal_api.services.classifier import QueryClassifier
from paralegal_api.services.context import ContextAssembler
from paralegal_api.services.conversations import ConversationAccessDenied, ConversationService
from paralegal_api.services.handlers import ComplexQueryHandler, ResearchQueryHandler, SimpleQueryHandler
from paralegal_api.services.orchestrator import ChatOrchestrator, InvalidChatRequest


@pytest.fixture
def verifier():
    verifier = MagicMock()
    verifier.verify_all = AsyncMock(side_effect=lambda citations: [
        VerificationResult(citation=c.full, verified=True) for c in citations[:3]
    ])
    return verifier


@pytest.fixture
def research():
    research = MagicMock()
    research.search = AsyncMock(return_value=[])
    return research


def build(settings, store, llm, research, verifier):
    return ChatOrchestrator(
        classifier=QueryClassifier(llm, settings),
        assembler=ContextAssembler(store, settings),
        conversations=ConversationService(store),
        handlers={
            QueryType.SIMPLE: SimpleQueryHandler(llm, settings),
            QueryType.COMPLEX: ComplexQueryHandler(llm, settings),
            QueryType.RESEARCH_NEEDED: ResearchQueryHandler(llm, research, settings),
        },
        verifier=verifier,
        settings=settings,
    )


async def drain(orchestrator, prepared):
    return [event async for event in orchestrator.stream(prepared)]


def request_for(query, **kwargs):
    return ChatRequest(messages=[ChatMessage(role="user", content=query)], **kwargs)


def test_query_resolution():
    """Test the direct query wins and the duplicate trailing turn is dropped."""
    request = ChatRequest(
        messages=[
            ChatMessage(role="system", content="ignored"),
            ChatMessage(role="user", content="First"),
            ChatMessage(role="assistant", content=""),
            ChatMessage(role="user", content="Second"),
        ],
    )
    assert request.resolve_query() == "Second"
    assert [m.content for m in request.prior_messages()] == ["First"]

    override = ChatRequest(messages=[ChatMessage(role="user", content="Second")], query="Override")
    assert override.resolve_query() == "Override"
    assert [m.content for m in override.prior_messages()] == ["Second"]

    trailing_assistant = ChatRequest(messages=[ChatMessage(role="assistant", content="Hi")])
    assert trailing_assistant.resolve_query() == ""


def test_request_accepts_camel_case():
    request = ChatRequest.model_validate({
        "messages": [{"role": "user", "content": "q"}],
        "caseId": "case-1",
        "documentContextIds": ["doc-1"],
        "streamThoughts": True,
        "preloadedContext": {"analysisItem": "Clause 4", "analysisType": "risk"},
    })

    assert request.case_id == "case-1"
    assert request.document_context_ids == ["doc-1"]
    assert request.stream_thoughts is True
    assert request.focused_snippet == "Clause 4"


@pytest.mark.asyncio
async def test_empty_query_rejected(settings, store, make_llm, research, verifier, user):
    orchestrator = build(settings, store, make_llm(), research, verifier)

    with pytest.raises(InvalidChatRequest):
        await orchestrator.prepare(ChatRequest(messages=[]), user)


@pytest.mark.asyncio
async def test_forced_research_skips_classifier(settings, store, make_llm, research, verifier, user):
    llm = make_llm(reply='{"queryType": "simple"}')
    orchestrator = build(settings, store, llm, research, verifier)

    prepared = await orchestrator.prepare(request_for("Please search the web for eviction moratoriums"), user)

    assert prepared.query_type == QueryType.RESEARCH_NEEDED
    assert prepared.handler.response_type == "research"
    assert llm.generate_calls == []


@pytest.mark.asyncio
async def test_new_conversation_created_for_case(settings, store, make_llm, research, verifier, user):
    orchestrator = build(settings, store, make_llm(), research, verifier)

    prepared = await orchestrator.prepare(request_for("Is clause 4 enforceable?", case_id="case-1"), user)

    assert prepared.conversation_created is True
    assert prepared.conversation_id in store.conversations
    user_messages = store.messages_with_role("user")
    assert [m.content for m in user_messages] == ["Is clause 4 enforceable?"]


@pytest.mark.asyncio
async def test_existing_conversation_reused(settings, store, make_llm, research, verifier, user):
    store.conversations["conv-1"] = Conversation(id="conv-1", case_id="case-1", owner_id=user.id)
    orchestrator = build(settings, store, make_llm(), research, verifier)

    prepared = await orchestrator.prepare(
        request_for("Follow up", case_id="case-1", conversation_id="conv-1"), user
    )

    assert prepared.conversation_id == "conv-1"
    assert prepared.conversation_created is False
    assert len(store.conversations) == 1


@pytest.mark.asyncio
async def test_repeated_turns_share_owned_conversation(settings, store, make_llm, research, verifier, user):
    store.conversations["conv-1"] = Conversation(id="conv-1", case_id="case-1", owner_id=user.id)
    orchestrator = build(settings, store, make_llm(), research, verifier)

    first = await orchestrator.prepare(request_for("First", case_id="case-1", conversation_id="conv-1"), user)
    second = await orchestrator.prepare(request_for("Second", case_id="case-1", conversation_id="conv-1"), user)

    assert first.conversation_id == second.conversation_id == "conv-1"
    assert len(store.conversations) == 1
    assert [m.content for m in store.messages_with_role("user")] == ["First", "Second"]


@pytest.mark.asyncio
async def test_turns_without_conversation_id_start_new_ones(settings, store, make_llm, research, verifier, user):
    orchestrator = build(settings, store, make_llm(), research, verifier)

    first = await orchestrator.prepare(request_for("First", case_id="case-1"), user)
    second = await orchestrator.prepare(request_for("Second", case_id="case-1"), user)

    assert first.conversation_created and second.conversation_created
    assert first.conversation_id != second.conversation_id
    assert len(store.conversations) == 2


@pytest.mark.asyncio
async def test_foreign_conversation_rejected(settings, store, make_llm, research, verifier, user):
    store.conversations["conv-1"] = Conversation(id="conv-1", case_id="case-1", owner_id="someone-else")
    orchestrator = build(settings, store, make_llm(), research, verifier)

    with pytest.raises(ConversationAccessDenied):
        await orchestrator.prepare(request_for("q", case_id="case-1", conversation_id="conv-1"), user)


@pytest.mark.asyncio
async def test_stream_persists_answer_and_signals(settings, store, make_llm, research, verifier, user):
    """Test the answer is saved and the completion signal carries its id."""
    orchestrator = build(settings, store, make_llm(), research, verifier)
    prepared = await orchestrator.prepare(request_for("Is clause 4 enforceable?", case_id="case-1"), user)

    events = await drain(orchestrator, prepared)

    assert [e.type for e in events] == ["metadata", "answer", "answer", "complete"]
    saved = store.messages_with_role("assistant")
    assert [m.content for m in saved] == ["Hello world"]
    assert saved[0].metadata == {"response_type": "complex"}
    assert prepared.persisted.result() == saved[0].id


@pytest.mark.asyncio
async def test_failed_stream_signals_nothing_to_verify(settings, store, make_llm, research, verifier, user):
    llm = make_llm(deltas=[ProviderDelta(kind="text", payload="Partial"), RuntimeError("reset")])
    orchestrator = build(settings, store, llm, research, verifier)
    prepared = await orchestrator.prepare(request_for("Is clause 4 enforceable?", case_id="case-1"), user)

    events = await drain(orchestrator, prepared)

    assert events[-1].type == "error"
    assert store.messages_with_role("assistant") == []
    assert prepared.persisted.result() is None


@pytest.mark.asyncio
async def test_verification_after_stream(settings, store, make_llm, research, verifier, user, sample_answer):
    llm = make_llm(deltas=[ProviderDelta(kind="text", payload=sample_answer), ProviderDelta(kind="stop")])
    orchestrator = build(settings, store, llm, research, verifier)
    prepared = await orchestrator.prepare(request_for("Explain segregation precedent", case_id="case-1"), user)

    verification = asyncio.create_task(orchestrator.verify_citations(prepared))
    await drain(orchestrator, prepared)
    await verification

    citations = verifier.verify_all.await_args.args[0]
    assert [c.type for c in citations] == ["case", "statute"]
    system_messages = store.messages_with_role("system")
    assert len(system_messages) == 1
    assert system_messages[0].metadata == {"type": "citation_verification"}
    assert system_messages[0].content.startswith("### Citation Verification")


@pytest.mark.asyncio
async def test_simple_queries_not_verified(settings, store, make_llm, research, verifier, user, sample_answer):
    llm = make_llm(
        deltas=[ProviderDelta(kind="text", payload=sample_answer)],
        reply='{"queryType": "simple"}',
    )
    orchestrator = build(settings, store, llm, research, verifier)
    prepared = await orchestrator.prepare(request_for("What is a tort?", case_id="case-1"), user)

    await drain(orchestrator, prepared)
    await orchestrator.verify_citations(prepared)

    verifier.verify_all.assert_not_awaited()
    assert store.messages_with_role("system") == []


@pytest.mark.asyncio
async def test_no_conversation_not_verified(settings, store, make_llm, research, verifier, user, sample_answer):
    llm = make_llm(deltas=[ProviderDelta(kind="text", payload=sample_answer)])
    orchestrator = build(settings, store, llm, research, verifier)
    prepared = await orchestrator.prepare(request_for("Explain segregation precedent"), user)

    await drain(orchestrator, prepared)
    await orchestrator.verify_citations(prepared)

    assert prepared.conversation is None
    verifier.verify_all.assert_not_awaited()


@pytest.mark.asyncio
async def test_answer_without_citations_not_verified(settings, store, make_llm, research, verifier, user):
    orchestrator = build(settings, store, make_llm(), research, verifier)
    prepared = await orchestrator.prepare(request_for("Is clause 4 enforceable?", case_id="case-1"), user)

    await drain(orchestrator, prepared)
    await orchestrator.verify_citations(prepared)

    verifier.verify_all.assert_not_awaited()


@pytest.mark.asyncio
async def test_verification_wait_times_out(settings, store, make_llm, research, verifier, user):
    """Test the job gives up if the stream never signals."""
    settings.VERIFICATION_WAIT_TIMEOUT = 0.01
    orchestrator = build(settings, store, make_llm(), research, verifier)
    prepared = await orchestrator.prepare(request_for("Is clause 4 enforceable?", case_id="case-1"), user)

    await orchestrator.verify_citations(prepared)

    verifier.verify_all.assert_not_awaited()
    assert not prepared.persisted.done()
