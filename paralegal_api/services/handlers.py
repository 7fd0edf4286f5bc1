"""
Response handlers for the three query strategies.

Each handler builds its own system prompt and model parameters, opens a
streaming model call, and hands the deltas to a StreamMultiplexer.
"""
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog

from paralegal_api.models.chat import ChatMessage, SourceInfo, StreamEvent
from paralegal_api.services.config import Settings
from paralegal_api.services.llm import LLMService
from paralegal_api.services.multiplexer import StreamMultiplexer, ThoughtBuffer
from paralegal_api.services.research import ResearchService
from paralegal_api.utils.metrics import research_fallback_counter

LINKING_GUIDELINES = """If you mention a specific, publicly accessible legal document, statute, or well-known legal information resource online (and you are confident about its URL), please provide a markdown link: `[Resource Name](URL)`. This is only if you are using your general knowledge and the source is unambiguous and widely recognized.
If you are referencing information directly from the document context provided by the user, clearly state this. For example: "Based on the provided document context..." or "According to the context you provided..."."""

SIMPLE_SYSTEM_PROMPT = f"""You are a legal assistant providing clear, concise answers to simple legal questions. Be direct and to the point.

Respond in a professional, authoritative tone suitable for legal professionals.

When answering questions:
1. Provide definitions and explanations in plain language
2. Include relevant legal citations when appropriate
3. Be precise and accurate in your responses
4. If you're uncertain about specific jurisdictional details, acknowledge this
5. Format your responses with appropriate markdown for readability

{LINKING_GUIDELINES}"""

COMPLEX_SYSTEM_PROMPT = f"""You are a sophisticated legal assistant with expertise in contract analysis, case law, and regulatory compliance.

When analyzing legal questions:
1. Identify the relevant legal principles and applicable laws
2. Apply appropriate precedent and case law
3. Consider jurisdictional differences and conflicts of law
4. Highlight risks, uncertainties, and alternative interpretations
5. Provide practical recommendations with appropriate disclaimers

Show your thorough legal reasoning process step-by-step.

Structure your responses with clear headings and use markdown formatting to enhance readability.

{LINKING_GUIDELINES}"""

RESEARCH_SYSTEM_PROMPT = """You are a senior legal research analyst. Your task is to synthesize the provided search results and any attached document context to answer the user's query comprehensively.

**Search Results Provided:**
The user's query has been researched, and the following information snippets and source URLs were found:
{formatted_results}

**Critical Instructions for Citing Sources in Your Synthesized Answer:**
1.  When you incorporate information from a specific source URL found in the 'Search Results Provided', you **MUST** cite it directly in your response.
2.  Format the citation as a markdown link: `[Descriptive Title of Source](URL)`. Use the title provided in the search results if available, otherwise create a concise descriptive title.
3.  Provide this markdown link the *first time* you substantively use information from that specific source URL or when it's most relevant.
4.  **Do NOT use numeric citations like [1] or [Source 1]. Use only direct markdown links as described.**
5.  Ensure all URLs are fully qualified.
6.  Every markdown link must point to the source that actually supplied the fact it supports.

**Response Structure and Content:**
- Structure your response with clear headings, lists, and use markdown formatting.
- Clearly distinguish between established law and emerging legal trends.
- If information may not be current or complete, state this.
- Consider jurisdictional limitations.
- Indicate when additional research might be necessary.
- When you use information *specifically from the document context provided by the user*, clearly state this by saying, for example, "According to the provided context...". If you are also using an external source for the same point, cite that as well using the markdown link format.

Please provide a detailed and well-cited answer."""


def focused_snippet_instruction(snippet: str) -> str:
    return (
        f'\n\nIMPORTANT FOCUSED CONTEXT: The user has highlighted the following snippet: "{snippet}". '
        "Please give this special attention in your response."
    )


def format_history(messages: List[ChatMessage]) -> List[Dict[str, str]]:
    """Map client turns onto the two roles the model API accepts"""
    return [
        {"role": "user" if m.role == "user" else "assistant", "content": m.content}
        for m in messages
    ]


class ResponseHandler:
    """Shared streaming algorithm; subclasses supply prompts and parameters"""

    response_type = ""
    max_tokens = 4000
    thinking_budget = 0
    base_temperature = 0.3
    document_heading = "\n\nReference these documents in your response if relevant:\n"

    def __init__(
        self,
        llm_service: LLMService,
        settings: Settings,
        logger: Optional[structlog.stdlib.BoundLogger] = None
    ):
        self.llm_service = llm_service
        self.settings = settings
        self.logger = logger or structlog.get_logger(__name__)

    def select_model(self, stream_thoughts: bool) -> str:
        return self.settings.CAPABLE_MODEL

    def temperature(self, stream_thoughts: bool) -> float:
        # Extended thinking requires temperature 1
        return 1.0 if stream_thoughts else self.base_temperature

    def base_prompt(self) -> str:
        raise NotImplementedError

    def build_system_prompt(self, document_context: str, focused_snippet: Optional[str]) -> str:
        prompt = self.base_prompt()
        if focused_snippet:
            prompt += focused_snippet_instruction(focused_snippet)
        if document_context:
            prompt += self.document_heading + document_context
        return prompt

    def build_user_turn(self, query: str, document_context: str, focused_snippet: Optional[str]) -> str:
        return query

    def new_thought_buffer(self) -> ThoughtBuffer:
        return ThoughtBuffer(
            max_chars=self.settings.THOUGHT_FLUSH_CHARS,
            flush_interval=self.settings.THOUGHT_FLUSH_INTERVAL
        )

    async def handle(
        self,
        query: str,
        prior_messages: List[ChatMessage],
        document_context: str = "",
        stream_thoughts: bool = False,
        focused_snippet: Optional[str] = None
    ) -> AsyncIterator[StreamEvent]:
        """Stream the answer to one query as StreamEvents"""
        model = self.select_model(stream_thoughts)
        self.logger.info(
            "Handling query",
            response_type=self.response_type,
            model=model,
            stream_thoughts=stream_thoughts,
            history=len(prior_messages)
        )
        events = self._stream(
            model=model,
            system=self.build_system_prompt(document_context, focused_snippet),
            user_turn=self.build_user_turn(query, document_context, focused_snippet),
            prior_messages=prior_messages,
            stream_thoughts=stream_thoughts,
        )
        async with aclosing(events):
            async for event in events:
                yield event

    async def _stream(
        self,
        model: str,
        system: str,
        user_turn: str,
        prior_messages: List[ChatMessage],
        stream_thoughts: bool,
        sources: Optional[List[Dict[str, Any]]] = None
    ) -> AsyncIterator[StreamEvent]:
        deltas = self.llm_service.generate_stream(
            model=model,
            system=system,
            messages=format_history(prior_messages) + [{"role": "user", "content": user_turn}],
            max_tokens=self.max_tokens,
            temperature=self.temperature(stream_thoughts),
            thinking_budget=self.thinking_budget if stream_thoughts else None,
        )
        multiplexer = StreamMultiplexer(
            response_type=self.response_type,
            model=model,
            stream_thoughts=stream_thoughts,
            sources=sources,
            thought_buffer=self.new_thought_buffer(),
            logger=self.logger,
        )
        async with aclosing(multiplexer.stream(deltas)) as events:
            async for event in events:
                yield event


class SimpleQueryHandler(ResponseHandler):
    """Concise definitional answers from the fast model"""

    response_type = "simple"
    max_tokens = 4000
    thinking_budget = 1500
    base_temperature = 0.3

    def select_model(self, stream_thoughts: bool) -> str:
        # Thinking is only available on the capable model
        return self.settings.CAPABLE_MODEL if stream_thoughts else self.settings.FAST_MODEL

    def base_prompt(self) -> str:
        return SIMPLE_SYSTEM_PROMPT


class ComplexQueryHandler(ResponseHandler):
    """Structured multi-factor legal analysis"""

    response_type = "complex"
    max_tokens = 7000
    thinking_budget = 3000
    base_temperature = 0.2
    document_heading = "\n\nAnalyze these legal documents:\n"

    def base_prompt(self) -> str:
        return COMPLEX_SYSTEM_PROMPT


def format_search_results(sources: List[SourceInfo]) -> str:
    return "\n\n".join(
        f"Source: {s.title} ({s.url})\nDate: {s.date or 'Unknown'}\nExcerpt: {s.snippet or ''}"
        for s in sources
    )


class ResearchQueryHandler(ResponseHandler):
    """Web research first, then a cited synthesis"""

    response_type = "research"
    max_tokens = 7000
    thinking_budget = 3000
    base_temperature = 0.3

    def __init__(
        self,
        llm_service: LLMService,
        research_service: ResearchService,
        settings: Settings,
        logger: Optional[structlog.stdlib.BoundLogger] = None
    ):
        super().__init__(llm_service, settings, logger)
        self.research_service = research_service

    async def gather_sources(self, query: str) -> List[SourceInfo]:
        """Run the web search; failures become a placeholder source"""
        try:
            return await self.research_service.search(query)
        except Exception as e:
            self.logger.error("Error with web search", error=str(e))
            research_fallback_counter.inc()
            return [
                SourceInfo(
                    title="Search Error",
                    url="N/A",
                    snippet="Unable to retrieve search results. Analysis will continue with available information.",
                )
            ]

    def build_research_user_turn(
        self,
        query: str,
        formatted_results: str,
        document_context: str,
        focused_snippet: Optional[str]
    ) -> str:
        turn = f"{query}\n\nResearch Results:\n{formatted_results}"
        if document_context:
            turn += f"\n\nDocument Context:\n{document_context}"
        if focused_snippet:
            turn = f'Regarding the specific snippet: "{focused_snippet}"\n\n{turn}'
        return turn

    async def handle(
        self,
        query: str,
        prior_messages: List[ChatMessage],
        document_context: str = "",
        stream_thoughts: bool = False,
        focused_snippet: Optional[str] = None
    ) -> AsyncIterator[StreamEvent]:
        model = self.select_model(stream_thoughts)
        self.logger.info("Performing legal research search", query=query[:100])
        sources = await self.gather_sources(query)
        formatted_results = format_search_results(sources)

        events = self._stream(
            model=model,
            system=RESEARCH_SYSTEM_PROMPT.format(formatted_results=formatted_results),
            user_turn=self.build_research_user_turn(query, formatted_results, document_context, focused_snippet),
            prior_messages=prior_messages,
            stream_thoughts=stream_thoughts,
            sources=[s.model_dump(include={"title", "url", "date"}) for s in sources],
        )
        async with aclosing(events):
            async for event in events:
                yield event
