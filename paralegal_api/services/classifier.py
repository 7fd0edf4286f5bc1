"""
Query classification: decides which response strategy serves a question
"""
import json
import re
from typing import Optional, Tuple

import structlog

from paralegal_api.models.chat import QueryType
from paralegal_api.services.config import Settings
from paralegal_api.services.llm import LLMService
from paralegal_api.utils.metrics import track_classification

RESEARCH_KEYWORDS = [
    "recent case", "recent ruling", "current law", "latest regulation",
    "new legislation", "current statute", "latest precedent", "search for",
    "find cases", "research on", "look up", "latest developments",
    "2023", "2024", "2025",  # recent years
]

# Explicit requests for web search bypass classification entirely
FORCE_RESEARCH_PHRASES = [
    "search the web", "search for", "look up", "find information",
    "search online", "web search", "internet search",
]

CLASSIFIER_SYSTEM_PROMPT = """You are a specialized query classifier for a legal assistant system. Your only job is to categorize legal questions into one of three types:

1. 'simple' - Basic definitional questions, procedural information, or straightforward legal concepts that don't require nuanced analysis.
2. 'complex' - Questions requiring legal analysis, strategy, risk assessment, interpretation of laws, or hypothetical scenarios.
3. 'research_needed' - Questions about current laws, recent cases, jurisdiction-specific details, or that require citing specific statutes.

You MUST return ONLY a valid JSON object with the format: {"queryType": "TYPE"} where TYPE is one of: "simple", "complex", or "research_needed"."""

_QUERY_TYPE_RE = re.compile(r"[\"']queryType[\"']\s*:\s*[\"']([^\"']+)[\"']")
_VALID_TYPES = {t.value for t in QueryType}
_UNPARSED = object()


def _find_phrase(query: str, phrases) -> Optional[str]:
    lowered = query.lower()
    for phrase in phrases:
        if phrase in lowered:
            return phrase
    return None


def match_research_keyword(query: str) -> Optional[str]:
    return _find_phrase(query, RESEARCH_KEYWORDS)


def match_forced_research(query: str) -> Optional[str]:
    """Return the explicit web-search phrase in the query, if any"""
    return _find_phrase(query, FORCE_RESEARCH_PHRASES)


def parse_classification(text: str) -> Tuple[QueryType, str]:
    """
    Parse a classifier reply, trying progressively looser strategies.

    Returns:
        (query type, strategy that produced it); "default" means nothing matched
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        data = _UNPARSED

    # Looser strategies only apply when the reply is not JSON at all
    if data is not _UNPARSED:
        if isinstance(data, dict) and data.get("queryType") in _VALID_TYPES:
            return QueryType(data["queryType"]), "json"
        return QueryType.COMPLEX, "default"

    match = _QUERY_TYPE_RE.search(text or "")
    if match and match.group(1) in _VALID_TYPES:
        return QueryType(match.group(1)), "regex"

    if "complex" in (text or ""):
        return QueryType.COMPLEX, "keyword"
    if "research" in (text or ""):
        return QueryType.RESEARCH_NEEDED, "keyword"

    return QueryType.COMPLEX, "default"


class QueryClassifier:
    """Keyword heuristics first, then a small model"""

    def __init__(
        self,
        llm_service: LLMService,
        settings: Settings,
        logger: Optional[structlog.stdlib.BoundLogger] = None
    ):
        self.llm_service = llm_service
        self.settings = settings
        self.logger = logger or structlog.get_logger(__name__)

    async def classify(self, query: str) -> QueryType:
        """
        Classify a legal question. Never raises; any failure yields COMPLEX.
        """
        keyword = match_research_keyword(query)
        if keyword:
            self.logger.info("Research keyword detected", keyword=keyword)
            track_classification(QueryType.RESEARCH_NEEDED.value, "heuristic")
            return QueryType.RESEARCH_NEEDED

        try:
            reply = await self.llm_service.generate(
                model=self.settings.CLASSIFIER_MODEL,
                system=CLASSIFIER_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": f'Classify this legal query: "{query}"'}],
                max_tokens=150,
                temperature=0.1
            )
        except Exception as e:
            self.logger.error("Query classification failed", error=str(e))
            track_classification(QueryType.COMPLEX.value, "fallback")
            return QueryType.COMPLEX

        query_type, strategy = parse_classification(reply)
        if strategy == "default":
            self.logger.warning("Classification parsing failed, defaulting to complex", reply=reply[:200])
            track_classification(query_type.value, "fallback")
        else:
            self.logger.info("Query classified", query_type=query_type.value, parse_strategy=strategy)
            track_classification(query_type.value, "model")
        return query_type
