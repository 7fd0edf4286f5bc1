"""Tests for query classification."""

import pytest

from paralegal_api.models.chat import QueryType
from paralegal_api.services.classifier import (
    QueryClassifier,
    match_forced_research,
    match_research_keyword,
    parse_classification,
)
from paralegal_api.services.llm import LLMProviderError


def test_match_research_keyword():
    assert match_research_keyword("What is the LATEST PRECEDENT on this?") == "latest precedent"
    assert match_research_keyword("What is a tort?") is None


def test_match_forced_research():
    assert match_forced_research("Please search the web for eviction rules") == "search the web"
    assert match_forced_research("Explain consideration") is None


@pytest.mark.parametrize(
    "reply,expected,strategy",
    [
        ('{"queryType": "simple"}', QueryType.SIMPLE, "json"),
        ('Sure! {"queryType": "research_needed"} is my answer', QueryType.RESEARCH_NEEDED, "regex"),
        ("{'queryType': 'simple'}", QueryType.SIMPLE, "regex"),
        ("This looks complex to me", QueryType.COMPLEX, "keyword"),
        ("Needs research", QueryType.RESEARCH_NEEDED, "keyword"),
        ("garbage", QueryType.COMPLEX, "default"),
        ('{"queryType": "unknown"}', QueryType.COMPLEX, "default"),
        ('{"queryType": "research"}', QueryType.COMPLEX, "default"),
        ('"needs research"', QueryType.COMPLEX, "default"),
    ],
)
def test_parse_classification(reply, expected, strategy):
    """Test each parsing strategy and the complex fallback."""
    assert parse_classification(reply) == (expected, strategy)


@pytest.mark.asyncio
async def test_keyword_heuristic_skips_model(make_llm, settings):
    """Test research keywords route without a model call."""
    llm = make_llm(reply='{"queryType": "simple"}')
    classifier = QueryClassifier(llm, settings)

    result = await classifier.classify("Find cases about recent ruling on non-competes")

    assert result == QueryType.RESEARCH_NEEDED
    assert llm.generate_calls == []


@pytest.mark.asyncio
async def test_model_classification(make_llm, settings):
    llm = make_llm(reply='{"queryType": "simple"}')
    classifier = QueryClassifier(llm, settings)

    result = await classifier.classify("What is a tort?")

    assert result == QueryType.SIMPLE
    call = llm.generate_calls[0]
    assert call["model"] == settings.CLASSIFIER_MODEL
    assert call["max_tokens"] == 150
    assert call["temperature"] == 0.1
    assert "What is a tort?" in call["messages"][0]["content"]


@pytest.mark.asyncio
async def test_unparseable_reply_defaults_to_complex(make_llm, settings):
    classifier = QueryClassifier(make_llm(reply="I cannot decide"), settings)

    assert await classifier.classify("Is my lease enforceable?") == QueryType.COMPLEX


@pytest.mark.asyncio
async def test_provider_failure_defaults_to_complex(make_llm, settings):
    """Test classification never raises."""
    classifier = QueryClassifier(make_llm(reply=LLMProviderError("provider down")), settings)

    assert await classifier.classify("Is my lease enforceable?") == QueryType.COMPLEX
