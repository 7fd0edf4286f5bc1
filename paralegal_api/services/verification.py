"""
Citation verification against authoritative legal sources
"""
import asyncio
import json
from typing import Dict, List, Optional

import structlog
from pydantic import ValidationError

from paralegal_api.models.citation import Citation, VerificationResult
from paralegal_api.services.config import Settings
from paralegal_api.services.research import ResearchService, first_message
from paralegal_api.utils.metrics import track_verification

VERIFIER_SYSTEM_PROMPT = (
    "You are a legal research specialist focusing on accurate verification of legal citations, "
    "cases, and statutes. Provide precise information with proper legal citations. When verifying "
    "a case, include the full citation, court, date, and a brief holding."
)

PROMPT_DETAILS: Dict[str, str] = {
    "case": """Please provide:
1. The correct full citation
2. The court that decided it
3. The date of the decision
4. A 1-2 sentence summary of the holding/significance""",
    "statute": """Please provide:
1. The correct full citation
2. Whether this is current law
3. When it was enacted/last amended
4. A brief description of what this section covers""",
    "regulation": """Please provide:
1. The correct full citation
2. The agency that issued it
3. When it was published/effective
4. What it regulates""",
}

VERIFICATION_SCHEMA = {
    "type": "object",
    "properties": {
        "verified": {"type": "boolean"},
        "correctedCitation": {"type": "string"},
        "court": {"type": "string"},
        "date": {"type": "string"},
        "summary": {"type": "string"},
        "sources": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "url": {"type": "string"},
                },
            },
        },
    },
    "required": ["verified"],
}

MAX_SOURCES_SHOWN = 2


def build_verification_prompt(citation: Citation) -> str:
    prompt = f"Verify this legal citation: {citation.full}"
    details = PROMPT_DETAILS.get(citation.type)
    if details:
        prompt += f"\n\n{details}"
    return prompt


def format_verification_results(results: List[VerificationResult]) -> Optional[str]:
    """Render verification results as a markdown summary"""
    if not results:
        return None

    summary = "### Citation Verification\n\n"
    for result in results:
        if result.verified:
            summary += f"✅ **{result.citation}** - Verified correct\n"
            if result.summary:
                summary += f"> {result.summary}\n"
        elif result.corrected_citation:
            summary += f"⚠️ **{result.citation}** - Correction: {result.corrected_citation}\n"
            if result.summary:
                summary += f"> {result.summary}\n"
        else:
            summary += f"❓ **{result.citation}** - Could not verify\n"

        if result.sources:
            summary += "\nSources:\n"
            for source in result.sources[:MAX_SOURCES_SHOWN]:
                summary += f"- [{source.title}]({source.url})\n"

        summary += "\n---\n\n"

    return summary


class CitationVerifier:
    """Checks extracted citations with the research provider"""

    def __init__(
        self,
        research_service: ResearchService,
        settings: Settings,
        logger: Optional[structlog.stdlib.BoundLogger] = None
    ):
        self.research_service = research_service
        self.settings = settings
        self.logger = logger or structlog.get_logger(__name__)

    async def verify(self, citation: Citation) -> VerificationResult:
        """Verify one citation. Never raises."""
        payload = self.research_service.base_payload(
            messages=[
                {"role": "system", "content": VERIFIER_SYSTEM_PROMPT},
                {"role": "user", "content": build_verification_prompt(citation)},
            ],
            temperature=0.1,
            max_tokens=500,
        )
        payload["response_format"] = {
            "type": "json_schema",
            "json_schema": {"schema": VERIFICATION_SCHEMA},
        }

        try:
            data = await self.research_service.chat(payload)
        except Exception as e:
            self.logger.error("Citation verification error", citation=citation.full, error=str(e))
            return VerificationResult(citation=citation.full, verified=False, error=str(e))

        content = first_message(data).get("content")
        if not content or not isinstance(content, str):
            return VerificationResult(
                citation=citation.full,
                verified=False,
                error="Failed to get verification from research provider"
            )

        try:
            fields = json.loads(content)
            if not isinstance(fields, dict):
                raise TypeError(f"expected a JSON object, got {type(fields).__name__}")
            fields.pop("citation", None)
            result = VerificationResult(citation=citation.full, **fields)
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            self.logger.warning("Could not parse verification data", citation=citation.full, error=str(e))
            return VerificationResult(
                citation=citation.full,
                verified=False,
                error="Could not parse verification data"
            )

        track_verification(result.verified, bool(result.corrected_citation))
        return result

    async def verify_all(self, citations: List[Citation]) -> List[VerificationResult]:
        """Verify the first MAX_VERIFIED_CITATIONS citations concurrently"""
        selected = citations[:self.settings.MAX_VERIFIED_CITATIONS]
        if not selected:
            return []
        self.logger.info("Verifying citations", found=len(citations), verifying=len(selected))
        return list(await asyncio.gather(*(self.verify(c) for c in selected)))
