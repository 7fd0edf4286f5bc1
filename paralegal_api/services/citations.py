"""
Legal citation extraction from free text.

Citations are found by an ordered battery of independent matchers. Each matcher
owns one regex and builds the citation variant that fits its pattern family.
Overlapping matches from different matchers are all returned; nothing here
reconciles them.
"""
import re
from dataclasses import dataclass
from typing import Callable, List, Match, Optional

from paralegal_api.models.citation import (
    CaseCitation,
    Citation,
    RegulationCitation,
    StatuteCitation,
)


def _strip(value: Optional[str]) -> Optional[str]:
    return value.strip() if value else value


@dataclass(frozen=True)
class CitationMatcher:
    """One citation pattern and the builder for its matches"""
    name: str
    pattern: re.Pattern
    build: Callable[[Match, str], Citation]

    def find(self, text: str) -> List[Citation]:
        return [self.build(match, self.name) for match in self.pattern.finditer(text)]


def _case_party_citation(match: Match, name: str) -> CaseCitation:
    return CaseCitation(
        full=match.group(0),
        pattern=name,
        plaintiff=_strip(match.group(1)),
        defendant=_strip(match.group(2)),
        volume=match.group(3),
        reporter=match.group(4),
        page=match.group(5),
        year=match.group(6),
    )


def _case_short_form(match: Match, name: str) -> CaseCitation:
    return CaseCitation(
        full=match.group(0),
        pattern=name,
        case_name=_strip(match.group(1)),
        volume=match.group(2),
        reporter=match.group(3),
        page=match.group(4),
    )


def _case_commonwealth(match: Match, name: str) -> CaseCitation:
    return CaseCitation(
        full=match.group(0),
        pattern=name,
        plaintiff=_strip(match.group(1)),
        defendant=_strip(match.group(2)),
        year=match.group(3),
        court=match.group(4),
        number=match.group(5),
    )


def _statute_code(match: Match, name: str) -> StatuteCitation:
    return StatuteCitation(
        full=match.group(0),
        pattern=name,
        title=match.group(1),
        code=match.group(2),
        section=match.group(3),
    )


def _statute_cfr(match: Match, name: str) -> StatuteCitation:
    return StatuteCitation(
        full=match.group(0),
        pattern=name,
        title=match.group(1),
        code="C.F.R.",
        section=match.group(2),
    )


def _statute_public_law(match: Match, name: str) -> StatuteCitation:
    return StatuteCitation(
        full=match.group(0),
        pattern=name,
        congress=match.group(1),
        law=match.group(2),
        stat_volume=match.group(3),
        stat_page=match.group(4),
        year=match.group(5),
    )


def _statute_state_code(match: Match, name: str) -> StatuteCitation:
    return StatuteCitation(
        full=match.group(0),
        pattern=name,
        state=match.group(1),
        code_type=match.group(2),
        section=match.group(3),
    )


def _regulation_federal_register(match: Match, name: str) -> RegulationCitation:
    return RegulationCitation(
        full=match.group(0),
        pattern=name,
        volume=match.group(1),
        page=match.group(2),
        date=match.group(3),
    )


def _regulation_administrative(match: Match, name: str) -> RegulationCitation:
    return RegulationCitation(
        full=match.group(0),
        pattern=name,
        party=_strip(match.group(1)),
        volume=match.group(2),
        reporter=match.group(3),
        page=match.group(4),
        agency=match.group(5),
        year=match.group(6),
    )


_PARTY = r"([A-Za-z\s\.']+)"

# Order matters: results are reported matcher by matcher.
MATCHERS: List[CitationMatcher] = [
    # Brown v. Board of Education, 347 U.S. 483 (1954)
    CitationMatcher(
        "case_standard",
        re.compile(_PARTY + r"\s+v\.\s+" + _PARTY + r",?\s+(\d+)\s+([A-Za-z\.]+)\s+(\d+)(?:\s+\((\d{4})\))?"),
        _case_party_citation,
    ),
    # Roe, 410 U.S. at 113
    CitationMatcher(
        "case_short_form",
        re.compile(_PARTY + r",\s+(\d+)\s+([A-Za-z\.]+)\s+at\s+(\d+)"),
        _case_short_form,
    ),
    # Smith v. Jones, 123 N.Y.2d 456 (2010); the reporter carries a numbered series
    CitationMatcher(
        "case_state_reporter",
        re.compile(_PARTY + r"\s+v\.\s+" + _PARTY + r",?\s+(\d+)\s+([A-Za-z\.]+\d+[a-z]*)\s+(\d+)(?:\s+\((\d{4})\))?"),
        _case_party_citation,
    ),
    # R v Smith [2020] UKSC 1
    CitationMatcher(
        "case_commonwealth",
        re.compile(_PARTY + r"\s+v\s+" + _PARTY + r"\s+\[(\d{4})\]\s+([A-Za-z]+)\s+(\d+)"),
        _case_commonwealth,
    ),
    # 18 U.S.C. § 1030
    CitationMatcher(
        "statute_code",
        re.compile(r"(\d+)\s+([A-Za-z\.]+)\s+[§\s]+(\d+[A-Za-z0-9\-\.]*)"),
        _statute_code,
    ),
    # 17 C.F.R. § 240.10b-5
    CitationMatcher(
        "statute_cfr",
        re.compile(r"(\d+)\s+C\.F\.R\.\s+[§\s]+(\d+\.\d+[A-Za-z0-9\-\.]*)"),
        _statute_cfr,
    ),
    # Pub. L. No. 116-283, 134 Stat. 3388 (2021)
    CitationMatcher(
        "statute_public_law",
        re.compile(r"Pub\.\s+L\.\s+No\.\s+(\d+)-(\d+),\s+(\d+)\s+Stat\.\s+(\d+)(?:\s+\((\d{4})\))?"),
        _statute_public_law,
    ),
    # Cal. Penal Code § 422
    CitationMatcher(
        "statute_state_code",
        re.compile(r"([A-Za-z\.]+)\s+([A-Za-z\.]+)\s+Code\s+[§\s]+(\d+[A-Za-z0-9\-\.]*)"),
        _statute_state_code,
    ),
    # 87 Fed. Reg. 12345 (Mar. 1, 2022)
    CitationMatcher(
        "regulation_federal_register",
        re.compile(r"(\d+)\s+Fed\.\s+Reg\.\s+(\d+)(?:\s+\(([A-Za-z\.]+\s+\d+,\s+\d{4})\))?"),
        _regulation_federal_register,
    ),
    # In re Smith, 123 B.N.A. 456 (NLRB 2010)
    CitationMatcher(
        "regulation_administrative",
        re.compile(r"In\s+re\s+([A-Za-z\s\.']+),\s+(\d+)\s+([A-Za-z\.]+)\s+(\d+)(?:\s+\(([A-Za-z]+)\s+(\d{4})\))?"),
        _regulation_administrative,
    ),
]


def extract_citations(text: str, matchers: Optional[List[CitationMatcher]] = None) -> List[Citation]:
    """
    Extract legal citations from text.

    Args:
        text: Free text, typically a model answer
        matchers: Matcher battery to apply, defaults to MATCHERS

    Returns:
        Citations in matcher order, then in order of appearance
    """
    if not text:
        return []

    citations: List[Citation] = []
    for matcher in matchers or MATCHERS:
        citations.extend(matcher.find(text))
    return citations
