"""
Data models for legal citations and their verification
"""
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CaseCitation(BaseModel):
    """Case law reference"""
    type: Literal["case"] = "case"
    full: str
    pattern: str
    plaintiff: Optional[str] = None
    defendant: Optional[str] = None
    case_name: Optional[str] = None  # short form only
    volume: Optional[str] = None
    reporter: Optional[str] = None
    page: Optional[str] = None
    year: Optional[str] = None
    court: Optional[str] = None  # commonwealth neutral citations
    number: Optional[str] = None


class StatuteCitation(BaseModel):
    """Statutory reference"""
    type: Literal["statute"] = "statute"
    full: str
    pattern: str
    title: Optional[str] = None
    code: Optional[str] = None
    section: Optional[str] = None
    congress: Optional[str] = None
    law: Optional[str] = None
    stat_volume: Optional[str] = None
    stat_page: Optional[str] = None
    year: Optional[str] = None
    state: Optional[str] = None
    code_type: Optional[str] = None


class RegulationCitation(BaseModel):
    """Regulatory or administrative reference"""
    type: Literal["regulation"] = "regulation"
    full: str
    pattern: str
    volume: Optional[str] = None
    page: Optional[str] = None
    date: Optional[str] = None
    party: Optional[str] = None
    reporter: Optional[str] = None
    agency: Optional[str] = None
    year: Optional[str] = None


Citation = Union[CaseCitation, StatuteCitation, RegulationCitation]


class SourceLink(BaseModel):
    title: str = ""
    url: str = ""


class VerificationResult(BaseModel):
    """Outcome of checking one citation against external research"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    citation: str
    verified: bool = False
    corrected_citation: Optional[str] = None
    court: Optional[str] = None
    date: Optional[str] = None
    summary: Optional[str] = None
    sources: List[SourceLink] = Field(default_factory=list)
    error: Optional[str] = None
