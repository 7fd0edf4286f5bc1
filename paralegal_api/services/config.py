"""
Configuration settings for the Paralegal Router API
"""
from typing import Annotated, List, Optional
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from pydantic import Field, field_validator
import json


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # API Configuration
    API_VERSION: str = "1.0.0"
    ENVIRONMENT: str = Field(default="development")

    # CORS Settings
    CORS_ORIGINS: Annotated[List[str], NoDecode] = Field(default=["*"])

    # Authoritative legal sources used for research and citation verification
    LEGAL_RESEARCH_DOMAINS: Annotated[List[str], NoDecode] = Field(
        default=[
            "law.cornell.edu",
            "scholar.google.com",
            "courtlistener.com",
            "justia.com",
            "oyez.org",
            "leagle.com",
            "casetext.com",
            "findlaw.com",
        ]
    )

    @field_validator("CORS_ORIGINS", "LEGAL_RESEARCH_DOMAINS", mode="before")
    @classmethod
    def parse_list(cls, v):
        """Parse list settings from JSON string if needed"""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                # If not JSON, treat as comma-separated list
                return [item.strip() for item in v.split(",") if item.strip()]
        return v

    # Anthropic (answer generation and classification)
    ANTHROPIC_API_KEY: Optional[str] = Field(default=None)
    ANTHROPIC_BASE_URL: str = Field(default="https://api.anthropic.com")
    ANTHROPIC_VERSION: str = Field(default="2023-06-01")

    # Model Configuration
    CLASSIFIER_MODEL: str = Field(default="claude-3-5-haiku-20241022")
    FAST_MODEL: str = Field(default="claude-3-5-haiku-20241022")
    CAPABLE_MODEL: str = Field(default="claude-3-7-sonnet-20250219")

    # Perplexity (web research and citation verification)
    PERPLEXITY_API_TOKEN: Optional[str] = Field(default=None)
    PERPLEXITY_URL: str = Field(default="https://api.perplexity.ai")
    RESEARCH_MODEL: str = Field(default="sonar")

    # Supabase (identity, conversations, documents)
    SUPABASE_URL: str = Field(default="")
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = Field(default=None)
    DOCUMENTS_BUCKET: str = Field(default="documents")

    # Context budgets
    MAX_DOCUMENT_CHARS: int = Field(default=5000)
    MAX_CONTEXT_TOKENS: int = Field(default=8000)
    CHARS_PER_TOKEN: float = Field(default=3.5)

    # Thought streaming
    THOUGHT_FLUSH_CHARS: int = Field(default=100)
    THOUGHT_FLUSH_INTERVAL: float = Field(default=1.0)  # seconds

    # Citation verification
    MAX_VERIFIED_CITATIONS: int = Field(default=3)
    VERIFICATION_WAIT_TIMEOUT: float = Field(default=30.0)  # seconds

    # Performance Tuning
    REQUEST_TIMEOUT: int = Field(default=30)
    STREAM_TIMEOUT: int = Field(default=300)
    CONNECTION_POOL_SIZE: int = Field(default=20)

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FILE: Optional[str] = Field(default=None)
    LOG_JSON: bool = Field(default=True)

    # OpenTelemetry Configuration
    OTEL_ENABLED: bool = Field(default=False)
    OTEL_ENDPOINT: str = Field(default="http://localhost:4317")
    OTEL_SERVICE_NAME: str = Field(default="paralegal-router-api")

    def get_supabase_rest_url(self) -> str:
        """Get PostgREST base URL"""
        return f"{self.SUPABASE_URL.rstrip('/')}/rest/v1"

    def get_supabase_storage_url(self) -> str:
        """Get storage object base URL"""
        return f"{self.SUPABASE_URL.rstrip('/')}/storage/v1/object/{self.DOCUMENTS_BUCKET}"
