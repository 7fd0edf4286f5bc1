"""
Document context assembly for model prompts
"""
import asyncio
import math
from typing import List, Optional, Protocol

import structlog

from paralegal_api.models.chat import Document, PreloadedContext
from paralegal_api.services.config import Settings

TRUNCATION_MARKER = "... [truncated]"
NO_DOCUMENTS_PLACEHOLDER = "\n\n[No document context available]\n"
FETCH_ERROR_PLACEHOLDER = "\n\n[Error fetching document context]\n"


class DocumentStore(Protocol):
    async def get_document_by_id(self, document_id: str) -> Optional[Document]: ...

    async def download_blob(self, path: str) -> bytes: ...


def estimate_tokens(text: Optional[str], chars_per_token: float = 3.5) -> int:
    """Rough token count used for budgeting"""
    return math.ceil(len(text or "") / chars_per_token)


def truncate_text(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


def format_section(title: str, document_id: Optional[str], text: str) -> str:
    header = f"--- Document: {title} (ID: {document_id}) ---" if document_id else f"--- Document: {title} ---"
    return f"{header}\n{text}\n\n"


class ContextAssembler:
    """Builds the bounded document context handed to response handlers"""

    def __init__(
        self,
        store: DocumentStore,
        settings: Settings,
        logger: Optional[structlog.stdlib.BoundLogger] = None
    ):
        self.store = store
        self.settings = settings
        self.logger = logger or structlog.get_logger(__name__)

    async def assemble(
        self,
        case_id: Optional[str],
        document_ids: List[str],
        preloaded: Optional[PreloadedContext] = None
    ) -> str:
        """
        Fetch, truncate and concatenate the requested documents.

        Documents outside the case are ignored. Missing documents and fetch
        failures produce explanatory placeholders instead of errors.
        """
        if not document_ids:
            return self._preloaded_section(preloaded)
        if not case_id:
            self.logger.warning("Document context requested without a case id", documents=len(document_ids))
            return ""

        self.logger.info("Fetching document context", documents=len(document_ids), case_id=case_id)
        results = await asyncio.gather(
            *(self.store.get_document_by_id(doc_id) for doc_id in document_ids),
            return_exceptions=True
        )

        documents: List[Document] = []
        failures = 0
        for doc_id, result in zip(document_ids, results):
            if isinstance(result, BaseException):
                failures += 1
                self.logger.error("Error fetching document", document_id=doc_id, error=str(result))
            elif result is not None and result.case_id == case_id:
                documents.append(result)

        if failures and failures == len(document_ids):
            return FETCH_ERROR_PLACEHOLDER
        if not documents:
            self.logger.warning("No documents found", document_ids=document_ids)
            return NO_DOCUMENTS_PLACEHOLDER

        sections = []
        for document in documents:
            text = await self._document_text(document)
            sections.append(format_section(document.filename, document.id, truncate_text(text, self.settings.MAX_DOCUMENT_CHARS)))
        return self._fit_budget(sections)

    async def _document_text(self, document: Document) -> str:
        if document.extracted_text:
            return document.extracted_text

        # Plain-text uploads may have no extraction row yet
        if document.storage_path and (document.content_type or "").startswith("text/"):
            try:
                blob = await self.store.download_blob(document.storage_path)
                return blob.decode("utf-8", errors="replace")
            except Exception as e:
                self.logger.error("Error downloading document", document_id=document.id, error=str(e))
        return ""

    def _fit_budget(self, sections: List[str]) -> str:
        kept = []
        used = 0
        for section in sections:
            tokens = estimate_tokens(section, self.settings.CHARS_PER_TOKEN)
            if kept and used + tokens > self.settings.MAX_CONTEXT_TOKENS:
                break
            kept.append(section)
            used += tokens

        omitted = len(sections) - len(kept)
        context = "\n".join(kept)
        if omitted:
            self.logger.warning("Document context over budget", omitted=omitted, tokens=used)
            context += f"\n[{omitted} additional document(s) omitted to fit the context budget]\n"
        return context

    def _preloaded_section(self, preloaded: Optional[PreloadedContext]) -> str:
        if not preloaded or not preloaded.document_text:
            return ""
        title = f"preloaded {preloaded.analysis_type or 'analysis'} source"
        return format_section(title, None, truncate_text(preloaded.document_text, self.settings.MAX_DOCUMENT_CHARS))
