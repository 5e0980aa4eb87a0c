from typing import List, Optional

from app.core.config import settings
from app.schemas.chat import RetrievedDocument


class ContextAssembler:
    """Formats retrieved documents into one bounded prompt block."""

    def __init__(self, *, max_doc_chars: Optional[int] = None, max_total_chars: Optional[int] = None):
        self.max_doc_chars = max_doc_chars or settings.RAG_MAX_DOC_CHARS
        self.max_total_chars = max_total_chars or settings.RAG_MAX_CONTEXT_CHARS

    def build_context(self, documents: List[RetrievedDocument]) -> str:
        """
        Build the context string from documents in the given order.

        Each document is cut to `max_doc_chars`. Accumulation stops before a
        section would push the total past `max_total_chars`, so the result
        never exceeds the budget.
        """
        context = ""
        for index, doc in enumerate(documents, 1):
            if not doc.content:
                continue

            content = doc.content[: self.max_doc_chars]
            title = doc.title or "Untitled"
            source = doc.source_url or "N/A"
            section = f"DOC {index} TITLE: {title}\nSOURCE: {source}\nCONTENT: {content}\n---\n"

            if len(context) + len(section) > self.max_total_chars:
                break
            context += section

        return context
