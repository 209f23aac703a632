"""
AI provider abstract base.
The moderation engine and AI endpoints program against this interface only;
they do not care whether the backend is the mock or a real provider.

Every call may raise. Implementations report failures as ProviderError and
never retry; callers choose the fallback.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncGenerator, Optional


# ── Data structures ───────────────────────────────────────────────


@dataclass
class AiModerationResult:
    """Classification output for one text span"""
    flagged: bool = False
    categories: dict[str, bool] = field(default_factory=dict)
    category_scores: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "categories": dict(self.categories),
            "categoryScores": dict(self.category_scores),
            "flagged": self.flagged,
        }


@dataclass
class EligibilityPrecheckResult:
    """Provisional, advisory eligibility outcome (never a final decision)"""
    provisional_outcome: str  # likely_eligible | uncertain | likely_ineligible
    confidence: float
    missing_evidence: list[str] = field(default_factory=list)
    next_steps: list[str] = field(default_factory=list)
    rationale: str = ""


@dataclass
class DocumentExtractionResult:
    summary: str
    extracted_fields: dict[str, str] = field(default_factory=dict)
    confidence: float = 0.5


@dataclass
class ContextDocument:
    """Knowledge document handed to the assistant as grounding context"""
    title: str
    content: str
    source_url: Optional[str] = None


# ── Abstract interface ────────────────────────────────────────────


class AiProviderBase(ABC):
    """
    AI provider abstract base.
    One instance is built at application start and passed in explicitly.
    """

    name: str = "base"
    model: str = ""

    @abstractmethod
    async def moderate_text(self, text: str) -> AiModerationResult:
        """Category flags and per-category scores for ``text``"""
        ...

    @abstractmethod
    async def eligibility_precheck(self, profile: dict, application: dict) -> EligibilityPrecheckResult:
        """Advisory eligibility precheck for an application"""
        ...

    @abstractmethod
    async def extract_document(self, document_text: str,
                               document_type: Optional[str] = None) -> DocumentExtractionResult:
        """Structured fields from a supporting document's text"""
        ...

    @abstractmethod
    async def assistant_reply(
        self,
        prompt: str,
        context_documents: list[ContextDocument],
    ) -> AsyncGenerator[str, None]:
        """
        Streaming assistant answer, grounded on ``context_documents``.

        Yields incremental text chunks.
        """
        ...

    async def aclose(self) -> None:
        """Release network resources (no-op by default)"""
        return None
