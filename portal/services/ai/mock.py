"""
Mock AI provider.
Used for local development and tests when no real provider is configured
(AI_PROVIDER=mock). Output is deterministic: moderation is driven by a small
keyword table, completions are canned.
"""

import asyncio
import re
from typing import AsyncGenerator, Optional

from portal.services.ai.base import (
    AiProviderBase,
    AiModerationResult,
    EligibilityPrecheckResult,
    DocumentExtractionResult,
    ContextDocument,
)

# keyword -> (category, score)
_MOCK_KEYWORDS: dict[str, tuple[str, float]] = {
    "kill": ("violence", 0.95),
    "hurt you": ("violence", 0.85),
    "hurt myself": ("self-harm", 0.9),
    "idiot": ("harassment", 0.7),
    "stupid": ("harassment", 0.55),
    "hate": ("hate", 0.6),
    "buy now": ("spam", 0.65),
}


class MockAiProvider(AiProviderBase):
    """
    Mock implementation: returns plausible, repeatable data.
    A short sleep stands in for network latency.
    """

    name = "mock"
    model = "mock-moderation"

    def __init__(self, latency: float = 0.0):
        self.latency = latency

    async def _tick(self):
        if self.latency:
            await asyncio.sleep(self.latency)

    async def moderate_text(self, text: str) -> AiModerationResult:
        await self._tick()
        lc_text = (text or "").lower()
        categories: dict[str, bool] = {}
        scores: dict[str, float] = {"benign": 0.02}
        for keyword, (category, score) in _MOCK_KEYWORDS.items():
            if re.search(rf"\b{re.escape(keyword)}\b", lc_text):
                categories[category] = True
                scores[category] = max(scores.get(category, 0.0), score)
        return AiModerationResult(
            flagged=any(categories.values()),
            categories=categories,
            category_scores=scores,
        )

    async def eligibility_precheck(self, profile: dict, application: dict) -> EligibilityPrecheckResult:
        await self._tick()
        missing = [key for key in ("legalFullName", "postcode") if not profile.get(key)]
        return EligibilityPrecheckResult(
            provisional_outcome="uncertain" if missing else "likely_eligible",
            confidence=0.4 if missing else 0.7,
            missing_evidence=missing,
            next_steps=["Upload proof of address", "Wait for caseworker review"],
            rationale="[Mock] Provisional precheck, not a final decision.",
        )

    async def extract_document(self, document_text: str,
                               document_type: Optional[str] = None) -> DocumentExtractionResult:
        await self._tick()
        first_line = (document_text or "").strip().splitlines()[0] if (document_text or "").strip() else ""
        return DocumentExtractionResult(
            summary=f"[Mock] {first_line[:120]}" if first_line else "No summary generated.",
            extracted_fields={"documentType": document_type or "unknown"},
            confidence=0.5,
        )

    async def assistant_reply(
        self,
        prompt: str,
        context_documents: list[ContextDocument],
    ) -> AsyncGenerator[str, None]:
        sources = ", ".join(f"[Policy: {d.title}]" for d in context_documents) or "no sources"
        for chunk in ("[Mock] ", "Thanks for your question. ", f"See {sources}."):
            await self._tick()
            yield chunk
