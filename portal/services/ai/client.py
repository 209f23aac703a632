"""
OpenAI-compatible AI provider.
Used when AI_PROVIDER=openai.

- moderate_text:         POST /moderations
- eligibility_precheck:  POST /chat/completions (JSON mode)
- extract_document:      POST /chat/completions (JSON mode)
- assistant_reply:       POST /chat/completions (stream=true, SSE)

No retries: a failed call raises ProviderError and the caller decides.
"""

import json
import logging
from typing import AsyncGenerator, Optional

import httpx

from portal.core.config import settings
from portal.core.exceptions import ProviderError
from portal.services.ai.base import (
    AiProviderBase,
    AiModerationResult,
    EligibilityPrecheckResult,
    DocumentExtractionResult,
    ContextDocument,
)

logger = logging.getLogger(__name__)

PRECHECK_OUTCOMES = ("likely_eligible", "uncertain", "likely_ineligible")

_PRECHECK_SYSTEM_PROMPT = (
    "You are a UK affordable housing precheck assistant. Return only JSON with keys "
    "provisionalOutcome, confidence, missingEvidence, nextSteps, rationale. "
    "Outcome must be likely_eligible, uncertain, or likely_ineligible."
)
_EXTRACT_SYSTEM_PROMPT = (
    "Extract key structured fields from UK housing support documents. "
    "Return only JSON with summary, extractedFields (object), confidence (0-1)."
)
_ASSISTANT_SYSTEM_PROMPT = (
    "You are a UK housing support assistant. Use only provided context docs. "
    "Always cite source titles in brackets like [Policy: X]. If asked to make final "
    "legal/eligibility decisions, refuse and direct to caseworker review."
)


def _clamp01(value, default: float = 0.5) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = default
    return max(0.0, min(1.0, number))


class OpenAiProvider(AiProviderBase):
    """
    HTTP client for an OpenAI-compatible API.
    Every request opens its own httpx.AsyncClient.
    """

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        moderation_model: Optional[str] = None,
        chat_model: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.base_url = (base_url or settings.OPENAI_BASE_URL).rstrip("/")
        self.moderation_model = moderation_model or settings.OPENAI_MODERATION_MODEL
        self.model = chat_model or settings.OPENAI_CHAT_MODEL
        # connect fast, read slowly (completions can take a while)
        self.timeout = httpx.Timeout(timeout or settings.AI_TIMEOUT_SECONDS, connect=5.0)

    # ══════════════════════════════════════════════════════════
    # Transport
    # ══════════════════════════════════════════════════════════

    def _headers(self) -> dict:
        if not self.api_key:
            raise ProviderError("OPENAI_API_KEY is not configured", code="not_configured", provider=self.name)
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _post_json(self, path: str, body: dict) -> dict:
        """POST and decode a JSON body; every failure becomes ProviderError"""
        url = f"{self.base_url}{path}"
        headers = self._headers()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.request("POST", url, headers=headers, json=body)
        except httpx.TimeoutException as e:
            raise ProviderError(f"AI provider timed out ({path})", code="timeout", provider=self.name) from e
        except httpx.RequestError as e:
            raise ProviderError(f"AI provider unreachable: {e}", code="connection_error", provider=self.name) from e

        if resp.status_code >= 400:
            self._raise_for_status(resp)

        try:
            return resp.json()
        except ValueError as e:
            raise ProviderError("AI provider returned non-JSON body", code="bad_payload", provider=self.name) from e

    def _raise_for_status(self, resp: httpx.Response):
        """Turn an error response into ProviderError"""
        try:
            body = resp.json()
            message = (body.get("error") or {}).get("message") or resp.text
        except Exception:
            message = resp.text
        code = "rate_limit" if resp.status_code == 429 else "http_error"
        raise ProviderError(
            f"AI provider request failed ({resp.status_code}): {message}",
            code=code,
            provider=self.name,
        )

    async def _chat_json(self, system_prompt: str, payload: dict, temperature: float) -> dict:
        body = {
            "model": self.model,
            "temperature": temperature,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": json.dumps(payload, default=str)},
            ],
        }
        data = await self._post_json("/chat/completions", body)
        try:
            content = data["choices"][0]["message"]["content"] or "{}"
            parsed = json.loads(content)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ProviderError("AI provider returned an unusable completion", code="bad_payload",
                                provider=self.name) from e
        if not isinstance(parsed, dict):
            raise ProviderError("AI provider completion is not a JSON object", code="bad_payload",
                                provider=self.name)
        return parsed

    # ══════════════════════════════════════════════════════════
    # Provider API
    # ══════════════════════════════════════════════════════════

    async def moderate_text(self, text: str) -> AiModerationResult:
        data = await self._post_json("/moderations", {"model": self.moderation_model, "input": text})
        results = data.get("results") or [{}]
        result = results[0] if isinstance(results[0], dict) else {}
        return AiModerationResult(
            flagged=bool(result.get("flagged")),
            categories=dict(result.get("categories") or {}),
            category_scores=dict(result.get("category_scores") or {}),
        )

    async def eligibility_precheck(self, profile: dict, application: dict) -> EligibilityPrecheckResult:
        parsed = await self._chat_json(
            _PRECHECK_SYSTEM_PROMPT, {"profile": profile, "application": application}, temperature=0.2,
        )
        outcome = parsed.get("provisionalOutcome")
        missing = parsed.get("missingEvidence")
        steps = parsed.get("nextSteps")
        return EligibilityPrecheckResult(
            provisional_outcome=outcome if outcome in PRECHECK_OUTCOMES else "uncertain",
            confidence=_clamp01(parsed.get("confidence", 0.5)),
            missing_evidence=[str(m) for m in missing] if isinstance(missing, list) else [],
            next_steps=[str(s) for s in steps] if isinstance(steps, list) else [],
            rationale=str(parsed.get("rationale") or "AI-assisted provisional precheck."),
        )

    async def extract_document(self, document_text: str,
                               document_type: Optional[str] = None) -> DocumentExtractionResult:
        parsed = await self._chat_json(
            _EXTRACT_SYSTEM_PROMPT,
            {"documentText": document_text, "documentType": document_type},
            temperature=0,
        )
        fields = parsed.get("extractedFields")
        return DocumentExtractionResult(
            summary=str(parsed.get("summary") or "No summary generated."),
            extracted_fields={str(k): str(v) for k, v in fields.items()} if isinstance(fields, dict) else {},
            confidence=_clamp01(parsed.get("confidence", 0.5)),
        )

    async def assistant_reply(
        self,
        prompt: str,
        context_documents: list[ContextDocument],
    ) -> AsyncGenerator[str, None]:
        """Stream completion deltas from the SSE response"""
        url = f"{self.base_url}/chat/completions"
        body = {
            "model": self.model,
            "temperature": 0.2,
            "stream": True,
            "messages": [
                {"role": "system", "content": _ASSISTANT_SYSTEM_PROMPT},
                {"role": "user", "content": json.dumps({
                    "prompt": prompt,
                    "contextDocuments": [
                        {"title": d.title, "content": d.content, "sourceUrl": d.source_url}
                        for d in context_documents
                    ],
                })},
            ],
        }
        headers = self._headers()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream("POST", url, headers=headers, json=body) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                        self._raise_for_status(resp)
                    async for line in resp.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        data = line[5:].strip()
                        if data == "[DONE]":
                            break
                        try:
                            chunk = json.loads(data)
                        except ValueError:
                            logger.debug("Skipping malformed stream line: %s", data[:80])
                            continue
                        for choice in chunk.get("choices") or []:
                            delta = (choice.get("delta") or {}).get("content")
                            if delta:
                                yield delta
        except httpx.TimeoutException as e:
            raise ProviderError("AI provider stream timed out", code="timeout", provider=self.name) from e
        except httpx.RequestError as e:
            raise ProviderError(f"AI provider stream failed: {e}", code="stream_error", provider=self.name) from e
