"""
HTTP API tests (ASGI in-process, SQLite, mock AI provider)
"""
import json

import pytest
from sqlalchemy import select

from portal.core.exceptions import ProviderError
from portal.core.response import ErrorCode
from portal.models.application import Application, Document, Message
from portal.models.audit import AiRun, AuditEvent
from portal.models.knowledge import KnowledgeDocument
from portal.models.moderation import ModerationItem
from portal.services.ai.mock import MockAiProvider

from tests.conftest import APPLICANT_ID, CASEWORKER_ID, ORG_ID, OTHER_ORG_ID


async def _seed_application(session_factory, organization_id=ORG_ID, applicant_user_id=APPLICANT_ID,
                            status="submitted"):
    async with session_factory() as session:
        application = Application(
            organization_id=organization_id,
            applicant_user_id=applicant_user_id,
            title="Two-bed social rent",
            status=status,
        )
        session.add(application)
        await session.commit()
        return application.id


async def _seed_document(session_factory, application_id=None, uploaded_by_user_id=APPLICANT_ID,
                         extraction_text=None):
    async with session_factory() as session:
        document = Document(
            organization_id=ORG_ID,
            application_id=application_id,
            uploaded_by_user_id=uploaded_by_user_id,
            file_name="payslip.pdf",
            mime_type="application/pdf",
            storage_key="org-1/payslip.pdf",
            file_size=2048,
            extraction_text=extraction_text,
        )
        session.add(document)
        await session.commit()
        return document.id


def _sse_events(body: str) -> list:
    events = []
    for block in body.strip().split("\n\n"):
        fields = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((fields["event"], json.loads(fields["data"])))
    return events


@pytest.fixture
def applicant(auth_headers):
    return auth_headers(user_id=APPLICANT_ID, role="applicant")


@pytest.fixture
def caseworker(auth_headers):
    return auth_headers(user_id=CASEWORKER_ID, role="caseworker")


@pytest.mark.unit
class TestAuth:

    @pytest.mark.asyncio
    async def test_health(self, api):
        client, _ = api
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_missing_token(self, api):
        client, _ = api
        resp = await client.get("/api/v1/moderation/queue")
        assert resp.status_code == 401
        assert resp.json()["code"] == ErrorCode.TOKEN_INVALID

    @pytest.mark.asyncio
    async def test_bad_token(self, api):
        client, _ = api
        resp = await client.get("/api/v1/moderation/queue", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_applicant_cannot_review(self, api, applicant):
        client, _ = api
        resp = await client.get("/api/v1/moderation/queue", headers=applicant)
        assert resp.status_code == 403
        assert resp.json()["code"] == ErrorCode.PERMISSION_DENIED


@pytest.mark.unit
class TestPolicyRoutes:

    @pytest.mark.asyncio
    async def test_publish_and_read(self, api, caseworker):
        client, _ = api
        resp = await client.get("/api/v1/moderation/policy/current", headers=caseworker)
        assert resp.json()["data"] == {"policy": None}

        for title in ("First rules", "Second rules"):
            resp = await client.post("/api/v1/moderation/policy/publish", headers=caseworker, json={
                "title": title,
                "rules": {"blockedPhrases": ["banned-term"], "watchPhrases": ["cash"]},
            })
            assert resp.status_code == 200
        assert resp.json()["data"] == {"version_number": 2}

        current = (await client.get("/api/v1/moderation/policy/current", headers=caseworker)).json()["data"]
        assert current["policy"]["version_number"] == 2
        assert current["policy"]["rules"] == {
            "blockedPhrases": ["banned-term"], "watchPhrases": ["cash"], "blockedRegex": [],
        }

        versions = (await client.get("/api/v1/moderation/policy/versions", headers=caseworker)).json()["data"]
        assert [(v["version_number"], v["is_active"]) for v in versions["items"]] == [(2, True), (1, False)]

    @pytest.mark.asyncio
    async def test_publish_validation(self, api, caseworker):
        client, _ = api
        resp = await client.post("/api/v1/moderation/policy/publish", headers=caseworker, json={
            "title": "x", "rules": {"unknownKey": []},
        })
        assert resp.status_code == 422
        assert resp.json()["code"] == ErrorCode.PARAM_INVALID


@pytest.mark.unit
class TestMessageFlow:

    @pytest.mark.asyncio
    async def test_clean_message_visible(self, api, applicant, session_factory):
        client, _ = api
        application_id = await _seed_application(session_factory)

        resp = await client.post("/api/v1/messages", headers=applicant, json={
            "application_id": application_id, "body": "When is my viewing?",
        })

        data = resp.json()["data"]
        assert resp.status_code == 200
        assert data["moderation_decision"] == "approved"
        assert data["visibility"] == "visible"
        assert data["moderation_status"] == "success"
        assert data["presentation"]["label"] == "Approved"

    @pytest.mark.asyncio
    async def test_review_and_override(self, api, applicant, caseworker, session_factory):
        client, _ = api
        application_id = await _seed_application(session_factory)

        sent = (await client.post("/api/v1/messages", headers=applicant, json={
            "application_id": application_id, "body": "Buy now! email me at a@b.com",
        })).json()["data"]
        assert sent["moderation_decision"] == "pending_review"
        assert sent["visibility"] == "hidden"
        assert sent["presentation"]["tone"] == "warning"

        queue = (await client.get("/api/v1/moderation/queue", headers=caseworker)).json()["data"]["items"]
        assert len(queue) == 1
        assert queue[0]["id"] == sent["moderation_item_id"]
        assert "a@b.com" not in queue[0]["preview"]
        assert "[REDACTED_EMAIL]" in queue[0]["preview"]

        resp = await client.post("/api/v1/moderation/decision", headers=caseworker, json={
            "moderation_item_id": sent["moderation_item_id"],
            "decision": "approved",
            "reason": "Promotional wording, not a scam",
        })
        assert resp.status_code == 200
        assert resp.json()["data"]["decision"] == "approved"

        detail = (await client.get(
            f"/api/v1/moderation/items/{sent['moderation_item_id']}", headers=caseworker,
        )).json()["data"]
        assert detail["item"]["decision"] == "approved"
        assert detail["item"]["pii_types"] == ["email"]
        assert [e["event_type"] for e in detail["events"]] == ["decision_created", "manual_decision"]

        async with session_factory() as session:
            message = await session.get(Message, sent["id"])
            assert message.visibility == "visible"

        queue = (await client.get("/api/v1/moderation/queue", headers=caseworker)).json()["data"]["items"]
        assert queue == []

    @pytest.mark.asyncio
    async def test_severe_message_blocked(self, api, applicant, session_factory):
        client, _ = api
        application_id = await _seed_application(session_factory)
        data = (await client.post("/api/v1/messages", headers=applicant, json={
            "application_id": application_id, "body": "I will hurt you",
        })).json()["data"]
        assert data["moderation_decision"] == "blocked"
        assert data["visibility"] == "hidden"
        assert data["presentation"]["label"] == "Blocked"

    @pytest.mark.asyncio
    async def test_provider_outage_falls_back(self, api, applicant, caseworker, session_factory, stub_provider):
        client, app = api
        app.state.ai_provider = stub_provider(side_effect=ProviderError("down", code="timeout", provider="stub"))
        application_id = await _seed_application(session_factory)

        resp = await client.post("/api/v1/messages", headers=applicant, json={
            "application_id": application_id, "body": "Hello",
        })

        data = resp.json()["data"]
        assert resp.status_code == 200
        assert data["moderation_status"] == "fallback"
        assert data["moderation_decision"] == "pending_review"
        assert data["visibility"] == "hidden"
        assert data["moderation_item_id"] is not None

        async with session_factory() as session:
            events = (await session.execute(select(AuditEvent))).scalars().all()
        assert [e.event_type for e in events] == ["ai.fallback"]

        queue = (await client.get("/api/v1/moderation/queue", headers=caseworker)).json()["data"]["items"]
        assert [q["id"] for q in queue] == [data["moderation_item_id"]]

        resp = await client.post("/api/v1/moderation/decision", headers=caseworker, json={
            "moderation_item_id": data["moderation_item_id"],
            "decision": "approved",
            "reason": "Reviewed during provider outage",
        })
        assert resp.status_code == 200
        async with session_factory() as session:
            message = await session.get(Message, data["id"])
            assert message.visibility == "visible"

    @pytest.mark.asyncio
    async def test_applicant_cannot_message_other_application(self, api, applicant, session_factory):
        client, _ = api
        application_id = await _seed_application(session_factory, applicant_user_id=APPLICANT_ID + 1)
        resp = await client.post("/api/v1/messages", headers=applicant, json={
            "application_id": application_id, "body": "Hi",
        })
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_application_in_other_org(self, api, applicant, session_factory):
        client, _ = api
        application_id = await _seed_application(session_factory, organization_id=OTHER_ORG_ID)
        resp = await client.post("/api/v1/messages", headers=applicant, json={
            "application_id": application_id, "body": "Hi",
        })
        assert resp.status_code == 404
        assert resp.json()["code"] == ErrorCode.NOT_FOUND


@pytest.mark.unit
class TestDocuments:

    @pytest.mark.asyncio
    async def test_attach_document(self, api, applicant, session_factory):
        client, _ = api
        application_id = await _seed_application(session_factory)
        resp = await client.post("/api/v1/documents", headers=applicant, json={
            "application_id": application_id,
            "file_name": "tenancy.pdf",
            "mime_type": "application/pdf",
            "storage_key": "org-1/tenancy.pdf",
            "file_size": 5120,
            "extracted_text": "Tenancy agreement for flat 2",
        })
        data = resp.json()["data"]
        assert resp.status_code == 200
        assert data["moderation_decision"] == "approved"
        assert data["presentation"]["nextStep"].startswith("Document")


@pytest.mark.unit
class TestDecisionRoute:

    @pytest.mark.asyncio
    async def test_unknown_item(self, api, caseworker):
        client, _ = api
        resp = await client.post("/api/v1/moderation/decision", headers=caseworker, json={
            "moderation_item_id": 404, "decision": "approved", "reason": "looks fine",
        })
        assert resp.status_code == 404
        assert resp.json()["code"] == ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_invalid_decision(self, api, caseworker):
        client, _ = api
        resp = await client.post("/api/v1/moderation/decision", headers=caseworker, json={
            "moderation_item_id": 1, "decision": "escalate", "reason": "x",
        })
        assert resp.status_code == 422


@pytest.mark.unit
class TestAuditRoutes:

    @pytest.mark.asyncio
    async def test_correlation_id_threaded(self, api, auth_headers, caseworker, session_factory):
        client, _ = api
        application_id = await _seed_application(session_factory)
        headers = auth_headers(user_id=APPLICANT_ID, role="applicant", correlation_id="req-42")

        resp = await client.post("/api/v1/messages", headers=headers, json={
            "application_id": application_id, "body": "Thanks!",
        })
        assert resp.headers["X-Correlation-ID"] == "req-42"

        listed = (await client.get(
            "/api/v1/audit/events", headers=caseworker, params={"correlation_id": "req-42"},
        )).json()["data"]
        assert listed["total"] == 1
        assert listed["items"][0]["event_type"] == "moderation.evaluated"

    @pytest.mark.asyncio
    async def test_generated_correlation_id_echoed(self, api):
        client, _ = api
        resp = await client.get("/health")
        assert resp.headers["X-Correlation-ID"]

    @pytest.mark.asyncio
    async def test_list_filters_and_pagination(self, api, caseworker):
        client, _ = api
        for title in ("one", "two", "three"):
            await client.post("/api/v1/moderation/policy/publish", headers=caseworker, json={
                "title": f"rules {title}", "rules": {},
            })

        page = (await client.get(
            "/api/v1/audit/events", headers=caseworker, params={"event_type": "policy.", "page_size": 2},
        )).json()["data"]
        assert page["total"] == 3
        assert len(page["items"]) == 2
        assert all(item["event_type"] == "policy.published" for item in page["items"])

    @pytest.mark.asyncio
    async def test_other_org_sees_nothing(self, api, caseworker, auth_headers):
        client, _ = api
        await client.post("/api/v1/moderation/policy/publish", headers=caseworker, json={
            "title": "rules", "rules": {},
        })
        other = auth_headers(user_id=CASEWORKER_ID, organization_id=OTHER_ORG_ID)
        data = (await client.get("/api/v1/audit/events", headers=other)).json()["data"]
        assert data["total"] == 0

    @pytest.mark.asyncio
    async def test_csv_export(self, api, caseworker):
        client, _ = api
        await client.post("/api/v1/moderation/policy/publish", headers=caseworker, json={
            "title": "rules", "rules": {},
        })
        resp = await client.get("/api/v1/audit/events/export", headers=caseworker)
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        lines = resp.content.decode("utf-8-sig").splitlines()
        assert lines[0].startswith("time,actor_user_id,event_type")
        assert "policy.published" in lines[1]


class InterruptedAssistant(MockAiProvider):
    """Streams one chunk, then the connection drops"""

    async def assistant_reply(self, prompt, context_documents):
        yield "Partial "
        raise ProviderError("connection reset", code="stream_error", provider=self.name)


class OfflineAssistant(MockAiProvider):
    async def assistant_reply(self, prompt, context_documents):
        raise ProviderError("slow", code="timeout", provider=self.name)
        yield  # pragma: no cover


@pytest.mark.unit
class TestApplicationSubmit:

    @pytest.mark.asyncio
    async def test_submit_clean_application(self, api, applicant, session_factory):
        client, _ = api
        application_id = await _seed_application(session_factory, status="draft")
        await _seed_document(session_factory, application_id=application_id)

        resp = await client.post(f"/api/v1/applications/{application_id}/submit", headers=applicant, json={
            "needs_statement": "Step-free access needed",
        })

        data = resp.json()["data"]
        assert resp.status_code == 200
        assert data["status"] == "submitted"
        assert data["moderation_decision"] == "approved"
        assert data["presentation"]["nextStep"].startswith("Application")
        async with session_factory() as session:
            application = await session.get(Application, application_id)
            assert application.submitted_at is not None
            assert application.needs_statement == "Step-free access needed"
            item = (await session.execute(select(ModerationItem))).scalars().one()
            assert item.target_type == "application_field"
            assert item.raw_text == "Two-bed social rent\nStep-free access needed"

    @pytest.mark.asyncio
    async def test_blocked_submission_needs_info_then_override(self, api, applicant, caseworker, session_factory):
        client, _ = api
        application_id = await _seed_application(session_factory, status="draft")
        await _seed_document(session_factory, application_id=application_id)

        data = (await client.post(f"/api/v1/applications/{application_id}/submit", headers=applicant, json={
            "needs_statement": "I will hurt you",
        })).json()["data"]
        assert data["status"] == "needs_info"
        assert data["moderation_decision"] == "blocked"

        async with session_factory() as session:
            assert (await session.get(Application, application_id)).submitted_at is None

        resp = await client.post("/api/v1/moderation/decision", headers=caseworker, json={
            "moderation_item_id": data["moderation_item_id"],
            "decision": "approved",
            "reason": "Quoting a threat received, not making one",
        })
        assert resp.status_code == 200
        async with session_factory() as session:
            assert (await session.get(Application, application_id)).status == "in_review"

    @pytest.mark.asyncio
    async def test_provider_outage_still_submits(self, api, applicant, session_factory, stub_provider):
        client, app = api
        app.state.ai_provider = stub_provider(side_effect=ProviderError("down", code="timeout", provider="stub"))
        application_id = await _seed_application(session_factory, status="draft")
        await _seed_document(session_factory, application_id=application_id)

        data = (await client.post(
            f"/api/v1/applications/{application_id}/submit", headers=applicant, json={},
        )).json()["data"]

        assert data["status"] == "submitted"
        assert data["moderation_status"] == "fallback"
        assert data["moderation_decision"] == "pending_review"
        assert data["moderation_item_id"] is not None

    @pytest.mark.asyncio
    async def test_document_required(self, api, applicant, session_factory):
        client, _ = api
        application_id = await _seed_application(session_factory, status="draft")
        resp = await client.post(f"/api/v1/applications/{application_id}/submit", headers=applicant, json={})
        assert resp.status_code == 422
        assert resp.json()["data"] == {"reason": "documents_required"}

    @pytest.mark.asyncio
    async def test_only_applicant_submits(self, api, caseworker, session_factory):
        client, _ = api
        application_id = await _seed_application(session_factory, status="draft")
        await _seed_document(session_factory, application_id=application_id)
        resp = await client.post(f"/api/v1/applications/{application_id}/submit", headers=caseworker, json={})
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_already_submitted(self, api, applicant, session_factory):
        client, _ = api
        application_id = await _seed_application(session_factory, status="in_review")
        await _seed_document(session_factory, application_id=application_id)
        resp = await client.post(f"/api/v1/applications/{application_id}/submit", headers=applicant, json={})
        assert resp.status_code == 409
        assert resp.json()["data"] == {"reason": "application_already_submitted"}


@pytest.mark.unit
class TestEligibilityPrecheckRoute:

    @pytest.mark.asyncio
    async def test_precheck_stored_on_application(self, api, applicant, session_factory):
        client, _ = api
        application_id = await _seed_application(session_factory)

        resp = await client.post("/api/v1/ai/eligibility/precheck", headers=applicant, json={
            "application_id": application_id, "profile": {"legalFullName": "Jane Doe"},
        })

        data = resp.json()["data"]
        assert resp.status_code == 200
        assert data["provisionalOutcome"] == "uncertain"
        assert data["missingEvidence"] == ["postcode"]
        assert data["label"] == "AI-assisted precheck, not final authority decision."
        assert data["providerFallback"] is False
        async with session_factory() as session:
            application = await session.get(Application, application_id)
            assert application.eligibility_outcome["provisionalOutcome"] == "uncertain"
            runs = (await session.execute(select(AiRun))).scalars().all()
        assert [(r.run_type, r.outcome, r.provider) for r in runs] == [("eligibility_precheck", "success", "mock")]

    @pytest.mark.asyncio
    async def test_precheck_fallback(self, api, applicant, stub_provider, session_factory):
        client, app = api
        provider = stub_provider()
        provider.eligibility_precheck.side_effect = ProviderError("500", code="http_error", provider="stub")
        app.state.ai_provider = provider

        data = (await client.post("/api/v1/ai/eligibility/precheck", headers=applicant, json={
            "profile": {}, "application": {"householdSize": 2},
        })).json()["data"]

        assert data["providerFallback"] is True
        assert data["nextSteps"] == ["Caseworker manual review required"]
        async with session_factory() as session:
            events = (await session.execute(select(AuditEvent))).scalars().all()
        assert [(e.event_type, e.event_metadata["source"]) for e in events] == [("ai.fallback", "eligibility_precheck")]

    @pytest.mark.asyncio
    async def test_precheck_other_applicant(self, api, applicant, session_factory):
        client, _ = api
        application_id = await _seed_application(session_factory, applicant_user_id=APPLICANT_ID + 1)
        resp = await client.post("/api/v1/ai/eligibility/precheck", headers=applicant, json={
            "application_id": application_id,
        })
        assert resp.status_code == 403


@pytest.mark.unit
class TestDocumentExtractRoute:

    @pytest.mark.asyncio
    async def test_extract_stored_document(self, api, applicant, session_factory):
        client, _ = api
        document_id = await _seed_document(session_factory, extraction_text="Payslip March 2026\nNet pay 1,900")

        resp = await client.post("/api/v1/ai/documents/extract", headers=applicant, json={
            "document_id": document_id, "document_type": "payslip",
        })

        data = resp.json()["data"]
        assert resp.status_code == 200
        assert data["summary"] == "[Mock] Payslip March 2026"
        assert data["extractedFields"] == {"documentType": "payslip"}
        assert data["moderationDecision"] == "approved"
        async with session_factory() as session:
            document = await session.get(Document, document_id)
            assert document.extraction_text == "[Mock] Payslip March 2026"
            assert document.moderation_decision == "approved"

    @pytest.mark.asyncio
    async def test_text_required(self, api, applicant):
        client, _ = api
        resp = await client.post("/api/v1/ai/documents/extract", headers=applicant, json={})
        assert resp.status_code == 422
        assert resp.json()["data"] == {"reason": "document_text_required"}

    @pytest.mark.asyncio
    async def test_other_uploader(self, api, applicant, session_factory):
        client, _ = api
        document_id = await _seed_document(session_factory, uploaded_by_user_id=APPLICANT_ID + 1,
                                           extraction_text="x")
        resp = await client.post("/api/v1/ai/documents/extract", headers=applicant, json={
            "document_id": document_id,
        })
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_document(self, api, applicant):
        client, _ = api
        resp = await client.post("/api/v1/ai/documents/extract", headers=applicant, json={"document_id": 999})
        assert resp.status_code == 404


@pytest.mark.unit
class TestAssistantRoute:

    @pytest.mark.asyncio
    async def test_stream(self, api, applicant, session_factory):
        client, _ = api
        async with session_factory() as session:
            session.add(KnowledgeDocument(
                organization_id=ORG_ID, title="Allocation scheme", content="Bands A-D", is_approved=True,
            ))
            await session.commit()

        resp = await client.post("/api/v1/ai/assistant/stream", headers=applicant, json={
            "prompt": "Which band am I in?",
        })

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        events = _sse_events(resp.text)
        assert events[0] == ("message_start", {"moderationDecision": "approved", "sources": ["Allocation scheme"]})
        assert events[-1][0] == "message_end"
        text = "".join(data["text"] for name, data in events if name == "text_chunk")
        assert text == "[Mock] Thanks for your question. See [Policy: Allocation scheme]."

        async with session_factory() as session:
            item = (await session.execute(select(ModerationItem))).scalars().one()
            run = (await session.execute(select(AiRun))).scalars().one()
        assert item.target_type == "assistant_prompt"
        assert item.target_id.startswith(f"assistant:{APPLICANT_ID}:")
        assert (run.run_type, run.outcome) == ("assistant_stream", "success")

    @pytest.mark.asyncio
    async def test_blocked_prompt(self, api, applicant, session_factory):
        client, _ = api

        resp = await client.post("/api/v1/ai/assistant/stream", headers=applicant, json={
            "prompt": "I will hurt you",
        })

        body = resp.json()
        assert resp.status_code == 400
        assert body["code"] == ErrorCode.MODERATION_BLOCKED
        assert body["message"] == "Prompt blocked by moderation policy"
        async with session_factory() as session:
            item = (await session.execute(select(ModerationItem))).scalars().one()
            runs = (await session.execute(select(AiRun))).scalars().all()
        assert item.decision == "blocked"
        assert body["data"]["moderation_item_id"] == item.id
        assert runs == []

    @pytest.mark.asyncio
    async def test_provider_offline(self, api, applicant, session_factory):
        client, app = api
        app.state.ai_provider = OfflineAssistant()

        resp = await client.post("/api/v1/ai/assistant/stream", headers=applicant, json={"prompt": "Hello"})

        assert resp.status_code == 200
        events = _sse_events(resp.text)
        assert [name for name, _ in events] == ["message_start", "error", "message_end"]
        assert events[1][1]["reason"] == "timeout"
        async with session_factory() as session:
            run = (await session.execute(select(AiRun))).scalars().one()
            audit_types = [e.event_type for e in (await session.execute(select(AuditEvent))).scalars().all()]
        assert run.outcome == "provider_error_fallback"
        assert "ai.fallback" in audit_types

    @pytest.mark.asyncio
    async def test_stream_interrupted(self, api, applicant):
        client, app = api
        app.state.ai_provider = InterruptedAssistant()

        resp = await client.post("/api/v1/ai/assistant/stream", headers=applicant, json={"prompt": "Hello"})

        events = _sse_events(resp.text)
        assert [name for name, _ in events] == ["message_start", "text_chunk", "error", "message_end"]
        assert events[1][1] == {"text": "Partial "}
        assert events[2][1]["reason"] == "stream_error"
