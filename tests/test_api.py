"""
API, service and persistence tests for StoryGuard.

Runs the FastAPI app against an in-memory SQLite database with the
moderation engine swapped for one backed by a scripted provider.
"""

import time
import uuid
from collections import deque
from datetime import datetime, timedelta

import httpx
import pytest
from unittest.mock import Mock, patch
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from storyguard.clients.classifier_client import ClassifierClient
from storyguard.core import security
from storyguard.core.dependencies import get_moderation_engine
from storyguard.db import session as db_session_module
from storyguard.db.session import get_db, get_session_factory, Base
from storyguard.models.story import Story
from storyguard.models.moderation_log import ModerationLog
from storyguard.models.notification_log import NotificationLog, NotificationStatus
from storyguard.moderation.engine import ModerationConfig, ModerationEngine
from storyguard.moderation.models import ContentType, Decision, ModerationEvent, Phase
from storyguard.core.security import validate_media_ref, validate_text_content, sanitize_input

# Test database setup
SQLALCHEMY_DATABASE_URL = "sqlite://"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class ScriptedProvider:
    """Classifier stand-in; risks can be changed per test."""

    def __init__(self):
        self.fast_risk = 0.1
        self.deep_risk = 0.1
        self.calls = []

    def __call__(self, request: httpx.Request):
        self.calls.append(request.url.path)
        risk = self.fast_risk if request.url.path == "/moderate-image" else self.deep_risk
        return httpx.Response(200, json={"risk": risk, "tags": ["scripted"]})


provider = ScriptedProvider()
moderation_engine = ModerationEngine(
    ModerationConfig(api_url="https://classifier.test", api_key="k", enabled=True),
    client=ClassifierClient("https://classifier.test", "k", transport=httpx.MockTransport(provider)),
)

def override_get_db():
    """Override database dependency for testing."""
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db
app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
app.dependency_overrides[get_moderation_engine] = lambda: moderation_engine

@pytest.fixture
def client():
    """Create test client over a fresh schema."""
    Base.metadata.create_all(bind=engine)
    security.rate_limit_storage.clear()
    provider.fast_risk = 0.1
    provider.deep_risk = 0.1
    provider.calls.clear()
    with TestClient(app) as c:
        yield c
    Base.metadata.drop_all(bind=engine)

@pytest.fixture
def db_session():
    """Create database session for testing."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)

def make_story(db, **overrides) -> Story:
    now = datetime.utcnow()
    values = dict(
        author_id="author-1",
        author_email="author@example.com",
        content_type=ContentType.TEXT,
        text="hello",
        created_at=now,
        expires_at=now + timedelta(hours=24),
        mod_status=Decision.APPROVED,
    )
    values.update(overrides)
    story = Story(**values)
    db.add(story)
    db.commit()
    db.refresh(story)
    return story


class TestSecurityValidation:
    """Test security and validation functions."""

    def test_validate_text_content_valid(self):
        for content in ["A day at the lake", "Numbers 123 and symbols !@#"]:
            is_valid, error = validate_text_content(content)
            assert is_valid, f"Content '{content}' should be valid: {error}"

    def test_validate_text_content_invalid(self):
        invalid_cases = [
            ("", "Empty content"),
            ("   ", "Whitespace only"),
            ("x" * 5001, "Too long content"),
            ("<script>alert('xss')</script>", "XSS attempt"),
            ("javascript:alert('xss')", "JavaScript protocol")
        ]
        for content, description in invalid_cases:
            is_valid, error = validate_text_content(content)
            assert not is_valid, f"{description} should be invalid: {error}"

    def test_validate_media_ref(self):
        assert validate_media_ref("https://cdn.example.com/stories/abc")[0]
        assert validate_media_ref("http://cdn.example.com/clip.mp4")[0]
        for ref in ["", "not-a-url", "ftp://example.com/a.jpg", "https://x.com/" + "a" * 2048]:
            assert not validate_media_ref(ref)[0], f"{ref[:30]} should be invalid"

    def test_sanitize_input(self):
        assert sanitize_input("  hi\x00 there\x07  ") == "hi there"


class TestStoryPublishing:
    """Test publishing through the API, including the deep review that follows."""

    def test_clean_text_story_goes_live(self, client, db_session):
        response = client.post("/api/v1/stories", json={
            "author_id": "author-1",
            "content_type": "TEXT",
            "text": "Morning run by the river"
        })

        assert response.status_code == 201
        data = response.json()
        assert data["mod_status"] == "APPROVED"
        assert data["mod_risk"] == pytest.approx(0.1)
        assert data["mod_confidence"] == 0.8

        story = db_session.get(Story, uuid.UUID(data["id"]))
        assert story.expires_at - story.created_at == timedelta(hours=24)
        assert story.mod_latency_ms is not None
        # The deep review ran after the response and found nothing
        assert provider.calls == ["/moderate-deep"]
        phases = [log.phase for log in db_session.query(ModerationLog).filter_by(story_id=story.id)]
        assert phases == [Phase.SYNC, Phase.ASYNC]

    def test_deep_review_rejects_live_story(self, client, db_session):
        provider.deep_risk = 0.9

        response = client.post("/api/v1/stories", json={
            "author_id": "author-2",
            "author_email": "author2@example.com",
            "content_type": "TEXT",
            "text": "Looks innocent"
        })
        assert response.json()["mod_status"] == "APPROVED"

        story_id = response.json()["id"]
        stored = client.get(f"/api/v1/stories/{story_id}").json()
        assert stored["mod_status"] == "REJECTED"
        assert stored["mod_risk"] == 0.9
        assert stored["mod_tags"] == ["scripted"]

        # No credentials configured, so both channels are mock-sent and logged
        logs = db_session.query(NotificationLog).filter_by(story_id=uuid.UUID(story_id)).all()
        assert sorted(log.channel for log in logs) == ["email", "slack"]
        assert all(log.event_type == "story_rejected" for log in logs)

    def test_pending_story_gets_no_deep_review(self, client):
        response = client.post("/api/v1/stories", json={
            "author_id": "author-3",
            "content_type": "TEXT",
            "text": "violence " * 50
        })

        data = response.json()
        assert data["mod_status"] == "PENDING"
        assert data["mod_tags"] == ["harmful_content", "long_text"]
        assert provider.calls == []

    def test_image_without_thumbnail_queued(self, client):
        response = client.post("/api/v1/stories", json={
            "author_id": "author-4",
            "content_type": "IMAGE",
            "media_ref": "https://cdn.example.com/full.jpg"
        })

        data = response.json()
        assert data["mod_status"] == "PENDING"
        assert data["mod_tags"] == ["manual_review_needed"]
        assert provider.calls == []

    def test_image_story_uses_fast_check(self, client):
        provider.fast_risk = 0.65

        response = client.post("/api/v1/stories", json={
            "author_id": "author-5",
            "content_type": "IMAGE",
            "media_ref": "https://cdn.example.com/full.jpg",
            "thumbnail_ref": "https://cdn.example.com/thumb.jpg"
        })

        assert response.json()["mod_status"] == "SHADOW"
        assert provider.calls == ["/moderate-image"]

    def test_video_story_always_pending(self, client):
        response = client.post("/api/v1/stories", json={
            "author_id": "author-6",
            "content_type": "VIDEO",
            "media_ref": "https://cdn.example.com/clip.mp4",
            "thumbnail_ref": "https://cdn.example.com/clip.jpg",
            "metadata": {"duration_seconds": 20, "size_bytes": 30 * 1024 * 1024}
        })

        data = response.json()
        assert data["mod_status"] == "PENDING"
        assert data["mod_risk"] == pytest.approx(0.4)
        assert sorted(data["mod_tags"]) == ["large_file", "long_video"]

    def test_text_story_without_text_is_invalid(self, client):
        response = client.post("/api/v1/stories", json={
            "author_id": "author-7",
            "content_type": "TEXT",
            "text": "   "
        })

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error_code"] == "VALIDATION_ERROR"
        assert detail["details"]["field"] == "text"

    def test_bad_media_ref_is_invalid(self, client):
        response = client.post("/api/v1/stories", json={
            "author_id": "author-8",
            "content_type": "IMAGE",
            "media_ref": "file:///etc/passwd"
        })

        assert response.status_code == 400
        assert response.json()["detail"]["details"]["field"] == "media_ref"

    def test_unknown_story_is_404(self, client):
        response = client.get(f"/api/v1/stories/{uuid.uuid4()}")
        assert response.status_code == 404
        assert response.json()["detail"]["error_code"] == "STORY_NOT_FOUND"


class TestDeepReviewService:
    """Test run_deep_review directly."""

    @pytest.mark.asyncio
    async def test_cleaner_signal_keeps_stricter_decision(self, db_session):
        from storyguard.services.story_service import run_deep_review

        provider.deep_risk = 0.65
        story = make_story(db_session, mod_status=Decision.PENDING, mod_risk=0.5)

        result = await run_deep_review(story.id, moderation_engine, TestingSessionLocal)

        assert result.decision == Decision.PENDING
        db_session.refresh(story)
        assert story.mod_status == Decision.PENDING
        assert story.mod_risk == 0.65

    @pytest.mark.asyncio
    async def test_expired_story_skipped(self, db_session):
        from storyguard.services.story_service import run_deep_review

        past = datetime.utcnow() - timedelta(hours=30)
        story = make_story(db_session, created_at=past, expires_at=past + timedelta(hours=24))

        assert await run_deep_review(story.id, moderation_engine, TestingSessionLocal) is None

    @pytest.mark.asyncio
    async def test_missing_story_skipped(self, db_session):
        from storyguard.services.story_service import run_deep_review

        assert await run_deep_review(uuid.uuid4(), moderation_engine, TestingSessionLocal) is None


class TestModerationEndpoints:
    """Test the stateless evaluation endpoints."""

    def test_evaluate_text(self, client):
        response = client.post("/api/v1/moderate/evaluate", json={
            "content_type": "TEXT",
            "text": "click here for free money now!!!"
        })

        assert response.status_code == 200
        data = response.json()
        assert data["decision"] == "APPROVED"
        assert data["tags"] == ["suspicious_content"]

    def test_deep_respects_current_decision(self, client):
        provider.deep_risk = 0.45

        response = client.post("/api/v1/moderate/deep", json={
            "submission": {"content_type": "TEXT", "text": "hello"},
            "current_decision": "SHADOW"
        })
        assert response.json()["decision"] == "PENDING"

        response = client.post("/api/v1/moderate/deep", json={
            "submission": {"content_type": "TEXT", "text": "hello"},
            "current_decision": "REJECTED"
        })
        assert response.json()["decision"] == "REJECTED"

    def test_batch_preserves_order(self, client):
        response = client.post("/api/v1/moderate/batch", json={"inputs": [
            {"content_type": "IMAGE"},
            {"content_type": "TEXT", "text": "hello"},
        ]})

        assert response.status_code == 200
        decisions = [r["decision"] for r in response.json()["results"]]
        assert decisions == ["PENDING", "APPROVED"]

    def test_batch_size_limit(self, client):
        response = client.post("/api/v1/moderate/batch", json={
            "inputs": [{"content_type": "TEXT", "text": "hi"}] * 51
        })
        assert response.status_code == 422

    def test_risk_decision_lookup(self, client):
        response = client.get("/api/v1/moderate/decision", params={"risk": 0.6})
        assert response.json() == {"risk": 0.6, "decision": "SHADOW"}

    @pytest.mark.parametrize("risk", ["nan", "-0.5", "1.5", "inf"])
    def test_risk_decision_rejects_out_of_range(self, client, risk):
        response = client.get("/api/v1/moderate/decision", params={"risk": risk})
        assert response.status_code == 422

    def test_rate_limiting(self, client):
        security.rate_limit_storage["testclient"] = deque(
            [time.monotonic()] * security.RATE_LIMIT_REQUESTS
        )

        response = client.post("/api/v1/moderate/evaluate", json={"content_type": "TEXT", "text": "hi"})

        assert response.status_code == 429
        assert response.json()["detail"]["error_code"] == "RATE_LIMIT_EXCEEDED"

    def test_idle_clients_are_forgotten(self, client):
        stale = time.monotonic() - security.RATE_LIMIT_WINDOW - 1
        security.rate_limit_storage["10.0.0.1"] = deque([stale])
        security.rate_limit_storage["10.0.0.2"] = deque()

        assert security.check_rate_limit("10.0.0.3")

        assert set(security.rate_limit_storage) == {"10.0.0.3"}


class TestAdminReview:
    """Test the manual review queue."""

    def test_queue_lists_pending_oldest_first(self, client, db_session):
        now = datetime.utcnow()
        newer = make_story(db_session, mod_status=Decision.PENDING, created_at=now,
                           expires_at=now + timedelta(hours=24))
        older = make_story(db_session, mod_status=Decision.PENDING, created_at=now - timedelta(hours=1),
                           expires_at=now + timedelta(hours=23))
        make_story(db_session, mod_status=Decision.APPROVED)
        make_story(db_session, mod_status=Decision.PENDING, created_at=now - timedelta(hours=25),
                   expires_at=now - timedelta(hours=1))

        response = client.get("/api/v1/admin/queue")

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert [item["id"] for item in data["items"]] == [str(older.id), str(newer.id)]

    def test_moderator_can_approve(self, client, db_session):
        story = make_story(db_session, mod_status=Decision.PENDING, mod_risk=0.5, mod_tags=["harmful_content"])

        response = client.post(f"/api/v1/admin/stories/{story.id}/decision", json={
            "action": "APPROVE",
            "reviewer": "mod-1",
            "note": "false positive"
        })

        assert response.status_code == 200
        assert response.json()["mod_status"] == "APPROVED"
        assert response.json()["mod_tags"] == ["harmful_content"]

        log = db_session.query(ModerationLog).filter_by(story_id=story.id).one()
        assert log.phase == Phase.MANUAL
        assert log.previous_decision == Decision.PENDING
        assert log.reviewer == "mod-1"

        notifications = db_session.query(NotificationLog).filter_by(story_id=story.id).all()
        assert {n.event_type for n in notifications} == {"story_approved"}

    def test_moderator_can_shadow_without_notifying(self, client, db_session):
        story = make_story(db_session, mod_status=Decision.APPROVED)

        response = client.post(f"/api/v1/admin/stories/{story.id}/decision", json={
            "action": "SHADOW",
            "reviewer": "mod-1"
        })

        assert response.json()["mod_status"] == "SHADOW"
        assert db_session.query(NotificationLog).filter_by(story_id=story.id).count() == 0

    def test_unknown_story(self, client):
        response = client.post(f"/api/v1/admin/stories/{uuid.uuid4()}/decision", json={
            "action": "REJECT",
            "reviewer": "mod-1"
        })
        assert response.status_code == 404

    def test_admin_key_required_when_configured(self, client):
        with patch.object(security.settings, "admin_api_key", "admin-secret"):
            assert client.get("/api/v1/admin/queue").status_code == 401
            response = client.get(
                "/api/v1/admin/queue",
                headers={"Authorization": "Bearer admin-secret"}
            )
            assert response.status_code == 200


class TestAnalytics:
    """Test moderation statistics."""

    def test_moderation_stats(self, client, db_session):
        make_story(db_session, mod_status=Decision.APPROVED, mod_latency_ms=10.0)
        make_story(db_session, mod_status=Decision.APPROVED, mod_latency_ms=30.0)
        make_story(db_session, mod_status=Decision.PENDING)
        make_story(db_session, mod_status=Decision.REJECTED)
        make_story(db_session, mod_status=Decision.SHADOW)

        response = client.get("/api/v1/analytics/moderation")

        assert response.status_code == 200
        assert response.json() == {
            "total_moderated": 5,
            "approved": 2,
            "pending": 1,
            "rejected": 1,
            "shadow": 1,
            "avg_processing_time": 20.0
        }

    def test_empty_stats(self, client):
        data = client.get("/api/v1/analytics/moderation").json()
        assert data["total_moderated"] == 0
        assert data["avg_processing_time"] == 0.0

    def test_author_summary(self, client, db_session):
        make_story(db_session, author_id="alice", mod_status=Decision.APPROVED)
        make_story(db_session, author_id="alice", mod_status=Decision.REJECTED)
        make_story(db_session, author_id="bob", mod_status=Decision.APPROVED)

        data = client.get("/api/v1/analytics/summary", params={"author": "alice"}).json()

        assert data == {
            "author_id": "alice",
            "total_stories": 2,
            "breakdown": {"APPROVED": 1, "REJECTED": 1}
        }


class TestNotificationService:
    """Test notification delivery."""

    def _event(self, story, decision=Decision.REJECTED):
        return ModerationEvent(
            story_id=story.id,
            author_id=story.author_id,
            author_email=story.author_email,
            previous_decision=Decision.APPROVED,
            decision=decision,
            phase=Phase.ASYNC,
            reason="Contains violence"
        )

    def test_send_email_notification_success(self, db_session):
        from storyguard.services import notification_service

        story = make_story(db_session)
        with patch("storyguard.services.notification_service.requests.post") as mock_post, \
                patch.object(notification_service.settings, "brevo_api_key", "test-key"):
            mock_post.return_value = Mock(status_code=201)

            assert notification_service.send_email_notification(self._event(story), db_session) is True

            mock_post.assert_called_once()
            body = mock_post.call_args.kwargs["json"]
            assert body["to"] == [{"email": "author@example.com"}]
            assert body["subject"] == "Story Rejected"
            assert "Contains violence" in body["htmlContent"]

        log = db_session.query(NotificationLog).filter_by(story_id=story.id).one()
        assert log.status == NotificationStatus.sent

    def test_send_slack_notification_success(self, db_session):
        from storyguard.services import notification_service

        story = make_story(db_session)
        with patch("storyguard.services.notification_service.requests.post") as mock_post, \
                patch.object(notification_service.settings, "slack_webhook_url", "https://hooks.slack.com/test"):
            mock_post.return_value = Mock(status_code=200)

            result = notification_service.send_slack_notification(
                self._event(story, Decision.APPROVED), db_session
            )

            assert result is True
            assert mock_post.call_args.args[0] == "https://hooks.slack.com/test"
            assert mock_post.call_args.kwargs["json"]["attachments"][0]["color"] == "good"

    def test_email_retries_then_gives_up(self, db_session):
        from storyguard.services import notification_service

        story = make_story(db_session)
        with patch("storyguard.services.notification_service.requests.post") as mock_post, \
                patch("storyguard.services.notification_service.time.sleep") as mock_sleep, \
                patch.object(notification_service.settings, "brevo_api_key", "test-key"):
            mock_post.return_value = Mock(status_code=500, text="error")

            assert notification_service.send_email_notification(self._event(story), db_session) is False

            assert mock_post.call_count == notification_service.MAX_RETRIES
            assert mock_sleep.call_count == notification_service.MAX_RETRIES - 1

        log = db_session.query(NotificationLog).filter_by(story_id=story.id).one()
        assert log.status == NotificationStatus.failed

    def test_dispatch_swallows_delivery_failures(self, db_session):
        import requests
        from storyguard.services import notification_service

        story = make_story(db_session)
        with patch("storyguard.services.notification_service.requests.post") as mock_post, \
                patch("storyguard.services.notification_service.time.sleep"), \
                patch.object(notification_service.settings, "brevo_api_key", "test-key"), \
                patch.object(notification_service.settings, "slack_webhook_url", "https://hooks.slack.com/test"):
            mock_post.side_effect = requests.exceptions.ConnectionError("down")

            notification_service.dispatch_moderation_event(self._event(story), TestingSessionLocal)

        statuses = [log.status for log in db_session.query(NotificationLog).filter_by(story_id=story.id)]
        assert statuses == [NotificationStatus.failed, NotificationStatus.failed]

    def test_author_without_email_gets_no_email(self, db_session):
        from storyguard.services import notification_service

        story = make_story(db_session, author_email=None)
        with patch("storyguard.services.notification_service.requests.post") as mock_post:
            assert notification_service.send_email_notification(self._event(story), db_session) is False
            mock_post.assert_not_called()


class TestAPIEndpoints:
    """Test monitoring endpoints."""

    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "timestamp" in data
        assert "version" in data

    def test_metrics_endpoint(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        data = response.json()
        assert "timestamp" in data
        assert data["moderation"]["total_moderated"] == 0

    def test_root(self, client):
        assert client.get("/").json()["endpoints"]["stories"] == "/api/v1/stories"

    def test_startup_tables_stay_in_memory(self, client):
        # Startup runs create_all on the application engine; no file may be written
        assert db_session_module.engine.url.database in (None, "", ":memory:")

    def test_request_id_is_echoed(self, client):
        response = client.get("/", headers={"X-Request-ID": "trace-123"})
        assert response.headers["X-Request-ID"] == "trace-123"
        assert response.headers["X-Process-Time"].endswith("ms")

    def test_request_id_generated_when_absent(self, client):
        response = client.get("/")
        assert uuid.UUID(response.headers["X-Request-ID"])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
