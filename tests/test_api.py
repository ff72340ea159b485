"""
Integration tests for the HTTP API
"""
import httpx
import pytest
import pytest_asyncio

from app.db.session import get_db
from app.main import create_app

API = "/api/v1"


@pytest_asyncio.fixture
async def client(session_factory):
    app = create_app(session_factory=session_factory)

    async def override_get_db():
        async with session_factory() as session:
            yield session
            await session.commit()

    app.dependency_overrides[get_db] = override_get_db

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def user_headers(user):
    return {"X-User-Id": user.id}


@pytest.mark.asyncio
class TestRateLimitEndpoints:
    """Tier catalog and usage endpoints"""

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_list_tiers(self, client):
        response = await client.get(f"{API}/rate-limits")

        assert response.status_code == 200
        tiers = {row["tier"]: row for row in response.json()}
        assert set(tiers) == {"admin", "byok", "community", "demo", "lifetime", "premium", "subscriber"}
        assert tiers["admin"]["requests_per_minute"] is None

    async def test_get_tier(self, client):
        response = await client.get(f"{API}/rate-limits/Community")

        assert response.status_code == 200
        assert response.json()["requests_per_minute"] == 5
        assert response.json()["tokens_per_day"] == 10000

    async def test_get_unknown_tier(self, client):
        response = await client.get(f"{API}/rate-limits/platinum")
        assert response.status_code == 404

    async def test_update_tier_as_admin(self, client, make_user):
        admin = await make_user(is_admin=True)

        response = await client.put(
            f"{API}/rate-limits/community",
            json={"requests_per_minute": 10, "requests_per_hour": 100, "requests_per_day": 200},
            headers=user_headers(admin),
        )

        assert response.status_code == 200
        assert response.json()["requests_per_minute"] == 10

        fetched = await client.get(f"{API}/rate-limits/community")
        assert fetched.json()["requests_per_minute"] == 10
        assert fetched.json()["tokens_per_day"] is None

    async def test_update_tier_requires_admin(self, client, make_user):
        user = await make_user()

        response = await client.put(
            f"{API}/rate-limits/community",
            json={"requests_per_minute": 1000},
            headers=user_headers(user),
        )
        assert response.status_code == 403

        response = await client.put(f"{API}/rate-limits/community", json={"requests_per_minute": 1000})
        assert response.status_code == 401

    async def test_my_usage(self, client, make_user):
        user = await make_user()

        response = await client.get(f"{API}/rate-limits/me/usage", headers=user_headers(user))

        assert response.status_code == 200
        body = response.json()
        assert body["tier"] == "community"
        windows = {w["window_type"]: w for w in body["windows"]}
        assert windows["day"]["used"] == 1
        assert windows["day"]["limit"] == 100
        assert windows["day"]["remaining"] == 99
        assert body["tokens_per_day"] == 10000

    async def test_my_usage_requires_principal(self, client):
        response = await client.get(f"{API}/rate-limits/me/usage")
        assert response.status_code == 401

    async def test_feature_check(self, client, make_user):
        community = await make_user()
        premium = await make_user(subscription_tier="premium")

        denied = await client.get(f"{API}/rate-limits/me/features/memory", headers=user_headers(community))
        allowed = await client.get(f"{API}/rate-limits/me/features/memory", headers=user_headers(premium))

        assert denied.json()["allowed"] is False
        assert allowed.json()["allowed"] is True

    async def test_feature_check_with_count(self, client, make_user):
        user = await make_user(subscription_tier="subscriber")

        response = await client.get(
            f"{API}/rate-limits/me/features/agents",
            params={"current_count": 1},
            headers=user_headers(user),
        )

        assert response.json()["allowed"] is False
        assert response.json()["limit"] == 1


@pytest.mark.asyncio
class TestUsageAndViolationEndpoints:
    """Token reports and violation history"""

    async def test_report_usage(self, client, make_user):
        user = await make_user()

        response = await client.post(
            f"{API}/usage/report",
            json={"estimated_tokens": 100, "actual_tokens": 400},
            headers=user_headers(user),
        )

        assert response.status_code == 200
        assert response.json() == {"tokens_delta": 300}

        usage = await client.get(f"{API}/rate-limits/me/usage", headers=user_headers(user))
        assert usage.json()["tokens_today"] == 300

    async def test_report_cannot_refund_tokens(self, client, make_user):
        user = await make_user()
        await client.post(
            f"{API}/usage/report",
            json={"estimated_tokens": 0, "actual_tokens": 500},
            headers=user_headers(user),
        )

        response = await client.post(
            f"{API}/usage/report",
            json={"estimated_tokens": 1000000, "actual_tokens": 0},
            headers=user_headers(user),
        )

        assert response.status_code == 200
        assert response.json() == {"tokens_delta": 0}

        usage = await client.get(f"{API}/rate-limits/me/usage", headers=user_headers(user))
        assert usage.json()["tokens_today"] == 500

    async def test_report_rejects_negative_tokens(self, client, make_user):
        user = await make_user()
        response = await client.post(
            f"{API}/usage/report",
            json={"estimated_tokens": 0, "actual_tokens": -5},
            headers=user_headers(user),
        )
        assert response.status_code == 422

    async def test_violations_recorded(self, client, make_user):
        user = await make_user()

        limited = await client.get(
            f"{API}/rate-limits/me/usage",
            headers={**user_headers(user), "X-Token-Estimate": "5000"},
        )
        assert limited.status_code == 429

        response = await client.get(f"{API}/violations/me", headers=user_headers(user))

        assert response.status_code == 200
        events = response.json()
        assert len(events) == 1
        assert events[0]["limit_type"] == "max_tokens_per_request"
        assert events[0]["limit_value"] == 2000
        assert events[0]["current_value"] == 5000
        assert events[0]["endpoint"] == f"{API}/rate-limits/me/usage"

    async def test_violation_summary(self, client, make_user):
        user = await make_user()
        admin = await make_user(is_admin=True)

        for _ in range(2):
            await client.get(f"{API}/rate-limits/me/usage", headers={**user_headers(user), "X-Token-Estimate": "9999"})

        response = await client.get(f"{API}/violations/summary", headers=user_headers(admin))

        assert response.status_code == 200
        assert response.json() == {"max_tokens_per_request": 2}

    async def test_violation_summary_requires_admin(self, client, make_user):
        user = await make_user()
        response = await client.get(f"{API}/violations/summary", headers=user_headers(user))
        assert response.status_code == 403


@pytest.mark.asyncio
class TestDemoEndpoints:
    """Demo sessions, credits and referrals"""

    async def init_session(self, client, **body):
        response = await client.post(f"{API}/demo/init", json=body or None)
        assert response.status_code == 200
        return response.json()

    async def test_init_and_status(self, client):
        session = await self.init_session(client)

        assert session["credits_remaining"] == 5
        assert session["credits_used"] == 0

        response = await client.get(f"{API}/demo/status", headers={"X-Demo-Session": session["session_id"]})
        assert response.status_code == 200
        assert response.json()["session_id"] == session["session_id"]

    async def test_init_resumes_existing_session(self, client):
        session = await self.init_session(client)

        response = await client.post(f"{API}/demo/init", headers={"X-Demo-Session": session["session_id"]})

        assert response.json()["session_id"] == session["session_id"]

    async def test_init_ignores_client_chosen_token(self, client):
        picked = "client-picked-" + "x" * 150

        response = await client.post(f"{API}/demo/init", headers={"X-Demo-Session": picked})

        assert response.status_code == 200
        session_id = response.json()["session_id"]
        assert session_id != picked
        assert len(session_id) <= 64

        status = await client.get(f"{API}/demo/status", headers={"X-Demo-Session": session_id})
        assert status.status_code == 200

    async def test_credits(self, client):
        session = await self.init_session(client)
        headers = {"X-Demo-Session": session["session_id"]}

        response = await client.get(f"{API}/demo/credits", headers=headers)
        assert response.status_code == 200
        assert response.json() == {
            "credits_remaining": 5,
            "credits_used": 0,
            "referral_credits_earned": 0,
            "has_credits": True,
        }

        await client.post(f"{API}/demo/use-credit", json={"action": "chat", "credits": 5}, headers=headers)

        response = await client.get(f"{API}/demo/credits", headers=headers)
        assert response.json()["has_credits"] is False

    async def test_credits_unknown_session(self, client):
        response = await client.get(f"{API}/demo/credits", headers={"X-Demo-Session": "missing"})
        assert response.status_code == 404

    async def test_feature_availability(self, client):
        chat = await client.get(f"{API}/demo/feature/chat_messages")
        assert chat.status_code == 200
        assert chat.json()["available"] is True
        assert chat.json()["max_count"] == 5
        assert chat.json()["description"] == "Maximum AI chat messages per session"

        locked = await client.get(f"{API}/demo/feature/marketing_plans")
        assert locked.json()["available"] is False
        assert locked.json()["max_count"] == 0

        unknown = await client.get(f"{API}/demo/feature/teleport")
        assert unknown.status_code == 200
        assert unknown.json()["available"] is False
        assert unknown.json()["reason"] == "Feature not available in demo mode"

    async def test_status_unknown_session(self, client):
        response = await client.get(f"{API}/demo/status", headers={"X-Demo-Session": "missing"})
        assert response.status_code == 404

        response = await client.get(f"{API}/demo/status")
        assert response.status_code == 404

    async def test_use_credit(self, client):
        session = await self.init_session(client)
        headers = {"X-Demo-Session": session["session_id"]}

        response = await client.post(f"{API}/demo/use-credit", json={"action": "chat", "credits": 5}, headers=headers)
        assert response.status_code == 200
        assert response.json()["credits_remaining"] == 0
        assert response.json()["credits_used"] == 5

        response = await client.post(f"{API}/demo/use-credit", json={"action": "chat"}, headers=headers)
        assert response.status_code == 402
        body = response.json()
        assert body["ok"] is False
        assert body["reason"] == "insufficient_credits"
        assert body["action"] == "chat"

    async def test_use_credit_rejects_zero(self, client):
        session = await self.init_session(client)
        response = await client.post(
            f"{API}/demo/use-credit",
            json={"action": "chat", "credits": 0},
            headers={"X-Demo-Session": session["session_id"]},
        )
        assert response.status_code == 422

    async def test_referral_flow(self, client):
        referrer = await self.init_session(client)
        headers = {"X-Demo-Session": referrer["session_id"]}

        generated = await client.post(f"{API}/demo/referral/generate", headers=headers)
        assert generated.status_code == 200
        code = generated.json()["referral_code"]
        assert code.startswith("D") and len(code) == 8

        again = await client.post(f"{API}/demo/referral/generate", headers=headers)
        assert again.json()["referral_code"] == code

        tracked = await client.post(f"{API}/demo/referral/track", json={"referral_code": code})
        assert tracked.json()["tracked"] is True
        assert tracked.json()["credits_awarded"] == 1

        duplicate = await client.post(f"{API}/demo/referral/track", json={"referral_code": code})
        assert duplicate.json()["tracked"] is False
        assert duplicate.json()["reason"] == "duplicate_click"

        stats = await client.get(f"{API}/demo/referral/stats", headers=headers)
        assert stats.json() == {"referral_code": code, "credits_earned": 1, "clicks": 1, "conversions": 0}

        status = await client.get(f"{API}/demo/status", headers=headers)
        assert status.json()["credits_remaining"] == 6

    async def test_track_bad_codes(self, client):
        invalid = await client.post(f"{API}/demo/referral/track", json={"referral_code": "XYZ"})
        assert invalid.status_code == 400

        missing = await client.post(f"{API}/demo/referral/track", json={"referral_code": "DAAAAAAA"})
        assert missing.status_code == 404

    async def test_init_with_referral_code(self, client):
        referrer = await self.init_session(client)
        headers = {"X-Demo-Session": referrer["session_id"]}
        code = (await client.post(f"{API}/demo/referral/generate", headers=headers)).json()["referral_code"]

        referred = await self.init_session(client, referred_by=code)

        assert referred["session_id"] != referrer["session_id"]
        status = await client.get(f"{API}/demo/status", headers=headers)
        assert status.json()["credits_remaining"] == 6

    async def test_demo_limits(self, client):
        response = await client.get(f"{API}/demo/limits")

        assert response.status_code == 200
        limits = {row["feature"]: row["max_count"] for row in response.json()}
        assert limits["chat_messages"] == 5
        assert limits["ai_agents"] == 0
        assert len(limits) == 7
