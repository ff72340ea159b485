"""
Unit tests for the violation log
"""
import pytest
from datetime import datetime, timedelta

from app.schemas.rate_limit import DemoPrincipal, LimitType, RequestContext, UserPrincipal
from app.services.violation_service import ViolationLog

NOW = datetime(2026, 5, 4, 10, 0, 0)


@pytest.mark.asyncio
async def test_list_for_principal_newest_first(db_session):
    log = ViolationLog(db_session)
    user = UserPrincipal(user_id="user-1")
    other = UserPrincipal(user_id="user-2")

    for minutes in range(3):
        await log.record(user, "community", LimitType.REQUESTS_PER_MINUTE, 5, 5, now=NOW + timedelta(minutes=minutes))
    await log.record(other, "community", LimitType.TOKENS_PER_DAY, 10000, 10000, now=NOW)
    await db_session.commit()

    events = await log.list_for_principal(user)

    assert len(events) == 3
    assert events[0].created_at == NOW + timedelta(minutes=2)

    assert len(await log.list_for_principal(user, since=NOW + timedelta(minutes=1))) == 2
    assert len(await log.list_for_principal(user, limit=1)) == 1


@pytest.mark.asyncio
async def test_user_and_demo_ids_do_not_mix(db_session):
    log = ViolationLog(db_session)
    await log.record(DemoPrincipal(session_id="same-id"), "demo", LimitType.CREDITS_EXHAUSTED, 0, 0, now=NOW)
    await db_session.commit()

    assert await log.list_for_principal(UserPrincipal(user_id="same-id")) == []
    assert len(await log.list_for_principal(DemoPrincipal(session_id="same-id"))) == 1


@pytest.mark.asyncio
async def test_long_endpoint_is_truncated(db_session):
    log = ViolationLog(db_session)
    event = await log.record(
        UserPrincipal(user_id="user-1"),
        "community",
        LimitType.MAX_TOKENS_PER_REQUEST,
        2000,
        4000,
        context=RequestContext(endpoint="/x" * 300),
        now=NOW,
    )
    await db_session.commit()

    assert len(event.endpoint) == 200


@pytest.mark.asyncio
async def test_count_by_limit_type(db_session):
    log = ViolationLog(db_session)
    user = UserPrincipal(user_id="user-1")
    await log.record(user, "community", LimitType.REQUESTS_PER_MINUTE, 5, 5, now=NOW)
    await log.record(user, "community", LimitType.REQUESTS_PER_MINUTE, 5, 5, now=NOW)
    await log.record(user, "community", LimitType.TOKENS_PER_DAY, 10000, 10000, now=NOW)
    await log.record(user, "community", LimitType.TOKENS_PER_DAY, 10000, 10000, now=NOW - timedelta(days=2))
    await db_session.commit()

    assert await log.count_by_limit_type(since=NOW - timedelta(days=1)) == {
        "requests_per_minute": 2,
        "tokens_per_day": 1,
    }
    assert (await log.count_by_limit_type())["tokens_per_day"] == 2
