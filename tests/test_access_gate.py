"""Tests for the subscription access gate."""

import asyncio
from datetime import timedelta

from wakti.domain.access import (
    AccessDecision,
    AuthSession,
    SubscriptionRecord,
    SubscriptionSnapshot,
)
from wakti.services.access_gate import AccessGate, AccessGateRegistry, AccessService
from wakti.services.cache import InMemoryKeyValueStore, SubscriptionSnapshotCache
from wakti.services.session_evidence import LoginFlagEvidence
from tests.conftest import (
    NOW,
    FakeAuthClient,
    FakeClock,
    FakeSubscriptionClient,
    RecordingPaywall,
    make_gate,
    make_session,
)


def _active_record(days_until_due: int = 10) -> SubscriptionRecord:
    return SubscriptionRecord(
        is_subscribed=True,
        subscription_status="active",
        next_billing_date=NOW + timedelta(days=days_until_due),
    )


def _cache_with_snapshot(
    age: timedelta, subscribed: bool = True
) -> SubscriptionSnapshotCache:
    cache = SubscriptionSnapshotCache(InMemoryKeyValueStore())
    captured = NOW - age
    cache.write(
        "user-1",
        SubscriptionSnapshot(
            is_subscribed=subscribed,
            needs_payment=not subscribed,
            captured_at_ms=int(captured.timestamp() * 1000),
        ),
    )
    return cache


def test_resolved_subscription_allows_and_writes_cache() -> None:
    client = FakeSubscriptionClient(record=_active_record())
    cache = SubscriptionSnapshotCache(InMemoryKeyValueStore())
    gate = make_gate(client, cache=cache)

    view = asyncio.run(gate.evaluate(make_session()))

    assert view.decision is AccessDecision.ALLOWED
    assert view.render_children
    snapshot = cache.read("user-1")
    assert snapshot is not None
    assert snapshot.is_subscribed
    assert snapshot.captured_at_ms == int(NOW.timestamp() * 1000)


def test_fresh_cache_renders_allowed_while_fetch_pending() -> None:
    client = FakeSubscriptionClient(record=_active_record(), delay_seconds=0.1)
    gate = make_gate(
        client,
        cache=_cache_with_snapshot(timedelta(minutes=29)),
        fetch_timeout_seconds=1.0,
    )

    async def scenario():
        pending = await gate.evaluate(make_session(), wait=False)
        await asyncio.sleep(0.2)
        resolved = gate.view()
        gate.teardown()
        return pending, resolved

    pending, resolved = asyncio.run(scenario())

    assert pending.decision is AccessDecision.ALLOWED
    assert pending.reason == "cached"
    assert resolved.decision is AccessDecision.ALLOWED
    assert resolved.reason == "resolved"


def test_stale_cache_is_not_used_while_pending() -> None:
    client = FakeSubscriptionClient(record=_active_record(), delay_seconds=0.1)
    gate = make_gate(
        client,
        cache=_cache_with_snapshot(timedelta(minutes=31)),
        fetch_timeout_seconds=1.0,
    )

    async def scenario():
        pending = await gate.evaluate(make_session(), wait=False)
        gate.teardown()
        return pending

    pending = asyncio.run(scenario())

    assert pending.decision is AccessDecision.LOADING
    assert not pending.render_children


def test_timeout_without_cache_fails_open_and_retries_once() -> None:
    client = FakeSubscriptionClient(record=_active_record(), delay_seconds=0.5)
    gate = make_gate(client)

    async def scenario():
        first = await gate.evaluate(make_session())
        await asyncio.sleep(0.3)
        calls_after_retry = len(client.calls)
        await asyncio.sleep(0.3)
        gate.teardown()
        return first, calls_after_retry

    first, calls_after_retry = asyncio.run(scenario())

    assert first.decision is AccessDecision.ALLOWED
    assert first.reason == "fail_open"
    assert calls_after_retry == 2
    assert len(client.calls) == 2
    assert gate.retry_count == 1


def test_timeout_with_fresh_cache_uses_cached_snapshot() -> None:
    client = FakeSubscriptionClient(record=_active_record(), delay_seconds=0.5)
    gate = make_gate(
        client, cache=_cache_with_snapshot(timedelta(minutes=5), subscribed=False)
    )

    async def scenario():
        view = await gate.evaluate(make_session())
        await asyncio.sleep(0.2)
        gate.teardown()
        return view

    view = asyncio.run(scenario())

    assert view.decision is AccessDecision.BLOCKED
    assert view.reason == "cached"
    assert view.render_children
    assert gate.retry_count == 0
    assert len(client.calls) == 1


def test_fetch_error_blocks_without_raising() -> None:
    client = FakeSubscriptionClient(error=ConnectionError("network down"))
    gate = make_gate(client)

    view = asyncio.run(gate.evaluate(make_session()))

    assert view.decision is AccessDecision.BLOCKED
    assert view.details == {"needs_payment": True}
    assert view.render_children


def test_owner_email_skips_subscription_lookup() -> None:
    client = FakeSubscriptionClient(record=None)
    gate = make_gate(client, owner_emails=frozenset({"owner@wakti.qa"}))
    owner = AuthSession(
        has_user=True, has_session=True, user_id="user-1", email=" Owner@Wakti.qa"
    )

    view = asyncio.run(gate.evaluate(owner))

    assert view.decision is AccessDecision.ALLOWED
    assert view.reason == "owner"
    assert client.calls == []


def test_concurrent_checks_share_one_fetch() -> None:
    client = FakeSubscriptionClient(record=_active_record(), delay_seconds=0.05)
    gate = make_gate(client, fetch_timeout_seconds=1.0)

    async def scenario() -> None:
        gate.session = make_session()
        await asyncio.gather(
            gate.check_subscription(),
            gate.check_subscription(),
            gate.check_subscription(),
        )

    asyncio.run(scenario())

    assert len(client.calls) == 1


def test_teardown_cancels_scheduled_retry() -> None:
    client = FakeSubscriptionClient(record=_active_record(), delay_seconds=0.5)
    gate = make_gate(client)

    async def scenario() -> None:
        await gate.evaluate(make_session())
        gate.teardown()
        await asyncio.sleep(0.2)

    asyncio.run(scenario())

    assert len(client.calls) == 1
    assert gate.retry_count == 0


def test_expired_free_access_opens_paywall_outside_account_routes() -> None:
    record = SubscriptionRecord(
        is_subscribed=False, free_access_start_at=NOW - timedelta(hours=25)
    )
    paywall = RecordingPaywall()
    gate = make_gate(
        FakeSubscriptionClient(record=record),
        paywall=paywall,
        account_route_prefixes=("/account",),
    )

    async def scenario():
        on_dashboard = await gate.evaluate(make_session(), route="/dashboard")
        on_account = await gate.evaluate(make_session(), route="/account/billing")
        gate.teardown()
        return on_dashboard, on_account

    on_dashboard, on_account = asyncio.run(scenario())

    assert on_dashboard.decision is AccessDecision.BLOCKED
    assert on_dashboard.render_children
    assert on_dashboard.paywall_open
    assert not on_account.paywall_open
    assert paywall.calls == [True, False]


def test_free_access_window_rechecked_while_unsubscribed() -> None:
    clock = FakeClock()
    record = SubscriptionRecord(
        is_subscribed=False,
        free_access_start_at=NOW - timedelta(hours=23, minutes=59),
    )
    paywall = RecordingPaywall()
    gate = make_gate(
        FakeSubscriptionClient(record=record), clock=clock, paywall=paywall
    )

    async def scenario():
        before = await gate.evaluate(make_session(), route="/dashboard")
        clock.advance(minutes=2)
        await asyncio.sleep(0.1)
        after = gate.view()
        gate.teardown()
        return before, after

    before, after = asyncio.run(scenario())

    assert not before.paywall_open
    assert after.paywall_open
    assert paywall.calls == [True]


def test_access_service_redirects_without_session_evidence() -> None:
    service = AccessService(
        auth_client=FakeAuthClient(),
        registry=AccessGateRegistry(lambda _: make_gate(FakeSubscriptionClient())),
    )

    view = asyncio.run(service.resolve(None, route="/tasks"))

    assert view.decision is AccessDecision.BLOCKED
    assert view.redirect_to == "/login"
    assert not view.render_children


def test_access_service_waits_for_auth_after_recent_login() -> None:
    store = InMemoryKeyValueStore()
    flag = LoginFlagEvidence("durable_flag", store, "flag", clock=FakeClock())
    flag.mark()
    service = AccessService(
        auth_client=FakeAuthClient(),
        registry=AccessGateRegistry(lambda _: make_gate(FakeSubscriptionClient())),
    )

    view = asyncio.run(service.resolve("not-yet-valid", login_flags=[flag]))

    assert view.decision is AccessDecision.LOADING
    assert view.redirect_to is None
    assert view.reason == "awaiting_session:durable_flag"


def test_access_service_mounts_one_gate_per_user() -> None:
    client = FakeSubscriptionClient(record=_active_record())
    created: list[str] = []

    def factory(user_id: str) -> AccessGate:
        created.append(user_id)
        return make_gate(client)

    service = AccessService(
        auth_client=FakeAuthClient(sessions={"token": make_session()}),
        registry=AccessGateRegistry(factory),
    )

    async def scenario():
        first = await service.resolve("token")
        second = await service.resolve("token")
        released = service.release("user-1")
        return first, second, released

    first, second, released = asyncio.run(scenario())

    assert first.decision is AccessDecision.ALLOWED
    assert second.decision is AccessDecision.ALLOWED
    assert created == ["user-1"]
    assert len(client.calls) == 1
    assert released


def test_fail_open_is_rechecked_after_retry_is_spent() -> None:
    clock = FakeClock()
    client = FakeSubscriptionClient(
        record=SubscriptionRecord(is_subscribed=False), delay_seconds=0.5
    )
    gate = make_gate(client, clock=clock)

    async def scenario():
        first = await gate.evaluate(make_session())
        while_retry_pending = await gate.evaluate(make_session())
        calls_before_retry = len(client.calls)
        await asyncio.sleep(0.2)
        calls_after_retry = len(client.calls)
        client.delay_seconds = 0.0
        clock.advance(minutes=600)
        later = await gate.evaluate(make_session())
        gate.teardown()
        return first, while_retry_pending, calls_before_retry, calls_after_retry, later

    first, pending, before_retry, after_retry, later = asyncio.run(scenario())

    assert first.reason == "fail_open"
    assert pending.reason == "fail_open"
    assert before_retry == 1
    assert after_retry == 2
    assert gate.retry_count == 1
    assert later.decision is AccessDecision.BLOCKED
    assert later.reason == "resolved"
    assert len(client.calls) == 3


def test_cached_status_expires_with_snapshot_age() -> None:
    clock = FakeClock()
    client = FakeSubscriptionClient(record=_active_record(), delay_seconds=0.5)
    gate = make_gate(
        client, cache=_cache_with_snapshot(timedelta(minutes=29)), clock=clock
    )

    async def scenario():
        first = await gate.evaluate(make_session())
        client.delay_seconds = 0.0
        client.record = SubscriptionRecord(is_subscribed=False)
        clock.advance(minutes=20)
        pending = await gate.evaluate(make_session(), wait=False)
        await asyncio.sleep(0.05)
        resolved = gate.view()
        gate.teardown()
        return first, pending, resolved

    first, pending, resolved = asyncio.run(scenario())

    assert first.decision is AccessDecision.ALLOWED
    assert first.reason == "cached"
    assert pending.decision is AccessDecision.LOADING
    assert resolved.decision is AccessDecision.BLOCKED
    assert resolved.reason == "resolved"
    assert len(client.calls) == 2


def test_resolved_status_is_rechecked_after_ttl() -> None:
    clock = FakeClock()
    client = FakeSubscriptionClient(record=_active_record())
    gate = make_gate(client, clock=clock)

    async def scenario():
        await gate.evaluate(make_session())
        client.record = SubscriptionRecord(is_subscribed=False)
        clock.advance(minutes=29)
        within_ttl = await gate.evaluate(make_session())
        calls_within_ttl = len(client.calls)
        clock.advance(minutes=2)
        after_ttl = await gate.evaluate(make_session())
        gate.teardown()
        return within_ttl, calls_within_ttl, after_ttl

    within_ttl, calls_within_ttl, after_ttl = asyncio.run(scenario())

    assert within_ttl.decision is AccessDecision.ALLOWED
    assert calls_within_ttl == 1
    assert after_ttl.decision is AccessDecision.BLOCKED
    assert len(client.calls) == 2


def test_subscribed_flag_past_grace_keeps_paywall_closed() -> None:
    record = SubscriptionRecord(
        is_subscribed=True,
        subscription_status="active",
        next_billing_date=NOW - timedelta(days=3),
        free_access_start_at=NOW - timedelta(days=2),
    )
    paywall = RecordingPaywall()
    gate = make_gate(FakeSubscriptionClient(record=record), paywall=paywall)

    async def scenario():
        view = await gate.evaluate(make_session(), route="/dashboard")
        gate.teardown()
        return view

    view = asyncio.run(scenario())

    assert view.decision is AccessDecision.BLOCKED
    assert not view.paywall_open
    assert paywall.calls == []
