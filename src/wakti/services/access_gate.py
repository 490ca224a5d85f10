"""Subscription access gate for protected content.

A gate is owned by one mounted user. It decides between ``LOADING``,
``BLOCKED`` and ``ALLOWED``, keeps a per-user snapshot cache warm, and drives
an optional paywall modal. Subscription lookups are raced against a short
timeout; on timeout the gate fails open and retries once.
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Protocol

from wakti.domain.access import (
    AccessDecision,
    AuthSession,
    GateView,
    SubscriptionRecord,
    SubscriptionSnapshot,
    SubscriptionStatus,
)
from wakti.services.cache import SubscriptionSnapshotCache
from wakti.services.session_evidence import (
    LiveSessionEvidence,
    SessionEvidenceProvider,
    session_evidence,
)
from wakti.services.subscriptions import (
    FREE_ACCESS_WINDOW,
    SubscriptionClient,
    evaluate_subscription,
    is_free_access_expired,
)

_logger = logging.getLogger(__name__)

LOGIN_ROUTE = "/login"


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class PaywallModal(Protocol):
    """Caller-supplied paywall; the gate only controls whether it is open."""

    def set_open(self, open_: bool) -> None:
        """Open or close the modal."""


@dataclass
class PaywallState(PaywallModal):
    """Paywall flag reported to remote clients instead of a local modal."""

    is_open: bool = False
    changes: int = 0

    def set_open(self, open_: bool) -> None:
        self.is_open = open_
        self.changes += 1


class AuthClient(Protocol):
    """Resolves an access token into the current auth session."""

    async def get_session(self, access_token: str) -> AuthSession | None:
        """Return the session for a token, or None when it is not valid."""


@dataclass
class AccessGate:
    """State machine gating one user's protected content."""

    user_id: str
    subscription_client: SubscriptionClient
    cache: SubscriptionSnapshotCache
    owner_emails: frozenset[str] = frozenset()
    paywall: PaywallModal | None = None
    account_route_prefixes: tuple[str, ...] = ("/account",)
    cache_ttl_seconds: float = 1800.0
    fetch_timeout_seconds: float = 3.0
    retry_delay_seconds: float = 3.0
    free_access_poll_seconds: float = 10.0
    free_access_window: timedelta = FREE_ACCESS_WINDOW
    clock: Callable[[], datetime] = _utcnow

    session: AuthSession | None = field(default=None, init=False)
    route: str = field(default="/", init=False)
    retry_count: int = field(default=0, init=False)
    _status: SubscriptionStatus | None = field(default=None, init=False)
    _source: str = field(default="", init=False)
    _resolved_at: datetime | None = field(default=None, init=False)
    _fail_open: bool = field(default=False, init=False)
    _in_flight: bool = field(default=False, init=False)
    _retry_used: bool = field(default=False, init=False)
    _retry_handle: asyncio.TimerHandle | None = field(default=None, init=False)
    _poll_task: asyncio.Task[None] | None = field(default=None, init=False)
    _tasks: set[asyncio.Task[None]] = field(default_factory=set, init=False)
    _liveness: int = field(default=0, init=False)
    _destroyed: bool = field(default=False, init=False)
    _free_access_start: datetime | None = field(default=None, init=False)
    _subscribed_flag: bool = field(default=False, init=False)
    _paywall_open: bool = field(default=False, init=False)

    async def evaluate(
        self, session: AuthSession, route: str = "/", *, wait: bool = True
    ) -> GateView:
        """Refresh the gate for the given session and return the view."""
        if self._destroyed:
            raise RuntimeError(f"Access gate for {self.user_id} was torn down")
        if session.user_id != self.user_id:
            raise ValueError("Session belongs to a different user")
        self.session = session
        self.route = route
        if self.is_owner:
            self._sync_paywall()
            return self.view()
        self._drop_stale_cached_status()
        if self._needs_check():
            if wait:
                await self.check_subscription()
            else:
                self.start_check()
        self._sync_paywall()
        return self.view()

    @property
    def is_owner(self) -> bool:
        email = self.session.email if self.session else None
        return email is not None and email.strip().lower() in self.owner_emails

    @property
    def is_checking(self) -> bool:
        return self._in_flight

    def start_check(self) -> None:
        """Schedule a subscription check without waiting for it."""
        self._spawn(self.check_subscription())

    async def check_subscription(self) -> None:
        """Fetch the subscription, racing it against the timeout budget."""
        if self._in_flight or self._destroyed:
            return
        token = self._liveness
        self._in_flight = True
        try:
            try:
                record = await asyncio.wait_for(
                    self.subscription_client.fetch_subscription(self.user_id),
                    timeout=self.fetch_timeout_seconds,
                )
            except TimeoutError:
                if token == self._liveness:
                    self._on_timeout()
                return
            except Exception:
                if token != self._liveness:
                    return
                _logger.exception(
                    "Subscription lookup failed for user %s", self.user_id
                )
                self._status = SubscriptionStatus(is_valid=False, needs_payment=True)
                self._source = "error"
                self._resolved_at = self.clock()
                self._fail_open = False
                self._sync_paywall()
                return
            if token == self._liveness:
                self._apply_record(record)
        finally:
            if token == self._liveness:
                self._in_flight = False

    def view(self) -> GateView:
        """Compute the current render decision."""
        if self.is_owner:
            return GateView(
                decision=AccessDecision.ALLOWED,
                render_children=True,
                reason="owner",
            )
        if self._status is not None:
            decision = (
                AccessDecision.ALLOWED
                if self._status.is_valid
                else AccessDecision.BLOCKED
            )
            return GateView(
                decision=decision,
                render_children=True,
                paywall_open=self._paywall_open,
                reason=self._source,
                details={"needs_payment": self._status.needs_payment},
            )
        if self._fail_open:
            return GateView(
                decision=AccessDecision.ALLOWED,
                render_children=True,
                paywall_open=self._paywall_open,
                reason="fail_open",
            )
        cached = self.fresh_snapshot()
        if cached is not None:
            decision = (
                AccessDecision.ALLOWED
                if cached.is_subscribed
                else AccessDecision.BLOCKED
            )
            return GateView(
                decision=decision,
                render_children=True,
                paywall_open=self._paywall_open,
                reason="cached",
                details={"needs_payment": cached.needs_payment},
            )
        return GateView(
            decision=AccessDecision.LOADING,
            render_children=False,
            reason="pending",
        )

    def fresh_snapshot(self) -> SubscriptionSnapshot | None:
        """Return the cached snapshot only while it is within the TTL."""
        snapshot = self.cache.read(self.user_id)
        if snapshot is None:
            return None
        age = snapshot.age_seconds(self.clock())
        if age < 0 or age > self.cache_ttl_seconds:
            return None
        return snapshot

    def paywall_open_changed(self, open_: bool) -> None:
        """Track open/close changes reported back by the paywall modal."""
        self._paywall_open = open_

    def teardown(self) -> None:
        """Cancel timers and stop every deferred action from firing."""
        self._destroyed = True
        self._liveness += 1
        self._in_flight = False
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    def _needs_check(self) -> bool:
        if self._in_flight:
            return False
        if self._fail_open:
            # Fail-open only bridges until the deferred retry has run.
            return self._retry_used and self._retry_handle is None
        if self._status is None or self._resolved_at is None:
            return True
        age = (self.clock() - self._resolved_at).total_seconds()
        return age > self.cache_ttl_seconds

    def _drop_stale_cached_status(self) -> None:
        if self._source != "cached" or self._resolved_at is None:
            return
        age = (self.clock() - self._resolved_at).total_seconds()
        if age > self.cache_ttl_seconds:
            self._status = None
            self._resolved_at = None
            self._source = ""

    def _apply_record(self, record: SubscriptionRecord | None) -> None:
        now = self.clock()
        status = evaluate_subscription(record, now)
        details = record.model_dump(mode="json") if record is not None else None
        snapshot = SubscriptionSnapshot(
            is_subscribed=status.is_valid,
            needs_payment=status.needs_payment,
            captured_at_ms=int(now.timestamp() * 1000),
            subscription_details=details,
        )
        self.cache.write(self.user_id, snapshot)
        self._status = status
        self._source = "resolved"
        self._resolved_at = now
        self._fail_open = False
        self._free_access_start = record.free_access_start_at if record else None
        self._subscribed_flag = record.is_subscribed if record else False
        _logger.info(
            "Subscription resolved for user %s: valid=%s needs_payment=%s",
            self.user_id,
            status.is_valid,
            status.needs_payment,
        )
        if status.is_valid:
            self._stop_free_access_poll()
        else:
            self._start_free_access_poll()
        self._sync_paywall()

    def _on_timeout(self) -> None:
        cached = self.fresh_snapshot()
        if cached is not None:
            _logger.warning(
                "Subscription lookup timed out for user %s, using cached snapshot",
                self.user_id,
            )
            self._status = SubscriptionStatus(
                is_valid=cached.is_subscribed, needs_payment=cached.needs_payment
            )
            self._source = "cached"
            self._resolved_at = datetime.fromtimestamp(
                cached.captured_at_ms / 1000, tz=UTC
            )
            self._sync_paywall()
            return
        _logger.warning(
            "Subscription lookup timed out for user %s, allowing access",
            self.user_id,
        )
        self._status = None
        self._resolved_at = None
        self._fail_open = True
        self._schedule_retry()

    def _schedule_retry(self) -> None:
        if self._retry_used or self._destroyed:
            return
        self._retry_used = True
        token = self._liveness
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(
            self.retry_delay_seconds, self._fire_retry, token
        )

    def _fire_retry(self, token: int) -> None:
        self._retry_handle = None
        if token != self._liveness:
            return
        self.retry_count += 1
        _logger.info("Retrying subscription lookup for user %s", self.user_id)
        self._spawn(self.check_subscription())

    def _start_free_access_poll(self) -> None:
        if self._poll_task is not None or self.paywall is None:
            return
        self._poll_task = asyncio.get_running_loop().create_task(
            self._poll_free_access(self._liveness)
        )

    def _stop_free_access_poll(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None

    async def _poll_free_access(self, token: int) -> None:
        while token == self._liveness:
            await asyncio.sleep(self.free_access_poll_seconds)
            if token != self._liveness:
                return
            self._sync_paywall()

    def _wants_paywall(self) -> bool:
        if self.paywall is None or self.is_owner:
            return False
        # Raw profile flag, not the grace-adjusted validity.
        if self._status is None or self._subscribed_flag:
            return False
        if self._on_account_route():
            return False
        return is_free_access_expired(
            self._free_access_start, self.clock(), self.free_access_window
        )

    def _on_account_route(self) -> bool:
        prefixes = self.account_route_prefixes
        return any(self.route.startswith(prefix) for prefix in prefixes)

    def _sync_paywall(self) -> None:
        wanted = self._wants_paywall()
        if wanted == self._paywall_open:
            return
        self._paywall_open = wanted
        if self.paywall is not None:
            self.paywall.set_open(wanted)

    def _spawn(self, coro: Coroutine[object, object, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


@dataclass
class AccessGateRegistry:
    """Keeps one mounted gate per user id."""

    factory: Callable[[str], AccessGate]
    _gates: dict[str, AccessGate] = field(default_factory=dict, init=False)

    def mount(self, user_id: str) -> AccessGate:
        gate = self._gates.get(user_id)
        if gate is None:
            gate = self.factory(user_id)
            self._gates[user_id] = gate
        return gate

    def get(self, user_id: str) -> AccessGate | None:
        return self._gates.get(user_id)

    def unmount(self, user_id: str) -> bool:
        gate = self._gates.pop(user_id, None)
        if gate is None:
            return False
        gate.teardown()
        return True

    def unmount_all(self) -> None:
        for user_id in list(self._gates):
            self.unmount(user_id)


@dataclass
class AccessService:
    """Resolves a request's session evidence into a gate view."""

    auth_client: AuthClient
    registry: AccessGateRegistry

    async def resolve(
        self,
        access_token: str | None,
        route: str = "/",
        login_flags: Sequence[SessionEvidenceProvider] = (),
    ) -> GateView:
        """Return what to render for a request on ``route``."""
        session = None
        if access_token:
            session = await self.auth_client.get_session(access_token)
        providers: list[SessionEvidenceProvider] = [LiveSessionEvidence(session)]
        providers.extend(login_flags)
        source = session_evidence(providers)
        if source is None:
            return GateView(
                decision=AccessDecision.BLOCKED,
                render_children=False,
                redirect_to=LOGIN_ROUTE,
                reason="no_session",
            )
        if session is None or not session.is_active or not session.user_id:
            # Login flag seen but the auth provider has not caught up yet.
            return GateView(
                decision=AccessDecision.LOADING,
                render_children=False,
                reason=f"awaiting_session:{source}",
            )
        gate = self.registry.mount(session.user_id)
        return await gate.evaluate(session, route)

    def release(self, user_id: str) -> bool:
        """Tear down the gate mounted for a user."""
        return self.registry.unmount(user_id)
