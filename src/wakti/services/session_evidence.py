"""Session detection across the live auth state and recent-login flags.

The auth provider's live state can lag a few seconds behind a successful
login redirect. Two short-lived "just logged in" flags (one in durable
storage, one in per-tab session storage) bridge that gap.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from wakti.domain.access import AuthSession
from wakti.services.cache import KeyValueStore


class SessionEvidenceProvider(Protocol):
    """A single source that may report a logged-in user."""

    name: str

    def has_session(self) -> bool:
        """Return True when this source believes someone is logged in."""


@dataclass(frozen=True)
class LiveSessionEvidence(SessionEvidenceProvider):
    """Evidence from the auth provider's current session."""

    session: AuthSession | None
    name: str = "live"

    def has_session(self) -> bool:
        return self.session is not None and self.session.is_active


@dataclass
class LoginFlagEvidence(SessionEvidenceProvider):
    """Evidence from a login timestamp flag written right after sign-in."""

    name: str
    store: KeyValueStore
    key: str
    window_seconds: float = 10.0
    clock: Callable[[], datetime] = lambda: datetime.now(tz=UTC)

    def mark(self) -> None:
        """Record a login at the current time."""
        self.store.set(self.key, str(int(self.clock().timestamp() * 1000)))

    def clear(self) -> None:
        self.store.delete(self.key)

    def has_session(self) -> bool:
        raw = self.store.get(self.key)
        if raw is None or not raw.isdigit():
            return False
        elapsed = self.clock().timestamp() - int(raw) / 1000
        return 0 <= elapsed <= self.window_seconds


def session_evidence(providers: Sequence[SessionEvidenceProvider]) -> str | None:
    """Return the name of the first provider reporting a session, if any."""
    for provider in providers:
        if provider.has_session():
            return provider.name
    return None


LOGIN_FLAG_KEY = "wakti_just_logged_in"


def login_flag_providers(
    durable_store: KeyValueStore,
    session_store: KeyValueStore,
    client_id: str,
    window_seconds: float = 10.0,
) -> list[LoginFlagEvidence]:
    """Build the durable and session-storage login flags for one client."""
    key = f"{LOGIN_FLAG_KEY}_{client_id}"
    return [
        LoginFlagEvidence("durable_flag", durable_store, key, window_seconds),
        LoginFlagEvidence("session_flag", session_store, key, window_seconds),
    ]
