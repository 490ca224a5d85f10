"""Domain models for session evidence and subscription gating."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, field_validator


class AccessDecision(Enum):
    """Three-way render decision for protected content."""

    LOADING = "loading"
    BLOCKED = "blocked"
    ALLOWED = "allowed"


@dataclass(frozen=True)
class AuthSession:
    """Session state reported by the auth provider."""

    has_user: bool
    has_session: bool
    user_id: str | None = None
    email: str | None = None
    last_login_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.has_user and self.has_session


class SubscriptionRecord(BaseModel):
    """Billing state returned by the subscription lookup."""

    is_subscribed: bool = False
    subscription_status: str | None = None
    next_billing_date: datetime | None = None
    plan_name: str | None = None
    free_access_start_at: datetime | None = None

    @field_validator("is_subscribed", mode="before")
    @classmethod
    def _null_is_unsubscribed(cls, value: object) -> object:
        return False if value is None else value

    @field_validator("next_billing_date", "free_access_start_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


@dataclass(frozen=True)
class SubscriptionStatus:
    """Outcome of evaluating a subscription record at a point in time."""

    is_valid: bool
    needs_payment: bool


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Timestamped copy of subscription state kept in the per-user cache."""

    is_subscribed: bool
    needs_payment: bool
    captured_at_ms: int
    subscription_details: dict[str, object] | None = None

    def to_payload(self) -> dict[str, object]:
        """Return the JSON shape stored in the cache."""
        return {
            "isSubscribed": self.is_subscribed,
            "needsPayment": self.needs_payment,
            "subscriptionDetails": self.subscription_details,
            "ts": self.captured_at_ms,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, object]) -> "SubscriptionSnapshot":
        details = payload.get("subscriptionDetails")
        return cls(
            is_subscribed=bool(payload.get("isSubscribed", False)),
            needs_payment=bool(payload.get("needsPayment", True)),
            captured_at_ms=int(payload["ts"]),
            subscription_details=details if isinstance(details, dict) else None,
        )

    def age_seconds(self, now: datetime) -> float:
        return now.timestamp() - self.captured_at_ms / 1000


@dataclass(frozen=True)
class GateView:
    """What a caller should render for the current gate state."""

    decision: AccessDecision
    render_children: bool
    paywall_open: bool = False
    redirect_to: str | None = None
    reason: str = ""
    details: dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "decision": self.decision.value,
            "render_children": self.render_children,
            "paywall_open": self.paywall_open,
            "redirect_to": self.redirect_to,
            "reason": self.reason,
        }
