"""Shared test fixtures."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest

from wakti.adapters.chunk_capture_device import ChunkCaptureDevice
from wakti.config import Settings
from wakti.containers import AppContainer, build_gate_factory
from wakti.domain.access import AuthSession, SubscriptionRecord
from wakti.domain.recordings import AudioAsset, UploadedAsset
from wakti.services.access_gate import (
    AccessGate,
    AccessGateRegistry,
    AccessService,
    AuthClient,
    PaywallModal,
)
from wakti.services.cache import InMemoryKeyValueStore, SubscriptionSnapshotCache
from wakti.services.recordings import (
    CaptureDevice,
    RecordingPipeline,
    RecordingRegistry,
    SegmentedRecorder,
)
from wakti.services.subscriptions import SubscriptionClient

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


@dataclass
class FakeClock:
    """Mutable wall clock."""

    now: datetime = NOW

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@dataclass
class FakeSubscriptionClient(SubscriptionClient):
    """Subscription lookup with configurable latency and failures."""

    record: SubscriptionRecord | None = None
    delay_seconds: float = 0.0
    error: Exception | None = None
    calls: list[str] = field(default_factory=list)

    async def fetch_subscription(self, user_id: str) -> SubscriptionRecord | None:
        self.calls.append(user_id)
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.error is not None:
            raise self.error
        return self.record


@dataclass
class FakeAuthClient(AuthClient):
    """Maps access tokens to sessions."""

    sessions: dict[str, AuthSession] = field(default_factory=dict)

    async def get_session(self, access_token: str) -> AuthSession | None:
        return self.sessions.get(access_token)


@dataclass
class RecordingPaywall(PaywallModal):
    """Paywall modal that records every open/close call."""

    calls: list[bool] = field(default_factory=list)

    def set_open(self, open_: bool) -> None:
        self.calls.append(open_)


@dataclass
class FakeCaptureDevice(CaptureDevice):
    """Capture device driven by tests."""

    mime_type: str = "audio/webm"
    fail_on_start: bool = False
    starts: int = 0
    stops: int = 0
    _on_data: Callable[[bytes], None] | None = None

    def start(self, on_data: Callable[[bytes], None]) -> None:
        if self.fail_on_start:
            raise PermissionError("microphone permission denied")
        self.starts += 1
        self._on_data = on_data

    def stop(self) -> None:
        self.stops += 1
        self._on_data = None

    def emit(self, chunk: bytes) -> None:
        assert self._on_data is not None, "device is not capturing"
        self._on_data(chunk)


@dataclass
class FakePipeline(RecordingPipeline):
    """Pipeline that records calls and can fail at a chosen stage."""

    fail_stage: str | None = None
    assets: list[AudioAsset] = field(default_factory=list)
    calls: list[str] = field(default_factory=list)

    async def upload(self, asset: AudioAsset) -> UploadedAsset:
        self.calls.append("upload")
        if self.fail_stage == "upload":
            raise RuntimeError("storage unavailable")
        self.assets.append(asset)
        path = f"{asset.user_id}/{asset.recording_id}/recording.webm"
        return UploadedAsset(path=path, public_url=f"https://cdn.example/{path}")

    async def transcribe(self, recording_id: str) -> str:
        self.calls.append("transcribe")
        if self.fail_stage == "transcribe":
            raise RuntimeError("transcription failed")
        return "hello world"

    async def summarize(self, recording_id: str) -> str:
        self.calls.append("summarize")
        if self.fail_stage == "summarize":
            raise RuntimeError("summary failed")
        return "a greeting"


def make_gate(
    subscription_client: FakeSubscriptionClient,
    cache: SubscriptionSnapshotCache | None = None,
    clock: FakeClock | None = None,
    **overrides: object,
) -> AccessGate:
    """Build a gate with sub-second timers for tests."""
    options: dict[str, object] = {
        "fetch_timeout_seconds": 0.05,
        "retry_delay_seconds": 0.05,
        "free_access_poll_seconds": 0.02,
    }
    options.update(overrides)
    return AccessGate(
        user_id="user-1",
        subscription_client=subscription_client,
        cache=cache or SubscriptionSnapshotCache(InMemoryKeyValueStore()),
        clock=clock or FakeClock(),
        **options,  # type: ignore[arg-type]
    )


def make_session(
    user_id: str = "user-1", email: str = "user@example.com"
) -> AuthSession:
    return AuthSession(has_user=True, has_session=True, user_id=user_id, email=email)


def make_recorder(
    device: FakeCaptureDevice | None = None,
    pipeline: FakePipeline | None = None,
    **overrides: object,
) -> SegmentedRecorder:
    """Build a recorder with a manual clock (no background timer)."""
    options: dict[str, object] = {
        "tick_interval_seconds": None,
        "user_id": "user-1",
        "id_factory": lambda: "rec-1",
    }
    options.update(overrides)
    return SegmentedRecorder(
        device=device or FakeCaptureDevice(),
        pipeline=pipeline or FakePipeline(),
        **options,  # type: ignore[arg-type]
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_service_key="service-key",
        owner_emails="owner@wakti.qa",
    )


@pytest.fixture
def auth_client() -> FakeAuthClient:
    return FakeAuthClient(
        sessions={
            "user-token": make_session(),
            "owner-token": make_session("owner-1", "Owner@wakti.qa"),
        }
    )


@pytest.fixture
def subscription_client() -> FakeSubscriptionClient:
    return FakeSubscriptionClient(
        record=SubscriptionRecord(
            is_subscribed=True,
            subscription_status="active",
            next_billing_date=datetime.now(tz=UTC) + timedelta(days=20),
        )
    )


@pytest.fixture
def pipeline() -> FakePipeline:
    return FakePipeline()


@pytest.fixture
def container(
    settings: Settings,
    auth_client: FakeAuthClient,
    subscription_client: FakeSubscriptionClient,
    pipeline: FakePipeline,
) -> AppContainer:
    durable_store = InMemoryKeyValueStore()
    session_store = InMemoryKeyValueStore()
    cache = SubscriptionSnapshotCache(
        durable_store, namespace=settings.subscription_cache_namespace
    )
    registry = AccessGateRegistry(
        build_gate_factory(settings, subscription_client, cache)
    )

    def recorder_factory(user_id: str, mime_type: str) -> SegmentedRecorder:
        return SegmentedRecorder(
            device=ChunkCaptureDevice(mime_type=mime_type),
            pipeline=pipeline,
            user_id=user_id,
            tick_interval_seconds=None,
        )

    recording_registry = RecordingRegistry(recorder_factory)

    async def close_resources() -> None:
        registry.unmount_all()
        recording_registry.discard_all()

    return AppContainer(
        settings=settings,
        access_service=AccessService(auth_client=auth_client, registry=registry),
        recording_registry=recording_registry,
        durable_store=durable_store,
        session_store=session_store,
        close_resources=close_resources,
    )
