"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from supabase import create_client

from wakti.adapters.chunk_capture_device import ChunkCaptureDevice
from wakti.adapters.supabase_auth_client import SupabaseAuthClient
from wakti.adapters.supabase_recording_pipeline import SupabaseRecordingPipeline
from wakti.adapters.supabase_subscription_repository import (
    SupabaseSubscriptionRepository,
)
from wakti.config import Settings, parse_owner_emails, parse_route_prefixes
from wakti.services.access_gate import (
    AccessGate,
    AccessGateRegistry,
    AccessService,
    PaywallState,
)
from wakti.services.cache import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStore,
    SubscriptionSnapshotCache,
)
from wakti.services.recordings import (
    RecordingPipeline,
    RecordingRegistry,
    SegmentedRecorder,
)
from wakti.services.subscriptions import SubscriptionClient


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    access_service: AccessService
    recording_registry: RecordingRegistry
    durable_store: KeyValueStore
    session_store: KeyValueStore
    close_resources: Callable[[], Awaitable[None]]


def build_gate_factory(
    settings: Settings,
    subscription_client: SubscriptionClient,
    cache: SubscriptionSnapshotCache,
) -> Callable[[str], AccessGate]:
    """Return a factory creating one configured gate per user id."""
    owner_emails = parse_owner_emails(settings.owner_emails)
    route_prefixes = parse_route_prefixes(settings.account_route_prefixes)

    def factory(user_id: str) -> AccessGate:
        return AccessGate(
            user_id=user_id,
            subscription_client=subscription_client,
            cache=cache,
            owner_emails=owner_emails,
            paywall=PaywallState(),
            account_route_prefixes=route_prefixes,
            cache_ttl_seconds=settings.subscription_cache_ttl_seconds,
            fetch_timeout_seconds=settings.subscription_fetch_timeout_seconds,
            retry_delay_seconds=settings.subscription_retry_delay_seconds,
            free_access_poll_seconds=settings.free_access_poll_seconds,
            free_access_window=timedelta(hours=settings.free_access_window_hours),
        )

    return factory


def build_recorder_factory(
    settings: Settings, pipeline: RecordingPipeline
) -> Callable[[str, str], SegmentedRecorder]:
    """Return a factory creating a recorder fed by uploaded chunks."""

    def factory(user_id: str, mime_type: str) -> SegmentedRecorder:
        return SegmentedRecorder(
            device=ChunkCaptureDevice(mime_type=mime_type),
            pipeline=pipeline,
            user_id=user_id,
            max_duration_seconds=settings.max_recording_seconds,
        )

    return factory


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    durable_store: KeyValueStore
    if resolved_settings.cache_path:
        durable_store = JsonFileKeyValueStore(Path(resolved_settings.cache_path))
    else:
        durable_store = InMemoryKeyValueStore()
    session_store = InMemoryKeyValueStore()
    snapshot_cache = SubscriptionSnapshotCache(
        store=durable_store,
        namespace=resolved_settings.subscription_cache_namespace,
    )
    registry = AccessGateRegistry(
        build_gate_factory(
            resolved_settings,
            SupabaseSubscriptionRepository(supabase_client),
            snapshot_cache,
        )
    )
    access_service = AccessService(
        auth_client=SupabaseAuthClient(supabase_client),
        registry=registry,
    )
    pipeline = SupabaseRecordingPipeline(
        client=supabase_client,
        bucket=resolved_settings.recordings_bucket,
        expiry_days=resolved_settings.recording_expiry_days,
    )
    recording_registry = RecordingRegistry(
        build_recorder_factory(resolved_settings, pipeline)
    )

    async def close_resources() -> None:
        registry.unmount_all()
        recording_registry.discard_all()

    return AppContainer(
        settings=resolved_settings,
        access_service=access_service,
        recording_registry=recording_registry,
        durable_store=durable_store,
        session_store=session_store,
        close_resources=close_resources,
    )
