"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, HTTPException, status

from wakti.api.dependencies import bearer_token, get_container, require_session
from wakti.api.models import PaywallChange
from wakti.api.recordings import router as recordings_router
from wakti.app_logging import configure_logging
from wakti.containers import AppContainer
from wakti.domain.access import AuthSession
from wakti.services.session_evidence import LoginFlagEvidence, login_flag_providers


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging(container.settings.log_level)
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        try:
            await app.state.container.close_resources()
        except Exception:
            logger.exception("Failed to release application resources")

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(recordings_router)

    def _login_flags(
        state_container: AppContainer, client_id: str | None
    ) -> list[LoginFlagEvidence]:
        if not client_id:
            return []
        return login_flag_providers(
            state_container.durable_store,
            state_container.session_store,
            client_id,
            window_seconds=state_container.settings.login_flag_window_seconds,
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.post("/session/login")
    async def mark_login(
        x_client_id: str | None = Header(default=None),
        state_container: AppContainer = Depends(get_container),
    ) -> dict[str, str]:
        """Record a just-completed login for the calling client."""
        if not x_client_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="X-Client-Id required"
            )
        for flag in _login_flags(state_container, x_client_id):
            flag.mark()
        return {"status": "ok"}

    @app.get("/access")
    async def access(
        route: str = "/",
        token: str | None = Depends(bearer_token),
        x_client_id: str | None = Header(default=None),
        state_container: AppContainer = Depends(get_container),
    ) -> dict[str, object]:
        """Return the render decision for a protected route."""
        view = await state_container.access_service.resolve(
            token,
            route=route,
            login_flags=_login_flags(state_container, x_client_id),
        )
        return view.to_dict()

    @app.post("/access/paywall")
    async def paywall_changed(
        change: PaywallChange,
        session: AuthSession = Depends(require_session),
        state_container: AppContainer = Depends(get_container),
    ) -> dict[str, object]:
        """Apply an open/close change coming from the paywall modal."""
        gate = state_container.access_service.registry.get(str(session.user_id))
        if gate is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
        gate.paywall_open_changed(change.open)
        return gate.view().to_dict()

    @app.delete("/access")
    async def release_access(
        session: AuthSession = Depends(require_session),
        state_container: AppContainer = Depends(get_container),
    ) -> dict[str, bool]:
        """Tear down the caller's gate and its timers."""
        released = state_container.access_service.release(str(session.user_id))
        return {"released": released}

    return app
