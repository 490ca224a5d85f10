"""Supabase auth lookups for bearer tokens."""

import asyncio
import logging
from dataclasses import dataclass

from supabase import Client

from wakti.domain.access import AuthSession
from wakti.services.access_gate import AuthClient

_logger = logging.getLogger(__name__)


@dataclass
class SupabaseAuthClient(AuthClient):
    """Resolves access tokens through Supabase Auth."""

    client: Client

    async def get_session(self, access_token: str) -> AuthSession | None:
        """Return the session for a token, or None if Supabase rejects it."""
        try:
            response = await asyncio.to_thread(self.client.auth.get_user, access_token)
        except Exception as exc:
            _logger.warning("Supabase rejected access token: %s", exc)
            return None
        user = getattr(response, "user", None)
        if user is None:
            return None
        return AuthSession(
            has_user=True,
            has_session=True,
            user_id=str(user.id),
            email=user.email,
            last_login_at=user.last_sign_in_at,
        )
