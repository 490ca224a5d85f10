"""Supabase-backed subscription lookup."""

import asyncio
from dataclasses import dataclass

from supabase import Client

from wakti.domain.access import SubscriptionRecord
from wakti.services.subscriptions import SubscriptionClient

_COLUMNS = (
    "is_subscribed, subscription_status, next_billing_date, plan_name, "
    "free_access_start_at"
)


@dataclass
class SupabaseSubscriptionRepository(SubscriptionClient):
    """Reads billing fields from the ``profiles`` table."""

    client: Client

    async def fetch_subscription(self, user_id: str) -> SubscriptionRecord | None:
        """Return the subscription fields for a user, if a profile exists."""
        return await asyncio.to_thread(self._select, user_id)

    def _select(self, user_id: str) -> SubscriptionRecord | None:
        response = (
            self.client.table("profiles")
            .select(_COLUMNS)
            .eq("id", user_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return SubscriptionRecord.model_validate(response.data[0])
