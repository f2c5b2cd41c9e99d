"""Supabase-backed store for serialized meal plan sessions."""

from dataclasses import dataclass
from datetime import UTC, datetime

from supabase import Client

from meal_balance.services.meal_plan import SessionStore

DEFAULT_SESSION_TABLE = "meal_plan_sessions"


@dataclass
class SupabaseSessionStore(SessionStore):
    """Supabase implementation keeping one payload row per session key."""

    client: Client
    table: str = DEFAULT_SESSION_TABLE

    def read(self, key: str) -> str | None:
        """Return the stored payload for a key, if present."""
        response = (
            self.client.table(self.table)
            .select("session_key, payload")
            .eq("session_key", key)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        payload = response.data[0].get("payload")
        return payload if isinstance(payload, str) else None

    def write(self, key: str, payload: str) -> None:
        """Insert or replace the payload stored under a key."""
        response = (
            self.client.table(self.table)
            .upsert(
                {
                    "session_key": key,
                    "payload": payload,
                    "updated_at": datetime.now(tz=UTC).isoformat(),
                },
                on_conflict="session_key",
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError(f"Failed to persist meal plan session {key}")
