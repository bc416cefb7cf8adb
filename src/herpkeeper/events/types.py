"""Event bus fact types.

Learn: A Fact is the message that crosses the Redis channel. It is
immutable, never persisted, and passed by value as JSON text:

    {"type": "profile_updated", "message": "...", "data": {...}}

Centralizing the type constants prevents typos between publisher and
subscriber. Server → client WebSocket event types live here too.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

# ─── Broker facts ────────────────────────────────────────

PROFILE_UPDATED = "profile_updated"

# ─── WebSocket events ────────────────────────────────────

WS_AUTHENTICATE = "authenticate"
WS_ERROR = "error"

AUTH_SUCCESS = "Success"
AUTH_FAILED = "Failed to authenticate"


class Fact(BaseModel):
    """One event record flowing through the broker."""

    model_config = ConfigDict(frozen=True)

    type: str
    message: str = ""
    data: dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str | bytes) -> "Fact":
        """Decode wire text. Raises pydantic.ValidationError on bad input."""
        return cls.model_validate_json(raw)


def profile_updated_fact(
    profile_id: Any,
    username: str,
    timestamp: Optional[datetime] = None,
) -> Fact:
    """Build the fact published after a profile write commits."""
    ts = timestamp or datetime.now(timezone.utc)
    return Fact(
        type=PROFILE_UPDATED,
        message=f"Profile {profile_id} for user {username} has been updated",
        data={
            "profileId": str(profile_id),
            "username": username,
            "timestamp": ts.isoformat(),
        },
    )
