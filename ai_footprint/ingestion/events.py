"""
Events produced by ingestion adapters.

TurnEvent is what a page adapter sees; TrackTokensPayload is what gets
submitted to the ledger's command surface.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping

from ai_footprint.core.ledger import InvalidInputError, Role

PREVIEW_LENGTH = 100
UNKNOWN_PROVIDER = "Unknown"


@dataclass(frozen=True)
class TurnEvent:
    """One observed conversational turn."""
    text: str
    role: Role
    dedupe_key: str
    provider: str = UNKNOWN_PROVIDER


@dataclass(frozen=True)
class TrackTokensPayload:
    """Body of a trackTokens command.

    message_preview is for display only and never used in computation.
    """
    tokens: int
    provider: str
    role: Role
    timestamp: datetime = field(default_factory=datetime.now)
    message_preview: str = ""

    def __post_init__(self):
        """Validate token count and role."""
        if isinstance(self.tokens, bool) or not isinstance(self.tokens, int):
            raise InvalidInputError(f"tokens must be an integer, got {self.tokens!r}")
        if self.tokens < 0:
            raise InvalidInputError(f"tokens cannot be negative, got {self.tokens}")
        if not isinstance(self.role, Role):
            raise InvalidInputError(f"role must be a Role, got {self.role!r}")

    @classmethod
    def from_event(cls, event: TurnEvent, tokens: int) -> "TrackTokensPayload":
        return cls(
            tokens=tokens,
            provider=event.provider,
            role=event.role,
            message_preview=event.text[:PREVIEW_LENGTH]
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TrackTokensPayload":
        """Parse a wire payload.

        Accepts either "role" or "messageType" for the role and either
        "message_preview" or "messagePreview" for the preview. The
        timestamp may be an ISO string, epoch milliseconds or missing.

        Raises:
            InvalidInputError: If the payload is not a mapping or is invalid
        """
        if not isinstance(data, Mapping):
            raise InvalidInputError("trackTokens payload must be an object")
        if "tokens" not in data:
            raise InvalidInputError("trackTokens payload missing 'tokens'")

        role_value = data.get("role", data.get("messageType"))
        if role_value is None:
            raise InvalidInputError("trackTokens payload missing 'role'")

        preview = data.get("message_preview", data.get("messagePreview")) or ""

        return cls(
            tokens=data["tokens"],
            provider=str(data.get("provider") or UNKNOWN_PROVIDER),
            role=Role.parse(role_value),
            timestamp=_parse_timestamp(data.get("timestamp")),
            message_preview=str(preview)[:PREVIEW_LENGTH]
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tokens": self.tokens,
            "provider": self.provider,
            "role": self.role.value,
            "timestamp": self.timestamp.isoformat(),
            "message_preview": self.message_preview,
        }


def _parse_timestamp(value: Any) -> datetime:
    if value is None:
        return datetime.now()
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Browser clients send epoch milliseconds
        return datetime.fromtimestamp(value / 1000)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            raise InvalidInputError(f"Invalid timestamp: {value!r}")
    raise InvalidInputError(f"Invalid timestamp: {value!r}")
