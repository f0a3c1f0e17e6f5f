"""Chat message record shared by the store, the orchestrator and the hub."""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ChatMessage:
    username: str
    message: str
    created_at: datetime
    expires_at: datetime
    id: Optional[str] = None  # assigned by the store on save

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())
