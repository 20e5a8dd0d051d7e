from __future__ import annotations

import enum
import secrets
from dataclasses import dataclass
from typing import Optional

LOCAL_ID_PREFIX = "local-"
ERROR_ID_PREFIX = "err-"
MEDIA_PLACEHOLDER_TEXT = "Media message"


class Origin(str, enum.Enum):
    USER = "user"
    BOT = "bot"


class SessionState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    BOOTSTRAPPING = "bootstrapping"
    READY = "ready"
    RESETTING = "resetting"
    FAILED = "failed"
    DISPOSED = "disposed"


@dataclass(frozen=True)
class Credential:
    """Durable identity of this install. ``secret_key`` only travels as auth."""

    user_id: str
    secret_key: str

    def __repr__(self) -> str:
        return f"Credential(user_id={self.user_id!r}, secret_key='[REDACTED]')"


@dataclass(frozen=True)
class ConversationHandle:
    conversation_id: str


@dataclass(frozen=True)
class Message:
    id: str
    text: str
    origin: Origin

    @property
    def is_user(self) -> bool:
        return self.origin is Origin.USER

    @property
    def is_local(self) -> bool:
        return self.id.startswith((LOCAL_ID_PREFIX, ERROR_ID_PREFIX))


@dataclass(frozen=True)
class InboundRecord:
    """A raw message as a transport discovered it, tagged with its conversation."""

    conversation_id: str
    id: str
    text: str
    user_id: Optional[str] = None


def local_message_id() -> str:
    return f"{LOCAL_ID_PREFIX}{secrets.token_hex(8)}"


def error_message_id() -> str:
    return f"{ERROR_ID_PREFIX}{secrets.token_hex(8)}"
