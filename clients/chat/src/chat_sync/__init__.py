"""Message-synchronization core for a chat client backed by a remote conversational service."""

from .broadcast import Broadcast, Listener, Subscription
from .config import ChatConfig, load_config_from_env
from .dedup import MessageDeduplicator
from .errors import (
    ChatApiError,
    ChatSyncError,
    ConfigurationError,
    ConversationCreationError,
    IdentityCreationError,
    MalformedPayloadError,
    TransportReceiveError,
    TransportSendError,
)
from .models import ConversationHandle, Credential, InboundRecord, Message, Origin, SessionState
from .session import ConversationSession, create_transport
from .session_store import SessionStore

__all__ = [
    "Broadcast",
    "Listener",
    "Subscription",
    "ChatConfig",
    "load_config_from_env",
    "MessageDeduplicator",
    "ChatApiError",
    "ChatSyncError",
    "ConfigurationError",
    "ConversationCreationError",
    "IdentityCreationError",
    "MalformedPayloadError",
    "TransportReceiveError",
    "TransportSendError",
    "ConversationHandle",
    "Credential",
    "InboundRecord",
    "Message",
    "Origin",
    "SessionState",
    "ConversationSession",
    "create_transport",
    "SessionStore",
]
