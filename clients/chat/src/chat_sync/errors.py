"""Error taxonomy for the synchronization core."""

from __future__ import annotations


class ChatSyncError(Exception):
    pass


class ConfigurationError(ChatSyncError):
    pass


class ChatApiError(ChatSyncError):
    """The remote service answered with a non-2xx status."""

    def __init__(self, status: int, message: str = "") -> None:
        self.status = status
        self.message = message
        super().__init__(f"remote returned HTTP {status}: {message}" if message else f"remote returned HTTP {status}")


class IdentityCreationError(ChatSyncError):
    pass


class ConversationCreationError(ChatSyncError):
    pass


class TransportSendError(ChatSyncError):
    pass


class TransportReceiveError(ChatSyncError):
    pass


class MalformedPayloadError(ChatSyncError):
    pass
