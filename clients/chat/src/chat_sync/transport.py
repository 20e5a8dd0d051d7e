"""Transport contract shared by the poll and push strategies."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from .errors import ChatSyncError
from .models import ConversationHandle, Credential, InboundRecord


@dataclass
class TransportSink:
    """Callbacks a transport uses to hand its discoveries to the owning session.

    ``is_current`` answers whether a conversation id is still the one the
    owner is bound to; results captured for any other id are discarded.
    """

    on_record: Callable[[InboundRecord], None]
    on_typing: Callable[[bool], None]
    on_error: Callable[[ChatSyncError], None]
    is_current: Callable[[str], bool]


class Transport:
    """Discovers inbound messages for one conversation and sends outbound text.

    A transport is bound to a single handle by ``start`` and is replaced
    wholesale by its owner, never rebound while running.
    """

    name = "transport"

    def __init__(self, sink: TransportSink) -> None:
        self._sink = sink
        self._handle: Optional[ConversationHandle] = None
        self._credential: Optional[Credential] = None

    @property
    def conversation_id(self) -> Optional[str]:
        return self._handle.conversation_id if self._handle is not None else None

    @property
    def running(self) -> bool:
        raise NotImplementedError

    async def start(self, handle: ConversationHandle, credential: Credential) -> None:
        raise NotImplementedError

    async def stop(self) -> None:
        raise NotImplementedError

    async def send(self, text: str) -> bool:
        raise NotImplementedError

    async def close(self) -> None:
        """Stop and cancel any outstanding work."""

        await self.stop()
