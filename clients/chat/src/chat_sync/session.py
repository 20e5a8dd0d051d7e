"""Conversation session: bootstrap, transport lifecycle and the consumer-facing streams."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Callable, Deque, Optional

import aiohttp

from .bootstrap import SessionBootstrapper
from .broadcast import Broadcast
from .config import TRANSPORT_PUSH, ChatConfig
from .dedup import MessageDeduplicator
from .errors import ChatSyncError, ConversationCreationError, TransportSendError
from .models import (
    ConversationHandle,
    Credential,
    InboundRecord,
    Message,
    Origin,
    SessionState,
    error_message_id,
    local_message_id,
)
from .poll_transport import PollTransport
from .push_transport import PushTransport
from .session_store import SessionStore
from .transport import Transport, TransportSink

logger = logging.getLogger("chat_sync")

TransportFactory = Callable[[ChatConfig, aiohttp.ClientSession, TransportSink], Transport]


def create_transport(config: ChatConfig, http: aiohttp.ClientSession, sink: TransportSink) -> Transport:
    timeout_s = config.request_timeout_s or None
    if config.transport == TRANSPORT_PUSH:
        return PushTransport(
            sink,
            http,
            config.ws_url,
            timeout_s=timeout_s,
            reconnect_initial_s=config.reconnect_initial_s,
            reconnect_max_s=config.reconnect_max_s,
            reconnect_max_attempts=config.reconnect_max_attempts,
        )
    return PollTransport(sink, http, config.api_url, interval_s=config.poll_interval_s, timeout_s=timeout_s)


class ConversationSession:
    """Single owner of the identity, the active conversation and its transport.

    Consumers drive it with ``initialize``, ``send_message``,
    ``start_new_conversation`` and ``dispose``, and observe it through the
    ``messages`` and ``typing`` broadcasts. All public methods are meant to
    be called from one task; network work runs concurrently and results
    for a conversation that is no longer current are dropped.
    """

    def __init__(
        self,
        config: ChatConfig,
        store: Optional[SessionStore] = None,
        http: Optional[aiohttp.ClientSession] = None,
        transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        self._config = config
        self._store = store if store is not None else SessionStore(config.store_path)
        self._http = http
        self._owns_http = http is None
        self._transport_factory = transport_factory or create_transport
        self._state = SessionState.UNINITIALIZED
        self._credential: Optional[Credential] = None
        self._handle: Optional[ConversationHandle] = None
        self._transport: Optional[Transport] = None
        self._dedup = MessageDeduplicator()
        self._pending_echoes: Deque[str] = deque()
        self._typing = False
        self._typing_timer: Optional[asyncio.TimerHandle] = None
        self.messages: Broadcast[Message] = Broadcast("messages")
        self.typing: Broadcast[bool] = Broadcast("typing")
        self.last_error: Optional[ChatSyncError] = None

    async def __aenter__(self) -> "ConversationSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is SessionState.READY

    @property
    def conversation_id(self) -> Optional[str]:
        return self._handle.conversation_id if self._handle is not None else None

    @property
    def credential_user_id(self) -> Optional[str]:
        return self._credential.user_id if self._credential is not None else None

    @property
    def is_typing(self) -> bool:
        return self._typing

    @property
    def transport(self) -> Optional[Transport]:
        return self._transport

    def _set_state(self, state: SessionState) -> None:
        if self._state is SessionState.DISPOSED:
            return
        logger.debug("Session state %s -> %s", self._state.value, state.value)
        self._state = state

    def _ensure_http(self) -> aiohttp.ClientSession:
        if self._http is None:
            self._http = aiohttp.ClientSession()
        return self._http

    def _bootstrapper(self) -> SessionBootstrapper:
        return SessionBootstrapper(
            self._ensure_http(),
            self._config.api_url,
            self._store,
            timeout_s=self._config.request_timeout_s or None,
        )

    def _sink(self) -> TransportSink:
        return TransportSink(
            on_record=self._on_record,
            on_typing=self._on_remote_typing,
            on_error=self._on_transport_error,
            is_current=self._is_current,
        )

    def _is_current(self, conversation_id: str) -> bool:
        handle = self._handle
        return (
            self._state is not SessionState.DISPOSED
            and handle is not None
            and handle.conversation_id == conversation_id
        )

    async def _adopt(self, handle: ConversationHandle) -> None:
        assert self._credential is not None
        self._handle = handle
        transport = self._transport_factory(self._config, self._ensure_http(), self._sink())
        self._transport = transport
        await transport.start(handle, self._credential)

    async def initialize(self) -> SessionState:
        """Bootstrap identity and conversation, then start the transport.

        Failures leave the session in ``FAILED`` with ``last_error`` set;
        calling ``initialize`` again retries.
        """

        if self._state not in (SessionState.UNINITIALIZED, SessionState.FAILED):
            return self._state
        self._set_state(SessionState.BOOTSTRAPPING)
        self.last_error = None
        try:
            result = await self._bootstrapper().bootstrap()
        except ChatSyncError as exc:
            self.last_error = exc
            logger.error("Session bootstrap failed: %s", exc)
            self._set_state(SessionState.FAILED)
            return self._state
        if self._state is SessionState.DISPOSED:
            return self._state
        self._credential = result.credential
        self._dedup.reset()
        await self._adopt(result.handle)
        self._set_state(SessionState.READY)
        logger.info("Session ready on conversation %s via %s", result.handle.conversation_id, self._config.transport)
        return self._state

    async def send_message(self, text: str) -> None:
        if self._state is not SessionState.READY:
            return
        clean = text.strip()
        if not clean:
            return
        transport = self._transport
        if transport is None:
            return
        self._pending_echoes.append(clean)
        self.messages.publish(Message(id=local_message_id(), text=clean, origin=Origin.USER))
        self._arm_typing()

        if await transport.send(clean):
            return
        if transport is not self._transport:
            return
        try:
            self._pending_echoes.remove(clean)
        except ValueError:
            pass
        self._clear_typing()
        error = TransportSendError(f"could not deliver message to conversation {transport.conversation_id}")
        logger.error("%s", error)
        self._surface_error(error)

    async def start_new_conversation(self) -> None:
        """Stop the transport, open a new conversation, clear dedup state, restart.

        Identity is reused. If the new conversation cannot be created the
        previous one is resumed and ``last_error`` records the failure.
        """

        if self._state is not SessionState.READY:
            return
        credential = self._credential
        assert credential is not None
        self._set_state(SessionState.RESETTING)
        previous = self._handle
        transport = self._transport
        self._handle = None
        self._transport = None
        if transport is not None:
            await transport.stop()
        self._clear_typing()

        try:
            handle = await self._bootstrapper().create_conversation(credential)
        except ConversationCreationError as exc:
            self.last_error = exc
            logger.error("Could not start a new conversation: %s", exc)
            if self._state is SessionState.DISPOSED or previous is None:
                return
            await self._adopt(previous)
            self._set_state(SessionState.READY)
            return
        if self._state is SessionState.DISPOSED:
            return

        self._dedup.reset()
        self._pending_echoes.clear()
        await self._adopt(handle)
        self._set_state(SessionState.READY)

    async def dispose(self) -> None:
        if self._state is SessionState.DISPOSED:
            return
        self._set_state(SessionState.DISPOSED)
        transport = self._transport
        self._transport = None
        self._handle = None
        if transport is not None:
            await transport.close()
        self._cancel_typing_timer()
        self.messages.close("session disposed")
        self.typing.close("session disposed")
        if self._owns_http and self._http is not None:
            await self._http.close()
        self._http = None

    def _on_record(self, record: InboundRecord) -> None:
        if not self._is_current(record.conversation_id):
            return
        if not self._dedup.admit(record.id):
            return
        credential = self._credential
        if credential is not None and record.user_id == credential.user_id:
            if self._reconcile_echo(record.text):
                logger.debug("Reconciled echo %s with an optimistic message", record.id)
                return
            self.messages.publish(Message(id=record.id, text=record.text, origin=Origin.USER))
            return
        self._clear_typing()
        self.messages.publish(Message(id=record.id, text=record.text, origin=Origin.BOT))

    def _reconcile_echo(self, text: str) -> bool:
        try:
            self._pending_echoes.remove(text)
        except ValueError:
            return False
        return True

    def _on_remote_typing(self, typing: bool) -> None:
        if typing:
            self._set_typing(True)
        else:
            self._clear_typing()

    def _on_transport_error(self, error: ChatSyncError) -> None:
        self._surface_error(error)

    def _surface_error(self, error: ChatSyncError) -> None:
        if not self._config.surface_errors or self._state is SessionState.DISPOSED:
            return
        self.messages.publish(Message(id=error_message_id(), text=f"Error: {error}", origin=Origin.BOT))

    def _set_typing(self, value: bool) -> None:
        if value == self._typing:
            return
        self._typing = value
        self.typing.publish(value)

    def _arm_typing(self) -> None:
        self._cancel_typing_timer()
        self._set_typing(True)
        loop = asyncio.get_running_loop()
        self._typing_timer = loop.call_later(self._config.typing_timeout_s, self._on_typing_timeout)

    def _on_typing_timeout(self) -> None:
        self._typing_timer = None
        logger.debug("No reply within %.1fs; clearing typing indicator", self._config.typing_timeout_s)
        self._set_typing(False)

    def _cancel_typing_timer(self) -> None:
        if self._typing_timer is not None:
            self._typing_timer.cancel()
            self._typing_timer = None

    def _clear_typing(self) -> None:
        self._cancel_typing_timer()
        self._set_typing(False)
