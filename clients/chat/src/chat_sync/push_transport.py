from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import aiohttp

from .errors import TransportReceiveError
from .models import MEDIA_PLACEHOLDER_TEXT, ConversationHandle, Credential, InboundRecord
from .redact import redact_mapping, redact_text
from .transport import Transport, TransportSink

logger = logging.getLogger("chat_sync")

FRAME_AUTH = "auth"
FRAME_TEXT = "text"
FRAME_TYPING = "typing"


def reconnect_delay(attempt: int, initial_s: float, max_s: float) -> float:
    """Exponential backoff: ``initial_s * 2**attempt`` capped at ``max_s``."""

    if attempt < 0:
        attempt = 0
    return min(initial_s * (2 ** attempt), max_s)


def auth_frame(secret_key: str) -> Dict[str, object]:
    return {"type": FRAME_AUTH, "payload": {"key": secret_key}}


def text_frame(conversation_id: str, text: str) -> Dict[str, object]:
    return {"type": FRAME_TEXT, "payload": {"conversationId": conversation_id, "text": text}}


class PushTransport(Transport):
    """Holds one realtime connection and dispatches frames by their ``type``.

    A dropped connection is re-established with exponential backoff for at
    most ``reconnect_max_attempts`` consecutive failures; after that the
    transport reports ``TransportReceiveError`` and stays down until the
    next ``start``.
    """

    name = "push"

    def __init__(
        self,
        sink: TransportSink,
        http: aiohttp.ClientSession,
        ws_url: str,
        timeout_s: Optional[float] = None,
        reconnect_initial_s: float = 0.5,
        reconnect_max_s: float = 30.0,
        reconnect_max_attempts: int = 8,
    ) -> None:
        super().__init__(sink)
        self._http = http
        self._ws_url = ws_url
        self._timeout_s = timeout_s
        self._reconnect_initial_s = reconnect_initial_s
        self._reconnect_max_s = reconnect_max_s
        self._reconnect_max_attempts = reconnect_max_attempts
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._task: Optional[asyncio.Task] = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def start(self, handle: ConversationHandle, credential: Credential) -> None:
        if self._task is not None:
            await self.stop()
        self._handle = handle
        self._credential = credential
        self._stopping = False
        connected = await self._connect_once()
        self._task = asyncio.create_task(self._run(connected))

    async def _connect_once(self) -> bool:
        credential = self._credential
        if credential is None:
            return False
        ws: Optional[aiohttp.ClientWebSocketResponse] = None
        try:
            connect = self._http.ws_connect(self._ws_url)
            if self._timeout_s is not None:
                ws = await asyncio.wait_for(connect, self._timeout_s)
            else:
                ws = await connect
            await ws.send_json(auth_frame(credential.secret_key))
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            logger.warning("Realtime connect to %s failed: %s", self._ws_url, redact_text(str(exc)))
            if ws is not None:
                await ws.close()
            return False
        self._ws = ws
        logger.info("Realtime connection open for conversation %s", self.conversation_id)
        return True

    async def _run(self, connected: bool) -> None:
        failures = 0
        while not self._stopping:
            if connected:
                failures = 0
                await self._read_frames()
                if self._stopping:
                    return
                logger.warning("Realtime connection for %s closed", self.conversation_id)
            if failures >= self._reconnect_max_attempts:
                error = TransportReceiveError(
                    f"realtime connection for {self.conversation_id} lost after {failures} reconnect attempts"
                )
                logger.warning("%s", error)
                self._sink.on_error(error)
                return
            await asyncio.sleep(reconnect_delay(failures, self._reconnect_initial_s, self._reconnect_max_s))
            failures += 1
            if self._stopping:
                return
            connected = await self._connect_once()

    async def _read_frames(self) -> None:
        ws = self._ws
        if ws is None:
            return
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self.handle_frame(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning("Realtime connection error: %s", ws.exception())
                    break
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            logger.warning("Realtime read failed: %s", redact_text(str(exc)))
        finally:
            self._ws = None
            if not ws.closed:
                await ws.close()

    def handle_frame(self, data: str) -> None:
        try:
            frame = json.loads(data)
        except ValueError:
            logger.warning("Dropping malformed realtime frame")
            return
        if not isinstance(frame, dict):
            logger.warning("Dropping realtime frame that is not an object")
            return
        frame_type = frame.get("type")
        payload = frame.get("payload")
        if not isinstance(payload, dict):
            payload = {}
        if frame_type == FRAME_TEXT:
            self._dispatch_text(frame, payload)
        elif frame_type == FRAME_TYPING:
            typing = payload.get("typing")
            if not isinstance(typing, bool):
                logger.warning("Dropping typing frame without a boolean flag")
                return
            self._sink.on_typing(typing)
        else:
            logger.info("Ignoring realtime frame of unknown type %r: %s", frame_type, redact_mapping(frame))

    def _dispatch_text(self, frame: Dict[str, Any], payload: Dict[str, Any]) -> None:
        handle = self._handle
        if handle is None:
            return
        message_id = frame.get("id")
        if message_id is None or message_id == "":
            logger.warning("Dropping text frame without an id")
            return
        conversation_id = payload.get("conversationId") or frame.get("conversationId") or handle.conversation_id
        if not self._sink.is_current(str(conversation_id)):
            logger.debug("Discarding realtime message for superseded conversation %s", conversation_id)
            return
        text = payload.get("text")
        user_id = frame.get("userId")
        self._sink.on_record(
            InboundRecord(
                conversation_id=str(conversation_id),
                id=str(message_id),
                text=text if isinstance(text, str) else MEDIA_PLACEHOLDER_TEXT,
                user_id=str(user_id) if user_id is not None else None,
            )
        )

    async def send(self, text: str) -> bool:
        ws = self._ws
        handle = self._handle
        if ws is None or ws.closed or handle is None:
            logger.warning("Cannot send: realtime connection is not open")
            return False
        try:
            await ws.send_json(text_frame(handle.conversation_id, text))
        except (aiohttp.ClientError, OSError) as exc:
            logger.warning("Realtime send failed: %s", redact_text(str(exc)))
            return False
        return True

    async def stop(self) -> None:
        self._stopping = True
        ws = self._ws
        task = self._task
        self._task = None
        if ws is not None and not ws.closed:
            await ws.close()
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
