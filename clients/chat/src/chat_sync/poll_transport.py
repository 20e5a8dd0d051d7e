from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from . import chat_api
from .errors import ChatApiError, MalformedPayloadError, TransportReceiveError
from .models import ConversationHandle, Credential
from .redact import redact_text
from .transport import Transport, TransportSink

logger = logging.getLogger("chat_sync")


def oldest_first(messages: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Reorder a history page the remote returns newest-first into reading order."""

    return list(reversed(messages))


class PollTransport(Transport):
    """Fetches the full history of the bound conversation on a fixed interval.

    At most one fetch is outstanding; a tick that finds the previous fetch
    still running is skipped. ``stop`` cancels the timer but lets an
    in-flight fetch finish, and that fetch is discarded unless its captured
    conversation id is still current.
    """

    name = "poll"

    def __init__(
        self,
        sink: TransportSink,
        http: aiohttp.ClientSession,
        api_url: str,
        interval_s: float = 1.0,
        timeout_s: Optional[float] = None,
    ) -> None:
        super().__init__(sink)
        self._http = http
        self._api_url = api_url
        self._interval_s = interval_s
        self._timeout_s = timeout_s
        self._timer_task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._timer_task is not None

    @property
    def inflight(self) -> Optional[asyncio.Task]:
        return self._inflight

    async def start(self, handle: ConversationHandle, credential: Credential) -> None:
        if self._timer_task is not None:
            await self.stop()
        self._handle = handle
        self._credential = credential
        self._timer_task = asyncio.create_task(self._run_timer())

    async def _run_timer(self) -> None:
        try:
            while True:
                if self._inflight is None or self._inflight.done():
                    self._inflight = asyncio.create_task(self.poll_once())
                await asyncio.sleep(self._interval_s)
        except asyncio.CancelledError:
            return

    async def poll_once(self) -> int:
        """Run one fetch and return how many records were handed to the sink."""

        handle = self._handle
        credential = self._credential
        if handle is None or credential is None:
            return 0
        target_conversation_id = handle.conversation_id
        try:
            raw_messages = await chat_api.list_messages(
                self._http,
                self._api_url,
                credential.secret_key,
                target_conversation_id,
                timeout_s=self._timeout_s,
            )
        except MalformedPayloadError as exc:
            logger.warning("Dropping malformed history for %s: %s", target_conversation_id, exc)
            return 0
        except (ChatApiError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            error = TransportReceiveError(f"poll of {target_conversation_id} failed: {redact_text(str(exc))}")
            logger.warning("%s", error)
            return 0

        if not self._sink.is_current(target_conversation_id):
            logger.debug("Discarding poll result for superseded conversation %s", target_conversation_id)
            return 0

        emitted = 0
        for raw in oldest_first(raw_messages):
            try:
                record = chat_api.parse_inbound_record(target_conversation_id, raw)
            except MalformedPayloadError as exc:
                logger.warning("Dropping malformed message in %s: %s", target_conversation_id, exc)
                continue
            self._sink.on_record(record)
            emitted += 1
        return emitted

    async def stop(self) -> None:
        task = self._timer_task
        self._timer_task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def close(self) -> None:
        await self.stop()
        inflight = self._inflight
        self._inflight = None
        if inflight is None or inflight.done():
            return
        inflight.cancel()
        try:
            await inflight
        except asyncio.CancelledError:
            pass

    async def send(self, text: str) -> bool:
        handle = self._handle
        credential = self._credential
        if handle is None or credential is None:
            return False
        try:
            await chat_api.send_message(
                self._http,
                self._api_url,
                credential.secret_key,
                handle.conversation_id,
                text,
                timeout_s=self._timeout_s,
            )
        except MalformedPayloadError as exc:
            logger.debug("Send to %s accepted with an unreadable body: %s", handle.conversation_id, exc)
        except (ChatApiError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("Send to %s failed: %s", handle.conversation_id, redact_text(str(exc)))
            return False
        return True
