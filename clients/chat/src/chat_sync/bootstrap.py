"""Resolve the identity credential and an active conversation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import aiohttp

from . import chat_api
from .errors import (
    ChatApiError,
    ConversationCreationError,
    IdentityCreationError,
    MalformedPayloadError,
)
from .models import ConversationHandle, Credential
from .redact import redact_text
from .session_store import SessionStore

logger = logging.getLogger("chat_sync")


@dataclass(frozen=True)
class BootstrapResult:
    credential: Credential
    handle: ConversationHandle


class SessionBootstrapper:
    def __init__(
        self,
        http: aiohttp.ClientSession,
        api_url: str,
        store: SessionStore,
        timeout_s: Optional[float] = None,
    ) -> None:
        self._http = http
        self._api_url = api_url
        self._store = store
        self._timeout_s = timeout_s

    async def bootstrap(self) -> BootstrapResult:
        """Restore or create the identity, then open a fresh conversation."""

        credential = await self.resolve_identity()
        handle = await self.create_conversation(credential)
        return BootstrapResult(credential=credential, handle=handle)

    async def resolve_identity(self) -> Credential:
        try:
            stored = self._store.load()
        except OSError as exc:
            raise IdentityCreationError(f"failed to read credential store: {redact_text(str(exc))}") from exc
        if stored is not None:
            logger.info("Restored existing chat user %s", stored.user_id)
            return stored
        try:
            credential = await chat_api.create_user(self._http, self._api_url, timeout_s=self._timeout_s)
        except (ChatApiError, MalformedPayloadError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise IdentityCreationError(f"failed to create user: {redact_text(str(exc))}") from exc
        try:
            self._store.save(credential)
        except OSError as exc:
            raise IdentityCreationError(f"failed to persist credential: {redact_text(str(exc))}") from exc
        logger.info("Created chat user %s", credential.user_id)
        return credential

    async def create_conversation(self, credential: Credential) -> ConversationHandle:
        try:
            handle = await chat_api.create_conversation(
                self._http,
                self._api_url,
                credential.secret_key,
                timeout_s=self._timeout_s,
            )
        except (ChatApiError, MalformedPayloadError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ConversationCreationError(f"failed to create conversation: {redact_text(str(exc))}") from exc
        logger.info("Opened conversation %s", handle.conversation_id)
        return handle
