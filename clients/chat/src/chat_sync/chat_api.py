"""Async client for the remote chat service endpoints."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import aiohttp

from .errors import ChatApiError, MalformedPayloadError
from .models import MEDIA_PLACEHOLDER_TEXT, ConversationHandle, Credential, InboundRecord
from .redact import redact_text

USER_KEY_HEADER = "x-user-key"
_ERROR_BODY_LIMIT = 200


def _build_url(api_url: str, path: str) -> str:
    return f"{api_url.rstrip('/')}{path}"


def _auth_headers(secret_key: str) -> Dict[str, str]:
    return {USER_KEY_HEADER: secret_key}


def _timeout(timeout_s: Optional[float]) -> Optional[aiohttp.ClientTimeout]:
    if timeout_s is None:
        return None
    return aiohttp.ClientTimeout(total=timeout_s)


async def _request_json(
    http: aiohttp.ClientSession,
    method: str,
    url: str,
    payload: Optional[Dict[str, object]] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout_s: Optional[float] = None,
) -> Dict[str, Any]:
    request_headers = {"Content-Type": "application/json"}
    if headers:
        request_headers.update(headers)
    kwargs: Dict[str, Any] = {"headers": request_headers}
    if payload is not None:
        kwargs["data"] = json.dumps(payload)
    timeout = _timeout(timeout_s)
    if timeout is not None:
        kwargs["timeout"] = timeout
    async with http.request(method, url, **kwargs) as response:
        body = await response.read()
        status = response.status
    if status < 200 or status >= 300:
        raw = body.decode("utf-8", errors="replace")
        raise ChatApiError(status, redact_text(raw[:_ERROR_BODY_LIMIT]))
    if not body:
        return {}
    try:
        data = json.loads(body.decode("utf-8"))
    except ValueError as exc:
        raise MalformedPayloadError(f"{method} {url} returned a non-JSON body") from exc
    if not isinstance(data, dict):
        raise MalformedPayloadError(f"{method} {url} returned {type(data).__name__}, expected an object")
    return data


async def create_user(
    http: aiohttp.ClientSession,
    api_url: str,
    timeout_s: Optional[float] = None,
) -> Credential:
    response = await _request_json(http, "POST", _build_url(api_url, "/users"), {}, timeout_s=timeout_s)
    user = response.get("user")
    key = response.get("key")
    user_id = user.get("id") if isinstance(user, dict) else None
    if not isinstance(user_id, str) or not user_id or not isinstance(key, str) or not key:
        raise MalformedPayloadError("create user response is missing user.id or key")
    return Credential(user_id=user_id, secret_key=key)


async def create_conversation(
    http: aiohttp.ClientSession,
    api_url: str,
    secret_key: str,
    timeout_s: Optional[float] = None,
) -> ConversationHandle:
    response = await _request_json(
        http,
        "POST",
        _build_url(api_url, "/conversations"),
        {},
        headers=_auth_headers(secret_key),
        timeout_s=timeout_s,
    )
    conversation = response.get("conversation")
    conversation_id = conversation.get("id") if isinstance(conversation, dict) else None
    if not isinstance(conversation_id, str) or not conversation_id:
        raise MalformedPayloadError("create conversation response is missing conversation.id")
    return ConversationHandle(conversation_id=conversation_id)


async def list_messages(
    http: aiohttp.ClientSession,
    api_url: str,
    secret_key: str,
    conversation_id: str,
    timeout_s: Optional[float] = None,
) -> List[Dict[str, Any]]:
    """Return the conversation history exactly as the remote orders it (newest first)."""

    response = await _request_json(
        http,
        "GET",
        _build_url(api_url, f"/conversations/{conversation_id}/messages"),
        headers=_auth_headers(secret_key),
        timeout_s=timeout_s,
    )
    messages = response.get("messages") or []
    if not isinstance(messages, list):
        raise MalformedPayloadError("messages must be a list")
    return messages


async def send_message(
    http: aiohttp.ClientSession,
    api_url: str,
    secret_key: str,
    conversation_id: str,
    text: str,
    timeout_s: Optional[float] = None,
) -> Dict[str, Any]:
    payload: Dict[str, object] = {
        "conversationId": conversation_id,
        "payload": {"type": "text", "text": text},
        "type": "text",
    }
    return await _request_json(
        http,
        "POST",
        _build_url(api_url, "/messages"),
        payload,
        headers=_auth_headers(secret_key),
        timeout_s=timeout_s,
    )


def parse_inbound_record(conversation_id: str, raw: object) -> InboundRecord:
    if not isinstance(raw, dict):
        raise MalformedPayloadError("message entry must be an object")
    message_id = raw.get("id")
    if message_id is None or message_id == "":
        raise MalformedPayloadError("message entry has no id")
    payload = raw.get("payload")
    text = payload.get("text") if isinstance(payload, dict) else None
    if not isinstance(text, str):
        text = MEDIA_PLACEHOLDER_TEXT
    user_id = raw.get("userId")
    return InboundRecord(
        conversation_id=conversation_id,
        id=str(message_id),
        text=text,
        user_id=str(user_id) if user_id is not None else None,
    )
