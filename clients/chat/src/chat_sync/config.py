from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigurationError

DEFAULT_API_BASE = "https://chat.botpress.cloud"
DEFAULT_STORE_PATH = Path.home() / ".chat_sync" / "credentials.json"
TRANSPORT_POLL = "poll"
TRANSPORT_PUSH = "push"
TRANSPORTS = (TRANSPORT_POLL, TRANSPORT_PUSH)


@dataclass(frozen=True)
class ChatConfig:
    webhook_id: str
    api_base: str = DEFAULT_API_BASE
    realtime_url: Optional[str] = None
    transport: str = TRANSPORT_POLL
    poll_interval_s: float = 1.0
    typing_timeout_s: float = 15.0
    request_timeout_s: float = 10.0
    reconnect_initial_s: float = 0.5
    reconnect_max_s: float = 30.0
    reconnect_max_attempts: int = 8
    surface_errors: bool = False
    store_path: Path = DEFAULT_STORE_PATH

    def __post_init__(self) -> None:
        if not self.webhook_id:
            raise ConfigurationError("webhook_id is required")
        if self.transport not in TRANSPORTS:
            raise ConfigurationError(f"transport must be one of {', '.join(TRANSPORTS)}")

    @property
    def api_url(self) -> str:
        return f"{self.api_base.rstrip('/')}/{self.webhook_id}"

    @property
    def ws_url(self) -> str:
        if self.realtime_url:
            return self.realtime_url
        url = self.api_url
        if url.startswith("https://"):
            url = "wss://" + url[len("https://") :]
        elif url.startswith("http://"):
            url = "ws://" + url[len("http://") :]
        return f"{url}/realtime"


def _parse_non_negative_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        parsed = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number") from exc
    if parsed < 0:
        raise ConfigurationError(f"{name} must be non-negative")
    return parsed


def _parse_non_negative_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer") from exc
    if parsed < 0:
        raise ConfigurationError(f"{name} must be non-negative")
    return parsed


def _parse_bool01(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    if raw not in {"0", "1"}:
        raise ConfigurationError(f"{name} must be 0 or 1")
    return raw == "1"


def load_config_from_env(environ: Mapping[str, str] | None = None) -> ChatConfig:
    env = os.environ if environ is None else environ
    webhook_id = env.get("CHAT_SYNC_WEBHOOK_ID") or env.get("BOTPRESS_WEBHOOK_ID") or ""
    if not webhook_id:
        raise ConfigurationError("CHAT_SYNC_WEBHOOK_ID is missing")
    transport = env.get("CHAT_SYNC_TRANSPORT") or TRANSPORT_POLL
    if transport not in TRANSPORTS:
        raise ConfigurationError(f"CHAT_SYNC_TRANSPORT must be one of {', '.join(TRANSPORTS)}")
    store_path = env.get("CHAT_SYNC_STORE_PATH")
    return ChatConfig(
        webhook_id=webhook_id,
        api_base=env.get("CHAT_SYNC_API_BASE") or DEFAULT_API_BASE,
        realtime_url=env.get("CHAT_SYNC_REALTIME_URL") or None,
        transport=transport,
        poll_interval_s=_parse_non_negative_float(env, "CHAT_SYNC_POLL_INTERVAL_S", 1.0),
        typing_timeout_s=_parse_non_negative_float(env, "CHAT_SYNC_TYPING_TIMEOUT_S", 15.0),
        request_timeout_s=_parse_non_negative_float(env, "CHAT_SYNC_REQUEST_TIMEOUT_S", 10.0),
        reconnect_initial_s=_parse_non_negative_float(env, "CHAT_SYNC_RECONNECT_INITIAL_S", 0.5),
        reconnect_max_s=_parse_non_negative_float(env, "CHAT_SYNC_RECONNECT_MAX_S", 30.0),
        reconnect_max_attempts=_parse_non_negative_int(env, "CHAT_SYNC_RECONNECT_MAX_ATTEMPTS", 8),
        surface_errors=_parse_bool01(env, "CHAT_SYNC_SURFACE_ERRORS", False),
        store_path=Path(store_path).expanduser() if store_path else DEFAULT_STORE_PATH,
    )
