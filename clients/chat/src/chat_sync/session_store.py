"""Persist the identity credential across restarts."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Dict, Optional

from .config import DEFAULT_STORE_PATH
from .models import Credential

USER_ID_SLOT = "chat_user_id"
USER_KEY_SLOT = "chat_user_key"


def _atomic_write_json(path: Path, payload: Dict[str, object]) -> None:
    path = path.expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    content = json.dumps(payload, indent=2, sort_keys=True)

    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(content)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp_path, path)


class SessionStore:
    """Two string slots (user id, secret key) in a private JSON file.

    Both slots are written in one atomic replace. ``load`` still requires
    both to be present and non-empty before trusting either.
    """

    def __init__(self, path: Path | str = DEFAULT_STORE_PATH) -> None:
        self.path = Path(path).expanduser()

    def _read_slots(self) -> Dict[str, object]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, ValueError):
            return {}
        if not isinstance(data, dict):
            return {}
        return data

    def load(self) -> Optional[Credential]:
        slots = self._read_slots()
        user_id = slots.get(USER_ID_SLOT)
        secret_key = slots.get(USER_KEY_SLOT)
        if not isinstance(user_id, str) or not isinstance(secret_key, str):
            return None
        if not user_id or not secret_key:
            return None
        return Credential(user_id=user_id, secret_key=secret_key)

    def save(self, credential: Credential) -> None:
        slots = self._read_slots()
        slots[USER_ID_SLOT] = credential.user_id
        slots[USER_KEY_SLOT] = credential.secret_key
        _atomic_write_json(self.path, slots)
