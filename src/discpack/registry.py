"""Registered server tokens and their activity timestamps."""

from __future__ import annotations

import json
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Mapping


@dataclass(frozen=True)
class RegistryEntry:
    registered_at: datetime
    last_activity_at: datetime

    def to_payload(self) -> Dict[str, str]:
        return {
            "registeredAt": _format_timestamp(self.registered_at),
            "lastActivityAt": _format_timestamp(self.last_activity_at),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, object]) -> "RegistryEntry":
        if not isinstance(payload, Mapping):
            raise ValueError("Invalid registry entry: expected an object")

        registered = payload.get("registeredAt")
        last_activity = payload.get("lastActivityAt", registered)
        if not isinstance(registered, str) or not isinstance(last_activity, str):
            raise ValueError("Invalid registry entry: timestamps must be strings")

        return cls(
            registered_at=_parse_timestamp(registered),
            last_activity_at=_parse_timestamp(last_activity),
        )


Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenRegistry(ABC):
    """Interface describing how registered tokens are persisted."""

    def __init__(self, *, clock: Clock | None = None) -> None:
        self._clock = clock or _utcnow

    @abstractmethod
    def register(self, token: str) -> RegistryEntry:
        """Record ``token`` with both timestamps set to now."""

    @abstractmethod
    def is_registered(self, token: str) -> bool:
        """Return ``True`` when ``token`` has an entry."""

    @abstractmethod
    def touch(self, token: str) -> None:
        """Refresh the activity timestamp of an existing ``token``."""

    @abstractmethod
    def unregister(self, token: str) -> None:
        """Remove ``token`` if present."""

    @abstractmethod
    def entries(self) -> Dict[str, RegistryEntry]:
        """Return a snapshot of every registered token."""


class InMemoryTokenRegistry(TokenRegistry):
    """Keep tokens in local process memory."""

    def __init__(self, *, clock: Clock | None = None) -> None:
        super().__init__(clock=clock)
        self._entries: Dict[str, RegistryEntry] = {}
        self._lock = threading.Lock()

    def register(self, token: str) -> RegistryEntry:
        now = self._clock()
        entry = RegistryEntry(registered_at=now, last_activity_at=now)
        with self._lock:
            self._entries[_validate_token(token)] = entry
        return entry

    def is_registered(self, token: str) -> bool:
        if not isinstance(token, str) or not token.strip():
            return False
        with self._lock:
            return token.strip() in self._entries

    def touch(self, token: str) -> None:
        key = _validate_token(token)
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._entries[key] = RegistryEntry(
                    registered_at=entry.registered_at,
                    last_activity_at=self._clock(),
                )

    def unregister(self, token: str) -> None:
        with self._lock:
            self._entries.pop(_validate_token(token), None)

    def entries(self) -> Dict[str, RegistryEntry]:
        with self._lock:
            return dict(self._entries)


class FileTokenRegistry(TokenRegistry):
    """Persist tokens in one JSON document keyed by token.

    Every mutation is a locked read-modify-write that replaces the file
    atomically.
    """

    def __init__(self, path: Path, *, clock: Clock | None = None) -> None:
        super().__init__(clock=clock)
        self.path = Path(path)
        self._lock = threading.Lock()

    def register(self, token: str) -> RegistryEntry:
        key = _validate_token(token)
        now = self._clock()
        entry = RegistryEntry(registered_at=now, last_activity_at=now)
        with self._lock:
            servers = self._load()
            servers[key] = entry.to_payload()
            self._save(servers)
        return entry

    def is_registered(self, token: str) -> bool:
        if not isinstance(token, str) or not token.strip():
            return False
        with self._lock:
            return token.strip() in self._load()

    def touch(self, token: str) -> None:
        key = _validate_token(token)
        with self._lock:
            servers = self._load()
            if key in servers:
                entry = RegistryEntry.from_payload(servers[key])
                servers[key] = RegistryEntry(
                    registered_at=entry.registered_at,
                    last_activity_at=self._clock(),
                ).to_payload()
                self._save(servers)

    def unregister(self, token: str) -> None:
        key = _validate_token(token)
        with self._lock:
            servers = self._load()
            if servers.pop(key, None) is not None:
                self._save(servers)

    def entries(self) -> Dict[str, RegistryEntry]:
        with self._lock:
            servers = self._load()
        return {
            token: RegistryEntry.from_payload(payload)
            for token, payload in sorted(servers.items())
        }

    def _load(self) -> Dict[str, Dict[str, str]]:
        if not self.path.exists():
            return {}
        payload = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError(f"{self.path.name} must contain a JSON object")
        return payload

    def _save(self, servers: Mapping[str, Mapping[str, str]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temporary = self.path.with_name(f"{self.path.name}.tmp")
        temporary.write_text(json.dumps(servers, indent=2), encoding="utf-8")
        os.replace(temporary, self.path)


def _validate_token(token: str) -> str:
    if not isinstance(token, str):
        raise TypeError("token must be a string")
    stripped = token.strip()
    if not stripped:
        raise ValueError("token must be a non-empty string")
    return stripped


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_timestamp(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


__all__ = [
    "FileTokenRegistry",
    "InMemoryTokenRegistry",
    "RegistryEntry",
    "TokenRegistry",
]
