import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import pytest

from discpack.registry import FileTokenRegistry, InMemoryTokenRegistry, RegistryEntry


def _stepping_clock(start: datetime, step: timedelta) -> Callable[[], datetime]:
    current = [start - step]

    def _clock() -> datetime:
        current[0] = current[0] + step
        return current[0]

    return _clock


START = datetime(2024, 7, 1, 10, 30, tzinfo=timezone.utc)


def test_in_memory_registry_round_trip() -> None:
    registry = InMemoryTokenRegistry(clock=_stepping_clock(START, timedelta(minutes=5)))

    entry = registry.register("token-1")
    assert entry.registered_at == entry.last_activity_at == START
    assert registry.is_registered("token-1")
    assert not registry.is_registered("token-2")
    assert not registry.is_registered("")

    registry.touch("token-1")
    touched = registry.entries()["token-1"]
    assert touched.registered_at == START
    assert touched.last_activity_at == START + timedelta(minutes=5)

    registry.unregister("token-1")
    assert registry.entries() == {}


def test_touch_ignores_unknown_tokens() -> None:
    registry = InMemoryTokenRegistry()

    registry.touch("nobody")

    assert registry.entries() == {}


def test_registry_validates_token() -> None:
    registry = InMemoryTokenRegistry()
    with pytest.raises(ValueError):
        registry.register("   ")
    with pytest.raises(TypeError):
        registry.register(123)  # type: ignore[arg-type]


def test_file_registry_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "servers.json"
    registry = FileTokenRegistry(path, clock=_stepping_clock(START, timedelta(days=1)))

    registry.register("token-1")
    registry.register("token-2")
    registry.touch("token-1")

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["token-1"] == {
        "registeredAt": "2024-07-01T10:30:00Z",
        "lastActivityAt": "2024-07-03T10:30:00Z",
    }

    reopened = FileTokenRegistry(path)
    assert reopened.is_registered("token-2")
    assert list(reopened.entries()) == ["token-1", "token-2"]

    reopened.unregister("token-2")
    assert not FileTokenRegistry(path).is_registered("token-2")
    assert not path.with_name("servers.json.tmp").exists()


def test_entry_without_activity_falls_back_to_registration() -> None:
    entry = RegistryEntry.from_payload({"registeredAt": "2024-07-01T10:30:00Z"})

    assert entry.last_activity_at == START


def test_entry_rejects_malformed_payload() -> None:
    with pytest.raises(ValueError):
        RegistryEntry.from_payload({"registeredAt": 5})


def test_file_registry_rejects_non_object_document(tmp_path: Path) -> None:
    path = tmp_path / "servers.json"
    path.write_text("[]", encoding="utf-8")

    with pytest.raises(ValueError):
        FileTokenRegistry(path).is_registered("token-1")
