"""Test configuration for the disc pack service."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import json
from collections import defaultdict
from typing import Any, Callable, Dict, Iterator, List, Sequence

import pytest

from discpack.admission import AdmissionController
from discpack.media import MediaAcquirer
from discpack.pipeline import PackProvisioner
from discpack.quota import QuotaLedger
from discpack.rate_limit import SlidingWindowRateLimiter
from discpack.registry import InMemoryTokenRegistry
from discpack.settings import DiscPackSettings
from discpack.storage import PackStoreError
from discpack.tooling import ToolExecutionError, ToolOutput


class FakeClock:
    """Deterministic clock used to simulate time progression in tests."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = start

    def __call__(self) -> float:
        return self._now

    def advance(self, delta: float) -> None:
        self._now += delta


class InMemoryPackStore:
    """Pack store keeping objects as bytes, with switchable failures."""

    def __init__(self) -> None:
        self.objects: Dict[str, bytes] = {}
        self.uploads: List[str] = []
        self.fail_uploads = False
        self.fail_deletes = False

    def fetch(self, key: str, destination: Path) -> None:
        if key not in self.objects:
            raise PackStoreError(f"Failed to download pack {key}: not found")
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(self.objects[key])

    def upload(self, key: str, source: Path) -> None:
        if self.fail_uploads:
            raise PackStoreError(f"Upload of pack {key} failed: simulated outage")
        self.objects[key] = Path(source).read_bytes()
        self.uploads.append(key)

    def delete(self, key: str) -> None:
        if self.fail_deletes:
            raise PackStoreError(f"Delete of pack {key} failed: simulated outage")
        self.objects.pop(key, None)

    def size(self, key: str) -> int | None:
        content = self.objects.get(key)
        return None if content is None else len(content)


class ScriptedToolRunner:
    """Stand-in for ``run_tool`` that imitates yt-dlp and ffmpeg.

    ``failures`` maps a step name (``probe``, ``download``, ``transcode``,
    ``refresh``) to a list of errors raised by successive invocations.
    """

    def __init__(
        self,
        *,
        metadata: Dict[str, Any] | None = None,
        audio_bytes: bytes = b"OggS-fake-vorbis",
    ) -> None:
        self.metadata = metadata or audio_metadata()
        self.audio_bytes = audio_bytes
        self.calls: List[tuple[str, List[str]]] = []
        self.failures: Dict[str, List[Exception]] = defaultdict(list)

    def fail(self, step: str, *errors: Exception) -> None:
        self.failures[step].extend(errors)

    def steps(self) -> List[str]:
        return [step for step, _ in self.calls]

    def __call__(self, args: Sequence[str], *, timeout: float) -> ToolOutput:
        command = [str(arg) for arg in args]
        step = _classify_command(command)
        self.calls.append((step, command))

        if self.failures[step]:
            raise self.failures[step].pop(0)

        if step == "probe":
            return ToolOutput(stdout=json.dumps(self.metadata), stderr="")
        if step == "download":
            target = Path(command[command.index("-o") + 1])
            target.write_bytes(b"raw-audio")
        elif step == "transcode":
            Path(command[-1]).write_bytes(self.audio_bytes)
        return ToolOutput(stdout="", stderr="")


def _classify_command(command: Sequence[str]) -> str:
    if "-U" in command:
        return "refresh"
    if "-j" in command:
        return "probe"
    if "-o" in command:
        return "download"
    return "transcode"


def audio_metadata(
    *, duration: float | None = 180.0, size: int | None = 2_000_000
) -> Dict[str, Any]:
    """Return yt-dlp style metadata with one video and two audio streams."""

    best_audio: Dict[str, Any] = {"format_id": "251", "acodec": "opus", "vcodec": "none", "abr": 160}
    if size is not None:
        best_audio["filesize"] = size
    return {
        "duration": duration,
        "formats": [
            {"format_id": "18", "acodec": "mp4a", "vcodec": "avc1", "abr": 320, "filesize": 9},
            {"format_id": "140", "acodec": "mp4a", "vcodec": "none", "abr": 128, "filesize": 1},
            best_audio,
        ],
    }


def tool_error(stderr: str = "HTTP Error 403: Forbidden") -> ToolExecutionError:
    return ToolExecutionError(
        "yt-dlp exited with status 1", command=["yt-dlp"], stderr=stderr, returncode=1
    )


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def pack_store() -> InMemoryPackStore:
    return InMemoryPackStore()


@pytest.fixture()
def tool_runner() -> ScriptedToolRunner:
    return ScriptedToolRunner()


@pytest.fixture()
def settings(tmp_path: Path) -> DiscPackSettings:
    return DiscPackSettings(data_dir=tmp_path / "data", public_base_url="packs.example.com")


@pytest.fixture()
def make_provisioner(
    settings: DiscPackSettings,
    pack_store: InMemoryPackStore,
    tool_runner: ScriptedToolRunner,
    fake_clock: FakeClock,
) -> Iterator[Callable[..., PackProvisioner]]:
    """Factory building a provisioner wired to in-memory collaborators."""

    created: List[PackProvisioner] = []

    def _factory(**overrides: Any) -> PackProvisioner:
        resolved = overrides.pop("settings", settings)
        components: Dict[str, Any] = {
            "settings": resolved,
            "registry": InMemoryTokenRegistry(),
            "store": pack_store,
            "ledger": QuotaLedger(resolved.quota_path, cap_bytes=resolved.quota_bytes),
            "media": MediaAcquirer(runner=tool_runner, timeout=5),
            "rate_limiter": SlidingWindowRateLimiter(
                limit=resolved.rate_limit,
                window=resolved.rate_window_seconds,
                clock=fake_clock,
            ),
            "admission": AdmissionController(
                max_active_tokens=resolved.max_active_tokens
            ),
        }
        components.update(overrides)
        provisioner = PackProvisioner(**components)
        created.append(provisioner)
        return provisioner

    yield _factory

    for provisioner in created:
        provisioner.admission.shutdown()


__all__ = [
    "FakeClock",
    "InMemoryPackStore",
    "ScriptedToolRunner",
    "audio_metadata",
    "tool_error",
]
