from __future__ import annotations

import sys
from pathlib import Path

import pytest

from conftest import ScriptedToolRunner, audio_metadata, tool_error
from discpack.errors import MediaAcquisitionError, MediaAuthorizationError
from discpack.media import AudioInfo, ChannelMode, MediaAcquirer


def _acquirer(runner: ScriptedToolRunner) -> MediaAcquirer:
    return MediaAcquirer(runner=runner, timeout=5)


def test_probe_reports_best_audio_only_stream(tool_runner: ScriptedToolRunner) -> None:
    info = _acquirer(tool_runner).probe("https://media.example/watch?v=1")

    assert info == AudioInfo(duration=180.0, size_bytes=2_000_000)
    assert tool_runner.calls[0][1] == [
        "yt-dlp",
        "-j",
        "--no-playlist",
        "https://media.example/watch?v=1",
    ]


def test_probe_falls_back_to_approximate_size() -> None:
    metadata = audio_metadata(size=None)
    metadata["formats"][-1]["filesize_approx"] = 1_500_000
    runner = ScriptedToolRunner(metadata=metadata)

    assert _acquirer(runner).probe("https://media.example/a").size_bytes == 1_500_000


def test_probe_leaves_unknown_values_unset() -> None:
    runner = ScriptedToolRunner(metadata=audio_metadata(duration=None, size=None))

    assert _acquirer(runner).probe("https://media.example/a") == AudioInfo(None, None)


def test_probe_without_audio_streams_has_unknown_size() -> None:
    runner = ScriptedToolRunner(
        metadata={"duration": 30, "formats": [{"acodec": "none", "vcodec": "avc1"}]}
    )

    assert _acquirer(runner).probe("https://media.example/a").size_bytes is None


@pytest.mark.parametrize(("mode", "channels"), [("mono", "1"), (ChannelMode.STEREO, "2")])
def test_acquire_transcodes_and_removes_intermediate(
    tmp_path: Path, tool_runner: ScriptedToolRunner, mode: object, channels: str
) -> None:
    ogg = _acquirer(tool_runner).acquire(
        "https://media.example/a", "song1", mode, tmp_path  # type: ignore[arg-type]
    )

    assert ogg == tmp_path / "song1.ogg"
    assert ogg.read_bytes() == tool_runner.audio_bytes
    assert not (tmp_path / "song1.source").exists()
    assert tool_runner.steps() == ["download", "transcode"]

    transcode = tool_runner.calls[1][1]
    assert transcode[transcode.index("-ac") + 1] == channels
    assert transcode[transcode.index("-c:a") + 1] == "libvorbis"


def test_authorization_wall_is_surfaced_without_retry(
    tmp_path: Path, tool_runner: ScriptedToolRunner
) -> None:
    tool_runner.fail("download", tool_error("Sign in to confirm you're not a bot"))

    with pytest.raises(MediaAuthorizationError) as excinfo:
        _acquirer(tool_runner).acquire("https://media.example/a", "song1", "mono", tmp_path)

    assert excinfo.value.status_code == 403
    assert tool_runner.steps() == ["download"]
    assert list(tmp_path.iterdir()) == []


def test_transient_failure_refreshes_and_retries(
    tmp_path: Path, tool_runner: ScriptedToolRunner
) -> None:
    tool_runner.fail("transcode", tool_error("Conversion failed"))

    ogg = _acquirer(tool_runner).acquire("https://media.example/a", "song1", "mono", tmp_path)

    assert ogg.exists()
    assert tool_runner.steps() == ["download", "transcode", "refresh", "transcode"]
    assert tool_runner.calls[2][1] == [sys.executable, "-m", "pip", "install", "-U", "yt-dlp"]


def test_installed_extractor_is_refreshed_through_pip(tool_runner: ScriptedToolRunner) -> None:
    MediaAcquirer(runner=tool_runner).refresh_tools()

    assert tool_runner.calls == [
        ("refresh", [sys.executable, "-m", "pip", "install", "-U", "yt-dlp"])
    ]


@pytest.mark.parametrize(
    ("options", "expected"),
    [
        ({"extractor": "/opt/bin/yt-dlp"}, ["/opt/bin/yt-dlp", "-U"]),
        ({"refresh_command": ["update-extractor", "-U"]}, ["update-extractor", "-U"]),
    ],
)
def test_refresh_command_follows_configuration(
    tool_runner: ScriptedToolRunner, options: dict, expected: list
) -> None:
    MediaAcquirer(runner=tool_runner, **options).refresh_tools()

    assert tool_runner.calls == [("refresh", expected)]


def test_repeated_failure_becomes_media_failure(
    tmp_path: Path, tool_runner: ScriptedToolRunner
) -> None:
    tool_runner.fail("probe", tool_error("HTTP Error 500"), tool_error("HTTP Error 500"))

    with pytest.raises(MediaAcquisitionError) as excinfo:
        _acquirer(tool_runner).probe("https://media.example/a")

    assert excinfo.value.status_code == 502
    assert "HTTP Error 500" in str(excinfo.value)
    assert tool_runner.steps() == ["probe", "refresh", "probe"]


def test_failed_transcode_leaves_no_files(
    tmp_path: Path, tool_runner: ScriptedToolRunner
) -> None:
    tool_runner.fail("transcode", tool_error("boom"), tool_error("boom"))

    with pytest.raises(MediaAcquisitionError):
        _acquirer(tool_runner).acquire("https://media.example/a", "song1", "mono", tmp_path)

    assert list(tmp_path.iterdir()) == []


def test_unknown_channel_mode_is_rejected(
    tmp_path: Path, tool_runner: ScriptedToolRunner
) -> None:
    with pytest.raises(ValueError):
        _acquirer(tool_runner).acquire("https://media.example/a", "song1", "surround", tmp_path)
