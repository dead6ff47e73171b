"""Tests for the ffmpeg engine adapter, driven by a stand-in executable."""

import asyncio
import logging
import os
from pathlib import Path

import pytest

from recap.services.encoding_engine import EncodingEngine, parse_progress_line
from recap.services.errors import EncodeFailed, EngineLoadFailed, OutputMissing


@pytest.fixture
async def engine(make_fake_ffmpeg, tmp_path):
    engine = EncodingEngine(binary=str(make_fake_ffmpeg()), work_root=tmp_path / "work")
    await engine.load()
    yield engine
    await engine.close()


@pytest.mark.parametrize(
    "line, duration, expected",
    [
        ("out_time_us=500000\n", 1.0, 0.5),
        ("out_time_ms=250000", 1.0, 0.25),
        ("out_time_us=9000000", 1.0, 1.0),
        ("out_time_us=N/A", 1.0, None),
        ("out_time_us=500000", None, None),
        ("progress=end", None, 1.0),
        ("progress=continue", 1.0, None),
        ("frame=12", 1.0, None),
        ("", 1.0, None),
    ],
)
def test_parse_progress_line(line, duration, expected) -> None:
    assert parse_progress_line(line, duration) == expected


async def test_load_reports_progress_and_is_idempotent(make_fake_ffmpeg, tmp_path) -> None:
    engine = EncodingEngine(binary=str(make_fake_ffmpeg()), work_root=tmp_path / "work")
    events = []

    async def on_progress(message, fraction):
        events.append((message, fraction))

    try:
        assert await engine.load(on_progress) is engine
        assert engine.loaded
        assert engine.workspace.is_dir()
        assert engine.workspace.parent == tmp_path / "work"
        fractions = [f for _, f in events]
        assert fractions == sorted(fractions)
        assert fractions[0] == 0.0 and fractions[-1] == 1.0
        assert any("6.1-fake" in message for message, _ in events)

        workspace = engine.workspace
        events.clear()
        await engine.load(on_progress)
        assert events == []
        assert engine.workspace == workspace
    finally:
        await engine.close()


async def test_load_missing_binary(tmp_path) -> None:
    engine = EncodingEngine(binary=str(tmp_path / "no-such-ffmpeg"))

    with pytest.raises(EngineLoadFailed) as exc_info:
        await engine.load()

    assert "no-such-ffmpeg" in str(exc_info.value)
    assert not engine.loaded


async def test_load_missing_encoder(make_fake_ffmpeg, tmp_path) -> None:
    engine = EncodingEngine(binary=str(make_fake_ffmpeg(encoders=("libx264",))))

    with pytest.raises(EngineLoadFailed, match="aac"):
        await engine.load()

    assert not engine.loaded


async def test_operations_require_load(tmp_path) -> None:
    engine = EncodingEngine(binary="ffmpeg")

    with pytest.raises(EngineLoadFailed):
        await engine.stage_file("a.jpg", b"x")
    with pytest.raises(EngineLoadFailed):
        await engine.run(["out.mp4"])
    assert engine.reset() == 0


async def test_virtual_filesystem(engine) -> None:
    await engine.stage_file("a.jpg", b"\xff\xd8")
    await engine.stage_file("concat.txt", "file 'a.jpg'\n")

    assert engine.list_files() == ["a.jpg", "concat.txt"]
    assert await engine.read_file("a.jpg") == b"\xff\xd8"
    assert await engine.read_file("concat.txt") == b"file 'a.jpg'\n"

    engine.delete_file("a.jpg")
    assert engine.list_files() == ["concat.txt"]

    with pytest.raises(OutputMissing) as exc_info:
        await engine.read_file("a.jpg")
    assert exc_info.value.name == "a.jpg"


@pytest.mark.parametrize("name", ["", ".", "..", "../escape.jpg", "dir/a.jpg", "dir\\a.jpg"])
async def test_rejects_path_like_names(engine, name) -> None:
    with pytest.raises(ValueError):
        await engine.stage_file(name, b"x")


async def test_reset_clears_workspace_and_engine_stays_usable(engine) -> None:
    await engine.stage_file("a.jpg", b"x")
    await engine.stage_file("b.jpg", b"y")

    assert engine.reset() == 2
    assert engine.list_files() == []

    await engine.stage_file("c.jpg", b"z")
    assert engine.list_files() == ["c.jpg"]


async def test_run_produces_output_and_progress(engine, tmp_path, monkeypatch) -> None:
    args_file = tmp_path / "args.txt"
    monkeypatch.setenv("FAKE_FFMPEG_ARGS", str(args_file))
    fractions = []

    async def on_progress(fraction):
        fractions.append(fraction)

    await engine.stage_file("concat.txt", "file 'a.jpg'\n")
    await engine.run(
        ["-f", "concat", "-safe", "0", "-i", "concat.txt", "output.mp4"],
        expected_duration=0.04,
        on_progress=on_progress,
    )

    assert await engine.read_file("output.mp4") == b"FAKEMP4"
    assert fractions == [0.5, 1.0]
    passed = args_file.read_text().splitlines()
    assert passed[:6] == EncodingEngine.BASE_ARGS
    assert passed[6:] == ["-f", "concat", "-safe", "0", "-i", "concat.txt", "output.mp4"]


async def test_run_failure_carries_diagnostics(engine, monkeypatch) -> None:
    monkeypatch.setenv("FAKE_FFMPEG_FAIL", "1")

    with pytest.raises(EncodeFailed) as exc_info:
        await engine.run(["-i", "concat.txt", "output.mp4"])

    assert exc_info.value.return_code == 1
    assert "Invalid data found" in exc_info.value.diagnostics
    with pytest.raises(OutputMissing):
        await engine.read_file("output.mp4")


async def test_from_settings_uses_preset_encoders() -> None:
    from recap.config import Settings

    engine = EncodingEngine.from_settings(Settings(ffmpeg_binary="ff", encode_preset="slideshow_draft"))

    assert engine.binary == "ff"
    assert engine.required_encoders == ("libx264", "aac")


async def test_cancelled_run_kills_engine_process(engine, tmp_path, monkeypatch) -> None:
    pid_file = tmp_path / "ffmpeg.pid"
    monkeypatch.setenv("FAKE_FFMPEG_HANG", str(pid_file))
    started = asyncio.Event()

    async def on_progress(fraction):
        started.set()

    task = asyncio.create_task(
        engine.run(["-i", "concat.txt", "output.mp4"], expected_duration=0.04, on_progress=on_progress)
    )
    await asyncio.wait_for(started.wait(), timeout=10)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    with pytest.raises(ProcessLookupError):
        os.kill(int(pid_file.read_text()), 0)

    # The run lock is released and the engine stays usable
    monkeypatch.delenv("FAKE_FFMPEG_HANG")
    await asyncio.wait_for(engine.run(["-i", "concat.txt", "output.mp4"]), timeout=10)
    assert await engine.read_file("output.mp4") == b"FAKEMP4"


async def test_reset_survives_delete_errors(engine, monkeypatch, caplog) -> None:
    for name in ("a.jpg", "b.jpg", "c.jpg"):
        await engine.stage_file(name, b"x")
    unlink = Path.unlink

    def locked_unlink(self, missing_ok=False):
        if self.name == "b.jpg":
            raise PermissionError("file is locked")
        unlink(self, missing_ok=missing_ok)

    monkeypatch.setattr(Path, "unlink", locked_unlink)

    with caplog.at_level(logging.WARNING, logger="recap.services.encoding_engine"):
        assert engine.reset() == 2

    assert "cannot delete b.jpg" in caplog.text
    assert engine.list_files() == ["b.jpg"]

    await engine.stage_file("d.jpg", b"y")
    assert engine.list_files() == ["b.jpg", "d.jpg"]


async def test_reset_survives_listing_errors(engine, monkeypatch, caplog) -> None:
    await engine.stage_file("a.jpg", b"x")

    def unreadable():
        raise OSError("workspace unreadable")

    monkeypatch.setattr(engine, "list_files", unreadable)

    with caplog.at_level(logging.WARNING, logger="recap.services.encoding_engine"):
        assert engine.reset() == 0

    assert "cannot list workspace" in caplog.text
    monkeypatch.undo()

    await engine.stage_file("b.jpg", b"y")
    assert engine.list_files() == ["a.jpg", "b.jpg"]
