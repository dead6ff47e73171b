from __future__ import annotations

import stat
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from recap.models.schemas import DiaryRecord
from recap.services.errors import EncodeFailed, OutputMissing

API_URL = "https://api.test"
CDN_URL = "https://cdn.test"


def make_record(day: str, tag: str | None = None) -> dict[str, Any]:
    """Wire-shaped diary record with deterministic asset URLs."""
    tag = tag or day
    return {
        "memoryDay": day,
        "mainPostPrimaryMedia": {"url": f"{CDN_URL}/{tag}/primary.jpg", "width": 1500, "height": 2000},
        "mainPostSecondaryMedia": {"url": f"{CDN_URL}/{tag}/secondary.jpg", "width": 1500, "height": 2000},
    }


def parse_records(*days: str) -> list[DiaryRecord]:
    return [DiaryRecord.model_validate(make_record(day)) for day in days]


class FakeEngine:
    """In-memory stand-in for EncodingEngine with the same surface."""

    def __init__(self, output: bytes = b"FAKEMP4", fail_run: bool = False) -> None:
        self.output = output
        self.fail_run = fail_run
        self.files: dict[str, bytes] = {}
        self.loaded = False
        self.load_calls = 0
        self.bootstraps = 0
        self.reset_calls = 0
        self.runs: list[dict[str, Any]] = []

    async def load(self, on_progress=None) -> "FakeEngine":
        self.load_calls += 1
        if self.loaded:
            return self
        self.bootstraps += 1
        if on_progress is not None:
            await on_progress("ffmpeg version fake", 0.5)
            await on_progress("Engine ready", 1.0)
        self.loaded = True
        return self

    async def stage_file(self, name: str, data: bytes | str) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.files[name] = data

    async def read_file(self, name: str) -> bytes:
        if name not in self.files:
            raise OutputMissing(f"missing {name}", name=name)
        return self.files[name]

    def list_files(self) -> list[str]:
        return sorted(self.files)

    def reset(self) -> int:
        self.reset_calls += 1
        removed = len(self.files)
        self.files.clear()
        return removed

    async def close(self) -> None:
        self.files.clear()
        self.loaded = False

    async def run(self, args, expected_duration=None, on_progress=None) -> None:
        self.runs.append({"args": list(args), "files": dict(self.files)})
        if self.fail_run:
            raise EncodeFailed("Engine exited with code 1", return_code=1, diagnostics="Invalid data found")
        if on_progress is not None:
            for fraction in (0.25, 0.5, 1.0):
                await on_progress(fraction)
        self.files[args[-1]] = self.output

    def manifest(self, run_index: int = -1) -> list[str]:
        text = self.runs[run_index]["files"]["concat.txt"].decode("utf-8")
        return [line.split(" ", 1)[1].strip("'") for line in text.splitlines() if line.startswith("file ")]


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


def cdn_handler(request: httpx.Request) -> httpx.Response | None:
    """Serve every CDN asset as its own URL path bytes."""
    if request.url.host == "cdn.test":
        return httpx.Response(200, content=f"IMG:{request.url.path}".encode())
    return None


class MockServer:
    """Routes "METHOD /path" to handlers; unrouted CDN paths serve image bytes."""

    def __init__(self) -> None:
        self.routes: dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []
        self.client = httpx.AsyncClient(transport=httpx.MockTransport(self.handle))

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = f"{request.method} {request.url.path}"
        if key in self.routes:
            return self.routes[key](request)
        response = cdn_handler(request)
        if response is None:
            return httpx.Response(404)
        return response

    def paths(self, host: str) -> list[str]:
        return [r.url.path for r in self.requests if r.url.host == host]


@pytest.fixture
async def server():
    server = MockServer()
    yield server
    await server.client.aclose()


FAKE_FFMPEG = r"""#!/bin/sh
for arg in "$@"; do
  case "$arg" in
    -version)
      echo "ffmpeg version 6.1-fake Copyright (c) the FFmpeg developers"
      exit 0 ;;
    -encoders)
      printf '%s\n' __ENCODERS__
      exit 0 ;;
  esac
done
if [ -n "$FAKE_FFMPEG_ARGS" ]; then
  printf '%s\n' "$@" > "$FAKE_FFMPEG_ARGS"
fi
if [ -n "$FAKE_FFMPEG_FAIL" ]; then
  echo "concat.txt: Invalid data found when processing input" >&2
  exit 1
fi
for last in "$@"; do :; done
if [ -n "$FAKE_FFMPEG_HANG" ]; then
  echo $$ > "$FAKE_FFMPEG_HANG"
  echo "out_time_us=20000"
  exec sleep 30
fi
echo "frame=1"
echo "out_time_us=20000"
echo "progress=continue"
echo "out_time_us=40000"
echo "progress=end"
printf 'FAKEMP4' > "$last"
"""


@pytest.fixture
def make_fake_ffmpeg(tmp_path: Path) -> Callable[..., Path]:
    """Write an executable that mimics the ffmpeg CLI surface the engine uses."""

    def _make(encoders: tuple[str, ...] = ("libx264", "aac")) -> Path:
        lines = " ".join(f"' V....D {name}   fake {name} encoder'" for name in encoders)
        script = tmp_path / "bin" / "ffmpeg"
        script.parent.mkdir(exist_ok=True)
        script.write_text(FAKE_FFMPEG.replace("__ENCODERS__", lines))
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _make
