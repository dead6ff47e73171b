"""
Encoding engine adapter around the ffmpeg binary.

The engine owns a private workspace directory that acts as its virtual
filesystem: inputs are staged into it by name, commands run with it as
the working directory, and outputs are read back by name.
"""

import asyncio
import contextlib
import logging
import re
import shutil
import tempfile
import time
from collections.abc import Awaitable, Callable
from pathlib import Path

from recap.config import Settings
from recap.services.encode_presets import get_preset
from recap.services.errors import EncodeFailed, EngineLoadFailed, OutputMissing

logger = logging.getLogger(__name__)

# Signature: (message, fraction 0..1) -> None
LoadProgressCallback = Callable[[str, float], Awaitable[None]]
# Signature: (fraction 0..1) -> None
FractionCallback = Callable[[float], Awaitable[None]]

DIAGNOSTICS_TAIL_CHARS = 2000


def parse_progress_line(line: str, expected_duration: float | None) -> float | None:
    """
    Convert one `-progress` output line into a completion fraction.

    Args:
        line: "key=value" line from the engine's progress channel
        expected_duration: Expected output length in seconds

    Returns:
        Fraction in [0, 1], or None if the line carries no progress
    """
    key, _, value = line.strip().partition("=")
    if key == "progress" and value == "end":
        return 1.0
    # out_time_ms is reported in microseconds as well
    if key in ("out_time_us", "out_time_ms") and expected_duration:
        try:
            seconds = int(value) / 1_000_000
        except ValueError:
            return None
        return max(0.0, min(seconds / expected_duration, 1.0))
    return None


def _validate_name(name: str) -> str:
    if not name or name in (".", "..") or "/" in name or "\\" in name:
        raise ValueError(f"Invalid workspace file name: {name!r}")
    return name


class EncodingEngine:
    """
    Async adapter for ffmpeg with a private workspace.

    Only one command runs at a time per engine.

    Example:
        engine = EncodingEngine.from_settings(settings)
        await engine.load()
        await engine.stage_file("concat.txt", manifest)
        await engine.run(["-f", "concat", "-i", "concat.txt", "out.mp4"])
        data = await engine.read_file("out.mp4")
        engine.reset()
    """

    BASE_ARGS = ["-hide_banner", "-nostdin", "-y", "-progress", "pipe:1", "-nostats"]

    def __init__(
        self,
        binary: str = "ffmpeg",
        work_root: Path | None = None,
        required_encoders: tuple[str, ...] = ("libx264", "aac"),
    ):
        """
        Initialize engine adapter (nothing is started until load()).

        Args:
            binary: ffmpeg executable name or path
            work_root: Parent directory for the workspace (default: system temp)
            required_encoders: Encoders that must be available after load
        """
        self.binary = binary
        self.work_root = work_root
        self.required_encoders = required_encoders
        self._executable: str | None = None
        self._workspace: Path | None = None
        self._load_lock = asyncio.Lock()
        self._run_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "EncodingEngine":
        """Create EncodingEngine from application settings."""
        preset = get_preset(settings.encode_preset)
        return cls(
            binary=settings.ffmpeg_binary,
            work_root=settings.work_root,
            required_encoders=preset.encoders,
        )

    @property
    def loaded(self) -> bool:
        return self._executable is not None

    @property
    def workspace(self) -> Path:
        """Workspace directory of a loaded engine."""
        if self._workspace is None:
            raise EngineLoadFailed("Engine not loaded; call load() first", binary=self.binary)
        return self._workspace

    # ═══════════════════════════════════════════════════════════════════════
    # Bootstrap
    # ═══════════════════════════════════════════════════════════════════════

    async def load(self, on_progress: LoadProgressCallback | None = None) -> "EncodingEngine":
        """
        Bootstrap the engine. A second call on a loaded engine is a no-op.

        Steps: locate binary, probe version, check required encoders,
        create workspace.

        Raises:
            EngineLoadFailed: If any bootstrap step fails
        """
        async with self._load_lock:
            if self.loaded:
                return self

            await _notify(on_progress, f"Locating {self.binary}", 0.0)
            executable = shutil.which(self.binary)
            if executable is None:
                raise EngineLoadFailed(f"Engine binary not found: {self.binary}", binary=self.binary)

            code, out, err = await self._capture(executable, "-hide_banner", "-version")
            if code != 0:
                raise EngineLoadFailed(
                    f"Engine version probe failed (code {code}): {err.strip()[:200]}",
                    binary=executable,
                )
            version_line = out.splitlines()[0] if out else "unknown version"
            logger.info(f"Engine: {version_line}")
            await _notify(on_progress, version_line, 1 / 3)

            code, out, err = await self._capture(executable, "-hide_banner", "-encoders")
            if code != 0:
                raise EngineLoadFailed(
                    f"Engine encoder listing failed (code {code})", binary=executable
                )
            missing = [
                encoder for encoder in self.required_encoders
                if not re.search(rf"\s{re.escape(encoder)}\s", out)
            ]
            if missing:
                raise EngineLoadFailed(
                    f"Engine lacks required encoders: {', '.join(missing)}",
                    binary=executable,
                )
            await _notify(on_progress, f"Encoders available: {', '.join(self.required_encoders)}", 2 / 3)

            try:
                if self.work_root is not None:
                    self.work_root.mkdir(parents=True, exist_ok=True)
                workspace = Path(tempfile.mkdtemp(prefix="recap-engine-", dir=self.work_root))
            except OSError as e:
                raise EngineLoadFailed(
                    f"Cannot create engine workspace: {e}", binary=executable, original_error=e
                ) from e

            self._executable = executable
            self._workspace = workspace
            logger.info(f"Engine ready, workspace: {workspace}")
            await _notify(on_progress, "Engine ready", 1.0)
            return self

    async def _capture(self, *cmd: str) -> tuple[int, str, str]:
        """Run a short engine command and capture its output."""
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            out, err = await proc.communicate()
        except OSError as e:
            raise EngineLoadFailed(
                f"Cannot start engine: {e}", binary=cmd[0], original_error=e
            ) from e
        return (
            proc.returncode,
            out.decode("utf-8", errors="replace"),
            err.decode("utf-8", errors="replace"),
        )

    # ═══════════════════════════════════════════════════════════════════════
    # Virtual filesystem
    # ═══════════════════════════════════════════════════════════════════════

    async def stage_file(self, name: str, data: bytes | str) -> None:
        """Write bytes (or UTF-8 text) into the workspace under name."""
        path = self.workspace / _validate_name(name)
        if isinstance(data, str):
            data = data.encode("utf-8")
        await asyncio.to_thread(path.write_bytes, data)
        logger.debug(f"Staged {name} ({len(data)} bytes)")

    async def read_file(self, name: str) -> bytes:
        """
        Read a file from the workspace.

        Raises:
            OutputMissing: If the file does not exist
        """
        path = self.workspace / _validate_name(name)
        if not path.is_file():
            raise OutputMissing(f"File not found in engine workspace: {name}", name=name)
        return await asyncio.to_thread(path.read_bytes)

    def list_files(self) -> list[str]:
        """Names of all files currently in the workspace."""
        return sorted(p.name for p in self.workspace.iterdir())

    def delete_file(self, name: str) -> None:
        """Delete one workspace file (missing files are ignored)."""
        (self.workspace / _validate_name(name)).unlink(missing_ok=True)

    def reset(self) -> int:
        """
        Best-effort removal of every staged and produced file.

        Failures are logged; the engine stays usable.

        Returns:
            Number of files removed
        """
        if self._workspace is None:
            return 0

        removed = 0
        try:
            names = self.list_files()
        except OSError as e:
            logger.warning(f"Engine reset: cannot list workspace: {e}")
            return 0

        for name in names:
            try:
                self.delete_file(name)
                removed += 1
            except OSError as e:
                logger.warning(f"Engine reset: cannot delete {name}: {e}")

        logger.debug(f"Engine reset: removed {removed} files")
        return removed

    async def close(self) -> None:
        """Remove the workspace; a later load() starts fresh."""
        if self._workspace is not None:
            shutil.rmtree(self._workspace, ignore_errors=True)
        self._workspace = None
        self._executable = None

    # ═══════════════════════════════════════════════════════════════════════
    # Command execution
    # ═══════════════════════════════════════════════════════════════════════

    async def run(
        self,
        args: list[str],
        expected_duration: float | None = None,
        on_progress: FractionCallback | None = None,
    ) -> None:
        """
        Execute one engine command inside the workspace.

        Args:
            args: Command arguments (without binary and base flags)
            expected_duration: Expected output seconds, for progress fractions
            on_progress: Optional async callback with fraction complete

        Raises:
            EncodeFailed: On non-zero exit, with the engine's diagnostics
        """
        workspace = self.workspace
        cmd = [self._executable, *self.BASE_ARGS, *args]

        async with self._run_lock:
            logger.info(f"Running engine: {' '.join(args)}")
            start_time = time.time()

            try:
                proc = await asyncio.create_subprocess_exec(
                    *cmd,
                    cwd=workspace,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as e:
                raise EncodeFailed(
                    f"Cannot start engine: {e}", original_error=e
                ) from e

            stderr_task = asyncio.create_task(proc.stderr.read())
            try:
                last_fraction = 0.0
                async for raw_line in proc.stdout:
                    fraction = parse_progress_line(
                        raw_line.decode("utf-8", errors="replace"), expected_duration
                    )
                    if fraction is not None and fraction > last_fraction:
                        last_fraction = fraction
                        await _notify_fraction(on_progress, fraction)

                stderr = (await stderr_task).decode("utf-8", errors="replace")
                return_code = await proc.wait()
            finally:
                # Interrupted (e.g. cancelled): don't leave the child running
                if proc.returncode is None:
                    logger.warning(f"Killing engine process {proc.pid}")
                    with contextlib.suppress(ProcessLookupError):
                        proc.kill()
                    await proc.wait()
                if not stderr_task.done():
                    stderr_task.cancel()
            elapsed = time.time() - start_time

            if return_code != 0:
                diagnostics = stderr[-DIAGNOSTICS_TAIL_CHARS:]
                logger.error(
                    f"Engine failed (code {return_code}) after {elapsed:.1f}s: "
                    f"{diagnostics[-500:]}"
                )
                raise EncodeFailed(
                    f"Engine exited with code {return_code}",
                    return_code=return_code,
                    diagnostics=diagnostics,
                )

            logger.info(f"Engine command finished in {elapsed:.1f}s")


async def _notify(callback: LoadProgressCallback | None, message: str, fraction: float) -> None:
    if callback is None:
        return
    try:
        await callback(message, fraction)
    except Exception as e:
        # Never fail due to callback error
        logger.warning(f"Load progress callback error: {e}")


async def _notify_fraction(callback: FractionCallback | None, fraction: float) -> None:
    if callback is None:
        return
    try:
        await callback(fraction)
    except Exception as e:
        logger.warning(f"Encode progress callback error: {e}")
