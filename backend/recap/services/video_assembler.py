"""
Video assembly: download diary images, stage them into the engine
workspace, build the concat manifest and encode command, run it.

Either every frame stages and the encode succeeds, or the job raises;
no partial video is ever returned.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from recap.config import Settings
from recap.models.schemas import AssemblyJob, FrameRecipe, VideoArtifact
from recap.services.encode_presets import (
    AUDIO_NAME,
    MANIFEST_NAME,
    OUTPUT_NAME,
    PRESETS,
    EncodePreset,
    build_encode_command,
    build_manifest,
    expected_duration,
    get_preset,
)
from recap.services.encoding_engine import EncodingEngine, FractionCallback
from recap.services.errors import AssetFetchFailed, NothingToEncode, OutputMissing

logger = logging.getLogger(__name__)
perf_logger = logging.getLogger("recap.perf")

StagingCallback = Callable[[float], Awaitable[None]]


class VideoAssembler:
    """
    Turns an AssemblyJob into an encoded mp4.

    Jobs submitted while another is running wait for it to finish.

    Example:
        assembler = VideoAssembler(engine)
        artifact = await assembler.assemble(AssemblyJob(frames=pairs))
        Path("recap.mp4").write_bytes(artifact.data)
    """

    # Backoff between attempts on connect/timeout errors
    RETRY_WAIT = wait_exponential(multiplier=1, min=1, max=10)

    def __init__(
        self,
        engine: EncodingEngine,
        http_client: httpx.AsyncClient | None = None,
        preset: EncodePreset = PRESETS["slideshow"],
        frame_duration: float | None = None,
        download_concurrency: int = 8,
        fetch_attempts: int = 1,
        timeout: float = 30.0,
    ):
        """
        Initialize assembler.

        Args:
            engine: Encoding engine (loaded before assemble() is called)
            http_client: Client for asset downloads (created if None)
            preset: Encode profile
            frame_duration: Seconds per image in the manifest (None = engine default)
            download_concurrency: Max simultaneous asset downloads
            fetch_attempts: Attempts per asset on connect/timeout errors (1 = no retry)
            timeout: Per-download timeout in seconds
        """
        self.engine = engine
        self.preset = preset
        self.frame_duration = frame_duration
        self.download_concurrency = max(1, download_concurrency)
        self.fetch_attempts = max(1, fetch_attempts)
        self.timeout = timeout
        self._job_lock = asyncio.Lock()
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=timeout, follow_redirects=True
        )

    @classmethod
    def from_settings(cls, engine: EncodingEngine, settings: Settings) -> "VideoAssembler":
        """Create VideoAssembler from application settings."""
        return cls(
            engine,
            preset=get_preset(settings.encode_preset),
            frame_duration=settings.frame_duration,
            download_concurrency=settings.download_concurrency,
            fetch_attempts=settings.asset_fetch_attempts,
            timeout=settings.http_timeout,
        )

    async def close(self) -> None:
        """Close the download client if this assembler created it."""
        if self._owns_client:
            await self.http_client.aclose()

    async def assemble(
        self,
        job: AssemblyJob,
        on_staging_progress: StagingCallback | None = None,
        on_encode_progress: FractionCallback | None = None,
    ) -> VideoArtifact:
        """
        Produce a video from the job's image pairs and optional audio.

        Args:
            job: Frames (chronological), optional audio, frame recipe
            on_staging_progress: Async callback with fraction of pairs staged
            on_encode_progress: Async callback with encode fraction

        Returns:
            VideoArtifact with mp4 bytes

        Raises:
            NothingToEncode: If the job has no frames (engine is not invoked)
            AssetFetchFailed: If any image download fails
            EncodeFailed: If the engine command fails
            OutputMissing: If the engine produced no output
        """
        if not job.frames:
            raise NothingToEncode("No frames to encode")

        if self._job_lock.locked():
            logger.info(f"Job {job.job_id} waiting for the running job to finish")

        # reset() clears the whole shared workspace, so jobs run one at a time
        async with self._job_lock:
            return await self._assemble(job, on_staging_progress, on_encode_progress)

    async def _assemble(
        self,
        job: AssemblyJob,
        on_staging_progress: StagingCallback | None,
        on_encode_progress: FractionCallback | None,
    ) -> VideoArtifact:
        start_time = time.time()
        logger.info(
            f"Assembling job {job.job_id}: {len(job.frames)} days, "
            f"recipe={job.recipe.value}, audio={'yes' if job.audio else 'no'}"
        )

        # Clear anything a previous job left behind
        self.engine.reset()

        try:
            staged = await self._stage_frames(job, on_staging_progress)
            staging_time = time.time() - start_time

            entries = self._manifest_entries(job.recipe, staged)
            await self.engine.stage_file(
                MANIFEST_NAME, build_manifest(entries, self.frame_duration)
            )

            audio_name = None
            if job.audio is not None:
                await self.engine.stage_file(AUDIO_NAME, job.audio.data)
                audio_name = AUDIO_NAME

            args = build_encode_command(self.preset, MANIFEST_NAME, OUTPUT_NAME, audio_name)
            duration = expected_duration(len(entries), self.frame_duration)

            encode_start = time.time()
            await self.engine.run(
                args, expected_duration=duration, on_progress=on_encode_progress
            )
            encode_time = time.time() - encode_start

            data = await self.engine.read_file(OUTPUT_NAME)
            if not data:
                raise OutputMissing("Engine produced an empty output file", name=OUTPUT_NAME)
        finally:
            self.engine.reset()

        artifact = VideoArtifact(data=data, frame_count=len(entries), duration_hint=duration)
        total_time = time.time() - start_time
        logger.info(
            f"Job {job.job_id} done: {artifact.frame_count} frames, "
            f"{artifact.size_mb:.1f} MB"
        )
        perf_logger.info(
            f"PERF | assemble | "
            f"days={len(job.frames)} | "
            f"frames={artifact.frame_count} | "
            f"size={artifact.size_mb:.1f}MB | "
            f"staging={staging_time:.1f}s | "
            f"encode={encode_time:.1f}s | "
            f"total={total_time:.1f}s"
        )
        return artifact

    async def _stage_frames(
        self,
        job: AssemblyJob,
        on_progress: StagingCallback | None,
    ) -> list[tuple[str, str]]:
        """
        Download and stage every pair concurrently.

        All pairs are staged before this returns. On the first failure the
        outstanding downloads are cancelled and the error propagates.

        Returns:
            (primary_name, secondary_name) per pair, in job order
        """
        semaphore = asyncio.Semaphore(self.download_concurrency)
        total = len(job.frames)
        done = 0

        async def stage_pair(index: int) -> tuple[str, str]:
            nonlocal done
            pair = job.frames[index]
            async with semaphore:
                primary = await self._download(pair.primary_url)
                secondary = await self._download(pair.secondary_url)
            primary_name = f"{job.job_id}_primary_{index}.jpg"
            secondary_name = f"{job.job_id}_secondary_{index}.jpg"
            await self.engine.stage_file(primary_name, primary)
            await self.engine.stage_file(secondary_name, secondary)

            done += 1
            if on_progress is not None:
                try:
                    await on_progress(done / total)
                except Exception as e:
                    logger.warning(f"Staging progress callback error: {e}")
            return primary_name, secondary_name

        tasks = [asyncio.create_task(stage_pair(i)) for i in range(total)]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    @staticmethod
    def _manifest_entries(recipe: FrameRecipe, staged: list[tuple[str, str]]) -> list[str]:
        if recipe is FrameRecipe.PRIMARY_THEN_SECONDARY:
            return [name for pair in staged for name in pair]
        return [primary for primary, _ in staged]

    async def _download(self, url: str) -> bytes:
        """
        Download one asset.

        Raises:
            AssetFetchFailed: With the failing URL
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.fetch_attempts),
            wait=self.RETRY_WAIT,
            retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    response = await self.http_client.get(url, timeout=self.timeout)
                    response.raise_for_status()

        except httpx.HTTPStatusError as e:
            logger.error(f"Asset download failed: HTTP {e.response.status_code} {url}")
            raise AssetFetchFailed(
                f"Failed to download asset: HTTP {e.response.status_code}",
                url=url,
                status_code=e.response.status_code,
                original_error=e,
            ) from e

        except httpx.HTTPError as e:
            logger.error(f"Asset download failed: {type(e).__name__} {url}")
            raise AssetFetchFailed(
                f"Failed to download asset: {type(e).__name__}",
                url=url,
                original_error=e,
            ) from e

        return response.content
