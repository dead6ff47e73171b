"""
Pipeline orchestrator for memories recap videos.

Sequences engine load -> record fetch/filter -> assembly, and folds the
progress of every phase into a single 0-100 value for the caller.
"""

import logging
import time

from recap.config import Settings, get_settings
from recap.models.schemas import (
    PROGRESS_WEIGHTS,
    AssemblyJob,
    AudioTrack,
    FrameRecipe,
    PipelinePhase,
    VideoArtifact,
)
from recap.services.credential_session import CredentialSession
from recap.services.encoding_engine import EncodingEngine
from recap.services.errors import AuthVerifyFailed, RecapError
from recap.services.record_client import RecordClient, normalize_year, to_image_pairs
from recap.services.remote_client import RemoteApiClient
from recap.services.video_assembler import VideoAssembler

from .progress_manager import ProgressCallback, ProgressManager, ProgressTracker

logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """
    Top-level driver used by the UI.

    All collaborators are explicit handles, so isolated pipelines can
    coexist (e.g. in tests).

    Example:
        async with PipelineOrchestrator.from_settings() as pipeline:
            pending = await pipeline.authenticate("+15551234567")
            credential = await pipeline.verify(pending, "123456")
            artifact = await pipeline.generate_video(credential, "2023")
    """

    def __init__(
        self,
        session: CredentialSession,
        records: RecordClient,
        engine: EncodingEngine,
        assembler: VideoAssembler,
        frame_recipe: FrameRecipe = FrameRecipe.PRIMARY_ONLY,
        progress_weights: dict[PipelinePhase, int] | None = None,
    ):
        """
        Initialize pipeline orchestrator.

        Args:
            session: Login handshake state
            records: Diary record retrieval
            engine: Encoding engine (loaded lazily on first run)
            assembler: Video assembler bound to the same engine
            frame_recipe: Which images of each day become frames
            progress_weights: Phase weights (must sum to 100)
        """
        self.session = session
        self.records = records
        self.engine = engine
        self.assembler = assembler
        self.frame_recipe = frame_recipe
        self.progress_manager = ProgressManager(progress_weights or PROGRESS_WEIGHTS)
        self._api: RemoteApiClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "PipelineOrchestrator":
        """Build the default component set from settings."""
        settings = settings or get_settings()
        api = RemoteApiClient.from_settings(settings)
        engine = EncodingEngine.from_settings(settings)
        orchestrator = cls(
            session=CredentialSession.from_settings(api, settings),
            records=RecordClient(api),
            engine=engine,
            assembler=VideoAssembler.from_settings(engine, settings),
            frame_recipe=FrameRecipe(settings.frame_recipe),
        )
        orchestrator._api = api
        return orchestrator

    async def __aenter__(self) -> "PipelineOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Release HTTP clients and the engine workspace."""
        self.session.reset()
        await self.assembler.close()
        await self.engine.close()
        if self._api is not None:
            await self._api.close()

    # ═══════════════════════════════════════════════════════════════════════════
    # Authentication
    # ═══════════════════════════════════════════════════════════════════════════

    async def authenticate(self, phone: str) -> str:
        """
        Start a login attempt; discards any previous session state.

        Returns:
            Pending session token for verify()

        Raises:
            AuthRequestFailed: If the code could not be requested
        """
        self.session.reset()
        return await self.session.submit_phone(phone)

    async def verify(self, pending_session: str, code: str) -> str:
        """
        Complete the login attempt started by authenticate().

        Returns:
            Bearer credential

        Raises:
            AuthVerifyFailed: Stale pending session, bad code or remote failure
        """
        if pending_session != self.session.pending_session:
            raise AuthVerifyFailed("Pending session does not match the current login attempt")
        return await self.session.submit_code(code)

    # ═══════════════════════════════════════════════════════════════════════════
    # Video generation
    # ═══════════════════════════════════════════════════════════════════════════

    async def generate_video(
        self,
        credential: str | None,
        year: str | int,
        audio: AudioTrack | bytes | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> VideoArtifact:
        """
        Produce a recap video of one year of memories.

        Phases:
        1. Load encoding engine (no-op after first run)
        2. Fetch memories and keep the requested year
        3. Download and stage images
        4. Encode

        Args:
            credential: Bearer credential from verify()
            year: 4-digit year
            audio: Optional background audio (bytes or AudioTrack)
            progress_callback: Optional async callback (phase, percent, message)

        Returns:
            VideoArtifact with mp4 bytes

        Raises:
            ValueError: If year or audio is invalid (before any I/O)
            RecapError: Any error from the taxonomy; progress stays at its last value
        """
        year_str = normalize_year(year)
        if isinstance(audio, bytes):
            audio = AudioTrack(data=audio)

        tracker = ProgressTracker(progress_callback, self.progress_manager)
        started_at = time.time()

        async def on_engine_progress(message: str, fraction: float) -> None:
            await tracker.update(PipelinePhase.ENGINE_LOAD, fraction, message)

        async def on_staging_progress(fraction: float) -> None:
            await tracker.update(PipelinePhase.STAGING, fraction, "Downloading memories")

        async def on_encode_progress(fraction: float) -> None:
            await tracker.update(PipelinePhase.ENCODE, fraction, "Encoding video")

        try:
            await tracker.update(PipelinePhase.ENGINE_LOAD, 0.0, "Loading encoding engine")
            await self.engine.load(on_progress=on_engine_progress)
            await tracker.update(PipelinePhase.ENGINE_LOAD, 1.0, "Encoding engine ready")

            await tracker.update(PipelinePhase.RETRIEVAL, 0.0, "Fetching memories")
            records = await self.records.fetch_year(credential, year_str)
            pairs = to_image_pairs(records)
            await tracker.update(
                PipelinePhase.RETRIEVAL, 1.0, f"Found {len(pairs)} memories from {year_str}"
            )

            job = AssemblyJob(
                frames=pairs,
                audio=audio,
                recipe=self.frame_recipe,
                progress_weights=self.progress_manager.weights,
            )
            # Staging and encode are aggregated with the job's own weights
            tracker.use_weights(job.progress_weights)

            await tracker.update(PipelinePhase.STAGING, 0.0, "Downloading memories")
            artifact = await self.assembler.assemble(
                job,
                on_staging_progress=on_staging_progress,
                on_encode_progress=on_encode_progress,
            )

        except RecapError as e:
            logger.error(f"Pipeline failed during {tracker.phase.value} at {tracker.current}%: {e}")
            raise

        await tracker.complete("Video ready")
        logger.info(
            f"Recap for {year_str} ready: {artifact.frame_count} frames, "
            f"{artifact.size_mb:.1f} MB in {time.time() - started_at:.1f}s"
        )
        return artifact
