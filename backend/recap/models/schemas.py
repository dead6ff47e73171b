"""
Pydantic models for the memories recap pipeline.

Wire models mirror the remote service JSON (camelCase aliases);
domain models are what the pipeline passes between components.
"""

import uuid
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AuthPhase(str, Enum):
    """Phase of the phone -> code -> token login handshake."""
    AWAITING_PHONE = "awaiting_phone"
    AWAITING_CODE = "awaiting_code"
    AUTHENTICATED = "authenticated"


class PipelinePhase(str, Enum):
    """Phase of one video generation run."""
    ENGINE_LOAD = "engine_load"
    RETRIEVAL = "retrieval"
    STAGING = "staging"
    ENCODE = "encode"
    COMPLETED = "completed"


class FrameRecipe(str, Enum):
    """Which images of a diary day end up in the video.

    - primary_only: one frame per day (primary image)
    - primary_then_secondary: two consecutive frames per day
    """
    PRIMARY_ONLY = "primary_only"
    PRIMARY_THEN_SECONDARY = "primary_then_secondary"


# Share of the 0-100 progress scale per phase (must sum to 100)
PROGRESS_WEIGHTS: dict[PipelinePhase, int] = {
    PipelinePhase.ENGINE_LOAD: 10,
    PipelinePhase.RETRIEVAL: 10,
    PipelinePhase.STAGING: 40,
    PipelinePhase.ENCODE: 40,
}


# ═══════════════════════════════════════════════════════════════════════════
# Wire models (remote service payloads)
# ═══════════════════════════════════════════════════════════════════════════


class RemoteAsset(BaseModel):
    """Remote image descriptor."""

    model_config = ConfigDict(frozen=True)

    url: str
    width: int
    height: int


class DiaryRecord(BaseModel):
    """One day's paired-image entry from the memories feed."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    day: str = Field(alias="memoryDay")
    primary_asset: RemoteAsset = Field(alias="mainPostPrimaryMedia")
    secondary_asset: RemoteAsset = Field(alias="mainPostSecondaryMedia")


class OtpSession(BaseModel):
    session_info: str = Field(alias="sessionInfo", min_length=1)


class SendCodeData(BaseModel):
    otp_session: OtpSession = Field(alias="otpSession")


class SendCodeResponse(BaseModel):
    """Response of POST /login/send-code."""
    data: SendCodeData


class VerifyData(BaseModel):
    token: str = Field(min_length=1)


class VerifyResponse(BaseModel):
    """Response of POST /login/verify."""
    data: VerifyData


class MemoryFeedData(BaseModel):
    data: list[DiaryRecord]


class MemoryFeedResponse(BaseModel):
    """Response of GET /friends/mem-feed."""
    data: MemoryFeedData


# ═══════════════════════════════════════════════════════════════════════════
# Domain models
# ═══════════════════════════════════════════════════════════════════════════


class ImagePair(BaseModel):
    """Primary/secondary image URLs of one diary day."""

    model_config = ConfigDict(frozen=True)

    day: str
    primary_url: str
    secondary_url: str


class AudioTrack(BaseModel):
    """Optional background audio for a job."""

    data: bytes
    filename: str | None = None

    @field_validator("data")
    @classmethod
    def _not_empty(cls, value: bytes) -> bytes:
        if not value:
            raise ValueError("Audio track is empty")
        return value


class AssemblyJob(BaseModel):
    """One request to turn image pairs (plus optional audio) into a video."""

    frames: list[ImagePair]
    audio: AudioTrack | None = None
    recipe: FrameRecipe = FrameRecipe.PRIMARY_ONLY
    job_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:8])
    progress_weights: dict[PipelinePhase, int] = Field(
        default_factory=lambda: dict(PROGRESS_WEIGHTS)
    )

    @field_validator("progress_weights")
    @classmethod
    def _weights_sum_to_100(cls, value: dict[PipelinePhase, int]) -> dict[PipelinePhase, int]:
        total = sum(value.values())
        if total != 100:
            raise ValueError(f"Progress weights must sum to 100, got {total}")
        return value


class VideoArtifact(BaseModel):
    """Encoded video returned to the caller."""

    data: bytes
    media_type: str = "video/mp4"
    frame_count: int
    duration_hint: float  # Expected duration in seconds (without audio truncation)

    @property
    def size_mb(self) -> float:
        """Size of the encoded video in MB."""
        return len(self.data) / 1024 / 1024
