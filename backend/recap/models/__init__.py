"""
Pydantic models for the memories recap pipeline.

Exports:
    - Wire models (DiaryRecord, RemoteAsset, response envelopes)
    - Domain models (ImagePair, AudioTrack, AssemblyJob, VideoArtifact)
    - Phase enums and progress weights
"""

from recap.models.schemas import (
    PROGRESS_WEIGHTS,
    AssemblyJob,
    AudioTrack,
    AuthPhase,
    DiaryRecord,
    FrameRecipe,
    ImagePair,
    MemoryFeedResponse,
    PipelinePhase,
    RemoteAsset,
    SendCodeResponse,
    VerifyResponse,
    VideoArtifact,
)

__all__ = [
    # Enums
    "AuthPhase",
    "PipelinePhase",
    "FrameRecipe",
    "PROGRESS_WEIGHTS",
    # Wire models
    "RemoteAsset",
    "DiaryRecord",
    "SendCodeResponse",
    "VerifyResponse",
    "MemoryFeedResponse",
    # Domain models
    "ImagePair",
    "AudioTrack",
    "AssemblyJob",
    "VideoArtifact",
]
