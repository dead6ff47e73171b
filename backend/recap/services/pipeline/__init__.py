"""
Pipeline module for recap video generation.

This package contains the pipeline components:
- orchestrator: Main pipeline coordination
- progress_manager: Weighted progress calculation and monotonic reporting

Example:
    from recap.services.pipeline import PipelineOrchestrator

    async with PipelineOrchestrator.from_settings() as pipeline:
        artifact = await pipeline.generate_video(credential, "2023")
"""

from .orchestrator import PipelineOrchestrator
from .progress_manager import ProgressCallback, ProgressManager, ProgressTracker

__all__ = [
    # Main orchestrator
    "PipelineOrchestrator",
    # Supporting classes
    "ProgressManager",
    "ProgressTracker",
    "ProgressCallback",
]
