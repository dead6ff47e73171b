"""
Progress management for pipeline phases.

Maps each phase's own 0..1 fraction into its weighted slice of a single
0-100 scale and keeps the reported value monotonic.
"""

import logging
import math
from collections.abc import Awaitable, Callable

from recap.models.schemas import PROGRESS_WEIGHTS, PipelinePhase

logger = logging.getLogger(__name__)

# Type alias for progress callback
# Signature: (phase, progress_percent, message) -> None
ProgressCallback = Callable[[PipelinePhase, int, str], Awaitable[None]]


class ProgressManager:
    """
    Pure progress calculation from phase weights.

    Default weights follow where time goes in a typical run:
    - engine_load: 0-10% (binary probe)
    - retrieval: 10-20% (single feed request)
    - staging: 20-60% (image downloads, linear in frame count)
    - encode: 60-100% (engine's own progress signal)

    Example:
        manager = ProgressManager()
        manager.calculate_overall_progress(PipelinePhase.STAGING, 0.5)  # 40.0
    """

    # Phase order for progress calculation
    PHASE_ORDER = [
        PipelinePhase.ENGINE_LOAD,
        PipelinePhase.RETRIEVAL,
        PipelinePhase.STAGING,
        PipelinePhase.ENCODE,
    ]

    def __init__(self, weights: dict[PipelinePhase, int] | None = None):
        self.weights = dict(weights or PROGRESS_WEIGHTS)
        total = sum(self.weights.get(phase, 0) for phase in self.PHASE_ORDER)
        if total != 100:
            raise ValueError(f"Phase weights must sum to 100, got {total}")

    def calculate_overall_progress(
        self,
        phase: PipelinePhase,
        fraction: float = 1.0,
    ) -> float:
        """
        Calculate overall progress percentage.

        Args:
            phase: Current phase
            fraction: Progress within the phase (0..1, clamped)

        Returns:
            Overall progress (0-100)
        """
        if phase is PipelinePhase.COMPLETED:
            return 100.0

        base_progress = 0.0
        for ordered in self.PHASE_ORDER:
            if ordered == phase:
                break
            base_progress += self.weights.get(ordered, 0)

        fraction = max(0.0, min(fraction, 1.0))
        contribution = fraction * self.weights.get(phase, 0)
        return min(base_progress + contribution, 100.0)

    def get_phase_start_percent(self, phase: PipelinePhase) -> float:
        """Get the starting percentage for a phase."""
        return self.calculate_overall_progress(phase, 0.0)

    def get_phase_end_percent(self, phase: PipelinePhase) -> float:
        """Get the ending percentage for a phase."""
        return self.calculate_overall_progress(phase, 1.0)


class ProgressTracker:
    """
    Reports integer progress for one run through an observer callback.

    The reported value never decreases; it only reaches 100 through
    complete(). After a failure the caller simply stops reporting, so
    the last value stays.
    """

    def __init__(
        self,
        callback: ProgressCallback | None,
        manager: ProgressManager | None = None,
    ):
        self.callback = callback
        self.manager = manager or ProgressManager()
        self.current = 0
        self.phase = PipelinePhase.ENGINE_LOAD
        self.history: list[int] = []

    async def update(self, phase: PipelinePhase, fraction: float, message: str = "") -> int:
        """
        Report progress within a phase.

        Returns:
            Aggregate progress after this update
        """
        self.phase = phase
        overall = math.floor(self.manager.calculate_overall_progress(phase, fraction))
        if phase is not PipelinePhase.COMPLETED:
            # 100 is reserved for complete()
            overall = min(overall, 99)
        if overall <= self.current and self.history:
            return self.current

        self.current = max(self.current, overall)
        self.history.append(self.current)
        await self._emit(phase, message)
        return self.current

    def use_weights(self, weights: dict[PipelinePhase, int]) -> None:
        """Aggregate later updates with different phase weights.

        Values already reported stay; the next update never goes below them.
        """
        self.manager = ProgressManager(weights)

    async def complete(self, message: str = "Done") -> int:
        """Report the final 100."""
        return await self.update(PipelinePhase.COMPLETED, 1.0, message)

    async def _emit(self, phase: PipelinePhase, message: str) -> None:
        if self.callback is None:
            return
        try:
            await self.callback(phase, self.current, message)
        except Exception as e:
            # Never fail due to callback error
            logger.warning(f"Progress callback error: {e}")
