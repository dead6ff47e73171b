"""Tests for weighted progress calculation and monotonic reporting."""

import pytest

from recap.models.schemas import PROGRESS_WEIGHTS, PipelinePhase
from recap.services.pipeline import ProgressManager, ProgressTracker


@pytest.fixture
def manager() -> ProgressManager:
    return ProgressManager()


def test_default_weights_sum_to_100() -> None:
    assert sum(PROGRESS_WEIGHTS.values()) == 100


@pytest.mark.parametrize(
    "phase, fraction, expected",
    [
        (PipelinePhase.ENGINE_LOAD, 0.0, 0),
        (PipelinePhase.ENGINE_LOAD, 1.0, 10),
        (PipelinePhase.RETRIEVAL, 0.5, 15),
        (PipelinePhase.STAGING, 0.0, 20),
        (PipelinePhase.STAGING, 0.5, 40),
        (PipelinePhase.ENCODE, 0.0, 60),
        (PipelinePhase.ENCODE, 1.0, 100),
        (PipelinePhase.COMPLETED, 0.0, 100),
    ],
)
def test_calculate_overall_progress(manager, phase, fraction, expected) -> None:
    assert manager.calculate_overall_progress(phase, fraction) == pytest.approx(expected)


def test_fraction_is_clamped(manager) -> None:
    assert manager.calculate_overall_progress(PipelinePhase.STAGING, 7.0) == 60
    assert manager.calculate_overall_progress(PipelinePhase.STAGING, -1.0) == 20


def test_phase_boundaries_line_up(manager) -> None:
    order = ProgressManager.PHASE_ORDER
    for previous, current in zip(order, order[1:]):
        assert manager.get_phase_end_percent(previous) == manager.get_phase_start_percent(current)


def test_custom_weights_must_sum_to_100() -> None:
    with pytest.raises(ValueError):
        ProgressManager({PipelinePhase.ENGINE_LOAD: 50, PipelinePhase.ENCODE: 40})


async def test_tracker_never_decreases() -> None:
    received = []

    async def callback(phase, percent, message):
        received.append(percent)

    tracker = ProgressTracker(callback)
    await tracker.update(PipelinePhase.STAGING, 0.5)
    await tracker.update(PipelinePhase.ENGINE_LOAD, 1.0)
    await tracker.update(PipelinePhase.STAGING, 0.25)
    await tracker.update(PipelinePhase.ENCODE, 0.5)

    assert received == [40, 80]
    assert tracker.current == 80


async def test_tracker_reserves_100_for_complete() -> None:
    received = []

    async def callback(phase, percent, message):
        received.append((phase, percent))

    tracker = ProgressTracker(callback)
    await tracker.update(PipelinePhase.ENCODE, 1.0)
    assert tracker.current == 99

    await tracker.complete()

    assert received[-1] == (PipelinePhase.COMPLETED, 100)
    assert [p for _, p in received].count(100) == 1


async def test_tracker_reports_initial_zero() -> None:
    received = []

    async def callback(phase, percent, message):
        received.append(percent)

    tracker = ProgressTracker(callback)
    await tracker.update(PipelinePhase.ENGINE_LOAD, 0.0, "start")
    await tracker.update(PipelinePhase.ENGINE_LOAD, 0.0, "still starting")

    assert received == [0]


async def test_tracker_swallows_callback_errors() -> None:
    async def callback(phase, percent, message):
        raise RuntimeError("ui gone")

    tracker = ProgressTracker(callback)

    assert await tracker.update(PipelinePhase.RETRIEVAL, 1.0) == 20
    assert await tracker.complete() == 100


async def test_tracker_without_callback() -> None:
    tracker = ProgressTracker(None)
    await tracker.update(PipelinePhase.STAGING, 1.0)
    assert tracker.current == 60


async def test_tracker_switches_weights_without_going_back() -> None:
    tracker = ProgressTracker(None)
    await tracker.update(PipelinePhase.STAGING, 1.0)
    assert tracker.current == 60

    tracker.use_weights(
        {
            PipelinePhase.ENGINE_LOAD: 10,
            PipelinePhase.RETRIEVAL: 10,
            PipelinePhase.STAGING: 20,
            PipelinePhase.ENCODE: 60,
        }
    )

    assert await tracker.update(PipelinePhase.ENCODE, 0.0) == 60
    assert await tracker.update(PipelinePhase.ENCODE, 0.5) == 70


def test_tracker_rejects_bad_weights() -> None:
    tracker = ProgressTracker(None)

    with pytest.raises(ValueError):
        tracker.use_weights({PipelinePhase.STAGING: 50})
