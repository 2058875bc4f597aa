import pytest

from relocalization_service.core.plane_tracker import PlaneConfidenceTracker, surface_quality


def test_quality_of_new_level_surface():
    # 0.4 * 1.0 + 0.3 * 1.0 + 0.2 * 0.1 + 0.1 * 0.0
    assert surface_quality(0.3, 1.0, 1, 0.0) == pytest.approx(0.72)


def test_quality_terms_saturate():
    assert surface_quality(10.0, 1.0, 50, 100.0) == pytest.approx(1.0)
    assert surface_quality(0.0, 0.0, 0, 0.0) == pytest.approx(0.0)


def test_wall_scores_lower_than_floor():
    assert surface_quality(0.3, 0.0, 5, 1.0) < surface_quality(0.3, 1.0, 5, 1.0)


def test_observe_updates_existing_surface():
    tracker = PlaneConfidenceTracker()
    tracker.observe("p1", 0.2, 1.0, now=10.0)
    observation = tracker.observe("p1", 0.4, 0.9, now=11.5)

    assert observation.stability == 2
    assert observation.time_seen == pytest.approx(1.5)
    assert observation.area == pytest.approx(0.4)
    assert tracker.tracked_count() == 1


def test_total_area_and_removal():
    tracker = PlaneConfidenceTracker()
    tracker.observe("p1", 0.5, 1.0, now=0.0)
    tracker.observe("p2", 0.75, 1.0, now=0.0)

    assert tracker.total_tracked_area() == pytest.approx(1.25)
    assert tracker.remove("p1") is True
    assert tracker.remove("p1") is False
    assert tracker.total_tracked_area() == pytest.approx(0.75)
    assert tracker.quality("p1") == 0.0


def test_observations_are_snapshots():
    tracker = PlaneConfidenceTracker()
    tracker.observe("p1", 0.5, 1.0, now=0.0)

    snapshot = tracker.observations()
    snapshot[0].area = 99.0

    assert tracker.get("p1").area == pytest.approx(0.5)


def test_clear_and_average_quality():
    tracker = PlaneConfidenceTracker()
    assert tracker.average_quality() == 0.0

    tracker.observe("p1", 0.3, 1.0, now=0.0)
    tracker.observe("p2", 0.3, 1.0, now=0.0)
    assert tracker.average_quality() == pytest.approx(0.72)

    tracker.clear()
    assert tracker.tracked_count() == 0


@pytest.mark.parametrize("area", [0.0, 0.1, 0.3, 2.0])
@pytest.mark.parametrize("alignment", [0.0, 0.5, 1.0])
def test_quality_never_drops_as_surface_persists(area, alignment):
    previous = surface_quality(area, alignment, 0, 0.0)
    for stability, time_seen in zip(range(1, 16), [0.0, 0.2, 0.5, 1.0, 1.5, 2.0, 2.5, 2.9, 3.0, 3.5, 4.0, 5.0, 8.0, 13.0, 30.0]):
        score = surface_quality(area, alignment, stability, time_seen)
        assert score >= previous
        assert 0.0 <= score <= 1.0
        previous = score


@pytest.mark.parametrize("stability", [1, 5, 10, 20])
def test_quality_never_drops_with_time_seen(stability):
    scores = [surface_quality(0.2, 0.8, stability, t) for t in (0.0, 0.5, 1.0, 2.9, 3.0, 10.0)]
    assert scores == sorted(scores)
