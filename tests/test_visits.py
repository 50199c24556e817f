"""Tests for region visit history and the visit-rate estimator."""

import pytest

from geocast_engine import config
from geocast_engine.geo_models import GeoRegion
from geocast_engine.visits import (UnknownNodeError, UnknownRegionError,
                                   VisitHistoryTracker, visit_rate)

INSIDE = (5, 5)
OUTSIDE = (50, 50)


def visits_at(tracker, node_id, region, entry_times, regions=None):
    """Drive node_id into region at each entry time, stepping outside in between."""
    regions = regions or [region]
    for t in entry_times:
        tracker.on_tick(node_id, OUTSIDE, regions, t - 1)
        tracker.on_tick(node_id, INSIDE, regions, t)


class TestVisitHistoryTracker:

    def test_records_outside_to_inside_transitions(self, region_r):
        tracker = VisitHistoryTracker()
        visits_at(tracker, 'A', region_r, [0, 20, 40])
        assert tracker.timestamps('A', region_r) == (0, 20, 40)

    def test_staying_inside_records_once(self, region_r):
        tracker = VisitHistoryTracker()
        for t in range(5):
            tracker.on_tick('A', INSIDE, [region_r], t)
        assert tracker.timestamps('A', region_r) == (0,)
        assert tracker.region_of('A') is region_r

    def test_overlapping_regions_record_each_entry_once(self, region_r):
        overlap = GeoRegion.rectangle('O', 5, 5, 20, 20)
        tracker = VisitHistoryTracker()
        for t in range(6):
            tracker.on_tick('A', (7, 7), [region_r, overlap], t)
            assert tracker.region_of('A') is overlap

        assert tracker.timestamps('A', region_r) == (0,)
        assert tracker.timestamps('A', overlap) == (0,)

    def test_shared_grid_edge_records_each_cell_once(self):
        left = GeoRegion.rectangle('L', 0, 0, 10, 10)
        right = GeoRegion.rectangle('Rt', 10, 0, 20, 10)
        tracker = VisitHistoryTracker()
        for t in range(4):
            tracker.on_tick('A', (10, 5), [left, right], t)

        assert tracker.timestamps('A', left) == (0,)
        assert tracker.timestamps('A', right) == (0,)
        assert tracker.region_of('A') is right

        # stepping into one cell only is not a new entry into it
        tracker.on_tick('A', (15, 5), [left, right], 4)
        assert tracker.timestamps('A', right) == (0,)
        assert tracker.region_of('A') is right

    def test_leaving_clears_current_region(self, region_r):
        tracker = VisitHistoryTracker()
        tracker.on_tick('A', INSIDE, [region_r], 0)
        tracker.on_tick('A', OUTSIDE, [region_r], 1)
        assert tracker.region_of('A') is None

    def test_moving_between_adjacent_regions(self):
        left = GeoRegion.rectangle('L', 0, 0, 10, 10)
        right = GeoRegion.rectangle('Rt', 10.001, 0, 20, 10)
        tracker = VisitHistoryTracker()

        tracker.on_tick('A', (5, 5), [left, right], 0)
        tracker.on_tick('A', (15, 5), [left, right], 1)
        tracker.on_tick('A', (5, 5), [left, right], 2)

        assert tracker.timestamps('A', left) == (0, 2)
        assert tracker.timestamps('A', right) == (1,)
        assert tracker.region_of('A') is left

    def test_reentry_without_time_advancing_not_recorded(self, region_r):
        tracker = VisitHistoryTracker()
        tracker.on_tick('A', INSIDE, [region_r], 5)
        tracker.on_tick('A', OUTSIDE, [region_r], 5)
        tracker.on_tick('A', INSIDE, [region_r], 5)
        assert tracker.timestamps('A', region_r) == (5,)

    def test_unknown_node_fails_fast(self, region_r):
        tracker = VisitHistoryTracker()
        with pytest.raises(UnknownNodeError):
            tracker.timestamps('ghost', region_r)
        with pytest.raises(KeyError):
            tracker.region_of('ghost')

    def test_unknown_region_fails_fast(self, region_r, region_far):
        tracker = VisitHistoryTracker()
        tracker.on_tick('A', INSIDE, [region_r], 0)
        with pytest.raises(UnknownRegionError):
            tracker.timestamps('A', region_far)


class TestVisitRate:

    def test_mean_interval_reciprocal(self, region_r):
        tracker = VisitHistoryTracker()
        visits_at(tracker, 'A', region_r, [0, 20, 40])
        assert visit_rate(tracker, 'A', region_r) == pytest.approx(1 / 20)

    def test_fewer_than_two_visits_gives_zero(self, region_r):
        tracker = VisitHistoryTracker()
        tracker.on_tick('A', OUTSIDE, [region_r], 0)
        assert visit_rate(tracker, 'A', region_r) == 0.0

        tracker.on_tick('A', INSIDE, [region_r], 1)
        assert visit_rate(tracker, 'A', region_r) == 0.0

    def test_regular_visits_rate_higher(self, region_r):
        tracker = VisitHistoryTracker()
        visits_at(tracker, 'regular', region_r, [10, 20, 30, 40])   # intervals 10, 10, 10
        visits_at(tracker, 'irregular', region_r, [10, 20, 120])    # intervals 10, 100
        assert visit_rate(tracker, 'regular', region_r) > visit_rate(tracker, 'irregular', region_r)

    def test_zero_mean_interval_returns_sentinel(self, region_r):
        tracker = VisitHistoryTracker()
        tracker.on_tick('A', INSIDE, [region_r], 0)
        tracker.visit_times['A'][region_r.region_id] = [5.0, 5.0]

        rate = visit_rate(tracker, 'A', region_r)
        assert rate == config.MAX_VISIT_RATE
        assert rate != float('inf')

    def test_recomputed_from_latest_history(self, region_r):
        tracker = VisitHistoryTracker()
        visits_at(tracker, 'A', region_r, [0, 20])
        assert visit_rate(tracker, 'A', region_r) == pytest.approx(1 / 20)

        visits_at(tracker, 'A', region_r, [30])
        assert visit_rate(tracker, 'A', region_r) == pytest.approx(1 / 15)
