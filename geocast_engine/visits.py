# geocast_engine/visits.py
"""
Region visit history for the EVR router.

Every node records the simulated times at which it moves from outside to
inside each known region. The visit rate of a (node, region) pair is the
reciprocal of the mean time between successive entries.
"""
import logging

import numpy as np

from . import config

logger = logging.getLogger(__name__)


class UnknownNodeError(KeyError):
    """Raised for a node that has never been through a visit-tracking tick."""


class UnknownRegionError(KeyError):
    """Raised for a region that is not among a node's known regions."""


class VisitHistoryTracker:
    """Owns the visit records and current-region membership of every node."""

    def __init__(self):
        # visit_times[node_id][region_id] -> strictly increasing entry times
        self.visit_times = {}
        # current_region[node_id] -> GeoRegion most recently entered, or None
        self.current_region = {}
        # regions containing each node on its previous tick
        self._inside = {}

    def on_tick(self, node_id, location, known_regions, now):
        visits = self.visit_times.setdefault(node_id, {})
        previous = self._inside.get(node_id, frozenset())
        inside = set()

        for region in known_regions:
            times = visits.setdefault(region.region_id, [])
            if not region.contains(location):
                continue
            inside.add(region.region_id)
            if region.region_id in previous:
                continue

            if not times or now > times[-1]:
                times.append(now)
                logger.debug(f"Time {now:.2f}: node {node_id} entered {region}")
            else:
                logger.debug(f"Time {now:.2f}: node {node_id} re-entered {region} "
                             f"without time advancing, visit not recorded")
            self.current_region[node_id] = region

        if not inside:
            self.current_region[node_id] = None
        self._inside[node_id] = frozenset(inside)

    def knows(self, node_id):
        return node_id in self.visit_times

    def timestamps(self, node_id, region):
        """Entry times of node_id into region, oldest first."""
        if node_id not in self.visit_times:
            raise UnknownNodeError(node_id)
        visits = self.visit_times[node_id]
        if region.region_id not in visits:
            raise UnknownRegionError(region.region_id)
        return tuple(visits[region.region_id])

    def region_of(self, node_id):
        if node_id not in self.visit_times:
            raise UnknownNodeError(node_id)
        return self.current_region.get(node_id)


def visit_rate(tracker, node_id, region):
    """
    Expected visits of node_id to region per unit of simulated time.

    Returns 0.0 with fewer than two recorded entries, and
    config.MAX_VISIT_RATE when the mean inter-visit interval is zero.
    """
    times = tracker.timestamps(node_id, region)
    if len(times) < 2:
        return 0.0

    mean_interval = float(np.mean(np.diff(times)))
    if mean_interval <= 0:
        return config.MAX_VISIT_RATE
    return 1.0 / mean_interval
