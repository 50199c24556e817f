"""
Shared pytest fixtures for the geocast simulator tests.

Provides:
- Regions (a 10x10 target cell at the origin and a far-away cell)
- A factory for small static simulators with hand-placed nodes
"""

import pytest

from geocast_engine import config
from geocast_engine.geo_models import GeoRegion
from geocast_engine.simulator import GeocastSimulator


@pytest.fixture(autouse=True)
def reset_stop_flag():
    config.reset()
    yield
    config.reset()


@pytest.fixture
def region_r():
    """Target region covering x, y in [0, 10]."""
    return GeoRegion.rectangle('R', 0, 0, 10, 10)


@pytest.fixture
def region_far():
    return GeoRegion.rectangle('F', 500, 500, 600, 600)


@pytest.fixture
def make_sim(tmp_path, region_r, region_far):
    """Build a simulator with fixed node positions, no mobility and no generated traffic."""

    def _make(positions, protocol='EVR', regions=None, **kwargs):
        kwargs.setdefault('tx_range', 50)
        kwargs.setdefault('sim_time', 1000)
        return GeocastSimulator(
            positions=positions,
            area_size=(1000, 1000),
            regions=regions if regions is not None else [region_r, region_far],
            protocol=protocol,
            mobile=False,
            msg_interval=None,
            results_dir=str(tmp_path / 'results'),
            seed=7,
            **kwargs,
        )

    return _make
