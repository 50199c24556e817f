"""Routing tests on small static topologies driven tick by tick."""

import pytest

from geocast_engine.protocols import GeoRouter, EVRRouter


def seed_visits(sim, node_id, region, times):
    """Give node_id an entry history into region before the first tick."""
    sim.tracker.visit_times.setdefault(node_id, {})[region.region_id] = list(times)


class TestDirectFlood:

    def test_peer_inside_destination_receives_and_confirms(self, make_sim, region_r):
        sim = make_sim([(50, 5), (5, 5)])
        message = sim.create_message(0, region_r, size=1000)

        sim.run_until(1.5)

        receiver = sim.nodes[1]
        assert sim.routing.has_message(receiver, message.message_id)
        assert sim.is_delivered(receiver, message.message_id)
        assert sim.routing.buffers[1][message.message_id].hops == [0, 1]
        assert sim.stats.nrof_delivered == 1

    def test_sender_outside_is_not_confirmed(self, make_sim, region_r):
        sim = make_sim([(50, 5), (5, 5)])
        message = sim.create_message(0, region_r, size=1000)
        sim.run_until(1.5)
        assert not sim.is_delivered(sim.nodes[0], message.message_id)

    def test_one_transfer_at_a_time(self, make_sim, region_r):
        sim = make_sim([(40, 5), (5, 5), (8, 8)])
        sim.create_message(0, region_r, size=10 ** 9)
        sim.create_message(0, region_r, size=10 ** 9)

        sim.step_tick()

        assert len(sim.routing.transfers) == 1
        assert sim.routing.is_transferring(sim.nodes[0])


class TestEVRRelay:

    def test_relay_to_peer_with_higher_visit_rate(self, make_sim, region_r):
        sim = make_sim([(100, 100), (130, 100)])
        seed_visits(sim, 1, region_r, [0.0, 10.0])
        message = sim.create_message(0, region_r, size=1000)

        sim.run_until(1.5)

        relay = sim.nodes[1]
        copy = sim.routing.buffers[1][message.message_id]
        assert copy.hops == [0, 1]
        assert not sim.is_delivered(relay, message.message_id)
        # relay's copy now carries the relay's own rate
        assert copy.evr.rate == pytest.approx(0.1)
        assert message.evr.rate == 0.0

    def test_no_relay_to_peer_with_lower_visit_rate(self, make_sim, region_r):
        sim = make_sim([(100, 100), (130, 100)])
        seed_visits(sim, 0, region_r, [0.0, 10.0])
        seed_visits(sim, 1, region_r, [0.0, 100.0])
        sim.create_message(0, region_r, size=1000)

        sim.run_until(3.5)

        assert sim.stats.nrof_started == 0
        assert sim.routing.buffers[1] == {}

    def test_no_relay_once_carrier_is_inside(self, make_sim, region_r):
        sim = make_sim([(5, 5), (40, 5)])
        seed_visits(sim, 1, region_r, [0.0, 10.0])
        message = sim.create_message(0, region_r, size=1000)

        sim.run_until(2.5)

        assert message.evr.arrived is True
        assert sim.stats.nrof_started == 0

    def test_direct_protocol_ignores_visit_rates(self, make_sim, region_r):
        sim = make_sim([(100, 100), (130, 100)], protocol='GEO_DIRECT')
        seed_visits(sim, 1, region_r, [0.0, 10.0])
        sim.create_message(0, region_r, size=1000)

        sim.run_until(3.5)

        assert isinstance(sim.routing, GeoRouter)
        assert not isinstance(sim.routing, EVRRouter)
        assert sim.stats.nrof_started == 0

    def test_created_message_starts_with_initial_rate(self, make_sim, region_r):
        sim = make_sim([(100, 100)])
        message = sim.create_message(0, region_r)
        assert message.evr.rate == sim.routing.initial_rate
        assert message.evr.arrived is False
        assert sim.discovery.is_tracking(message.message_id)

    def test_visit_rate_from_simulator(self, make_sim, region_r):
        sim = make_sim([(100, 100)])
        seed_visits(sim, 0, region_r, [0.0, 20.0, 40.0])
        sim.step_tick()
        assert sim.visit_rate(sim.nodes[0], region_r) == pytest.approx(1 / 20)


class TestLinksAndExpiry:

    def test_link_break_aborts_transfer(self, make_sim, region_r):
        sim = make_sim([(40, 5), (5, 5)])
        sim.create_message(0, region_r, size=10 ** 9)

        sim.step_tick()
        assert sim.stats.nrof_started == 1

        sim.nodes[1].position[:] = (900, 900)
        sim.step_tick()

        assert sim.stats.nrof_aborted == 1
        assert sim.routing.transfers == {}
        assert sim.routing.connections_of(sim.nodes[0]) == []

    def test_expired_messages_dropped(self, make_sim, region_r):
        sim = make_sim([(100, 100)])
        message = sim.create_message(0, region_r, ttl=5)

        sim.run_until(6.5)

        assert not sim.routing.has_message(sim.nodes[0], message.message_id)
        assert sim.stats.nrof_dropped == 1
        assert 'DR 0 M1' in ' | '.join(sim.event_log.lines)

    def test_connection_events_logged(self, make_sim):
        sim = make_sim([(0, 0), (10, 0)])
        sim.step_tick()
        assert sim.event_log.lines[0] == '0.00 CONN 0 1 up'
