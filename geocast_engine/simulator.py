# geocast_engine/simulator.py

import json
import math
import logging
import os
import time

import networkx as nx
import numpy as np
import simpy

from . import config
from .discovery import DestinationDiscoveryTracker
from .geo_models import GeoMessage, GeoNode, grid_regions
from .protocols import GeoRouter, EVRRouter
from .reports import GeoEventLog, GeoStatsReport
from .visits import VisitHistoryTracker, visit_rate

logger = logging.getLogger(__name__)

PROTOCOLS = {
    'EVR': EVRRouter,
    'GEO_DIRECT': GeoRouter,
}


class GeocastSimulator:
    def __init__(self, num_nodes=config.DEFAULT_NUM_NODES, area_size=config.DEFAULT_AREA_SIZE,
                 regions=None, protocol='EVR', sim_time=config.DEFAULT_SIM_TIME,
                 msg_interval=config.DEFAULT_MSG_INTERVAL, msg_ttl=config.DEFAULT_MSG_TTL,
                 msg_size=config.DEFAULT_MSG_SIZE, node_speed=config.DEFAULT_NODE_SPEED,
                 tx_range=config.DEFAULT_TX_RANGE, pause_time=config.DEFAULT_PAUSE_TIME,
                 transmit_speed=config.DEFAULT_TRANSMIT_SPEED,
                 tick_interval=config.DEFAULT_TICK_INTERVAL,
                 report_interval=config.DEFAULT_REPORT_INTERVAL,
                 warmup=config.DEFAULT_WARMUP, cooldown=config.DEFAULT_COOLDOWN,
                 positions=None, mobile=True, seed=None, results_dir=config.RESULTS_DIR):
        if tick_interval <= 0:
            raise ValueError(f"tick_interval must be positive, got {tick_interval}")
        if msg_ttl <= 0:
            raise ValueError(f"msg_ttl must be positive, got {msg_ttl}")
        if protocol not in PROTOCOLS:
            raise ValueError(f"Unknown protocol {protocol!r}, expected one of {sorted(PROTOCOLS)}")

        self.env = simpy.Environment()
        self.rng = np.random.default_rng(seed)
        self.G = nx.Graph()
        self.protocol = protocol
        self.area_size = area_size
        self.regions = list(regions) if regions is not None else grid_regions(area_size, *config.DEFAULT_GRID)
        self.sim_time = sim_time
        self.msg_interval = msg_interval
        self.msg_ttl = msg_ttl
        self.msg_size = msg_size
        self.tick_interval = tick_interval
        self.report_interval = report_interval
        self.mobile = mobile
        self.results_dir = results_dir
        self.stop_flag = False
        self.ticks = 0
        self.message_counter = 0
        self._started = False

        # create nodes and attach simulator reference
        if positions is not None:
            num_nodes = len(positions)
        self.nodes = []
        for i in range(num_nodes):
            if positions is not None:
                pos = positions[i]
            else:
                pos = (self.rng.uniform(0, area_size[0]), self.rng.uniform(0, area_size[1]))
            node = GeoNode(i, pos, area_size, speed=node_speed, pause_time=pause_time,
                           tx_range=tx_range, rng=self.rng)
            node.simulator = self
            self.nodes.append(node)
        self.node_map = {node.id: node for node in self.nodes}

        self.tracker = VisitHistoryTracker()
        self.discovery = DestinationDiscoveryTracker()
        self.stats = GeoStatsReport(self.env, self.discovery, self.is_delivered,
                                    warmup=warmup, cooldown=cooldown, sim_time=sim_time)
        self.event_log = GeoEventLog(self.env)

        routing_kwargs = {'transmit_speed': transmit_speed,
                          'listeners': [self.stats, self.event_log]}
        if protocol == 'EVR':
            routing_kwargs['tracker'] = self.tracker
        self.routing = PROTOCOLS[protocol](self.env, self.nodes, self.G, self.regions,
                                           **routing_kwargs)

    # ----- collaborators exposed to reporting -----

    def is_delivered(self, node, message_id):
        return self.routing.is_delivered(node, message_id)

    def visit_rate(self, node, region):
        return visit_rate(self.tracker, node.id, region)

    def delivery_ratio(self, message_id):
        return self.discovery.delivery_ratio(message_id, self.is_delivered)

    def live_messages(self):
        seen = {}
        for node in self.nodes:
            for message in self.routing.messages_of(node):
                seen.setdefault(message.message_id, message)
        return list(seen.values())

    # ----- messages -----

    def create_message(self, source, destination, ttl=None, size=None, response_to=None,
                       response_size=0):
        """Create a geocast message at source addressed to the destination region."""
        if isinstance(source, int):
            source = self.node_map[source]
        self.message_counter += 1
        message = GeoMessage(f"M{self.message_counter}", source.id, destination,
                             self.env.now, ttl if ttl is not None else self.msg_ttl,
                             size=size if size is not None else self.msg_size,
                             response_to=response_to, response_size=response_size)
        self.discovery.open(message)
        self.routing.create_message(source, message)
        return message

    def generate_traffic(self):
        """Traffic generator process: a message from a random node to a random region."""
        while self.env.now < self.sim_time:
            if self.stop_flag or config.stop_simulation:
                return
            source = self.nodes[int(self.rng.integers(len(self.nodes)))]
            region = self.regions[int(self.rng.integers(len(self.regions)))]
            self.create_message(source, region)
            yield self.env.timeout(self.msg_interval)

    # ----- ticks -----

    def step_tick(self):
        now = self.env.now
        self.routing.update(now)
        self.discovery.on_tick(now, self.nodes, self.live_messages())
        self.ticks += 1

    def _tick_loop(self):
        while True:
            if self.stop_flag or config.stop_simulation:
                return
            self.step_tick()
            yield self.env.timeout(self.tick_interval)

    def _start(self):
        if self._started:
            return
        self._started = True
        if self.mobile:
            for node in self.nodes:
                self.env.process(node.move(self.env, step=self.tick_interval))
        if self.msg_interval and self.nodes and self.regions:
            self.env.process(self.generate_traffic())
        self.env.process(self._tick_loop())

    def run_until(self, until):
        """Advance the simulation to the given simulated time."""
        self._start()
        self.env.run(until=until)

    def run(self):
        """Run the simulation as a generator that yields periodic metrics dictionaries."""
        # reset global stop flag
        config.reset()
        self._start()

        last_update = self.env.now
        while True:
            next_event_time = self.env.peek()
            if next_event_time >= self.sim_time:
                break

            # Stop requested externally
            if config.stop_simulation:
                self.stop_flag = True
                return

            self.env.step()

            if self.env.now - last_update >= self.report_interval:
                yield self.metrics()
                last_update = self.env.now

        final_metrics = self.final_metrics()
        self.save(final_metrics)
        yield final_metrics

    # ----- metrics -----

    def metrics(self):
        return {
            'type': 'metrics',
            'time': self.env.now,
            'created': self.stats.nrof_created,
            'delivered': self.stats.nrof_delivered,
            'delivery_prob': self.stats.delivery_probability(),
            'overhead': self.routing.get_overhead(),
            'nodes': [
                {
                    'id': node.id,
                    'x': node.location[0],
                    'y': node.location[1],
                    'buffered': len(self.routing.buffers[node.id]),
                }
                for node in self.nodes
            ],
            'links': [{'source': a, 'target': b} for a, b in self.G.edges()],
            'regions': [
                {'id': region.region_id, 'vertices': [list(v) for v in region.vertices]}
                for region in self.regions
            ],
            'areaSize': list(self.area_size),
        }

    def final_metrics(self):
        final_metrics = {
            'type': 'final_metrics',
            'protocol': self.protocol,
            'num_nodes': len(self.nodes),
            'ticks': self.ticks,
            'timestamp': time.strftime("%Y-%m-%d %H:%M:%S"),
        }
        # NaN is not valid JSON; empty statistics are reported as null
        final_metrics.update({
            key: None if isinstance(value, float) and math.isnan(value) else value
            for key, value in self.stats.summary().items()
        })
        return final_metrics

    def save(self, final_metrics):
        os.makedirs(self.results_dir, exist_ok=True)
        stamp = time.time()
        with open(os.path.join(self.results_dir, f"sim_{stamp}.json"), 'w') as f:
            json.dump(final_metrics, f)
        self.stats.message_table().to_csv(
            os.path.join(self.results_dir, f"sim_{stamp}_messages.csv"), index=False)
        logger.info(f"Time {self.env.now:.2f}: saved results to {self.results_dir}")
