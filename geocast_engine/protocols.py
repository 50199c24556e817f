# geocast_engine/protocols.py
import logging

import numpy as np

from . import config
from .geo_models import Connection, EvrState, Transfer
from .policy import (direct_candidates, forwarding_candidates,
                     update_arrival_flags, update_visit_rates)
from .visits import VisitHistoryTracker, visit_rate

logger = logging.getLogger(__name__)


class GeoRouter:
    """
    Geocast routing shared by all protocols: message buffers, confirmed
    deliveries, live connections and single-transfer-per-node execution.

    The base protocol only hands messages to peers that are inside the
    destination region.
    """

    def __init__(self, env, nodes, graph, regions,
                 transmit_speed=config.DEFAULT_TRANSMIT_SPEED, listeners=None):
        self.env = env
        self.nodes = nodes
        # direct mapping for id -> Node
        self.node_map = {node.id: node for node in nodes}
        # live connectivity: edge (a, b) carries the Connection under 'connection'
        self.graph = graph
        self.regions = list(regions)
        self.transmit_speed = transmit_speed
        self.listeners = listeners if listeners is not None else []
        # buffers[node_id][message_id] -> GeoMessage
        self.buffers = {node.id: {} for node in nodes}
        # delivered[node_id][message_id] -> time the node received it inside the destination
        self.delivered = {node.id: {} for node in nodes}
        # message ids delivered to at least one node
        self.first_deliveries = set()
        # transfers[connection.key] -> Transfer in flight
        self.transfers = {}
        self.relayed = 0
        for node in nodes:
            self.graph.add_node(node.id)

    def _notify(self, event, *args):
        for listener in self.listeners:
            getattr(listener, event)(*args)

    # ----- state queries -----

    def connections_of(self, node):
        return [data['connection'] for _, _, data in self.graph.edges(node.id, data=True)]

    def messages_of(self, node):
        return list(self.buffers[node.id].values())

    def has_message(self, node, message_id):
        return message_id in self.buffers[node.id]

    def is_delivered(self, node, message_id):
        """True if node holds a confirmed delivery record for message_id."""
        return message_id in self.delivered[node.id]

    def is_transferring(self, node):
        return any(conn.key in self.transfers for conn in self.connections_of(node))

    def get_overhead(self):
        return self.relayed

    # ----- message lifecycle -----

    def create_message(self, node, message):
        self.buffers[node.id][message.message_id] = message
        logger.info(f"Time {self.env.now:.2f}: {node} created {message} for {message.destination}")
        self._notify('new_message', message)

    def drop_message(self, node, message_id):
        message = self.buffers[node.id].pop(message_id)
        self._notify('message_dropped', message, node)
        return message

    def drop_expired(self, now):
        for node in self.nodes:
            for message in self.messages_of(node):
                if message.is_expired(now):
                    logger.debug(f"Time {now:.2f}: {node} dropping expired {message}")
                    self.drop_message(node, message.message_id)

    # ----- connectivity -----

    def update_connections(self, now):
        """Bring links up or down from current distances and tx ranges."""
        if len(self.nodes) < 2:
            return
        positions = np.array([node.position for node in self.nodes])
        ranges = np.array([node.tx_range for node in self.nodes], dtype=float)
        distances = np.linalg.norm(positions[:, None, :] - positions[None, :, :], axis=-1)
        in_range = distances <= np.minimum(ranges[:, None], ranges[None, :])

        for i, node in enumerate(self.nodes):
            for j in range(i + 1, len(self.nodes)):
                other = self.nodes[j]
                linked = self.graph.has_edge(node.id, other.id)
                if in_range[i, j] and not linked:
                    connection = Connection(node, other, self.transmit_speed)
                    self.graph.add_edge(node.id, other.id, connection=connection)
                    self._notify('hosts_connected', node, other)
                elif not in_range[i, j] and linked:
                    connection = self.graph.edges[node.id, other.id]['connection']
                    connection.is_up = False
                    self.graph.remove_edge(node.id, other.id)
                    self._abort_transfer(connection)
                    self._notify('hosts_disconnected', node, other)

    # ----- transfers -----

    def _abort_transfer(self, connection):
        transfer = self.transfers.pop(connection.key, None)
        if transfer is not None:
            logger.debug(f"Time {self.env.now:.2f}: transfer of {transfer.message} "
                         f"{transfer.sender}->{transfer.receiver} aborted")
            self._notify('transfer_aborted', transfer.message, transfer.sender, transfer.receiver)

    def _accepts(self, receiver, message):
        if self.has_message(receiver, message.message_id):
            return False
        if self.is_delivered(receiver, message.message_id):
            return False
        return not self.is_transferring(receiver)

    def can_start_transfer(self, node):
        if not self.buffers[node.id]:
            return False
        if self.graph.degree(node.id) == 0:
            return False
        return not self.is_transferring(node)

    def start_transfer(self, node, candidates, now):
        """Start the first acceptable (message, connection) candidate; returns the Transfer or None."""
        for message, connection in candidates:
            if connection.key in self.transfers or not connection.is_up:
                continue
            receiver = connection.other(node)
            if not self._accepts(receiver, message):
                continue

            done_at = now + message.size / connection.transmit_speed
            transfer = Transfer(message.replicate(), node, receiver, connection, done_at)
            self.transfers[connection.key] = transfer
            self._notify('transfer_started', message, node, receiver)
            return transfer
        return None

    def complete_transfers(self, now):
        for key, transfer in list(self.transfers.items()):
            if transfer.done_at <= now:
                del self.transfers[key]
                self._receive(transfer, now)

    def _receive(self, transfer, now):
        receiver = transfer.receiver
        message = transfer.message
        if self.has_message(receiver, message.message_id):
            # another connection delivered the same copy first
            return

        message.hops.append(receiver.id)
        message.receive_time = now
        inside = message.destination.contains(receiver.location)
        first_delivery = inside and message.message_id not in self.first_deliveries
        if inside:
            self.delivered[receiver.id][message.message_id] = now
            self.first_deliveries.add(message.message_id)

        self.buffers[receiver.id][message.message_id] = message
        self.message_received(receiver, message)
        self.relayed += 1
        logger.debug(f"Time {now:.2f}: {transfer.sender} -> {receiver} {message}"
                     f"{' (delivered)' if inside else ''}")
        self._notify('message_transferred', message, transfer.sender, receiver, first_delivery)

    def message_received(self, node, message):
        """Receiver-side hook for protocol state carried on the message."""

    # ----- per tick -----

    def candidates(self, node):
        return direct_candidates(node, self.messages_of(node), self.connections_of(node))

    def before_forwarding(self, now):
        """Per-tick protocol bookkeeping run before any candidate is computed."""

    def update(self, now):
        self.update_connections(now)
        self.complete_transfers(now)
        self.drop_expired(now)
        self.before_forwarding(now)
        for node in self.nodes:
            if self.can_start_transfer(node):
                self.start_transfer(node, self.candidates(node), now)


# ------------------ EVR ------------------
class EVRRouter(GeoRouter):
    """
    Opportunistic geocast by encounter visit rate (Ma and Jamalipour).

    A message is flooded to peers inside its destination and otherwise handed
    to peers that revisit the destination more often than its current
    carrier, as long as no carrier has reached the destination yet.
    """

    def __init__(self, env, nodes, graph, regions, tracker=None,
                 initial_rate=config.INITIAL_EVR_RATE, **kwargs):
        super().__init__(env, nodes, graph, regions, **kwargs)
        self.tracker = tracker if tracker is not None else VisitHistoryTracker()
        self.initial_rate = initial_rate
        # node_id -> regions, looked up from the registry on the node's first tick
        self.known_regions = {}

    def regions_for(self, node):
        if node.id not in self.known_regions:
            self.known_regions[node.id] = list(self.regions)
        return self.known_regions[node.id]

    def get_lambda(self, node, region):
        return visit_rate(self.tracker, node.id, region)

    def create_message(self, node, message):
        message.evr = EvrState(rate=self.initial_rate, arrived=False)
        super().create_message(node, message)

    def message_received(self, node, message):
        message.evr.rate = 0.0

    def record_visits(self, now):
        for node in self.nodes:
            self.tracker.on_tick(node.id, node.location, self.regions_for(node), now)

    def refresh_messages(self):
        for node in self.nodes:
            messages = self.messages_of(node)
            update_visit_rates(node, messages, self.get_lambda)
            update_arrival_flags(node.location, messages)

    def before_forwarding(self, now):
        self.record_visits(now)
        self.refresh_messages()

    def candidates(self, node):
        return forwarding_candidates(node, self.messages_of(node),
                                     self.connections_of(node), self.get_lambda)
