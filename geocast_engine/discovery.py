# geocast_engine/discovery.py
"""
Destination discovery for geocast messages.

For every live message we remember which nodes were seen inside its
destination region before the message expired. Whether those nodes actually
received the message is asked of the routing layer when the delivery ratio
is computed.
"""
import logging

import numpy as np

logger = logging.getLogger(__name__)


class ObservationSet:
    """Nodes seen inside a message's destination, unique by node id."""

    def __init__(self, message, expires_at):
        self.message_id = message.message_id
        self.destination = message.destination
        self.expires_at = expires_at
        self.nodes = {}

    def add(self, node):
        if node.id in self.nodes:
            return False
        self.nodes[node.id] = node
        return True

    def __contains__(self, node):
        return node.id in self.nodes

    def __len__(self):
        return len(self.nodes)

    def __iter__(self):
        return iter(self.nodes.values())


class DestinationDiscoveryTracker:

    def __init__(self):
        # live observation sets, keyed by message id
        self.tracked = {}
        # final node sets of expired messages, kept for delivery ratios
        self.closed = {}

    def open(self, message):
        if message.message_id in self.tracked or message.message_id in self.closed:
            return
        self.tracked[message.message_id] = ObservationSet(message, message.expires_at)

    def is_tracking(self, message_id):
        return message_id in self.tracked

    def expire(self, now):
        for message_id, observed in list(self.tracked.items()):
            if observed.expires_at <= now:
                del self.tracked[message_id]
                self.closed[message_id] = tuple(observed)
                logger.debug(f"Time {now:.2f}: stopped tracking {message_id}, "
                             f"{len(observed)} nodes reached {observed.destination}")

    def discover(self, nodes):
        for observed in self.tracked.values():
            for node in nodes:
                if node in observed:
                    continue
                if observed.destination.contains(node.location):
                    observed.add(node)

    def on_tick(self, now, nodes, messages=None):
        if messages is not None:
            for message in messages:
                if message.expires_at > now:
                    self.open(message)
        self.expire(now)
        self.discover(nodes)

    def observers(self, message_id):
        """Nodes currently recorded for a live message; empty once it expired."""
        observed = self.tracked.get(message_id)
        if observed is None:
            return frozenset()
        return frozenset(observed)

    def final_observers(self, message_id):
        if message_id in self.tracked:
            return tuple(self.tracked[message_id])
        if message_id in self.closed:
            return self.closed[message_id]
        raise KeyError(message_id)

    def delivery_ratio(self, message_id, is_delivered):
        """
        Share of observed nodes holding a confirmed delivery of the message.

        is_delivered(node, message_id) is answered by the routing layer.
        Returns 0.0 when no node was observed.
        """
        observed = self.final_observers(message_id)
        if not observed:
            return 0.0
        delivered = sum(1 for node in observed if is_delivered(node, message_id))
        return delivered / len(observed)

    def aggregate_delivery_probability(self, message_ids, is_delivered):
        ratios = [self.delivery_ratio(message_id, is_delivered) for message_id in message_ids]
        if not ratios:
            return 0.0
        return float(np.mean(ratios))
