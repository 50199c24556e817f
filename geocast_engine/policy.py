# geocast_engine/policy.py
"""
EVR forwarding policy.

Before candidates are computed for a node, every message it buffers gets its
stored rate refreshed to the carrier's own visit rate for the destination and
its arrival flag refreshed from the carrier's location.
"""


def update_visit_rates(node, messages, rate_of):
    """Store the carrier's visit rate to each message's destination in message.evr.rate."""
    for message in messages:
        message.evr.rate = rate_of(node, message.destination)


def update_arrival_flags(location, messages):
    """Flag each message whose destination currently contains the carrier."""
    for message in messages:
        message.evr.arrived = message.destination.contains(location)


def direct_candidates(node, messages, connections):
    """Pairs whose peer is inside the message's destination right now."""
    candidates = []
    for message in messages:
        for connection in connections:
            peer = connection.other(node)
            if message.destination.contains(peer.location):
                candidates.append((message, connection))
    return candidates


def relay_candidates(node, messages, connections, rate_of):
    """Pairs whose peer revisits the destination more often than the stored rate."""
    candidates = []
    for message in messages:
        if message.evr.arrived:
            continue
        for connection in connections:
            peer = connection.other(node)
            if message.evr.rate < rate_of(peer, message.destination):
                candidates.append((message, connection))
    return candidates


def forwarding_candidates(node, messages, connections, rate_of):
    """
    Ordered (message, connection) pairs to try from node.

    Direct deliveries into the destination region come first so a guaranteed
    delivery is never starved by a probabilistic relay.
    """
    messages = list(messages)
    connections = list(connections)
    if not messages or not connections:
        return []

    return (direct_candidates(node, messages, connections) +
            relay_candidates(node, messages, connections, rate_of))
