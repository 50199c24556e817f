# geocast_engine/reports.py
import logging
import math

import numpy as np
import pandas as pd


class ReportListener:
    """No-op base for objects notified by the routing layer."""

    def hosts_connected(self, node_a, node_b):
        pass

    def hosts_disconnected(self, node_a, node_b):
        pass

    def new_message(self, message):
        pass

    def transfer_started(self, message, sender, receiver):
        pass

    def transfer_aborted(self, message, sender, receiver):
        pass

    def message_transferred(self, message, sender, receiver, first_delivery):
        pass

    def message_dropped(self, message, node):
        pass


def _average(values):
    if not values:
        return math.nan
    return float(np.mean(values))


def _median(values, empty=math.nan):
    if not values:
        return empty
    return float(np.median(values))


class GeoStatsReport(ReportListener):
    """
    Geocast message statistics for one run.

    Messages created during the warm-up period or the cool-down period at the
    end of the run are ignored, including every later event about them.
    """

    def __init__(self, env, discovery, is_delivered, warmup=0.0, cooldown=0.0, sim_time=None):
        self.env = env
        self.discovery = discovery
        self.is_delivered = is_delivered
        self.warmup = warmup
        self.cooldown = cooldown
        self.sim_time = sim_time

        self.ignored_ids = set()
        self.creation_times = {}
        self.created_messages = []
        self.latencies = []
        self.hop_counts = []
        self.buffer_times = []
        self.rtt = []  # round trip times

        self.nrof_created = 0
        self.nrof_started = 0
        self.nrof_relayed = 0
        self.nrof_aborted = 0
        self.nrof_dropped = 0
        self.nrof_delivered = 0
        self.nrof_response_req_created = 0
        self.nrof_response_delivered = 0

    def is_warmup(self):
        return self.env.now < self.warmup

    def is_cooldown(self):
        if self.sim_time is None or self.cooldown <= 0:
            return False
        return self.env.now > self.sim_time - self.cooldown

    def _ignored(self, message):
        return message.message_id in self.ignored_ids

    def new_message(self, message):
        if self.is_warmup() or self.is_cooldown():
            self.ignored_ids.add(message.message_id)
            return

        self.creation_times[message.message_id] = self.env.now
        self.created_messages.append(message.replicate())
        self.nrof_created += 1
        if message.requests_response:
            self.nrof_response_req_created += 1

    def transfer_started(self, message, sender, receiver):
        if not self._ignored(message):
            self.nrof_started += 1

    def transfer_aborted(self, message, sender, receiver):
        if not self._ignored(message):
            self.nrof_aborted += 1

    def message_dropped(self, message, node):
        if self._ignored(message):
            return
        self.nrof_dropped += 1
        self.buffer_times.append(self.env.now - message.receive_time)

    def message_transferred(self, message, sender, receiver, first_delivery):
        if self._ignored(message):
            return

        self.nrof_relayed += 1
        if first_delivery:
            self.latencies.append(self.env.now - self.creation_times[message.message_id])
            self.nrof_delivered += 1
            self.hop_counts.append(message.hop_count)
            if message.response_to is not None:
                self.rtt.append(self.env.now - message.response_to.creation_time)
                self.nrof_response_delivered += 1

    def delivery_probability(self):
        """Mean per-message delivery ratio over the messages created in the window."""
        return self.discovery.aggregate_delivery_probability(
            [m.message_id for m in self.created_messages], self.is_delivered)

    def overhead_ratio(self):
        if self.nrof_delivered == 0:
            return math.nan
        return (self.nrof_relayed - self.nrof_delivered) / self.nrof_delivered

    def response_probability(self):
        """Share of response-requesting messages whose response was delivered."""
        if self.nrof_response_req_created == 0:
            return 0.0
        return self.nrof_response_delivered / self.nrof_response_req_created

    def summary(self):
        return {
            'sim_time': self.env.now,
            'created': self.nrof_created,
            'started': self.nrof_started,
            'relayed': self.nrof_relayed,
            'aborted': self.nrof_aborted,
            'dropped': self.nrof_dropped,
            'delivered': self.nrof_delivered,
            'delivery_prob': self.delivery_probability(),
            'response_prob': self.response_probability(),
            'overhead_ratio': self.overhead_ratio(),
            'latency_avg': _average(self.latencies),
            'latency_med': _median(self.latencies),
            'hopcount_avg': _average(self.hop_counts),
            'hopcount_med': _median(self.hop_counts, empty=0),
            'buffertime_avg': _average(self.buffer_times),
            'buffertime_med': _median(self.buffer_times),
            'rtt_avg': _average(self.rtt),
            'rtt_med': _median(self.rtt),
        }

    def message_table(self):
        """One row per counted message with the nodes that reached its destination."""
        rows = []
        for message in self.created_messages:
            observed = self.discovery.final_observers(message.message_id)
            delivered = [node for node in observed if self.is_delivered(node, message.message_id)]
            rows.append({
                'message_id': message.message_id,
                'destination': str(message.destination),
                'created': message.creation_time,
                'expires_at': message.expires_at,
                'observed': len(observed),
                'delivered': len(delivered),
                'delivery_ratio': self.discovery.delivery_ratio(message.message_id, self.is_delivered),
                'observers': ' '.join(str(node.id) for node in observed),
            })
        columns = ['message_id', 'destination', 'created', 'expires_at', 'observed',
                   'delivered', 'delivery_ratio', 'observers']
        return pd.DataFrame(rows, columns=columns)


class GeoEventLog(ReportListener):
    """
    Event log in the standard external-events line format:
    ``<time> <action> [host1] [host2] [message] [extra]``.

    Delivered events carry D (first delivery), A (delivered again inside the
    destination) or R (plain relay).
    """

    CONNECTION = 'CONN'
    CONNECTION_UP = 'up'
    CONNECTION_DOWN = 'down'
    CREATE = 'C'
    SEND = 'S'
    ABORT = 'A'
    DELIVERED = 'DE'
    DROP = 'DR'

    MESSAGE_TRANS_RELAYED = 'R'
    MESSAGE_TRANS_DELIVERED = 'D'
    MESSAGE_TRANS_DELIVERED_AGAIN = 'A'

    def __init__(self, env, logger_name='geocast_engine.events'):
        self.env = env
        self.logger = logging.getLogger(logger_name)
        self.lines = []

    def _process_event(self, action, host1=None, host2=None, message=None, extra=None):
        parts = [f"{self.env.now:.2f}", action]
        parts += [str(part) for part in (host1, host2, message, extra) if part is not None]
        line = ' '.join(parts)
        self.lines.append(line)
        self.logger.info(line)

    def hosts_connected(self, node_a, node_b):
        self._process_event(self.CONNECTION, node_a.id, node_b.id, extra=self.CONNECTION_UP)

    def hosts_disconnected(self, node_a, node_b):
        self._process_event(self.CONNECTION, node_a.id, node_b.id, extra=self.CONNECTION_DOWN)

    def new_message(self, message):
        self._process_event(self.CREATE, message.origin_id, message=message)

    def transfer_started(self, message, sender, receiver):
        self._process_event(self.SEND, sender.id, receiver.id, message)

    def transfer_aborted(self, message, sender, receiver):
        self._process_event(self.ABORT, sender.id, receiver.id, message)

    def message_dropped(self, message, node):
        self._process_event(self.DROP, node.id, message=message)

    def message_transferred(self, message, sender, receiver, first_delivery):
        if first_delivery:
            extra = self.MESSAGE_TRANS_DELIVERED
        elif message.destination.contains(receiver.location):
            extra = self.MESSAGE_TRANS_DELIVERED_AGAIN
        else:
            extra = self.MESSAGE_TRANS_RELAYED
        self._process_event(self.DELIVERED, sender.id, receiver.id, message, extra)

    def save(self, path):
        with open(path, 'w') as f:
            f.write('\n'.join(self.lines))
            if self.lines:
                f.write('\n')
