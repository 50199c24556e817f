# geocast_engine/geo_models.py

from dataclasses import dataclass

import numpy as np


def _on_segment(px, py, a, b, eps=1e-9):
    (ax, ay), (bx, by) = a, b
    cross = (bx - ax) * (py - ay) - (by - ay) * (px - ax)
    if abs(cross) > eps:
        return False
    return (min(ax, bx) - eps <= px <= max(ax, bx) + eps and
            min(ay, by) - eps <= py <= max(ay, by) + eps)


@dataclass(frozen=True)
class GeoRegion:
    """
    A named geographic area ("cast") addressed by geocast messages.

    The geometry is a simple polygon; points on its boundary count as inside.
    """
    region_id: str
    vertices: tuple
    name: str = ''

    def __post_init__(self):
        vertices = tuple((float(x), float(y)) for x, y in self.vertices)
        if len(vertices) < 3:
            raise ValueError(f"Region {self.region_id!r} needs at least 3 vertices, got {len(vertices)}")
        object.__setattr__(self, 'vertices', vertices)
        if not self.name:
            object.__setattr__(self, 'name', str(self.region_id))

    @classmethod
    def rectangle(cls, region_id, x0, y0, x1, y1, name=''):
        """Axis-aligned box spanning [x0, x1] x [y0, y1]."""
        xmin, xmax = sorted((x0, x1))
        ymin, ymax = sorted((y0, y1))
        return cls(region_id, ((xmin, ymin), (xmax, ymin), (xmax, ymax), (xmin, ymax)), name)

    @property
    def bounds(self):
        xs = [x for x, _ in self.vertices]
        ys = [y for _, y in self.vertices]
        return min(xs), min(ys), max(xs), max(ys)

    def contains(self, point):
        px, py = float(point[0]), float(point[1])
        xmin, ymin, xmax, ymax = self.bounds
        if px < xmin or px > xmax or py < ymin or py > ymax:
            return False

        n = len(self.vertices)
        inside = False
        j = n - 1
        for i in range(n):
            vi, vj = self.vertices[i], self.vertices[j]
            if _on_segment(px, py, vi, vj):
                return True
            if (vi[1] > py) != (vj[1] > py):
                x_cross = (vj[0] - vi[0]) * (py - vi[1]) / (vj[1] - vi[1]) + vi[0]
                if px < x_cross:
                    inside = not inside
            j = i
        return inside

    def __str__(self):
        return self.name


def grid_regions(area_size, cols, rows):
    """Split the simulation area into cols x rows rectangular cells."""
    width, height = area_size
    cell_w, cell_h = width / cols, height / rows
    regions = []
    for row in range(rows):
        for col in range(cols):
            regions.append(GeoRegion.rectangle(
                f"cell-{col}-{row}",
                col * cell_w, row * cell_h,
                (col + 1) * cell_w, (row + 1) * cell_h,
            ))
    return regions


@dataclass
class EvrState:
    """Per-message EVR router state: carrier's visit rate and in-cast flag."""
    rate: float = 0.0
    arrived: bool = False


class GeoMessage:
    def __init__(self, message_id, origin_id, destination, creation_time, ttl,
                 size=512, response_to=None, response_size=0):
        if ttl <= 0:
            raise ValueError(f"Message {message_id} needs a positive ttl, got {ttl}")
        self.message_id = message_id
        self.origin_id = origin_id
        self.destination = destination
        self.creation_time = creation_time
        self.ttl = ttl
        self.size = size
        self.response_to = response_to
        self.response_size = response_size
        self.hops = [origin_id]
        self.receive_time = creation_time
        self.evr = EvrState()

    @property
    def expires_at(self):
        return self.creation_time + self.ttl

    @property
    def hop_count(self):
        return len(self.hops) - 1

    @property
    def requests_response(self):
        return self.response_size > 0

    def is_expired(self, now):
        return self.expires_at <= now

    def replicate(self):
        """Independent copy; the destination region is shared."""
        copy = GeoMessage(self.message_id, self.origin_id, self.destination,
                          self.creation_time, self.ttl, size=self.size,
                          response_to=self.response_to, response_size=self.response_size)
        copy.hops = list(self.hops)
        copy.receive_time = self.receive_time
        copy.evr = EvrState(self.evr.rate, self.evr.arrived)
        return copy

    def __repr__(self):
        return self.message_id


class Connection:
    """Undirected link between two nodes that are within range of each other."""

    def __init__(self, node_a, node_b, transmit_speed):
        if transmit_speed <= 0:
            raise ValueError(f"transmit_speed must be positive, got {transmit_speed}")
        self.node_a = node_a
        self.node_b = node_b
        self.transmit_speed = transmit_speed
        self.is_up = True

    def other(self, node):
        if node is self.node_a:
            return self.node_b
        if node is self.node_b:
            return self.node_a
        raise KeyError(f"{node} is not an end of connection {self}")

    @property
    def key(self):
        return tuple(sorted((self.node_a.id, self.node_b.id)))

    def __repr__(self):
        return f"Connection({self.node_a}<->{self.node_b})"


@dataclass
class Transfer:
    """A message copy in flight over a connection."""
    message: GeoMessage
    sender: object
    receiver: object
    connection: Connection
    done_at: float


class GeoNode:
    def __init__(self, id, position, area_size, speed=5, pause_time=5, tx_range=50,
                 rng=None):
        self.id = id
        self.position = np.array(position, dtype=float)
        self.area_size = area_size
        self.speed = speed
        self.pause_time = pause_time
        self.tx_range = tx_range
        self.rng = rng if rng is not None else np.random.default_rng()
        self.direction = self._random_direction()
        self.simulator = None

    def _random_direction(self):
        direction = self.rng.uniform(-1, 1, size=2)
        norm = np.linalg.norm(direction)
        if norm > 0:
            direction /= norm
        return direction

    @property
    def location(self):
        return float(self.position[0]), float(self.position[1])

    def move(self, env, step=1.0):
        """SimPy process: random-direction movement with boundary bounce and pauses."""
        while True:
            if self.simulator is not None and self.simulator.stop_flag:
                return

            self.direction = self._random_direction()
            move_duration = self.pause_time
            start_time = env.now

            while env.now - start_time < move_duration:
                if self.simulator is not None and self.simulator.stop_flag:
                    return

                self.position += self.direction * self.speed * step

                # Boundary bounce
                for i in range(2):
                    if self.position[i] < 0:
                        self.position[i] = 0
                        self.direction[i] = abs(self.direction[i])
                    elif self.position[i] > self.area_size[i]:
                        self.position[i] = self.area_size[i]
                        self.direction[i] = -abs(self.direction[i])

                yield env.timeout(step)

            yield env.timeout(self.pause_time)

    def __repr__(self):
        return f"Node({self.id})"
