# particle.py
"""
Manages the state of all live liquid particles.

This module defines the ParticleSystem class, which stores particle data
(position, velocity, mass, colour, life, sub-kind flags) in preallocated
NumPy arrays sized to a hard capacity. Particles are kept in spawn order,
so index 0 is always the oldest live particle.
"""
import logging
import numpy as np
from typing import Dict, Optional, Tuple

from constants import (
    MAX_PARTICLES, MASS_EPSILON, OUT_OF_BOUNDS_MARGIN, EVICT_OLDEST, EVICT_RANDOM
)

# --- Data Contracts ---
#
# class ParticleSystem:
#   - __init__(self, capacity: int = MAX_PARTICLES):
#     - Side Effects: Allocates one array per field, each of length
#       `capacity`. Only the first `self.count` entries are live.
#
#   - spawn(...) -> int:
#     - Outputs: the new particle's id (monotonic serial).
#     - Side Effects: Evicts one particle first if the store is full.
#     - Invariants: self.count <= self.capacity at all times.
#
#   - evict(self, policy: int, rng) -> None:
#     - EVICT_OLDEST removes index 0, EVICT_RANDOM removes
#       floor(rng.next() * count). Order of survivors is preserved.
#
#   - cull(self, width: int, height: int) -> int:
#     - Removes particles with mass <= MASS_EPSILON or outside the canvas
#       by more than OUT_OF_BOUNDS_MARGIN. Returns how many were removed.

_FIELDS = (
    'ids', 'x', 'y', 'prev_x', 'prev_y', 'vx', 'vy', 'mass', 'initial_mass',
    'life', 'origin_x', 'origin_y', 'color', 'flags'
)


class ParticleSystem:
    """
    A bounded, ordered container for particles backed by NumPy arrays.
    """
    def __init__(self, capacity: int = MAX_PARTICLES):
        """
        Initializes the particle store.

        Args:
            capacity (int): Hard cap on live particles.
        """
        self.capacity = max(1, int(capacity))
        self.count = 0
        self.next_id = 0

        n = self.capacity
        self.ids = np.zeros(n, dtype=np.int64)
        self.x = np.zeros(n, dtype=np.float64)
        self.y = np.zeros(n, dtype=np.float64)
        self.prev_x = np.zeros(n, dtype=np.float64)
        self.prev_y = np.zeros(n, dtype=np.float64)
        self.vx = np.zeros(n, dtype=np.float64)
        self.vy = np.zeros(n, dtype=np.float64)
        self.mass = np.zeros(n, dtype=np.float64)
        self.initial_mass = np.zeros(n, dtype=np.float64)
        self.life = np.zeros(n, dtype=np.float64)
        self.origin_x = np.zeros(n, dtype=np.float64)
        self.origin_y = np.zeros(n, dtype=np.float64)
        self.color = np.zeros((n, 3), dtype=np.uint8)
        self.flags = np.zeros(n, dtype=np.uint8)

        logging.info(f"ParticleSystem initialized with capacity {self.capacity}.")

    def __len__(self) -> int:
        return self.count

    def spawn(self, x: float, y: float, vx: float, vy: float, mass: float,
              initial_mass: float, life: float, color: Tuple[int, int, int],
              flags: int = 0, origin: Optional[Tuple[float, float]] = None,
              policy: int = EVICT_OLDEST, rng=None) -> int:
        """
        Appends one particle, evicting first when the store is full.

        Args:
            origin: Point the particle was emitted from. Defaults to (x, y).
            policy: EVICT_OLDEST or EVICT_RANDOM.
            rng: DeterministicRNG, required for EVICT_RANDOM.

        Returns:
            int: The id of the new particle.
        """
        if self.count >= self.capacity:
            self.evict(policy, rng)

        i = self.count
        self.ids[i] = self.next_id
        self.x[i] = x
        self.y[i] = y
        self.prev_x[i] = x
        self.prev_y[i] = y
        self.vx[i] = vx
        self.vy[i] = vy
        self.mass[i] = max(0.0, mass)
        self.initial_mass[i] = initial_mass
        self.life[i] = life
        if origin is None:
            origin = (x, y)
        self.origin_x[i] = origin[0]
        self.origin_y[i] = origin[1]
        self.color[i] = color
        self.flags[i] = flags

        self.count += 1
        self.next_id += 1
        return int(self.ids[i])

    def evict(self, policy: int, rng=None) -> None:
        """Removes one particle according to the eviction policy."""
        if self.count == 0:
            return
        if policy == EVICT_RANDOM:
            if rng is None:
                raise ValueError("Random eviction requires an rng.")
            index = int(rng.next() * self.count)
        else:
            index = 0
        self.remove(index)

    def remove(self, index: int) -> None:
        """Removes the particle at `index`, shifting newer particles down."""
        n = self.count
        if not 0 <= index < n:
            return
        for name in _FIELDS:
            arr = getattr(self, name)
            arr[index:n - 1] = arr[index + 1:n]
        self.count = n - 1

    def cull(self, width: int, height: int) -> int:
        """
        Removes dead and out-of-bounds particles, preserving order.

        Returns:
            int: Number of particles removed.
        """
        n = self.count
        if n == 0:
            return 0
        x = self.x[:n]
        y = self.y[:n]
        margin = OUT_OF_BOUNDS_MARGIN
        keep = (
            (self.mass[:n] > MASS_EPSILON)
            & (x >= -margin) & (x <= width + margin)
            & (y >= -margin) & (y <= height + margin)
        )
        kept = int(np.count_nonzero(keep))
        if kept == n:
            return 0
        for name in _FIELDS:
            arr = getattr(self, name)
            arr[:kept] = arr[:n][keep]
        self.count = kept
        return n - kept

    def clear(self) -> None:
        """Drops every particle and restarts the id serial."""
        self.count = 0
        self.next_id = 0

    def view(self) -> Dict[str, np.ndarray]:
        """
        Read-only views of the live particles for renderers.

        Keys: ids, x, y, mass (radius-equivalent), color, flags.
        """
        n = self.count
        out = {}
        for name in ('ids', 'x', 'y', 'mass', 'color', 'flags'):
            v = getattr(self, name)[:n].view()
            v.flags.writeable = False
            out[name] = v
        return out
