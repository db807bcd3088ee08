# noise.py
"""
Deterministic random numbers and coherent noise.

Everything stochastic in the simulator draws from here. The generator
keeps its whole state in a one-element int64 NumPy array, so the same
stream is consumed whether a draw happens in Python (spawning) or inside
a Numba kernel (integration). Noise is a pure function of the sample
position and the run's noise offset.
"""
import logging
import numpy as np
from numba import jit

from constants import DEFAULT_SEED, NOISE_OFFSET_RANGE

# --- Data Contracts ---
#
# class DeterministicRNG:
#   - __init__(self, seed: int):
#   - next(self) -> float:
#     - Outputs: float in [0, 1).
#     - Invariants: Same seed and same call sequence produce the same
#       stream; reseed() restarts it.
#   - state: np.ndarray, shape (1,), dtype int64. Shared with kernels.
#
# noise(x, y, offset) -> float in [0, 1)
# fbm(x, y, octaves, offset, pooling_randomness) -> float, roughly [-1, 1]
#   - Pure functions of their arguments.

MASK32 = 0xFFFFFFFF


@jit(nopython=True)
def imul32(a, b):
    """32-bit wrapping multiply of two unsigned 32-bit ints without int64 overflow."""
    low = a * (b & 0xFFFF)
    high = ((a * (b >> 16)) & 0xFFFF) << 16
    return (low + high) & 0xFFFFFFFF


@jit(nopython=True)
def rng_next(state):
    """Advances the generator state in place and returns a float in [0, 1)."""
    state[0] = (state[0] + 0x6D2B79F5) & 0xFFFFFFFF
    t = state[0]
    t = imul32(t ^ (t >> 15), t | 1)
    t = (t ^ (t + imul32(t ^ (t >> 7), t | 61))) & 0xFFFFFFFF
    t = (t ^ (t >> 14)) & 0xFFFFFFFF
    return t / 4294967296.0


@jit(nopython=True)
def _lattice(ix, iy, offset):
    h = (ix * 374761393 + iy * 668265263 + (offset & 0xFFFFFF) * 1442695041) & 0xFFFFFFFF
    h = imul32(h ^ (h >> 13), 1274126177)
    h = (h ^ (h >> 16)) & 0xFFFFFFFF
    return h / 4294967296.0


@jit(nopython=True)
def noise(x, y, offset):
    """
    Coherent 2D value noise in [0, 1).

    Lattice values come from an integer hash of the cell corner and the
    noise offset, blended with a smoothstep fade.
    """
    x0 = np.floor(x)
    y0 = np.floor(y)
    fx = x - x0
    fy = y - y0
    ix = np.int64(x0)
    iy = np.int64(y0)

    u = fx * fx * (3.0 - 2.0 * fx)
    v = fy * fy * (3.0 - 2.0 * fy)

    a = _lattice(ix, iy, offset)
    b = _lattice(ix + 1, iy, offset)
    c = _lattice(ix, iy + 1, offset)
    d = _lattice(ix + 1, iy + 1, offset)

    top = a + (b - a) * u
    bottom = c + (d - c) * u
    return top + (bottom - top) * v


@jit(nopython=True)
def fbm(x, y, octaves, offset, pooling_randomness):
    """
    Fractal sum of signed value noise, roughly in [-1, 1].

    Higher pooling randomness raises the lacunarity, which breaks up
    large smooth lobes into finer detail.
    """
    px = x + 0.0
    py = y + 0.0
    total = 0.0
    amplitude = 0.5
    frequency = 0.02
    lacunarity = 2.0 * (1.0 + pooling_randomness * 2.0)
    for _ in range(octaves):
        total += (noise(px * frequency, py * frequency, offset) * 2.0 - 1.0) * amplitude
        amplitude *= 0.5
        frequency *= lacunarity
        px += 100.0
        py += 100.0
    return total


def draw_noise_offset() -> int:
    """Draws a fresh noise offset from OS entropy for visual variety across runs."""
    return int(np.random.default_rng().integers(0, NOISE_OFFSET_RANGE))


class DeterministicRNG:
    """
    Seedable scalar generator whose state can be handed to Numba kernels.
    """
    def __init__(self, seed: int = DEFAULT_SEED):
        self.state = np.zeros(1, dtype=np.int64)
        self.reseed(seed)

    def reseed(self, seed: int) -> None:
        """Restarts the stream from `seed`."""
        self.seed = int(seed)
        self.state[0] = self.seed & MASK32
        logging.debug(f"RNG reseeded with {self.seed}.")

    def next(self) -> float:
        """Returns the next float in [0, 1)."""
        return rng_next(self.state)

    def snapshot(self) -> int:
        """Raw generator state, for trajectory comparisons."""
        return int(self.state[0])
