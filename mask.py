# mask.py
"""
Binary permission field restricting where liquid may exist.

The mask keeps a logic field (1 open, 0 blocked) that physics consults and
a separate 8-bit overlay for renderers. Until something is painted or
loaded the mask is inactive, which means everywhere is open.
"""
import logging
import math
import numpy as np
from numba import jit

from constants import MASK_ALPHA_THRESHOLD

# --- Data Contracts ---
#
# class Mask:
#   - __init__(self, width: int, height: int):
#   - paint(self, x, y, radius, erase=False) -> None:
#     - Side Effects: Activates the mask. Every pixel (i, j) with
#       (i - x)^2 + (j - y)^2 <= ceil(radius)^2 is set open (or blocked
#       when erasing) in both the logic field and the overlay.
#   - load_from_raster(self, alpha) -> bool:
#     - Inputs: 2D alpha buffer, or (H, W, C) with alpha last. Any size;
#       resampled to the canvas.
#     - Outputs: True on success. Malformed input clears the mask.
#   - is_open(self, x, y) -> bool:
#     - Inactive mask: always True. Active: out of bounds is blocked.
#   - grid_view(self, grid_width, grid_height, scale) -> np.ndarray:
#     - (GH, GW) uint8, 1 where the cell's sample pixel is open.


@jit(nopython=True)
def is_open_at(logic, active, x, y):
    """Kernel-side mask lookup. Positions off the canvas count as blocked."""
    if not active:
        return True
    ix = int(np.floor(x))
    iy = int(np.floor(y))
    if ix < 0 or iy < 0 or iy >= logic.shape[0] or ix >= logic.shape[1]:
        return False
    return logic[iy, ix] != 0


class Mask:
    """
    Logic field plus visual overlay for one canvas size.
    """
    def __init__(self, width: int, height: int):
        self.width = width
        self.height = height
        self.logic = np.ones((height, width), dtype=np.uint8)
        self.overlay = np.zeros((height, width), dtype=np.uint8)
        self.active = False

    def clear(self) -> None:
        """Deactivates the mask so everything is open again."""
        self.logic.fill(1)
        self.overlay.fill(0)
        self.active = False

    def resize(self, width: int, height: int) -> None:
        self.width = width
        self.height = height
        self.logic = np.ones((height, width), dtype=np.uint8)
        self.overlay = np.zeros((height, width), dtype=np.uint8)
        self.active = False

    def _activate(self) -> None:
        if not self.active:
            # Painting starts from a fully blocked canvas.
            self.logic.fill(0)
            self.overlay.fill(0)
            self.active = True

    def paint(self, x: float, y: float, radius: float, erase: bool = False) -> None:
        """
        Opens (or blocks, when erasing) a disc of pixels.

        Args:
            x (float): Centre x in canvas pixels.
            y (float): Centre y in canvas pixels.
            radius (float): Brush radius. Negative radii paint nothing.
            erase (bool): Block instead of open.
        """
        self._activate()
        r = int(math.ceil(max(0.0, float(radius))))
        min_x = max(0, int(math.floor(x - r)))
        max_x = min(self.width, int(math.ceil(x + r)) + 1)
        min_y = max(0, int(math.floor(y - r)))
        max_y = min(self.height, int(math.ceil(y + r)) + 1)
        if min_x >= max_x or min_y >= max_y:
            return

        jj, ii = np.mgrid[min_y:max_y, min_x:max_x]
        inside = (ii - x) ** 2 + (jj - y) ** 2 <= r * r
        value = 0 if erase else 1
        self.logic[min_y:max_y, min_x:max_x][inside] = value
        self.overlay[min_y:max_y, min_x:max_x][inside] = value * 255

    def load_from_raster(self, alpha) -> bool:
        """
        Populates the mask from a decoded image's alpha channel.

        Pixels with alpha above MASK_ALPHA_THRESHOLD are open. Buffers that
        cannot be interpreted leave the mask cleared.
        """
        try:
            data = np.asarray(alpha)
            if data.ndim == 3:
                data = data[..., -1]
            if data.ndim != 2 or data.size == 0:
                raise ValueError(f"expected a 2D alpha buffer, got shape {data.shape}")
            if data.dtype == np.bool_:
                data = data.astype(np.uint8) * 255
            if not np.issubdtype(data.dtype, np.number):
                raise ValueError(f"non-numeric dtype {data.dtype}")
            data = data.astype(np.float64)
        except (TypeError, ValueError) as e:
            logging.warning(f"Mask raster rejected ({e}). Continuing without a mask.")
            self.clear()
            return False

        src_h, src_w = data.shape
        ys = (np.arange(self.height) * src_h) // self.height
        xs = (np.arange(self.width) * src_w) // self.width
        sampled = data[ys][:, xs]

        self.logic = (sampled > MASK_ALPHA_THRESHOLD).astype(np.uint8)
        self.overlay = np.clip(sampled, 0, 255).astype(np.uint8)
        self.active = True
        logging.info(
            f"Mask loaded from {src_w}x{src_h} raster; "
            f"{int(self.logic.sum())} of {self.logic.size} pixels open."
        )
        return True

    def is_open(self, x: float, y: float) -> bool:
        return bool(is_open_at(self.logic, self.active, float(x), float(y)))

    def grid_view(self, grid_width: int, grid_height: int, scale: float) -> np.ndarray:
        """
        Per-cell openness for the height field, sampled at each cell's origin.
        """
        if not self.active:
            return np.ones((grid_height, grid_width), dtype=np.uint8)
        ys = np.minimum((np.arange(grid_height) / scale).astype(np.int64), self.height - 1)
        xs = np.minimum((np.arange(grid_width) / scale).astype(np.int64), self.width - 1)
        return np.ascontiguousarray(self.logic[ys][:, xs])

    def overlay_view(self) -> np.ndarray:
        v = self.overlay.view()
        v.flags.writeable = False
        return v
