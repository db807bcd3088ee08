# surface.py
"""
Persistent raster outputs of the particle modes.

The Surface owns the accumulation buffer (premultiplied RGBA the liquid
paints into) and the wetness buffer (per-pixel saturation bytes). The
physics never writes pixels directly: integration kernels append stamp
records to a StampBuffer, and composite() applies them afterwards in
record order.
"""
import logging
import numpy as np
from numba import jit

# --- Data Contracts ---
#
# Stamp record (one row of StampBuffer.data, float64):
#   [x0, y0, x1, y1, radius, r, g, b, alpha]
#   - A capsule from (x0, y0) to (x1, y1); a disc when both ends match.
#   - r, g, b in 0..255, alpha in 0..1.
#
# class Surface:
#   - pixels: np.ndarray (H, W, 4) float32, premultiplied, values 0..1.
#   - wetness: np.ndarray (H, W) uint8.
#   - composite(stamps: StampBuffer) -> None: source-over, append-only.
#   - resize(width, height) -> None: pixels stretched nearest-neighbour,
#     wetness reallocated and zeroed.

STAMP_FIELDS = 9


@jit(nopython=True)
def _composite_stamps(pixels, stamps, count):
    height = pixels.shape[0]
    width = pixels.shape[1]
    for s in range(count):
        x0 = stamps[s, 0]
        y0 = stamps[s, 1]
        x1 = stamps[s, 2]
        y1 = stamps[s, 3]
        radius = stamps[s, 4]
        alpha = stamps[s, 8]
        if radius <= 0.0 or alpha <= 0.0:
            continue
        if alpha > 1.0:
            alpha = 1.0
        cr = stamps[s, 5] / 255.0 * alpha
        cg = stamps[s, 6] / 255.0 * alpha
        cb = stamps[s, 7] / 255.0 * alpha
        keep = 1.0 - alpha

        min_x = max(0, int(np.floor(min(x0, x1) - radius)))
        max_x = min(width - 1, int(np.ceil(max(x0, x1) + radius)))
        min_y = max(0, int(np.floor(min(y0, y1) - radius)))
        max_y = min(height - 1, int(np.ceil(max(y0, y1) + radius)))

        dx = x1 - x0
        dy = y1 - y0
        length_sq = dx * dx + dy * dy
        radius_sq = radius * radius

        for j in range(min_y, max_y + 1):
            py = j + 0.5
            for i in range(min_x, max_x + 1):
                px = i + 0.5
                t = 0.0
                if length_sq > 0.0:
                    t = ((px - x0) * dx + (py - y0) * dy) / length_sq
                    if t < 0.0:
                        t = 0.0
                    elif t > 1.0:
                        t = 1.0
                qx = x0 + t * dx - px
                qy = y0 + t * dy - py
                if qx * qx + qy * qy <= radius_sq:
                    pixels[j, i, 0] = cr + pixels[j, i, 0] * keep
                    pixels[j, i, 1] = cg + pixels[j, i, 1] * keep
                    pixels[j, i, 2] = cb + pixels[j, i, 2] * keep
                    pixels[j, i, 3] = alpha + pixels[j, i, 3] * keep


class StampBuffer:
    """
    Growable queue of stamp records produced during a sub-step.
    """
    def __init__(self, initial_capacity: int = 1024):
        self.data = np.zeros((max(1, initial_capacity), STAMP_FIELDS), dtype=np.float64)
        self.count = 0

    def reserve(self, extra: int) -> None:
        """Guarantees room for `extra` more records."""
        needed = self.count + extra
        if needed > self.data.shape[0]:
            size = self.data.shape[0]
            while size < needed:
                size *= 2
            grown = np.zeros((size, STAMP_FIELDS), dtype=np.float64)
            grown[:self.count] = self.data[:self.count]
            self.data = grown

    def push(self, x0, y0, x1, y1, radius, color, alpha) -> None:
        self.reserve(1)
        self.data[self.count] = (x0, y0, x1, y1, radius, color[0], color[1], color[2], alpha)
        self.count += 1

    def disc(self, x, y, radius, color, alpha=1.0) -> None:
        self.push(x, y, x, y, radius, color, alpha)

    def clear(self) -> None:
        self.count = 0


class Surface:
    """
    Accumulation and wetness rasters for one canvas size.
    """
    def __init__(self, width: int, height: int):
        self.width = width
        self.height = height
        self.pixels = np.zeros((height, width, 4), dtype=np.float32)
        self.wetness = np.zeros((height, width), dtype=np.uint8)
        logging.debug(f"Surface buffers allocated at {width}x{height}.")

    def composite(self, stamps: StampBuffer) -> None:
        """Applies and drains every queued stamp in order."""
        if stamps.count:
            _composite_stamps(self.pixels, stamps.data, stamps.count)
        stamps.clear()

    def clear(self) -> None:
        self.pixels.fill(0.0)
        self.wetness.fill(0)

    def resize(self, width: int, height: int) -> None:
        """
        Reallocates both buffers, stretching the existing paint to fit.
        """
        old_h, old_w = self.pixels.shape[:2]
        ys = (np.arange(height) * old_h) // height
        xs = (np.arange(width) * old_w) // width
        self.pixels = np.ascontiguousarray(self.pixels[ys][:, xs])
        self.wetness = np.zeros((height, width), dtype=np.uint8)
        self.width = width
        self.height = height
        logging.debug(f"Surface resampled from {old_w}x{old_h} to {width}x{height}.")

    def to_rgba(self, opacity: float = 1.0) -> np.ndarray:
        """
        Straight-alpha 8-bit RGBA copy of the accumulation buffer.

        Args:
            opacity (float): Global liquid opacity applied to alpha.
        """
        alpha = self.pixels[..., 3]
        rgb = np.zeros(self.pixels.shape[:2] + (3,), dtype=np.float32)
        painted = alpha > 0.0
        rgb[painted] = self.pixels[..., :3][painted] / alpha[painted, np.newaxis]
        out = np.empty(self.pixels.shape, dtype=np.uint8)
        out[..., :3] = np.clip(rgb * 255.0, 0, 255).astype(np.uint8)
        out[..., 3] = np.clip(alpha * opacity * 255.0, 0, 255).astype(np.uint8)
        return out

    def composite_over(self, background, opacity: float = 1.0) -> np.ndarray:
        """
        Flattens the buffer over a solid background colour.

        Returns:
            np.ndarray: (H, W, 3) uint8.
        """
        bg = np.asarray(background, dtype=np.float32) / 255.0
        alpha = self.pixels[..., 3:4] * opacity
        rgb = self.pixels[..., :3] * opacity + bg * (1.0 - alpha)
        return np.clip(rgb * 255.0, 0, 255).astype(np.uint8)
