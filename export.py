# export.py
"""
Offline rendering of the canvas: colour textures, depth maps and
flipbook sprite sheets.

The flipbook replays an EventLog into a fresh engine, captures evenly
spaced frames and tiles them into a square grid. Images are returned as
RGBA arrays; writing them to disk is left to the caller (main.py and the
viewer use pygame for that).
"""
import logging
import math
import numpy as np
from numba import jit
from typing import Dict, Tuple

from event_log import EventLog
from replay import Replayer
from surface import Surface, StampBuffer
from constants import FIXED_STEP, PARTICLE_DRAW_ALPHA, MODE_FLOOR, MODE_ONE_CLICK

# --- Data Contracts ---
#
# render_frame(sim, include_particles=True) -> np.ndarray
#   - (H, W, 4) uint8 straight-alpha RGBA of the canvas. Grid modes render
#     the height field; particle modes render the surface with the live
#     particles on top.
#
# render_depth(sim, resolution, transparent=False) -> np.ndarray
#   - (resolution, resolution, 4) uint8 grayscale height map. Grid modes
#     map depth 0..1 to black..white over an opaque frame. Particle modes
#     use the brightened surface luminance plus a radial white falloff per
#     particle; `transparent` keeps the uncovered background at alpha 0.
#
# export_texture(sim, resolution, include_depth=True) -> Dict[str, np.ndarray]
#   - 'texture' and optionally 'depth', both (resolution, resolution, 4).
#     Pooling modes leave the live particles out of the texture.
#
# generate_flipbook(log, duration, frame_count, frame_size) -> np.ndarray
#   - (rows * frame_size, cols * frame_size, 4) uint8, cols = rows =
#     ceil(sqrt(frame_count)); frame k sits at row k // cols, column k % cols.

# Rec. 709 luma weights.
LUMA = (0.2126, 0.7152, 0.0722)
DEPTH_SURFACE_GAIN = 2.0


@jit(nopython=True)
def _splat_radial(layer, xs, ys, radii, count):
    """Source-over white discs whose alpha falls from 1 at the centre to 0 at the rim."""
    height = layer.shape[0]
    width = layer.shape[1]
    for k in range(count):
        r = radii[k]
        if r <= 0.0:
            continue
        cx = xs[k]
        cy = ys[k]
        min_x = max(0, int(np.floor(cx - r)))
        max_x = min(width - 1, int(np.ceil(cx + r)))
        min_y = max(0, int(np.floor(cy - r)))
        max_y = min(height - 1, int(np.ceil(cy + r)))
        for j in range(min_y, max_y + 1):
            dy = j + 0.5 - cy
            for i in range(min_x, max_x + 1):
                dx = i + 0.5 - cx
                d = math.sqrt(dx * dx + dy * dy)
                if d < r:
                    a = 1.0 - d / r
                    layer[j, i, 0] = a + layer[j, i, 0] * (1.0 - a)
                    layer[j, i, 1] = a + layer[j, i, 1] * (1.0 - a)


def _canvas_heights(sim) -> np.ndarray:
    """Height field upsampled nearest-neighbour to canvas pixels."""
    heights = np.asarray(sim.height_view(), dtype=np.float32)
    gh, gw = heights.shape
    ys = np.minimum((np.arange(sim.height) * sim.field.scale).astype(np.int64), gh - 1)
    xs = np.minimum((np.arange(sim.width) * sim.field.scale).astype(np.int64), gw - 1)
    return heights[ys][:, xs]


def render_height_field(sim) -> np.ndarray:
    """Colours the height field: depth drives alpha, deep cells darken."""
    h = _canvas_heights(sim)
    coverage = np.clip(h, 0.0, 1.0)
    shade = 1.0 - 0.4 * np.clip((h - 1.0) / 2.0, 0.0, 1.0)
    rgb = np.asarray(sim.color_rgb, dtype=np.float32)

    out = np.zeros((sim.height, sim.width, 4), dtype=np.uint8)
    out[..., :3] = np.clip(rgb * shade[..., np.newaxis], 0, 255).astype(np.uint8)
    out[..., 3] = np.clip(coverage * sim.params['opacity'] * 255.0, 0, 255).astype(np.uint8)
    return out


def render_frame(sim, include_particles: bool = True) -> np.ndarray:
    """
    Renders the engine's current canvas to RGBA.

    Args:
        sim (Simulation): The engine to capture.
        include_particles (bool): Draw live particles over the surface.

    Returns:
        np.ndarray: (H, W, 4) uint8.
    """
    if sim.mode.uses_grid:
        return render_height_field(sim)
    if not include_particles or len(sim.particles) == 0:
        return sim.surface.to_rgba(sim.params['opacity'])

    canvas = Surface(sim.width, sim.height)
    canvas.pixels[...] = sim.surface.pixels
    stamps = StampBuffer(len(sim.particles))
    view = sim.particle_view()
    for x, y, mass, color in zip(view['x'], view['y'], view['mass'], view['color']):
        stamps.disc(float(x), float(y), float(mass), color, PARTICLE_DRAW_ALPHA / 255.0)
    canvas.composite(stamps)
    return canvas.to_rgba(sim.params['opacity'])


def scale_nearest(image: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
    """Nearest-neighbour resample of an (H, W, C) image to (width, height)."""
    width, height = size
    src_h, src_w = image.shape[:2]
    ys = (np.arange(height) * src_h) // height
    xs = (np.arange(width) * src_w) // width
    return image[ys][:, xs]


def render_depth(sim, resolution: int, transparent: bool = False) -> np.ndarray:
    """
    Renders a grayscale depth map of the current canvas.

    Args:
        sim (Simulation): The engine to capture.
        resolution (int): Edge length of the square output in pixels.
        transparent (bool): Leave uncovered pixels at alpha 0 instead of
            filling them black. Grid modes are always opaque.

    Returns:
        np.ndarray: (resolution, resolution, 4) uint8.
    """
    resolution = max(1, int(resolution))
    out = np.zeros((sim.height, sim.width, 4), dtype=np.uint8)

    if sim.mode.uses_grid:
        gray = np.clip(np.floor(_canvas_heights(sim) * 255.0), 0, 255).astype(np.uint8)
        out[..., :3] = gray[..., np.newaxis]
        out[..., 3] = 255
        return scale_nearest(out, (resolution, resolution))

    # Premultiplied gray and alpha.
    pixels = sim.surface.pixels
    layer = np.zeros((sim.height, sim.width, 2), dtype=np.float64)
    alpha = pixels[..., 3].astype(np.float64)
    luma = pixels[..., 0] * LUMA[0] + pixels[..., 1] * LUMA[1] + pixels[..., 2] * LUMA[2]
    layer[..., 0] = np.minimum(luma * DEPTH_SURFACE_GAIN, alpha)
    layer[..., 1] = alpha

    view = sim.particle_view()
    _splat_radial(
        layer,
        np.ascontiguousarray(view['x'], dtype=np.float64),
        np.ascontiguousarray(view['y'], dtype=np.float64),
        np.ascontiguousarray(view['mass'], dtype=np.float64),
        len(sim.particles)
    )

    if transparent:
        coverage = layer[..., 1]
        gray = np.divide(layer[..., 0], coverage, out=np.zeros_like(coverage), where=coverage > 0.0)
        out[..., 3] = np.clip(coverage * 255.0, 0, 255).astype(np.uint8)
    else:
        gray = layer[..., 0]
        out[..., 3] = 255
    out[..., :3] = np.clip(gray * 255.0, 0, 255).astype(np.uint8)[..., np.newaxis]
    return scale_nearest(out, (resolution, resolution))


def export_texture(sim, resolution: int, include_depth: bool = True) -> Dict[str, np.ndarray]:
    """
    Renders the current canvas at a chosen square resolution.

    Pooling modes show what the liquid leaves behind, so their live
    particles are left out of the colour texture.

    Returns:
        Dict[str, np.ndarray]: 'texture', plus 'depth' when requested.
    """
    resolution = max(1, int(resolution))
    pooling = sim.mode.name in (MODE_FLOOR, MODE_ONE_CLICK)
    frame = render_frame(sim, include_particles=not pooling)
    images = {'texture': scale_nearest(frame, (resolution, resolution))}
    if include_depth:
        images['depth'] = render_depth(sim, resolution)
    logging.info(f"Texture export rendered at {resolution}px (depth: {include_depth}).")
    return images


def generate_flipbook(log: EventLog, duration: float, frame_count: int,
                      frame_size: int, step: float = FIXED_STEP) -> np.ndarray:
    """
    Replays `log` and tiles `frame_count` captures into a sprite sheet.

    Args:
        log (EventLog): The recorded run.
        duration (float): Seconds covered by the flipbook.
        frame_count (int): Number of frames.
        frame_size (int): Edge length of each square frame in pixels.
        step (float): Fixed replay step.

    Returns:
        np.ndarray: The RGBA sheet.
    """
    frame_count = max(1, int(frame_count))
    frame_size = max(1, int(frame_size))
    cols = int(math.ceil(math.sqrt(frame_count)))
    rows = cols
    sheet = np.zeros((rows * frame_size, cols * frame_size, 4), dtype=np.uint8)

    logging.info(
        f"Generating flipbook: {frame_count} frames of {frame_size}px over {duration:.2f}s "
        f"({cols}x{rows} grid)."
    )
    replayer = Replayer(log, step=step)
    for k, sim in replayer.frames(duration, frame_count):
        frame = scale_nearest(render_frame(sim), (frame_size, frame_size))
        row, col = divmod(k, cols)
        sheet[row * frame_size:(row + 1) * frame_size, col * frame_size:(col + 1) * frame_size] = frame
        logging.debug(f"Captured flipbook frame {k + 1}/{frame_count} at t={sim.clock:.3f}.")
    return sheet
