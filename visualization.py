# visualization.py
"""
Handles the interactive view of the liquid simulation using Pygame.
"""
import logging
import pygame
import numpy as np
from typing import Dict, Any, Optional, Tuple

from export import render_height_field, generate_flipbook, export_texture
from modes import MODES
from constants import (
    FPS, BACKGROUND_COLOR, MASK_OVERLAY_COLOR, PARTICLE_DRAW_ALPHA, MATERIALS,
    CALIBERS, SPAWN_MODES, MODE_WALL, MODE_FLOOR
)

# Forward reference for type hinting to avoid circular import
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from simulation import Simulation


# --- Data Contracts ---
#
# class Visualizer:
#   - __init__(self, sim_width: int, sim_height: int, vis_params: Optional[dict] = None):
#     - Inputs:
#       - sim_width, sim_height: canvas size in simulation pixels.
#       - vis_params: the "visualization" section of config.json
#         (window_scale, panel_width, mask_overlay_alpha, log_path,
#         export_path, export_duration, export_frames, export_frame_size,
#         texture_path, depth_path, texture_resolution).
#     - Side Effects: Initializes Pygame and creates a display surface.
#
#   - draw(self, simulation: "Simulation") -> bool:
#     - Outputs: False if the user has quit, True otherwise.
#     - Side Effects: Renders the canvas and UI, handles Pygame events and
#       forwards user actions to the simulation's public operations.
#
#   - tick(self) -> float: seconds since the previous frame.

KEY_HELP = [
    "1-8  mode",
    "M    material",
    "D    spray / drop",
    "C    caliber",
    "K    mask brush",
    "X    clear mask",
    "Wheel  particle size",
    "Space  pause",
    "R    reset + record",
    "S    save event log",
    "E    export flipbook",
    "T    export texture + depth",
]


def save_image(rgba: np.ndarray, path: str) -> None:
    """Writes an (H, W, 4) uint8 image to disk through Pygame."""
    data = np.ascontiguousarray(rgba, dtype=np.uint8)
    height, width = data.shape[:2]
    surface = pygame.image.frombuffer(data.tobytes(), (width, height), 'RGBA')
    pygame.image.save(surface, path)
    logging.info(f"Image {width}x{height} saved to '{path}'.")


class Visualizer:
    """
    Renders the liquid canvas and a status panel, and routes input.
    """
    def __init__(self, sim_width: int, sim_height: int, vis_params: Optional[Dict[str, Any]] = None):
        """
        Initializes Pygame and the display window.
        """
        self.vis_params = vis_params if vis_params is not None else {}
        pygame.init()
        pygame.font.init()

        self.scale = float(self.vis_params.get('window_scale', 0.75))
        self.panel_width = int(self.vis_params.get('panel_width', 220))
        self.overlay_alpha = float(self.vis_params.get('mask_overlay_alpha', 0.25))
        self.brush_radius = float(self.vis_params.get('mask_brush_radius', 40.0))
        self.sim_width = sim_width
        self.sim_height = sim_height

        self.view_width = int(sim_width * self.scale)
        self.view_height = int(sim_height * self.scale)
        width, height = self.view_width + self.panel_width, self.view_height
        self.screen = pygame.display.set_mode((width, height))
        pygame.display.set_caption("Liquid Stain")
        self.clock = pygame.time.Clock()

        self.ui_panel_surface = pygame.Surface((self.panel_width, height), pygame.SRCALPHA)
        self.ui_panel_surface.fill((40, 40, 40, 230))

        try:
            self.font_title = pygame.font.SysFont("Segoe UI", 16, bold=True)
            self.font_main = pygame.font.SysFont("Segoe UI", 14)
        except pygame.error:
            logging.warning("Segoe UI font not found, falling back to default sans-serif.")
            self.font_title = pygame.font.SysFont(None, 20, bold=True)
            self.font_main = pygame.font.SysFont(None, 18)

        self.text_color_title = (255, 255, 255)
        self.text_color_key = (200, 200, 200)

        self.mode_keys = {pygame.K_1 + i: name for i, name in enumerate(MODES)}
        self.material_names = list(MATERIALS)
        self.caliber_names = list(CALIBERS)
        self.mask_brush = False
        self.mouse_held = 0

        logging.info(f"Visualizer initialized with Pygame display ({width}x{height}).")

    def tick(self) -> float:
        """Waits for the next frame and returns the elapsed time in seconds."""
        return self.clock.tick(self.vis_params.get('fps', FPS)) / 1000.0

    def _to_sim(self, pos: Tuple[int, int]) -> Optional[Tuple[float, float]]:
        """Maps a window position to canvas pixels; None over the panel."""
        if pos[0] >= self.view_width:
            return None
        return pos[0] / self.scale, pos[1] / self.scale

    def _cycle(self, options: list, current: str) -> str:
        index = options.index(current) if current in options else -1
        return options[(index + 1) % len(options)]

    def _handle_key(self, key: int, simulation: "Simulation") -> None:
        params = simulation.params
        if key in self.mode_keys:
            simulation.set_mode(self.mode_keys[key])
        elif key == pygame.K_m:
            simulation.apply_material(self._cycle(self.material_names, params['material']))
        elif key == pygame.K_d:
            simulation.set_spawn_mode(self._cycle(list(SPAWN_MODES), params['spawn_mode']))
        elif key == pygame.K_c:
            simulation.set_caliber(self._cycle(self.caliber_names, params['caliber']))
        elif key == pygame.K_k:
            self.mask_brush = not self.mask_brush
            logging.info(f"Mask brush {'enabled' if self.mask_brush else 'disabled'}.")
        elif key == pygame.K_x:
            simulation.clear_mask()
        elif key == pygame.K_SPACE:
            simulation.toggle_pause()
        elif key == pygame.K_r:
            simulation.stop_recording()
            simulation.start_recording()
        elif key == pygame.K_s:
            self._save_log(simulation)
        elif key == pygame.K_e:
            self._export(simulation)
        elif key == pygame.K_t:
            self._export_texture(simulation)

    def _save_log(self, simulation: "Simulation") -> None:
        if simulation.event_log is None:
            logging.warning("No recording in progress; press R to start one.")
            return
        path = self.vis_params.get('log_path', 'liquid_events.json')
        try:
            simulation.event_log.save(path)
        except OSError as e:
            logging.error(f"Could not save event log to '{path}': {e}")

    def _export(self, simulation: "Simulation") -> None:
        if simulation.event_log is None:
            logging.warning("No recording in progress; press R to start one.")
            return
        path = self.vis_params.get('export_path', 'flipbook.png')
        duration = self.vis_params.get('export_duration', simulation.clock)
        sheet = generate_flipbook(
            simulation.event_log, duration,
            self.vis_params.get('export_frames', 16),
            self.vis_params.get('export_frame_size', 128)
        )
        try:
            save_image(sheet, path)
        except (OSError, pygame.error) as e:
            logging.error(f"Could not save flipbook to '{path}': {e}")

    def _export_texture(self, simulation: "Simulation") -> None:
        images = export_texture(simulation, self.vis_params.get('texture_resolution', 1024))
        paths = {
            'texture': self.vis_params.get('texture_path', 'texture.png'),
            'depth': self.vis_params.get('depth_path', 'depth.png'),
        }
        for name, image in images.items():
            try:
                save_image(image, paths[name])
            except (OSError, pygame.error) as e:
                logging.error(f"Could not save {name} to '{paths[name]}': {e}")

    def _handle_mouse(self, simulation: "Simulation", pos, button: int, pressed: bool) -> None:
        point = self._to_sim(pos)
        if point is None:
            return
        x, y = point
        if self.mask_brush:
            simulation.paint_mask(x, y, self.brush_radius, erase=(button == 3))
        elif button == 1 and pressed:
            simulation.spawn(x, y)
        elif button == 1 and simulation.params['spawn_mode'] == 'spray' \
                and simulation.mode.name in (MODE_WALL, MODE_FLOOR):
            # Spray keeps flowing while the button is held.
            simulation.spawn(x, y)

    def _compose_canvas(self, simulation: "Simulation") -> np.ndarray:
        """Flattens liquid and mask over the background. Returns (H, W, 3) uint8."""
        background = np.asarray(BACKGROUND_COLOR, dtype=np.float32)
        if simulation.mode.uses_grid:
            rgba = render_height_field(simulation).astype(np.float32)
            a = rgba[..., 3:4] / 255.0
            rgb = rgba[..., :3] * a + background * (1.0 - a)
        else:
            rgb = simulation.surface.composite_over(BACKGROUND_COLOR, simulation.params['opacity']).astype(np.float32)

        if simulation.mask.active:
            overlay = np.asarray(simulation.mask_overlay_view(), dtype=np.float32)[..., np.newaxis] / 255.0
            tint = np.asarray(MASK_OVERLAY_COLOR, dtype=np.float32)
            a = overlay * self.overlay_alpha
            rgb = rgb * (1.0 - a) + tint * a
        return np.clip(rgb, 0, 255).astype(np.uint8)

    def _draw_particles(self, surface: pygame.Surface, simulation: "Simulation") -> None:
        if simulation.mode.uses_grid:
            return
        view = simulation.particle_view()
        layer = pygame.Surface(surface.get_size(), pygame.SRCALPHA)
        for x, y, mass, color in zip(view['x'], view['y'], view['mass'], view['color']):
            pygame.draw.circle(
                layer,
                (int(color[0]), int(color[1]), int(color[2]), PARTICLE_DRAW_ALPHA),
                (int(x), int(y)),
                max(1, int(mass))
            )
        surface.blit(layer, (0, 0))

    def _draw_panel(self, simulation: "Simulation") -> None:
        self.screen.blit(self.ui_panel_surface, (self.view_width, 0))
        params = simulation.params
        recording = simulation.event_log is not None
        status = [
            ("Mode", simulation.mode.name),
            ("Material", params['material']),
            ("Spawn", params['spawn_mode']),
            ("Caliber", params['caliber']),
            ("Size", f"{params['particle_size']:.1f}"),
            ("Particles", str(len(simulation.particles))),
            ("Emitters", str(len(simulation.emitters))),
            ("Time", f"{simulation.clock:.1f}s"),
            ("State", "paused" if simulation.paused else "running"),
            ("Recording", f"{len(simulation.event_log)} events" if recording else "off"),
            ("Brush", "mask" if self.mask_brush else "liquid"),
        ]
        x = self.view_width + 12
        y = 10
        line_height = self.font_main.get_linesize()
        self.screen.blit(self.font_title.render("Liquid Stain", True, self.text_color_title), (x, y))
        y += line_height + 8
        for key, value in status:
            self.screen.blit(self.font_main.render(f"{key}: {value}", True, self.text_color_title), (x, y))
            y += line_height
        y += 10
        for line in KEY_HELP:
            self.screen.blit(self.font_main.render(line, True, self.text_color_key), (x, y))
            y += line_height

    def draw(self, simulation: "Simulation") -> bool:
        """
        Draws the canvas and UI, and handles events.

        Returns:
            bool: False if the simulation should exit, True otherwise.
        """
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                logging.info("Quit event received. Shutting down visualizer.")
                return False

            if event.type == pygame.KEYDOWN:
                if event.key == pygame.K_ESCAPE:
                    logging.info("ESC key pressed. Shutting down visualizer.")
                    return False
                self._handle_key(event.key, simulation)

            if event.type == pygame.MOUSEBUTTONDOWN and event.button in (1, 3):
                self.mouse_held = event.button
                self._handle_mouse(simulation, event.pos, event.button, pressed=True)
            if event.type == pygame.MOUSEBUTTONUP:
                self.mouse_held = 0

            if event.type == pygame.MOUSEWHEEL:
                simulation.set_particle_size(simulation.params['particle_size'] + event.y * 0.5)

        if self.mouse_held:
            self._handle_mouse(simulation, pygame.mouse.get_pos(), self.mouse_held, pressed=False)

        canvas = self._compose_canvas(simulation)
        sim_surface = pygame.surfarray.make_surface(canvas.transpose(1, 0, 2))
        self._draw_particles(sim_surface, simulation)
        if self.scale != 1.0:
            sim_surface = pygame.transform.smoothscale(sim_surface, (self.view_width, self.view_height))
        self.screen.blit(sim_surface, (0, 0))
        self._draw_panel(simulation)

        pygame.display.flip()
        return True

    def close(self):
        """Shuts down Pygame."""
        pygame.font.quit()
        pygame.quit()
