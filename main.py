# main.py
"""
Main entry point for the Liquid Stain simulation.

This script orchestrates the entire simulation lifecycle:
1. Loads configuration from `config.json`.
2. Initializes the logging system.
3. Sets up the simulation engine and the viewer.
4. Runs the fixed-timestep main loop.
5. Handles clean shutdown.

With `--export LOG OUT` it instead replays a saved event log headlessly
and writes a flipbook sprite sheet.
"""
import argparse
import logging
from utils import setup_logging, load_config
from constants import FIXED_STEP, MAX_FRAME_TIME
import cProfile
import pstats
import io


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Interactive 2D liquid stain simulator.")
    parser.add_argument('--config', default='config.json', help="Path to the JSON configuration.")
    parser.add_argument('--export', nargs=2, metavar=('LOG', 'OUT'),
                        help="Replay LOG without a window and save a flipbook PNG to OUT.")
    parser.add_argument('--duration', type=float, help="Flipbook duration in seconds.")
    parser.add_argument('--frames', type=int, default=16, help="Flipbook frame count.")
    parser.add_argument('--frame-size', type=int, default=128, help="Flipbook frame edge in pixels.")
    return parser.parse_args(argv)


def export_log(args, run_params) -> None:
    """Headless flipbook export of a saved event log."""
    from event_log import EventLog
    from export import generate_flipbook
    from visualization import save_image

    log = EventLog.load(args.export[0])
    duration = args.duration if args.duration is not None else log.duration
    sheet = generate_flipbook(
        log, duration, args.frames, args.frame_size,
        step=run_params.get('fixed_step', FIXED_STEP)
    )
    save_image(sheet, args.export[1])


def main(argv=None):
    """
    The main function to run the simulation.
    """
    args = parse_args(argv)

    # Logging is not set up yet, so we use a print for this one error.
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"FATAL: Could not load {args.config}. Error: {e}")
        return

    setup_logging(config)

    logging.info("--- Liquid Stain Simulation Starting ---")

    sim_params = config.get('simulation_parameters', {})
    run_params = config.get('run_control', {})
    vis_params = config.get('visualization', {})

    if args.export:
        export_log(args, run_params)
        logging.info("--- Liquid Stain Export Finished ---")
        return

    from simulation import Simulation
    from visualization import Visualizer

    # --- Component Initialization ---
    sim = Simulation.from_config(sim_params)
    visualizer = Visualizer(sim.width, sim.height, vis_params)
    sim.start_recording()

    profiler = cProfile.Profile()

    log_throttle = run_params.get('log_throttle_steps', 600)
    max_steps = run_params.get('max_steps', 0)  # 0 runs until the window closes
    fixed_step = run_params.get('fixed_step', FIXED_STEP)
    max_frame_time = run_params.get('max_frame_time', MAX_FRAME_TIME)

    running = True
    step_num = 0
    accumulator = 0.0

    profiler.enable()
    while running:
        # Long stalls are clamped so the loop never spirals.
        accumulator += min(visualizer.tick(), max_frame_time)
        while accumulator >= fixed_step:
            sim.step(fixed_step)
            accumulator -= fixed_step
            step_num += 1

            if step_num % log_throttle == 0:
                logging.info(f"Simulation step {step_num} | t={sim.clock:.2f}s")
                logging.debug(
                    f"Step {step_num} | Particles: {len(sim.particles)} | "
                    f"Emitters: {len(sim.emitters)} | Height total: {sim.field.total():.3f}"
                )

        if not visualizer.draw(sim):
            running = False

        if max_steps and step_num >= max_steps:
            logging.info(f"Reached max_steps ({max_steps}). Stopping simulation.")
            running = False
    profiler.disable()

    visualizer.close()
    logging.info("Simulation loop finished.")

    logging.info("--- Performance Profile ---")
    s = io.StringIO()
    stats = pstats.Stats(profiler, stream=s).sort_stats('cumtime')
    stats.print_stats(20)
    logging.info(f"\n{s.getvalue()}")

    logging.info("--- Liquid Stain Simulation Shutting Down ---")


if __name__ == "__main__":
    main()
