# replay.py
"""
Deterministic re-simulation of a recorded EventLog.

A Replayer drives a fresh Simulation at a fixed step, applying each
event once the engine clock reaches its timestamp. Given the same log,
the same step and the same build, the final state is identical to the
recorded run.
"""
import logging
from typing import Iterator, Optional, Tuple

from event_log import EventLog
from simulation import Simulation
from constants import FIXED_STEP, DEFAULT_SEED, EXPORT_YIELD_STEPS, MIN_EXPORT_DURATION

# --- Data Contracts ---
#
# class Replayer:
#   - __init__(self, log: EventLog, step: float = FIXED_STEP, sim=None):
#   - apply_due(self) -> int:
#     - Applies every pending event whose time <= sim.clock.
#     - 'init' maps to set_state; any other kind must name a recorded
#       Simulation method. Unknown kinds are skipped.
#   - run(self, until: float) -> Simulation
#   - steps(self, until) -> Iterator[float]:
#     - Cooperative variant; yields the clock every EXPORT_YIELD_STEPS steps.
#   - frames(self, duration, frame_count) -> Iterator[(int, Simulation)]:
#     - Yields (frame_index, engine) at `frame_count` evenly spaced times in [0, duration].


class Replayer:
    """
    Replays an EventLog into a fresh engine.
    """
    def __init__(self, log: EventLog, step: float = FIXED_STEP, sim: Optional[Simulation] = None):
        self.log = log
        self.step = step
        self.sim = sim if sim is not None else Simulation(seed=DEFAULT_SEED, noise_offset=0)
        self.sim.clock = 0.0
        self._cursor = 0

    @property
    def finished(self) -> bool:
        return self._cursor >= len(self.log.events)

    def _apply(self, event) -> None:
        sim = self.sim
        if event.kind == 'init':
            handler = sim.set_state
        else:
            handler = getattr(sim, event.kind, None)
            if handler is None or not getattr(handler, 'recorded', False):
                logging.debug(f"Skipping unknown event kind '{event.kind}' at t={event.time:.3f}.")
                return
        try:
            handler(*event.payload)
        except (TypeError, ValueError) as e:
            logging.warning(f"Malformed '{event.kind}' event at t={event.time:.3f} skipped: {e}")

    def apply_due(self) -> int:
        """Applies every event that is due at the current clock."""
        applied = 0
        events = self.log.events
        while self._cursor < len(events) and events[self._cursor].time <= self.sim.clock:
            self._apply(events[self._cursor])
            self._cursor += 1
            applied += 1
        return applied

    def steps(self, until: float) -> Iterator[float]:
        """
        Advances to `until`, yielding control every few steps.

        Yields:
            float: The engine clock.
        """
        count = 0
        while self.sim.clock < until:
            self.apply_due()
            self.sim.step(self.step)
            count += 1
            if count % EXPORT_YIELD_STEPS == 0:
                yield self.sim.clock
        self.apply_due()

    def run(self, until: Optional[float] = None) -> Simulation:
        """Replays up to `until` seconds (default: the log's last event)."""
        target = self.log.duration if until is None else until
        for _ in self.steps(target):
            pass
        logging.info(f"Replay reached t={self.sim.clock:.3f} after {self._cursor} events.")
        return self.sim

    def frames(self, duration: float, frame_count: int) -> Iterator[Tuple[int, Simulation]]:
        """
        Yields (frame_index, engine) at evenly spaced capture times.

        Args:
            duration (float): Span to cover; values below MIN_EXPORT_DURATION are raised to it.
            frame_count (int): Number of captures, at least 1.
        """
        duration = max(MIN_EXPORT_DURATION, float(duration))
        frame_count = max(1, int(frame_count))
        for f in range(frame_count):
            target = duration * f / (frame_count - 1) if frame_count > 1 else duration
            for _ in self.steps(target):
                pass
            yield f, self.sim


def replay(log: EventLog, until: Optional[float] = None, step: float = FIXED_STEP) -> Simulation:
    """Convenience wrapper: replays `log` into a fresh engine and returns it."""
    return Replayer(log, step=step).run(until)
