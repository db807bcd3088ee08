# event_log.py
"""
Timestamped record of user actions, serializable to JSON.

Array payloads (mask alpha buffers, formation sheets) are stored as
base64 together with their dtype and shape so a saved log replays
exactly.
"""
import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

import numpy as np

# --- Data Contracts ---
#
# @dataclass Event:
#   - time: float, seconds of simulation clock at which the action happened
#   - kind: str, the Simulation method name ('init' for the starting snapshot)
#   - payload: List[Any], positional arguments of the call
#
# class EventLog:
#   - append(time, kind, payload) -> Event
#     - Invariants: Event times are non-decreasing; an earlier time is
#       clamped up to the last recorded time.
#   - to_json() -> str / from_json(text) -> EventLog

LOG_FORMAT_VERSION = 1


@dataclass
class Event:
    time: float
    kind: str
    payload: List[Any] = field(default_factory=list)


def _encode_value(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        data = np.ascontiguousarray(value)
        return {
            '__ndarray__': base64.b64encode(data.tobytes()).decode('ascii'),
            'dtype': str(data.dtype),
            'shape': list(data.shape),
        }
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, dict):
        return {k: _encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode_value(v) for v in value]
    return value


def _decode_value(value: Any) -> Any:
    if isinstance(value, dict):
        if '__ndarray__' in value:
            raw = base64.b64decode(value['__ndarray__'])
            return np.frombuffer(raw, dtype=np.dtype(value['dtype'])).reshape(value['shape']).copy()
        return {k: _decode_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_decode_value(v) for v in value]
    return value


class EventLog:
    """
    Ordered list of Events.
    """
    def __init__(self, events: List[Event] = None):
        self.events: List[Event] = []
        for e in events or []:
            self.append(e.time, e.kind, e.payload)

    def __len__(self) -> int:
        return len(self.events)

    def __iter__(self):
        return iter(self.events)

    def append(self, time: float, kind: str, payload: List[Any]) -> Event:
        last = self.events[-1].time if self.events else 0.0
        event = Event(max(float(time), last), kind, list(payload))
        self.events.append(event)
        return event

    @property
    def duration(self) -> float:
        return self.events[-1].time if self.events else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'version': LOG_FORMAT_VERSION,
            'events': [
                {'time': e.time, 'kind': e.kind, 'payload': _encode_value(e.payload)}
                for e in self.events
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EventLog":
        log = cls()
        for raw in data.get('events', []):
            log.append(float(raw['time']), str(raw['kind']), _decode_value(raw.get('payload', [])))
        return log

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, text: str) -> "EventLog":
        return cls.from_dict(json.loads(text))

    def save(self, path: str) -> None:
        with open(path, 'w') as f:
            f.write(self.to_json())
        logging.info(f"Event log with {len(self.events)} events saved to '{path}'.")

    @classmethod
    def load(cls, path: str) -> "EventLog":
        try:
            with open(path, 'r') as f:
                log = cls.from_json(f.read())
        except (OSError, ValueError, KeyError) as e:
            logging.error(f"Failed to load event log from '{path}': {e}")
            raise
        logging.info(f"Event log with {len(log)} events loaded from '{path}'.")
        return log
