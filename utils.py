# utils.py
"""
Utility functions for the liquid simulator.

This module provides helpers used across the engine and the driver that
do not belong to a specific domain like physics or rendering: logging
setup, configuration loading, colour parsing and lenient value clamping.
"""
import logging
import logging.handlers
import json
import os
from typing import Dict, Any, Optional, Tuple

# --- Data Contracts ---
#
# setup_logging(config: Dict[str, Any]) -> None:
#   - Inputs:
#     - config: A dictionary containing a "logging" key with "level",
#       "format", and "log_file" sub-keys.
#   - Side Effects: Configures the root Python logger with a console
#     handler and a rotating file handler.
#
# load_config(path: str) -> Dict[str, Any]:
#   - Raises: FileNotFoundError, json.JSONDecodeError (logged first).
#
# hex_to_rgb(value: str) -> Tuple[int, int, int]:
#   - Invariants: Never raises. Malformed colours resolve to pure red.
#
# clamp_parameter(name: str, value: Any, current: Any) -> Any:
#   - Invariants: Never raises. Out-of-range values are clamped to
#     PARAM_RANGES; non-numeric values keep `current`.

FALLBACK_RGB = (255, 0, 0)


def setup_logging(config: Dict[str, Any]) -> None:
    """
    Configures the logging system from a configuration dictionary.

    Sets up logging to both the console and a rotating file.
    """
    log_config = config.get('logging', {})
    log_level = log_config.get('level', 'INFO').upper()
    log_format = log_config.get('format', '%(asctime)s - %(levelname)s - %(message)s')
    log_file_path = log_config.get('log_file', 'logs/liquid.log')

    log_dir = os.path.dirname(log_file_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    logger = logging.getLogger()
    logger.setLevel(log_level)

    # Clear existing handlers to avoid duplication
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(log_format)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # Rotates when the log reaches 1MB, keeps 5 backup logs.
    file_handler = logging.handlers.RotatingFileHandler(
        log_file_path, maxBytes=1024*1024, backupCount=5
    )
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    logging.info("Logging system initialized.")
    logging.debug(f"Log level set to {log_level}, writing to {log_file_path}.")


def load_config(path: str) -> Dict[str, Any]:
    """Loads a JSON configuration file."""
    logging.info(f"Loading configuration from {path}...")
    try:
        with open(path, 'r') as f:
            config = json.load(f)
        logging.info("Configuration loaded successfully.")
        return config
    except FileNotFoundError:
        logging.error(f"Configuration file not found at {path}.")
        raise
    except json.JSONDecodeError:
        logging.error(f"Error decoding JSON from {path}.")
        raise


def hex_to_rgb(value: Any) -> Tuple[int, int, int]:
    """
    Parses a '#rrggbb' or '#rgb' colour string.

    Args:
        value: The colour string. Anything unparsable falls back to red.

    Returns:
        Tuple[int, int, int]: The colour as 8-bit RGB.
    """
    if not isinstance(value, str):
        logging.warning(f"Colour {value!r} is not a string. Falling back to red.")
        return FALLBACK_RGB
    text = value.strip().lstrip('#')
    if len(text) == 3:
        text = ''.join(c * 2 for c in text)
    if len(text) != 6:
        logging.warning(f"Colour {value!r} is malformed. Falling back to red.")
        return FALLBACK_RGB
    try:
        return (int(text[0:2], 16), int(text[2:4], 16), int(text[4:6], 16))
    except ValueError:
        logging.warning(f"Colour {value!r} is malformed. Falling back to red.")
        return FALLBACK_RGB


def clamp(value: float, low: float, high: float) -> float:
    """Clamps value into the inclusive range [low, high]."""
    return max(low, min(high, value))


def clamp_parameter(name: str, value: Any, current: Any,
                    ranges: Optional[Dict[str, Tuple[float, float]]] = None) -> Any:
    """
    Coerces a configuration value into its documented range.

    Invalid values are never rejected: numbers outside the range are
    clamped, and values that are not numbers at all keep the current
    setting. Integer ranges yield integers.
    """
    if ranges is None:
        from constants import PARAM_RANGES
        ranges = PARAM_RANGES
    try:
        number = float(value)
    except (TypeError, ValueError):
        logging.warning(f"Ignoring non-numeric value {value!r} for '{name}'; keeping {current!r}.")
        return current
    if number != number:  # NaN
        logging.warning(f"Ignoring NaN for '{name}'; keeping {current!r}.")
        return current

    low, high = ranges.get(name, (float('-inf'), float('inf')))
    clamped = clamp(number, low, high)
    if clamped != number:
        logging.debug(f"Clamped '{name}' from {number} to {clamped}.")
    if isinstance(low, int) and isinstance(high, int):
        return int(clamped)
    return clamped
