import pytest

from simulation import Simulation


@pytest.fixture
def sim():
    """Small canvas engine with a fixed noise offset."""
    return Simulation(width=256, height=256, noise_offset=42)
