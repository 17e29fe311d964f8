"""Synthetic single-cell methylation data.

Main entry points:
- Simulation.config: SynthConfig with validated generation settings
- Simulation.simulator: MethylationSimulator and generate_synthetic_data
"""

from Simulation.config import SynthConfig
from Simulation.simulator import MethylationSimulator, generate_synthetic_data

__all__ = [
    "SynthConfig",
    "MethylationSimulator",
    "generate_synthetic_data",
]
