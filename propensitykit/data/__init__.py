"""
Unit-level data containers and synthetic data generation.
"""

from propensitykit.data.units import Unit, UnitDataset
from propensitykit.data.generators import ObservationalDataGenerator

__all__ = ["Unit", "UnitDataset", "ObservationalDataGenerator"]
