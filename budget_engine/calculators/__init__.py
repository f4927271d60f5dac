"""
Calculators Package

Provides all calculation components for budget processing.
"""

from .bonus import BonificationCalculator
from .convergence import ConvergenceSolver
from .currency import CurrencyResolver
from .fees import FeeCascadeCalculator
from .volume import UnitVolumeCalculator

__all__ = [
    "CurrencyResolver",
    "UnitVolumeCalculator",
    "BonificationCalculator",
    "FeeCascadeCalculator",
    "ConvergenceSolver",
]
