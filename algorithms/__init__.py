from .fitness_math import BMRResult, FitnessMath, round_half_up
from .unit_converter import UnitConverter

__all__ = ["BMRResult", "FitnessMath", "UnitConverter", "round_half_up"]
