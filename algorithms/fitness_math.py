import math
from typing import Literal, Protocol

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


BMICategory = Literal["underweight", "normal", "overweight", "obese"]


class _HasCaloriesPerRep(Protocol):
    calories_per_rep: float


class _BodyProfile(Protocol):
    age: int
    gender: str
    height: float
    weight: float
    activity_level: str


def round_half_up(value: float, digits: int = 0) -> float:
    """Round ``value`` to ``digits`` decimals with halves rounded up."""
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


class BMRResult(BaseModel):
    """Body metrics derived from a user profile."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    bmr: int
    tdee: int
    bmi: float
    bmi_category: BMICategory


class FitnessMath:
    """Energy expenditure and body composition formulas."""

    REFERENCE_WEIGHT: float = 20.0
    ACTIVITY_MULTIPLIERS: dict[str, float] = {
        "sedentary": 1.2,
        "light": 1.375,
        "moderate": 1.55,
        "active": 1.725,
        "very_active": 1.9,
    }
    BMI_BANDS: tuple[tuple[float, BMICategory], ...] = (
        (18.5, "underweight"),
        (25.0, "normal"),
        (30.0, "overweight"),
    )

    @classmethod
    def weight_factor(cls, weight: float) -> float:
        """Return the load multiplier; loads below the reference never reduce it."""
        return max(1.0, weight / cls.REFERENCE_WEIGHT)

    @classmethod
    def calories_for(
        cls, calories_per_rep: float, sets: int, reps: int, weight: float
    ) -> int:
        base = calories_per_rep * sets * reps
        return int(round_half_up(base * cls.weight_factor(weight)))

    @classmethod
    def calculate_calories(
        cls, exercise: _HasCaloriesPerRep, sets: int, reps: int, weight: float
    ) -> int:
        """Estimate calories burned for ``sets`` x ``reps`` at ``weight`` kg."""
        return cls.calories_for(exercise.calories_per_rep, sets, reps, weight)

    @staticmethod
    def harris_benedict(gender: str, weight: float, height: float, age: int) -> float:
        """Return the revised Harris-Benedict basal metabolic rate."""
        if gender == "male":
            return 88.362 + 13.397 * weight + 4.799 * height - 5.677 * age
        return 447.593 + 9.247 * weight + 3.098 * height - 4.330 * age

    @staticmethod
    def bmi(weight: float, height_cm: float) -> float:
        height_m = height_cm / 100
        return weight / (height_m * height_m)

    @classmethod
    def bmi_category(cls, bmi: float) -> BMICategory:
        for upper, category in cls.BMI_BANDS:
            if bmi < upper:
                return category
        return "obese"

    @classmethod
    def calculate_bmr(cls, profile: _BodyProfile) -> BMRResult:
        """Compute BMR, TDEE and BMI for ``profile``."""
        bmr = cls.harris_benedict(
            profile.gender, profile.weight, profile.height, profile.age
        )
        tdee = bmr * cls.ACTIVITY_MULTIPLIERS[profile.activity_level]
        bmi = cls.bmi(profile.weight, profile.height)
        return BMRResult(
            bmr=int(round_half_up(bmr)),
            tdee=int(round_half_up(tdee)),
            bmi=round_half_up(bmi, 1),
            bmi_category=cls.bmi_category(bmi),
        )
