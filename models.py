"""Entity model for the fitness log.

Every entity is an immutable pydantic model. Changes are made by producing a
re-validated copy through :meth:`Entity.merged`, so derived values such as
``WorkoutExercise.calories`` can never drift from their inputs. Serialised
documents use camelCase keys; snake_case field names are accepted on input.
"""
from __future__ import annotations

import datetime
import uuid
from typing import Any, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from algorithms.fitness_math import FitnessMath
from errors import ValidationError

MUSCLE_GROUPS = ("chest", "back", "legs", "arms", "shoulders", "abs", "cardio")

ExerciseCategory = Literal["strength", "cardio", "flexibility", "sports", "custom"]
ActivityLevel = Literal["sedentary", "light", "moderate", "active", "very_active"]
Gender = Literal["male", "female"]


def new_id() -> str:
    """Return a fresh 128-bit random identifier."""
    return uuid.uuid4().hex


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Entity(BaseModel):
    """Base model with camelCase serialisation and validated copies."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    @classmethod
    def parse(cls, data: Any):
        """Validate ``data`` into ``cls`` raising :class:`ValidationError`."""
        if isinstance(data, cls):
            return data
        if isinstance(data, BaseModel):
            data = data.model_dump(by_alias=True)
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(str(e)) from e

    @classmethod
    def _field(cls, key: str) -> tuple[str, Any]:
        """Return ``(alias, annotation)`` for a field given its name or alias."""
        for name, info in cls.model_fields.items():
            alias = info.alias or to_camel(name)
            if key in (name, alias):
                return alias, info.annotation
        raise ValidationError(f"unknown field for {cls.__name__}: {key}")

    @classmethod
    def _merge(cls, data: dict, patch: Mapping[str, Any], deep: bool) -> dict:
        out = dict(data)
        for key, value in patch.items():
            alias, annotation = cls._field(key)
            nested = (
                deep
                and isinstance(value, Mapping)
                and isinstance(annotation, type)
                and issubclass(annotation, Entity)
                and isinstance(out.get(alias), dict)
            )
            if nested:
                out[alias] = annotation._merge(out[alias], value, deep)
            else:
                out[alias] = value
        return out

    @classmethod
    def normalize(cls, data: Mapping[str, Any]) -> dict:
        """Return ``data`` keyed by serialised field names; unknown keys fail."""
        return cls._merge({}, data, deep=False)

    def merged(self, patch: Mapping[str, Any], deep: bool = False):
        """Return a validated copy with ``patch`` applied.

        A shallow merge replaces whole field values. With ``deep`` nested
        entity fields are merged key by key instead of replaced.
        """
        return self.parse(type(self)._merge(self.to_dict(), patch, deep))

    def to_dict(self) -> dict:
        """Return the JSON-compatible camelCase representation."""
        return self.model_dump(mode="json", by_alias=True)


class Exercise(Entity):
    """Catalogue entry."""

    id: str = Field(default_factory=new_id, min_length=1)
    name: str = Field(min_length=1)
    calories_per_rep: float = Field(ge=0)
    muscle_group: str = Field(min_length=1)
    category: ExerciseCategory = "custom"
    is_custom: bool = False
    description: Optional[str] = None


class WorkoutExercise(Exercise):
    """An exercise together with the performance logged for it."""

    sets: int = Field(ge=1)
    reps: int = Field(ge=1)
    weight: float = Field(ge=0)
    rest_time: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None

    @computed_field
    @property
    def calories(self) -> int:
        return FitnessMath.calculate_calories(self, self.sets, self.reps, self.weight)

    @classmethod
    def from_exercise(
        cls,
        exercise: Exercise,
        sets: int = 1,
        reps: int = 10,
        weight: float = 20.0,
        **extra: Any,
    ) -> "WorkoutExercise":
        """Copy ``exercise`` by value into a logged entry."""
        data = Exercise.parse(exercise).to_dict()
        data.update(sets=sets, reps=reps, weight=weight, **extra)
        return cls.parse(data)


class Workout(Entity):
    """One training session."""

    id: str = Field(default_factory=new_id, min_length=1)
    date: datetime.date
    exercises: tuple[WorkoutExercise, ...] = Field(min_length=1)
    duration: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None

    @computed_field(alias="totalCalories")
    @property
    def total_calories(self) -> int:
        return sum(e.calories for e in self.exercises)


class WorkoutDraft(Entity):
    """The in-progress workout before it is saved."""

    date: Optional[datetime.date] = None
    exercises: tuple[WorkoutExercise, ...] = ()
    duration: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None


class UserProfile(Entity):
    id: str = Field(default_factory=new_id, min_length=1)
    name: str = Field(min_length=1)
    age: int = Field(ge=1, le=120)
    gender: Gender
    height: float = Field(ge=100, le=250)
    weight: float = Field(ge=30, le=300)
    activity_level: ActivityLevel
    goals: tuple[str, ...] = ()
    created_at: datetime.datetime = Field(default_factory=utcnow)
    updated_at: datetime.datetime = Field(default_factory=utcnow)

    @field_validator("goals")
    @classmethod
    def _unique_goals(cls, goals: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(dict.fromkeys(g.strip() for g in goals if g.strip()))


class Units(Entity):
    weight: Literal["kg", "lbs"] = "kg"
    height: Literal["cm", "ft"] = "cm"


class Notifications(Entity):
    workout_reminder: bool = True
    goal_achievement: bool = True


class Privacy(Entity):
    data_sharing: bool = False
    analytics: bool = True


class AppSettings(Entity):
    theme: Literal["light", "dark"] = "light"
    language: Literal["ja", "en"] = "ja"
    units: Units = Field(default_factory=Units)
    notifications: Notifications = Field(default_factory=Notifications)
    privacy: Privacy = Field(default_factory=Privacy)

    def merged(self, patch: Mapping[str, Any], deep: bool = True) -> "AppSettings":
        return super().merged(patch, deep=deep)


# (id, name, calories per rep, muscle group, category)
_BUILTIN_CATALOGUE = (
    ("bench-press", "Bench Press", 0.8, "chest", "strength"),
    ("push-up", "Push-up", 0.5, "chest", "strength"),
    ("dumbbell-fly", "Dumbbell Fly", 0.6, "chest", "strength"),
    ("incline-press", "Incline Press", 0.7, "chest", "strength"),
    ("deadlift", "Deadlift", 1.0, "back", "strength"),
    ("pull-up", "Pull-up", 0.7, "back", "strength"),
    ("bent-over-row", "Bent-over Row", 0.8, "back", "strength"),
    ("lat-pulldown", "Lat Pulldown", 0.6, "back", "strength"),
    ("squat", "Squat", 0.9, "legs", "strength"),
    ("leg-press", "Leg Press", 0.7, "legs", "strength"),
    ("lunge", "Lunge", 0.6, "legs", "strength"),
    ("calf-raise", "Calf Raise", 0.3, "legs", "strength"),
    ("barbell-curl", "Barbell Curl", 0.4, "arms", "strength"),
    ("triceps-press", "Triceps Press", 0.5, "arms", "strength"),
    ("hammer-curl", "Hammer Curl", 0.4, "arms", "strength"),
    ("dips", "Dips", 0.6, "arms", "strength"),
    ("shoulder-press", "Shoulder Press", 0.6, "shoulders", "strength"),
    ("side-raise", "Side Raise", 0.3, "shoulders", "strength"),
    ("rear-delt-fly", "Rear Delt Fly", 0.4, "shoulders", "strength"),
    ("upright-row", "Upright Row", 0.5, "shoulders", "strength"),
    ("crunch", "Crunch", 0.2, "abs", "strength"),
    ("plank", "Plank", 0.3, "abs", "strength"),
    ("leg-raise", "Leg Raise", 0.25, "abs", "strength"),
    ("running", "Running", 8.0, "cardio", "cardio"),
    ("cycling", "Cycling", 6.0, "cardio", "cardio"),
    ("walking", "Walking", 4.0, "cardio", "cardio"),
)


def builtin_exercises() -> list[Exercise]:
    """Return the seeded, non-editable exercise catalogue."""
    return [
        Exercise(
            id=ex_id,
            name=name,
            calories_per_rep=per_rep,
            muscle_group=group,
            category=category,
            is_custom=False,
        )
        for ex_id, name, per_rep, group, category in _BUILTIN_CATALOGUE
    ]
