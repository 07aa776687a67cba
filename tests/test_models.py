import datetime
import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from errors import ValidationError
from models import (
    MUSCLE_GROUPS,
    AppSettings,
    Exercise,
    UserProfile,
    Workout,
    WorkoutExercise,
    builtin_exercises,
)


def _entry(**overrides) -> WorkoutExercise:
    bench = next(e for e in builtin_exercises() if e.id == "bench-press")
    return WorkoutExercise.from_exercise(bench, **overrides)


def test_builtin_catalogue():
    catalogue = builtin_exercises()
    assert len(catalogue) == 26
    assert len({e.id for e in catalogue}) == 26
    assert all(not e.is_custom for e in catalogue)
    assert {e.muscle_group for e in catalogue} == set(MUSCLE_GROUPS)
    assert all(e.category == "cardio" for e in catalogue if e.muscle_group == "cardio")


def test_workout_exercise_defaults_and_calories():
    entry = _entry()
    assert (entry.sets, entry.reps, entry.weight) == (1, 10, 20.0)
    assert entry.calories == 8
    assert entry.to_dict()["calories"] == 8
    assert entry.to_dict()["caloriesPerRep"] == 0.8


def test_calories_follow_changes():
    entry = _entry().merged({"sets": 3, "weight": 40})
    assert entry.calories == 48


def test_stored_calories_are_ignored():
    data = _entry(sets=3, weight=40).to_dict()
    data["calories"] = 999
    assert WorkoutExercise.parse(data).calories == 48


def test_workout_total_is_sum_of_entries():
    workout = Workout(
        date=datetime.date(2024, 5, 1),
        exercises=[_entry(), _entry(sets=3, weight=40)],
    )
    assert workout.total_calories == 56
    assert workout.to_dict()["totalCalories"] == 56
    assert workout.to_dict()["date"] == "2024-05-01"


def test_workout_requires_exercises():
    with pytest.raises(ValidationError):
        Workout.parse({"date": "2024-05-01", "exercises": []})


@pytest.mark.parametrize(
    "changes",
    [{"sets": 0}, {"reps": 0}, {"weight": -1}],
)
def test_invalid_performance_rejected(changes):
    with pytest.raises(ValidationError):
        _entry().merged(changes)


def test_exercise_requires_name():
    with pytest.raises(ValidationError):
        Exercise.parse({"name": " ", "caloriesPerRep": 0.5, "muscleGroup": "arms"})


def test_unknown_patch_key_rejected():
    with pytest.raises(ValidationError):
        _entry().merged({"totalCalories": 10})


def test_profile_ranges_and_goals():
    profile = UserProfile.parse(
        {
            "name": "Aki",
            "age": 28,
            "gender": "female",
            "height": 160,
            "weight": 52,
            "activity_level": "light",
            "goals": ["strength", "strength", " endurance "],
        }
    )
    assert profile.goals == ("strength", "endurance")
    with pytest.raises(ValidationError):
        profile.merged({"age": 0})
    with pytest.raises(ValidationError):
        profile.merged({"height": 260})
    with pytest.raises(ValidationError):
        profile.merged({"activityLevel": "extreme"})


def test_settings_defaults():
    settings = AppSettings()
    assert settings.to_dict() == {
        "theme": "light",
        "language": "ja",
        "units": {"weight": "kg", "height": "cm"},
        "notifications": {"workoutReminder": True, "goalAchievement": True},
        "privacy": {"dataSharing": False, "analytics": True},
    }


def test_settings_deep_merge_keeps_siblings():
    settings = AppSettings().merged({"units": {"weight": "lbs"}})
    assert settings.units.weight == "lbs"
    assert settings.units.height == "cm"
    settings = settings.merged({"notifications": {"workout_reminder": False}})
    assert settings.notifications.goal_achievement is True
    assert settings.units.weight == "lbs"


def test_settings_invalid_values_rejected():
    with pytest.raises(ValidationError):
        AppSettings().merged({"units": {"weight": "stone"}})
    with pytest.raises(ValidationError):
        AppSettings().merged({"theme": "blue"})
