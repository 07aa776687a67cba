import datetime
import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from models import Workout, WorkoutExercise, builtin_exercises
from stats_service import StatisticsService

REF = datetime.date(2024, 6, 30)
CATALOGUE = {e.id: e for e in builtin_exercises()}


def _workout(day: datetime.date, *entries, duration=None) -> Workout:
    exercises = [
        WorkoutExercise.from_exercise(CATALOGUE[ex_id], sets, 10, 20)
        for ex_id, sets in entries
    ]
    return Workout(date=day, exercises=exercises, duration=duration)


@pytest.fixture
def service():
    return StatisticsService(today=lambda: REF)


def test_empty_stats(service):
    stats = service.workout_stats([])
    assert stats["total_workouts"] == 0
    assert stats["total_calories"] == 0
    assert stats["avg_calories_per_workout"] == 0
    assert len(stats["weekly_stats"]) == 8
    assert all(w["workouts"] == 0 and w["calories"] == 0 for w in stats["weekly_stats"])


def test_weekly_buckets_end_on_reference_date(service):
    stats = service.workout_stats([])
    weeks = [w["week"] for w in stats["weekly_stats"]]
    assert weeks[-1] == "2024-06-24"
    assert weeks[0] == "2024-05-06"
    assert weeks == sorted(weeks)


def test_totals_and_buckets(service):
    workouts = [
        _workout(REF, ("bench-press", 1)),  # 8 kcal
        _workout(REF - datetime.timedelta(days=6), ("squat", 2)),  # 18 kcal
        _workout(REF - datetime.timedelta(days=7), ("deadlift", 1)),  # 10 kcal
        _workout(REF - datetime.timedelta(days=100), ("crunch", 1)),  # 2 kcal
    ]
    stats = service.workout_stats(workouts)
    assert stats["total_workouts"] == 4
    assert stats["total_calories"] == 38
    assert stats["avg_calories_per_workout"] == 10
    assert stats["weekly_stats"][-1] == {"week": "2024-06-24", "workouts": 2, "calories": 26}
    assert stats["weekly_stats"][-2] == {"week": "2024-06-17", "workouts": 1, "calories": 10}
    assert sum(w["workouts"] for w in stats["weekly_stats"]) == 3


def test_explicit_reference_date_overrides_clock(service):
    workouts = [_workout(datetime.date(2024, 1, 10), ("bench-press", 1))]
    stats = service.workout_stats(workouts, datetime.date(2024, 1, 10))
    assert stats["weekly_stats"][-1]["workouts"] == 1


def test_daily_activity(service):
    workouts = [
        _workout(REF, ("bench-press", 1)),
        _workout(REF, ("squat", 1)),
        _workout(REF - datetime.timedelta(days=3), ("plank", 1)),
    ]
    days = service.daily_activity(workouts)
    assert len(days) == 7
    assert days[-1] == {"date": "2024-06-30", "workouts": 2, "calories": 17}
    assert days[3]["workouts"] == 1
    assert days[0]["date"] == "2024-06-24"


def test_muscle_groups_and_breakdown(service):
    first = _workout(REF, ("bench-press", 1), ("squat", 1), ("push-up", 2))
    second = _workout(REF, ("running", 1))
    assert service.muscle_groups([first, second]) == ["chest", "legs", "cardio"]
    assert service.calories_by_muscle_group(first) == {"chest": 18, "legs": 9}


def test_history_filter_and_sort(service):
    light = _workout(REF - datetime.timedelta(days=2), ("crunch", 1), duration=60)
    heavy = _workout(REF - datetime.timedelta(days=5), ("deadlift", 3), duration=20)
    chest = _workout(REF, ("bench-press", 1))
    rows = [chest, light, heavy]
    assert service.history(rows) == [chest, light, heavy]
    assert service.history(rows, sort_by="calories")[0] == heavy
    assert service.history(rows, sort_by="duration")[0] == light
    assert service.history(rows, muscle_group="abs") == [light]
    with pytest.raises(ValueError):
        service.history(rows, sort_by="name")
