from __future__ import annotations
import datetime
from typing import Callable, Dict, Iterable, List, Optional

from algorithms.fitness_math import round_half_up
from models import Workout


class StatisticsService:
    """Compute workout statistics for the history and summary views."""

    WEEKS = 8
    HISTORY_SORT_KEYS = {
        "date": lambda w: w.date,
        "calories": lambda w: w.total_calories,
        "duration": lambda w: w.duration or 0,
    }

    def __init__(self, today: Callable[[], datetime.date] = datetime.date.today) -> None:
        self._today = today

    def _reference(self, reference_date: Optional[datetime.date]) -> datetime.date:
        return reference_date if reference_date is not None else self._today()

    @staticmethod
    def _between(
        workouts: Iterable[Workout], start: datetime.date, end: datetime.date
    ) -> List[Workout]:
        return [w for w in workouts if start <= w.date <= end]

    def workout_stats(
        self,
        workouts: Iterable[Workout],
        reference_date: Optional[datetime.date] = None,
    ) -> Dict[str, object]:
        """Return totals plus eight weekly buckets ending on ``reference_date``.

        Buckets are consecutive 7-day ranges, oldest first; the last one
        covers the six days before ``reference_date`` and the date itself.
        """
        rows = list(workouts)
        ref = self._reference(reference_date)
        total_calories = sum(w.total_calories for w in rows)
        total_workouts = len(rows)
        avg = int(round_half_up(total_calories / total_workouts)) if total_workouts else 0
        weekly: list[dict] = []
        for weeks_back in range(self.WEEKS - 1, -1, -1):
            start = ref - datetime.timedelta(days=7 * weeks_back + 6)
            bucket = self._between(rows, start, start + datetime.timedelta(days=6))
            weekly.append(
                {
                    "week": start.isoformat(),
                    "workouts": len(bucket),
                    "calories": sum(w.total_calories for w in bucket),
                }
            )
        return {
            "total_workouts": total_workouts,
            "total_calories": total_calories,
            "avg_calories_per_workout": avg,
            "weekly_stats": weekly,
        }

    def daily_activity(
        self,
        workouts: Iterable[Workout],
        reference_date: Optional[datetime.date] = None,
        days: int = 7,
    ) -> List[Dict[str, object]]:
        """Return per-day workout counts and calories, oldest day first."""
        rows = list(workouts)
        ref = self._reference(reference_date)
        result = []
        for offset in range(days - 1, -1, -1):
            day = ref - datetime.timedelta(days=offset)
            same_day = [w for w in rows if w.date == day]
            result.append(
                {
                    "date": day.isoformat(),
                    "workouts": len(same_day),
                    "calories": sum(w.total_calories for w in same_day),
                }
            )
        return result

    @staticmethod
    def muscle_groups(workouts: Iterable[Workout]) -> List[str]:
        """Return distinct muscle groups in the order first logged."""
        seen: dict[str, None] = {}
        for workout in workouts:
            for exercise in workout.exercises:
                seen.setdefault(exercise.muscle_group, None)
        return list(seen)

    @staticmethod
    def calories_by_muscle_group(workout: Workout) -> Dict[str, int]:
        totals: dict[str, int] = {}
        for exercise in workout.exercises:
            totals[exercise.muscle_group] = (
                totals.get(exercise.muscle_group, 0) + exercise.calories
            )
        return totals

    def history(
        self,
        workouts: Iterable[Workout],
        muscle_group: Optional[str] = None,
        sort_by: str = "date",
    ) -> List[Workout]:
        """Filter workouts by muscle group and sort them descending."""
        if sort_by not in self.HISTORY_SORT_KEYS:
            raise ValueError(f"unknown sort key: {sort_by}")
        rows = list(workouts)
        if muscle_group:
            rows = [
                w for w in rows if any(e.muscle_group == muscle_group for e in w.exercises)
            ]
        return sorted(rows, key=self.HISTORY_SORT_KEYS[sort_by], reverse=True)
