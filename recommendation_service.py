from __future__ import annotations
import datetime
from typing import Callable, Iterable, Optional

from models import Workout


class RecommendationService:
    """Suggest muscle groups that were trained least in recent weeks."""

    DEFAULT_GROUPS = ("chest", "back", "legs")
    WINDOW_DAYS = 30
    LIMIT = 3

    def __init__(self, today: Callable[[], datetime.date] = datetime.date.today) -> None:
        self._today = today

    def muscle_group_frequency(
        self,
        workouts: Iterable[Workout],
        reference_date: Optional[datetime.date] = None,
    ) -> dict[str, int]:
        """Count exercise entries per muscle group inside the trailing window.

        Keys keep the order in which each group was first encountered.
        """
        ref = reference_date if reference_date is not None else self._today()
        start = ref - datetime.timedelta(days=self.WINDOW_DAYS)
        counts: dict[str, int] = {}
        for workout in workouts:
            if not start <= workout.date <= ref:
                continue
            for exercise in workout.exercises:
                counts[exercise.muscle_group] = counts.get(exercise.muscle_group, 0) + 1
        return counts

    def recommend(
        self,
        workouts: Iterable[Workout],
        reference_date: Optional[datetime.date] = None,
    ) -> list[str]:
        """Return up to three muscle groups, least trained first."""
        rows = list(workouts)
        if not rows:
            return list(self.DEFAULT_GROUPS)
        counts = self.muscle_group_frequency(rows, reference_date)
        if not counts:
            return list(self.DEFAULT_GROUPS)
        ranked = sorted(counts.items(), key=lambda item: item[1])
        return [group for group, _count in ranked[: self.LIMIT]]
