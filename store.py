"""In-memory authoritative state with write-through persistence.

Every mutation validates its input first, then writes durably through the
storage adapter and only applies the change in memory once that write has
resolved. A failed write therefore leaves the in-memory state untouched and
surfaces as :class:`errors.StorageError`. Writes are serialised per
collection with one ``asyncio.Lock`` each; the read-modify-write of a record
happens inside the lock so interleaved coroutines never lose an update.
"""
from __future__ import annotations

import asyncio
import bisect
import contextlib
import datetime
import logging
from typing import Any, Callable, Iterable, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from algorithms.fitness_math import BMRResult, FitnessMath
from db import COLLECTIONS, StorageAdapter
from errors import (
    FitnessLogError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    ValidationError,
)
from models import (
    AppSettings,
    Exercise,
    UserProfile,
    Workout,
    WorkoutDraft,
    WorkoutExercise,
    builtin_exercises,
    new_id,
    utcnow,
)
from recommendation_service import RecommendationService
from stats_service import StatisticsService

LOGGER = logging.getLogger(__name__)


class StoreSnapshot(BaseModel):
    """Immutable view of the whole store handed to observers."""

    model_config = ConfigDict(frozen=True)

    workouts: tuple[Workout, ...] = ()
    current_workout: WorkoutDraft = Field(default_factory=WorkoutDraft)
    exercises: tuple[Exercise, ...] = ()
    profile: Optional[UserProfile] = None
    settings: AppSettings = Field(default_factory=AppSettings)


Observer = Callable[[StoreSnapshot], None]


class WorkoutStore:
    """Holds workouts, the draft, the catalogue, profile and settings."""

    def __init__(
        self,
        storage: StorageAdapter,
        today: Callable[[], datetime.date] = datetime.date.today,
        now: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self.storage = storage
        self.statistics = StatisticsService(today)
        self.recommender = RecommendationService(today)
        self._today = today
        self._now = now
        self._state = StoreSnapshot(exercises=tuple(builtin_exercises()))
        self._observers: list[Observer] = []
        self._locks = {name: asyncio.Lock() for name in COLLECTIONS}

    # -- state and observers ----------------------------------------------

    @property
    def snapshot(self) -> StoreSnapshot:
        return self._state

    @property
    def workouts(self) -> tuple[Workout, ...]:
        """Workouts in chronological order."""
        return self._state.workouts

    @property
    def exercises(self) -> tuple[Exercise, ...]:
        return self._state.exercises

    @property
    def profile(self) -> Optional[UserProfile]:
        return self._state.profile

    @property
    def settings(self) -> AppSettings:
        return self._state.settings

    @property
    def current_workout(self) -> WorkoutDraft:
        return self._state.current_workout

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register ``observer`` and return a callable that removes it."""
        self._observers.append(observer)
        return lambda: self.unsubscribe(observer)

    def unsubscribe(self, observer: Observer) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def _publish(self, **changes: Any) -> None:
        self._state = self._state.model_copy(update=changes)
        for observer in list(self._observers):
            try:
                observer(self._state)
            except Exception:
                LOGGER.exception("store observer %r failed", observer)

    @contextlib.asynccontextmanager
    async def _all_locks(self):
        async with contextlib.AsyncExitStack() as stack:
            for name in COLLECTIONS:
                await stack.enter_async_context(self._locks[name])
            yield

    async def load(self) -> StoreSnapshot:
        """Hydrate memory from storage, seeding missing built-in exercises."""
        exercises = await self.storage.list("exercises")
        stored = {e.id for e in exercises}
        missing = [e for e in builtin_exercises() if e.id not in stored]
        if missing:
            LOGGER.info("seeding %d built-in exercises", len(missing))
            await self.storage.save_many("exercises", missing)
            exercises = await self.storage.list("exercises")
        workouts = await self.storage.list("workouts")
        self._publish(
            workouts=tuple(reversed(workouts)),
            exercises=tuple(exercises),
            profile=await self.storage.get("profile"),
            settings=await self.storage.load_settings(),
        )
        return self._state

    # -- lookups -----------------------------------------------------------

    def _find_workout(self, workout_id: str) -> Workout:
        for workout in self._state.workouts:
            if workout.id == workout_id:
                return workout
        raise NotFoundError(f"workout not found: {workout_id}")

    def _find_exercise(self, exercise_id: str) -> Exercise:
        for exercise in self._state.exercises:
            if exercise.id == exercise_id:
                return exercise
        raise NotFoundError(f"exercise not found: {exercise_id}")

    def get_workout(self, workout_id: str) -> Workout:
        return self._find_workout(workout_id)

    def get_exercise(self, exercise_id: str) -> Exercise:
        return self._find_exercise(exercise_id)

    def get_workouts(self, limit: Optional[int] = None, offset: int = 0) -> list[Workout]:
        """Return workouts newest date first, same-date ones newest first."""
        ordered = list(reversed(self._state.workouts))
        end = None if limit is None else offset + limit
        return ordered[offset:end]

    def get_exercises(
        self, muscle_group: Optional[str] = None, category: Optional[str] = None
    ) -> list[Exercise]:
        return [
            e
            for e in self._state.exercises
            if (muscle_group is None or e.muscle_group == muscle_group)
            and (category is None or e.category == category)
        ]

    def exercises_by_muscle_group(self) -> dict[str, list[Exercise]]:
        groups: dict[str, list[Exercise]] = {}
        for exercise in self._state.exercises:
            groups.setdefault(exercise.muscle_group, []).append(exercise)
        return groups

    # -- draft -------------------------------------------------------------

    def _entry(self, item: Any) -> WorkoutExercise:
        """Build a logged entry from a full record or an ``exerciseId`` form row."""
        if isinstance(item, Mapping):
            ref = item.get("exerciseId", item.get("exercise_id"))
            if ref is not None:
                extra = {
                    k: v for k, v in item.items() if k not in ("exerciseId", "exercise_id")
                }
                return WorkoutExercise.from_exercise(self._find_exercise(ref), **extra)
        return WorkoutExercise.parse(item)

    def _entries(self, items: Optional[Iterable[Any]]) -> tuple[WorkoutExercise, ...]:
        return tuple(self._entry(item) for item in items or ())

    def _draft(self, draft: Any) -> WorkoutDraft:
        if draft is None or isinstance(draft, WorkoutDraft):
            return draft or WorkoutDraft()
        if isinstance(draft, Mapping):
            data = WorkoutDraft.normalize(draft)
            data["exercises"] = self._entries(data.get("exercises"))
            return WorkoutDraft.parse(data)
        return WorkoutDraft.parse(draft)

    def set_current_workout(self, draft: Any) -> WorkoutDraft:
        self._publish(current_workout=self._draft(draft))
        return self._state.current_workout

    def clear_current_workout(self) -> None:
        self._publish(current_workout=WorkoutDraft())

    def add_to_current_workout(
        self,
        exercise_id: str,
        sets: int = 1,
        reps: int = 10,
        weight: float = 20.0,
        date: Optional[datetime.date] = None,
    ) -> WorkoutDraft:
        """Append a catalogue exercise to the draft."""
        entry = WorkoutExercise.from_exercise(
            self._find_exercise(exercise_id), sets, reps, weight
        )
        draft = self._state.current_workout
        draft = draft.merged(
            {
                "date": draft.date or date or self._today(),
                "exercises": draft.exercises + (entry,),
            }
        )
        self._publish(current_workout=draft)
        return draft

    def _draft_index(self, index: int) -> None:
        if not 0 <= index < len(self._state.current_workout.exercises):
            raise NotFoundError(f"no draft exercise at index {index}")

    def update_current_exercise(self, index: int, **changes: Any) -> WorkoutExercise:
        """Change a draft entry; its calories are recomputed immediately."""
        self._draft_index(index)
        draft = self._state.current_workout
        entries = list(draft.exercises)
        entries[index] = entries[index].merged(changes)
        self._publish(current_workout=draft.merged({"exercises": tuple(entries)}))
        return entries[index]

    def remove_current_exercise(self, index: int) -> None:
        self._draft_index(index)
        draft = self._state.current_workout
        entries = draft.exercises[:index] + draft.exercises[index + 1:]
        self._publish(current_workout=draft.merged({"exercises": entries}))

    # -- workouts ----------------------------------------------------------

    def _with_workout(self, workout: Workout) -> tuple[Workout, ...]:
        rows = list(self._state.workouts)
        pos = bisect.bisect_right([w.date for w in rows], workout.date)
        rows.insert(pos, workout)
        return tuple(rows)

    async def add_workout(self, draft: Any = None) -> Workout:
        """Save ``draft`` (the current draft by default) as a new workout."""
        draft = self._draft(draft) if draft is not None else self._state.current_workout
        if not draft.exercises:
            raise ValidationError("a workout needs at least one exercise")
        workout = Workout.parse(
            {
                "id": new_id(),
                "date": draft.date or self._today(),
                "exercises": draft.exercises,
                "duration": draft.duration,
                "notes": draft.notes,
            }
        )
        async with self._locks["workouts"]:
            await self.storage.save("workouts", workout)
            self._publish(
                workouts=self._with_workout(workout), current_workout=WorkoutDraft()
            )
        LOGGER.debug("saved workout %s on %s", workout.id, workout.date)
        return workout

    async def update_workout(self, workout_id: str, patch: Mapping[str, Any]) -> Workout:
        """Shallow-merge ``patch`` into an existing workout."""
        patch = Workout.normalize(patch)
        if patch.get("id", workout_id) != workout_id:
            raise ValidationError("workout id cannot be changed")
        if "exercises" in patch:
            patch["exercises"] = self._entries(patch["exercises"])
        async with self._locks["workouts"]:
            current = self._find_workout(workout_id)
            updated = current.merged(patch)
            await self.storage.save("workouts", updated)
            if updated.date == current.date:
                rows = tuple(updated if w.id == workout_id else w for w in self._state.workouts)
            else:
                self._state = self._state.model_copy(
                    update={
                        "workouts": tuple(
                            w for w in self._state.workouts if w.id != workout_id
                        )
                    }
                )
                rows = self._with_workout(updated)
            self._publish(workouts=rows)
        return updated

    async def delete_workout(self, workout_id: str) -> None:
        async with self._locks["workouts"]:
            self._find_workout(workout_id)
            await self.storage.delete("workouts", workout_id)
            self._publish(
                workouts=tuple(w for w in self._state.workouts if w.id != workout_id)
            )

    # -- exercises ---------------------------------------------------------

    async def add_exercise(self, definition: Any) -> Exercise:
        """Add a custom exercise; the id and custom flag are always assigned here."""
        if isinstance(definition, Mapping):
            data = Exercise.normalize(definition)
        else:
            data = Exercise.parse(definition).to_dict()
        data.update(id=new_id(), isCustom=True)
        exercise = Exercise.parse(data)
        async with self._locks["exercises"]:
            await self.storage.save("exercises", exercise)
            self._publish(exercises=self._state.exercises + (exercise,))
        return exercise

    def _editable(self, exercise_id: str) -> Exercise:
        exercise = self._find_exercise(exercise_id)
        if not exercise.is_custom:
            raise PermissionDeniedError(f"built-in exercise cannot be changed: {exercise_id}")
        return exercise

    async def update_exercise(self, exercise_id: str, patch: Mapping[str, Any]) -> Exercise:
        patch = Exercise.normalize(patch)
        if patch.get("id", exercise_id) != exercise_id:
            raise ValidationError("exercise id cannot be changed")
        if patch.get("isCustom", True) is not True:
            raise ValidationError("a custom exercise cannot become built-in")
        async with self._locks["exercises"]:
            updated = self._editable(exercise_id).merged(patch)
            await self.storage.save("exercises", updated)
            self._publish(
                exercises=tuple(
                    updated if e.id == exercise_id else e for e in self._state.exercises
                )
            )
        return updated

    async def delete_exercise(self, exercise_id: str) -> None:
        async with self._locks["exercises"]:
            self._editable(exercise_id)
            await self.storage.delete("exercises", exercise_id)
            self._publish(
                exercises=tuple(e for e in self._state.exercises if e.id != exercise_id)
            )

    # -- profile and settings ----------------------------------------------

    async def set_profile(self, profile: Any) -> UserProfile:
        """Replace the profile, keeping the existing identity when none is given."""
        if isinstance(profile, Mapping):
            data = UserProfile.normalize(profile)
        else:
            data = UserProfile.parse(profile).to_dict()
        now = self._now()
        async with self._locks["profile"]:
            existing = self._state.profile
            if not data.get("id"):
                data["id"] = existing.id if existing is not None else new_id()
            if not data.get("createdAt"):
                data["createdAt"] = existing.created_at if existing is not None else now
            if not data.get("updatedAt") or existing is not None:
                data["updatedAt"] = now
            result = UserProfile.parse(data)
            await self.storage.save("profile", result)
            self._publish(profile=result)
        return result

    async def update_profile(self, patch: Mapping[str, Any]) -> UserProfile:
        patch = UserProfile.normalize(patch)
        async with self._locks["profile"]:
            current = self._state.profile
            if current is None:
                raise NotFoundError("no profile exists yet")
            if patch.get("id", current.id) != current.id:
                raise ValidationError("profile id cannot be changed")
            patch["updatedAt"] = self._now()
            updated = current.merged(patch)
            await self.storage.save("profile", updated)
            self._publish(profile=updated)
        return updated

    async def update_settings(self, patch: Mapping[str, Any]) -> AppSettings:
        """Deep-merge ``patch``; sibling keys of nested groups are kept."""
        async with self._locks["settings"]:
            updated = self._state.settings.merged(patch)
            await self.storage.save("settings", updated)
            self._publish(settings=updated)
        return updated

    # -- derived metrics ---------------------------------------------------

    def calculate_bmr(self, profile: Any = None) -> BMRResult:
        if profile is None:
            profile = self._state.profile
            if profile is None:
                raise NotFoundError("no profile exists yet")
        return FitnessMath.calculate_bmr(UserProfile.parse(profile))

    def get_recommendations(self, reference_date: Optional[datetime.date] = None) -> list[str]:
        return self.recommender.recommend(self._state.workouts, reference_date)

    def get_workout_stats(self, reference_date: Optional[datetime.date] = None) -> dict:
        return self.statistics.workout_stats(self._state.workouts, reference_date)

    def daily_activity(self, reference_date: Optional[datetime.date] = None) -> list[dict]:
        return self.statistics.daily_activity(self._state.workouts, reference_date)

    def history(self, muscle_group: Optional[str] = None, sort_by: str = "date") -> list[Workout]:
        return self.statistics.history(self.get_workouts(), muscle_group, sort_by)

    def muscle_groups(self) -> list[str]:
        """Muscle groups trained across the whole history."""
        return self.statistics.muscle_groups(self._state.workouts)

    def calories_by_muscle_group(self, workout_id: str) -> dict[str, int]:
        return self.statistics.calories_by_muscle_group(self._find_workout(workout_id))

    # -- whole-store operations --------------------------------------------

    async def export_all(self) -> str:
        return await self.storage.export_all()

    async def import_all(self, serialized: Any) -> dict[str, int]:
        """Import an export document and reload state from storage.

        State is reloaded even when the import stops part-way, so memory
        reflects exactly what was written. A reload that fails after a failed
        import is logged and the import error is raised.
        """
        async with self._all_locks():
            try:
                applied = await self.storage.import_all(serialized)
            except FitnessLogError:
                try:
                    await self.load()
                except StorageError:
                    LOGGER.exception("reloading after a failed import failed")
                raise
            await self.load()
        return applied

    async def clear_all(self) -> None:
        """Delete all data and return to a freshly seeded store."""
        async with self._all_locks():
            await self.storage.clear()
            self._publish(
                workouts=(),
                current_workout=WorkoutDraft(),
                exercises=(),
                profile=None,
                settings=AppSettings(),
            )
            await self.load()
