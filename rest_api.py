import asyncio
import datetime
import logging
from typing import Optional

from fastapi import Body, FastAPI, HTTPException, Request, Response, WebSocket
from fastapi import WebSocketDisconnect

from algorithms import UnitConverter
from config import APP_VERSION, load_config
from db import open_storage
from errors import (
    FitnessLogError,
    NotFoundError,
    PartialImportError,
    PermissionDeniedError,
    StorageError,
)
from localization import Translator
from store import StoreSnapshot, WorkoutStore

LOGGER = logging.getLogger(__name__)

_STATUS_CODES = (
    (PartialImportError, 409),
    (PermissionDeniedError, 403),
    (NotFoundError, 404),
    (StorageError, 500),
)


def http_error(error: Exception) -> HTTPException:
    """Map a domain error onto the HTTP status a client should see."""
    if isinstance(error, PartialImportError):
        return HTTPException(
            status_code=409, detail={"message": str(error), "applied": error.applied}
        )
    for kind, status in _STATUS_CODES:
        if isinstance(error, kind):
            return HTTPException(status_code=status, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))


class FitnessAPI:
    """Provides REST endpoints for the fitness log."""

    def __init__(
        self,
        db_path: str = "workout.db",
        layout: str = "collections",
        *,
        backup_limit: int = 5,
        today=datetime.date.today,
    ) -> None:
        self.db_path = db_path
        self.store = WorkoutStore(
            open_storage(db_path, layout, backup_limit), today=today
        )
        self.translator = Translator()
        self.watchers: list[WebSocket] = []
        self._events: list[dict] = []
        self._loaded = False
        self._load_lock = asyncio.Lock()
        self.store.subscribe(self._on_change)
        self.app = FastAPI(title="Fitness Log", version=APP_VERSION)
        self.app.middleware("http")(self._flush_events)
        self._setup_routes()

    async def _ready(self) -> WorkoutStore:
        async with self._load_lock:
            if not self._loaded:
                await self.store.load()
                self._loaded = True
        return self.store

    def _labels(self, keys) -> list[str]:
        self.translator.set_language(self.store.settings.language)
        return [self.translator.gettext(k) for k in keys]

    async def _broadcast(self, event: dict) -> None:
        for ws in list(self.watchers):
            try:
                await ws.send_json(event)
            except (RuntimeError, WebSocketDisconnect) as e:
                LOGGER.info("dropping websocket watcher: %s", e)
                if ws in self.watchers:
                    self.watchers.remove(ws)

    def _on_change(self, snapshot: StoreSnapshot) -> None:
        if not self.watchers:
            return
        self._events.append(
            {
                "event": "updated",
                "workouts": len(snapshot.workouts),
                "exercises": len(snapshot.exercises),
                "draftExercises": len(snapshot.current_workout.exercises),
                "hasProfile": snapshot.profile is not None,
                "settings": snapshot.settings.to_dict(),
            }
        )

    async def _flush_events(self, request: Request, call_next):
        response = await call_next(request)
        while self._events:
            await self._broadcast(self._events.pop(0))
        return response

    def _setup_routes(self) -> None:
        @self.app.get(
            "/health",
            summary="Health check",
            description="Verify API and database connectivity.",
        )
        async def health():
            try:
                store = await self._ready()
                await store.storage.load_settings()
            except StorageError as e:
                raise http_error(e)
            return {"status": "ok"}

        @self.app.websocket("/ws/updates")
        async def updates_socket(ws: WebSocket):
            self.watchers.append(ws)
            await ws.accept()
            try:
                while True:
                    await ws.receive_text()
            except WebSocketDisconnect:
                LOGGER.debug("websocket watcher disconnected")
            finally:
                if ws in self.watchers:
                    self.watchers.remove(ws)

        # -- workouts ------------------------------------------------------

        @self.app.get("/workouts")
        async def list_workouts(
            limit: Optional[int] = None,
            offset: int = 0,
            muscle_group: Optional[str] = None,
            sort_by: str = "date",
        ):
            store = await self._ready()
            try:
                rows = store.history(muscle_group, sort_by)
            except ValueError as e:
                raise http_error(e)
            end = None if limit is None else offset + limit
            return [w.to_dict() for w in rows[offset:end]]

        @self.app.get("/workouts/muscle_groups")
        async def trained_muscle_groups():
            store = await self._ready()
            groups = store.muscle_groups()
            return {"muscleGroups": groups, "labels": self._labels(groups)}

        @self.app.get("/workouts/{workout_id}")
        async def get_workout(workout_id: str):
            store = await self._ready()
            try:
                return store.get_workout(workout_id).to_dict()
            except FitnessLogError as e:
                raise http_error(e)

        @self.app.get("/workouts/{workout_id}/breakdown")
        async def workout_breakdown(workout_id: str):
            store = await self._ready()
            try:
                totals = store.calories_by_muscle_group(workout_id)
            except FitnessLogError as e:
                raise http_error(e)
            return [
                {"muscleGroup": group, "label": label, "calories": calories}
                for (group, calories), label in zip(totals.items(), self._labels(totals))
            ]

        @self.app.post("/workouts")
        async def add_workout(draft: Optional[dict] = Body(None)):
            store = await self._ready()
            try:
                workout = await store.add_workout(draft)
            except FitnessLogError as e:
                raise http_error(e)
            return workout.to_dict()

        @self.app.put("/workouts/{workout_id}")
        async def update_workout(workout_id: str, patch: dict = Body(...)):
            store = await self._ready()
            try:
                return (await store.update_workout(workout_id, patch)).to_dict()
            except FitnessLogError as e:
                raise http_error(e)

        @self.app.delete("/workouts/{workout_id}")
        async def delete_workout(workout_id: str):
            store = await self._ready()
            try:
                await store.delete_workout(workout_id)
            except FitnessLogError as e:
                raise http_error(e)
            return {"status": "deleted"}

        # -- draft ---------------------------------------------------------

        @self.app.get("/draft")
        async def get_draft():
            store = await self._ready()
            return store.current_workout.to_dict()

        @self.app.put("/draft")
        async def set_draft(draft: dict = Body(...)):
            store = await self._ready()
            try:
                return store.set_current_workout(draft).to_dict()
            except FitnessLogError as e:
                raise http_error(e)

        @self.app.delete("/draft")
        async def clear_draft():
            store = await self._ready()
            store.clear_current_workout()
            return {"status": "cleared"}

        @self.app.post("/draft/exercises")
        async def add_draft_exercise(
            exercise_id: str = Body(..., alias="exerciseId"),
            sets: int = Body(1),
            reps: int = Body(10),
            weight: float = Body(20.0),
        ):
            store = await self._ready()
            try:
                draft = store.add_to_current_workout(exercise_id, sets, reps, weight)
            except FitnessLogError as e:
                raise http_error(e)
            return draft.to_dict()

        @self.app.put("/draft/exercises/{index}")
        async def update_draft_exercise(index: int, changes: dict = Body(...)):
            store = await self._ready()
            try:
                return store.update_current_exercise(index, **changes).to_dict()
            except FitnessLogError as e:
                raise http_error(e)

        @self.app.delete("/draft/exercises/{index}")
        async def remove_draft_exercise(index: int):
            store = await self._ready()
            try:
                store.remove_current_exercise(index)
            except FitnessLogError as e:
                raise http_error(e)
            return store.current_workout.to_dict()

        # -- exercises -----------------------------------------------------

        @self.app.get("/exercises")
        async def list_exercises(
            muscle_group: Optional[str] = None, category: Optional[str] = None
        ):
            store = await self._ready()
            return [e.to_dict() for e in store.get_exercises(muscle_group, category)]

        @self.app.get("/exercises/groups")
        async def exercises_by_group():
            store = await self._ready()
            groups = store.exercises_by_muscle_group()
            labels = self._labels(groups)
            return [
                {
                    "muscleGroup": group,
                    "label": label,
                    "exercises": [e.to_dict() for e in rows],
                }
                for (group, rows), label in zip(groups.items(), labels)
            ]

        @self.app.post("/exercises")
        async def add_exercise(definition: dict = Body(...)):
            store = await self._ready()
            try:
                return (await store.add_exercise(definition)).to_dict()
            except FitnessLogError as e:
                raise http_error(e)

        @self.app.put("/exercises/{exercise_id}")
        async def update_exercise(exercise_id: str, patch: dict = Body(...)):
            store = await self._ready()
            try:
                return (await store.update_exercise(exercise_id, patch)).to_dict()
            except FitnessLogError as e:
                raise http_error(e)

        @self.app.delete("/exercises/{exercise_id}")
        async def delete_exercise(exercise_id: str):
            store = await self._ready()
            try:
                await store.delete_exercise(exercise_id)
            except FitnessLogError as e:
                raise http_error(e)
            return {"status": "deleted"}

        # -- profile and settings ------------------------------------------

        @self.app.get("/profile")
        async def get_profile():
            store = await self._ready()
            if store.profile is None:
                raise HTTPException(status_code=404, detail="no profile exists yet")
            return store.profile.to_dict()

        @self.app.put("/profile")
        async def set_profile(profile: dict = Body(...)):
            store = await self._ready()
            try:
                return (await store.set_profile(profile)).to_dict()
            except FitnessLogError as e:
                raise http_error(e)

        @self.app.patch("/profile")
        async def update_profile(patch: dict = Body(...)):
            store = await self._ready()
            try:
                return (await store.update_profile(patch)).to_dict()
            except FitnessLogError as e:
                raise http_error(e)

        @self.app.get("/profile/metrics")
        async def profile_metrics():
            store = await self._ready()
            try:
                result = store.calculate_bmr()
            except FitnessLogError as e:
                raise http_error(e)
            data = result.model_dump(by_alias=True)
            data["bmiCategoryLabel"] = self._labels([result.bmi_category])[0]
            units = store.settings.units
            data["weight"] = UnitConverter.display_weight(store.profile.weight, units.weight)
            data["height"] = UnitConverter.display_height(store.profile.height, units.height)
            data["units"] = units.to_dict()
            return data

        @self.app.get("/settings")
        async def get_settings():
            store = await self._ready()
            return store.settings.to_dict()

        @self.app.patch("/settings")
        async def update_settings(patch: dict = Body(...)):
            store = await self._ready()
            try:
                return (await store.update_settings(patch)).to_dict()
            except FitnessLogError as e:
                raise http_error(e)

        # -- metrics -------------------------------------------------------

        @self.app.get("/stats")
        async def workout_stats(reference_date: Optional[datetime.date] = None):
            store = await self._ready()
            return store.get_workout_stats(reference_date)

        @self.app.get("/stats/daily")
        async def daily_activity(reference_date: Optional[datetime.date] = None):
            store = await self._ready()
            return store.daily_activity(reference_date)

        @self.app.get("/recommendations")
        async def recommendations(reference_date: Optional[datetime.date] = None):
            store = await self._ready()
            groups = store.get_recommendations(reference_date)
            return {"muscleGroups": groups, "labels": self._labels(groups)}

        # -- data management -----------------------------------------------

        @self.app.get("/export")
        async def export_data():
            store = await self._ready()
            try:
                document = await store.export_all()
            except FitnessLogError as e:
                raise http_error(e)
            filename = f"workout-data-{datetime.date.today().isoformat()}.json"
            return Response(
                document,
                media_type="application/json",
                headers={"Content-Disposition": f'attachment; filename="{filename}"'},
            )

        @self.app.post("/import")
        async def import_data(request: Request):
            store = await self._ready()
            try:
                applied = await store.import_all(await request.body())
            except FitnessLogError as e:
                raise http_error(e)
            return {"status": "imported", "applied": applied}

        @self.app.get("/backups")
        async def list_backups():
            store = await self._ready()
            rows = await store.storage.list_backups()
            return [{"key": key, "createdAt": created} for key, created in rows]

        @self.app.get("/backups/{key}")
        async def get_backup(key: str):
            store = await self._ready()
            try:
                document = await store.storage.fetch_backup(key)
            except FitnessLogError as e:
                raise http_error(e)
            return Response(document, media_type="application/json")

        @self.app.delete("/data")
        async def clear_data():
            store = await self._ready()
            try:
                await store.clear_all()
            except FitnessLogError as e:
                raise http_error(e)
            return {"status": "cleared"}


def create_app(config: Optional[dict] = None) -> FastAPI:
    """Build the application from a loaded configuration dictionary."""
    config = config or load_config()
    api = FitnessAPI(
        config["db_path"],
        config["storage_layout"],
        backup_limit=config["backup_limit"],
    )
    return api.app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app())
