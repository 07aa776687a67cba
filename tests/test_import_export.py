import datetime
import json
import logging
import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import LocalDatabase, SnapshotDatabase, open_storage
from errors import FormatError, PartialImportError, StorageError
from store import WorkoutStore

TODAY = datetime.date(2024, 6, 30)


class FlakyStorage(LocalDatabase):
    """Fails after ``budget`` workout writes."""

    budget = None

    async def save(self, collection, entity):
        if collection == "workouts" and self.budget is not None:
            if self.budget == 0:
                raise StorageError("write rejected")
            self.budget -= 1
        return await super().save(collection, entity)


class NoBackupStorage(SnapshotDatabase):
    async def backup(self):
        raise StorageError("backups unavailable")


async def _populated(path, layout="collections") -> WorkoutStore:
    store = WorkoutStore(open_storage(str(path), layout), today=lambda: TODAY)
    await store.load()
    await store.set_profile(
        {"name": "Sora", "age": 35, "gender": "female", "height": 162,
         "weight": 55, "activityLevel": "light", "goals": ["endurance"]}
    )
    await store.update_settings({"theme": "dark", "units": {"weight": "lbs"}})
    await store.add_exercise({"name": "Burpee", "caloriesPerRep": 1.2, "muscleGroup": "cardio"})
    await store.add_workout({"date": "2024-06-01", "exercises": [{"exerciseId": "squat", "sets": 3}]})
    await store.add_workout({"date": "2024-06-10", "exercises": [{"exerciseId": "bench-press"}], "notes": "a"})
    await store.add_workout({"date": "2024-06-10", "exercises": [{"exerciseId": "pull-up"}], "notes": "b"})
    return store


def _content(workout):
    data = workout.to_dict()
    data.pop("id")
    return data


@pytest.mark.asyncio
@pytest.mark.parametrize("source_layout,target_layout", [
    ("collections", "collections"),
    ("collections", "snapshot"),
    ("snapshot", "collections"),
])
async def test_round_trip(tmp_path, source_layout, target_layout):
    source = await _populated(tmp_path / "source.db", source_layout)
    document = await source.export_all()

    target = WorkoutStore(open_storage(str(tmp_path / "target.db"), target_layout), today=lambda: TODAY)
    await target.load()
    applied = await target.import_all(document)

    assert applied == {"profile": 1, "settings": 1, "workouts": 3, "exercises": 1}
    assert [_content(w) for w in target.get_workouts()] == [_content(w) for w in source.get_workouts()]
    assert {w.id for w in target.workouts}.isdisjoint({w.id for w in source.workouts})
    assert target.profile == source.profile
    assert target.settings == source.settings
    assert len(target.exercises) == 27
    burpee = [e for e in target.exercises if e.is_custom]
    assert [e.name for e in burpee] == ["Burpee"]

    again = json.loads(await target.export_all())
    assert set(again) == {"workouts", "exercises", "profile", "settings", "exportDate"}


@pytest.mark.asyncio
async def test_import_twice_duplicates_workouts(tmp_path):
    store = await _populated(tmp_path / "workout.db")
    document = await store.export_all()
    await store.import_all(document)
    assert len(store.workouts) == 6
    assert len([e for e in store.exercises if e.is_custom]) == 2
    assert len(await store.storage.list_backups()) == 1


@pytest.mark.asyncio
async def test_import_merges_settings(tmp_path):
    store = await _populated(tmp_path / "workout.db")
    document = {"workouts": [], "settings": {"language": "en"}}
    applied = await store.import_all(json.dumps(document))
    assert applied["settings"] == 1
    assert store.settings.language == "en"
    assert store.settings.theme == "dark"
    assert store.profile.name == "Sora"


@pytest.mark.asyncio
async def test_import_without_workouts_is_rejected(tmp_path):
    store = await _populated(tmp_path / "workout.db")
    before = store.snapshot
    with pytest.raises(FormatError):
        await store.import_all(json.dumps({"exercises": []}))
    assert store.snapshot.workouts == before.workouts
    assert store.snapshot.profile == before.profile


@pytest.mark.asyncio
async def test_partial_import_keeps_applied_records(tmp_path):
    source = await _populated(tmp_path / "source.db")
    document = await source.export_all()

    storage = FlakyStorage(str(tmp_path / "target.db"))
    target = WorkoutStore(storage, today=lambda: TODAY)
    await target.load()
    storage.budget = 2
    with pytest.raises(PartialImportError) as info:
        await target.import_all(document)

    assert info.value.applied == {"profile": 1, "settings": 1, "workouts": 2, "exercises": 0}
    assert isinstance(info.value.cause, StorageError)
    assert len(target.workouts) == 2
    assert target.profile is not None
    assert [w.date for w in target.workouts] == [datetime.date(2024, 6, 1), datetime.date(2024, 6, 10)]


@pytest.mark.asyncio
async def test_backup_failure_does_not_abort_import(tmp_path, caplog):
    source = await _populated(tmp_path / "source.db")
    document = await source.export_all()
    target = WorkoutStore(NoBackupStorage(str(tmp_path / "target.db")), today=lambda: TODAY)
    await target.load()
    with caplog.at_level(logging.WARNING, logger="db"):
        applied = await target.import_all(document)
    assert applied["workouts"] == 3
    assert "backup before import failed" in caplog.text


class BrokenReloadStorage(FlakyStorage):
    """Reads fail once the workout write budget is exhausted."""

    async def list(self, collection):
        if self.budget == 0:
            raise StorageError("read rejected")
        return await super().list(collection)


@pytest.mark.asyncio
async def test_failed_reload_keeps_partial_import_error(tmp_path, caplog):
    source = await _populated(tmp_path / "source.db")
    document = await source.export_all()

    storage = BrokenReloadStorage(str(tmp_path / "target.db"))
    target = WorkoutStore(storage, today=lambda: TODAY)
    await target.load()
    storage.budget = 2
    with caplog.at_level(logging.ERROR, logger="store"):
        with pytest.raises(PartialImportError) as info:
            await target.import_all(document)

    assert info.value.applied["workouts"] == 2
    assert "reloading after a failed import failed" in caplog.text
