from __future__ import annotations

import asyncio
import sqlite3
import aiosqlite
import json
import logging
import os
import time
from contextlib import contextmanager, asynccontextmanager
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from errors import (
    FormatError,
    NotFoundError,
    PartialImportError,
    StorageError,
    ValidationError,
)
from models import AppSettings, Entity, Exercise, UserProfile, Workout, new_id, utcnow

LOGGER = logging.getLogger(__name__)

COLLECTIONS = ("workouts", "exercises", "profile", "settings")
ENTITY_TYPES: dict[str, type[Entity]] = {
    "workouts": Workout,
    "exercises": Exercise,
    "profile": UserProfile,
    "settings": AppSettings,
}
PROFILE_KEY = "user-profile"
SETTINGS_KEY = "app-settings"
SNAPSHOT_KEY = "workout-storage"


def _entity_type(collection: str) -> type[Entity]:
    try:
        return ENTITY_TYPES[collection]
    except KeyError:
        raise ValidationError(f"unknown collection: {collection}") from None


def _dumps(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False)


def _newest_first(workouts: Iterable[Workout]) -> List[Workout]:
    """Order by date descending; same-date records newest insertion first."""
    return sorted(reversed(list(workouts)), key=lambda w: w.date, reverse=True)


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "workouts": (
            """CREATE TABLE workouts (
                    id TEXT PRIMARY KEY,
                    date TEXT NOT NULL,
                    data TEXT NOT NULL
                );""",
            ["id", "date", "data"],
        ),
        "exercises": (
            """CREATE TABLE exercises (
                    id TEXT PRIMARY KEY,
                    muscle_group TEXT NOT NULL,
                    category TEXT NOT NULL,
                    is_custom INTEGER NOT NULL DEFAULT 0,
                    data TEXT NOT NULL
                );""",
            ["id", "muscle_group", "category", "is_custom", "data"],
        ),
        "profile": (
            """CREATE TABLE profile (
                    key TEXT PRIMARY KEY,
                    data TEXT NOT NULL
                );""",
            ["key", "data"],
        ),
        "settings": (
            """CREATE TABLE settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );""",
            ["key", "value"],
        ),
        "key_value": (
            """CREATE TABLE key_value (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );""",
            ["key", "value"],
        ),
        "backups": (
            """CREATE TABLE backups (
                    key TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL,
                    document TEXT NOT NULL
                );""",
            ["key", "created_at", "document"],
        ),
    }

    _INDEX_DEFINITIONS = (
        "CREATE INDEX IF NOT EXISTS idx_workouts_date ON workouts (date);",
        "CREATE INDEX IF NOT EXISTS idx_exercises_muscle_group ON exercises (muscle_group);",
        "CREATE INDEX IF NOT EXISTS idx_exercises_category ON exercises (category);",
    )

    def __init__(self, db_path: str = "workout.db") -> None:
        self._db_path = db_path
        self._ensure_schema()
        self._ensure_indexes()

    @property
    def db_path(self) -> str:
        return self._db_path

    @contextmanager
    def _connection(self):
        try:
            connection = sqlite3.connect(self._db_path)
        except sqlite3.Error as e:
            raise StorageError(f"cannot open {self._db_path}: {e}") from e
        try:
            yield connection
            connection.commit()
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)

    def _ensure_indexes(self) -> None:
        with self._connection() as conn:
            for sql in self._INDEX_DEFINITIONS:
                conn.execute(sql)

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        LOGGER.info("migrating table %s: %s -> %s", table, existing_cols, columns)
        conn.execute(f"DROP TABLE IF EXISTS {table}_old;")
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)

        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            missing = [c for c in columns if c not in existing_cols]
            if missing:
                def default_val(col: str) -> str:
                    if col == "is_custom":
                        return "0"
                    if col in ("category", "muscle_group"):
                        return "'custom'"
                    if col in ("data", "value", "document"):
                        return "'{}'"
                    return "NULL"

                defaults = ", ".join(default_val(c) for c in missing)
                conn.execute(
                    f"INSERT INTO {table} ({cols}, {', '.join(missing)}) SELECT {cols}, {defaults} FROM {table}_old;"
                )
            else:
                conn.execute(
                    f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;"
                )
        conn.execute(f"DROP TABLE {table}_old;")


class AsyncDatabase(Database):
    """Provides asynchronous connection management."""

    @asynccontextmanager
    async def _async_connection(self):
        try:
            conn = await aiosqlite.connect(self._db_path)
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"cannot open {self._db_path}: {e}") from e
        try:
            yield conn
            await conn.commit()
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            await conn.close()


class AsyncBaseRepository(AsyncDatabase):
    """Asynchronous repository helpers using aiosqlite."""

    async def execute(self, query: str, params: Tuple = ()) -> int:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            return cursor.rowcount

    async def execute_many(self, query: str, rows: Iterable[Tuple]) -> None:
        async with self._async_connection() as conn:
            await conn.executemany(query, list(rows))

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            return list(rows)


class StorageAdapter(AsyncBaseRepository):
    """Keyed storage for the four collections plus whole-store export/import.

    Subclasses decide how records are laid out on disk; export and import are
    written purely in terms of :meth:`save`, :meth:`get` and :meth:`list` so
    every layout produces the same export document.
    """

    def __init__(self, db_path: str = "workout.db", backup_limit: int = 5) -> None:
        super().__init__(db_path)
        self.backup_limit = backup_limit

    async def save(self, collection: str, entity: Any) -> Entity:
        raise NotImplementedError

    async def save_many(self, collection: str, entities: Iterable[Any]) -> None:
        for entity in entities:
            await self.save(collection, entity)

    async def get(self, collection: str, key: Optional[str] = None) -> Optional[Entity]:
        raise NotImplementedError

    async def list(self, collection: str) -> List[Entity]:
        raise NotImplementedError

    async def delete(self, collection: str, key: Optional[str] = None) -> None:
        raise NotImplementedError

    async def clear(self) -> None:
        raise NotImplementedError

    async def list_workouts(
        self, limit: Optional[int] = None, offset: int = 0
    ) -> List[Workout]:
        """Return workouts newest date first."""
        rows = await self.list("workouts")
        end = None if limit is None else offset + limit
        return rows[offset:end]

    async def load_settings(self) -> AppSettings:
        settings = await self.get("settings")
        return settings if settings is not None else AppSettings()

    # -- backups -----------------------------------------------------------

    async def backup(self) -> str:
        """Store the current export document and return its key."""
        document = await self.export_all()
        stamp = int(time.time() * 1000)
        taken = {k for k, _created in await self.list_backups()}
        while f"backup-{stamp}" in taken:
            stamp += 1
        key = f"backup-{stamp}"
        await self.execute(
            "INSERT INTO backups (key, created_at, document) VALUES (?, ?, ?);",
            (key, utcnow().isoformat(), document),
        )
        await self.execute(
            "DELETE FROM backups WHERE key NOT IN "
            "(SELECT key FROM backups ORDER BY created_at DESC, rowid DESC LIMIT ?);",
            (self.backup_limit,),
        )
        return key

    async def list_backups(self) -> list[tuple[str, str]]:
        rows = await self.fetch_all(
            "SELECT key, created_at FROM backups ORDER BY created_at DESC, rowid DESC;"
        )
        return [(r[0], r[1]) for r in rows]

    async def fetch_backup(self, key: str) -> str:
        rows = await self.fetch_all(
            "SELECT document FROM backups WHERE key = ?;", (key,)
        )
        if not rows:
            raise NotFoundError(f"backup not found: {key}")
        return rows[0][0]

    # -- export / import ---------------------------------------------------

    async def export_all(self) -> str:
        """Serialise all collections into a single JSON document."""
        workouts = await self.list("workouts")
        exercises = await self.list("exercises")
        profile = await self.get("profile")
        settings = await self.load_settings()
        document = {
            "workouts": [w.to_dict() for w in workouts],
            "exercises": [e.to_dict() for e in exercises],
            "profile": profile.to_dict() if profile is not None else None,
            "settings": settings.to_dict(),
            "exportDate": utcnow().isoformat(),
        }
        return json.dumps(document, indent=2, ensure_ascii=False)

    @staticmethod
    def _parse_document(serialized: str | bytes | Mapping[str, Any]) -> Mapping[str, Any]:
        if isinstance(serialized, Mapping):
            document = serialized
        else:
            try:
                document = json.loads(serialized)
            except (TypeError, ValueError) as e:
                raise FormatError(f"import document is not valid JSON: {e}") from e
        if not isinstance(document, Mapping):
            raise FormatError("import document must be a JSON object")
        if not isinstance(document.get("workouts"), list):
            raise FormatError("import document requires a 'workouts' array")
        exercises = document.get("exercises")
        if exercises is not None and not isinstance(exercises, list):
            raise FormatError("'exercises' must be an array")
        settings = document.get("settings")
        if settings is not None and not isinstance(settings, Mapping):
            raise FormatError("'settings' must be an object")
        return document

    async def import_all(self, serialized: str | bytes | Mapping[str, Any]) -> dict[str, int]:
        """Apply an export document on top of the current state.

        The whole document is validated before anything is written. The
        current state is backed up first; a failed backup is logged and the
        import continues. Workouts and custom exercises are added as new
        records, so importing the same document twice duplicates them. A
        write failure part-way raises :class:`PartialImportError` and leaves
        the records applied so far in place.
        """
        document = self._parse_document(serialized)
        try:
            workouts = [Workout.parse(raw) for raw in document["workouts"]]
            exercises = [
                Exercise.parse(raw)
                for raw in document.get("exercises") or []
                if isinstance(raw, Mapping) and (raw.get("isCustom") or raw.get("is_custom"))
            ]
            raw_profile = document.get("profile")
            profile = UserProfile.parse(raw_profile) if raw_profile else None
            raw_settings = document.get("settings")
            settings = (
                (await self.load_settings()).merged(raw_settings) if raw_settings else None
            )
        except ValidationError as e:
            if isinstance(e, FormatError):
                raise
            raise FormatError(f"invalid record in import document: {e}") from e

        try:
            backup_key = await self.backup()
            LOGGER.info("stored pre-import backup %s", backup_key)
        except (StorageError, ValidationError) as e:
            LOGGER.warning("backup before import failed, continuing: %s", e)

        applied = {"profile": 0, "settings": 0, "workouts": 0, "exercises": 0}
        try:
            if profile is not None:
                await self.save("profile", profile)
                applied["profile"] = 1
            if settings is not None:
                await self.save("settings", settings)
                applied["settings"] = 1
            # exports list newest first; replay oldest first to keep ordering
            for workout in reversed(workouts):
                await self.save("workouts", workout.merged({"id": new_id()}))
                applied["workouts"] += 1
            for exercise in exercises:
                await self.save(
                    "exercises", exercise.merged({"id": new_id(), "isCustom": True})
                )
                applied["exercises"] += 1
        except StorageError as e:
            LOGGER.exception("import failed after applying %s", applied)
            raise PartialImportError(f"import failed part-way: {e}", applied, e) from e
        LOGGER.info("imported %s", applied)
        return applied


class LocalDatabase(StorageAdapter):
    """Four-collection keyed layout with a date index on workouts."""

    _UPSERT = {
        "workouts": (
            "INSERT INTO workouts (id, date, data) VALUES (?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET date=excluded.date, data=excluded.data;"
        ),
        "exercises": (
            "INSERT INTO exercises (id, muscle_group, category, is_custom, data) VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET muscle_group=excluded.muscle_group, "
            "category=excluded.category, is_custom=excluded.is_custom, data=excluded.data;"
        ),
        "profile": (
            "INSERT INTO profile (key, data) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET data=excluded.data;"
        ),
        "settings": (
            "INSERT INTO settings (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value;"
        ),
    }

    @staticmethod
    def _row(collection: str, entity: Entity) -> Tuple:
        data = _dumps(entity.to_dict())
        if collection == "workouts":
            return (entity.id, entity.date.isoformat(), data)
        if collection == "exercises":
            return (
                entity.id,
                entity.muscle_group,
                entity.category,
                1 if entity.is_custom else 0,
                data,
            )
        if collection == "profile":
            return (PROFILE_KEY, data)
        return (SETTINGS_KEY, data)

    async def save(self, collection: str, entity: Any) -> Entity:
        entity = _entity_type(collection).parse(entity)
        await self.execute(self._UPSERT[collection], self._row(collection, entity))
        return entity

    async def save_many(self, collection: str, entities: Iterable[Any]) -> None:
        model = _entity_type(collection)
        rows = [self._row(collection, model.parse(e)) for e in entities]
        await self.execute_many(self._UPSERT[collection], rows)

    async def get(self, collection: str, key: Optional[str] = None) -> Optional[Entity]:
        model = _entity_type(collection)
        if collection == "profile":
            rows = await self.fetch_all(
                "SELECT data FROM profile WHERE key = ?;", (PROFILE_KEY,)
            )
        elif collection == "settings":
            rows = await self.fetch_all(
                "SELECT value FROM settings WHERE key = ?;", (SETTINGS_KEY,)
            )
        else:
            rows = await self.fetch_all(
                f"SELECT data FROM {collection} WHERE id = ?;", (key,)
            )
        return model.parse(json.loads(rows[0][0])) if rows else None

    async def list(self, collection: str) -> List[Entity]:
        if collection == "workouts":
            return await self.list_workouts()
        if collection == "exercises":
            rows = await self.fetch_all("SELECT data FROM exercises ORDER BY rowid;")
            return [Exercise.parse(json.loads(r[0])) for r in rows]
        entity = await self.get(collection)
        return [entity] if entity is not None else []

    async def list_workouts(
        self, limit: Optional[int] = None, offset: int = 0
    ) -> List[Workout]:
        query = "SELECT data FROM workouts ORDER BY date DESC, rowid DESC"
        params: list[int] = []
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        if offset:
            if limit is None:
                query += " LIMIT -1"
            query += " OFFSET ?"
            params.append(offset)
        rows = await self.fetch_all(query + ";", tuple(params))
        return [Workout.parse(json.loads(r[0])) for r in rows]

    async def fetch_exercises(
        self, muscle_group: Optional[str] = None, category: Optional[str] = None
    ) -> List[Exercise]:
        query = "SELECT data FROM exercises"
        params: list[str] = []
        where_clauses: list[str] = []
        if muscle_group:
            where_clauses.append("muscle_group = ?")
            params.append(muscle_group)
        if category:
            where_clauses.append("category = ?")
            params.append(category)
        if where_clauses:
            query += " WHERE " + " AND ".join(where_clauses)
        rows = await self.fetch_all(query + " ORDER BY rowid;", tuple(params))
        return [Exercise.parse(json.loads(r[0])) for r in rows]

    async def delete(self, collection: str, key: Optional[str] = None) -> None:
        _entity_type(collection)
        if collection == "profile":
            table, column, key = "profile", "key", PROFILE_KEY
        elif collection == "settings":
            table, column, key = "settings", "key", SETTINGS_KEY
        else:
            table, column = collection, "id"
        deleted = await self.execute(f"DELETE FROM {table} WHERE {column} = ?;", (key,))
        if not deleted:
            raise NotFoundError(f"{collection} record not found: {key}")

    async def clear(self) -> None:
        async with self._async_connection() as conn:
            for table in COLLECTIONS:
                await conn.execute(f"DELETE FROM {table};")


class SnapshotDatabase(StorageAdapter):
    """Keeps the combined snapshot under one well-known key.

    Every write rewrites the whole document, which suits small logs and
    mirrors the single-key layout used by simple environments.
    Every read-modify-write of that document holds ``_write_lock``.
    """

    def __init__(self, db_path: str = "workout.db", backup_limit: int = 5) -> None:
        super().__init__(db_path, backup_limit)
        self._write_lock = asyncio.Lock()

    async def _read(self) -> dict[str, Any]:
        rows = await self.fetch_all(
            "SELECT value FROM key_value WHERE key = ?;", (SNAPSHOT_KEY,)
        )
        document = json.loads(rows[0][0]) if rows else {}
        return {
            "workouts": document.get("workouts") or [],
            "exercises": document.get("exercises") or [],
            "profile": document.get("profile"),
            "settings": document.get("settings"),
        }

    async def _write(self, document: dict[str, Any]) -> None:
        await self.execute(
            "INSERT INTO key_value (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
            (SNAPSHOT_KEY, _dumps(document)),
        )

    @staticmethod
    def _upsert(records: list[dict], entity: Entity) -> list[dict]:
        data = entity.to_dict()
        for i, record in enumerate(records):
            if record.get("id") == entity.id:
                return records[:i] + [data] + records[i + 1:]
        return records + [data]

    async def save(self, collection: str, entity: Any) -> Entity:
        entity = _entity_type(collection).parse(entity)
        async with self._write_lock:
            document = await self._read()
            if collection in ("profile", "settings"):
                document[collection] = entity.to_dict()
            else:
                document[collection] = self._upsert(document[collection], entity)
            await self._write(document)
        return entity

    async def save_many(self, collection: str, entities: Iterable[Any]) -> None:
        model = _entity_type(collection)
        parsed = [model.parse(entity) for entity in entities]
        async with self._write_lock:
            document = await self._read()
            for entity in parsed:
                document[collection] = self._upsert(document[collection], entity)
            await self._write(document)

    async def get(self, collection: str, key: Optional[str] = None) -> Optional[Entity]:
        model = _entity_type(collection)
        document = await self._read()
        if collection in ("profile", "settings"):
            raw = document[collection]
            return model.parse(raw) if raw else None
        for record in document[collection]:
            if record.get("id") == key:
                return model.parse(record)
        return None

    async def list(self, collection: str) -> List[Entity]:
        model = _entity_type(collection)
        document = await self._read()
        if collection in ("profile", "settings"):
            raw = document[collection]
            return [model.parse(raw)] if raw else []
        records = [model.parse(r) for r in document[collection]]
        if collection == "workouts":
            return _newest_first(records)
        return records

    async def delete(self, collection: str, key: Optional[str] = None) -> None:
        _entity_type(collection)
        async with self._write_lock:
            document = await self._read()
            if collection in ("profile", "settings"):
                if document[collection] is None:
                    raise NotFoundError(f"{collection} record not found")
                document[collection] = None
            else:
                kept = [r for r in document[collection] if r.get("id") != key]
                if len(kept) == len(document[collection]):
                    raise NotFoundError(f"{collection} record not found: {key}")
                document[collection] = kept
            await self._write(document)

    async def clear(self) -> None:
        async with self._write_lock:
            await self.execute("DELETE FROM key_value WHERE key = ?;", (SNAPSHOT_KEY,))


STORAGE_LAYOUTS: dict[str, type[StorageAdapter]] = {
    "collections": LocalDatabase,
    "snapshot": SnapshotDatabase,
}


def open_storage(
    db_path: str = "workout.db", layout: str = "collections", backup_limit: int = 5
) -> StorageAdapter:
    """Create the storage adapter for ``layout`` backed by ``db_path``."""
    try:
        adapter_cls = STORAGE_LAYOUTS[layout]
    except KeyError:
        raise ValidationError(f"unknown storage layout: {layout}") from None
    directory = os.path.dirname(os.path.abspath(db_path))
    os.makedirs(directory, exist_ok=True)
    LOGGER.debug("opening %s storage at %s", layout, db_path)
    return adapter_cls(db_path, backup_limit=backup_limit)
