import argparse
import asyncio
import datetime
import json
import logging
import os
import sys
from typing import Optional

from algorithms import FitnessMath, UnitConverter
from config import configure_logging, load_config
from db import open_storage
from errors import FitnessLogError
from localization import Translator
from models import UserProfile
from store import WorkoutStore

LOGGER = logging.getLogger(__name__)


def open_store(
    db_path: str,
    layout: str = "collections",
    backup_limit: int = 5,
    today=datetime.date.today,
) -> WorkoutStore:
    return WorkoutStore(open_storage(db_path, layout, backup_limit), today=today)


async def _loaded(store: WorkoutStore) -> WorkoutStore:
    await store.load()
    return store


def export_data(store: WorkoutStore, output_dir: str = ".") -> str:
    """Write the export document to ``workout-data-YYYY-MM-DD.json``."""
    document = asyncio.run(store.export_all())
    os.makedirs(output_dir, exist_ok=True)
    out_path = os.path.join(
        output_dir, f"workout-data-{datetime.date.today().isoformat()}.json"
    )
    with open(out_path, "w", encoding="utf-8") as f:
        f.write(document)
    LOGGER.info("exported data to %s", out_path)
    return out_path


def import_data(store: WorkoutStore, path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        document = f.read()
    return asyncio.run(_import(store, document))


async def _import(store: WorkoutStore, document: str) -> dict:
    await store.load()
    return await store.import_all(document)


def backup_db(store: WorkoutStore) -> str:
    return asyncio.run(store.storage.backup())


def list_backups(store: WorkoutStore) -> list:
    return asyncio.run(store.storage.list_backups())


def restore_db(store: WorkoutStore, key: str) -> dict:
    """Replace all data with the backup stored under ``key``."""
    return asyncio.run(_restore(store, key))


async def _restore(store: WorkoutStore, key: str) -> dict:
    document = await store.storage.fetch_backup(key)
    await store.storage.backup()
    await store.clear_all()
    return await store.import_all(document)


def workout_stats(store: WorkoutStore, reference_date=None) -> dict:
    asyncio.run(_loaded(store))
    return store.get_workout_stats(reference_date)


def recommend(store: WorkoutStore, reference_date=None) -> list[str]:
    asyncio.run(_loaded(store))
    return store.get_recommendations(reference_date)


def bmr_report(store: WorkoutStore, args: argparse.Namespace) -> dict:
    """Metrics for the stored profile, or for the body values on the command line."""
    if args.weight is None:
        asyncio.run(_loaded(store))
        result = store.calculate_bmr()
    else:
        profile = UserProfile.parse(
            {
                "name": "cli",
                "age": args.age,
                "gender": args.gender,
                "height": args.height,
                "weight": args.weight,
                "activityLevel": args.activity,
            }
        )
        result = FitnessMath.calculate_bmr(profile)
    return result.model_dump(by_alias=True)


def demo_data(store: WorkoutStore) -> bool:
    """Populate the store with a profile and two workouts if it has none."""
    return asyncio.run(_demo(store))


async def _demo(store: WorkoutStore) -> bool:
    await store.load()
    if store.workouts:
        return False
    today = datetime.date.today()
    if store.profile is None:
        await store.set_profile(
            {
                "name": "Demo",
                "age": 30,
                "gender": "male",
                "height": 175,
                "weight": 70,
                "activityLevel": "moderate",
                "goals": ["muscle gain"],
            }
        )
    await store.add_workout(
        {
            "date": today - datetime.timedelta(days=2),
            "exercises": [
                {"exerciseId": "bench-press", "sets": 3, "reps": 10, "weight": 40},
                {"exerciseId": "pull-up", "sets": 3, "reps": 8, "weight": 0},
            ],
            "duration": 45,
        }
    )
    await store.add_workout(
        {
            "date": today,
            "exercises": [{"exerciseId": "squat", "sets": 5, "reps": 5, "weight": 60}],
            "notes": "Demo session",
        }
    )
    return True


def _date(value: str) -> datetime.date:
    try:
        return datetime.date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO date: {value}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Fitness log utility commands")
    parser.add_argument("--config", default=None, help="YAML configuration file")
    parser.add_argument("--db", default=None, help="override db_path")
    parser.add_argument(
        "--layout", choices=["collections", "snapshot"], default=None
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    exp = sub.add_parser("export")
    exp.add_argument("--out", default=".")

    imp = sub.add_parser("import")
    imp.add_argument("path")

    bkp = sub.add_parser("backup")
    bkp.add_argument("--list", action="store_true", dest="list_only")

    rst = sub.add_parser("restore")
    rst.add_argument("key")

    for name in ("stats", "recommend"):
        cmd = sub.add_parser(name)
        cmd.add_argument("--date", type=_date, default=None)

    bmr = sub.add_parser("bmr")
    bmr.add_argument("--age", type=int, default=30)
    bmr.add_argument("--gender", choices=["male", "female"], default="male")
    bmr.add_argument("--height", type=float, default=170.0)
    bmr.add_argument("--weight", type=float, default=None)
    bmr.add_argument(
        "--activity",
        choices=list(FitnessMath.ACTIVITY_MULTIPLIERS),
        default="moderate",
    )

    conv = sub.add_parser("convert")
    conv.add_argument("value", type=float)
    conv.add_argument("--unit", choices=["kg", "lbs", "cm", "ft"], required=True)

    sub.add_parser("demo")
    return parser


def run(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config(args.config)
    configure_logging(config["log_level"])
    if args.cmd == "convert":
        converted = {
            "kg": ("lbs", UnitConverter.kg_to_lb),
            "lbs": ("kg", UnitConverter.lb_to_kg),
            "cm": ("ft", UnitConverter.cm_to_ft),
            "ft": ("cm", UnitConverter.ft_to_cm),
        }
        target, convert = converted[args.unit]
        print(f"{args.value} {args.unit} = {convert(args.value)} {target}")
        return 0

    store = open_store(
        args.db or config["db_path"],
        args.layout or config["storage_layout"],
        config["backup_limit"],
    )
    try:
        if args.cmd == "export":
            print(export_data(store, args.out))
        elif args.cmd == "import":
            print(json.dumps(import_data(store, args.path)))
        elif args.cmd == "backup":
            if args.list_only:
                for key, created in list_backups(store):
                    print(f"{key}\t{created}")
            else:
                print(backup_db(store))
        elif args.cmd == "restore":
            print(json.dumps(restore_db(store, args.key)))
        elif args.cmd == "stats":
            print(json.dumps(workout_stats(store, args.date), indent=2))
        elif args.cmd == "recommend":
            groups = recommend(store, args.date)
            translator = Translator(store.settings.language)
            for group in groups:
                print(f"{group}\t{translator.gettext(group)}")
        elif args.cmd == "bmr":
            print(json.dumps(bmr_report(store, args), indent=2))
        elif args.cmd == "demo":
            if demo_data(store):
                print("Demo data inserted")
            else:
                print("Database already contains workouts")
    except FitnessLogError as e:
        LOGGER.error("%s failed: %s", args.cmd, e)
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
