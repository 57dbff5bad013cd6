"""Render the roommate map to a PNG from a users JSON export or the live API (Mapbox Static Images only)."""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load .env before settings are read
load_dotenv(Path(__file__).parent / ".env")

# Add src to path so cumble is importable without installing
sys.path.insert(0, str(Path(__file__).parent / "src"))

from cumble.clients.api_client import CumbleApiClient
from cumble.config.settings import settings
from cumble.errors import DataLoadError, LoadError
from cumble.mapping.map_generator import RoommateMapGenerator
from cumble.mapping.reference_data import ReferenceDataStore
from cumble.models.schemas import UserRecord


async def fetch_users():
    async with CumbleApiClient.from_settings(settings) as api:
        return await api.list_users()


def load_users_file(users_file: Path):
    if not users_file.exists():
        print(f"❌ {users_file} not found")
        return None
    with open(users_file) as f:
        raw_users = json.load(f)

    users = []
    for u in raw_users:
        try:
            users.append(UserRecord.model_validate(u))
        except ValueError as e:
            print(f"⚠️ Skipping user {u.get('email', '?')}: {e}")
    return users


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "users_file",
        nargs="?",
        help="JSON array as returned by GET /api/users (default: fetch from API_BASE_URL)",
    )
    parser.add_argument("--city", default=None, help="Frame a single city")
    parser.add_argument("--highlight", default=None, help="User id or neighborhood")
    parser.add_argument("--csv", default=settings.NEIGHBORHOODS_CSV_PATH)
    parser.add_argument("--output-dir", default=None)
    parser.add_argument("--run-id", default=None)
    args = parser.parse_args()

    if not settings.MAPBOX_ACCESS_TOKEN:
        print("❌ MAPBOX_ACCESS_TOKEN not set")
        return 1

    try:
        reference = ReferenceDataStore().load_path(
            args.csv, settings.CITY_CENTROIDS_CSV_PATH
        )
    except LoadError as e:
        print(f"❌ {e}")
        return 1

    if args.users_file:
        users = load_users_file(Path(args.users_file))
    else:
        try:
            users = asyncio.run(fetch_users())
        except DataLoadError as e:
            print(f"❌ {e}")
            return 1
    if users is None:
        return 1

    print(f"📦 Neighborhoods: {len(reference.neighborhoods)} ({reference.dropped_rows} dropped)")
    print(f"👥 Users: {len(users)}")

    generator = RoommateMapGenerator(
        reference=reference,
        users=users,
        mapbox_token=settings.MAPBOX_ACCESS_TOKEN,
        output_dir=args.output_dir,
        city=args.city,
        highlighted=args.highlight,
        style=settings.MAPBOX_STYLE,
        width=settings.MAP_WIDTH,
        height=settings.MAP_HEIGHT,
        padding=settings.MAP_PADDING,
        retina=settings.MAP_RETINA,
        city_max_zoom=settings.CITY_MAX_ZOOM,
        all_max_zoom=settings.ALL_CITIES_MAX_ZOOM,
    )
    result = generator.generate(run_id=args.run_id)

    if result.success:
        stats = result.metadata["stats"]
        print(f"\n✅ Map generated successfully")
        print(f"   Image: {result.image_path}")
        print(f"   Strategy: {result.generation_result.strategy_used}")
        print(f"   Users rendered: {stats['rendered']} ({stats['unmapped']} unmapped)")
        return 0

    err = result.metadata.get("error", "Unknown")
    print(f"\n❌ Map generation failed: {err}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
