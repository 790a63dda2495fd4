"""
Table Reset Script
Clears the shared table for a fresh campaign start: players, story,
dice and scenery. NPCs and maps are kept unless asked for.

Usage:
    python scripts/reset_table.py              # interactive confirmation
    python scripts/reset_table.py -y           # skip confirmation
    python scripts/reset_table.py --everything # also delete NPCs and maps
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

SCRIPT_DIR = Path(os.path.dirname(os.path.abspath(__file__)))
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from agents.tools.store_errors import StoreError, StoreNotFoundError  # noqa: E402
from app.client import build_backend, _close_backend  # noqa: E402
from tools.store import (  # noqa: E402
    ACTIVE_MAP_ID,
    ACTIVE_PLAYERS,
    DICE_ROLL,
    MAPS,
    NPCS,
    PENDING_PLAYERS,
    SCENE_BLOB_PATH,
    SCENERY,
    STORY_PAGES,
    BlobStore,
    KeyedMutableStore,
    avatar_blob_path,
)

# Subtrees removed on every reset
CLEAR_PATHS: list[tuple[str, str]] = [
    (PENDING_PLAYERS, "Players waiting to join"),
    (ACTIVE_PLAYERS, "Players in the game"),
    (STORY_PAGES, "Storybook pages"),
    (DICE_ROLL, "Shared dice roll"),
    (SCENERY, "Scenery image"),
]

# Removed only with --everything
WORLD_PATHS: list[tuple[str, str]] = [
    (NPCS, "NPCs"),
    (MAPS, "Maps (and their images)"),
    (ACTIVE_MAP_ID, "Active map pointer"),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _count(value) -> str:
    if isinstance(value, dict):
        return f"{len(value)} record(s)"
    return "set" if value is not None else "empty"


async def _print_summary(store: KeyedMutableStore, everything: bool) -> None:
    """Print a preview of what the reset will do."""
    print()
    print("=" * 56)
    print("  TABLE RESET PREVIEW")
    print("=" * 56)
    print()
    print("  WILL CLEAR:")
    targets = CLEAR_PATHS + (WORLD_PATHS if everything else [])
    for path, description in targets:
        print(f"    - {path}  ({_count(await store.get(path))}) -- {description}")
    if not everything:
        print()
        print("  WILL KEEP (not touched):")
        for path, description in WORLD_PATHS:
            print(f"    - {path}  -- {description}")
    print()
    print("=" * 56)


async def _delete_blob(blobs: BlobStore, path: str) -> bool:
    try:
        await blobs.delete(path)
    except StoreNotFoundError:
        return False
    print(f"  Deleted: {path}")
    return True


# ---------------------------------------------------------------------------
# Core reset logic
# ---------------------------------------------------------------------------

async def reset_table(store: KeyedMutableStore, blobs: BlobStore, everything: bool = False) -> int:
    """Execute the reset. Returns the number of blobs deleted."""
    deleted = 0

    print("\n[Avatars]")
    for path in (PENDING_PLAYERS, ACTIVE_PLAYERS) + ((NPCS,) if everything else ()):
        for key in (await store.get(path) or {}):
            deleted += await _delete_blob(blobs, avatar_blob_path(key))

    print("\n[Scenery image]")
    deleted += await _delete_blob(blobs, SCENE_BLOB_PATH)

    if everything:
        print("\n[Map images]")
        for record in (await store.get(MAPS) or {}).values():
            storage_path = (record or {}).get("storagePath")
            if storage_path:
                deleted += await _delete_blob(blobs, storage_path)

    print("\n[Shared tree]")
    targets = CLEAR_PATHS + (WORLD_PATHS if everything else [])
    for path, description in targets:
        await store.remove(path)
        print(f"  Cleared: {path}  ({description})")

    print()
    print("-" * 56)
    print(f"  Table reset complete.  {len(targets)} path(s) cleared, {deleted} blob(s) deleted.")
    print("-" * 56)
    return deleted


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Reset the shared table for a fresh start.",
    )
    parser.add_argument(
        "-y", "--yes",
        action="store_true",
        help="Skip the confirmation prompt.",
    )
    parser.add_argument(
        "--everything",
        action="store_true",
        help="Also delete NPCs, maps and map images.",
    )
    return parser


async def _run(args: argparse.Namespace) -> None:
    store, blobs = build_backend()
    try:
        await _print_summary(store, args.everything)

        if not args.yes:
            answer = input("  Proceed with reset? [y/N] ").strip().lower()
            if answer not in ("y", "yes"):
                print("  Aborted.")
                return

        await reset_table(store, blobs, args.everything)
    except StoreError as e:
        print(f"\n  ERROR: {e}")
        sys.exit(1)
    finally:
        await _close_backend(store, blobs)


def main() -> None:
    load_dotenv()
    args = build_parser().parse_args()

    print()
    print("  Tabletop Companion -- Table Reset")
    print(f"  Backend: {os.getenv('STORE_BACKEND', 'memory')}")

    asyncio.run(_run(args))

    print()
    print("=" * 56)
    print("  NEXT STEPS")
    print("=" * 56)
    print("  1. Players reconnect; each appears as pending for approval.")
    print("  2. Run the DM console:  python orchestration/main.py dm")
    print()


if __name__ == "__main__":
    main()
