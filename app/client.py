"""
Tabletop Companion — Console Client

Wires the environment, logging, the shared store and the Gemini client,
then drives a DM or Player session from the terminal. Commands use the
`!` prefix; on the DM console any other line is dictated into the
current story page.

To run: python orchestration/main.py dm
   or:  python -m app.client player --profile alice
"""

import os
import shlex
import asyncio
import logging
import argparse
from typing import Awaitable, Callable, Dict, Optional, Tuple

from dotenv import load_dotenv

from agents.tools.firebase_tool import FirebaseBlobStore, FirebaseStore
from agents.tools.gemini_tool import IMAGE_MODEL, TEXT_MODEL, GeminiClient
from app.dm_session import DMSession
from app.player_session import PlayerSession
from models.characters import Character
from tools.local_storage import LocalStorage
from tools.player_lifecycle import PlayerStatus
from tools.store import BlobStore, KeyedMutableStore, MemoryBlobStore, MemoryStore

logger = logging.getLogger("Companion")

# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------
load_dotenv()
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")
GEMINI_TEXT_MODEL = os.getenv("GEMINI_TEXT_MODEL", TEXT_MODEL)
GEMINI_IMAGE_MODEL = os.getenv("GEMINI_IMAGE_MODEL", IMAGE_MODEL)
STORE_BACKEND = os.getenv("STORE_BACKEND", "memory").lower()
PROFILE_DIR = os.getenv("COMPANION_PROFILE_DIR", ".companion")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
def configure_logging() -> None:
    if not os.path.exists("logs"):
        os.makedirs("logs")

    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler("logs/companion.log", encoding="utf-8"),
            logging.StreamHandler(),
        ],
    )


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------
def build_backend(backend: Optional[str] = None) -> Tuple[KeyedMutableStore, BlobStore]:
    """Shared store and blob store for STORE_BACKEND (`memory` or `firebase`)."""
    backend = (backend or STORE_BACKEND).lower()
    if backend == "firebase":
        return FirebaseStore(), FirebaseBlobStore()
    if backend != "memory":
        raise ValueError(f"Unknown STORE_BACKEND: {backend}")
    logger.warning("Using the in-memory store: only this process sees the table.")
    return MemoryStore(), MemoryBlobStore()


def build_gemini() -> GeminiClient:
    return GeminiClient(
        api_key=GEMINI_API_KEY,
        text_model=GEMINI_TEXT_MODEL,
        image_model=GEMINI_IMAGE_MODEL,
    )


async def _close_backend(*clients) -> None:
    for client in clients:
        if isinstance(client, (FirebaseStore, FirebaseBlobStore)):
            await client.close()


async def _read_line(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, input, prompt)


Handler = Callable[[str], Awaitable[None]]


# ---------------------------------------------------------------------------
# DM console
# ---------------------------------------------------------------------------
class DMConsole:
    """!commands for the Dungeon Master."""

    def __init__(self, session: DMSession):
        self.session = session
        # Forged sheets awaiting finalize, by player id
        self.drafts: Dict[str, Character] = {}
        self.commands: Dict[str, Handler] = {
            "players": self.cmd_players,
            "approve": self.cmd_approve,
            "reject": self.cmd_reject,
            "forge": self.cmd_forge,
            "finalize": self.cmd_finalize,
            "avatar": self.cmd_avatar,
            "npc": self.cmd_npc,
            "npcs": self.cmd_npcs,
            "delnpc": self.cmd_delnpc,
            "roll": self.cmd_roll,
            "grant": self.cmd_grant,
            "cmd": self.cmd_assistant,
            "maps": self.cmd_maps,
            "upload": self.cmd_upload,
            "genmap": self.cmd_genmap,
            "usemap": self.cmd_usemap,
            "delmap": self.cmd_delmap,
            "tokens": self.cmd_tokens,
            "toggle": self.cmd_toggle,
            "size": self.cmd_size,
            "page": self.cmd_page,
            "story": self.cmd_story,
        }

    async def handle(self, line: str) -> None:
        if not line.startswith("!"):
            self.session.story.append_transcript(line)
            return
        name, _, rest = line[1:].partition(" ")
        handler = self.commands.get(name.lower())
        if handler is None:
            print(f"❌ Unknown command !{name}. Available: {', '.join(sorted(self.commands))}")
            return
        await handler(rest.strip())

    @staticmethod
    def _report(result, done: str) -> None:
        print(f"✅ {done}" if result.success else f"❌ {result.message}")

    # --- players ---

    async def cmd_players(self, _):
        print("**Pending:**")
        for sid, record in self.session.pending_players.items():
            stage = "backstory in" if record.backstory else ("approved" if record.accepted else "waiting")
            print(f"  {record.ip} ({stage})")
        print("**Active:**")
        for player in self.session.active_players:
            c = player.character_data
            print(f"  {player.id}: {c.name}, level {c.level} {c.race} {c.char_class} "
                  f"HP {c.health.current}/{c.health.max}")

    async def cmd_approve(self, player_id):
        self._report(await self.session.approve(player_id), f"Approved {player_id}")

    async def cmd_reject(self, player_id):
        self.drafts.pop(player_id, None)
        self._report(await self.session.reject(player_id), f"Removed {player_id}")

    async def cmd_forge(self, args):
        player_id, _, refinement = args.partition(" ")
        result = await self.session.forge_character(
            player_id, refinement or None, self.drafts.get(player_id) if refinement else None
        )
        if result.success:
            self.drafts[player_id] = result.data
            print(result.data.model_dump_json(by_alias=True, indent=2))
            print(f"Review, refine with `!forge {player_id} <notes>`, then `!finalize {player_id}`.")
        else:
            print(f"❌ {result.message}")

    async def cmd_finalize(self, player_id):
        character = self.drafts.get(player_id)
        if character is None:
            print(f"❌ No forged sheet for {player_id}. Use !forge first.")
            return
        result = await self.session.finalize(player_id, character)
        if result.success:
            self.drafts.pop(player_id, None)
        self._report(result, f"{character.name} joins the game")

    async def cmd_avatar(self, args):
        player_id, _, refinement = args.partition(" ")
        self._report(await self.session.player_avatar(player_id, refinement or None), "Avatar updated")

    # --- NPCs ---

    async def cmd_npc(self, description):
        result = await self.session.create_npc(description)
        self._report(result, f"NPC {result.data.name} created" if result.success else "")

    async def cmd_npcs(self, _):
        visible = {n.id for n in self.session.visible_npcs}
        for npc in self.session.npcs:
            print(f"  {npc.id}: {npc.name}{'' if npc.id in visible else ' (hidden)'}")

    async def cmd_delnpc(self, npc_id):
        self._report(await self.session.delete_npc(npc_id), f"Deleted NPC {npc_id}")

    # --- dice ---

    async def cmd_roll(self, _):
        await self.session.roll()
        print("🎲 Rolling...")

    async def cmd_grant(self, player_id):
        await self.session.grant_roll(player_id)
        print(f"🎲 {player_id} may roll next.")

    # --- assistant ---

    async def cmd_assistant(self, command):
        outcome = await self.session.run_command(command)
        print(f"✅ {outcome.message}" if outcome.success else f"❌ {outcome.message}")

    # --- maps ---

    async def cmd_maps(self, _):
        for map_data in self.session.all_maps:
            marker = "🟢" if map_data.id == self.session.active_map_id else "⚪"
            print(f"{marker} {map_data.id}: {map_data.name} ({map_data.image_width}x{map_data.image_height})")

    async def cmd_upload(self, args):
        parts = shlex.split(args)
        if len(parts) < 2:
            print("Usage: !upload <file> <name>")
            return
        path, name = parts[0], " ".join(parts[1:])
        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError as e:
            print(f"❌ {e}")
            return
        self._report(await self.session.upload_map(name, data, os.path.basename(path)), f"Uploaded {name}")

    async def cmd_genmap(self, prompt):
        self._report(await self.session.generate_map(prompt), "Map generated")

    async def cmd_usemap(self, map_id):
        await self.session.select_map(map_id or None)

    async def cmd_delmap(self, map_id):
        self._report(await self.session.delete_map(map_id), f"Deleted map {map_id}")

    async def cmd_tokens(self, _):
        active_map = self.session.active_map
        if active_map is None:
            print("No active map.")
            return
        for sid, token in active_map.tokens.items():
            print(f"  {sid}: ({token.x:.0f}, {token.y:.0f}){'' if token.visible else ' hidden'}")

    async def cmd_toggle(self, entity_id):
        visible = await self.session.toggle_token(entity_id)
        print("No such token." if visible is None else f"{entity_id} is now {'visible' if visible else 'hidden'}")

    async def cmd_size(self, value):
        try:
            size = self.session.set_token_size(float(value))
        except ValueError:
            print("Usage: !size <0.25-2.5>")
            return
        print("No active map." if size is None else f"Token size {size:.2f}")

    # --- story ---

    async def cmd_page(self, arg):
        story = self.session.story
        if arg == "next":
            await story.next_page()
        elif arg == "prev":
            await story.previous_page()
        elif arg == "new":
            await story.new_page()
        elif arg.isdigit():
            await story.go_to_page(int(arg))
        print(f"📖 Page {story.current_page}/{story.total_pages}")

    async def cmd_story(self, text):
        story = self.session.story
        if text:
            story.edit(text)
        print(story.current_text)
        mentioned = self.session.mentioned_characters()
        if mentioned:
            print(f"In this scene: {', '.join(c.name for c in mentioned)}")
        if story.scene_error:
            print(f"❌ {story.scene_error}")


# ---------------------------------------------------------------------------
# Player console
# ---------------------------------------------------------------------------
class PlayerConsole:
    """!commands for a player."""

    def __init__(self, session: PlayerSession):
        self.session = session
        self.commands: Dict[str, Handler] = {
            "status": self.cmd_status,
            "backstory": self.cmd_backstory,
            "roll": self.cmd_roll,
            "sheet": self.cmd_sheet,
            "tokens": self.cmd_tokens,
        }

    async def handle(self, line: str) -> None:
        name, _, rest = line.lstrip("!").partition(" ")
        handler = self.commands.get(name.lower())
        if handler is None:
            print(f"❌ Unknown command. Available: {', '.join(sorted(self.commands))}")
            return
        await handler(rest.strip())

    async def cmd_status(self, _):
        lifecycle = self.session.lifecycle
        print(f"Status: {lifecycle.status.value} ({lifecycle.player_id})")
        if lifecycle.error_message:
            print(f"❌ {lifecycle.error_message}")
        dice = self.session.dice_roll
        if dice is not None:
            print(f"🎲 {dice.roller_name}: {'rolling' if dice.is_rolling else dice.result}")
        if self.session.can_roll:
            print("🎲 You may roll! (!roll)")
        if self.session.scenery is not None:
            print(f"🖼️ {self.session.scenery.image_url}")

    async def cmd_backstory(self, text):
        if self.session.status != PlayerStatus.NEEDS_BACKSTORY:
            print("❌ The DM is not waiting for your backstory.")
            return
        if await self.session.save_backstory(text):
            print("✅ Backstory sent. The DM is forging your character.")
        else:
            print(f"❌ {self.session.lifecycle.error_message or 'A backstory is required.'}")

    async def cmd_roll(self, _):
        print("🎲 Rolling..." if await self.session.roll() else "❌ You may not roll right now.")

    async def cmd_sheet(self, _):
        character = self.session.lifecycle.character
        print(character.model_dump_json(by_alias=True, indent=2) if character else "No character yet.")

    async def cmd_tokens(self, _):
        for sid, token in self.session.visible_tokens().items():
            print(f"  {sid}: ({token.x:.0f}, {token.y:.0f})")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Tabletop RPG companion console.")
    parser.add_argument("--backend", choices=["memory", "firebase"], default=None,
                        help="Override STORE_BACKEND.")
    sub = parser.add_subparsers(dest="role", required=True)
    dm = sub.add_parser("dm", help="Run the Dungeon Master's console.")
    dm.add_argument("--profile", default="dm", help="Local storage profile name.")
    player = sub.add_parser("player", help="Run a player's console.")
    player.add_argument("--profile", default="player", help="Local storage profile name.")
    return parser


async def _repl(console, prompt: str) -> None:
    while True:
        try:
            line = (await _read_line(prompt)).strip()
        except EOFError:
            return
        if line in ("!quit", "!exit"):
            return
        if line:
            try:
                await console.handle(line)
            except Exception as e:
                logger.error(f"Command failed: {e}", exc_info=True)
                print(f"❌ {e}")


async def main(args: argparse.Namespace):
    """Async entry point — build the session for the chosen role and run it."""
    store, blobs = build_backend(args.backend)
    local_storage = LocalStorage.for_profile(PROFILE_DIR, args.profile)
    try:
        if args.role == "dm":
            gemini = build_gemini()
            session = DMSession(store, blobs, gemini, local_storage)
            session.start()
            if not gemini.available:
                print("⚠️ GEMINI_API_KEY not set: AI features are disabled.")
            try:
                await _repl(DMConsole(session), "dm> ")
            finally:
                await session.flush()
                session.close()
        else:
            session = PlayerSession(store, local_storage)
            await session.start()
            try:
                await _repl(PlayerConsole(session), "player> ")
            finally:
                session.close()
    finally:
        await _close_backend(store, blobs)


def run():
    """Synchronous entry point for scripts."""
    args = build_parser().parse_args()
    configure_logging()
    asyncio.run(main(args))


if __name__ == "__main__":
    run()
