"""
Paginated Narrative Log — the DM's shared storybook.

Pages live at DND/game_state/story_pages/<n> = {text}, numbered from 1
and never reused. Which page this client is looking at is local only
(persisted in local storage so a restart reopens the same page).

Typing is optimistic: `edit()` updates the local text at once, and the
store sees it after a 750 ms quiet period, as a single write. While that
write is pending, broadcasts for the page do not overwrite the local text.
An unsent edit to a page that another client deleted is dropped, not
written back.
"""

import asyncio
import re
import logging
from typing import Callable, Dict, List, Optional, Sequence, Set

from models.characters import Character
from models.game_state import StoryPage, coerce_story_pages
from tools.debounce import Debouncer
from tools.local_storage import LocalStorage, STORY_PAGE_KEY
from tools.scenery import SceneryPublisher
from tools.store import KeyedMutableStore, STORY_PAGES, Subscription, story_page_path

logger = logging.getLogger("NarrativeLog")

PLACEHOLDER_TEXT = "Once upon a time..."
WRITE_DELAY = 0.75


def find_mentioned_characters(text: str, characters: Sequence[Character]) -> List[Character]:
    """Characters whose exact name appears as a whole word (any case).

    Deduplicated by name, in roster order rather than order of mention.
    """
    if not text:
        return []
    found: Dict[str, Character] = {}
    for character in characters:
        name = character.name
        if not name or name in found:
            continue
        if re.search(rf"\b{re.escape(name)}\b", text, re.IGNORECASE):
            found[name] = character
    return list(found.values())


class PaginatedNarrativeLog:
    """Local view over the shared story pages.

    Usage:
        log = PaginatedNarrativeLog(store, local_storage, scenery=publisher)
        log.start()
        log.edit("The party enters the crypt")
        await log.new_page()
        log.close()
    """

    def __init__(
        self,
        store: KeyedMutableStore,
        local_storage: LocalStorage,
        scenery: Optional[SceneryPublisher] = None,
        write_delay: float = WRITE_DELAY,
        on_change: Optional[Callable[["PaginatedNarrativeLog"], None]] = None,
    ):
        self.store = store
        self.local_storage = local_storage
        self.scenery = scenery
        self.pages: Dict[int, StoryPage] = {}
        self.current_page = self._saved_page()
        self.current_text = ""
        self.scene_error: Optional[str] = None
        self.generating_scene = False
        self._on_change = on_change
        self._sub: Optional[Subscription] = None
        self._scene_tasks: Set[asyncio.Task] = set()
        self._closed = False
        self._writer = Debouncer(write_delay, self._write_page, name="story")

    def _saved_page(self) -> int:
        raw = self.local_storage.get(STORY_PAGE_KEY)
        try:
            return int(raw) if raw else 1
        except ValueError:
            return 1

    def _set_page(self, page: int) -> None:
        self.current_page = page
        self.local_storage.set(STORY_PAGE_KEY, str(page))

    @property
    def total_pages(self) -> int:
        return max(self.pages) if self.pages else 1

    def stored_text(self, page: Optional[int] = None) -> str:
        entry = self.pages.get(self.current_page if page is None else page)
        return entry.text if entry else ""

    # ------------------------------------------------------------------
    # Store side
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._sub = self.store.subscribe(STORY_PAGES, self._on_pages)

    async def _on_pages(self, value) -> None:
        pages = coerce_story_pages(value)
        if not pages:
            logger.info("No story pages yet; seeding page 1")
            await self.store.set(STORY_PAGES, {"1": {"text": PLACEHOLDER_TEXT}})
            return

        self.pages = pages
        pending = self._writer.pending_value
        if pending is not None and pending[0] not in pages:
            logger.info(f"Page {pending[0]} was deleted; dropping the unsent edit")
            self._writer.cancel()
        # Another client may have removed the page this one was on.
        if self.current_page not in pages:
            self._set_page(self.total_pages)

        if not self._writer.pending:
            self.current_text = self.stored_text()
        self._changed()

    async def _write_page(self, pending) -> None:
        page, text = pending
        await self.store.update(story_page_path(page), {"text": text})

    # ------------------------------------------------------------------
    # Local edits
    # ------------------------------------------------------------------

    def edit(self, text: str) -> None:
        """Optimistic local edit; the store write follows after the quiet period."""
        self.current_text = text
        if text != self.stored_text():
            self._writer.trigger((self.current_page, text))
        else:
            self._writer.cancel()
        self._changed()

    async def flush(self) -> None:
        await self._writer.flush()

    async def go_to_page(self, page: int) -> bool:
        if page not in self.pages or page == self.current_page:
            return False
        await self.flush()
        self._set_page(page)
        self.current_text = self.stored_text()
        self._changed()
        return True

    async def next_page(self) -> bool:
        return await self.go_to_page(self.current_page + 1)

    async def previous_page(self) -> bool:
        return await self.go_to_page(self.current_page - 1)

    async def new_page(self) -> int:
        """Append an empty page after the highest one and switch to it."""
        await self.flush()
        number = self.total_pages + 1
        await self.store.set(story_page_path(number), {"text": ""})
        self.pages[number] = StoryPage(text="")
        self._set_page(number)
        self.current_text = ""
        self._changed()
        return number

    def mentioned_characters(self, characters: Sequence[Character]) -> List[Character]:
        return find_mentioned_characters(self.current_text, characters)

    # ------------------------------------------------------------------
    # Dictation
    # ------------------------------------------------------------------

    def append_transcript(self, segment: str) -> Optional[asyncio.Task]:
        """Append a dictated segment and kick off a scenery update for it.

        The scenery request runs in the background; its failure only sets
        `scene_error`. Returns the background task (None if nothing ran).
        """
        narration = (segment or "").strip()
        if not narration:
            return None
        new_text = f"{self.current_text} {narration}" if self.current_text else narration
        self.edit(new_text)
        if self.scenery is None or not self.scenery.available:
            return None
        task = asyncio.get_running_loop().create_task(self._generate_scene(new_text, narration))
        self._scene_tasks.add(task)
        task.add_done_callback(self._scene_tasks.discard)
        return task

    async def _generate_scene(self, page_content: str, narration: str) -> None:
        self.generating_scene = True
        self.scene_error = None
        try:
            await self.scenery.publish(page_content, narration)
        except Exception as e:
            logger.warning(f"Scenery generation failed: {e}")
            if not self._closed:
                self.scene_error = str(e)
        finally:
            self.generating_scene = False
            if not self._closed:
                self._changed()

    # ------------------------------------------------------------------

    def _changed(self) -> None:
        if self._on_change and not self._closed:
            self._on_change(self)

    def close(self) -> None:
        """Stop listening and drop any unsent edit."""
        self._closed = True
        self._writer.cancel()
        if self._sub is not None:
            self._sub.unsubscribe()
            self._sub = None
