"""
KeyedMutableStore — the path-addressed shared tree every client reads
and writes, plus the blob store that holds images.

Semantics (the same for every backend):
  - Paths are slash-separated strings ("DND/maps/<id>/tokens").
  - Writes are last-write-wins per path. There is no locking and no retry.
  - `set` replaces a subtree, `remove` deletes it, `push` appends under a
    generated time-ordered key.
  - `update` merges a mapping of relative sub-paths; a None value deletes
    that sub-path. An `update` naming several sub-paths is the ONLY
    atomic multi-path write: other clients observe either none or all of
    it. Sequential single-path writes can be observed half-applied.
  - Subscribers get the current value of their subtree immediately, then
    every change to it, in write order. Empty objects do not exist: a
    subtree with no leaves reads as None.

Entity identifiers used as path segments must go through `sanitize_id()`.
"""

import asyncio
import copy
import inspect
import logging
import random
import re
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from agents.tools.store_errors import StoreNotFoundError

logger = logging.getLogger("SharedStore")

Listener = Callable[[Any], Union[None, Awaitable[None]]]

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

ROOT = "DND"

_ILLEGAL_SEGMENT_CHARS = re.compile(r"[.#$\[\]]")


def sanitize_id(raw: str) -> str:
    """Replace the characters the backend forbids in path segments."""
    return _ILLEGAL_SEGMENT_CHARS.sub("_", raw)


def split_path(path: str) -> List[str]:
    return [seg for seg in str(path).split("/") if seg]


def join_path(*parts: Any) -> str:
    segments: List[str] = []
    for part in parts:
        segments.extend(split_path(str(part)))
    return "/".join(segments)


def is_related(a: str, b: str) -> bool:
    """True if one path is an ancestor of (or equal to) the other."""
    sa, sb = split_path(a), split_path(b)
    n = min(len(sa), len(sb))
    return sa[:n] == sb[:n]


PENDING_PLAYERS = f"{ROOT}/pending_players"
ACTIVE_PLAYERS = f"{ROOT}/active_players"
NPCS = f"{ROOT}/npcs"
MAPS = f"{ROOT}/maps"
GAME_STATE = f"{ROOT}/game_state"
DICE_ROLL = f"{GAME_STATE}/dice_roll"
SCENERY = f"{GAME_STATE}/scenery"
STORY_PAGES = f"{GAME_STATE}/story_pages"
ACTIVE_MAP_ID = f"{GAME_STATE}/activeMapId"


def pending_player_path(sanitized_id: str) -> str:
    return f"{PENDING_PLAYERS}/{sanitized_id}"


def active_player_path(sanitized_id: str) -> str:
    return f"{ACTIVE_PLAYERS}/{sanitized_id}"


def npc_path(npc_id: str) -> str:
    return f"{NPCS}/{npc_id}"


def map_path(map_id: str) -> str:
    return f"{MAPS}/{map_id}"


def tokens_path(map_id: str) -> str:
    return f"{MAPS}/{map_id}/tokens"


def story_page_path(page: int) -> str:
    return f"{STORY_PAGES}/{page}"


SCENE_BLOB_PATH = f"{ROOT}/scenery/scene.jpg"


def avatar_blob_path(sanitized_id: str) -> str:
    return f"{ROOT}/avatars/{sanitized_id}"


_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def map_blob_path(stamp: int, filename: str) -> str:
    """Blob path for an uploaded map image.

    Only the last component of `filename` is kept and anything outside
    letters, digits, dot, dash and underscore becomes `_`, so a name like
    `../avatars/x` cannot land outside `DND/maps/`.
    """
    base = re.split(r"[\\/]", filename or "")[-1]
    base = _UNSAFE_FILENAME_CHARS.sub("_", base).lstrip(".")
    return f"{ROOT}/maps/{stamp}-{base or 'map'}"


# ---------------------------------------------------------------------------
# Push keys
# ---------------------------------------------------------------------------

PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"


def generate_push_id(now_ms: Optional[int] = None, rng: random.Random = None) -> str:
    """20-char key: 8 chars of timestamp, 12 random. Sorts by creation time."""
    rng = rng or random
    now = int(time.time() * 1000) if now_ms is None else now_ms
    stamp = []
    for _ in range(8):
        stamp.append(PUSH_CHARS[now % 64])
        now //= 64
    tail = "".join(rng.choice(PUSH_CHARS) for _ in range(12))
    return "".join(reversed(stamp)) + tail


# ---------------------------------------------------------------------------
# Tree helpers
# ---------------------------------------------------------------------------

def prune(value: Any) -> Any:
    """Drop None leaves and empty containers. Returns None if nothing is left."""
    if isinstance(value, dict):
        out = {}
        for key, child in value.items():
            child = prune(child)
            if child is not None:
                out[str(key)] = child
        return out or None
    if isinstance(value, (list, tuple)):
        items = [prune(child) for child in value]
        return items if any(item is not None for item in items) else None
    return value


def get_in(tree: Any, segments: List[str]) -> Any:
    node = tree
    for seg in segments:
        if isinstance(node, dict):
            node = node.get(seg)
        elif isinstance(node, list) and seg.isdigit() and int(seg) < len(node):
            node = node[int(seg)]
        else:
            return None
    return node


def assign_in(tree: Dict[str, Any], segments: List[str], value: Any) -> Dict[str, Any]:
    """Write value at segments (None deletes) and return the pruned tree."""
    value = prune(copy.deepcopy(value))
    if not segments:
        return value if isinstance(value, dict) else {}

    node = tree
    for seg in segments[:-1]:
        child = node.get(seg)
        if not isinstance(child, dict):
            child = {}
            node[seg] = child
        node = child

    if value is None:
        node.pop(segments[-1], None)
    else:
        node[segments[-1]] = value
    return prune(tree) or {}


# ---------------------------------------------------------------------------
# Subscription handle
# ---------------------------------------------------------------------------

_NOTHING = object()


class Subscription:
    """A live listener on one subtree.

    Deliveries are queued and run one at a time, in write order, on the
    running event loop. A delivery identical to the previous one is
    skipped. `unsubscribe()` is idempotent; use the handle as a context
    manager to guarantee release.
    """

    def __init__(self, path: str, callback: Listener, on_close: Optional[Callable[["Subscription"], None]] = None):
        self.path = path
        self._callback = callback
        self._on_close = on_close
        self._queue: deque = deque()
        self._task: Optional[asyncio.Task] = None
        self._last: Any = _NOTHING
        self._busy = False
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    @property
    def idle(self) -> bool:
        return not self._queue and not self._busy

    def deliver(self, value: Any) -> None:
        if not self._active:
            return
        if self._last is not _NOTHING and value == self._last:
            return
        self._last = copy.deepcopy(value)
        self._queue.append(copy.deepcopy(value))
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        while self._queue and self._active:
            value = self._queue.popleft()
            self._busy = True
            try:
                result = self._callback(value)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Listener on '{self.path}' failed: {e}", exc_info=True)
            finally:
                self._busy = False

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._queue.clear()
        if self._on_close:
            self._on_close(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.unsubscribe()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc) -> None:
        self.unsubscribe()


# ---------------------------------------------------------------------------
# Store interface
# ---------------------------------------------------------------------------

class KeyedMutableStore(ABC):
    """Path-addressed, multi-writer, last-write-wins tree with live subscriptions."""

    @abstractmethod
    async def get(self, path: str) -> Any:
        """Point read of a subtree (None if absent)."""

    @abstractmethod
    def subscribe(self, path: str, callback: Listener) -> Subscription:
        """Register a listener; it fires with the current value, then on every change."""

    @abstractmethod
    async def set(self, path: str, value: Any) -> None:
        """Replace the subtree at path. None removes it."""

    @abstractmethod
    async def update(self, path: str, values: Dict[str, Any]) -> None:
        """Atomically merge {relative_sub_path: value} under path. None deletes."""

    @abstractmethod
    async def push(self, path: str, value: Any) -> str:
        """Store value under a new generated key and return the key."""

    async def remove(self, path: str) -> None:
        await self.set(path, None)


def check_update_paths(paths: List[str]) -> None:
    """Reject an update where one sub-path contains another (ambiguous merge)."""
    split = sorted(split_path(p) for p in paths)
    for a, b in zip(split, split[1:]):
        if b[:len(a)] == a:
            raise ValueError(f"Overlapping update paths: '{'/'.join(a)}' and '{'/'.join(b)}'")


class MemoryStore(KeyedMutableStore):
    """In-process store. Every client sharing the instance sees every write.

    Used for tests and single-process play. Writes apply synchronously;
    listener deliveries run on the event loop. `settle()` waits until all
    queued deliveries (and writes they trigger) have run.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._tree: Dict[str, Any] = prune(copy.deepcopy(initial or {})) or {}
        self._subs: List[Subscription] = []
        self.write_count = 0

    async def get(self, path: str) -> Any:
        return copy.deepcopy(get_in(self._tree, split_path(path)))

    def subscribe(self, path: str, callback: Listener) -> Subscription:
        sub = Subscription(path, callback, on_close=self._subs.remove)
        self._subs.append(sub)
        sub.deliver(get_in(self._tree, split_path(path)))
        return sub

    async def set(self, path: str, value: Any) -> None:
        self._apply({join_path(path): value})

    async def update(self, path: str, values: Dict[str, Any]) -> None:
        if not values:
            return
        self._apply({join_path(path, key): value for key, value in values.items()})

    async def push(self, path: str, value: Any) -> str:
        key = generate_push_id()
        await self.set(join_path(path, key), value)
        return key

    def _apply(self, changes: Dict[str, Any]) -> None:
        check_update_paths(list(changes))
        for path, value in changes.items():
            self._tree = assign_in(self._tree, split_path(path), value)
        self.write_count += 1
        for sub in list(self._subs):
            if any(is_related(sub.path, path) for path in changes):
                sub.deliver(get_in(self._tree, split_path(sub.path)))

    @property
    def listener_count(self) -> int:
        return len(self._subs)

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(self._tree)

    async def settle(self, max_rounds: int = 10000) -> None:
        for _ in range(max_rounds):
            await asyncio.sleep(0)
            if all(sub.idle for sub in self._subs):
                await asyncio.sleep(0)
                if all(sub.idle for sub in self._subs):
                    return
        raise RuntimeError("Store listeners did not settle")


# ---------------------------------------------------------------------------
# Blob store
# ---------------------------------------------------------------------------

class BlobHandle(ABC):
    """Reference to a stored blob."""

    def __init__(self, path: str):
        self.path = path

    @abstractmethod
    async def get_download_url(self) -> str:
        ...


class BlobStore(ABC):
    """Path-addressed binary storage returning download URLs."""

    @abstractmethod
    async def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> BlobHandle:
        ...

    @abstractmethod
    async def delete(self, path: str) -> None:
        ...

    async def upload(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        """put() then get_download_url() — the pair every caller needs."""
        handle = await self.put(path, data, content_type)
        return await handle.get_download_url()


class MemoryBlobHandle(BlobHandle):
    def __init__(self, path: str, store: "MemoryBlobStore"):
        super().__init__(path)
        self._store = store

    async def get_download_url(self) -> str:
        if self.path not in self._store.blobs:
            raise StoreNotFoundError(f"No blob at '{self.path}'")
        return f"memory://{self.path}"


class MemoryBlobStore(BlobStore):
    def __init__(self):
        self.blobs: Dict[str, bytes] = {}
        self.content_types: Dict[str, Optional[str]] = {}

    async def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> BlobHandle:
        path = join_path(path)
        self.blobs[path] = bytes(data)
        self.content_types[path] = content_type
        return MemoryBlobHandle(path, self)

    async def delete(self, path: str) -> None:
        path = join_path(path)
        if path not in self.blobs:
            raise StoreNotFoundError(f"No blob at '{path}'")
        del self.blobs[path]
        self.content_types.pop(path, None)
