"""
Firebase Client — Realtime Database + Storage over REST (Async)

Backs the KeyedMutableStore and BlobStore interfaces with a Firebase
project, talking plain REST through aiohttp:

  Realtime Database:  GET/PUT/PATCH/DELETE/POST {db}/{path}.json
                      live subscriptions via the server-sent-events stream
  Storage:            upload / metadata / delete under
                      https://firebasestorage.googleapis.com/v0/b/{bucket}/o

Requires:
  - FIREBASE_DATABASE_URL: e.g. https://<project>-default-rtdb.firebaseio.com
  - FIREBASE_STORAGE_BUCKET: e.g. <project>.appspot.com
  - FIREBASE_AUTH_TOKEN: optional ID token / database secret

No request is retried. Failures map onto the store_errors hierarchy and
propagate to the caller, which logs them and leaves its state alone.
"""

import os
import json
import asyncio
import logging
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote

import aiohttp

from agents.tools.store_errors import (
    StoreError,
    StoreConnectionError,
    StoreTimeoutError,
    StoreAuthError,
    StoreNotFoundError,
)
from tools.store import (
    KeyedMutableStore,
    BlobStore,
    BlobHandle,
    Subscription,
    Listener,
    assign_in,
    check_update_paths,
    join_path,
    prune,
    split_path,
)

logger = logging.getLogger('FirebaseClient')

STORAGE_API = "https://firebasestorage.googleapis.com/v0/b"

_NO_BODY = object()


# ------------------------------------------------------------------
# Shared HTTP layer
# ------------------------------------------------------------------

class _FirebaseHttp:
    """Session handling and status mapping shared by both clients."""

    def __init__(self, auth_token: Optional[str] = None, timeout: int = 15):
        self.auth_token = auth_token
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def _raise_for_status(self, resp: aiohttp.ClientResponse) -> None:
        """Map HTTP status codes to specific store error types."""
        if resp.status < 400:
            return
        body = await resp.text()
        if resp.status in (401, 403):
            raise StoreAuthError(f"Auth failed ({resp.status}): {body}")
        elif resp.status == 404:
            raise StoreNotFoundError(f"Not found ({resp.status}): {body}")
        elif resp.status >= 500:
            raise StoreConnectionError(f"Server error ({resp.status}): {body}")
        else:
            raise StoreError(f"HTTP {resp.status}: {body}")

    async def _send(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, str]] = None,
        json_body: Any = _NO_BODY,
        data: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """Execute a single HTTP request (no retry) and decode the JSON reply."""
        session = await self._ensure_session()
        kwargs: Dict[str, Any] = {
            'params': params or {},
            'headers': headers or {},
            'timeout': aiohttp.ClientTimeout(total=self.timeout),
        }
        if json_body is not _NO_BODY:
            kwargs['json'] = json_body
        if data is not None:
            kwargs['data'] = data

        try:
            async with session.request(method, url, **kwargs) as resp:
                await self._raise_for_status(resp)
                text = await resp.text()
                return json.loads(text) if text else None
        except aiohttp.ClientError as e:
            raise StoreConnectionError(f"Network error: {e}") from e
        except asyncio.TimeoutError as e:
            raise StoreTimeoutError(f"Request timed out after {self.timeout}s: {method} {url}") from e

    async def close(self) -> None:
        """Shut down the aiohttp session cleanly."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None


# ------------------------------------------------------------------
# Realtime Database
# ------------------------------------------------------------------

def apply_stream_event(cache: Any, event: str, payload: str) -> Tuple[Any, bool]:
    """Fold one server-sent event into the cached subtree.

    Returns (new_cache, changed). `put` replaces the value at the event's
    relative path; `patch` merges each child key. Keep-alives change
    nothing. A cancelled or revoked stream raises StoreAuthError.
    """
    if event == 'keep-alive':
        return cache, False
    if event in ('cancel', 'auth_revoked'):
        raise StoreAuthError(f"Stream closed by server: {event}")
    if event not in ('put', 'patch'):
        return cache, False

    message = json.loads(payload)
    rel = split_path(message.get('path', '/'))
    data = message.get('data')

    if event == 'put':
        if not rel:
            return prune(data), True
        tree = cache if isinstance(cache, dict) else {}
        return assign_in(tree, rel, data) or None, True

    tree = cache if isinstance(cache, dict) else {}
    for key, value in (data or {}).items():
        tree = assign_in(tree, rel + split_path(key), value)
    return tree or None, True


class FirebaseStore(_FirebaseHttp, KeyedMutableStore):
    """KeyedMutableStore backed by the Realtime Database REST API.

    Usage:
        store = FirebaseStore()
        sub = store.subscribe("DND/game_state", on_state)
        await store.update("DND", {"pending_players/x": None, "active_players/x": {...}})
        sub.unsubscribe()
        await store.close()
    """

    def __init__(self, database_url: Optional[str] = None, auth_token: Optional[str] = None, timeout: int = 15):
        super().__init__(auth_token or os.getenv('FIREBASE_AUTH_TOKEN'), timeout)
        self.database_url = (database_url or os.getenv('FIREBASE_DATABASE_URL', '')).rstrip('/')
        self._streams: Dict[Subscription, asyncio.Task] = {}

        if not self.database_url:
            logger.warning("FIREBASE_DATABASE_URL not set — Firebase store cannot connect.")

    def _url(self, path: str) -> str:
        return f"{self.database_url}/{join_path(path)}.json"

    def _params(self) -> Dict[str, str]:
        return {'auth': self.auth_token} if self.auth_token else {}

    # --- point operations ---

    async def get(self, path: str) -> Any:
        return await self._send('GET', self._url(path), params=self._params())

    async def set(self, path: str, value: Any) -> None:
        if value is None:
            await self._send('DELETE', self._url(path), params=self._params())
        else:
            await self._send('PUT', self._url(path), params=self._params(), json_body=value)

    async def update(self, path: str, values: Dict[str, Any]) -> None:
        if not values:
            return
        check_update_paths(list(values))
        body = {join_path(key): value for key, value in values.items()}
        await self._send('PATCH', self._url(path), params=self._params(), json_body=body)

    async def push(self, path: str, value: Any) -> str:
        reply = await self._send('POST', self._url(path), params=self._params(), json_body=value)
        return reply['name']

    # --- subscriptions ---

    def subscribe(self, path: str, callback: Listener) -> Subscription:
        sub = Subscription(path, callback, on_close=self._close_stream)
        self._streams[sub] = asyncio.get_running_loop().create_task(self._stream(sub))
        return sub

    def _close_stream(self, sub: Subscription) -> None:
        task = self._streams.pop(sub, None)
        if task and not task.done():
            task.cancel()

    async def _stream(self, sub: Subscription) -> None:
        """Follow the SSE stream for sub.path and deliver each new snapshot."""
        session = await self._ensure_session()
        cache: Any = None
        event = ''
        try:
            async with session.get(
                self._url(sub.path),
                params=self._params(),
                headers={'Accept': 'text/event-stream'},
                timeout=aiohttp.ClientTimeout(total=None, sock_read=None),
            ) as resp:
                await self._raise_for_status(resp)
                async for raw_line in resp.content:
                    line = raw_line.decode('utf-8').rstrip('\r\n')
                    if line.startswith('event:'):
                        event = line[len('event:'):].strip()
                    elif line.startswith('data:'):
                        cache, changed = apply_stream_event(cache, event, line[len('data:'):].strip())
                        if changed:
                            sub.deliver(cache)
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, StoreError) as e:
            logger.error(f"Live stream for '{sub.path}' ended: {e}")

    async def close(self) -> None:
        for sub in list(self._streams):
            sub.unsubscribe()
        await super().close()
        logger.info("Firebase store closed.")


# ------------------------------------------------------------------
# Storage
# ------------------------------------------------------------------

class FirebaseBlobHandle(BlobHandle):
    def __init__(self, path: str, store: "FirebaseBlobStore", download_token: Optional[str] = None):
        super().__init__(path)
        self._store = store
        self._download_token = download_token

    async def get_download_url(self) -> str:
        token = self._download_token
        if not token:
            metadata = await self._store.metadata(self.path)
            token = (metadata.get('downloadTokens') or '').split(',')[0]
        return self._store.download_url(self.path, token)


class FirebaseBlobStore(_FirebaseHttp, BlobStore):
    """BlobStore backed by the Firebase Storage REST API."""

    def __init__(self, bucket: Optional[str] = None, auth_token: Optional[str] = None, timeout: int = 60):
        super().__init__(auth_token or os.getenv('FIREBASE_AUTH_TOKEN'), timeout)
        self.bucket = bucket or os.getenv('FIREBASE_STORAGE_BUCKET', '')
        if not self.bucket:
            logger.warning("FIREBASE_STORAGE_BUCKET not set — uploads will fail.")

    def _headers(self, content_type: Optional[str] = None) -> Dict[str, str]:
        headers = {}
        if self.auth_token:
            headers['Authorization'] = f"Firebase {self.auth_token}"
        if content_type:
            headers['Content-Type'] = content_type
        return headers

    def _object_url(self, path: str) -> str:
        return f"{STORAGE_API}/{self.bucket}/o/{quote(join_path(path), safe='')}"

    def download_url(self, path: str, token: str) -> str:
        url = f"{self._object_url(path)}?alt=media"
        return f"{url}&token={token}" if token else url

    async def metadata(self, path: str) -> Dict[str, Any]:
        return await self._send('GET', self._object_url(path), headers=self._headers()) or {}

    async def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> BlobHandle:
        path = join_path(path)
        reply = await self._send(
            'POST',
            f"{STORAGE_API}/{self.bucket}/o",
            params={'uploadType': 'media', 'name': path},
            data=bytes(data),
            headers=self._headers(content_type or 'application/octet-stream'),
        ) or {}
        token = (reply.get('downloadTokens') or '').split(',')[0] or None
        logger.info(f"Uploaded blob {path} ({len(data)} bytes)")
        return FirebaseBlobHandle(path, self, token)

    async def delete(self, path: str) -> None:
        await self._send('DELETE', self._object_url(path), headers=self._headers())
