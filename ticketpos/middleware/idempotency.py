"""Replay protection for payment endpoints.

A POST carrying an ``Idempotency-Key`` header is processed once per key; a
repeat inside the TTL gets the stored response back with
``Idempotent-Replay: true`` instead of charging the ticket again. Only
successful responses are stored, so a failed attempt can be retried with the
same key.
"""
import asyncio
import json
import logging
import re
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from ticketpos.core.config import settings

logger = logging.getLogger(__name__)

# payment paths and the JSON key a successful response must carry
PAYMENT_PATHS = (
    (re.compile(r"^/tickets/\d+/pay/(cash|card|split)$"), "ticket_id"),
    (re.compile(r"^/split/[0-9a-f]+/pay/(cash|card|split)$"), "ticket_id"),
)


def success_key_for(path: str):
    for pattern, key in PAYMENT_PATHS:
        if pattern.match(path):
            return key
    return None


class _Cache:
    def __init__(self, ttl=3600, max_entries=2048):
        self.ttl = ttl
        self.max_entries = max_entries
        self._store = {}
        self._lock = asyncio.Lock()

    async def get(self, key):
        async with self._lock:
            item = self._store.get(key)
            if not item:
                return None
            if item["exp"] < time.time():
                self._store.pop(key, None)
                return None
            return item

    async def set(self, key, val):
        async with self._lock:
            if len(self._store) >= self.max_entries:
                self._store.pop(next(iter(self._store)))
            val["exp"] = time.time() + self.ttl
            self._store[key] = val

    async def clear(self):
        async with self._lock:
            self._store.clear()


class _KeyedLocks:
    """One lock per key, kept only while some request holds or waits on it."""

    def __init__(self):
        self._locks = {}  # key -> [lock, holders + waiters]
        self._guard = asyncio.Lock()

    def __len__(self):
        return len(self._locks)

    async def acquire(self, key):
        async with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [asyncio.Lock(), 0]
            entry[1] += 1
        try:
            await entry[0].acquire()
        except asyncio.CancelledError:
            async with self._guard:
                self._forget(key)
            raise

    async def release(self, key):
        async with self._guard:
            self._locks[key][0].release()
            self._forget(key)

    def _forget(self, key):
        entry = self._locks[key]
        entry[1] -= 1
        if entry[1] == 0:
            del self._locks[key]


def _drop_content_length(headers: dict) -> dict:
    return {k: v for k, v in headers.items() if k.lower() != "content-length"}


def _replay(cached) -> Response:
    body = cached["body"]
    try:
        js = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        js = None
    if isinstance(js, dict):
        js.setdefault("replay", True)
        body = json.dumps(js).encode("utf-8")
    headers = _drop_content_length(dict(cached["headers"]))
    headers["Idempotent-Replay"] = "true"
    return Response(
        content=body,
        status_code=cached["status"],
        media_type=cached["media_type"],
        headers=headers,
    )


def _is_success(status: int, body: bytes, success_key: str) -> bool:
    if status != 200:
        return False
    try:
        js = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return False
    return isinstance(js, dict) and success_key in js


idem_cache = _Cache(ttl=settings.idempotency_ttl_seconds)
keyed_locks = _KeyedLocks()


class PaymentIdempotency(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        if request.method != "POST":
            return await call_next(request)

        path = request.url.path
        success_key = success_key_for(path)
        if not success_key:
            return await call_next(request)

        idem_key = request.headers.get("Idempotency-Key")
        if not idem_key:
            return await call_next(request)

        cache_key = f"{request.method}:{path}:{idem_key}"

        cached = await idem_cache.get(cache_key)
        if cached:
            logger.info("Idempotent replay: %s", cache_key)
            return _replay(cached)

        await keyed_locks.acquire(cache_key)
        try:
            # a concurrent request with the same key may have finished meanwhile
            cached = await idem_cache.get(cache_key)
            if cached:
                logger.info("Idempotent replay: %s", cache_key)
                return _replay(cached)

            response = await call_next(request)
            body = b""
            async for chunk in response.body_iterator:
                body += chunk

            headers = _drop_content_length(dict(response.headers))
            new_resp = Response(
                content=body,
                status_code=response.status_code,
                media_type=response.media_type,
                headers=headers,
            )
            if _is_success(response.status_code, body, success_key):
                await idem_cache.set(
                    cache_key,
                    {
                        "status": new_resp.status_code,
                        "headers": dict(new_resp.headers),
                        "media_type": new_resp.media_type,
                        "body": body,
                    },
                )
            return new_resp
        finally:
            await keyed_locks.release(cache_key)


def install_idempotency(app):
    app.add_middleware(PaymentIdempotency)
