"""TTL cache for aggregated quotes, with in-flight request sharing."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Hashable

from tradedesk.models.market import Asset


class QuoteCache:
    """Monotonic-clock TTL cache of asset lists, for use from a single event loop.

    Entries are stored as tuples and every caller gets its own list, so one
    consumer reordering or trimming its result cannot affect another.
    ``get_or_fetch`` lets concurrent callers asking for the same key await
    one shared fetch instead of each hitting the providers.
    """

    def __init__(self, ttl_seconds: float = 5.0) -> None:
        self._ttl = ttl_seconds
        self._entries: dict[Hashable, tuple[float, tuple[Asset, ...]]] = {}
        self._inflight: dict[Hashable, asyncio.Future] = {}

    @property
    def enabled(self) -> bool:
        return self._ttl > 0

    def get(self, key: Hashable) -> list[Asset] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, assets = entry
        if time.monotonic() - stored_at > self._ttl:
            del self._entries[key]
            return None
        return list(assets)

    def put(self, key: Hashable, assets: list[Asset]) -> None:
        self._entries[key] = (time.monotonic(), tuple(assets))

    async def get_or_fetch(
        self,
        key: Hashable,
        fetch: Callable[[], Awaitable[list[Asset]]],
    ) -> list[Asset]:
        cached = self.get(key)
        if cached is not None:
            return cached

        pending = self._inflight.get(key)
        if pending is not None:
            return list(await asyncio.shield(pending))

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            assets = await fetch()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved so an unawaited failure is not reported.
            future.exception()
            raise
        else:
            self.put(key, assets)
            future.set_result(tuple(assets))
            return list(assets)
        finally:
            self._inflight.pop(key, None)
