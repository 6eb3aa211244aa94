import asyncio
import logging
import time
from functools import lru_cache
from typing import Awaitable, Callable, List, Optional, Tuple

from app.config import Settings, get_settings
from app.models.status import FleetSnapshot, ProbeResult
from app.models.target import Target, TargetCreate, TargetUpdate
from app.services.probe_client import probe_target, target_fingerprint
from app.services.ranker import rank_results
from app.services.target_store import JsonTargetStore

logger = logging.getLogger(__name__)

ProbeFunc = Callable[..., Awaitable[ProbeResult]]


class SnapshotCache:
    """
    Holds the latest FleetSnapshot for ``ttl_seconds``.

    The snapshot and its timestamp are swapped as one tuple, so a reader
    never sees a snapshot paired with another snapshot's age. Every
    invalidate() bumps ``generation``; put() with a stale generation is
    refused, so a refresh that started before a target-list change cannot
    repopulate the cache with the old fleet.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entry: Optional[Tuple[FleetSnapshot, float]] = None
        self.generation = 0

    def get(self) -> Optional[FleetSnapshot]:
        entry = self._entry
        if entry is None:
            return None
        snapshot, stored_at = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            return None
        return snapshot

    def put(self, snapshot: FleetSnapshot, generation: Optional[int] = None) -> bool:
        if generation is not None and generation != self.generation:
            return False
        self._entry = (snapshot, self._clock())
        return True

    def invalidate(self) -> None:
        self.generation += 1
        self._entry = None

    def age(self) -> Optional[float]:
        entry = self._entry
        if entry is None:
            return None
        return self._clock() - entry[1]


class FleetProber:
    """Probes every configured target concurrently and caches the snapshot."""

    def __init__(
        self,
        store: JsonTargetStore,
        cache: SnapshotCache,
        settings: Settings,
        probe: ProbeFunc = probe_target,
    ):
        self.store = store
        self.cache = cache
        self.settings = settings
        self._probe = probe
        self._refresh_lock = asyncio.Lock()

    async def probe_all(self, use_cache: bool = True) -> FleetSnapshot:
        """
        Return the fleet snapshot, probing all targets unless a fresh one is cached.

        Refreshes are serialised: a caller that waited for another refresh
        and accepts cached data gets that refresh's snapshot instead of
        probing again. Store failures propagate as StoreError; probe
        failures only ever show up as offline results.
        """
        if use_cache:
            cached = self.cache.get()
            if cached is not None:
                logger.debug("Serving fleet snapshot from cache")
                return cached

        async with self._refresh_lock:
            if use_cache:
                cached = self.cache.get()
                if cached is not None:
                    logger.debug("Serving fleet snapshot refreshed by a concurrent call")
                    return cached

            generation = self.cache.generation
            targets = await asyncio.to_thread(self.store.list)
            started = time.perf_counter()
            results = await self._probe_targets(targets)
            snapshot = FleetSnapshot.from_results(rank_results(results))

            if not self.cache.put(snapshot, generation):
                logger.debug("Target list changed during refresh; snapshot not cached")
            logger.info(
                "Probed %d targets in %.2fs: %d online, %d players",
                snapshot.total,
                time.perf_counter() - started,
                snapshot.online_count,
                snapshot.total_players,
            )
            return snapshot

    async def probe_one(self, target_id: int) -> ProbeResult:
        """Probe a single stored target, bypassing the cache."""
        target = await asyncio.to_thread(self.store.get, target_id)
        return await self._probe_safely(target)

    def invalidate(self) -> None:
        self.cache.invalidate()

    async def add_target(self, data: TargetCreate) -> Target:
        target = await asyncio.to_thread(self.store.add, data)
        self.invalidate()
        return target

    async def update_target(self, target_id: int, changes: TargetUpdate) -> Target:
        target = await asyncio.to_thread(self.store.update, target_id, changes)
        self.invalidate()
        return target

    async def delete_target(self, target_id: int) -> Target:
        target = await asyncio.to_thread(self.store.delete, target_id)
        self.invalidate()
        return target

    async def _probe_targets(self, targets: List[Target]) -> List[ProbeResult]:
        semaphore = asyncio.Semaphore(self.settings.max_concurrent_probes)

        async def bounded(target: Target) -> ProbeResult:
            async with semaphore:
                return await self._probe_safely(target)

        return list(await asyncio.gather(*(bounded(t) for t in targets)))

    async def _probe_safely(self, target: Target) -> ProbeResult:
        try:
            return await self._probe(
                target,
                timeout_ms=self.settings.probe_timeout_ms,
                grace_ms=self.settings.probe_grace_ms,
                protocol_version=self.settings.protocol_version,
                resolve_hostnames=self.settings.resolve_hostnames,
            )
        except Exception as exc:
            logger.exception("Unexpected error while probing %s", target.name)
            return ProbeResult(
                target_id=target.id,
                name=target.name,
                address=target.address,
                port=target.port,
                fingerprint=target_fingerprint(target.address, target.port),
                category=target.category,
                description=target.description,
                online=False,
                error="connect-error",
                error_detail=str(exc) or exc.__class__.__name__,
            )


@lru_cache(maxsize=1)
def get_fleet_prober() -> FleetProber:
    settings = get_settings()
    return FleetProber(
        store=JsonTargetStore(settings.servers_file),
        cache=SnapshotCache(settings.cache_ttl_ms / 1000.0),
        settings=settings,
    )
