"""
Club identity resolver.

Maps numeric club ids to display identities through three layers: an
in-process cache, the persistent store and the upstream club endpoint.
Upstream failures never propagate; the caller gets a stale record or a
placeholder labelled with the raw id instead.
"""
from __future__ import annotations

import asyncio
from typing import Iterable, Optional

from shared.config import Settings, get_settings
from shared.models.domain import ClubIdentity
from shared.store import SyncStore
from shared.utils.database import StoreError
from shared.utils.logging import get_logger
from shared.utils.metrics import CLUB_RESOLUTIONS

from ingest.providers.base import BaseProvider, UpstreamError

logger = get_logger(__name__)


class IdentityResolver:
    """
    Cache + fallback layer in front of the club endpoint.

    One instance per process; constructed by the entrypoint and injected into
    the reconciler. Resolution of a given id is single-flight: concurrent
    callers await the same task.
    """

    def __init__(
        self,
        provider: BaseProvider,
        store: SyncStore,
        settings: Settings | None = None,
    ) -> None:
        self._provider = provider
        self._store = store
        self._settings = settings or get_settings()
        self._cache: dict[int, ClubIdentity] = {}
        self._inflight: dict[int, asyncio.Task[ClubIdentity]] = {}
        self._refreshing: dict[int, asyncio.Task[None]] = {}

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    # ── Single id ───────────────────────────────────────────────────────

    async def resolve(self, club_id: int) -> ClubIdentity:
        cached = self._cache.get(club_id)
        if cached is not None:
            CLUB_RESOLUTIONS.labels(source="cache").inc()
            return cached

        task = self._inflight.get(club_id)
        if task is None:
            task = asyncio.create_task(self._resolve_uncached(club_id), name=f"club-resolve-{club_id}")
            self._inflight[club_id] = task
            task.add_done_callback(lambda _t, cid=club_id: self._inflight.pop(cid, None))
        # Shielded so one cancelled caller does not cancel the shared lookup
        return await asyncio.shield(task)

    async def _resolve_uncached(self, club_id: int) -> ClubIdentity:
        stored = await self._store.get_club(club_id)
        if stored is not None:
            if not stored.is_stale(self._settings.club_stale_after_days):
                self._cache[club_id] = stored
                CLUB_RESOLUTIONS.labels(source="store").inc()
                return stored
            self._schedule_refresh(club_id)
            CLUB_RESOLUTIONS.labels(source="stale").inc()
            return stored

        fetched = await self._fetch(club_id)
        if fetched is not None:
            self._cache[club_id] = fetched
            CLUB_RESOLUTIONS.labels(source="upstream").inc()
            return fetched

        last_resort = await self._store.get_club(club_id)
        if last_resort is not None:
            CLUB_RESOLUTIONS.labels(source="stale").inc()
            return last_resort

        logger.warning("club_resolve_fallback", club_id=club_id)
        CLUB_RESOLUTIONS.labels(source="fallback").inc()
        return ClubIdentity.fallback(club_id)

    async def lookup(self, club_id: int) -> ClubIdentity:
        """
        Cache, then store, then placeholder; never waits on the upstream.

        A stale store record is returned as is and schedules one background
        refresh. Used for ids the store already knows.
        """
        cached = self._cache.get(club_id)
        if cached is not None:
            CLUB_RESOLUTIONS.labels(source="cache").inc()
            return cached

        stored = await self._store.get_club(club_id)
        if stored is None:
            CLUB_RESOLUTIONS.labels(source="fallback").inc()
            return ClubIdentity.fallback(club_id)
        if stored.is_stale(self._settings.club_stale_after_days):
            self._schedule_refresh(club_id)
            CLUB_RESOLUTIONS.labels(source="stale").inc()
            return stored
        self._cache[club_id] = stored
        CLUB_RESOLUTIONS.labels(source="store").inc()
        return stored

    def _backoff_s(self, attempt: int) -> float:
        base = self._settings.club_backoff_base_s
        return min(base * (2 ** (attempt - 1)), self._settings.club_backoff_cap_s)

    async def _fetch(self, club_id: int) -> Optional[ClubIdentity]:
        """Fetch the club name with bounded retries; persist it on success."""
        attempts = max(1, self._settings.club_fetch_attempts)
        for attempt in range(1, attempts + 1):
            try:
                info = await asyncio.wait_for(
                    self._provider.get_club_info(club_id, max_retries=1),
                    timeout=self._settings.upstream_timeout_s,
                )
                name = info.display_name
                if name:
                    identity = await self._store.save_club(club_id, name)
                    logger.info("club_resolved", club_id=club_id, name=name, attempt=attempt)
                    return identity
                logger.warning("club_info_without_name", club_id=club_id, attempt=attempt)
            except (UpstreamError, asyncio.TimeoutError) as exc:
                logger.warning(
                    "club_fetch_failed",
                    club_id=club_id,
                    attempt=attempt,
                    error=str(exc) or exc.__class__.__name__,
                )
            if attempt < attempts:
                await asyncio.sleep(self._backoff_s(attempt))
        return None

    def _schedule_refresh(self, club_id: int) -> None:
        if club_id in self._refreshing:
            return
        task = asyncio.create_task(self._refresh(club_id), name=f"club-refresh-{club_id}")
        self._refreshing[club_id] = task
        task.add_done_callback(lambda _t, cid=club_id: self._refreshing.pop(cid, None))

    async def _refresh(self, club_id: int) -> None:
        try:
            fetched = await self._fetch(club_id)
        except StoreError as exc:
            logger.warning("club_refresh_failed", club_id=club_id, error=str(exc))
            return
        if fetched is not None:
            self._cache[club_id] = fetched

    # ── Batches ─────────────────────────────────────────────────────────

    async def resolve_many(self, club_ids: Iterable[int]) -> list[ClubIdentity]:
        """
        Resolve ids in small serial batches with pauses between items and batches.

        Returns one identity per distinct id, in first-seen order. A failure
        for one id yields its placeholder and never aborts the batch.
        """
        unique = list(dict.fromkeys(club_ids))
        size = max(1, self._settings.club_batch_size)
        batches = [unique[i:i + size] for i in range(0, len(unique), size)]
        results: list[ClubIdentity] = []

        for batch_no, batch in enumerate(batches):
            if batch_no > 0:
                await asyncio.sleep(self._settings.club_batch_pause_s)
            for item_no, club_id in enumerate(batch):
                if item_no > 0:
                    await asyncio.sleep(self._settings.club_item_pause_s)
                try:
                    results.append(await self.resolve(club_id))
                except StoreError as exc:
                    logger.error("club_resolve_store_error", club_id=club_id, error=str(exc))
                    results.append(ClubIdentity.fallback(club_id))

        logger.info("club_batch_resolved", requested=len(unique), batches=len(batches))
        return results

    async def refresh_all(self) -> int:
        """Refetch every stored club; returns the number of names updated."""
        clubs = await self._store.list_clubs()
        updated = 0
        for index, club in enumerate(clubs):
            if index > 0:
                await asyncio.sleep(self._settings.club_item_pause_s)
            fetched = await self._fetch(club.club_id)
            if fetched is not None:
                updated += 1
        self.clear_all()
        logger.info("club_refresh_all_done", total=len(clubs), updated=updated)
        return updated

    # ── Cache control ───────────────────────────────────────────────────

    def clear(self, club_id: int) -> None:
        self._cache.pop(club_id, None)

    def clear_all(self) -> None:
        self._cache.clear()
        logger.info("club_cache_cleared")

    async def close(self) -> None:
        """Cancel background refreshes."""
        tasks = list(self._refreshing.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
