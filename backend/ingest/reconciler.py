"""
Match reconciler.

One reconcile() pass:
  1. fetch the schedule of every stored competition and the detail of each fixture
  2. resolve every club id not yet in the store (batched, rate limited) and
     look up the rest, giving one id -> identity map for the run
  3. normalize against that map, diff, write and notify per fixture

Upstream failures degrade to skipping one league or fixture. Store failures
abort the pass.
"""
from __future__ import annotations

import asyncio
import time
from typing import Optional

from shared.config import Settings, get_settings
from shared.models.domain import ClubIdentity, Competition, RunReport
from shared.models.enums import ChangeKind
from shared.store import SyncStore
from shared.utils.logging import get_logger

from ingest.clubs.resolver import IdentityResolver
from ingest.normalization.normalizer import (
    FetchedFixture,
    FixtureNormalizer,
    MalformedFixtureError,
    collect_club_ids,
    validate_fetched,
)
from ingest.notifications.engine import NotificationEngine, decide
from ingest.providers.base import BaseProvider, UpstreamError
from ingest.providers.schemas import ScheduleEntry

logger = get_logger(__name__)


class MatchReconciler:
    def __init__(
        self,
        provider: BaseProvider,
        store: SyncStore,
        resolver: IdentityResolver,
        engine: NotificationEngine,
        settings: Settings | None = None,
    ) -> None:
        self._provider = provider
        self._store = store
        self._resolver = resolver
        self._engine = engine
        self._settings = settings or get_settings()

    # ── Phase 1: fetch ──────────────────────────────────────────────────

    async def _fetch_detail(
        self,
        competition: Competition,
        league_name: Optional[str],
        entry: ScheduleEntry,
        semaphore: asyncio.Semaphore,
    ) -> Optional[FetchedFixture]:
        async with semaphore:
            try:
                detail = await self._provider.get_fixture_detail(entry.match_id)
            except UpstreamError as exc:
                logger.warning(
                    "fixture_detail_failed",
                    competition_id=competition.competition_id,
                    fixture_id=entry.match_id,
                    error=str(exc),
                )
                return None
        fetched = FetchedFixture(
            competition_id=competition.competition_id,
            competition_name=league_name or competition.name,
            entry=entry,
            detail=detail,
        )
        try:
            validate_fetched(fetched)
        except MalformedFixtureError as exc:
            logger.warning("fixture_malformed", fixture_id=entry.match_id, error=str(exc))
            return None
        return fetched

    async def _fetch_league(
        self, competition: Competition, report: RunReport
    ) -> Optional[list[FetchedFixture]]:
        try:
            schedule = await self._provider.list_fixtures(competition.competition_id)
        except UpstreamError as exc:
            logger.error("league_fetch_failed", competition_id=competition.competition_id, error=str(exc))
            return None

        league_name = schedule.league.name if schedule.league else None
        semaphore = asyncio.Semaphore(self._settings.fixture_detail_concurrency)
        results = await asyncio.gather(
            *(self._fetch_detail(competition, league_name, e, semaphore) for e in schedule.matches)
        )
        fetched = [r for r in results if r is not None]
        report.fixtures_seen += len(schedule.matches)
        report.skipped += len(schedule.matches) - len(fetched)
        logger.info(
            "league_fetched",
            competition_id=competition.competition_id,
            fixtures=len(schedule.matches),
            usable=len(fetched),
        )
        return fetched

    # ── Phase 2: identities ─────────────────────────────────────────────

    async def _resolve_identities(
        self, leagues: list[list[FetchedFixture]]
    ) -> tuple[dict[int, ClubIdentity], int]:
        """
        Identity of every club referenced in this run, keyed by id.

        Ids unknown to the store go through the paced resolve_many, at most once
        per run; known ids are looked up without touching the upstream. Returns
        the map and the number of ids that were missing from the store.
        """
        referenced = collect_club_ids(f for league in leagues for f in league)
        known = await self._store.existing_club_ids(referenced)
        missing = [club_id for club_id in referenced if club_id not in known]
        identities: dict[int, ClubIdentity] = {}
        if missing:
            logger.info("club_identities_missing", referenced=len(referenced), missing=len(missing))
            for identity in await self._resolver.resolve_many(missing):
                identities[identity.club_id] = identity
        for club_id in referenced:
            if club_id not in identities:
                identities[club_id] = await self._resolver.lookup(club_id)
        return identities, len(missing)

    # ── Phase 3: upsert ─────────────────────────────────────────────────

    async def _reconcile_fixture(
        self, fetched: FetchedFixture, normalizer: FixtureNormalizer, semaphore: asyncio.Semaphore
    ) -> tuple[ChangeKind, int]:
        async with semaphore:
            incoming = normalizer.normalize(fetched)
            stored = await self._store.get_fixture(incoming.fixture_id)
            decision = decide(stored, incoming, subject_prefix=self._settings.subject_prefix)
            written = await self._engine.apply(decision.change_set)
            sent = await self._engine.dispatch(decision.notifications) if decision.notifications else 0
        kind = decision.change_set.kind
        if kind == ChangeKind.CREATED and not written:
            kind = ChangeKind.UNCHANGED
        return kind, sent

    async def _reconcile_league(
        self, fixtures: list[FetchedFixture], normalizer: FixtureNormalizer, report: RunReport
    ) -> None:
        semaphore = asyncio.Semaphore(self._settings.fixture_upsert_concurrency)
        tasks = [asyncio.create_task(self._reconcile_fixture(f, normalizer, semaphore)) for f in fixtures]
        try:
            outcomes = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        for kind, sent in outcomes:
            if kind == ChangeKind.CREATED:
                report.created += 1
            elif kind == ChangeKind.UNCHANGED:
                report.unchanged += 1
            else:
                report.updated += 1
            report.notifications += sent

    # ── Entry point ─────────────────────────────────────────────────────

    async def reconcile(self) -> RunReport:
        start = time.perf_counter()
        report = RunReport()
        competitions = await self._store.list_competitions()
        report.leagues = len(competitions)

        fetched_by_league: list[list[FetchedFixture]] = []
        for competition in competitions:
            fetched = await self._fetch_league(competition, report)
            if fetched is None:
                report.leagues_failed += 1
                continue
            fetched_by_league.append(fetched)

        identities, report.clubs_resolved = await self._resolve_identities(fetched_by_league)
        normalizer = FixtureNormalizer(identities)

        for fixtures in fetched_by_league:
            if fixtures:
                await self._reconcile_league(fixtures, normalizer, report)

        report.duration_s = round(time.perf_counter() - start, 3)
        logger.info("reconcile_done", **report.model_dump())
        return report
