"""
League catalogue synchronizer.
Pages through the federation league list and upserts every entry by competition id.
"""
from __future__ import annotations

from pydantic import BaseModel

from shared.config import Settings, get_settings
from shared.store import SyncStore
from shared.utils.logging import get_logger

from ingest.providers.base import BaseProvider, UpstreamError
from ingest.providers.schemas import LeagueQuery

logger = get_logger(__name__)


class LeagueSyncResult(BaseModel):
    created: int = 0
    updated: int = 0
    pages: int = 0
    complete: bool = True


class LeagueCatalogSynchronizer:
    def __init__(
        self,
        provider: BaseProvider,
        store: SyncStore,
        settings: Settings | None = None,
    ) -> None:
        self._provider = provider
        self._store = store
        self._settings = settings or get_settings()

    def query(self) -> LeagueQuery:
        return LeagueQuery(
            association_ids=self._settings.league_association_ids,
            area_ids=self._settings.league_area_ids,
            class_ids=self._settings.league_class_ids,
        )

    async def sync(self, start_index: int = 0) -> LeagueSyncResult:
        """
        Upsert the league catalogue starting at the given cursor.

        An upstream failure ends pagination for this run; pages already
        written stay committed. Store failures propagate.
        """
        query = self.query()
        result = LeagueSyncResult()
        index = start_index

        while result.pages < self._settings.league_max_pages:
            try:
                page = await self._provider.list_leagues(query, start_index=index)
            except UpstreamError as exc:
                logger.error("league_page_failed", start_index=index, error=str(exc))
                result.complete = False
                break
            result.pages += 1

            for entry in page.entries:
                competition = entry.to_competition()
                if await self._store.upsert_competition(competition):
                    result.created += 1
                    logger.info("league_created", competition_id=competition.competition_id, name=competition.name)
                else:
                    result.updated += 1
                    logger.debug("league_updated", competition_id=competition.competition_id)

            if not page.has_more:
                break
            step = page.size or len(page.entries)
            if step <= 0:
                logger.warning("league_page_empty_with_more_data", start_index=index)
                result.complete = False
                break
            index += step
        else:
            logger.warning("league_max_pages_reached", pages=result.pages, start_index=index)
            result.complete = False

        logger.info(
            "league_sync_done",
            created=result.created,
            updated=result.updated,
            pages=result.pages,
            complete=result.complete,
        )
        return result
