"""
basketball-bund.net provider connector.
Public REST API of the federation portal; no key, but a strict request budget.
"""
from __future__ import annotations

from typing import Any

from shared.config import Settings, get_settings
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger
from shared.utils.rate_limiter import TokenBucket

from ingest.providers.base import BaseProvider, UpstreamPayloadError
from ingest.providers.schemas import (
    ClubInfo,
    Envelope,
    FixtureDetail,
    LeaguePage,
    LeagueQuery,
    Schedule,
)

logger = get_logger(__name__)


class BasketballBundProvider(BaseProvider):
    """Fetch client for leagues, fixtures, fixture details and clubs."""

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: ProviderHTTPClient | None = None,
    ) -> None:
        settings = settings or get_settings()
        if http_client is None:
            http_client = ProviderHTTPClient(
                provider_name="basketball_bund",
                base_url=settings.upstream_base_url,
                headers={"Accept": "application/json"},
                timeout_s=settings.upstream_timeout_s,
                max_retries=settings.upstream_max_retries,
                rate_limiter=TokenBucket(rpm=settings.upstream_rpm_limit, burst=settings.upstream_burst),
            )
        super().__init__(name="basketball_bund", http_client=http_client)

    @staticmethod
    def _unwrap(endpoint: str, payload: Any) -> Any:
        envelope = Envelope.model_validate(payload)
        if envelope.status not in (None, 0, "0"):
            raise UpstreamPayloadError(endpoint, f"status={envelope.status} message={envelope.message!r}")
        return envelope.data

    async def list_leagues(self, query: LeagueQuery, start_index: int = 0) -> LeaguePage:
        endpoint = "league_list"

        async def call() -> LeaguePage:
            resp = await self._http.post(
                "/wam/liga/list",
                json_body=query.body(),
                params={"startAtIndex": start_index},
                endpoint=endpoint,
            )
            data = self._unwrap(endpoint, resp.json())
            if data is None:
                raise UpstreamPayloadError(endpoint, "empty data")
            return LeaguePage.model_validate(data)

        return await self._guarded(endpoint, call, start_index=start_index)

    async def list_fixtures(self, competition_id: int) -> Schedule:
        endpoint = "schedule"

        async def call() -> Schedule:
            resp = await self._http.get(f"/competition/spielplan/id/{competition_id}", endpoint=endpoint)
            data = self._unwrap(endpoint, resp.json())
            if data is None:
                logger.info("schedule_empty", competition_id=competition_id)
                return Schedule()
            return Schedule.model_validate(data)

        return await self._guarded(endpoint, call, competition_id=competition_id)

    async def get_fixture_detail(self, fixture_id: int) -> FixtureDetail:
        endpoint = "match_info"

        async def call() -> FixtureDetail:
            resp = await self._http.get(f"/match/id/{fixture_id}/matchInfo", endpoint=endpoint)
            data = self._unwrap(endpoint, resp.json())
            if data is None:
                raise UpstreamPayloadError(endpoint, "empty data")
            return FixtureDetail.model_validate(data)

        return await self._guarded(endpoint, call, fixture_id=fixture_id)

    async def get_club_info(self, club_id: int, max_retries: int | None = None) -> ClubInfo:
        endpoint = "club_info"

        async def call() -> ClubInfo:
            resp = await self._http.get(
                f"/club/id/{club_id}/actualmatches", endpoint=endpoint, max_retries=max_retries
            )
            data = self._unwrap(endpoint, resp.json())
            return ClubInfo.model_validate(data or {})

        return await self._guarded(endpoint, call, club_id=club_id)
