"""
Fetch client and basketball-bund.net provider against httpx.MockTransport.

Run: pytest backend/tests/test_http_client.py -v
"""
from __future__ import annotations

import json

import httpx
import pytest

from shared.config import Settings
from shared.utils.http_client import ProviderHTTPClient
from ingest.providers.base import UpstreamError, UpstreamPayloadError
from ingest.providers.basketball_bund import BasketballBundProvider
from ingest.providers.schemas import LeagueQuery

BASE_URL = "https://bbn.test/rest"


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    async def instant(_seconds: float) -> None:
        return None

    monkeypatch.setattr("shared.utils.http_client.asyncio.sleep", instant)


def scripted(*responses: httpx.Response) -> tuple[httpx.MockTransport, list[httpx.Request]]:
    """Transport that answers with the given responses in order and records requests."""
    seen: list[httpx.Request] = []
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return queue.pop(0) if len(queue) > 1 else queue[0]

    return httpx.MockTransport(handler), seen


async def started(transport: httpx.MockTransport, max_retries: int = 3) -> ProviderHTTPClient:
    client = ProviderHTTPClient("test", BASE_URL, timeout_s=1.0, max_retries=max_retries, transport=transport)
    await client.start()
    return client


async def provider_for(transport: httpx.MockTransport, settings: Settings) -> BasketballBundProvider:
    provider = BasketballBundProvider(settings, http_client=await started(transport, max_retries=2))
    return provider


# ── Retry policy ────────────────────────────────────────────────────────

class TestRetries:
    @pytest.mark.asyncio
    async def test_server_error_is_retried(self) -> None:
        transport, seen = scripted(httpx.Response(503), httpx.Response(200, json={"ok": True}))
        client = await started(transport)
        resp = await client.get("/ping", endpoint="ping")
        await client.close()

        assert resp.json() == {"ok": True}
        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self) -> None:
        transport, seen = scripted(httpx.Response(404))
        client = await started(transport)
        with pytest.raises(httpx.HTTPStatusError):
            await client.get("/missing", endpoint="missing")
        await client.close()
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_rate_limit_honours_retry_after(self) -> None:
        transport, seen = scripted(
            httpx.Response(429, headers={"Retry-After": "1"}), httpx.Response(200, json={})
        )
        client = await started(transport)
        await client.get("/busy", endpoint="busy")
        await client.close()
        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_per_call_attempt_override(self) -> None:
        transport, seen = scripted(httpx.Response(500))
        client = await started(transport, max_retries=3)
        with pytest.raises(httpx.HTTPStatusError):
            await client.get("/down", endpoint="down", max_retries=1)
        await client.close()
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_unstarted_client_refuses(self) -> None:
        client = ProviderHTTPClient("test", BASE_URL)
        with pytest.raises(RuntimeError):
            await client.get("/ping")


# ── Provider envelope ───────────────────────────────────────────────────

class TestProvider:
    @pytest.mark.asyncio
    async def test_league_page_request_shape(self, settings: Settings) -> None:
        page = {
            "startAtIndex": 10,
            "ligen": [{"ligaId": 1, "liganame": "Oberliga", "verbandId": 7}],
            "hasMoreData": False,
            "size": 1,
        }
        transport, seen = scripted(httpx.Response(200, json={"status": "0", "data": page}))
        provider = await provider_for(transport, settings)
        query = LeagueQuery(association_ids=[7], area_ids=[101], class_ids=[722])

        result = await provider.list_leagues(query, start_index=10)
        await provider.close()

        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/rest/wam/liga/list"
        assert request.url.params["startAtIndex"] == "10"
        assert json.loads(request.content)["verbandIds"] == [7]
        assert [e.competition_id for e in result.entries] == [1]
        assert result.has_more is False

    @pytest.mark.asyncio
    async def test_non_zero_status_is_payload_error(self, settings: Settings) -> None:
        transport, _ = scripted(httpx.Response(200, json={"status": "1", "message": "kaputt", "data": None}))
        provider = await provider_for(transport, settings)
        with pytest.raises(UpstreamPayloadError):
            await provider.get_fixture_detail(5)
        await provider.close()

    @pytest.mark.asyncio
    async def test_empty_schedule_data_is_empty_schedule(self, settings: Settings) -> None:
        transport, seen = scripted(httpx.Response(200, json={"status": 0, "data": None}))
        provider = await provider_for(transport, settings)
        schedule = await provider.list_fixtures(100)
        await provider.close()

        assert seen[0].url.path == "/rest/competition/spielplan/id/100"
        assert schedule.matches == []

    @pytest.mark.asyncio
    async def test_schema_violation_is_payload_error(self, settings: Settings) -> None:
        transport, _ = scripted(httpx.Response(200, json={"status": "0", "data": {"matchId": "abc"}}))
        provider = await provider_for(transport, settings)
        with pytest.raises(UpstreamPayloadError):
            await provider.get_fixture_detail(5)
        await provider.close()

    @pytest.mark.asyncio
    async def test_persistent_server_error_is_upstream_error(self, settings: Settings) -> None:
        transport, seen = scripted(httpx.Response(502))
        provider = await provider_for(transport, settings)
        with pytest.raises(UpstreamError) as err:
            await provider.list_fixtures(100)
        await provider.close()

        assert err.value.endpoint == "schedule"
        assert not isinstance(err.value, UpstreamPayloadError)
        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_club_info_uses_single_attempt(self, settings: Settings) -> None:
        transport, seen = scripted(httpx.Response(503))
        provider = await provider_for(transport, settings)
        with pytest.raises(UpstreamError):
            await provider.get_club_info(42, max_retries=1)
        await provider.close()

        assert seen[0].url.path == "/rest/club/id/42/actualmatches"
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_club_name_is_trimmed(self, settings: Settings) -> None:
        body = {"status": "0", "data": {"club": {"vereinsname": "  TV Sieben "}}}
        transport, _ = scripted(httpx.Response(200, json=body))
        provider = await provider_for(transport, settings)
        info = await provider.get_club_info(7)
        await provider.close()
        assert info.display_name == "TV Sieben"
