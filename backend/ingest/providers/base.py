"""
Abstract base class for upstream fixture providers.
Defines the contract the sync engine consumes and the errors it may raise.
"""
from __future__ import annotations

import abc
import time
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from pydantic import ValidationError

from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger

from ingest.providers.schemas import ClubInfo, FixtureDetail, LeaguePage, LeagueQuery, Schedule

logger = get_logger(__name__)

T = TypeVar("T")


class UpstreamError(Exception):
    """Transient upstream failure: timeout, 5xx, exhausted 429s, network error."""

    def __init__(self, endpoint: str, message: str) -> None:
        self.endpoint = endpoint
        super().__init__(f"{endpoint}: {message}")


class UpstreamPayloadError(UpstreamError):
    """The upstream answered, but the payload failed schema validation."""


class BaseProvider(abc.ABC):
    """
    Abstract base class for upstream providers.

    The base class owns the HTTP lifecycle and translates transport and
    validation failures into UpstreamError so callers handle one taxonomy.
    """

    def __init__(self, name: str, http_client: ProviderHTTPClient) -> None:
        self._name = name
        self._http = http_client

    @property
    def name(self) -> str:
        return self._name

    async def start(self) -> None:
        """Initialize the provider HTTP client."""
        await self._http.start()

    async def close(self) -> None:
        """Shutdown the provider HTTP client."""
        await self._http.close()

    async def _guarded(self, endpoint: str, call: Callable[[], Awaitable[T]], **context: Any) -> T:
        """Run one upstream call, mapping every failure mode onto UpstreamError."""
        start = time.perf_counter()
        try:
            return await call()
        except ValidationError as exc:
            logger.warning(
                "upstream_payload_invalid",
                provider=self._name,
                endpoint=endpoint,
                errors=exc.error_count(),
                **context,
            )
            raise UpstreamPayloadError(endpoint, f"invalid payload ({exc.error_count()} errors)") from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "upstream_call_failed",
                provider=self._name,
                endpoint=endpoint,
                error=str(exc) or exc.__class__.__name__,
                latency_ms=round((time.perf_counter() - start) * 1000, 2),
                **context,
            )
            raise UpstreamError(endpoint, str(exc) or exc.__class__.__name__) from exc

    # ── Abstract methods (each provider implements these) ───────────────
    @abc.abstractmethod
    async def list_leagues(self, query: LeagueQuery, start_index: int = 0) -> LeaguePage:
        """One page of the league catalogue."""
        ...

    @abc.abstractmethod
    async def list_fixtures(self, competition_id: int) -> Schedule:
        """The full fixture list of one competition."""
        ...

    @abc.abstractmethod
    async def get_fixture_detail(self, fixture_id: int) -> FixtureDetail:
        """Teams with club ids, venue and referee assignments of one fixture."""
        ...

    @abc.abstractmethod
    async def get_club_info(self, club_id: int, max_retries: int | None = None) -> ClubInfo:
        """Club master data; used to resolve display names."""
        ...
