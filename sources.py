"""
Upstream source adapters

Async clients for the TfL Unified API, Open-Meteo and the ERG London Air
Quality Network. Every call returns the decoded JSON payload together with
the request traces it produced; failures raise SourceFetchError carrying the
traces captured so far. URLs are credential-redacted before they reach a
trace, an exception message or a log line.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Sequence
from urllib.parse import quote

import httpx

from liveability_config import (
    ErgAirQualitySourceConfig,
    LocationSettings,
    OpenMeteoSourceConfig,
    TflSourceConfig,
)
from redaction import redact_secrets, sanitize_url_for_lineage
from schemas import RequestTrace

logger = logging.getLogger(__name__)

SOURCE_TFL = "tfl"
SOURCE_OPEN_METEO = "openMeteo"
SOURCE_ERG = "ergAirQuality"


@dataclass(frozen=True)
class FetchResult:
    payload: Any
    traces: List[RequestTrace] = field(default_factory=list)


class SourceFetchError(Exception):
    """A source call failed at the transport or HTTP level"""

    def __init__(self, message: str, traces: Optional[Sequence[RequestTrace]] = None):
        self.traces: List[RequestTrace] = list(traces or [])
        super().__init__(redact_secrets(message))


class UpstreamHTTPError(SourceFetchError):
    """Upstream answered with a non-2xx status"""

    def __init__(self, status_code: int, url: str, traces: Optional[Sequence[RequestTrace]] = None):
        self.status_code = status_code
        self.url = sanitize_url_for_lineage(url)
        super().__init__(f"HTTP {status_code} for {self.url}", traces)

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code < 500


def _join(base_url: str, path: str) -> str:
    return base_url.rstrip("/") + path


class _JsonSource:
    """Shared GET-and-decode step used by every adapter"""

    source_name = ""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def _get_json(self, url: str, params: Optional[Mapping[str, str]] = None, note: Optional[str] = None) -> FetchResult:
        request_url = httpx.URL(url, params=params) if params else httpx.URL(url)
        trace = RequestTrace(source=self.source_name, url=str(request_url), note=note)
        logger.debug(f"GET {trace.url}")

        try:
            response = await self.client.get(request_url)
        except httpx.RequestError as e:
            logger.warning(f"Network error calling {trace.url}: {type(e).__name__}")
            raise SourceFetchError(f"{type(e).__name__} for {trace.url}: {e}", [trace]) from e

        if not response.is_success:
            logger.warning(f"Upstream returned HTTP {response.status_code} for {trace.url}")
            raise UpstreamHTTPError(response.status_code, str(request_url), [trace])

        try:
            payload = response.json()
        except ValueError as e:
            raise SourceFetchError(f"Invalid JSON body for {trace.url}", [trace]) from e

        return FetchResult(payload=payload, traces=[trace])


class TflClient(_JsonSource):
    """TfL Unified API: line status by mode and stop point arrivals"""

    source_name = SOURCE_TFL

    def __init__(self, client: httpx.AsyncClient, settings: TflSourceConfig, environ: Optional[Mapping[str, str]] = None):
        super().__init__(client)
        self.settings = settings
        self.environ = os.environ if environ is None else environ

    def _auth_params(self) -> dict:
        app_key = self.environ.get(self.settings.app_key_env)
        return {"app_key": app_key} if app_key else {}

    def _status_url(self, modes: Sequence[str]) -> str:
        return _join(self.settings.base_url, f"/line/mode/{','.join(modes)}/status")

    async def fetch_line_statuses(self) -> FetchResult:
        """
        Status of every line in the configured modes.

        The combined multi-mode request is tried first. If it is rejected with
        a 4xx and more than one mode is configured, each mode is requested on
        its own concurrently and the successful responses are merged. When no
        per-mode request succeeds the original error is raised.
        """
        modes = list(self.settings.modes)
        try:
            return await self._get_json(self._status_url(modes), self._auth_params(), note="line status")
        except UpstreamHTTPError as combined_error:
            if not combined_error.is_client_error or len(modes) <= 1:
                raise
            logger.info(f"Combined TfL status request rejected ({combined_error.status_code}); retrying per mode")
            return await self._fetch_per_mode(modes, combined_error)

    async def _fetch_per_mode(self, modes: Sequence[str], combined_error: UpstreamHTTPError) -> FetchResult:
        results = await asyncio.gather(
            *(self._get_json(self._status_url([mode]), self._auth_params(), note=f"line status ({mode})") for mode in modes),
            return_exceptions=True,
        )

        traces = list(combined_error.traces)
        merged: List[Any] = []
        succeeded = 0
        for mode, result in zip(modes, results):
            if isinstance(result, SourceFetchError):
                traces.extend(result.traces)
                logger.warning(f"TfL status request for mode '{mode}' failed: {result}")
                continue
            if isinstance(result, BaseException):
                raise result
            traces.extend(result.traces)
            succeeded += 1
            if isinstance(result.payload, list):
                merged.extend(result.payload)

        if succeeded == 0:
            combined_error.traces = traces
            raise combined_error
        return FetchResult(payload=merged, traces=traces)

    async def fetch_arrivals(self, stop_id: str) -> FetchResult:
        url = _join(self.settings.base_url, f"/StopPoint/{quote(stop_id, safe='')}/arrivals")
        return await self._get_json(url, self._auth_params(), note=f"arrivals {stop_id}")


class OpenMeteoClient(_JsonSource):
    """Open-Meteo hourly forecast for the configured location"""

    source_name = SOURCE_OPEN_METEO

    def __init__(self, client: httpx.AsyncClient, settings: OpenMeteoSourceConfig, location: LocationSettings, timezone: str):
        super().__init__(client)
        self.settings = settings
        self.location = location
        self.timezone = timezone

    async def fetch_forecast(self) -> FetchResult:
        params = {
            "latitude": str(self.location.lat),
            "longitude": str(self.location.lon),
            "hourly": ",".join(self.settings.hourly_variables),
            "forecast_hours": str(self.settings.forecast_hours),
            "timezone": self.timezone,
        }
        return await self._get_json(_join(self.settings.base_url, "/v1/forecast"), params, note="hourly forecast")


class ErgAirQualityClient(_JsonSource):
    """ERG London Air Quality Network hourly monitoring index for a site group"""

    source_name = SOURCE_ERG

    def __init__(self, client: httpx.AsyncClient, settings: ErgAirQualitySourceConfig):
        super().__init__(client)
        self.settings = settings

    async def fetch_monitoring_index(self) -> FetchResult:
        group = quote(self.settings.group_name, safe="")
        url = _join(self.settings.base_url, f"/AirQuality/Hourly/MonitoringIndex/GroupName={group}/Json")
        return await self._get_json(url, note="monitoring index")
