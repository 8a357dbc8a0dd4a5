"""
One collection run

Fetches every enabled source concurrently, normalizes and scores what came
back, substitutes fallback penalties for disabled or failed sources, builds
lineage and provenance, merges the history series and writes the three JSON
documents. A failing source degrades to `error` with a warning and never
cancels its siblings.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from httpx import AsyncBaseTransport

from config import config as runtime_config
from history_retention import HistoryRetentionManager, JsonHistoryStore
from http_transport import create_async_client
from lineage import LineageContext, build_lineage
from liveability_config import LiveabilityConfig
from normalizers import (
    normalize_hourly_forecast,
    normalize_line_statuses,
    normalize_stop_arrivals,
    summarize_air_quality,
)
from provenance import build_provenance
from redaction import redact_secrets
from schemas import (
    AirQualitySummary,
    HistoryPayload,
    LatestPayload,
    MetaPayload,
    MetricPenalties,
    NormalizedLineStatus,
    NormalizedStopArrivals,
    RequestTrace,
    SourceStatus,
    WeatherSlice,
    WeatherSummary,
    get_utc_now,
)
from scoring import (
    compose_score,
    compute_air_penalty,
    compute_transit_penalty,
    compute_wait_penalty,
    compute_weather_summary,
    fallback_air_summary,
    fallback_weather_summary,
)
from snapshot import (
    RunResults,
    build_history_payload,
    build_history_point,
    build_latest_payload,
    build_meta_payload,
    write_snapshot,
)
from sources import (
    SOURCE_ERG,
    SOURCE_OPEN_METEO,
    SOURCE_TFL,
    ErgAirQualityClient,
    FetchResult,
    OpenMeteoClient,
    SourceFetchError,
    TflClient,
)
from utils import round_to

logger = logging.getLogger(__name__)

FAILURE_PREFIXES = {
    SOURCE_TFL: "TfL collection failed",
    SOURCE_OPEN_METEO: "Open-Meteo collection failed",
    SOURCE_ERG: "ERG air quality collection failed",
}


@dataclass
class SourceOutcome:
    """Result of one source's fetch-and-normalize unit"""
    status: SourceStatus
    value: Any = None
    traces: List[RequestTrace] = field(default_factory=list)
    warning: Optional[str] = None


@dataclass(frozen=True)
class CollectionResult:
    latest: LatestPayload
    history: HistoryPayload
    meta: MetaPayload
    out_dir: Path


async def _run_unit(source: str, enabled: bool, unit: Callable[[], Awaitable[Tuple[Any, List[RequestTrace]]]]) -> SourceOutcome:
    if not enabled:
        logger.info(f"Source {source} disabled; skipping fetch")
        return SourceOutcome(status=SourceStatus.DISABLED)
    try:
        value, traces = await unit()
    except SourceFetchError as e:
        warning = redact_secrets(f"{FAILURE_PREFIXES[source]}: {e}")
        logger.warning(warning)
        return SourceOutcome(status=SourceStatus.ERROR, traces=e.traces, warning=warning)
    except Exception as e:
        warning = redact_secrets(f"{FAILURE_PREFIXES[source]}: {type(e).__name__}: {e}")
        logger.error(f"Unexpected error processing {source} data: {warning}")
        return SourceOutcome(status=SourceStatus.ERROR, warning=warning)
    logger.info(f"Source {source} collected ({len(traces)} requests)")
    return SourceOutcome(status=SourceStatus.OK, value=value, traces=traces)


async def _tfl_unit(tfl: TflClient, liveability_config: LiveabilityConfig):
    stops = liveability_config.sources.tfl.stop_points
    results = await asyncio.gather(
        tfl.fetch_line_statuses(),
        *(tfl.fetch_arrivals(stop.id) for stop in stops),
        return_exceptions=True,
    )

    traces: List[RequestTrace] = []
    failures: List[SourceFetchError] = []
    for result in results:
        if isinstance(result, SourceFetchError):
            traces.extend(result.traces)
            failures.append(result)
        elif isinstance(result, BaseException):
            raise result
        else:
            traces.extend(result.traces)

    if failures:
        raise SourceFetchError(str(failures[0]), traces)

    status_result: FetchResult = results[0]
    lines = normalize_line_statuses(status_result.payload, liveability_config)
    arrivals = [
        normalize_stop_arrivals(result.payload, stop, liveability_config)
        for stop, result in zip(stops, results[1:])
    ]
    return (lines, arrivals), traces


async def _open_meteo_unit(client: OpenMeteoClient, liveability_config: LiveabilityConfig):
    result = await client.fetch_forecast()
    weather = normalize_hourly_forecast(result.payload, liveability_config.sources.open_meteo.forecast_hours)
    return weather, result.traces


async def _erg_unit(client: ErgAirQualityClient, liveability_config: LiveabilityConfig):
    result = await client.fetch_monitoring_index()
    return summarize_air_quality(result.payload, liveability_config), result.traces


async def collect_sources(
    liveability_config: LiveabilityConfig,
    *,
    transport: Optional[AsyncBaseTransport] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, SourceOutcome]:
    """Run the three source units concurrently on one shared client"""
    sources = liveability_config.sources
    async with create_async_client(transport=transport) as client:
        tfl = TflClient(client, sources.tfl, environ)
        meteo = OpenMeteoClient(client, sources.open_meteo, liveability_config.location, liveability_config.project.timezone)
        erg = ErgAirQualityClient(client, sources.erg_air_quality)

        tfl_outcome, meteo_outcome, erg_outcome = await asyncio.gather(
            _run_unit(SOURCE_TFL, sources.tfl.enabled, lambda: _tfl_unit(tfl, liveability_config)),
            _run_unit(SOURCE_OPEN_METEO, sources.open_meteo.enabled, lambda: _open_meteo_unit(meteo, liveability_config)),
            _run_unit(SOURCE_ERG, sources.erg_air_quality.enabled, lambda: _erg_unit(erg, liveability_config)),
        )

    return {SOURCE_TFL: tfl_outcome, SOURCE_OPEN_METEO: meteo_outcome, SOURCE_ERG: erg_outcome}


def score_outcomes(liveability_config: LiveabilityConfig, outcomes: Dict[str, SourceOutcome]) -> RunResults:
    """Aggregate penalties; any source not `ok` puts its metrics on the fallback"""
    fallbacks = liveability_config.scoring.fallbacks
    tfl = outcomes[SOURCE_TFL]
    meteo = outcomes[SOURCE_OPEN_METEO]
    erg = outcomes[SOURCE_ERG]

    lines: List[NormalizedLineStatus] = []
    arrivals: List[NormalizedStopArrivals] = []
    if tfl.status == SourceStatus.OK:
        lines, arrivals = tfl.value
        transit_penalty = compute_transit_penalty(lines, liveability_config)
        wait_penalty = compute_wait_penalty(arrivals, liveability_config)
    else:
        transit_penalty = fallbacks.transit_penalty
        wait_penalty = fallbacks.wait_penalty

    if meteo.status == SourceStatus.OK:
        weather: WeatherSummary = compute_weather_summary(meteo.value or WeatherSlice(), liveability_config)
    else:
        weather = fallback_weather_summary(liveability_config)

    if erg.status == SourceStatus.OK:
        air: AirQualitySummary = compute_air_penalty(erg.value, liveability_config)
    else:
        air = fallback_air_summary(liveability_config)

    penalties = MetricPenalties(
        transit=round_to(transit_penalty, 2),
        wait=round_to(wait_penalty, 2),
        weather=round_to(weather.total_penalty, 2),
        air=round_to(air.penalty, 2),
    )
    return RunResults(
        line_statuses=lines,
        stop_arrivals=arrivals,
        weather=weather,
        air=air,
        penalties=penalties,
        score=compose_score(penalties, liveability_config.scoring.weights),
    )


async def collect_once(
    liveability_config: LiveabilityConfig,
    *,
    version: str,
    out_dir: Optional[Path] = None,
    now: Optional[datetime] = None,
    transport: Optional[AsyncBaseTransport] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> CollectionResult:
    """
    Run one full collection and write latest, history and meta documents.

    Args:
        liveability_config: Validated configuration
        version: Collector version, resolved once at process start
        out_dir: Output directory (runtime config default when omitted)
        now: Collection timestamp (current UTC time when omitted)
        transport: Optional httpx transport, used by tests to mock upstreams
        environ: Environment used for credentials and provenance

    Returns:
        CollectionResult: The three payloads and the directory they were written to
    """
    paths = runtime_config.paths
    out_dir = Path(out_dir) if out_dir is not None else paths.output_dir
    now = now or get_utc_now()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    logger.info(f"Starting collection for '{liveability_config.project.name}' at {now.isoformat()}")
    outcomes = await collect_sources(liveability_config, transport=transport, environ=environ)

    source_statuses = {source: outcome.status for source, outcome in outcomes.items()}
    warnings = [outcome.warning for outcome in outcomes.values() if outcome.warning]
    traces = [trace for outcome in outcomes.values() for trace in outcome.traces]

    results = score_outcomes(liveability_config, outcomes)
    lineage = build_lineage(
        LineageContext(
            config=liveability_config,
            generated_at=now,
            source_statuses=source_statuses,
            traces=traces,
            line_statuses=results.line_statuses,
            stop_arrivals=results.stop_arrivals,
            weather=results.weather,
            air=results.air,
            penalties=results.penalties,
            score=results.score.score,
            weighted_total=results.score.weighted_total,
        )
    )
    provenance = build_provenance(liveability_config, version, environ)
    latest = build_latest_payload(liveability_config, now, results, source_statuses, provenance, lineage, warnings)

    history_store = JsonHistoryStore(out_dir / paths.history_filename)
    retention = HistoryRetentionManager(
        retention_days=liveability_config.project.history_retention_days,
        points_per_day=liveability_config.project.points_per_day,
    )
    points = retention.merge(history_store.load_points(), build_history_point(latest), now)
    history = build_history_payload(liveability_config, now, points)
    meta = build_meta_payload(latest, paths.public_prefix, paths.latest_filename, paths.history_filename)

    out_dir.mkdir(parents=True, exist_ok=True)
    write_snapshot(out_dir / paths.latest_filename, latest)
    history_store.save(history)
    write_snapshot(out_dir / paths.meta_filename, meta)

    logger.info(
        f"Collection finished: score {latest.liveability_score} "
        f"(statuses {', '.join(f'{k}={v.value}' for k, v in source_statuses.items())}, "
        f"{len(points)} history points, {len(warnings)} warnings)"
    )
    return CollectionResult(latest=latest, history=history, meta=meta, out_dir=out_dir)
