"""
Lineage builder

Explains how each published number was derived: which sources and requests
fed it, the ingestion, transform and calculation steps applied, the
configuration paths consulted, the final outputs, and whether a fallback
penalty stood in for real data. URLs arrive already redacted through
RequestTrace.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Sequence, Tuple

from liveability_config import LiveabilityConfig
from schemas import (
    AirQualitySummary,
    LineageMetric,
    LineageMetrics,
    LineagePayload,
    MetricPenalties,
    NormalizedLineStatus,
    NormalizedStopArrivals,
    RequestTrace,
    SourceStatus,
    WeatherSummary,
)
from sources import SOURCE_ERG, SOURCE_OPEN_METEO, SOURCE_TFL

logger = logging.getLogger(__name__)

SOURCE_LABELS = {
    SOURCE_TFL: "TfL",
    SOURCE_OPEN_METEO: "Open-Meteo",
    SOURCE_ERG: "ERG air quality",
}


@dataclass(frozen=True)
class LineageContext:
    """Everything one run produced that the lineage records describe"""
    config: LiveabilityConfig
    generated_at: datetime
    source_statuses: Dict[str, SourceStatus]
    traces: Sequence[RequestTrace]
    line_statuses: Sequence[NormalizedLineStatus]
    stop_arrivals: Sequence[NormalizedStopArrivals]
    weather: WeatherSummary
    air: AirQualitySummary
    penalties: MetricPenalties
    score: float
    weighted_total: float


@dataclass(frozen=True)
class _Fallback:
    used: bool
    reason: Optional[str]


def is_status_trace(trace: RequestTrace) -> bool:
    return trace.source == SOURCE_TFL and "/line/mode/" in trace.url.lower()


def is_arrivals_trace(trace: RequestTrace) -> bool:
    return trace.source == SOURCE_TFL and "/stoppoint/" in trace.url.lower()


def _source_fallback(status: SourceStatus, source: str) -> Optional[str]:
    label = SOURCE_LABELS[source]
    if status == SourceStatus.DISABLED:
        return f"{label} source disabled in configuration"
    if status == SourceStatus.ERROR:
        return f"{label} collection failed this run"
    return None


def _bands_text(bands) -> str:
    return ", ".join(f"<= {row.threshold:g} -> {row.penalty:g}" for row in bands)


def _transit_metric(ctx: LineageContext) -> Tuple[LineageMetric, _Fallback]:
    config = ctx.config
    tfl = config.sources.tfl
    status = ctx.source_statuses[SOURCE_TFL]
    fallback_value = config.scoring.fallbacks.transit_penalty
    points = config.scoring.transit_severity_points

    reason = _source_fallback(status, SOURCE_TFL)
    if reason is None and not ctx.line_statuses:
        reason = "TfL returned no usable line statuses"
    fallback = _Fallback(reason is not None, reason)

    if fallback.used:
        calculation = [f"Fallback transit penalty {fallback_value:g} applied ({fallback.reason})"]
    else:
        calculation = [
            f"Mean of {len(ctx.line_statuses)} line severity points, rounded to 2 dp = {ctx.penalties.transit:g}",
        ]

    watch_rule = (
        f"Kept only watched lines: {', '.join(tfl.watch_lines)}"
        if tfl.watch_lines
        else "No watch list configured; kept every returned line"
    )
    metric = LineageMetric(
        label="Transit disruption",
        description="Average severity of the current status across watched lines",
        sources=[SOURCE_TFL] if status != SourceStatus.DISABLED else [],
        queries=[trace for trace in ctx.traces if is_status_trace(trace)],
        ingestion=[
            f"Requested line status for modes: {', '.join(tfl.modes)}",
            "Retried per mode when the combined request was rejected with a client error",
        ],
        transforms=[
            "Took the first status description reported for each line",
            (
                f"Mapped status to points: Good Service {points.good_service:g}, Minor Delays {points.minor_delays:g}, "
                f"Severe Delays {points.severe_delays:g}, Part Suspended {points.part_suspended:g}, "
                f"Suspended {points.suspended:g}, anything else {points.unknown:g}"
            ),
            watch_rule,
        ],
        calculation=calculation,
        config_references=[
            "sources.tfl.modes",
            "sources.tfl.watch_lines",
            "scoring.transit_severity_points",
            "scoring.fallbacks.transit_penalty",
            "scoring.weights.transit",
        ],
        outputs={
            "penalty": ctx.penalties.transit,
            "watchedLines": len(ctx.line_statuses),
            "disruptedLines": sum(1 for line in ctx.line_statuses if line.severity_points > 0),
        },
        fallback_used=fallback.used,
        fallback_reason=fallback.reason,
    )
    return metric, fallback


def _wait_metric(ctx: LineageContext) -> Tuple[LineageMetric, _Fallback]:
    config = ctx.config
    status = ctx.source_statuses[SOURCE_TFL]
    fallback_value = config.scoring.fallbacks.wait_penalty

    reason = _source_fallback(status, SOURCE_TFL)
    if reason is None and not ctx.stop_arrivals:
        reason = "No stop points produced arrival data"
    elif reason is None:
        empty = [stop.label for stop in ctx.stop_arrivals if stop.median_minutes is None]
        if empty:
            reason = f"No usable arrival predictions for: {', '.join(empty)}"
    fallback = _Fallback(reason is not None, reason)

    if status != SourceStatus.OK or not ctx.stop_arrivals:
        calculation = [f"Fallback wait penalty {fallback_value:g} applied ({reason})"]
    else:
        calculation = [
            f"{stop.label}: median {stop.median_minutes:g} min -> penalty {stop.penalty:g}"
            if stop.median_minutes is not None
            else f"{stop.label}: no predictions -> fallback {fallback_value:g}"
            for stop in ctx.stop_arrivals
        ]
        calculation.append(
            f"Mean of {len(ctx.stop_arrivals)} stop penalties, rounded to 2 dp = {ctx.penalties.wait:g}"
        )

    medians = [stop.median_minutes for stop in ctx.stop_arrivals if stop.median_minutes is not None]
    metric = LineageMetric(
        label="Waiting time",
        description="Typical wait for the next arrivals at the configured stop points",
        sources=[SOURCE_TFL] if status != SourceStatus.DISABLED else [],
        queries=[trace for trace in ctx.traces if is_arrivals_trace(trace)],
        ingestion=[
            f"Requested arrivals for {len(config.sources.tfl.stop_points)} stop points concurrently",
        ],
        transforms=[
            "Dropped predictions without a non-negative time to station",
            "Kept the three soonest arrivals and converted seconds to minutes (1 dp)",
            "Took the median of the kept arrivals per stop",
            f"Mapped median minutes through wait bands: {_bands_text(config.scoring.wait_penalty_bands)}",
        ],
        calculation=calculation,
        config_references=[
            "sources.tfl.stop_points",
            "scoring.wait_penalty_bands",
            "scoring.fallbacks.wait_penalty",
            "scoring.weights.wait",
        ],
        outputs={
            "penalty": ctx.penalties.wait,
            "stopsReporting": len(medians),
            "worstMedianMinutes": max(medians) if medians else None,
        },
        fallback_used=fallback.used,
        fallback_reason=fallback.reason,
    )
    return metric, fallback


def _weather_metric(ctx: LineageContext) -> Tuple[LineageMetric, _Fallback]:
    config = ctx.config
    weather_config = config.scoring.weather_penalty
    comfort = weather_config.temp_comfort
    status = ctx.source_statuses[SOURCE_OPEN_METEO]
    fallback_value = config.scoring.fallbacks.weather_penalty
    summary = ctx.weather

    reason = _source_fallback(status, SOURCE_OPEN_METEO)
    if reason is None:
        missing = [
            name
            for name, value in (
                ("rain probability", summary.max_rain_probability),
                ("temperature", summary.representative_temperature),
                ("wind speed", summary.max_wind_speed),
            )
            if value is None
        ]
        if missing:
            reason = f"No usable forecast values for: {', '.join(missing)}"
    fallback = _Fallback(reason is not None, reason)

    if status != SourceStatus.OK:
        calculation = [f"Fallback weather penalty {fallback_value:g} applied to the total ({reason})"]
    else:
        calculation = [
            f"Rain: max {summary.max_rain_probability:g}% -> {summary.rain_penalty:g}"
            if summary.max_rain_probability is not None
            else f"Rain: no data -> fallback {fallback_value:g}",
            f"Temperature: {summary.representative_temperature:g} C -> {summary.temp_penalty:g}"
            if summary.representative_temperature is not None
            else f"Temperature: no data -> fallback {fallback_value:g}",
            f"Wind: max {summary.max_wind_speed:g} km/h -> {summary.wind_penalty:g}"
            if summary.max_wind_speed is not None
            else f"Wind: no data -> fallback {fallback_value:g}",
            f"Total = rain + temperature + wind = {summary.total_penalty:g}",
        ]

    metric = LineageMetric(
        label="Weather comfort",
        description="Rain, temperature and wind over the next six hours",
        sources=[SOURCE_OPEN_METEO] if status != SourceStatus.DISABLED else [],
        queries=[trace for trace in ctx.traces if trace.source == SOURCE_OPEN_METEO],
        ingestion=[
            f"Requested {config.sources.open_meteo.forecast_hours}h hourly forecast "
            f"({', '.join(config.sources.open_meteo.hourly_variables)}) in {config.project.timezone}",
        ],
        transforms=[
            "Truncated every hourly array to the forecast horizon",
            "Dropped null and non-numeric entries per array",
            "Kept the first six hours of each array",
        ],
        calculation=[
            f"Rain bands on max probability: {_bands_text(weather_config.rain_bands)}",
            (
                f"Temperature on first hour: {comfort.ideal_min:g}-{comfort.ideal_max:g} C -> 0, "
                f"{comfort.shoulder_min:g}-{comfort.shoulder_max:g} C -> {comfort.shoulder_penalty:g}, "
                f"otherwise {comfort.extreme_penalty:g}"
            ),
            f"Wind bands on max speed: {_bands_text(weather_config.wind_bands)}",
        ] + calculation,
        config_references=[
            "location.lat",
            "location.lon",
            "sources.open_meteo.forecast_hours",
            "scoring.weather_penalty.rain_bands",
            "scoring.weather_penalty.temp_comfort",
            "scoring.weather_penalty.wind_bands",
            "scoring.fallbacks.weather_penalty",
            "scoring.weights.weather",
        ],
        outputs={
            "penalty": ctx.penalties.weather,
            "rainPenalty": summary.rain_penalty,
            "tempPenalty": summary.temp_penalty,
            "windPenalty": summary.wind_penalty,
            "maxRainProbability": summary.max_rain_probability,
            "representativeTemperature": summary.representative_temperature,
            "maxWindSpeed": summary.max_wind_speed,
        },
        fallback_used=fallback.used,
        fallback_reason=fallback.reason,
    )
    return metric, fallback


def _air_metric(ctx: LineageContext) -> Tuple[LineageMetric, _Fallback]:
    config = ctx.config
    status = ctx.source_statuses[SOURCE_ERG]
    fallback_value = config.scoring.fallbacks.air_penalty
    air = ctx.air

    reason = _source_fallback(status, SOURCE_ERG)
    if reason is None and air.max_index is None:
        reason = "No valid air quality index found in the monitoring group"
    fallback = _Fallback(reason is not None, reason)

    if fallback.used:
        calculation = [f"Fallback air penalty {fallback_value:g} applied ({reason})"]
    else:
        station = f" at {air.station_name}" if air.station_name else ""
        calculation = [f"Worst index {air.max_index}{station} -> band {air.band} -> penalty {air.penalty:g}"]

    bands = ", ".join(f"<= {row.threshold:g} {row.band} -> {row.penalty:g}" for row in config.scoring.air_penalty_bands)
    metric = LineageMetric(
        label="Air quality",
        description="Worst hourly air quality index across the monitoring group",
        sources=[SOURCE_ERG] if status != SourceStatus.DISABLED else [],
        queries=[trace for trace in ctx.traces if trace.source == SOURCE_ERG],
        ingestion=[f"Requested the hourly monitoring index for group '{config.sources.erg_air_quality.group_name}'"],
        transforms=[
            "Scanned every site and species for an index value between 1 and 10",
            "Kept the highest index with its site name",
        ],
        calculation=[f"Air bands: {bands}"] + calculation,
        config_references=[
            "sources.erg_air_quality.group_name",
            "scoring.air_penalty_bands",
            "scoring.fallbacks.air_penalty",
            "scoring.weights.air",
        ],
        outputs={
            "penalty": ctx.penalties.air,
            "maxIndex": air.max_index,
            "band": air.band,
            "stationName": air.station_name,
        },
        fallback_used=fallback.used,
        fallback_reason=fallback.reason,
    )
    return metric, fallback


def _score_metric(ctx: LineageContext, components: Dict[str, _Fallback]) -> LineageMetric:
    weights = ctx.config.scoring.weights
    penalties = ctx.penalties
    fell_back = [name for name, fallback in components.items() if fallback.used]

    return LineageMetric(
        label="Liveability score",
        description="100 minus the weighted sum of the four component penalties",
        sources=sorted({source for source, status in ctx.source_statuses.items() if status != SourceStatus.DISABLED}),
        queries=list(ctx.traces),
        ingestion=["Collected component penalties for transit, wait, weather and air"],
        transforms=["Rounded each component penalty to 2 dp"],
        calculation=[
            (
                f"Weighted total = {weights.transit:g} x {penalties.transit:g} + {weights.wait:g} x {penalties.wait:g} + "
                f"{weights.weather:g} x {penalties.weather:g} + {weights.air:g} x {penalties.air:g} = {ctx.weighted_total:g}"
            ),
            f"Score = clamp(100 - {ctx.weighted_total:g}, 0, 100) = {ctx.score:g}",
        ],
        config_references=["scoring.weights"],
        outputs={
            "score": ctx.score,
            "weightedTotal": ctx.weighted_total,
            "transit": penalties.transit,
            "wait": penalties.wait,
            "weather": penalties.weather,
            "air": penalties.air,
        },
        fallback_used=bool(fell_back),
        fallback_reason=f"Fallback penalties used for: {', '.join(fell_back)}" if fell_back else None,
    )


def build_lineage(ctx: LineageContext) -> LineagePayload:
    """Build the lineage record for the composite score and each component"""
    transit, transit_fallback = _transit_metric(ctx)
    wait, wait_fallback = _wait_metric(ctx)
    weather, weather_fallback = _weather_metric(ctx)
    air, air_fallback = _air_metric(ctx)

    components = {
        "transit": transit_fallback,
        "wait": wait_fallback,
        "weather": weather_fallback,
        "air": air_fallback,
    }
    score = _score_metric(ctx, components)

    used = [name for name, fallback in components.items() if fallback.used]
    if used:
        logger.info(f"Lineage records fallback penalties for: {', '.join(used)}")

    return LineagePayload(
        generated_at_utc=ctx.generated_at,
        metrics=LineageMetrics(score=score, transit=transit, wait=wait, weather=weather, air=air),
    )
