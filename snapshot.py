"""
Snapshot assembler

Builds the three documents published per run: `latest.json` (the full
scored snapshot), `history.json` (the retained series) and `meta.json` (run
identity only, for cheap polling).
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Sequence
from zoneinfo import ZoneInfo

from history_retention import write_json
from liveability_config import LiveabilityConfig
from schemas import (
    AirKpi,
    AirQualityHeadline,
    AirQualitySummary,
    DataFiles,
    HistoryPayload,
    HistoryPoint,
    Kpis,
    LatestPayload,
    LineagePayload,
    Location,
    MetaPayload,
    MetricPenalties,
    NormalizedLineStatus,
    NormalizedStopArrivals,
    PenaltyBreakdown,
    Provenance,
    SnapshotDetails,
    SourceStatus,
    TransitDetails,
    TransitKpi,
    WaitKpi,
    WeatherKpi,
    WeatherSummary,
    WhatChanged,
    get_utc_now,
)
from scoring import ScoreResult, find_worst_stop, rank_disruptions

logger = logging.getLogger(__name__)

LOCAL_TIME_FORMAT = "%d %b %Y, %H:%M:%S"


@dataclass(frozen=True)
class RunResults:
    """Normalized and scored outputs of one collection run"""
    line_statuses: Sequence[NormalizedLineStatus]
    stop_arrivals: Sequence[NormalizedStopArrivals]
    weather: WeatherSummary
    air: AirQualitySummary
    penalties: MetricPenalties
    score: ScoreResult


def format_local_time(moment: datetime, tz_name: str) -> str:
    return moment.astimezone(ZoneInfo(tz_name)).strftime(LOCAL_TIME_FORMAT)


def build_latest_payload(
    config: LiveabilityConfig,
    collected_at: datetime,
    results: RunResults,
    source_statuses: Dict[str, SourceStatus],
    provenance: Provenance,
    lineage: LineagePayload,
    warnings: List[str],
) -> LatestPayload:
    penalties = results.penalties
    worst_stop = find_worst_stop(results.stop_arrivals)
    weather = results.weather
    air = results.air

    return LatestPayload(
        project=config.project.name,
        collected_at_utc=collected_at,
        collected_at_local=format_local_time(collected_at, config.project.timezone),
        timezone=config.project.timezone,
        location=Location(name=config.location.name, lat=config.location.lat, lon=config.location.lon),
        liveability_score=results.score.score,
        penalties=PenaltyBreakdown(**penalties.model_dump(), weighted_total=results.score.weighted_total),
        kpis=Kpis(
            transit=TransitKpi(
                penalty=penalties.transit,
                disrupted_lines=sum(1 for line in results.line_statuses if line.severity_points > 0),
                watched_lines=len(results.line_statuses),
            ),
            wait=WaitKpi(
                penalty=penalties.wait,
                worst_stop_point=worst_stop.label if worst_stop else None,
                median_minutes=worst_stop.median_minutes if worst_stop else None,
            ),
            weather=WeatherKpi(
                penalty=penalties.weather,
                max_rain_probability_next_6h=weather.max_rain_probability,
                max_wind_speed_next_6h=weather.max_wind_speed,
                representative_temp_next_6h=weather.representative_temperature,
            ),
            air=AirKpi(penalty=penalties.air, max_index=air.max_index, band=air.band),
        ),
        what_changed=WhatChanged(
            top_disrupted_lines=rank_disruptions(results.line_statuses),
            worst_stop_point=worst_stop,
            max_rain_probability_next_6h=weather.max_rain_probability,
            air_quality=AirQualityHeadline(max_index=air.max_index, band=air.band, station_name=air.station_name),
        ),
        details=SnapshotDetails(
            tfl=TransitDetails(line_statuses=list(results.line_statuses), arrivals=list(results.stop_arrivals)),
            weather=weather,
            air_quality=air,
        ),
        source_statuses=dict(source_statuses),
        provenance=provenance,
        lineage=lineage,
        warnings=list(warnings),
    )


def build_history_point(latest: LatestPayload) -> HistoryPoint:
    penalties = latest.penalties
    return HistoryPoint(
        timestamp_utc=latest.collected_at_utc,
        score=latest.liveability_score,
        penalties=MetricPenalties(
            transit=penalties.transit,
            wait=penalties.wait,
            weather=penalties.weather,
            air=penalties.air,
        ),
    )


def build_history_payload(config: LiveabilityConfig, generated_at: datetime, points: List[HistoryPoint]) -> HistoryPayload:
    return HistoryPayload(
        generated_at_utc=generated_at,
        retention_days=config.project.history_retention_days,
        points=points,
    )


def build_meta_payload(latest: LatestPayload, public_prefix: str, latest_filename: str, history_filename: str) -> MetaPayload:
    prefix = public_prefix.strip("/")
    return MetaPayload(
        project=latest.project,
        build_time_utc=get_utc_now(),
        latest_collected_at_utc=latest.collected_at_utc,
        timezone=latest.timezone,
        source_statuses=latest.source_statuses,
        provenance=latest.provenance,
        data_files=DataFiles(
            latest=f"{prefix}/{latest_filename}" if prefix else latest_filename,
            history=f"{prefix}/{history_filename}" if prefix else history_filename,
        ),
    )


def write_snapshot(path: Path, payload) -> None:
    write_json(path, payload.model_dump(mode="json", by_alias=True))
    logger.debug(f"Wrote {path}")
