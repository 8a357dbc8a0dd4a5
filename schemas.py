"""
Pydantic models for normalized records and emitted artifacts

Defines the canonical typed records produced by the normalizers, the request
traces and lineage records, the persisted history series, and the three JSON
documents written per run (latest, history, meta). Emitted JSON uses
camelCase keys; Python code uses the snake_case field names.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from redaction import sanitize_url_for_lineage

SCHEMA_VERSION = 1

OutputValue = Union[float, int, str, None]


def to_iso_utc(dt: datetime) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def get_utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SourceStatus(str, Enum):
    """Per-run state of one upstream source"""
    OK = "ok"
    DISABLED = "disabled"
    ERROR = "error"


class NormalizedLineStatus(CamelModel):
    """One watched transit line for the current run"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    mode: str
    status_text: str = Field(..., description="First status description reported for the line")
    severity_points: float = Field(..., ge=0)


class NormalizedStopArrivals(CamelModel):
    """Reduced arrival countdowns for one stop point"""
    model_config = ConfigDict(frozen=True)

    stop_id: str
    label: str
    next_arrival_minutes: List[float] = Field(default_factory=list, max_length=3)
    median_minutes: Optional[float] = Field(None, description="Absent when no usable predictions were returned")
    penalty: float = Field(..., ge=0)


class WeatherSlice(CamelModel):
    """Canonical hourly arrays; lengths may differ after dropping non-finite entries"""
    time: List[str] = Field(default_factory=list)
    temperature: List[float] = Field(default_factory=list)
    rain_probability: List[float] = Field(default_factory=list)
    wind_speed: List[float] = Field(default_factory=list)


class WeatherSummary(CamelModel):
    next_6h: WeatherSlice = Field(default_factory=WeatherSlice, alias="next6h")
    max_rain_probability: Optional[float] = None
    representative_temperature: Optional[float] = None
    max_wind_speed: Optional[float] = None
    rain_penalty: float
    temp_penalty: float
    wind_penalty: float
    total_penalty: float


class AirQualitySummary(CamelModel):
    """Worst-case index across every station in the monitoring group"""
    max_index: Optional[int] = Field(None, ge=1, le=10)
    band: Optional[str] = None
    penalty: float = Field(..., ge=0)
    station_name: Optional[str] = None


class RequestTrace(CamelModel):
    """One outbound call, recorded with credentials already redacted"""
    model_config = ConfigDict(frozen=True)

    source: str
    method: str = "GET"
    url: str
    note: Optional[str] = None

    @field_validator("url")
    @classmethod
    def _redact_credentials(cls, value: str) -> str:
        return sanitize_url_for_lineage(value)


class LineageMetric(CamelModel):
    label: str
    description: str
    sources: List[str] = Field(default_factory=list)
    queries: List[RequestTrace] = Field(default_factory=list)
    ingestion: List[str] = Field(default_factory=list)
    transforms: List[str] = Field(default_factory=list)
    calculation: List[str] = Field(default_factory=list)
    config_references: List[str] = Field(default_factory=list)
    outputs: Dict[str, OutputValue] = Field(default_factory=dict)
    fallback_used: bool = False
    fallback_reason: Optional[str] = None


class LineageMetrics(CamelModel):
    score: LineageMetric
    transit: LineageMetric
    wait: LineageMetric
    weather: LineageMetric
    air: LineageMetric


class LineagePayload(CamelModel):
    generated_at_utc: datetime
    metrics: LineageMetrics

    @field_serializer("generated_at_utc")
    def serialize_generated_at(self, dt: datetime) -> str:
        return to_iso_utc(dt)


class MetricPenalties(CamelModel):
    model_config = ConfigDict(allow_inf_nan=False)

    transit: float
    wait: float
    weather: float
    air: float


class HistoryPoint(CamelModel):
    model_config = ConfigDict(allow_inf_nan=False)

    timestamp_utc: datetime
    score: float
    penalties: MetricPenalties

    @field_validator("timestamp_utc")
    @classmethod
    def _force_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @field_serializer("timestamp_utc")
    def serialize_timestamp(self, dt: datetime) -> str:
        return to_iso_utc(dt)


class HistoryPayload(CamelModel):
    schema_version: int = SCHEMA_VERSION
    generated_at_utc: datetime
    retention_days: int
    points: List[HistoryPoint] = Field(default_factory=list)

    @field_serializer("generated_at_utc")
    def serialize_generated_at(self, dt: datetime) -> str:
        return to_iso_utc(dt)


class Provenance(CamelModel):
    """Run identity metadata; passed through to the dashboard untouched"""
    generated_by: str
    git_commit_sha: Optional[str] = None
    git_ref: Optional[str] = None
    github_run_id: Optional[str] = None
    github_run_attempt: Optional[str] = None
    github_repository: Optional[str] = None
    github_actor: Optional[str] = None
    workflow_name: Optional[str] = None
    run_url: Optional[str] = None
    collector_version: str
    sources_requested: Dict[str, bool] = Field(default_factory=dict)


class Location(CamelModel):
    name: str
    lat: float
    lon: float


class PenaltyBreakdown(MetricPenalties):
    weighted_total: float


class TransitKpi(CamelModel):
    penalty: float
    disrupted_lines: int
    watched_lines: int


class WaitKpi(CamelModel):
    penalty: float
    worst_stop_point: Optional[str] = None
    median_minutes: Optional[float] = None


class WeatherKpi(CamelModel):
    penalty: float
    max_rain_probability_next_6h: Optional[float] = Field(None, alias="maxRainProbabilityNext6h")
    max_wind_speed_next_6h: Optional[float] = Field(None, alias="maxWindSpeedNext6h")
    representative_temp_next_6h: Optional[float] = Field(None, alias="representativeTempNext6h")


class AirKpi(CamelModel):
    penalty: float
    max_index: Optional[int] = None
    band: Optional[str] = None


class Kpis(CamelModel):
    transit: TransitKpi
    wait: WaitKpi
    weather: WeatherKpi
    air: AirKpi


class DisruptedLine(CamelModel):
    line: str
    status: str
    severity_points: float


class WorstStopPoint(CamelModel):
    label: str
    median_minutes: float


class AirQualityHeadline(CamelModel):
    max_index: Optional[int] = None
    band: Optional[str] = None
    station_name: Optional[str] = None


class WhatChanged(CamelModel):
    top_disrupted_lines: List[DisruptedLine] = Field(default_factory=list)
    worst_stop_point: Optional[WorstStopPoint] = None
    max_rain_probability_next_6h: Optional[float] = Field(None, alias="maxRainProbabilityNext6h")
    air_quality: AirQualityHeadline = Field(default_factory=AirQualityHeadline)


class TransitDetails(CamelModel):
    line_statuses: List[NormalizedLineStatus] = Field(default_factory=list)
    arrivals: List[NormalizedStopArrivals] = Field(default_factory=list)


class SnapshotDetails(CamelModel):
    tfl: TransitDetails
    weather: WeatherSummary
    air_quality: AirQualitySummary


class LatestPayload(CamelModel):
    schema_version: int = SCHEMA_VERSION
    project: str
    collected_at_utc: datetime
    collected_at_local: str
    timezone: str
    location: Location
    liveability_score: float = Field(..., ge=0, le=100)
    penalties: PenaltyBreakdown
    kpis: Kpis
    what_changed: WhatChanged
    details: SnapshotDetails
    source_statuses: Dict[str, SourceStatus]
    provenance: Provenance
    lineage: LineagePayload
    warnings: List[str] = Field(default_factory=list)

    @field_serializer("collected_at_utc")
    def serialize_collected_at(self, dt: datetime) -> str:
        return to_iso_utc(dt)


class DataFiles(CamelModel):
    latest: str
    history: str


class MetaPayload(CamelModel):
    """Lightweight polling document: run identity only, no scored content"""
    schema_version: int = SCHEMA_VERSION
    project: str
    build_time_utc: datetime
    latest_collected_at_utc: datetime
    timezone: str
    source_statuses: Dict[str, SourceStatus]
    provenance: Provenance
    data_files: DataFiles

    @field_serializer("build_time_utc", "latest_collected_at_utc")
    def serialize_timestamps(self, dt: datetime) -> str:
        return to_iso_utc(dt)
