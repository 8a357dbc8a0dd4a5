"""
Liveability configuration models and loader

Pydantic models for the YAML configuration that drives a collection run:
enabled sources, scoring weights, fallback penalties and every penalty band
table. Models are frozen; a validated LiveabilityConfig is immutable for the
duration of a run. Any structural or semantic problem raises
ConfigValidationError before a single upstream request is made.
"""

import logging
import math
from pathlib import Path
from typing import Any, Dict, List, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

MIN_COLLECTION_INTERVAL_MINUTES = 5
MAX_HISTORY_RETENTION_DAYS = 30
MINUTES_PER_DAY = 24 * 60


class ConfigValidationError(Exception):
    """Raised when the liveability configuration is missing, malformed or out of range"""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Config validation failed: " + "; ".join(self.errors))


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", allow_inf_nan=False)


class PenaltyBand(FrozenModel):
    """One `{threshold, penalty}` row: applies to values <= threshold"""
    threshold: float
    penalty: float = Field(..., ge=0)


class AirQualityBand(PenaltyBand):
    """Index ceiling row carrying the public band label (Low, Moderate, ...)"""
    band: str = Field(..., min_length=1)


class ProjectSettings(FrozenModel):
    name: str = Field(..., min_length=1)
    timezone: str = "Europe/London"
    history_retention_days: int
    collection_interval_minutes: int

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone {value!r}") from exc
        return value

    @property
    def points_per_day(self) -> int:
        """Expected history points per day at the configured cadence"""
        return max(1, math.ceil(MINUTES_PER_DAY / self.collection_interval_minutes))


class LocationSettings(FrozenModel):
    name: str
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


class StopPointSettings(FrozenModel):
    id: str = Field(..., min_length=1)
    label: str = Field(..., min_length=1)


class TflSourceConfig(FrozenModel):
    enabled: bool = True
    base_url: str = "https://api.tfl.gov.uk"
    app_id_env: str = "TFL_APP_ID"
    app_key_env: str = "TFL_APP_KEY"
    modes: Tuple[str, ...] = Field(..., min_length=1)
    watch_lines: Tuple[str, ...] = ()
    stop_points: Tuple[StopPointSettings, ...] = ()


class OpenMeteoSourceConfig(FrozenModel):
    enabled: bool = True
    base_url: str = "https://api.open-meteo.com"
    forecast_hours: int = Field(48, ge=1, le=384)
    hourly_variables: Tuple[str, ...] = ("temperature_2m", "precipitation_probability", "wind_speed_10m")


class ErgAirQualitySourceConfig(FrozenModel):
    enabled: bool = True
    base_url: str = "https://api.erg.ic.ac.uk"
    group_name: str = Field("London", min_length=1)


class SourcesConfig(FrozenModel):
    tfl: TflSourceConfig
    open_meteo: OpenMeteoSourceConfig
    erg_air_quality: ErgAirQualitySourceConfig

    def enabled_map(self) -> Dict[str, bool]:
        return {
            "tfl": self.tfl.enabled,
            "openMeteo": self.open_meteo.enabled,
            "ergAirQuality": self.erg_air_quality.enabled,
        }


class ScoringWeights(FrozenModel):
    transit: float
    wait: float
    weather: float
    air: float


class FallbackPenalties(FrozenModel):
    transit_penalty: float = Field(..., ge=0)
    wait_penalty: float = Field(..., ge=0)
    weather_penalty: float = Field(..., ge=0)
    air_penalty: float = Field(..., ge=0)


class TransitSeverityPoints(FrozenModel):
    good_service: float = Field(0, ge=0)
    minor_delays: float = Field(..., ge=0)
    severe_delays: float = Field(..., ge=0)
    part_suspended: float = Field(..., ge=0)
    suspended: float = Field(..., ge=0)
    unknown: float = Field(..., ge=0)


class TemperatureComfort(FrozenModel):
    ideal_min: float
    ideal_max: float
    shoulder_min: float
    shoulder_max: float
    shoulder_penalty: float = Field(..., ge=0)
    extreme_penalty: float = Field(..., ge=0)


class WeatherPenaltyConfig(FrozenModel):
    rain_bands: Tuple[PenaltyBand, ...]
    wind_bands: Tuple[PenaltyBand, ...]
    temp_comfort: TemperatureComfort


class ScoringConfig(FrozenModel):
    weights: ScoringWeights
    fallbacks: FallbackPenalties
    transit_severity_points: TransitSeverityPoints
    wait_penalty_bands: Tuple[PenaltyBand, ...]
    weather_penalty: WeatherPenaltyConfig
    air_penalty_bands: Tuple[AirQualityBand, ...]


def _band_errors(path: str, bands: Tuple[PenaltyBand, ...]) -> List[str]:
    errors: List[str] = []
    if not bands:
        errors.append(f"{path} must contain at least one row")
        return errors
    thresholds = [row.threshold for row in bands]
    if thresholds != sorted(thresholds):
        errors.append(f"{path} thresholds must be ascending")
    return errors


class LiveabilityConfig(FrozenModel):
    """Validated, immutable configuration for one collection run"""
    project: ProjectSettings
    location: LocationSettings
    sources: SourcesConfig
    scoring: ScoringConfig

    @model_validator(mode="after")
    def _semantic_checks(self) -> "LiveabilityConfig":
        errors: List[str] = []

        if not any(self.sources.enabled_map().values()):
            errors.append("at least 1 source must be enabled")

        weights = self.scoring.weights.model_dump().values()
        if any(value < 0 for value in weights):
            errors.append("weights must be non-negative")
        elif not any(value > 0 for value in weights):
            errors.append("at least one weight must be > 0")

        retention = self.project.history_retention_days
        if retention < 1 or retention > MAX_HISTORY_RETENTION_DAYS:
            errors.append(f"history_retention_days must be between 1 and {MAX_HISTORY_RETENTION_DAYS}")

        if self.project.collection_interval_minutes < MIN_COLLECTION_INTERVAL_MINUTES:
            errors.append(f"collection_interval_minutes must be >= {MIN_COLLECTION_INTERVAL_MINUTES} minutes")

        errors.extend(_band_errors("scoring.wait_penalty_bands", self.scoring.wait_penalty_bands))
        errors.extend(_band_errors("scoring.weather_penalty.rain_bands", self.scoring.weather_penalty.rain_bands))
        errors.extend(_band_errors("scoring.weather_penalty.wind_bands", self.scoring.weather_penalty.wind_bands))
        errors.extend(_band_errors("scoring.air_penalty_bands", self.scoring.air_penalty_bands))

        comfort = self.scoring.weather_penalty.temp_comfort
        if not (comfort.shoulder_min <= comfort.ideal_min <= comfort.ideal_max <= comfort.shoulder_max):
            errors.append("temp_comfort requires shoulder_min <= ideal_min <= ideal_max <= shoulder_max")

        if errors:
            raise ValueError("; ".join(errors))
        return self


def _format_pydantic_errors(exc: ValidationError) -> List[str]:
    messages: List[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "/"
        message = error.get("msg", "invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        messages.append(f"{location} {message}".strip() if location != "/" else message)
    return messages


def validate_config_object(raw: Any) -> LiveabilityConfig:
    """
    Validate a parsed configuration mapping.

    Raises:
        ConfigValidationError: with every structural and semantic problem found
    """
    if not isinstance(raw, dict):
        raise ConfigValidationError(["configuration root must be a mapping"])
    try:
        return LiveabilityConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigValidationError(_format_pydantic_errors(exc)) from exc


def parse_config_yaml(path: Path) -> Any:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigValidationError([f"cannot read config file {path}: {exc.strerror or exc}"]) from exc
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigValidationError([f"invalid YAML in {path}: {exc}"]) from exc


def load_validated_config(path: Path) -> LiveabilityConfig:
    """Read, parse and validate the YAML configuration at `path`"""
    liveability_config = validate_config_object(parse_config_yaml(path))
    logger.info(
        f"Loaded configuration '{liveability_config.project.name}' from {path} "
        f"(sources enabled: {liveability_config.sources.enabled_map()})"
    )
    return liveability_config
