"""
Per-source normalizers

Turn raw upstream JSON (TfL line status and arrivals, Open-Meteo hourly
forecast, ERG monitoring index) into the canonical records defined in
schemas. Raw shapes are decoded at this boundary into permissive record
types whose missing or wrong-typed fields become None; nothing in here raises
on a malformed payload, it degrades to "no usable data" instead.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, Sequence, Tuple, TypeVar, Union

from liveability_config import LiveabilityConfig, StopPointSettings, TransitSeverityPoints
from schemas import AirQualitySummary, NormalizedLineStatus, NormalizedStopArrivals, WeatherSlice
from utils import coerce_number, find_band_row, lookup_band_penalty, median, round_to

logger = logging.getLogger(__name__)

MAX_ARRIVALS_PER_STOP = 3
AIR_QUALITY_INDEX_MIN = 1
AIR_QUALITY_INDEX_MAX = 10
AIR_QUALITY_INDEX_FIELDS = ("@AQI", "AQI", "AQIIndex", "AirQualityIndex", "@AirQualityIndex")
SITE_NAME_FIELDS = ("@SiteName", "SiteName")

# Lower-cased TfL status description -> TransitSeverityPoints attribute
TRANSIT_STATUS_VOCABULARY: Dict[str, str] = {
    "good service": "good_service",
    "minor delays": "minor_delays",
    "severe delays": "severe_delays",
    "part suspended": "part_suspended",
    "suspended": "suspended",
}

JsonValue = Union[None, bool, int, float, str, List["JsonValue"], Dict[str, "JsonValue"]]
C = TypeVar("C")


def _optional_text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, float):
        return str(value)
    return None


def _optional_list(value: Any) -> Optional[List[Any]]:
    return value if isinstance(value, list) else None


# ---------------------------------------------------------------------------
# Raw record types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TflLineRecord:
    """Decoded `/Line/Mode/{modes}/Status` item"""
    id: Optional[str] = None
    name: Optional[str] = None
    mode_name: Optional[str] = None
    status_description: Optional[str] = None

    @classmethod
    def decode(cls, item: Any) -> "TflLineRecord":
        if not isinstance(item, dict):
            return cls()
        statuses = _optional_list(item.get("lineStatuses")) or []
        first = statuses[0] if statuses and isinstance(statuses[0], dict) else {}
        return cls(
            id=_optional_text(item.get("id")),
            name=_optional_text(item.get("name")),
            mode_name=_optional_text(item.get("modeName")),
            status_description=_optional_text(first.get("statusSeverityDescription")),
        )


@dataclass(frozen=True)
class TflArrivalRecord:
    """Decoded `/StopPoint/{id}/Arrivals` prediction"""
    time_to_station: Optional[float] = None

    @classmethod
    def decode(cls, item: Any) -> "TflArrivalRecord":
        if not isinstance(item, dict):
            return cls()
        return cls(time_to_station=coerce_number(item.get("timeToStation")))


@dataclass(frozen=True)
class OpenMeteoHourlyRecord:
    """Decoded `hourly` block of an Open-Meteo forecast response"""
    time: Optional[List[Any]] = None
    temperature_2m: Optional[List[Any]] = None
    precipitation_probability: Optional[List[Any]] = None
    wind_speed_10m: Optional[List[Any]] = None

    @classmethod
    def decode(cls, raw: Any) -> "OpenMeteoHourlyRecord":
        hourly = raw.get("hourly") if isinstance(raw, dict) else None
        if not isinstance(hourly, dict):
            return cls()
        return cls(
            time=_optional_list(hourly.get("time")),
            temperature_2m=_optional_list(hourly.get("temperature_2m")),
            precipitation_probability=_optional_list(hourly.get("precipitation_probability")),
            wind_speed_10m=_optional_list(hourly.get("wind_speed_10m")),
        )


# ---------------------------------------------------------------------------
# Typed JSON visitor
# ---------------------------------------------------------------------------

class JsonVisitor(Generic[C]):
    """
    Exhaustive visitor over JsonValue.

    Walks an explicit stack in document order, so nesting depth is bounded
    by memory rather than the interpreter's recursion limit. Container hooks
    return the context their children are visited with; the defaults pass
    it through unchanged. Values outside the JSON model are treated as null.
    """

    def visit(self, node: JsonValue, context: C) -> None:
        stack: List[Tuple[JsonValue, C]] = [(node, context)]
        while stack:
            current, current_context = stack.pop()
            if current is None:
                self.visit_null(current_context)
            elif isinstance(current, bool):
                self.visit_bool(current, current_context)
            elif isinstance(current, (int, float)):
                self.visit_number(current, current_context)
            elif isinstance(current, str):
                self.visit_string(current, current_context)
            elif isinstance(current, list):
                child_context = self.visit_array(current, current_context)
                stack.extend((item, child_context) for item in reversed(current))
            elif isinstance(current, dict):
                child_context = self.visit_object(current, current_context)
                stack.extend((value, child_context) for value in reversed(list(current.values())))
            else:
                self.visit_null(current_context)

    def visit_null(self, context: C) -> None:
        pass

    def visit_bool(self, value: bool, context: C) -> None:
        pass

    def visit_number(self, value: Union[int, float], context: C) -> None:
        pass

    def visit_string(self, value: str, context: C) -> None:
        pass

    def visit_array(self, items: Sequence[JsonValue], context: C) -> C:
        return context

    def visit_object(self, members: Dict[str, JsonValue], context: C) -> C:
        return context


@dataclass
class AirQualityIndexScanner(JsonVisitor[Optional[str]]):
    """Collects every valid 1..10 index together with its nearest enclosing site name"""
    found: List[Tuple[int, Optional[str]]] = field(default_factory=list)

    @staticmethod
    def _as_index(value: JsonValue) -> Optional[int]:
        number = coerce_number(value)
        if number is None or not number.is_integer():
            return None
        index = int(number)
        if AIR_QUALITY_INDEX_MIN <= index <= AIR_QUALITY_INDEX_MAX:
            return index
        return None

    def visit_object(self, members: Dict[str, JsonValue], context: Optional[str]) -> Optional[str]:
        station = context
        for key in SITE_NAME_FIELDS:
            if isinstance(members.get(key), str):
                station = members[key]
                break

        for key in AIR_QUALITY_INDEX_FIELDS:
            if key in members:
                index = self._as_index(members[key])
                if index is not None:
                    self.found.append((index, station))

        return station

    def worst(self) -> Optional[Tuple[int, Optional[str]]]:
        """Maximum index; the first station seen wins a tie"""
        best: Optional[Tuple[int, Optional[str]]] = None
        for index, station in self.found:
            if best is None or index > best[0]:
                best = (index, station)
        return best


# ---------------------------------------------------------------------------
# Normalizers
# ---------------------------------------------------------------------------

def map_transit_status_to_severity(status: str, points: TransitSeverityPoints) -> float:
    attribute = TRANSIT_STATUS_VOCABULARY.get(status.strip().lower())
    if attribute is None:
        return float(points.unknown)
    return float(getattr(points, attribute))


def normalize_line_statuses(raw: Any, config: LiveabilityConfig) -> List[NormalizedLineStatus]:
    """
    Normalize a TfL line status response.

    Lines outside a non-empty watch list are dropped (case-insensitive name
    match); an empty watch list keeps every returned line.
    """
    items = raw if isinstance(raw, list) else []
    watch = {name.lower() for name in config.sources.tfl.watch_lines}
    points = config.scoring.transit_severity_points

    lines: List[NormalizedLineStatus] = []
    for item in items:
        record = TflLineRecord.decode(item)
        status = record.status_description or "Unknown"
        name = record.name or record.id or "Unknown line"
        line = NormalizedLineStatus(
            id=record.id or name,
            name=name,
            mode=record.mode_name or "unknown",
            status_text=status,
            severity_points=map_transit_status_to_severity(status, points),
        )
        if watch and line.name.lower() not in watch:
            continue
        lines.append(line)

    if not isinstance(raw, list):
        logger.warning(f"TfL line status payload is not a list ({type(raw).__name__}); no lines normalized")
    return lines


def normalize_stop_arrivals(raw: Any, stop: StopPointSettings, config: LiveabilityConfig) -> NormalizedStopArrivals:
    items = raw if isinstance(raw, list) else []
    seconds = sorted(
        record.time_to_station
        for record in (TflArrivalRecord.decode(item) for item in items)
        if record.time_to_station is not None and record.time_to_station >= 0
    )
    minutes = [round_to(value / 60, 1) for value in seconds[:MAX_ARRIVALS_PER_STOP]]
    median_minutes = median(minutes)

    if median_minutes is None:
        penalty = config.scoring.fallbacks.wait_penalty
    else:
        penalty = lookup_band_penalty(median_minutes, config.scoring.wait_penalty_bands)

    return NormalizedStopArrivals(
        stop_id=stop.id,
        label=stop.label,
        next_arrival_minutes=minutes,
        median_minutes=median_minutes,
        penalty=penalty,
    )


def _finite_numbers(values: Optional[List[Any]], limit: int) -> List[float]:
    if not values:
        return []
    return [number for number in (coerce_number(value) for value in values[:limit]) if number is not None]


def normalize_hourly_forecast(raw: Any, forecast_hours: int) -> WeatherSlice:
    """Truncate every hourly array to the horizon and drop non-finite entries per array"""
    record = OpenMeteoHourlyRecord.decode(raw)
    time = [value for value in (record.time or [])[:forecast_hours] if isinstance(value, str)]
    return WeatherSlice(
        time=time,
        temperature=_finite_numbers(record.temperature_2m, forecast_hours),
        rain_probability=_finite_numbers(record.precipitation_probability, forecast_hours),
        wind_speed=_finite_numbers(record.wind_speed_10m, forecast_hours),
    )


def summarize_air_quality(raw: Any, config: LiveabilityConfig) -> AirQualitySummary:
    """
    Worst-case air quality across the whole monitoring group.

    Scans the payload for any index field, keeps the maximum and maps it
    through the configured air bands. No valid index yields the air fallback.
    """
    scanner = AirQualityIndexScanner()
    scanner.visit(raw, None)
    worst = scanner.worst()
    fallback = config.scoring.fallbacks.air_penalty

    if worst is None:
        return AirQualitySummary(max_index=None, band=None, penalty=fallback, station_name=None)

    index, station = worst
    row = find_band_row(index, config.scoring.air_penalty_bands)
    return AirQualitySummary(
        max_index=index,
        band=row.band if row is not None else None,
        penalty=float(row.penalty) if row is not None else fallback,
        station_name=station,
    )
