"""
Penalty aggregation and composite score

Turns normalized records into one penalty per metric (transit, wait,
weather, air) and composes the weighted 0..100 liveability score.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from liveability_config import LiveabilityConfig, ScoringWeights, TemperatureComfort
from schemas import (
    AirQualitySummary,
    DisruptedLine,
    MetricPenalties,
    NormalizedLineStatus,
    NormalizedStopArrivals,
    WeatherSlice,
    WeatherSummary,
    WorstStopPoint,
)
from utils import average_penalty, clamp, lookup_band_penalty, round_to

logger = logging.getLogger(__name__)

WEATHER_WINDOW_HOURS = 6
TOP_DISRUPTIONS = 3


@dataclass(frozen=True)
class ScoreResult:
    score: float
    weighted_total: float


def compute_transit_penalty(lines: Sequence[NormalizedLineStatus], config: LiveabilityConfig) -> float:
    return average_penalty([line.severity_points for line in lines], config.scoring.fallbacks.transit_penalty)


def compute_wait_penalty(stops: Sequence[NormalizedStopArrivals], config: LiveabilityConfig) -> float:
    return average_penalty([stop.penalty for stop in stops], config.scoring.fallbacks.wait_penalty)


def temperature_penalty(temperature: float, comfort: TemperatureComfort) -> float:
    if comfort.ideal_min <= temperature <= comfort.ideal_max:
        return 0.0
    if comfort.shoulder_min <= temperature <= comfort.shoulder_max:
        return float(comfort.shoulder_penalty)
    return float(comfort.extreme_penalty)


def compute_weather_summary(weather: WeatherSlice, config: LiveabilityConfig) -> WeatherSummary:
    """
    Score the next six hours of forecast.

    Rain and wind use the maximum in the window, temperature uses the first
    entry. An empty window array puts that component on the weather fallback.
    """
    fallback = config.scoring.fallbacks.weather_penalty
    bands = config.scoring.weather_penalty

    window = WeatherSlice(
        time=weather.time[:WEATHER_WINDOW_HOURS],
        temperature=weather.temperature[:WEATHER_WINDOW_HOURS],
        rain_probability=weather.rain_probability[:WEATHER_WINDOW_HOURS],
        wind_speed=weather.wind_speed[:WEATHER_WINDOW_HOURS],
    )

    max_rain = max(window.rain_probability) if window.rain_probability else None
    representative_temp = window.temperature[0] if window.temperature else None
    max_wind = max(window.wind_speed) if window.wind_speed else None

    rain_penalty = fallback if max_rain is None else lookup_band_penalty(max_rain, bands.rain_bands)
    temp_penalty = fallback if representative_temp is None else temperature_penalty(representative_temp, bands.temp_comfort)
    wind_penalty = fallback if max_wind is None else lookup_band_penalty(max_wind, bands.wind_bands)

    return WeatherSummary(
        next_6h=window,
        max_rain_probability=max_rain,
        representative_temperature=representative_temp,
        max_wind_speed=max_wind,
        rain_penalty=rain_penalty,
        temp_penalty=temp_penalty,
        wind_penalty=wind_penalty,
        total_penalty=round_to(rain_penalty + temp_penalty + wind_penalty, 2),
    )


def fallback_weather_summary(config: LiveabilityConfig) -> WeatherSummary:
    """Summary used when Open-Meteo is disabled or failed: the single fallback everywhere"""
    fallback = config.scoring.fallbacks.weather_penalty
    return WeatherSummary(
        rain_penalty=fallback,
        temp_penalty=fallback,
        wind_penalty=fallback,
        total_penalty=fallback,
    )


def compute_air_penalty(summary: AirQualitySummary, config: LiveabilityConfig) -> AirQualitySummary:
    if summary.max_index is None:
        return summary.model_copy(update={"penalty": config.scoring.fallbacks.air_penalty})
    return summary


def fallback_air_summary(config: LiveabilityConfig) -> AirQualitySummary:
    return AirQualitySummary(penalty=config.scoring.fallbacks.air_penalty)


def compose_score(penalties: MetricPenalties, weights: ScoringWeights) -> ScoreResult:
    """
    Weighted sum of the four penalties subtracted from 100.

    Both figures are rounded to 2 dp; the score is clamped to [0, 100].
    """
    weighted_total = (
        weights.transit * penalties.transit
        + weights.wait * penalties.wait
        + weights.weather * penalties.weather
        + weights.air * penalties.air
    )
    score = clamp(round_to(100 - weighted_total, 2), 0.0, 100.0)
    return ScoreResult(score=score, weighted_total=round_to(weighted_total, 2))


def rank_disruptions(lines: Sequence[NormalizedLineStatus], limit: int = TOP_DISRUPTIONS) -> List[DisruptedLine]:
    disrupted = [line for line in lines if line.severity_points > 0]
    disrupted.sort(key=lambda line: (-line.severity_points, line.name))
    return [
        DisruptedLine(line=line.name, status=line.status_text, severity_points=line.severity_points)
        for line in disrupted[:limit]
    ]


def find_worst_stop(stops: Sequence[NormalizedStopArrivals]) -> Optional[WorstStopPoint]:
    """Stop with the highest median wait; the first one listed wins a tie"""
    worst: Optional[NormalizedStopArrivals] = None
    for stop in stops:
        if stop.median_minutes is None:
            continue
        if worst is None or stop.median_minutes > worst.median_minutes:
            worst = stop
    if worst is None:
        return None
    return WorstStopPoint(label=worst.label, median_minutes=worst.median_minutes)
