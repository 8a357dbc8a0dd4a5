"""
Unit tests for the per-source normalizers and penalty aggregation.
"""

import math

from liveability_config import StopPointSettings
from normalizers import (
    normalize_hourly_forecast,
    normalize_line_statuses,
    normalize_stop_arrivals,
    summarize_air_quality,
)
from schemas import MetricPenalties, NormalizedLineStatus, NormalizedStopArrivals, WeatherSlice
from scoring import (
    compose_score,
    compute_air_penalty,
    compute_transit_penalty,
    compute_wait_penalty,
    compute_weather_summary,
    fallback_weather_summary,
    find_worst_stop,
    rank_disruptions,
)
from helpers import make_valid_config

STOP_ONE = StopPointSettings(id="STOP1", label="Stop One")


def _line(name: str, status: str) -> dict:
    return {"id": name.lower(), "name": name, "modeName": "tube", "lineStatuses": [{"statusSeverityDescription": status}]}


class TestTransit:
    def test_line_statuses_and_average_penalty(self, liveability_config):
        lines = normalize_line_statuses([_line("Victoria", "Good Service"), _line("Circle", "Severe Delays")], liveability_config)

        assert len(lines) == 2
        assert lines[1].severity_points == 25
        assert compute_transit_penalty(lines, liveability_config) == 12.5

    def test_status_match_is_case_insensitive_and_unknown_gets_unknown_points(self, liveability_config):
        lines = normalize_line_statuses(
            [_line("Central", "  minor DELAYS "), _line("Jubilee", "Planned Closure")], liveability_config
        )
        assert [line.severity_points for line in lines] == [10, 15]

    def test_missing_fields_fall_back(self, liveability_config):
        lines = normalize_line_statuses([{"id": "dlr"}, {}, "not-a-line"], liveability_config)

        assert lines[0].name == "dlr"
        assert lines[0].status_text == "Unknown"
        assert lines[0].mode == "unknown"
        assert lines[1].name == "Unknown line"
        assert lines[1].id == "Unknown line"
        assert all(line.severity_points == 15 for line in lines)

    def test_watch_list_filters_by_name(self, raw_config):
        raw_config["sources"]["tfl"]["watch_lines"] = ["victoria"]
        config = make_valid_config(raw_config)
        lines = normalize_line_statuses([_line("Victoria", "Good Service"), _line("Circle", "Severe Delays")], config)
        assert [line.name for line in lines] == ["Victoria"]

    def test_non_list_payload_yields_fallback(self, liveability_config):
        lines = normalize_line_statuses({"message": "rate limited"}, liveability_config)
        assert lines == []
        assert compute_transit_penalty(lines, liveability_config) == 15


class TestWait:
    def test_three_soonest_arrivals_and_median(self, liveability_config):
        stop = normalize_stop_arrivals(
            [{"timeToStation": 600}, {"timeToStation": 120}, {"timeToStation": 1800}, {"timeToStation": 360}],
            STOP_ONE,
            liveability_config,
        )

        assert stop.next_arrival_minutes == [2, 6, 10]
        assert stop.median_minutes == 6
        assert stop.penalty == 10
        assert compute_wait_penalty([stop], liveability_config) == 10

    def test_invalid_predictions_are_dropped(self, liveability_config):
        stop = normalize_stop_arrivals(
            [{"timeToStation": -5}, {"timeToStation": None}, {"timeToStation": "90"}, {"timeToStation": True}, {}],
            STOP_ONE,
            liveability_config,
        )
        assert stop.next_arrival_minutes == [1.5]
        assert stop.median_minutes == 1.5
        assert stop.penalty == 0

    def test_no_predictions_uses_fallback(self, liveability_config):
        stop = normalize_stop_arrivals([], STOP_ONE, liveability_config)
        assert stop.median_minutes is None
        assert stop.penalty == 15

    def test_no_stops_uses_fallback(self, liveability_config):
        assert compute_wait_penalty([], liveability_config) == 15

    def test_worst_stop_by_highest_median(self):
        stops = [
            NormalizedStopArrivals(stop_id="A", label="A", next_arrival_minutes=[2], median_minutes=2, penalty=0),
            NormalizedStopArrivals(stop_id="B", label="B", next_arrival_minutes=[], median_minutes=None, penalty=15),
            NormalizedStopArrivals(stop_id="C", label="C", next_arrival_minutes=[9], median_minutes=9, penalty=20),
        ]
        worst = find_worst_stop(stops)
        assert worst.label == "C"
        assert worst.median_minutes == 9
        assert find_worst_stop(stops[1:2]) is None


class TestWeather:
    RAW = {
        "hourly": {
            "time": ["t1", "t2", "t3", "t4", "t5", "t6"],
            "temperature_2m": [8, 9, 10, 11, 12, 13],
            "precipitation_probability": [10, 40, 55, 80, 90, 30],
            "wind_speed_10m": [15, 19, 22, 28, 36, 18],
        }
    }

    def test_next_six_hours_penalties(self, liveability_config):
        summary = compute_weather_summary(normalize_hourly_forecast(self.RAW, 48), liveability_config)

        assert summary.max_rain_probability == 90
        assert summary.rain_penalty == 30
        assert summary.representative_temperature == 8
        assert summary.temp_penalty == 16
        assert summary.max_wind_speed == 36
        assert summary.wind_penalty == 10
        assert summary.total_penalty == 56

    def test_only_first_six_hours_count(self, liveability_config):
        weather = WeatherSlice(
            time=[f"t{i}" for i in range(8)],
            temperature=[18] * 8,
            rain_probability=[0, 0, 0, 0, 0, 0, 100, 100],
            wind_speed=[5] * 8,
        )
        summary = compute_weather_summary(weather, liveability_config)
        assert summary.max_rain_probability == 0
        assert summary.total_penalty == 0
        assert len(summary.next_6h.time) == 6

    def test_horizon_truncation_and_dropped_values(self):
        raw = {
            "hourly": {
                "time": ["a", "b", "c"],
                "temperature_2m": [None, "12.5", "warm"],
                "precipitation_probability": [True, 30, 40],
                "wind_speed_10m": [1, 2, 3],
            }
        }
        weather = normalize_hourly_forecast(raw, 2)
        assert weather.time == ["a", "b"]
        assert weather.temperature == [12.5]
        assert weather.rain_probability == [30]
        assert weather.wind_speed == [1, 2]

    def test_empty_component_uses_fallback(self, liveability_config):
        weather = WeatherSlice(time=["t"], temperature=[], rain_probability=[10], wind_speed=[10])
        summary = compute_weather_summary(weather, liveability_config)
        assert summary.temp_penalty == 10
        assert summary.representative_temperature is None
        assert summary.total_penalty == 10

    def test_shoulder_temperature(self, liveability_config):
        weather = WeatherSlice(time=["t"], temperature=[25], rain_probability=[0], wind_speed=[0])
        assert compute_weather_summary(weather, liveability_config).temp_penalty == 8

    def test_disabled_summary_is_single_fallback(self, liveability_config):
        summary = fallback_weather_summary(liveability_config)
        assert summary.rain_penalty == summary.temp_penalty == summary.wind_penalty == 10
        assert summary.total_penalty == 10

    def test_malformed_payload(self):
        weather = normalize_hourly_forecast({"hourly": "nope"}, 48)
        assert weather == WeatherSlice()


class TestAirQuality:
    def test_single_index_maps_to_band(self, liveability_config):
        summary = summarize_air_quality({"sites": [{"@AQI": "6", "@SiteName": "Foo"}]}, liveability_config)
        assert summary.max_index == 6
        assert summary.band == "Moderate"
        assert summary.penalty == 10
        assert summary.station_name == "Foo"

    def test_maximum_across_nested_sites_with_first_seen_tie(self, liveability_config):
        raw = {
            "DailyAirQualityIndex": {
                "LocalAuthority": [
                    {
                        "@LocalAuthorityName": "Camden",
                        "Site": [
                            {"@SiteName": "Camden - Swiss Cottage", "Species": [{"@AirQualityIndex": "2"}, {"AQI": 7}]},
                            {"@SiteName": "Camden - Euston Road", "Species": {"AirQualityIndex": "7"}},
                        ],
                    },
                    {"SiteName": "City", "AQIIndex": 11},
                ]
            }
        }
        summary = summarize_air_quality(raw, liveability_config)
        assert summary.max_index == 7
        assert summary.station_name == "Camden - Swiss Cottage"
        assert summary.band == "High"
        assert summary.penalty == 25

    def test_out_of_range_and_non_integer_values_are_ignored(self, liveability_config):
        raw = [{"@AQI": "0"}, {"@AQI": 4.5}, {"@AQI": "high"}, {"@AQI": None}, {"AQI": 3}]
        summary = summarize_air_quality(raw, liveability_config)
        assert summary.max_index == 3
        assert summary.band == "Low"
        assert summary.station_name is None

    def test_deeply_nested_payload_is_scanned(self, liveability_config):
        raw = {"@SiteName": "Deep", "@AQI": "5"}
        for level in range(5000):
            raw = {"Nested": [raw]} if level % 2 else {"Nested": raw}
        summary = summarize_air_quality({"AirQualityData": [{"@SiteName": "Top", "@AQI": "5"}, raw]}, liveability_config)
        assert summary.max_index == 5
        assert summary.station_name == "Top"

    def test_no_index_uses_fallback(self, liveability_config):
        summary = compute_air_penalty(summarize_air_quality({"sites": []}, liveability_config), liveability_config)
        assert summary.max_index is None
        assert summary.band is None
        assert summary.penalty == 10


class TestComposite:
    def test_weighted_total_and_score(self, liveability_config):
        result = compose_score(
            MetricPenalties(transit=10, wait=20, weather=56, air=10), liveability_config.scoring.weights
        )
        assert result.weighted_total == 84.8
        assert result.score == 15.2

    def test_score_is_clamped(self, liveability_config):
        result = compose_score(
            MetricPenalties(transit=100, wait=100, weather=100, air=100), liveability_config.scoring.weights
        )
        assert result.score == 0
        assert math.isclose(result.weighted_total, 380)

    def test_rank_disruptions(self):
        lines = [
            NormalizedLineStatus(id=name, name=name, mode="tube", status_text=status, severity_points=points)
            for name, status, points in [
                ("Victoria", "Good Service", 0),
                ("Northern", "Minor Delays", 10),
                ("Central", "Severe Delays", 25),
                ("Bakerloo", "Severe Delays", 25),
                ("Circle", "Suspended", 50),
                ("Jubilee", "Minor Delays", 10),
            ]
        ]
        ranked = rank_disruptions(lines)
        assert [item.line for item in ranked] == ["Circle", "Bakerloo", "Central"]
        assert ranked[0].status == "Suspended"
        assert len(rank_disruptions(lines, limit=10)) == 5
