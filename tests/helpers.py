"""
Shared builders for liveability test configuration.
"""

import copy
from typing import Any, Dict

from liveability_config import LiveabilityConfig, validate_config_object

VALID_CONFIG: Dict[str, Any] = {
    "project": {
        "name": "Test Project",
        "timezone": "Europe/London",
        "history_retention_days": 7,
        "collection_interval_minutes": 15,
    },
    "location": {"name": "Central London", "lat": 51.5074, "lon": -0.1278},
    "sources": {
        "tfl": {
            "enabled": True,
            "base_url": "https://api.tfl.test",
            "app_id_env": "TFL_APP_ID",
            "app_key_env": "TFL_APP_KEY",
            "modes": ["tube"],
            "watch_lines": [],
            "stop_points": [
                {"id": "STOP1", "label": "Stop One"},
                {"id": "STOP2", "label": "Stop Two"},
            ],
        },
        "open_meteo": {
            "enabled": True,
            "base_url": "https://api.meteo.test",
            "forecast_hours": 48,
            "hourly_variables": ["temperature_2m", "precipitation_probability", "wind_speed_10m"],
        },
        "erg_air_quality": {
            "enabled": True,
            "base_url": "https://api.erg.test",
            "group_name": "London",
        },
    },
    "scoring": {
        "weights": {"transit": 1, "wait": 1, "weather": 0.8, "air": 1},
        "fallbacks": {"transit_penalty": 15, "wait_penalty": 15, "weather_penalty": 10, "air_penalty": 10},
        "transit_severity_points": {
            "good_service": 0,
            "minor_delays": 10,
            "severe_delays": 25,
            "part_suspended": 35,
            "suspended": 50,
            "unknown": 15,
        },
        "wait_penalty_bands": [
            {"threshold": 3, "penalty": 0},
            {"threshold": 7, "penalty": 10},
            {"threshold": 12, "penalty": 20},
            {"threshold": 999, "penalty": 35},
        ],
        "weather_penalty": {
            "rain_bands": [
                {"threshold": 20, "penalty": 0},
                {"threshold": 50, "penalty": 10},
                {"threshold": 80, "penalty": 20},
                {"threshold": 100, "penalty": 30},
            ],
            "wind_bands": [
                {"threshold": 20, "penalty": 0},
                {"threshold": 35, "penalty": 5},
                {"threshold": 999, "penalty": 10},
            ],
            "temp_comfort": {
                "ideal_min": 16,
                "ideal_max": 22,
                "shoulder_min": 10,
                "shoulder_max": 27,
                "shoulder_penalty": 8,
                "extreme_penalty": 16,
            },
        },
        "air_penalty_bands": [
            {"threshold": 3, "penalty": 0, "band": "Low"},
            {"threshold": 6, "penalty": 10, "band": "Moderate"},
            {"threshold": 9, "penalty": 25, "band": "High"},
            {"threshold": 10, "penalty": 35, "band": "Very High"},
        ],
    },
}


def make_raw_config() -> Dict[str, Any]:
    """Deep copy of the valid test config, safe to mutate"""
    return copy.deepcopy(VALID_CONFIG)


def make_valid_config(raw: Dict[str, Any] = None) -> LiveabilityConfig:
    return validate_config_object(raw if raw is not None else make_raw_config())
