"""
Tests for lineage records and run provenance.
"""

from datetime import datetime, timezone

from lineage import LineageContext, build_lineage
from normalizers import normalize_line_statuses, normalize_stop_arrivals
from provenance import LOCAL_VERSION, build_provenance, resolve_collector_version
from schemas import AirQualitySummary, MetricPenalties, RequestTrace, SourceStatus, WeatherSlice
from scoring import compose_score, compute_weather_summary, fallback_air_summary, fallback_weather_summary

NOW = datetime(2026, 2, 24, 12, 0, tzinfo=timezone.utc)

TRACES = [
    RequestTrace(source="tfl", url="https://api.tfl.test/line/mode/tube/status?app_key=abc123"),
    RequestTrace(source="tfl", url="https://api.tfl.test/StopPoint/STOP1/arrivals?app_key=abc123"),
    RequestTrace(source="tfl", url="https://api.tfl.test/StopPoint/STOP2/arrivals?app_key=abc123"),
    RequestTrace(source="openMeteo", url="https://api.meteo.test/v1/forecast?latitude=51.5"),
    RequestTrace(source="ergAirQuality", url="https://api.erg.test/AirQuality/Hourly/MonitoringIndex/GroupName=London/Json"),
]


def _context(config, statuses, air=None, weather=None, stops=None):
    lines = normalize_line_statuses(
        [{"id": "victoria", "name": "Victoria", "lineStatuses": [{"statusSeverityDescription": "Minor Delays"}]}],
        config,
    )
    if stops is None:
        stops = [normalize_stop_arrivals([{"timeToStation": 240}], stop, config) for stop in config.sources.tfl.stop_points]
    weather = weather or compute_weather_summary(
        WeatherSlice(time=["t"], temperature=[18], rain_probability=[10], wind_speed=[10]), config
    )
    air = air or AirQualitySummary(max_index=4, band="Moderate", penalty=10, station_name="Camden")
    penalties = MetricPenalties(transit=10, wait=10, weather=weather.total_penalty, air=air.penalty)
    score = compose_score(penalties, config.scoring.weights)
    return LineageContext(
        config=config,
        generated_at=NOW,
        source_statuses=statuses,
        traces=TRACES,
        line_statuses=lines,
        stop_arrivals=stops,
        weather=weather,
        air=air,
        penalties=penalties,
        score=score.score,
        weighted_total=score.weighted_total,
    )


ALL_OK = {"tfl": SourceStatus.OK, "openMeteo": SourceStatus.OK, "ergAirQuality": SourceStatus.OK}


def test_traces_are_split_by_metric(liveability_config):
    lineage = build_lineage(_context(liveability_config, ALL_OK))
    metrics = lineage.metrics

    assert [trace.url for trace in metrics.transit.queries] == [
        "https://api.tfl.test/line/mode/tube/status?app_key=REDACTED"
    ]
    assert len(metrics.wait.queries) == 2
    assert metrics.weather.queries[0].source == "openMeteo"
    assert metrics.air.queries[0].source == "ergAirQuality"
    assert len(metrics.score.queries) == len(TRACES)


def test_no_fallbacks_when_every_source_delivers(liveability_config):
    metrics = build_lineage(_context(liveability_config, ALL_OK)).metrics
    assert not metrics.transit.fallback_used
    assert not metrics.wait.fallback_used
    assert not metrics.weather.fallback_used
    assert not metrics.air.fallback_used
    assert not metrics.score.fallback_used
    assert metrics.score.fallback_reason is None
    assert metrics.air.outputs["stationName"] == "Camden"


def test_disabled_and_errored_sources_force_fallback(liveability_config):
    statuses = {"tfl": SourceStatus.OK, "openMeteo": SourceStatus.DISABLED, "ergAirQuality": SourceStatus.ERROR}
    context = _context(
        liveability_config,
        statuses,
        air=fallback_air_summary(liveability_config),
        weather=fallback_weather_summary(liveability_config),
    )
    metrics = build_lineage(context).metrics

    assert metrics.weather.fallback_used
    assert "disabled" in metrics.weather.fallback_reason
    assert metrics.weather.sources == []
    assert metrics.air.fallback_used
    assert "failed" in metrics.air.fallback_reason
    assert any("Fallback air penalty 10" in step for step in metrics.air.calculation)
    assert metrics.score.fallback_used
    assert "weather" in metrics.score.fallback_reason and "air" in metrics.score.fallback_reason


def test_stop_without_predictions_marks_wait_fallback(liveability_config):
    config = liveability_config
    stops = [
        normalize_stop_arrivals([{"timeToStation": 240}], config.sources.tfl.stop_points[0], config),
        normalize_stop_arrivals([], config.sources.tfl.stop_points[1], config),
    ]
    metrics = build_lineage(_context(config, ALL_OK, stops=stops)).metrics
    assert metrics.wait.fallback_used
    assert "Stop Two" in metrics.wait.fallback_reason
    assert metrics.score.fallback_used


def test_lineage_serializes_with_camel_case_keys(liveability_config):
    document = build_lineage(_context(liveability_config, ALL_OK)).model_dump(mode="json", by_alias=True)
    assert document["generatedAtUtc"] == "2026-02-24T12:00:00.000Z"
    transit = document["metrics"]["transit"]
    assert {"configReferences", "fallbackUsed", "fallbackReason", "queries"} <= set(transit)
    assert "abc123" not in str(document)


def test_provenance_outside_ci(liveability_config):
    provenance = build_provenance(liveability_config, "1.2.3", environ={})
    assert provenance.generated_by == "local-cli"
    assert provenance.git_commit_sha is None
    assert provenance.run_url is None
    assert provenance.collector_version == "1.2.3"
    assert provenance.sources_requested == {"tfl": True, "openMeteo": True, "ergAirQuality": True}


def test_provenance_in_github_actions(liveability_config):
    environ = {
        "GITHUB_ACTIONS": "true",
        "GITHUB_SHA": "deadbeef",
        "GITHUB_REF": "refs/heads/main",
        "GITHUB_RUN_ID": "42",
        "GITHUB_RUN_ATTEMPT": "1",
        "GITHUB_REPOSITORY": "someone/london-liveability",
        "GITHUB_ACTOR": "someone",
        "GITHUB_WORKFLOW": "collect",
        "GITHUB_SERVER_URL": "https://github.com",
    }
    provenance = build_provenance(liveability_config, "1.2.3", environ=environ)
    assert provenance.generated_by == "github-actions"
    assert provenance.git_commit_sha == "deadbeef"
    assert provenance.run_url == "https://github.com/someone/london-liveability/actions/runs/42"
    assert provenance.model_dump(by_alias=True)["githubRunAttempt"] == "1"


def test_collector_version_is_a_string():
    version = resolve_collector_version()
    assert isinstance(version, str) and version
    assert version == LOCAL_VERSION or version[0].isdigit()
