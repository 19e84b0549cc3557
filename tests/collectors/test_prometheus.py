"""Tests for the Prometheus client and importer."""
from typing import Any
from typing import Dict
from typing import List
from unittest.mock import MagicMock

import pytest
import requests

from k8s_memory_analyzer.collectors.datasource import IMetricsSource
from k8s_memory_analyzer.collectors.prometheus import BasicAuthInfo
from k8s_memory_analyzer.collectors.prometheus import PrometheusClient
from k8s_memory_analyzer.collectors.prometheus import PrometheusImporter
from k8s_memory_analyzer.config.settings import AnalyzerSettings
from k8s_memory_analyzer.exceptions import ConfigurationError
from k8s_memory_analyzer.exceptions import DataError
from k8s_memory_analyzer.exceptions import DatasetInconsistencyError
from k8s_memory_analyzer.exceptions import MetricsSourceError
from k8s_memory_analyzer.models.container_id import ContainerId
from k8s_memory_analyzer.models.controller_type import ControllerType

MB = 1024 * 1024


def _series(labels: Dict[str, str], values: List[int], start: int = 1000):
    return {
        "metric": labels,
        "values": [[start + 15 * i, str(value)] for i, value in enumerate(values)],
    }


class FakeSource(IMetricsSource):
    """Serves canned range query results keyed by query."""

    def __init__(self, results: Dict[str, List[Dict[str, Any]]]):
        self.results = results
        self.calls = []

    def query_range(self, query, start, end, step):
        self.calls.append((query, start, end, step))
        return self.results[query]


@pytest.fixture
def settings():
    return AnalyzerSettings()


@pytest.fixture
def source(settings):
    web = {"namespace": "shop", "container": "app"}
    return FakeSource(
        {
            settings.container_query: [
                # two replicas of the same deployment
                _series({**web, "pod": "web-7d9f8c6b5-x2x4z"}, [100 * MB, 150 * MB]),
                _series({**web, "pod": "web-7d9f8c6b5-b7c8d"}, [200 * MB, 250 * MB + 1]),
                _series(
                    {"namespace": "data", "container": "db", "pod": "postgres-0"},
                    [512 * MB],
                    start=1015,
                ),
                # no pod label: ignored
                _series({"namespace": "shop", "container": "app"}, [999 * MB]),
            ],
            settings.total_query: [_series({}, [300 * MB, 912 * MB + 1])],
        }
    )


def test_import_range(source, settings):
    dataset = PrometheusImporter(source, settings).import_range(1000, 1015)

    web = ContainerId("shop", ControllerType.DEPLOYMENT, "web", "app")
    db = ContainerId("data", ControllerType.STATEFULSET, "postgres", "db")

    assert set(dataset.entity_histograms) == {web, db}
    assert dataset.entity_histograms[web].total_count == 4
    # samples are rounded up to whole megabytes
    assert dataset.entity_histograms[web].value_at_percentile(100) == 251
    assert dataset.entity_histograms[db].value_at_percentile(100) == 512
    assert dataset.presence == {1000: [web, web], 1015: [web, web, db]}
    # totals are rounded down
    assert [(s.timestamp, s.value) for s in dataset.aggregate_series] == [
        (1000, 300),
        (1015, 912),
    ]
    assert [call[0] for call in source.calls] == [
        settings.container_query,
        settings.total_query,
    ]
    assert all(call[1:] == (1000, 1015, 15) for call in source.calls)


def test_import_range_uses_step_setting(source, settings):
    step_settings = settings.with_overrides(step_seconds=60)

    PrometheusImporter(source, step_settings).import_range(1000, 1015)

    assert all(call[3] == 60 for call in source.calls)


def test_import_range_rejects_empty_window(source):
    with pytest.raises(ConfigurationError):
        PrometheusImporter(source).import_range(1000, 1000)


def test_import_range_inconsistent_series(source, settings):
    source.results[settings.total_query] = [_series({}, [300 * MB])]

    with pytest.raises(DatasetInconsistencyError):
        PrometheusImporter(source, settings).import_range(1000, 1015)


def test_import_range_unparseable_sample(source, settings):
    source.results[settings.total_query] = [
        {"metric": {}, "values": [[1000, "not-a-number"]]}
    ]

    with pytest.raises(DataError):
        PrometheusImporter(source, settings).import_range(1000, 1015)


def _response(payload):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


def test_client_posts_range_query():
    client = PrometheusClient(
        "http://prometheus.example.com/api/",
        basic_auth=BasicAuthInfo("admin", "secret"),
        timeout=5,
    )
    client.session = MagicMock()
    client.session.post.return_value = _response(
        {"status": "success", "data": {"resultType": "matrix", "result": ["series"]}}
    )

    result = client.query_range("up", 1000, 2000, 15)

    assert result == ["series"]
    client.session.post.assert_called_once_with(
        "http://prometheus.example.com/api/v1/query_range",
        data={"query": "up", "start": 1000, "end": 2000, "step": 15},
        auth=("admin", "secret"),
        timeout=5,
        verify=True,
    )


def test_client_without_auth():
    client = PrometheusClient("http://prometheus/api")
    client.session = MagicMock()
    client.session.post.return_value = _response(
        {"status": "success", "data": {"result": []}}
    )

    assert client.query_range("up", 1, 2, 15) == []
    assert client.session.post.call_args.kwargs["auth"] is None


def test_client_error_payload():
    client = PrometheusClient("http://prometheus/api")
    client.session = MagicMock()
    client.session.post.return_value = _response(
        {"status": "error", "errorType": "bad_data", "error": "parse error"}
    )

    with pytest.raises(MetricsSourceError, match="parse error"):
        client.query_range("up{", 1, 2, 15)


def test_client_http_errors_propagate():
    client = PrometheusClient("http://prometheus/api")
    client.session = MagicMock()
    response = _response({})
    response.raise_for_status.side_effect = requests.exceptions.HTTPError("503")
    client.session.post.return_value = response

    with pytest.raises(requests.exceptions.HTTPError):
        client.query_range("up", 1, 2, 15)


if __name__ == "__main__":
    pytest.main([__file__])
