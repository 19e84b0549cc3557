"""Tests for the risk-calibrated percentile search."""
import pytest

from k8s_memory_analyzer.analytics.risk_search import PresenceIndex
from k8s_memory_analyzer.analytics.risk_search import RiskCalibratedStrategy
from k8s_memory_analyzer.analytics.risk_search import peak_total_request
from k8s_memory_analyzer.analytics.risk_search import requests_at_percentile
from k8s_memory_analyzer.exceptions import ConfigurationError
from k8s_memory_analyzer.exceptions import DatasetInconsistencyError
from k8s_memory_analyzer.exceptions import EmptyDatasetError
from k8s_memory_analyzer.exceptions import UnattainableRiskError
from k8s_memory_analyzer.models.dataset import MetricValue
from k8s_memory_analyzer.models.dataset import UsageDataset

from tests.helpers import build_dataset
from tests.helpers import container


@pytest.fixture
def strategy():
    return RiskCalibratedStrategy(max_workers=4)


def test_zero_tolerance_covers_every_timestamp(strategy, spiky_dataset, app_id):
    """With no tolerance the spike must be covered, at the lowest percentile that does."""
    percentile, risk = strategy.calibrate(spiky_dataset, 0.0)

    assert risk == 0.0
    assert percentile == 91
    assert strategy.risk(spiky_dataset, percentile - 1) > 0.0
    assert strategy.generate_recommendation(spiky_dataset, 0.0) == {app_id: 100}


def test_high_tolerance_ignores_the_spike(strategy, spiky_dataset, app_id):
    percentile, risk = strategy.calibrate(spiky_dataset, 0.5)

    assert risk == pytest.approx(0.1)
    assert percentile == 0
    assert strategy.generate_recommendation(spiky_dataset, 0.5) == {app_id: 1}


def test_tolerance_just_below_spike_frequency(strategy, spiky_dataset, app_id):
    assert strategy.generate_recommendation(spiky_dataset, 0.09) == {app_id: 100}
    assert strategy.generate_recommendation(spiky_dataset, 0.1) == {app_id: 1}


def test_absent_container_still_gets_recommendation(strategy):
    """Containers never present do not affect calibration but are still recommended."""
    first, second, idle = container("first"), container("second"), container("idle")
    samples = {t: {first: (t + 1) * 10} for t in range(5)}
    samples.update({t: {second: (t - 4) * 100} for t in range(5, 10)})
    dataset = build_dataset(samples)
    idle_histogram = dataset.new_histogram()
    for value in (7, 7, 7):
        idle_histogram.record(value)
    dataset.add_entity_histogram(idle, idle_histogram)

    percentile, _ = strategy.calibrate(dataset, 0.0)
    recommendations = strategy.generate_recommendation(dataset, 0.0)

    assert percentile == 81
    assert recommendations == {first: 50, second: 500, idle: 7}


def test_empty_dataset_is_an_error(strategy):
    with pytest.raises(EmptyDatasetError):
        strategy.generate_recommendation(UsageDataset(), 0.05)


def test_empty_dataset_is_reported_as_value_error(strategy):
    with pytest.raises(ValueError):
        strategy.calibrate(UsageDataset(), 0.05)


@pytest.mark.parametrize("risk_tolerance", [-0.01, 1.01, float("nan"), "high"])
def test_invalid_risk_tolerance(strategy, spiky_dataset, risk_tolerance):
    with pytest.raises(ConfigurationError):
        strategy.calibrate(spiky_dataset, risk_tolerance)


def test_full_tolerance_uses_lowest_percentile(strategy, random_dataset):
    percentile, _ = strategy.calibrate(random_dataset, 1.0)
    assert percentile == 0


def test_risk_is_non_increasing(strategy, random_dataset):
    risks = [strategy.risk(random_dataset, p) for p in range(101)]

    assert all(later <= earlier for earlier, later in zip(risks, risks[1:]))
    assert risks[0] > 0.0
    assert risks[100] == 0.0


@pytest.mark.parametrize("risk_tolerance", [0.0, 0.01, 0.05, 0.2, 0.5])
def test_calibrated_percentile_is_minimal(strategy, random_dataset, risk_tolerance):
    percentile, risk = strategy.calibrate(random_dataset, risk_tolerance)

    assert risk <= risk_tolerance
    assert risk == strategy.risk(random_dataset, percentile)
    if percentile > 0:
        assert strategy.risk(random_dataset, percentile - 1) > risk_tolerance


def test_chunking_does_not_change_the_result(random_dataset):
    single = RiskCalibratedStrategy(max_workers=1, chunk_size=10_000)
    chunked = RiskCalibratedStrategy(max_workers=8, chunk_size=7)

    assert single.calibrate(random_dataset, 0.05) == chunked.calibrate(
        random_dataset, 0.05
    )
    assert single.generate_recommendation(
        random_dataset, 0.05
    ) == chunked.generate_recommendation(random_dataset, 0.05)


def test_unattainable_tolerance_aborts(strategy, app_id):
    dataset = build_dataset({t: {app_id: 10} for t in range(4)})
    dataset.aggregate_series[0] = MetricValue(0, 1000)

    with pytest.raises(UnattainableRiskError):
        strategy.calibrate(dataset, 0.0)
    assert strategy.calibrate(dataset, 0.25) == (0, 0.25)


def test_inconsistent_dataset_aborts(strategy, spiky_dataset):
    spiky_dataset.presence[0].append(container("ghost"))

    with pytest.raises(DatasetInconsistencyError):
        strategy.calibrate(spiky_dataset, 0.05)


def test_invalid_chunk_size():
    with pytest.raises(ConfigurationError):
        RiskCalibratedStrategy(chunk_size=0)


def test_replicas_count_towards_presence_sum(strategy):
    """Two replicas of the same workload running together each need their request."""
    web = container("web")
    dataset = UsageDataset()
    for timestamp in range(3):
        dataset.record_entity(web, timestamp, 100)
        dataset.record_entity(web, timestamp, 100)
        dataset.record_aggregate(timestamp, 200)

    recommendations = strategy.generate_recommendation(dataset, 0.0)

    assert recommendations == {web: 100}
    assert peak_total_request(dataset, recommendations) == 200


def _direct_risk(dataset, percentile):
    requests = requests_at_percentile(dataset, percentile)
    under = [
        sample
        for sample in dataset.aggregate_series
        if sum(requests[cid] for cid in dataset.presence[sample.timestamp])
        < sample.value
    ]
    return len(under) / len(dataset.aggregate_series)


@pytest.mark.parametrize("chunk_size", [1, 7, 65536])
def test_vectorized_risk_matches_direct_count(random_dataset, chunk_size):
    strategy = RiskCalibratedStrategy(max_workers=4, chunk_size=chunk_size)

    for percentile in (0, 10, 50, 90, 99, 100):
        assert strategy.risk(random_dataset, percentile) == _direct_risk(
            random_dataset, percentile
        )


def test_timestamp_without_present_containers(strategy, app_id):
    dataset = build_dataset({0: {app_id: 10}, 15: {app_id: 10}, 30: {}})
    dataset.presence[45] = []
    dataset.record_aggregate(45, 5)

    assert strategy.risk(dataset, 100) == 0.25
    assert strategy.calibrate(dataset, 0.25) == (0, 0.25)


def test_presence_index_layout(app_id):
    other = container("other")
    dataset = build_dataset({0: {app_id: 1, other: 2}, 15: {}, 30: {other: 3}})

    index = PresenceIndex.from_dataset(dataset)
    requests = index.request_vector(dataset, 100)

    assert index.container_ids == [app_id, other]
    assert index.entities.tolist() == [0, 1, 1]
    assert index.offsets.tolist() == [0, 2, 2, 3]
    assert index.totals.tolist() == [3, 0, 3]
    assert index.presence_sums(requests, 0, 3).tolist() == [4, 0, 3]
    assert index.presence_sums(requests, 1, 3).tolist() == [0, 3]


def test_peak_total_request(strategy):
    first, second = container("first"), container("second")
    dataset = build_dataset(
        {
            0: {first: 10},
            15: {first: 10, second: 30},
            30: {second: 30},
        }
    )
    recommendations = requests_at_percentile(dataset, 100)

    assert peak_total_request(dataset, recommendations) == 40
    assert peak_total_request(UsageDataset(), recommendations) == 0


if __name__ == "__main__":
    pytest.main([__file__])
