"""Usage dataset: the unit of computation and persistence.

A dataset holds the observed total memory of the cluster over time, one
percentile histogram per container identity, and, for every observed
timestamp, the containers that contributed to the total at that instant.
The importer builds it; the analysis only reads it.
"""
from collections import Counter
from dataclasses import dataclass
from dataclasses import field
from typing import Dict
from typing import List

from k8s_memory_analyzer.analytics.histogram import PercentileHistogram
from k8s_memory_analyzer.config.settings import DEFAULT_HIGHEST_TRACKABLE_VALUE
from k8s_memory_analyzer.exceptions import DatasetInconsistencyError
from k8s_memory_analyzer.exceptions import IncompatibleHistogramError
from k8s_memory_analyzer.models.container_id import ContainerId


@dataclass(frozen=True)
class MetricValue:
    """A single sample: unix timestamp in seconds and a value in megabytes."""

    timestamp: int
    value: int


@dataclass
class UsageDataset:
    aggregate_series: List[MetricValue] = field(default_factory=list)
    entity_histograms: Dict[ContainerId, PercentileHistogram] = field(
        default_factory=dict
    )
    # A timestamp maps to a list rather than a set: two replicas of the same
    # workload running at the same time both count towards the total.
    presence: Dict[int, List[ContainerId]] = field(default_factory=dict)
    highest_trackable_value: int = DEFAULT_HIGHEST_TRACKABLE_VALUE
    significant_figures: int = 3

    def new_histogram(self) -> PercentileHistogram:
        return PercentileHistogram(
            self.highest_trackable_value, self.significant_figures
        )

    def record_aggregate(self, timestamp: int, value: int) -> None:
        self.aggregate_series.append(MetricValue(int(timestamp), int(value)))

    def mark_present(self, container_id: ContainerId, timestamp: int) -> None:
        self.presence.setdefault(int(timestamp), []).append(container_id)

    def record_entity(self, container_id: ContainerId, timestamp: int, value: int) -> None:
        histogram = self.entity_histograms.get(container_id)
        if histogram is None:
            histogram = self.entity_histograms[container_id] = self.new_histogram()
        histogram.record(value)
        self.mark_present(container_id, timestamp)

    def add_entity_histogram(
        self, container_id: ContainerId, histogram: PercentileHistogram
    ) -> None:
        """Merge a batch of samples for ``container_id`` into the dataset."""
        if not histogram.is_compatible(self.new_histogram()):
            raise IncompatibleHistogramError(
                f"Histogram for {container_id} does not match the dataset configuration"
            )
        existing = self.entity_histograms.get(container_id)
        if existing is None:
            self.entity_histograms[container_id] = histogram.copy()
        else:
            existing.merge(histogram)

    @property
    def timestamps(self) -> List[int]:
        return [sample.timestamp for sample in self.sorted_aggregate_series()]

    def sorted_aggregate_series(self) -> List[MetricValue]:
        return sorted(self.aggregate_series, key=lambda sample: sample.timestamp)

    def is_empty(self) -> bool:
        return not self.aggregate_series

    def validate(self) -> None:
        """Raise DatasetInconsistencyError on the first broken structural invariant."""
        timestamp_counts = Counter(sample.timestamp for sample in self.aggregate_series)
        duplicated = sorted(ts for ts, count in timestamp_counts.items() if count > 1)
        if duplicated:
            raise DatasetInconsistencyError(
                f"Aggregate series has duplicate timestamps: {duplicated[:5]}"
            )

        aggregate_timestamps = set(timestamp_counts)
        presence_timestamps = set(self.presence)
        if aggregate_timestamps != presence_timestamps:
            missing_presence = sorted(aggregate_timestamps - presence_timestamps)
            missing_aggregate = sorted(presence_timestamps - aggregate_timestamps)
            raise DatasetInconsistencyError(
                "Presence index and aggregate series cover different timestamps "
                f"(without presence: {missing_presence[:5]}, "
                f"without aggregate: {missing_aggregate[:5]})"
            )

        for timestamp, container_ids in self.presence.items():
            for container_id in container_ids:
                if container_id not in self.entity_histograms:
                    raise DatasetInconsistencyError(
                        f"{container_id} is present at {timestamp} but has no histogram"
                    )

    def merge(self, other: "UsageDataset") -> None:
        """Fold another dataset covering a disjoint time window into this one."""
        if (
            self.highest_trackable_value != other.highest_trackable_value
            or self.significant_figures != other.significant_figures
        ):
            raise IncompatibleHistogramError(
                "Cannot merge datasets recorded with different histogram configurations"
            )
        overlap = {sample.timestamp for sample in self.aggregate_series} & {
            sample.timestamp for sample in other.aggregate_series
        }
        if overlap:
            raise DatasetInconsistencyError(
                f"Datasets overlap at {len(overlap)} timestamps, e.g. {sorted(overlap)[:5]}"
            )
        template = self.new_histogram()
        for container_id, histogram in other.entity_histograms.items():
            if not histogram.is_compatible(template):
                raise IncompatibleHistogramError(
                    f"Histogram for {container_id} does not match the dataset configuration"
                )

        self.aggregate_series.extend(other.aggregate_series)
        for container_id, histogram in other.entity_histograms.items():
            self.add_entity_histogram(container_id, histogram)
        for timestamp, container_ids in other.presence.items():
            self.presence.setdefault(timestamp, []).extend(container_ids)
