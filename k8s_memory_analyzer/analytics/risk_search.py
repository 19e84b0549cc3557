"""Risk-calibrated percentile search.

Finds the smallest percentile P such that, when every container requests its
own P-th percentile of observed usage, the requests of the containers present
at a timestamp fall short of the observed total at no more than a
``risk_tolerance`` fraction of the historical timestamps.

Raising P can only raise every container's request, so the fraction of
under-requested timestamps is non-increasing in P and an integer binary search
over [0, 100] finds the minimum in at most seven rounds.

Presence is flattened once into numpy arrays (container indices laid out
timestamp after timestamp, with per-timestamp offsets), so a round looks up a
request vector by those indices and compares per-timestamp sums with the
observed totals. Each round is a count over timestamp chunks fanned out to a
thread pool; numpy releases the GIL for the array work.
"""
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple

import numpy as np

from k8s_memory_analyzer.exceptions import ConfigurationError
from k8s_memory_analyzer.exceptions import EmptyDatasetError
from k8s_memory_analyzer.exceptions import UnattainableRiskError
from k8s_memory_analyzer.models.container_id import ContainerId
from k8s_memory_analyzer.models.dataset import UsageDataset

from .base import BaseRequestStrategy

logger = logging.getLogger(__name__)

MIN_PERCENTILE = 0
MAX_PERCENTILE = 100


@dataclass(frozen=True)
class PresenceIndex:
    """Presence of a dataset flattened into numpy arrays.

    ``entities[offsets[i]:offsets[i + 1]]`` are the positions, in
    ``container_ids``, of the containers present at the i-th sample of the
    aggregate series, whose observed total is ``totals[i]``.
    """

    container_ids: List[ContainerId]
    entities: np.ndarray
    offsets: np.ndarray
    totals: np.ndarray

    @classmethod
    def from_dataset(cls, dataset: UsageDataset) -> "PresenceIndex":
        container_ids = list(dataset.entity_histograms)
        position = {container_id: i for i, container_id in enumerate(container_ids)}
        entities: List[int] = []
        offsets = [0]
        for sample in dataset.aggregate_series:
            entities.extend(position[cid] for cid in dataset.presence[sample.timestamp])
            offsets.append(len(entities))
        return cls(
            container_ids=container_ids,
            entities=np.asarray(entities, dtype=np.int64),
            offsets=np.asarray(offsets, dtype=np.int64),
            totals=np.asarray(
                [sample.value for sample in dataset.aggregate_series], dtype=np.int64
            ),
        )

    def __len__(self) -> int:
        return len(self.totals)

    def request_vector(self, dataset: UsageDataset, percentile: int) -> np.ndarray:
        return np.asarray(
            [
                dataset.entity_histograms[cid].value_at_percentile(percentile)
                for cid in self.container_ids
            ],
            dtype=np.int64,
        )

    def presence_sums(self, requests: np.ndarray, start: int, stop: int) -> np.ndarray:
        """Summed requests of the present containers for samples [start, stop)."""
        offsets = self.offsets[start : stop + 1]
        present = requests[self.entities[offsets[0] : offsets[-1]]]
        # a prefix sum handles timestamps where nothing was present
        cumulative = np.concatenate(([0], np.cumsum(present)))
        relative = offsets - offsets[0]
        return cumulative[relative[1:]] - cumulative[relative[:-1]]

    def count_under_requested(self, requests: np.ndarray, start: int, stop: int) -> int:
        sums = self.presence_sums(requests, start, stop)
        return int(np.count_nonzero(sums < self.totals[start:stop]))


def requests_at_percentile(
    dataset: UsageDataset, percentile: int
) -> Dict[ContainerId, int]:
    """Request of every tracked container when set at ``percentile``."""
    return {
        container_id: histogram.value_at_percentile(percentile)
        for container_id, histogram in dataset.entity_histograms.items()
    }


def presence_sum(
    presence: Dict[int, List[ContainerId]],
    requests: Dict[ContainerId, int],
    timestamp: int,
) -> int:
    return sum(requests[container_id] for container_id in presence[timestamp])


def peak_total_request(
    dataset: UsageDataset, recommendations: Dict[ContainerId, int]
) -> int:
    """Largest sum of recommended requests over the containers present at any timestamp."""
    return max(
        (
            presence_sum(dataset.presence, recommendations, sample.timestamp)
            for sample in dataset.aggregate_series
        ),
        default=0,
    )


def validate_risk_tolerance(risk_tolerance: float) -> float:
    try:
        risk_tolerance = float(risk_tolerance)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Risk tolerance must be a number, got {risk_tolerance!r}"
        ) from e
    if math.isnan(risk_tolerance) or not 0.0 <= risk_tolerance <= 1.0:
        raise ConfigurationError(
            f"Risk tolerance must be between 0 and 1, got {risk_tolerance}"
        )
    return risk_tolerance


class RiskCalibratedStrategy(BaseRequestStrategy):
    """
    Recommends, for every container, the value at a single global percentile
    chosen as the lowest one meeting the risk tolerance.
    """

    def __init__(self, max_workers: Optional[int] = None, chunk_size: int = 65536):
        if chunk_size <= 0:
            raise ConfigurationError(f"chunk_size must be positive, got {chunk_size}")
        self.max_workers = max_workers
        self.chunk_size = chunk_size

    def _check_dataset(self, dataset: UsageDataset) -> None:
        if dataset.is_empty():
            raise EmptyDatasetError(
                "The dataset has no aggregate samples, risk cannot be computed"
            )
        dataset.validate()

    def _chunks(self, index: PresenceIndex) -> List[Tuple[int, int]]:
        return [
            (start, min(start + self.chunk_size, len(index)))
            for start in range(0, len(index), self.chunk_size)
        ]

    def _risk(
        self,
        dataset: UsageDataset,
        index: PresenceIndex,
        percentile: int,
        executor: ThreadPoolExecutor,
    ) -> float:
        requests = index.request_vector(dataset, percentile)
        under_requested = sum(
            executor.map(
                lambda chunk: index.count_under_requested(requests, *chunk),
                self._chunks(index),
            )
        )
        return under_requested / len(index)

    def risk(self, dataset: UsageDataset, percentile: int) -> float:
        """Fraction of timestamps under-requested when every container requests ``percentile``."""
        self._check_dataset(dataset)
        index = PresenceIndex.from_dataset(dataset)
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            return self._risk(dataset, index, percentile, executor)

    def calibrate(
        self, dataset: UsageDataset, risk_tolerance: float
    ) -> Tuple[int, float]:
        """Return the minimal percentile meeting ``risk_tolerance`` and its risk."""
        risk_tolerance = validate_risk_tolerance(risk_tolerance)
        self._check_dataset(dataset)
        logger.info(
            f"Calibrating requests for {len(dataset.entity_histograms)} containers "
            f"over {len(dataset.aggregate_series)} timestamps "
            f"(risk tolerance {risk_tolerance})"
        )

        index = PresenceIndex.from_dataset(dataset)
        risks: Dict[int, float] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            low, high = MIN_PERCENTILE, MAX_PERCENTILE
            while low < high:
                percentile = (low + high) // 2
                risks[percentile] = self._risk(dataset, index, percentile, executor)
                logger.debug(
                    f"min {low}, max {high}, percentile {percentile}, "
                    f"risk {risks[percentile]:.4f}"
                )
                if risks[percentile] > risk_tolerance:
                    low = percentile + 1
                else:
                    high = percentile

            if low not in risks:
                risks[low] = self._risk(dataset, index, low, executor)

        if risks[low] > risk_tolerance:
            raise UnattainableRiskError(
                f"Even at percentile {low} the requests fall short of the observed total "
                f"at {risks[low]:.2%} of timestamps, above the tolerance of {risk_tolerance:.2%}"
            )
        logger.info(f"Percentile {low} (risk {risks[low]:.4f})")
        return low, risks[low]

    def recommend_at(
        self, dataset: UsageDataset, percentile: int
    ) -> Dict[ContainerId, int]:
        return requests_at_percentile(dataset, percentile)

    def generate_recommendation(
        self, dataset: UsageDataset, risk_tolerance: float
    ) -> Dict[ContainerId, int]:
        percentile, _ = self.calibrate(dataset, risk_tolerance)
        return self.recommend_at(dataset, percentile)
