"""Prometheus client and importer building usage datasets from range queries."""
import logging
from dataclasses import dataclass
from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple

import requests
from k8s_memory_analyzer.config.settings import AnalyzerSettings
from k8s_memory_analyzer.exceptions import ConfigurationError
from k8s_memory_analyzer.exceptions import DataError
from k8s_memory_analyzer.exceptions import MetricsSourceError
from k8s_memory_analyzer.models.container_id import ContainerId
from k8s_memory_analyzer.models.dataset import UsageDataset
from k8s_memory_analyzer.utils.conversions import bytes_to_mb_ceil
from k8s_memory_analyzer.utils.conversions import bytes_to_mb_floor
from k8s_memory_analyzer.utils.conversions import parse_sample_bytes
from k8s_memory_analyzer.utils.conversions import parse_sample_timestamp

from .datasource import IMetricsSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BasicAuthInfo:
    user: str
    password: Optional[str] = None

    def as_tuple(self) -> Tuple[str, str]:
        return self.user, self.password or ""


class PrometheusClient(IMetricsSource):
    """Client for the Prometheus HTTP API. This is a pure data collector."""

    def __init__(
        self,
        base_url: str,
        basic_auth: Optional[BasicAuthInfo] = None,
        timeout: int = 60,
        verify: bool = True,
    ):
        """base_url like http://<host>:9090/api."""
        self.base_url = base_url.rstrip("/")
        self.basic_auth = basic_auth
        self.timeout = timeout
        self.verify = verify
        self.session = requests.Session()

    def _post(self, path: str, data: Dict[str, Any]) -> dict:
        """Post a form-encoded request to the Prometheus API"""
        url = f"{self.base_url}{path}"
        auth = self.basic_auth.as_tuple() if self.basic_auth else None
        try:
            resp = self.session.post(
                url, data=data, auth=auth, timeout=self.timeout, verify=self.verify
            )
            resp.raise_for_status()
            return resp.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to fetch data from {url}: {e}")
            raise e

    def query_range(
        self, query: str, start: int, end: int, step: int
    ) -> List[Dict[str, Any]]:
        """Evaluate ``query`` over [start, end] every ``step`` seconds"""
        payload = self._post(
            "/v1/query_range",
            {"query": query, "start": start, "end": end, "step": step},
        )
        if payload.get("status") != "success":
            raise MetricsSourceError(
                f"Prometheus query failed ({payload.get('errorType')}): "
                f"{payload.get('error')}"
            )
        return payload["data"]["result"]


def _parse_values(series: Dict[str, Any]) -> List[Tuple[int, int]]:
    """Turn a series' ``[timestamp, "bytes"]`` pairs into integer tuples."""
    try:
        return [
            (parse_sample_timestamp(ts), parse_sample_bytes(value))
            for ts, value in series.get("values", [])
        ]
    except (TypeError, ValueError) as e:
        raise DataError(
            f"Unparseable sample in series {series.get('metric', {})}: {e}"
        ) from e


class PrometheusImporter:
    """Builds a UsageDataset from per-container and total memory range queries."""

    def __init__(
        self, source: IMetricsSource, settings: Optional[AnalyzerSettings] = None
    ):
        self.source = source
        self.settings = settings or AnalyzerSettings()

    def _new_dataset(self) -> UsageDataset:
        return UsageDataset(
            highest_trackable_value=self.settings.highest_trackable_value,
            significant_figures=self.settings.significant_figures,
        )

    def _import_containers(self, dataset: UsageDataset, start: int, end: int) -> None:
        logger.info("Getting container metrics from Prometheus...")
        result = self.source.query_range(
            self.settings.container_query, start, end, self.settings.step_seconds
        )
        skipped = 0
        for series in result:
            labels = series.get("metric", {})
            if "pod" not in labels:
                skipped += 1
                continue
            container_id = ContainerId.from_pod(
                namespace=labels.get("namespace", ""),
                pod=labels["pod"],
                container=labels.get("container", ""),
            )
            histogram = dataset.new_histogram()
            for timestamp, memory_bytes in _parse_values(series):
                # Rounded up so per-container totals never undercount the sum
                histogram.record(bytes_to_mb_ceil(memory_bytes))
                dataset.mark_present(container_id, timestamp)
            dataset.add_entity_histogram(container_id, histogram)
        if skipped:
            logger.debug(f"Skipped {skipped} series without a pod label")

    def _import_total(self, dataset: UsageDataset, start: int, end: int) -> None:
        logger.info("Getting global metrics from Prometheus...")
        result = self.source.query_range(
            self.settings.total_query, start, end, self.settings.step_seconds
        )
        for series in result:
            for timestamp, memory_bytes in _parse_values(series):
                dataset.record_aggregate(timestamp, bytes_to_mb_floor(memory_bytes))

    def import_range(self, start: int, end: int) -> UsageDataset:
        """Fetch [start, end] and return a validated dataset."""
        if end <= start:
            raise ConfigurationError(
                f"End date ({end}) must be after start date ({start})"
            )
        dataset = self._new_dataset()
        self._import_containers(dataset, start, end)
        self._import_total(dataset, start, end)
        dataset.validate()
        logger.info(
            f"Imported {len(dataset.entity_histograms)} containers "
            f"over {len(dataset.aggregate_series)} timestamps"
        )
        return dataset
