import logging
from typing import Optional

from k8s_memory_analyzer.analytics.risk_search import RiskCalibratedStrategy
from k8s_memory_analyzer.analytics.risk_search import peak_total_request
from k8s_memory_analyzer.collectors.prometheus import PrometheusImporter
from k8s_memory_analyzer.models.dataset import UsageDataset
from k8s_memory_analyzer.models.recommendation import AnalysisResults
from k8s_memory_analyzer.storage.datasink import IDatasetStore

logger = logging.getLogger(__name__)


class AnalyzerService:
    """Orchestrates dataset import and the analysis of imported data."""

    def __init__(
        self,
        request_strategy: RiskCalibratedStrategy,
        store: Optional[IDatasetStore] = None,
        importer: Optional[PrometheusImporter] = None,
    ):
        self.request_strategy = request_strategy
        self.store = store
        self.importer = importer

    def import_dataset(self, start: int, end: int, append: bool = False) -> UsageDataset:
        """
        Fetches [start, end] from the metrics source and saves it to the store,
        merged into the stored dataset when ``append`` is set.
        """
        if self.importer is None or self.store is None:
            raise RuntimeError("Importing requires both an importer and a store.")

        dataset = self.importer.import_range(start, end)
        if append and self.store.exists():
            existing = self.store.load()
            existing.merge(dataset)
            existing.validate()
            dataset = existing
        self.store.save(dataset)
        return dataset

    def load_dataset(self) -> UsageDataset:
        if self.store is None:
            raise RuntimeError("Loading requires a store.")
        return self.store.load()

    def generate_recommendations(
        self, dataset: UsageDataset, risk_tolerance: float
    ) -> AnalysisResults:
        """
        Calibrates the request percentile and returns the per-container requests.
        """
        percentile, risk = self.request_strategy.calibrate(dataset, risk_tolerance)
        recommendations = self.request_strategy.recommend_at(dataset, percentile)

        return AnalysisResults(
            risk_tolerance=float(risk_tolerance),
            num_containers=len(dataset.entity_histograms),
            num_timestamps=len(dataset.aggregate_series),
            percentile=percentile,
            risk=risk,
            recommendations=recommendations,
            peak_total_request=peak_total_request(dataset, recommendations),
        )
