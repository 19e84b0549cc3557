from typing import Dict
from typing import Optional

from k8s_memory_analyzer.analytics.risk_search import RiskCalibratedStrategy
from k8s_memory_analyzer.analyzer_service import AnalyzerService
from k8s_memory_analyzer.collectors.prometheus import BasicAuthInfo
from k8s_memory_analyzer.collectors.prometheus import PrometheusClient
from k8s_memory_analyzer.collectors.prometheus import PrometheusImporter
from k8s_memory_analyzer.config.settings import AnalyzerSettings
from k8s_memory_analyzer.exceptions import ConfigurationError
from k8s_memory_analyzer.models.container_id import ContainerId
from k8s_memory_analyzer.models.dataset import UsageDataset
from k8s_memory_analyzer.models.recommendation import AnalysisResults
from k8s_memory_analyzer.storage.arrow_io import ParquetDatasetStore


def _strategy(settings: Optional[AnalyzerSettings]) -> RiskCalibratedStrategy:
    settings = settings or AnalyzerSettings()
    return RiskCalibratedStrategy(max_workers=settings.max_workers)


def analyze(
    dataset: UsageDataset,
    risk_tolerance: float,
    settings: Optional[AnalyzerSettings] = None,
) -> Dict[ContainerId, int]:
    """
    Recommend a memory request (in MB) for every container of ``dataset``.

    :param dataset: A fully imported usage dataset.
    :param risk_tolerance: Accepted fraction of historical timestamps, between 0 and 1,
                    at which the requests of present containers may fall short of the
                    observed total.
    :return: A mapping from container identity to its recommended request.
    """
    return _strategy(settings).generate_recommendation(dataset, risk_tolerance)


def analyze_dataset(
    dataset: UsageDataset,
    risk_tolerance: float,
    settings: Optional[AnalyzerSettings] = None,
) -> AnalysisResults:
    """Like :func:`analyze`, also reporting the percentile, its risk and the peak total."""
    analyzer = AnalyzerService(_strategy(settings))
    return analyzer.generate_recommendations(dataset, risk_tolerance)


def analyze_data_file(
    data_path: str,
    risk_tolerance: float,
    settings: Optional[AnalyzerSettings] = None,
) -> AnalysisResults:
    """
    Load a dataset saved by :func:`import_to_file` and analyze it.

    :param data_path: Dataset directory, local or s3://.
    :param risk_tolerance: See :func:`analyze`.
    """
    analyzer = AnalyzerService(_strategy(settings), store=ParquetDatasetStore(data_path))
    dataset = analyzer.load_dataset()
    return analyzer.generate_recommendations(dataset, risk_tolerance)


def _importer(
    url: str,
    user: Optional[str],
    password: Optional[str],
    settings: AnalyzerSettings,
) -> PrometheusImporter:
    if password and not user:
        raise ConfigurationError("A basic auth password requires a user")
    basic_auth = BasicAuthInfo(user, password) if user else None
    source = PrometheusClient(
        url,
        basic_auth=basic_auth,
        timeout=settings.timeout,
        verify=settings.verify_ssl,
    )
    return PrometheusImporter(source, settings)


def import_from_prometheus(
    url: str,
    start: int,
    end: int,
    user: Optional[str] = None,
    password: Optional[str] = None,
    settings: Optional[AnalyzerSettings] = None,
) -> UsageDataset:
    """
    Build a usage dataset from a Prometheus server.

    :param url: Prometheus API URL (e.g. http://prometheus.example.com/api/).
    :param start: Start of the window, unix seconds.
    :param end: End of the window, unix seconds.
    :param user: Optional basic auth user.
    :param password: Optional basic auth password.
    """
    settings = settings or AnalyzerSettings()
    return _importer(url, user, password, settings).import_range(start, end)


def import_to_file(
    url: str,
    start: int,
    end: int,
    output_path: str,
    user: Optional[str] = None,
    password: Optional[str] = None,
    append: bool = False,
    settings: Optional[AnalyzerSettings] = None,
) -> UsageDataset:
    """
    Import from Prometheus and save the dataset to ``output_path``.

    With ``append`` the new window is merged into the dataset already stored there.
    """
    settings = settings or AnalyzerSettings()
    analyzer = AnalyzerService(
        _strategy(settings),
        store=ParquetDatasetStore(output_path),
        importer=_importer(url, user, password, settings),
    )
    return analyzer.import_dataset(start, end, append=append)
