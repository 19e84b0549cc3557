"""K8s Memory Analyzer: risk-calibrated memory requests from historical usage."""

__version__ = "0.1.0"

from k8s_memory_analyzer.api import analyze
from k8s_memory_analyzer.api import analyze_data_file
from k8s_memory_analyzer.api import analyze_dataset
from k8s_memory_analyzer.api import import_from_prometheus
from k8s_memory_analyzer.api import import_to_file

__all__ = [
    "__version__",
    "analyze",
    "analyze_data_file",
    "analyze_dataset",
    "import_from_prometheus",
    "import_to_file",
]
