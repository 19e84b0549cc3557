# k8s_memory_analyzer/analytics/base.py
from abc import ABC
from abc import abstractmethod
from typing import Dict

from k8s_memory_analyzer.models.container_id import ContainerId
from k8s_memory_analyzer.models.dataset import UsageDataset


class BaseRequestStrategy(ABC):
    """Abstract base class for all memory request recommendation strategies."""

    @abstractmethod
    def generate_recommendation(
        self, dataset: UsageDataset, risk_tolerance: float
    ) -> Dict[ContainerId, int]:
        """Generates a memory request per container based on the usage dataset."""
        pass
