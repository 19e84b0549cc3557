from abc import ABC
from abc import abstractmethod

from k8s_memory_analyzer.models.dataset import UsageDataset


class IDatasetStore(ABC):
    """
    Interface for stores that persist imported usage datasets.
    """

    @abstractmethod
    def save(self, dataset: UsageDataset) -> None:
        """Save the given dataset to the store, replacing any previous one."""
        pass

    @abstractmethod
    def load(self) -> UsageDataset:
        """Load the dataset held by the store."""
        pass

    @abstractmethod
    def exists(self) -> bool:
        """Whether the store already holds a dataset."""
        pass
