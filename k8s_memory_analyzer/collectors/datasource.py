from abc import ABC
from abc import abstractmethod
from typing import Any
from typing import Dict
from typing import List


class IMetricsSource(ABC):
    """
    Interface for data sources that provide container memory time series.
    """

    @abstractmethod
    def query_range(
        self, query: str, start: int, end: int, step: int
    ) -> List[Dict[str, Any]]:
        """Run a range query and return its result series.

        Each series is a dict with a ``metric`` label mapping and a ``values``
        list of ``[timestamp, value]`` pairs.
        """
        pass
