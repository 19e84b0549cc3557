from dataclasses import dataclass
from typing import Any
from typing import Dict
from typing import List
from typing import Tuple

from k8s_memory_analyzer.models.container_id import ContainerId


@dataclass
class AnalysisResults:
    """
    Data class to hold the outcome of one analysis run. All memory values are in MB.
    """

    # Input parameters
    risk_tolerance: float
    num_containers: int
    num_timestamps: int

    # Calibration outcome
    percentile: int
    risk: float
    recommendations: Dict[ContainerId, int]

    # Maximum over timestamps of the summed requests of present containers
    peak_total_request: int

    def sorted_recommendations(self) -> List[Tuple[ContainerId, int]]:
        return sorted(self.recommendations.items())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "risk_tolerance": self.risk_tolerance,
            "num_containers": self.num_containers,
            "num_timestamps": self.num_timestamps,
            "percentile": self.percentile,
            "risk": self.risk,
            "peak_total_request": self.peak_total_request,
            "recommendations": [
                {**container_id.to_dict(), "request_mb": request}
                for container_id, request in self.sorted_recommendations()
            ],
        }
