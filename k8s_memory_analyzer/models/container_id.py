from dataclasses import dataclass
from typing import Any
from typing import Dict

from k8s_memory_analyzer.models.controller_type import ControllerType
from k8s_memory_analyzer.utils.naming import classify_pod


@dataclass(frozen=True, order=True)
class ContainerId:
    """Stable identity of a container across pod restarts and rollouts."""

    namespace: str
    controller_type: ControllerType
    controller_id: str
    container: str

    @classmethod
    def from_pod(cls, namespace: str, pod: str, container: str) -> "ContainerId":
        """Fold a concrete pod name into the identity of its controller."""
        controller_id, controller_type = classify_pod(pod)
        return cls(
            namespace=namespace,
            controller_type=controller_type,
            controller_id=controller_id,
            container=container,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "namespace": self.namespace,
            "controller_type": self.controller_type.value,
            "controller_id": self.controller_id,
            "container": self.container,
        }

    def __str__(self):
        return f"{self.namespace}/{self.controller_id}/{self.container}"
