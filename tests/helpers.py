"""Dataset builders shared by the test suite."""
from typing import Dict
from typing import Iterable

from k8s_memory_analyzer.models.container_id import ContainerId
from k8s_memory_analyzer.models.controller_type import ControllerType
from k8s_memory_analyzer.models.dataset import UsageDataset


def container(name: str, namespace: str = "default", kind=ControllerType.DEPLOYMENT):
    return ContainerId(
        namespace=namespace,
        controller_type=kind,
        controller_id=name,
        container="main",
    )


def build_dataset(samples: Dict[int, Dict[ContainerId, int]]) -> UsageDataset:
    """Dataset whose total at each timestamp is the sum of the containers present."""
    dataset = UsageDataset()
    for timestamp, usage in samples.items():
        dataset.presence.setdefault(timestamp, [])
        for container_id, value in usage.items():
            dataset.record_entity(container_id, timestamp, value)
        dataset.record_aggregate(timestamp, sum(usage.values()))
    return dataset


def single_container_dataset(values: Iterable[int]) -> UsageDataset:
    app = container("app")
    return build_dataset(
        {timestamp: {app: value} for timestamp, value in enumerate(values)}
    )
