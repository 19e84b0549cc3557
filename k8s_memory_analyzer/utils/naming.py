"""Pod name classification.

Pods created by controllers get generated names that change with every
rollout or reschedule. Stripping the generated suffix gives the stable name of
the owning controller.
"""
import re
from typing import Tuple

from k8s_memory_analyzer.models.controller_type import ControllerType

# <deployment>-<replicaset hash>-<pod suffix>
DEPLOYMENT_POD = re.compile(r"^(?P<controller>[\w-]+)-[0-9a-f]+-[a-z0-9]{5}$")
# <daemonset>-<pod suffix>
DAEMONSET_POD = re.compile(r"^(?P<controller>[\w-]+)-[a-z0-9]{5}$")
# <statefulset>-<ordinal>
STATEFULSET_POD = re.compile(r"^(?P<controller>[\w-]+)-[0-9]+$")

_PATTERNS = (
    (DEPLOYMENT_POD, ControllerType.DEPLOYMENT),
    (DAEMONSET_POD, ControllerType.DAEMONSET),
    (STATEFULSET_POD, ControllerType.STATEFULSET),
)


def classify_pod(pod: str) -> Tuple[str, ControllerType]:
    """Return the stable controller name and controller type for a pod name."""
    for pattern, controller_type in _PATTERNS:
        match = pattern.match(pod)
        if match:
            return match.group("controller"), controller_type
    return pod, ControllerType.OTHER
